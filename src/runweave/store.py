"""Saved conversations: the continuation token plus the last flushed tree."""

import re
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, ValidationError

from .models import Block, Tree
from .timer import now_ms

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class SavedConversation(BaseModel):
    conversation_id: str
    continuation_token: Any = None
    blocks: tuple[Block, ...] = ()
    saved_at: int


class ConversationStore:
    """One JSON file per conversation id under ``directory``."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def path_for(self, conversation_id: str) -> Path:
        if not conversation_id:
            raise ValueError("conversation_id must not be empty")
        return self.directory / f"{_UNSAFE_CHARS.sub('_', conversation_id)}.json"

    def save(
        self, conversation_id: str, continuation_token: Any, blocks: Tree
    ) -> SavedConversation:
        saved = SavedConversation(
            conversation_id=conversation_id,
            continuation_token=continuation_token,
            blocks=tuple(blocks),
            saved_at=now_ms(),
        )
        path = self.path_for(conversation_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(saved.model_dump_json(indent=2))
        logger.debug(f"Saved conversation {conversation_id} to {path}")
        return saved

    def load(self, conversation_id: str) -> SavedConversation | None:
        """Return the saved conversation, or None if missing or unreadable."""
        path = self.path_for(conversation_id)
        if not path.exists():
            return None
        try:
            return SavedConversation.model_validate_json(path.read_text())
        except ValidationError as e:
            logger.warning(
                f"Ignoring unreadable conversation file {path}: {e.error_count()} error(s)"
            )
            return None

    def delete(self, conversation_id: str) -> bool:
        path = self.path_for(conversation_id)
        if not path.exists():
            return False
        path.unlink()
        return True
