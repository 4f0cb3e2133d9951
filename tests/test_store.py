"""Tests for conversation persistence."""

from pathlib import Path

import pytest

from runweave.models import AgentBlock, PlanBlock, TextBlock, ToolBlock
from runweave.store import ConversationStore


class TestConversationStore:
    """Tests for ConversationStore."""

    def test_round_trip_nested_tree(self, tmp_path: Path) -> None:
        """Nested blocks of every kind survive save and load."""
        blocks = (
            TextBlock(content="intro"),
            AgentBlock(
                agent_id="a",
                agent_type="editor",
                agent_name="editor",
                blocks=(ToolBlock(tool_call_id="t", tool_name="write", output="ok"),),
            ),
            PlanBlock(content="plan"),
        )
        store = ConversationStore(tmp_path / "convs")
        store.save("conv-1", {"cursor": 3}, blocks)

        saved = store.load("conv-1")
        assert saved.blocks == blocks
        assert saved.continuation_token == {"cursor": 3}
        assert saved.saved_at > 0

    def test_missing(self, tmp_path: Path) -> None:
        """Unknown ids load as None."""
        assert ConversationStore(tmp_path).load("nope") is None

    def test_unreadable_file(self, tmp_path: Path) -> None:
        """A corrupt file loads as None."""
        store = ConversationStore(tmp_path)
        store.path_for("bad").write_text('{"conversation_id": 5}')
        assert store.load("bad") is None

    def test_delete(self, tmp_path: Path) -> None:
        """Delete removes the file once."""
        store = ConversationStore(tmp_path)
        store.save("c", None, ())
        assert store.delete("c") is True
        assert store.delete("c") is False

    def test_unsafe_ids(self, tmp_path: Path) -> None:
        """Ids cannot escape the directory."""
        store = ConversationStore(tmp_path)
        assert store.path_for("../etc/passwd").parent == tmp_path
        with pytest.raises(ValueError):
            store.path_for("")
