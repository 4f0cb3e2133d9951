"""Lift a delimited plan payload out of the root text stream."""

import re
from collections.abc import Sequence

from loguru import logger

from .models import Block, PlanBlock, TextBlock, TextKind, Tree

PLAN_OPEN = "<PLAN>"
PLAN_CLOSE = "</PLAN>"
LEGACY_PLAN_CLOSE = "</cb_plan>"

_CLOSE_RE = re.compile(r"</PLAN>|</cb_plan>")
_COMPLETE_PLAN_RE = re.compile(r"<PLAN>[\s\S]*?(?:</PLAN>|</cb_plan>)")
_UNCLOSED_PLAN_RE = re.compile(r"<PLAN>[\s\S]*$")


def extract_plan(buffer: str) -> str | None:
    """Return the trimmed text between the first opening and closing delimiter."""
    open_idx = buffer.find(PLAN_OPEN)
    if open_idx == -1:
        return None
    match = _CLOSE_RE.search(buffer, open_idx + len(PLAN_OPEN))
    if match is None:
        return None
    return buffer[open_idx + len(PLAN_OPEN) : match.start()].strip()


def scrub_plan_tags(text: str) -> str:
    """Remove complete plan sections, an unclosed trailing section, and stray closing tags."""
    text = _COMPLETE_PLAN_RE.sub("", text)
    text = _UNCLOSED_PLAN_RE.sub("", text)
    return _CLOSE_RE.sub("", text)


def _scrub(block: Block) -> Block:
    if not isinstance(block, TextBlock):
        return block
    scrubbed = scrub_plan_tags(block.content)
    if scrubbed == block.content:
        return block
    return block.model_copy(update={"content": scrubbed})


def _is_empty_text(block: Block) -> bool:
    return isinstance(block, TextBlock) and block.content.strip() == ""


def _is_plan_text(block: Block) -> bool:
    return isinstance(block, TextBlock) and block.text_kind is TextKind.NORMAL


def _last_opener(blocks: Sequence[Block]) -> int | None:
    """Index of the last root text block holding an opening delimiter."""
    for i in range(len(blocks) - 1, -1, -1):
        if _is_plan_text(blocks[i]) and PLAN_OPEN in blocks[i].content:
            return i
    return None


def _cut_from_opener(blocks: list[Block], open_index: int) -> None:
    """Blank the text from the opening delimiter on, in place."""
    opener = blocks[open_index]
    kept = opener.content[: opener.content.rfind(PLAN_OPEN)]
    blocks[open_index] = opener.model_copy(update={"content": kept})
    for i in range(open_index + 1, len(blocks)):
        if _is_plan_text(blocks[i]):
            blocks[i] = blocks[i].model_copy(update={"content": ""})


def hide_unclosed_plan(blocks: Tree) -> Tree:
    """Drop a trailing plan section whose closing delimiter has not arrived yet.

    Used for display while streaming; the tree itself keeps the raw text so
    the section can still be split out once it closes.
    """
    open_index = _last_opener(blocks)
    if open_index is None:
        return blocks
    opener = blocks[open_index]
    if _CLOSE_RE.search(opener.content, opener.content.rfind(PLAN_OPEN)):
        return blocks
    result = list(blocks)
    _cut_from_opener(result, open_index)
    return tuple(b for b in result if not _is_empty_text(b))


def scrub_plan_tags_in_blocks(blocks: Tree) -> Tree:
    return tuple(b for b in (_scrub(block) for block in blocks) if not _is_empty_text(b))


def insert_plan_block(blocks: Tree, plan: str) -> Tree:
    """Replace the delimited section of the root text with a plan block.

    Text before the opening delimiter stays where it was, the plan block
    follows it, and whatever came after the closing delimiter continues as
    its own text block. All delimiters are stripped from the root text
    blocks and emptied blocks are dropped.
    """
    plan_block = PlanBlock(content=plan)
    close_index = next(
        (i for i, b in enumerate(blocks) if _is_plan_text(b) and _CLOSE_RE.search(b.content)),
        None,
    )
    if close_index is None:
        return scrub_plan_tags_in_blocks(blocks) + (plan_block,)

    closing = blocks[close_index]
    match = _CLOSE_RE.search(closing.content)
    head, tail = closing.content[: match.start()], closing.content[match.end() :]
    before = list(blocks[:close_index])

    open_at = head.rfind(PLAN_OPEN)
    if open_at != -1:
        head = head[:open_at]
    else:
        # Opened in an earlier block: everything from that opening on is plan body.
        head = ""
        open_index = _last_opener(before)
        if open_index is not None:
            _cut_from_opener(before, open_index)

    result: list[Block] = [_scrub(b) for b in before]
    if head:
        result.append(_scrub(closing.model_copy(update={"content": head})))
    result.append(plan_block)
    if tail:
        result.append(_scrub(closing.model_copy(update={"content": tail})))
    result.extend(_scrub(b) for b in blocks[close_index + 1 :])
    return tuple(b for b in result if not _is_empty_text(b))


class PlanExtractor:
    """Watches root text deltas and reports the plan once it is complete.

    Only the first delimited payload of a run is extracted.
    """

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self.buffer = ""
        self.extracted = False

    @property
    def is_open(self) -> bool:
        """An opening delimiter was seen and the first plan has not closed yet."""
        return self.enabled and not self.extracted and PLAN_OPEN in self.buffer

    def feed(self, text: str) -> str | None:
        """Add a root text delta; return the plan the first time one is complete."""
        if not text or self.buffer.endswith(text):
            return None
        self.buffer += text
        if not self.enabled or self.extracted:
            return None
        if PLAN_CLOSE not in self.buffer and LEGACY_PLAN_CLOSE not in self.buffer:
            return None
        plan = extract_plan(self.buffer)
        if plan is None:
            return None
        self.extracted = True
        logger.info(f"Extracted plan ({len(plan)} chars) from root stream")
        return plan
