"""Pure operations on block trees.

Every function takes a tree and returns a tree. Nothing is mutated in place:
changed nodes are copied with ``model_copy`` and untouched subtrees are
returned as the very same objects, so a caller can compare snapshots by
identity. When an operation changes nothing the input tuple itself is
returned.
"""

from collections.abc import Callable, Iterator
from typing import Any

from .models import AgentBlock, AgentStatus, Block, TextBlock, TextKind, ToolBlock, Tree

# Agent types that are never rendered (matched as substrings).
HIDDEN_AGENT_TYPES = ("context-pruner",)

# Agent types whose blocks start collapsed.
COLLAPSED_BY_DEFAULT_AGENT_TYPES = ("file-picker",)

INTERRUPTED_NOTICE = "[response interrupted]"

Visitor = Callable[[Block], Block]


def is_hidden_agent(agent_type: str) -> bool:
    return any(hidden in agent_type for hidden in HIDDEN_AGENT_TYPES)


def collapses_by_default(agent_type: str) -> bool:
    return any(collapsed in agent_type for collapsed in COLLAPSED_BY_DEFAULT_AGENT_TYPES)


def agent_base_name(agent_type: str) -> str:
    """Strip a ``namespace/`` prefix and an ``@version`` suffix.

    >>> agent_base_name("pkg/file-picker@1.2.3")
    'file-picker'
    """
    return agent_type.split("/")[-1].split("@")[0]


def transform_blocks(blocks: Tree, visit: Visitor) -> Tree:
    """Apply ``visit`` to every block, depth first.

    ``visit`` sees a block before its children. If it returns the block
    unchanged and the block is an agent, its children are visited in turn;
    a replaced block is not descended into. Only the spine above a changed
    node is copied.
    """
    changed = False
    result: list[Block] = []
    for block in blocks:
        updated = visit(block)
        if updated is block and isinstance(block, AgentBlock) and block.blocks:
            children = transform_blocks(block.blocks, visit)
            if children is not block.blocks:
                updated = block.model_copy(update={"blocks": children})
        if updated is not block:
            changed = True
        result.append(updated)
    return tuple(result) if changed else blocks


def iter_blocks(blocks: Tree) -> Iterator[Block]:
    """Yield every block in document order (pre-order)."""
    for block in blocks:
        yield block
        if isinstance(block, AgentBlock):
            yield from iter_blocks(block.blocks)


def find_agent(blocks: Tree, agent_id: str) -> AgentBlock | None:
    for block in iter_blocks(blocks):
        if isinstance(block, AgentBlock) and block.agent_id == agent_id:
            return block
    return None


def find_tool(blocks: Tree, tool_call_id: str) -> ToolBlock | None:
    for block in iter_blocks(blocks):
        if isinstance(block, ToolBlock) and block.tool_call_id == tool_call_id:
            return block
    return None


def update_agent(blocks: Tree, agent_id: str, update: Callable[[AgentBlock], Block]) -> Tree:
    """Replace the agent with ``agent_id`` by ``update(agent)``, wherever it is."""

    def visit(block: Block) -> Block:
        if isinstance(block, AgentBlock) and block.agent_id == agent_id:
            return update(block)
        return block

    return transform_blocks(blocks, visit)


def nest_under_parent(blocks: Tree, parent_id: str, child: Block) -> tuple[Tree, bool]:
    """Append ``child`` to the parent agent's children.

    Returns the new tree and whether the parent was found. When it was not,
    the tree is returned unchanged and the caller decides where the child goes.
    """
    found = False

    def attach(parent: AgentBlock) -> Block:
        nonlocal found
        found = True
        return parent.model_copy(update={"blocks": parent.blocks + (child,)})

    return update_agent(blocks, parent_id, attach), found


def create_agent_block(
    agent_id: str,
    agent_type: str,
    prompt: str | None = None,
    params: dict[str, Any] | None = None,
) -> AgentBlock:
    return AgentBlock(
        agent_id=agent_id,
        agent_name=agent_type or "Agent",
        agent_type=agent_type or "unknown",
        initial_prompt=prompt or "",
        params=params,
        is_collapsed=collapses_by_default(agent_type),
    )


def _new_text_block(text: str, kind: TextKind) -> TextBlock:
    if kind is TextKind.REASONING:
        return TextBlock(content=text, text_kind=kind, is_collapsed=True, color="grey")
    return TextBlock(content=text, text_kind=kind)


def append_root_text(blocks: Tree, kind: TextKind, text: str) -> Tree:
    """Append a delta to the root stream.

    Extends the last block when it is text of the same kind, otherwise starts
    a new text block. A delta that the accumulated text already ends with is
    a duplicate delivery and is dropped.
    """
    if not text:
        return blocks
    last = blocks[-1] if blocks else None
    if isinstance(last, TextBlock) and last.text_kind == kind:
        if last.content.endswith(text):
            return blocks
        return tuple(blocks[:-1]) + (last.model_copy(update={"content": last.content + text}),)
    return tuple(blocks) + (_new_text_block(text, kind),)


def append_agent_text(blocks: Tree, agent_id: str, text: str) -> Tree:
    """Same rule as :func:`append_root_text`, applied inside an agent."""
    if not text:
        return blocks

    def append(agent: AgentBlock) -> Block:
        children = agent.blocks
        last = children[-1] if children else None
        if isinstance(last, TextBlock) and last.text_kind is TextKind.NORMAL:
            if last.content.endswith(text):
                return agent
            children = children[:-1] + (last.model_copy(update={"content": last.content + text}),)
        else:
            children = children + (TextBlock(content=text),)
        return agent.model_copy(update={"content": agent.content + text, "blocks": children})

    return update_agent(blocks, agent_id, append)


def append_agent_reasoning(blocks: Tree, agent_id: str, text: str) -> Tree:
    if not text:
        return blocks

    def append(agent: AgentBlock) -> Block:
        children = append_root_text(agent.blocks, TextKind.REASONING, text)
        if children is agent.blocks:
            return agent
        return agent.model_copy(update={"blocks": children})

    return update_agent(blocks, agent_id, append)


def attach_tool_output(blocks: Tree, tool_call_id: str, output: str) -> Tree:
    """Set a pending tool block's output. A second result for the same call is ignored."""

    def visit(block: Block) -> Block:
        if (
            isinstance(block, ToolBlock)
            and block.tool_call_id == tool_call_id
            and block.output is None
        ):
            return block.model_copy(update={"output": output})
        return block

    return transform_blocks(blocks, visit)


def advance_agent_status(blocks: Tree, agent_id: str, status: AgentStatus) -> Tree:
    """Move a running agent to a terminal status. Terminal agents never change."""

    def advance(agent: AgentBlock) -> Block:
        if agent.status is not AgentStatus.RUNNING or status is AgentStatus.RUNNING:
            return agent
        return agent.model_copy(update={"status": status})

    return update_agent(blocks, agent_id, advance)


def mark_agent_complete(blocks: Tree, agent_id: str) -> Tree:
    return advance_agent_status(blocks, agent_id, AgentStatus.COMPLETE)


def settle_running_agents(blocks: Tree, status: AgentStatus = AgentStatus.FAILED) -> Tree:
    """Give every still-running agent a terminal status."""

    def visit(block: Block) -> Block:
        if isinstance(block, AgentBlock) and block.status is AgentStatus.RUNNING:
            children = settle_running_agents(block.blocks, status)
            return block.model_copy(update={"status": status, "blocks": children})
        return block

    return transform_blocks(blocks, visit)


def append_interruption_notice(blocks: Tree) -> Tree:
    """Append the interruption notice to whatever text was last open.

    Descends into a trailing running agent, so a cancelled nested agent gets
    the notice rather than the root.
    """
    last = blocks[-1] if blocks else None
    if isinstance(last, AgentBlock) and last.status is AgentStatus.RUNNING:
        interrupted = last.model_copy(update={"blocks": append_interruption_notice(last.blocks)})
        return tuple(blocks[:-1]) + (interrupted,)
    if isinstance(last, TextBlock):
        interrupted = last.model_copy(update={"content": f"{last.content}\n\n{INTERRUPTED_NOTICE}"})
        return tuple(blocks[:-1]) + (interrupted,)
    return tuple(blocks) + (TextBlock(content=INTERRUPTED_NOTICE),)
