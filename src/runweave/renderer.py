"""JSON and outline output for block trees."""

import json
from collections.abc import Iterator
from pathlib import Path

from jinja2 import Environment, FileSystemLoader

from .models import (
    AgentBlock,
    AgentListBlock,
    AskUserBlock,
    Block,
    PlanBlock,
    Run,
    TextBlock,
    TextKind,
    ToolBlock,
    Tree,
)
from .tree import iter_blocks

PREVIEW_CHARS = 60


def block_to_dict(block: Block) -> dict:
    """Convert one block (and its children) to a JSON-ready dict."""
    if isinstance(block, TextBlock):
        return {
            "type": block.type,
            "content": block.content,
            "text_kind": block.text_kind.value,
            "is_collapsed": block.is_collapsed,
            "color": block.color,
        }
    if isinstance(block, ToolBlock):
        return {
            "type": block.type,
            "tool_call_id": block.tool_call_id,
            "tool_name": block.tool_name,
            "input": block.input,
            "output": block.output,
            "agent_id": block.agent_id,
            "include_tool_call": block.include_tool_call,
        }
    if isinstance(block, AskUserBlock):
        return {
            "type": block.type,
            "tool_call_id": block.tool_call_id,
            "questions": block.questions,
            "answers": block.answers,
            "skipped": block.skipped,
        }
    if isinstance(block, AgentBlock):
        return {
            "type": block.type,
            "agent_id": block.agent_id,
            "agent_type": block.agent_type,
            "agent_name": block.agent_name,
            "status": block.status.value,
            "content": block.content,
            "initial_prompt": block.initial_prompt,
            "params": block.params,
            "is_collapsed": block.is_collapsed,
            "blocks": tree_to_dict(block.blocks),
        }
    if isinstance(block, AgentListBlock):
        return {
            "type": block.type,
            "id": block.id,
            "agents": [{"id": a.id, "agent_type": a.agent_type} for a in block.agents],
            "is_collapsed": block.is_collapsed,
        }
    return {"type": block.type, "content": block.content}


def tree_to_dict(blocks: Tree) -> list[dict]:
    return [block_to_dict(block) for block in blocks]


def compute_metadata(run: Run, blocks: Tree) -> dict:
    """Compute summary metadata for a run and its tree."""
    all_blocks = list(iter_blocks(blocks))
    return {
        "run_id": run.id,
        "prompt": run.prompt,
        "outcome": run.outcome.value if run.outcome else None,
        "cost": run.cost,
        "elapsed_ms": run.elapsed_ms,
        "completion_time": run.completion_time,
        "total_agents": sum(1 for b in all_blocks if isinstance(b, AgentBlock)),
        "total_tools": sum(1 for b in all_blocks if isinstance(b, (ToolBlock, AskUserBlock))),
        "plans": sum(1 for b in all_blocks if isinstance(b, PlanBlock)),
        "error_message": run.error_message,
        "payment_required": run.payment_required,
    }


def render_json(run: Run, blocks: Tree, compact: bool = False) -> str:
    """Render a run and its tree as a JSON string."""
    ordered = {"metadata": compute_metadata(run, blocks), "blocks": tree_to_dict(blocks)}
    return json.dumps(ordered, indent=None if compact else 2)


def _preview(text: str) -> str:
    line = text.strip().splitlines()[0] if text.strip() else ""
    if len(line) > PREVIEW_CHARS:
        return line[: PREVIEW_CHARS - 3] + "..."
    return line


def block_label(block: Block) -> str:
    """One-line description of a block for the outline."""
    if isinstance(block, TextBlock):
        kind = "reasoning" if block.text_kind is TextKind.REASONING else "text"
        return f"{kind}: {_preview(block.content)}"
    if isinstance(block, ToolBlock):
        state = "pending" if block.output is None else "done"
        return f"tool {block.tool_name} [{block.tool_call_id}] {state}"
    if isinstance(block, AskUserBlock):
        return f"ask_user [{block.tool_call_id}] {'skipped' if block.skipped else 'answered'}"
    if isinstance(block, AgentBlock):
        return f"agent {block.agent_name} [{block.agent_id}] {block.status.value}"
    if isinstance(block, AgentListBlock):
        return "agents: " + ", ".join(a.agent_type for a in block.agents)
    return f"plan: {_preview(block.content)}"


def outline_rows(blocks: Tree, depth: int = 0) -> Iterator[tuple[int, str]]:
    for block in blocks:
        yield depth, block_label(block)
        if isinstance(block, AgentBlock):
            yield from outline_rows(block.blocks, depth + 1)


def render_outline(blocks: Tree) -> str:
    """Render the tree as an indented plain-text outline."""
    template_dir = Path(__file__).parent / "templates"
    env = Environment(loader=FileSystemLoader(template_dir), autoescape=False, trim_blocks=True)
    template = env.get_template("outline.txt.j2")
    return template.render(rows=list(outline_rows(blocks)))
