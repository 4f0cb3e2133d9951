"""Tests for the renderer module."""

import json
from pathlib import Path

from runweave.events import load_events
from runweave.models import AgentBlock, AgentListBlock, AgentListEntry, PlanBlock, Run, RunOutcome, TextBlock, ToolBlock
from runweave.reconciler import EventReconciler
from runweave.renderer import block_label, compute_metadata, render_json, render_outline, tree_to_dict


def reconstruct(path: Path):
    reconciler = EventReconciler()
    blocks = ()
    for event in load_events(path):
        blocks = reconciler.apply(blocks, event)
    return blocks, reconciler


class TestTreeToDict:
    """Tests for tree_to_dict."""

    def test_nested_agents(self, nested_run: Path) -> None:
        """Agent children are serialized recursively."""
        blocks, _ = reconstruct(nested_run)
        data = tree_to_dict(blocks)
        outer = data[2]
        assert outer["type"] == "agent"
        assert outer["status"] == "complete"
        assert outer["blocks"][0]["agent_id"] == "agent-b"
        assert outer["blocks"][0]["blocks"][0]["tool_name"] == "read_files"
        assert data[0]["text_kind"] == "reasoning"

    def test_agent_list(self) -> None:
        """Agent rosters list their entries."""
        block = AgentListBlock(id="l", agents=(AgentListEntry(id="a", agent_type="x"),))
        assert tree_to_dict((block,)) == [
            {"type": "agent-list", "id": "l", "agents": [{"id": "a", "agent_type": "x"}], "is_collapsed": False}
        ]


class TestComputeMetadata:
    """Tests for compute_metadata."""

    def test_counts(self, nested_run: Path) -> None:
        """Agents and tools are counted at every depth."""
        blocks, reconciler = reconstruct(nested_run)
        run = Run(id="r", outcome=RunOutcome.SUCCESS, cost=reconciler.total_cost)
        metadata = compute_metadata(run, blocks)
        assert metadata["total_agents"] == 2
        assert metadata["total_tools"] == 2
        assert metadata["plans"] == 0
        assert metadata["outcome"] == "success"
        assert metadata["cost"] == 0.5


class TestRenderJson:
    """Tests for render_json."""

    def test_metadata_first(self, spawn_run: Path) -> None:
        """Output is valid JSON with metadata before blocks."""
        blocks, _ = reconstruct(spawn_run)
        output = render_json(Run(id="r"), blocks)
        data = json.loads(output)
        assert list(data) == ["metadata", "blocks"]
        assert "\n" in output

    def test_compact(self, spawn_run: Path) -> None:
        """Compact output has no newlines."""
        blocks, _ = reconstruct(spawn_run)
        assert "\n" not in render_json(Run(id="r"), blocks, compact=True)


class TestOutline:
    """Tests for render_outline."""

    def test_indents_children(self) -> None:
        """Nested blocks are indented under their agent."""
        blocks = (
            TextBlock(content="hello\nworld"),
            AgentBlock(
                agent_id="a",
                agent_type="editor",
                agent_name="editor",
                blocks=(ToolBlock(tool_call_id="t", tool_name="write"),),
            ),
            PlanBlock(content="step"),
        )
        assert render_outline(blocks) == (
            "text: hello\n"
            "agent editor [a] running\n"
            "  tool write [t] pending\n"
            "plan: step\n"
        )

    def test_long_text_truncated(self) -> None:
        """Long previews end in an ellipsis."""
        label = block_label(TextBlock(content="x" * 100))
        assert label.endswith("...")
        assert len(label) < 80

    def test_empty_tree(self) -> None:
        """An empty tree renders as nothing."""
        assert render_outline(()) == ""
