"""Unit tests for spawn placeholder matching."""

from runweave.events import SubagentStartEvent, ToolCallEvent
from runweave.models import AgentStatus, TextBlock
from runweave.spawn import (
    SpawnMatcher,
    SpawnOutcome,
    apply_spawn_outcomes,
    placeholder_id,
    resolve_placeholder,
)
from runweave.tree import find_agent


def spawn_call(*agent_types: str, tool_call_id: str = "call-1") -> ToolCallEvent:
    return ToolCallEvent(
        tool_call_id=tool_call_id,
        tool_name="spawn_agents",
        input={"agents": [{"agent_type": t, "prompt": f"do {t}"} for t in agent_types]},
    )


class TestRegister:
    """Tests for SpawnMatcher.register."""

    def test_placeholder_ids_are_deterministic(self) -> None:
        """Ids are the tool call id plus the index."""
        blocks = SpawnMatcher().register(spawn_call("file-picker", "editor"))
        assert [b.agent_id for b in blocks] == ["call-1-0", "call-1-1"]
        assert placeholder_id("call-1", 1) == "call-1-1"

    def test_placeholder_fields(self) -> None:
        """Placeholders carry type, prompt and running status."""
        (block,) = SpawnMatcher().register(spawn_call("file-picker"))
        assert block.agent_type == "file-picker"
        assert block.initial_prompt == "do file-picker"
        assert block.status is AgentStatus.RUNNING
        assert block.is_collapsed

    def test_hidden_types_skipped(self) -> None:
        """Hidden agents get no placeholder but keep their index slot."""
        matcher = SpawnMatcher()
        blocks = matcher.register(spawn_call("context-pruner", "editor"))
        assert [b.agent_id for b in blocks] == ["call-1-1"]
        assert len(matcher.pending) == 1

    def test_non_list_agents(self) -> None:
        """Malformed input registers nothing."""
        event = ToolCallEvent(tool_call_id="c", tool_name="spawn_agents", input={"agents": "oops"})
        assert SpawnMatcher().register(event) == ()


class TestMatch:
    """Tests for SpawnMatcher.match and retire."""

    def test_matches_normalized_type(self) -> None:
        """Namespaced, versioned types match the bare requested type."""
        matcher = SpawnMatcher()
        matcher.register(spawn_call("file-picker"))
        pending = matcher.match("pkg/file-picker@1.2.3")
        assert pending is not None
        assert pending.placeholder_id == "call-1-0"

    def test_first_outstanding_wins(self) -> None:
        """Same-type placeholders are matched in spawn order."""
        matcher = SpawnMatcher()
        matcher.register(spawn_call("editor", "editor"))
        first = matcher.match("editor")
        matcher.retire(first, "real-a")
        second = matcher.match("editor")
        assert (first.placeholder_id, second.placeholder_id) == ("call-1-0", "call-1-1")
        assert matcher.pending == [second]

    def test_no_match(self) -> None:
        """Unrequested types do not match."""
        matcher = SpawnMatcher()
        matcher.register(spawn_call("editor"))
        assert matcher.match("reviewer") is None


class TestResolvePlaceholder:
    """Tests for resolve_placeholder."""

    def test_renames_in_place(self) -> None:
        """Real id replaces the placeholder at the same position."""
        blocks = (TextBlock(content="before"),) + SpawnMatcher().register(spawn_call("a", "b"))
        event = SubagentStartEvent(agent_id="real-b", agent_type="b", params={"x": 1})
        result = resolve_placeholder(blocks, "call-1-1", event)
        assert [getattr(b, "agent_id", None) for b in result] == [None, "call-1-0", "real-b"]
        assert result[2].params == {"x": 1}

    def test_keeps_placeholder_prompt(self) -> None:
        """The spawn prompt wins over the start event's prompt."""
        blocks = SpawnMatcher().register(spawn_call("a"))
        event = SubagentStartEvent(agent_id="real", agent_type="a", prompt="other")
        assert resolve_placeholder(blocks, "call-1-0", event)[0].initial_prompt == "do a"


class TestSettle:
    """Tests for spawn result folding."""

    def test_unresolved_placeholder_shows_result(self) -> None:
        """A placeholder that never started shows the result text."""
        matcher = SpawnMatcher()
        blocks = matcher.register(spawn_call("a"))
        outcomes = matcher.settle("call-1", [{"agentType": "a", "value": {"value": "all done"}}])
        assert outcomes == [SpawnOutcome("call-1-0", "all done", False, placeholder=True)]

        result = apply_spawn_outcomes(blocks, outcomes)
        assert result[0].status is AgentStatus.COMPLETE
        assert result[0].blocks == (TextBlock(content="all done"),)
        assert matcher.pending == []

    def test_resolved_agent_failure(self) -> None:
        """An error result fails a still-running real agent."""
        matcher = SpawnMatcher()
        blocks = matcher.register(spawn_call("a"))
        matcher.retire(matcher.match("a"), "real")
        blocks = resolve_placeholder(blocks, "call-1-0", SubagentStartEvent(agent_id="real", agent_type="a"))

        outcomes = matcher.settle("call-1", [{"value": {"errorMessage": "boom"}}])
        result = apply_spawn_outcomes(blocks, outcomes)
        assert find_agent(result, "real").status is AgentStatus.FAILED

    def test_finished_agent_unchanged(self) -> None:
        """A completed agent keeps its status and content."""
        matcher = SpawnMatcher()
        blocks = matcher.register(spawn_call("a"))
        blocks = (blocks[0].model_copy(update={"status": AgentStatus.COMPLETE}),)
        outcomes = matcher.settle("call-1", [{"value": "late"}])
        assert apply_spawn_outcomes(blocks, outcomes) is blocks

    def test_empty_values_skipped(self) -> None:
        """Entries without a value produce no outcome."""
        assert SpawnMatcher().settle("call-1", [{"agentType": "a"}, "junk"]) == []
