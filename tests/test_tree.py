"""Unit tests for the tree module."""

from runweave.models import AgentBlock, AgentStatus, PlanBlock, TextBlock, TextKind, ToolBlock
from runweave.tree import (
    INTERRUPTED_NOTICE,
    agent_base_name,
    append_agent_reasoning,
    append_agent_text,
    append_interruption_notice,
    append_root_text,
    attach_tool_output,
    collapses_by_default,
    create_agent_block,
    find_agent,
    is_hidden_agent,
    iter_blocks,
    mark_agent_complete,
    nest_under_parent,
    settle_running_agents,
    transform_blocks,
)


def agent(agent_id: str, *children, status: AgentStatus = AgentStatus.RUNNING) -> AgentBlock:
    return AgentBlock(agent_id=agent_id, agent_type="worker", agent_name="worker", status=status, blocks=children)


class TestAgentTypes:
    """Tests for agent type helpers."""

    def test_base_name_strips_namespace_and_version(self) -> None:
        """Namespace prefix and version suffix are removed."""
        assert agent_base_name("pkg/file-picker@1.2.3") == "file-picker"
        assert agent_base_name("file-picker") == "file-picker"

    def test_hidden_agent(self) -> None:
        """Context pruner is hidden, including namespaced variants."""
        assert is_hidden_agent("context-pruner")
        assert is_hidden_agent("acme/context-pruner@1.0.0")
        assert not is_hidden_agent("editor")

    def test_collapsed_by_default(self) -> None:
        """File picker blocks start collapsed."""
        assert collapses_by_default("file-picker")
        assert create_agent_block("a", "file-picker").is_collapsed
        assert not create_agent_block("b", "editor").is_collapsed

    def test_create_agent_block_defaults(self) -> None:
        """Missing type falls back to generic names."""
        block = create_agent_block("a", "")
        assert block.agent_name == "Agent"
        assert block.agent_type == "unknown"
        assert block.status is AgentStatus.RUNNING
        assert block.blocks == ()


class TestTransformBlocks:
    """Tests for the generic tree transform."""

    def test_unchanged_tree_is_same_object(self) -> None:
        """Identity visitor returns the input tuple."""
        blocks = (TextBlock(content="a"), agent("x", TextBlock(content="b")))
        assert transform_blocks(blocks, lambda b: b) is blocks

    def test_untouched_siblings_are_shared(self) -> None:
        """Only the spine above a change is copied."""
        left = agent("left", TextBlock(content="l"))
        right = agent("right", TextBlock(content="r"))
        blocks = (left, right)

        result = append_agent_text(blocks, "right", "!")
        assert result[0] is left
        assert result[1] is not right
        assert result[1].content == "!"

    def test_replaced_block_is_not_descended(self) -> None:
        """A visitor's replacement is kept as returned."""
        blocks = (agent("x", TextBlock(content="inner")),)
        seen = []

        def visit(block):
            seen.append(block)
            if isinstance(block, AgentBlock):
                return block.model_copy(update={"blocks": ()})
            return block

        result = transform_blocks(blocks, visit)
        assert result[0].blocks == ()
        assert len(seen) == 1


class TestLookup:
    """Tests for find and iterate helpers."""

    def test_iter_blocks_is_preorder(self) -> None:
        """Parents come before their children."""
        inner = TextBlock(content="inner")
        outer = agent("x", inner)
        tail = TextBlock(content="tail")
        assert list(iter_blocks((outer, tail))) == [outer, inner, tail]

    def test_find_agent_nested(self) -> None:
        """Agents are found at any depth."""
        blocks = (agent("a", agent("b", agent("c"))),)
        assert find_agent(blocks, "c").agent_id == "c"
        assert find_agent(blocks, "missing") is None

    def test_nest_under_parent(self) -> None:
        """Child is appended to the parent's children."""
        blocks = (agent("a", agent("b")),)
        result, found = nest_under_parent(blocks, "b", TextBlock(content="hi"))
        assert found
        assert find_agent(result, "b").blocks == (TextBlock(content="hi"),)

    def test_nest_under_missing_parent(self) -> None:
        """Missing parent leaves the tree alone."""
        blocks = (agent("a"),)
        result, found = nest_under_parent(blocks, "zzz", TextBlock(content="hi"))
        assert not found
        assert result is blocks


class TestRootText:
    """Tests for append_root_text."""

    def test_starts_new_block(self) -> None:
        """First delta creates a text block."""
        assert append_root_text((), TextKind.NORMAL, "Hi") == (TextBlock(content="Hi"),)

    def test_extends_last_block(self) -> None:
        """Same-kind deltas are concatenated."""
        blocks = append_root_text((), TextKind.NORMAL, "Hello ")
        blocks = append_root_text(blocks, TextKind.NORMAL, "world")
        assert blocks == (TextBlock(content="Hello world"),)

    def test_duplicate_suffix_dropped(self) -> None:
        """A repeated delta is not appended twice."""
        blocks = append_root_text((), TextKind.NORMAL, "abc")
        assert append_root_text(blocks, TextKind.NORMAL, "abc") is blocks
        assert append_root_text(blocks, TextKind.NORMAL, "bc") is blocks

    def test_kind_switch_starts_new_block(self) -> None:
        """Reasoning after text gets its own collapsed grey block."""
        blocks = append_root_text((), TextKind.NORMAL, "text")
        blocks = append_root_text(blocks, TextKind.REASONING, "thought")
        assert len(blocks) == 2
        assert blocks[1].text_kind is TextKind.REASONING
        assert blocks[1].is_collapsed
        assert blocks[1].color == "grey"

    def test_text_after_non_text_block(self) -> None:
        """Text after a tool block starts a new block."""
        blocks = (ToolBlock(tool_call_id="t", tool_name="x"),)
        result = append_root_text(blocks, TextKind.NORMAL, "after")
        assert result[-1] == TextBlock(content="after")

    def test_empty_delta_is_noop(self) -> None:
        """Empty text changes nothing."""
        blocks = (TextBlock(content="a"),)
        assert append_root_text(blocks, TextKind.NORMAL, "") is blocks


class TestAgentText:
    """Tests for nested text appends."""

    def test_updates_content_and_child(self) -> None:
        """Agent content and last text child both grow."""
        blocks = (agent("a"),)
        blocks = append_agent_text(blocks, "a", "one ")
        blocks = append_agent_text(blocks, "a", "two")
        target = find_agent(blocks, "a")
        assert target.content == "one two"
        assert target.blocks == (TextBlock(content="one two"),)

    def test_duplicate_suffix_dropped(self) -> None:
        """Nested duplicate delivery is ignored."""
        blocks = append_agent_text((agent("a"),), "a", "chunk")
        assert append_agent_text(blocks, "a", "chunk") is blocks

    def test_text_after_tool_starts_new_child(self) -> None:
        """Text after a nested tool opens a fresh text child."""
        blocks = (agent("a", TextBlock(content="x"), ToolBlock(tool_call_id="t", tool_name="y")),)
        blocks = append_agent_text(blocks, "a", "z")
        assert find_agent(blocks, "a").blocks[-1] == TextBlock(content="z")

    def test_unknown_agent_is_noop(self) -> None:
        """Text for an agent not in the tree changes nothing."""
        blocks = (agent("a"),)
        assert append_agent_text(blocks, "b", "lost") is blocks

    def test_reasoning_inside_agent(self) -> None:
        """Nested reasoning becomes a collapsed reasoning child."""
        blocks = append_agent_reasoning((agent("a"),), "a", "hmm")
        child = find_agent(blocks, "a").blocks[0]
        assert child.text_kind is TextKind.REASONING
        assert child.is_collapsed
        assert find_agent(blocks, "a").content == ""


class TestToolOutput:
    """Tests for attach_tool_output."""

    def test_sets_output_once(self) -> None:
        """Second result for the same call is ignored."""
        blocks = (agent("a", ToolBlock(tool_call_id="t", tool_name="x")),)
        blocks = attach_tool_output(blocks, "t", "first")
        assert attach_tool_output(blocks, "t", "second") is blocks
        assert find_agent(blocks, "a").blocks[0].output == "first"


class TestStatus:
    """Tests for agent status changes."""

    def test_complete_is_terminal(self) -> None:
        """A completed agent cannot be completed or failed again."""
        blocks = mark_agent_complete((agent("a"),), "a")
        assert blocks[0].status is AgentStatus.COMPLETE
        assert mark_agent_complete(blocks, "a") is blocks
        assert settle_running_agents(blocks) is blocks

    def test_settle_running_agents(self) -> None:
        """Every running agent becomes failed, finished ones stay."""
        blocks = (agent("a", agent("b"), agent("c", status=AgentStatus.COMPLETE)),)
        result = settle_running_agents(blocks)
        assert find_agent(result, "a").status is AgentStatus.FAILED
        assert find_agent(result, "b").status is AgentStatus.FAILED
        assert find_agent(result, "c").status is AgentStatus.COMPLETE


class TestInterruptionNotice:
    """Tests for append_interruption_notice."""

    def test_appends_to_root_text(self) -> None:
        """Notice follows the open root text."""
        result = append_interruption_notice((TextBlock(content="partial"),))
        assert result == (TextBlock(content=f"partial\n\n{INTERRUPTED_NOTICE}"),)

    def test_descends_into_running_agent(self) -> None:
        """A trailing running agent receives the notice."""
        blocks = (TextBlock(content="root"), agent("a", TextBlock(content="nested")))
        result = append_interruption_notice(blocks)
        assert result[0] == TextBlock(content="root")
        assert find_agent(result, "a").blocks[-1].content.endswith(INTERRUPTED_NOTICE)

    def test_new_block_after_non_text(self) -> None:
        """Notice gets its own block when nothing text-like is open."""
        result = append_interruption_notice((PlanBlock(content="p"),))
        assert result[-1] == TextBlock(content=INTERRUPTED_NOTICE)
        assert append_interruption_notice(()) == (TextBlock(content=INTERRUPTED_NOTICE),)
