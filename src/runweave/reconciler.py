"""Apply stream events to a block tree.

:class:`EventReconciler` is the state machine at the heart of runweave. For
each event it updates its own bookkeeping (spawn placeholders, started agents,
the plan buffer, in-flight ids) immediately, and returns the tree
change as a list of pure ``Tree -> Tree`` functions. Those can be applied at
once with :meth:`EventReconciler.apply` or queued in an
:class:`~runweave.scheduler.UpdateScheduler` and applied at the next flush.

Events for different agents may interleave arbitrarily; every nested change
resolves its target by id lookup, never by position.
"""

from collections.abc import Callable
from typing import Any, assert_never

from loguru import logger

from .events import (
    FinishEvent,
    ReasoningChunkEvent,
    ReasoningEvent,
    StreamEvent,
    SubagentChunkEvent,
    SubagentFinishEvent,
    SubagentStartEvent,
    TextEvent,
    ToolCallEvent,
    ToolResultEvent,
    parse_event,
)
from .models import AskUserBlock, Block, TextKind, ToolBlock, Tree
from .output import format_tool_result
from .plan import PlanExtractor, hide_unclosed_plan, insert_plan_block
from .spawn import SPAWN_AGENTS_TOOL, SpawnMatcher, apply_spawn_outcomes, resolve_placeholder
from .tree import (
    append_agent_reasoning,
    append_agent_text,
    append_root_text,
    attach_tool_output,
    create_agent_block,
    find_agent,
    find_tool,
    is_hidden_agent,
    iter_blocks,
    mark_agent_complete,
    nest_under_parent,
    transform_blocks,
)

Mutation = Callable[[Tree], Tree]

# Orchestration-only tools that never get a block of their own.
HIDDEN_TOOL_NAMES = frozenset({SPAWN_AGENTS_TOOL, "spawn_agent_inline", "end_turn"})

ASK_USER_TOOL = "ask_user"


def is_spawn_agents_result(value: Any) -> bool:
    return isinstance(value, list) and any(
        isinstance(v, dict) and ("agentName" in v or "agentType" in v) for v in value
    )


def answer_ask_user(blocks: Tree, tool_call_id: str, result: Any) -> Tree:
    """Turn an ask_user tool block into an answer-bearing block.

    Without answers or a skipped flag the tool block is left as it is, so the
    generic output path can still fill it.
    """
    if not isinstance(result, dict):
        return blocks
    answers = result.get("answers")
    skipped = bool(result.get("skipped"))
    if not answers and not skipped:
        return blocks

    def visit(block: Block) -> Block:
        if (
            isinstance(block, ToolBlock)
            and block.tool_call_id == tool_call_id
            and block.tool_name == ASK_USER_TOOL
        ):
            questions = block.input.get("questions")
            return AskUserBlock(
                tool_call_id=tool_call_id,
                questions=questions if isinstance(questions, list) else [],
                answers=answers,
                skipped=skipped,
            )
        return block

    return transform_blocks(blocks, visit)


class EventReconciler:
    """Turns one run's events into tree mutations.

    Args:
        extract_plan: Lift ``<PLAN>...</PLAN>`` payloads out of root text.
        on_total_cost: Called with the run's cost when the finish event arrives.
    """

    def __init__(
        self,
        extract_plan: bool = True,
        on_total_cost: Callable[[float], None] | None = None,
    ) -> None:
        self.extract_plan = extract_plan
        self.on_total_cost = on_total_cost
        self.reset()

    def reset(self) -> None:
        """Forget everything about the previous run."""
        self.spawns = SpawnMatcher()
        self.plan = PlanExtractor(enabled=self.extract_plan)
        self.active_ids: set[str] = set()  # agents and tools still in flight
        self._started: set[str] = set()  # real agent ids seen in subagent_start
        self.diagnostics: list[str] = []
        self.total_cost: float | None = None
        self._hidden_calls: set[str] = set()

    def apply(self, blocks: Tree, event: StreamEvent | Any) -> Tree:
        """Apply one event immediately."""
        for mutation in self.mutations_for(event):
            blocks = mutation(blocks)
        return blocks

    def visible(self, blocks: Tree) -> Tree:
        """``blocks`` without a plan section that has opened but not closed yet."""
        if self.plan.is_open:
            return hide_unclosed_plan(blocks)
        return blocks

    def mutations_for(self, event: StreamEvent | Any) -> list[Mutation]:
        """Record the event and return the tree changes it implies, in order."""
        parsed = parse_event(event)
        if parsed is None:
            return []

        if isinstance(parsed, TextEvent):
            if parsed.agent_id:
                return self._agent_text(parsed.agent_id, parsed.text)
            return self._root_text(TextKind.NORMAL, parsed.text)
        elif isinstance(parsed, ReasoningEvent):
            return self._root_text(TextKind.REASONING, parsed.text)
        elif isinstance(parsed, SubagentChunkEvent):
            return self._agent_text(parsed.agent_id, parsed.chunk)
        elif isinstance(parsed, ReasoningChunkEvent):
            if parsed.is_root:
                return self._root_text(TextKind.REASONING, parsed.chunk)
            return self._agent_reasoning(parsed.agent_id, parsed.chunk)
        elif isinstance(parsed, ToolCallEvent):
            return self._tool_call(parsed)
        elif isinstance(parsed, ToolResultEvent):
            return self._tool_result(parsed)
        elif isinstance(parsed, SubagentStartEvent):
            return self._subagent_start(parsed)
        elif isinstance(parsed, SubagentFinishEvent):
            return self._subagent_finish(parsed)
        elif isinstance(parsed, FinishEvent):
            return self._finish(parsed)
        else:
            assert_never(parsed)

    def _diagnose(self, message: str) -> None:
        self.diagnostics.append(message)
        logger.warning(message)

    # Text

    def _root_text(self, kind: TextKind, text: str) -> list[Mutation]:
        if not text:
            return []
        mutations: list[Mutation] = [lambda blocks: append_root_text(blocks, kind, text)]
        if kind is TextKind.NORMAL:
            plan = self.plan.feed(text)
            if plan is not None:
                mutations.append(lambda blocks: insert_plan_block(blocks, plan))
        return mutations

    def _agent_text(self, agent_id: str, text: str) -> list[Mutation]:
        if not text:
            return []

        def append(blocks: Tree) -> Tree:
            if find_agent(blocks, agent_id) is None:
                self._diagnose(f"Text for unknown agent {agent_id} dropped")
                return blocks
            return append_agent_text(blocks, agent_id, text)

        return [append]

    def _agent_reasoning(self, agent_id: str, text: str) -> list[Mutation]:
        if not text:
            return []
        return [lambda blocks: append_agent_reasoning(blocks, agent_id, text)]

    # Tools

    def _place(
        self, blocks: Tree, new_blocks: tuple[Block, ...], event: ToolCallEvent, label: str
    ) -> Tree:
        """Put new blocks under the calling agent, or at the root.

        A caller that is not in the tree is the root agent itself unless the
        event claimed to be nested, in which case the fallback is recorded.
        """
        owner_id, nested = event.agent_id, event.parent_agent_id is not None
        if owner_id and find_agent(blocks, owner_id) is not None:
            for block in new_blocks:
                blocks, _ = nest_under_parent(blocks, owner_id, block)
            return blocks
        if owner_id and nested:
            self._diagnose(f"{label}: agent {owner_id} not found, appending at root")
        return tuple(blocks) + tuple(new_blocks)

    def _tool_call(self, event: ToolCallEvent) -> list[Mutation]:
        if event.tool_name == SPAWN_AGENTS_TOOL and event.input.get("agents"):
            placeholders = self.spawns.register(event)
            self.active_ids.update(block.agent_id for block in placeholders)
            self._hidden_calls.add(event.tool_call_id)
            label = f"Spawn {event.tool_call_id}"
            return [lambda blocks: self._place(blocks, placeholders, event, label)]

        if event.tool_name in HIDDEN_TOOL_NAMES:
            self._hidden_calls.add(event.tool_call_id)
            return []

        tool = ToolBlock(
            tool_call_id=event.tool_call_id,
            tool_name=event.tool_name,
            input=event.input,
            agent_id=event.agent_id,
            include_tool_call=event.include_tool_call,
        )
        self.active_ids.add(event.tool_call_id)
        label = f"Tool call {event.tool_call_id}"

        def place(blocks: Tree) -> Tree:
            if find_tool(blocks, event.tool_call_id) is not None:
                self._diagnose(f"Duplicate tool call {event.tool_call_id} ignored")
                return blocks
            return self._place(blocks, (tool,), event, label)

        return [place]

    def _tool_result(self, event: ToolResultEvent) -> list[Mutation]:
        value = event.first_value
        mutations: list[Mutation] = [
            lambda blocks: answer_ask_user(blocks, event.tool_call_id, value)
        ]

        if is_spawn_agents_result(value):
            outcomes = self.spawns.settle(event.tool_call_id, value)
            for index in range(len(value)):
                self.active_ids.discard(f"{event.tool_call_id}-{index}")
            mutations.append(lambda blocks: apply_spawn_outcomes(blocks, outcomes))
            return mutations

        self.active_ids.discard(event.tool_call_id)
        if event.tool_call_id in self._hidden_calls:
            return mutations

        def attach(blocks: Tree) -> Tree:
            tool = find_tool(blocks, event.tool_call_id)
            if tool is None:
                answered = any(
                    isinstance(b, AskUserBlock) and b.tool_call_id == event.tool_call_id
                    for b in iter_blocks(blocks)
                )
                if not answered:
                    self._diagnose(f"Result for unknown tool call {event.tool_call_id} dropped")
                return blocks
            output = format_tool_result(tool.tool_name, event.output)
            return attach_tool_output(blocks, event.tool_call_id, output)

        mutations.append(attach)
        return mutations

    # Agents

    def _subagent_start(self, event: SubagentStartEvent) -> list[Mutation]:
        if is_hidden_agent(event.agent_type):
            return []
        if event.agent_id in self._started:
            # Must not claim a second placeholder under the same id.
            self._diagnose(f"Duplicate start for agent {event.agent_id} ignored")
            return []
        self._started.add(event.agent_id)

        pending = self.spawns.match(event.agent_type)
        if pending is not None:
            self.spawns.retire(pending, event.agent_id)
            self.active_ids.discard(pending.placeholder_id)
            self.active_ids.add(event.agent_id)
            return [lambda blocks: resolve_placeholder(blocks, pending.placeholder_id, event)]

        logger.info(
            f"Creating agent block {event.agent_id} ({event.agent_type or 'unknown'}) "
            f"under {event.parent_agent_id or 'ROOT'}"
        )
        agent = create_agent_block(
            event.agent_id, event.agent_type, prompt=event.prompt, params=event.params
        )
        self.active_ids.add(event.agent_id)

        def place(blocks: Tree) -> Tree:
            if find_agent(blocks, event.agent_id) is not None:
                self._diagnose(f"Duplicate start for agent {event.agent_id} ignored")
                return blocks
            if event.parent_agent_id:
                nested, found = nest_under_parent(blocks, event.parent_agent_id, agent)
                if found:
                    return nested
                self._diagnose(
                    f"Parent agent {event.parent_agent_id} of {event.agent_id} not found, "
                    "appending at root"
                )
            return tuple(blocks) + (agent,)

        return [place]

    def _subagent_finish(self, event: SubagentFinishEvent) -> list[Mutation]:
        if is_hidden_agent(event.agent_type):
            return []
        self.active_ids.discard(event.agent_id)
        return [lambda blocks: mark_agent_complete(blocks, event.agent_id)]

    def _finish(self, event: FinishEvent) -> list[Mutation]:
        if event.total_cost is not None:
            self.total_cost = event.total_cost
            if self.on_total_cost is not None:
                self.on_total_cost(event.total_cost)
        return []
