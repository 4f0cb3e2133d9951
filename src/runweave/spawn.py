"""Reconcile speculative spawn placeholders with the agents that actually start.

The service reports "about to spawn these agents" (a ``spawn_agents`` tool
call) and "agent X started" (``subagent_start``) as separate, independently
timed events. Placeholder blocks are shown as soon as the intent arrives and
are later renamed in place to the canonical id, so an agent never disappears
and reappears.
"""

from dataclasses import dataclass
from typing import Any

from loguru import logger

from .events import SubagentStartEvent, ToolCallEvent
from .models import AgentBlock, AgentStatus, Block, TextBlock, Tree
from .output import extract_spawn_result_content
from .tree import agent_base_name, create_agent_block, is_hidden_agent, update_agent

SPAWN_AGENTS_TOOL = "spawn_agents"


@dataclass(frozen=True)
class PendingSpawn:
    placeholder_id: str
    tool_call_id: str
    index: int
    agent_type: str  # as requested, before normalization


@dataclass(frozen=True)
class SpawnOutcome:
    """Result of one spawned agent, as reported by the spawn tool's result."""

    agent_id: str
    content: str
    failed: bool
    placeholder: bool  # True if the agent never reported its real id


def placeholder_id(tool_call_id: str, index: int) -> str:
    return f"{tool_call_id}-{index}"


class SpawnMatcher:
    """Tracks outstanding placeholders for one run."""

    def __init__(self) -> None:
        self._pending: dict[str, PendingSpawn] = {}
        self._resolved: dict[str, str] = {}  # placeholder id -> real id

    @property
    def pending(self) -> list[PendingSpawn]:
        return list(self._pending.values())

    def register(self, event: ToolCallEvent) -> tuple[AgentBlock, ...]:
        """Record a batch spawn and build its placeholder blocks."""
        agents = event.input.get("agents")
        if not isinstance(agents, list):
            return ()

        blocks = []
        for index, agent in enumerate(agents):
            if not isinstance(agent, dict):
                continue
            agent_type = agent.get("agent_type") or ""
            if is_hidden_agent(agent_type):
                continue
            temp_id = placeholder_id(event.tool_call_id, index)
            self._pending[temp_id] = PendingSpawn(
                placeholder_id=temp_id,
                tool_call_id=event.tool_call_id,
                index=index,
                agent_type=agent_type or "unknown",
            )
            prompt = agent.get("prompt")
            if not isinstance(prompt, str):
                prompt = None
            blocks.append(create_agent_block(temp_id, agent_type, prompt=prompt))

        logger.debug(f"Registered {len(blocks)} spawn placeholder(s) for {event.tool_call_id}")
        return tuple(blocks)

    def match(self, agent_type: str) -> PendingSpawn | None:
        """First outstanding placeholder whose normalized type matches."""
        wanted = agent_base_name(agent_type or "")
        for pending in self._pending.values():
            if agent_base_name(pending.agent_type) == wanted:
                return pending
        return None

    def retire(self, pending: PendingSpawn, real_id: str) -> None:
        self._pending.pop(pending.placeholder_id, None)
        self._resolved[pending.placeholder_id] = real_id
        logger.info(f"Matched spawn placeholder {pending.placeholder_id} to agent {real_id}")

    def settle(self, tool_call_id: str, results: list[Any]) -> list[SpawnOutcome]:
        """Interpret a ``spawn_agents`` result list, retiring unresolved placeholders."""
        outcomes = []
        for index, result in enumerate(results):
            value = result.get("value") if isinstance(result, dict) else None
            if not value:
                continue
            content, failed = extract_spawn_result_content(value)
            temp_id = placeholder_id(tool_call_id, index)
            real_id = self._resolved.get(temp_id)
            if real_id is None:
                self._pending.pop(temp_id, None)
                outcomes.append(SpawnOutcome(temp_id, content, failed, placeholder=True))
            else:
                outcomes.append(SpawnOutcome(real_id, content, failed, placeholder=False))
        return outcomes


def resolve_placeholder(blocks: Tree, temp_id: str, event: SubagentStartEvent) -> Tree:
    """Rename a placeholder block to the real agent id, keeping its position.

    The placeholder's prompt wins unless it was empty; run-time params are
    merged over any the placeholder had.
    """

    def rename(agent: AgentBlock) -> Block:
        update: dict[str, Any] = {"agent_id": event.agent_id}
        if event.params:
            update["params"] = {**(agent.params or {}), **event.params}
        if event.prompt and not agent.initial_prompt:
            update["initial_prompt"] = event.prompt
        return agent.model_copy(update=update)

    return update_agent(blocks, temp_id, rename)


def apply_spawn_outcomes(blocks: Tree, outcomes: list[SpawnOutcome]) -> Tree:
    """Fold spawn results into the tree.

    A placeholder that never got its real id shows the result text as its
    only child. An agent that did start already streamed its own content, so
    only an error result changes it (to failed).
    """
    for outcome in outcomes:
        status = AgentStatus.FAILED if outcome.failed else AgentStatus.COMPLETE

        def fold(
            agent: AgentBlock, outcome: SpawnOutcome = outcome, status: AgentStatus = status
        ) -> Block:
            if agent.status is not AgentStatus.RUNNING:
                return agent
            if outcome.placeholder:
                children = (TextBlock(content=outcome.content),)
                return agent.model_copy(update={"blocks": children, "status": status})
            if outcome.failed:
                return agent.model_copy(update={"status": status})
            return agent

        blocks = update_agent(blocks, outcome.agent_id, fold)
    return blocks
