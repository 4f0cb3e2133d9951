"""Stream events consumed from a remote agent run.

Events arrive as loosely shaped JSON objects. They are validated into a closed
union of pydantic models discriminated on ``type``; anything that does not fit
(unknown kind, missing id, wrong shape) is dropped by :func:`parse_event`
instead of raising, since the stream is assumed to be imperfect.

Wire field names are camelCase (``agentId``, ``toolCallId``); the models use
snake_case attributes and accept either spelling.
"""

import json
import sys
from pathlib import Path
from typing import Annotated, Any, Literal, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

Id = Annotated[str, Field(min_length=1)]


class WireModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class TextEvent(WireModel):
    """Root text delta, or an agent's text when ``agent_id`` is set."""

    type: Literal["text"] = "text"
    text: str = ""
    agent_id: str | None = None


class ReasoningEvent(WireModel):
    type: Literal["reasoning"] = "reasoning"
    text: str = ""


class SubagentChunkEvent(WireModel):
    type: Literal["subagent_chunk"] = "subagent_chunk"
    agent_id: Id
    chunk: str = ""
    agent_type: str | None = None


class ReasoningChunkEvent(WireModel):
    """Reasoning delta. An explicitly empty ancestor list marks root reasoning."""

    type: Literal["reasoning_chunk"] = "reasoning_chunk"
    agent_id: Id
    chunk: str = ""
    ancestor_run_ids: list[str] | None = None

    @property
    def is_root(self) -> bool:
        return self.ancestor_run_ids is not None and len(self.ancestor_run_ids) == 0


class ToolCallEvent(WireModel):
    type: Literal["tool_call"] = "tool_call"
    tool_call_id: Id
    tool_name: Id
    input: dict[str, Any] = {}
    agent_id: str | None = None
    parent_agent_id: str | None = None
    include_tool_call: bool | None = None


class ToolResultEvent(WireModel):
    type: Literal["tool_result"] = "tool_result"
    tool_call_id: Id
    tool_name: str | None = None
    output: list[Any] = []

    @property
    def first_value(self) -> Any:
        """The ``value`` of the first output part, if it has one."""
        if self.output and isinstance(self.output[0], dict):
            return self.output[0].get("value")
        return None


class SubagentStartEvent(WireModel):
    type: Literal["subagent_start"] = "subagent_start"
    agent_id: Id
    agent_type: str = ""
    parent_agent_id: str | None = None
    prompt: str | None = None
    params: dict[str, Any] | None = None
    display_name: str | None = None


class SubagentFinishEvent(WireModel):
    type: Literal["subagent_finish"] = "subagent_finish"
    agent_id: Id
    agent_type: str = ""


class FinishEvent(WireModel):
    type: Literal["finish"] = "finish"
    total_cost: float | None = None


StreamEvent = Annotated[
    Union[
        TextEvent,
        ReasoningEvent,
        SubagentChunkEvent,
        ReasoningChunkEvent,
        ToolCallEvent,
        ToolResultEvent,
        SubagentStartEvent,
        SubagentFinishEvent,
        FinishEvent,
    ],
    Field(discriminator="type"),
]

EVENT_TYPES = (
    TextEvent,
    ReasoningEvent,
    SubagentChunkEvent,
    ReasoningChunkEvent,
    ToolCallEvent,
    ToolResultEvent,
    SubagentStartEvent,
    SubagentFinishEvent,
    FinishEvent,
)


class SuccessOutput(WireModel):
    type: Literal["success", "lastMessage", "structuredOutput", "allMessages"] = "success"
    value: Any = None


class ErrorOutput(WireModel):
    type: Literal["error"] = "error"
    message: str = ""
    error_code: str | None = None


RunOutput = Annotated[Union[SuccessOutput, ErrorOutput], Field(discriminator="type")]


class RunState(WireModel):
    """Terminal record of a run: its outcome plus the token to resume from."""

    type: Literal["run_state"] = "run_state"
    output: RunOutput | None = None
    continuation_token: Any = None


_event_adapter: TypeAdapter = TypeAdapter(StreamEvent)


def parse_event(raw: Any) -> StreamEvent | None:
    """Validate one raw event. Returns None for malformed input."""
    if isinstance(raw, EVENT_TYPES):
        return raw
    if isinstance(raw, str):
        return TextEvent(text=raw)
    try:
        return _event_adapter.validate_python(raw)
    except ValidationError as e:
        logger.debug(f"Dropping malformed event {raw!r}: {e.error_count()} validation error(s)")
        return None


def is_content_event(event: StreamEvent) -> bool:
    """Everything except the cost-only finish event counts as received content."""
    return not isinstance(event, FinishEvent)


def load_events(path: Path) -> list[Any]:
    """Load a recorded JSONL event stream, skipping malformed lines."""
    events = []
    with open(path) as f:
        for line_num, line in enumerate(f, 1):
            if not line.strip():
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError as e:
                print(f"Warning: Skipping malformed JSON at line {line_num}: {e}", file=sys.stderr)
    return events
