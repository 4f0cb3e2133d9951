"""Domain models for runweave."""

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class BlockType(str, Enum):
    """Kinds of nodes in a run's block tree."""

    TEXT = "text"
    TOOL = "tool"
    ASK_USER = "ask-user"
    AGENT = "agent"
    AGENT_LIST = "agent-list"
    PLAN = "plan"


class TextKind(str, Enum):
    """Sub-kind of a text block."""

    NORMAL = "text"
    REASONING = "reasoning"


class AgentStatus(str, Enum):
    """Lifecycle of an agent block. Only moves forward from RUNNING."""

    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


class RunOutcome(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    ABORTED = "aborted"


class RunPhase(str, Enum):
    """States of the run controller."""

    IDLE = "idle"
    STARTING = "starting"
    STREAMING = "streaming"
    SUCCESS = "success"
    ERROR = "error"
    ABORTED = "aborted"


TERMINAL_PHASES = frozenset({RunPhase.SUCCESS, RunPhase.ERROR, RunPhase.ABORTED})


class StreamStatus(str, Enum):
    """Run-level status exposed to the rendering layer."""

    WAITING = "waiting"
    STREAMING = "streaming"
    IDLE = "idle"


class TextBlock(BaseModel):
    """A run of streamed text, either normal output or reasoning."""

    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    content: str = ""
    text_kind: TextKind = TextKind.NORMAL
    is_collapsed: bool = False
    color: str | None = None  # display hint only


class ToolBlock(BaseModel):
    """A tool invocation. `output` stays None until the result arrives."""

    model_config = ConfigDict(frozen=True)

    type: Literal["tool"] = "tool"
    tool_call_id: str
    tool_name: str
    input: dict[str, Any] = {}
    output: str | None = None
    agent_id: str | None = None  # owning agent, if any
    include_tool_call: bool | None = None


class AskUserBlock(BaseModel):
    """An answered (or skipped) ask_user tool call."""

    model_config = ConfigDict(frozen=True)

    type: Literal["ask-user"] = "ask-user"
    tool_call_id: str
    questions: list[Any] = []
    answers: Any = None
    skipped: bool = False


class AgentListEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    agent_type: str


class AgentListBlock(BaseModel):
    """A flat roster of sibling agents spawned together."""

    model_config = ConfigDict(frozen=True)

    type: Literal["agent-list"] = "agent-list"
    id: str
    agents: tuple[AgentListEntry, ...] = ()
    is_collapsed: bool = False


class PlanBlock(BaseModel):
    """A plan payload lifted out of the root text stream."""

    model_config = ConfigDict(frozen=True)

    type: Literal["plan"] = "plan"
    content: str


class AgentBlock(BaseModel):
    """A nested agent execution and everything it produced."""

    model_config = ConfigDict(frozen=True)

    type: Literal["agent"] = "agent"
    agent_id: str  # placeholder id until reconciled
    agent_type: str
    agent_name: str
    content: str = ""  # concatenation of all text streamed into this agent
    status: AgentStatus = AgentStatus.RUNNING
    initial_prompt: str = ""
    params: dict[str, Any] | None = None
    is_collapsed: bool = False
    blocks: tuple["Block", ...] = ()


Block = Annotated[
    Union[TextBlock, ToolBlock, AskUserBlock, AgentBlock, AgentListBlock, PlanBlock],
    Field(discriminator="type"),
]

# A block tree is an ordered, immutable forest. Unchanged subtrees are shared
# between successive snapshots.
Tree = tuple[Block, ...]

AgentBlock.model_rebuild()


class Run(BaseModel):
    """One user-initiated exchange with the remote service."""

    id: str
    prompt: str = ""
    started_at: int | None = None  # epoch ms
    finished_at: int | None = None
    elapsed_ms: int | None = None
    completion_time: str | None = None
    outcome: RunOutcome | None = None
    cost: float | None = None
    continuation_token: Any = None  # opaque, returned by the service
    error_message: str | None = None
    error_code: str | None = None
    payment_required: bool = False
