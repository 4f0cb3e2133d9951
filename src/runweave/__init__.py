"""runweave: Reconstruct streamed agent runs as block trees."""

from .controller import RunController
from .events import StreamEvent, parse_event
from .models import (
    AgentBlock,
    AgentStatus,
    Block,
    BlockType,
    PlanBlock,
    Run,
    TextBlock,
    ToolBlock,
    Tree,
)
from .reconciler import EventReconciler
from .scheduler import UpdateScheduler

__all__ = [
    "AgentBlock",
    "AgentStatus",
    "Block",
    "BlockType",
    "EventReconciler",
    "PlanBlock",
    "Run",
    "RunController",
    "StreamEvent",
    "TextBlock",
    "ToolBlock",
    "Tree",
    "UpdateScheduler",
    "parse_event",
]
