"""Wall-clock timer for a run, with start/stop notifications."""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from .models import RunOutcome


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class TimerEvent:
    type: Literal["start", "stop"]
    run_id: str
    started_at: int
    finished_at: int | None = None
    elapsed_ms: int | None = None
    outcome: RunOutcome | None = None


@dataclass(frozen=True)
class TimerResult:
    finished_at: int
    elapsed_ms: int


def format_elapsed_time(seconds: int) -> str:
    """Format whole seconds as ``45s``, ``1m 5s`` or ``2h 3m``."""
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        minutes, secs = divmod(seconds, 60)
        return f"{minutes}m {secs}s" if secs else f"{minutes}m"
    hours, rest = divmod(seconds, 3600)
    minutes = rest // 60
    return f"{hours}h {minutes}m" if minutes else f"{hours}h"


class RunTimer:
    """Times one run. ``start`` and ``stop`` are idempotent."""

    def __init__(
        self,
        on_event: Callable[[TimerEvent], None] | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.on_event = on_event
        self.clock = clock
        self._run_id: str | None = None
        self._started_at: int | None = None

    @property
    def active(self) -> bool:
        return self._started_at is not None

    @property
    def started_at(self) -> int | None:
        return self._started_at

    def start(self, run_id: str) -> None:
        if self.active:
            return
        self._run_id = run_id
        self._started_at = self.clock()
        if self.on_event:
            self.on_event(TimerEvent(type="start", run_id=run_id, started_at=self._started_at))

    def stop(self, outcome: RunOutcome) -> TimerResult | None:
        """Stop the timer. Returns None if it was not running."""
        if self._started_at is None or self._run_id is None:
            return None
        started_at, run_id = self._started_at, self._run_id
        self._started_at = None
        self._run_id = None
        finished_at = self.clock()
        elapsed_ms = max(0, finished_at - started_at)
        if self.on_event:
            self.on_event(
                TimerEvent(
                    type="stop",
                    run_id=run_id,
                    started_at=started_at,
                    finished_at=finished_at,
                    elapsed_ms=elapsed_ms,
                    outcome=outcome,
                )
            )
        return TimerResult(finished_at=finished_at, elapsed_ms=elapsed_ms)
