"""Batch tree mutations into periodic flushes."""

import asyncio
from collections.abc import Callable

from loguru import logger

from .models import Tree
from .reconciler import Mutation

DEFAULT_FLUSH_DELAY_MS = 48

Subscriber = Callable[[Tree], None]


class UpdateScheduler:
    """Queues mutations and applies them together.

    A flush applies every queued mutation in enqueue order to the current
    snapshot and publishes the result as the new snapshot, so a reader only
    ever sees a fully flushed tree. Flushes happen ``delay_ms`` after the
    first mutation of a burst (when an asyncio loop is running) or whenever
    :meth:`flush_now` is called.
    """

    def __init__(self, blocks: Tree = (), delay_ms: int = DEFAULT_FLUSH_DELAY_MS) -> None:
        self.delay_ms = delay_ms
        self.flush_count = 0
        self._snapshot: Tree = tuple(blocks)
        self._queue: list[Mutation] = []
        self._timer: asyncio.TimerHandle | None = None
        self._subscribers: list[Subscriber] = []

    @property
    def snapshot(self) -> Tree:
        """The tree as of the last flush."""
        return self._snapshot

    @property
    def pending(self) -> int:
        return len(self._queue)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback`` with every new snapshot. Returns an unsubscribe function."""
        self._subscribers.append(callback)
        return lambda: self._subscribers.remove(callback)

    def enqueue(self, mutation: Mutation) -> None:
        self._queue.append(mutation)
        self._schedule()

    def flush_now(self) -> Tree:
        """Apply all queued mutations synchronously and return the new snapshot."""
        self._cancel_timer()
        if not self._queue:
            return self._snapshot

        queued, self._queue = self._queue, []
        blocks = self._snapshot
        for mutation in queued:
            blocks = mutation(blocks)
        self.flush_count += 1
        self._publish(blocks)
        return blocks

    def replace(self, blocks: Tree) -> None:
        """Flush, then swap in a whole new tree."""
        self.flush_now()
        self._publish(tuple(blocks))

    def reset(self, blocks: Tree = ()) -> None:
        """Drop queued work and start over from ``blocks``."""
        self._cancel_timer()
        if self._queue:
            logger.debug(f"Discarding {len(self._queue)} queued mutation(s) on reset")
        self._queue = []
        self._snapshot = tuple(blocks)

    def _publish(self, blocks: Tree) -> None:
        self._snapshot = blocks
        for callback in list(self._subscribers):
            callback(blocks)

    def _schedule(self) -> None:
        if self._timer is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the caller drives flushes explicitly.
            return
        self._timer = loop.call_later(self.delay_ms / 1000, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self.flush_now()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
