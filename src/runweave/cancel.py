"""Cooperative cancellation for a run."""

import asyncio
from collections.abc import Callable

from .errors import RunCancelledError


class CancelToken:
    """Signalled once by the caller; observed by the transport and the controller.

    Callbacks registered with :meth:`add_callback` run synchronously, exactly
    once, on the first :meth:`cancel`.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def event(self) -> asyncio.Event:
        return self._event

    def cancel(self) -> bool:
        """Signal cancellation. Returns False if it had already been signalled."""
        if self._event.is_set():
            return False
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()
        return True

    def add_callback(self, callback: Callable[[], None]) -> None:
        if self.cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RunCancelledError("Run cancelled by caller")

    async def wait(self) -> None:
        await self._event.wait()
