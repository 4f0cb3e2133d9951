"""HTTP transport for remote runs.

``POST {base_url}/v1/runs`` answers with newline-delimited JSON: one stream
event per line, then a final ``{"type": "run_state", ...}`` record carrying
the run's outcome and continuation token.
"""

import asyncio
import contextlib
import json
from collections.abc import Callable
from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError

from .cancel import CancelToken
from .config import Settings
from .errors import (
    PAYMENT_REQUIRED,
    PaymentRequiredError,
    RunCancelledError,
    RunError,
    RunFailedError,
    TransientRunError,
)
from .events import RunState

EventHandler = Callable[[Any], None]

TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})

# Network hiccups worth retrying (ex: "incomplete chunked read", reset on write).
TRANSIENT_ERRORS = (
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    httpx.TimeoutException,
)


def _error_details(body: str) -> tuple[str | None, str | None]:
    """Pull ``(message, errorCode)`` out of a JSON error body, if it is one."""
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return None, None
    if not isinstance(data, dict):
        return None, None
    message = data.get("message") or data.get("error")
    code = data.get("errorCode")
    return (str(message) if message else None), (str(code) if code else None)


def classify_status(status_code: int, body: str) -> RunError:
    """Map a non-200 response to the error taxonomy."""
    message, code = _error_details(body)
    message = message or f"run_http_{status_code}: {body[:500]}"
    if status_code == 402 or code == PAYMENT_REQUIRED:
        code = code or PAYMENT_REQUIRED
        return PaymentRequiredError(message, error_code=code, status_code=status_code)
    if status_code == 401:
        code = code or "UNAUTHORIZED"
        return PaymentRequiredError(message, error_code=code, status_code=status_code)
    if status_code in TRANSIENT_STATUS_CODES or status_code >= 500:
        return TransientRunError(message, error_code=code, status_code=status_code)
    return RunFailedError(message, error_code=code, status_code=status_code)


class RunClient:
    """Starts a run on the remote service and streams its events."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout_s: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> "RunClient":
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key,
            timeout_s=settings.timeout_s,
            transport=transport,
        )

    async def run(
        self,
        *,
        prompt: str,
        agent: str,
        on_event: EventHandler,
        continuation_token: Any = None,
        cancel_token: CancelToken | None = None,
    ) -> RunState:
        """Run ``agent`` on ``prompt``, calling ``on_event`` for every raw event.

        Raises:
            TransientRunError: network failure or retryable status
            PaymentRequiredError: 401/402 or a payment error code
            RunFailedError: any other non-200 status, a non-network httpx
                failure, or an unreadable run state
            RunCancelledError: ``cancel_token`` was signalled
        """
        url = f"{self.base_url.rstrip('/')}/v1/runs"
        headers = {"Content-Type": "application/json", "Accept": "application/x-ndjson"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {"prompt": prompt, "agent": agent, "continuationToken": continuation_token}

        try:
            client = httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport)
            async with client:
                async with client.stream("POST", url, headers=headers, json=payload) as response:
                    if response.status_code != 200:
                        body = (await response.aread()).decode(errors="replace")
                        raise classify_status(response.status_code, body)
                    if cancel_token is None:
                        return await self._consume(response, on_event)
                    return await self._consume_until_cancelled(response, on_event, cancel_token)
        except TRANSIENT_ERRORS as e:
            raise TransientRunError(f"run_transient_error: {e}") from e
        except httpx.HTTPError as e:
            # Unsupported scheme, local protocol misuse: not retryable.
            raise RunFailedError(f"run_transport_error: {type(e).__name__}: {e}") from e

    async def _consume_until_cancelled(
        self, response: httpx.Response, on_event: EventHandler, cancel_token: CancelToken
    ) -> RunState:
        cancel_token.raise_if_cancelled()
        reader = asyncio.ensure_future(self._consume(response, on_event, cancel_token))
        waiter = asyncio.ensure_future(cancel_token.wait())
        try:
            await asyncio.wait({reader, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if not reader.done():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
            logger.info("Run cancelled, stopped reading the event stream")
            raise RunCancelledError("Run cancelled by caller")
        return reader.result()

    async def _consume(
        self,
        response: httpx.Response,
        on_event: EventHandler,
        cancel_token: CancelToken | None = None,
    ) -> RunState:
        state: RunState | None = None
        async for line in response.aiter_lines():
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping malformed event line: {e}")
                continue
            if isinstance(record, dict) and record.get("type") == "run_state":
                try:
                    state = RunState.model_validate(record)
                except ValidationError as e:
                    raise RunFailedError(f"run_state_parse_error: {e}") from e
                continue
            on_event(record)
        return state or RunState()
