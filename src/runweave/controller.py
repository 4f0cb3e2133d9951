"""Drive one run at a time: transport, retries, reconciliation, terminal state.

States::

    idle -> starting -> streaming -> success | error | aborted

Every network or service failure is caught here and turned into a terminal
state. The reconciler and scheduler never see exceptions from the transport.
"""

import uuid
from collections.abc import Callable
from typing import Any, Protocol

from loguru import logger

from .cancel import CancelToken
from .config import Settings, get_settings
from .errors import (
    RunCancelledError,
    RunError,
    RunInProgressError,
    TransientRunError,
    error_message,
    is_payment_required,
)
from .events import ErrorOutput, RunState, is_content_event, parse_event
from .models import TERMINAL_PHASES, Run, RunOutcome, RunPhase, StreamStatus, TextBlock, Tree
from .reconciler import EventReconciler
from .retry import RetryAttempt, RetryPolicy, compute_backoff, sleep_with_backoff
from .scheduler import UpdateScheduler
from .store import ConversationStore
from .timer import RunTimer, TimerEvent, TimerResult, format_elapsed_time
from .tree import append_interruption_notice, settle_running_agents

NO_OUTPUT_MESSAGE = "No output from agent run"
PAYMENT_REQUIRED_MESSAGE = "Payment required. Add credits or check your API key, then try again."


class RunTransport(Protocol):
    async def run(
        self,
        *,
        prompt: str,
        agent: str,
        on_event: Callable[[Any], None],
        continuation_token: Any = None,
        cancel_token: CancelToken | None = None,
    ) -> RunState: ...


def error_block(message: str) -> TextBlock:
    return TextBlock(content=f"**Error:** {message}")


class RunController:
    """Owns the run lifecycle for one conversation.

    Args:
        client: Anything with :class:`~runweave.client.RunClient`'s ``run`` signature.
        settings: Defaults for agent, flush delay, plan extraction and retries.
        store: Where ``(continuation token, tree)`` is saved after each run.
        conversation_id: Key for ``store``. A saved conversation is resumed.
        retry_policy: Overrides the policy built from ``settings``.
        on_retry: Called before each backoff sleep.
        on_timer_event: Receives the timer's start and stop events.
    """

    def __init__(
        self,
        client: RunTransport,
        settings: Settings | None = None,
        store: ConversationStore | None = None,
        conversation_id: str | None = None,
        retry_policy: RetryPolicy | None = None,
        on_retry: Callable[[RetryAttempt], None] | None = None,
        on_timer_event: Callable[[TimerEvent], None] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.client = client
        self.store = store
        self.conversation_id = conversation_id
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self.on_retry = on_retry

        self.reconciler = EventReconciler(extract_plan=self.settings.extract_plan)
        self.scheduler = UpdateScheduler(delay_ms=self.settings.flush_delay_ms)
        self.timer = RunTimer(on_event=on_timer_event)

        self.phase = RunPhase.IDLE
        self.run: Run | None = None
        self.is_retrying = False
        self.continuation_token: Any = None
        self._cancel_token: CancelToken | None = None
        self._received_content = False

        if store is not None and conversation_id:
            saved = store.load(conversation_id)
            if saved is not None:
                logger.info(f"Resuming conversation {conversation_id}")
                self.continuation_token = saved.continuation_token
                self.scheduler.reset(saved.blocks)

    @property
    def snapshot(self) -> Tree:
        """The tree as of the last flush, as it should be shown."""
        return self._visible(self.scheduler.snapshot)

    @property
    def active(self) -> bool:
        return self.phase in (RunPhase.STARTING, RunPhase.STREAMING)

    @property
    def active_ids(self) -> frozenset[str]:
        """Agent and tool ids still in flight. Empty once the run is over."""
        if not self.active:
            return frozenset()
        return frozenset(self.reconciler.active_ids)

    @property
    def stream_status(self) -> StreamStatus:
        if self.phase is RunPhase.STARTING:
            return StreamStatus.WAITING
        if self.phase is RunPhase.STREAMING:
            return StreamStatus.STREAMING
        return StreamStatus.IDLE

    def subscribe(self, callback: Callable[[Tree], None]) -> Callable[[], None]:
        """Call ``callback`` with every flushed tree. Returns an unsubscribe function."""
        return self.scheduler.subscribe(lambda blocks: callback(self._visible(blocks)))

    def _visible(self, blocks: Tree) -> Tree:
        # A plan that has opened but not closed yet stays out of view.
        if self.active:
            return self.reconciler.visible(blocks)
        return blocks

    async def submit(self, prompt: str, agent: str | None = None) -> Run:
        """Run ``prompt`` to a terminal state and return the finished Run.

        Raises:
            RunInProgressError: a run is already active on this controller
        """
        if self.active:
            raise RunInProgressError("A run is already in progress")

        self.reconciler.reset()
        self.scheduler.reset()
        self.run = run = Run(id=uuid.uuid4().hex, prompt=prompt)
        self.phase = RunPhase.STARTING
        self.is_retrying = False
        self._received_content = False
        self._cancel_token = token = CancelToken()

        self.timer.start(run.id)
        run.started_at = self.timer.started_at
        logger.info(f"Starting run {run.id}")

        try:
            state = await self._call_with_retry(prompt, agent or self.settings.agent, token)
        except RunCancelledError:
            self.cancel()
            return run
        except RunError as e:
            if self.phase is not RunPhase.ABORTED:
                logger.warning(f"Run {run.id} failed: {e.message}")
                self._fail(
                    error_message(e),
                    error_code=e.error_code,
                    payment_required=is_payment_required(e),
                )
                self._persist()
            return run
        except Exception as e:
            if self.phase is not RunPhase.ABORTED:
                logger.exception(f"Run {run.id} crashed")
                self._fail(error_message(e))
                self._persist()
            return run

        if self.phase is RunPhase.ABORTED:
            return run
        if state.continuation_token is not None:
            self.continuation_token = state.continuation_token

        output = state.output
        if output is None:
            self._fail(NO_OUTPUT_MESSAGE)
        elif isinstance(output, ErrorOutput):
            self._fail(
                error_message(output.message),
                error_code=output.error_code,
                payment_required=is_payment_required(output),
            )
        else:
            self._succeed()
        self._persist()
        return run

    def cancel(self) -> bool:
        """Abort the active run. Returns False if there was nothing to abort."""
        if not self.active or self.run is None:
            return False

        self.phase = RunPhase.ABORTED
        self.is_retrying = False
        in_flight = len(self.reconciler.active_ids)
        self.reconciler.active_ids.clear()
        if self._cancel_token is not None:
            self._cancel_token.cancel()

        self.scheduler.flush_now()
        interrupted = settle_running_agents(append_interruption_notice(self.scheduler.snapshot))
        self.scheduler.replace(interrupted)

        self._stamp(self.timer.stop(RunOutcome.ABORTED))
        self.run.outcome = RunOutcome.ABORTED
        logger.info(f"Run {self.run.id} aborted with {in_flight} agent(s) or tool(s) in flight")
        return True

    async def _call_with_retry(self, prompt: str, agent: str, token: CancelToken) -> RunState:
        policy = self.retry_policy
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.client.run(
                    prompt=prompt,
                    agent=agent,
                    on_event=self._handle_event,
                    continuation_token=self.continuation_token,
                    cancel_token=token,
                )
            except TransientRunError as e:
                if self._received_content or token.cancelled or attempt >= policy.max_attempts:
                    raise
                delay_ms = compute_backoff(policy, attempt)
                self.is_retrying = True
                logger.warning(
                    f"Attempt {attempt}/{policy.max_attempts} failed ({e.message}), "
                    f"retrying in {delay_ms}ms"
                )
                if self.on_retry is not None:
                    self.on_retry(
                        RetryAttempt(
                            attempt=attempt,
                            delay_ms=delay_ms,
                            error_code=e.error_code,
                            message=e.message,
                        )
                    )
                if not await sleep_with_backoff(delay_ms, token.event):
                    raise RunCancelledError("Run cancelled during backoff") from e

    def _handle_event(self, raw: Any) -> None:
        if self.phase in TERMINAL_PHASES:
            logger.debug(f"Dropping event after run reached {self.phase.value}")
            return
        event = parse_event(raw)
        if event is None:
            return
        if not self._received_content and is_content_event(event):
            self._received_content = True
            self.is_retrying = False
            self.phase = RunPhase.STREAMING
        for mutation in self.reconciler.mutations_for(event):
            self.scheduler.enqueue(mutation)

    def _succeed(self) -> None:
        assert self.run is not None
        self.is_retrying = False
        self.phase = RunPhase.SUCCESS
        self.scheduler.flush_now()
        self._stamp(self.timer.stop(RunOutcome.SUCCESS))
        self.run.outcome = RunOutcome.SUCCESS
        self.run.cost = self.reconciler.total_cost
        logger.info(f"Run {self.run.id} succeeded in {self.run.completion_time}")

    def _fail(
        self, message: str, error_code: str | None = None, payment_required: bool = False
    ) -> None:
        assert self.run is not None
        self.reconciler.active_ids.clear()
        self.is_retrying = False
        self.phase = RunPhase.ERROR
        shown = PAYMENT_REQUIRED_MESSAGE if payment_required else message
        self.scheduler.replace((error_block(shown),))
        self._stamp(self.timer.stop(RunOutcome.ERROR))
        self.run.outcome = RunOutcome.ERROR
        self.run.error_message = message
        self.run.error_code = error_code
        self.run.payment_required = payment_required

    def _stamp(self, result: TimerResult | None) -> None:
        if result is None or self.run is None:
            return
        self.run.finished_at = result.finished_at
        self.run.elapsed_ms = result.elapsed_ms
        self.run.completion_time = format_elapsed_time(result.elapsed_ms // 1000)

    def _persist(self) -> None:
        if self.store is None or not self.conversation_id:
            return
        self.store.save(self.conversation_id, self.continuation_token, self.scheduler.snapshot)
