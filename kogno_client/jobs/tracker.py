"""
Dual-channel job progress tracking.

A resolution subscribes to the identity's push channel and races three
sources against each other: broadcast events, a one-shot reconciliation
check shortly after subscribing, and a recurring idle check. Every source
feeds ``_Resolution.dispatch``, the single transition function of the
resolution state machine, and the first terminal outcome wins. If the push
path cannot be used the tracker hands off to the polling fallback.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from ..config.logging import bind_job_context, clear_job_context, get_logger
from ..core.exceptions import JobCancelled, JobFailed, KognoClientError
from .polling import ProgressCallback, emit_progress
from .realtime import (
    JOB_PROGRESS_EVENT,
    JOB_UPDATE_EVENT,
    ChannelEvent,
    ChannelStatus,
    PushSubscription,
    PushTransport,
    jobs_channel,
)
from .schemas import JobHandle, JobState, JobStatus, parse_job_state, parse_progress_event

logger = get_logger(__name__)

StatusCheck = Callable[[], Awaitable[JobState | None]]
Fallback = Callable[[], Awaitable[Any]]

# Timer callbacks may run up to one clock tick early
_CLOCK_SLACK_S = time.get_clock_info("monotonic").resolution


class TrackerState(str, Enum):
    SUBSCRIBING = "subscribing"
    LISTENING = "listening"
    RECONCILING = "reconciling"
    SETTLED = "settled"


class Signal(str, Enum):
    SUBSCRIBED = "subscribed"
    CHANNEL_LOST = "channel_lost"
    PROGRESS = "progress"
    UPDATE = "update"
    CHECK_STARTED = "check_started"
    CHECK_RESULT = "check_result"
    CHECK_ERROR = "check_error"
    CANCEL = "cancel"


class OutcomeKind(str, Enum):
    RESULT = "result"
    FAILED = "failed"
    FALLBACK = "fallback"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass
class Outcome:
    kind: OutcomeKind
    value: Any = None


class _Resolution:
    """State machine for tracking one job handle"""

    def __init__(
        self,
        transport: PushTransport,
        handle: JobHandle,
        anon_id: str,
        on_progress: ProgressCallback | None,
        check_status_once: StatusCheck,
        interval_s: float,
        idle_threshold_s: float,
        reconcile_delay_s: float,
        subscribe_timeout_s: float,
    ):
        self.transport = transport
        self.handle = handle
        self.anon_id = anon_id
        self.on_progress = on_progress
        self.check_status_once = check_status_once
        self.interval_s = interval_s
        self.idle_threshold_s = idle_threshold_s
        self.reconcile_delay_s = reconcile_delay_s
        self.subscribe_timeout_s = subscribe_timeout_s

        self.loop = asyncio.get_running_loop()
        self.state = TrackerState.SUBSCRIBING
        self.settled: asyncio.Future[Outcome] = self.loop.create_future()
        self.tasks: set[asyncio.Task] = set()
        self.subscription: PushSubscription | None = None
        self.last_activity_at = self.loop.time()
        self.checks_in_flight = 0
        self.teardown_count = 0

    # Transition function

    def dispatch(self, signal: Signal, payload: Any = None) -> None:
        if self.state == TrackerState.SETTLED:
            logger.debug("Ignoring signal after settle", signal=signal.value)
            return

        if signal == Signal.SUBSCRIBED:
            if self.state == TrackerState.SUBSCRIBING:
                self.state = TrackerState.LISTENING
                self.last_activity_at = self.loop.time()
                self._spawn(self._reconcile_later())
                self._spawn(self._idle_loop())
                logger.debug("Listening for job events")

        elif signal == Signal.CHANNEL_LOST:
            self._settle(Outcome(OutcomeKind.FALLBACK, payload))

        elif signal == Signal.PROGRESS:
            self.last_activity_at = self.loop.time()
            emit_progress(self.on_progress, payload)

        elif signal == Signal.UPDATE:
            self.last_activity_at = self.loop.time()
            emit_progress(self.on_progress, payload.to_progress())
            self._settle_if_terminal(payload)

        elif signal == Signal.CHECK_STARTED:
            self.checks_in_flight += 1
            self.state = TrackerState.RECONCILING

        elif signal in (Signal.CHECK_RESULT, Signal.CHECK_ERROR):
            self.checks_in_flight -= 1
            if signal == Signal.CHECK_RESULT and payload is not None:
                emit_progress(self.on_progress, payload.to_progress())
                self._settle_if_terminal(payload)
            if self.state == TrackerState.RECONCILING and self.checks_in_flight == 0:
                self.state = TrackerState.LISTENING

        elif signal == Signal.CANCEL:
            self._settle(Outcome(OutcomeKind.CANCELLED))

    def _settle_if_terminal(self, state: JobState) -> None:
        if state.status == JobStatus.COMPLETED:
            self._settle(Outcome(OutcomeKind.RESULT, state.result))
        elif state.status == JobStatus.FAILED:
            self._settle(Outcome(OutcomeKind.FAILED, state.error))

    def _settle(self, outcome: Outcome) -> None:
        self.state = TrackerState.SETTLED
        if not self.settled.done():
            self.settled.set_result(outcome)

    # Sources

    def _on_event(self, event: ChannelEvent) -> None:
        logger.debug("Channel event", channel_event=event.event, state=self.state.value)
        if event.event == JOB_PROGRESS_EVENT:
            update = parse_progress_event(event.payload)
            if update.job_id == self.handle.job_id:
                self.dispatch(Signal.PROGRESS, update)
        elif event.event == JOB_UPDATE_EVENT:
            try:
                state = parse_job_state(event.payload)
            except ValueError:
                logger.debug("Dropping malformed job update", payload=event.payload)
                return
            if state.job_id == self.handle.job_id:
                self.dispatch(Signal.UPDATE, state)

    def _on_status(self, status: ChannelStatus) -> None:
        if status == ChannelStatus.SUBSCRIBED:
            self.dispatch(Signal.SUBSCRIBED)
        else:
            self.dispatch(Signal.CHANNEL_LOST, status)

    async def _check(self, reason: str) -> None:
        if self.state == TrackerState.SETTLED:
            return
        self.dispatch(Signal.CHECK_STARTED)
        try:
            state = await self.check_status_once()
        except KognoClientError as e:
            logger.warning("Status check failed", reason=reason, error=e.message)
            self.dispatch(Signal.CHECK_ERROR)
        except Exception as e:
            self._settle(Outcome(OutcomeKind.ERROR, e))
        else:
            logger.debug(
                "Status check finished",
                reason=reason,
                status=state.status.value if state else None,
            )
            self.dispatch(Signal.CHECK_RESULT, state)

    async def _reconcile_later(self) -> None:
        await asyncio.sleep(self.reconcile_delay_s)
        await self._check("reconcile")

    async def _idle_loop(self) -> None:
        while self.state != TrackerState.SETTLED:
            await asyncio.sleep(self.interval_s)
            if self.state != TrackerState.LISTENING:
                continue
            idle_for = self.loop.time() - self.last_activity_at
            if idle_for + _CLOCK_SLACK_S >= self.idle_threshold_s:
                await self._check("idle")

    async def _watch_cancel(self, cancel_event: asyncio.Event) -> None:
        await cancel_event.wait()
        self.dispatch(Signal.CANCEL)

    async def _subscribe_deadline(self) -> None:
        await asyncio.sleep(self.subscribe_timeout_s)
        if self.state == TrackerState.SUBSCRIBING:
            logger.warning("Push channel never acknowledged the subscription")
            self.dispatch(Signal.CHANNEL_LOST, ChannelStatus.TIMED_OUT)

    def _spawn(self, coro) -> None:
        self.tasks.add(asyncio.create_task(coro))

    # Lifecycle

    async def run(self, cancel_event: asyncio.Event | None) -> Outcome:
        try:
            if cancel_event is not None:
                self._spawn(self._watch_cancel(cancel_event))
            self._spawn(self._subscribe_deadline())
            try:
                self.subscription = await self.transport.subscribe(
                    jobs_channel(self.anon_id), self._on_event, self._on_status
                )
            except (KognoClientError, httpx.HTTPError, OSError) as e:
                logger.warning("Push subscription failed", error=str(e))
                self._settle(Outcome(OutcomeKind.FALLBACK, e))
            return await self.settled
        finally:
            await self._teardown()

    async def _teardown(self) -> None:
        if self.teardown_count:
            return
        self.teardown_count += 1
        self.state = TrackerState.SETTLED

        current = asyncio.current_task()
        pending = [task for task in self.tasks if task is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self.tasks.clear()

        if self.subscription is not None:
            await self.subscription.close()


class ProgressTracker:
    """Resolves job handles through the push channel, falling back to polling"""

    def __init__(self, transport: PushTransport | None = None):
        self.transport = transport

    async def resolve(
        self,
        handle: JobHandle,
        anon_id: str,
        *,
        on_progress: ProgressCallback | None = None,
        check_status_once: StatusCheck | None = None,
        fallback: Fallback | None = None,
        interval_ms: int = 5000,
        idle_threshold_ms: int | None = None,
        reconcile_delay_ms: int = 2000,
        subscribe_timeout_ms: int = 10000,
        cancel_event: asyncio.Event | None = None,
    ) -> Any:
        """
        Resolve ``handle`` to its result.

        Raises JobFailed when the job reports failure and JobCancelled when
        ``cancel_event`` is set first. When the push channel is unusable the
        result (or exception) of ``fallback()`` is returned instead.
        """
        if fallback is None:
            raise ValueError("A polling fallback is required")

        if cancel_event is not None and cancel_event.is_set():
            raise JobCancelled(handle.job_id if handle else None)

        if self.transport is None or handle is None or not anon_id or check_status_once is None:
            logger.info("Push channel unavailable, polling job status")
            return await fallback()

        bind_job_context(handle.job_id, kind=handle.kind)
        try:
            resolution = _Resolution(
                self.transport,
                handle,
                anon_id,
                on_progress,
                check_status_once,
                interval_s=interval_ms / 1000,
                idle_threshold_s=(idle_threshold_ms or interval_ms) / 1000,
                reconcile_delay_s=reconcile_delay_ms / 1000,
                subscribe_timeout_s=subscribe_timeout_ms / 1000,
            )
            outcome = await resolution.run(cancel_event)
        finally:
            clear_job_context()

        if outcome.kind == OutcomeKind.RESULT:
            logger.info("Job completed", job_id=handle.job_id)
            return outcome.value
        if outcome.kind == OutcomeKind.FAILED:
            logger.info("Job failed", job_id=handle.job_id, error=outcome.value)
            raise JobFailed(outcome.value or "Job failed.", handle.job_id)
        if outcome.kind == OutcomeKind.CANCELLED:
            raise JobCancelled(handle.job_id)
        if outcome.kind == OutcomeKind.ERROR:
            raise outcome.value

        logger.info("Handing off to polling", job_id=handle.job_id, reason=str(outcome.value))
        return await fallback()
