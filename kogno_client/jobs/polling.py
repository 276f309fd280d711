"""
Status polling with capped backoff.

The engine fetches job status until it turns terminal. Waits follow a
fixed schedule that plateaus at its last entry. Consecutive transport
errors are tolerated up to a threshold, which is lower for statuses that
say the job or identity is gone (401/403/404).
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from ..config.logging import get_logger
from ..config.settings import DEFAULT_DELAYS_MS
from ..core.exceptions import APIError, JobCancelled, JobFailed, TransportError
from ..storage.identity import IdentityStore
from .schemas import JobHandle, JobState, JobStatus, ProgressUpdate

logger = get_logger(__name__)

StatusFetcher = Callable[[str, str, str], Awaitable[JobState]]
ProgressCallback = Callable[[ProgressUpdate], Any]
Sleeper = Callable[[float, asyncio.Event | None], Awaitable[None]]


async def cancellable_sleep(seconds: float, cancel_event: asyncio.Event | None = None) -> None:
    """Sleep, raising JobCancelled as soon as ``cancel_event`` is set"""
    if cancel_event is None:
        await asyncio.sleep(seconds)
        return
    if cancel_event.is_set():
        raise JobCancelled()
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
    except TimeoutError:
        return
    raise JobCancelled()


def schedule_delay(schedule: list[int], attempt: int) -> int:
    """Delay in ms for an attempt, holding at the last entry"""
    return schedule[min(attempt, len(schedule) - 1)]


def emit_progress(on_progress: ProgressCallback | None, update: ProgressUpdate) -> None:
    if on_progress is None:
        return
    try:
        on_progress(update)
    except Exception:
        logger.exception("Progress callback failed", job_id=update.job_id)


class PollingEngine:
    """Polls a job's status endpoint until it completes, fails or bails out"""

    def __init__(
        self,
        fetch_status: StatusFetcher,
        identity: IdentityStore | None = None,
        auth_error_bailout: int = 2,
        error_bailout: int = 5,
        sleep: Sleeper = cancellable_sleep,
    ):
        self.fetch_status = fetch_status
        self.identity = identity
        self.auth_error_bailout = auth_error_bailout
        self.error_bailout = error_bailout
        self.sleep = sleep

    def _bailout_threshold(self, error: Exception) -> int:
        if isinstance(error, APIError) and error.is_terminal_auth:
            return self.auth_error_bailout
        return self.error_bailout

    async def poll(
        self,
        handle: JobHandle,
        anon_id: str,
        *,
        on_progress: ProgressCallback | None = None,
        delay_schedule: list[int] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Any:
        """Return the job result, or raise JobFailed / the bailed-out error"""
        schedule = list(delay_schedule or DEFAULT_DELAYS_MS)
        attempt = 0
        consecutive_errors = 0
        job_logger = logger.bind(job_id=handle.job_id, kind=handle.kind)

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelled(handle.job_id)

            try:
                state = await self.fetch_status(handle.kind, handle.job_id, anon_id)
            except (APIError, TransportError) as e:
                consecutive_errors += 1
                threshold = self._bailout_threshold(e)
                if consecutive_errors >= threshold:
                    job_logger.warning(
                        "Giving up on job status",
                        status_code=e.status_code,
                        consecutive_errors=consecutive_errors,
                        error=e.message,
                    )
                    raise
                job_logger.warning(
                    "Job status fetch failed",
                    status_code=e.status_code,
                    consecutive_errors=consecutive_errors,
                    error=e.message,
                )
            else:
                consecutive_errors = 0
                if self.identity is not None:
                    anon_id = self.identity.reconcile(state.anon_id, anon_id)
                emit_progress(on_progress, state.to_progress())
                job_logger.debug(
                    "Polled job status",
                    status=state.status.value,
                    progress=state.progress,
                    attempt=attempt,
                )

                if state.status == JobStatus.COMPLETED:
                    return state.result
                if state.status == JobStatus.FAILED:
                    raise JobFailed(state.error or "Job failed.", handle.job_id)

            delay_ms = schedule_delay(schedule, attempt)
            try:
                await self.sleep(delay_ms / 1000, cancel_event)
            except JobCancelled:
                raise JobCancelled(handle.job_id) from None
            attempt += 1
