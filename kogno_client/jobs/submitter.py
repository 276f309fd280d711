"""
Job submission and end-to-end resolution.

``JobSubmitter.submit`` turns a submission response into a ``SubmitOutcome``.
``run`` and ``resume`` then drive the progress tracker, with the polling
engine as its fallback.
"""

import asyncio
from typing import Any

from ..client.endpoints import KognoClient
from ..config.logging import get_logger
from ..config.settings import ClientSettings
from ..core.exceptions import APIError, JobCancelled, JobFailed
from ..storage.identity import IdentityStore
from ..storage.job_registry import JobRegistry
from .polling import PollingEngine, ProgressCallback, emit_progress
from .schemas import (
    JobHandle,
    JobState,
    JobStatus,
    ProgressUpdate,
    SubmitOutcome,
    extract_anon_id,
    extract_job_payload,
    maybe_parse_json,
    parse_job_state,
    resolve_job_id,
)
from .tracker import ProgressTracker

logger = get_logger(__name__)


def extract_access_token(payload: Any) -> str | None:
    """Credential material that comes back with a submission, if any"""
    if not isinstance(payload, dict):
        return None
    for container in (payload.get("session"), payload.get("auth"), payload):
        if isinstance(container, dict):
            token = container.get("access_token") or container.get("accessToken")
            if isinstance(token, str) and token.strip():
                return token.strip()
    return None


class JobSubmitter:
    """Submits jobs and follows them to a terminal result"""

    def __init__(
        self,
        client: KognoClient,
        identity: IdentityStore,
        tracker: ProgressTracker,
        settings: ClientSettings,
        registry: JobRegistry | None = None,
        polling: PollingEngine | None = None,
    ):
        self.client = client
        self.identity = identity
        self.tracker = tracker
        self.settings = settings
        self.registry = registry
        self.polling = polling or PollingEngine(
            client.get_job_status,
            identity=identity,
            auth_error_bailout=settings.auth_error_bailout,
            error_bailout=settings.error_bailout,
        )

    async def submit(self, kind: str, params: dict[str, Any] | None = None) -> SubmitOutcome:
        """Send the job request and classify the answer"""
        anon_id = self.identity.get_or_create_id()
        response = await self.client.submit_job(kind, anon_id, params)
        payload = response.data

        # Reconciliation may depend on the session, so credentials go first
        token = extract_access_token(payload)
        if token:
            self.client.api.set_bearer_token(token)
            logger.info("Applied session credentials from submission")

        anon_id = self.identity.reconcile(extract_anon_id(payload), anon_id)

        job_id = resolve_job_id(payload)
        if job_id is None:
            if response.is_accepted:
                raise APIError("Missing jobId from async response.", response.status_code)
            return SubmitOutcome(anon_id=anon_id, immediate=maybe_parse_json(payload))

        handle = JobHandle(job_id=job_id, kind=kind)
        job = extract_job_payload(payload) or {}
        if job.get("status") is None:
            job = {**job, "status": JobStatus.QUEUED.value}
        initial_status = parse_job_state({**job, "jobId": job_id})
        logger.info(
            "Job accepted",
            job_id=job_id,
            kind=kind,
            status=initial_status.status.value,
        )
        return SubmitOutcome(anon_id=anon_id, handle=handle, initial_status=initial_status)

    async def check_status_once(self, handle: JobHandle, anon_id: str) -> JobState:
        """One status fetch, adopting any canonical id the server returns"""
        state = await self.client.get_job_status(handle.kind, handle.job_id, anon_id)
        self.identity.reconcile(state.anon_id, anon_id)
        return state

    async def run(
        self,
        kind: str,
        params: dict[str, Any] | None = None,
        *,
        on_progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Any:
        """Submit a job and return its final result"""
        outcome = await self.submit(kind, params)
        if outcome.is_immediate:
            emit_progress(on_progress, ProgressUpdate(status=JobStatus.COMPLETED, progress=100))
            return outcome.immediate

        handle = outcome.handle
        if self.registry is not None:
            self.registry.upsert(
                outcome.anon_id,
                {"job_id": handle.job_id, "kind": kind, "status": outcome.initial_status.status.value},
            )
        emit_progress(on_progress, outcome.initial_status.to_progress())
        if outcome.initial_status.is_terminal:
            return self._finish_terminal(handle, outcome.anon_id, outcome.initial_status)

        return await self.track(handle, outcome.anon_id, on_progress=on_progress, cancel_event=cancel_event)

    async def resume(
        self,
        job_id: str,
        kind: str,
        *,
        on_progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Any:
        """Pick up tracking of a job submitted earlier"""
        anon_id = self.identity.get_or_create_id()
        handle = JobHandle(job_id=job_id, kind=kind)
        return await self.track(handle, anon_id, on_progress=on_progress, cancel_event=cancel_event)

    async def track(
        self,
        handle: JobHandle,
        anon_id: str,
        *,
        on_progress: ProgressCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Any:
        """Resolve a handle, keeping the registry in step with the outcome"""
        owner_id = anon_id

        async def check() -> JobState:
            return await self.check_status_once(handle, self.identity.get_or_create_id())

        async def fallback() -> Any:
            return await self.polling.poll(
                handle,
                self.identity.get_or_create_id(),
                on_progress=on_progress,
                delay_schedule=self.settings.delays_for(handle.kind),
                cancel_event=cancel_event,
            )

        try:
            result = await self.tracker.resolve(
                handle,
                anon_id,
                on_progress=on_progress,
                check_status_once=check,
                fallback=fallback,
                interval_ms=self.settings.tracker_interval_ms,
                idle_threshold_ms=self.settings.idle_threshold_ms,
                reconcile_delay_ms=self.settings.tracker_reconcile_delay_ms,
                subscribe_timeout_ms=self.settings.tracker_subscribe_timeout_ms,
                cancel_event=cancel_event,
            )
        except JobFailed:
            self._forget(owner_id, handle)
            raise
        except JobCancelled:
            logger.info("Job tracking cancelled; job stays resumable", job_id=handle.job_id)
            raise

        self._forget(owner_id, handle)
        return result

    def _finish_terminal(self, handle: JobHandle, owner_id: str, state: JobState) -> Any:
        self._forget(owner_id, handle)
        if state.status == JobStatus.FAILED:
            raise JobFailed(state.error or "Job failed.", handle.job_id)
        return state.result

    def _forget(self, owner_id: str, handle: JobHandle) -> None:
        if self.registry is None:
            return
        self.registry.remove(owner_id, handle.job_id)
        current = self.identity.get_or_create_id()
        if current != owner_id:
            self.registry.remove(current, handle.job_id)
