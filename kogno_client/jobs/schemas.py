"""
Job schemas and server response normalization.

Every server shape the client accepts is coerced here, at the transport
edge. Everything past this module works with ``JobState``, ``JobHandle``
and ``ProgressUpdate`` only.
"""

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class JobStatus(str, Enum):
    """Job status enumeration."""

    CREATED = "created"
    QUEUED = "queued"
    ACTIVE = "active"
    RETRY = "retry"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobHandle(BaseModel):
    """Server-assigned reference to an asynchronous job."""

    model_config = ConfigDict(frozen=True)

    job_id: str = Field(..., min_length=1, description="Opaque job identifier")
    kind: str = Field(..., description="Job kind, e.g. topics or course")


class ProgressUpdate(BaseModel):
    """Incremental progress forwarded to callers."""

    job_id: str | None = None
    status: JobStatus | None = None
    progress: int | None = Field(default=None, ge=0, le=100)
    message: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class JobState(BaseModel):
    """Snapshot of a job as reported by the server."""

    job_id: str | None = None
    status: JobStatus
    progress: int | None = Field(default=None, ge=0, le=100)
    message: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    error: str | None = None
    anon_id: str | None = None

    @model_validator(mode="after")
    def check_outcome_fields(self) -> "JobState":
        # Exactly one of result/error, and only once terminal
        if self.status == JobStatus.FAILED:
            self.result = None
            if not self.error:
                self.error = "Job failed."
        else:
            self.error = None
            if self.status != JobStatus.COMPLETED:
                self.result = None
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_progress(self) -> ProgressUpdate:
        return ProgressUpdate(
            job_id=self.job_id,
            status=self.status,
            progress=self.progress,
            message=self.message,
            meta=self.meta,
        )


class SubmitOutcome(BaseModel):
    """Either an immediate result or a handle to track."""

    anon_id: str
    immediate: Any = None
    handle: JobHandle | None = None
    initial_status: JobState | None = None

    @property
    def is_immediate(self) -> bool:
        return self.handle is None


# Edge normalization

JOB_ID_PATHS = [
    ("jobId",),
    ("job_id",),
    ("job", "id"),
    ("job", "job_id"),
    ("data", "jobId"),
    ("data", "job_id"),
    ("result", "jobId"),
    ("result", "job_id"),
]
ANON_ID_FIELDS = ("anonId", "anon_id", "anonUserId", "anon_user_id")


def _dig(payload: Any, path: tuple[str, ...]) -> Any:
    current = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _clean_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def resolve_job_id(payload: Any) -> str | None:
    """Find the job id in any of the shapes the server uses"""
    for path in JOB_ID_PATHS:
        candidate = _clean_str(_dig(payload, path))
        if candidate:
            return candidate
    return None


def extract_job_payload(payload: Any) -> dict[str, Any] | None:
    if not isinstance(payload, dict):
        return None
    for path in (("job",), ("data", "job"), ("result", "job")):
        job = _dig(payload, path)
        if isinstance(job, dict):
            return job
    return payload


def extract_anon_id(*payloads: Any) -> str | None:
    for payload in payloads:
        if not isinstance(payload, dict):
            continue
        for field in ANON_ID_FIELDS:
            candidate = _clean_str(payload.get(field))
            if candidate:
                return candidate
    return None


def job_error_message(job: dict[str, Any]) -> str | None:
    err = job.get("error")
    if not err:
        return None
    if isinstance(err, str):
        return err
    if isinstance(err, dict):
        for field in ("message", "error", "detail"):
            if isinstance(err.get(field), str):
                return err[field]
    return "Job failed."


def maybe_parse_json(value: Any) -> Any:
    """Decode results that arrive as serialized JSON documents"""
    if not isinstance(value, str):
        return value
    trimmed = value.strip()
    if not trimmed.startswith(("{", "[")):
        return value
    try:
        return json.loads(trimmed)
    except ValueError:
        return value


def parse_status(value: Any) -> JobStatus:
    """Map a raw status string; unknown values count as still running"""
    if isinstance(value, str):
        raw = value.strip().lower()
        aliases = {"pending": JobStatus.QUEUED, "running": JobStatus.ACTIVE}
        if raw in aliases:
            return aliases[raw]
        try:
            return JobStatus(raw)
        except ValueError:
            pass
    return JobStatus.ACTIVE


def parse_progress(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError):
        return None
    return max(0, min(100, number))


def parse_job_state(payload: Any) -> JobState:
    """Normalize a status response or a full-status broadcast"""
    job = extract_job_payload(payload)
    if job is None:
        raise ValueError("Invalid job status response.")

    error = job_error_message(job)
    status = parse_status(job.get("status"))
    if error:
        status = JobStatus.FAILED
    elif not status.is_terminal and job.get("finished_at"):
        status = JobStatus.COMPLETED

    meta = job.get("meta")
    return JobState(
        job_id=resolve_job_id(payload) or _clean_str(job.get("id")),
        status=status,
        progress=parse_progress(job.get("progress")),
        message=_clean_str(job.get("message")),
        meta=meta if isinstance(meta, dict) else {},
        result=maybe_parse_json(job.get("result")),
        error=error,
        anon_id=extract_anon_id(job, payload),
    )


def parse_progress_event(payload: Any) -> ProgressUpdate:
    """Normalize an incremental progress broadcast"""
    if not isinstance(payload, dict):
        return ProgressUpdate()
    meta = payload.get("meta")
    status = payload.get("status")
    return ProgressUpdate(
        job_id=resolve_job_id(payload),
        status=parse_status(status) if status is not None else None,
        progress=parse_progress(payload.get("progress")),
        message=_clean_str(payload.get("message")),
        meta=meta if isinstance(meta, dict) else {},
    )
