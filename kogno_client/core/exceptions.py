from typing import Any

# Statuses that mean the job or the identity is gone and will not come back
TERMINAL_AUTH_STATUSES = frozenset({401, 403, 404})


class KognoClientError(Exception):
    """Base exception for the Kogno jobs client."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class APIError(KognoClientError):
    """Raised when the API answers with an error status or an unreadable body."""

    @property
    def is_terminal_auth(self) -> bool:
        return self.status_code in TERMINAL_AUTH_STATUSES


class TransportError(KognoClientError):
    """Raised when the API could not be reached at all."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, None, details)

    @property
    def is_terminal_auth(self) -> bool:
        return False


class JobFailed(KognoClientError):
    """Raised when the server reports the job as failed."""

    def __init__(self, message: str = "Job failed.", job_id: str | None = None):
        super().__init__(message, details={"job_id": job_id} if job_id else None)
        self.job_id = job_id


class JobCancelled(KognoClientError):
    """Raised when tracking is cancelled before the job settled."""

    def __init__(self, job_id: str | None = None):
        super().__init__(
            "Job tracking cancelled", details={"job_id": job_id} if job_id else None
        )
        self.job_id = job_id


class StorageError(KognoClientError):
    """Raised when the local state store cannot be written."""
