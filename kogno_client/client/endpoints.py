"""API Endpoint Wrappers - Type-safe API calls"""

from typing import Any
from urllib.parse import quote

import httpx

from ..config.settings import ClientSettings, get_settings
from ..jobs.schemas import JobState, parse_job_state
from ..core.exceptions import APIError
from .base import APIClient, APIResponse


class KognoClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        settings: ClientSettings | None = None,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        self.api = APIClient(
            base_url=base_url or self.settings.api_base_url,
            timeout=self.settings.timeout,
            headers=headers,
            transport=transport,
        )

    async def __aenter__(self):
        await self.api.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.api.__aexit__(exc_type, exc_val, exc_tb)

    # Health Check
    async def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        response = await self.api.get(f"{self.settings.api_prefix}/healthz")
        return response.data if isinstance(response.data, dict) else {}

    # Jobs Endpoints
    async def submit_job(
        self, kind: str, anon_id: str, params: dict[str, Any] | None = None
    ) -> APIResponse:
        """Submit a job; the body is either a result or an async acknowledgement"""
        data = {**(params or {}), "anonId": anon_id}
        return await self.api.post(self.settings.endpoint_for(kind), data)

    async def get_job_status(self, kind: str, job_id: str, anon_id: str) -> JobState:
        """Fetch one status snapshot for a job"""
        path = f"{self.settings.endpoint_for(kind)}/{quote(job_id, safe='')}"
        response = await self.api.get(path, params={"anonId": anon_id})
        try:
            state = parse_job_state(response.data)
        except ValueError as e:
            raise APIError(str(e), response.status_code) from None
        if state.job_id is None:
            state = state.model_copy(update={"job_id": job_id})
        return state
