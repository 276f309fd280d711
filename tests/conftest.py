from collections.abc import AsyncGenerator
from typing import Any

import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from httpx import ASGITransport

from kogno_client.client.endpoints import KognoClient
from kogno_client.config.settings import ClientSettings
from kogno_client.jobs.realtime import BroadcastHub
from kogno_client.jobs.submitter import JobSubmitter
from kogno_client.jobs.tracker import ProgressTracker
from kogno_client.storage.identity import IdentityStore
from kogno_client.storage.job_registry import JobRegistry
from kogno_client.storage.local_store import MemoryStore
from kogno_client.storage.session import SessionStore

ANON_A = "3f0c2a1e-8b7d-4c5e-9a6f-1d2e3f4a5b6c"
ANON_B = "7a9b8c7d-6e5f-4a3b-8c2d-1e0f9a8b7c6d"


class FakeJobServer:
    """Scriptable stand-in for the jobs API"""

    def __init__(self):
        self.app = FastAPI()
        self.submissions: list[dict[str, Any]] = []
        self.status_requests: list[dict[str, Any]] = []
        self.submit_response: tuple[int, Any] = (200, {"topics": ["Limits"]})
        self.status_scripts: dict[str, list[tuple[int, Any]]] = {}

        @self.app.get("/api/healthz")
        async def healthz():
            return {"ok": True, "data": {"status": "healthy", "version": "test"}}

        @self.app.post("/api/onboarding/{kind}")
        async def submit(kind: str, request: Request):
            body = await request.json()
            self.submissions.append(
                {"kind": kind, "body": body, "headers": dict(request.headers)}
            )
            status_code, content = self.submit_response
            return JSONResponse(status_code=status_code, content=content)

        @self.app.get("/api/onboarding/{kind}/{job_id}")
        async def job_status(kind: str, job_id: str, request: Request):
            self.status_requests.append(
                {
                    "kind": kind,
                    "job_id": job_id,
                    "anon_id": request.query_params.get("anonId"),
                    "headers": dict(request.headers),
                }
            )
            script = self.status_scripts.get(job_id)
            if not script:
                return JSONResponse(status_code=404, content={"error": "Job not found"})
            status_code, content = script.pop(0) if len(script) > 1 else script[0]
            return JSONResponse(status_code=status_code, content=content)

    def script_status(self, job_id: str, *responses: tuple[int, Any]) -> None:
        """Queue responses for a job; the last one repeats"""
        self.status_scripts[job_id] = list(responses)


@pytest.fixture
def fake_server() -> FakeJobServer:
    return FakeJobServer()


@pytest.fixture
def settings(tmp_path) -> ClientSettings:
    """Settings with timings short enough for tests"""
    return ClientSettings(
        api_base_url="http://testserver",
        state_dir=tmp_path / "state",
        realtime_enabled=False,
        tracker_interval_ms=50,
        tracker_reconcile_delay_ms=20,
        tracker_subscribe_timeout_ms=500,
        topics_delays_ms=[5, 10],
        course_delays_ms=[5, 10, 15],
    )


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def identity(memory_store) -> IdentityStore:
    return IdentityStore(memory_store)


@pytest.fixture
def hub() -> BroadcastHub:
    return BroadcastHub()


@pytest.fixture
async def kogno_client(settings, fake_server) -> AsyncGenerator[KognoClient, None]:
    """Client wired to the fake server through ASGI"""
    transport = ASGITransport(app=fake_server.app)
    async with KognoClient(settings, transport=transport) as client:
        yield client


@pytest.fixture
def registry(memory_store) -> JobRegistry:
    return JobRegistry(memory_store)


@pytest.fixture
def sessions(memory_store, identity) -> SessionStore:
    return SessionStore(memory_store, identity)


@pytest.fixture
def make_submitter(kogno_client, identity, settings, registry):
    """Build a submitter with or without a push transport"""

    def _make(transport=None) -> JobSubmitter:
        return JobSubmitter(
            kogno_client,
            identity,
            ProgressTracker(transport),
            settings,
            registry=registry,
        )

    return _make
