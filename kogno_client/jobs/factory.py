"""Wiring for a complete job-tracking context"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx

from ..client.endpoints import KognoClient
from ..config.settings import ClientSettings, get_settings
from ..storage.identity import IdentityStore
from ..storage.job_registry import JobRegistry
from ..storage.local_store import FileStore, KeyValueStore
from ..storage.session import SessionStore
from .realtime import PushTransport, SSEPushTransport
from .submitter import JobSubmitter
from .tracker import ProgressTracker


@dataclass
class JobContext:
    settings: ClientSettings
    client: KognoClient
    store: KeyValueStore
    identity: IdentityStore
    sessions: SessionStore
    registry: JobRegistry
    submitter: JobSubmitter


@asynccontextmanager
async def open_job_context(
    settings: ClientSettings | None = None,
    *,
    store: KeyValueStore | None = None,
    push_transport: PushTransport | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[JobContext]:
    """Build every collaborator from settings and close the HTTP client on exit"""
    settings = settings or get_settings()
    store = store if store is not None else FileStore(settings.state_dir)

    async with KognoClient(settings, transport=http_transport) as client:
        if push_transport is None and settings.realtime_enabled:
            push_transport = SSEPushTransport(client.api.client, settings.realtime_path)

        identity = IdentityStore(store)
        sessions = SessionStore(store, identity, cookies=client.api)
        sessions.restore_gate_cookie()
        registry = JobRegistry(store)
        submitter = JobSubmitter(
            client,
            identity,
            ProgressTracker(push_transport),
            settings,
            registry=registry,
        )
        yield JobContext(
            settings=settings,
            client=client,
            store=store,
            identity=identity,
            sessions=sessions,
            registry=registry,
            submitter=submitter,
        )
