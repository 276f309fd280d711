"""Tests for the status polling engine"""

import asyncio

import pytest

from conftest import ANON_A, ANON_B
from kogno_client.core.exceptions import APIError, JobCancelled, JobFailed, TransportError
from kogno_client.jobs.polling import (
    PollingEngine,
    cancellable_sleep,
    emit_progress,
    schedule_delay,
)
from kogno_client.jobs.schemas import JobHandle, JobState, JobStatus, ProgressUpdate
from kogno_client.storage.identity import ANON_ID_KEY, IdentityStore
from kogno_client.storage.local_store import MemoryStore

HANDLE = JobHandle(job_id="job-1", kind="course")


class RecordingSleeper:
    def __init__(self):
        self.waits = []

    async def __call__(self, seconds, cancel_event=None):
        self.waits.append(seconds)


class ScriptedFetcher:
    """Returns or raises the scripted items in order, repeating the last"""

    def __init__(self, *items):
        self.items = list(items)
        self.calls = []

    async def __call__(self, kind, job_id, anon_id):
        self.calls.append((kind, job_id, anon_id))
        item = self.items.pop(0) if len(self.items) > 1 else self.items[0]
        if isinstance(item, Exception):
            raise item
        return item


def active(progress=None, anon_id=None):
    return JobState(job_id="job-1", status=JobStatus.ACTIVE, progress=progress, anon_id=anon_id)


def completed(result):
    return JobState(job_id="job-1", status=JobStatus.COMPLETED, result=result)


def test_schedule_delay_plateaus():
    schedule = [1000, 1500, 2000]
    assert [schedule_delay(schedule, n) for n in range(5)] == [1000, 1500, 2000, 2000, 2000]


async def test_waits_follow_schedule_and_plateau():
    fetcher = ScriptedFetcher(*[active(progress=n * 10) for n in range(5)], completed({"ok": 1}))
    sleeper = RecordingSleeper()
    updates = []
    engine = PollingEngine(fetcher, sleep=sleeper)

    result = await engine.poll(
        HANDLE, ANON_A, on_progress=updates.append, delay_schedule=[1000, 1500, 2000]
    )

    assert result == {"ok": 1}
    assert sleeper.waits == [1.0, 1.5, 2.0, 2.0, 2.0]
    assert len(fetcher.calls) == 6
    assert fetcher.calls[0] == ("course", "job-1", ANON_A)
    assert [u.progress for u in updates[:5]] == [0, 10, 20, 30, 40]
    assert updates[-1].status == JobStatus.COMPLETED


async def test_failed_job_raises_with_server_message():
    fetcher = ScriptedFetcher(
        JobState(job_id="job-1", status=JobStatus.FAILED, error="Quota exceeded")
    )
    engine = PollingEngine(fetcher, sleep=RecordingSleeper())

    with pytest.raises(JobFailed) as exc_info:
        await engine.poll(HANDLE, ANON_A)

    assert exc_info.value.message == "Quota exceeded"
    assert exc_info.value.job_id == "job-1"


async def test_not_found_bails_out_after_two_attempts():
    fetcher = ScriptedFetcher(APIError("Job not found", 404))
    engine = PollingEngine(fetcher, sleep=RecordingSleeper())

    with pytest.raises(APIError) as exc_info:
        await engine.poll(HANDLE, ANON_A)

    assert exc_info.value.status_code == 404
    assert len(fetcher.calls) == 2


async def test_network_errors_bail_out_after_five_attempts():
    fetcher = ScriptedFetcher(TransportError("Connection failed: refused"))
    engine = PollingEngine(fetcher, sleep=RecordingSleeper())

    with pytest.raises(TransportError):
        await engine.poll(HANDLE, ANON_A)

    assert len(fetcher.calls) == 5


async def test_successful_fetch_resets_error_count():
    boom = APIError("Bad gateway", 502)
    fetcher = ScriptedFetcher(boom, boom, boom, boom, active(), boom, boom, boom, boom, completed(1))
    engine = PollingEngine(fetcher, sleep=RecordingSleeper())

    assert await engine.poll(HANDLE, ANON_A) == 1
    assert len(fetcher.calls) == 10


async def test_canonical_id_is_adopted_for_later_fetches():
    store = MemoryStore({ANON_ID_KEY: ANON_A})
    identity = IdentityStore(store)
    fetcher = ScriptedFetcher(active(anon_id=ANON_B), completed("done"))
    engine = PollingEngine(fetcher, identity=identity, sleep=RecordingSleeper())

    assert await engine.poll(HANDLE, ANON_A) == "done"

    assert [call[2] for call in fetcher.calls] == [ANON_A, ANON_B]
    assert identity.get_or_create_id() == ANON_B


async def test_cancel_during_wait_raises_job_cancelled():
    fetcher = ScriptedFetcher(active())
    cancel_event = asyncio.Event()
    engine = PollingEngine(fetcher)

    task = asyncio.create_task(
        engine.poll(HANDLE, ANON_A, delay_schedule=[60_000], cancel_event=cancel_event)
    )
    await asyncio.sleep(0.01)
    cancel_event.set()

    with pytest.raises(JobCancelled) as exc_info:
        await asyncio.wait_for(task, timeout=1)

    assert exc_info.value.job_id == "job-1"
    assert len(fetcher.calls) == 1


async def test_cancel_before_first_fetch():
    fetcher = ScriptedFetcher(active())
    cancel_event = asyncio.Event()
    cancel_event.set()
    engine = PollingEngine(fetcher, sleep=RecordingSleeper())

    with pytest.raises(JobCancelled):
        await engine.poll(HANDLE, ANON_A, cancel_event=cancel_event)

    assert fetcher.calls == []


async def test_cancellable_sleep_returns_after_timeout():
    await cancellable_sleep(0.01, asyncio.Event())


def test_progress_callback_errors_are_contained():
    def broken(update):
        raise RuntimeError("display went away")

    emit_progress(broken, ProgressUpdate(job_id="job-1", progress=5))
