"""Tests for the per-identity job registry"""

from conftest import ANON_A, ANON_B
from kogno_client.storage.job_registry import (
    REGISTRY_KEY_PREFIX,
    JobRegistry,
    normalize_entry,
)
from kogno_client.storage.local_store import MemoryStore


def test_normalize_entry():
    entry = normalize_entry(
        {"job_id": " job-1 ", "kind": "course", "title": "", "extra": "dropped"}
    )

    assert entry["job_id"] == "job-1"
    assert entry["kind"] == "course"
    assert "title" not in entry
    assert "extra" not in entry
    assert entry["created_at"]


def test_normalize_entry_rejects_missing_job_id():
    assert normalize_entry({"kind": "course"}) is None
    assert normalize_entry({"job_id": "   "}) is None
    assert normalize_entry("job-1") is None


def test_upsert_and_list(registry, memory_store):
    registry.upsert(ANON_A, {"job_id": "job-1", "kind": "course", "status": "queued"})
    registry.upsert(ANON_A, {"job_id": "job-2", "kind": "topics"})

    jobs = registry.list_jobs(ANON_A)

    assert [job["job_id"] for job in jobs] == ["job-1", "job-2"]
    assert memory_store.get_item(f"{REGISTRY_KEY_PREFIX}{ANON_A}") == jobs
    assert registry.list_jobs(ANON_B) == []


def test_upsert_updates_in_place_and_keeps_created_at(registry):
    registry.upsert(
        ANON_A,
        {"job_id": "job-1", "status": "queued", "created_at": "2024-01-01T00:00:00+00:00"},
    )
    registry.upsert(ANON_A, {"job_id": "job-1", "status": "active", "title": "Calculus"})

    jobs = registry.list_jobs(ANON_A)

    assert len(jobs) == 1
    assert jobs[0]["status"] == "active"
    assert jobs[0]["title"] == "Calculus"
    assert jobs[0]["created_at"] == "2024-01-01T00:00:00+00:00"


def test_get_and_remove(registry):
    registry.upsert(ANON_A, {"job_id": "job-1"})
    registry.upsert(ANON_A, {"job_id": "job-2"})

    assert registry.get(ANON_A, "job-2")["job_id"] == "job-2"
    assert registry.get(ANON_A, "job-9") is None

    remaining = registry.remove(ANON_A, "job-1")

    assert [job["job_id"] for job in remaining] == ["job-2"]
    assert registry.get(ANON_A, "job-1") is None


def test_list_drops_malformed_entries_and_rewrites():
    store = MemoryStore(
        {f"{REGISTRY_KEY_PREFIX}{ANON_A}": [{"job_id": "job-1"}, {"bogus": True}, "x"]}
    )
    registry = JobRegistry(store)

    jobs = registry.list_jobs(ANON_A)

    assert [job["job_id"] for job in jobs] == ["job-1"]
    assert len(store.get_item(f"{REGISTRY_KEY_PREFIX}{ANON_A}")) == 1


def test_clear(registry):
    registry.upsert(ANON_A, {"job_id": "job-1"})
    registry.clear(ANON_A)
    assert registry.list_jobs(ANON_A) == []


def test_read_only_store_degrades_quietly():
    registry = JobRegistry(MemoryStore(writable=False))

    assert registry.upsert(ANON_A, {"job_id": "job-1"}) == []
    assert registry.remove(ANON_A, "job-1") == []
    registry.clear(ANON_A)
