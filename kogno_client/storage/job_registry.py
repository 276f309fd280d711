"""Per-identity registry of in-flight jobs, used to resume tracking"""

from datetime import UTC, datetime
from typing import Any

from ..config.logging import get_logger
from ..core.exceptions import StorageError
from .local_store import KeyValueStore

logger = get_logger(__name__)

REGISTRY_KEY_PREFIX = "course_create_jobs:"


def _clean(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def normalize_entry(entry: Any) -> dict[str, str] | None:
    """Coerce a stored entry, returning None when it has no usable job id"""
    if not isinstance(entry, dict):
        return None
    job_id = _clean(entry.get("job_id"))
    if not job_id:
        return None

    normalized = {"job_id": job_id}
    for field in ("kind", "status", "resource_id", "title"):
        value = _clean(entry.get(field))
        if value:
            normalized[field] = value
    normalized["created_at"] = _clean(entry.get("created_at")) or datetime.now(
        UTC
    ).isoformat()
    return normalized


class JobRegistry:
    """Jobs registered for an owner survive restarts until they settle"""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def _key(owner_id: str) -> str:
        return f"{REGISTRY_KEY_PREFIX}{owner_id}"

    def list_jobs(self, owner_id: str) -> list[dict[str, str]]:
        if not owner_id:
            return []
        raw = self.store.get_item(self._key(owner_id))
        if not isinstance(raw, list):
            return []

        entries = [entry for entry in map(normalize_entry, raw) if entry]
        if len(entries) != len(raw):
            try:
                self.store.set_item(self._key(owner_id), entries)
            except StorageError as e:
                logger.warning("Failed to rewrite job registry", error=e.message)
        return entries

    def get(self, owner_id: str, job_id: str) -> dict[str, str] | None:
        for entry in self.list_jobs(owner_id):
            if entry["job_id"] == job_id:
                return entry
        return None

    def upsert(self, owner_id: str, entry: dict[str, Any]) -> list[dict[str, str]]:
        normalized = normalize_entry(entry)
        if not owner_id or not normalized:
            return self.list_jobs(owner_id)

        entries = self.list_jobs(owner_id)
        for index, existing in enumerate(entries):
            if existing["job_id"] == normalized["job_id"]:
                entries[index] = {
                    **existing,
                    **normalized,
                    "created_at": existing.get("created_at") or normalized["created_at"],
                }
                break
        else:
            entries.append(normalized)

        try:
            self.store.set_item(self._key(owner_id), entries)
        except StorageError as e:
            logger.warning("Failed to save job registry", error=e.message)
            return []
        return entries

    def remove(self, owner_id: str, job_id: str) -> list[dict[str, str]]:
        if not owner_id or not job_id:
            return []
        entries = [e for e in self.list_jobs(owner_id) if e["job_id"] != job_id]
        try:
            self.store.set_item(self._key(owner_id), entries)
        except StorageError as e:
            logger.warning("Failed to update job registry", error=e.message)
            return []
        return entries

    def clear(self, owner_id: str) -> None:
        try:
            self.store.remove_item(self._key(owner_id))
        except StorageError as e:
            logger.warning("Failed to clear job registry", error=e.message)
