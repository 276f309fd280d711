"""Onboarding session payload and gate resource persistence"""

import time
from typing import Any, Protocol

from ..config.logging import get_logger
from ..core.exceptions import StorageError
from .identity import IdentityStore, is_valid_anon_id
from .local_store import KeyValueStore

logger = get_logger(__name__)

SESSION_KEY = "kogno_onboarding_session"
GATE_RESOURCE_KEY = "kogno_gate_course_id"
GATE_COOKIE_NAME = "kogno_gate_course_id"
GATE_COOKIE_MAX_AGE = 15 * 60
GATE_COOKIE_EXPIRES_KEY = "kogno_gate_cookie_expires_at"


class CookieSink(Protocol):
    def set_cookie(self, name: str, value: str, max_age: int, path: str = "/") -> None: ...

    def delete_cookie(self, name: str, path: str = "/") -> None: ...


class SessionStore:
    """Persists the onboarding session and the gate resource id across restarts"""

    def __init__(
        self,
        store: KeyValueStore,
        identity: IdentityStore,
        cookies: CookieSink | None = None,
    ):
        self.store = store
        self.identity = identity
        self.cookies = cookies

    def save(self, payload: dict[str, Any]) -> None:
        """Replace the stored session payload"""
        try:
            self.store.set_item(SESSION_KEY, dict(payload))
        except StorageError as e:
            logger.warning("Failed to persist session payload", error=e.message)

    def load(self) -> dict[str, Any] | None:
        payload = self.store.get_item(SESSION_KEY)
        if isinstance(payload, dict):
            return payload
        return None

    def clear(self) -> None:
        try:
            self.store.remove_item(SESSION_KEY)
        except StorageError as e:
            logger.warning("Failed to clear session payload", error=e.message)

    def start_new_session(self) -> tuple[str, str]:
        """Drop the session and rotate the anonymous id.

        Returns ``(old_id, new_id)`` so callers can discard anything that
        still references the old identity.
        """
        old_id = self.identity.get_or_create_id()
        self.clear()
        new_id = self.identity.regenerate(old_id)
        logger.info("Started new session", previous_id=old_id, anon_id=new_id)
        return old_id, new_id

    # Gate resource id

    def get_gate_resource_id(self) -> str | None:
        value = self.store.get_item(GATE_RESOURCE_KEY)
        if is_valid_anon_id(value):
            return value.strip()
        return None

    def set_gate_resource_id(self, resource_id: str) -> bool:
        """Persist and mirror the gate resource id; invalid ids are rejected"""
        if not is_valid_anon_id(resource_id):
            logger.warning("Rejected malformed gate resource id", resource_id=resource_id)
            return False
        resource_id = resource_id.strip()
        try:
            self.store.set_item(GATE_RESOURCE_KEY, resource_id)
            self.store.set_item(GATE_COOKIE_EXPIRES_KEY, int(time.time()) + GATE_COOKIE_MAX_AGE)
        except StorageError as e:
            logger.warning("Failed to persist gate resource id", error=e.message)
        if self.cookies is not None:
            self.cookies.set_cookie(
                GATE_COOKIE_NAME, resource_id, max_age=GATE_COOKIE_MAX_AGE, path="/"
            )
        return True

    def restore_gate_cookie(self) -> bool:
        """Re-apply a stored gate cookie for whatever lifetime it has left"""
        if self.cookies is None:
            return False
        resource_id = self.get_gate_resource_id()
        expires_at = self.store.get_item(GATE_COOKIE_EXPIRES_KEY)
        if not resource_id or not isinstance(expires_at, (int, float)):
            return False
        remaining = int(expires_at - time.time())
        if remaining <= 0:
            return False
        self.cookies.set_cookie(GATE_COOKIE_NAME, resource_id, max_age=remaining, path="/")
        return True

    def clear_gate_resource_id(self) -> None:
        try:
            self.store.remove_item(GATE_RESOURCE_KEY)
            self.store.remove_item(GATE_COOKIE_EXPIRES_KEY)
        except StorageError as e:
            logger.warning("Failed to clear gate resource id", error=e.message)
        if self.cookies is not None:
            self.cookies.delete_cookie(GATE_COOKIE_NAME, path="/")
