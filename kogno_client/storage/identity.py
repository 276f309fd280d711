"""Anonymous identity persistence and reconciliation"""

import re
import uuid

from ..config.logging import get_logger
from ..core.exceptions import StorageError
from .local_store import KeyValueStore

logger = get_logger(__name__)

ANON_ID_KEY = "kogno_anon_id"

_UUID_V4_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_valid_anon_id(value: object) -> bool:
    """True for version-4 UUID strings"""
    return isinstance(value, str) and bool(_UUID_V4_RE.match(value.strip()))


def generate_anon_id() -> str:
    return str(uuid.uuid4())


class IdentityStore:
    """
    Client-held anonymous identity.

    The stored id is read on every access so that concurrent resolutions
    observe the latest reconciled value. When the backing store refuses
    writes, the id lives in memory for the lifetime of this object.
    """

    def __init__(self, store: KeyValueStore, key: str = ANON_ID_KEY):
        self.store = store
        self.key = key
        self._ephemeral_id: str | None = None

    def _read(self) -> str | None:
        if self._ephemeral_id:
            return self._ephemeral_id
        value = self.store.get_item(self.key)
        if is_valid_anon_id(value):
            return value.strip()
        return None

    def _persist(self, anon_id: str) -> str:
        try:
            self.store.set_item(self.key, anon_id)
            self._ephemeral_id = None
        except StorageError as e:
            logger.warning("Anonymous id kept in memory only", error=e.message)
            self._ephemeral_id = anon_id
        return anon_id

    def get_or_create_id(self) -> str:
        """Return the stored id, generating and persisting one if absent or invalid"""
        current = self._read()
        if current:
            return current
        anon_id = generate_anon_id()
        logger.info("Created anonymous id", anon_id=anon_id)
        return self._persist(anon_id)

    def reconcile(self, candidate_id: str | None, current_id: str) -> str:
        """Adopt a server-issued id when it is valid and differs from ours"""
        if not is_valid_anon_id(candidate_id):
            return current_id
        candidate_id = candidate_id.strip()
        if candidate_id == current_id:
            return current_id
        logger.info(
            "Adopting canonical anonymous id",
            previous_id=current_id,
            anon_id=candidate_id,
        )
        return self._persist(candidate_id)

    def regenerate(self, previous_id: str | None = None) -> str:
        """Force a fresh id that differs from the previous one"""
        previous_id = previous_id or self._read()
        anon_id = generate_anon_id()
        while anon_id == previous_id:
            anon_id = generate_anon_id()
        return self._persist(anon_id)
