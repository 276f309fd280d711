"""Tests for anonymous identity persistence and reconciliation"""

from unittest.mock import patch

from conftest import ANON_A, ANON_B
from kogno_client.storage.identity import (
    ANON_ID_KEY,
    IdentityStore,
    is_valid_anon_id,
)
from kogno_client.storage.local_store import FileStore, MemoryStore


def test_is_valid_anon_id():
    assert is_valid_anon_id(ANON_A)
    assert is_valid_anon_id(ANON_A.upper())
    assert not is_valid_anon_id("not-a-uuid")
    assert not is_valid_anon_id(None)
    assert not is_valid_anon_id(42)
    # Version 1 UUID
    assert not is_valid_anon_id("6ba7b810-9dad-11d1-80b4-00c04fd430c8")


def test_get_or_create_generates_and_persists(memory_store):
    identity = IdentityStore(memory_store)

    anon_id = identity.get_or_create_id()

    assert is_valid_anon_id(anon_id)
    assert memory_store.get_item(ANON_ID_KEY) == anon_id
    assert identity.get_or_create_id() == anon_id


def test_get_or_create_replaces_invalid_value():
    store = MemoryStore({ANON_ID_KEY: "garbage"})
    identity = IdentityStore(store)

    anon_id = identity.get_or_create_id()

    assert anon_id != "garbage"
    assert is_valid_anon_id(anon_id)
    assert store.get_item(ANON_ID_KEY) == anon_id


def test_get_or_create_reads_existing_value():
    identity = IdentityStore(MemoryStore({ANON_ID_KEY: ANON_A}))
    assert identity.get_or_create_id() == ANON_A


def test_unwritable_store_keeps_id_in_memory():
    store = MemoryStore(writable=False)
    identity = IdentityStore(store)

    anon_id = identity.get_or_create_id()

    assert is_valid_anon_id(anon_id)
    assert store.get_item(ANON_ID_KEY) is None
    assert identity.get_or_create_id() == anon_id


def test_reconcile_adopts_valid_differing_id():
    identity = IdentityStore(MemoryStore({ANON_ID_KEY: ANON_A}))

    assert identity.reconcile(ANON_B, ANON_A) == ANON_B
    assert identity.get_or_create_id() == ANON_B


def test_reconcile_ignores_invalid_or_equal_ids():
    store = MemoryStore({ANON_ID_KEY: ANON_A})
    identity = IdentityStore(store)

    assert identity.reconcile(None, ANON_A) == ANON_A
    assert identity.reconcile("bogus", ANON_A) == ANON_A
    assert identity.reconcile(ANON_A, ANON_A) == ANON_A
    assert store.get_item(ANON_ID_KEY) == ANON_A


def test_regenerate_always_yields_a_new_id():
    identity = IdentityStore(MemoryStore({ANON_ID_KEY: ANON_A}))

    with patch(
        "kogno_client.storage.identity.generate_anon_id",
        side_effect=[ANON_A, ANON_A, ANON_B],
    ):
        new_id = identity.regenerate()

    assert new_id == ANON_B
    assert identity.get_or_create_id() == ANON_B


def test_identity_survives_restart(tmp_path):
    first = IdentityStore(FileStore(tmp_path))
    anon_id = first.get_or_create_id()

    second = IdentityStore(FileStore(tmp_path))
    assert second.get_or_create_id() == anon_id
