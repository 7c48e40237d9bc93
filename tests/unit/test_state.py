from __future__ import annotations

import json

from clawguard.incident.state import (
    ConsumerState,
    LockdownState,
    LockdownStore,
    NetworkState,
    OAuthState,
    VaultState,
)
from clawguard.security import keystore as ks
from clawguard.security.keystore import MemoryStore


def test_labels() -> None:
    s = LockdownState.normal()
    assert s.label == "normal"
    assert s.is_normal

    sealed = s.with_(vault=VaultState.SEALED)
    assert sealed.label == "sealed"
    assert sealed.updated_at is not None
    assert s.vault == VaultState.UNSEALED

    partial = sealed.with_(network=NetworkState.BLOCKED)
    assert partial.label == "partial"
    assert partial.engaged == ["sealed", "blocked"]

    full = partial.with_(oauth=OAuthState.REVOKED, consumers=ConsumerState.STOPPED)
    assert full.label == "lockdown"


def test_equality_ignores_timestamp() -> None:
    assert LockdownState.normal().with_() == LockdownState.normal()


def test_store_roundtrip() -> None:
    backing = MemoryStore()
    store = LockdownStore(backing)
    assert store.load() == LockdownState.normal()

    state = LockdownState.normal().with_(vault=VaultState.SEALED, oauth=OAuthState.REVOKED)
    store.save(state)

    raw = json.loads(backing.get(ks.LOCKDOWN_STATE))
    assert raw["label"] == "partial"
    loaded = LockdownStore(backing).load()
    assert loaded == state
    assert loaded.updated_at == state.updated_at


def test_unreadable_state_falls_back_to_normal() -> None:
    backing = MemoryStore({ks.LOCKDOWN_STATE: "{not json"})
    assert LockdownStore(backing).load() == LockdownState.normal()

    backing.set(ks.LOCKDOWN_STATE, json.dumps({"vault": "melted"}))
    assert LockdownStore(backing).load() == LockdownState.normal()


class _ReadOnlyStore(MemoryStore):
    def set(self, name: str, value: str) -> None:
        raise PermissionError("Tier 0 env store is read-only")


def test_unwritable_store_keeps_state_in_memory() -> None:
    store = LockdownStore(_ReadOnlyStore())
    state = LockdownState.normal().with_(network=NetworkState.BLOCKED)
    store.save(state)
    assert store.load() == state
