from __future__ import annotations

from pathlib import Path

import pytest

from clawguard.security import keystore as ks
from clawguard.security.keystore import Keystore, KeystoreTier, MemoryStore, get_optional, slot_env_names


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(ks.MASTER_PASSWORD_ENV, raising=False)
    for slot in ks.KNOWN_SLOTS:
        for name in slot_env_names(slot):
            monkeypatch.delenv(name, raising=False)


def _file_store(temp_dir: Path, password: str | None = "correct horse") -> Keystore:
    return Keystore(
        path=temp_dir / "credentials.enc",
        password=password,
        enable_keyring=False,
    )


def test_slot_env_names_include_legacy_alias() -> None:
    assert slot_env_names(ks.AGENT_ROLE_ID) == ["CLAWGUARD_OPENBAO_AGENT_ROLE_ID", "BAO_ROLE_ID"]
    assert slot_env_names(ks.SEAL_TOKEN) == ["CLAWGUARD_OPENBAO_SEAL_TOKEN"]


def test_encrypted_file_roundtrip_keeps_values_off_disk(temp_dir: Path) -> None:
    store = _file_store(temp_dir)
    assert store.writable_tier == KeystoreTier.ENCRYPTED_FILE

    store.set(ks.UNSEAL_KEY, "unseal-plaintext-value")
    raw = (temp_dir / "credentials.enc").read_bytes()
    assert b"unseal-plaintext-value" not in raw

    reopened = _file_store(temp_dir)
    assert reopened.get(ks.UNSEAL_KEY) == "unseal-plaintext-value"
    assert reopened.tier_of(ks.UNSEAL_KEY) == KeystoreTier.ENCRYPTED_FILE


def test_wrong_password_is_rejected(temp_dir: Path) -> None:
    _file_store(temp_dir).set(ks.UNSEAL_KEY, "v")
    with pytest.raises(ValueError):
        _file_store(temp_dir, password="wrong")


def test_env_tier_wins_and_is_read_only(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = _file_store(temp_dir)
    store.set(ks.AGENT_ROLE_ID, "from-file")

    monkeypatch.setenv("BAO_ROLE_ID", "from-alias")
    assert store.get(ks.AGENT_ROLE_ID) == "from-alias"

    monkeypatch.setenv("CLAWGUARD_OPENBAO_AGENT_ROLE_ID", "from-env")
    assert store.get(ks.AGENT_ROLE_ID) == "from-env"
    assert store.tier_of(ks.AGENT_ROLE_ID) == KeystoreTier.ENV

    with pytest.raises(PermissionError):
        store.set(ks.AGENT_ROLE_ID, "x", tier=KeystoreTier.ENV)


def test_no_writable_tier(temp_dir: Path) -> None:
    store = _file_store(temp_dir, password=None)
    assert store.writable_tier is None
    with pytest.raises(RuntimeError):
        store.set(ks.UNSEAL_KEY, "v")
    with pytest.raises(KeyError):
        store.get(ks.UNSEAL_KEY)
    assert store.get_optional(ks.UNSEAL_KEY) is None


def test_master_password_from_env(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(ks.MASTER_PASSWORD_ENV, "from-env-password")
    store = _file_store(temp_dir, password=None)
    store.set(ks.PROXY_KEY, "nango")
    assert _file_store(temp_dir, password="from-env-password").get(ks.PROXY_KEY) == "nango"


def test_remove_key_and_slot_status(temp_dir: Path) -> None:
    store = _file_store(temp_dir)
    store.set(ks.AGENT_ROLE_ID, "r")
    store.set(ks.AGENT_SECRET_ID, "s")

    status = {s.name: s for s in store.slot_status()}
    assert status[ks.AGENT_ROLE_ID].configured
    assert status[ks.AGENT_ROLE_ID].tier == KeystoreTier.ENCRYPTED_FILE
    assert not status[ks.UNSEAL_KEY].configured
    assert "slots=2/" in store.describe()

    assert store.remove_key(ks.AGENT_ROLE_ID) is True
    assert store.remove_key(ks.AGENT_ROLE_ID) is False
    assert store.get_optional(ks.AGENT_ROLE_ID) is None


def test_memory_store() -> None:
    store = MemoryStore({"a": "1"})
    assert store.get("a") == "1"
    assert get_optional(store, "missing") is None
    store.set("b", "2")
    assert store.remove_key("b") is True
    assert store.get_optional("b") is None
    with pytest.raises(KeyError):
        store.get("b")
