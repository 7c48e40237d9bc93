"""clawguard.security.keystore

Bootstrap credentials for the broker: the AppRole pairs, the unseal key, the
seal token, the OAuth proxy key and the persisted lockdown state. Task secret
values are never stored here.

Three tiers, read in order: environment variables, a Fernet-sealed file keyed
by a master password, and the OS keyring.
"""

from __future__ import annotations

import base64
import contextlib
import json
import os
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from clawguard.core.config import KeystoreConfig


class KeystoreTier(IntEnum):
    ENV = 0
    ENCRYPTED_FILE = 1
    KEYRING = 2


_ITERATIONS = 480_000
_SALT_SIZE = 32
_DEFAULT_DIR = Path.home() / ".clawguard" / "secrets"
_SERVICE_NAME = "pgpclaw-openbao"
MASTER_PASSWORD_ENV = "CLAWGUARD_MASTER_PASSWORD"

# Known slots. Names match the Keychain accounts the bootstrap step writes.
AGENT_ROLE_ID = "openbao-agent-role-id"
AGENT_SECRET_ID = "openbao-agent-secret-id"
ADMIN_ROLE_ID = "openbao-admin-role-id"
ADMIN_SECRET_ID = "openbao-admin-secret-id"
UNSEAL_KEY = "openbao-unseal-key"
SEAL_TOKEN = "openbao-seal-token"
PROXY_KEY = "nango-secret-key"
LOCKDOWN_STATE = "lockdown-state"

KNOWN_SLOTS: tuple[str, ...] = (
    AGENT_ROLE_ID,
    AGENT_SECRET_ID,
    ADMIN_ROLE_ID,
    ADMIN_SECRET_ID,
    UNSEAL_KEY,
    SEAL_TOKEN,
    PROXY_KEY,
)

# Tier 0 aliases kept for containers started with the runner's env contract.
ENV_ALIASES: dict[str, str] = {
    AGENT_ROLE_ID: "BAO_ROLE_ID",
    AGENT_SECRET_ID: "BAO_SECRET_ID",
    UNSEAL_KEY: "UNSEAL_KEY",
    PROXY_KEY: "NANGO_SECRET_KEY",
}


class CredentialStore(Protocol):
    """What the broker needs from a store. Tests use a dict-backed fake."""

    def get(self, name: str) -> str: ...

    def set(self, name: str, value: str) -> None: ...


@dataclass(frozen=True)
class SlotStatus:
    name: str
    configured: bool
    tier: KeystoreTier | None


def slot_env_names(name: str) -> list[str]:
    """Environment variable names consulted for a slot, in lookup order."""

    canonical = "CLAWGUARD_" + name.upper().replace("-", "_").replace(".", "_")
    alias = ENV_ALIASES.get(name)
    return [canonical, alias] if alias else [canonical]


def _master_password(explicit: str | None) -> str | None:
    return explicit if explicit is not None else (os.environ.get(MASTER_PASSWORD_ENV) or None)


def _fernet_for(password: str, salt: bytes) -> Fernet:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=_ITERATIONS)
    return Fernet(base64.urlsafe_b64encode(kdf.derive(password.encode("utf-8"))))


class _EnvSlots:
    """Tier 0. Read-only."""

    def lookup(self, name: str) -> str | None:
        for env_name in slot_env_names(name):
            value = os.environ.get(env_name)
            if value:
                return value
        return None

    def store(self, name: str, value: str) -> None:
        raise PermissionError(f"{name}: environment tier is read-only")

    def discard(self, name: str) -> bool:
        return False


class _SealedFile:
    """Tier 1. One file: a random salt followed by a Fernet token over the slot map.

    The key is derived once per process; PBKDF2 at this iteration count is
    too slow to repeat on every write.
    """

    def __init__(self, path: Path, password: str) -> None:
        self.path = Path(path)
        self._password = password
        self._salt: bytes | None = None
        self._cipher: Fernet | None = None
        self._slots: dict[str, str] = self._read()

    def _fernet(self) -> Fernet:
        if self._cipher is None:
            if self._salt is None:
                self._salt = os.urandom(_SALT_SIZE)
            self._cipher = _fernet_for(self._password, self._salt)
        return self._cipher

    def _read(self) -> dict[str, str]:
        try:
            blob = self.path.read_bytes()
        except FileNotFoundError:
            return {}
        self._salt, token = blob[:_SALT_SIZE], blob[_SALT_SIZE:]
        try:
            plain = self._fernet().decrypt(token)
        except InvalidToken as e:
            raise ValueError(f"{self.path}: wrong master password or corrupted file") from e
        return {str(k): str(v) for k, v in json.loads(plain).items()}

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with contextlib.suppress(OSError):
            os.chmod(self.path.parent, 0o700)
        token = self._fernet().encrypt(json.dumps(self._slots, sort_keys=True).encode("utf-8"))
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_bytes(self._salt + token)
        with contextlib.suppress(OSError):
            os.chmod(tmp, 0o600)
        os.replace(tmp, self.path)

    def lookup(self, name: str) -> str | None:
        return self._slots.get(name)

    def store(self, name: str, value: str) -> None:
        self._slots[name] = value
        self._write()

    def discard(self, name: str) -> bool:
        if self._slots.pop(name, None) is None:
            return False
        self._write()
        return True


class _Keychain:
    """Tier 2. Whatever `keyring` resolves to on this host."""

    def __init__(self, service: str) -> None:
        import keyring
        from keyring.errors import PasswordDeleteError

        if type(keyring.get_keyring()).__module__.startswith(("keyring.backends.fail", "keyring.backends.null")):
            raise RuntimeError("no usable keyring backend")
        self._keyring = keyring
        self._not_found = PasswordDeleteError
        self.service = service

    def lookup(self, name: str) -> str | None:
        return self._keyring.get_password(self.service, name)

    def store(self, name: str, value: str) -> None:
        self._keyring.set_password(self.service, name, value)

    def discard(self, name: str) -> bool:
        try:
            self._keyring.delete_password(self.service, name)
        except self._not_found:
            return False
        return True


class Keystore:
    """Tiered store used by the CLI and the runner.

    Reads walk env, then the sealed file, then the keyring, so an env override
    always wins inside a container. Writes prefer the keyring and fall back to
    the sealed file when a master password is known.
    """

    @classmethod
    def from_config(cls, cfg: KeystoreConfig) -> Keystore:
        return cls(
            path=cfg.dir / "credentials.enc",
            enable_keyring=cfg.enable_keyring,
            keyring_service=cfg.service_name,
        )

    def __init__(
        self,
        *,
        path: Path = _DEFAULT_DIR / "credentials.enc",
        password: str | None = None,
        enable_keyring: bool = True,
        keyring_service: str = _SERVICE_NAME,
    ):
        self._path = Path(path)
        self._password = _master_password(password)
        self._tiers: dict[KeystoreTier, _EnvSlots | _SealedFile | _Keychain] = {KeystoreTier.ENV: _EnvSlots()}
        if self._password is not None:
            self._tiers[KeystoreTier.ENCRYPTED_FILE] = _SealedFile(self._path, self._password)
        if enable_keyring:
            try:
                self._tiers[KeystoreTier.KEYRING] = _Keychain(keyring_service)
            except Exception:  # noqa: BLE001 - any keyring import or backend failure means tier 2 is absent
                pass

    @property
    def writable_tier(self) -> KeystoreTier | None:
        for tier in (KeystoreTier.KEYRING, KeystoreTier.ENCRYPTED_FILE):
            if tier in self._tiers:
                return tier
        return None

    def _find(self, name: str) -> tuple[KeystoreTier, str] | None:
        for tier in sorted(self._tiers):
            value = self._tiers[tier].lookup(name)
            if value is not None:
                return tier, value
        return None

    def get(self, name: str) -> str:
        hit = self._find(name)
        if hit is None:
            raise KeyError(name)
        return hit[1]

    def get_optional(self, name: str) -> str | None:
        hit = self._find(name)
        return None if hit is None else hit[1]

    def tier_of(self, name: str) -> KeystoreTier | None:
        hit = self._find(name)
        return None if hit is None else hit[0]

    def set(self, name: str, value: str, tier: KeystoreTier | None = None) -> None:
        target = self.writable_tier if tier is None else KeystoreTier(tier)
        if target is None:
            raise RuntimeError(f"no writable tier: set {MASTER_PASSWORD_ENV} or install a keyring backend")
        backend = self._tiers.get(target)
        if backend is None:
            raise RuntimeError(f"tier {target.name.lower()} is not available")
        backend.store(name, value)

    def remove_key(self, name: str) -> bool:
        removed = [backend.discard(name) for backend in self._tiers.values()]
        return any(removed)

    def slot_status(self) -> list[SlotStatus]:
        out = []
        for name in KNOWN_SLOTS:
            tier = self.tier_of(name)
            out.append(SlotStatus(name=name, configured=tier is not None, tier=tier))
        return out

    def describe(self) -> str:
        """One-line summary for `status` and `keys list`."""

        configured = sum(s.configured for s in self.slot_status())
        tiers = ",".join(t.name.lower() for t in sorted(self._tiers))
        return f"Keystore(slots={configured}/{len(KNOWN_SLOTS)}, tiers={tiers})"


class MemoryStore:
    """Dict-backed store. Used when nothing persistent is configured, and in tests."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, name: str) -> str:
        try:
            return self._data[name]
        except KeyError:
            raise KeyError(name) from None

    def get_optional(self, name: str) -> str | None:
        return self._data.get(name)

    def set(self, name: str, value: str) -> None:
        self._data[name] = value

    def remove_key(self, name: str) -> bool:
        return self._data.pop(name, None) is not None

    def describe(self) -> str:
        return f"MemoryStore(slots={len(self._data)})"


def get_optional(store: CredentialStore, name: str) -> str | None:
    try:
        return store.get(name)
    except KeyError:
        return None
