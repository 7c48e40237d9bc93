"""clawguard.vault.models

Credential, token and secret value types.

Nothing in here knows how to talk HTTP. These are the shapes the session
manager, fetcher and cache pass between each other.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum

from clawguard.core.time import utc_now


class Role(StrEnum):
    AGENT = "agent"
    ADMIN = "admin"


READ = "read"
CREATE = "create"
UPDATE = "update"
DELETE = "delete"
LIST = "list"


@dataclass(frozen=True, slots=True)
class CapabilityProfile:
    role: Role
    capabilities: frozenset[str]
    can_list_metadata: bool = False

    def allows(self, capability: str) -> bool:
        return capability in self.capabilities


PROFILES: dict[Role, CapabilityProfile] = {
    Role.AGENT: CapabilityProfile(role=Role.AGENT, capabilities=frozenset({READ})),
    Role.ADMIN: CapabilityProfile(
        role=Role.ADMIN,
        capabilities=frozenset({CREATE, READ, UPDATE, DELETE, LIST}),
        can_list_metadata=True,
    ),
}


@dataclass(frozen=True, slots=True)
class AppRoleCredential:
    role: Role
    role_id: str
    secret_id: str = field(repr=False)

    def login_body(self) -> dict[str, str]:
        return {"role_id": self.role_id, "secret_id": self.secret_id}


@dataclass(frozen=True, slots=True)
class SessionToken:
    """A vault client token. Capabilities are fixed at issuance."""

    value: str = field(repr=False)
    issued_at: datetime
    ttl: timedelta
    max_ttl: timedelta
    profile: CapabilityProfile
    accessor: str = ""
    policies: tuple[str, ...] = ()

    @property
    def capabilities(self) -> frozenset[str]:
        return self.profile.capabilities

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + self.ttl

    @property
    def renewal_deadline(self) -> datetime:
        return self.issued_at + self.max_ttl

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utc_now()) >= self.expires_at

    def remaining(self, now: datetime | None = None) -> timedelta:
        return max(self.expires_at - (now or utc_now()), timedelta(0))


class SecretValue:
    """A fetched secret held in a mutable buffer so it can be zeroed.

    Python strings are immutable and interned at will; `reveal()` necessarily
    creates one, so callers should keep revealed copies as short-lived as the
    task allows.
    """

    __slots__ = ("_buf", "_wiped")

    def __init__(self, value: str | bytes) -> None:
        raw = value.encode("utf-8") if isinstance(value, str) else bytes(value)
        self._buf = bytearray(raw)
        self._wiped = False

    @property
    def wiped(self) -> bool:
        return self._wiped

    def reveal(self) -> str:
        if self._wiped:
            raise ValueError("secret value already wiped")
        return self._buf.decode("utf-8")

    def wipe(self) -> None:
        for i in range(len(self._buf)):
            self._buf[i] = 0
        self._buf = bytearray()
        self._wiped = True

    def __len__(self) -> int:
        return len(self._buf)

    def __repr__(self) -> str:
        state = "wiped" if self._wiped else f"{len(self._buf)} bytes"
        return f"SecretValue(<{state}>)"

    __str__ = __repr__


@dataclass(frozen=True, slots=True)
class SecretEntry:
    name: str
    path: str
    value: SecretValue
    version: int | None = None


@dataclass(frozen=True, slots=True)
class SealStatus:
    sealed: bool
    initialized: bool = True
    version: str = ""
    progress: int = 0
    threshold: int = 0
