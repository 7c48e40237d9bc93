"""clawguard.incident.state

Lockdown state. Four switches, not a ladder.

Each sub-state is independent and each has its own restore action. Full
lockdown is the conjunction of all four; anything in between is "partial".
The value is immutable: operations take a state and hand back a new one.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from clawguard.core.time import isoformat, parse_dt, utc_now
from clawguard.security.keystore import LOCKDOWN_STATE, CredentialStore, get_optional

logger = logging.getLogger(__name__)


class VaultState(StrEnum):
    UNSEALED = "unsealed"
    SEALED = "sealed"


class OAuthState(StrEnum):
    ACTIVE = "active"
    REVOKED = "revoked"


class ConsumerState(StrEnum):
    RUNNING = "running"
    STOPPED = "stopped"


class NetworkState(StrEnum):
    OPEN = "open"
    BLOCKED = "blocked"


@dataclass(frozen=True, slots=True)
class LockdownState:
    vault: VaultState = VaultState.UNSEALED
    oauth: OAuthState = OAuthState.ACTIVE
    consumers: ConsumerState = ConsumerState.RUNNING
    network: NetworkState = NetworkState.OPEN
    updated_at: datetime | None = field(default=None, compare=False)

    @classmethod
    def normal(cls) -> LockdownState:
        return cls()

    def with_(self, **changes: Any) -> LockdownState:
        changes.setdefault("updated_at", utc_now())
        return dataclasses.replace(self, **changes)

    @property
    def engaged(self) -> list[str]:
        out: list[str] = []
        if self.vault == VaultState.SEALED:
            out.append("sealed")
        if self.oauth == OAuthState.REVOKED:
            out.append("revoked")
        if self.consumers == ConsumerState.STOPPED:
            out.append("stopped")
        if self.network == NetworkState.BLOCKED:
            out.append("blocked")
        return out

    @property
    def label(self) -> str:
        engaged = self.engaged
        if not engaged:
            return "normal"
        if len(engaged) == 4:
            return "lockdown"
        if len(engaged) == 1:
            return engaged[0]
        return "partial"

    @property
    def is_normal(self) -> bool:
        return not self.engaged

    def to_dict(self) -> dict[str, Any]:
        return {
            "vault": str(self.vault),
            "oauth": str(self.oauth),
            "consumers": str(self.consumers),
            "network": str(self.network),
            "updated_at": isoformat(self.updated_at) if self.updated_at else None,
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LockdownState:
        updated = data.get("updated_at")
        return cls(
            vault=VaultState(data.get("vault", VaultState.UNSEALED)),
            oauth=OAuthState(data.get("oauth", OAuthState.ACTIVE)),
            consumers=ConsumerState(data.get("consumers", ConsumerState.RUNNING)),
            network=NetworkState(data.get("network", NetworkState.OPEN)),
            updated_at=parse_dt(updated) if updated else None,
        )


class LockdownStore:
    """Persists `LockdownState` as JSON in one credential-store slot.

    A store that cannot be written (e.g. env-only tier) degrades to an
    in-memory copy for the life of the process, with a warning.
    """

    def __init__(self, store: CredentialStore, *, slot: str = LOCKDOWN_STATE) -> None:
        self.store = store
        self.slot = slot
        self._memory: LockdownState | None = None

    def load(self) -> LockdownState:
        if self._memory is not None:
            return self._memory
        raw = get_optional(self.store, self.slot)
        if not raw:
            return LockdownState.normal()
        try:
            return LockdownState.from_dict(json.loads(raw))
        except (ValueError, TypeError) as e:
            logger.warning("lockdown_state_unreadable", extra={"error": str(e)})
            return LockdownState.normal()

    def save(self, state: LockdownState) -> None:
        payload = json.dumps(state.to_dict(), sort_keys=True)
        try:
            self.store.set(self.slot, payload)
        except Exception as e:  # noqa: BLE001 - keep the state in memory instead
            logger.warning("lockdown_state_not_persisted", extra={"error": f"{type(e).__name__}: {e}"})
            self._memory = state
            return
        self._memory = None
