"""clawguard.cli_keys

`clawguard keys {list,set,remove}`. Output reports where a slot lives, never
what it holds.
"""

from __future__ import annotations

import json
import sys
from dataclasses import asdict, dataclass
from typing import Any

from clawguard.security.keystore import KNOWN_SLOTS, Keystore, MemoryStore, get_optional

Store = Keystore | MemoryStore


@dataclass(frozen=True)
class KeyRow:
    name: str
    configured: bool
    tier: str | None

    def describe(self) -> str:
        if not self.configured:
            return "not set"
        return f"configured ({self.tier})" if self.tier else "configured"


def _rows(keystore: Store) -> list[KeyRow]:
    if isinstance(keystore, Keystore):
        return [KeyRow(s.name, s.configured, s.tier.name.lower() if s.tier is not None else None)
                for s in keystore.slot_status()]
    return [KeyRow(name, get_optional(keystore, name) is not None, None) for name in KNOWN_SLOTS]


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def cmd_keys_list(*, keystore: Store, as_json: bool = False) -> int:
    rows = _rows(keystore)
    if as_json:
        _print_json({"keys": [asdict(r) for r in rows], "store": keystore.describe()})
        return 0

    width = max(len(r.name) for r in rows)
    for r in rows:
        print(f"{'+' if r.configured else '-'} {r.name:<{width}}  {r.describe()}")
    return 0


def cmd_keys_set(*, keystore: Store, name: str, value: str, as_json: bool = False) -> int:
    if not name:
        raise ValueError("name is required")
    if not value:
        raise ValueError("value is required")

    keystore.set(name, value)
    if as_json:
        _print_json({"ok": True, "name": name, "known": name in KNOWN_SLOTS})
    else:
        print(f"stored {name}" + ("" if name in KNOWN_SLOTS else " (unknown slot)"))
    return 0


def cmd_keys_remove(*, keystore: Store, name: str, as_json: bool = False) -> int:
    try:
        removed = keystore.remove_key(name)
    except Exception as e:  # noqa: BLE001 - keyring backends raise their own types
        if as_json:
            _print_json({"ok": False, "name": name, "error": str(e)})
        else:
            print(f"error: {e}", file=sys.stderr)
        return 1

    if as_json:
        _print_json({"ok": True, "name": name, "removed": removed})
    else:
        print(f"removed {name}" if removed else f"{name} not found")
    return 0
