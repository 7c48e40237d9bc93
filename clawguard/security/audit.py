"""clawguard.security.audit

Who got a session, which tokens were revoked, what each lockdown step did.
Details are passed through `sanitize_for_log` before they are stored, so the
journal can be shared during an incident review.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from clawguard.core.database import Database
from clawguard.core.time import isoformat
from clawguard.security.redaction import sanitize_for_log

logger = logging.getLogger(__name__)


def _decode(row: Any) -> dict[str, Any]:
    out = dict(row)
    out["details"] = json.loads(out["details"]) if out.get("details") else {}
    return out


@dataclass
class AuditLogger:
    db: Database
    component: str = "clawguard"

    def log_action(
        self,
        action: str,
        actor: str | None = None,
        details: dict[str, Any] | None = None,
        *,
        outcome: str | None = None,
    ) -> None:
        """Append one row. A failed write is logged, never raised."""

        row = {
            "action": action,
            "actor": actor,
            "component": self.component,
            "outcome": outcome,
            "details": json.dumps(sanitize_for_log(details or {}), sort_keys=True, default=str),
        }
        try:
            self.db.insert_audit(row)
        except Exception:  # noqa: BLE001 - a release or lockdown step must not fail on the journal
            logger.exception("audit_write_failed", extra={"action": action})

    def query(
        self,
        action_type: str | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        where: list[tuple[str, Any]] = []
        if action_type is not None:
            where.append(("action = ?", action_type))
        if since is not None:
            where.append(("ts >= ?", isoformat(since)))
        return [_decode(r) for r in self.db.select_audit(where, limit=limit)]


class NullAuditLogger:
    """Used when `audit.enabled` is false."""

    component = "null"

    def log_action(self, action: str, actor: str | None = None, details: dict[str, Any] | None = None, **_: Any) -> None:
        return None

    def query(self, *args: Any, **kwargs: Any) -> list[dict[str, Any]]:
        return []
