"""clawguard.core.database

Local SQLite journal for the audit trail.

It must stay writable while the vault is sealed and the network is blocked,
so it lives on the host and depends on neither.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

SCHEMA_VERSION = 1

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ts TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')),
    action TEXT NOT NULL,
    actor TEXT,
    component TEXT,
    outcome TEXT,
    details TEXT
);
CREATE INDEX IF NOT EXISTS idx_audit_ts ON audit_log(ts);
CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_log(action);

INSERT OR IGNORE INTO schema_version (version) VALUES ({SCHEMA_VERSION});
"""

AUDIT_COLUMNS = ("ts", "action", "actor", "component", "outcome", "details")


@dataclass
class Database:
    db_path: Path
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        self.db_path = Path(self.db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        with self.conn:
            self.conn.executescript(SCHEMA)
            self.conn.execute("PRAGMA journal_mode=WAL")

    def close(self) -> None:
        self.conn.close()

    def schema_version(self) -> int:
        (version,) = self.conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return int(version or 0)

    def insert_audit(self, row: dict[str, Any]) -> None:
        cols = [c for c in AUDIT_COLUMNS if c in row]
        sql = f"INSERT INTO audit_log ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})"
        with self._lock, self.conn:
            self.conn.execute(sql, tuple(row[c] for c in cols))

    def select_audit(self, where: Sequence[tuple[str, Any]] = (), limit: int = 100) -> list[sqlite3.Row]:
        """Newest first. `where` holds (`column op ?`, value) pairs joined with AND."""

        clauses = " AND ".join(c for c, _ in where) or "1=1"
        sql = f"SELECT {', '.join(AUDIT_COLUMNS)} FROM audit_log WHERE {clauses} ORDER BY id DESC LIMIT ?"
        return self.conn.execute(sql, (*(v for _, v in where), limit)).fetchall()
