"""clawguard.security.redaction

Scrubs credentials out of text and structured log payloads. Applied by the log
formatter and by the audit journal, so a leaked value has to get past both.
"""

from __future__ import annotations

import re
from typing import Any

REDACTED = "[REDACTED]"

# Order matters: the key=value rule keeps the key, the token rules replace the whole match.
_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(p), repl)
    for p, repl in (
        (r"(?i)(api[_-]?key|secret[_-]?id|secret|password|token)\s*[:=]\s*[^\s\"',}]+", rf"\1={REDACTED}"),
        (r"sk-ant-[a-zA-Z0-9_-]{8,}", REDACTED),
        (r"sk-proj-[a-zA-Z0-9_-]{20,}", REDACTED),
        (r"sk-[a-zA-Z0-9]{20,}", REDACTED),
        (r"\bhv[sbr]\.[a-zA-Z0-9_-]{20,}", REDACTED),
        (r"\bs\.[a-zA-Z0-9]{24,}", REDACTED),
        (r"\b\d{8,10}:[a-zA-Z0-9_-]{30,}", REDACTED),
        (r"(?i)bearer\s+[a-zA-Z0-9._~+/=-]{8,}", f"Bearer {REDACTED}"),
        (r"eyJ[a-zA-Z0-9_-]+\.eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+", REDACTED),
    )
)

# `secret_name` is deliberately absent: names are fine to log, values are not.
SENSITIVE_KEYS = frozenset(
    {
        "api_key",
        "apikey",
        "auth",
        "authorization",
        "client_token",
        "key",
        "password",
        "secret",
        "secret_id",
        "token",
        "unseal_key",
        "value",
        "x-vault-token",
    }
)


def redact_secrets(text: str) -> str:
    for pattern, repl in _PATTERNS:
        text = pattern.sub(repl, text)
    return text


def _scrub(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: REDACTED if str(k).lower() in SENSITIVE_KEYS else _scrub(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_scrub(v) for v in obj]
    if isinstance(obj, str):
        return redact_secrets(obj)
    return obj


def sanitize_for_log(data: dict[str, Any]) -> dict[str, Any]:
    """Return a redacted copy; `data` itself is not modified."""

    return _scrub(data)
