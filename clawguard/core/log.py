"""clawguard.core.log

Logging setup. Module loggers stay plain `logging.getLogger(__name__)`; this
module only decides where records go and makes sure no secret gets there.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

from clawguard.core.config import LoggingConfig
from clawguard.security.redaction import redact_secrets, sanitize_for_log

# Attributes every LogRecord carries; anything else arrived through `extra=`.
_RESERVED = frozenset(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}


def _extras(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED}


class RedactingFilter(logging.Filter):
    """Scrub likely secrets from the message, its args and any extras."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact_secrets(str(record.msg))
        if record.args:
            if isinstance(record.args, dict):
                record.args = sanitize_for_log(record.args)
            else:
                record.args = tuple(redact_secrets(a) if isinstance(a, str) else a for a in record.args)
        extras = _extras(record)
        if extras:
            for k, v in sanitize_for_log(extras).items():
                setattr(record, k, v)
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        payload.update(_extras(record))
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, sort_keys=True)


class TextFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("[clawguard] %(asctime)s %(levelname)s %(name)s %(message)s", "%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = _extras(record)
        if extras:
            line += " " + " ".join(f"{k}={v}" for k, v in sorted(extras.items()))
        return line


def configure_logging(cfg: LoggingConfig, *, stream: Any = None) -> logging.Handler:
    """Install one redacting handler on the `clawguard` logger. Idempotent."""

    root = logging.getLogger("clawguard")
    for h in list(root.handlers):
        if getattr(h, "_clawguard", False):
            root.removeHandler(h)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter() if cfg.json_output else TextFormatter())
    handler.addFilter(RedactingFilter())
    handler._clawguard = True  # type: ignore[attr-defined]

    root.addHandler(handler)
    root.setLevel(cfg.level.upper())
    root.propagate = False
    return handler
