"""clawguard.core

Core primitives.

Everything else builds on this package.
"""

from .config import Config
from .database import Database
from .exceptions import ClawguardError
from .time import Clock, parse_dt, utc_now

__all__ = [
    "ClawguardError",
    "Config",
    "Database",
    "utc_now",
    "parse_dt",
    "Clock",
]
