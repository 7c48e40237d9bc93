"""clawguard: secret brokering and incident response for a chat-agent gateway.

A token that outlives its task is a token someone else gets to use.
"""

from __future__ import annotations

__all__ = ["__version__", "DEFAULT_PREFIX"]

__version__ = "0.4.0"

# KV v2 path prefix every agent secret lives under.
DEFAULT_PREFIX = "openclaw"
