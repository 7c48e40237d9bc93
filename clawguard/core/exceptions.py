"""clawguard.core.exceptions

Errors are part of the interface.

Acquisition failures (authenticate, fetch) abort the task that raised them.
Release failures (revoke, seal) never reach the caller; they are logged at the
release boundary and the process keeps moving toward the safest state.
"""

from __future__ import annotations


class ClawguardError(Exception):
    """Base exception for clawguard."""

    retryable: bool = False


class ConfigError(ClawguardError):
    """Configuration is missing, invalid, or inconsistent."""


class SecurityError(ClawguardError):
    """Security invariant violated."""


# --- vault ---


class VaultError(ClawguardError):
    """Vault request failed."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class Unreachable(VaultError):
    """Network failure talking to an upstream. Retry with backoff."""

    retryable = True


class Sealed(VaultError):
    """Vault is sealed. Nothing is readable until an out-of-band unseal."""


class AuthError(VaultError):
    """Authentication did not produce a usable session."""


class InvalidCredential(AuthError):
    """AppRole pair rejected. Retrying the same pair cannot succeed."""


class UnsealKeyMissing(VaultError):
    """No unseal key is available to this process."""


# --- secrets ---


class SecretError(ClawguardError):
    """Per-secret failure. Reported individually, never aborts a batch."""

    def __init__(self, name: str, message: str | None = None) -> None:
        super().__init__(message or name)
        self.name = name


class NotFound(SecretError):
    """Secret does not exist or has been soft-deleted."""


class Forbidden(SecretError):
    """Session lacks the capability for this operation."""


class PathViolation(Forbidden):
    """Secret name resolves outside the session's fixed prefix."""


class SessionRevoked(Forbidden):
    """Session was revoked; its token is no longer usable."""


class SessionExpired(Forbidden):
    """Session TTL elapsed. Re-authenticate; sessions are never renewed."""


# --- oauth proxy ---


class ProxyError(ClawguardError):
    """OAuth proxy request failed."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ConnectionNotFound(ProxyError):
    """No live connection for the requested provider or id."""
