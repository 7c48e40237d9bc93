from __future__ import annotations

from clawguard.core.exceptions import (
    AuthError,
    ClawguardError,
    ConfigError,
    ConnectionNotFound,
    Forbidden,
    InvalidCredential,
    NotFound,
    PathViolation,
    ProxyError,
    Sealed,
    SecretError,
    SecurityError,
    SessionExpired,
    SessionRevoked,
    Unreachable,
    UnsealKeyMissing,
    VaultError,
)


def test_exception_hierarchy_is_structural() -> None:
    assert issubclass(ConfigError, ClawguardError)
    assert issubclass(SecurityError, ClawguardError)
    assert issubclass(VaultError, ClawguardError)
    assert issubclass(SecretError, ClawguardError)
    assert issubclass(ProxyError, ClawguardError)

    assert issubclass(Unreachable, VaultError)
    assert issubclass(Sealed, VaultError)
    assert issubclass(InvalidCredential, AuthError)
    assert issubclass(UnsealKeyMissing, VaultError)
    assert issubclass(ConnectionNotFound, ProxyError)


def test_session_and_path_failures_are_forbidden() -> None:
    for cls in (PathViolation, SessionRevoked, SessionExpired):
        assert issubclass(cls, Forbidden)
        assert issubclass(cls, SecretError)
    assert not issubclass(NotFound, Forbidden)


def test_only_unreachable_is_retryable() -> None:
    assert Unreachable("x").retryable is True
    assert Sealed("x").retryable is False
    assert InvalidCredential("x").retryable is False
    assert NotFound("x").retryable is False


def test_errors_carry_context() -> None:
    assert VaultError("boom", status=503).status == 503
    e = NotFound("anthropic-api-key")
    assert e.name == "anthropic-api-key"
    assert str(e) == "anthropic-api-key"
    assert str(Forbidden("n", "read of n denied")) == "read of n denied"
