"""clawguard.vault.cache

Credential Cache.

Process memory only. One session per task: authenticate once, fetch the whole
batch, revoke. Values are wiped on every exit path, including signals.

Acquisition failures (Sealed, Unreachable, auth) abort the load. Per-secret
misses (NotFound, Forbidden, PathViolation) become warnings and the rest of the
batch proceeds.
"""

from __future__ import annotations

import atexit
import contextlib
import logging
import signal
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from types import FrameType
from typing import Any

from clawguard.core.exceptions import SecretError
from clawguard.vault.fetcher import SecretFetcher
from clawguard.vault.models import AppRoleCredential, SecretValue
from clawguard.vault.session import VaultSession, VaultSessionManager

logger = logging.getLogger(__name__)

RELEASE_SIGNALS: tuple[signal.Signals, ...] = tuple(
    s for s in (signal.SIGTERM, signal.SIGINT, getattr(signal, "SIGHUP", None)) if s is not None
)


def env_name(name: str) -> str:
    """Environment variable name for a secret: `anthropic-api-key` -> `ANTHROPIC_API_KEY`."""

    out = name.strip().upper()
    for ch in "-./ ":
        out = out.replace(ch, "_")
    return out


@dataclass(frozen=True, slots=True)
class FetchWarning:
    secret: str
    reason: str  # not_found|forbidden|path_violation|env_collision|...
    message: str


@dataclass(slots=True)
class LoadResult:
    values: dict[str, SecretValue] = field(default_factory=dict)
    warnings: list[FetchWarning] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.warnings

    @property
    def missing(self) -> list[str]:
        return [w.secret for w in self.warnings]


def _reason(exc: SecretError) -> str:
    name = type(exc).__name__
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in name).lstrip("_")


class CredentialCache:
    """Secrets for one task, bound to one session."""

    def __init__(self, manager: VaultSessionManager, fetcher: SecretFetcher | None = None) -> None:
        self.manager = manager
        self.fetcher = fetcher or SecretFetcher(manager)
        self.session: VaultSession | None = None
        self._values: dict[str, SecretValue] = {}
        self.warnings: list[FetchWarning] = []
        self._released = False
        self._hooks: _ReleaseHooks | None = None

    @classmethod
    @contextlib.contextmanager
    def open(
        cls,
        manager: VaultSessionManager,
        credential: AppRoleCredential,
        names: Iterable[str],
        *,
        hooks: bool = False,
    ) -> Iterator[CredentialCache]:
        """Authenticate, batch-load, yield; wipe and revoke on the way out."""

        cache = cls(manager)
        if hooks:
            cache.install_release_hooks()
        try:
            cache.session = manager.authenticate(credential)
            cache.load(cache.session, names)
            yield cache
        finally:
            cache.release()

    def load(self, session: VaultSession, names: Iterable[str]) -> LoadResult:
        """Fetch every name under `session`. Never raises for a per-secret miss."""

        self.session = session
        result = LoadResult()
        claimed = {env_name(n): n for n in self._values}
        for name in dict.fromkeys(n.strip() for n in names if n and n.strip()):
            var = env_name(name)
            owner = claimed.get(var)
            if owner is not None and owner != name:
                # First name to claim a variable keeps it.
                w = FetchWarning(secret=name, reason="env_collision", message=f"{name} and {owner} both map to {var}")
                result.warnings.append(w)
                logger.warning("secret_env_collision", extra={"secret_name": name, "env": var, "other": owner})
                continue
            try:
                entry = self.fetcher.fetch(session, name)
            except SecretError as e:
                w = FetchWarning(secret=name, reason=_reason(e), message=str(e))
                result.warnings.append(w)
                logger.warning("secret_fetch_failed", extra={"secret_name": name, "reason": w.reason})
                continue
            result.values[name] = entry.value
            claimed[var] = name
            logger.info("secret_loaded", extra={"secret_name": name, "env": var})

        self._values.update(result.values)
        self.warnings.extend(result.warnings)
        return result

    @property
    def released(self) -> bool:
        return self._released

    def names(self) -> list[str]:
        return sorted(self._values)

    def get(self, name: str) -> str:
        if self._released:
            raise RuntimeError("credential cache already released")
        return self._values[name].reveal()

    def environment(self) -> dict[str, str]:
        """`{ENV_NAME: value}` for the consuming process."""

        if self._released:
            raise RuntimeError("credential cache already released")
        return {env_name(n): v.reveal() for n, v in self._values.items()}

    def release(self) -> None:
        """Wipe values and revoke the session if still live. Idempotent, never raises."""

        if self._released:
            return
        self._released = True

        for v in self._values.values():
            v.wipe()
        wiped = len(self._values)
        self._values.clear()

        if self.session is not None and not self.session.revoked:
            self.manager.revoke(self.session)

        if self._hooks is not None:
            self._hooks.uninstall()
            self._hooks = None
        logger.info("credential_cache_released", extra={"wiped": wiped})

    def install_release_hooks(self) -> None:
        if self._hooks is None:
            self._hooks = _ReleaseHooks(self.release)
            self._hooks.install()

    def __enter__(self) -> CredentialCache:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.release()


class _ReleaseHooks:
    """atexit + signal handlers that force a release before the process goes away.

    Signal handlers can only be installed from the main thread; elsewhere only
    the atexit hook is registered.
    """

    def __init__(self, release: Any) -> None:
        self._release = release
        self._previous: dict[signal.Signals, Any] = {}
        self._installed = False

    def install(self) -> None:
        atexit.register(self._release)
        if threading.current_thread() is threading.main_thread():
            for sig in RELEASE_SIGNALS:
                self._previous[sig] = signal.signal(sig, self._on_signal)
        self._installed = True

    def uninstall(self) -> None:
        if not self._installed:
            return
        atexit.unregister(self._release)
        if threading.current_thread() is threading.main_thread():
            for sig, prev in self._previous.items():
                signal.signal(sig, prev if prev is not None else signal.SIG_DFL)
        self._previous.clear()
        self._installed = False

    def _on_signal(self, signum: int, frame: FrameType | None) -> None:
        logger.warning("release_on_signal", extra={"signum": signum})
        try:
            self._release()
        except Exception:  # noqa: BLE001 - shutdown path must complete
            logger.exception("release_on_signal_failed")
        raise SystemExit(128 + signum)
