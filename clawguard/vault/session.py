"""clawguard.vault.session

Vault Session Manager.

One session per logical operation. Authenticate, use, revoke, on every exit
path. The manager never renews: a caller that outlives its TTL
re-authenticates and gets a fresh token.

Failure taxonomy at this layer:
- Unreachable: transport failures after bounded retries (retryable)
- Sealed: vault answered 503 or said so in its error body (fatal, not retried)
- InvalidCredential: AppRole pair rejected (fatal, not retried)
"""

from __future__ import annotations

import contextlib
import logging
import time
from collections.abc import Callable, Iterator
from datetime import timedelta
from typing import Any

import httpx

from clawguard.core.client import ClientConfig, HttpClient, json_body
from clawguard.core.config import RoleConfig, VaultConfig
from clawguard.core.exceptions import (
    AuthError,
    ClawguardError,
    InvalidCredential,
    Sealed,
    SessionExpired,
    SessionRevoked,
    VaultError,
)
from clawguard.core.time import Clock, utc_now
from clawguard.security.audit import AuditLogger, NullAuditLogger
from clawguard.vault.models import PROFILES, AppRoleCredential, Role, SealStatus, SessionToken

logger = logging.getLogger(__name__)

LOGIN_PATH = "/v1/auth/approle/login"
REVOKE_SELF_PATH = "/v1/auth/token/revoke-self"
SEAL_PATH = "/v1/sys/seal"
UNSEAL_PATH = "/v1/sys/unseal"
SEAL_STATUS_PATH = "/v1/sys/seal-status"
HEALTH_PATH = "/v1/sys/health"

TOKEN_HEADER = "X-Vault-Token"


def _errors(resp: httpx.Response) -> list[str]:
    errs = json_body(resp).get("errors")
    return [str(e) for e in errs] if isinstance(errs, list) else []


def raise_if_sealed(resp: httpx.Response) -> None:
    """Map a sealed-vault answer onto `Sealed`, whatever endpoint produced it."""

    if resp.status_code == 503 or any("sealed" in e.lower() for e in _errors(resp)):
        raise Sealed("vault is sealed", status=resp.status_code)


class VaultSession:
    """Handle for one authenticated session.

    Usable until revoked or expired; both states are checked locally before any
    request leaves the process.
    """

    def __init__(self, token: SessionToken, *, clock: Clock = utc_now) -> None:
        self.token = token
        self._clock = clock
        self._revoked = False

    @property
    def role(self) -> Role:
        return self.token.profile.role

    @property
    def revoked(self) -> bool:
        return self._revoked

    def mark_revoked(self) -> None:
        self._revoked = True

    def require_usable(self, what: str = "session") -> str:
        """Return the raw token value, or raise if the session can no longer act."""

        if self._revoked:
            raise SessionRevoked(what, f"{what}: session already revoked")
        if self.token.is_expired(self._clock()):
            raise SessionExpired(what, f"{what}: session expired at {self.token.expires_at.isoformat()}")
        return self.token.value

    def __repr__(self) -> str:
        state = "revoked" if self._revoked else f"expires={self.token.expires_at.isoformat()}"
        return f"VaultSession(role={self.role}, accessor={self.token.accessor or '?'}, {state})"


class VaultSessionManager:
    def __init__(
        self,
        config: VaultConfig,
        *,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Clock = utc_now,
        audit: AuditLogger | NullAuditLogger | None = None,
    ) -> None:
        self.config = config
        self._sleep = sleep
        self._clock = clock
        self.audit = audit or NullAuditLogger()
        self.http = HttpClient(
            ClientConfig(
                base_url=config.addr,
                timeout_s=config.timeout_s,
                max_retries=config.max_retries,
                backoff_base_s=config.backoff_base_s,
            ),
            transport=transport,
            sleep=sleep,
        )

    def close(self) -> None:
        self.http.close()

    def _role_config(self, role: Role) -> RoleConfig:
        return self.config.admin if role == Role.ADMIN else self.config.agent

    # --- authentication ---

    def authenticate(self, credential: AppRoleCredential) -> VaultSession:
        """Exchange an AppRole pair for a session.

        Raises:
            Unreachable: vault not reachable within the retry budget.
            Sealed: vault is sealed.
            InvalidCredential: role_id/secret_id rejected.
            AuthError: any other login failure.
        """

        resp = self.http.request("POST", LOGIN_PATH, json=credential.login_body())
        raise_if_sealed(resp)
        if resp.status_code in (400, 401, 403):
            self.audit.log_action("vault.login", actor=str(credential.role), outcome="rejected")
            raise InvalidCredential(f"approle login rejected for role {credential.role}", status=resp.status_code)
        if resp.status_code >= 300:
            raise AuthError(f"approle login failed (http {resp.status_code})", status=resp.status_code)

        auth = json_body(resp).get("auth") or {}
        client_token = auth.get("client_token")
        if not client_token:
            raise AuthError("approle login returned no client_token", status=resp.status_code)

        role_cfg = self._role_config(credential.role)
        lease = auth.get("lease_duration")
        ttl_s = int(lease) if isinstance(lease, int) and lease > 0 else role_cfg.ttl_seconds
        max_ttl_s = max(role_cfg.max_ttl_seconds, ttl_s)

        token = SessionToken(
            value=str(client_token),
            issued_at=self._clock(),
            ttl=timedelta(seconds=ttl_s),
            max_ttl=timedelta(seconds=max_ttl_s),
            profile=PROFILES[credential.role],
            accessor=str(auth.get("accessor") or ""),
            policies=tuple(str(p) for p in auth.get("policies") or ()),
        )
        if token.policies and role_cfg.policy not in token.policies:
            logger.warning(
                "vault_policy_mismatch",
                extra={"role": str(credential.role), "expected": role_cfg.policy, "policies": list(token.policies)},
            )

        session = VaultSession(token, clock=self._clock)
        logger.info("vault_session_issued", extra={"role": str(credential.role), "ttl_s": ttl_s})
        self.audit.log_action(
            "vault.login",
            actor=str(credential.role),
            details={"accessor": token.accessor, "ttl_s": ttl_s},
            outcome="ok",
        )
        return session

    def revoke(self, session: VaultSession) -> bool:
        """Revoke the session's token. Never raises.

        The session is unusable locally afterwards even if the server call
        failed; the return value says whether the server confirmed it.
        """

        if session.revoked:
            return True
        session.mark_revoked()

        confirmed = False
        try:
            resp = self.http.request(
                "POST",
                REVOKE_SELF_PATH,
                headers={TOKEN_HEADER: session.token.value},
                retries=0,
                timeout_s=self.config.revoke_timeout_s,
            )
            # 403: the token is already invalid server-side, which is the goal.
            confirmed = resp.status_code in (200, 204, 403)
            if not confirmed:
                logger.warning("vault_revoke_failed", extra={"status": resp.status_code, "role": str(session.role)})
        except Exception as e:  # noqa: BLE001 - release path must not raise
            logger.warning(
                "vault_revoke_failed", extra={"error": f"{type(e).__name__}: {e}", "role": str(session.role)}
            )

        self.audit.log_action(
            "vault.revoke",
            actor=str(session.role),
            details={"accessor": session.token.accessor},
            outcome="ok" if confirmed else "failed",
        )
        if confirmed:
            logger.info("vault_session_revoked", extra={"role": str(session.role)})
        return confirmed

    @contextlib.contextmanager
    def session(self, credential: AppRoleCredential) -> Iterator[VaultSession]:
        """Authenticate, yield, revoke. Revocation runs on every exit path."""

        sess = self.authenticate(credential)
        try:
            yield sess
        finally:
            self.revoke(sess)

    def request(self, session: VaultSession, method: str, path: str, *, what: str, **kwargs: Any) -> httpx.Response:
        """Authenticated request. Local session checks happen before anything is sent."""

        token = session.require_usable(what)
        headers = dict(kwargs.pop("headers", None) or {})
        headers[TOKEN_HEADER] = token
        resp = self.http.request(method, path, headers=headers, **kwargs)
        raise_if_sealed(resp)
        return resp

    # --- seal lifecycle ---

    def seal_status(self) -> SealStatus:
        resp = self.http.request("GET", SEAL_STATUS_PATH)
        if resp.status_code >= 300:
            raise VaultError(f"seal-status failed (http {resp.status_code})", status=resp.status_code)
        body = json_body(resp)
        if "sealed" not in body:
            raise VaultError("seal-status response has no 'sealed' field", status=resp.status_code)
        return SealStatus(
            sealed=bool(body.get("sealed")),
            initialized=bool(body.get("initialized", True)),
            version=str(body.get("version") or ""),
            progress=int(body.get("progress") or 0),
            threshold=int(body.get("t") or 0),
        )

    def seal(self, token: str) -> bool:
        """Seal the vault. Returns False if it was already sealed."""

        if self.seal_status().sealed:
            return False
        resp = self.http.request("PUT", SEAL_PATH, headers={TOKEN_HEADER: token})
        if resp.status_code == 503:
            return False
        if resp.status_code >= 300:
            detail = "; ".join(_errors(resp))
            raise VaultError(f"seal failed (http {resp.status_code}): {detail}", status=resp.status_code)
        return True

    def unseal(self, key: str) -> SealStatus:
        resp = self.http.request("PUT", UNSEAL_PATH, json={"key": key})
        if resp.status_code >= 300:
            raise VaultError(f"unseal failed (http {resp.status_code})", status=resp.status_code)
        body = json_body(resp)
        return SealStatus(
            sealed=bool(body.get("sealed", True)),
            initialized=bool(body.get("initialized", True)),
            version=str(body.get("version") or ""),
            progress=int(body.get("progress") or 0),
            threshold=int(body.get("t") or 0),
        )

    def wait_until_reachable(self, *, attempts: int | None = None, interval_s: float | None = None) -> bool:
        """Poll the health endpoint. Any HTTP answer (even 503 sealed) counts as reachable."""

        n = attempts if attempts is not None else self.config.wait_attempts
        interval = interval_s if interval_s is not None else self.config.wait_interval_s
        for i in range(max(n, 1)):
            try:
                self.http.request("GET", HEALTH_PATH, retries=0)
                return True
            except ClawguardError:
                if i + 1 >= n:
                    break
                self._sleep(interval)
        logger.warning("vault_unreachable", extra={"attempts": n, "addr": self.config.addr})
        return False

