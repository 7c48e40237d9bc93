"""clawguard.oauth.proxy

OAuth proxy client (Nango-compatible HTTP API).

The proxy holds OAuth grants on the gateway's behalf; this process only ever
sees connection ids and provider keys, never the upstream access tokens.

Bulk revocation is per-item independent: a failed delete is recorded and the
loop moves on to the next connection.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx

from clawguard.core.client import ClientConfig, HttpClient, json_body
from clawguard.core.config import OAuthConfig
from clawguard.core.exceptions import ClawguardError, ConnectionNotFound, ProxyError
from clawguard.security.audit import AuditLogger, NullAuditLogger
from clawguard.security.keystore import PROXY_KEY, CredentialStore, get_optional
from clawguard.vault.credentials import require_credential
from clawguard.vault.fetcher import SecretFetcher
from clawguard.vault.models import Role, SecretValue
from clawguard.vault.session import VaultSessionManager

logger = logging.getLogger(__name__)

ALL = "all"


@dataclass(frozen=True, slots=True)
class Connection:
    connection_id: str
    provider_key: str

    def matches(self, target: str) -> bool:
        return target == ALL or target in (self.connection_id, self.provider_key)


@dataclass(frozen=True, slots=True)
class RevocationItem:
    connection_id: str
    provider_key: str
    ok: bool
    status: int | None = None
    error: str = ""


@dataclass(slots=True)
class RevocationReport:
    target: str
    items: list[RevocationItem] = field(default_factory=list)
    dry_run: bool = False
    would_revoke: list[Connection] = field(default_factory=list)

    @property
    def revoked_count(self) -> int:
        return sum(1 for i in self.items if i.ok)

    @property
    def failed_count(self) -> int:
        return sum(1 for i in self.items if not i.ok)

    @property
    def failed(self) -> list[RevocationItem]:
        return [i for i in self.items if not i.ok]

    @property
    def matched(self) -> int:
        return len(self.would_revoke) if self.dry_run else len(self.items)

    def summary(self) -> str:
        if self.dry_run:
            return f"dry run: {len(self.would_revoke)} connection(s) would be revoked"
        if not self.items:
            return f"no connections matched {self.target!r}"
        return f"revoked {self.revoked_count}, failed {self.failed_count}"


class OAuthProxyClient:
    def __init__(
        self,
        config: OAuthConfig,
        key_provider: Callable[[], str],
        *,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        audit: AuditLogger | NullAuditLogger | None = None,
    ) -> None:
        self.config = config
        self._key_provider = key_provider
        self._key: SecretValue | None = None
        self.audit = audit or NullAuditLogger()
        self.http = HttpClient(
            ClientConfig(base_url=config.url, timeout_s=config.timeout_s, max_retries=2),
            transport=transport,
            sleep=sleep,
        )

    def close(self) -> None:
        self.forget_key()
        self.http.close()

    # --- proxy key ---

    def prime(self) -> bool:
        """Resolve the proxy key now (e.g. before the vault is sealed). Never raises."""

        try:
            self._auth_header()
        except Exception as e:  # noqa: BLE001 - keystore and keyring backends raise their own types
            logger.warning("proxy_key_unavailable", extra={"error": f"{type(e).__name__}: {e}"})
            return False
        return True

    def forget_key(self) -> None:
        if self._key is not None:
            self._key.wipe()
            self._key = None

    def _auth_header(self) -> dict[str, str]:
        if self._key is None or self._key.wiped:
            self._key = SecretValue(self._key_provider())
        return {"Authorization": f"Bearer {self._key.reveal()}"}

    # --- connections ---

    def list_connections(self) -> list[Connection]:
        resp = self.http.request("GET", "/connections", headers=self._auth_header())
        if resp.status_code >= 300:
            raise ProxyError(f"listing connections failed (http {resp.status_code})", status=resp.status_code)

        out: list[Connection] = []
        for raw in json_body(resp).get("connections") or []:
            if not isinstance(raw, dict):
                continue
            cid = raw.get("connection_id")
            provider = raw.get("provider_config_key") or raw.get("provider")
            if cid and provider:
                out.append(Connection(connection_id=str(cid), provider_key=str(provider)))
        return out

    def get_connection(self, target: str) -> Connection:
        """Find a live connection by provider key or connection id."""

        if target == ALL:
            raise ValueError("get_connection needs a provider key or connection id")
        for conn in self.list_connections():
            if conn.matches(target):
                return conn
        raise ConnectionNotFound(f"no connection for {target!r}; re-authorize through the OAuth proxy")

    def delete_connection(self, conn: Connection) -> None:
        resp = self.http.request(
            "DELETE",
            f"/connection/{conn.connection_id}",
            params={"provider_config_key": conn.provider_key},
            headers=self._auth_header(),
        )
        if resp.status_code >= 300:
            raise ProxyError(
                f"revoking {conn.connection_id} ({conn.provider_key}) failed (http {resp.status_code})",
                status=resp.status_code,
            )

    def revoke(self, target: str = ALL, *, dry_run: bool = False) -> RevocationReport:
        """Revoke one connection (by provider key or id) or all of them.

        Listing failures propagate; per-connection failures are recorded and
        never stop the remaining deletes.
        """

        report = RevocationReport(target=target, dry_run=dry_run)
        connections = [c for c in self.list_connections() if c.matches(target)]
        logger.info("oauth_revoke_start", extra={"target": target, "matched": len(connections)})

        if dry_run:
            report.would_revoke = connections
            return report

        for conn in connections:
            try:
                self.delete_connection(conn)
            except ClawguardError as e:
                status = getattr(e, "status", None)
                report.items.append(
                    RevocationItem(conn.connection_id, conn.provider_key, ok=False, status=status, error=str(e))
                )
                logger.warning(
                    "oauth_revoke_failed",
                    extra={"connection_id": conn.connection_id, "provider": conn.provider_key, "status": status},
                )
                self.audit.log_action(
                    "oauth.revoke",
                    details={"connection_id": conn.connection_id, "provider": conn.provider_key, "http": status},
                    outcome="failed",
                )
                continue

            report.items.append(RevocationItem(conn.connection_id, conn.provider_key, ok=True))
            logger.info("oauth_revoked", extra={"connection_id": conn.connection_id, "provider": conn.provider_key})
            self.audit.log_action(
                "oauth.revoke",
                details={"connection_id": conn.connection_id, "provider": conn.provider_key},
                outcome="ok",
            )

        return report


def vault_key_provider(
    store: CredentialStore,
    manager: VaultSessionManager,
    secret_name: str,
) -> Callable[[], str]:
    """Proxy key from the credential store, else from the vault via a short admin session."""

    def _provide() -> str:
        direct = get_optional(store, PROXY_KEY)
        if direct:
            return direct
        credential = require_credential(store, Role.ADMIN)
        fetcher = SecretFetcher(manager)
        with manager.session(credential) as session:
            entry = fetcher.fetch(session, secret_name)
        try:
            return entry.value.reveal()
        finally:
            entry.value.wipe()

    return _provide
