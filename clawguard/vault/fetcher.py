"""clawguard.vault.fetcher

Secret Fetcher.

Resolves logical names to KV v2 paths under one fixed prefix. Path validation
is local: a name that escapes the prefix never produces a request, whatever the
server-side policy would have said.
"""

from __future__ import annotations

import logging
import re

from clawguard.core.client import json_body
from clawguard.core.config import VaultConfig
from clawguard.core.exceptions import Forbidden, NotFound, PathViolation, VaultError
from clawguard.vault.models import CREATE, LIST, READ, UPDATE, SecretEntry, SecretValue
from clawguard.vault.session import VaultSession, VaultSessionManager

logger = logging.getLogger(__name__)

_SEGMENT = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def validate_name(name: str) -> str:
    """Return the normalized name or raise `PathViolation`.

    Accepts `/`-separated segments of `[A-Za-z0-9._-]`, each starting with an
    alphanumeric. Rejects empty names, absolute paths, `..`, whitespace and
    anything URL-significant.
    """

    if not isinstance(name, str) or not name:
        raise PathViolation(str(name), "secret name is empty")
    if name.startswith("/") or name.endswith("/"):
        raise PathViolation(name, f"secret name must be relative: {name!r}")
    segments = name.split("/")
    for seg in segments:
        if seg in ("", ".", "..") or not _SEGMENT.match(seg):
            raise PathViolation(name, f"secret name escapes or is malformed: {name!r}")
    return name


class SecretFetcher:
    def __init__(self, manager: VaultSessionManager, config: VaultConfig | None = None) -> None:
        self.manager = manager
        self.config = config or manager.config

    @property
    def data_root(self) -> str:
        return f"/v1/{self.config.mount}/data/{self.config.prefix}/"

    @property
    def metadata_root(self) -> str:
        return f"/v1/{self.config.mount}/metadata/{self.config.prefix}"

    def path_for(self, name: str) -> str:
        path = self.data_root + validate_name(name)
        if not path.startswith(self.data_root):
            raise PathViolation(name, f"resolved path {path!r} is outside {self.data_root!r}")
        return path

    def fetch(self, session: VaultSession, name: str) -> SecretEntry:
        """Read one secret.

        Raises:
            PathViolation: name is outside the prefix (no request sent).
            SessionRevoked / SessionExpired: session is no longer usable (no request sent).
            NotFound: entry missing, soft-deleted or destroyed.
            Forbidden: server refused the read.
            Sealed / Unreachable: acquisition failure; caller decides whether to abort.
        """

        path = self.path_for(name)
        if not session.token.profile.allows(READ):
            raise Forbidden(name, f"role {session.role} cannot read {name!r}")

        resp = self.manager.request(session, "GET", path, what=name)
        if resp.status_code == 404:
            raise NotFound(name, f"secret {name!r} not found")
        if resp.status_code == 403:
            raise Forbidden(name, f"read of {name!r} denied")
        if resp.status_code >= 300:
            raise VaultError(f"read of {name!r} failed (http {resp.status_code})", status=resp.status_code)

        data = json_body(resp).get("data") or {}
        metadata = data.get("metadata") or {}
        if metadata.get("deletion_time") or metadata.get("destroyed"):
            raise NotFound(name, f"secret {name!r} is deleted")

        payload = data.get("data") or {}
        value = payload.get("value")
        if value is None or value == "":
            raise NotFound(name, f"secret {name!r} has no value")

        version = metadata.get("version")
        return SecretEntry(
            name=name,
            path=path,
            value=SecretValue(str(value)),
            version=int(version) if isinstance(version, int) else None,
        )

    def store(self, session: VaultSession, name: str, value: str) -> int | None:
        """Write a new version of a secret (admin role). Returns the new version."""

        path = self.path_for(name)
        profile = session.token.profile
        if not (profile.allows(CREATE) and profile.allows(UPDATE)):
            raise Forbidden(name, f"role {session.role} cannot write {name!r}")
        if not value:
            raise ValueError("secret value cannot be empty")

        resp = self.manager.request(session, "POST", path, what=name, json={"data": {"value": value}})
        if resp.status_code == 403:
            raise Forbidden(name, f"write of {name!r} denied")
        if resp.status_code >= 300:
            raise VaultError(f"write of {name!r} failed (http {resp.status_code})", status=resp.status_code)

        version = (json_body(resp).get("data") or {}).get("version")
        logger.info("secret_stored", extra={"secret_name": name, "version": version})
        return int(version) if isinstance(version, int) else None

    def list(self, session: VaultSession) -> list[str]:
        """List secret names under the prefix (admin role)."""

        profile = session.token.profile
        if not (profile.can_list_metadata and profile.allows(LIST)):
            raise Forbidden(self.config.prefix, f"role {session.role} cannot list metadata")

        resp = self.manager.request(session, "LIST", self.metadata_root, what="metadata")
        if resp.status_code == 404:
            return []
        if resp.status_code == 403:
            raise Forbidden(self.config.prefix, "metadata listing denied")
        if resp.status_code >= 300:
            raise VaultError(f"metadata listing failed (http {resp.status_code})", status=resp.status_code)

        keys = (json_body(resp).get("data") or {}).get("keys") or []
        return sorted(str(k) for k in keys)
