"""clawguard.core.config

Three config surfaces only:
1) `config/default.yaml` (+ optional `config/user.yaml` overlay)
2) Environment variables (`CLAWGUARD_*`, nested with `__`)
3) Credentials, which never live here: they come from the keystore

Everything else is derived.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from clawguard import DEFAULT_PREFIX
from clawguard.core.exceptions import ConfigError


def _http_url(v: str) -> str:
    v = v.strip()
    if not v.startswith(("http://", "https://")):
        raise ValueError(f"URL must start with http:// or https://: {v!r}")
    return v


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


class RoleConfig(BaseModel):
    policy: str
    ttl_seconds: int
    max_ttl_seconds: int

    @field_validator("max_ttl_seconds")
    @classmethod
    def max_ttl_not_below_ttl(cls, v: int, info) -> int:
        ttl = int(info.data.get("ttl_seconds", 0))
        if v < ttl:
            raise ValueError(f"max_ttl_seconds ({v}) must be >= ttl_seconds ({ttl})")
        return v


class VaultConfig(BaseModel):
    addr: str = "http://127.0.0.1:8200"
    mount: str = "secret"
    prefix: str = DEFAULT_PREFIX
    timeout_s: float = 10.0
    max_retries: int = 3
    backoff_base_s: float = 1.0
    revoke_timeout_s: float = 2.0
    wait_attempts: int = 30
    wait_interval_s: float = 2.0
    agent: RoleConfig = Field(
        default_factory=lambda: RoleConfig(policy="openclaw-agent", ttl_seconds=3600, max_ttl_seconds=14400)
    )
    admin: RoleConfig = Field(
        default_factory=lambda: RoleConfig(policy="openclaw-admin", ttl_seconds=900, max_ttl_seconds=3600)
    )

    @field_validator("addr")
    @classmethod
    def addr_has_scheme(cls, v: str) -> str:
        return _http_url(v)

    @field_validator("prefix", "mount")
    @classmethod
    def no_slashes_at_edges(cls, v: str) -> str:
        v = v.strip()
        if not v or v.startswith("/") or v.endswith("/") or ".." in v:
            raise ValueError(f"invalid path component: {v!r}")
        return v

    @field_validator("max_retries")
    @classmethod
    def retries_bounded(cls, v: int) -> int:
        if v < 0 or v > 10:
            raise ValueError("max_retries must be within 0..10")
        return v


class OAuthConfig(BaseModel):
    url: str = "http://localhost:3003"
    secret_key_name: str = "nango-encryption-key"
    timeout_s: float = 10.0

    @field_validator("url")
    @classmethod
    def url_has_scheme(cls, v: str) -> str:
        return _http_url(v)


class RunnerConfig(BaseModel):
    secrets: list[str] = ["anthropic-api-key"]
    require_all_secrets: bool = False


class LockdownConfig(BaseModel):
    """Host commands run by the revocation controller.

    Each entry is an argv list. A missing executable is a warning.
    """

    gateway_port: int = 18789
    gateway_log: Path = Path.home() / ".openclaw" / "logs" / "gateway.log"
    gateway_config: Path = Path.home() / ".openclaw" / "openclaw.json"
    command_timeout_s: float = 30.0
    stop_commands: list[list[str]] = [
        ["docker", "compose", "-f", "docker/docker-compose.yml", "stop", "openclaw"],
        ["systemctl", "stop", "openclaw-gateway"],
        ["pkill", "-f", "openclaw.*gateway"],
    ]
    start_commands: list[list[str]] = [
        ["docker", "compose", "-f", "docker/docker-compose.yml", "--profile", "core", "up", "-d"],
    ]
    block_commands: list[list[str]] = [
        ["ufw", "deny", "18789/tcp"],
        ["tailscale", "down"],
    ]
    unblock_commands: list[list[str]] = [
        ["ufw", "delete", "deny", "18789/tcp"],
        ["tailscale", "up"],
    ]


class KeystoreConfig(BaseModel):
    service_name: str = "pgpclaw-openbao"
    dir: Path = Path.home() / ".clawguard" / "secrets"
    enable_keyring: bool = True


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_output: bool = False


class AuditConfig(BaseModel):
    enabled: bool = True


class Config(BaseSettings):
    """Root configuration. Single source of truth."""

    data_dir: Path = Path("data")
    config_dir: Path = Path("config")

    vault: VaultConfig = Field(default_factory=VaultConfig)
    oauth: OAuthConfig = Field(default_factory=OAuthConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    lockdown: LockdownConfig = Field(default_factory=LockdownConfig)
    keystore: KeystoreConfig = Field(default_factory=KeystoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    model_config = {"env_prefix": "CLAWGUARD_", "env_nested_delimiter": "__"}

    @property
    def audit_db_path(self) -> Path:
        return self.data_dir / "audit.db"

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        try:
            raw = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Config file is not valid YAML: {path}") from e

        user = path.parent / "user.yaml"
        if user.exists() and user != path:
            user_data = yaml.safe_load(user.read_text()) or {}
            raw = _deep_merge(raw, user_data)

        try:
            return cls(**raw)
        except ValidationError as e:
            raise ConfigError(f"Config file is invalid: {path}\n{e}") from e

    @classmethod
    def from_repo_defaults(cls, repo_root: Path | None = None) -> Config:
        root = repo_root or Path.cwd()
        default = root / "config" / "default.yaml"
        if not default.exists():
            return cls()
        return cls.from_yaml(default)

    def with_legacy_env(self, environ: Mapping[str, str]) -> Config:
        """Honor the container-era variables (`BAO_ADDR`, `NANGO_URL`)."""

        if not (environ.get("BAO_ADDR") or environ.get("NANGO_URL")):
            return self
        data = self.model_dump()
        if environ.get("BAO_ADDR"):
            data["vault"]["addr"] = environ["BAO_ADDR"]
        if environ.get("NANGO_URL"):
            data["oauth"]["url"] = environ["NANGO_URL"]
        try:
            return type(self).model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"invalid BAO_ADDR or NANGO_URL: {e}") from e
