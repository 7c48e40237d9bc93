"""clawguard.vault.admin

Secret administration over the admin AppRole.

Short-lived admin sessions only: log in, write, revoke. Rotation is the same
write behind a prompt, with a format check so a pasted key for the wrong
provider is rejected before it reaches the vault.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from clawguard.vault.fetcher import SecretFetcher, validate_name
from clawguard.vault.models import AppRoleCredential
from clawguard.vault.session import VaultSessionManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RotationTarget:
    secret: str
    display_name: str
    format_hint: str
    prefix: str | None = None

    def check(self, value: str) -> None:
        if self.prefix and not value.startswith(self.prefix):
            raise ValueError(f"Invalid format for {self.display_name}. Expected {self.format_hint}")


ROTATION_TARGETS: dict[str, RotationTarget] = {
    "anthropic": RotationTarget("anthropic-api-key", "Anthropic API Key", "sk-ant-...", prefix="sk-ant-"),
    "openai": RotationTarget("openai-api-key", "OpenAI API Key", "sk-...", prefix="sk-"),
    "telegram": RotationTarget("telegram-bot-token", "Telegram Bot Token", "123456789:ABC..."),
    "discord": RotationTarget("discord-bot-token", "Discord Bot Token", "MTk..."),
}


@dataclass(frozen=True, slots=True)
class RotationResult:
    target: str
    secret: str
    status: str  # rotated|skipped|dry_run|invalid
    version: int | None = None
    message: str = ""


def resolve_targets(target: str) -> list[str]:
    if target == "all":
        return list(ROTATION_TARGETS)
    if target not in ROTATION_TARGETS:
        raise KeyError(f"Unknown target: {target}. Use: {', '.join(ROTATION_TARGETS)}, or all.")
    return [target]


def store_secret(
    manager: VaultSessionManager,
    credential: AppRoleCredential,
    name: str,
    value: str,
    *,
    dry_run: bool = False,
) -> int | None:
    """Write one secret under a dedicated admin session. Returns the new version."""

    validate_name(name)
    if not value:
        raise ValueError("Secret value cannot be empty.")
    if dry_run:
        logger.info("secret_store_dry_run", extra={"secret_name": name})
        return None

    fetcher = SecretFetcher(manager)
    with manager.session(credential) as session:
        version = fetcher.store(session, name, value)
    manager.audit.log_action(
        "secret.store", actor=str(credential.role), details={"secret_name": name, "version": version}, outcome="ok"
    )
    return version


def rotate(
    manager: VaultSessionManager,
    credential: AppRoleCredential,
    target: str,
    *,
    prompt: Callable[[RotationTarget], str],
    dry_run: bool = False,
) -> list[RotationResult]:
    """Rotate one target or `all`. Empty input skips a target; bad format rejects it."""

    results: list[RotationResult] = []
    for key in resolve_targets(target):
        t = ROTATION_TARGETS[key]
        new_value = prompt(t).strip()
        if not new_value:
            results.append(RotationResult(key, t.secret, "skipped", message="empty input"))
            continue
        try:
            t.check(new_value)
        except ValueError as e:
            results.append(RotationResult(key, t.secret, "invalid", message=str(e)))
            continue
        if dry_run:
            results.append(RotationResult(key, t.secret, "dry_run", message=f"would store new {t.secret}"))
            continue
        version = store_secret(manager, credential, t.secret, new_value)
        results.append(RotationResult(key, t.secret, "rotated", version=version))
    return results
