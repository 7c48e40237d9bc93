from __future__ import annotations

import pytest

from clawguard.core.exceptions import PathViolation
from clawguard.vault.admin import ROTATION_TARGETS, RotationTarget, resolve_targets, rotate, store_secret
from clawguard.vault.models import AppRoleCredential
from clawguard.vault.session import VaultSessionManager
from tests import fakes


def test_store_secret_uses_short_admin_session(
    manager: VaultSessionManager, vault: fakes.FakeVault, admin_credential: AppRoleCredential
) -> None:
    assert store_secret(manager, admin_credential, "telegram-bot-token", "123:abc") == 1
    assert vault.secrets["telegram-bot-token"].value == "123:abc"
    assert vault.live_tokens() == []


def test_store_secret_validates_before_login(
    manager: VaultSessionManager, vault: fakes.FakeVault, admin_credential: AppRoleCredential
) -> None:
    with pytest.raises(PathViolation):
        store_secret(manager, admin_credential, "../escape", "v")
    with pytest.raises(ValueError):
        store_secret(manager, admin_credential, "ok-name", "")
    assert store_secret(manager, admin_credential, "ok-name", "v", dry_run=True) is None
    assert vault.requests == []


def test_rotate_all_reports_each_target(
    manager: VaultSessionManager, vault: fakes.FakeVault, admin_credential: AppRoleCredential
) -> None:
    answers = {
        "anthropic-api-key": "sk-ant-rotated-key",
        "openai-api-key": "not-an-openai-key",
        "telegram-bot-token": "",
        "discord-bot-token": "MTk-new",
    }

    def prompt(t: RotationTarget) -> str:
        return answers[t.secret]

    results = {r.target: r for r in rotate(manager, admin_credential, "all", prompt=prompt)}
    assert results["anthropic"].status == "rotated"
    assert results["anthropic"].version == 2
    assert results["openai"].status == "invalid"
    assert "sk-..." in results["openai"].message
    assert results["telegram"].status == "skipped"
    assert results["discord"].status == "rotated"
    assert vault.secrets["anthropic-api-key"].value == "sk-ant-rotated-key"
    assert "openai-api-key" not in vault.secrets


def test_rotate_dry_run_writes_nothing(
    manager: VaultSessionManager, vault: fakes.FakeVault, admin_credential: AppRoleCredential
) -> None:
    results = rotate(manager, admin_credential, "anthropic", prompt=lambda t: "sk-ant-x", dry_run=True)
    assert [r.status for r in results] == ["dry_run"]
    assert vault.secrets["anthropic-api-key"].version == 1


def test_resolve_targets() -> None:
    assert resolve_targets("all") == list(ROTATION_TARGETS)
    assert resolve_targets("openai") == ["openai"]
    with pytest.raises(KeyError):
        resolve_targets("github")
