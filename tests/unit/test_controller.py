from __future__ import annotations

from pathlib import Path

import pytest

from clawguard.core.config import Config
from clawguard.core.database import Database
from clawguard.incident.actuators import HostActuator
from clawguard.incident.controller import RevocationController, StepStatus
from clawguard.incident.state import ConsumerState, LockdownState, NetworkState, OAuthState, VaultState
from clawguard.security import keystore as ks
from clawguard.security.audit import AuditLogger
from clawguard.security.keystore import MemoryStore
from clawguard.vault.session import VaultSessionManager
from tests import fakes


def test_seal_with_admin_session(controller: RevocationController, vault: fakes.FakeVault) -> None:
    outcome = controller.seal(LockdownState.normal())
    assert outcome.status == StepStatus.OK
    assert outcome.state.vault == VaultState.SEALED
    assert vault.sealed
    assert controller.current_state().vault == VaultState.SEALED


def test_seal_prefers_stored_seal_token(
    controller: RevocationController, vault: fakes.FakeVault, store: MemoryStore
) -> None:
    store.set(ks.SEAL_TOKEN, fakes.SEAL_TOKEN)
    assert controller.seal(LockdownState.normal()).status == StepStatus.OK
    assert "/v1/auth/approle/login" not in vault.paths()


def test_seal_when_already_sealed(controller: RevocationController, vault: fakes.FakeVault) -> None:
    vault.sealed = True
    outcome = controller.seal(LockdownState.normal())
    assert outcome.status == StepStatus.ALREADY
    assert outcome.state.vault == VaultState.SEALED


def test_seal_failure_keeps_state(controller: RevocationController, vault: fakes.FakeVault) -> None:
    vault.down = True
    outcome = controller.seal(LockdownState.normal())
    assert outcome.failed
    assert outcome.state.vault == VaultState.UNSEALED
    assert "Unreachable" in outcome.detail


def test_unseal(controller: RevocationController, vault: fakes.FakeVault) -> None:
    vault.sealed = True
    outcome = controller.unseal(LockdownState.normal().with_(vault=VaultState.SEALED))
    assert outcome.status == StepStatus.OK
    assert outcome.state.vault == VaultState.UNSEALED
    assert not vault.sealed

    assert controller.unseal(outcome.state).status == StepStatus.ALREADY


def test_unseal_without_key_is_manual(
    controller: RevocationController, vault: fakes.FakeVault, store: MemoryStore
) -> None:
    store.remove_key(ks.UNSEAL_KEY)
    vault.sealed = True
    outcome = controller.unseal(LockdownState.normal().with_(vault=VaultState.SEALED))
    assert outcome.status == StepStatus.MANUAL
    assert outcome.state.vault == VaultState.SEALED
    assert vault.sealed


def test_unseal_unreachable_fails(controller: RevocationController, vault: fakes.FakeVault) -> None:
    vault.down = True
    assert controller.unseal(LockdownState.normal()).failed


def test_revoke_oauth_partial_failure(controller: RevocationController, proxy: fakes.FakeProxy) -> None:
    proxy.fail_ids = {"conn-slack"}
    outcome = controller.revoke_oauth(LockdownState.normal())
    assert outcome.status == StepStatus.FAILED
    assert outcome.state.oauth == OAuthState.REVOKED
    assert outcome.revocation.revoked_count == 2


def test_revoke_oauth_nothing_left(controller: RevocationController, proxy: fakes.FakeProxy) -> None:
    proxy.connections.clear()
    outcome = controller.revoke_oauth(LockdownState.normal())
    assert outcome.status == StepStatus.ALREADY
    assert outcome.state.oauth == OAuthState.REVOKED

    single = controller.revoke_oauth(LockdownState.normal(), "github")
    assert single.status == StepStatus.ALREADY
    assert single.state.oauth == OAuthState.ACTIVE


def test_revoke_oauth_dry_run_is_not_recorded(controller: RevocationController, proxy: fakes.FakeProxy) -> None:
    outcome = controller.revoke_oauth(LockdownState.normal(), dry_run=True)
    assert outcome.status == StepStatus.SKIPPED
    assert proxy.deleted == []
    assert controller.current_state().is_normal


def test_revoke_oauth_without_proxy(
    test_config: Config, manager: VaultSessionManager, store: MemoryStore, command_runner: fakes.FakeCommandRunner
) -> None:
    c = RevocationController(manager, store, HostActuator(test_config.lockdown, runner=command_runner))
    assert c.revoke_oauth(LockdownState.normal()).status == StepStatus.SKIPPED


def test_confirm_reauthorized(controller: RevocationController) -> None:
    revoked = LockdownState.normal().with_(oauth=OAuthState.REVOKED)
    assert controller.confirm_reauthorized(revoked).state.oauth == OAuthState.ACTIVE


def test_stop_consumers_statuses(test_config: Config, manager: VaultSessionManager, store: MemoryStore) -> None:
    def make(runner: fakes.FakeCommandRunner) -> RevocationController:
        return RevocationController(manager, store, HostActuator(test_config.lockdown, runner=runner))

    ok = make(fakes.FakeCommandRunner()).stop_consumers(LockdownState.normal())
    assert ok.status == StepStatus.OK
    assert ok.state.consumers == ConsumerState.STOPPED

    nothing = make(fakes.FakeCommandRunner(missing=("docker", "systemctl", "pkill"))).stop_consumers(
        LockdownState.normal()
    )
    assert nothing.status == StepStatus.SKIPPED
    assert nothing.state.consumers == ConsumerState.RUNNING

    idle = make(fakes.FakeCommandRunner(returncodes={"docker": 1, "systemctl": 5, "pkill": 1})).stop_consumers(
        LockdownState.normal()
    )
    assert idle.status == StepStatus.ALREADY
    assert idle.state.consumers == ConsumerState.STOPPED


def test_block_network_failure(test_config: Config, manager: VaultSessionManager, store: MemoryStore) -> None:
    runner = fakes.FakeCommandRunner(returncodes={"ufw": 1, "tailscale": 1})
    c = RevocationController(manager, store, HostActuator(test_config.lockdown, runner=runner))
    outcome = c.block_network(LockdownState.normal())
    assert outcome.failed
    assert outcome.state.network == NetworkState.OPEN


def test_full_lockdown_runs_every_step_in_order(
    controller: RevocationController,
    vault: fakes.FakeVault,
    proxy: fakes.FakeProxy,
    command_runner: fakes.FakeCommandRunner,
) -> None:
    report = controller.full_lockdown(LockdownState.normal())

    assert [s.step for s in report.steps] == ["seal", "revoke_oauth", "stop_consumers", "block_network"]
    assert report.ok
    assert report.state.label == "lockdown"
    assert vault.sealed
    # Key was read before sealing, so revocation still worked.
    assert proxy.connections == []
    assert command_runner.ran("tailscale")
    assert controller.current_state().label == "lockdown"
    assert controller.proxy._key is None


def test_full_lockdown_continues_past_a_crashing_step(
    controller: RevocationController, vault: fakes.FakeVault, monkeypatch: pytest.MonkeyPatch
) -> None:
    def boom(state: LockdownState):
        raise RuntimeError("actuator exploded")

    monkeypatch.setattr(controller, "stop_consumers", boom)
    report = controller.full_lockdown(LockdownState.normal())
    assert [s.status for s in report.steps] == [StepStatus.OK, StepStatus.OK, StepStatus.FAILED, StepStatus.OK]
    assert report.steps[2].step == "boom"
    assert report.state.label == "partial"
    assert not report.ok


@pytest.mark.parametrize("error", [RuntimeError("keyring locked"), ValueError("wrong master password")])
def test_full_lockdown_survives_an_unreadable_proxy_key(
    controller: RevocationController,
    vault: fakes.FakeVault,
    proxy: fakes.FakeProxy,
    command_runner: fakes.FakeCommandRunner,
    monkeypatch: pytest.MonkeyPatch,
    error: Exception,
) -> None:
    def provider() -> str:
        raise error

    monkeypatch.setattr(controller.proxy, "_key_provider", provider)
    report = controller.full_lockdown(LockdownState.normal())

    assert [s.step for s in report.steps] == ["seal", "revoke_oauth", "stop_consumers", "block_network"]
    assert [s.status for s in report.steps] == [StepStatus.OK, StepStatus.FAILED, StepStatus.OK, StepStatus.OK]
    assert vault.sealed
    assert len(proxy.connections) == 3
    assert command_runner.ran("tailscale")
    assert report.state.label == "partial"


def test_seal_twice_in_a_row(controller: RevocationController, vault: fakes.FakeVault) -> None:
    first = controller.seal(LockdownState.normal())
    second = controller.seal(first.state)

    assert first.status == StepStatus.OK
    assert second.status == StepStatus.ALREADY
    assert not second.failed
    assert second.state.vault == VaultState.SEALED
    assert vault.sealed


def test_restore_leaves_oauth_revoked(
    controller: RevocationController, vault: fakes.FakeVault, command_runner: fakes.FakeCommandRunner
) -> None:
    locked = controller.full_lockdown(LockdownState.normal()).state
    report = controller.restore(locked)

    assert [s.step for s in report.steps] == ["unseal", "open_network", "start_consumers", "reauthorize_oauth"]
    assert report.manual_steps[0].step == "reauthorize_oauth"
    assert "http://localhost:3003" in report.manual_steps[0].detail
    assert report.state.vault == VaultState.UNSEALED
    assert report.state.network == NetworkState.OPEN
    assert report.state.consumers == ConsumerState.RUNNING
    assert report.state.oauth == OAuthState.REVOKED
    assert report.state.label == "revoked"
    assert not vault.sealed


def test_steps_are_audited(
    test_config: Config,
    temp_dir: Path,
    manager: VaultSessionManager,
    store: MemoryStore,
    proxy_client,
    command_runner: fakes.FakeCommandRunner,
) -> None:
    db = Database(temp_dir / "audit.db")
    audit = AuditLogger(db)
    c = RevocationController(
        manager, store, HostActuator(test_config.lockdown, runner=command_runner), proxy=proxy_client, audit=audit
    )
    c.full_lockdown(LockdownState.normal())

    actions = [r["action"] for r in audit.query()]
    assert actions[0] == "lockdown.full"
    assert {"lockdown.seal", "lockdown.revoke_oauth", "lockdown.stop_consumers", "lockdown.block_network"} <= set(
        actions
    )
    db.close()
