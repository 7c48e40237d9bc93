"""clawguard.incident.controller

Revocation Controller. Degrade toward maximum safety.

Escalation: seal -> revoke OAuth -> stop consumers -> block network.
Restore: unseal -> open network -> start consumers. OAuth grants are never
restored here; re-authorization happens through the proxy, by a human.

Non-transactional on purpose. A step that fails is logged and recorded, and
the ladder moves on to the next one.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

from clawguard.core.exceptions import ClawguardError, UnsealKeyMissing
from clawguard.incident.actuators import ActuationReport, HostActuator
from clawguard.incident.state import (
    ConsumerState,
    LockdownState,
    LockdownStore,
    NetworkState,
    OAuthState,
    VaultState,
)
from clawguard.oauth.proxy import ALL, OAuthProxyClient, RevocationReport
from clawguard.security.audit import AuditLogger, NullAuditLogger
from clawguard.security.keystore import SEAL_TOKEN, UNSEAL_KEY, CredentialStore, get_optional
from clawguard.vault.credentials import require_credential
from clawguard.vault.models import Role
from clawguard.vault.session import VaultSessionManager

logger = logging.getLogger(__name__)


class StepStatus(StrEnum):
    OK = "ok"
    ALREADY = "already"
    FAILED = "failed"
    SKIPPED = "skipped"
    MANUAL = "manual"


@dataclass(frozen=True, slots=True)
class StepOutcome:
    step: str
    status: StepStatus
    detail: str
    state: LockdownState
    revocation: RevocationReport | None = None
    actuation: ActuationReport | None = None

    @property
    def failed(self) -> bool:
        return self.status == StepStatus.FAILED


@dataclass(slots=True)
class LockdownReport:
    action: str
    steps: list[StepOutcome] = field(default_factory=list)
    state: LockdownState = field(default_factory=LockdownState.normal)

    @property
    def failed_steps(self) -> list[StepOutcome]:
        return [s for s in self.steps if s.failed]

    @property
    def manual_steps(self) -> list[StepOutcome]:
        return [s for s in self.steps if s.status == StepStatus.MANUAL]

    @property
    def ok(self) -> bool:
        return not self.failed_steps

    def step(self, name: str) -> StepOutcome | None:
        for s in self.steps:
            if s.step == name:
                return s
        return None


class RevocationController:
    def __init__(
        self,
        manager: VaultSessionManager,
        store: CredentialStore,
        actuator: HostActuator,
        *,
        proxy: OAuthProxyClient | None = None,
        lockdown_store: LockdownStore | None = None,
        audit: AuditLogger | NullAuditLogger | None = None,
    ) -> None:
        self.manager = manager
        self.store = store
        self.actuator = actuator
        self.proxy = proxy
        self.lockdown_store = lockdown_store or LockdownStore(store)
        self.audit = audit or NullAuditLogger()

    def current_state(self) -> LockdownState:
        return self.lockdown_store.load()

    def _record(self, outcome: StepOutcome) -> StepOutcome:
        log = logger.warning if outcome.status == StepStatus.FAILED else logger.info
        log(
            "lockdown_step",
            extra={"step": outcome.step, "status": str(outcome.status), "detail": outcome.detail},
        )
        self.audit.log_action(
            f"lockdown.{outcome.step}",
            actor="operator",
            details={"detail": outcome.detail, "state": outcome.state.label},
            outcome=str(outcome.status),
        )
        self.lockdown_store.save(outcome.state)
        return outcome

    # --- vault ---

    def _seal_token(self) -> tuple[str, Callable[[], None]]:
        """A token allowed to seal: the stored seal token, else a short admin session."""

        token = get_optional(self.store, SEAL_TOKEN)
        if token:
            return token, lambda: None
        credential = require_credential(self.store, Role.ADMIN)
        session = self.manager.authenticate(credential)
        return session.require_usable("seal"), lambda: self.manager.revoke(session)

    def seal(self, state: LockdownState) -> StepOutcome:
        sealed_state = state.with_(vault=VaultState.SEALED)
        try:
            if self.manager.seal_status().sealed:
                return self._record(StepOutcome("seal", StepStatus.ALREADY, "vault already sealed", sealed_state))

            token, release = self._seal_token()
            try:
                changed = self.manager.seal(token)
            finally:
                # The token dies with the seal; a failed revoke here is expected.
                release()

            if not self.manager.seal_status().sealed:
                return self._record(StepOutcome("seal", StepStatus.FAILED, "vault still reports unsealed", state))
        except ClawguardError as e:
            return self._record(StepOutcome("seal", StepStatus.FAILED, f"{type(e).__name__}: {e}", state))

        if not changed:
            return self._record(StepOutcome("seal", StepStatus.ALREADY, "vault already sealed", sealed_state))
        return self._record(StepOutcome("seal", StepStatus.OK, "vault sealed", sealed_state))

    def unseal(self, state: LockdownState) -> StepOutcome:
        key = get_optional(self.store, UNSEAL_KEY)
        unsealed_state = state.with_(vault=VaultState.UNSEALED)
        try:
            if not self.manager.wait_until_reachable():
                return self._record(StepOutcome("unseal", StepStatus.FAILED, "vault unreachable", state))
            if not self.manager.seal_status().sealed:
                return self._record(StepOutcome("unseal", StepStatus.ALREADY, "vault already unsealed", unsealed_state))
            if not key:
                raise UnsealKeyMissing(f"no unseal key in credential store slot {UNSEAL_KEY!r}")
            status = self.manager.unseal(key)
        except UnsealKeyMissing as e:
            return self._record(
                StepOutcome("unseal", StepStatus.MANUAL, f"{e}; unseal the vault out of band", state)
            )
        except ClawguardError as e:
            return self._record(StepOutcome("unseal", StepStatus.FAILED, f"{type(e).__name__}: {e}", state))

        if status.sealed:
            detail = f"still sealed (progress {status.progress}/{status.threshold}); more key shares required"
            return self._record(StepOutcome("unseal", StepStatus.MANUAL, detail, state))
        return self._record(StepOutcome("unseal", StepStatus.OK, "vault unsealed", unsealed_state))

    # --- oauth ---

    def revoke_oauth(self, state: LockdownState, target: str = ALL, *, dry_run: bool = False) -> StepOutcome:
        if self.proxy is None:
            return self._record(
                StepOutcome("revoke_oauth", StepStatus.SKIPPED, "no OAuth proxy configured", state)
            )
        try:
            report = self.proxy.revoke(target, dry_run=dry_run)
        except ClawguardError as e:
            return self._record(
                StepOutcome("revoke_oauth", StepStatus.FAILED, f"{type(e).__name__}: {e}", state)
            )

        if dry_run:
            return StepOutcome("revoke_oauth", StepStatus.SKIPPED, report.summary(), state, revocation=report)

        if report.matched == 0:
            # Nothing left to revoke under this target.
            new_state = state.with_(oauth=OAuthState.REVOKED) if target == ALL else state
            return self._record(
                StepOutcome("revoke_oauth", StepStatus.ALREADY, report.summary(), new_state, revocation=report)
            )

        new_state = state.with_(oauth=OAuthState.REVOKED) if report.revoked_count else state
        status = StepStatus.FAILED if report.failed_count else StepStatus.OK
        return self._record(StepOutcome("revoke_oauth", status, report.summary(), new_state, revocation=report))

    def confirm_reauthorized(self, state: LockdownState) -> StepOutcome:
        """Operator says grants were re-authorized through the proxy."""

        return self._record(
            StepOutcome(
                "confirm_reauthorized",
                StepStatus.OK,
                "OAuth connections marked active",
                state.with_(oauth=OAuthState.ACTIVE),
            )
        )

    # --- host ---

    def stop_consumers(self, state: LockdownState) -> StepOutcome:
        report = self.actuator.stop_consumers()
        if report.succeeded:
            status, new_state = StepStatus.OK, state.with_(consumers=ConsumerState.STOPPED)
        elif report.nothing_available or not report.results:
            status, new_state = StepStatus.SKIPPED, state
        else:
            # Every stop command ran and none found anything to stop.
            status, new_state = StepStatus.ALREADY, state.with_(consumers=ConsumerState.STOPPED)
        return self._record(StepOutcome("stop_consumers", status, report.describe(), new_state, actuation=report))

    def start_consumers(self, state: LockdownState) -> StepOutcome:
        report = self.actuator.start_consumers()
        return self._record(
            self._toggle("start_consumers", report, state, consumers=ConsumerState.RUNNING)
        )

    def block_network(self, state: LockdownState) -> StepOutcome:
        report = self.actuator.block_network()
        return self._record(self._toggle("block_network", report, state, network=NetworkState.BLOCKED))

    def open_network(self, state: LockdownState) -> StepOutcome:
        report = self.actuator.open_network()
        return self._record(self._toggle("open_network", report, state, network=NetworkState.OPEN))

    @staticmethod
    def _toggle(step: str, report: ActuationReport, state: LockdownState, **change: object) -> StepOutcome:
        if report.succeeded:
            return StepOutcome(step, StepStatus.OK, report.describe(), state.with_(**change), actuation=report)
        if report.nothing_available or not report.results:
            return StepOutcome(step, StepStatus.SKIPPED, report.describe(), state, actuation=report)
        return StepOutcome(step, StepStatus.FAILED, report.describe(), state, actuation=report)

    # --- composites ---

    def _run_ladder(
        self,
        action: str,
        state: LockdownState,
        steps: list[Callable[[LockdownState], StepOutcome]],
    ) -> LockdownReport:
        report = LockdownReport(action=action, state=state)
        for fn in steps:
            try:
                outcome = fn(report.state)
            except Exception as e:  # noqa: BLE001 - one broken step must not stop the ladder
                logger.exception("lockdown_step_crashed", extra={"action": action})
                name = getattr(fn, "__name__", "step")
                outcome = self._record(
                    StepOutcome(name, StepStatus.FAILED, f"{type(e).__name__}: {e}", report.state)
                )
            report.steps.append(outcome)
            report.state = outcome.state
        return report

    def full_lockdown(self, state: LockdownState) -> LockdownReport:
        """Seal, revoke every OAuth grant, stop consumers, block the network."""

        logger.warning("full_lockdown_start", extra={"state": state.label})
        # The proxy key lives in the vault; read it while the vault is still open.
        if self.proxy is not None:
            self.proxy.prime()
        try:
            report = self._run_ladder(
                "full_lockdown",
                state,
                [self.seal, self.revoke_oauth, self.stop_consumers, self.block_network],
            )
        finally:
            if self.proxy is not None:
                self.proxy.forget_key()

        self.audit.log_action(
            "lockdown.full",
            actor="operator",
            details={"state": report.state.label, "failed": [s.step for s in report.failed_steps]},
            outcome="ok" if report.ok else "partial",
        )
        logger.warning("full_lockdown_complete", extra={"state": report.state.label})
        return report

    def restore(self, state: LockdownState) -> LockdownReport:
        """Unseal, reopen the network, start consumers. OAuth stays revoked."""

        report = self._run_ladder("restore", state, [self.unseal, self.open_network, self.start_consumers])

        if report.state.oauth == OAuthState.REVOKED:
            url = self.proxy.config.url if self.proxy is not None else "the OAuth proxy"
            report.steps.append(
                self._record(
                    StepOutcome(
                        "reauthorize_oauth",
                        StepStatus.MANUAL,
                        f"OAuth connections were revoked; re-authorize integrations via {url}",
                        report.state,
                    )
                )
            )

        self.audit.log_action(
            "lockdown.restore",
            actor="operator",
            details={"state": report.state.label, "failed": [s.step for s in report.failed_steps]},
            outcome="ok" if report.ok else "partial",
        )
        logger.info("restore_complete", extra={"state": report.state.label})
        return report
