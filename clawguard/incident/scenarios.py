"""clawguard.incident.scenarios

Incident runbooks as a table.

Registry responsibilities:
- @register(ScenarioKind.X, confirm="...") decorator
- lookup/list helpers

Each scenario drives the revocation controller and, where it helps the
operator, reads the gateway log for evidence. Scenarios never decide on their
own to skip confirmation; the CLI asks.
"""

from __future__ import annotations

import collections
import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Protocol

from clawguard.core.config import Config
from clawguard.incident.controller import RevocationController, StepOutcome
from clawguard.incident.state import LockdownState
from clawguard.oauth.proxy import ALL

logger = logging.getLogger(__name__)


class ScenarioKind(StrEnum):
    BAO_SEAL = "bao-seal"
    NANGO_REVOKE = "nango-revoke"
    COMPROMISED_KEY = "compromised-key"
    PROMPT_INJECTION = "prompt-injection"
    RUNAWAY_COST = "runaway-cost"
    FULL_LOCKDOWN = "full-lockdown"
    RESTORE = "restore"


EXFILTRATION_PATTERN = re.compile(r"curl|wget|nc |bash.*-i|rm -rf|python.*-c|eval|base64", re.IGNORECASE)
FOREIGN_MODEL_PATTERN = re.compile(r"model.*gpt|model.*openai", re.IGNORECASE)
INJECTION_PATTERN = re.compile(
    r"ignore.*previous|system.*prompt|jailbreak|SUDO|root access|credentials|~/\.openclaw",
    re.IGNORECASE,
)
SESSION_PATTERN = re.compile(r"session[_-][a-zA-Z0-9_-]+")
SPAWN_PATTERN = re.compile(r"sessions_spawn|spawn.*agent", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class Finding:
    category: str
    text: str
    count: int | None = None

    def describe(self) -> str:
        return f"{self.count:>5}  {self.text}" if self.count is not None else self.text


@dataclass(slots=True)
class ScenarioReport:
    scenario: ScenarioKind
    steps: list[StepOutcome] = field(default_factory=list)
    findings: list[Finding] = field(default_factory=list)
    next_steps: list[str] = field(default_factory=list)
    state: LockdownState = field(default_factory=LockdownState.normal)

    @property
    def ok(self) -> bool:
        return not any(s.failed for s in self.steps)

    def add(self, outcome: StepOutcome) -> None:
        self.steps.append(outcome)
        self.state = outcome.state


@dataclass(frozen=True, slots=True)
class ScenarioContext:
    """Everything a scenario may touch."""

    config: Config
    controller: RevocationController
    state: LockdownState
    target: str = ALL


class Scenario(Protocol):
    kind: ScenarioKind
    confirm: str | None

    def execute(self, ctx: ScenarioContext) -> ScenarioReport: ...


_REGISTRY: dict[ScenarioKind, type[Any]] = {}


def register(kind: ScenarioKind, *, confirm: str | None) -> Callable[[type[Any]], type[Any]]:
    def _decorator(cls: type[Any]) -> type[Any]:
        if kind in _REGISTRY and _REGISTRY[kind] is not cls:
            raise ValueError(f"scenario already registered: {kind}")

        setattr(cls, "kind", kind)
        setattr(cls, "confirm", confirm)
        _REGISTRY[kind] = cls
        return cls

    return _decorator


def get_scenario(kind: ScenarioKind | str) -> Scenario:
    try:
        key = ScenarioKind(kind)
    except ValueError:
        raise KeyError(f"unknown scenario: {kind}") from None
    return _REGISTRY[key]()


def list_scenarios() -> list[ScenarioKind]:
    return [k for k in ScenarioKind if k in _REGISTRY]


def confirmation_for(kind: ScenarioKind | str, target: str = ALL) -> str | None:
    scenario = get_scenario(kind)
    if scenario.kind == ScenarioKind.NANGO_REVOKE and target != ALL:
        return f"Revoke OAuth connection: {target}"
    return scenario.confirm


# --- log evidence ---


def tail_lines(path: Path, n: int | None) -> list[str] | None:
    """Last `n` lines of a text file (all lines if `n` is None); None if unreadable."""

    try:
        with path.open("r", encoding="utf-8", errors="replace") as fh:
            if n is None:
                return [line.rstrip("\n") for line in fh]
            return [line.rstrip("\n") for line in collections.deque(fh, maxlen=n)]
    except OSError:
        return None


def grep(lines: list[str], pattern: re.Pattern[str], *, last: int = 20) -> list[str]:
    hits = [line for line in lines if pattern.search(line)]
    return hits[-last:]


def rank_sessions(lines: list[str], *, top: int = 10) -> list[tuple[str, int]]:
    counts: collections.Counter[str] = collections.Counter()
    for line in lines:
        counts.update(SESSION_PATTERN.findall(line))
    return counts.most_common(top)


def _missing_log(path: Path) -> Finding:
    return Finding("log", f"gateway log not readable: {path}")


def _sandbox_enabled(config_path: Path) -> bool | None:
    try:
        raw = json.loads(config_path.read_text())
    except (OSError, ValueError):
        return None
    sandbox = ((raw.get("agents") or {}).get("defaults") or {}).get("sandbox") or {}
    return sandbox.get("mode") in ("non-main", "all")


# --- scenarios ---


@register(ScenarioKind.BAO_SEAL, confirm="Seal the vault and cut all secret access")
class BaoSeal:
    def execute(self, ctx: ScenarioContext) -> ScenarioReport:
        report = ScenarioReport(scenario=self.kind, state=ctx.state)
        report.add(ctx.controller.seal(report.state))
        report.add(ctx.controller.stop_consumers(report.state))
        report.next_steps = [
            "Investigate the incident",
            "Unseal: clawguard vault unseal",
            "Restart: clawguard incident restore",
        ]
        return report


@register(ScenarioKind.NANGO_REVOKE, confirm="Revoke ALL OAuth connections")
class NangoRevoke:
    def execute(self, ctx: ScenarioContext) -> ScenarioReport:
        report = ScenarioReport(scenario=self.kind, state=ctx.state)
        outcome = ctx.controller.revoke_oauth(report.state, ctx.target)
        report.add(outcome)
        if outcome.revocation is not None:
            for item in outcome.revocation.failed:
                report.findings.append(
                    Finding("revoke_failed", f"{item.connection_id} ({item.provider_key}): {item.error}")
                )
        report.next_steps = [f"Re-authorize integrations via {ctx.config.oauth.url} once the incident is resolved"]
        return report


@register(ScenarioKind.COMPROMISED_KEY, confirm="Stop the gateway and seal the vault")
class CompromisedKey:
    def execute(self, ctx: ScenarioContext) -> ScenarioReport:
        report = ScenarioReport(scenario=self.kind, state=ctx.state)
        report.add(ctx.controller.seal(report.state))
        report.add(ctx.controller.stop_consumers(report.state))

        log_path = ctx.config.lockdown.gateway_log
        recent = tail_lines(log_path, 100)
        if recent is None:
            report.findings.append(_missing_log(log_path))
        else:
            for line in grep(recent, EXFILTRATION_PATTERN, last=100):
                report.findings.append(Finding("suspicious", line))
            everything = tail_lines(log_path, None) or []
            for line in grep(everything, FOREIGN_MODEL_PATTERN):
                report.findings.append(Finding("foreign_model", line))

        report.next_steps = [
            "Revoke the leaked key at the provider console now",
            "Unseal: clawguard vault unseal",
            "Store the replacement: clawguard secret rotate anthropic",
            "Check other provider dashboards if applicable",
            "Review logs for data exfiltration",
            "Restart: clawguard incident restore",
        ]
        return report


@register(ScenarioKind.PROMPT_INJECTION, confirm=None)
class PromptInjection:
    def execute(self, ctx: ScenarioContext) -> ScenarioReport:
        report = ScenarioReport(scenario=self.kind, state=ctx.state)

        log_path = ctx.config.lockdown.gateway_log
        lines = tail_lines(log_path, None)
        if lines is None:
            report.findings.append(_missing_log(log_path))
        else:
            for line in grep(lines, INJECTION_PATTERN):
                report.findings.append(Finding("injection", line))

        sandbox = _sandbox_enabled(ctx.config.lockdown.gateway_config)
        if sandbox:
            report.findings.append(Finding("sandbox", "sandbox already enabled"))
        else:
            report.findings.append(
                Finding("sandbox", f"sandbox not detected; review {ctx.config.lockdown.gateway_config}")
            )

        report.next_steps = [
            "Identify the sender from the log lines above",
            "Add the sender to the channel denylist in openclaw.json",
            "Pause the session: openclaw sessions pause <session-id>",
            "Harden: set agents.defaults.sandbox.mode = 'all'",
            "Restart the gateway",
        ]
        return report


@register(ScenarioKind.RUNAWAY_COST, confirm="Kill the gateway immediately")
class RunawayCost:
    def execute(self, ctx: ScenarioContext) -> ScenarioReport:
        report = ScenarioReport(scenario=self.kind, state=ctx.state)
        report.add(ctx.controller.stop_consumers(report.state))

        log_path = ctx.config.lockdown.gateway_log
        recent = tail_lines(log_path, 500)
        if recent is None:
            report.findings.append(_missing_log(log_path))
        else:
            for session, count in rank_sessions(recent):
                report.findings.append(Finding("session_activity", session, count=count))
            for line in grep(tail_lines(log_path, None) or [], SPAWN_PATTERN):
                report.findings.append(Finding("spawn", line))

        report.next_steps = [
            "Set api.costControl (maxCostPerHour, maxCostPerDay, action: pause_gateway) in openclaw.json",
            "Cap sessions.maxDepth before restarting",
            "Restart: clawguard incident restore",
        ]
        return report


@register(
    ScenarioKind.FULL_LOCKDOWN,
    confirm="Seal the vault, revoke all OAuth, stop all services and block access",
)
class FullLockdown:
    def execute(self, ctx: ScenarioContext) -> ScenarioReport:
        ladder = ctx.controller.full_lockdown(ctx.state)
        return ScenarioReport(
            scenario=self.kind,
            steps=ladder.steps,
            state=ladder.state,
            next_steps=["To restore: clawguard incident restore"],
        )


@register(ScenarioKind.RESTORE, confirm="Re-enable services")
class Restore:
    def execute(self, ctx: ScenarioContext) -> ScenarioReport:
        ladder = ctx.controller.restore(ctx.state)
        return ScenarioReport(
            scenario=self.kind,
            steps=ladder.steps,
            state=ladder.state,
            next_steps=[s.detail for s in ladder.manual_steps],
        )


def run_scenario(kind: ScenarioKind | str, ctx: ScenarioContext) -> ScenarioReport:
    scenario = get_scenario(kind)
    logger.warning("incident_start", extra={"scenario": str(scenario.kind), "target": ctx.target})
    report = scenario.execute(ctx)
    ctx.controller.audit.log_action(
        "incident.scenario",
        actor="operator",
        details={"scenario": str(scenario.kind), "target": ctx.target, "findings": len(report.findings)},
        outcome="ok" if report.ok else "partial",
    )
    logger.warning("incident_complete", extra={"scenario": str(scenario.kind), "state": report.state.label})
    return report
