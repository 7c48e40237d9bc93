"""clawguard.cli_incident

Incident subcommand for the clawguard CLI.

Every scenario that changes state asks for a typed `yes` first. `--yes`
skips the prompt for scripted use.
"""

from __future__ import annotations

import json
import sys
from collections.abc import Callable
from typing import Any

from clawguard.core.config import Config
from clawguard.incident.controller import RevocationController, StepOutcome
from clawguard.incident.scenarios import ScenarioContext, ScenarioReport, confirmation_for, run_scenario


def require_confirm(message: str, *, ask: Callable[[str], str] = input) -> bool:
    try:
        answer = ask(f"WARNING: {message}. Type 'yes' to confirm: ")
    except EOFError:
        return False
    return answer.strip() == "yes"


def step_line(step: StepOutcome) -> str:
    return f"  [{step.status:<7}] {step.step:<20} {step.detail}"


def report_to_dict(report: ScenarioReport) -> dict[str, Any]:
    return {
        "scenario": str(report.scenario),
        "ok": report.ok,
        "steps": [
            {
                "step": s.step,
                "status": str(s.status),
                "detail": s.detail,
                **(
                    {
                        "revoked": s.revocation.revoked_count,
                        "failed": s.revocation.failed_count,
                    }
                    if s.revocation is not None
                    else {}
                ),
            }
            for s in report.steps
        ],
        "findings": [{"category": f.category, "text": f.text, "count": f.count} for f in report.findings],
        "next_steps": report.next_steps,
        "state": report.state.to_dict(),
    }


def print_report(report: ScenarioReport) -> None:
    print(f"{report.scenario}")
    for s in report.steps:
        print(step_line(s))

    if report.findings:
        print("findings:")
        for f in report.findings:
            print(f"  {f.category:<16} {f.describe()}")

    if report.next_steps:
        print("next steps:")
        for i, line in enumerate(report.next_steps, 1):
            print(f"  {i}. {line}")

    print(f"state: {report.state.label}")


def cmd_incident(
    *,
    config: Config,
    controller: RevocationController,
    scenario: str,
    target: str,
    yes: bool = False,
    as_json: bool = False,
    ask: Callable[[str], str] = input,
) -> int:
    try:
        message = confirmation_for(scenario, target)
    except KeyError as e:
        print(f"error: {e.args[0]}", file=sys.stderr)
        return 2

    if message and not yes and not require_confirm(message, ask=ask):
        print("Aborted.")
        return 0

    ctx = ScenarioContext(config=config, controller=controller, state=controller.current_state(), target=target)
    report = run_scenario(scenario, ctx)

    if as_json:
        print(json.dumps(report_to_dict(report), indent=2, sort_keys=True))
    else:
        print_report(report)
    return 0 if report.ok else 1
