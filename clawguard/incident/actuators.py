"""clawguard.incident.actuators

Host-side levers: stop/start consumers, block/open the network.

Every command is best effort. A missing executable is a warning and a
non-zero exit is recorded; nothing here raises into the escalation ladder.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field

from clawguard.core.config import LockdownConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CommandResult:
    argv: tuple[str, ...]
    returncode: int | None  # None: not run (tool missing, timeout, OS error)
    skipped: bool = False
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        cmd = " ".join(self.argv)
        if self.skipped:
            return f"{cmd}: skipped ({self.error})"
        if self.returncode is None:
            return f"{cmd}: error ({self.error})"
        return f"{cmd}: exit {self.returncode}"


class CommandRunner:
    """Runs argv lists. Tests inject a fake with the same two methods."""

    def __init__(self, *, timeout_s: float = 30.0) -> None:
        self.timeout_s = timeout_s

    def which(self, tool: str) -> str | None:
        return shutil.which(tool)

    def run(self, argv: Sequence[str]) -> CommandResult:
        argv = tuple(argv)
        if not argv:
            return CommandResult(argv=argv, returncode=None, skipped=True, error="empty command")
        if self.which(argv[0]) is None:
            return CommandResult(argv=argv, returncode=None, skipped=True, error=f"{argv[0]} not installed")
        try:
            proc = subprocess.run(
                list(argv),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                timeout=self.timeout_s,
                check=False,
                text=True,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(argv=argv, returncode=None, error=f"timed out after {self.timeout_s:g}s")
        except OSError as e:
            return CommandResult(argv=argv, returncode=None, error=str(e))
        err = (proc.stderr or "").strip().splitlines()
        return CommandResult(argv=argv, returncode=proc.returncode, error=err[-1] if err else "")


@dataclass(slots=True)
class ActuationReport:
    action: str
    results: list[CommandResult] = field(default_factory=list)

    @property
    def attempted(self) -> list[CommandResult]:
        return [r for r in self.results if not r.skipped]

    @property
    def succeeded(self) -> bool:
        """At least one command ran and exited zero."""

        return any(r.ok for r in self.results)

    @property
    def nothing_available(self) -> bool:
        return bool(self.results) and all(r.skipped for r in self.results)

    def describe(self) -> str:
        if not self.results:
            return f"{self.action}: no commands configured"
        return "; ".join(r.describe() for r in self.results)


class HostActuator:
    def __init__(self, config: LockdownConfig, runner: CommandRunner | None = None) -> None:
        self.config = config
        self.runner = runner or CommandRunner(timeout_s=config.command_timeout_s)

    def _run_all(self, action: str, commands: Sequence[Sequence[str]]) -> ActuationReport:
        report = ActuationReport(action=action)
        for argv in commands:
            result = self.runner.run(argv)
            report.results.append(result)
            if result.skipped:
                logger.warning("actuator_tool_missing", extra={"action": action, "command": " ".join(argv)})
            elif not result.ok:
                logger.warning(
                    "actuator_command_failed",
                    extra={"action": action, "command": " ".join(argv), "returncode": result.returncode},
                )
            else:
                logger.info("actuator_command_ok", extra={"action": action, "command": " ".join(argv)})
        return report

    def stop_consumers(self) -> ActuationReport:
        return self._run_all("stop_consumers", self.config.stop_commands)

    def start_consumers(self) -> ActuationReport:
        return self._run_all("start_consumers", self.config.start_commands)

    def block_network(self) -> ActuationReport:
        return self._run_all("block_network", self.config.block_commands)

    def open_network(self) -> ActuationReport:
        return self._run_all("open_network", self.config.unblock_commands)

