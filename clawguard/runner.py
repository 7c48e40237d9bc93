"""clawguard.runner

Ephemeral task runner.

Authenticate, fetch the batch, revoke, run the task with the secrets in its
environment, wipe. The AppRole pair never reaches the task.

Exit codes:
- 0: task succeeded
- 75: one or more secrets missing and `runner.require_all_secrets` is set (task not started)
- 77: vault unreachable, sealed, or the AppRole pair was rejected (task not started)
- 78: no task command
- anything else: the task's own exit code, unchanged
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from clawguard.core.config import Config
from clawguard.core.exceptions import AuthError, ConfigError, Sealed, Unreachable, VaultError
from clawguard.security import keystore as ks
from clawguard.security.audit import AuditLogger, NullAuditLogger
from clawguard.vault.cache import CredentialCache
from clawguard.vault.credentials import find_credential
from clawguard.vault.models import Role
from clawguard.vault.session import VaultSessionManager

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL = 75
EXIT_AUTH = 77
EXIT_CONFIG = 78

Command = Sequence[str] | str
Executor = Callable[[Command, dict[str, str]], int]

# Never handed to the task.
_STRIPPED_ENV: frozenset[str] = frozenset(
    [name for slot in ks.KNOWN_SLOTS for name in ks.slot_env_names(slot)] + [ks.MASTER_PASSWORD_ENV]
)


@dataclass(frozen=True, slots=True)
class RunOutcome:
    exit_code: int
    reason: str
    loaded: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


def resolve_command(argv: Sequence[str], environ: Mapping[str, str]) -> Command | None:
    """argv after `--` wins; otherwise `TASK_COMMAND` as a shell string."""

    if argv:
        return list(argv)
    cmd = (environ.get("TASK_COMMAND") or "").strip()
    return cmd or None


def resolve_secrets(explicit: Iterable[str] | None, environ: Mapping[str, str], default: Iterable[str]) -> list[str]:
    names = list(explicit or [])
    if not names and environ.get("SECRETS_TO_FETCH"):
        names = environ["SECRETS_TO_FETCH"].split(",")
    if not names:
        names = list(default)
    return [n.strip() for n in names if n.strip()]


def task_environment(base: Mapping[str, str], secrets: Mapping[str, str]) -> dict[str, str]:
    env = {k: v for k, v in base.items() if k not in _STRIPPED_ENV}
    env.update(secrets)
    return env


def execute(command: Command, env: dict[str, str]) -> int:
    shell = isinstance(command, str)
    try:
        proc = subprocess.run(command if shell else list(command), env=env, shell=shell, check=False)
    except FileNotFoundError:
        logger.error("task_not_found", extra={"command": command if shell else command[0]})
        return 127
    # Killed by a signal: report it the way a shell would.
    return 128 - proc.returncode if proc.returncode < 0 else proc.returncode


def run_task(
    config: Config,
    store: ks.CredentialStore,
    command: Command | None,
    names: Iterable[str] | None = None,
    *,
    manager: VaultSessionManager | None = None,
    executor: Executor = execute,
    environ: Mapping[str, str] | None = None,
    audit: AuditLogger | NullAuditLogger | None = None,
    hooks: bool = True,
) -> RunOutcome:
    audit = audit or NullAuditLogger()
    base_env = dict(os.environ if environ is None else environ)

    if not command:
        logger.error("task_command_missing")
        return RunOutcome(EXIT_CONFIG, "no task command (pass argv after -- or set TASK_COMMAND)")

    wanted = list(names) if names is not None else list(config.runner.secrets)
    credential = find_credential(store, Role.AGENT)
    if credential is None:
        logger.info("runner_no_vault", extra={"detail": "no agent AppRole configured; running without secrets"})
        code = executor(command, task_environment(base_env, {}))
        audit.log_action("runner.task", actor="agent", details={"exit_code": code, "loaded": 0}, outcome="no_vault")
        return RunOutcome(code, "task ran without secrets")

    manager = manager or VaultSessionManager(config.vault, audit=audit)
    cache = CredentialCache(manager)
    if hooks:
        cache.install_release_hooks()
    try:
        try:
            cache.session = manager.authenticate(credential)
            result = cache.load(cache.session, wanted)
        except (Unreachable, Sealed, AuthError) as e:
            logger.error("runner_auth_failed", extra={"error": f"{type(e).__name__}: {e}"})
            audit.log_action("runner.task", actor="agent", details={"error": type(e).__name__}, outcome="auth_failed")
            return RunOutcome(EXIT_AUTH, f"{type(e).__name__}: {e}")
        except ConfigError as e:
            logger.error("runner_config_invalid", extra={"error": str(e)})
            audit.log_action("runner.task", actor="agent", details={"error": "ConfigError"}, outcome="config_error")
            return RunOutcome(EXIT_CONFIG, f"ConfigError: {e}")
        except VaultError as e:
            logger.error("runner_fetch_failed", extra={"error": f"{type(e).__name__}: {e}"})
            audit.log_action("runner.task", actor="agent", details={"error": type(e).__name__}, outcome="fetch_failed")
            return RunOutcome(EXIT_PARTIAL, f"{type(e).__name__}: {e}", missing=wanted)

        loaded = sorted(result.values)
        if result.warnings and config.runner.require_all_secrets:
            logger.error("runner_secrets_missing", extra={"missing": result.missing})
            audit.log_action(
                "runner.task", actor="agent", details={"missing": result.missing}, outcome="partial"
            )
            return RunOutcome(EXIT_PARTIAL, "required secrets missing", loaded=loaded, missing=result.missing)

        env = task_environment(base_env, cache.environment())
        # The task never needs the token; kill it before handing over control.
        manager.revoke(cache.session)

        logger.info("runner_task_start", extra={"loaded": len(loaded)})
        code = executor(command, env)
    finally:
        cache.release()

    logger.info("runner_task_exit", extra={"exit_code": code})
    audit.log_action(
        "runner.task",
        actor="agent",
        details={"exit_code": code, "loaded": len(loaded), "missing": result.missing},
        outcome="ok" if code == EXIT_OK else "task_failed",
    )
    return RunOutcome(code, "task finished", loaded=loaded, missing=result.missing)
