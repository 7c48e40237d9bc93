"""clawguard.cli

Command line interface entry point for clawguard.

Design constraints:
- argparse-based.
- Lazy imports: do not import httpx/pydantic at parse time.
- Every vault session a command opens is revoked before the command returns.
"""

from __future__ import annotations

import argparse
import getpass
import json
import os
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

EPILOG = "A token that outlives its task is a token someone else gets to use."

SCENARIOS = (
    "bao-seal",
    "nango-revoke",
    "compromised-key",
    "prompt-injection",
    "runaway-cost",
    "full-lockdown",
    "restore",
)


@dataclass(frozen=True)
class CliContext:
    """Where the CLI gets its collaborators. Tests swap in fakes."""

    repo_root: Path
    environ: Mapping[str, str] | None = None
    store: Any = None
    vault_transport: Any = None
    proxy_transport: Any = None
    command_runner: Any = None
    executor: Any = None
    sleep: Callable[[float], None] | None = None
    ask: Callable[[str], str] = input
    ask_secret: Callable[[str], str] = getpass.getpass

    @property
    def env(self) -> Mapping[str, str]:
        return os.environ if self.environ is None else self.environ


def _repo_root_from_cwd() -> Path:
    return Path.cwd()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clawguard",
        description="Secret brokering and incident response for a chat-agent gateway.",
        epilog=EPILOG,
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit.",
    )

    sub = parser.add_subparsers(dest="command")

    p_run = sub.add_parser("run", help="Run a task with vault secrets in its environment")
    p_run.add_argument("--secret", action="append", dest="secrets", default=None, help="Secret name (repeatable).")
    p_run.add_argument("--require-all", action="store_true", help="Refuse to start the task if any secret is missing.")
    p_run.add_argument("task", nargs=argparse.REMAINDER, help="Task argv after --; else TASK_COMMAND.")

    p_secret = sub.add_parser("secret", help="Store, rotate and list vault secrets (admin role)")
    secret_sub = p_secret.add_subparsers(dest="secret_command")
    p_store = secret_sub.add_parser("store", help="Store one secret")
    p_store.add_argument("name")
    p_store.add_argument("--value", default=None, help="Value (prompted if omitted).")
    p_store.add_argument("--dry-run", action="store_true")
    p_rotate = secret_sub.add_parser("rotate", help="Rotate provider keys")
    p_rotate.add_argument("target", nargs="?", default="all")
    p_rotate.add_argument("--dry-run", action="store_true")
    secret_sub.add_parser("list", help="List secret names")

    p_vault = sub.add_parser("vault", help="Vault seal lifecycle")
    vault_sub = p_vault.add_subparsers(dest="vault_command")
    vault_sub.add_parser("status", help="Seal status")
    vault_sub.add_parser("seal", help="Seal the vault")
    vault_sub.add_parser("unseal", help="Unseal with the stored unseal key")

    p_oauth = sub.add_parser("oauth", help="OAuth proxy connections")
    oauth_sub = p_oauth.add_subparsers(dest="oauth_command")
    oauth_sub.add_parser("list", help="List connections")
    p_revoke = oauth_sub.add_parser("revoke", help="Revoke one connection or all")
    p_revoke.add_argument("target", nargs="?", default="all")
    p_revoke.add_argument("--dry-run", action="store_true")
    p_revoke.add_argument("--yes", action="store_true")
    oauth_sub.add_parser("reauthorized", help="Mark OAuth connections re-authorized after a lockdown")

    p_incident = sub.add_parser("incident", help="Incident response runbooks")
    p_incident.add_argument("scenario", choices=SCENARIOS)
    p_incident.add_argument("target", nargs="?", default="all", help="nango-revoke: provider key or connection id.")
    p_incident.add_argument("--yes", action="store_true", help="Skip the typed confirmation.")
    p_incident.add_argument("--json", action="store_true")

    p_status = sub.add_parser("status", help="Print system status")
    p_status.add_argument("--json", action="store_true")

    p_audit = sub.add_parser("audit", help="Show recent audit rows")
    p_audit.add_argument("--action", default=None)
    p_audit.add_argument("--limit", type=int, default=20)
    p_audit.add_argument("--json", action="store_true")

    p_keys = sub.add_parser("keys", help="Credential store slots")
    keys_sub = p_keys.add_subparsers(dest="keys_command")
    p_keys_list = keys_sub.add_parser("list")
    p_keys_list.add_argument("--json", action="store_true")
    p_keys_set = keys_sub.add_parser("set")
    p_keys_set.add_argument("name")
    p_keys_set.add_argument("--value", default=None)
    p_keys_set.add_argument("--json", action="store_true")
    p_keys_remove = keys_sub.add_parser("remove")
    p_keys_remove.add_argument("name")
    p_keys_remove.add_argument("--json", action="store_true")

    return parser


def _print_version() -> None:
    from clawguard import __version__

    print(f"clawguard v{__version__}")


# --- wiring ---


class _Runtime:
    """Collaborators for one command, built lazily from config."""

    def __init__(self, ctx: CliContext) -> None:
        from clawguard.core.config import Config
        from clawguard.core.log import configure_logging

        self.ctx = ctx
        self.config = Config.from_repo_defaults(ctx.repo_root).with_legacy_env(ctx.env)
        configure_logging(self.config.logging)
        self._store: Any = ctx.store
        self._audit: Any = None
        self._db: Any = None
        self._manager: Any = None
        self._proxy: Any = None

    @property
    def store(self) -> Any:
        if self._store is None:
            from clawguard.security.keystore import Keystore

            self._store = Keystore.from_config(self.config.keystore)
        return self._store

    @property
    def audit(self) -> Any:
        if self._audit is None:
            from clawguard.security.audit import AuditLogger, NullAuditLogger

            if self.config.audit.enabled:
                from clawguard.core.database import Database

                self._db = Database(self.config.audit_db_path)
                self._audit = AuditLogger(self._db)
            else:
                self._audit = NullAuditLogger()
        return self._audit

    @property
    def manager(self) -> Any:
        if self._manager is None:
            import time

            from clawguard.vault.session import VaultSessionManager

            self._manager = VaultSessionManager(
                self.config.vault,
                transport=self.ctx.vault_transport,
                sleep=self.ctx.sleep or time.sleep,
                audit=self.audit,
            )
        return self._manager

    @property
    def proxy(self) -> Any:
        if self._proxy is None:
            import time

            from clawguard.oauth.proxy import OAuthProxyClient, vault_key_provider

            self._proxy = OAuthProxyClient(
                self.config.oauth,
                vault_key_provider(self.store, self.manager, self.config.oauth.secret_key_name),
                transport=self.ctx.proxy_transport,
                sleep=self.ctx.sleep or time.sleep,
                audit=self.audit,
            )
        return self._proxy

    def controller(self) -> Any:
        from clawguard.incident.actuators import HostActuator
        from clawguard.incident.controller import RevocationController

        actuator = HostActuator(self.config.lockdown, runner=self.ctx.command_runner)
        return RevocationController(self.manager, self.store, actuator, proxy=self.proxy, audit=self.audit)

    def admin_credential(self) -> Any:
        from clawguard.vault.credentials import require_credential
        from clawguard.vault.models import Role

        return require_credential(self.store, Role.ADMIN)

    def close(self) -> None:
        if self._proxy is not None:
            self._proxy.close()
        if self._manager is not None:
            self._manager.close()
        if self._db is not None:
            self._db.close()


# --- commands ---


def _cmd_run(ctx: CliContext, rt: _Runtime, args: argparse.Namespace) -> int:
    from clawguard import runner

    argv = list(args.task or [])
    if argv and argv[0] == "--":
        argv = argv[1:]
    command = runner.resolve_command(argv, ctx.env)
    names = runner.resolve_secrets(args.secrets, ctx.env, rt.config.runner.secrets)

    config = rt.config
    if args.require_all:
        config = config.model_copy(
            update={"runner": config.runner.model_copy(update={"require_all_secrets": True})}
        )

    outcome = runner.run_task(
        config,
        rt.store,
        command,
        names,
        manager=rt.manager,
        executor=ctx.executor or runner.execute,
        environ=ctx.env,
        audit=rt.audit,
    )
    if outcome.exit_code in (runner.EXIT_AUTH, runner.EXIT_PARTIAL, runner.EXIT_CONFIG):
        print(f"error: {outcome.reason}", file=sys.stderr)
    for name in outcome.missing:
        print(f"warning: secret '{name}' not loaded", file=sys.stderr)
    return outcome.exit_code


def _cmd_secret(ctx: CliContext, rt: _Runtime, args: argparse.Namespace) -> int:
    from clawguard.vault import admin
    from clawguard.vault.fetcher import SecretFetcher

    sub = args.secret_command
    if sub == "store":
        value = args.value or ctx.ask_secret(f"Value for {args.name}: ")
        version = admin.store_secret(rt.manager, rt.admin_credential(), args.name, value, dry_run=args.dry_run)
        if args.dry_run:
            print(f"dry run: would store {args.name}")
        else:
            print(f"stored {args.name}" + (f" (version {version})" if version is not None else ""))
        return 0

    if sub == "rotate":
        def prompt(target: admin.RotationTarget) -> str:
            return ctx.ask_secret(f"New {target.display_name} ({target.format_hint}, enter to skip): ")

        try:
            results = admin.rotate(
                rt.manager, rt.admin_credential(), args.target, prompt=prompt, dry_run=args.dry_run
            )
        except KeyError as e:
            print(f"error: {e.args[0]}", file=sys.stderr)
            return 2
        for r in results:
            suffix = f" (version {r.version})" if r.version is not None else ""
            detail = f": {r.message}" if r.message else ""
            print(f"{r.status:<8} {r.secret}{suffix}{detail}")
        if any(r.status == "rotated" for r in results):
            print("Restart consumers to pick up the new values.")
        return 1 if any(r.status == "invalid" for r in results) else 0

    if sub == "list":
        fetcher = SecretFetcher(rt.manager)
        with rt.manager.session(rt.admin_credential()) as session:
            names = fetcher.list(session)
        for n in names:
            print(n)
        return 0

    print("usage: clawguard secret {store,rotate,list}", file=sys.stderr)
    return 2


def _cmd_vault(ctx: CliContext, rt: _Runtime, args: argparse.Namespace) -> int:
    from clawguard.cli_incident import step_line

    sub = args.vault_command
    if sub == "status":
        status = rt.manager.seal_status()
        print(f"sealed: {str(status.sealed).lower()}")
        print(f"initialized: {str(status.initialized).lower()}")
        if status.version:
            print(f"version: {status.version}")
        if status.sealed and status.threshold:
            print(f"unseal progress: {status.progress}/{status.threshold}")
        return 0

    if sub in ("seal", "unseal"):
        controller = rt.controller()
        state = controller.current_state()
        outcome = controller.seal(state) if sub == "seal" else controller.unseal(state)
        print(step_line(outcome))
        return 1 if outcome.failed else 0

    print("usage: clawguard vault {status,seal,unseal}", file=sys.stderr)
    return 2


def _cmd_oauth(ctx: CliContext, rt: _Runtime, args: argparse.Namespace) -> int:
    from clawguard.cli_incident import require_confirm, step_line

    sub = args.oauth_command
    if sub == "list":
        for conn in rt.proxy.list_connections():
            print(f"{conn.connection_id}  {conn.provider_key}")
        return 0

    if sub == "revoke":
        if not args.dry_run and not args.yes:
            what = "ALL OAuth connections" if args.target == "all" else f"OAuth connection {args.target}"
            if not require_confirm(f"Revoke {what}", ask=ctx.ask):
                print("Aborted.")
                return 0
        controller = rt.controller()
        outcome = controller.revoke_oauth(controller.current_state(), args.target, dry_run=args.dry_run)
        print(step_line(outcome))
        report = outcome.revocation
        if report is not None:
            for conn in report.would_revoke:
                print(f"  would revoke {conn.connection_id} ({conn.provider_key})")
            for item in report.items:
                mark = "ok" if item.ok else "FAILED"
                detail = f": {item.error}" if item.error else ""
                print(f"  {mark:<6} {item.connection_id} ({item.provider_key}){detail}")
        return 1 if outcome.failed else 0

    if sub == "reauthorized":
        controller = rt.controller()
        print(step_line(controller.confirm_reauthorized(controller.current_state())))
        return 0

    print("usage: clawguard oauth {list,revoke,reauthorized}", file=sys.stderr)
    return 2


def _cmd_incident(ctx: CliContext, rt: _Runtime, args: argparse.Namespace) -> int:
    from clawguard.cli_incident import cmd_incident

    return cmd_incident(
        config=rt.config,
        controller=rt.controller(),
        scenario=args.scenario,
        target=args.target,
        yes=args.yes,
        as_json=args.json,
        ask=ctx.ask,
    )


def _cmd_status(ctx: CliContext, rt: _Runtime, args: argparse.Namespace) -> int:
    from clawguard.core.exceptions import ClawguardError
    from clawguard.incident.state import LockdownStore

    state = LockdownStore(rt.store).load()
    try:
        sealed = rt.manager.seal_status().sealed
        vault_status = "sealed" if sealed else "unsealed"
    except ClawguardError as e:
        vault_status = f"unavailable ({type(e).__name__})"

    cfg_path = ctx.repo_root / "config" / "default.yaml"
    info = {
        "config": str(cfg_path) if cfg_path.exists() else "built-in defaults",
        "vault_addr": rt.config.vault.addr,
        "vault": vault_status,
        "oauth_proxy": rt.config.oauth.url,
        "keystore": rt.store.describe(),
        "lockdown": state.to_dict(),
    }
    if args.json:
        print(json.dumps(info, indent=2, sort_keys=True))
        return 0

    print("clawguard status")
    print(f"- config: {info['config']}")
    print(f"- vault: {info['vault_addr']} ({vault_status})")
    print(f"- oauth proxy: {info['oauth_proxy']}")
    print(f"- keystore: {info['keystore']}")
    print(f"- lockdown: {state.label}")
    return 0


def _cmd_audit(ctx: CliContext, rt: _Runtime, args: argparse.Namespace) -> int:
    rows = rt.audit.query(action_type=args.action, limit=args.limit)
    if args.json:
        print(json.dumps({"rows": rows}, indent=2, sort_keys=True))
        return 0
    for r in rows:
        print(f"{r['ts']}  {r['action']:<24} {r['outcome'] or '-':<10} {r['actor'] or '-'}")
    return 0


def _cmd_keys(ctx: CliContext, rt: _Runtime, args: argparse.Namespace) -> int:
    from clawguard.cli_keys import cmd_keys_list, cmd_keys_remove, cmd_keys_set

    sub = args.keys_command
    if sub == "list":
        return cmd_keys_list(keystore=rt.store, as_json=args.json)
    if sub == "set":
        value = args.value or ctx.ask_secret(f"Value for {args.name}: ")
        return cmd_keys_set(keystore=rt.store, name=args.name, value=value, as_json=args.json)
    if sub == "remove":
        return cmd_keys_remove(keystore=rt.store, name=args.name, as_json=args.json)

    print("usage: clawguard keys {list,set,remove}", file=sys.stderr)
    return 2


def main(argv: list[str] | None = None, *, ctx: CliContext | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        _print_version()
        return 0

    if not args.command:
        parser.print_help()
        return 2

    ctx = ctx or CliContext(repo_root=_repo_root_from_cwd())

    dispatch: dict[str, Callable[[CliContext, _Runtime, argparse.Namespace], int]] = {
        "run": _cmd_run,
        "secret": _cmd_secret,
        "vault": _cmd_vault,
        "oauth": _cmd_oauth,
        "incident": _cmd_incident,
        "status": _cmd_status,
        "audit": _cmd_audit,
        "keys": _cmd_keys,
    }

    fn = dispatch.get(str(args.command))
    if fn is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 2

    from clawguard.core.exceptions import ClawguardError

    try:
        rt = _Runtime(ctx)
    except ClawguardError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    try:
        return int(fn(ctx, rt, args))
    except ClawguardError as e:
        print(f"error: {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    finally:
        rt.close()


if __name__ == "__main__":
    raise SystemExit(main())
