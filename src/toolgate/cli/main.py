"""CLI entry point for toolgate."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import sys
import uuid
from pathlib import Path
from typing import Any

import click
from rich.logging import RichHandler

from toolgate.audit.logger import AuditLogger, verify_chain
from toolgate.cli.output import print_decision, print_matches, print_rules
from toolgate.core.config import build_engine, build_ruleset, load_settings
from toolgate.hooks.manager import HookManager
from toolgate.permissions.approval import StdinApprovalCallback
from toolgate.permissions.arity import always_patterns
from toolgate.permissions.engine import PermissionEngine
from toolgate.permissions.errors import MalformedRequestError, ToolgateError
from toolgate.permissions.gate import Authorization, PermissionGate
from toolgate.permissions.ruleset import Ruleset
from toolgate.permissions.session import SessionRegistry
from toolgate.types.config import PermissionSettings
from toolgate.types.permissions import Decision, Layer, PermissionRequest, Rule
from toolgate.ui.approval import RichApprovalCallback

EXIT_CODES = {Decision.ALLOW: 0, Decision.DENY: 1, Decision.ASK: 2}
EXIT_MALFORMED = 3


def parse_arguments(pairs: tuple[str, ...]) -> dict[str, str]:
    """Parse ``key=value`` pairs. Values stay strings; matching is textual."""
    arguments: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="ARGS")
        arguments[key] = value
    return arguments


def _load(ctx: click.Context) -> tuple[Ruleset, PermissionEngine]:
    obj = ctx.ensure_object(dict)
    if "ruleset" not in obj:
        try:
            settings = load_settings(obj.get("cwd"))
            overrides: dict[str, Any] = obj.get("overrides", {})
            settings = dataclasses.replace(
                settings,
                default=overrides.get("default") or settings.default,
                agent=overrides.get("agent") or settings.agent,
                policy_paths=settings.policy_paths + tuple(overrides.get("policy", ())),
            )
            obj["settings"] = settings
            obj["ruleset"] = build_ruleset(settings, obj.get("cwd"))
            obj["engine"] = build_engine(settings)
        except ToolgateError as exc:
            raise click.ClickException(str(exc)) from exc
    return obj["ruleset"], obj["engine"]


@click.group()
@click.option("--cwd", default=None, help="Project directory (default: current)")
@click.option(
    "--default",
    "default_policy",
    type=click.Choice(["allow", "deny", "ask"]),
    default=None,
    help="Override the default policy",
)
@click.option("--agent", default=None, help="Built-in agent preset (build, plan, explore)")
@click.option("--policy", multiple=True, help="Extra policy file (repeatable)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.pass_context
def cli(
    ctx: click.Context,
    cwd: str | None,
    default_policy: str | None,
    agent: str | None,
    policy: tuple[str, ...],
    verbose: bool,
) -> None:
    """Toolgate -- permission checks for agent tool calls.

    \b
    Usage:
      toolgate check bash command="git push origin main"
      toolgate ask bash command="npm publish"
      toolgate explain read path=/etc/passwd
      toolgate rules --layer project
      toolgate prefix "npm run build && git push"
    """
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(show_path=False)],
        )
    ctx.ensure_object(dict)
    ctx.obj["cwd"] = cwd
    ctx.obj["overrides"] = {
        "default": Decision(default_policy) if default_policy else None,
        "agent": agent,
        "policy": policy,
    }


def _session_rules(specs: tuple[str, ...]) -> list[Rule]:
    """Parse ``--grant tool:decision[:arg=pattern]`` options."""
    rules: list[Rule] = []
    for spec in specs:
        tool, _, rest = spec.partition(":")
        decision, _, arg = rest.partition(":")
        arguments: dict[str, str] = {}
        if arg:
            name, sep, pattern = arg.partition("=")
            if not sep:
                raise click.BadParameter(f"expected arg=pattern in {spec!r}", param_hint="--grant")
            arguments[name] = pattern
        try:
            rules.append(Rule.create(tool, decision, layer=Layer.SESSION, arguments=arguments, source="cli"))
        except ValueError:
            raise click.BadParameter(f"invalid grant {spec!r}", param_hint="--grant") from None
    return rules


@cli.command("check")
@click.argument("tool")
@click.argument("args", nargs=-1)
@click.option("--grant", "grants", multiple=True, help="Session rule tool:decision[:arg=pattern]")
@click.option("--json", "as_json", is_flag=True, help="Emit JSON")
@click.pass_context
def check_cmd(
    ctx: click.Context, tool: str, args: tuple[str, ...], grants: tuple[str, ...], as_json: bool,
) -> None:
    """Evaluate a tool call. Exit code: 0 allow, 1 deny, 2 ask."""
    ruleset, engine = _load(ctx)
    ruleset = ruleset.fork()
    ruleset.extend(_session_rules(grants))
    request = PermissionRequest(tool, parse_arguments(args))
    try:
        result = engine.evaluate(request, ruleset)
    except MalformedRequestError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(EXIT_MALFORMED)
    print_decision(request, result, as_json=as_json)
    sys.exit(EXIT_CODES[result.decision])


@cli.command("ask")
@click.argument("tool")
@click.argument("args", nargs=-1)
@click.option("--plain", is_flag=True, help="Plain text prompt instead of the Rich panel")
@click.pass_context
def ask_cmd(ctx: click.Context, tool: str, args: tuple[str, ...], plain: bool) -> None:
    """Authorize a tool call, prompting the operator on ASK.

    Runs the full gate: permission_ask hooks, the prompt, the audit log and
    session hooks. Exit code: 0 allowed, 1 denied.
    """
    ruleset, engine = _load(ctx)
    settings: PermissionSettings = ctx.obj["settings"]
    cwd = ctx.obj.get("cwd") or str(Path.cwd())
    session_id = uuid.uuid4().hex[:12]
    registry = SessionRegistry(ruleset, engine, broaden_grants=settings.broaden_grants)
    audit = AuditLogger(
        session_id,
        enabled=settings.audit,
        audit_dir=Path(settings.audit_dir).expanduser() if settings.audit_dir else None,
    )
    callback = StdinApprovalCallback() if plain else RichApprovalCallback()
    request = PermissionRequest(tool, parse_arguments(args), session_id=session_id)

    async def _run() -> Authorization:
        gate = PermissionGate(
            registry.open(session_id),
            approval_callback=callback,
            hooks=HookManager(list(settings.hooks)),
            audit=audit,
            ask_timeout=settings.ask_timeout,
            cwd=cwd,
        )
        async with gate:
            return await gate.authorize(request)

    try:
        auth = asyncio.run(_run())
    except MalformedRequestError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(EXIT_MALFORMED)
    finally:
        audit.close()

    verdict = "allowed" if auth.allowed else "denied"
    click.echo(f"{verdict}: {auth.reason}")
    if audit.log_path is not None:
        click.echo(f"audit: {audit.log_path}")
    sys.exit(0 if auth.allowed else 1)


@cli.command("explain")
@click.argument("tool")
@click.argument("args", nargs=-1)
@click.pass_context
def explain_cmd(ctx: click.Context, tool: str, args: tuple[str, ...]) -> None:
    """List every rule matching a tool call, winner first."""
    ruleset, engine = _load(ctx)
    request = PermissionRequest(tool, parse_arguments(args))
    try:
        matches = engine.explain(request, ruleset)
    except MalformedRequestError as exc:
        raise click.ClickException(str(exc)) from exc
    print_matches(matches)
    if not matches:
        click.echo(f"default policy: {engine.default.value}")


@cli.command("rules")
@click.option(
    "--layer",
    type=click.Choice([layer.label for layer in Layer]),
    default=None,
    help="Only show one layer",
)
@click.pass_context
def rules_cmd(ctx: click.Context, layer: str | None) -> None:
    """List loaded rules."""
    ruleset, _ = _load(ctx)
    selected = Layer[layer.upper()] if layer else None
    print_rules(ruleset.rules(selected))


@cli.command("disabled")
@click.argument("tools", nargs=-1, required=True)
@click.pass_context
def disabled_cmd(ctx: click.Context, tools: tuple[str, ...]) -> None:
    """Show which of TOOLS would always be denied."""
    ruleset, engine = _load(ctx)
    disabled = engine.disabled_tools(tools, ruleset)
    for tool in tools:
        click.echo(f"{tool}: {'disabled' if tool in disabled else 'available'}")


@cli.command("prefix")
@click.argument("command")
def prefix_cmd(command: str) -> None:
    """Show the patterns an "always" answer would offer for COMMAND."""
    patterns = always_patterns(command)
    if not patterns:
        click.echo("(no patterns)")
    for pattern in patterns:
        click.echo(pattern)


@click.group("audit")
def audit_cmd() -> None:
    """Inspect audit logs."""


@audit_cmd.command("verify")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def audit_verify(path: Path) -> None:
    """Verify the hash chain of an audit log."""
    valid, errors = verify_chain(path)
    if valid:
        click.echo(f"OK: {path}")
        return
    for error in errors:
        click.echo(error, err=True)
    sys.exit(1)


cli.add_command(audit_cmd, "audit")


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
