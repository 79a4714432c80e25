"""Terminal output for CLI commands."""

from __future__ import annotations

import json
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from toolgate.permissions.engine import RuleMatch
from toolgate.types.permissions import Decision, PermissionDecision, PermissionRequest, Rule

_COLORS = {
    Decision.ALLOW: "green",
    Decision.ASK: "yellow",
    Decision.DENY: "red",
}


def decision_payload(request: PermissionRequest, result: PermissionDecision) -> dict[str, Any]:
    return {
        "tool": request.tool_name,
        "args": dict(request.arguments),
        "decision": result.decision.value,
        "rule": result.rule.to_dict() if result.rule is not None else None,
        "arity": result.arity,
        "reason": result.reason,
    }


def print_decision(
    request: PermissionRequest, result: PermissionDecision, *, as_json: bool = False,
) -> None:
    """Print the outcome of a single check."""
    if as_json:
        click.echo(json.dumps(decision_payload(request, result), indent=2))
        return
    color = _COLORS[result.decision]
    click.echo(click.style(result.decision.value.upper(), fg=color, bold=True) + f"  {request.tool_name}")
    click.echo(f"  rule:   {result.rule_label}")
    if result.arity is not None:
        click.echo(f"  arity:  {result.arity:.3f}")
    click.echo(f"  reason: {result.reason}")


def _rule_table(title: str) -> Table:
    table = Table(title=title, show_lines=False)
    table.add_column("Layer")
    table.add_column("Tool")
    table.add_column("Arguments")
    table.add_column("Decision")
    return table


def _row(rule: Rule) -> list[str]:
    args = ", ".join(f"{n}={p}" for n, p in rule.arguments) or "*"
    color = _COLORS[rule.decision]
    return [rule.layer.label, rule.tool, args, f"[{color}]{rule.decision.value}[/{color}]"]


def print_rules(rules: list[Rule], console: Console | None = None) -> None:
    console = console or Console()
    if not rules:
        console.print("(no rules loaded)")
        return
    table = _rule_table("Rules")
    table.add_column("Source")
    for rule in rules:
        table.add_row(*_row(rule), rule.source or "")
    console.print(table)


def print_matches(matches: list[RuleMatch], console: Console | None = None) -> None:
    console = console or Console()
    if not matches:
        console.print("(no matching rules; default policy applies)")
        return
    table = _rule_table("Matching rules (winner first)")
    table.add_column("Arity", justify="right")
    for m in matches:
        table.add_row(*_row(m.rule), f"{float(m.arity):.3f}")
    console.print(table)
