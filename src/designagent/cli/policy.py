"""Policy commands for the designagent CLI.

Commands:
- policy check: Validate a policy document
- policy eval: Evaluate a tool invocation against the rules
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click

from designagent.cli.config import get_policy_file
from designagent.policy import (
    EvaluationContext,
    PolicyConfigError,
    PolicyEngine,
    ToolDescriptor,
    load_rules_file,
)


def parse_arg(value: str) -> tuple[str, Any]:
    """Parse a key=value option; the value is JSON when it parses as JSON."""
    key, sep, raw = value.partition("=")
    if not sep or not key:
        raise click.BadParameter(f"Expected key=value, got {value!r}")
    try:
        return key, json.loads(raw)
    except json.JSONDecodeError:
        return key, raw


@click.group()
def policy() -> None:
    """Policy rule commands."""


@policy.command("check")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def check(path: Path) -> None:
    """Validate a policy document and list its rules."""
    try:
        config = load_rules_file(path)
    except PolicyConfigError as e:
        click.echo(f"Invalid policy: {e}", err=True)
        sys.exit(1)

    click.echo(f"Valid policy (version {config.version}): {len(config.rules)} rules")
    click.echo(
        f"  confirmations: {'on' if config.settings.confirmations_enabled else 'off'}, "
        f"max session cost: {config.settings.max_session_cost:.2f}"
    )
    for rule in sorted(config.rules, key=lambda r: r.priority):
        suffix = "" if rule.enabled else " (disabled)"
        click.echo(f"  [{rule.priority:>3}] {rule.name}: {rule.action.value}{suffix}")


@policy.command("eval")
@click.option("--tool", "tool_name", required=True, help="Tool name.")
@click.option("--method", default="GET", show_default=True, help="HTTP method.")
@click.option("--path", "tool_path", default="", help="Endpoint path.")
@click.option("--mutates", is_flag=True, help="Tool changes server state.")
@click.option("--cost", type=float, default=0.0, show_default=True, help="Session cost so far.")
@click.option("--arg", "args", multiple=True, help="Invocation arg as key=value (repeatable).")
@click.option(
    "--rules",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Policy file (default: configured policy_file or built-in rules).",
)
def evaluate(
    tool_name: str,
    method: str,
    tool_path: str,
    mutates: bool,
    cost: float,
    args: tuple[str, ...],
    rules: Path | None,
) -> None:
    """Evaluate a tool invocation and print the decision as JSON."""
    engine = PolicyEngine()
    rules_file = rules or get_policy_file(None)
    if rules_file is not None:
        try:
            engine.load_file(rules_file)
        except PolicyConfigError as e:
            click.echo(f"Invalid policy: {e}", err=True)
            sys.exit(1)

    ctx = EvaluationContext(
        tool=ToolDescriptor(
            name=tool_name,
            method=method.upper(),
            path=tool_path,
            mutates=mutates,
        ),
        context={"sessionCost": cost},
        args=dict(parse_arg(a) for a in args),
    )
    decision = engine.evaluate(ctx)
    click.echo(json.dumps(decision.to_dict(), indent=2))
