"""CLI commands: netsentry rules — manage allow/block rules."""

from __future__ import annotations

import click
from rich.console import Console

from netsentry.cli.display import rules_table
from netsentry.rules.models import ConnectionRule, MatchField, RuleType
from netsentry.rules.store import RuleStore

console = Console()

_FIELD_CHOICES = {
    "process": MatchField.PROCESS_NAME,
    "address": MatchField.REMOTE_ADDRESS,
    "port": MatchField.REMOTE_PORT,
}


def _store(ctx: click.Context) -> RuleStore:
    return RuleStore(ctx.obj["config"].rules_path)


@click.group()
def rules() -> None:
    """Manage allow/block rules. The first matching rule wins."""


@rules.command("list")
@click.pass_context
def list_rules(ctx: click.Context) -> None:
    """Show rules in evaluation order."""
    store = _store(ctx)
    console.print(rules_table(store.rules))
    console.print(
        f"[dim]{store.allowed_count} allowed, {store.blocked_count} blocked "
        f"({store.path})[/dim]"
    )


@rules.command("add")
@click.option(
    "--allow",
    "rule_type",
    flag_value=RuleType.ALLOWED.value,
    default=True,
    help="Trust matching connections (default).",
)
@click.option(
    "--block",
    "rule_type",
    flag_value=RuleType.BLOCKED.value,
    help="Flag matching connections as blocked.",
)
@click.option(
    "--field",
    "-f",
    "field_name",
    type=click.Choice(sorted(_FIELD_CHOICES)),
    default="process",
    show_default=True,
    help="Connection attribute to match exactly.",
)
@click.option("--note", "-n", default=None, help="Optional note shown in alerts.")
@click.argument("value")
@click.pass_context
def add_rule(
    ctx: click.Context,
    rule_type: str,
    field_name: str,
    note: str | None,
    value: str,
) -> None:
    """Append a rule matching VALUE."""
    if not value:
        raise click.BadParameter("must not be empty", param_hint="VALUE")
    rule = ConnectionRule(
        rule_type=RuleType(rule_type),
        match_field=_FIELD_CHOICES[field_name],
        match_value=value,
        note=note,
    )
    store = _store(ctx)
    store.add(rule)
    console.print(
        f"Added [bold]{rule.rule_type.value}[/bold] rule {rule.id}: "
        f"{rule.match_field.label} = {value!r}"
    )


@rules.command("remove")
@click.argument("rule_id")
@click.pass_context
def remove_rule(ctx: click.Context, rule_id: str) -> None:
    """Delete the rule with RULE_ID."""
    store = _store(ctx)
    if not store.remove(rule_id):
        raise click.ClickException(f"No rule with id {rule_id}")
    console.print(f"Removed rule {rule_id}")


@rules.command("clear")
@click.confirmation_option(prompt="Delete all rules?")
@click.pass_context
def clear_rules(ctx: click.Context) -> None:
    """Delete every rule."""
    store = _store(ctx)
    count = len(store)
    store.clear()
    console.print(f"Removed {count} rule(s)")
