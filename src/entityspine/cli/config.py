"""
CLI: ``entityspine config``: inspect the effective governance rules.
"""

from __future__ import annotations

import typer
from rich.table import Table

from entityspine.cli.utils import console, print_json, reported_errors
from entityspine.config.rules import FamilyRules
from entityspine.config.settings import get_settings
from entityspine.core.enums import RecordFamily

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_config(
    family: RecordFamily | None = typer.Option(None, "--family", "-f", help="Show one record family"),
    as_json: bool = typer.Option(False, "--json", help="Print the settings as JSON"),
) -> None:
    """Show the rule table built from the current environment."""
    settings = get_settings()
    families = [family] if family is not None else list(RecordFamily)

    if as_json:
        if family is not None:
            print_json(settings.family(family).model_dump(mode="json"))
        else:
            print_json(settings.model_dump(mode="json"))
        return

    with reported_errors():
        config = settings.to_config()

    console.print(f"[bold]Store:[/bold] {settings.store_backend}")
    console.print(f"[bold]Lookup max depth:[/bold] {config.lookup_max_depth}")
    for item in families:
        console.print(_family_table(config.rules(item)))


def _family_table(rules: FamilyRules) -> Table:
    table = Table(title=f"{rules.family.value} ({rules.collection})", show_lines=False, pad_edge=False)
    table.add_column("Rule")
    table.add_column("Value", overflow="fold")

    kinds = ", ".join(sorted(rules.allowed_kinds)) if rules.allowed_kinds is not None else "(any)"
    table.add_row("allowed kinds", kinds)
    table.add_row("default kind", rules.default_kind or "")
    table.add_row("visibility", rules.visibility.value)
    for kind, visibility in rules.visibility_by_kind.items():
        table.add_row(f"visibility [{kind}]", visibility.value)
    table.add_row("auto approve", str(rules.auto_approve))
    for kind, flag in rules.auto_approve_by_kind.items():
        table.add_row(f"auto approve [{kind}]", str(flag))
    if rules.uniqueness is not None:
        table.add_row("uniqueness", _field_rule(rules.uniqueness.fields, rules.uniqueness.scope))
    for kind, rule in rules.uniqueness_by_kind.items():
        table.add_row(f"uniqueness [{kind}]", _field_rule(rule.fields, rule.scope))
    if rules.idempotency is not None:
        table.add_row("idempotency", _field_rule(rules.idempotency.fields, rules.idempotency.scope))
    for kind, rule in rules.idempotency_by_kind.items():
        table.add_row(f"idempotency [{kind}]", _field_rule(rule.fields, rule.scope))
    for limit in rules.limits:
        label = f"limit [{limit.kind}]" if limit.kind else "limit"
        table.add_row(label, f"{limit.limit} within '{limit.scope}'")
    for constraint in rules.lookup_constraints:
        target = constraint.target.value if constraint.target else "any"
        table.add_row(f"lookup {constraint.property_path}", target)
    table.add_row("response limit", str(rules.response_limit))
    return table


def _field_rule(fields: tuple[str, ...], scope: object) -> str:
    text = ", ".join(fields)
    return f"{text} within '{scope}'" if scope is not None else text
