"""
CLI: ``entityspine sets``: compile scopes and test records against them.
"""

from __future__ import annotations

import typer

from entityspine.cli.utils import console, parse_json, parse_now, parse_scope, print_json, reported_errors
from entityspine.core.timestamps import to_iso8601, utc_now
from entityspine.sets.compiler import compile_scope
from entityspine.sets.matcher import matches

app = typer.Typer(no_args_is_help=True)


@app.command("compile")
def compile_command(
    scope: str = typer.Argument(..., help="Scope, e.g. 'set[actives]&set[publics]' or a JSON object"),
    where: str | None = typer.Option(None, "--where", "-w", help="Base where clause as JSON"),
    now: str | None = typer.Option(None, "--now", help="Evaluation time (ISO-8601); defaults to now"),
) -> None:
    """Print the ``where`` clause a scope compiles to."""
    base = parse_json(where, "--where")
    moment = parse_now(now) or utc_now()
    with reported_errors():
        compiled = compile_scope(parse_scope(scope), now=moment, base_where=base)
    print_json(compiled)


@app.command("check")
def check_command(
    scope: str = typer.Argument(..., help="Scope, e.g. 'set[actives]' or a JSON object"),
    record: str = typer.Option(..., "--record", "-r", help="Record as JSON"),
    now: str | None = typer.Option(None, "--now", help="Evaluation time (ISO-8601); defaults to now"),
) -> None:
    """Tell whether a record falls inside a scope."""
    document = parse_json(record, "--record")
    if not isinstance(document, dict):
        raise typer.BadParameter("--record must be a JSON object")
    moment = parse_now(now) or utc_now()
    with reported_errors():
        inside = matches(document, compile_scope(parse_scope(scope), now=moment))
    if inside:
        console.print(f"[green]in scope[/green] at {to_iso8601(moment)}")
    else:
        console.print(f"[yellow]out of scope[/yellow] at {to_iso8601(moment)}")
