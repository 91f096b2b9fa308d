"""
Root Typer application for the entityspine CLI.

Operator tooling: compile and test scope specifications, and print the
governance rules the current environment produces.
"""

from __future__ import annotations

import typer
from typer import Typer

from entityspine.config.settings import get_settings
from entityspine.core.logging import configure_logging

app = Typer(
    name="entityspine",
    help="entityspine: governed record persistence (sets, admission, lookups).",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("entityspine")
        except PackageNotFoundError:
            from entityspine import __version__ as v
        typer.echo(f"entityspine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """entityspine CLI: scopes and governance configuration."""
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_format == "json")


# ── Sub-command registration ─────────────────────────────────────────────

from entityspine.cli.config import app as config_app  # noqa: E402
from entityspine.cli.sets import app as sets_app  # noqa: E402

app.add_typer(sets_app, name="sets", help="Compile and check scope specifications.")
app.add_typer(config_app, name="config", help="Inspect governance configuration.")
