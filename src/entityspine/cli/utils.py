"""
CLI utility helpers: consoles, JSON arguments and error rendering.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

import typer
from rich.console import Console

from entityspine.core.errors import EntitySpineError
from entityspine.core.timestamps import from_iso8601

console = Console()
err_console = Console(stderr=True)


def parse_json(value: str | None, option: str) -> Any:
    """Decode a JSON command-line argument (None stays None)."""
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"{option} is not valid JSON: {exc.msg}") from exc


def parse_now(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        return from_iso8601(value)
    except ValueError as exc:
        raise typer.BadParameter(f"--now is not an ISO-8601 date-time: {value!r}") from exc


def parse_scope(value: str) -> Any:
    """Scopes are given as ``set[...]`` query strings or JSON objects."""
    text = value.strip()
    if text.startswith("{"):
        return parse_json(text, "scope")
    return text


@contextmanager
def reported_errors() -> Iterator[None]:
    """Print :class:`EntitySpineError` as ``Error (CODE): message`` and exit 1."""
    try:
        yield
    except EntitySpineError as exc:
        err_console.print(f"[bold red]Error[/bold red] ({exc.code}): {exc.message}")
        raise typer.Exit(code=1) from exc


def print_json(payload: Any, *, default: Callable[[Any], Any] = str) -> None:
    console.print_json(json.dumps(payload, default=default))
