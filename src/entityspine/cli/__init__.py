"""entityspine command-line interface (typer + rich)."""

from entityspine.cli.app import app

__all__ = ["app"]
