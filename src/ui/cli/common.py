"""Shared helpers for the CLI command modules."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from src.core.errors import MaintenanceError


def config_path(ctx: click.Context) -> Path | None:
    """Configuration path given with ``--config``, if any."""
    return (ctx.obj or {}).get("config_path")


def fail(error: MaintenanceError | str, as_json: bool = False) -> None:
    """Report an error (with remediation) and exit 1."""
    if isinstance(error, MaintenanceError):
        if as_json:
            click.echo(json.dumps({"error": error.to_dict()}, indent=2))
        else:
            click.secho(f"❌ {error.message}", fg="red", err=True)
            if error.remediation:
                click.secho(f"   → {error.remediation}", fg="yellow", err=True)
    elif as_json:
        click.echo(json.dumps({"error": error}, indent=2))
    else:
        click.secho(f"❌ {error}", fg="red", err=True)
    sys.exit(1)
