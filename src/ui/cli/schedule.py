"""
CLI commands for scheduled maintenance.

Thin wrappers over ``src.core.services.schedule``.
"""

from __future__ import annotations

import json
import sys

import click

from src.adapters import default_registry
from src.core.services.schedule import (
    ON_CALENDAR,
    install_schedule,
    remove_schedule,
    schedule_status,
)


@click.group()
def schedule() -> None:
    """Schedule — run maintenance from a systemd timer."""


@schedule.command("install")
@click.argument("mode", type=click.Choice(list(ON_CALENDAR)))
@click.option("--dry-run", is_flag=True, help="Show what would be done.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def install_cmd(mode: str, dry_run: bool, as_json: bool) -> None:
    """Install a daily, weekly or monthly timer (runs -y --no-menu)."""
    result = install_schedule(mode, default_registry(dry_run=dry_run), dry_run=dry_run)

    if as_json:
        click.echo(json.dumps(result, indent=2))
        if "error" in result:
            sys.exit(1)
        return

    if "error" in result:
        click.secho(f"❌ {result['error']}", fg="red")
        sys.exit(1)

    click.secho(f"✅ Scheduled {mode} maintenance", fg="green", bold=True)
    click.echo(f"   OnCalendar: {result['on_calendar']}")
    click.echo(f"   Timer: {result['timer']}")


@schedule.command("remove")
@click.option("--dry-run", is_flag=True, help="Show what would be done.")
def remove_cmd(dry_run: bool) -> None:
    """Disable the timer and delete its units."""
    result = remove_schedule(default_registry(dry_run=dry_run), dry_run=dry_run)
    if not result["removed"]:
        click.secho("No scheduled maintenance installed", fg="yellow")
        return
    click.secho("✅ Scheduled maintenance removed", fg="green")
    for path in result["removed"]:
        click.echo(f"   {path}")


@schedule.command("status")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def status_cmd(as_json: bool) -> None:
    """Show whether the timer is active and when it fires next."""
    result = schedule_status(default_registry())

    if as_json:
        click.echo(json.dumps(result, indent=2))
        return

    if not result["active"]:
        click.secho("⏸  No active maintenance timer", fg="yellow")
        return
    click.secho("⏰ Maintenance timer active", fg="green", bold=True)
    for line in result.get("timers", "").splitlines():
        click.echo(f"   {line}")
