"""
CLI commands for the maintenance configuration.

Thin wrappers over ``src.core.config.loader`` and ``StepRegistry``.
Lock and unlock live here and not in the interactive editor: locks
can only change through a direct configuration edit.
"""

from __future__ import annotations

import json
import sys

import click

from src.core.config.catalog import STEP_CATALOG, STEP_IDS
from src.core.config.loader import (
    default_configuration,
    delete_configuration,
    load_configuration,
    read_config_file,
    resolve_config_path,
    save_configuration,
)
from src.core.config.registry import StepRegistry
from src.core.errors import MaintenanceError
from src.core.models.config import PROFILE_NAMES, Configuration
from src.ui.cli.common import config_path, fail


def _load_for_edit(ctx: click.Context) -> Configuration:
    """The persisted file as written (no profile applied), or defaults."""
    path = resolve_config_path(config_path(ctx))
    try:
        return read_config_file(path) if path.is_file() else default_configuration()
    except MaintenanceError as e:
        fail(e)
        raise


def _step_choice() -> click.Choice:
    return click.Choice(list(STEP_IDS))


@click.group()
def config() -> None:
    """Configuration — inspect, validate, and edit sysmaint.yml."""


@config.command("check")
@click.option("--profile", type=click.Choice(PROFILE_NAMES), default=None, help="Check with a profile applied.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, profile: str | None, as_json: bool) -> None:
    """Validate the configuration file and step dependencies."""
    path = resolve_config_path(config_path(ctx))
    errors: list[str] = []
    warnings: list[str] = []
    remediation = ""

    try:
        cfg = load_configuration(path, profile=profile)
        registry = StepRegistry(cfg)
        warnings = registry.warnings()
        registry.validate()
    except MaintenanceError as e:
        errors = getattr(e, "violations", None) or [e.message]
        remediation = e.remediation

    valid = not errors
    if as_json:
        click.echo(json.dumps({
            "path": str(path),
            "exists": path.is_file(),
            "valid": valid,
            "errors": errors,
            "warnings": warnings,
            "remediation": remediation,
        }, indent=2))
        sys.exit(0 if valid else 1)

    if valid:
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        click.echo(f"   File: {path}" + ("" if path.is_file() else " (not found, defaults)"))
    else:
        click.secho("❌ Configuration errors:", fg="red", bold=True)
        for err in errors:
            click.echo(f"   • {err}")
        if remediation:
            click.secho(f"   → {remediation}", fg="yellow")

    if warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in warnings:
            click.echo(f"   • {warn}")

    if not valid:
        sys.exit(1)


@config.command("show")
@click.option("--profile", type=click.Choice(PROFILE_NAMES), default=None, help="Show with a profile applied.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_show(ctx: click.Context, profile: str | None, as_json: bool) -> None:
    """Show effective step states, locks and settings."""
    try:
        cfg = load_configuration(config_path(ctx), profile=profile)
    except MaintenanceError as e:
        fail(e, as_json)
        return

    if as_json:
        data = cfg.model_dump(mode="json")
        data["enabled_steps"] = cfg.enabled_steps()
        click.echo(json.dumps(data, indent=2))
        return

    click.secho(f"📋 Profile: {cfg.profile}", fg="cyan", bold=True)
    for step in STEP_CATALOG:
        mark = "✓" if cfg.is_enabled(step.id) else " "
        lock = " 🔒" if cfg.is_locked(step.id) else ""
        crit = " (critical)" if step.critical else ""
        click.echo(f"   [{mark}] {step.order:2d}. {step.id:<20} {step.label}{crit}{lock}")

    s = cfg.settings
    click.echo()
    click.secho("   Settings:", fg="white", bold=True)
    click.echo(f"     keep_kernels={s.keep_kernels}  max_removals_allowed={s.max_removals_allowed}")
    click.echo(f"     min_free_root_gb={s.min_free_root_gb}  min_free_boot_mb={s.min_free_boot_mb}")
    click.echo(f"     log_dir={s.log_dir}  backup_dir={s.backup_dir}")


@config.command("init")
@click.option("--profile", type=click.Choice(PROFILE_NAMES), default="custom", help="Start from a profile.")
@click.option("--force", is_flag=True, help="Overwrite an existing file.")
@click.pass_context
def config_init(ctx: click.Context, profile: str, force: bool) -> None:
    """Write a configuration file with default (or profile) step states."""
    path = resolve_config_path(config_path(ctx))
    if path.exists() and not force:
        fail(f"{path} already exists (use --force to overwrite)")

    cfg = default_configuration()
    StepRegistry(cfg).apply_profile(profile)
    try:
        written = save_configuration(cfg, path)
    except OSError as e:
        fail(f"Cannot write {path}: {e}")
        return
    click.secho(f"✅ Configuration written: {written}", fg="green")


@config.command("set")
@click.argument("step_id", type=_step_choice())
@click.argument("state", type=click.Choice(["on", "off"]))
@click.pass_context
def config_set(ctx: click.Context, step_id: str, state: str) -> None:
    """Enable or disable one step (refused for locked steps)."""
    cfg = _load_for_edit(ctx)
    registry = StepRegistry(cfg)
    try:
        registry.apply(step_id, state == "on")
    except MaintenanceError as e:
        fail(e)
    save_configuration(cfg, resolve_config_path(config_path(ctx)))
    click.secho(f"✅ {step_id}: {state}", fg="green")

    try:
        registry.validate()
    except MaintenanceError as e:
        click.secho(f"⚠️  Runs will be refused until fixed: {e.message}", fg="yellow")
        click.echo(f"   → {e.remediation}")


@config.command("select-all")
@click.option("--disable", is_flag=True, help="Disable instead of enable.")
@click.pass_context
def config_select_all(ctx: click.Context, disable: bool) -> None:
    """Enable (or disable) every unlocked step."""
    cfg = _load_for_edit(ctx)
    preserved = StepRegistry(cfg).select_all(not disable)
    save_configuration(cfg, resolve_config_path(config_path(ctx)))
    click.secho(f"✅ All unlocked steps {'disabled' if disable else 'enabled'}", fg="green")
    if preserved:
        click.echo(f"   Locked, unchanged: {', '.join(preserved)}")


def _set_lock(ctx: click.Context, step_id: str, locked: bool) -> None:
    cfg = _load_for_edit(ctx)
    StepRegistry(cfg).set_lock(step_id, locked)
    save_configuration(cfg, resolve_config_path(config_path(ctx)))
    click.secho(f"✅ {step_id} {'locked' if locked else 'unlocked'}", fg="green")


@config.command("lock")
@click.argument("step_id", type=_step_choice())
@click.pass_context
def config_lock(ctx: click.Context, step_id: str) -> None:
    """Lock a step at its current state."""
    _set_lock(ctx, step_id, True)


@config.command("unlock")
@click.argument("step_id", type=_step_choice())
@click.pass_context
def config_unlock(ctx: click.Context, step_id: str) -> None:
    """Unlock a step."""
    _set_lock(ctx, step_id, False)


@config.command("reset")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def config_reset(ctx: click.Context, yes: bool) -> None:
    """Delete the saved configuration; built-in defaults apply afterwards."""
    path = resolve_config_path(config_path(ctx))
    if not path.is_file():
        click.secho(f"Nothing to reset: {path} does not exist", fg="yellow")
        return
    if not yes and not click.confirm(f"Delete {path}?", default=False):
        click.secho("Cancelled — nothing was changed", fg="yellow")
        return
    try:
        delete_configuration(path)
    except OSError as e:
        fail(f"Cannot delete {path}: {e}")
    click.secho(f"✅ Configuration deleted: {path}", fg="green")
