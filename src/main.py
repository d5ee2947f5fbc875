"""
sysmaint — CLI entrypoint.

Usage:
    sysmaint --help
    sysmaint run --dry-run
    sysmaint run -y --profile server
    sysmaint config check
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from src.core.observability.logging_config import setup_logging

from src import __version__


@click.group()
@click.version_option(version=__version__, prog_name="sysmaint")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="Path to sysmaint.yml (default: $SYSMAINT_CONFIG or /etc/sysmaint/sysmaint.yml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """sysmaint — safe, ordered maintenance for Debian-based systems."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    else:
        level = os.environ.get("SYSMAINT_LOG_LEVEL", "INFO")

    setup_logging(
        level=level,
        log_file=os.environ.get("SYSMAINT_LOG_FILE"),
        log_file_level=os.environ.get("SYSMAINT_LOG_FILE_LEVEL"),
        quiet_third_party=not debug,
    )


_STATUS_STYLE = {
    "success": ("✓", "green"),
    "warning": ("!", "yellow"),
    "error": ("✗", "red"),
    "skipped": ("⊘", "bright_black"),
}


def _print_summary(summary, quiet: bool) -> None:
    from src.core.config.catalog import get_step

    mode = "[dry-run] " if summary.dry_run else ""
    click.echo()
    if summary.ok:
        click.secho(f"✅ {mode}Maintenance complete — {summary.run_id}", fg="green", bold=True)
    else:
        click.secho(f"❌ {mode}Maintenance aborted — {summary.run_id}", fg="red", bold=True)
        click.secho(f"   Cause: {summary.abort_cause}", fg="red")
        if summary.remediation:
            click.secho(f"   → {summary.remediation}", fg="yellow")

    if not quiet:
        click.echo()
        for outcome in summary.outcomes:
            icon, color = _STATUS_STYLE[outcome.status.value]
            label = get_step(outcome.step_id).label
            click.secho(f"   {icon} ", fg=color, nl=False)
            click.echo(f"{label:<15} {outcome.message}")

    click.echo()
    counts = ", ".join(
        f"{n} {status}" for status in ("success", "warning", "error", "skipped")
        if (n := sum(1 for o in summary.outcomes if o.status.value == status))
    )
    if counts:
        click.echo(f"   Steps: {counts}")
    if summary.freed.total_mb:
        click.echo(
            f"   Space freed: {summary.freed.total_mb} MB "
            f"(/: {summary.freed.root_mb} MB, /boot: {summary.freed.boot_mb} MB)"
        )
    for warning in summary.warnings:
        click.secho(f"   ⚠️  {warning}", fg="yellow")
    if summary.reboot_needed:
        click.secho("   🔄 Reboot required: " + "; ".join(summary.reboot_reasons), fg="yellow", bold=True)
    click.echo(f"   Duration: {summary.duration_ms / 1000:.1f}s")


@cli.command()
@click.option("--dry-run", is_flag=True, help="Log mutating commands instead of executing them.")
@click.option("-y", "--unattended", is_flag=True, help="No prompts; risky operations abort.")
@click.option("--profile", type=click.Choice(["server", "desktop", "developer", "minimal", "custom"]),
              default=None, help="Use a named step bundle.")
@click.option("--no-menu", is_flag=True, help="Skip the interactive step editor.")
@click.option("--no-backup", is_flag=True, help="Skip the configuration backup step.")
@click.option("--quiet", "-q", is_flag=True, help="Only show warnings, errors and the summary.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output the summary as JSON.")
@click.option("--mock", is_flag=True, hidden=True, help="Use mock adapter (no real execution).")
@click.pass_context
def run(
    ctx: click.Context,
    dry_run: bool,
    unattended: bool,
    profile: str | None,
    no_menu: bool,
    no_backup: bool,
    quiet: bool,
    as_json: bool,
    mock: bool,
) -> None:
    """Run the enabled maintenance steps.

    Examples:

        sysmaint run --dry-run

        sysmaint run -y --profile server
    """
    import logging

    from src.adapters import default_registry
    from src.core.config.catalog import UNATTENDED_PROFILES
    from src.core.config.loader import load_configuration, save_configuration
    from src.core.engine.context import ClickPrompter, Prompter, RunContext
    from src.core.engine.executor import ExecutionPipeline
    from src.core.errors import MaintenanceError
    from src.core.persistence.audit import AuditWriter
    from src.core.persistence.run_log import RunLog
    from src.core.services.lock_manager import PACKAGE_MANAGER_LOCKS, LockManager
    from src.ui.cli.common import fail
    from src.ui.cli.menu import MenuPhase, run_menu

    if quiet:
        for handler in logging.getLogger().handlers:
            handler.setLevel(logging.WARNING)

    if profile in UNATTENDED_PROFILES:
        unattended = True
        no_menu = True

    if not dry_run and not mock and os.geteuid() != 0:
        fail(MaintenanceError("Maintenance needs root privileges", remediation="re-run with sudo"), as_json)

    try:
        config = load_configuration(ctx.obj.get("config_path"), profile=profile)
    except (MaintenanceError, ValueError) as e:
        fail(e if isinstance(e, MaintenanceError) else str(e), as_json)
        return

    # ── Configure phase (precedes validation) ───────────────────
    if not unattended and not no_menu and sys.stdin.isatty():
        state = run_menu(config)
        if state.phase is MenuPhase.CANCELLED:
            click.secho("Cancelled — nothing was changed", fg="yellow")
            return
        config = state.config
        if state.save:
            save_configuration(config, ctx.obj.get("config_path"))

    settings = config.settings
    registry = default_registry(dry_run=dry_run)
    if mock:
        registry.set_mock_mode(True)

    run_ctx = RunContext(
        config=config,
        registry=registry,
        prompter=Prompter() if unattended else ClickPrompter(),
        unattended=unattended,
        dry_run=dry_run,
        no_backup=no_backup,
    )
    pipeline = ExecutionPipeline(
        run_ctx,
        lock_manager=LockManager(Path(settings.lock_file), package_locks=PACKAGE_MANAGER_LOCKS),
        audit=AuditWriter(log_dir=Path(settings.log_dir)),
    )

    with RunLog(Path(settings.log_dir), keep=settings.retention) as run_log:
        try:
            summary = pipeline.run()
        except KeyboardInterrupt:
            click.secho("\n❌ Interrupted — lock released", fg="red", err=True)
            sys.exit(130)

    if as_json:
        data = summary.to_dict()
        data["log_file"] = str(run_log.path)
        click.echo(json.dumps(data, indent=2))
    else:
        _print_summary(summary, quiet)
        click.echo(f"   Log: {run_log.path}")

    sys.exit(summary.exit_code)


@cli.command()
@click.option("--keep", type=click.IntRange(min=1), default=None, help="Override keep_kernels.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def kernels(ctx: click.Context, keep: int | None, as_json: bool) -> None:
    """Show which kernels cleanup would keep and remove (read-only)."""
    from src.adapters import default_registry
    from src.core.config.loader import load_configuration
    from src.core.errors import MaintenanceError
    from src.core.models.action import Action
    from src.core.services import kernel_retention
    from src.ui.cli.common import fail

    try:
        config = load_configuration(ctx.obj.get("config_path"))
    except MaintenanceError as e:
        fail(e, as_json)
        return

    registry = default_registry()

    def probe(argv: list[str]) -> str:
        receipt = registry.execute_action(
            Action(id=f"kernels:{argv[0]}", argv=argv, step_id="kernels", mutating=False)
        )
        if receipt.failed:
            fail(f"{' '.join(argv)} failed: {receipt.error}", as_json)
        return receipt.output

    running = kernel_retention.running_kernel_ref(probe(["uname", "-r"]))
    installed = kernel_retention.parse_installed_kernels(probe(["dpkg", "-l"]))
    plan = kernel_retention.plan(installed, running, keep or config.settings.keep_kernels)

    if as_json:
        click.echo(json.dumps(plan.to_dict(), indent=2))
        return

    click.secho(f"🐧 Running kernel: {running.version}", fg="cyan", bold=True)
    click.echo(f"   Installed: {len(installed)} | keep: {plan.keep}")
    for ref in plan.retain:
        marker = " (running)" if ref == running else ""
        click.secho(f"   [x] {ref.name}{marker}", fg="green")
    for ref in plan.remove:
        click.secho(f"   [-] {ref.name}", fg="red")
    if not plan.has_removals:
        click.echo("   Nothing to remove")


@cli.command()
@click.option("--limit", "-n", default=10, show_default=True, help="Number of runs to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, limit: int, as_json: bool) -> None:
    """Show recent maintenance runs."""
    from src.core.config.loader import load_configuration
    from src.core.errors import MaintenanceError
    from src.core.persistence.audit import AuditWriter
    from src.ui.cli.common import fail

    try:
        config = load_configuration(ctx.obj.get("config_path"))
    except MaintenanceError as e:
        fail(e, as_json)
        return

    entries = AuditWriter(log_dir=Path(config.settings.log_dir)).read_recent(limit)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.secho("No maintenance runs recorded yet", fg="yellow")
        return

    click.secho(f"📜 Last {len(entries)} run(s):", fg="cyan", bold=True)
    for entry in reversed(entries):
        color = "green" if entry.state == "success" else "red"
        mode = " [dry-run]" if entry.dry_run else ""
        click.echo(f"   {entry.timestamp[:19]}  ", nl=False)
        click.secho(f"{entry.state:<8}", fg=color, nl=False)
        click.echo(
            f" {entry.run_id}{mode}  ok={entry.steps_succeeded} "
            f"warn={entry.steps_warned} err={entry.steps_failed} skip={entry.steps_skipped}"
        )
        if entry.abort_cause:
            click.echo(f"      cause: {entry.abort_cause}")


# ── Register sub-command groups from src/ui/cli/ ──────────────────

from src.ui.cli.config import config
from src.ui.cli.schedule import schedule

cli.add_command(config)
cli.add_command(schedule)


if __name__ == "__main__":
    cli()
