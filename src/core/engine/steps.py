"""
Step handlers — one function per catalog step.

Each handler takes the run context and its catalog definition and
returns a ``StepOutcome`` whose status it sets directly.  External
programs are only started through ``ctx.run`` / ``ctx.probe`` so the
adapter registry can log instead of execute in dry-run mode.

Failure contract:
    - A failed command in a non-critical step → ``StepOutcome.error``;
      the run continues.
    - A failed command in a critical step → ``StepExecutionError``.
    - Safety gates (risk, snapshot) raise ``RiskAbort`` /
      ``SnapshotFailure``; the pipeline aborts.
"""

from __future__ import annotations

import logging
import re
import tarfile
from datetime import datetime
from pathlib import Path
from typing import Callable

from src.core.config.catalog import STEP_CATALOG
from src.core.engine.context import RunContext
from src.core.errors import RiskAbort, SnapshotFailure, StepExecutionError
from src.core.models.action import Receipt
from src.core.models.step import StepDefinition, StepOutcome, StepStatus
from src.core.observability.logging_config import success
from src.core.services import kernel_retention, reboot, risk
from src.core.services.backup import create_backup

logger = logging.getLogger(__name__)

StepHandler = Callable[[RunContext, StepDefinition], StepOutcome]

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}

FALLBACK_HOST = "8.8.8.8"

# /etc/os-release ID → mirror used for the connectivity check
DISTRO_MIRRORS = {
    "debian": "deb.debian.org",
    "ubuntu": "archive.ubuntu.com",
    "linuxmint": "packages.linuxmint.com",
    "pop": "apt.pop-os.org",
    "elementary": "packages.elementary.io",
    "zorin": "packages.zorinos.com",
    "kali": "http.kali.org",
}


def _dry(receipt: Receipt) -> bool:
    return receipt.dry_run


def _done(step: StepDefinition, receipt: Receipt, message: str) -> StepOutcome:
    """Outcome for a step whose result is one command."""
    if receipt.failed:
        return StepOutcome.error(step.id, receipt.error or "command failed")
    if _dry(receipt):
        return StepOutcome.skipped(step.id, receipt.output)
    success(logger, message)
    return StepOutcome.success(step.id, message)


# ── Pre-checks ──────────────────────────────────────────────────


def detect_mirror(os_release: Path) -> str:
    """Distribution mirror for ``ID``/``ID_LIKE`` in os-release."""
    try:
        text = os_release.read_text(encoding="utf-8")
    except OSError:
        return DISTRO_MIRRORS["debian"]

    fields: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            fields[key.strip()] = value.strip().strip('"')

    candidates = [fields.get("ID", "")] + fields.get("ID_LIKE", "").split()
    for distro in candidates:
        if distro in DISTRO_MIRRORS:
            return DISTRO_MIRRORS[distro]
    return DISTRO_MIRRORS["debian"]


def check_connectivity(ctx: RunContext, step: StepDefinition) -> StepOutcome:
    mirror = detect_mirror(ctx.paths.os_release)
    logger.info("Checking connection to %s", mirror)

    if ctx.probe(step.id, ["ping", "-c", "1", "-W", "3", mirror], timeout=15).ok:
        success(logger, "Connection OK")
        return StepOutcome.success(step.id, f"{mirror} reachable")

    if ctx.probe(step.id, ["ping", "-c", "1", "-W", "3", FALLBACK_HOST], timeout=15).ok:
        msg = f"{mirror} unreachable, but the internet is; mirror may be down"
        logger.warning(msg)
        return StepOutcome.warning(step.id, msg)

    raise StepExecutionError(
        step.id,
        "No internet connection",
        remediation="check the network connection and DNS, then restart the run",
    )


def check_dependencies(ctx: RunContext, step: StepDefinition) -> StepOutcome:
    """Verify the tools of enabled steps; offer to install missing ones."""
    missing: dict[str, str] = {}
    for entry in STEP_CATALOG:
        if not entry.tool or not entry.tool_package:
            continue
        if not ctx.config.is_enabled(entry.id):
            logger.debug("Skipping tool check for %s (step disabled)", entry.tool)
            continue
        if not ctx.has_tool(entry.tool):
            missing[entry.tool] = entry.tool_package

    if not missing:
        success(logger, "All required tools are installed")
        return StepOutcome.success(step.id, "all tools present")

    packages = sorted(set(missing.values()))
    logger.warning("Missing tools: %s", ", ".join(sorted(missing)))

    if ctx.prompter.interactive and not ctx.dry_run:
        if ctx.prompter.confirm(f"Install {' '.join(packages)}?", default=False):
            receipt = ctx.run(
                step.id, ["apt-get", "install", "-y", *packages], env=APT_ENV,
            )
            if receipt.ok:
                success(logger, "Installed: %s", " ".join(packages))
                return StepOutcome.success(step.id, f"installed {len(packages)} package(s)")
            return StepOutcome.error(step.id, f"install failed: {receipt.error}")

    return StepOutcome.warning(
        step.id,
        f"missing: {', '.join(sorted(missing))}",
        details=[f"apt install {' '.join(packages)}"],
    )


# ── Safety ──────────────────────────────────────────────────────


def backup_tar(ctx: RunContext, step: StepDefinition) -> StepOutcome:
    backup_dir = Path(ctx.settings.backup_dir)
    if ctx.no_backup:
        return StepOutcome.skipped(step.id, "disabled with --no-backup")
    if ctx.dry_run:
        logger.info("[dry-run] Would create backup in %s", backup_dir)
        return StepOutcome.skipped(step.id, f"[dry-run] Would create backup in {backup_dir}")

    selections = ctx.probe(step.id, ["dpkg", "--get-selections"])
    if selections.failed:
        logger.warning("Package selection list unavailable: %s", selections.error)

    try:
        result = create_backup(
            backup_dir,
            selections.output + "\n" if selections.ok else None,
            sources=ctx.paths.apt_sources,
            keep=ctx.settings.retention,
        )
    except (OSError, tarfile.TarError) as e:
        return StepOutcome.error(step.id, f"backup failed: {e}")

    success(logger, "Backup created: %s", result.archive)
    return StepOutcome.success(step.id, str(result.archive))


def timeshift_configured(config_path: Path) -> bool:
    """Whether Timeshift has a backup device configured."""
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError:
        return False
    return not re.search(r'"backup_device_uuid"\s*:\s*"(none)?"', text)


def snapshot(ctx: RunContext, step: StepDefinition) -> StepOutcome:
    if not ctx.has_tool("timeshift"):
        logger.warning("Timeshift is not installed; no snapshot taken")
        return StepOutcome.warning(step.id, "timeshift not installed")

    if not timeshift_configured(ctx.paths.timeshift_config):
        logger.warning("Timeshift is not configured; run 'sudo timeshift --wizard'")
        ctx.prompter.pause("Timeshift is not configured. Press any key to continue without a snapshot")
        return StepOutcome.warning(step.id, "timeshift not configured")

    if ctx.settings.ask_snapshot and ctx.prompter.interactive and not ctx.dry_run:
        if ctx.prompter.confirm("Skip the Timeshift snapshot?", default=False):
            logger.warning("Snapshot skipped by operator")
            return StepOutcome.skipped(step.id, "skipped by operator")

    comment = f"Pre-Maintenance {datetime.now():%Y-%m-%d_%H:%M:%S}"
    receipt = ctx.run(step.id, ["timeshift", "--create", "--comments", comment, "--tags", "O"])
    if _dry(receipt):
        return StepOutcome.skipped(step.id, receipt.output)
    if receipt.ok:
        success(logger, "Snapshot created")
        return StepOutcome.success(step.id, comment)

    logger.error("Snapshot failed: %s", receipt.error)
    if ctx.prompter.interactive:
        answer = ctx.prompter.ask(
            f"Snapshot failed. Type {risk.CONFIRM_TOKEN} to continue without one"
        )
        if risk.confirmed(answer):
            logger.warning("Operator continued without a snapshot")
            return StepOutcome.error(step.id, f"snapshot failed: {receipt.error}")
    raise SnapshotFailure(f"Snapshot failed: {receipt.error}")


# ── Updates ─────────────────────────────────────────────────────


def update_repos(ctx: RunContext, step: StepDefinition) -> StepOutcome:
    repair = ctx.run(step.id, ["dpkg", "--configure", "-a"], env=APT_ENV)
    if repair.failed:
        logger.warning("dpkg --configure -a reported errors: %s", repair.error)

    receipt = ctx.run(step.id, ["apt-get", "update"], env=APT_ENV)
    if receipt.failed:
        raise StepExecutionError(
            step.id,
            f"Repository refresh failed: {receipt.error}",
            remediation="check /etc/apt/sources.list* and network access, then retry",
        )
    return _done(step, receipt, "Repositories updated")


def upgrade_system(ctx: RunContext, step: StepDefinition) -> StepOutcome:
    listing = ctx.probe(step.id, ["apt", "list", "--upgradable"])
    if listing.failed:
        return StepOutcome.error(step.id, f"cannot list upgrades: {listing.error}")
    pending = risk.count_upgradable(listing.output)
    if pending == 0:
        logger.info("System is up to date")
        return StepOutcome.success(step.id, "up to date")

    logger.info("%d package(s) to upgrade; simulating", pending)
    simulation = ctx.probe(step.id, ["apt-get", "-s", "full-upgrade"])
    if simulation.failed:
        return StepOutcome.error(step.id, f"upgrade simulation failed: {simulation.error}")

    report = risk.analyze(
        risk.parse_simulation(simulation.output),
        ctx.settings.max_removals_allowed,
    )
    decision = risk.gate(report, unattended=ctx.unattended)

    if decision is not risk.Decision.PROCEED:
        logger.warning(
            "Upgrade would remove %d package(s): %s",
            report.proposed_removals, ", ".join(report.sample_names),
        )
    if decision is risk.Decision.ABORT:
        raise RiskAbort(
            f"Upgrade would remove {report.proposed_removals} package(s); "
            "aborted in unattended mode"
        )
    if decision is risk.Decision.REQUIRE_CONFIRMATION:
        answer = ctx.prompter.ask(
            f"Type {risk.CONFIRM_TOKEN} to upgrade anyway "
            f"({report.proposed_removals} removal(s))"
        )
        if not risk.confirmed(answer):
            raise RiskAbort("Upgrade cancelled by operator")
        logger.warning("Operator accepted %d removal(s)", report.proposed_removals)

    receipt = ctx.run(step.id, ["apt-get", "full-upgrade", "-y"], env=APT_ENV)
    outcome = _done(step, receipt, f"{pending} package(s) upgraded")
    if outcome.status is StepStatus.SUCCESS:
        ctx.upgrade_performed = True
    return outcome


def update_flatpak(ctx: RunContext, step: StepDefinition) -> StepOutcome:
    if not ctx.has_tool("flatpak"):
        return StepOutcome.skipped(step.id, "flatpak not installed")

    appstream = ctx.run(step.id, ["flatpak", "update", "--appstream", "-y"])
    if appstream.failed:
        logger.warning("Flatpak appstream update failed: %s", appstream.error)

    receipt = ctx.run(step.id, ["flatpak", "update", "-y"])
    if receipt.ok and not _dry(receipt):
        ctx.run(step.id, ["flatpak", "uninstall", "--unused", "-y"])
        ctx.run(step.id, ["flatpak", "repair"])
    return _done(step, receipt, "Flatpak updated")


def parse_disabled_snaps(output: str) -> list[tuple[str, str]]:
    """(name, revision) of disabled revisions in ``snap list --all``."""
    disabled = []
    for line in output.splitlines()[1:]:
        parts = line.split()
        if len(parts) >= 3 and "disabled" in line:
            disabled.append((parts[0], parts[2]))
    return disabled


def update_snap(ctx: RunContext, step: StepDefinition) -> StepOutcome:
    if not ctx.has_tool("snap"):
        return StepOutcome.skipped(step.id, "snap not installed")

    receipt = ctx.run(step.id, ["snap", "refresh"])
    if receipt.ok and not _dry(receipt):
        listing = ctx.probe(step.id, ["snap", "list", "--all"])
        for name, rev in parse_disabled_snaps(listing.output):
            ctx.run(step.id, ["snap", "remove", name, f"--revision={rev}"])
    return _done(step, receipt, "Snap packages refreshed")


def check_firmware(ctx: RunContext, step: StepDefinition) -> StepOutcome:
    if not ctx.has_tool("fwupdmgr"):
        return StepOutcome.skipped(step.id, "fwupd not installed")

    refresh = ctx.run(step.id, ["fwupdmgr", "refresh", "--force"], timeout=300)
    if refresh.failed:
        logger.warning("Firmware metadata refresh failed: %s", refresh.error)

    # Exit status 0 means updates are available, 2 means none
    updates = ctx.probe(step.id, ["fwupdmgr", "get-updates"])
    if updates.ok:
        msg = "Firmware updates available (run: sudo fwupdmgr update)"
        logger.warning(msg)
        return StepOutcome.warning(step.id, msg)
    return StepOutcome.success(step.id, "firmware up to date")


# ── Cleanup ─────────────────────────────────────────────────────


def residual_config_packages(dpkg_output: str) -> list[str]:
    """Packages in ``rc`` state (removed, configuration left)."""
    return [
        line.split()[1]
        for line in dpkg_output.splitlines()
        if line.startswith("rc") and len(line.split()) > 1
    ]


def cleanup_apt(ctx: RunContext, step: StepDefinition) -> StepOutcome:
    errors: list[str] = []

    receipt = ctx.run(step.id, ["apt-get", "autoremove", "-y"], env=APT_ENV)
    if receipt.failed:
        errors.append(f"autoremove: {receipt.error}")

    residual = residual_config_packages(ctx.probe(step.id, ["dpkg", "-l"]).output)
    if residual:
        logger.info("Purging %d residual configuration(s)", len(residual))
        purge = ctx.run(step.id, ["apt-get", "purge", "-y", *residual], env=APT_ENV)
        if purge.failed:
            errors.append(f"purge: {purge.error}")

    clean = ctx.run(step.id, ["apt-get", ctx.settings.apt_clean_mode])
    if clean.failed:
        errors.append(f"{ctx.settings.apt_clean_mode}: {clean.error}")

    if errors:
        return StepOutcome.error(step.id, "; ".join(errors))
    return _done(step, clean, "APT cleanup complete")


def cleanup_kernels(ctx: RunContext, step: StepDefinition) -> StepOutcome:
    uname = ctx.probe(step.id, ["uname", "-r"])
    if uname.failed or not uname.output.strip():
        return StepOutcome.error(step.id, "cannot determine the running kernel")
    running = kernel_retention.running_kernel_ref(uname.output)
    logger.info("Running kernel: %s", running.version)

    installed = kernel_retention.parse_installed_kernels(
        ctx.probe(step.id, ["dpkg", "-l"]).output
    )
    if not installed:
        return StepOutcome.skipped(step.id, "no kernel packages found")

    plan = kernel_retention.plan(installed, running, ctx.settings.keep_kernels)
    if plan.forced_running:
        logger.warning("Running kernel is not among the newest; keeping it anyway")
    if not plan.has_removals:
        logger.info("No old kernels to remove (%d installed)", len(installed))
        return StepOutcome.skipped(step.id, "nothing to remove")

    names = [k.name for k in plan.remove]
    logger.info("Keeping: %s", ", ".join(k.name for k in plan.retain))
    logger.info("Removing: %s", ", ".join(names))

    if ctx.prompter.interactive and not ctx.dry_run:
        if not ctx.prompter.confirm(f"Remove {len(names)} old kernel(s)?", default=False):
            logger.info("Kernel cleanup cancelled by operator")
            return StepOutcome.skipped(step.id, "cancelled by operator")

    receipt = ctx.run(step.id, ["apt-get", "purge", "-y", *names], env=APT_ENV)
    if receipt.ok and not _dry(receipt) and ctx.has_tool("update-grub"):
        grub = ctx.run(step.id, ["update-grub"])
        if grub.failed:
            logger.warning("update-grub failed: %s", grub.error)
    outcome = _done(step, receipt, f"Removed {len(names)} old kernel(s)")
    outcome.details = names
    return outcome


def cleanup_disk(ctx: RunContext, step: StepDefinition) -> StepOutcome:
    errors: list[str] = []

    if ctx.has_tool("journalctl"):
        journal = ctx.run(step.id, [
            "journalctl",
            f"--vacuum-time={ctx.settings.journal_days}d",
            "--vacuum-size=500M",
        ])
        if journal.failed:
            errors.append(f"journal: {journal.error}")

    tmp = ctx.run(step.id, ["find", "/var/tmp", "-type", "f", "-atime", "+30", "-delete"])
    if tmp.failed:
        logger.warning("Temp cleanup incomplete: %s", tmp.error)

    thumbs = ctx.run(step.id, [
        "find", "/home", "/root",
        "-path", "*/.cache/thumbnails/*", "-type", "f", "-delete",
    ])
    if thumbs.failed:
        logger.warning("Thumbnail cleanup incomplete: %s", thumbs.error)

    if errors:
        return StepOutcome.error(step.id, "; ".join(errors))
    return _done(step, thumbs, "Disk cleanup complete")


def cleanup_docker(ctx: RunContext, step: StepDefinition) -> StepOutcome:
    engines = [e for e in ("docker", "podman") if ctx.has_tool(e)]
    if not engines:
        return StepOutcome.skipped(step.id, "docker/podman not installed")

    last: Receipt | None = None
    for engine in engines:
        logger.info("Pruning %s", engine)
        last = ctx.run(step.id, [engine, "system", "prune", "-af", "--volumes"])
        if last.failed:
            return StepOutcome.error(step.id, f"{engine} prune failed: {last.error}")
    return _done(step, last, f"Pruned {', '.join(engines)}")


_REALLOCATED = re.compile(r"Reallocated_Sector\S*\s.*?(\d+)\s*$", re.MULTILINE)
_PENDING = re.compile(r"Current_Pending\S*\s.*?(\d+)\s*$", re.MULTILINE)


def classify_smart(health_output: str, attributes_output: str = "") -> str:
    """``ok``, ``warning`` or ``failed`` for one disk."""
    if re.search(r"FAILED", health_output, re.IGNORECASE):
        return "failed"
    if re.search(r"PASSED|: OK", health_output):
        return "ok"
    counts = [int(m.group(1)) for pat in (_REALLOCATED, _PENDING)
              for m in pat.finditer(attributes_output)]
    return "warning" if any(counts) else "ok"


def list_disks(dev_dir: Path) -> list[Path]:
    return sorted(dev_dir.glob("sd?")) + sorted(dev_dir.glob("nvme?n1"))


def check_smart(ctx: RunContext, step: StepDefinition) -> StepOutcome:
    if not ctx.has_tool("smartctl"):
        logger.warning("smartctl not installed (apt install smartmontools)")
        return StepOutcome.skipped(step.id, "smartmontools not installed")

    disks = list_disks(ctx.paths.dev_dir)
    if not disks:
        return StepOutcome.skipped(step.id, "no disks found")

    failed: list[str] = []
    warned: list[str] = []
    for disk in disks:
        health = ctx.probe(step.id, ["smartctl", "-H", str(disk)])
        attrs = ""
        if not re.search(r"PASSED|FAILED|: OK", health.output, re.IGNORECASE):
            attrs = ctx.probe(step.id, ["smartctl", "-A", str(disk)]).output
        verdict = classify_smart(health.output, attrs)
        if verdict == "failed":
            logger.error("%s: SMART reports the disk is failing; back up now", disk)
            failed.append(str(disk))
        elif verdict == "warning":
            logger.warning("%s: reallocated or pending sectors", disk)
            warned.append(str(disk))

    if failed:
        return StepOutcome.error(step.id, f"failing: {', '.join(failed)}", details=failed)
    if warned:
        return StepOutcome.warning(step.id, f"degraded: {', '.join(warned)}", details=warned)
    return StepOutcome.success(step.id, f"{len(disks)} disk(s) healthy")


# ── Diagnostics ─────────────────────────────────────────────────


def check_reboot(ctx: RunContext, step: StepDefinition) -> StepOutcome:
    status = None
    if ctx.has_tool("needrestart"):
        status = reboot.parse_needrestart(ctx.probe(step.id, ["needrestart", "-b"]).output)

    assessment = reboot.assess(
        reboot_file_present=ctx.paths.reboot_required.exists(),
        needrestart=status,
        upgrade_performed=ctx.upgrade_performed,
    )
    for note in assessment.notes:
        logger.info(note)

    if assessment.services_to_restart:
        logger.info("%d service(s) need a restart", assessment.services_to_restart)
        restart = ctx.run(step.id, ["needrestart", "-r", "a"])
        if restart.failed:
            logger.warning("needrestart could not restart services: %s", restart.error)

    ctx.reboot_needed = assessment.reboot_needed
    ctx.reboot_reasons = list(assessment.reasons)
    if assessment.reboot_needed:
        logger.warning("Reboot required: %s", "; ".join(assessment.reasons))
        return StepOutcome.warning(step.id, "reboot required", details=assessment.reasons)
    return StepOutcome.success(step.id, "no reboot needed", details=assessment.notes)


HANDLERS: dict[str, StepHandler] = {
    "check_connectivity": check_connectivity,
    "check_dependencies": check_dependencies,
    "backup_tar": backup_tar,
    "snapshot": snapshot,
    "update_repos": update_repos,
    "upgrade_system": upgrade_system,
    "update_flatpak": update_flatpak,
    "update_snap": update_snap,
    "check_firmware": check_firmware,
    "cleanup_apt": cleanup_apt,
    "cleanup_kernels": cleanup_kernels,
    "cleanup_disk": cleanup_disk,
    "cleanup_docker": cleanup_docker,
    "check_smart": check_smart,
    "check_reboot": check_reboot,
}
