"""
Step catalog — the fixed, ordered list of maintenance steps.

Order is defined here and nowhere else: user configuration can enable
or disable steps but never reorder them.

Phases:
    pre-checks   — connectivity, tool availability
    safety       — configuration backup, system snapshot
    updates      — apt, flatpak, snap, firmware
    cleanup      — orphans, old kernels, logs/caches, containers
    diagnostics  — disk health, reboot detection
"""

from __future__ import annotations

from src.core.models.step import StepDefinition


def _step(order: int, step_id: str, label: str, description: str, **kwargs) -> StepDefinition:
    return StepDefinition(
        id=step_id,
        order=order,
        label=label,
        description=description,
        **kwargs,
    )


STEP_CATALOG: tuple[StepDefinition, ...] = (
    # ── Pre-checks ──────────────────────────────────────────────
    _step(1, "check_connectivity", "Connectivity",
          "Verify the distribution mirror is reachable",
          critical=True, tool="ping", tool_package="iputils-ping"),
    _step(2, "check_dependencies", "Dependencies",
          "Verify the tools needed by enabled steps are installed"),
    # ── Safety ──────────────────────────────────────────────────
    _step(3, "backup_tar", "Config backup",
          "Archive APT sources and keys, snapshot the package selection",
          tool="tar"),
    _step(4, "snapshot", "Snapshot",
          "Create a Timeshift system snapshot before changes",
          tool="timeshift", tool_package="timeshift"),
    # ── Updates ─────────────────────────────────────────────────
    _step(5, "update_repos", "Refresh repos",
          "Repair dpkg state and refresh package lists (apt update)",
          critical=True, tool="apt-get"),
    _step(6, "upgrade_system", "Upgrade",
          "Full upgrade, gated by a mass-removal risk check",
          depends_on=frozenset({"update_repos"}), tool="apt-get"),
    _step(7, "update_flatpak", "Flatpak",
          "Update Flatpak applications and remove unused runtimes",
          tool="flatpak", tool_package="flatpak"),
    _step(8, "update_snap", "Snap",
          "Refresh Snap packages and drop disabled revisions",
          default_enabled=False, tool="snap", tool_package="snapd"),
    _step(9, "check_firmware", "Firmware",
          "Refresh firmware metadata and report available updates",
          tool="fwupdmgr", tool_package="fwupd"),
    # ── Cleanup ─────────────────────────────────────────────────
    _step(10, "cleanup_apt", "APT cleanup",
          "Remove orphans, purge residual configs, clean the package cache",
          tool="apt-get"),
    _step(11, "cleanup_kernels", "Old kernels",
          "Purge old kernels, keeping the running one and the newest N",
          tool="dpkg"),
    _step(12, "cleanup_disk", "Disk cleanup",
          "Vacuum the journal, drop stale temp files and thumbnails",
          tool="journalctl"),
    _step(13, "cleanup_docker", "Containers",
          "Prune unused Docker/Podman images, containers and volumes",
          default_enabled=False),
    # ── Diagnostics ─────────────────────────────────────────────
    _step(14, "check_smart", "Disk health",
          "Query SMART health of physical disks",
          tool="smartctl", tool_package="smartmontools"),
    _step(15, "check_reboot", "Reboot check",
          "Detect whether a reboot or service restarts are needed",
          tool="needrestart", tool_package="needrestart"),
)

STEP_IDS: tuple[str, ...] = tuple(s.id for s in STEP_CATALOG)

_BY_ID: dict[str, StepDefinition] = {s.id: s for s in STEP_CATALOG}


def get_step(step_id: str) -> StepDefinition:
    """Look up a catalog step by id.

    Raises:
        KeyError: Unknown step id.
    """
    try:
        return _BY_ID[step_id]
    except KeyError:
        raise KeyError(f"Unknown step: {step_id}") from None


def default_states() -> dict[str, bool]:
    """Catalog default enabled state for every step."""
    return {s.id: s.default_enabled for s in STEP_CATALOG}


# ── Profiles ────────────────────────────────────────────────────
#
# A profile is a complete step-state bundle.  ``custom`` is absent:
# it means "use exactly what the configuration file says".

_ALL_OFF = {sid: False for sid in STEP_IDS}

PROFILES: dict[str, dict[str, bool]] = {
    "server": {
        **_ALL_OFF,
        "check_connectivity": True,
        "check_dependencies": True,
        "backup_tar": True,
        "update_repos": True,
        "upgrade_system": True,
        "check_firmware": True,
        "cleanup_apt": True,
        "cleanup_kernels": True,
        "cleanup_disk": True,
        "cleanup_docker": True,
        "check_smart": True,
        "check_reboot": True,
    },
    "desktop": {
        **_ALL_OFF,
        "check_connectivity": True,
        "check_dependencies": True,
        "backup_tar": True,
        "snapshot": True,
        "update_repos": True,
        "upgrade_system": True,
        "update_flatpak": True,
        "check_firmware": True,
        "cleanup_apt": True,
        "cleanup_kernels": True,
        "cleanup_disk": True,
        "check_smart": True,
        "check_reboot": True,
    },
    "developer": {
        **_ALL_OFF,
        "check_connectivity": True,
        "check_dependencies": True,
        "backup_tar": True,
        "snapshot": True,
        "update_repos": True,
        "upgrade_system": True,
        "update_flatpak": True,
        "update_snap": True,
        "cleanup_apt": True,
        "cleanup_kernels": True,
        "cleanup_disk": True,
        "cleanup_docker": True,
        "check_reboot": True,
    },
    "minimal": {
        **_ALL_OFF,
        "check_connectivity": True,
        "update_repos": True,
        "upgrade_system": True,
        "cleanup_apt": True,
        "check_reboot": True,
    },
}

# Profiles meant for scheduled/headless use: no editor, fail-closed gating.
UNATTENDED_PROFILES = frozenset({"server", "minimal", "custom"})
