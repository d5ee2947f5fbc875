"""
Scheduled runs — systemd service + timer for unattended maintenance.

The service always runs ``-y --no-menu`` so scheduled runs fail closed.
"""

from __future__ import annotations

import logging
import shutil
import sys
from pathlib import Path

from src.adapters.registry import AdapterRegistry
from src.core.models.action import Action

logger = logging.getLogger(__name__)

UNIT_NAME = "sysmaint"
SYSTEMD_DIR = Path("/etc/systemd/system")

ON_CALENDAR = {
    "daily": "*-*-* 02:00:00",
    "weekly": "Sun *-*-* 02:00:00",
    "monthly": "*-*-01 02:00:00",
}


def _exec_start() -> str:
    exe = shutil.which("sysmaint")
    if exe:
        return f"{exe} run -y --no-menu"
    return f"{sys.executable} -m src.main run -y --no-menu"


def render_service(exec_start: str | None = None) -> str:
    return (
        "[Unit]\n"
        "Description=sysmaint system maintenance\n"
        "After=network-online.target\n"
        "Wants=network-online.target\n"
        "\n"
        "[Service]\n"
        "Type=oneshot\n"
        f"ExecStart={exec_start or _exec_start()}\n"
        "StandardOutput=journal\n"
        "StandardError=journal\n"
    )


def render_timer(mode: str) -> str:
    """Timer unit for ``daily``, ``weekly`` or ``monthly``."""
    try:
        calendar = ON_CALENDAR[mode]
    except KeyError:
        raise ValueError(f"Unknown schedule '{mode}'. Use: {', '.join(ON_CALENDAR)}") from None
    return (
        "[Unit]\n"
        "Description=sysmaint scheduled maintenance timer\n"
        "\n"
        "[Timer]\n"
        f"OnCalendar={calendar}\n"
        "Persistent=true\n"
        "RandomizedDelaySec=1800\n"
        "\n"
        "[Install]\n"
        "WantedBy=timers.target\n"
    )


def _systemctl(registry: AdapterRegistry, *args: str, mutating: bool = True):
    action = Action(
        id=f"schedule:systemctl:{'-'.join(args)}",
        argv=["systemctl", *args],
        step_id="schedule",
        mutating=mutating,
        timeout=60,
    )
    return registry.execute_action(action)


def install_schedule(
    mode: str,
    registry: AdapterRegistry,
    unit_dir: Path = SYSTEMD_DIR,
    dry_run: bool = False,
) -> dict:
    """Write the units and enable the timer."""
    service = render_service()
    timer = render_timer(mode)
    service_path = unit_dir / f"{UNIT_NAME}.service"
    timer_path = unit_dir / f"{UNIT_NAME}.timer"

    if dry_run:
        logger.info("[dry-run] Would write %s and %s", service_path, timer_path)
    else:
        unit_dir.mkdir(parents=True, exist_ok=True)
        service_path.write_text(service, encoding="utf-8")
        timer_path.write_text(timer, encoding="utf-8")

    for args in (("daemon-reload",), ("enable", "--now", f"{UNIT_NAME}.timer")):
        receipt = _systemctl(registry, *args)
        if receipt.failed:
            return {"error": f"systemctl {' '.join(args)} failed: {receipt.error}"}

    logger.info("Scheduled %s maintenance (%s)", mode, ON_CALENDAR[mode])
    return {
        "mode": mode,
        "on_calendar": ON_CALENDAR[mode],
        "service": str(service_path),
        "timer": str(timer_path),
    }


def remove_schedule(
    registry: AdapterRegistry,
    unit_dir: Path = SYSTEMD_DIR,
    dry_run: bool = False,
) -> dict:
    """Disable the timer and delete both units."""
    receipt = _systemctl(registry, "disable", "--now", f"{UNIT_NAME}.timer")
    if receipt.failed:
        logger.warning("Disabling timer failed (continuing): %s", receipt.error)

    removed: list[str] = []
    for suffix in ("service", "timer"):
        path = unit_dir / f"{UNIT_NAME}.{suffix}"
        if not path.exists():
            continue
        if not dry_run:
            path.unlink()
        removed.append(str(path))

    _systemctl(registry, "daemon-reload")
    return {"removed": removed}


def schedule_status(registry: AdapterRegistry) -> dict:
    receipt = _systemctl(registry, "is-active", f"{UNIT_NAME}.timer", mutating=False)
    active = receipt.ok and receipt.output.strip() == "active"
    result: dict = {"active": active}
    if active:
        timers = _systemctl(
            registry, "list-timers", f"{UNIT_NAME}.timer", "--no-pager", mutating=False,
        )
        result["timers"] = timers.output
    return result
