"""
Reboot detection — interpret reboot-required markers and needrestart.

Pure interpretation: callers collect ``needrestart -b`` output and the
presence of ``/var/run/reboot-required``; this module decides.
"""

from __future__ import annotations

from dataclasses import dataclass, field

REBOOT_REQUIRED_FILE = "/var/run/reboot-required"


@dataclass
class NeedrestartStatus:
    running_kernel: str = ""
    expected_kernel: str = ""
    kernel_status: str = ""
    services: list[str] = field(default_factory=list)
    critical_libs: bool = False

    @property
    def kernel_outdated(self) -> bool:
        return bool(
            self.running_kernel
            and self.expected_kernel
            and self.running_kernel != self.expected_kernel
        )


@dataclass
class RebootAssessment:
    reboot_needed: bool = False
    reasons: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    services_to_restart: int = 0


def parse_needrestart(output: str) -> NeedrestartStatus:
    """Parse ``needrestart -b`` batch output."""
    status = NeedrestartStatus()
    for line in output.splitlines():
        key, _, value = line.partition(":")
        value = value.strip()
        if key == "NEEDRESTART-KCUR":
            status.running_kernel = value
        elif key == "NEEDRESTART-KEXP":
            status.expected_kernel = value
        elif key == "NEEDRESTART-KSTA":
            status.kernel_status = value
        elif key == "NEEDRESTART-SVC":
            status.services.append(value)
        elif key == "NEEDRESTART-UCSTA":
            status.critical_libs = value == "1"
    return status


def assess(
    reboot_file_present: bool,
    needrestart: NeedrestartStatus | None,
    upgrade_performed: bool,
) -> RebootAssessment:
    """Combine all signals into one verdict.

    The critical-library flag (UCSTA) persists across sessions, so it
    only forces a reboot when packages were upgraded in this run.  A
    flag left from an earlier session is reported as a note instead of
    being dropped.
    """
    result = RebootAssessment()

    if reboot_file_present:
        result.reboot_needed = True
        result.reasons.append(f"{REBOOT_REQUIRED_FILE} present")

    if needrestart is None:
        return result

    result.services_to_restart = len(needrestart.services)

    if needrestart.kernel_outdated:
        result.reboot_needed = True
        result.reasons.append(
            f"running kernel {needrestart.running_kernel} "
            f"!= expected {needrestart.expected_kernel}"
        )

    if needrestart.critical_libs:
        if upgrade_performed:
            result.reboot_needed = True
            result.reasons.append("critical libraries updated in this session")
        else:
            result.notes.append(
                "critical libraries flagged by an earlier update; "
                "reboot if it has not happened since"
            )

    return result
