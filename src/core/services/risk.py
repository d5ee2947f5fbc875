"""
L1 Domain — Upgrade risk assessment (pure).

Classify a dry-run upgrade simulation and gate it.  No I/O, no
subprocess: the caller runs ``apt-get full-upgrade -s`` and hands the
output over.  This module never executes the upgrade.

Policy:
    removals <= threshold              → PROCEED
    removals >  threshold, unattended  → ABORT (no override)
    removals >  threshold, interactive → REQUIRE_CONFIRMATION; only the
                                         exact confirmation token counts
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

CONFIRM_TOKEN = "YES"
"""Exact answer an operator must type to accept a risky operation."""

SAMPLE_SIZE = 5

_REMV_LINE = re.compile(r"^Remv\s+(\S+)")


class Decision(str, Enum):
    PROCEED = "proceed"
    REQUIRE_CONFIRMATION = "require_confirmation"
    ABORT = "abort"


@dataclass(frozen=True)
class RiskReport:
    """Outcome of classifying one simulation.  Not persisted."""

    proposed_removals: int
    sample_names: tuple[str, ...] = field(default_factory=tuple)
    threshold: int = 0

    @property
    def risky(self) -> bool:
        return self.proposed_removals > self.threshold

    def to_dict(self) -> dict:
        return {
            "proposed_removals": self.proposed_removals,
            "sample_names": list(self.sample_names),
            "threshold": self.threshold,
            "risky": self.risky,
        }


def parse_simulation(output: str) -> list[str]:
    """Package names an ``apt-get -s`` simulation would remove."""
    names: list[str] = []
    for line in output.splitlines():
        m = _REMV_LINE.match(line)
        if m:
            names.append(m.group(1))
    return names


def count_upgradable(output: str) -> int:
    """Number of packages listed by ``apt list --upgradable``."""
    return sum(1 for line in output.splitlines() if "[upgradable" in line)


def analyze(simulated_removals: list[str], threshold: int) -> RiskReport:
    """Classify a simulated removal list against the allowed threshold."""
    return RiskReport(
        proposed_removals=len(simulated_removals),
        sample_names=tuple(simulated_removals[:SAMPLE_SIZE]),
        threshold=threshold,
    )


def gate(report: RiskReport, unattended: bool) -> Decision:
    """Decide whether the upgrade may proceed.

    Unattended runs fail closed: nobody is there to absorb the risk.
    """
    if not report.risky:
        return Decision.PROCEED
    if unattended:
        return Decision.ABORT
    return Decision.REQUIRE_CONFIRMATION


def confirmed(answer: str | None, token: str = CONFIRM_TOKEN) -> bool:
    """Exact-match check of an operator's answer.

    Surrounding whitespace is ignored; case is not.  "y", "yes" and
    anything else that is not the token count as refusal.
    """
    if answer is None:
        return False
    return answer.strip() == token
