"""
L1 Domain — Kernel retention planning (pure).

Decides which installed kernel packages survive cleanup.  No I/O, no
subprocess: callers pass in what dpkg and uname reported.

Rules:
    1. Sort installed kernels by version, ascending.
    2. The ``keep`` highest form the base retain set.
    3. If the running kernel is installed but not in the base set, it is
       forced in and the lowest member of the base set is evicted.
       A running kernel that dpkg does not know about is added without
       eviction, hence ``|retain| <= keep + 1``.
    4. ``remove = installed - retain``; the running kernel is never in it.
    5. Versions that cannot be parsed rank lowest; they are never
       dropped from consideration.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import cmp_to_key

KERNEL_PACKAGE_PREFIX = "linux-image-"

_DPKG_KERNEL_LINE = re.compile(r"^ii\s+(linux-image-\d\S*)\s+(\S+)")
_VERSION_SHAPE = re.compile(r"^(?:\d+:)?\d[A-Za-z0-9.+~-]*$")


@dataclass(frozen=True)
class PackageRef:
    """An installed package and its comparable version string."""

    name: str
    version: str

    @property
    def parseable(self) -> bool:
        return bool(_VERSION_SHAPE.match(self.version))

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class RetentionPlan:
    running: PackageRef
    keep: int
    retain: tuple[PackageRef, ...]
    remove: tuple[PackageRef, ...]
    forced_running: bool = False

    @property
    def has_removals(self) -> bool:
        return bool(self.remove)

    def to_dict(self) -> dict:
        return {
            "running": self.running.name,
            "keep": self.keep,
            "retain": [p.name for p in self.retain],
            "remove": [p.name for p in self.remove],
            "forced_running": self.forced_running,
        }


# ── Debian version comparison ───────────────────────────────────


def _order(c: str) -> int:
    if c == "~":
        return -1
    if c.isdigit():
        return 0
    if c.isalpha():
        return ord(c)
    return ord(c) + 256


def _verrevcmp(a: str, b: str) -> int:
    """dpkg's verrevcmp: alternating non-digit / digit runs."""
    i = j = 0
    while i < len(a) or j < len(b):
        first_diff = 0
        while (i < len(a) and not a[i].isdigit()) or (j < len(b) and not b[j].isdigit()):
            ac = _order(a[i]) if i < len(a) else 0
            bc = _order(b[j]) if j < len(b) else 0
            if ac != bc:
                return ac - bc
            i += 1
            j += 1
        while i < len(a) and a[i] == "0":
            i += 1
        while j < len(b) and b[j] == "0":
            j += 1
        while i < len(a) and a[i].isdigit() and j < len(b) and b[j].isdigit():
            if not first_diff:
                first_diff = ord(a[i]) - ord(b[j])
            i += 1
            j += 1
        if i < len(a) and a[i].isdigit():
            return 1
        if j < len(b) and b[j].isdigit():
            return -1
        if first_diff:
            return first_diff
    return 0


def _split(version: str) -> tuple[int, str, str]:
    epoch = 0
    if ":" in version:
        head, version = version.split(":", 1)
        epoch = int(head) if head.isdigit() else 0
    upstream, _, revision = version.rpartition("-")
    if not upstream:
        upstream, revision = revision, ""
    return epoch, upstream, revision


def compare_versions(a: str, b: str) -> int:
    """Compare two Debian version strings (negative, zero, positive)."""
    ea, ua, ra = _split(a)
    eb, ub, rb = _split(b)
    if ea != eb:
        return ea - eb
    return _verrevcmp(ua, ub) or _verrevcmp(ra, rb)


def _compare_refs(a: PackageRef, b: PackageRef) -> int:
    # Unparseable versions rank below every parseable one
    if a.parseable != b.parseable:
        return -1 if not a.parseable else 1
    if not a.parseable:
        return (a.version > b.version) - (a.version < b.version)
    return compare_versions(a.version, b.version) or (a.name > b.name) - (a.name < b.name)


def sort_kernels(kernels) -> list[PackageRef]:
    """Distinct kernels sorted by version, ascending."""
    return sorted(set(kernels), key=cmp_to_key(_compare_refs))


# ── Planning ────────────────────────────────────────────────────


def plan(installed, running: PackageRef, keep: int) -> RetentionPlan:
    """Select which kernels to retain and which to remove.

    Args:
        installed: Installed kernel packages (any order).
        running: The kernel currently booted.
        keep: How many of the most recent kernels to keep.

    Returns:
        RetentionPlan with ``running`` in ``retain`` and never in ``remove``.
    """
    if keep < 0:
        raise ValueError("keep must be >= 0")

    ordered = sort_kernels(installed)

    if len(ordered) <= keep:
        retain = list(ordered)
        if running not in retain:
            retain.append(running)
        return RetentionPlan(
            running=running,
            keep=keep,
            retain=tuple(sort_kernels(retain)),
            remove=(),
        )

    base = ordered[len(ordered) - keep:] if keep else []
    forced = False
    if running not in base:
        forced = True
        if running in ordered and base:
            base = base[1:]
        base.append(running)

    retain = sort_kernels(base)
    remove = [k for k in ordered if k not in retain and k != running]
    return RetentionPlan(
        running=running,
        keep=keep,
        retain=tuple(retain),
        remove=tuple(remove),
        forced_running=forced,
    )


# ── Input parsing ───────────────────────────────────────────────


def kernel_ref(package_name: str) -> PackageRef:
    """Build a PackageRef from a ``linux-image-<release>`` package name."""
    release = package_name[len(KERNEL_PACKAGE_PREFIX):] if package_name.startswith(
        KERNEL_PACKAGE_PREFIX
    ) else package_name
    return PackageRef(name=package_name, version=release)


def running_kernel_ref(uname_release: str) -> PackageRef:
    """PackageRef for the running kernel from ``uname -r``."""
    release = uname_release.strip()
    return PackageRef(name=f"{KERNEL_PACKAGE_PREFIX}{release}", version=release)


def parse_installed_kernels(dpkg_output: str) -> list[PackageRef]:
    """Extract installed kernel images from ``dpkg -l`` output.

    Only fully installed (``ii``) versioned images count; meta packages
    such as ``linux-image-amd64`` do not start with a digit and are
    skipped.
    """
    kernels: list[PackageRef] = []
    for line in dpkg_output.splitlines():
        m = _DPKG_KERNEL_LINE.match(line)
        if not m:
            continue
        name = m.group(1)
        if "meta" in name or name.endswith("-dbg"):
            continue
        kernels.append(kernel_ref(name))
    return kernels
