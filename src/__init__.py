"""sysmaint — unattended maintenance for Debian-family systems."""

__version__ = "0.1.0"
