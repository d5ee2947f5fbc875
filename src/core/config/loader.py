"""
Configuration loader — reads sysmaint.yml into a validated Configuration.

Resolution order for the step states of a run:
    explicit profile  >  persisted file  >  built-in catalog defaults

The file is parsed with ``yaml.safe_load`` (data only, never code) and
validated against the Pydantic schema, which rejects unknown keys.
"""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path

import yaml
from pydantic import ValidationError as SchemaError

from src.core.config.catalog import STEP_CATALOG, default_states
from src.core.config.registry import StepRegistry
from src.core.errors import ConfigError
from src.core.models.config import Configuration

logger = logging.getLogger(__name__)

# Default config location (overridable with --config or SYSMAINT_CONFIG)
DEFAULT_CONFIG_PATH = Path("/etc/sysmaint/sysmaint.yml")
CONFIG_ENV_VAR = "SYSMAINT_CONFIG"


def resolve_config_path(path: Path | None = None) -> Path:
    """Pick the configuration path: explicit > env var > default."""
    if path is not None:
        return path
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def default_configuration() -> Configuration:
    """Built-in defaults: catalog step states, nothing locked."""
    return Configuration(steps=default_states())


def read_config_file(path: Path) -> Configuration:
    """Parse and schema-validate a configuration file.

    Raises:
        ConfigError: The file is unreadable, unsafe, or invalid.
    """
    if path.is_symlink():
        real = path.resolve()
        if real.parent != path.parent.resolve():
            raise ConfigError(f"Refusing {path}: symlink points outside {path.parent}")

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        return Configuration.model_validate(data)
    except SchemaError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e


def load_configuration(
    path: Path | None = None,
    profile: str | None = None,
) -> Configuration:
    """Build the Configuration for a run.

    Args:
        path: Configuration file (see ``resolve_config_path``).
        profile: Explicit profile name; overrides the file's step states.

    Returns:
        Configuration with every catalog step materialized.

    Raises:
        ConfigError: The file exists but is invalid.
        ValueError: Unknown profile name.
    """
    path = resolve_config_path(path)

    if path.is_file():
        logger.debug("Loading configuration from %s", path)
        config = read_config_file(path)
        source = str(path)
    else:
        logger.info("No configuration at %s — using built-in defaults", path)
        config = default_configuration()
        source = "defaults"

    registry = StepRegistry(config)

    # The profile stored in the file is a label; only an explicit one
    # replaces the persisted step states.
    if profile is not None:
        registry.apply_profile(profile)
        if profile != "custom":
            source = f"profile:{profile}"

    logger.info("Configuration loaded from %s (%d steps enabled)",
                source, len(config.enabled_steps()))
    return config


def _render(config: Configuration) -> str:
    """Render a configuration as commented YAML, steps in catalog order."""
    data = config.model_dump(mode="json")
    # Keep catalog order instead of insertion order
    data["steps"] = {s.id: config.is_enabled(s.id) for s in STEP_CATALOG}
    data["locks"] = {s.id: config.is_locked(s.id) for s in STEP_CATALOG}

    header = (
        "# sysmaint configuration — generated "
        f"{datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n"
        "# profile: server | desktop | developer | minimal | custom\n"
        "# (label only; step states below apply as written)\n"
        "# locks: a locked step cannot be toggled from the menu or select-all\n"
    )
    return header + yaml.safe_dump(data, sort_keys=False, default_flow_style=False)


def save_configuration(config: Configuration, path: Path | None = None) -> Path:
    """Persist a configuration (atomic write, mode 0600).

    Returns:
        The path written.
    """
    path = resolve_config_path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    content = _render(config)

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".sysmaint_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(tmp, 0o600)
        tmp.replace(path)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise

    _chown_to_sudo_user(path)
    logger.info("Configuration saved to %s", path)
    return path


def delete_configuration(path: Path | None = None) -> bool:
    """Remove the persisted configuration.  Returns True if a file was removed."""
    path = resolve_config_path(path)
    if path.is_file():
        path.unlink()
        logger.info("Configuration deleted: %s", path)
        return True
    return False


def _chown_to_sudo_user(path: Path) -> None:
    """Hand the file back to the user who invoked sudo, if any."""
    sudo_uid = os.environ.get("SUDO_UID")
    sudo_gid = os.environ.get("SUDO_GID")
    if not sudo_uid or not sudo_gid or os.geteuid() != 0:
        return
    try:
        os.chown(path, int(sudo_uid), int(sudo_gid))
    except (OSError, ValueError) as e:
        logger.debug("Could not chown %s to sudo user: %s", path, e)
