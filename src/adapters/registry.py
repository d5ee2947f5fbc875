"""
Adapter registry — central dispatch for all external commands.

The registry is the single point where dry-run is enforced: a mutating
action in dry-run mode is logged and answered with a skip receipt, and
never reaches an adapter.  Read-only probes still execute.
"""

from __future__ import annotations

import logging
import time

from src.adapters.base import Adapter, ExecutionContext
from src.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Central registry and dispatcher for adapters.

    Features:
        - Register adapters by name
        - Mock mode: route every action to one mock adapter
        - Dry-run: log mutating actions instead of executing them
    """

    def __init__(self, dry_run: bool = False, mock_mode: bool = False):
        self._adapters: dict[str, Adapter] = {}
        self._dry_run = dry_run
        self._mock_mode = mock_mode
        self._mock_adapter: Adapter | None = None

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    def set_mock_mode(self, enabled: bool, mock_adapter: Adapter | None = None) -> None:
        """Enable or disable mock mode.

        Args:
            enabled: Whether to use mock mode.
            mock_adapter: Adapter receiving every action.  If None, all
                actions succeed with empty output.
        """
        self._mock_mode = enabled
        self._mock_adapter = mock_adapter

    def register(self, adapter: Adapter) -> None:
        name = adapter.name
        if name in self._adapters:
            logger.warning("Overwriting existing adapter: %s", name)
        self._adapters[name] = adapter
        logger.debug("Registered adapter: %s", name)

    def execute_action(self, action: Action) -> Receipt:
        """Execute an action through the appropriate adapter.

        1. Dry-run + mutating → log and skip
        2. Resolve the adapter (or mock)
        3. Validate, then execute
        4. Return a Receipt (never raises)
        """
        start_time = time.monotonic()

        if self._dry_run and action.mutating:
            logger.info("[dry-run] Would execute: %s", action.command_line)
            return Receipt.skip(
                adapter=action.adapter,
                action_id=action.id,
                reason=f"[dry-run] Would execute {action.command_line}",
                metadata={"dry_run": True, "command": action.command_line},
            )

        context = ExecutionContext(
            action=action,
            dry_run=self._dry_run,
            params=action.params,
        )

        adapter: Adapter | None
        if self._mock_mode and self._mock_adapter:
            adapter = self._mock_adapter
        elif self._mock_mode:
            return Receipt.success(
                adapter=action.adapter,
                action_id=action.id,
                return_code=0,
                metadata={"mock": True},
            )
        else:
            adapter = self._adapters.get(action.adapter)

        if adapter is None:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"No adapter registered for '{action.adapter}'",
            )

        try:
            is_valid, error_msg = adapter.validate(context)
        except Exception as e:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Validation error: {e}",
            )
        if not is_valid:
            return Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Validation failed: {error_msg}",
            )

        try:
            receipt = adapter.execute(context)
        except Exception as e:
            # Adapters should never raise
            logger.error("Adapter %s raised during execution: %s", action.adapter, e)
            receipt = Receipt.failure(
                adapter=action.adapter,
                action_id=action.id,
                error=f"Unexpected error: {e}",
            )

        receipt.duration_ms = int((time.monotonic() - start_time) * 1000)
        if receipt.failed:
            logger.debug("%s failed: %s", action.command_line, receipt.error)
        return receipt


def default_registry(dry_run: bool = False) -> AdapterRegistry:
    """Registry with the shell adapter registered."""
    from src.adapters.shell.command import ShellCommandAdapter

    registry = AdapterRegistry(dry_run=dry_run)
    registry.register(ShellCommandAdapter())
    return registry
