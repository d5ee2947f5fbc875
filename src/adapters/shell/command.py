"""
Shell command adapter — run external programs and capture their output.

Commands are always executed from an argv list, never through a shell,
so package names and paths from configuration cannot inject syntax.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time

from src.adapters.base import Adapter, ExecutionContext
from src.core.models.action import Receipt

logger = logging.getLogger(__name__)


class ShellCommandAdapter(Adapter):
    """Execute an Action's ``argv`` and capture stdout/stderr.

    Action fields used:
        argv: Program and arguments.
        env: Extra environment variables merged over ``os.environ``.
        timeout: Seconds before the child is killed.
    """

    @property
    def name(self) -> str:
        return "shell"

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        argv = context.action.argv
        if not argv:
            return False, "Empty command"
        if shutil.which(argv[0]) is None:
            return False, f"Command not found: {argv[0]}"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        action = context.action
        command = action.command_line
        env = {**os.environ, **action.env} if action.env else None

        logger.debug("Executing: %s", command)
        start = time.monotonic()

        try:
            result = subprocess.run(
                action.argv,
                capture_output=True,
                text=True,
                timeout=action.timeout,
                env=env,
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired:
            return Receipt.failure(
                adapter=self.name,
                action_id=action.id,
                error=f"Command timed out after {action.timeout}s",
                metadata={"command": command, "timeout": action.timeout},
            )
        except OSError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=action.id,
                error=f"Command execution error: {e}",
                metadata={"command": command},
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        output = result.stdout.strip()
        stderr = result.stderr.strip()

        if result.returncode == 0:
            return Receipt.success(
                adapter=self.name,
                action_id=action.id,
                output=output,
                duration_ms=elapsed_ms,
                return_code=0,
                metadata={"command": command, "stderr": stderr},
            )
        return Receipt.failure(
            adapter=self.name,
            action_id=action.id,
            error=stderr or f"Command exited with code {result.returncode}",
            output=output,
            duration_ms=elapsed_ms,
            return_code=result.returncode,
            metadata={"command": command},
        )
