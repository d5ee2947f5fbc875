"""
Mock adapter — test double for every external command.

Responses can be keyed by action ID or by a command prefix
(``"apt-get -s"`` matches ``apt-get -s full-upgrade``).  Unmatched
actions succeed with the default output.
"""

from __future__ import annotations

from src.adapters.base import Adapter, ExecutionContext
from src.core.models.action import Receipt


class MockAdapter(Adapter):
    """Universal mock adapter for testing.

    By default, returns success for everything and records each call.
    """

    def __init__(
        self,
        adapter_name: str = "shell",
        available: bool = True,
        default_output: str = "",
    ):
        self._name = adapter_name
        self._available = available
        self._default_output = default_output
        self._responses: dict[str, Receipt] = {}
        self._prefixed: list[tuple[str, Receipt]] = []
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        """All execution contexts this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    @property
    def commands(self) -> list[str]:
        """Command lines executed, in order."""
        return [ctx.action.command_line for ctx in self._call_log]

    def is_available(self) -> bool:
        return self._available

    def set_response(self, action_id: str, receipt: Receipt) -> None:
        """Set a custom response for a specific action ID."""
        self._responses[action_id] = receipt

    def set_failure(self, action_id: str, error: str = "Mock failure", return_code: int = 1) -> None:
        """Configure a specific action to fail."""
        self._responses[action_id] = Receipt.failure(
            adapter=self._name,
            action_id=action_id,
            error=error,
            return_code=return_code,
        )

    def set_output(self, command_prefix: str, output: str) -> None:
        """Succeed with ``output`` for any command starting with the prefix."""
        self._prefixed.append((command_prefix, Receipt.success(
            adapter=self._name, action_id="", output=output, return_code=0,
        )))

    def fail_command(self, command_prefix: str, error: str = "Mock failure", return_code: int = 1) -> None:
        """Fail any command starting with the prefix."""
        self._prefixed.append((command_prefix, Receipt.failure(
            adapter=self._name, action_id="", error=error, return_code=return_code,
        )))

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        self._call_log.append(context)
        action = context.action

        if action.id in self._responses:
            return self._responses[action.id]

        # Latest matching prefix wins
        for prefix, template in reversed(self._prefixed):
            if action.command_line.startswith(prefix):
                return template.model_copy(update={"action_id": action.id})

        return Receipt.success(
            adapter=self._name,
            action_id=action.id,
            output=self._default_output,
            return_code=0,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log and custom responses."""
        self._call_log.clear()
        self._responses.clear()
        self._prefixed.clear()
