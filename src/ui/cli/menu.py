"""
Interactive step editor — a finite-state input handler.

``MenuState`` holds the selection index and a working copy of the
configuration and reacts to keys; it never prints.  ``render`` turns a
state into lines, and ``run_menu`` wires both to the terminal with
``click.getchar``.  Tests drive ``MenuState.handle`` directly.

Keys:
    ↑/k ↓/j      move
    space        toggle the selected step (locked steps refuse)
    a            enable all unlocked steps, or disable all if all are on
    enter        accept and run
    s            accept, save to the configuration file, and run
    q / esc      cancel
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

import click

from src.core.config.catalog import STEP_CATALOG
from src.core.config.registry import StepRegistry
from src.core.errors import LockedStepError, ValidationError
from src.core.models.config import Configuration

KEY_UP = ("\x1b[A", "k")
KEY_DOWN = ("\x1b[B", "j")
KEY_TOGGLE = (" ",)
KEY_ALL = ("a", "A")
KEY_ACCEPT = ("\r", "\n")
KEY_SAVE = ("s", "S")
KEY_CANCEL = ("q", "Q", "\x1b")


class MenuPhase(str, Enum):
    EDITING = "editing"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


@dataclass
class MenuState:
    """Editor state over a working copy of a Configuration."""

    config: Configuration
    index: int = 0
    phase: MenuPhase = MenuPhase.EDITING
    save: bool = False
    message: str = ""
    _registry: StepRegistry = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.config = self.config.model_copy(deep=True)
        self._registry = StepRegistry(self.config)

    @property
    def done(self) -> bool:
        return self.phase is not MenuPhase.EDITING

    @property
    def current(self) -> str:
        return STEP_CATALOG[self.index].id

    def move(self, delta: int) -> None:
        self.index = (self.index + delta) % len(STEP_CATALOG)
        self.message = ""

    def toggle(self) -> None:
        step_id = self.current
        try:
            enabled = self._registry.toggle(step_id)
        except LockedStepError as e:
            self.message = str(e)
            return
        self.message = f"{step_id}: {'on' if enabled else 'off'}"

    def toggle_all(self) -> None:
        enabled = self._registry.toggle_all()
        self.message = "all unlocked steps " + ("enabled" if enabled else "disabled")

    def commit(self, save: bool = False) -> None:
        """Accept the edits unless they fail validation."""
        try:
            self._registry.validate()
        except ValidationError as e:
            self.message = e.message
            return
        self.save = save
        self.phase = MenuPhase.COMMITTED

    def cancel(self) -> None:
        self.phase = MenuPhase.CANCELLED

    def handle(self, key: str) -> MenuPhase:
        """Apply one key press and return the resulting phase."""
        if self.done:
            return self.phase
        if key in KEY_UP:
            self.move(-1)
        elif key in KEY_DOWN:
            self.move(1)
        elif key in KEY_TOGGLE:
            self.toggle()
        elif key in KEY_ALL:
            self.toggle_all()
        elif key in KEY_ACCEPT:
            self.commit()
        elif key in KEY_SAVE:
            self.commit(save=True)
        elif key in KEY_CANCEL:
            self.cancel()
        return self.phase


def render(state: MenuState) -> list[str]:
    """Lines for one frame of the editor."""
    lines = [f"Maintenance steps (profile: {state.config.profile})", ""]
    for i, step in enumerate(STEP_CATALOG):
        cursor = ">" if i == state.index else " "
        mark = "x" if state.config.is_enabled(step.id) else " "
        lock = " [locked]" if state.config.is_locked(step.id) else ""
        lines.append(f" {cursor} [{mark}] {step.order:2d}. {step.label:<15} {step.description}{lock}")
    lines.append("")
    lines.append("space toggle · a all · enter run · s save+run · q cancel")
    if state.message:
        lines.append(state.message)
    return lines


def run_menu(
    config: Configuration,
    getchar: Callable[[], str] = click.getchar,
    echo: Callable[[str], None] = click.echo,
    clear: Callable[[], None] = click.clear,
) -> MenuState:
    """Drive the editor until commit or cancel."""
    state = MenuState(config)
    while not state.done:
        clear()
        for line in render(state):
            echo(line)
        state.handle(getchar())
    return state
