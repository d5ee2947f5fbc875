"""
Tests for the interactive step editor state machine.
"""

from src.core.config.loader import default_configuration
from src.ui.cli.menu import MenuPhase, MenuState, render, run_menu

SPACE = " "
DOWN = "\x1b[B"
UP = "\x1b[A"
ENTER = "\r"


class TestMenuState:
    def test_starts_editing_on_first_step(self):
        state = MenuState(default_configuration())
        assert state.phase is MenuPhase.EDITING
        assert state.current == "check_connectivity"

    def test_works_on_a_copy(self):
        cfg = default_configuration()
        state = MenuState(cfg)
        state.handle(SPACE)
        assert cfg.is_enabled("check_connectivity")
        assert not state.config.is_enabled("check_connectivity")

    def test_move_wraps(self):
        state = MenuState(default_configuration())
        state.handle(UP)
        assert state.current == "check_reboot"
        state.handle(DOWN)
        assert state.current == "check_connectivity"
        state.handle("j")
        assert state.current == "check_dependencies"
        state.handle("k")
        assert state.current == "check_connectivity"

    def test_toggle(self):
        state = MenuState(default_configuration())
        state.handle(SPACE)
        assert state.message == "check_connectivity: off"
        state.handle(SPACE)
        assert state.config.is_enabled("check_connectivity")

    def test_locked_step_refuses_toggle(self):
        cfg = default_configuration()
        cfg.locks["check_connectivity"] = True
        state = MenuState(cfg)
        state.handle(SPACE)
        assert state.config.is_enabled("check_connectivity")
        assert "locked" in state.message
        assert state.phase is MenuPhase.EDITING

    def test_toggle_all_respects_locks(self):
        cfg = default_configuration()
        cfg.locks["update_snap"] = True
        state = MenuState(cfg)
        state.handle("a")
        assert state.config.is_enabled("cleanup_docker")
        assert not state.config.is_enabled("update_snap")

    def test_commit(self):
        state = MenuState(default_configuration())
        assert state.handle(ENTER) is MenuPhase.COMMITTED
        assert state.done
        assert not state.save

    def test_commit_and_save(self):
        state = MenuState(default_configuration())
        state.handle("s")
        assert state.phase is MenuPhase.COMMITTED
        assert state.save

    def test_commit_refused_when_invalid(self):
        state = MenuState(default_configuration())
        # update_repos is the fifth step
        for _ in range(4):
            state.handle(DOWN)
        assert state.current == "update_repos"
        state.handle(SPACE)
        state.handle(ENTER)
        assert state.phase is MenuPhase.EDITING
        assert "update_repos" in state.message

    def test_cancel(self):
        state = MenuState(default_configuration())
        assert state.handle("q") is MenuPhase.CANCELLED
        assert MenuState(default_configuration()).handle("\x1b") is MenuPhase.CANCELLED

    def test_keys_ignored_after_done(self):
        state = MenuState(default_configuration())
        state.handle("q")
        state.handle(SPACE)
        assert state.config.is_enabled("check_connectivity")

    def test_unknown_key_ignored(self):
        state = MenuState(default_configuration())
        assert state.handle("z") is MenuPhase.EDITING


class TestRender:
    def test_marks_cursor_enabled_and_locked(self):
        cfg = default_configuration()
        cfg.locks["snapshot"] = True
        lines = render(MenuState(cfg))
        assert lines[2].startswith(" > [x]  1.")
        snapshot = next(line for line in lines if "Snapshot" in line)
        assert "[locked]" in snapshot
        snap = next(line for line in lines if " Snap " in line)
        assert "[ ]" in snap


class TestRunMenu:
    def test_scripted_session(self):
        keys = iter([DOWN, SPACE, ENTER])
        frames: list[str] = []
        state = run_menu(
            default_configuration(),
            getchar=lambda: next(keys),
            echo=frames.append,
            clear=lambda: None,
        )
        assert state.phase is MenuPhase.COMMITTED
        assert not state.config.is_enabled("check_dependencies")
        assert any("profile: custom" in f for f in frames)
