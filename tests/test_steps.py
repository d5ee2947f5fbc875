"""
Tests for step handlers — each handler driven through the mock adapter.
"""

from pathlib import Path

import pytest

from src.core.config.catalog import get_step
from src.core.engine import steps
from src.core.errors import RiskAbort, SnapshotFailure, StepExecutionError
from src.core.models.step import StepStatus

DPKG_KERNELS = (
    "ii  linux-image-6.1.0-10-amd64 6.1.38-1 amd64 Linux 6.1\n"
    "ii  linux-image-6.1.0-11-amd64 6.1.42-1 amd64 Linux 6.1\n"
    "ii  linux-image-6.1.0-12-amd64 6.1.52-1 amd64 Linux 6.1\n"
)

UPGRADABLE = (
    "Listing...\n"
    "libc6/stable 2.36-9+deb12u1 amd64 [upgradable from: 2.36-9]\n"
    "curl/stable 7.88.1-10+deb12u1 amd64 [upgradable from: 7.88.1-10]\n"
)


def _run(handler_id: str, ctx):
    return steps.HANDLERS[handler_id](ctx, get_step(handler_id))


class TestHandlerTable:
    def test_every_catalog_step_has_a_handler(self):
        from src.core.config.catalog import STEP_IDS

        assert set(steps.HANDLERS) == set(STEP_IDS)


# ── Pre-checks ───────────────────────────────────────────────────────


class TestConnectivity:
    def test_mirror_reachable(self, make_context, mock):
        outcome = _run("check_connectivity", make_context())
        assert outcome.status is StepStatus.SUCCESS
        assert mock.commands[0] == "ping -c 1 -W 3 deb.debian.org"

    def test_mirror_down_internet_up(self, make_context, mock):
        mock.fail_command("ping -c 1 -W 3 deb.debian.org")
        outcome = _run("check_connectivity", make_context())
        assert outcome.status is StepStatus.WARNING
        assert "8.8.8.8" in mock.commands[-1]

    def test_offline_raises(self, make_context, mock):
        mock.fail_command("ping")
        with pytest.raises(StepExecutionError) as exc:
            _run("check_connectivity", make_context())
        assert exc.value.step_id == "check_connectivity"

    def test_probes_run_in_dry_run(self, make_context, mock):
        _run("check_connectivity", make_context(dry_run=True))
        assert mock.call_count == 1


class TestDetectMirror:
    def test_ubuntu(self, tmp_path: Path):
        path = tmp_path / "os-release"
        path.write_text("ID=ubuntu\n")
        assert steps.detect_mirror(path) == "archive.ubuntu.com"

    def test_id_like(self, tmp_path: Path):
        path = tmp_path / "os-release"
        path.write_text('ID=neon\nID_LIKE="ubuntu debian"\n')
        assert steps.detect_mirror(path) == "archive.ubuntu.com"

    def test_missing_file(self, tmp_path: Path):
        assert steps.detect_mirror(tmp_path / "nope") == "deb.debian.org"


class TestDependencies:
    def test_all_present(self, make_context):
        assert _run("check_dependencies", make_context()).status is StepStatus.SUCCESS

    def test_missing_unattended_warns(self, make_context, mock):
        outcome = _run("check_dependencies", make_context(missing=("timeshift",)))
        assert outcome.status is StepStatus.WARNING
        assert outcome.details == ["apt install timeshift"]
        assert mock.call_count == 0

    def test_disabled_step_tool_not_required(self, make_context, config):
        config.steps["snapshot"] = False
        outcome = _run("check_dependencies", make_context(missing=("timeshift",)))
        assert outcome.status is StepStatus.SUCCESS

    def test_interactive_install(self, make_context, mock, scripted):
        ctx = make_context(unattended=False, prompter=scripted(confirms=[True]), missing=("smartctl",))
        outcome = _run("check_dependencies", ctx)
        assert outcome.status is StepStatus.SUCCESS
        assert mock.commands == ["apt-get install -y smartmontools"]
        assert mock.call_log[0].action.env == {"DEBIAN_FRONTEND": "noninteractive"}


# ── Safety ───────────────────────────────────────────────────────────


class TestBackup:
    def test_creates_archive(self, make_context, mock, tmp_path: Path):
        mock.set_output("dpkg --get-selections", "bash\tinstall")
        outcome = _run("backup_tar", make_context())
        assert outcome.status is StepStatus.SUCCESS
        backups = tmp_path / "backups"
        assert len(list(backups.glob("backup_*.tar.gz"))) == 1
        assert list(backups.glob("packages_*.list"))[0].read_text() == "bash\tinstall\n"

    def test_dry_run_writes_nothing(self, make_context, mock, tmp_path: Path):
        outcome = _run("backup_tar", make_context(dry_run=True))
        assert outcome.status is StepStatus.SKIPPED
        assert not (tmp_path / "backups").exists()
        assert mock.call_count == 0

    def test_no_backup_flag(self, make_context):
        assert _run("backup_tar", make_context(no_backup=True)).status is StepStatus.SKIPPED

    def test_unwritable_backup_dir(self, make_context, config, tmp_path: Path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        config.settings.backup_dir = str(blocker / "sub")
        outcome = _run("backup_tar", make_context())
        assert outcome.status is StepStatus.ERROR
        assert "backup failed" in outcome.message


class TestSnapshot:
    def test_created(self, make_context, mock):
        outcome = _run("snapshot", make_context())
        assert outcome.status is StepStatus.SUCCESS
        assert mock.commands[0].startswith("timeshift --create --comments")

    def test_not_installed(self, make_context, mock):
        outcome = _run("snapshot", make_context(missing=("timeshift",)))
        assert outcome.status is StepStatus.WARNING
        assert mock.call_count == 0

    def test_not_configured(self, make_context, mock, system_paths):
        system_paths.timeshift_config.write_text('{"backup_device_uuid" : ""}')
        outcome = _run("snapshot", make_context())
        assert outcome.status is StepStatus.WARNING
        assert "not configured" in outcome.message

    def test_failure_unattended_aborts(self, make_context, mock):
        mock.fail_command("timeshift --create", error="no space on snapshot device")
        with pytest.raises(SnapshotFailure, match="no space"):
            _run("snapshot", make_context())

    def test_failure_interactive_token_continues(self, make_context, mock, scripted):
        mock.fail_command("timeshift --create")
        ctx = make_context(unattended=False, prompter=scripted(confirms=[False], answers=["YES"]))
        outcome = _run("snapshot", ctx)
        assert outcome.status is StepStatus.ERROR

    def test_failure_interactive_wrong_answer_aborts(self, make_context, mock, scripted):
        mock.fail_command("timeshift --create")
        ctx = make_context(unattended=False, prompter=scripted(confirms=[False], answers=["yes"]))
        with pytest.raises(SnapshotFailure):
            _run("snapshot", ctx)

    def test_operator_skips(self, make_context, mock, scripted):
        ctx = make_context(unattended=False, prompter=scripted(confirms=[True]))
        assert _run("snapshot", ctx).status is StepStatus.SKIPPED
        assert mock.call_count == 0

    def test_dry_run(self, make_context, mock):
        assert _run("snapshot", make_context(dry_run=True)).status is StepStatus.SKIPPED
        assert mock.call_count == 0


class TestTimeshiftConfigured:
    @pytest.mark.parametrize("content,expected", [
        ('{"backup_device_uuid" : "5d1c-aa"}', True),
        ('{"backup_device_uuid" : ""}', False),
        ('{"backup_device_uuid": "none"}', False),
    ])
    def test_detection(self, tmp_path: Path, content, expected):
        path = tmp_path / "timeshift.json"
        path.write_text(content)
        assert steps.timeshift_configured(path) is expected

    def test_missing(self, tmp_path: Path):
        assert not steps.timeshift_configured(tmp_path / "nope.json")


# ── Updates ──────────────────────────────────────────────────────────


class TestUpdateRepos:
    def test_success(self, make_context, mock):
        outcome = _run("update_repos", make_context())
        assert outcome.status is StepStatus.SUCCESS
        assert mock.commands == ["dpkg --configure -a", "apt-get update"]

    def test_failure_raises(self, make_context, mock):
        mock.fail_command("apt-get update", error="Temporary failure resolving")
        with pytest.raises(StepExecutionError, match="Repository refresh failed"):
            _run("update_repos", make_context())

    def test_dpkg_repair_failure_is_not_fatal(self, make_context, mock):
        mock.fail_command("dpkg --configure")
        assert _run("update_repos", make_context()).status is StepStatus.SUCCESS


class TestUpgrade:
    def test_up_to_date(self, make_context, mock):
        ctx = make_context()
        assert _run("upgrade_system", ctx).message == "up to date"
        assert mock.commands == ["apt list --upgradable"]
        assert not ctx.upgrade_performed

    def test_listing_failure_is_error(self, make_context, mock):
        mock.fail_command("apt list", error="Could not get lock /var/lib/dpkg/lock-frontend")
        ctx = make_context()
        outcome = _run("upgrade_system", ctx)
        assert outcome.status is StepStatus.ERROR
        assert "cannot list upgrades" in outcome.message
        assert "apt-get full-upgrade -y" not in mock.commands
        assert not ctx.upgrade_performed

    def test_upgrade(self, make_context, mock):
        mock.set_output("apt list --upgradable", UPGRADABLE)
        ctx = make_context()
        outcome = _run("upgrade_system", ctx)
        assert outcome.status is StepStatus.SUCCESS
        assert "apt-get full-upgrade -y" in mock.commands
        assert ctx.upgrade_performed

    def test_risky_unattended_aborts(self, make_context, mock):
        mock.set_output("apt list --upgradable", UPGRADABLE)
        mock.set_output("apt-get -s full-upgrade", "Remv gdm3 [43.0-3]\nRemv gnome-shell [43.6-1]\n")
        with pytest.raises(RiskAbort, match="remove 2 package"):
            _run("upgrade_system", make_context())
        assert "apt-get full-upgrade -y" not in mock.commands

    def test_risky_interactive_confirmed(self, make_context, mock, scripted):
        mock.set_output("apt list --upgradable", UPGRADABLE)
        mock.set_output("apt-get -s full-upgrade", "Remv gdm3 [43.0-3]\n")
        prompter = scripted(answers=["YES"])
        outcome = _run("upgrade_system", make_context(unattended=False, prompter=prompter))
        assert outcome.status is StepStatus.SUCCESS
        assert "YES" in prompter.questions[0]

    def test_risky_interactive_refused(self, make_context, mock, scripted):
        mock.set_output("apt list --upgradable", UPGRADABLE)
        mock.set_output("apt-get -s full-upgrade", "Remv gdm3 [43.0-3]\n")
        with pytest.raises(RiskAbort, match="cancelled"):
            _run("upgrade_system", make_context(unattended=False, prompter=scripted(answers=["y"])))

    def test_removals_within_threshold(self, make_context, mock, config):
        config.settings.max_removals_allowed = 1
        mock.set_output("apt list --upgradable", UPGRADABLE)
        mock.set_output("apt-get -s full-upgrade", "Remv gdm3 [43.0-3]\n")
        assert _run("upgrade_system", make_context()).status is StepStatus.SUCCESS

    def test_dry_run_simulates_only(self, make_context, mock):
        mock.set_output("apt list --upgradable", UPGRADABLE)
        ctx = make_context(dry_run=True)
        outcome = _run("upgrade_system", ctx)
        assert outcome.status is StepStatus.SKIPPED
        assert mock.commands == ["apt list --upgradable", "apt-get -s full-upgrade"]
        assert not ctx.upgrade_performed

    def test_upgrade_failure(self, make_context, mock):
        mock.set_output("apt list --upgradable", UPGRADABLE)
        mock.fail_command("apt-get full-upgrade", error="dpkg error")
        ctx = make_context()
        assert _run("upgrade_system", ctx).status is StepStatus.ERROR
        assert not ctx.upgrade_performed


class TestFlatpakAndSnap:
    def test_flatpak_missing(self, make_context):
        assert _run("update_flatpak", make_context(missing=("flatpak",))).status is StepStatus.SKIPPED

    def test_flatpak_update(self, make_context, mock):
        assert _run("update_flatpak", make_context()).status is StepStatus.SUCCESS
        assert "flatpak uninstall --unused -y" in mock.commands

    def test_snap_removes_disabled_revisions(self, make_context, mock):
        mock.set_output("snap list --all", (
            "Name    Version  Rev    Tracking  Publisher  Notes\n"
            "core20  20230801 2015   latest    canonical  base,disabled\n"
            "core20  20231123 2105   latest    canonical  base\n"
        ))
        assert _run("update_snap", make_context()).status is StepStatus.SUCCESS
        assert "snap remove core20 --revision=2015" in mock.commands

    def test_parse_disabled_snaps(self):
        output = "Name Version Rev Tracking\nlxd 5.0 24322 5.0/stable disabled\n"
        assert steps.parse_disabled_snaps(output) == [("lxd", "24322")]


class TestFirmware:
    def test_updates_available(self, make_context):
        assert _run("check_firmware", make_context()).status is StepStatus.WARNING

    def test_no_updates(self, make_context, mock):
        mock.fail_command("fwupdmgr get-updates", return_code=2)
        assert _run("check_firmware", make_context()).status is StepStatus.SUCCESS

    def test_missing(self, make_context):
        assert _run("check_firmware", make_context(missing=("fwupdmgr",))).status is StepStatus.SKIPPED


# ── Cleanup ──────────────────────────────────────────────────────────


class TestCleanupApt:
    def test_purges_residual_configs(self, make_context, mock):
        mock.set_output("dpkg -l", "rc  oldpkg 1.0 amd64 gone\nii  bash 5.2 amd64 shell\n")
        assert _run("cleanup_apt", make_context()).status is StepStatus.SUCCESS
        assert "apt-get purge -y oldpkg" in mock.commands
        assert mock.commands[-1] == "apt-get autoclean"

    def test_clean_mode(self, make_context, mock, config):
        config.settings.apt_clean_mode = "clean"
        _run("cleanup_apt", make_context())
        assert mock.commands[-1] == "apt-get clean"

    def test_autoremove_failure(self, make_context, mock):
        mock.fail_command("apt-get autoremove", error="locked")
        outcome = _run("cleanup_apt", make_context())
        assert outcome.status is StepStatus.ERROR
        assert "autoremove" in outcome.message

    def test_residual_config_packages(self):
        assert steps.residual_config_packages("rc  a 1 x\nii  b 1 x\nrc  c 2 y\n") == ["a", "c"]


class TestCleanupKernels:
    def test_nothing_to_remove(self, make_context, mock):
        mock.set_output("uname -r", "6.1.0-12-amd64")
        mock.set_output("dpkg -l", "ii  linux-image-6.1.0-12-amd64 6.1.52-1 amd64 Linux\n")
        outcome = _run("cleanup_kernels", make_context())
        assert outcome.status is StepStatus.SKIPPED
        assert not any(c.startswith("apt-get purge") for c in mock.commands)

    def test_removes_old(self, make_context, mock, config):
        config.settings.keep_kernels = 2
        mock.set_output("uname -r", "6.1.0-12-amd64")
        mock.set_output("dpkg -l", DPKG_KERNELS)
        outcome = _run("cleanup_kernels", make_context())
        assert outcome.status is StepStatus.SUCCESS
        assert outcome.details == ["linux-image-6.1.0-10-amd64"]
        assert "apt-get purge -y linux-image-6.1.0-10-amd64" in mock.commands
        assert mock.commands[-1] == "update-grub"

    def test_running_kernel_kept(self, make_context, mock, config):
        config.settings.keep_kernels = 2
        mock.set_output("uname -r", "6.1.0-10-amd64")
        mock.set_output("dpkg -l", DPKG_KERNELS)
        outcome = _run("cleanup_kernels", make_context())
        assert "linux-image-6.1.0-10-amd64" not in outcome.details
        assert outcome.details == ["linux-image-6.1.0-11-amd64"]

    def test_operator_declines(self, make_context, mock, config, scripted):
        config.settings.keep_kernels = 1
        mock.set_output("uname -r", "6.1.0-12-amd64")
        mock.set_output("dpkg -l", DPKG_KERNELS)
        ctx = make_context(unattended=False, prompter=scripted(confirms=[False]))
        assert _run("cleanup_kernels", ctx).status is StepStatus.SKIPPED
        assert not any(c.startswith("apt-get purge") for c in mock.commands)

    def test_unknown_running_kernel(self, make_context):
        assert _run("cleanup_kernels", make_context()).status is StepStatus.ERROR

    def test_dry_run(self, make_context, mock, config):
        config.settings.keep_kernels = 1
        mock.set_output("uname -r", "6.1.0-12-amd64")
        mock.set_output("dpkg -l", DPKG_KERNELS)
        assert _run("cleanup_kernels", make_context(dry_run=True)).status is StepStatus.SKIPPED
        assert mock.commands == ["uname -r", "dpkg -l"]


class TestCleanupDiskAndContainers:
    def test_disk(self, make_context, mock, config):
        config.settings.journal_days = 14
        assert _run("cleanup_disk", make_context()).status is StepStatus.SUCCESS
        assert mock.commands[0] == "journalctl --vacuum-time=14d --vacuum-size=500M"

    def test_journal_failure(self, make_context, mock):
        mock.fail_command("journalctl")
        assert _run("cleanup_disk", make_context()).status is StepStatus.ERROR

    def test_docker_and_podman(self, make_context, mock):
        assert _run("cleanup_docker", make_context()).status is StepStatus.SUCCESS
        assert mock.commands == [
            "docker system prune -af --volumes",
            "podman system prune -af --volumes",
        ]

    def test_no_engine(self, make_context):
        ctx = make_context(missing=("docker", "podman"))
        assert _run("cleanup_docker", ctx).status is StepStatus.SKIPPED


# ── Diagnostics ──────────────────────────────────────────────────────


class TestSmart:
    @pytest.mark.parametrize("health,attrs,expected", [
        ("SMART overall-health self-assessment test result: PASSED", "", "ok"),
        ("SMART Health Status: OK", "", "ok"),
        ("SMART overall-health self-assessment test result: FAILED!", "", "failed"),
        ("", "  5 Reallocated_Sector_Ct 0x0033 100 100 010 Pre-fail Always - 8\n", "warning"),
        ("", "  5 Reallocated_Sector_Ct 0x0033 100 100 010 Pre-fail Always - 0\n", "ok"),
    ])
    def test_classify(self, health, attrs, expected):
        assert steps.classify_smart(health, attrs) == expected

    def test_no_disks(self, make_context):
        assert _run("check_smart", make_context()).status is StepStatus.SKIPPED

    def test_failing_disk(self, make_context, mock, system_paths):
        (system_paths.dev_dir / "sda").write_text("")
        mock.set_output("smartctl -H", "SMART overall-health self-assessment test result: FAILED!")
        outcome = _run("check_smart", make_context())
        assert outcome.status is StepStatus.ERROR
        assert outcome.details == [str(system_paths.dev_dir / "sda")]

    def test_healthy(self, make_context, mock, system_paths):
        (system_paths.dev_dir / "nvme0n1").write_text("")
        mock.set_output("smartctl -H", "SMART overall-health self-assessment test result: PASSED")
        assert _run("check_smart", make_context()).status is StepStatus.SUCCESS


class TestRebootCheck:
    def test_nothing_needed(self, make_context):
        ctx = make_context()
        assert _run("check_reboot", ctx).status is StepStatus.SUCCESS
        assert not ctx.reboot_needed

    def test_reboot_file(self, make_context, system_paths):
        system_paths.reboot_required.parent.mkdir(parents=True, exist_ok=True)
        system_paths.reboot_required.write_text("*** System restart required ***\n")
        ctx = make_context()
        assert _run("check_reboot", ctx).status is StepStatus.WARNING
        assert ctx.reboot_needed

    def test_services_restarted(self, make_context, mock):
        mock.set_output("needrestart -b", "NEEDRESTART-SVC: ssh.service\n")
        _run("check_reboot", make_context())
        assert "needrestart -r a" in mock.commands

    def test_stale_critical_libs_no_reboot(self, make_context, mock):
        mock.set_output("needrestart -b", "NEEDRESTART-UCSTA: 1\n")
        ctx = make_context()
        outcome = _run("check_reboot", ctx)
        assert outcome.status is StepStatus.SUCCESS
        assert outcome.details

    def test_critical_libs_after_upgrade(self, make_context, mock):
        mock.set_output("needrestart -b", "NEEDRESTART-UCSTA: 1\n")
        ctx = make_context(upgrade_performed=True)
        assert _run("check_reboot", ctx).status is StepStatus.WARNING
