"""Tests for the driver install stage."""

import os
from pathlib import Path

import pytest

from helpers import FakeRunner
from unraid_nvidia.decisions import NonInteractivePolicy
from unraid_nvidia.errors import StageError
from unraid_nvidia.stages.base import StageContext
from unraid_nvidia.stages.driver import (
    DriverInstallStage,
    compose_install_command,
    installer_log_complete,
)
from unraid_nvidia.types import StageState


class TestComposeInstallCommand:
    """Tests for compose_install_command function."""

    def test_redirects_everything_into_staging(self, tmp_path: Path):
        staging = tmp_path / "NVIDIA"
        cmd = compose_install_command(tmp_path / "driver.run", staging, "6.1.15-Unraid", 8)

        assert cmd[:2] == ["bash", str(tmp_path / "driver.run")]
        assert "--kernel-name=6.1.15-Unraid" in cmd
        assert f"--x-prefix={staging}/usr" in cmd
        assert f"--x-library-path={staging}/usr/lib64" in cmd
        assert f"--x-module-path={staging}/usr/lib64/xorg/modules" in cmd
        assert f"--application-profile-path={staging}/usr/share/nvidia" in cmd
        assert f"--proc-mount-point={staging}/proc" in cmd
        assert (
            f"--kernel-install-path={staging}/lib/modules/6.1.15-Unraid/kernel/drivers/video"
            in cmd
        )
        assert "--compat32-libdir=/lib" in cmd
        for flag in (
            "--no-precompiled-interface",
            "--disable-nouveau",
            "--install-compat32-libs",
            "--no-x-check",
            "--no-dkms",
            "--no-nouveau-check",
            "--skip-depmod",
        ):
            assert flag in cmd
        assert cmd[-2:] == ["--j8", "--silent"]


class TestInstallerLogComplete:
    """Tests for installer_log_complete function."""

    def test_marker_present(self, tmp_path: Path):
        log = tmp_path / "nvidia-installer.log"
        log.write_text("... installation is now complete.\n")
        assert installer_log_complete(log, "installation is now complete")

    def test_marker_absent(self, tmp_path: Path):
        log = tmp_path / "nvidia-installer.log"
        log.write_text("ERROR: Unable to build the kernel module.\n")
        assert not installer_log_complete(log, "installation is now complete")

    def test_missing_log(self, tmp_path: Path):
        assert not installer_log_complete(tmp_path / "none.log", "complete")


class TestDriverInstallStage:
    """Tests for DriverInstallStage."""

    def test_fresh_host(self, stage_context: StageContext):
        """Without a previous installer log there is no uninstall attempt."""
        runner: FakeRunner = stage_context.runner
        driver = stage_context.config.driver_path

        result = DriverInstallStage().run(stage_context)

        assert result.status is StageState.SUCCEEDED
        assert result.warnings == []
        assert result.artifacts == {"staging_root": stage_context.workspace.staging_root}
        assert len(runner.commands) == 1
        assert "--uninstall" not in runner.commands[0]
        assert os.access(driver, os.X_OK)

    def test_previous_install_is_uninstalled(self, stage_context: StageContext):
        installer_log = stage_context.settings.installer_log
        installer_log.write_text("old install\n")
        runner: FakeRunner = stage_context.runner
        runner.fail_on = ("--uninstall",)

        result = DriverInstallStage().run(stage_context)

        assert result.status is StageState.SUCCEEDED
        assert runner.commands[0][-2:] == ["--uninstall", "--silent"]
        assert "--kernel-name=6.1.15-Unraid" in runner.commands[1]
        # The log now holds the new installer's output.
        assert "old install" not in installer_log.read_text()

    def test_existing_driver_refused(self, stage_context: StageContext):
        stage_context.settings.installer_log.write_text("old install\n")
        stage_context.policy = NonInteractivePolicy(allow_existing_driver=False)

        with pytest.raises(StageError) as exc_info:
            DriverInstallStage().run(stage_context)
        assert exc_info.value.code == "aborted"
        assert stage_context.runner.commands == []

    def test_installer_runs_from_driver_directory(self, stage_context: StageContext):
        """The installer unpacks into its cwd, where stale directories are cleaned."""
        stage_context.settings.installer_log.write_text("old install\n")
        runner: FakeRunner = stage_context.runner
        driver_dir = stage_context.config.driver_path.parent

        DriverInstallStage().run(stage_context)

        assert "--uninstall" in runner.commands[0]
        assert "--kernel-name=6.1.15-Unraid" in runner.commands[1]
        assert runner.cwds == [driver_dir, driver_dir]

    def test_stale_installer_directory_removed(self, stage_context: StageContext):
        driver = stage_context.config.driver_path
        stale = driver.parent / driver.stem
        (stale / "kernel").mkdir(parents=True)

        DriverInstallStage().run(stage_context)
        assert not stale.exists()

    def test_installer_failure(self, stage_context: StageContext):
        stage_context.runner.fail_on = ("--kernel-name=",)
        with pytest.raises(StageError) as exc_info:
            DriverInstallStage().run(stage_context)
        assert exc_info.value.code == "install_failed"
        assert exc_info.value.log_path == stage_context.workspace.build_log.path

    def test_unverified_install_refused(self, stage_context: StageContext):
        stage_context.runner.write_marker = False
        with pytest.raises(StageError) as exc_info:
            DriverInstallStage().run(stage_context)
        assert exc_info.value.code == "install_unverified"

    def test_unverified_install_accepted(self, stage_context: StageContext):
        stage_context.runner.write_marker = False
        stage_context.policy = NonInteractivePolicy(accept_unverified_install=True)

        result = DriverInstallStage().run(stage_context)

        assert result.status is StageState.SUCCEEDED
        assert len(result.warnings) == 1
        assert "completion marker" in result.warnings[0].message
