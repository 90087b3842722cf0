"""Driver install stage.

Runs the vendor installer non-interactively with every installable
component redirected into the staging root instead of system paths.
"""

from __future__ import annotations

import logging
import shutil
import stat
from pathlib import Path

from unraid_nvidia.errors import CommandError, StageError
from unraid_nvidia.stages.base import Stage, StageContext
from unraid_nvidia.types import SoftWarning, StageResult

logger = logging.getLogger(__name__)


def compose_install_command(
    driver_path: Path,
    staging_root: Path,
    kernel_identifier: str,
    jobs: int,
) -> list[str]:
    """Compose the non-interactive installer command.

    Args:
        driver_path: Driver installer (.run).
        staging_root: Staging root receiving every installed component.
        kernel_identifier: Kernel the module is built for.
        jobs: Parallel compilation workers for the kernel module.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    usr = staging_root / "usr"
    modules = staging_root / "lib" / "modules" / kernel_identifier
    module_path = modules / "kernel" / "drivers" / "video"
    return [
        "bash",
        str(driver_path),
        f"--kernel-name={kernel_identifier}",
        "--no-precompiled-interface",
        "--disable-nouveau",
        f"--x-prefix={usr}",
        f"--x-library-path={usr / 'lib64'}",
        f"--x-module-path={usr / 'lib64' / 'xorg' / 'modules'}",
        f"--opengl-prefix={usr}",
        f"--installer-prefix={usr}",
        f"--utility-prefix={usr}",
        f"--documentation-prefix={usr}",
        f"--application-profile-path={usr / 'share' / 'nvidia'}",
        f"--proc-mount-point={staging_root / 'proc'}",
        f"--kernel-install-path={module_path}",
        f"--compat32-prefix={usr}",
        "--compat32-libdir=/lib",
        "--install-compat32-libs",
        "--no-x-check",
        "--no-dkms",
        "--no-nouveau-check",
        "--skip-depmod",
        f"--j{jobs}",
        "--silent",
    ]


def installer_log_complete(installer_log: Path, marker: str) -> bool:
    """Whether the installer's own log reports a completed installation."""
    try:
        return marker in installer_log.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return False


class DriverInstallStage(Stage):
    """Install the NVIDIA driver into the staging root."""

    name = "driver-install"
    title = "Installing NVIDIA drivers"

    def make_executable(self, driver_path: Path) -> None:
        """Set the execute bits on the driver installer.

        Args:
            driver_path: Path to the ``.run`` installer.
        """
        mode = driver_path.stat().st_mode
        driver_path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    def remove_stale_installer_dir(self, driver_path: Path) -> None:
        """Remove a directory a previous installer run unpacked next to it.

        The installer extracts itself into ``<cwd>/<stem>``; it always runs
        from the driver's own directory, so that is where leftovers live.

        Args:
            driver_path: Path to the ``.run`` installer.
        """
        installer_dir = driver_path.parent / driver_path.stem
        if installer_dir.is_dir():
            logger.info("Removing old installer directory %s", installer_dir)
            shutil.rmtree(installer_dir)

    def uninstall_previous(self, ctx: StageContext, warnings: list[SoftWarning]) -> None:
        """Uninstall a driver left by an earlier run, if its log is present.

        The stale installer log is removed first. The uninstall itself is
        best effort: a non-zero exit is expected when nothing is installed.

        Args:
            ctx: Stage context.
            warnings: Receives soft warnings raised along the way.

        Raises:
            StageError: If the policy declines to continue over an existing
                installation.
        """
        installer_log = ctx.settings.installer_log
        if not installer_log.exists():
            return

        logger.info("Cleaning up old NVIDIA installer logs...")
        try:
            installer_log.unlink()
        except OSError as e:
            warnings.append(self.warning(f"Failed to remove old installer log: {e}"))

        if not ctx.policy.confirm_existing_driver(installer_log):
            raise StageError(
                "Aborted: existing NVIDIA driver installation detected",
                code="aborted",
            )

        logger.info("Attempting to uninstall existing NVIDIA drivers...")
        driver_path = ctx.config.driver_path
        try:
            result = ctx.runner.run(
                ["bash", str(driver_path), "--uninstall", "--silent"],
                cwd=driver_path.parent,
                check=False,
            )
        except CommandError as e:
            warnings.append(self.warning(f"Uninstall attempt could not run: {e}"))
            return
        if not result.success:
            # Also reported when no driver was installed.
            logger.info(
                "Uninstall attempt exited with code %d (expected if no drivers "
                "were installed)",
                result.exit_code,
            )

    def verify(self, ctx: StageContext, warnings: list[SoftWarning]) -> None:
        """Check the installer log for the completion marker.

        Args:
            ctx: Stage context.
            warnings: Receives a soft warning when the policy accepts an
                unverified installation.

        Raises:
            StageError: If the marker is missing and the policy declines to
                continue.
        """
        installer_log = ctx.settings.installer_log
        if installer_log_complete(installer_log, ctx.settings.install_marker):
            logger.info("NVIDIA drivers installed successfully")
            return

        logger.warning("NVIDIA driver installation may have failed")
        if not ctx.policy.continue_after_unverified_install(installer_log):
            raise StageError(
                f"Installer log {installer_log} does not report a completed "
                "installation",
                code="install_unverified",
            )
        warnings.append(
            self.warning(
                f"Continuing without completion marker in {installer_log}"
            )
        )

    def run(self, ctx: StageContext) -> StageResult:
        config = ctx.config
        staging_root = ctx.workspace.staging_root
        warnings: list[SoftWarning] = []

        self.make_executable(config.driver_path)
        self.remove_stale_installer_dir(config.driver_path)
        self.uninstall_previous(ctx, warnings)

        logger.info("Installing NVIDIA drivers to %s", staging_root)
        logger.info("Monitor progress with: tail -f %s", ctx.settings.installer_log)
        cmd = compose_install_command(
            config.driver_path, staging_root, config.kernel_identifier, config.jobs
        )
        try:
            ctx.runner.run(cmd, cwd=config.driver_path.parent)
        except CommandError as e:
            raise StageError(
                "NVIDIA driver installation failed",
                code="install_failed",
                command=e.command,
                log_path=e.log_path,
            ) from e

        self.verify(ctx, warnings)
        return self.succeeded(
            f"NVIDIA driver {config.driver_version} installed",
            artifacts={"staging_root": staging_root},
            warnings=warnings,
        )


__all__ = ["DriverInstallStage", "compose_install_command", "installer_log_complete"]
