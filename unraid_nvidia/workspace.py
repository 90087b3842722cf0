"""Workspace management.

This module owns the build directory tree:
- Session build log creation
- Exclusive run-level lock on the working directory
- Reuse or purge of a scratch tree left by a previous run
- Staging skeleton creation
- Cleanup on request
"""

from __future__ import annotations

import fcntl
import logging
import os
import secrets
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from unraid_nvidia.errors import WorkspaceError
from unraid_nvidia.types import BuildConfig, BuildLog

if TYPE_CHECKING:
    from unraid_nvidia.config import Settings
    from unraid_nvidia.decisions import DecisionPolicy

logger = logging.getLogger(__name__)

LOCK_FILENAME = ".unraid-nvidia-builder.lock"
SCRATCH_DIRNAME = "tmp"
STAGING_DIRNAME = "NVIDIA"


@dataclass
class Workspace:
    """Filesystem layout of one run.

    Attributes:
        root: Working directory.
        scratch_root: Downloads and extracted intermediates, disposable.
        staging_root: Tree mirroring a system root; the package payload.
        output_dir: Where the finished package lands.
        build_log: Session build log.
        kernel_identifier: Kernel identifier the layout is built for.
        kernel_full_version: Kernel version of the extracted source tree.
    """

    root: Path
    scratch_root: Path
    staging_root: Path
    output_dir: Path
    build_log: BuildLog
    kernel_identifier: str
    kernel_full_version: str

    @property
    def kernel_tree(self) -> Path:
        """Extracted kernel source tree."""
        return self.scratch_root / f"linux-{self.kernel_full_version}"

    @property
    def patch_dir(self) -> Path:
        """Scratch copy of the Unraid kernel source (patches, .config)."""
        return self.scratch_root / self.kernel_identifier

    def skeleton(self) -> list[Path]:
        """Directories that must exist under the staging root before installs."""
        s = self.staging_root
        modules = s / "lib" / "modules" / self.kernel_identifier
        return [
            s / "usr" / "lib64" / "xorg" / "modules" / "drivers",
            s / "usr" / "lib64" / "xorg" / "modules" / "extensions",
            s / "usr" / "bin",
            s / "etc",
            modules / "kernel" / "drivers" / "video",
            s / "lib" / "firmware",
        ]


def create_build_log(root: Path) -> BuildLog:
    """Create the session build log file in the working directory.

    The name carries the start date and a random disambiguator so runs
    never share a log.

    Raises:
        WorkspaceError: If the file cannot be created.
    """
    started_at = datetime.now()
    suffix = secrets.randbelow(32768)
    path = root / f"logfile_{started_at:%Y.%m.%d}_{suffix}.log"
    try:
        path.touch(exist_ok=False)
    except FileExistsError:
        return create_build_log(root)
    except OSError as e:
        raise WorkspaceError(
            f"Failed to create log file {path}: {e}", code="log_create_failed"
        ) from e
    return BuildLog(path=path, started_at=started_at)


@contextmanager
def workspace_lock(root: Path) -> Iterator[Path]:
    """Hold an exclusive lock on the working directory for a run.

    Two runs sharing a working directory would silently corrupt each
    other's scratch tree, so a second run fails immediately instead of
    waiting.

    Args:
        root: Working directory.

    Yields:
        Path of the lock file.

    Raises:
        WorkspaceError: If another run holds the lock.
    """
    lock_file = root / LOCK_FILENAME
    try:
        fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    except OSError as e:
        raise WorkspaceError(
            f"Failed to open lock file {lock_file}: {e}", code="lock_failed"
        ) from e

    lock_acquired = False
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            lock_acquired = True
        except BlockingIOError:
            raise WorkspaceError(
                f"Another build is already using {root} (lock: {lock_file})",
                code="workspace_locked",
            ) from None

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        logger.debug("Workspace lock acquired: %s", lock_file)
        yield lock_file
    finally:
        if lock_acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Workspace lock released: %s", lock_file)
        os.close(fd)


def workspace_for(
    config: BuildConfig, settings: Settings, build_log: BuildLog
) -> Workspace:
    """Compute the workspace layout without touching the filesystem."""
    scratch_root = settings.work_dir / SCRATCH_DIRNAME
    return Workspace(
        root=settings.work_dir,
        scratch_root=scratch_root,
        staging_root=scratch_root / STAGING_DIRNAME,
        output_dir=settings.resolved_output_dir(),
        build_log=build_log,
        kernel_identifier=config.kernel_identifier,
        kernel_full_version=config.kernel_full_version,
    )


def prepare_workspace(
    config: BuildConfig,
    settings: Settings,
    build_log: BuildLog,
    policy: DecisionPolicy,
) -> Workspace:
    """Bring the workspace into a known layout before any stage runs.

    A scratch tree from a previous run is kept untouched when the kernel
    build is skipped (it holds the built kernel). Otherwise the policy
    decides between purging it and reusing it.

    Args:
        config: Run configuration.
        settings: Application settings.
        build_log: Session build log.
        policy: Decision policy for the purge question.

    Returns:
        Prepared Workspace.

    Raises:
        WorkspaceError: If the log is not writable or a directory cannot be
            removed or created.
    """
    logger.info("Preparing build environment...")
    workspace = workspace_for(config, settings, build_log)

    try:
        with build_log.path.open("a", encoding="utf-8"):
            pass
    except OSError as e:
        raise WorkspaceError(
            f"Build log is not writable: {build_log.path}: {e}",
            code="log_create_failed",
        ) from e

    scratch = workspace.scratch_root
    if not config.skip_kernel and scratch.exists():
        logger.warning("Existing temporary directory found: %s", scratch)
        if policy.confirm_purge_existing(scratch):
            logger.info("Removing existing temporary directory...")
            try:
                shutil.rmtree(scratch)
            except OSError as e:
                raise WorkspaceError(
                    f"Failed to remove existing temporary directory {scratch}: {e}",
                    code="purge_failed",
                ) from e
            logger.info("Existing temporary directory removed")
        else:
            logger.warning(
                "Using existing temporary directory %s (stale artifacts may "
                "leak into this build)",
                scratch,
            )

    logger.info("Creating directory structure...")
    try:
        scratch.mkdir(parents=True, exist_ok=True)
        for directory in workspace.skeleton():
            directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise WorkspaceError(
            f"Failed to create directory structure: {e}", code="mkdir_failed"
        ) from e

    logger.info("Directory structure created under %s", workspace.staging_root)
    return workspace


def teardown_workspace(workspace: Workspace, confirmed: bool) -> bool:
    """Remove the scratch tree if the operator confirmed it.

    The output directory and the build log live outside the scratch tree
    and are never removed.

    Args:
        workspace: Workspace to clean.
        confirmed: Whether removal was confirmed.

    Returns:
        True if the scratch tree was removed.

    Raises:
        WorkspaceError: If removal fails.
    """
    scratch = workspace.scratch_root
    if not scratch.exists():
        return False
    if not confirmed:
        logger.info("Temporary files preserved at: %s", scratch)
        return False

    logger.info("Removing %s...", scratch)
    try:
        shutil.rmtree(scratch)
    except OSError as e:
        raise WorkspaceError(
            f"Failed to remove {scratch}: {e}", code="cleanup_failed"
        ) from e
    logger.info("Cleanup completed.")
    return True


__all__ = [
    "LOCK_FILENAME",
    "Workspace",
    "create_build_log",
    "prepare_workspace",
    "teardown_workspace",
    "workspace_for",
    "workspace_lock",
]
