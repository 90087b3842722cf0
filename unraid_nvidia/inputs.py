"""Input resolution.

Locates the driver installer and the Unraid kernel source directory,
queries the driver version and derives the kernel version strings every
later stage relies on.
"""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from unraid_nvidia.errors import InputError
from unraid_nvidia.types import BuildConfig

if TYPE_CHECKING:
    from unraid_nvidia.config import Settings

logger = logging.getLogger(__name__)

KERNEL_DIR_PREFIX = "linux-"
KERNEL_IDENTIFIER_RE = re.compile(r"^\d+\.\d+\.\d+(-[A-Za-z0-9._+-]+)?$")
VERSION_TOKEN_RE = re.compile(r"\bversion:?\s+(\S+)", re.IGNORECASE)


@dataclass(frozen=True)
class KernelVersion:
    """Version strings derived from a kernel source directory name."""

    identifier: str
    full_version: str
    major: str


def parse_kernel_source_name(name: str) -> KernelVersion:
    """Derive kernel version strings from a source directory name.

    ``linux-6.1.15-Unraid`` yields identifier ``6.1.15-Unraid``, full
    version ``6.1.15`` and major ``6``.

    Args:
        name: Directory name (a trailing slash is ignored).

    Returns:
        KernelVersion.

    Raises:
        InputError: If the name does not have the expected shape.
    """
    base = name.rstrip("/").rsplit("/", 1)[-1]
    identifier = base.removeprefix(KERNEL_DIR_PREFIX)
    if identifier == base or not KERNEL_IDENTIFIER_RE.match(identifier):
        raise InputError(
            f"Kernel source directory name '{base}' does not match "
            f"'{KERNEL_DIR_PREFIX}<major>.<minor>.<patch>[-suffix]'",
            code="bad_kernel_name",
        )

    full_version = identifier.split("-", 1)[0]
    major = full_version.split(".", 1)[0]
    return KernelVersion(identifier=identifier, full_version=full_version, major=major)


def parse_driver_version(output: str) -> str | None:
    """Extract the version token from the installer's ``--version`` output."""
    for line in output.splitlines():
        match = VERSION_TOKEN_RE.search(line)
        if match:
            return match.group(1)
    return None


def query_driver_version(driver_path: Path, timeout: int = 120) -> str:
    """Ask the driver installer for its version without installing anything.

    Raises:
        InputError: If the query fails or reports no version.
    """
    try:
        result = subprocess.run(
            ["bash", str(driver_path), "--version"],
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
        )
    except subprocess.TimeoutExpired as e:
        raise InputError(
            f"Driver version query timed out after {timeout}s",
            code="driver_version",
        ) from e
    except subprocess.CalledProcessError as e:
        raise InputError(
            f"Failed to extract NVIDIA driver version (exit code {e.returncode})",
            code="driver_version",
        ) from e
    except OSError as e:
        raise InputError(
            f"Failed to run driver installer: {e}",
            code="driver_version",
        ) from e

    version = parse_driver_version(result.stdout)
    if not version:
        raise InputError(
            "Could not determine NVIDIA driver version", code="driver_version"
        )
    return version


def _resolve(path: Path, base: Path) -> Path:
    return path if path.is_absolute() else base / path


def resolve_inputs(
    driver: Path,
    kernel_source_dir: Path,
    settings: Settings,
    skip_kernel: bool = False,
    cleanup: bool = False,
) -> BuildConfig:
    """Validate the user supplied artifacts and build the run configuration.

    Args:
        driver: Driver installer (.run), relative to the working directory.
        kernel_source_dir: Unraid kernel source directory.
        settings: Application settings.
        skip_kernel: Skip the kernel build stage.
        cleanup: Remove the scratch tree after completion.

    Returns:
        Immutable BuildConfig.

    Raises:
        InputError: If an input is missing or unusable.
    """
    logger.info("Validating input files...")

    driver_path = _resolve(driver, settings.work_dir)
    if not driver_path.is_file():
        raise InputError(
            f"NVIDIA driver file not found: {driver_path}", code="driver_missing"
        )
    logger.info("NVIDIA driver file found: %s", driver_path.name)

    source_dir = _resolve(kernel_source_dir, settings.work_dir)
    if not source_dir.is_dir():
        raise InputError(
            f"Unraid source directory not found: {source_dir}",
            code="kernel_source_missing",
        )
    logger.info("Unraid source directory found: %s", source_dir.name)

    kernel = parse_kernel_source_name(source_dir.name)

    logger.info("Extracting NVIDIA driver version...")
    driver_version = query_driver_version(driver_path, settings.driver_query_timeout)
    logger.info("NVIDIA driver version: %s", driver_version)

    return BuildConfig(
        driver_path=driver_path,
        kernel_source_dir=source_dir,
        kernel_identifier=kernel.identifier,
        kernel_major=kernel.major,
        kernel_full_version=kernel.full_version,
        driver_version=driver_version,
        libnvidia_container_version=settings.libnvidia_container_version,
        container_toolkit_version=settings.container_toolkit_version,
        jobs=settings.jobs,
        skip_kernel=skip_kernel,
        cleanup_on_finish=cleanup,
    )


__all__ = [
    "KernelVersion",
    "parse_driver_version",
    "parse_kernel_source_name",
    "query_driver_version",
    "resolve_inputs",
]
