"""Host prerequisite checks.

All checks are read-only and run before anything is written to the
working directory:
- Required external tools are on PATH
- Enough free disk space in the working directory
- A network endpoint is reachable
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from unraid_nvidia.errors import HostEnvironmentError

if TYPE_CHECKING:
    from unraid_nvidia.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class EnvironmentReport:
    """What the validator found on a healthy host."""

    tool_paths: dict[str, str] = field(default_factory=dict)
    free_bytes: int = 0
    connectivity_url: str = ""


def format_bytes(size: int) -> str:
    """Format a byte count for humans (e.g. '7.0 GiB')."""
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TiB"


def check_tools(tools: list[str]) -> dict[str, str]:
    """Locate required external tools.

    Raises:
        HostEnvironmentError: If a tool is not on PATH.
    """
    found: dict[str, str] = {}
    for tool in tools:
        path = shutil.which(tool)
        if path is None:
            raise HostEnvironmentError(
                f"Required command '{tool}' not found", code="missing_tool"
            )
        found[tool] = path
    return found


def check_disk_space(path: Path, required_bytes: int) -> int:
    """Ensure a filesystem has at least ``required_bytes`` free.

    Returns:
        Free bytes available.

    Raises:
        HostEnvironmentError: If free space is insufficient.
    """
    free = shutil.disk_usage(path).free
    if free < required_bytes:
        raise HostEnvironmentError(
            f"Insufficient disk space in {path}: {format_bytes(free)} free, "
            f"need at least {format_bytes(required_bytes)}",
            code="insufficient_disk",
        )
    return free


def check_connectivity(client: httpx.Client, url: str, timeout: float) -> None:
    """Probe a URL with a HEAD request.

    Raises:
        HostEnvironmentError: If the endpoint is unreachable.
    """
    try:
        response = client.head(url, timeout=timeout, follow_redirects=True)
    except httpx.HTTPError as e:
        raise HostEnvironmentError(
            f"No internet connection available ({url}: {e})", code="no_network"
        ) from e
    if response.status_code >= 500:
        raise HostEnvironmentError(
            f"No internet connection available ({url} answered {response.status_code})",
            code="no_network",
        )


def validate_environment(settings: Settings, client: httpx.Client) -> EnvironmentReport:
    """Run every host check; the first failure aborts.

    Args:
        settings: Application settings.
        client: HTTPX client used for the connectivity probe.

    Returns:
        EnvironmentReport describing the host.

    Raises:
        HostEnvironmentError: If any prerequisite is unmet.
    """
    logger.info("Validating system requirements...")

    tool_paths = check_tools(settings.required_tools)
    logger.debug("Found tools: %s", tool_paths)

    free = check_disk_space(settings.work_dir, settings.min_free_bytes)
    logger.info("Sufficient disk space available (%s)", format_bytes(free))

    check_connectivity(client, settings.connectivity_url, settings.connectivity_timeout)
    logger.info("Internet connectivity verified")

    return EnvironmentReport(
        tool_paths=tool_paths,
        free_bytes=free,
        connectivity_url=settings.connectivity_url,
    )


__all__ = [
    "EnvironmentReport",
    "check_connectivity",
    "check_disk_space",
    "check_tools",
    "format_bytes",
    "validate_environment",
]
