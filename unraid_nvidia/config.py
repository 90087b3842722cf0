"""Configuration settings for unraid_nvidia.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

GIB = 1024 * 1024 * 1024


def _default_jobs() -> int:
    """Return the default number of parallel compilation workers."""
    return os.cpu_count() or 1


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the UNRAID_NV_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="UNRAID_NV_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    work_dir: Path = Field(
        default_factory=Path.cwd,
        description="Working directory holding inputs, scratch tree, logs and output",
    )
    output_dir: Path | None = Field(
        default=None,
        description="Directory for the finished package (defaults to <work_dir>/out)",
    )
    modules_root: Path = Field(
        default=Path("/lib/modules"),
        description="System kernel module directory used to link build headers",
    )
    host_root: Path = Field(
        default=Path("/"),
        description="Root of the host tree auxiliary driver files are collected from",
    )
    installer_log: Path = Field(
        default=Path("/var/log/nvidia-installer.log"),
        description="Log file written by the NVIDIA installer",
    )

    # Remote sources
    kernel_mirror: str = Field(
        default="https://mirrors.edge.kernel.org/pub/linux/kernel",
        description="Kernel source mirror (v<major>.x/linux-<version>.tar.xz below it)",
    )
    container_release_base: str = Field(
        default="https://github.com/ich777",
        description="Release source for the container runtime components",
    )
    pkgtools_url: str = Field(
        default=(
            "https://slackware.uk/slackware/slackware64-15.0/"
            "slackware64/a/pkgtools-15.0-noarch-42.txz"
        ),
        description="Pinned pkgtools archive used when makepkg is not installed",
    )
    connectivity_url: str = Field(
        default="https://kernel.org",
        description="Endpoint probed to verify network reachability",
    )

    # Package contents
    plugin_name: str = Field(
        default="nvidia-driver",
        description="Plugin name embedded in the package description",
    )
    libnvidia_container_version: str = Field(
        default="1.14.3",
        description="Pinned libnvidia-container version",
    )
    container_toolkit_version: str = Field(
        default="1.14.3",
        description="Pinned nvidia-container-toolkit version",
    )
    install_marker: str = Field(
        default="installation is now complete",
        description="Marker the installer writes to its log on success",
    )

    # Host requirements
    required_tools: list[str] = Field(
        default_factory=lambda: ["bash", "make", "gcc", "patch"],
        description="External tools that must be on PATH",
    )
    min_free_bytes: int = Field(
        default=7 * GIB,
        ge=0,
        description="Minimum free disk space in the working directory",
    )
    require_root: bool = Field(
        default=True,
        description="Refuse to build without elevated privileges",
    )

    # Operational
    jobs: int = Field(
        default_factory=_default_jobs,
        ge=1,
        description="Parallel compilation workers for kernel and driver builds",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Non-interactive decisions
    purge_existing: bool = Field(
        default=False,
        description="Purge a scratch tree left by a previous run instead of reusing it",
    )
    accept_unverified_install: bool = Field(
        default=False,
        description="Continue when the installer log lacks the completion marker",
    )

    # Timeouts (in seconds)
    download_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for source and component downloads",
    )
    connectivity_timeout: int = Field(
        default=10,
        ge=1,
        description="Timeout for the network reachability probe",
    )
    driver_query_timeout: int = Field(
        default=120,
        ge=1,
        description="Timeout for the driver installer version query",
    )
    build_timeout: int | None = Field(
        default=None,
        description="Timeout for each external build command (None = no limit)",
    )

    def resolved_output_dir(self) -> Path:
        """Return the effective package output directory."""
        return self.output_dir or self.work_dir / "out"


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["GIB", "Settings", "get_settings", "print_settings_json"]
