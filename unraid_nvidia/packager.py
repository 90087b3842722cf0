"""Slackware package assembly.

This module handles:
- Staging a dated copy of the driver tree
- Writing the package description (slack-desc)
- Locating or provisioning makepkg
- Producing the .txz archive and its MD5 checksum file
- Publishing both into the output directory
"""

from __future__ import annotations

import logging
import os
import secrets
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from unraid_nvidia.errors import CommandError, PackagingError, StageError
from unraid_nvidia.fetch import compute_file_hash, ensure_download, extract_archive
from unraid_nvidia.types import BuildConfig, PackageArtifact

if TYPE_CHECKING:
    import httpx

    from unraid_nvidia.config import Settings
    from unraid_nvidia.runner import CommandRunner
    from unraid_nvidia.workspace import Workspace

logger = logging.getLogger(__name__)

PACKAGE_EXTENSION = "txz"
PACKAGE_BUILD = "1"
CHECKSUM_ALGORITHM = "md5"
HANDY_RULER = "|-----handy-ruler------------------------------------------------------|"


def package_prefix(plugin_name: str) -> str:
    """Package name prefix: the plugin name up to its first dash."""
    return plugin_name.split("-", 1)[0]


def package_filename(plugin_name: str, driver_version: str, kernel_identifier: str) -> str:
    """Deterministic archive name, e.g. ``nvidia-535.129.03-6.1.15-Unraid-1.txz``."""
    prefix = package_prefix(plugin_name)
    stem = f"{prefix}-{driver_version}-{kernel_identifier}-{PACKAGE_BUILD}"
    return f"{stem}.{PACKAGE_EXTENSION}"


def render_slack_desc(
    plugin_name: str,
    config: BuildConfig,
    built_at: datetime | None = None,
) -> str:
    """Render the package description block.

    Args:
        plugin_name: Plugin name prefixing every line.
        config: Run configuration (component versions, kernel).
        built_at: Build timestamp (defaults to now).

    Returns:
        slack-desc file content.
    """
    built_at = built_at or datetime.now()
    kernel_major = config.kernel_identifier.split("-", 1)[0]
    body = [
        f"{plugin_name} Package contents:",
        "",
        f"NVIDIA Driver v{config.driver_version}",
        f"libnvidia-container v{config.libnvidia_container_version}",
        f"nvidia-container-toolkit v{config.container_toolkit_version}",
        "",
        "",
        f"Custom {plugin_name} for Unraid Kernel v{kernel_major}",
        f"Built on {built_at:%Y-%m-%d %H:%M:%S}",
        "",
    ]
    lines = [" " * 11 + HANDY_RULER]
    lines += [f"{plugin_name}: {text}".rstrip() for text in body]
    return "\n".join(lines) + "\n"


def verify_checksum(artifact: PackageArtifact) -> bool:
    """Re-hash the archive and compare it with its checksum file."""
    recorded = artifact.checksum_path.read_text(encoding="utf-8").split()[0]
    return compute_file_hash(artifact.archive_path, CHECKSUM_ALGORITHM) == recorded


class Packager:
    """Turn the staging root into a versioned Slackware package."""

    def __init__(
        self,
        settings: Settings,
        runner: CommandRunner,
        client: httpx.Client,
    ) -> None:
        self.settings = settings
        self.runner = runner
        self.client = client

    def stage_payload(self, workspace: Workspace, version: str) -> tuple[Path, Path]:
        """Copy the staging root into a fresh, uniquely named directory.

        Returns:
            Tuple of (package scratch directory, versioned payload directory).
        """
        plugin = self.settings.plugin_name
        while True:
            tmp_dir = workspace.scratch_root / f"{plugin}_{secrets.randbelow(32768)}"
            if not tmp_dir.exists():
                break
        payload_dir = tmp_dir / version
        shutil.copytree(workspace.staging_root, payload_dir, symlinks=True)
        (payload_dir / "install").mkdir(exist_ok=True)
        return tmp_dir, payload_dir

    def resolve_makepkg(self, workspace: Workspace) -> str:
        """Find makepkg on PATH or provision the pinned pkgtools copy.

        Raises:
            PackagingError: If makepkg cannot be provided.
        """
        system_makepkg = shutil.which("makepkg")
        if system_makepkg:
            logger.info("Using system makepkg: %s", system_makepkg)
            return system_makepkg

        logger.info("Installing temporary makepkg...")
        url = self.settings.pkgtools_url
        archive = workspace.scratch_root / url.rsplit("/", 1)[-1]
        try:
            ensure_download(
                self.client, url, archive, timeout=self.settings.download_timeout
            )
            extract_archive(archive, workspace.scratch_root)
        except StageError as e:
            raise PackagingError(
                f"Failed to install makepkg: {e}", code="makepkg_unavailable"
            ) from e

        makepkg = workspace.scratch_root / "sbin" / "makepkg"
        if not (makepkg.is_file() and os.access(makepkg, os.X_OK)):
            raise PackagingError(
                f"Failed to install makepkg: {makepkg} is not executable",
                code="makepkg_unavailable",
            )
        logger.info("Temporary makepkg installed")
        return str(makepkg)

    def package(self, workspace: Workspace, config: BuildConfig) -> PackageArtifact:
        """Assemble, archive, checksum and publish the package.

        Args:
            workspace: Prepared workspace with a populated staging root.
            config: Run configuration.

        Returns:
            The published PackageArtifact.

        Raises:
            PackagingError: If any step fails.
        """
        logger.info("Creating Slackware package...")
        plugin = self.settings.plugin_name
        version = datetime.now().strftime("%Y.%m.%d")
        name = package_filename(plugin, config.driver_version, config.kernel_identifier)

        try:
            tmp_dir, payload_dir = self.stage_payload(workspace, version)
            (payload_dir / "install" / "slack-desc").write_text(
                render_slack_desc(plugin, config), encoding="utf-8"
            )
        except OSError as e:
            raise PackagingError(
                f"Failed to stage package payload: {e}", code="staging_failed"
            ) from e

        makepkg = self.resolve_makepkg(workspace)
        archive = tmp_dir / name
        logger.info("Building package: %s", name)
        try:
            self.runner.run([makepkg, "-l", "n", "-c", "n", str(archive)], cwd=payload_dir)
        except CommandError as e:
            raise PackagingError(
                "Package creation failed",
                code="makepkg_failed",
                command=e.command,
                log_path=e.log_path,
            ) from e
        if not archive.is_file():
            raise PackagingError(
                f"makepkg did not produce {archive}", code="package_missing"
            )

        try:
            checksum = compute_file_hash(archive, CHECKSUM_ALGORITHM)
            checksum_file = tmp_dir / f"{name}.{CHECKSUM_ALGORITHM}"
            checksum_file.write_text(f"{checksum}\n", encoding="utf-8")

            output_dir = workspace.output_dir
            output_dir.mkdir(parents=True, exist_ok=True)
            published = Path(shutil.copy2(archive, output_dir / name))
            published_checksum = Path(
                shutil.copy2(checksum_file, output_dir / checksum_file.name)
            )
        except OSError as e:
            raise PackagingError(
                f"Failed to publish package: {e}", code="publish_failed"
            ) from e

        artifact = PackageArtifact(
            archive_path=published,
            checksum_path=published_checksum,
            checksum=checksum,
            size_bytes=published.stat().st_size,
            package_name=name,
            driver_version=config.driver_version,
            kernel_identifier=config.kernel_identifier,
            created_at=datetime.now(timezone.utc),
        )
        logger.info("Package created successfully: %s", artifact.archive_path)
        return artifact


__all__ = [
    "CHECKSUM_ALGORITHM",
    "PACKAGE_EXTENSION",
    "Packager",
    "package_filename",
    "package_prefix",
    "render_slack_desc",
    "verify_checksum",
]
