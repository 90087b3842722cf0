"""Container runtime support stage.

Fetches the pinned libnvidia-container and nvidia-container-toolkit
release archives and unpacks them straight into the staging root.
"""

from __future__ import annotations

import logging
from pathlib import Path

from unraid_nvidia.fetch import component_archive_url, ensure_download, extract_archive
from unraid_nvidia.stages.base import Stage, StageContext
from unraid_nvidia.types import BuildConfig, StageResult

logger = logging.getLogger(__name__)


def container_components(config: BuildConfig) -> list[tuple[str, str]]:
    """Return (name, version) of the container runtime components."""
    return [
        ("libnvidia-container", config.libnvidia_container_version),
        ("nvidia-container-toolkit", config.container_toolkit_version),
    ]


class ContainerRuntimeStage(Stage):
    """Install container runtime support into the staging root."""

    name = "container-runtime"
    title = "Installing container support"

    def run(self, ctx: StageContext) -> StageResult:
        scratch_root = ctx.workspace.scratch_root
        staging_root = ctx.workspace.staging_root
        artifacts: dict[str, Path] = {}

        for component, version in container_components(ctx.config):
            archive = scratch_root / f"{component}-v{version}.tar.gz"
            url = component_archive_url(
                ctx.settings.container_release_base, component, version
            )
            logger.info("Fetching %s v%s...", component, version)
            ensure_download(ctx.client, url, archive, timeout=ctx.settings.download_timeout)
            extract_archive(archive, staging_root)
            artifacts[component] = archive

        return self.succeeded("Container support installed", artifacts=artifacts)


__all__ = ["ContainerRuntimeStage", "container_components"]
