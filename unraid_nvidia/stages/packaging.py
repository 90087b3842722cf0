"""Packaging stage: the terminal stage of the pipeline."""

from __future__ import annotations

from unraid_nvidia.packager import Packager
from unraid_nvidia.stages.base import Stage, StageContext
from unraid_nvidia.types import PackageArtifact, StageResult


class PackagingStage(Stage):
    """Produce the package archive and checksum in the output directory."""

    name = "package"
    title = "Creating package"

    def run(self, ctx: StageContext) -> StageResult:
        packager = Packager(ctx.settings, ctx.runner, ctx.client)
        artifact: PackageArtifact = packager.package(ctx.workspace, ctx.config)
        ctx.package = artifact
        return self.succeeded(
            f"Package {artifact.package_name} (md5 {artifact.checksum})",
            artifacts={
                "package": artifact.archive_path,
                "checksum": artifact.checksum_path,
            },
        )


__all__ = ["PackagingStage"]
