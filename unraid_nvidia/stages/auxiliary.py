"""Auxiliary component collection stage.

Copies optional host-side driver files into the staging root. Every copy
is best-effort; this stage never fails the pipeline.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from unraid_nvidia.stages.base import Stage, StageContext
from unraid_nvidia.types import SoftWarning, StageResult

logger = logging.getLogger(__name__)

# (source relative to the host root, destination directory relative to the
# staging root)
AUXILIARY_PATHS: list[tuple[str, str]] = [
    ("lib/firmware/nvidia", "lib/firmware"),
    ("usr/bin/nvidia-modprobe", "usr/bin"),
    ("etc/OpenCL", "etc"),
    ("etc/vulkan", "etc"),
    ("etc/nvidia", "etc"),
    ("usr/lib/nvidia", "usr/lib"),
    ("usr/share/nvidia", "usr/share"),
]


def copy_into(source: Path, dest_dir: Path) -> Path:
    """Copy a file or directory tree into ``dest_dir`` keeping its name."""
    dest_dir.mkdir(parents=True, exist_ok=True)
    target = dest_dir / source.name
    if source.is_dir() and not source.is_symlink():
        shutil.copytree(source, target, symlinks=True, dirs_exist_ok=True)
    else:
        shutil.copy2(source, target, follow_symlinks=False)
    return target


class AuxiliaryCollectionStage(Stage):
    """Collect firmware, ICD configuration and shared data from the host."""

    name = "collect-auxiliary"
    title = "Copying additional files"

    def __init__(self, paths: list[tuple[str, str]] | None = None) -> None:
        self.paths = paths if paths is not None else AUXILIARY_PATHS

    def run(self, ctx: StageContext) -> StageResult:
        host_root = ctx.settings.host_root
        staging_root = ctx.workspace.staging_root
        warnings: list[SoftWarning] = []
        copied = 0

        for relative_source, relative_dest in self.paths:
            source = host_root / relative_source
            if not source.exists() and not source.is_symlink():
                warnings.append(self.warning(f"Source file/directory not found: {source}"))
                continue
            try:
                target = copy_into(source, staging_root / relative_dest)
            except (OSError, shutil.Error) as e:
                warnings.append(self.warning(f"Failed to copy {source}: {e}"))
                continue
            logger.debug("Copied %s -> %s", source, target)
            copied += 1

        return self.succeeded(
            f"Additional files copied ({copied} of {len(self.paths)})",
            warnings=warnings,
        )


__all__ = ["AUXILIARY_PATHS", "AuxiliaryCollectionStage", "copy_into"]
