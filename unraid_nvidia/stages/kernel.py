"""Kernel build and kernel source link stages.

The kernel build is resumable: the source tarball is downloaded once, the
tree is extracted only when missing, and each patch is deleted from the
scratch copy after it applies so a restarted run never applies it twice.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from unraid_nvidia.errors import CommandError, StageError
from unraid_nvidia.fetch import ensure_download, extract_archive, kernel_source_url
from unraid_nvidia.stages.base import Stage, StageContext
from unraid_nvidia.types import StageResult, StageState

logger = logging.getLogger(__name__)


def find_patches(patch_dir: Path) -> list[Path]:
    """Return every ``*.patch`` file below ``patch_dir`` in a stable order."""
    return sorted(p for p in patch_dir.rglob("*.patch") if p.is_file())


class KernelBuildStage(Stage):
    """Download, patch, configure and compile the Unraid kernel."""

    name = "kernel-build"
    title = "Building kernel"

    def skip_reason(self, ctx: StageContext) -> str | None:
        if ctx.config.skip_kernel:
            return "Skipping kernel build as requested"
        return None

    def skipped(self, ctx: StageContext, reason: str) -> StageResult:
        # The tree built by an earlier run is still handed to the link stage.
        return StageResult(
            stage=self.name,
            status=StageState.SKIPPED,
            summary=reason,
            artifacts={"kernel_tree": ctx.workspace.kernel_tree},
        )

    def fetch_source(self, ctx: StageContext) -> Path:
        """Download the kernel source archive unless it is already present.

        Args:
            ctx: Stage context.

        Returns:
            Path to the ``linux-<version>.tar.xz`` archive in the scratch root.

        Raises:
            DownloadError: If the archive cannot be fetched.
        """
        config = ctx.config
        archive = ctx.workspace.scratch_root / f"linux-{config.kernel_full_version}.tar.xz"
        url = kernel_source_url(
            ctx.settings.kernel_mirror, config.kernel_major, config.kernel_full_version
        )
        logger.info("Downloading Linux %s source...", config.kernel_full_version)
        ensure_download(ctx.client, url, archive, timeout=ctx.settings.download_timeout)
        return archive

    def prepare_tree(self, ctx: StageContext, archive: Path) -> None:
        """Extract the kernel tree and copy the Unraid patch set next to it.

        An existing tree is reused. A fresh extraction discards any earlier
        patch copy so every patch is applied again.

        Args:
            ctx: Stage context.
            archive: Kernel source archive.

        Raises:
            ExtractionError: If the archive cannot be unpacked.
            StageError: If the archive does not hold the expected tree.
        """
        workspace = ctx.workspace
        if workspace.kernel_tree.is_dir():
            logger.info("Reusing extracted kernel tree %s", workspace.kernel_tree)
        else:
            logger.info("Extracting kernel source...")
            extract_archive(archive, workspace.scratch_root)
            if not workspace.kernel_tree.is_dir():
                raise StageError(
                    f"Archive {archive.name} did not contain {workspace.kernel_tree.name}",
                    code="bad_kernel_archive",
                )
            # A fresh tree needs the full patch set again.
            if workspace.patch_dir.exists():
                shutil.rmtree(workspace.patch_dir)

        if not workspace.patch_dir.exists():
            shutil.copytree(ctx.config.kernel_source_dir, workspace.patch_dir, symlinks=True)

    def apply_patches(self, ctx: StageContext) -> int:
        """Apply every Unraid patch to the kernel tree.

        Each patch is deleted once applied, so a resumed run skips it.

        Args:
            ctx: Stage context.

        Returns:
            Number of patches applied.

        Raises:
            StageError: If a patch does not apply.
        """
        tree = ctx.workspace.kernel_tree
        applied = 0
        for patch_file in find_patches(ctx.workspace.patch_dir):
            logger.info("Applying %s", patch_file.name)
            try:
                ctx.runner.run(["patch", "-p1", "-i", str(patch_file)], cwd=tree)
            except CommandError as e:
                raise StageError(
                    f"Failed to apply patch: {patch_file}",
                    code="patch_failed",
                    command=e.command,
                    log_path=e.log_path,
                ) from e
            patch_file.unlink()
            applied += 1
        return applied

    def install_config(self, ctx: StageContext) -> None:
        """Copy the Unraid ``.config`` and md drivers into the kernel tree.

        Raises:
            StageError: If the patch set has no ``.config``.
        """
        patch_dir = ctx.workspace.patch_dir
        tree = ctx.workspace.kernel_tree

        config_file = patch_dir / ".config"
        if not config_file.is_file():
            raise StageError(
                f"Unraid .config file not found in {patch_dir}",
                code="missing_config",
            )
        shutil.copy2(config_file, tree / ".config")

        md_drivers = patch_dir / "drivers" / "md"
        if md_drivers.is_dir():
            shutil.copytree(md_drivers, tree / "drivers" / "md", dirs_exist_ok=True)
            logger.info("Merged Unraid md drivers into the kernel tree")

    def compile(self, ctx: StageContext) -> None:
        """Run ``make`` for the kernel and then for its modules.

        Args:
            ctx: Stage context.

        Raises:
            StageError: If either build exits non-zero.
        """
        tree = ctx.workspace.kernel_tree
        jobs = f"-j{ctx.config.jobs}"
        for what, cmd in (
            ("Kernel build", ["make", jobs]),
            ("Kernel modules build", ["make", jobs, "modules"]),
        ):
            logger.info("%s started (this may take a while)...", what)
            try:
                ctx.runner.run(cmd, cwd=tree)
            except CommandError as e:
                raise StageError(
                    f"{what} failed. Check {e.log_path} for details.",
                    code="make_failed",
                    command=e.command,
                    log_path=e.log_path,
                ) from e

    def run(self, ctx: StageContext) -> StageResult:
        archive = self.fetch_source(ctx)
        self.prepare_tree(ctx, archive)
        applied = self.apply_patches(ctx)
        logger.info("Applied %d Unraid patches", applied)
        self.install_config(ctx)
        self.compile(ctx)
        return self.succeeded(
            f"Kernel {ctx.config.kernel_identifier} built ({applied} patches applied)",
            artifacts={"kernel_tree": ctx.workspace.kernel_tree},
        )


class KernelLinkStage(Stage):
    """Point the system module directory at the built kernel tree."""

    name = "kernel-link"
    title = "Linking kernel source"

    def run(self, ctx: StageContext) -> StageResult:
        tree = ctx.artifacts.get("kernel_tree", ctx.workspace.kernel_tree)
        module_dir = ctx.settings.modules_root / ctx.config.kernel_identifier
        link = module_dir / "build"
        warnings = []

        if not tree.is_dir():
            warnings.append(
                self.warning(f"Kernel tree {tree} does not exist; linking anyway")
            )

        module_dir.mkdir(parents=True, exist_ok=True)
        if link.is_symlink() or link.is_file():
            link.unlink()
        elif link.is_dir():
            raise StageError(
                f"{link} is a directory, refusing to replace it",
                code="link_blocked",
            )
        link.symlink_to(tree, target_is_directory=True)

        return self.succeeded(
            f"Kernel source linked: {link} -> {tree}",
            artifacts={"kernel_build_link": link},
            warnings=warnings,
        )


__all__ = ["KernelBuildStage", "KernelLinkStage", "find_patches"]
