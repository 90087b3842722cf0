"""Thin CLI wrapper for unraid_nvidia.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import os
import sys
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from unraid_nvidia import __version__
from unraid_nvidia.config import Settings, get_settings, print_settings_json

app = typer.Typer(
    name="unraid-nvidia-builder",
    help="Build NVIDIA driver packages for Unraid kernels",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"unraid-nvidia-builder version {__version__}")
        raise typer.Exit()


def _is_root() -> bool:
    return os.geteuid() == 0


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Unraid NVIDIA Builder - build NVIDIA driver packages for Unraid kernels."""


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True)
        return

    build_timeout = settings.build_timeout or "(no limit)"
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Working directory:   {settings.work_dir}")
    console.print(f"  Output directory:    {settings.resolved_output_dir()}")
    console.print(f"  Modules root:        {settings.modules_root}")
    console.print(f"  Host root:           {settings.host_root}")
    console.print(f"  Installer log:       {settings.installer_log}")
    console.print()
    console.print("[bold]Sources:[/bold]")
    console.print(f"  Kernel mirror:       {settings.kernel_mirror}")
    console.print(f"  Container releases:  {settings.container_release_base}")
    console.print(f"  pkgtools:            {settings.pkgtools_url}")
    console.print()
    console.print("[bold]Package:[/bold]")
    console.print(f"  Plugin name:         {settings.plugin_name}")
    console.print(f"  libnvidia-container: {settings.libnvidia_container_version}")
    console.print(f"  container-toolkit:   {settings.container_toolkit_version}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Parallel jobs:       {settings.jobs}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Require root:        {settings.require_root}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Download timeout:    {settings.download_timeout}")
    console.print(f"  Build timeout:       {build_timeout}")


def _print_summary(
    settings: Settings,
    driver: Path,
    kernel_source: Path,
    skip_kernel: bool,
    cleanup: bool,
) -> None:
    console.print("[bold]Build Configuration:[/bold]")
    console.print(f"  NVIDIA driver:       {driver}")
    console.print(f"  Kernel source:       {kernel_source}")
    console.print(f"  Working directory:   {settings.work_dir}")
    console.print(f"  Output directory:    {settings.resolved_output_dir()}")
    console.print(f"  Parallel jobs:       {settings.jobs}")
    console.print(f"  Skip kernel build:   {skip_kernel}")
    console.print(f"  Cleanup after build: {cleanup}")
    console.print()


@app.command()
def build(
    driver: Annotated[
        Path,
        typer.Option("--driver", "-n", help="Path to the NVIDIA driver .run installer"),
    ],
    kernel_source: Annotated[
        Path,
        typer.Option(
            "--kernel-source",
            "-u",
            help="Unraid kernel source directory (linux-<version>-Unraid)",
        ),
    ],
    skip_kernel: Annotated[
        bool,
        typer.Option("--skip-kernel", "-s", help="Reuse a previously built kernel"),
    ] = False,
    cleanup: Annotated[
        bool,
        typer.Option("--cleanup", "-c", help="Remove temporary files after the build"),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Run without prompting"),
    ] = False,
    purge_existing: Annotated[
        bool,
        typer.Option(
            "--purge-existing",
            help="With --yes, delete a temporary directory left by a previous run",
        ),
    ] = False,
    accept_unverified: Annotated[
        bool,
        typer.Option(
            "--accept-unverified",
            help="With --yes, continue when driver installation cannot be verified",
        ),
    ] = False,
) -> None:
    """Build an NVIDIA driver package for an Unraid kernel.

    Compiles the kernel (unless --skip-kernel), installs the driver into a
    staging tree, bundles container runtime support and writes the
    package and its MD5 checksum to the output directory.
    """
    from unraid_nvidia.decisions import policy_from_settings
    from unraid_nvidia.errors import PipelineError
    from unraid_nvidia.logs import configure_logging
    from unraid_nvidia.service import build_package

    settings = get_settings()
    if settings.require_root and not _is_root():
        console.print("[red]This command must be run as root[/red]")
        raise typer.Exit(code=1)

    updates: dict[str, bool] = {}
    if purge_existing:
        updates["purge_existing"] = True
    if accept_unverified:
        updates["accept_unverified_install"] = True
    if updates:
        settings = settings.model_copy(update=updates)

    configure_logging(settings.log_level)
    interactive = not yes and sys.stdin.isatty()

    _print_summary(settings, driver, kernel_source, skip_kernel, cleanup)
    if interactive and not typer.confirm("Continue with these settings?", default=True):
        console.print("Build cancelled")
        raise typer.Exit(code=1)

    policy = policy_from_settings(settings, interactive=interactive, cleanup=cleanup)
    try:
        outcome = build_package(
            driver,
            kernel_source,
            settings,
            policy,
            skip_kernel=skip_kernel,
            cleanup=cleanup,
        )
    except PipelineError as e:
        console.print(f"[red]Build failed: {e}[/red]")
        if e.log_path is not None:
            console.print(f"See build log: {e.log_path}")
        raise typer.Exit(code=1) from None
    except KeyboardInterrupt:
        console.print("[yellow]Build interrupted[/yellow]")
        raise typer.Exit(code=130) from None

    artifact = outcome.artifact
    console.print("[green]Build completed successfully![/green]")
    console.print(f"  Package:  {artifact.archive_path}")
    console.print(f"  MD5:      {artifact.checksum}")
    console.print(f"  Checksum: {artifact.checksum_path}")
    console.print(f"  Log:      {outcome.build_log.path}")


if __name__ == "__main__":
    app()
