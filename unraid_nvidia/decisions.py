"""Operator decisions the pipeline needs during a run.

Destructive or risky steps ask a DecisionPolicy instead of prompting
directly, so the same pipeline serves an interactive terminal and
unattended CI runs.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import typer

if TYPE_CHECKING:
    from unraid_nvidia.config import Settings

logger = logging.getLogger(__name__)


class DecisionPolicy(Protocol):
    """Answers the yes/no questions raised by the pipeline."""

    def confirm_purge_existing(self, scratch_root: Path) -> bool:
        """Purge a scratch tree left by a previous run?"""
        ...

    def confirm_existing_driver(self, installer_log: Path) -> bool:
        """Proceed on a host that already had the driver installed?"""
        ...

    def continue_after_unverified_install(self, installer_log: Path) -> bool:
        """Continue although the installer log lacks the completion marker?"""
        ...

    def confirm_cleanup(self, scratch_root: Path) -> bool:
        """Remove the scratch tree now?"""
        ...


class InteractivePolicy:
    """Ask the operator on the terminal."""

    def confirm_purge_existing(self, scratch_root: Path) -> bool:
        return typer.confirm(
            f"Remove existing temporary directory {scratch_root}?", default=True
        )

    def confirm_existing_driver(self, installer_log: Path) -> bool:
        typer.echo(
            "WARNING: Installing NVIDIA drivers on a host with existing NVIDIA "
            "drivers can cause conflicts and system instability.\n"
            "This should be run in a VM. Existing drivers will be uninstalled first."
        )
        return typer.confirm("Continue?", default=True)

    def continue_after_unverified_install(self, installer_log: Path) -> bool:
        typer.echo(f"Check {installer_log} for details.")
        return typer.confirm("Continue anyway?", default=False)

    def confirm_cleanup(self, scratch_root: Path) -> bool:
        return typer.confirm(f"Remove temporary directory {scratch_root}?", default=False)


class NonInteractivePolicy:
    """Answer from configuration flags, never blocking on input."""

    def __init__(
        self,
        purge_existing: bool = False,
        allow_existing_driver: bool = True,
        accept_unverified_install: bool = False,
        cleanup: bool = False,
    ) -> None:
        self.purge_existing = purge_existing
        self.allow_existing_driver = allow_existing_driver
        self.accept_unverified_install = accept_unverified_install
        self.cleanup = cleanup

    def confirm_purge_existing(self, scratch_root: Path) -> bool:
        logger.debug("purge_existing=%s for %s", self.purge_existing, scratch_root)
        return self.purge_existing

    def confirm_existing_driver(self, installer_log: Path) -> bool:
        return self.allow_existing_driver

    def continue_after_unverified_install(self, installer_log: Path) -> bool:
        return self.accept_unverified_install

    def confirm_cleanup(self, scratch_root: Path) -> bool:
        return self.cleanup


def policy_from_settings(
    settings: Settings,
    interactive: bool,
    cleanup: bool = False,
) -> DecisionPolicy:
    """Pick the decision policy for a run.

    Args:
        settings: Application settings (source of non-interactive answers).
        interactive: Prompt on the terminal instead.
        cleanup: Answer for cleanup questions in non-interactive mode.

    Returns:
        DecisionPolicy implementation.
    """
    if interactive:
        return InteractivePolicy()
    return NonInteractivePolicy(
        purge_existing=settings.purge_existing,
        accept_unverified_install=settings.accept_unverified_install,
        cleanup=cleanup,
    )


__all__ = [
    "DecisionPolicy",
    "InteractivePolicy",
    "NonInteractivePolicy",
    "policy_from_settings",
]
