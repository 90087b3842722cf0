"""Stage contract shared by every pipeline stage."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from unraid_nvidia.types import SoftWarning, StageResult, StageState

if TYPE_CHECKING:
    import httpx

    from unraid_nvidia.config import Settings
    from unraid_nvidia.decisions import DecisionPolicy
    from unraid_nvidia.runner import CommandRunner
    from unraid_nvidia.types import BuildConfig, PackageArtifact
    from unraid_nvidia.workspace import Workspace


@dataclass
class StageContext:
    """Everything a stage may use, passed explicitly.

    ``artifacts`` accumulates the artifact paths handed off by completed
    stages, keyed by role (``kernel_tree``, ``package``...). ``package`` is
    set by the packaging stage.
    """

    config: BuildConfig
    workspace: Workspace
    settings: Settings
    runner: CommandRunner
    client: httpx.Client
    policy: DecisionPolicy
    artifacts: dict[str, Path] = field(default_factory=dict)
    package: PackageArtifact | None = None


class Stage:
    """One unit of the build pipeline.

    Subclasses implement ``run``; they raise PipelineError (usually
    StageError) on fatal failures and collect soft warnings in the result.
    """

    name = "stage"
    title = "Stage"

    def skip_reason(self, ctx: StageContext) -> str | None:
        """Return why this stage should be skipped, or None to run it."""
        return None

    def skipped(self, ctx: StageContext, reason: str) -> StageResult:
        """Result of a skipped stage (may still hand off artifacts)."""
        return StageResult(stage=self.name, status=StageState.SKIPPED, summary=reason)

    def run(self, ctx: StageContext) -> StageResult:
        """Execute the stage.

        Args:
            ctx: Stage context.

        Returns:
            StageResult with status, summary, hand-off artifacts and warnings.

        Raises:
            PipelineError: On a fatal failure.
        """
        raise NotImplementedError

    def succeeded(
        self,
        summary: str,
        artifacts: dict[str, Path] | None = None,
        warnings: list[SoftWarning] | None = None,
    ) -> StageResult:
        """Build the result of a stage that completed.

        Args:
            summary: One-line description for the progress log.
            artifacts: Paths handed to later stages, keyed by role.
            warnings: Soft warnings collected while running.

        Returns:
            StageResult in the succeeded state.
        """
        return StageResult(
            stage=self.name,
            status=StageState.SUCCEEDED,
            summary=summary,
            artifacts=artifacts or {},
            warnings=warnings or [],
        )

    def warning(self, message: str) -> SoftWarning:
        """Return a soft warning attributed to this stage."""
        return SoftWarning(stage=self.name, message=message)


__all__ = ["Stage", "StageContext"]
