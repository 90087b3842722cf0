"""Shared type definitions for unraid_nvidia.

This module contains dataclasses and enums shared across subpackages to
avoid circular imports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from unraid_nvidia.errors import PipelineError


class StageState(str, Enum):
    """State of a pipeline stage."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class BuildConfig:
    """Resolved, read-only parameters of one build run."""

    driver_path: Path
    kernel_source_dir: Path
    kernel_identifier: str
    kernel_major: str
    kernel_full_version: str
    driver_version: str
    libnvidia_container_version: str
    container_toolkit_version: str
    jobs: int = 1
    skip_kernel: bool = False
    cleanup_on_finish: bool = False


@dataclass(frozen=True)
class BuildLog:
    """Session-unique, append-only build log file."""

    path: Path
    started_at: datetime


@dataclass
class SoftWarning:
    """A best-effort operation that failed without aborting the run."""

    stage: str
    message: str


@dataclass
class StageResult:
    """Outcome of one pipeline stage.

    Attributes:
        stage: Stage name.
        status: Final state (succeeded, failed or skipped).
        summary: Human-readable one-line summary.
        artifacts: Produced paths keyed by role, consumed by later stages.
        warnings: Soft warnings collected while the stage ran.
        error: The error that failed the stage, if any.
        started_at: Stage start time.
        finished_at: Stage finish time.
    """

    stage: str
    status: StageState
    summary: str
    artifacts: dict[str, Path] = field(default_factory=dict)
    warnings: list[SoftWarning] = field(default_factory=list)
    error: PipelineError | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def ok(self) -> bool:
        """Whether downstream stages may proceed."""
        return self.status in (StageState.SUCCEEDED, StageState.SKIPPED)


@dataclass(frozen=True)
class PackageArtifact:
    """The terminal output of a build: archive plus checksum file."""

    archive_path: Path
    checksum_path: Path
    checksum: str
    size_bytes: int
    package_name: str
    driver_version: str
    kernel_identifier: str
    created_at: datetime


__all__ = [
    "BuildConfig",
    "BuildLog",
    "PackageArtifact",
    "SoftWarning",
    "StageResult",
    "StageState",
]
