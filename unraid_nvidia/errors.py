"""Error taxonomy for the build pipeline.

Every fatal error carries a stable ``code`` for structured handling and,
where available, a pointer to the build log holding the full output of the
external command that failed.
"""

from __future__ import annotations

from pathlib import Path


class PipelineError(Exception):
    """Base error for all fatal build failures."""

    def __init__(
        self,
        message: str,
        code: str = "pipeline_error",
        log_path: Path | None = None,
    ) -> None:
        """Initialize PipelineError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
            log_path: Build log with the full external command output.
        """
        super().__init__(message)
        self.code = code
        self.log_path = log_path


class HostEnvironmentError(PipelineError):
    """Raised when a host prerequisite is not met (pre-flight only)."""

    def __init__(self, message: str, code: str = "environment_error") -> None:
        super().__init__(message, code=code)


class InputError(PipelineError):
    """Raised when a user supplied artifact is missing or unusable."""

    def __init__(self, message: str, code: str = "input_error") -> None:
        super().__init__(message, code=code)


class WorkspaceError(PipelineError):
    """Raised when the workspace cannot be set up, locked or torn down."""

    def __init__(self, message: str, code: str = "workspace_error") -> None:
        super().__init__(message, code=code)


class StageError(PipelineError):
    """Raised when an operation inside a pipeline stage fails."""

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        code: str = "stage_error",
        command: str | None = None,
        log_path: Path | None = None,
    ) -> None:
        """Initialize StageError.

        Args:
            message: Error description.
            stage: Name of the failing stage (filled in by the pipeline
                runner when the raising code does not know it).
            code: Error code for structured error handling.
            command: The external command that failed, if any.
            log_path: Build log with the full command output.
        """
        super().__init__(message, code=code, log_path=log_path)
        self.stage = stage
        self.command = command


class PackagingError(StageError):
    """Raised when the final package cannot be produced."""

    def __init__(
        self,
        message: str,
        code: str = "packaging_error",
        command: str | None = None,
        log_path: Path | None = None,
    ) -> None:
        super().__init__(
            message, stage="package", code=code, command=command, log_path=log_path
        )


class DownloadError(StageError):
    """Raised when a remote resource cannot be fetched."""

    def __init__(self, message: str, code: str = "download_error") -> None:
        super().__init__(message, code=code)


class ExtractionError(StageError):
    """Raised when an archive cannot be extracted."""

    def __init__(self, message: str, code: str = "extraction_error") -> None:
        super().__init__(message, code=code)


class CommandError(StageError):
    """Raised when an external command exits non-zero or cannot start."""

    def __init__(
        self,
        message: str,
        command: str,
        exit_code: int | None = None,
        code: str = "command_failed",
        log_path: Path | None = None,
    ) -> None:
        super().__init__(message, code=code, command=command, log_path=log_path)
        self.exit_code = exit_code


__all__ = [
    "CommandError",
    "DownloadError",
    "ExtractionError",
    "HostEnvironmentError",
    "InputError",
    "PackagingError",
    "PipelineError",
    "StageError",
    "WorkspaceError",
]
