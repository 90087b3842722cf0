"""Build service module.

This module provides the high-level build API:
- build_package(): validate the host, resolve inputs, lock and prepare the
  workspace, run the stage pipeline and return the package artifact
- Cleanup offered on success (when requested), on fatal errors and on
  interrupts
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from unraid_nvidia.environment import validate_environment
from unraid_nvidia.errors import PackagingError, PipelineError, WorkspaceError
from unraid_nvidia.inputs import resolve_inputs
from unraid_nvidia.logs import attach_build_log
from unraid_nvidia.pipeline import Pipeline, PipelineReport, default_stages
from unraid_nvidia.runner import CommandRunner
from unraid_nvidia.stages.base import Stage, StageContext
from unraid_nvidia.workspace import (
    Workspace,
    create_build_log,
    prepare_workspace,
    teardown_workspace,
    workspace_lock,
)

if TYPE_CHECKING:
    from unraid_nvidia.config import Settings
    from unraid_nvidia.decisions import DecisionPolicy
    from unraid_nvidia.events import EventSink
    from unraid_nvidia.types import BuildConfig, BuildLog, PackageArtifact

logger = logging.getLogger(__name__)


@dataclass
class BuildOutcome:
    """Result of a successful build run."""

    artifact: PackageArtifact
    report: PipelineReport
    build_log: BuildLog
    duration: float


@contextmanager
def _terminate_as_interrupt() -> Iterator[None]:
    """Deliver SIGTERM as KeyboardInterrupt so cleanup still gets a chance."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, frame: object) -> None:
        raise KeyboardInterrupt

    previous = signal.signal(signal.SIGTERM, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


def offer_cleanup(workspace: Workspace, policy: DecisionPolicy) -> bool:
    """Ask the policy whether to remove the scratch tree and do so.

    Failures are logged, not raised, so they never mask the error that
    triggered the cleanup.
    """
    if not workspace.scratch_root.exists():
        return False
    logger.info("Cleaning up temporary files...")
    try:
        return teardown_workspace(
            workspace, policy.confirm_cleanup(workspace.scratch_root)
        )
    except WorkspaceError as e:
        logger.error("%s", e)
        return False


def format_duration(seconds: float) -> str:
    """Format a duration as 'Xm Ys'."""
    total = int(seconds)
    return f"{total // 60}m {total % 60}s"


def _run_pipeline(
    config: BuildConfig,
    settings: Settings,
    policy: DecisionPolicy,
    build_log: BuildLog,
    client: httpx.Client,
    runner: CommandRunner | None,
    stages: Sequence[Stage] | None,
    sink: EventSink | None,
) -> tuple[PackageArtifact, PipelineReport, Workspace]:
    """Prepare the workspace and run the stages; caller holds the lock."""
    workspace: Workspace | None = None
    try:
        workspace = prepare_workspace(config, settings, build_log, policy)
        ctx = StageContext(
            config=config,
            workspace=workspace,
            settings=settings,
            runner=runner or CommandRunner(build_log.path, settings.build_timeout),
            client=client,
            policy=policy,
        )
        pipeline = Pipeline(stages if stages is not None else default_stages(), sink)
        report = pipeline.run(ctx)
        report.raise_for_failure()
        if ctx.package is None:
            raise PackagingError(
                "Pipeline finished without producing a package",
                code="package_missing",
            )
        return ctx.package, report, workspace

    except PipelineError:
        if workspace is not None:
            offer_cleanup(workspace, policy)
        raise
    except KeyboardInterrupt:
        logger.warning("Build interrupted")
        if workspace is not None:
            offer_cleanup(workspace, policy)
        raise


def build_package(
    driver: Path,
    kernel_source: Path,
    settings: Settings,
    policy: DecisionPolicy,
    skip_kernel: bool = False,
    cleanup: bool = False,
    client: httpx.Client | None = None,
    runner: CommandRunner | None = None,
    stages: Sequence[Stage] | None = None,
    sink: EventSink | None = None,
) -> BuildOutcome:
    """Run a complete build and return the published package.

    This is the main entry point of the build pipeline. It:
    1. Creates the session build log
    2. Validates host prerequisites
    3. Resolves the driver installer and kernel source into a BuildConfig
    4. Locks and prepares the workspace
    5. Runs the stages in order, stopping at the first failure
    6. Optionally removes the scratch tree

    Args:
        driver: Driver installer path.
        kernel_source: Unraid kernel source directory.
        settings: Application settings.
        policy: Decision policy for destructive or risky steps.
        skip_kernel: Reuse the kernel built by a previous run.
        cleanup: Offer scratch tree removal after success.
        client: HTTPX client (created and closed here if omitted).
        runner: Command runner (defaults to one writing the build log).
        stages: Stage sequence (defaults to the full pipeline).
        sink: Progress event sink.

    Returns:
        BuildOutcome with the package artifact and the pipeline report.

    Raises:
        PipelineError: On any validation, workspace or stage failure.
        KeyboardInterrupt: If the run was interrupted.
    """
    build_log = create_build_log(settings.work_dir)
    detach = attach_build_log(build_log)
    started = time.monotonic()
    own_client = client is None
    http = client or httpx.Client(follow_redirects=True)

    logger.info("Starting NVIDIA driver build for Unraid")
    logger.info("Build log: %s", build_log.path)

    try:
        with _terminate_as_interrupt():
            validate_environment(settings, http)
            config = resolve_inputs(
                driver, kernel_source, settings, skip_kernel=skip_kernel, cleanup=cleanup
            )
            with workspace_lock(settings.work_dir):
                artifact, report, workspace = _run_pipeline(
                    config, settings, policy, build_log, http, runner, stages, sink
                )

                duration = time.monotonic() - started
                logger.info("Build completed successfully!")
                logger.info("Package: %s", artifact.archive_path)
                logger.info("MD5: %s", artifact.checksum)
                logger.info("Size: %d bytes", artifact.size_bytes)
                logger.info("Total build time: %s", format_duration(duration))

                if config.cleanup_on_finish:
                    offer_cleanup(workspace, policy)

        return BuildOutcome(
            artifact=artifact,
            report=report,
            build_log=build_log,
            duration=duration,
        )

    except PipelineError as e:
        logger.error("%s", e)
        logger.error("See build log for details: %s", e.log_path or build_log.path)
        raise
    finally:
        if own_client:
            http.close()
        detach()


__all__ = ["BuildOutcome", "build_package", "format_duration", "offer_cleanup"]
