"""Stage pipeline runner.

Runs the stages strictly in order. Each stage moves
pending -> running -> succeeded | failed | skipped; the first failed stage
stops the run and every later stage stays pending. No retries.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from unraid_nvidia.errors import PipelineError, StageError
from unraid_nvidia.events import EventKind, EventSink, LoggingEventSink, PipelineEvent
from unraid_nvidia.stages.base import Stage, StageContext
from unraid_nvidia.types import StageResult, StageState

logger = logging.getLogger(__name__)

_DONE_STATES = (StageState.SUCCEEDED, StageState.SKIPPED)


@dataclass
class PipelineReport:
    """Outcome of a pipeline run."""

    results: list[StageResult] = field(default_factory=list)
    states: dict[str, StageState] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return all(state in _DONE_STATES for state in self.states.values())

    @property
    def failed_result(self) -> StageResult | None:
        for result in self.results:
            if result.status is StageState.FAILED:
                return result
        return None

    def result_for(self, stage: str) -> StageResult | None:
        for result in self.results:
            if result.stage == stage:
                return result
        return None

    def raise_for_failure(self) -> None:
        """Re-raise the error of the failed stage, if any."""
        failed = self.failed_result
        if failed is None:
            return
        if failed.error is not None:
            raise failed.error
        raise StageError(failed.summary, stage=failed.stage)


def _failed(stage: Stage, error: PipelineError) -> StageResult:
    return StageResult(
        stage=stage.name, status=StageState.FAILED, summary=str(error), error=error
    )


class Pipeline:
    """Ordered sequence of build stages."""

    def __init__(self, stages: Sequence[Stage], sink: EventSink | None = None) -> None:
        names = [stage.name for stage in stages]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate stage names: {names}")
        self.stages = list(stages)
        self.sink: EventSink = sink or LoggingEventSink()

    def _emit(
        self,
        kind: EventKind,
        message: str,
        stage: str | None = None,
        state: StageState | None = None,
    ) -> None:
        self.sink.emit(
            PipelineEvent(kind=kind, message=message, stage=stage, state=state)
        )

    def _execute(self, stage: Stage, ctx: StageContext) -> StageResult:
        reason = stage.skip_reason(ctx)
        if reason is not None:
            return stage.skipped(ctx, reason)

        try:
            return stage.run(ctx)
        except StageError as e:
            if e.stage is None:
                e.stage = stage.name
            if e.log_path is None:
                e.log_path = ctx.workspace.build_log.path
            return _failed(stage, e)
        except PipelineError as e:
            return _failed(stage, e)
        except OSError as e:
            error = StageError(
                f"{stage.title} failed: {e}",
                stage=stage.name,
                code="os_error",
                log_path=ctx.workspace.build_log.path,
            )
            error.__cause__ = e
            return _failed(stage, error)

    def run(self, ctx: StageContext) -> PipelineReport:
        """Run every stage in order until one fails.

        Args:
            ctx: Stage context; its ``artifacts`` receive each stage's
                hand-off paths.

        Returns:
            PipelineReport with per-stage results and states.
        """
        report = PipelineReport(
            states={stage.name: StageState.PENDING for stage in self.stages}
        )

        for stage in self.stages:
            report.states[stage.name] = StageState.RUNNING
            self._emit(
                EventKind.STAGE_STARTED, f"{stage.title}...", stage.name, StageState.RUNNING
            )

            started_at = datetime.now(timezone.utc)
            result = self._execute(stage, ctx)
            result.started_at = started_at
            result.finished_at = datetime.now(timezone.utc)

            report.results.append(result)
            report.states[stage.name] = result.status

            for warning in result.warnings:
                self._emit(EventKind.WARNING, warning.message, stage.name)

            if result.status is StageState.SKIPPED:
                kind = EventKind.STAGE_SKIPPED
            else:
                kind = EventKind.STAGE_FINISHED
            self._emit(kind, result.summary, stage.name, result.status)

            if not result.ok:
                error = result.error
                if error is not None and error.log_path is not None:
                    logger.error("Full output of the failing command: %s", error.log_path)
                break

            ctx.artifacts.update(result.artifacts)

        outcome = "succeeded" if report.succeeded else "failed"
        self._emit(EventKind.RUN_FINISHED, f"Pipeline {outcome}")
        return report


def default_stages() -> list[Stage]:
    """The build stages in their required order."""
    from unraid_nvidia.stages.auxiliary import AuxiliaryCollectionStage
    from unraid_nvidia.stages.container import ContainerRuntimeStage
    from unraid_nvidia.stages.driver import DriverInstallStage
    from unraid_nvidia.stages.kernel import KernelBuildStage, KernelLinkStage
    from unraid_nvidia.stages.packaging import PackagingStage

    return [
        KernelBuildStage(),
        KernelLinkStage(),
        DriverInstallStage(),
        AuxiliaryCollectionStage(),
        ContainerRuntimeStage(),
        PackagingStage(),
    ]


__all__ = ["Pipeline", "PipelineReport", "default_stages"]
