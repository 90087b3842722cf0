"""Structured progress events emitted by the pipeline.

The pipeline never renders anything itself; it hands events to a sink.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol

from unraid_nvidia.types import StageState

progress_logger = logging.getLogger("unraid_nvidia.progress")


class EventKind(str, Enum):
    """Kind of a pipeline event."""

    STAGE_STARTED = "stage_started"
    STAGE_FINISHED = "stage_finished"
    STAGE_SKIPPED = "stage_skipped"
    WARNING = "warning"
    RUN_FINISHED = "run_finished"


@dataclass
class PipelineEvent:
    """A single progress event."""

    kind: EventKind
    message: str
    stage: str | None = None
    state: StageState | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventSink(Protocol):
    """Receiver of pipeline events."""

    def emit(self, event: PipelineEvent) -> None:
        """Handle one event."""
        ...


class LoggingEventSink:
    """Render events through the logging system."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or progress_logger

    def emit(self, event: PipelineEvent) -> None:
        prefix = f"[{event.stage}] " if event.stage else ""
        if event.kind is EventKind.WARNING:
            self.logger.warning("%s%s", prefix, event.message)
        elif event.state is StageState.FAILED:
            self.logger.error("%s%s", prefix, event.message)
        else:
            self.logger.info("%s%s", prefix, event.message)


class CollectingEventSink:
    """Keep every event in memory, optionally forwarding to another sink."""

    def __init__(self, forward: EventSink | None = None) -> None:
        self.events: list[PipelineEvent] = []
        self.forward = forward

    def emit(self, event: PipelineEvent) -> None:
        self.events.append(event)
        if self.forward is not None:
            self.forward.emit(event)

    def of_kind(self, kind: EventKind) -> list[PipelineEvent]:
        """Return the collected events of one kind, in order."""
        return [e for e in self.events if e.kind is kind]


__all__ = [
    "CollectingEventSink",
    "EventKind",
    "EventSink",
    "LoggingEventSink",
    "PipelineEvent",
]
