"""
Events emitted by the orchestrator.

Stage events drive the caller's progress display; log events form the
structured run log. Both are plain frozen dataclasses.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar

from videotranslator.core.error_codes import PipelineError
from videotranslator.core.models import (
    StageName, StageMetrics, PipelineResult, RenderProgress,
)

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


# ── Stage events ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class StageStarted:
    stage: StageName
    from_stage: StageName | None = None


@dataclass(frozen=True)
class StageProgress:
    stage: StageName
    fraction: float
    message: str = ""
    render: RenderProgress | None = None


@dataclass(frozen=True)
class StageSkipped:
    stage: StageName
    reason: str


@dataclass(frozen=True)
class StageSucceeded:
    stage: StageName
    duration_ms: int
    metrics: StageMetrics | None = None


@dataclass(frozen=True)
class PipelineComplete:
    result: PipelineResult


@dataclass(frozen=True)
class PipelineFailed:
    error: PipelineError
    recovery: Any = None   # RecoveryStrategy


# ── Log events ────────────────────────────────────────────────────────

class LogEvent:
    """Common shape: timestamp_ms, stage, message and a logging level."""
    level: ClassVar[int] = logging.INFO


@dataclass(frozen=True)
class InfoEvent(LogEvent):
    stage: StageName | None
    message: str
    details: dict = field(default_factory=dict)
    timestamp_ms: int = field(default_factory=_now_ms)
    level: ClassVar[int] = logging.INFO


@dataclass(frozen=True)
class WarningEvent(LogEvent):
    stage: StageName | None
    message: str
    suggestion: str | None = None
    timestamp_ms: int = field(default_factory=_now_ms)
    level: ClassVar[int] = logging.WARNING


@dataclass(frozen=True)
class ErrorEvent(LogEvent):
    stage: StageName | None
    message: str
    error: PipelineError | None = None
    timestamp_ms: int = field(default_factory=_now_ms)
    level: ClassVar[int] = logging.ERROR


@dataclass(frozen=True)
class DebugEvent(LogEvent):
    stage: StageName | None
    message: str
    data: dict = field(default_factory=dict)
    timestamp_ms: int = field(default_factory=_now_ms)
    level: ClassVar[int] = logging.DEBUG


@dataclass(frozen=True)
class StageTransition(LogEvent):
    stage: StageName
    message: str
    from_stage: StageName | None = None
    timestamp_ms: int = field(default_factory=_now_ms)
    level: ClassVar[int] = logging.INFO


@dataclass(frozen=True)
class RecoveryAttempt(LogEvent):
    stage: StageName
    message: str
    attempt: int
    max_attempts: int
    strategy: str
    timestamp_ms: int = field(default_factory=_now_ms)
    level: ClassVar[int] = logging.WARNING


@dataclass(frozen=True)
class CheckpointSaved(LogEvent):
    stage: StageName
    checkpoint_path: str
    message: str = "Checkpoint saved"
    timestamp_ms: int = field(default_factory=_now_ms)
    level: ClassVar[int] = logging.DEBUG


@dataclass(frozen=True)
class Metric(LogEvent):
    stage: StageName | None
    message: str
    name: str
    value: float
    unit: str
    timestamp_ms: int = field(default_factory=_now_ms)
    level: ClassVar[int] = logging.DEBUG


class EventLog:
    """
    Append-only run log. Every event is mirrored to the `logging` module
    and, when given, passed to an external sink.
    """

    def __init__(self, sink: Callable[[LogEvent], None] | None = None):
        self._events: list[LogEvent] = []
        self._sink = sink

    def append(self, event: LogEvent):
        self._events.append(event)
        stage = event.stage.name if event.stage else "-"
        logger.log(event.level, "[%s] %s", stage, event.message)
        if self._sink:
            self._sink(event)

    def clear(self):
        self._events = []

    @property
    def events(self) -> list[LogEvent]:
        return list(self._events)

    def __len__(self) -> int:
        return len(self._events)
