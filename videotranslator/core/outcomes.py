"""
Stage outcomes and recovery strategies.

A stage produces exactly one StageOutcome variant; the recovery policy
answers a failure with exactly one RecoveryStrategy variant.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Union

from videotranslator.core.error_codes import PipelineError, PipelineException
from videotranslator.core.models import StageMetrics


# ── Stage outcomes ────────────────────────────────────────────────────

@dataclass(frozen=True)
class Success:
    value: Any
    duration_ms: int = 0
    metrics: StageMetrics | None = None


@dataclass(frozen=True)
class Failure:
    error: PipelineError
    recovery: "RecoveryStrategy | None" = None
    attempt: int = 1


@dataclass(frozen=True)
class Partial:
    value: Any
    completed_fraction: float
    error: PipelineError
    recoverable: bool = True


@dataclass(frozen=True)
class Skipped:
    reason: str


StageOutcome = Union[Success, Failure, Partial, Skipped]


def get_or_none(outcome: StageOutcome):
    if isinstance(outcome, (Success, Partial)):
        return outcome.value
    return None


def get_or_raise(outcome: StageOutcome):
    if isinstance(outcome, (Success, Partial)):
        return outcome.value
    if isinstance(outcome, Failure):
        raise PipelineException(outcome.error)
    if isinstance(outcome, Skipped):
        raise ValueError(f"Stage was skipped: {outcome.reason}")
    raise TypeError(f"Not a stage outcome: {outcome!r}")


def map_outcome(outcome: StageOutcome, fn: Callable[[Any], Any]) -> StageOutcome:
    """Apply fn to the carried value; Failure and Skipped pass through."""
    if isinstance(outcome, (Success, Partial)):
        return replace(outcome, value=fn(outcome.value))
    return outcome


# ── Recovery strategies ───────────────────────────────────────────────

@dataclass(frozen=True)
class Retry:
    max_attempts: int = 3
    delay_ms: int = 2000
    backoff_multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay in ms before the given (1-based) retry attempt."""
        return self.delay_ms * (self.backoff_multiplier ** (attempt - 1))


@dataclass(frozen=True)
class RetryWithFallback:
    options: tuple = field(default_factory=tuple)
    current_index: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'options', tuple(self.options))

    @property
    def has_more_fallbacks(self) -> bool:
        return self.current_index < len(self.options) - 1

    def current(self):
        return self.options[self.current_index]

    def advance(self) -> "RetryWithFallback":
        return replace(self, current_index=self.current_index + 1)


@dataclass(frozen=True)
class Skip:
    reason: str


@dataclass(frozen=True)
class Resume:
    checkpoint: Any   # PipelineCheckpoint


@dataclass(frozen=True)
class Abort:
    pass


RecoveryStrategy = Union[Retry, RetryWithFallback, Skip, Resume, Abort]
