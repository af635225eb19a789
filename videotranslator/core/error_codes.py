"""
Standardised error taxonomy for the translation pipeline.

Every failure surfaced by the pipeline is a PipelineError carrying one
ErrorCode. Each code belongs to exactly one ErrorCategory; the mapping is
fixed and never depends on where the error happened.
"""

import time
from dataclasses import dataclass, field
from enum import Enum

from videotranslator.core.models import StageName


class ErrorCategory(Enum):
    NETWORK = "NETWORK"
    API = "API"
    RESOURCE = "RESOURCE"
    INPUT = "INPUT"
    PROCESSING = "PROCESSING"
    SYSTEM = "SYSTEM"
    CANCELLATION = "CANCELLATION"
    UNKNOWN = "UNKNOWN"


class ErrorCode(Enum):
    # Network
    NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
    NETWORK_UNREACHABLE = "NETWORK_UNREACHABLE"
    CONNECTION_REFUSED = "CONNECTION_REFUSED"
    SSL_ERROR = "SSL_ERROR"

    # API
    API_KEY_INVALID = "API_KEY_INVALID"
    API_KEY_MISSING = "API_KEY_MISSING"
    RATE_LIMITED = "RATE_LIMITED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    API_ERROR = "API_ERROR"

    # Resource
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    BINARY_NOT_FOUND = "BINARY_NOT_FOUND"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    DISK_FULL = "DISK_FULL"
    INSUFFICIENT_MEMORY = "INSUFFICIENT_MEMORY"

    # Input
    INVALID_URL = "INVALID_URL"
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    VIDEO_UNAVAILABLE = "VIDEO_UNAVAILABLE"
    AGE_RESTRICTED = "AGE_RESTRICTED"
    PRIVATE_VIDEO = "PRIVATE_VIDEO"
    REGION_BLOCKED = "REGION_BLOCKED"
    COPYRIGHT_BLOCKED = "COPYRIGHT_BLOCKED"
    LIVE_STREAM = "LIVE_STREAM"

    # Processing
    TRANSCRIPTION_FAILED = "TRANSCRIPTION_FAILED"
    TRANSLATION_FAILED = "TRANSLATION_FAILED"
    ENCODING_FAILED = "ENCODING_FAILED"
    SUBTITLE_PARSE_ERROR = "SUBTITLE_PARSE_ERROR"

    # System
    PROCESS_CRASHED = "PROCESS_CRASHED"
    HARDWARE_ERROR = "HARDWARE_ERROR"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # Generic
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"

    @property
    def category(self) -> ErrorCategory:
        return CATEGORY_BY_CODE[self]


CATEGORY_BY_CODE = {
    ErrorCode.NETWORK_TIMEOUT: ErrorCategory.NETWORK,
    ErrorCode.NETWORK_UNREACHABLE: ErrorCategory.NETWORK,
    ErrorCode.CONNECTION_REFUSED: ErrorCategory.NETWORK,
    ErrorCode.SSL_ERROR: ErrorCategory.NETWORK,

    ErrorCode.API_KEY_INVALID: ErrorCategory.API,
    ErrorCode.API_KEY_MISSING: ErrorCategory.API,
    ErrorCode.RATE_LIMITED: ErrorCategory.API,
    ErrorCode.QUOTA_EXCEEDED: ErrorCategory.API,
    ErrorCode.API_ERROR: ErrorCategory.API,

    ErrorCode.MODEL_NOT_FOUND: ErrorCategory.RESOURCE,
    ErrorCode.BINARY_NOT_FOUND: ErrorCategory.RESOURCE,
    ErrorCode.FILE_NOT_FOUND: ErrorCategory.RESOURCE,
    ErrorCode.DISK_FULL: ErrorCategory.RESOURCE,
    ErrorCode.INSUFFICIENT_MEMORY: ErrorCategory.RESOURCE,

    ErrorCode.INVALID_URL: ErrorCategory.INPUT,
    ErrorCode.UNSUPPORTED_FORMAT: ErrorCategory.INPUT,
    ErrorCode.VIDEO_UNAVAILABLE: ErrorCategory.INPUT,
    ErrorCode.AGE_RESTRICTED: ErrorCategory.INPUT,
    ErrorCode.PRIVATE_VIDEO: ErrorCategory.INPUT,
    ErrorCode.REGION_BLOCKED: ErrorCategory.INPUT,
    ErrorCode.COPYRIGHT_BLOCKED: ErrorCategory.INPUT,
    ErrorCode.LIVE_STREAM: ErrorCategory.INPUT,

    ErrorCode.TRANSCRIPTION_FAILED: ErrorCategory.PROCESSING,
    ErrorCode.TRANSLATION_FAILED: ErrorCategory.PROCESSING,
    ErrorCode.ENCODING_FAILED: ErrorCategory.PROCESSING,
    ErrorCode.SUBTITLE_PARSE_ERROR: ErrorCategory.PROCESSING,

    ErrorCode.PROCESS_CRASHED: ErrorCategory.SYSTEM,
    ErrorCode.HARDWARE_ERROR: ErrorCategory.SYSTEM,
    ErrorCode.PERMISSION_DENIED: ErrorCategory.SYSTEM,

    ErrorCode.CANCELLED: ErrorCategory.CANCELLATION,
    ErrorCode.UNKNOWN: ErrorCategory.UNKNOWN,
}


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class PipelineError:
    """A classified pipeline failure, ready for display and recovery."""

    code: ErrorCode
    stage: StageName
    message: str
    technical_details: str | None = None
    suggestion: str | None = None
    recoverable: bool = False
    retryable: bool = False
    timestamp_ms: int = field(default_factory=_now_ms)

    @property
    def category(self) -> ErrorCategory:
        return self.code.category

    def to_user_message(self) -> str:
        text = f"{self.stage.display_name} failed: {self.message}"
        if self.suggestion:
            text += f"\n\nSuggestion: {self.suggestion}"
        return text

    def to_dict(self) -> dict:
        return {
            'code': self.code.value,
            'stage': self.stage.name,
            'message': self.message,
            'technical_details': self.technical_details,
            'suggestion': self.suggestion,
            'recoverable': self.recoverable,
            'retryable': self.retryable,
            'timestamp_ms': self.timestamp_ms,
        }


class PipelineException(Exception):
    """Raised when a failure has already been classified."""

    def __init__(self, error: PipelineError):
        self.error = error
        super().__init__(f"[{error.code.value}] {error.message}")


def is_retryable(error: PipelineError) -> bool:
    return error.retryable
