"""
Recovery policy: maps a classified error to a recovery strategy.
"""

from videotranslator.core.constants import (
    RETRY_MAX_ATTEMPTS, RETRY_BACKOFF_MULTIPLIER,
    RETRY_DELAY_DEFAULT_MS, RETRY_DELAY_TIMEOUT_MS, RETRY_DELAY_RATE_LIMIT_MS,
)
from videotranslator.core.error_codes import ErrorCode, PipelineError, is_retryable
from videotranslator.core.models import StageName, VideoFormat, WhisperModel, HardwareEncoder
from videotranslator.core.outcomes import Retry, RetryWithFallback, Abort, RecoveryStrategy

DOWNLOAD_FALLBACKS = (
    VideoFormat.BEST, VideoFormat.MP4_720P, VideoFormat.MP4_480P, VideoFormat.AUDIO_ONLY,
)
TRANSCRIPTION_FALLBACKS = (WhisperModel.SMALL, WhisperModel.BASE, WhisperModel.TINY)
RENDERING_FALLBACKS = (HardwareEncoder.NONE,)


def retry_delay_ms(code: ErrorCode) -> int:
    if code == ErrorCode.RATE_LIMITED:
        return RETRY_DELAY_RATE_LIMIT_MS
    if code == ErrorCode.NETWORK_TIMEOUT:
        return RETRY_DELAY_TIMEOUT_MS
    return RETRY_DELAY_DEFAULT_MS


def decide(error: PipelineError) -> RecoveryStrategy:
    """Pick a strategy for the error. Total: unknown cases abort."""
    if is_retryable(error):
        return Retry(max_attempts=RETRY_MAX_ATTEMPTS,
                     delay_ms=retry_delay_ms(error.code),
                     backoff_multiplier=RETRY_BACKOFF_MULTIPLIER)

    if error.stage == StageName.DOWNLOAD and error.code == ErrorCode.ENCODING_FAILED:
        return RetryWithFallback(DOWNLOAD_FALLBACKS)

    if error.stage == StageName.TRANSCRIPTION and error.code == ErrorCode.INSUFFICIENT_MEMORY:
        return RetryWithFallback(TRANSCRIPTION_FALLBACKS)

    if error.stage == StageName.RENDERING and error.code == ErrorCode.ENCODING_FAILED:
        return RetryWithFallback(RENDERING_FALLBACKS)

    return Abort()
