"""
Error classifier: turns raw failures (exception text, process exit codes,
tool output) into PipelineErrors.

Rules are data. They are evaluated top to bottom against the case-folded
failure text and the first match wins, so the more specific patterns must
stay above the generic ones.
"""

import logging
import re
import subprocess
from dataclasses import dataclass

import requests

from videotranslator.core.constants import MAX_TECHNICAL_DETAILS_LEN
from videotranslator.core.error_codes import ErrorCode, PipelineError
from videotranslator.core.models import StageName

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawFailure:
    message: str
    exit_code: int | None = None
    output: str | None = None
    exception_type: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "RawFailure":
        exit_code = None
        output = None
        message = str(exc)

        if isinstance(exc, subprocess.CalledProcessError):
            exit_code = exc.returncode
            parts = [exc.output, exc.stderr]
            output = "\n".join(
                p.decode(errors='replace') if isinstance(p, bytes) else p
                for p in parts if p
            ) or None
        elif isinstance(exc, requests.HTTPError) and exc.response is not None:
            status = exc.response.status_code
            reason = exc.response.reason or ""
            message = f"HTTP {status} {reason}: {message}".strip()

        return cls(message=message, exit_code=exit_code, output=output,
                   exception_type=type(exc).__name__)

    def text(self) -> str:
        parts = [self.exception_type or "", self.message or "", self.output or ""]
        if self.exit_code is not None:
            parts.append(f"exit code {self.exit_code}")
        return " ".join(p for p in parts if p).casefold()


@dataclass(frozen=True)
class Rule:
    pattern: str
    code: ErrorCode
    recoverable: bool
    retryable: bool
    message: str
    suggestion: str | None = None
    requires: str | None = None

    def matches(self, text: str) -> bool:
        if not re.search(self.pattern, text):
            return False
        return self.requires is None or re.search(self.requires, text) is not None


RULES: tuple[Rule, ...] = (
    Rule(r"cancelled|canceled|cancellederror",
         ErrorCode.CANCELLED, False, False,
         "Operation was cancelled"),

    # Network
    Rule(r"\btimed? ?out\b|\btimeout\b|timeouterror|readtimeout|connecttimeout",
         ErrorCode.NETWORK_TIMEOUT, True, True,
         "Connection timed out",
         "Check your internet connection and try again"),
    Rule(r"connection refused|connectionrefused",
         ErrorCode.CONNECTION_REFUSED, True, True,
         "Connection refused by server",
         "The server may be down. Try again later"),
    Rule(r"network is unreachable|unreachable|no route to host|"
         r"name resolution|could not resolve|nodename nor servname",
         ErrorCode.NETWORK_UNREACHABLE, True, True,
         "Network is unreachable",
         "Check your internet connection"),
    Rule(r"\bssl\b|certificate|sslerror",
         ErrorCode.SSL_ERROR, False, False,
         "Secure connection failed",
         "Check your system date/time or network proxy settings"),

    # API
    Rule(r"rate limit|ratelimit|\b429\b|too many requests",
         ErrorCode.RATE_LIMITED, True, True,
         "Rate limited by the service",
         "Wait a moment before trying again"),
    Rule(r"quota|limit exceeded",
         ErrorCode.QUOTA_EXCEEDED, True, False,
         "API quota exceeded",
         "Wait for the quota to reset or use a different service"),
    Rule(r"api.?key.*(invalid|incorrect|unauthori[sz]ed|rejected)|"
         r"invalid.*api.?key|\b401\b|unauthori[sz]ed",
         ErrorCode.API_KEY_INVALID, False, False,
         "API key is invalid",
         "Check your API key in the settings"),
    Rule(r"api.?key.*(missing|required|not (set|provided|found))|"
         r"(missing|no) api.?key",
         ErrorCode.API_KEY_MISSING, False, False,
         "API key is missing",
         "Add an API key in the settings"),
    Rule(r"\b50[0-4]\b|internal server error|bad gateway|service unavailable",
         ErrorCode.API_ERROR, True, True,
         "The service returned a server error",
         "Try again later",
         requires=r"http|status|server"),

    # Resource
    Rule(r"model.*not found|no such model|model.*(missing|not downloaded)",
         ErrorCode.MODEL_NOT_FOUND, True, False,
         "Transcription model not found",
         "Download the model or choose a different one"),
    Rule(r"command not found|executable.*not found|binary.*not found|"
         r"not installed|exit code 127",
         ErrorCode.BINARY_NOT_FOUND, False, False,
         "Required tool not found",
         "Install the missing tool and make sure it is on your PATH"),
    Rule(r"no such file|file not found|filenotfounderror|does not exist",
         ErrorCode.FILE_NOT_FOUND, False, False,
         "File not found",
         "The file may have been moved or deleted"),
    Rule(r"out of memory|\boom\b|memoryerror|cannot allocate memory|insufficient memory",
         ErrorCode.INSUFFICIENT_MEMORY, True, False,
         "Not enough memory",
         "Close other applications or use a smaller model"),
    Rule(r"no space left|disk full|not enough space|enospc",
         ErrorCode.DISK_FULL, False, False,
         "Disk is full",
         "Free up disk space and try again"),
    Rule(r"permission denied|permissionerror|operation not permitted|access denied",
         ErrorCode.PERMISSION_DENIED, False, False,
         "Permission denied",
         "Check file permissions for the output folder"),

    # Input
    Rule(r"private video|video is private|\bprivate\b",
         ErrorCode.PRIVATE_VIDEO, False, False,
         "This video is private"),
    Rule(r"age.?restricted|confirm your age|sign in to confirm",
         ErrorCode.AGE_RESTRICTED, True, False,
         "This video is age-restricted",
         "Sign in with a browser cookies file to access it"),
    Rule(r"not available in your (country|region)|geo.?(blocked|restricted)|"
         r"region.?(blocked|locked)",
         ErrorCode.REGION_BLOCKED, False, False,
         "This video is not available in your region"),
    Rule(r"copyright",
         ErrorCode.COPYRIGHT_BLOCKED, False, False,
         "This video was blocked on copyright grounds"),
    Rule(r"live stream|livestream|\bis live\b|live event|premieres in",
         ErrorCode.LIVE_STREAM, False, False,
         "Live streams are not supported",
         "Wait until the stream has ended"),
    Rule(r"video unavailable|unavailable|has been removed|no longer available",
         ErrorCode.VIDEO_UNAVAILABLE, False, False,
         "This video is unavailable"),
    Rule(r"invalid url|unsupported url|not a valid url|malformed url",
         ErrorCode.INVALID_URL, False, False,
         "The URL is not valid",
         "Check the link and try again"),
    Rule(r"unsupported|not supported|unknown format|invalid data found",
         ErrorCode.UNSUPPORTED_FORMAT, False, False,
         "Unsupported format"),

    # Processing / system
    Rule(r"encod|ffmpeg|codec|nvenc|videotoolbox|vaapi|qsv|\bamf\b",
         ErrorCode.ENCODING_FAILED, True, False,
         "Video encoding failed",
         "Try software encoding or a different output format"),
    Rule(r"crash|segmentation fault|segfault|core dumped|killed|exit code -?(9|11|139)\b",
         ErrorCode.PROCESS_CRASHED, True, True,
         "A helper process crashed"),
    Rule(r"hardware|\bgpu\b|cuda|metal device",
         ErrorCode.HARDWARE_ERROR, False, False,
         "Hardware error",
         "Try again with hardware acceleration disabled"),
    Rule(r"transcri|whisper",
         ErrorCode.TRANSCRIPTION_FAILED, False, False,
         "Transcription failed"),
    Rule(r"translat",
         ErrorCode.TRANSLATION_FAILED, False, False,
         "Translation failed"),
    Rule(r"subtitle|\bsrt\b|\bvtt\b|\bass\b|parse error|parsing",
         ErrorCode.SUBTITLE_PARSE_ERROR, False, False,
         "Could not read the subtitle data"),
)


def classify(raw: RawFailure, stage: StageName) -> PipelineError:
    """Classify a raw failure that happened during the given stage."""
    text = raw.text()
    details = text[:MAX_TECHNICAL_DETAILS_LEN] if text else None

    for rule in RULES:
        if rule.matches(text):
            return PipelineError(
                code=rule.code,
                stage=stage,
                message=rule.message,
                technical_details=details,
                suggestion=rule.suggestion,
                recoverable=rule.recoverable,
                retryable=rule.retryable,
            )

    logger.debug("Unclassified failure in %s: %s", stage.name, details)
    return PipelineError(
        code=ErrorCode.UNKNOWN,
        stage=stage,
        message="An unexpected error occurred",
        technical_details=details,
        suggestion="Check the logs for details",
    )


def classify_exception(exc: BaseException, stage: StageName) -> PipelineError:
    return classify(RawFailure.from_exception(exc), stage)
