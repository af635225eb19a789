"""
Pre-flight validation of the video and the output directory.
Both checks run before any stage, so a job that cannot succeed fails
without downloading anything.
"""

import logging
import os
from pathlib import Path

from videotranslator.core.constants import (
    MIN_VIDEO_DURATION_SEC, MAX_VIDEO_DURATION_SEC, LONG_VIDEO_WARNING_SEC,
    MIN_AGE_RESTRICTION,
)
from videotranslator.core.error_codes import ErrorCode, PipelineError
from videotranslator.core.models import StageName, VideoDescriptor

logger = logging.getLogger(__name__)

_UNAVAILABLE = {"premium_only", "subscriber_only", "needs_auth"}


def _video_error(code: ErrorCode, message: str, suggestion: str,
                 details: str | None = None) -> PipelineError:
    return PipelineError(code=code, stage=StageName.DOWNLOAD, message=message,
                         technical_details=details, suggestion=suggestion)


def validate_video(video: VideoDescriptor) -> tuple[PipelineError | None, list[str]]:
    """
    Check the video can be processed at all.
    Returns (error, warnings); error is None when the video is usable.
    """
    warnings = []
    duration = video.duration_sec

    if video.is_live:
        return _video_error(ErrorCode.LIVE_STREAM, "Live streams cannot be translated",
                            "Wait until the stream has ended and try again"), warnings
    if video.availability == "private":
        return _video_error(ErrorCode.PRIVATE_VIDEO, "This video is private",
                            "Ask the owner to make the video public or unlisted"), warnings
    if video.availability in _UNAVAILABLE:
        return _video_error(ErrorCode.VIDEO_UNAVAILABLE, "This video requires an account to watch",
                            "Choose a video that is publicly available",
                            f"availability={video.availability}"), warnings
    if video.age_limit >= MIN_AGE_RESTRICTION:
        return _video_error(ErrorCode.AGE_RESTRICTED, "This video is age-restricted",
                            "Age-restricted videos cannot be downloaded without signing in",
                            f"age_limit={video.age_limit}"), warnings
    if video.geo_blocked:
        return _video_error(ErrorCode.REGION_BLOCKED, "This video is not available in your region",
                            "Try a different video"), warnings

    if duration > 0:
        if duration < MIN_VIDEO_DURATION_SEC:
            return _video_error(ErrorCode.INVALID_URL, "Video is too short to translate",
                                f"Videos must be at least {MIN_VIDEO_DURATION_SEC} seconds long",
                                f"duration={duration}s"), warnings
        if duration > MAX_VIDEO_DURATION_SEC:
            return _video_error(ErrorCode.INVALID_URL, "Video is too long to translate",
                                f"Videos must be at most {MAX_VIDEO_DURATION_SEC // 3600} hours long",
                                f"duration={duration}s"), warnings
        if duration > LONG_VIDEO_WARNING_SEC:
            warnings.append(f"Long video ({duration // 60} minutes), processing may take a while")

    return None, warnings


def prepare_output_directory(directory: str | Path) -> PipelineError | None:
    """
    Create the output directory if it is missing and check it is writable.
    Returns an error when it cannot be used.
    """
    path = Path(directory).expanduser()

    if path.exists() and not path.is_dir():
        return PipelineError(
            code=ErrorCode.FILE_NOT_FOUND,
            stage=StageName.RENDERING,
            message="Output path is not a directory",
            technical_details=str(path),
            suggestion="Choose a folder as the output location",
        )

    if not path.exists():
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return PipelineError(
                code=ErrorCode.PERMISSION_DENIED,
                stage=StageName.RENDERING,
                message="Cannot create output directory",
                technical_details=f"{path}: {e}",
                suggestion="Check permissions or choose a different location",
            )
        logger.info("Created output directory: %s", path)

    if not os.access(path, os.W_OK):
        return PipelineError(
            code=ErrorCode.PERMISSION_DENIED,
            stage=StageName.RENDERING,
            message="Output directory is not writable",
            technical_details=str(path),
            suggestion="Check permissions or choose a different location",
        )
    return None
