"""
Interfaces of the external tools the orchestrator drives.

Implementations wrap yt-dlp, a speech recogniser, a translation service
and ffmpeg. They report progress through the `report` coroutine they are
given and signal failure by raising; classification is not their job.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol, Union

from videotranslator.core.models import (
    VideoDescriptor, VideoFormat, WhisperModel, Transcript,
    SubtitleStyle, EncodingOptions, PipelineResult,
)


@dataclass(frozen=True)
class ProgressUpdate:
    fraction: float
    message: str = ""


ProgressItem = Union[ProgressUpdate, str]
Report = Callable[[ProgressItem], Awaitable[None]]


class Downloader(Protocol):
    async def download(self, video: VideoDescriptor, video_format: VideoFormat,
                       report: Report) -> str:
        """Download the video, return the local file path."""
        ...

    async def extract_captions(self, video: VideoDescriptor,
                               language: str | None) -> Transcript | None:
        """Return the video's own captions, or None when it has none."""
        ...


class Transcriber(Protocol):
    async def transcribe(self, audio_path: str, language: str | None,
                         report: Report, model: WhisperModel | None = None) -> Transcript:
        ...


class Translator(Protocol):
    async def translate(self, transcript: Transcript, target_language: str,
                        report: Report) -> Transcript:
        ...


class Renderer(Protocol):
    async def render(self, video_path: str, transcript: Transcript,
                     style: SubtitleStyle, encoding: EncodingOptions,
                     subtitle_path: str, report: Report) -> PipelineResult:
        """Burn or mux the subtitles. Reports raw ffmpeg progress lines."""
        ...
