"""
Data models (plain dataclasses) for VideoTranslator.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from videotranslator.core.constants import (
    DEFAULT_VIDEO_WIDTH, DEFAULT_VIDEO_HEIGHT, DEFAULT_CRF, DEFAULT_PRESET,
)


# ── Pipeline stages (ordered) ─────────────────────────────────────────

class StageName(Enum):
    DOWNLOAD = ("Download", 1)
    CAPTION_CHECK = ("Caption Check", 2)
    TRANSCRIPTION = ("Transcription", 3)
    TRANSLATION = ("Translation", 4)
    RENDERING = ("Rendering", 5)

    def __init__(self, display_name: str, order: int):
        self.display_name = display_name
        self.order = order

    @classmethod
    def from_order(cls, order: int) -> Optional["StageName"]:
        for stage in cls:
            if stage.order == order:
                return stage
        return None

    def next(self) -> Optional["StageName"]:
        return StageName.from_order(self.order + 1)


# ── Fallback options ──────────────────────────────────────────────────

class VideoFormat(Enum):
    BEST = ("bestvideo[ext=mp4]+bestaudio[ext=m4a]/best[ext=mp4]/best", "Best quality")
    MP4_1080P = ("bestvideo[height<=1080][ext=mp4]+bestaudio[ext=m4a]/best[height<=1080]", "1080p")
    MP4_720P = ("bestvideo[height<=720][ext=mp4]+bestaudio[ext=m4a]/best[height<=720]", "720p")
    MP4_480P = ("bestvideo[height<=480][ext=mp4]+bestaudio[ext=m4a]/best[height<=480]", "480p")
    AUDIO_ONLY = ("bestaudio[ext=m4a]/bestaudio", "Audio only")

    def __init__(self, selector: str, display_name: str):
        self.selector = selector
        self.display_name = display_name


class WhisperModel(Enum):
    LARGE = "large"
    MEDIUM = "medium"
    SMALL = "small"
    BASE = "base"
    TINY = "tiny"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


class HardwareEncoder(Enum):
    NONE = ("libx264", "Software (CPU)")
    NVENC = ("h264_nvenc", "NVIDIA NVENC")
    VIDEOTOOLBOX = ("h264_videotoolbox", "Apple VideoToolbox")
    VAAPI = ("h264_vaapi", "VA-API")
    QSV = ("h264_qsv", "Intel QuickSync")
    AMF = ("h264_amf", "AMD AMF")

    def __init__(self, ffmpeg_encoder: str, display_name: str):
        self.ffmpeg_encoder = ffmpeg_encoder
        self.display_name = display_name


# ── Timed text ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TimedSpan:
    start_ms: int
    end_ms: int
    text: str
    index: int = 0

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms

    def to_dict(self) -> dict:
        return {'index': self.index, 'start_ms': self.start_ms,
                'end_ms': self.end_ms, 'text': self.text}

    @classmethod
    def from_dict(cls, data: dict) -> "TimedSpan":
        return cls(start_ms=int(data['start_ms']), end_ms=int(data['end_ms']),
                   text=data['text'], index=int(data.get('index', 0)))


@dataclass(frozen=True)
class Transcript:
    """An ordered subtitle track in one language."""
    spans: tuple[TimedSpan, ...]
    language: str

    def __post_init__(self):
        # accept any sequence, store a tuple
        object.__setattr__(self, 'spans', tuple(self.spans))

    def __len__(self) -> int:
        return len(self.spans)

    def is_empty(self) -> bool:
        return not any(span.text.strip() for span in self.spans)

    def to_dict(self) -> dict:
        return {'language': self.language,
                'spans': [s.to_dict() for s in self.spans]}

    @classmethod
    def from_dict(cls, data: dict) -> "Transcript":
        return cls(spans=[TimedSpan.from_dict(s) for s in data.get('spans', [])],
                   language=data['language'])


# ── Job description ───────────────────────────────────────────────────

@dataclass(frozen=True)
class VideoDescriptor:
    url: str
    video_id: str
    title: str
    duration_sec: int = 0            # 0 = unknown
    thumbnail_url: Optional[str] = None
    is_live: bool = False
    availability: Optional[str] = None   # yt-dlp value: public, private, needs_auth, ...
    age_limit: int = 0
    geo_blocked: bool = False

    def to_dict(self) -> dict:
        return {'url': self.url, 'video_id': self.video_id, 'title': self.title,
                'duration_sec': self.duration_sec, 'thumbnail_url': self.thumbnail_url,
                'is_live': self.is_live, 'availability': self.availability,
                'age_limit': self.age_limit, 'geo_blocked': self.geo_blocked}

    @classmethod
    def from_dict(cls, data: dict) -> "VideoDescriptor":
        return cls(url=data['url'], video_id=data['video_id'], title=data['title'],
                   duration_sec=int(data.get('duration_sec', 0)),
                   thumbnail_url=data.get('thumbnail_url'),
                   is_live=bool(data.get('is_live', False)),
                   availability=data.get('availability'),
                   age_limit=int(data.get('age_limit') or 0),
                   geo_blocked=bool(data.get('geo_blocked', False)))


@dataclass(frozen=True)
class SubtitleStyle:
    font_family: str = "Arial"
    font_size: int = 24
    font_weight: int = 400          # 700+ renders bold
    primary_color: str = "#FFFFFF"
    secondary_color: str = "#FFFF00"
    outline_color: str = "#000000"
    shadow_color: str = "#000000"
    outline_width: float = 2.0
    shadow_depth: float = 1.0
    border_style: int = 1           # 1=outline+shadow, 3=opaque box
    alignment: int = 2              # numpad layout, 2 = bottom center
    margin_left: int = 10
    margin_right: int = 10
    margin_vertical: int = 20
    italic: bool = False
    underline: bool = False
    strikeout: bool = False
    scale_x: int = 100
    scale_y: int = 100
    spacing: float = 0.0
    angle: float = 0.0

    @property
    def bold(self) -> bool:
        return self.font_weight >= 700

    def to_dict(self) -> dict:
        return dict(self.__dict__)

    @classmethod
    def from_dict(cls, data: dict) -> "SubtitleStyle":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass(frozen=True)
class EncodingOptions:
    encoder: HardwareEncoder = HardwareEncoder.NONE
    crf: int = DEFAULT_CRF
    preset: str = DEFAULT_PRESET
    audio_codec: str = "copy"
    output_format: str = "mp4"
    video_width: int = DEFAULT_VIDEO_WIDTH
    video_height: int = DEFAULT_VIDEO_HEIGHT

    def to_dict(self) -> dict:
        data = dict(self.__dict__)
        data['encoder'] = self.encoder.name
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "EncodingOptions":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        if 'encoder' in known:
            known['encoder'] = HardwareEncoder[known['encoder']]
        return cls(**known)


class SubtitleType:
    SOFT = "soft"
    BURNED_IN = "burned_in"


@dataclass(frozen=True)
class OutputOptions:
    output_directory: str
    subtitle_type: str = SubtitleType.BURNED_IN
    export_srt: bool = False
    style: SubtitleStyle = field(default_factory=SubtitleStyle)
    encoding: EncodingOptions = field(default_factory=EncodingOptions)
    download_format: VideoFormat = VideoFormat.BEST

    def to_dict(self) -> dict:
        return {
            'output_directory': self.output_directory,
            'subtitle_type': self.subtitle_type,
            'export_srt': self.export_srt,
            'style': self.style.to_dict(),
            'encoding': self.encoding.to_dict(),
            'download_format': self.download_format.name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OutputOptions":
        return cls(
            output_directory=data['output_directory'],
            subtitle_type=data.get('subtitle_type', SubtitleType.BURNED_IN),
            export_srt=bool(data.get('export_srt', False)),
            style=SubtitleStyle.from_dict(data.get('style', {})),
            encoding=EncodingOptions.from_dict(data.get('encoding', {})),
            download_format=VideoFormat[data.get('download_format', 'BEST')],
        )


@dataclass(frozen=True)
class Job:
    video: VideoDescriptor
    target_language: str
    output_options: OutputOptions
    source_language: Optional[str] = None
    transcription_model: Optional[WhisperModel] = None
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass(frozen=True)
class PipelineResult:
    video_file: str
    subtitle_file: Optional[str] = None
    duration_ms: int = 0


@dataclass(frozen=True)
class StageMetrics:
    duration_ms: int
    items_processed: Optional[int] = None
    retry_count: int = 0


# ── Render progress ───────────────────────────────────────────────────

class RenderStage(Enum):
    PREPARING = "PREPARING"
    GENERATING_SUBTITLES = "GENERATING_SUBTITLES"
    ENCODING = "ENCODING"
    FINALIZING = "FINALIZING"
    COMPLETE = "COMPLETE"


def format_eta(seconds: int) -> str:
    if seconds < 60:
        return f" - {seconds}s remaining"
    if seconds < 3600:
        return f" - {seconds // 60}m {seconds % 60}s remaining"
    return f" - {seconds // 3600}h {(seconds % 3600) // 60}m remaining"


@dataclass(frozen=True)
class RenderProgress:
    fraction: float = 0.0
    current_ms: int = 0
    total_ms: int = 0
    fps: float = 0.0
    bitrate_kbps: float = 0.0
    speed_factor: float = 0.0
    stage: RenderStage = RenderStage.PREPARING
    eta_seconds: Optional[int] = None

    @property
    def message(self) -> str:
        if self.stage == RenderStage.PREPARING:
            return "Preparing..."
        if self.stage == RenderStage.GENERATING_SUBTITLES:
            return "Generating subtitles..."
        if self.stage == RenderStage.FINALIZING:
            return "Finalizing..."
        if self.stage == RenderStage.COMPLETE:
            return "Complete"

        pct = int(self.fraction * 100)
        eta = format_eta(self.eta_seconds) if self.eta_seconds is not None else ""
        if self.speed_factor > 0:
            return f"Encoding: {pct}% ({self.speed_factor:.1f}x){eta}"
        return f"Encoding: {pct}%{eta}"
