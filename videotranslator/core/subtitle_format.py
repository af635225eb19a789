"""
Subtitle file formatting: styled ASS for burning in, plain SRT for export.
"""

import re

from videotranslator.core.constants import DEFAULT_VIDEO_WIDTH, DEFAULT_VIDEO_HEIGHT
from videotranslator.core.models import SubtitleStyle, Transcript

_HEX_RE = re.compile(r"^[0-9A-Fa-f]+$")
_FALLBACK_COLOR = "&H00FFFFFF"

STYLE_FORMAT = ("Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, "
                "OutlineColour, BackColour, Bold, Italic, Underline, StrikeOut, "
                "ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, Shadow, "
                "Alignment, MarginL, MarginR, MarginV, Encoding")
EVENT_FORMAT = "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text"


def color_to_ass(hex_color: str) -> str:
    """'#RRGGBB' or '#AARRGGBB' -> '&HAABBGGRR'."""
    color = (hex_color or "").removeprefix('#')
    if not _HEX_RE.match(color):
        return _FALLBACK_COLOR
    color = color.upper()
    if len(color) == 6:
        r, g, b = color[0:2], color[2:4], color[4:6]
        return f"&H00{b}{g}{r}"
    if len(color) == 8:
        a, r, g, b = color[0:2], color[2:4], color[4:6], color[6:8]
        return f"&H{a}{b}{g}{r}"
    return _FALLBACK_COLOR


def _flag(value: bool) -> int:
    return -1 if value else 0


def format_ass_time(ms: int) -> str:
    hours = ms // 3_600_000
    minutes = (ms % 3_600_000) // 60_000
    seconds = (ms % 60_000) // 1000
    centis = (ms % 1000) // 10
    return "%d:%02d:%02d.%02d" % (hours, minutes, seconds, centis)


def escape_ass_text(text: str) -> str:
    return (text.replace('\\', '\\\\')
                .replace('{', '\\{')
                .replace('}', '\\}')
                .replace('\n', '\\N'))


def style_line(style: SubtitleStyle, name: str = "Default") -> str:
    fields = [
        name, style.font_family, style.font_size,
        color_to_ass(style.primary_color), color_to_ass(style.secondary_color),
        color_to_ass(style.outline_color), color_to_ass(style.shadow_color),
        _flag(style.bold), _flag(style.italic), _flag(style.underline), _flag(style.strikeout),
        style.scale_x, style.scale_y, style.spacing, style.angle,
        style.border_style, style.outline_width, style.shadow_depth,
        style.alignment, style.margin_left, style.margin_right, style.margin_vertical,
        1,
    ]
    return "Style: " + ",".join(str(f) for f in fields)


def format_ass(transcript: Transcript, style: SubtitleStyle,
               width: int = DEFAULT_VIDEO_WIDTH, height: int = DEFAULT_VIDEO_HEIGHT) -> str:
    lines = [
        "[Script Info]",
        "ScriptType: v4.00+",
        f"PlayResX: {width}",
        f"PlayResY: {height}",
        "ScaledBorderAndShadow: yes",
        "YCbCr Matrix: TV.709",
        "",
        "[V4+ Styles]",
        STYLE_FORMAT,
        style_line(style),
        "",
        "[Events]",
        EVENT_FORMAT,
    ]
    for span in transcript.spans:
        start = format_ass_time(span.start_ms)
        end = format_ass_time(span.end_ms)
        lines.append(f"Dialogue: 0,{start},{end},Default,,0,0,0,,{escape_ass_text(span.text)}")
    return "\n".join(lines) + "\n"


def format_srt_time(ms: int) -> str:
    hours = ms // 3_600_000
    minutes = (ms % 3_600_000) // 60_000
    seconds = (ms % 60_000) // 1000
    return "%02d:%02d:%02d,%03d" % (hours, minutes, seconds, ms % 1000)


def format_srt(transcript: Transcript) -> str:
    blocks = []
    for n, span in enumerate(transcript.spans, start=1):
        blocks.append(f"{n}\n{format_srt_time(span.start_ms)} --> "
                      f"{format_srt_time(span.end_ms)}\n{span.text}\n")
    return "\n".join(blocks)
