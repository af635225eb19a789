"""
Parser for ffmpeg's `-progress` key=value stream.

ffmpeg writes one key per line in the order out_time_us / out_time_ms,
fps, bitrate, speed, progress. The ETA is computed on the speed line,
when both the current position and the speed are known.
"""

import re
from dataclasses import replace

from videotranslator.core.models import RenderProgress, RenderStage

_DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d+):(\d+)\.(\d+)")
_TIMESTAMP_RE = re.compile(r"(\d+):(\d+):(\d+)\.(\d+)")


def _fraction(current_ms: int, total_ms: int) -> float:
    if total_ms <= 0:
        return 0.0
    return max(0.0, min(1.0, current_ms / total_ms))


def _parse_timestamp(value: str) -> int | None:
    """'HH:MM:SS.ffffff' -> ms (the first three fractional digits)."""
    match = _TIMESTAMP_RE.search(value)
    if not match:
        return None
    h, m, s, frac = match.groups()
    base_ms = (int(h) * 3600 + int(m) * 60 + int(s)) * 1000
    return base_ms + int(frac.ljust(6, '0')[:3])


def _to_float(value: str) -> float | None:
    try:
        return float(value)
    except ValueError:
        return None


def _at_time(current: RenderProgress, current_ms: int, total_ms: int) -> RenderProgress:
    return replace(current,
                   fraction=_fraction(current_ms, total_ms),
                   current_ms=current_ms,
                   total_ms=total_ms,
                   stage=RenderStage.ENCODING)


def parse_progress_line(line: str, total_ms: int,
                        current: RenderProgress) -> RenderProgress | None:
    """
    Apply one progress line to the current snapshot.
    Returns the updated snapshot, or None when the line carries nothing
    usable (unknown key or unparsable value).
    """
    line = line.strip()
    if '=' not in line:
        return None
    key, _, value = line.partition('=')
    value = value.strip()

    # out_time_ms is in microseconds too, despite its name
    if key in ('out_time_us', 'out_time_ms'):
        try:
            current_us = int(value)
        except ValueError:
            return None
        return _at_time(current, current_us // 1000, total_ms)

    if key == 'out_time':
        current_ms = _parse_timestamp(value)
        if current_ms is None:
            return None
        return _at_time(current, current_ms, total_ms)

    if key == 'fps':
        fps = _to_float(value)
        return replace(current, fps=fps) if fps is not None else None

    if key == 'bitrate':
        bitrate = _to_float(value.removesuffix('kbits/s'))
        return replace(current, bitrate_kbps=bitrate) if bitrate is not None else None

    if key == 'speed':
        speed = _to_float(value.removesuffix('x'))
        if speed is None:
            return None
        eta = None
        if speed > 0 and total_ms > 0 and current.current_ms > 0:
            remaining_sec = (total_ms - current.current_ms) // 1000
            eta = max(0, int(remaining_sec / speed))
        return replace(current, speed_factor=speed, eta_seconds=eta)

    if key == 'progress':
        if value == 'end':
            return replace(current, fraction=1.0, stage=RenderStage.COMPLETE)
        if value == 'continue':
            return replace(current, stage=RenderStage.ENCODING)
        return None

    return None


def parse_duration(line: str) -> int | None:
    """Extract 'Duration: HH:MM:SS.cc' from ffmpeg's banner, in ms."""
    match = _DURATION_RE.search(line)
    if not match:
        return None
    h, m, s, cs = match.groups()
    return (int(h) * 3600 + int(m) * 60 + int(s)) * 1000 + int(cs[:2].ljust(2, '0')) * 10
