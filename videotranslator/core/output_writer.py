"""
Output writer: file naming and atomic writes for subtitle artifacts.
"""

import logging
import os
import re
import time
from pathlib import Path

from videotranslator.core.constants import (
    UNSAFE_FILENAME_CHARS, MAX_FILENAME_LEN, MAX_RENAME_ATTEMPTS,
)

logger = logging.getLogger(__name__)


def sanitize_title(title: str) -> str:
    """Sanitize a video title for use as a file name."""
    if not title:
        return ""
    safe = re.sub(UNSAFE_FILENAME_CHARS, '_', title)
    safe = safe.replace('..', '')
    safe = re.sub(r'[_\s]+', '_', safe).strip('_')
    if len(safe) > MAX_FILENAME_LEN:
        safe = safe[:MAX_FILENAME_LEN].rstrip('_')
    return safe.strip('.')


def output_stem(title: str, video_id: str, language: str) -> str:
    """`<title>_<lang>`, falling back to `video_<id>_<lang>`."""
    name = sanitize_title(title) or f"video_{video_id}"
    return f"{name}_{language}"


def atomic_write_text(path: Path, text: str) -> Path:
    """Write via a temp file and rename, so readers never see half a file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(text, encoding='utf-8')
    os.replace(tmp, path)
    return path


def subtitle_path(output_dir: Path, title: str, video_id: str,
                  language: str, extension: str) -> Path:
    return Path(output_dir) / f"{output_stem(title, video_id, language)}.{extension}"


def available_path(path: Path) -> Path:
    """
    `path` if it is free, else the first free `<stem>_<n><suffix>`,
    else a millisecond timestamp suffix.
    """
    path = Path(path)
    if not path.exists():
        return path
    for n in range(1, MAX_RENAME_ATTEMPTS + 1):
        candidate = path.with_name(f"{path.stem}_{n}{path.suffix}")
        if not candidate.exists():
            return candidate
    return path.with_name(f"{path.stem}_{int(time.time() * 1000)}{path.suffix}")


def write_subtitle_file(text: str, output_dir: Path, title: str, video_id: str,
                        language: str, extension: str, overwrite: bool = False) -> Path:
    """
    Write <output_dir>/<title>_<lang>.<ext>. An existing file is kept and
    the new one gets a numbered name, unless overwrite is set.
    Returns the path to the written file.
    """
    path = subtitle_path(output_dir, title, video_id, language, extension)
    if not overwrite:
        path = available_path(path)
    atomic_write_text(path, text)
    logger.info("Wrote subtitles: %s", path)
    return path
