"""
Shared constants for VideoTranslator.
Single source of truth — imported by every other module.
"""

import pathlib

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

APP_DATA_DIR = HOME / ".video-translator"
DEFAULT_CHECKPOINT_DIR = APP_DATA_DIR / "checkpoints"
DEFAULT_WORKSPACE_ROOT = APP_DATA_DIR / "jobs"
CONFIG_PATH = APP_DATA_DIR / "config.json"

CHECKPOINT_SUFFIX = ".json"

# ── Checkpoints ───────────────────────────────────────────────────────
CHECKPOINT_MAX_AGE_HOURS = 24
CHECKPOINT_MAX_AGE_MS = CHECKPOINT_MAX_AGE_HOURS * 60 * 60 * 1000

# ── Recovery policy ───────────────────────────────────────────────────
RETRY_MAX_ATTEMPTS = 3
RETRY_BACKOFF_MULTIPLIER = 2.0
RETRY_DELAY_DEFAULT_MS = 2_000
RETRY_DELAY_TIMEOUT_MS = 5_000
RETRY_DELAY_RATE_LIMIT_MS = 30_000

# ── Deduplication thresholds ──────────────────────────────────────────
PHANTOM_MAX_DURATION_MS = 100
PHANTOM_SHORT_DURATION_MS = 500
PHANTOM_NEXT_RATIO = 3
OVERLAP_MAX_WORDS = 15
NEAR_DUPLICATE_RATIO = 0.8

# Letters kept by word normalization (besides a-z / 0-9)
ACCENTED_LETTERS = "àâäéèêëïîôùûüç"

# ── Rendering ─────────────────────────────────────────────────────────
DEFAULT_VIDEO_WIDTH = 1920
DEFAULT_VIDEO_HEIGHT = 1080
DEFAULT_CRF = 23
DEFAULT_PRESET = "medium"

# ── Progress channel ──────────────────────────────────────────────────
PROGRESS_CHANNEL_SIZE = 64

# ── Classifier ────────────────────────────────────────────────────────
MAX_TECHNICAL_DETAILS_LEN = 500

# ── Pre-flight checks ─────────────────────────────────────────────────
CONNECTIVITY_TIMEOUT_SEC = 10
SLOW_RESPONSE_MS = 5_000

DEFAULT_CONNECTIVITY_ENDPOINTS = {
    "YouTube": "https://www.youtube.com",
    "LibreTranslate": "https://libretranslate.com/languages",
}

# Video limits, in seconds
MIN_VIDEO_DURATION_SEC = 5
MAX_VIDEO_DURATION_SEC = 6 * 60 * 60
LONG_VIDEO_WARNING_SEC = 2 * 60 * 60
MIN_AGE_RESTRICTION = 18

# Tries of <name>_<n>.<ext> before falling back to a timestamp suffix
MAX_RENAME_ATTEMPTS = 99

# Characters forbidden in output file names
UNSAFE_FILENAME_CHARS = r'[<>:"/\\|?*\x00-\x1f]'
MAX_FILENAME_LEN = 200

# Styled subtitle markup written into each job workspace
ASS_FILENAME = "subtitles.ass"
