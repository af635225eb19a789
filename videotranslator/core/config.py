"""
Pipeline configuration manager.
Stores settings in a JSON file under the app data directory.
"""

import json
import logging
from pathlib import Path

from videotranslator.core.constants import (
    CONFIG_PATH, DEFAULT_CHECKPOINT_DIR, DEFAULT_WORKSPACE_ROOT,
    CHECKPOINT_MAX_AGE_HOURS, PROGRESS_CHANNEL_SIZE,
    DEFAULT_CONNECTIVITY_ENDPOINTS,
)

# Validation bounds
_MAX_AGE_MIN_HOURS = 1
_MAX_AGE_MAX_HOURS = 168      # one week
_CHANNEL_MIN = 1
_CHANNEL_MAX = 1024

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'checkpoint_dir': str(DEFAULT_CHECKPOINT_DIR),
    'workspace_root': str(DEFAULT_WORKSPACE_ROOT),
    'checkpoint_max_age_hours': CHECKPOINT_MAX_AGE_HOURS,
    'keep_debug_artifacts': False,
    'progress_channel_size': PROGRESS_CHANNEL_SIZE,
    'min_free_disk_mb': 0,
    'connectivity_check': False,
    'connectivity_endpoints': dict(DEFAULT_CONNECTIVITY_ENDPOINTS),
}


def _clamped_int(key: str, value, default: int, low: int, high: int | None = None) -> int:
    try:
        value = int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s %r, using default", key, value)
        return default
    if high is not None:
        value = min(high, value)
    return max(low, value)


class PipelineConfig:
    """Manages pipeline configuration stored as JSON. Loaded on first use."""

    def __init__(self, config_path: Path | None = None):
        self.path = Path(config_path or CONFIG_PATH)
        self._data: dict | None = None

    @property
    def data(self) -> dict:
        if self._data is None:
            self.load()
        return self._data

    def load(self):
        """Load config from disk, merging with defaults."""
        data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    data[key] = self._validate(key, value)
            except (OSError, ValueError, AttributeError) as e:
                logger.warning("Failed to load config: %s", e)
        self._data = data

    def invalidate(self):
        """Drop the cached values; the next access re-reads the file."""
        self._data = None

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self.data, f, indent=2)

    def get(self, key: str, default=None):
        return self.data.get(key, default)

    def set(self, key: str, value):
        self.data[key] = self._validate(key, value)
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key == 'checkpoint_max_age_hours':
            return _clamped_int(key, value, CHECKPOINT_MAX_AGE_HOURS,
                                _MAX_AGE_MIN_HOURS, _MAX_AGE_MAX_HOURS)

        if key == 'progress_channel_size':
            return _clamped_int(key, value, PROGRESS_CHANNEL_SIZE, _CHANNEL_MIN, _CHANNEL_MAX)

        if key == 'min_free_disk_mb':
            return _clamped_int(key, value, 0, 0)

        if key in ('keep_debug_artifacts', 'connectivity_check'):
            return bool(value)

        if key == 'connectivity_endpoints':
            if not isinstance(value, dict):
                logger.warning("Invalid connectivity_endpoints %r, using defaults", value)
                return dict(DEFAULT_CONNECTIVITY_ENDPOINTS)
            return {str(k): str(v) for k, v in value.items()}

        return value

    def as_dict(self) -> dict:
        return dict(self.data)

    @property
    def checkpoint_dir(self) -> Path:
        return Path(self.data['checkpoint_dir'])

    @property
    def workspace_root(self) -> Path:
        return Path(self.data['workspace_root'])

    @property
    def keep_debug_artifacts(self) -> bool:
        return self.data.get('keep_debug_artifacts', False)

    @keep_debug_artifacts.setter
    def keep_debug_artifacts(self, value: bool):
        self.set('keep_debug_artifacts', value)
