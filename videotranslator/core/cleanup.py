"""
Cleanup: delete intermediate job files after a run completes.
"""

import shutil
import logging
from pathlib import Path

from videotranslator.core.constants import ASS_FILENAME

logger = logging.getLogger(__name__)

# Intermediate artifacts that are worth keeping for debugging
DEBUG_FILES = (ASS_FILENAME,)


def cleanup_job_artifacts(job_workspace: Path, keep_debug: bool = False):
    """
    Delete a job's workspace after completion.

    If keep_debug is True the generated subtitle markup is preserved and
    everything else (downloaded media, temp files) is removed.
    """
    job_workspace = Path(job_workspace)
    if not job_workspace.exists():
        return

    if not keep_debug:
        try:
            shutil.rmtree(job_workspace)
            logger.debug("Removed workspace: %s", job_workspace)
        except OSError as e:
            logger.warning("Failed to delete %s: %s", job_workspace, e)
        return

    for entry in job_workspace.iterdir():
        if entry.name in DEBUG_FILES:
            continue
        try:
            if entry.is_dir():
                shutil.rmtree(entry)
            else:
                entry.unlink()
            logger.debug("Deleted: %s", entry)
        except OSError as e:
            logger.warning("Failed to delete %s: %s", entry, e)
