"""
Checkpoints: the artifacts a job has produced so far, persisted as one
JSON file per job so an interrupted run can pick up where it stopped.
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path

from videotranslator.core.constants import (
    DEFAULT_CHECKPOINT_DIR, CHECKPOINT_SUFFIX, CHECKPOINT_MAX_AGE_MS,
)
from videotranslator.core.models import (
    StageName, Transcript, VideoDescriptor, OutputOptions,
)

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class PipelineCheckpoint:
    job_id: str
    last_completed_stage: StageName
    video: VideoDescriptor
    target_language: str
    output_options: OutputOptions
    downloaded_video_path: str | None = None
    transcript: Transcript | None = None
    translated_transcript: Transcript | None = None
    timestamp_ms: int = field(default_factory=_now_ms)

    def next_stage(self) -> StageName | None:
        return self.last_completed_stage.next()

    def is_valid(self, max_age_ms: int = CHECKPOINT_MAX_AGE_MS,
                 now_ms: int | None = None) -> bool:
        now = _now_ms() if now_ms is None else now_ms
        if now - self.timestamp_ms > max_age_ms:
            return False
        if self.downloaded_video_path and not Path(self.downloaded_video_path).exists():
            return False
        return True

    def to_dict(self) -> dict:
        return {
            'job_id': self.job_id,
            'timestamp_ms': self.timestamp_ms,
            'last_completed_stage': self.last_completed_stage.name,
            'downloaded_video_path': self.downloaded_video_path,
            'transcript': self.transcript.to_dict() if self.transcript else None,
            'translated_transcript': (self.translated_transcript.to_dict()
                                      if self.translated_transcript else None),
            'video': self.video.to_dict(),
            'target_language': self.target_language,
            'output_options': self.output_options.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PipelineCheckpoint":
        transcript = data.get('transcript')
        translated = data.get('translated_transcript')
        return cls(
            job_id=data['job_id'],
            timestamp_ms=int(data['timestamp_ms']),
            last_completed_stage=StageName[data['last_completed_stage']],
            downloaded_video_path=data.get('downloaded_video_path'),
            transcript=Transcript.from_dict(transcript) if transcript else None,
            translated_transcript=Transcript.from_dict(translated) if translated else None,
            video=VideoDescriptor.from_dict(data['video']),
            target_language=data['target_language'],
            output_options=OutputOptions.from_dict(data['output_options']),
        )


class CheckpointStore:
    """One `<job_id>.json` per job under a single directory."""

    def __init__(self, directory: Path | None = None):
        self.directory = Path(directory or DEFAULT_CHECKPOINT_DIR)

    def path_for(self, job_id: str) -> Path:
        return self.directory / f"{job_id}{CHECKPOINT_SUFFIX}"

    def save(self, checkpoint: PipelineCheckpoint) -> Path:
        """Replace the job's checkpoint file as a whole."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(checkpoint.job_id)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(checkpoint.to_dict(), indent=2, sort_keys=True),
                       encoding='utf-8')
        os.replace(tmp, path)
        logger.debug("Saved checkpoint for job %s after %s",
                     checkpoint.job_id, checkpoint.last_completed_stage.name)
        return path

    def load(self, job_id: str) -> PipelineCheckpoint | None:
        path = self.path_for(job_id)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding='utf-8'))
            return PipelineCheckpoint.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Unreadable checkpoint %s: %s", path, e)
            return None

    def delete(self, job_id: str):
        path = self.path_for(job_id)
        try:
            path.unlink()
            logger.debug("Deleted checkpoint for job %s", job_id)
        except FileNotFoundError:
            pass

    def list_job_ids(self) -> list[str]:
        if not self.directory.exists():
            return []
        return sorted(p.stem for p in self.directory.glob(f"*{CHECKPOINT_SUFFIX}"))
