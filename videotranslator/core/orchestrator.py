"""
Pipeline orchestrator.
Drives one job through download, caption check, transcription,
translation and rendering, with retries, fallbacks and checkpoints.
"""

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import AsyncIterator, Callable

from videotranslator.core.constants import (
    DEFAULT_WORKSPACE_ROOT, CHECKPOINT_MAX_AGE_HOURS, PROGRESS_CHANNEL_SIZE,
    DEFAULT_CONNECTIVITY_ENDPOINTS, ASS_FILENAME, RETRY_MAX_ATTEMPTS,
)
from videotranslator.core.models import (
    StageName, Job, Transcript, StageMetrics, PipelineResult,
    VideoFormat, WhisperModel, HardwareEncoder, RenderProgress, RenderStage,
)
from videotranslator.core.error_codes import ErrorCode, PipelineError, PipelineException
from videotranslator.core.outcomes import (
    Success, Failure, Partial, Skipped,
    Retry, RetryWithFallback, Skip, Resume, Abort,
)
from videotranslator.core.classifier import classify_exception
from videotranslator.core.recovery import decide
from videotranslator.core.checkpoint import PipelineCheckpoint, CheckpointStore
from videotranslator.core.config import PipelineConfig
from videotranslator.core.channel import stream_operation, Finished
from videotranslator.core.collaborators import (
    Downloader, Transcriber, Translator, Renderer, ProgressUpdate,
)
from videotranslator.core.dedup import deduplicate
from videotranslator.core.progress_parser import parse_progress_line, parse_duration
from videotranslator.core.subtitle_format import format_ass, format_srt
from videotranslator.core.output_writer import (
    atomic_write_text, write_subtitle_file, subtitle_path, available_path,
)
from videotranslator.core.validation import validate_video, prepare_output_directory
from videotranslator.core.cleanup import cleanup_job_artifacts
from videotranslator.core.diagnostics import check_disk_space, check_connectivity
from videotranslator.core import events as ev

logger = logging.getLogger(__name__)

_OUTCOMES = (Success, Failure, Partial, Skipped)


@dataclass
class _RunState:
    """Mutable artifacts of one execute() call."""
    job: Job
    job_id: str
    workspace: Path
    download_format: VideoFormat
    model: WhisperModel | None
    encoder: HardwareEncoder
    total_ms: int = 0
    video_path: str | None = None
    transcript: Transcript | None = None
    translated: Transcript | None = None
    checkpoint: PipelineCheckpoint | None = None
    resume_to: PipelineCheckpoint | None = None
    resumes: int = 0
    outcome: object = None
    render: RenderProgress = field(default_factory=RenderProgress)


class _ProgressTracker:
    """Keeps a stage's reported fraction non-decreasing."""

    def __init__(self):
        self.last = 0.0

    def event(self, stage: StageName, fraction: float, message: str,
              render: RenderProgress | None = None) -> ev.StageProgress:
        fraction = max(self.last, min(1.0, max(0.0, fraction)))
        self.last = fraction
        return ev.StageProgress(stage, fraction, message, render)


class PipelineOrchestrator:
    """
    Runs jobs through the five pipeline stages and streams stage events.
    One instance can run many jobs, one execute() call at a time.
    """

    def __init__(self, downloader: Downloader, transcriber: Transcriber,
                 translator: Translator, renderer: Renderer,
                 checkpoint_store: CheckpointStore,
                 config: dict | PipelineConfig | None = None,
                 policy: Callable = decide, sleep: Callable = asyncio.sleep,
                 log_sink: Callable | None = None):
        self.downloader = downloader
        self.transcriber = transcriber
        self.translator = translator
        self.renderer = renderer
        self.store = checkpoint_store
        self.config = config or {}
        self._policy = policy
        self._sleep = sleep
        self._log_sink = log_sink
        self._log = ev.EventLog(log_sink)

    # ── Config helpers ────────────────────────────────────────────────

    @property
    def workspace_root(self) -> Path:
        return Path(self.config.get('workspace_root', str(DEFAULT_WORKSPACE_ROOT)))

    @property
    def keep_debug(self) -> bool:
        return self.config.get('keep_debug_artifacts', False)

    @property
    def max_age_ms(self) -> int:
        hours = self.config.get('checkpoint_max_age_hours', CHECKPOINT_MAX_AGE_HOURS)
        return int(hours * 3600 * 1000)

    @property
    def channel_size(self) -> int:
        return self.config.get('progress_channel_size', PROGRESS_CHANNEL_SIZE)

    @property
    def min_free_disk_mb(self) -> int:
        return self.config.get('min_free_disk_mb', 0)

    @property
    def connectivity_check(self) -> bool:
        return self.config.get('connectivity_check', False)

    @property
    def endpoints(self) -> dict:
        return self.config.get('connectivity_endpoints', DEFAULT_CONNECTIVITY_ENDPOINTS)

    @property
    def log_events(self) -> list:
        """Log events of the latest run, oldest first."""
        return self._log.events

    # ── Run ───────────────────────────────────────────────────────────

    async def execute(self, job: Job,
                      checkpoint: PipelineCheckpoint | None = None) -> AsyncIterator:
        """
        Run the job, yielding stage events. Ends with exactly one
        PipelineComplete or PipelineFailed.
        """
        self._log = ev.EventLog(self._log_sink)
        run = _RunState(
            job=job,
            job_id=job.job_id,
            workspace=self.workspace_root / job.job_id,
            download_format=job.output_options.download_format,
            model=job.transcription_model,
            encoder=job.output_options.encoding.encoder,
            total_ms=job.video.duration_sec * 1000,
        )
        started = time.monotonic()
        stage = StageName.DOWNLOAD
        if checkpoint is not None:
            stage = self._resume_point(run, checkpoint)

        prev = None
        try:
            error = await self._preflight(run, stage)
            if error is not None:
                yield self._fail(error, Abort())
                return

            while stage is not None:
                if stage == StageName.TRANSCRIPTION and run.transcript is not None:
                    self._log.append(ev.InfoEvent(stage, "Using existing captions, transcription skipped"))
                    yield ev.StageSkipped(stage, "Using existing captions")
                    prev, stage = stage, stage.next()
                    continue

                async with aclosing(self._execute_stage(run, stage, prev)) as stage_events:
                    async for event in stage_events:
                        yield event

                outcome = run.outcome
                if isinstance(outcome, Skipped):
                    yield ev.StageSkipped(stage, outcome.reason)
                    prev, stage = stage, stage.next()
                    continue

                if isinstance(outcome, Failure):
                    target = run.resume_to
                    run.resume_to = None
                    if target is not None and self._can_resume(run, target):
                        prev, stage = stage, self._seed(run, target)
                        continue
                    yield self._fail(outcome.error, outcome.recovery)
                    return

                self._absorb(run, stage, outcome.value)

                if stage == StageName.RENDERING:
                    result = self._finish(run, outcome.value, started)
                    yield ev.StageSucceeded(stage, outcome.duration_ms, outcome.metrics)
                    yield ev.PipelineComplete(result)
                    return

                self._save_checkpoint(run, stage)
                yield ev.StageSucceeded(stage, outcome.duration_ms, outcome.metrics)
                prev, stage = stage, stage.next()

        except Exception as e:
            logger.error("Unexpected error in job %s: %s", run.job_id, e, exc_info=True)
            error = classify_exception(e, stage or StageName.RENDERING)
            yield self._fail(error, self._terminal_recovery(run, error))

    # ── Resume ────────────────────────────────────────────────────────

    def _resume_point(self, run: _RunState, checkpoint: PipelineCheckpoint) -> StageName:
        if not self._can_resume(run, checkpoint):
            self._log.append(ev.WarningEvent(
                None, "Checkpoint cannot be used, starting from the beginning",
                suggestion="The checkpoint is expired, complete, or its video file is gone",
            ))
            return StageName.DOWNLOAD
        stage = self._seed(run, checkpoint)
        self._log.append(ev.InfoEvent(stage, f"Resuming job {checkpoint.job_id} at {stage.display_name}"))
        return stage

    def _can_resume(self, run: _RunState, checkpoint: PipelineCheckpoint) -> bool:
        if run.resumes >= RETRY_MAX_ATTEMPTS:
            return False
        if not checkpoint.is_valid(self.max_age_ms):
            return False
        stage = checkpoint.next_stage()
        if stage is None:
            return False
        # the artifacts the next stage needs must be in the checkpoint
        if stage.order > StageName.DOWNLOAD.order and not checkpoint.downloaded_video_path:
            return False
        if stage.order > StageName.TRANSCRIPTION.order and checkpoint.transcript is None:
            return False
        if stage == StageName.RENDERING and checkpoint.translated_transcript is None:
            return False
        return True

    def _seed(self, run: _RunState, checkpoint: PipelineCheckpoint) -> StageName:
        run.resumes += 1
        run.job_id = checkpoint.job_id
        run.workspace = self.workspace_root / checkpoint.job_id
        run.video_path = checkpoint.downloaded_video_path
        run.transcript = checkpoint.transcript
        run.translated = checkpoint.translated_transcript
        run.checkpoint = checkpoint
        return checkpoint.next_stage()

    # ── Pre-flight ────────────────────────────────────────────────────

    async def _preflight(self, run: _RunState, start: StageName) -> PipelineError | None:
        job = run.job
        error, warnings = validate_video(job.video)
        if error is not None:
            return error
        for warning in warnings:
            self._log.append(ev.WarningEvent(None, warning))
        self._log.append(ev.DebugEvent(None, "Video validation passed"))

        options = job.output_options
        error = prepare_output_directory(options.output_directory)
        if error is not None:
            return error
        if options.export_srt:
            target = subtitle_path(Path(options.output_directory), job.video.title,
                                   job.video.video_id, job.target_language, "srt")
            if target.exists():
                self._log.append(ev.InfoEvent(
                    None, "Output file exists, will use alternative name",
                    {'existing': str(target), 'alternative': str(available_path(target))}))

        required = self.min_free_disk_mb
        if required > 0:
            disk = check_disk_space(self.workspace_root, required)
            if not disk["sufficient"]:
                return PipelineError(
                    code=ErrorCode.DISK_FULL,
                    stage=start,
                    message="Not enough free disk space",
                    technical_details=f"{disk['free_mb']} MB free, {required} MB required",
                    suggestion="Free up disk space and try again",
                )

        if self.connectivity_check and start.order <= StageName.TRANSLATION.order:
            results = await asyncio.to_thread(check_connectivity, self.endpoints)
            for name, info in results.items():
                if not info["reachable"]:
                    self._log.append(ev.WarningEvent(
                        None, f"{name} is unreachable",
                        suggestion="Check your internet connection",
                    ))
        return None

    # ── Stage execution ───────────────────────────────────────────────

    async def _execute_stage(self, run: _RunState, stage: StageName,
                             prev: StageName | None) -> AsyncIterator:
        """
        Run one stage to a final outcome, applying the recovery policy
        between attempts. The outcome is left in run.outcome:
        Success, Skipped, or Failure carrying the recovery for the caller.
        """
        yield ev.StageStarted(stage, prev)
        self._log.append(ev.StageTransition(stage, f"Starting {stage.display_name}", prev))

        tracker = _ProgressTracker()
        started = time.monotonic()
        attempt = 0
        retries = 0
        retried = 0
        fallback = None

        while True:
            attempt += 1
            async with aclosing(self._attempt(run, stage, tracker)) as attempt_events:
                async for event in attempt_events:
                    yield event

            outcome = run.outcome
            if isinstance(outcome, Skipped):
                return
            if isinstance(outcome, Success):
                break

            if isinstance(outcome, Partial):
                pct = int(outcome.completed_fraction * 100)
                self._log.append(ev.WarningEvent(
                    stage, f"{stage.display_name} only partially completed ({pct}%)"))
                if not outcome.recoverable:
                    run.outcome = Failure(outcome.error,
                                          self._terminal_recovery(run, outcome.error), attempt)
                    return
            error = outcome.error
            self._log.append(ev.DebugEvent(stage, f"{error.code.value}: {error.technical_details}"))

            if stage == StageName.CAPTION_CHECK:
                self._log.append(ev.WarningEvent(
                    stage, f"Caption check failed, transcribing instead: {error.message}"))
                run.outcome = Success(None)
                break

            strategy = self._policy(error)
            # a fallback cursor survives only while the policy keeps choosing the same list
            if not (isinstance(strategy, RetryWithFallback) and fallback is not None
                    and strategy.options == fallback.options):
                fallback = None
            if not isinstance(strategy, Retry):
                retried = 0

            if isinstance(strategy, Retry):
                # max_attempts counts every call, the first one included
                if retried + 1 >= strategy.max_attempts:
                    self._log.append(ev.ErrorEvent(
                        stage, f"Giving up after {retried + 1} attempts", error))
                    run.outcome = Failure(error, self._terminal_recovery(run, error), attempt)
                    return
                retried += 1
                retries += 1
                delay_ms = strategy.delay_for(retried)
                self._log.append(ev.RecoveryAttempt(
                    stage, f"Retrying {stage.display_name} in {delay_ms / 1000:.1f}s",
                    retried + 1, strategy.max_attempts, "retry"))
                await self._sleep(delay_ms / 1000)
                continue

            if isinstance(strategy, RetryWithFallback):
                fallback = self._next_fallback(run, stage, fallback or strategy,
                                               first=fallback is None)
                if fallback is None:
                    self._log.append(ev.ErrorEvent(stage, "No fallback options left", error))
                    run.outcome = Failure(error, self._terminal_recovery(run, error), attempt)
                    return
                option = fallback.current()
                self._apply_fallback(run, stage, option)
                retries += 1
                self._log.append(ev.RecoveryAttempt(
                    stage, f"Retrying {stage.display_name} with {option.display_name}",
                    retries, len(fallback.options), "fallback"))
                continue

            if isinstance(strategy, Skip):
                if stage == StageName.TRANSCRIPTION and run.transcript is not None:
                    self._log.append(ev.InfoEvent(stage, f"Skipping {stage.display_name}: {strategy.reason}"))
                    run.outcome = Skipped(strategy.reason)
                    return
                self._log.append(ev.ErrorEvent(stage, f"{stage.display_name} cannot be skipped", error))
                run.outcome = Failure(error, self._terminal_recovery(run, error), attempt)
                return

            if isinstance(strategy, Resume):
                run.resume_to = strategy.checkpoint
                run.outcome = Failure(error, self._terminal_recovery(run, error), attempt)
                return

            run.outcome = Failure(error, self._terminal_recovery(run, error), attempt)
            return

        if tracker.last < 1.0:
            yield tracker.event(stage, 1.0, "Complete")

        duration_ms = int((time.monotonic() - started) * 1000)
        value = run.outcome.value
        items = len(value) if isinstance(value, Transcript) else None
        metrics = StageMetrics(duration_ms=duration_ms, items_processed=items, retry_count=retries)
        run.outcome = Success(value, duration_ms, metrics)
        self._log.append(ev.Metric(stage, f"{stage.display_name} took {duration_ms} ms",
                                   "stage_duration", float(duration_ms), "ms"))

    async def _attempt(self, run: _RunState, stage: StageName,
                       tracker: _ProgressTracker) -> AsyncIterator:
        """One invocation of the stage's collaborator; sets run.outcome."""
        operation = self._operation(run, stage)
        value = None
        try:
            async with aclosing(stream_operation(operation, self.channel_size)) as stream:
                async for item in stream:
                    if isinstance(item, Finished):
                        value = item.value
                        continue
                    event = self._progress_event(run, stage, item, tracker)
                    if event is not None:
                        yield event
        except PipelineException as e:
            run.outcome = Failure(e.error)
            return
        except Exception as e:
            run.outcome = Failure(classify_exception(e, stage))
            return

        run.outcome = value if isinstance(value, _OUTCOMES) else Success(value)

    def _operation(self, run: _RunState, stage: StageName):
        job = run.job
        if stage == StageName.DOWNLOAD:
            video_format = run.download_format
            return lambda report: self.downloader.download(job.video, video_format, report)
        if stage == StageName.CAPTION_CHECK:
            return lambda report: self.downloader.extract_captions(job.video, job.source_language)
        if stage == StageName.TRANSCRIPTION:
            model = run.model
            return lambda report: self.transcriber.transcribe(
                run.video_path, job.source_language, report, model)
        if stage == StageName.TRANSLATION:
            return lambda report: self.translator.translate(
                run.transcript, job.target_language, report)
        return lambda report: self._render(run, report)

    async def _render(self, run: _RunState, report) -> PipelineResult:
        options = run.job.output_options
        encoding = replace(options.encoding, encoder=run.encoder)
        run.render = RenderProgress(total_ms=run.total_ms)

        await report(replace(run.render, stage=RenderStage.GENERATING_SUBTITLES))
        markup = format_ass(run.translated, options.style,
                            encoding.video_width, encoding.video_height)
        ass_path = atomic_write_text(run.workspace / ASS_FILENAME, markup)

        return await self.renderer.render(run.video_path, run.translated, options.style,
                                          encoding, str(ass_path), report)

    def _progress_event(self, run: _RunState, stage: StageName, item,
                        tracker: _ProgressTracker) -> ev.StageProgress | None:
        if isinstance(item, ProgressUpdate):
            return tracker.event(stage, item.fraction, item.message)

        if isinstance(item, RenderProgress):
            run.render = item
            return tracker.event(stage, item.fraction, item.message, item)

        if isinstance(item, str):
            duration = parse_duration(item)
            if duration:
                run.total_ms = duration
                return None
            updated = parse_progress_line(item, run.total_ms, run.render)
            if updated is None:
                return None
            run.render = updated
            return tracker.event(stage, updated.fraction, updated.message, updated)

        logger.debug("Ignoring progress item %r", item)
        return None

    # ── Fallbacks ─────────────────────────────────────────────────────

    def _current_option(self, run: _RunState, stage: StageName):
        if stage == StageName.DOWNLOAD:
            return run.download_format
        if stage == StageName.TRANSCRIPTION:
            return run.model
        if stage == StageName.RENDERING:
            return run.encoder
        return None

    def _next_fallback(self, run: _RunState, stage: StageName,
                       fallback: RetryWithFallback, first: bool) -> RetryWithFallback | None:
        """The next option to try, skipping the one that just failed."""
        if stage not in (StageName.DOWNLOAD, StageName.TRANSCRIPTION, StageName.RENDERING):
            return None
        if fallback.current_index >= len(fallback.options):
            return None
        if not first:
            if not fallback.has_more_fallbacks:
                return None
            fallback = fallback.advance()
        failed = self._current_option(run, stage)
        while fallback.current() == failed:
            if not fallback.has_more_fallbacks:
                return None
            fallback = fallback.advance()
        return fallback

    def _apply_fallback(self, run: _RunState, stage: StageName, option):
        if stage == StageName.DOWNLOAD:
            run.download_format = option
        elif stage == StageName.TRANSCRIPTION:
            run.model = option
        elif stage == StageName.RENDERING:
            run.encoder = option

    # ── Artifacts and checkpoints ─────────────────────────────────────

    def _deduplicated(self, transcript: Transcript, stage: StageName) -> Transcript:
        result = deduplicate(transcript.spans)
        self._log.append(ev.DebugEvent(
            stage,
            f"Deduplicated subtitles: {result.removed_count} of {result.original_count} removed",
            {'original_count': str(result.original_count),
             'removed_count': str(result.removed_count)},
        ))
        return Transcript(result.spans, transcript.language)

    def _absorb(self, run: _RunState, stage: StageName, value):
        if stage == StageName.DOWNLOAD:
            run.video_path = str(value)
        elif stage == StageName.CAPTION_CHECK:
            if isinstance(value, Transcript) and not value.is_empty():
                run.transcript = self._deduplicated(value, stage)
        elif stage == StageName.TRANSCRIPTION:
            run.transcript = self._deduplicated(value, stage)
        elif stage == StageName.TRANSLATION:
            run.translated = value

    def _save_checkpoint(self, run: _RunState, stage: StageName):
        job = run.job
        checkpoint = PipelineCheckpoint(
            job_id=run.job_id,
            last_completed_stage=stage,
            video=job.video,
            target_language=job.target_language,
            output_options=job.output_options,
            downloaded_video_path=run.video_path,
            transcript=run.transcript,
            translated_transcript=run.translated,
        )
        path = self.store.save(checkpoint)
        run.checkpoint = checkpoint
        self._log.append(ev.CheckpointSaved(stage, str(path) if path else ""))

    def _finish(self, run: _RunState, result: PipelineResult, started: float) -> PipelineResult:
        job = run.job
        options = job.output_options
        if options.export_srt:
            srt_path = write_subtitle_file(
                format_srt(run.translated), Path(options.output_directory),
                job.video.title, job.video.video_id, job.target_language, "srt",
            )
            if not result.subtitle_file:
                result = replace(result, subtitle_file=str(srt_path))
        if not result.duration_ms:
            result = replace(result, duration_ms=int((time.monotonic() - started) * 1000))

        self.store.delete(run.job_id)
        cleanup_job_artifacts(run.workspace, self.keep_debug)
        self._log.append(ev.InfoEvent(StageName.RENDERING, f"Finished: {result.video_file}"))
        return result

    def _terminal_recovery(self, run: _RunState, error: PipelineError):
        if run.checkpoint is not None and error.recoverable:
            return Resume(run.checkpoint)
        return Abort()

    def _fail(self, error: PipelineError, recovery) -> ev.PipelineFailed:
        self._log.append(ev.ErrorEvent(error.stage, error.to_user_message(), error))
        return ev.PipelineFailed(error, recovery)
