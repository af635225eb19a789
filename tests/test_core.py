#!/usr/bin/env python3
"""
Unit tests for VideoTranslator core modules.
Tests cover: error taxonomy, outcomes, classifier, recovery policy,
deduplication, progress parsing, subtitle formatting, checkpoints,
config, output writing, cleanup, diagnostics, events and the progress channel.
"""

import sys
import asyncio
import json
import random
import subprocess
import tempfile
from pathlib import Path
from unittest import mock

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

import requests

from videotranslator.core.models import (
    StageName, TimedSpan, Transcript, VideoDescriptor, OutputOptions,
    SubtitleStyle, EncodingOptions, HardwareEncoder, VideoFormat, WhisperModel,
    RenderProgress, RenderStage,
)
from videotranslator.core.error_codes import (
    ErrorCode, ErrorCategory, CATEGORY_BY_CODE, PipelineError, PipelineException,
)
from videotranslator.core.outcomes import (
    Success, Failure, Partial, Skipped, get_or_none, get_or_raise, map_outcome,
    Retry, RetryWithFallback, Abort,
)
from videotranslator.core.classifier import RawFailure, classify, classify_exception
from videotranslator.core.recovery import decide
from videotranslator.core.dedup import deduplicate, normalize_word, find_overlap
from videotranslator.core.progress_parser import parse_progress_line, parse_duration
from videotranslator.core.subtitle_format import (
    color_to_ass, format_ass_time, escape_ass_text, format_ass, format_srt,
)
from videotranslator.core.checkpoint import PipelineCheckpoint, CheckpointStore
from videotranslator.core.config import PipelineConfig
from videotranslator.core.output_writer import (
    sanitize_title, output_stem, write_subtitle_file, available_path,
)
from videotranslator.core.validation import validate_video, prepare_output_directory
from videotranslator.core.cleanup import cleanup_job_artifacts
from videotranslator.core.diagnostics import (
    check_service, check_connectivity, check_disk_space, get_diagnostics,
)
from videotranslator.core.channel import stream_operation, Finished
from videotranslator.core.collaborators import ProgressUpdate
from videotranslator.core import events as ev


def _error(code=ErrorCode.UNKNOWN, stage=StageName.DOWNLOAD, **kw):
    return PipelineError(code=code, stage=stage, message="boom", **kw)


def _spans(*items):
    return [TimedSpan(s, e, t) for s, e, t in items]


class TestStageName(unittest.TestCase):

    def test_order_and_display_name(self):
        self.assertEqual([s.order for s in StageName], [1, 2, 3, 4, 5])
        self.assertEqual(StageName.CAPTION_CHECK.display_name, "Caption Check")

    def test_from_order(self):
        self.assertEqual(StageName.from_order(3), StageName.TRANSCRIPTION)
        self.assertIsNone(StageName.from_order(6))

    def test_next(self):
        self.assertEqual(StageName.DOWNLOAD.next(), StageName.CAPTION_CHECK)
        self.assertIsNone(StageName.RENDERING.next())


class TestErrorCodes(unittest.TestCase):
    """Test error taxonomy."""

    def test_every_code_has_a_category(self):
        self.assertEqual(set(ErrorCode), set(CATEGORY_BY_CODE))

    def test_category_is_fixed(self):
        self.assertEqual(ErrorCode.RATE_LIMITED.category, ErrorCategory.API)
        self.assertEqual(ErrorCode.DISK_FULL.category, ErrorCategory.RESOURCE)
        self.assertEqual(ErrorCode.CANCELLED.category, ErrorCategory.CANCELLATION)

    def test_user_message(self):
        err = PipelineError(ErrorCode.NETWORK_TIMEOUT, StageName.TRANSLATION,
                            "Connection timed out", technical_details="read timeout",
                            suggestion="Try again")
        self.assertEqual(err.to_user_message(),
                         "Translation failed: Connection timed out\n\nSuggestion: Try again")

    def test_user_message_without_suggestion(self):
        err = _error(stage=StageName.RENDERING)
        self.assertEqual(err.to_user_message(), "Rendering failed: boom")

    def test_exception_carries_error(self):
        err = _error(ErrorCode.DISK_FULL)
        exc = PipelineException(err)
        self.assertIs(exc.error, err)
        self.assertIn("DISK_FULL", str(exc))


class TestOutcomes(unittest.TestCase):

    def test_get_or_none(self):
        self.assertEqual(get_or_none(Success(5)), 5)
        self.assertEqual(get_or_none(Partial(3, 0.5, _error())), 3)
        self.assertIsNone(get_or_none(Failure(_error())))
        self.assertIsNone(get_or_none(Skipped("no")))

    def test_get_or_raise(self):
        with self.assertRaises(PipelineException):
            get_or_raise(Failure(_error()))
        with self.assertRaises(ValueError):
            get_or_raise(Skipped("captions found"))
        self.assertEqual(get_or_raise(Success("ok")), "ok")

    def test_map(self):
        self.assertEqual(map_outcome(Success(2), lambda v: v * 10).value, 20)
        failure = Failure(_error())
        self.assertIs(map_outcome(failure, lambda v: v * 10), failure)

    def test_retry_backoff(self):
        retry = Retry(max_attempts=3, delay_ms=2000, backoff_multiplier=2.0)
        self.assertEqual(retry.delay_for(1), 2000)
        self.assertEqual(retry.delay_for(3), 8000)

    def test_fallback_cursor(self):
        fb = RetryWithFallback([WhisperModel.SMALL, WhisperModel.BASE])
        self.assertTrue(fb.has_more_fallbacks)
        self.assertEqual(fb.current(), WhisperModel.SMALL)
        fb = fb.advance()
        self.assertEqual(fb.current(), WhisperModel.BASE)
        self.assertFalse(fb.has_more_fallbacks)


class TestClassifier(unittest.TestCase):
    """Test error classification rules."""

    def _classify(self, message, stage=StageName.DOWNLOAD, **kw):
        return classify(RawFailure(message, **kw), stage)

    def test_timeout(self):
        err = self._classify("Connection timed out after 30s")
        self.assertEqual(err.code, ErrorCode.NETWORK_TIMEOUT)
        self.assertTrue(err.retryable)
        self.assertTrue(err.recoverable)

    def test_rate_limit_from_http_error(self):
        resp = requests.Response()
        resp.status_code = 429
        resp.reason = "Too Many Requests"
        exc = requests.HTTPError("429 Client Error", response=resp)
        err = classify_exception(exc, StageName.TRANSLATION)
        self.assertEqual(err.code, ErrorCode.RATE_LIMITED)
        self.assertEqual(err.stage, StageName.TRANSLATION)

    def test_server_error_needs_http_context(self):
        err = self._classify("HTTP 503 Service Unavailable", StageName.TRANSLATION)
        self.assertEqual(err.code, ErrorCode.API_ERROR)
        self.assertTrue(err.retryable)

    def test_binary_not_found_from_exit_code(self):
        exc = subprocess.CalledProcessError(127, "yt-dlp")
        err = classify_exception(exc, StageName.DOWNLOAD)
        self.assertEqual(err.code, ErrorCode.BINARY_NOT_FOUND)

    def test_process_output_is_used(self):
        exc = subprocess.CalledProcessError(1, ["yt-dlp"], output=b"ERROR: Private video")
        err = classify_exception(exc, StageName.DOWNLOAD)
        self.assertEqual(err.code, ErrorCode.PRIVATE_VIDEO)
        self.assertFalse(err.recoverable)

    def test_memory(self):
        err = classify_exception(MemoryError(), StageName.TRANSCRIPTION)
        self.assertEqual(err.code, ErrorCode.INSUFFICIENT_MEMORY)
        self.assertTrue(err.recoverable)
        self.assertFalse(err.retryable)

    def test_oom_word_boundary(self):
        self.assertEqual(self._classify("CUDA OOM while loading").code,
                         ErrorCode.INSUFFICIENT_MEMORY)
        self.assertNotEqual(self._classify("zoom level rejected").code,
                            ErrorCode.INSUFFICIENT_MEMORY)

    def test_disk_full(self):
        err = classify_exception(OSError(28, "No space left on device"), StageName.RENDERING)
        self.assertEqual(err.code, ErrorCode.DISK_FULL)

    def test_encoder_failure(self):
        err = self._classify("Error while opening encoder for output stream", StageName.RENDERING)
        self.assertEqual(err.code, ErrorCode.ENCODING_FAILED)
        self.assertTrue(err.recoverable)
        self.assertFalse(err.retryable)

    def test_crash(self):
        err = self._classify("Segmentation fault (core dumped)", StageName.TRANSCRIPTION)
        self.assertEqual(err.code, ErrorCode.PROCESS_CRASHED)

    def test_cancelled(self):
        err = classify_exception(asyncio.CancelledError(), StageName.RENDERING)
        self.assertEqual(err.code, ErrorCode.CANCELLED)

    def test_unknown_truncates_details(self):
        err = self._classify("x" * 2000)
        self.assertEqual(err.code, ErrorCode.UNKNOWN)
        self.assertFalse(err.recoverable)
        self.assertFalse(err.retryable)
        self.assertEqual(len(err.technical_details), 500)

    def test_first_match_wins(self):
        # a timeout reported by ffmpeg is still a timeout
        err = self._classify("ffmpeg: connection timed out", StageName.DOWNLOAD)
        self.assertEqual(err.code, ErrorCode.NETWORK_TIMEOUT)

    def test_timeout_option_is_not_a_timeout(self):
        err = self._classify("ffmpeg -rw_timeout 5000000 -i in.mp4: error while opening encoder",
                             StageName.RENDERING)
        self.assertEqual(err.code, ErrorCode.ENCODING_FAILED)
        self.assertFalse(err.retryable)

    def test_timeout_exception_names(self):
        err = classify_exception(TimeoutError(), StageName.TRANSLATION)
        self.assertEqual(err.code, ErrorCode.NETWORK_TIMEOUT)
        err = classify_exception(requests.exceptions.ReadTimeout("pool read"), StageName.TRANSLATION)
        self.assertEqual(err.code, ErrorCode.NETWORK_TIMEOUT)

    def test_country_mention_is_not_region_block(self):
        err = self._classify("Translation request rejected: unknown country code 'xx'",
                             StageName.TRANSLATION)
        self.assertNotEqual(err.code, ErrorCode.REGION_BLOCKED)
        self.assertEqual(err.code, ErrorCode.TRANSLATION_FAILED)
        err = self._classify("ERROR: This video is not available in your country")
        self.assertEqual(err.code, ErrorCode.REGION_BLOCKED)


class TestRecoveryPolicy(unittest.TestCase):

    def test_retry_delays(self):
        self.assertEqual(decide(_error(ErrorCode.RATE_LIMITED, retryable=True)).delay_ms, 30000)
        self.assertEqual(decide(_error(ErrorCode.NETWORK_TIMEOUT, retryable=True)).delay_ms, 5000)
        retry = decide(_error(ErrorCode.CONNECTION_REFUSED, retryable=True))
        self.assertEqual(retry, Retry(3, 2000, 2.0))

    def test_download_format_fallback(self):
        strategy = decide(_error(ErrorCode.ENCODING_FAILED, StageName.DOWNLOAD, recoverable=True))
        self.assertIsInstance(strategy, RetryWithFallback)
        self.assertEqual(strategy.options, (VideoFormat.BEST, VideoFormat.MP4_720P,
                                            VideoFormat.MP4_480P, VideoFormat.AUDIO_ONLY))

    def test_model_fallback(self):
        strategy = decide(_error(ErrorCode.INSUFFICIENT_MEMORY, StageName.TRANSCRIPTION))
        self.assertEqual(strategy.options, (WhisperModel.SMALL, WhisperModel.BASE,
                                            WhisperModel.TINY))

    def test_encoder_fallback(self):
        strategy = decide(_error(ErrorCode.ENCODING_FAILED, StageName.RENDERING))
        self.assertEqual(strategy.options, (HardwareEncoder.NONE,))

    def test_abort_otherwise(self):
        self.assertIsInstance(decide(_error(ErrorCode.PRIVATE_VIDEO)), Abort)
        self.assertIsInstance(decide(_error(ErrorCode.ENCODING_FAILED, StageName.TRANSLATION)), Abort)

    def test_classified_encoding_failure_reaches_fallback(self):
        err = classify(RawFailure("h264_nvenc: no capable devices found"), StageName.RENDERING)
        self.assertIsInstance(decide(err), RetryWithFallback)


class TestDeduplicator(unittest.TestCase):
    """Test timed-text deduplication."""

    def test_phantom_removed(self):
        result = deduplicate(_spans((0, 80, "Hi"), (80, 3000, "Hi there everyone")))
        self.assertEqual(result.spans, [TimedSpan(80, 3000, "Hi there everyone", 1)])
        self.assertEqual(result.original_count, 2)
        self.assertEqual(result.removed_count, 1)

    def test_short_span_with_other_words_kept(self):
        result = deduplicate(_spans((0, 80, "Yes"), (80, 3000, "Hi there everyone")))
        self.assertEqual(len(result.spans), 2)

    def test_overlap_trimmed(self):
        result = deduplicate(_spans((0, 2000, "the quick brown fox"),
                                    (2000, 4000, "brown fox jumps")))
        self.assertEqual([(s.start_ms, s.end_ms, s.text) for s in result.spans],
                         [(0, 2000, "the quick brown fox"), (2000, 4000, "jumps")])

    def test_fully_overlapping_span_dropped(self):
        result = deduplicate(_spans((0, 2000, "see you soon"), (2000, 3000, "you soon")))
        self.assertEqual([s.text for s in result.spans], ["see you soon"])

    def test_near_duplicates_merged(self):
        result = deduplicate(_spans((0, 1000, "the cat sat on the mat"),
                                    (1000, 2500, "the cat sat on a mat today")))
        self.assertEqual(len(result.spans), 1)
        self.assertEqual(result.spans[0].text, "the cat sat on a mat today")
        self.assertEqual(result.spans[0].index, 1)

    def test_idempotent(self):
        spans = _spans((0, 80, "Hi"), (80, 3000, "Hi there everyone"),
                       (3000, 5000, "the quick brown fox"), (5000, 7000, "brown fox jumps"),
                       (7000, 9000, "something else entirely"))
        once = deduplicate(spans)
        twice = deduplicate(once.spans)
        self.assertEqual(twice.removed_count, 0)
        self.assertEqual(twice.spans, once.spans)

    def test_trimmed_span_checked_against_next(self):
        spans = _spans((0, 1000, "z a"), (1000, 2000, "a p q"), (2000, 3000, "q"))
        once = deduplicate(spans)
        self.assertEqual([s.text for s in once.spans], ["z a", "p q"])
        self.assertEqual(deduplicate(once.spans).removed_count, 0)

    def test_idempotent_on_generated_tracks(self):
        rng = random.Random(1234)
        vocab = ["a", "b", "c", "p", "q", "z"]
        for _ in range(300):
            spans = []
            start = 0
            for _ in range(rng.randint(1, 8)):
                duration = rng.choice([50, 200, 400, 1000, 2500])
                text = " ".join(rng.choice(vocab) for _ in range(rng.randint(1, 4)))
                spans.append(TimedSpan(start, start + duration, text))
                start += duration
            once = deduplicate(spans)
            twice = deduplicate(once.spans)
            self.assertEqual(twice.removed_count, 0, spans)
            self.assertEqual(twice.spans, once.spans, spans)

    def test_input_untouched(self):
        spans = _spans((0, 80, "Hi"), (80, 3000, "Hi there everyone"))
        copy = list(spans)
        deduplicate(spans)
        self.assertEqual(spans, copy)

    def test_reindexed(self):
        result = deduplicate([TimedSpan(0, 1000, "one", 7), TimedSpan(1000, 2000, "two", 9)])
        self.assertEqual([s.index for s in result.spans], [1, 2])

    def test_empty(self):
        result = deduplicate([])
        self.assertEqual(result.spans, [])
        self.assertEqual(result.removed_count, 0)

    def test_normalization(self):
        self.assertEqual(normalize_word("Été!"), "été")
        self.assertEqual(normalize_word("Hello,"), "hello")
        self.assertEqual(find_overlap("I said: Hello, World", "hello world again"), 2)


class TestProgressParser(unittest.TestCase):
    """Test ffmpeg progress parsing."""

    def test_eta_from_speed(self):
        progress = RenderProgress()
        progress = parse_progress_line("out_time_us=1500000", 10000, progress)
        progress = parse_progress_line("speed=2.0x", 10000, progress)
        self.assertEqual(progress.current_ms, 1500)
        self.assertEqual(progress.eta_seconds, 4)
        self.assertAlmostEqual(progress.fraction, 0.15)
        self.assertEqual(progress.stage, RenderStage.ENCODING)

    def test_out_time_ms_is_microseconds(self):
        progress = parse_progress_line("out_time_ms=2000000", 10000, RenderProgress())
        self.assertEqual(progress.current_ms, 2000)

    def test_out_time_timestamp(self):
        progress = parse_progress_line("out_time=00:01:30.500000", 180000, RenderProgress())
        self.assertEqual(progress.current_ms, 90500)
        self.assertAlmostEqual(progress.fraction, 0.5027, places=3)

    def test_fps_and_bitrate(self):
        progress = parse_progress_line("fps=29.97", 1000, RenderProgress())
        progress = parse_progress_line("bitrate=1234.5kbits/s", 1000, progress)
        self.assertAlmostEqual(progress.fps, 29.97)
        self.assertAlmostEqual(progress.bitrate_kbps, 1234.5)

    def test_end(self):
        progress = parse_progress_line("progress=end", 1000, RenderProgress(fraction=0.9))
        self.assertEqual(progress.fraction, 1.0)
        self.assertEqual(progress.stage, RenderStage.COMPLETE)

    def test_fraction_clamped(self):
        progress = parse_progress_line("out_time_us=99000000", 1000, RenderProgress())
        self.assertEqual(progress.fraction, 1.0)

    def test_no_eta_without_position(self):
        progress = parse_progress_line("speed=1.5x", 10000, RenderProgress())
        self.assertIsNone(progress.eta_seconds)

    def test_unusable_lines(self):
        self.assertIsNone(parse_progress_line("frame=120", 1000, RenderProgress()))
        self.assertIsNone(parse_progress_line("fps=N/A", 1000, RenderProgress()))
        self.assertIsNone(parse_progress_line("garbage", 1000, RenderProgress()))

    def test_duration(self):
        self.assertEqual(parse_duration("  Duration: 00:01:02.50, start: 0.000000"), 62500)
        self.assertIsNone(parse_duration("Stream #0:0: Video: h264"))

    def test_message(self):
        progress = RenderProgress(fraction=0.42, speed_factor=1.5,
                                  stage=RenderStage.ENCODING, eta_seconds=63)
        self.assertEqual(progress.message, "Encoding: 42% (1.5x) - 1m 3s remaining")


class TestSubtitleFormat(unittest.TestCase):
    """Test ASS/SRT generation."""

    def test_colors(self):
        self.assertEqual(color_to_ass("#FF8000"), "&H000080FF")
        self.assertEqual(color_to_ass("#80FF8000"), "&H800080FF")
        self.assertEqual(color_to_ass("red"), "&H00FFFFFF")
        self.assertEqual(color_to_ass("#GG0000"), "&H00FFFFFF")

    def test_time(self):
        self.assertEqual(format_ass_time(3723456), "1:02:03.45")
        self.assertEqual(format_ass_time(0), "0:00:00.00")

    def test_escape(self):
        self.assertEqual(escape_ass_text("a{b}\\c\nd"), "a\\{b\\}\\\\c\\Nd")

    def test_document(self):
        transcript = Transcript([TimedSpan(0, 1500, "Bonjour\ntout le monde", 1)], "fr")
        style = SubtitleStyle(font_weight=700, italic=True)
        text = format_ass(transcript, style, width=1280, height=720)

        self.assertIn("[Script Info]", text)
        self.assertIn("PlayResX: 1280", text)
        self.assertIn("PlayResY: 720", text)
        self.assertIn("ScaledBorderAndShadow: yes", text)
        style_line = next(l for l in text.splitlines() if l.startswith("Style: "))
        fields = style_line[len("Style: "):].split(",")
        self.assertEqual(len(fields), 23)
        self.assertEqual(fields[0], "Default")
        self.assertEqual(fields[3], "&H00FFFFFF")
        self.assertEqual(fields[7:11], ["-1", "-1", "0", "0"])
        self.assertIn("Dialogue: 0,0:00:00.00,0:00:01.50,Default,,0,0,0,,Bonjour\\Ntout le monde",
                      text)

    def test_srt(self):
        transcript = Transcript([TimedSpan(0, 1500, "Hola"), TimedSpan(61000, 62250, "Adiós")], "es")
        self.assertEqual(format_srt(transcript),
                         "1\n00:00:00,000 --> 00:00:01,500\nHola\n\n"
                         "2\n00:01:01,000 --> 00:01:02,250\nAdiós\n")


class TestCheckpointStore(unittest.TestCase):
    """Test checkpoint persistence and validity."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.store = CheckpointStore(self.root / "checkpoints")
        self.video_file = self.root / "video.mp4"
        self.video_file.write_bytes(b"\x00")

    def tearDown(self):
        self.tmp.cleanup()

    def _checkpoint(self, stage=StageName.TRANSCRIPTION, **kw):
        return PipelineCheckpoint(
            job_id="job-1",
            last_completed_stage=stage,
            video=VideoDescriptor("https://youtu.be/abc", "abc", "A title", 60),
            target_language="fr",
            output_options=OutputOptions(
                output_directory=str(self.root),
                encoding=EncodingOptions(encoder=HardwareEncoder.NVENC),
                download_format=VideoFormat.MP4_720P,
            ),
            downloaded_video_path=str(self.video_file),
            transcript=Transcript([TimedSpan(0, 1000, "hello", 1)], "en"),
            **kw,
        )

    def test_round_trip(self):
        checkpoint = self._checkpoint()
        self.store.save(checkpoint)
        self.assertEqual(self.store.load("job-1"), checkpoint)

    def test_save_replaces(self):
        self.store.save(self._checkpoint(StageName.DOWNLOAD))
        self.store.save(self._checkpoint(StageName.TRANSLATION))
        self.assertEqual(self.store.load("job-1").last_completed_stage, StageName.TRANSLATION)
        self.assertEqual(list(self.store.directory.glob("*.tmp")), [])

    def test_next_stage(self):
        self.assertEqual(self._checkpoint().next_stage(), StageName.TRANSLATION)
        self.assertIsNone(self._checkpoint(StageName.RENDERING).next_stage())

    def test_invalid_when_video_deleted(self):
        checkpoint = self._checkpoint()
        self.assertTrue(checkpoint.is_valid())
        self.video_file.unlink()
        self.assertFalse(checkpoint.is_valid())

    def test_invalid_when_expired(self):
        checkpoint = self._checkpoint(timestamp_ms=0)
        self.assertFalse(checkpoint.is_valid(max_age_ms=1000, now_ms=5000))
        self.assertTrue(checkpoint.is_valid(max_age_ms=10000, now_ms=5000))

    def test_missing_and_corrupt(self):
        self.assertIsNone(self.store.load("nope"))
        self.store.directory.mkdir(parents=True)
        self.store.path_for("bad").write_text("{not json")
        with self.assertLogs("videotranslator.core.checkpoint", level="WARNING"):
            self.assertIsNone(self.store.load("bad"))

    def test_delete_and_list(self):
        self.store.save(self._checkpoint())
        self.assertEqual(self.store.list_job_ids(), ["job-1"])
        self.store.delete("job-1")
        self.store.delete("job-1")
        self.assertEqual(self.store.list_job_ids(), [])


class TestConfig(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = Path(self.tmp.name) / "config.json"

    def tearDown(self):
        self.tmp.cleanup()

    def test_defaults(self):
        config = PipelineConfig(self.path)
        self.assertEqual(config.get('checkpoint_max_age_hours'), 24)
        self.assertFalse(config.keep_debug_artifacts)

    def test_clamps(self):
        config = PipelineConfig(self.path)
        config.set('progress_channel_size', 5000)
        config.set('checkpoint_max_age_hours', 0)
        config.set('min_free_disk_mb', -5)
        self.assertEqual(config.get('progress_channel_size'), 1024)
        self.assertEqual(config.get('checkpoint_max_age_hours'), 1)
        self.assertEqual(config.get('min_free_disk_mb'), 0)

    def test_invalid_value_uses_default(self):
        config = PipelineConfig(self.path)
        with self.assertLogs("videotranslator.core.config", level="WARNING"):
            config.set('progress_channel_size', "lots")
        self.assertEqual(config.get('progress_channel_size'), 64)

    def test_persisted_and_lazy(self):
        PipelineConfig(self.path).set('keep_debug_artifacts', 1)
        config = PipelineConfig(self.path)
        self.assertTrue(config.keep_debug_artifacts)

        self.path.write_text(json.dumps({'keep_debug_artifacts': False}))
        self.assertTrue(config.keep_debug_artifacts)
        config.invalidate()
        self.assertFalse(config.keep_debug_artifacts)

    def test_as_dict_is_a_copy(self):
        config = PipelineConfig(self.path)
        data = config.as_dict()
        data['min_free_disk_mb'] = 99
        self.assertEqual(config.get('min_free_disk_mb'), 0)
        self.assertIn('connectivity_endpoints', data)

    def test_corrupt_file(self):
        self.path.write_text("{{{")
        with self.assertLogs("videotranslator.core.config", level="WARNING"):
            self.assertEqual(PipelineConfig(self.path).get('min_free_disk_mb'), 0)


class TestOutputWriter(unittest.TestCase):

    def test_sanitize_title(self):
        self.assertEqual(sanitize_title('My "Video": part 1/2'), "My_Video_part_1_2")
        self.assertNotIn('..', sanitize_title("../../etc/passwd"))
        self.assertEqual(sanitize_title(""), "")
        self.assertLessEqual(len(sanitize_title("A" * 300)), 200)

    def test_output_stem(self):
        self.assertEqual(output_stem("Talk", "abc", "fr"), "Talk_fr")
        self.assertEqual(output_stem("???", "abc", "fr"), "video_abc_fr")

    def test_write_subtitle_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_subtitle_file("1\n", Path(tmpdir) / "out", "Talk", "abc", "de", "srt")
            self.assertEqual(path.name, "Talk_de.srt")
            self.assertEqual(path.read_text(encoding='utf-8'), "1\n")

    def test_existing_subtitle_file_kept(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            first = write_subtitle_file("old\n", Path(tmpdir), "Talk", "abc", "de", "srt")
            second = write_subtitle_file("new\n", Path(tmpdir), "Talk", "abc", "de", "srt")
            self.assertEqual(second.name, "Talk_de_1.srt")
            self.assertEqual(first.read_text(encoding='utf-8'), "old\n")
            third = write_subtitle_file("x\n", Path(tmpdir), "Talk", "abc", "de", "srt",
                                        overwrite=True)
            self.assertEqual(third, first)
            self.assertEqual(first.read_text(encoding='utf-8'), "x\n")

    def test_available_path(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "Talk_fr.mp4"
            self.assertEqual(available_path(path), path)
            path.write_bytes(b"")
            (Path(tmpdir) / "Talk_fr_1.mp4").write_bytes(b"")
            self.assertEqual(available_path(path).name, "Talk_fr_2.mp4")

    def test_available_path_falls_back_to_timestamp(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "Talk_fr.srt"
            path.write_bytes(b"")
            for n in range(1, 100):
                (Path(tmpdir) / f"Talk_fr_{n}.srt").write_bytes(b"")
            alternative = available_path(path)
            self.assertFalse(alternative.exists())
            self.assertRegex(alternative.name, r"^Talk_fr_\d{13}\.srt$")


class TestValidation(unittest.TestCase):

    def _video(self, **kw):
        return VideoDescriptor("https://youtu.be/abc", "abc", "Talk", kw.pop('duration_sec', 600), **kw)

    def test_valid_video(self):
        error, warnings = validate_video(self._video())
        self.assertIsNone(error)
        self.assertEqual(warnings, [])

    def test_unknown_duration_passes(self):
        error, _ = validate_video(self._video(duration_sec=0))
        self.assertIsNone(error)

    def test_rejected_videos(self):
        cases = [
            (dict(duration_sec=2), ErrorCode.INVALID_URL),
            (dict(duration_sec=7 * 3600), ErrorCode.INVALID_URL),
            (dict(is_live=True), ErrorCode.LIVE_STREAM),
            (dict(availability="private"), ErrorCode.PRIVATE_VIDEO),
            (dict(availability="needs_auth"), ErrorCode.VIDEO_UNAVAILABLE),
            (dict(age_limit=18), ErrorCode.AGE_RESTRICTED),
            (dict(geo_blocked=True), ErrorCode.REGION_BLOCKED),
        ]
        for fields, code in cases:
            error, _ = validate_video(self._video(**fields))
            self.assertEqual(error.code, code, fields)
            self.assertEqual(error.stage, StageName.DOWNLOAD)
            self.assertFalse(error.recoverable)

    def test_long_video_warns(self):
        error, warnings = validate_video(self._video(duration_sec=3 * 3600))
        self.assertIsNone(error)
        self.assertEqual(len(warnings), 1)
        self.assertIn("180 minutes", warnings[0])

    def test_unlisted_and_teen_rating_pass(self):
        error, _ = validate_video(self._video(availability="unlisted", age_limit=13))
        self.assertIsNone(error)

    def test_creates_missing_output_directory(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            target = Path(tmpdir) / "a" / "b"
            self.assertIsNone(prepare_output_directory(target))
            self.assertTrue(target.is_dir())

    def test_output_path_is_a_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            target = Path(tmpdir) / "file.txt"
            target.write_text("x")
            error = prepare_output_directory(target)
            self.assertEqual(error.code, ErrorCode.FILE_NOT_FOUND)
            self.assertEqual(error.stage, StageName.RENDERING)

    @mock.patch("videotranslator.core.validation.os.access", return_value=False)
    def test_output_directory_not_writable(self, _access):
        with tempfile.TemporaryDirectory() as tmpdir:
            error = prepare_output_directory(tmpdir)
            self.assertEqual(error.code, ErrorCode.PERMISSION_DENIED)

    def test_video_fields_survive_dict_form(self):
        video = self._video(is_live=True, availability="private", age_limit=18, geo_blocked=True)
        self.assertEqual(VideoDescriptor.from_dict(video.to_dict()), video)
        old = {'url': video.url, 'video_id': "abc", 'title': "Talk"}
        self.assertFalse(VideoDescriptor.from_dict(old).is_live)


class TestCleanup(unittest.TestCase):

    def _workspace(self, root):
        ws = Path(root) / "job"
        (ws / "media").mkdir(parents=True)
        (ws / "media" / "video.mp4").write_bytes(b"\x00")
        (ws / "subtitles.ass").write_text("[Script Info]")
        return ws

    def test_removes_workspace(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            ws = self._workspace(tmpdir)
            cleanup_job_artifacts(ws)
            self.assertFalse(ws.exists())

    def test_keep_debug(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            ws = self._workspace(tmpdir)
            cleanup_job_artifacts(ws, keep_debug=True)
            self.assertTrue((ws / "subtitles.ass").exists())
            self.assertFalse((ws / "media").exists())

    def test_missing_workspace(self):
        cleanup_job_artifacts(Path(tempfile.gettempdir()) / "does-not-exist-vt")


class TestDiagnostics(unittest.TestCase):

    @mock.patch("videotranslator.core.diagnostics.requests.get")
    def test_reachable(self, mock_get):
        mock_get.return_value = mock.Mock(status_code=200)
        info = check_service("https://example.com")
        self.assertTrue(info["reachable"])
        self.assertEqual(info["status_code"], 200)

    @mock.patch("videotranslator.core.diagnostics.requests.get")
    def test_connection_error(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError("refused")
        info = check_service("https://example.com")
        self.assertFalse(info["reachable"])
        self.assertIn("Connection error", info["error"])

    @mock.patch("videotranslator.core.diagnostics.requests.get")
    def test_timeout(self, mock_get):
        mock_get.side_effect = requests.exceptions.Timeout("slow")
        with self.assertLogs("videotranslator.core.diagnostics", level="WARNING"):
            results = check_connectivity({"Svc": "https://example.com"})
        self.assertFalse(results["Svc"]["reachable"])

    def test_disk_space(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            info = check_disk_space(Path(tmpdir) / "not" / "yet", 0)
            self.assertTrue(info["sufficient"])
            self.assertFalse(check_disk_space(Path(tmpdir), 10 ** 12)["sufficient"])

    @mock.patch("videotranslator.core.diagnostics.requests.get")
    def test_get_diagnostics(self, mock_get):
        mock_get.return_value = mock.Mock(status_code=204)
        with tempfile.TemporaryDirectory() as tmpdir:
            info = get_diagnostics(Path(tmpdir), 0, {"Svc": "https://example.com"})
        self.assertTrue(info["disk"]["sufficient"])
        self.assertTrue(info["services"]["Svc"]["reachable"])


class TestEventLog(unittest.TestCase):

    def test_sink_and_logging(self):
        received = []
        log = ev.EventLog(received.append)
        with self.assertLogs("videotranslator.core.events", level="DEBUG") as cm:
            log.append(ev.InfoEvent(StageName.DOWNLOAD, "starting"))
            log.append(ev.WarningEvent(None, "careful"))
            log.append(ev.CheckpointSaved(StageName.DOWNLOAD, "/tmp/x.json"))
        self.assertEqual(len(received), 3)
        self.assertEqual(log.events, received)
        self.assertEqual([r.levelname for r in cm.records], ["INFO", "WARNING", "DEBUG"])

    def test_clear(self):
        log = ev.EventLog()
        log.append(ev.ErrorEvent(StageName.RENDERING, "failed"))
        self.assertEqual(len(log), 1)
        log.clear()
        self.assertEqual(len(log), 0)
        self.assertEqual(log.events, [])

    def test_builtin_names_not_shadowed(self):
        for name in ("Warning", "Error"):
            self.assertFalse(hasattr(ev, name), name)
        self.assertTrue(issubclass(ev.WarningEvent, ev.LogEvent))


class TestChannel(unittest.IsolatedAsyncioTestCase):

    async def test_items_then_result(self):
        async def operation(report):
            for i in range(3):
                await report(ProgressUpdate(i / 3))
            return 42

        items = [item async for item in stream_operation(operation, maxsize=1)]
        self.assertEqual([i.fraction for i in items[:3]], [0, 1 / 3, 2 / 3])
        self.assertEqual(items[-1], Finished(42))

    async def test_error_propagates(self):
        async def operation(report):
            await report(ProgressUpdate(0.1))
            raise ValueError("bad input")

        with self.assertRaises(ValueError):
            async for _ in stream_operation(operation):
                pass

    async def test_close_cancels_operation(self):
        cancelled = asyncio.Event()

        async def operation(report):
            await report(ProgressUpdate(0.1))
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        stream = stream_operation(operation)
        first = await stream.__anext__()
        self.assertEqual(first.fraction, 0.1)
        await stream.aclose()
        self.assertTrue(cancelled.is_set())


if __name__ == '__main__':
    unittest.main()
