"""
Timed-text deduplication.
Removes phantom segments, trims repeated words at span boundaries and
merges near-duplicate neighbours, as produced by rolling auto-captions
and speech recognisers.
"""

import logging
import re
from dataclasses import dataclass, replace

from videotranslator.core.constants import (
    PHANTOM_MAX_DURATION_MS, PHANTOM_SHORT_DURATION_MS, PHANTOM_NEXT_RATIO,
    OVERLAP_MAX_WORDS, NEAR_DUPLICATE_RATIO, ACCENTED_LETTERS,
)
from videotranslator.core.models import TimedSpan

logger = logging.getLogger(__name__)

_STRIP_RE = re.compile(f"[^a-z0-9{ACCENTED_LETTERS}]")


@dataclass(frozen=True)
class DeduplicationResult:
    spans: list[TimedSpan]
    original_count: int
    removed_count: int


def normalize_word(word: str) -> str:
    return _STRIP_RE.sub('', word.lower())


def normalized_words(text: str) -> list[str]:
    words = (normalize_word(w) for w in text.split())
    return [w for w in words if w]


def _prefix_aligned_matches(a: list[str], b: list[str]) -> int:
    """Count positions where a and b carry the same word."""
    return sum(1 for x, y in zip(a, b) if x == y)


def is_phantom(span: TimedSpan, nxt: TimedSpan) -> bool:
    """
    A phantom is a very short span whose words reappear, position for
    position, at the start of the following span.
    """
    duration = span.duration_ms
    too_short = (duration < PHANTOM_MAX_DURATION_MS or
                 (duration < PHANTOM_SHORT_DURATION_MS
                  and nxt.duration_ms > duration * PHANTOM_NEXT_RATIO))
    if not too_short:
        return False

    words = normalized_words(span.text)
    next_words = normalized_words(nxt.text)
    if not words or len(words) > len(next_words):
        return False
    return _prefix_aligned_matches(words, next_words) == len(words)


def find_overlap(text_a: str, text_b: str, max_words: int = OVERLAP_MAX_WORDS) -> int:
    """
    Length of the longest suffix of text_a (up to max_words words) that
    equals a prefix of text_b, compared on normalized words.
    """
    words_a = normalized_words(text_a)
    words_b = normalized_words(text_b)
    check_len = min(max_words, len(words_a), len(words_b))

    for i in range(check_len, 0, -1):
        if words_a[-i:] == words_b[:i]:
            return i
    return 0


def _strip_leading_words(text: str, count: int) -> str:
    """Drop the first `count` words that survive normalization."""
    raw = text.split()
    dropped = 0
    idx = 0
    while idx < len(raw) and dropped < count:
        if normalize_word(raw[idx]):
            dropped += 1
        idx += 1
    return ' '.join(raw[idx:])


def _is_near_duplicate(a: TimedSpan, b: TimedSpan) -> bool:
    words_a = normalized_words(a.text)
    words_b = normalized_words(b.text)
    shorter = min(len(words_a), len(words_b))
    if shorter == 0:
        return False
    return _prefix_aligned_matches(words_a, words_b) >= shorter * NEAR_DUPLICATE_RATIO


def _remove_phantoms_and_overlaps(spans: list[TimedSpan]) -> list[TimedSpan]:
    out: list[TimedSpan] = []
    i = 0
    while i < len(spans):
        current = spans[i]
        nxt = spans[i + 1] if i + 1 < len(spans) else None
        if nxt is None:
            out.append(current)
            break

        if is_phantom(current, nxt):
            logger.debug("Dropping phantom span at %dms: %r", current.start_ms, current.text)
            i += 1
            continue

        overlap = find_overlap(current.text, nxt.text)
        if overlap:
            out.append(current)
            remainder = _strip_leading_words(nxt.text, overlap)
            if remainder:
                out.append(replace(nxt, text=remainder))
            i += 2
            continue

        out.append(current)
        i += 1
    return out


def _merge_near_duplicates(spans: list[TimedSpan]) -> list[TimedSpan]:
    out: list[TimedSpan] = []
    for span in spans:
        if out and _is_near_duplicate(out[-1], span):
            # keep whichever carries more text, timing included
            if len(span.text) > len(out[-1].text):
                out[-1] = span
            continue
        out.append(span)
    return out


def deduplicate(spans: list[TimedSpan]) -> DeduplicationResult:
    """Deduplicate a span sequence. Input is never modified."""
    spans = list(spans)
    if not spans:
        return DeduplicationResult(spans=[], original_count=0, removed_count=0)

    # repeat until stable, so the output of one call is a fixed point
    cleaned = spans
    while True:
        passed = _merge_near_duplicates(_remove_phantoms_and_overlaps(cleaned))
        if passed == cleaned:
            break
        cleaned = passed
    reindexed = [replace(s, index=n) for n, s in enumerate(cleaned, start=1)]

    removed = len(spans) - len(reindexed)
    if removed:
        logger.debug("Deduplicated %d of %d spans", removed, len(spans))
    return DeduplicationResult(spans=reindexed, original_count=len(spans),
                               removed_count=removed)
