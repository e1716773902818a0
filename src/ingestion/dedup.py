"""Deduplication of merged phrases against persisted state and within a batch."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence

from src.ingestion.models import CaptionFragment, Phrase
from src.ingestion.normalize import normalize_for_comparison

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 2.0
DEFAULT_SIMILARITY_THRESHOLD = 0.9


def text_similarity(text_a: str, text_b: str) -> float:
    """Score how alike two caption texts are, from 0.0 to 1.0.

    1.0 for an exact normalised match, 0.9 when one normalised text contains
    the other, otherwise the share of the first text's words found in the
    second over the larger word count.
    """
    norm_a = normalize_for_comparison(text_a)
    norm_b = normalize_for_comparison(text_b)

    if norm_a == norm_b:
        return 1.0
    if norm_a in norm_b or norm_b in norm_a:
        return 0.9

    words_a = norm_a.split()
    words_b = set(norm_b.split())
    max_length = max(len(words_a), len(norm_b.split()))
    if max_length == 0:
        return 0.0
    common = sum(1 for word in words_a if word in words_b)
    return common / max_length


def filter_duplicates(
    video_id: int,
    candidates: Iterable[CaptionFragment],
    persisted: Sequence[Phrase],
    window_seconds: float = DEFAULT_WINDOW_SECONDS,
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> list[Phrase]:
    """Return the candidates worth inserting, as phrases of *video_id*.

    A candidate is dropped when its normalised text equals a persisted
    phrase's and their start times are less than *window_seconds* apart, or
    when it scores above *similarity_threshold* against an already accepted
    candidate starting less than *window_seconds* away. Candidates are
    considered in start-time order, so the later of two near-duplicates is the
    one dropped.
    """
    existing: dict[str, list[float]] = defaultdict(list)
    for phrase in persisted:
        existing[normalize_for_comparison(phrase.text)].append(phrase.start)

    unique: list[Phrase] = []
    for candidate in sorted(candidates, key=lambda c: (c.start, c.end)):
        normalized = normalize_for_comparison(candidate.text)
        if not normalized:
            continue

        if any(abs(start - candidate.start) < window_seconds for start in existing.get(normalized, ())):
            logger.debug("Filtered persisted duplicate %r at %.2fs", candidate.text, candidate.start)
            continue

        if any(
            abs(other.start - candidate.start) < window_seconds
            and text_similarity(candidate.text, other.text) > similarity_threshold
            for other in unique
        ):
            logger.debug("Filtered in-batch duplicate %r at %.2fs", candidate.text, candidate.start)
            continue

        unique.append(
            Phrase(video_id=video_id, text=candidate.text, start=candidate.start, end=candidate.end)
        )

    return unique
