"""Fragment merging: collapse re-emitted live/auto captions into phrases.

Live and auto-generated captions re-emit the same line as it grows word by
word, or overlap consecutive cues by a few words. Without merging, one spoken
phrase would be indexed many times at slightly different boundaries.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace

from src.ingestion.models import CaptionFragment
from src.ingestion.normalize import normalize_for_comparison

DEFAULT_LEEWAY_MS = 2000
DEFAULT_OVERLAP_WORDS = 3


def _keep_longer(text_a: str, text_b: str) -> str:
    return text_b if len(text_b) > len(text_a) else text_a


def attempt_text_merge(
    text_a: str,
    text_b: str,
    overlap_words: int = DEFAULT_OVERLAP_WORDS,
) -> str | None:
    """Merge two ordinary caption texts, or return ``None`` if they are unrelated.

    Rules, first match wins:

    1. Progressive reveal: one text is a strictly shorter case-insensitive
       prefix of the other; keep the longer.
    2. Punctuation-tolerant equality; keep the longer (more punctuated) one.
    3. Progressive reveal after punctuation stripping.
    4. Stitching: the last up to *overlap_words* words of *text_a* equal the
       first words of *text_b*; append the non-overlapping rest of *text_b*.
    """
    norm_a = (text_a or "").strip()
    norm_b = (text_b or "").strip()

    if not norm_a:
        return norm_b
    if not norm_b:
        return norm_a

    lower_a = norm_a.lower()
    lower_b = norm_b.lower()

    # 1. Progressive reveal
    if len(lower_a) < len(lower_b) and lower_b.startswith(lower_a):
        return norm_b
    if len(lower_b) < len(lower_a) and lower_a.startswith(lower_b):
        return norm_a

    # 2. and 3. need something left after punctuation is stripped
    bare_a = normalize_for_comparison(norm_a)
    bare_b = normalize_for_comparison(norm_b)
    if bare_a and bare_b:
        if bare_a == bare_b:
            return _keep_longer(norm_a, norm_b)
        if len(bare_a) < len(bare_b) and bare_b.startswith(bare_a):
            return norm_b
        if len(bare_b) < len(bare_a) and bare_a.startswith(bare_b):
            return norm_a

    # 4. Stitching, longest overlap first
    words_a = norm_a.split()
    words_b = norm_b.split()
    for k in range(min(len(words_a), len(words_b), overlap_words), 0, -1):
        suffix = [normalize_for_comparison(w) for w in words_a[-k:]]
        prefix = [normalize_for_comparison(w) for w in words_b[:k]]
        if suffix == prefix and all(suffix):
            return " ".join(words_a + words_b[k:])

    return None


def merge_pair(
    current: CaptionFragment,
    candidate: CaptionFragment,
    leeway_ms: int = DEFAULT_LEEWAY_MS,
    overlap_words: int = DEFAULT_OVERLAP_WORDS,
) -> CaptionFragment | None:
    """Decide whether *candidate* folds into the *current* accumulator.

    Returns the new accumulator, or ``None`` when *current* must be emitted
    and *candidate* starts a new one.
    """
    if candidate.start * 1000 > current.end * 1000 + leeway_ms:
        return None

    if current.is_special or candidate.is_special:
        if current.is_special and candidate.is_special and current.text == candidate.text:
            return replace(current, end=max(current.end, candidate.end))
        return None

    merged_text = attempt_text_merge(current.text, candidate.text, overlap_words)
    if merged_text is None:
        return None
    return replace(current, text=merged_text, end=max(current.end, candidate.end))


def merge_fragments(
    fragments: Iterable[CaptionFragment],
    leeway_ms: int = DEFAULT_LEEWAY_MS,
    overlap_words: int = DEFAULT_OVERLAP_WORDS,
) -> list[CaptionFragment]:
    """Merge fragments in one left-to-right sweep ordered by (start, end).

    Args:
        fragments: Cleaned caption fragments, in any order.
        leeway_ms: Largest gap between the accumulator's end and a candidate's
            start for the two to be considered at all.
        overlap_words: Longest word overlap tried when stitching.

    Returns:
        Consolidated fragments, ordered by start time.
    """
    ordered = sorted(fragments, key=lambda f: (f.start, f.end))
    if not ordered:
        return []

    merged: list[CaptionFragment] = []
    current = ordered[0]
    for candidate in ordered[1:]:
        combined = merge_pair(current, candidate, leeway_ms, overlap_words)
        if combined is None:
            merged.append(current)
            current = candidate
        else:
            current = combined
    merged.append(current)

    return merged
