"""WebVTT caption-track parser."""

from __future__ import annotations

from src.ingestion.models import CaptionFragment

# Lines that open a non-cue block when no cue is awaiting its text.
_BLOCK_HEADERS = ("WEBVTT", "NOTE", "STYLE", "REGION")


def parse_timecode(ts: str) -> float:
    """Convert a VTT timestamp (``HH:MM:SS.mmm`` or ``MM:SS.mmm``) to seconds.

    Malformed input parses to ``0.0`` instead of raising, so one bad cue cannot
    sink an otherwise usable track.
    """
    parts = ts.strip().replace(",", ".").split(":")
    try:
        if len(parts) == 3:
            hours, minutes, seconds = parts
            value = int(hours) * 3600 + int(minutes) * 60 + float(seconds)
        elif len(parts) == 2:
            minutes, seconds = parts
            value = int(minutes) * 60 + float(seconds)
        elif len(parts) == 1:
            value = float(parts[0])
        else:
            return 0.0
    except ValueError:
        return 0.0
    if value != value or value < 0:  # NaN or negative
        return 0.0
    return value


def _split_time_range(line: str) -> tuple[float, float]:
    """Return ``(start, end)`` for a ``start --> end [cue settings]`` line."""
    left, _, right = line.partition("-->")
    left_tokens = left.split()
    right_tokens = right.split()
    start = parse_timecode(left_tokens[-1]) if left_tokens else 0.0
    end = parse_timecode(right_tokens[0]) if right_tokens else 0.0
    return start, max(start, end)


def parse_vtt(content: str) -> list[CaptionFragment]:
    """Parse a WebVTT caption track into caption fragments.

    A line containing ``-->`` opens a cue; the next non-blank line is its text.
    Any further lines of the same cue, cue identifiers, and ``WEBVTT`` /
    ``NOTE`` / ``STYLE`` / ``REGION`` header lines are skipped; a cue whose
    text happens to start with one of those words is still kept. Cue settings
    after the end timestamp (``align:start position:0%``) are ignored.

    Malformed timestamps degrade to ``0.0`` rather than dropping the cue, and
    an end that precedes its start is clamped to the start.
    """
    fragments: list[CaptionFragment] = []
    pending: tuple[float, float] | None = None

    for raw_line in (content or "").splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if pending is None and line.startswith(_BLOCK_HEADERS):
            continue

        if "-->" in line:
            pending = _split_time_range(line)
        elif pending is not None:
            start, end = pending
            fragments.append(CaptionFragment(start=start, end=end, text=line))
            pending = None

    return fragments
