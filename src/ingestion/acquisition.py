"""Caption acquisition: fetch a video's caption track through fallback strategies.

Strategies are tried in order and the first one that yields a parseable
WebVTT track wins:

1. the official YouTube Data API captions list + download,
2. the caption URL embedded in the watch page's player configuration,
3. a fixed set of direct timed-text URLs differing only by language.

No retries or backoff happen here; a durable caller re-runs the whole step.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from typing import Any

import httpx

from src.ingestion.models import CaptionFragment
from src.ingestion.parsers import parse_vtt
from src.pipeline_config import AcquisitionFailureReason

logger = logging.getLogger(__name__)

CAPTIONS_API_URL = "https://www.googleapis.com/youtube/v3/captions"
WATCH_URL = "https://www.youtube.com/watch"
TIMEDTEXT_URL = "https://www.youtube.com/api/timedtext"

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

PLAYER_RESPONSE_RE = re.compile(r"var ytInitialPlayerResponse\s*=\s*(\{.*?\});", re.DOTALL)

PREFERRED_PLAYER_LANGUAGES = ("en", "en-US")

# Language parameters probed by the direct timed-text strategy; None means "no lang".
TIMEDTEXT_LANGUAGES: tuple[str | None, ...] = ("en", "en-US", None)

# Caption-list priority: manual English, ASR English, any ASR, anything.
TRACK_PRIORITY: tuple[Callable[[dict[str, Any]], bool], ...] = (
    lambda s: s.get("language") == "en" and s.get("trackKind") != "ASR",
    lambda s: s.get("language") == "en" and s.get("trackKind") == "ASR",
    lambda s: s.get("trackKind") == "ASR",
    lambda s: True,
)

_REASON_RANK = {
    AcquisitionFailureReason.NO_CAPTIONS: 0,
    AcquisitionFailureReason.QUOTA_OR_AUTH: 1,
    AcquisitionFailureReason.TRANSIENT: 2,
}


class CaptionsUnavailableError(Exception):
    """Raised when every caption strategy failed for a video."""

    def __init__(self, youtube_video_id: str, reason: AcquisitionFailureReason, message: str) -> None:
        self.youtube_video_id = youtube_video_id
        self.reason = reason
        self.message = message
        super().__init__(f"No captions for {youtube_video_id} ({reason.value}): {message}")


class StrategyFailed(Exception):
    """One strategy gave up; carries the classification used on exhaustion."""

    def __init__(self, reason: AcquisitionFailureReason, message: str) -> None:
        self.reason = reason
        self.message = message
        super().__init__(message)


def classify_status(status_code: int) -> AcquisitionFailureReason:
    """Map a non-2xx HTTP status to a failure reason."""
    if status_code in (401, 403):
        return AcquisitionFailureReason.QUOTA_OR_AUTH
    if status_code == 429 or status_code >= 500:
        return AcquisitionFailureReason.TRANSIENT
    return AcquisitionFailureReason.NO_CAPTIONS


def select_caption_track(items: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Pick the best track from a captions-list response's ``items``."""
    for matches in TRACK_PRIORITY:
        for item in items:
            if matches(item.get("snippet") or {}):
                return item
    return None


def select_player_track(tracks: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Pick an English track from the player config, else the first one."""
    for track in tracks:
        if track.get("languageCode") in PREFERRED_PLAYER_LANGUAGES:
            return track
    return tracks[0] if tracks else None


def extract_player_response(html: str) -> dict[str, Any] | None:
    """Pull the ``ytInitialPlayerResponse`` JSON object out of a watch page."""
    match = PLAYER_RESPONSE_RE.search(html)
    if not match:
        return None
    try:
        data = json.loads(match.group(1))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def with_vtt_format(url: str) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}fmt=vtt"


class CaptionAcquirer:
    """Fetch caption fragments for a YouTube video ID."""

    def __init__(self, http_client: httpx.Client, api_key: str = "") -> None:
        self._http = http_client
        self._api_key = api_key

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _get(self, url: str, **kwargs: Any) -> httpx.Response:
        """GET *url*, converting transport errors and non-2xx into StrategyFailed."""
        try:
            response = self._http.get(url, **kwargs)
        except httpx.HTTPError as exc:
            raise StrategyFailed(AcquisitionFailureReason.TRANSIENT, f"{type(exc).__name__}: {exc}") from exc
        if not response.is_success:
            raise StrategyFailed(
                classify_status(response.status_code),
                f"HTTP {response.status_code} from {response.request.url.host}",
            )
        return response

    def _fetch_vtt(self, url: str, **kwargs: Any) -> list[CaptionFragment]:
        """Download and parse a VTT track; an empty or non-VTT body is a failure."""
        content = self._get(url, **kwargs).text
        if not content or "WEBVTT" not in content:
            raise StrategyFailed(AcquisitionFailureReason.NO_CAPTIONS, "Response is not a WebVTT track")
        fragments = parse_vtt(content)
        if not fragments:
            raise StrategyFailed(AcquisitionFailureReason.NO_CAPTIONS, "WebVTT track has no cues")
        return fragments

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def fetch_from_captions_api(self, youtube_video_id: str) -> list[CaptionFragment]:
        """Strategy 1: official captions list, best track, VTT download."""
        if not self._api_key:
            raise StrategyFailed(AcquisitionFailureReason.NO_CAPTIONS, "YouTube API key not configured")

        listing = self._get(
            CAPTIONS_API_URL,
            params={"part": "snippet", "videoId": youtube_video_id, "key": self._api_key},
        )
        try:
            items = listing.json().get("items") or []
        except (ValueError, AttributeError) as exc:
            raise StrategyFailed(AcquisitionFailureReason.NO_CAPTIONS, f"Malformed captions list: {exc}") from exc

        track = select_caption_track(items)
        if track is None or not track.get("id"):
            raise StrategyFailed(AcquisitionFailureReason.NO_CAPTIONS, "No caption tracks listed")

        snippet = track.get("snippet") or {}
        logger.info(
            "Selected caption track %s (%s, %s) for %s",
            snippet.get("name"),
            snippet.get("language"),
            snippet.get("trackKind"),
            youtube_video_id,
        )
        return self._fetch_vtt(
            f"{CAPTIONS_API_URL}/{track['id']}",
            params={"key": self._api_key, "tfmt": "vtt"},
        )

    def fetch_from_player_config(self, youtube_video_id: str) -> list[CaptionFragment]:
        """Strategy 2: caption URL embedded in the watch page's player config."""
        page = self._get(
            WATCH_URL,
            params={"v": youtube_video_id},
            headers={"User-Agent": BROWSER_USER_AGENT},
        )
        player = extract_player_response(page.text)
        if player is None:
            raise StrategyFailed(AcquisitionFailureReason.NO_CAPTIONS, "No player configuration on watch page")

        renderer = (player.get("captions") or {}).get("playerCaptionsTracklistRenderer") or {}
        track = select_player_track(renderer.get("captionTracks") or [])
        if track is None or not track.get("baseUrl"):
            raise StrategyFailed(AcquisitionFailureReason.NO_CAPTIONS, "Player configuration lists no caption tracks")

        return self._fetch_vtt(with_vtt_format(track["baseUrl"]))

    def fetch_from_timedtext(self, youtube_video_id: str) -> list[CaptionFragment]:
        """Strategy 3: probe direct timed-text URLs, one language at a time."""
        worst: StrategyFailed | None = None
        for lang in TIMEDTEXT_LANGUAGES:
            params = {"v": youtube_video_id, "fmt": "vtt"}
            if lang:
                params["lang"] = lang
            try:
                return self._fetch_vtt(TIMEDTEXT_URL, params=params)
            except StrategyFailed as exc:
                logger.debug("Timed-text probe lang=%s failed for %s: %s", lang, youtube_video_id, exc.message)
                if worst is None or _REASON_RANK[exc.reason] > _REASON_RANK[worst.reason]:
                    worst = exc
        if worst is None:
            raise StrategyFailed(AcquisitionFailureReason.NO_CAPTIONS, "No timed-text languages to probe")
        raise StrategyFailed(worst.reason, f"No working timed-text URL ({worst.message})")

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def acquire(self, youtube_video_id: str) -> list[CaptionFragment]:
        """Return the fragments of the first strategy that succeeds.

        Raises:
            CaptionsUnavailableError: Every strategy failed. ``reason`` is the
                most actionable failure seen: transient beats quota/auth beats
                no captions.
        """
        strategies: list[tuple[str, Callable[[str], list[CaptionFragment]]]] = [
            ("captions_api", self.fetch_from_captions_api),
            ("player_config", self.fetch_from_player_config),
            ("timedtext", self.fetch_from_timedtext),
        ]

        reason = AcquisitionFailureReason.NO_CAPTIONS
        messages: list[str] = []
        for name, strategy in strategies:
            try:
                fragments = strategy(youtube_video_id)
            except StrategyFailed as exc:
                logger.info("Caption strategy %s failed for %s: %s", name, youtube_video_id, exc.message)
                messages.append(f"{name}: {exc.message}")
                if _REASON_RANK[exc.reason] > _REASON_RANK[reason]:
                    reason = exc.reason
                continue
            logger.info("Fetched %d caption cues for %s via %s", len(fragments), youtube_video_id, name)
            return fragments

        raise CaptionsUnavailableError(youtube_video_id, reason, "; ".join(messages))
