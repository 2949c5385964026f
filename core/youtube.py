from __future__ import annotations

import asyncio
import html
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

import aiohttp

from core.errors import LookupFailure
from core.music_state import Track

logger = logging.getLogger(__name__)

# The videos endpoint accepts at most 50 ids per request.
_MAX_IDS_PER_REQUEST = 50

_DURATION_PATTERN = re.compile(r"P(?:(\d+)D)?T?(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")
_VIDEO_ID_PATTERN = re.compile(r"(?:[?&]v=|youtu\.be/|/shorts/|/embed/)([0-9A-Za-z_-]{11})")
_PLAYLIST_ID_PATTERN = re.compile(r"[?&]list=([0-9A-Za-z_-]+)")


class QueryKind(Enum):
    SEARCH_RESULT = "search_result"
    PLAYLIST = "playlist"
    VIDEO = "video"
    KEYWORD = "keyword"


@dataclass(frozen=True, slots=True)
class PlayQuery:
    kind: QueryKind
    value: str


def parse_play_query(content: str) -> PlayQuery:
    """Classify the argument of the play command."""
    text = content.strip()
    if text.isdigit():
        return PlayQuery(QueryKind.SEARCH_RESULT, text)

    if "youtube.com" in text or "youtu.be" in text:
        playlist = _PLAYLIST_ID_PATTERN.search(text)
        if playlist:
            return PlayQuery(QueryKind.PLAYLIST, playlist.group(1))
        video = _VIDEO_ID_PATTERN.search(text)
        if video:
            return PlayQuery(QueryKind.VIDEO, video.group(1))

    return PlayQuery(QueryKind.KEYWORD, text)


def parse_duration(value: str) -> int | None:
    """Convert an ISO 8601 duration such as ``PT4M13S`` to seconds."""
    match = _DURATION_PATTERN.fullmatch(value or "")
    if not match or not any(match.groups()):
        return None
    days, hours, minutes, seconds = (int(part) if part else 0 for part in match.groups())
    return ((days * 24 + hours) * 60 + minutes) * 60 + seconds


def _chunks(ids: list[str], size: int = _MAX_IDS_PER_REQUEST) -> list[list[str]]:
    return [ids[i:i + size] for i in range(0, len(ids), size)]


class YouTubeCatalog:
    """Track metadata from the YouTube Data API v3.

    Ids the API does not return are simply missing from the results; no
    lookup problem is raised to callers.
    """

    base_url = "https://www.googleapis.com/youtube/v3"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_key: str,
        region_code: str = "KR",
        base_url: str | None = None,
    ) -> None:
        self.session = session
        self.api_key = api_key
        self.region_code = region_code
        if base_url:
            self.base_url = base_url.rstrip("/")

    async def _get(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}/{endpoint}"
        query = {**params, "key": self.api_key}
        try:
            async with self.session.get(url, params=query) as resp:
                if resp.status != 200:
                    raise LookupFailure(f"{endpoint} returned HTTP {resp.status}")
                payload: dict[str, Any] = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise LookupFailure(f"{endpoint} request failed: {exc}") from exc

        if "error" in payload:
            raise LookupFailure(f"{endpoint} error: {payload['error'].get('message', 'unknown')}")
        return payload

    async def _videos(self, part: str, ids: list[str]) -> dict[str, dict[str, Any]]:
        found: dict[str, dict[str, Any]] = {}
        for batch in _chunks(list(dict.fromkeys(ids))):
            try:
                payload = await self._get("videos", {"part": part, "id": ",".join(batch)})
            except LookupFailure as exc:
                logger.warning("Video lookup failed for %d ids: %s", len(batch), exc)
                continue
            for item in payload.get("items") or []:
                found[item.get("id", "")] = item
        return found

    async def resolve_titles(self, ids: list[str]) -> dict[str, str]:
        items = await self._videos("snippet", ids)
        titles = {}
        for video_id in ids:
            snippet = items.get(video_id, {}).get("snippet")
            if not snippet:
                logger.debug("Title lookup failed for %s", video_id)
                continue
            titles[video_id] = html.unescape(snippet.get("title", ""))
        return titles

    async def resolve_durations(self, ids: list[str]) -> dict[str, int]:
        items = await self._videos("contentDetails", ids)
        durations = {}
        for video_id in ids:
            details = items.get(video_id, {}).get("contentDetails") or {}
            seconds = parse_duration(details.get("duration", ""))
            if seconds is None:
                logger.debug("Duration lookup failed for %s", video_id)
                continue
            durations[video_id] = seconds
        return durations

    async def resolve_tracks(self, ids: list[str]) -> list[Track]:
        """Resolve ids in one batched call, keeping the input order."""
        if not ids:
            return []

        items = await self._videos("snippet,contentDetails", ids)
        tracks: list[Track] = []
        for video_id in ids:
            track = self._track_from_video(video_id, items.get(video_id))
            if track is None:
                logger.debug("Dropping unresolved video %s", video_id)
                continue
            tracks.append(track)
        return tracks

    async def search(self, keyword: str, limit: int = 10) -> list[Track]:
        try:
            payload = await self._get(
                "search",
                {
                    "part": "snippet",
                    "q": keyword,
                    "type": "video",
                    "maxResults": limit,
                    "regionCode": self.region_code,
                },
            )
        except LookupFailure as exc:
            logger.warning("Search for %r failed: %s", keyword, exc)
            return []

        titles: dict[str, str] = {}
        for item in payload.get("items") or []:
            video_id = (item.get("id") or {}).get("videoId")
            if video_id:
                titles[video_id] = html.unescape((item.get("snippet") or {}).get("title", ""))
        return await self._with_durations(titles)

    async def resolve_playlist(self, list_id: str, limit: int = 25) -> list[Track]:
        try:
            payload = await self._get(
                "playlistItems",
                {"part": "snippet", "playlistId": list_id, "maxResults": limit},
            )
        except LookupFailure as exc:
            logger.warning("Playlist %s lookup failed: %s", list_id, exc)
            return []

        titles: dict[str, str] = {}
        for item in payload.get("items") or []:
            snippet = item.get("snippet") or {}
            video_id = (snippet.get("resourceId") or {}).get("videoId")
            if video_id:
                titles[video_id] = html.unescape(snippet.get("title", ""))
        return await self._with_durations(titles)

    async def _with_durations(self, titles: dict[str, str]) -> list[Track]:
        if not titles:
            return []
        durations = await self.resolve_durations(list(titles))
        return [
            Track(id=video_id, title=title, duration_seconds=durations[video_id])
            for video_id, title in titles.items()
            if video_id in durations
        ]

    @staticmethod
    def _track_from_video(video_id: str, item: dict[str, Any] | None) -> Track | None:
        if not item:
            return None
        snippet = item.get("snippet") or {}
        details = item.get("contentDetails") or {}
        seconds = parse_duration(details.get("duration", ""))
        if not snippet.get("title") or seconds is None:
            return None
        return Track(id=video_id, title=html.unescape(snippet["title"]), duration_seconds=seconds)
