from __future__ import annotations

import asyncio
import logging
from typing import Any

import discord
import yt_dlp

from core.errors import PlaybackTransientError

logger = logging.getLogger(__name__)

WATCH_URL = "https://www.youtube.com/watch?v={}"

FFMPEG_BEFORE_OPTIONS = "-reconnect 1 -reconnect_streamed 1 -reconnect_delay_max 5 -nostdin"
FFMPEG_OPTIONS = "-vn"


class AudioStreamFactory:
    """Turns a video id into an audio source the voice client can play."""

    def __init__(self, cookies_path: str | None = None) -> None:
        self._ydl_opts: dict[str, Any] = {
            "format": "bestaudio/best",
            "quiet": True,
            "no_warnings": True,
            "noplaylist": True,
            "socket_timeout": 10,
            "logtostderr": False,
        }
        if cookies_path:
            self._ydl_opts["cookiefile"] = cookies_path

    def _extract_stream_url(self, track_id: str) -> str:
        with yt_dlp.YoutubeDL(self._ydl_opts) as ydl:
            info = ydl.extract_info(WATCH_URL.format(track_id), download=False)
        if not info or not info.get("url"):
            raise PlaybackTransientError(f"No audio stream for {track_id}")
        return info["url"]

    async def open(self, track_id: str) -> discord.AudioSource:
        try:
            stream_url = await asyncio.to_thread(self._extract_stream_url, track_id)
        except yt_dlp.utils.DownloadError as exc:
            raise PlaybackTransientError(f"Stream lookup failed for {track_id}: {exc}") from exc

        try:
            return discord.FFmpegOpusAudio(
                stream_url,
                before_options=FFMPEG_BEFORE_OPTIONS,
                options=FFMPEG_OPTIONS,
            )
        except discord.ClientException as exc:
            raise PlaybackTransientError(f"Could not start ffmpeg for {track_id}: {exc}") from exc
