from __future__ import annotations

import asyncio
import logging
import random
from concurrent.futures import Future
from enum import Enum
from typing import Any, Callable, Protocol

import discord

from core.cleanup import delete_message, send_text
from core.config import Settings
from core.errors import EmptyRankData, PlaybackTransientError, VoiceConnectionError
from core.idle_timer import IdleTimer
from core.music_state import BoundedHistory, PlayQueue, PlayRequest, SearchRegistry, Track
from core.rank_store import RankStore
from core.sampler import RecommendationSampler

logger = logging.getLogger(__name__)


class Catalog(Protocol):
    async def resolve_titles(self, ids: list[str]) -> dict[str, str]: ...

    async def resolve_tracks(self, ids: list[str]) -> list[Track]: ...


class AudioSourceFactory(Protocol):
    async def open(self, track_id: str) -> discord.AudioSource: ...


class SessionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    PLAYING = "playing"
    RETRYING = "retrying"
    IDLE_PENDING_DISCONNECT = "idle_pending_disconnect"
    DISCONNECTED = "disconnected"


class PlaybackSession:
    """Queue, voice connection and player for one guild.

    Every entry point takes the session lock, so transitions never
    interleave even though each one may suspend on network calls. Player
    callbacks carry the attempt number they were created for; an event
    from an older attempt (a stream stopped by a disconnect or replaced by
    a retry) is ignored.
    """

    def __init__(
        self,
        guild_id: int,
        *,
        catalog: Catalog,
        audio: AudioSourceFactory,
        rank_store: RankStore,
        settings: Settings,
        rng: random.Random | None = None,
    ) -> None:
        self.guild_id = guild_id
        self.catalog = catalog
        self.audio = audio
        self.settings = settings
        self.rank_store = rank_store

        self.queue = PlayQueue()
        self.history = BoundedHistory(settings.history_size)
        self.searches = SearchRegistry(retract=delete_message)
        self.sampler = RecommendationSampler(
            catalog,
            rank_store,
            self.queue,
            self.history,
            min_duration=settings.sample_min_duration,
            max_duration=settings.sample_max_duration,
            max_rounds=settings.sample_max_rounds,
            rng=rng,
        )
        self.idle_timer = IdleTimer(self._on_idle_timeout)
        self.rng = rng

        self.state = SessionState.IDLE
        self.current: PlayRequest | None = None
        self.voice_client: Any | None = None
        self.auto_recommend = False

        self._voice_channel: Any | None = None
        self._text_channel: Any | None = None
        self._lock = asyncio.Lock()
        self._attempt = 0
        self._skip_requested = False

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def now_playing(self) -> Track | None:
        return self.current.track if self.current else None

    # Commands

    async def enqueue(self, requests: list[PlayRequest]) -> None:
        if not requests:
            return

        async with self._lock:
            self.idle_timer.disarm()
            self.queue.extend(requests)
            self._remember_channels(requests[-1].voice_channel, requests[-1].text_channel)
            if self.current is None:
                await self._start()

    async def skip(self) -> bool:
        async with self._lock:
            voice_client = self.voice_client
            if self.current is None or voice_client is None:
                return False
            if not voice_client.is_playing() and not voice_client.is_paused():
                return False

            # The player's after callback drives the next transition.
            self._skip_requested = True
            voice_client.stop()
            logger.info("Skip requested for %s in guild %s", self.current.track.id, self.guild_id)
            return True

    def list_queue(self) -> list[PlayRequest]:
        return self.queue.peek_all()

    def shuffle_queue(self) -> int:
        self.queue.shuffle(self.rng)
        return len(self.queue)

    async def sample_and_enqueue(self, count: int, voice_channel: Any, text_channel: Any) -> list[Track]:
        async with self._lock:
            if not len(self.rank_store):
                raise EmptyRankData()

            tracks = await self.sampler.sample(count, self._playing_ids())
            if not tracks:
                return tracks

            self.idle_timer.disarm()
            self.queue.extend([PlayRequest(track, voice_channel, text_channel) for track in tracks])
            self._remember_channels(voice_channel, text_channel)
            if self.current is None:
                await self._start()
            return tracks

    async def toggle_auto_recommend(self, voice_channel: Any, text_channel: Any) -> bool:
        async with self._lock:
            self.auto_recommend = not self.auto_recommend
            logger.info(
                "Auto-recommend %s in guild %s", "enabled" if self.auto_recommend else "disabled", self.guild_id
            )
            if not self.auto_recommend:
                return False

            self._remember_channels(voice_channel, text_channel)
            if self.current is None:
                self.idle_timer.disarm()
                await self._start()
            return True

    async def rank_report(self, limit: int = 50) -> list[tuple[str, int]]:
        if not len(self.rank_store):
            raise EmptyRankData()

        top = self.rank_store.top(limit)
        titles = await self.catalog.resolve_titles([track_id for track_id, _ in top])
        return [(titles[track_id], count) for track_id, count in top if track_id in titles]

    async def disconnect(self, reason: str) -> None:
        async with self._lock:
            await self._disconnect(reason)

    # Events

    async def handle_track_end(self, attempt: int, error: Exception | None = None) -> None:
        async with self._lock:
            if attempt != self._attempt or self.current is None:
                logger.debug("Ignoring stale track end in guild %s (attempt %s)", self.guild_id, attempt)
                return

            request = self.current
            if error is not None:
                if await self._on_playback_error(request, error) and await self._play(request):
                    return
                await self._start(failed={request.track.id})
                return

            if self._skip_requested:
                logger.info("Skipped %s in guild %s", request.track.id, self.guild_id)
            else:
                count = self.rank_store.increment(request.track.id)
                self.history.push(request.track.id)
                logger.info("Finished %s in guild %s (%d plays)", request.track.id, self.guild_id, count)

            self.current = None
            await self._start()

    async def handle_peer_disconnect(self) -> None:
        async with self._lock:
            if self.voice_client is None:
                return
            await self._disconnect("voice connection closed")

    async def disconnect_if_alone(self) -> bool:
        voice_client = self.voice_client
        channel = getattr(voice_client, "channel", None)
        if channel is None:
            return False

        bot_id = voice_client.user.id if voice_client.user else None
        if any(member.id != bot_id for member in channel.members):
            return False

        await self.disconnect("alone in voice channel")
        return True

    async def flush_ranks(self) -> bool:
        return await self.rank_store.flush()

    # Transitions, called with the lock held

    async def _start(self, failed: set[str] | None = None) -> None:
        """Play the next queued or recommended request, or go idle.

        Requests dropped after repeated errors are tracked in ``failed`` so
        the loop moves on instead of recommending them again, and auto
        recommendation gives up after a few consecutive drops.
        """
        failed = set(failed or ())
        while True:
            request = self.queue.dequeue_next()
            if request is None and self.auto_recommend:
                if len(failed) < self.settings.max_failed_recommendations:
                    request = await self._recommend_one(failed)
                else:
                    logger.warning(
                        "Auto-recommend paused in guild %s after %d failed tracks", self.guild_id, len(failed)
                    )

            if request is None:
                self.current = None
                self.state = SessionState.IDLE_PENDING_DISCONNECT
                self.idle_timer.arm(self.settings.idle_disconnect_seconds)
                logger.info(
                    "Nothing left to play in guild %s, leaving in %ss",
                    self.guild_id,
                    self.settings.idle_disconnect_seconds,
                )
                return

            if await self._play(request):
                return
            failed.add(request.track.id)

    async def _recommend_one(self, exclude: set[str]) -> PlayRequest | None:
        if self._voice_channel is None:
            return None

        tracks = await self.sampler.sample(1, [*self._playing_ids(), *exclude])
        if not tracks:
            logger.info("Auto-recommend found nothing to play in guild %s", self.guild_id)
            return None
        return PlayRequest(tracks[0], self._voice_channel, self._text_channel)

    async def _play(self, request: PlayRequest) -> bool:
        """Start ``request``, replaying it while stream errors allow.

        Returns False once the request has been dropped and the caller
        should move on. A failed voice connect tears the session down and
        returns True, since there is nothing left to advance.
        """
        self.current = request
        track = request.track

        while True:
            self._skip_requested = False
            self._attempt += 1
            attempt = self._attempt

            if self.voice_client is None or not self.voice_client.is_connected():
                self.state = SessionState.CONNECTING
                try:
                    self.voice_client = await self._connect(request.voice_channel)
                except VoiceConnectionError as exc:
                    logger.error("%s", exc)
                    await send_text(
                        request.text_channel,
                        "Could not connect to the voice channel. The queue has been cleared.",
                    )
                    await self._disconnect("voice connection failed")
                    return True

            try:
                source = await self.audio.open(track.id)
                try:
                    self.voice_client.play(source, after=self._after_play(attempt))
                except discord.ClientException as exc:
                    source.cleanup()
                    raise PlaybackTransientError(str(exc)) from exc
            except PlaybackTransientError as exc:
                if await self._on_playback_error(request, exc):
                    continue
                return False

            self.state = SessionState.PLAYING
            self.idle_timer.disarm()
            logger.info("Playing %s (%s) in guild %s", track.id, track.title, self.guild_id)
            await send_text(request.text_channel, f"Now playing: **{track.describe()}**")
            return True

    async def _on_playback_error(self, request: PlayRequest, error: Exception) -> bool:
        """Report a playback error; True when ``request`` should be replayed."""
        title = request.track.title
        if request.error_count < self.settings.max_play_errors:
            request.error_count += 1
            self.state = SessionState.RETRYING
            logger.warning(
                "Playback error on %s in guild %s, retry %d/%d: %s",
                request.track.id,
                self.guild_id,
                request.error_count,
                self.settings.max_play_errors,
                error,
            )
            await send_text(
                request.text_channel,
                f"Playback error on **{title}**, retrying ({request.error_count}/{self.settings.max_play_errors}).",
            )
            return True

        logger.error("Dropping %s in guild %s after repeated errors: %s", request.track.id, self.guild_id, error)
        await send_text(request.text_channel, f"Skipping **{title}** after repeated playback errors.")
        self.current = None
        return False

    async def _disconnect(self, reason: str) -> None:
        self._attempt += 1
        self.idle_timer.disarm()
        self.queue.clear()
        self.current = None
        self.auto_recommend = False
        self._skip_requested = False

        voice_client, self.voice_client = self.voice_client, None
        if voice_client is not None:
            if voice_client.is_playing() or voice_client.is_paused():
                voice_client.stop()
            if voice_client.is_connected():
                await voice_client.disconnect(force=True)

        self.state = SessionState.DISCONNECTED
        logger.info("Disconnected in guild %s: %s", self.guild_id, reason)

    async def _on_idle_timeout(self) -> None:
        async with self._lock:
            if self.state is not SessionState.IDLE_PENDING_DISCONNECT or self.current is not None or self.queue:
                return
            await self._disconnect("idle timeout")

    # Helpers

    async def _connect(self, channel: Any) -> Any:
        existing = getattr(channel.guild, "voice_client", None)
        if existing is not None and existing.is_connected():
            return existing

        logger.info("Connecting to voice channel %s in guild %s", channel.id, self.guild_id)
        try:
            return await channel.connect(timeout=self.settings.connect_timeout_seconds, self_deaf=True)
        except (asyncio.TimeoutError, discord.ClientException) as exc:
            raise VoiceConnectionError(f"Voice connect failed in guild {self.guild_id}: {exc}") from exc

    def _after_play(self, attempt: int) -> Callable[[Exception | None], None]:
        loop = asyncio.get_running_loop()

        def after(error: Exception | None) -> None:
            future = asyncio.run_coroutine_threadsafe(self.handle_track_end(attempt, error), loop)
            future.add_done_callback(self._log_callback_failure)

        return after

    def _log_callback_failure(self, future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Track end handling failed in guild %s", self.guild_id, exc_info=exc)

    def _playing_ids(self) -> list[str]:
        return [self.current.track.id] if self.current else []

    def _remember_channels(self, voice_channel: Any, text_channel: Any) -> None:
        self._voice_channel = voice_channel
        self._text_channel = text_channel
