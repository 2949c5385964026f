from __future__ import annotations

import logging
from typing import Iterator

from core.config import Settings
from core.rank_store import RankRepository, RankStore
from core.session import AudioSourceFactory, Catalog, PlaybackSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """One PlaybackSession per guild, created on first use."""

    def __init__(
        self,
        *,
        catalog: Catalog,
        audio: AudioSourceFactory,
        repository: RankRepository,
        settings: Settings,
    ) -> None:
        self.catalog = catalog
        self.audio = audio
        self.repository = repository
        self.settings = settings
        self._sessions: dict[int, PlaybackSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[PlaybackSession]:
        return iter(list(self._sessions.values()))

    def find(self, guild_id: int) -> PlaybackSession | None:
        return self._sessions.get(guild_id)

    def get(self, guild_id: int) -> PlaybackSession:
        session = self._sessions.get(guild_id)
        if session is None:
            session = PlaybackSession(
                guild_id,
                catalog=self.catalog,
                audio=self.audio,
                rank_store=RankStore.load(guild_id, self.repository),
                settings=self.settings,
            )
            self._sessions[guild_id] = session
            logger.debug("Created playback session for guild %s", guild_id)
        return session

    async def flush_all(self) -> int:
        """Persist every changed rank map. Returns how many were written."""
        written = 0
        for session in self:
            if await session.flush_ranks():
                written += 1
        return written
