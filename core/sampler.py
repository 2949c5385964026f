from __future__ import annotations

import logging
import random
from typing import Iterable, Protocol

from core.music_state import BoundedHistory, PlayQueue, Track
from core.rank_store import RankStore

logger = logging.getLogger(__name__)


class TrackResolver(Protocol):
    async def resolve_tracks(self, ids: list[str]) -> list[Track]: ...


class RecommendationSampler:
    """Picks tracks to play next, weighted by how often each one finished.

    A track with count 3 is three times as likely to be drawn as one with
    count 1. Tracks already queued, recently played, or drawn earlier in the
    same call are skipped. Each round resolves the drawn ids through the
    catalog and drops tracks outside the duration window; short rounds are
    topped up until ``max_rounds`` is reached.
    """

    def __init__(
        self,
        catalog: TrackResolver,
        rank_store: RankStore,
        queue: PlayQueue,
        history: BoundedHistory,
        *,
        min_duration: int = 60,
        max_duration: int = 480,
        max_rounds: int = 6,
        rng: random.Random | None = None,
    ) -> None:
        self.catalog = catalog
        self.rank_store = rank_store
        self.queue = queue
        self.history = history
        self.min_duration = min_duration
        self.max_duration = max_duration
        self.max_rounds = max_rounds
        self.rng = rng or random.Random()

    def _pool(self) -> list[str]:
        pool = [track_id for track_id, count in self.rank_store.items() for _ in range(count)]
        self.rng.shuffle(pool)
        return pool

    def _draw(self, count: int, drawn: set[str], exclude: set[str]) -> list[str]:
        picked: list[str] = []
        for track_id in self._pool():
            if len(picked) >= count:
                break
            if track_id in drawn or track_id in exclude:
                continue
            if self.queue.contains(track_id) or track_id in self.history:
                continue
            picked.append(track_id)
            drawn.add(track_id)
        return picked

    def _suitable(self, track: Track) -> bool:
        return self.min_duration <= track.duration_seconds <= self.max_duration

    async def sample(self, count: int, exclude: Iterable[str] = ()) -> list[Track]:
        """Return up to ``count`` distinct tracks; fewer if the ranks run dry."""
        excluded = set(exclude)
        drawn: set[str] = set()
        picked: list[Track] = []

        for round_no in range(self.max_rounds):
            wanted = count - len(picked)
            if wanted <= 0:
                break

            ids = self._draw(wanted, drawn, excluded)
            if not ids:
                logger.debug("Rank pool exhausted after %d round(s)", round_no)
                break

            tracks = await self.catalog.resolve_tracks(ids)
            suitable = [track for track in tracks if self._suitable(track)]
            if len(suitable) < len(ids):
                logger.debug(
                    "Round %d: %d of %d drawn tracks usable", round_no + 1, len(suitable), len(ids)
                )
            picked.extend(suitable[:wanted])

        return picked
