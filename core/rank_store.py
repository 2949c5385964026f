from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path

from core.errors import PersistenceError

logger = logging.getLogger(__name__)


class RankRepository:
    """Reads and writes one flat ``{track_id: count}`` JSON file per guild."""

    def __init__(self, directory: str | Path, prefix: str = "song_rank") -> None:
        self.directory = Path(directory)
        self.prefix = prefix

    def path_for(self, guild_id: int) -> Path:
        return self.directory / f"{self.prefix}_{guild_id}.json"

    def load(self, guild_id: int) -> dict[str, int]:
        path = self.path_for(guild_id)
        if not path.exists():
            return {}

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Could not read rank file %s: %s", path, exc)
            return {}

        if not isinstance(data, dict):
            logger.warning("Rank file %s is not an object, starting empty", path)
            return {}

        return {
            str(track_id): count
            for track_id, count in data.items()
            if isinstance(count, int) and not isinstance(count, bool) and count > 0
        }

    async def save(self, guild_id: int, counts: dict[str, int]) -> None:
        try:
            await asyncio.to_thread(self._write, self.path_for(guild_id), dict(counts))
        except OSError as exc:
            raise PersistenceError(f"Failed to write rank file for guild {guild_id}") from exc

    @staticmethod
    def _write(path: Path, counts: dict[str, int]) -> None:
        os.makedirs(path.parent, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(counts, f)
        os.replace(tmp_path, path)


class RankStore:
    """Per-guild play counts. Only naturally finished tracks are counted."""

    def __init__(
        self,
        guild_id: int,
        counts: dict[str, int] | None = None,
        repository: RankRepository | None = None,
    ) -> None:
        self.guild_id = guild_id
        self.repository = repository
        self._counts: dict[str, int] = dict(counts or {})
        self._dirty = False

    @classmethod
    def load(cls, guild_id: int, repository: RankRepository) -> RankStore:
        counts = repository.load(guild_id)
        logger.info("Loaded %d ranked tracks for guild %s", len(counts), guild_id)
        return cls(guild_id, counts, repository)

    def __len__(self) -> int:
        return len(self._counts)

    def __contains__(self, track_id: object) -> bool:
        return track_id in self._counts

    @property
    def dirty(self) -> bool:
        return self._dirty

    def increment(self, track_id: str) -> int:
        """Increment play count for a track and return new count."""
        self._counts[track_id] = self._counts.get(track_id, 0) + 1
        self._dirty = True
        return self._counts[track_id]

    def get(self, track_id: str) -> int:
        return self._counts.get(track_id, 0)

    def items(self) -> list[tuple[str, int]]:
        return list(self._counts.items())

    def top(self, limit: int = 50) -> list[tuple[str, int]]:
        """Tracks sorted by play count, highest first."""
        ranked = sorted(self._counts.items(), key=lambda item: item[1], reverse=True)
        return ranked[:limit]

    async def flush(self) -> bool:
        """Write the counts if they changed. Failures are logged, never raised."""
        if self.repository is None or not self._dirty:
            return False

        self._dirty = False
        try:
            await self.repository.save(self.guild_id, self._counts)
        except PersistenceError as exc:
            self._dirty = True
            logger.error("%s: %s", exc, exc.__cause__)
            return False

        logger.debug("Saved %d ranked tracks for guild %s", len(self._counts), self.guild_id)
        return True
