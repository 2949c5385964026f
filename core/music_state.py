from __future__ import annotations

import logging
import random
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Iterator

from core.errors import NoActiveSearch, OutOfRange

logger = logging.getLogger(__name__)


def format_duration(seconds: int) -> str:
    if seconds <= 0:
        return "0:00"
    mins, secs = divmod(seconds, 60)
    hours, mins = divmod(mins, 60)
    if hours:
        return f"{hours}:{mins:02d}:{secs:02d}"
    return f"{mins}:{secs:02d}"


@dataclass(frozen=True, slots=True)
class Track:
    id: str
    title: str
    duration_seconds: int

    @property
    def duration_text(self) -> str:
        return format_duration(self.duration_seconds)

    def describe(self) -> str:
        return f"{self.title}({self.duration_text})"


@dataclass(slots=True)
class PlayRequest:
    track: Track
    voice_channel: Any
    text_channel: Any
    error_count: int = 0


@dataclass(slots=True)
class SearchResultSet:
    tracks: tuple[Track, ...]
    text_channel: Any
    message: Any | None = None


class PlayQueue:
    """Pending play requests for one guild, in arrival order."""

    def __init__(self) -> None:
        self._items: Deque[PlayRequest] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[PlayRequest]:
        return iter(self._items)

    def enqueue(self, request: PlayRequest) -> None:
        self._items.append(request)

    def extend(self, requests: list[PlayRequest]) -> None:
        self._items.extend(requests)

    def dequeue_next(self) -> PlayRequest | None:
        if not self._items:
            return None
        return self._items.popleft()

    def peek_all(self) -> list[PlayRequest]:
        return list(self._items)

    def contains(self, track_id: str) -> bool:
        return any(request.track.id == track_id for request in self._items)

    def shuffle(self, rng: random.Random | None = None) -> None:
        items = list(self._items)
        (rng or random).shuffle(items)
        self._items = deque(items)

    def clear(self) -> None:
        self._items.clear()


class BoundedHistory:
    """Recently finished track ids. The oldest id drops out once full."""

    def __init__(self, capacity: int = 50) -> None:
        self.capacity = capacity
        self._ids: Deque[str] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, track_id: object) -> bool:
        return track_id in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def push(self, track_id: str) -> None:
        self._ids.append(track_id)


async def _no_retract(_: Any) -> None:
    return None


@dataclass
class SearchRegistry:
    """Latest keyword search per user, waiting for a "play N" follow up."""

    retract: Callable[[Any], Awaitable[None]] = _no_retract
    _results: dict[int, SearchResultSet] = field(default_factory=dict)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._results

    def get(self, user_id: int) -> SearchResultSet | None:
        return self._results.get(user_id)

    async def record(self, user_id: int, result_set: SearchResultSet) -> None:
        previous = self._results.get(user_id)
        self._results[user_id] = result_set
        if previous is not None and previous.message is not None:
            logger.debug("Replacing search results for user %s", user_id)
            await self.retract(previous.message)

    async def resolve(self, user_id: int, index: int) -> Track:
        result_set = self._results.get(user_id)
        if result_set is None:
            raise NoActiveSearch()
        if not 1 <= index <= len(result_set.tracks):
            raise OutOfRange(f"Pick a number between 1 and {len(result_set.tracks)}.")

        del self._results[user_id]
        if result_set.message is not None:
            await self.retract(result_set.message)
        return result_set.tracks[index - 1]
