"""
Shared fakes for the music core tests.

Discord objects are plain Mocks: a voice channel whose ``connect`` returns a
voice client, a text channel whose ``send`` is awaitable, and a catalog
backed by an in-memory dict of tracks.
"""
import random
from unittest.mock import AsyncMock, Mock

import pytest

from core.config import Settings
from core.music_state import PlayRequest, Track
from core.rank_store import RankStore
from core.session import PlaybackSession


class FakeCatalog:
    """Catalog that knows a fixed set of tracks and records every lookup."""

    def __init__(self, tracks=()):
        self.tracks = {track.id: track for track in tracks}
        self.resolve_calls = []

    async def resolve_tracks(self, ids):
        self.resolve_calls.append(list(ids))
        return [self.tracks[track_id] for track_id in ids if track_id in self.tracks]

    async def resolve_titles(self, ids):
        return {track_id: self.tracks[track_id].title for track_id in ids if track_id in self.tracks}


def make_track(track_id, duration=200):
    return Track(id=track_id, title=f"Song {track_id}", duration_seconds=duration)


@pytest.fixture
def settings():
    return Settings(idle_disconnect_seconds=60)


@pytest.fixture
def voice_client():
    client = Mock()
    client.is_connected = Mock(return_value=True)
    client.is_playing = Mock(return_value=True)
    client.is_paused = Mock(return_value=False)
    client.play = Mock()
    client.stop = Mock()
    client.disconnect = AsyncMock()
    client.user = Mock(id=1)
    client.channel = Mock(members=[])
    return client


@pytest.fixture
def voice_channel(voice_client):
    channel = Mock()
    channel.id = 100
    channel.guild = Mock(voice_client=None)
    channel.connect = AsyncMock(return_value=voice_client)
    return channel


@pytest.fixture
def text_channel():
    channel = Mock()
    channel.id = 200
    channel.send = AsyncMock()
    return channel


@pytest.fixture
def audio():
    factory = Mock()
    factory.open = AsyncMock(side_effect=lambda track_id: Mock(name=f"source-{track_id}"))
    return factory


@pytest.fixture
def catalog():
    return FakeCatalog([make_track(track_id) for track_id in "ABCDEF"])


@pytest.fixture
def rank_store():
    return RankStore(guild_id=1)


@pytest.fixture
def session(catalog, audio, rank_store, settings):
    return PlaybackSession(
        1,
        catalog=catalog,
        audio=audio,
        rank_store=rank_store,
        settings=settings,
        rng=random.Random(7),
    )


@pytest.fixture
def request_for(voice_channel, text_channel):
    def build(track_id, duration=200):
        return PlayRequest(make_track(track_id, duration), voice_channel, text_channel)

    return build
