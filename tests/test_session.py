"""
Unit tests for PlaybackSession

Drives the state machine through its events directly:
- enqueue / start / natural end
- skip and error retry (rank is only credited on natural end)
- idle timer arming and forced disconnects
- auto-recommend and sampled enqueues
"""
import asyncio
import random
from unittest.mock import Mock

import pytest

from core.config import Settings
from core.errors import EmptyRankData, PlaybackTransientError
from core.rank_store import RankStore
from core.session import PlaybackSession, SessionState


def queued_ids(session):
    return [request.track.id for request in session.list_queue()]


def sent_texts(text_channel):
    return [call.args[0] for call in text_channel.send.await_args_list]


class TestStart:
    @pytest.mark.asyncio
    async def test_start_takes_queue_head(self, session, request_for, voice_channel, voice_client):
        await session.enqueue([request_for("T1"), request_for("T2")])

        assert session.current.track.id == "T1"
        assert queued_ids(session) == ["T2"]
        assert session.state is SessionState.PLAYING
        voice_channel.connect.assert_awaited_once()
        voice_client.play.assert_called_once()

    @pytest.mark.asyncio
    async def test_announces_now_playing(self, session, request_for, text_channel):
        await session.enqueue([request_for("A")])

        assert sent_texts(text_channel) == ["Now playing: **Song A(3:20)**"]

    @pytest.mark.asyncio
    async def test_enqueue_while_playing_does_not_restart(self, session, request_for, voice_client):
        await session.enqueue([request_for("A")])
        await session.enqueue([request_for("B")])

        assert session.current.track.id == "A"
        assert queued_ids(session) == ["B"]
        voice_client.play.assert_called_once()

    @pytest.mark.asyncio
    async def test_connection_reused_across_tracks(self, session, request_for, voice_channel):
        await session.enqueue([request_for("A"), request_for("B")])
        await session.handle_track_end(session.attempt)

        assert session.current.track.id == "B"
        voice_channel.connect.assert_awaited_once()


class TestNaturalEnd:
    @pytest.mark.asyncio
    async def test_credits_rank_and_history(self, session, request_for):
        await session.enqueue([request_for("A"), request_for("B")])

        await session.handle_track_end(session.attempt)

        assert session.rank_store.get("A") == 1
        assert "A" in session.history
        assert session.current.track.id == "B"

    @pytest.mark.asyncio
    async def test_stale_event_ignored(self, session, request_for):
        await session.enqueue([request_for("A"), request_for("B")])
        stale = session.attempt - 1

        await session.handle_track_end(stale)

        assert session.rank_store.get("A") == 0
        assert session.current.track.id == "A"

    @pytest.mark.asyncio
    async def test_player_callback_reaches_session(self, session, request_for, voice_client):
        await session.enqueue([request_for("A")])
        after = voice_client.play.call_args.kwargs["after"]

        await asyncio.to_thread(after, None)
        await asyncio.sleep(0.05)

        assert session.rank_store.get("A") == 1
        assert session.current is None
        session.idle_timer.disarm()


class TestSerialization:
    """Entry points wait for an in-flight transition to finish."""

    @pytest.mark.asyncio
    async def test_events_wait_while_connecting(
        self, session, request_for, voice_channel, voice_client
    ):
        release = asyncio.Event()

        async def slow_connect(*args, **kwargs):
            await release.wait()
            return voice_client

        voice_channel.connect.side_effect = slow_connect
        first, second = request_for("A"), request_for("B")

        starting = asyncio.create_task(session.enqueue([first]))
        await asyncio.sleep(0.01)
        assert session.state is SessionState.CONNECTING

        queued = asyncio.create_task(session.enqueue([second]))
        stale = asyncio.create_task(session.handle_track_end(session.attempt - 1))
        await asyncio.sleep(0.01)

        assert voice_client.play.call_count == 0
        assert queued_ids(session) == []

        release.set()
        await asyncio.gather(starting, queued, stale)

        assert voice_client.play.call_count == 1
        assert session.current is first
        assert queued_ids(session) == ["B"]
        assert session.rank_store.get("A") == 0
        voice_channel.connect.assert_awaited_once()


class TestSkip:
    @pytest.mark.asyncio
    async def test_skip_does_not_credit_rank(self, session, request_for, voice_client):
        await session.enqueue([request_for("A"), request_for("B")])

        assert await session.skip() is True
        voice_client.stop.assert_called_once()
        await session.handle_track_end(session.attempt)

        assert session.rank_store.get("A") == 0
        assert "A" not in session.history
        assert session.current.track.id == "B"

    @pytest.mark.asyncio
    async def test_skip_with_nothing_playing(self, session):
        assert await session.skip() is False

    @pytest.mark.asyncio
    async def test_next_track_after_skip_is_credited(self, session, request_for):
        await session.enqueue([request_for("A"), request_for("B")])
        await session.skip()
        await session.handle_track_end(session.attempt)

        await session.handle_track_end(session.attempt)

        assert session.rank_store.get("B") == 1


class TestPlaybackErrors:
    @pytest.mark.asyncio
    async def test_error_retries_same_request(self, session, request_for, voice_client, text_channel):
        await session.enqueue([request_for("T1"), request_for("T2")])
        session.current.error_count = 2

        await session.handle_track_end(session.attempt, RuntimeError("stream reset"))

        assert session.current.track.id == "T1"
        assert session.current.error_count == 3
        assert voice_client.play.call_count == 2
        assert "Playback error on **Song T1**, retrying (3/3)." in sent_texts(text_channel)

    @pytest.mark.asyncio
    async def test_error_at_limit_drops_request(self, session, request_for, text_channel):
        await session.enqueue([request_for("T1"), request_for("T2")])
        session.current.error_count = 2
        await session.handle_track_end(session.attempt, RuntimeError("first"))

        await session.handle_track_end(session.attempt, RuntimeError("second"))

        assert session.current.track.id == "T2"
        assert session.rank_store.get("T1") == 0
        assert "T1" not in session.history
        assert "Skipping **Song T1** after repeated playback errors." in sent_texts(text_channel)

    @pytest.mark.asyncio
    async def test_stream_failures_exhaust_retries(self, session, request_for, audio):
        def open_stream(track_id):
            if track_id == "A":
                raise PlaybackTransientError("no stream")
            return object()

        audio.open.side_effect = open_stream

        await session.enqueue([request_for("A"), request_for("B")])

        opened = [call.args[0] for call in audio.open.await_args_list]
        assert opened == ["A", "A", "A", "A", "B"]
        assert session.current.track.id == "B"
        assert session.rank_store.get("A") == 0


class TestIdleTimer:
    @pytest.mark.asyncio
    async def test_armed_when_queue_empties(self, session, request_for):
        await session.enqueue([request_for("A")])
        assert not session.idle_timer.armed

        await session.handle_track_end(session.attempt)

        assert session.idle_timer.armed
        assert session.state is SessionState.IDLE_PENDING_DISCONNECT
        assert session.current is None
        session.idle_timer.disarm()

    @pytest.mark.asyncio
    async def test_command_before_expiry_cancels_disconnect(self, session, request_for, voice_client):
        await session.enqueue([request_for("A")])
        await session.handle_track_end(session.attempt)
        assert session.idle_timer.armed

        await session.enqueue([request_for("B")])

        assert not session.idle_timer.armed
        assert session.current.track.id == "B"
        voice_client.disconnect.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expiry_disconnects(self, catalog, audio, rank_store, request_for, voice_client):
        session = PlaybackSession(
            1,
            catalog=catalog,
            audio=audio,
            rank_store=rank_store,
            settings=Settings(idle_disconnect_seconds=0.01),
        )
        await session.enqueue([request_for("A")])
        await session.handle_track_end(session.attempt)

        await asyncio.sleep(0.05)

        assert session.state is SessionState.DISCONNECTED
        assert session.voice_client is None
        voice_client.disconnect.assert_awaited_once_with(force=True)
        assert not session.idle_timer.armed


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_peer_disconnect_resets_session(self, session, request_for, voice_client):
        await session.enqueue([request_for("A"), request_for("B")])
        session.auto_recommend = True
        voice_client.is_connected.return_value = False

        await session.handle_peer_disconnect()

        assert session.state is SessionState.DISCONNECTED
        assert session.current is None
        assert queued_ids(session) == []
        assert session.auto_recommend is False
        assert session.voice_client is None
        voice_client.stop.assert_called_once()
        voice_client.disconnect.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_end_event_after_disconnect_is_ignored(self, session, request_for):
        await session.enqueue([request_for("A")])
        attempt = session.attempt
        await session.disconnect("leave command")

        await session.handle_track_end(attempt)

        assert session.rank_store.get("A") == 0
        assert not session.idle_timer.armed

    @pytest.mark.asyncio
    async def test_rank_and_history_survive_disconnect(self, session, request_for):
        await session.enqueue([request_for("A"), request_for("B")])
        await session.handle_track_end(session.attempt)

        await session.disconnect("leave command")

        assert session.rank_store.get("A") == 1
        assert "A" in session.history

    @pytest.mark.asyncio
    async def test_connect_failure_forces_disconnect(self, session, request_for, voice_channel, text_channel):
        voice_channel.connect.side_effect = asyncio.TimeoutError()

        await session.enqueue([request_for("A"), request_for("B")])

        assert session.state is SessionState.DISCONNECTED
        assert session.current is None
        assert queued_ids(session) == []
        assert sent_texts(text_channel) == ["Could not connect to the voice channel. The queue has been cleared."]

    @pytest.mark.asyncio
    async def test_reconnects_after_disconnect(self, session, request_for, voice_channel):
        await session.enqueue([request_for("A")])
        await session.disconnect("leave command")

        await session.enqueue([request_for("B")])

        assert session.state is SessionState.PLAYING
        assert voice_channel.connect.await_count == 2

    @pytest.mark.asyncio
    async def test_alone_in_channel(self, session, request_for, voice_client):
        await session.enqueue([request_for("A")])
        voice_client.channel.members = [voice_client.user]

        assert await session.disconnect_if_alone() is True
        assert session.state is SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_not_alone_in_channel(self, session, request_for, voice_client):
        await session.enqueue([request_for("A")])
        listener = Mock(id=55)
        voice_client.channel.members = [voice_client.user, listener]

        assert await session.disconnect_if_alone() is False
        assert session.state is SessionState.PLAYING


class TestAutoRecommend:
    @pytest.mark.asyncio
    async def test_toggle_on_while_idle_starts_sampled_track(
        self, session, voice_channel, text_channel
    ):
        session.rank_store.increment("C")

        assert await session.toggle_auto_recommend(voice_channel, text_channel) is True

        assert session.current.track.id == "C"
        assert session.state is SessionState.PLAYING

    @pytest.mark.asyncio
    async def test_toggle_on_with_no_ranks_arms_timer(self, session, voice_channel, text_channel):
        await session.toggle_auto_recommend(voice_channel, text_channel)

        assert session.auto_recommend is True
        assert session.current is None
        assert session.idle_timer.armed
        session.idle_timer.disarm()

    @pytest.mark.asyncio
    async def test_refills_empty_queue(self, session, request_for, voice_channel, text_channel):
        session.rank_store.increment("D")
        await session.enqueue([request_for("A")])
        await session.toggle_auto_recommend(voice_channel, text_channel)
        assert session.current.track.id == "A"

        await session.handle_track_end(session.attempt)

        assert session.current.track.id == "D"
        assert not session.idle_timer.armed

    @pytest.mark.asyncio
    async def test_unplayable_recommendation_is_not_drawn_again(
        self, session, audio, voice_channel, text_channel
    ):
        session.rank_store.increment("A")
        audio.open.side_effect = PlaybackTransientError("no stream")

        await session.toggle_auto_recommend(voice_channel, text_channel)

        assert audio.open.await_count == 4
        assert session.current is None
        assert session.state is SessionState.IDLE_PENDING_DISCONNECT
        assert session.idle_timer.armed
        assert sent_texts(text_channel)[-1] == "Skipping **Song A** after repeated playback errors."
        session.idle_timer.disarm()

    @pytest.mark.asyncio
    async def test_gives_up_after_consecutive_failed_tracks(
        self, session, audio, voice_channel, text_channel
    ):
        for track_id in "ABCDEF":
            session.rank_store.increment(track_id)
        audio.open.side_effect = PlaybackTransientError("extractor broken")

        await session.toggle_auto_recommend(voice_channel, text_channel)

        opened = [call.args[0] for call in audio.open.await_args_list]
        assert len(opened) == 12
        assert len(set(opened)) == 3
        assert session.auto_recommend is True
        assert session.idle_timer.armed
        session.idle_timer.disarm()

    @pytest.mark.asyncio
    async def test_enqueue_after_failed_recommendations_plays(
        self, session, audio, request_for, voice_channel, text_channel, voice_client
    ):
        session.rank_store.increment("A")
        audio.open.side_effect = PlaybackTransientError("no stream")
        await session.toggle_auto_recommend(voice_channel, text_channel)

        audio.open.side_effect = None
        await session.enqueue([request_for("B")])

        assert session.current.track.id == "B"
        assert session.state is SessionState.PLAYING
        voice_client.play.assert_called_once()

    @pytest.mark.asyncio
    async def test_toggle_off_keeps_current_track(self, session, request_for, voice_channel, text_channel, voice_client):
        await session.enqueue([request_for("A")])
        await session.toggle_auto_recommend(voice_channel, text_channel)

        assert await session.toggle_auto_recommend(voice_channel, text_channel) is False

        assert session.current.track.id == "A"
        voice_client.stop.assert_not_called()


class TestSampleAndEnqueue:
    @pytest.mark.asyncio
    async def test_empty_rank_is_user_error(self, session, voice_channel, text_channel):
        with pytest.raises(EmptyRankData):
            await session.sample_and_enqueue(5, voice_channel, text_channel)

        assert session.current is None

    @pytest.mark.asyncio
    async def test_enqueues_and_starts(self, catalog, audio, settings, voice_channel, text_channel):
        session = PlaybackSession(
            1,
            catalog=catalog,
            audio=audio,
            rank_store=RankStore(1, {"A": 3, "B": 1}),
            settings=settings,
            rng=random.Random(1),
        )

        tracks = await session.sample_and_enqueue(5, voice_channel, text_channel)

        assert sorted(track.id for track in tracks) == ["A", "B"]
        assert session.current.track.id == tracks[0].id
        assert queued_ids(session) == [tracks[1].id]

    @pytest.mark.asyncio
    async def test_excludes_current_track(self, session, request_for, voice_channel, text_channel):
        session.rank_store.increment("A")
        session.rank_store.increment("B")
        await session.enqueue([request_for("A")])

        tracks = await session.sample_and_enqueue(5, voice_channel, text_channel)

        assert [track.id for track in tracks] == ["B"]


class TestReports:
    @pytest.mark.asyncio
    async def test_rank_report_skips_unresolved(self, session):
        for track_id, count in (("A", 3), ("B", 5), ("Z", 9)):
            for _ in range(count):
                session.rank_store.increment(track_id)

        report = await session.rank_report(50)

        assert report == [("Song B", 5), ("Song A", 3)]

    @pytest.mark.asyncio
    async def test_rank_report_empty(self, session):
        with pytest.raises(EmptyRankData):
            await session.rank_report()

    @pytest.mark.asyncio
    async def test_shuffle_queue_keeps_requests(self, session, request_for):
        await session.enqueue([request_for(str(i)) for i in range(10)])

        assert session.shuffle_queue() == 9
        assert sorted(queued_ids(session)) == [str(i) for i in range(1, 10)]
