from __future__ import annotations

import logging

from discord.ext import commands

from core.cleanup import fit_lines, reply
from core.context import author_voice_channel
from core.errors import InvalidPlaylist, TrackNotFound, UserInputError
from core.music_state import PlayRequest, SearchResultSet, Track
from core.session import PlaybackSession
from core.youtube import QueryKind, parse_play_query

logger = logging.getLogger(__name__)


class PlayCog(commands.Cog):
    def __init__(self, bot: commands.Bot):
        self.bot = bot

    @property
    def catalog(self):
        return self.bot.sessions.catalog

    @property
    def settings(self):
        return self.bot.settings

    @commands.hybrid_command(name="play", aliases=["p"], description="Search, pick a search result, or play a YouTube link")
    async def play(self, ctx: commands.Context, *, query: str) -> None:
        if not ctx.guild:
            await reply(ctx, "Use this command in a server.")
            return

        try:
            voice_channel = author_voice_channel(ctx)
            session = self.bot.sessions.get(ctx.guild.id)
            parsed = parse_play_query(query)

            if parsed.kind is QueryKind.KEYWORD:
                await self._search(ctx, session, parsed.value)
                return

            tracks = await self._resolve(ctx, session, parsed.kind, parsed.value)
        except UserInputError as exc:
            await reply(ctx, str(exc), retract_origin=True)
            return

        requests = [PlayRequest(track, voice_channel, ctx.channel) for track in tracks]
        if len(tracks) == 1:
            await reply(ctx, f"Added **{tracks[0].describe()}** to the queue.", retract_origin=True)
        else:
            await reply(ctx, f"Added {len(tracks)} songs to the queue.", retract_origin=True)

        await session.enqueue(requests)

    async def _resolve(
        self,
        ctx: commands.Context,
        session: PlaybackSession,
        kind: QueryKind,
        value: str,
    ) -> list[Track]:
        if kind is QueryKind.SEARCH_RESULT:
            return [await session.searches.resolve(ctx.author.id, int(value))]

        if kind is QueryKind.PLAYLIST:
            tracks = await self.catalog.resolve_playlist(value, limit=self.settings.playlist_limit)
            if not tracks:
                raise InvalidPlaylist()
            return tracks

        tracks = await self.catalog.resolve_tracks([value])
        if not tracks:
            raise TrackNotFound(f"Could not look up video `{value}`. Check the link.")
        return tracks

    async def _search(self, ctx: commands.Context, session: PlaybackSession, keyword: str) -> None:
        tracks = await self.catalog.search(keyword, limit=self.settings.search_result_limit)
        if not tracks:
            raise TrackNotFound()

        lines = [f"{i}. {track.describe()}" for i, track in enumerate(tracks, start=1)]
        message = await reply(ctx, fit_lines(f"Results for {keyword}\n", lines))
        await session.searches.record(
            ctx.author.id,
            SearchResultSet(tuple(tracks), ctx.channel, message),
        )
        logger.debug("Recorded %d search results for user %s", len(tracks), ctx.author.id)


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(PlayCog(bot))
