from __future__ import annotations

import logging

from discord.ext import commands

from core.cleanup import reply
from core.context import author_voice_channel
from core.errors import UserInputError

logger = logging.getLogger(__name__)


class RecommendCog(commands.Cog):
    """Queue songs drawn from this server's play history."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    @commands.hybrid_command(name="random", description="Queue random songs, favouring the most played ones")
    async def random(self, ctx: commands.Context, count: int | None = None) -> None:
        if not ctx.guild:
            await reply(ctx, "Use this command in a server.")
            return

        wanted = max(1, min(count or self.bot.settings.random_count, 25))
        try:
            voice_channel = author_voice_channel(ctx)
            session = self.bot.sessions.get(ctx.guild.id)
            tracks = await session.sample_and_enqueue(wanted, voice_channel, ctx.channel)
        except UserInputError as exc:
            await reply(ctx, str(exc), retract_origin=True)
            return

        logger.info("Queued %d of %d random songs in guild %s", len(tracks), wanted, ctx.guild.id)
        await reply(ctx, f"Added {len(tracks)} random songs.", retract_origin=True)

    @commands.hybrid_command(name="autoplay", aliases=["AutoRandomMode"], description="Toggle auto-recommend when the queue runs out")
    async def autoplay(self, ctx: commands.Context) -> None:
        if not ctx.guild:
            await reply(ctx, "Use this command in a server.")
            return

        try:
            voice_channel = author_voice_channel(ctx)
        except UserInputError as exc:
            await reply(ctx, str(exc), retract_origin=True)
            return

        session = self.bot.sessions.get(ctx.guild.id)
        enabled = await session.toggle_auto_recommend(voice_channel, ctx.channel)
        if enabled:
            await reply(ctx, "Auto-recommend enabled. Songs from the rank will play when the queue is empty.", retract_origin=True)
        else:
            await reply(ctx, "Auto-recommend disabled.", retract_origin=True)


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(RecommendCog(bot))
