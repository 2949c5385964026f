from __future__ import annotations

import logging

from discord.ext import commands, tasks

from core.cleanup import fit_lines, reply
from core.errors import UserInputError

logger = logging.getLogger(__name__)


class RankCog(commands.Cog):
    """Song ranking report and the periodic rank save."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    async def cog_load(self) -> None:
        self.save_ranks.change_interval(seconds=self.bot.settings.rank_save_interval_seconds)
        self.save_ranks.start()

    async def cog_unload(self) -> None:
        self.save_ranks.cancel()
        await self.bot.sessions.flush_all()

    @tasks.loop(hours=1)
    async def save_ranks(self) -> None:
        written = await self.bot.sessions.flush_all()
        if written:
            logger.info("Saved rank data for %d guild(s)", written)

    @save_ranks.before_loop
    async def before_save_ranks(self) -> None:
        await self.bot.wait_until_ready()

    @commands.hybrid_command(name="rank", aliases=["r"], description="Show most played songs")
    async def rank(self, ctx: commands.Context) -> None:
        if not ctx.guild:
            await reply(ctx, "Use this command in a server.")
            return

        session = self.bot.sessions.get(ctx.guild.id)
        try:
            entries = await session.rank_report(self.bot.settings.rank_report_limit)
        except UserInputError as exc:
            await reply(ctx, str(exc), retract_origin=True)
            return

        lines = [f"{i}. {title} ({count})" for i, (title, count) in enumerate(entries, start=1)]
        await reply(ctx, fit_lines("Song Ranking\n```\n", lines, footer="\n```"), retract_origin=True)


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(RankCog(bot))
