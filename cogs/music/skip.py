from __future__ import annotations

from discord.ext import commands

from core.cleanup import reply


class SkipCog(commands.Cog):
    def __init__(self, bot: commands.Bot):
        self.bot = bot

    @commands.hybrid_command(name="skip", aliases=["s"], description="Skip current song")
    async def skip(self, ctx: commands.Context) -> None:
        if not ctx.guild:
            await reply(ctx, "Use this command in a server.")
            return

        session = self.bot.sessions.find(ctx.guild.id)
        if session is None or not await session.skip():
            await reply(ctx, "Nothing is playing.")
            return

        await reply(ctx, "Skipped.", retract_origin=True)


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(SkipCog(bot))
