from __future__ import annotations

from discord.ext import commands

from core.cleanup import reply


class NowPlayingCog(commands.Cog):
    def __init__(self, bot: commands.Bot):
        self.bot = bot

    @commands.hybrid_command(name="nowplaying", description="Show current song")
    async def nowplaying(self, ctx: commands.Context) -> None:
        session = self.bot.sessions.find(ctx.guild.id) if ctx.guild else None
        track = session.now_playing if session else None
        if track is None:
            await reply(ctx, "Nothing is playing.")
            return

        count = session.rank_store.get(track.id)
        await reply(
            ctx,
            f"Now playing: **{track.describe()}** - played {count} times\n"
            f"https://www.youtube.com/watch?v={track.id}",
        )


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(NowPlayingCog(bot))
