from __future__ import annotations

from discord.ext import commands

from core.cleanup import fit_lines, reply


class QueueCog(commands.Cog):
    def __init__(self, bot: commands.Bot):
        self.bot = bot

    @commands.hybrid_command(name="list", aliases=["l", "queue"], description="Show queue")
    async def list_queue(self, ctx: commands.Context) -> None:
        session = self.bot.sessions.find(ctx.guild.id) if ctx.guild else None
        requests = session.list_queue() if session else []
        if not requests:
            await reply(ctx, "Queue is empty.", retract_origin=True)
            return

        lines = [f"{i}. {request.track.describe()}" for i, request in enumerate(requests, start=1)]
        content = fit_lines(f"Count: {len(requests)}\n```\n", lines, footer="\n```")
        await reply(ctx, content, retract_origin=True)

    @commands.hybrid_command(name="shuffle", description="Shuffle queued songs")
    async def shuffle(self, ctx: commands.Context) -> None:
        session = self.bot.sessions.find(ctx.guild.id) if ctx.guild else None
        if session is None or len(session.queue) < 2:
            await reply(ctx, "Need at least 2 songs in the queue to shuffle.")
            return

        count = session.shuffle_queue()
        await reply(ctx, f"Shuffled {count} queued songs.", retract_origin=True)


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(QueueCog(bot))
