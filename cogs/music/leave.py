from __future__ import annotations

import discord
from discord.ext import commands

from core.cleanup import reply


class LeaveCog(commands.Cog):
    """Manual disconnect, plus the voice events that end a session."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    @commands.hybrid_command(name="leave", description="Stop, clear the queue and leave the voice channel")
    async def leave(self, ctx: commands.Context) -> None:
        if not ctx.guild:
            await reply(ctx, "Use this command in a server.")
            return

        session = self.bot.sessions.find(ctx.guild.id)
        if session is None or session.voice_client is None:
            await reply(ctx, "I am not in a voice channel.")
            return

        await session.disconnect("leave command")
        await reply(ctx, "Disconnected.", retract_origin=True)

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        session = self.bot.sessions.find(member.guild.id)
        if session is None or session.voice_client is None:
            return

        if self.bot.user and member.id == self.bot.user.id:
            if before.channel is not None and after.channel is None:
                await session.handle_peer_disconnect()
            return

        if before.channel is not None and before.channel != after.channel:
            await session.disconnect_if_alone()


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(LeaveCog(bot))
