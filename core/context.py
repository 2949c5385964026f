from __future__ import annotations

import discord
from discord.ext import commands

from core.errors import NotInVoiceChannel


def author_voice_channel(ctx: commands.Context) -> discord.VoiceChannel:
    voice = getattr(ctx.author, "voice", None)
    channel = voice.channel if voice else None
    if not isinstance(channel, discord.VoiceChannel):
        raise NotInVoiceChannel()
    return channel
