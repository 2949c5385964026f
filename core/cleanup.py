from __future__ import annotations

import logging
from typing import Any

import discord
from discord.ext import commands

logger = logging.getLogger(__name__)

MESSAGE_LIMIT = 2000


async def delete_message(message: Any) -> None:
    if message is None:
        return

    try:
        await message.delete()
    except (discord.NotFound, discord.Forbidden):
        return
    except discord.HTTPException as exc:
        logger.warning("Failed to delete message %s: %s", getattr(message, "id", "?"), exc)


async def send_text(channel: Any, content: str) -> discord.Message | None:
    if channel is None:
        return None

    try:
        return await channel.send(content)
    except discord.HTTPException as exc:
        logger.warning("Failed to send message in channel %s: %s", getattr(channel, "id", "?"), exc)
        return None


async def reply(ctx: commands.Context, content: str, retract_origin: bool = False) -> discord.Message | None:
    """Answer a command.

    With ``retract_origin`` a text command message is deleted and the answer
    goes to the channel instead of as a reply. Slash commands have no message
    to delete and always get a normal reply.
    """
    if retract_origin and ctx.interaction is None and ctx.message is not None:
        await delete_message(ctx.message)
        return await send_text(ctx.channel, content)

    try:
        return await ctx.reply(content)
    except discord.HTTPException as exc:
        logger.warning("Failed to reply in channel %s: %s", getattr(ctx.channel, "id", "?"), exc)
        return None


def fit_lines(header: str, lines: list[str], footer: str = "", limit: int = MESSAGE_LIMIT) -> str:
    """Join as many lines as fit under ``limit`` with an "and N more" tail."""
    body: list[str] = []
    used = len(header) + len(footer)
    for i, line in enumerate(lines):
        tail = f"... and {len(lines) - i} more\n"
        if used + len(line) + 1 + len(tail) > limit:
            body.append(tail.rstrip("\n"))
            break
        body.append(line)
        used += len(line) + 1
    return header + "\n".join(body) + footer
