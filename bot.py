import asyncio
import logging
from pathlib import Path

import aiohttp
import discord
from discord.ext import commands
from dotenv import load_dotenv

from core.audio import AudioStreamFactory
from core.config import Settings
from core.rank_store import RankRepository
from core.registry import SessionRegistry
from core.youtube import YouTubeCatalog

logger = logging.getLogger("bot")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("discord.gateway").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class TempoBot(commands.Bot):
    def __init__(self) -> None:
        load_dotenv()
        self.settings = Settings.from_env()
        setup_logging(self.settings.log_level)

        intents = discord.Intents.default()
        intents.message_content = True
        intents.guilds = True
        intents.voice_states = True

        super().__init__(command_prefix=self.settings.prefix, intents=intents)

        self.http_session: aiohttp.ClientSession | None = None
        self.sessions: SessionRegistry | None = None
        self.synced_once = False

    async def setup_hook(self) -> None:
        self.http_session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=20))
        catalog = YouTubeCatalog(
            self.http_session,
            self.settings.youtube_api_key,
            region_code=self.settings.region_code,
        )
        self.sessions = SessionRegistry(
            catalog=catalog,
            audio=AudioStreamFactory(),
            repository=RankRepository(self.settings.rank_data_dir),
            settings=self.settings,
        )

        for file in Path("cogs").rglob("*.py"):
            if file.name.startswith("_"):
                continue
            ext = ".".join(file.with_suffix("").parts)
            await self.load_extension(ext)
            logger.debug("Loaded extension %s", ext)

    async def close(self) -> None:
        if self.sessions is not None:
            written = await self.sessions.flush_all()
            logger.info("Saved rank data for %d guild(s)", written)
        if self.http_session and not self.http_session.closed:
            await self.http_session.close()
        await super().close()


bot = TempoBot()


@bot.event
async def on_ready() -> None:
    if not bot.synced_once:
        await bot.tree.sync()
        bot.synced_once = True

    logger.info("Logged in as %s (%s)", bot.user, bot.user.id)


async def main() -> None:
    token = bot.settings.discord_token
    if not token:
        raise RuntimeError("DISCORD_TOKEN is missing in .env")

    async with bot:
        await bot.start(token)


if __name__ == "__main__":
    asyncio.run(main())
