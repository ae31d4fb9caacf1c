import logging
import os
from typing import Optional

import aiohttp
import discord
from aiohttp import web
from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=os.getenv("MEMEBOT_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("memebot")
logging.getLogger("PIL").setLevel(logging.ERROR)

from memebot.assets import FileByteSource, HttpByteSource  # noqa: E402
from memebot.catalog import BUILTIN_COMMANDS, build_definitions, load_catalog_file, merge_commands  # noqa: E402
from memebot.engine import MediaEngine  # noqa: E402
from memebot.interactions import inbound_from_message  # noqa: E402
from memebot.keepalive import start_keepalive  # noqa: E402
from memebot.router import CommandRouter, build_command_table  # noqa: E402
from memebot.settings import BotSettings, load_settings  # noqa: E402


class MemeBot(discord.Client):
    def __init__(self, settings: BotSettings, **options):
        super().__init__(**options)
        self.settings = settings
        self.http_session: Optional[aiohttp.ClientSession] = None
        self.router: Optional[CommandRouter] = None
        self._keepalive: Optional[web.AppRunner] = None

    async def setup_hook(self) -> None:
        self.http_session = aiohttp.ClientSession()
        engine = MediaEngine(
            FileByteSource(self.settings.asset_root),
            HttpByteSource(self.http_session, timeout=self.settings.http_timeout),
            font_path=str(self.settings.font_path) if self.settings.font_path else None,
            avatar_size=self.settings.avatar_size,
        )
        commands = list(BUILTIN_COMMANDS)
        if self.settings.commands_file is not None:
            commands = merge_commands(commands, load_catalog_file(self.settings.commands_file))
        table = build_command_table(build_definitions(engine, commands, self.settings.prefix))
        self_id = str(self.user.id) if self.user is not None else None
        self.router = CommandRouter(table, self.settings.prefix, self_user_id=self_id)
        logger.info(
            "Registered %s commands with prefix %r; assets from %s",
            len(table),
            self.settings.prefix,
            self.settings.asset_root,
        )
        if self.settings.keepalive_port:
            self._keepalive = await start_keepalive(self.settings.keepalive_port)

    async def close(self) -> None:
        if self._keepalive is not None:
            await self._keepalive.cleanup()
            self._keepalive = None
        if self.http_session is not None:
            await self.http_session.close()
            self.http_session = None
        await super().close()


def create_bot(settings: BotSettings) -> MemeBot:
    intents = discord.Intents.default()
    intents.message_content = True
    intents.members = True
    bot = MemeBot(settings, intents=intents)

    @bot.event
    async def on_ready():
        logger.info("Logged in as %s (%s) in %s guild(s)", bot.user, getattr(bot.user, "id", None), len(bot.guilds))

    @bot.event
    async def on_message(message: discord.Message):
        if message.author.bot or bot.router is None:
            return None
        outcome = await bot.router.route(inbound_from_message(message))
        logger.debug(
            "Message %s from %s in channel %s -> %s",
            message.id,
            message.author.id,
            getattr(message.channel, "id", "dm"),
            outcome.value,
        )
        return None

    return bot


def main():
    settings = load_settings()
    bot = create_bot(settings)
    bot.run(settings.token, log_handler=None)


if __name__ == "__main__":
    main()
