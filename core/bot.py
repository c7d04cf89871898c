import os
import time
import signal
import asyncio
import logging
import discord
from discord.ext import commands
from utils.token_store import TokenStore
from utils.tokens import TokenConfig
from config import COMMAND_PREFIX, TOKENDB_PATH

logger = logging.getLogger("discord")


class Bot(commands.Bot):
    def __init__(self, token_config: TokenConfig, *args, db_path: str = TOKENDB_PATH, **kwargs):
        intents = kwargs.pop("intents", None) or discord.Intents.default()
        super().__init__(
            command_prefix=COMMAND_PREFIX,
            help_command=None,
            intents=intents,
            chunk_guilds_at_startup=False,
            *args, **kwargs
        )
        self.token_config = token_config
        self.token_store = TokenStore(db_path)
        self.process_start_time = time.time()
        self.start_time = None

    async def setup_hook(self):
        await self.token_store.init_pools()
        await self.token_store.init_db()
        await self.token_store.populate_cache()

        cogs_dir = os.path.join(os.path.dirname(os.path.dirname(__file__)), "cogs")
        if os.path.exists(cogs_dir):
            for filename in sorted(os.listdir(cogs_dir)):
                if filename.endswith(".py") and not filename.startswith("__"):
                    extension = f"cogs.{filename[:-3]}"
                    try:
                        await self.load_extension(extension)
                        logger.info(f"Loaded {extension} successfully")
                    except Exception:
                        logger.exception(f"Failed to load {extension}")
        else:
            logger.warning("'cogs' directory not found.")

        await self.tree.sync()

        for s in (signal.SIGINT, signal.SIGTERM):
            try:
                self.loop.add_signal_handler(
                    s, lambda: asyncio.create_task(self.signal_handler())
                )
            except NotImplementedError:
                # Windows event loops have no signal handlers
                pass

    async def signal_handler(self):
        logger.info("Bot shutdown requested...")
        extensions = list(self.extensions.keys())
        for extension in extensions:
            try:
                await self.unload_extension(extension)
                logger.info(f"Unloaded {extension} successfully")
            except Exception:
                logger.exception(f"Error unloading {extension}")

        await self.close()

    async def close(self):
        await self.token_store.close()
        await super().close()

    def uptime_seconds(self) -> int:
        return int(time.time() - (self.start_time or self.process_start_time))

    async def on_ready(self):
        logger.info(f"---------------------------------------------------")
        logger.info(f"Bot ready: {self.user} (ID: {self.user.id})")
        logger.info(
            f"Token limits: {self.token_config.max_tokens} max, "
            f"one every {self.token_config.refill_period_seconds}s"
        )
        logger.info(f"---------------------------------------------------")

        if self.start_time is None:
            self.start_time = time.time()
