import logging
import sys

import discord

from config import TOKEN, LOGGING_DEBUG_MODE, LOG_PATH, load_token_config
from core.bot import Bot

logger = logging.getLogger("discord")


def setup_logging():
    level = logging.DEBUG if LOGGING_DEBUG_MODE else logging.INFO
    handler = logging.FileHandler(filename=LOG_PATH, encoding="utf-8", mode="a")
    handler.setFormatter(logging.Formatter("[{asctime}] [{levelname:<8}] {name}: {message}", "%Y-%m-%d %H:%M:%S", style="{"))
    logger.setLevel(level)
    logger.addHandler(handler)
    discord.utils.setup_logging(level=level)


def main():
    if not TOKEN:
        raise SystemExit("Set DISCORD_TOKEN in .env")

    setup_logging()
    token_config = load_token_config()

    intents = discord.Intents.default()
    intents.members = True

    bot = Bot(token_config, intents=intents)
    try:
        bot.run(TOKEN, log_handler=None)
    except discord.LoginFailure:
        logger.error("Discord rejected DISCORD_TOKEN")
        sys.exit(1)


if __name__ == "__main__":
    main()
