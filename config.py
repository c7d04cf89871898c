import os
from pathlib import Path
from typing import Mapping, Optional
from dotenv import load_dotenv

from utils.errors import InvalidArgument
from utils.tokens import TokenConfig

load_dotenv()

# Tokens (the Discord kind)
TOKEN = os.getenv("DISCORD_TOKEN")
LOGGING_DEBUG_MODE = os.getenv("LOGGING_DEBUG_MODE", "false").lower() in ("1", "true", "yes", "on")

# Base directory
BASE_DIR = Path(__file__).resolve().parent

# Database paths
TOKENDB_PATH = os.getenv("TOKEN_DB_PATH", str(BASE_DIR / "databases" / "tokens.db"))
LOG_PATH = str(BASE_DIR / "discord.log")

# Display settings
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")
EMBED_COLOR = 0x944ae8

# Bot settings
COMMAND_PREFIX = "!!"


def _read_number(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return float(default)
    try:
        return float(raw)
    except ValueError:
        raise InvalidArgument(f"{name} must be a number, got {raw!r}") from None


def load_token_config(env: Optional[Mapping[str, str]] = None) -> TokenConfig:
    """Build the token limits once at start-up. The bot passes the result around."""
    env = os.environ if env is None else env
    max_tokens = _read_number(env, "MAX_TOKENS", 3)
    if not max_tokens.is_integer():
        raise InvalidArgument(f"MAX_TOKENS must be a whole number, got {max_tokens}")

    return TokenConfig(
        max_tokens=int(max_tokens),
        refill_period_seconds=int(_read_number(env, "TOKEN_REFILL_HOURS", 12) * 3600),
        bomb_cooldown_seconds=int(_read_number(env, "BOMB_COOLDOWN_HOURS", 18) * 3600),
    )
