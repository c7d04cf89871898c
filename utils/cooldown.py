import logging
import re

from utils.errors import InvalidArgument, ParseError

logger = logging.getLogger("discord")

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 60 * SECONDS_PER_MINUTE
SECONDS_PER_DAY = 24 * SECONDS_PER_HOUR

COOLDOWN_LABEL_RE = re.compile(r"^(\d+)h(\d+)m$", re.IGNORECASE)


def format_duration(total_seconds: int, hide_days: bool = False) -> str:
    """Render seconds as ``1d 01h 01m 01s``, or ``25h 01m 01s`` with hide_days."""
    if total_seconds < 0:
        raise InvalidArgument(f"duration cannot be negative, got {total_seconds}")

    total_seconds = int(total_seconds)
    days, rem = divmod(total_seconds, SECONDS_PER_DAY)
    hours, rem = divmod(rem, SECONDS_PER_HOUR)
    minutes, seconds = divmod(rem, SECONDS_PER_MINUTE)

    if hide_days:
        hours += days * 24
        return f"{hours:02d}h {minutes:02d}m {seconds:02d}s"

    return f"{days}d {hours:02d}h {minutes:02d}m {seconds:02d}s"


def format_cooldown_label(total_seconds: int, round_up: bool = False) -> str:
    """Short ``HHhMMm`` label in the shape the game API reports cooldowns.

    Seconds are dropped unless ``round_up`` is set, in which case any leftover
    seconds count as a whole minute.
    """
    if total_seconds < 0:
        raise InvalidArgument(f"duration cannot be negative, got {total_seconds}")
    total_minutes, seconds = divmod(int(total_seconds), SECONDS_PER_MINUTE)
    if round_up and seconds:
        total_minutes += 1
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours:02d}h{minutes:02d}m"


def parse_cooldown_label(label: str) -> int:
    """Total minutes in an ``HHhMMm`` label."""
    if not isinstance(label, str):
        raise ParseError(label, "cooldown label must be a string")

    match = COOLDOWN_LABEL_RE.match(label.strip())
    if not match:
        raise ParseError(label)

    hours = int(match.group(1))
    minutes = int(match.group(2))
    if minutes >= 60:
        raise ParseError(label, "minutes out of range")

    return hours * 60 + minutes


def within_next_hour(label: str, limit_minutes: int = 60) -> bool:
    try:
        return parse_cooldown_label(label) <= limit_minutes
    except ParseError as e:
        logger.debug(f"Treating cooldown as unknown: {e}")
        return False
