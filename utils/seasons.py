from datetime import datetime, timedelta
from typing import Optional

import pytz

MINIMUM_SEASON_THRESHOLD = 70
SEASON_LENGTH = timedelta(days=14)
REFERENCE_SEASON = 85
REFERENCE_SEASON_START = datetime(2025, 10, 8, 10, 0, 0, tzinfo=pytz.UTC)


def _as_utc(when: datetime) -> datetime:
    if when.tzinfo is None:
        return pytz.UTC.localize(when)
    return when.astimezone(pytz.UTC)


def calculate_current_season(when: Optional[datetime] = None) -> int:
    when = _as_utc(when or datetime.now(pytz.UTC))
    return REFERENCE_SEASON + (when - REFERENCE_SEASON_START) // SEASON_LENGTH


def season_start(season: int) -> datetime:
    return REFERENCE_SEASON_START + (season - REFERENCE_SEASON) * SEASON_LENGTH


def is_invalid_season(season, now: Optional[datetime] = None) -> bool:
    if season is None or isinstance(season, bool):
        return True
    if isinstance(season, float):
        if not season.is_integer():
            return True
        season = int(season)
    if not isinstance(season, int):
        return True
    if season < MINIMUM_SEASON_THRESHOLD:
        return True
    return season > calculate_current_season(now)
