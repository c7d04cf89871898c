"""Raid token accounting.

A member holds at most ``max_tokens`` raid tokens and regains one every
``refill_period_seconds``. Only the last known count and refresh time are
stored; everything here derives the current pool from those two numbers and
"now". The regeneration schedule keeps its original phase: evaluating late
never pushes the next token further out.
"""
import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, Optional

from utils.errors import InvalidArgument, InvariantViolation

logger = logging.getLogger("discord")

TWELVE_HOURS = 12 * 60 * 60
EIGHTEEN_HOURS = 18 * 60 * 60


@dataclass(frozen=True)
class TokenConfig:
    max_tokens: int = 3
    refill_period_seconds: int = TWELVE_HOURS
    bomb_cooldown_seconds: int = EIGHTEEN_HOURS
    # True: refresh_time is when the next pending token lands.
    # False: refresh_time is when the last token landed (raid log anchor).
    refresh_marks_pending: bool = True
    validate: bool = True

    def __post_init__(self):
        if self.max_tokens < 1:
            raise InvalidArgument(f"max_tokens must be at least 1, got {self.max_tokens}")
        if self.refill_period_seconds <= 0:
            raise InvalidArgument(f"refill_period_seconds must be positive, got {self.refill_period_seconds}")
        if self.bomb_cooldown_seconds < 0:
            raise InvalidArgument(f"bomb_cooldown_seconds cannot be negative, got {self.bomb_cooldown_seconds}")


@dataclass(frozen=True)
class TokenState:
    count: int
    refresh_time: int


def anchored(config: TokenConfig) -> TokenConfig:
    """Same limits, with refresh times read as the last completed refill."""
    return replace(config, refresh_marks_pending=False)


def get_unix_timestamp(when: datetime) -> int:
    return math.floor(when.timestamp())


def _check_state(state: TokenState, config: TokenConfig):
    if config.validate and not 0 <= state.count <= config.max_tokens:
        raise InvariantViolation(
            f"token count {state.count} outside [0, {config.max_tokens}]"
        )


def evaluate_token(state: TokenState, now: int, config: TokenConfig) -> TokenState:
    """Bring ``state`` up to date at ``now``.

    Returns the same object when nothing regenerated, so callers can skip the
    write with an identity check. Evaluating twice at the same instant is a
    no-op the second time.
    """
    _check_state(state, config)
    if now < 0:
        raise InvalidArgument(f"now must be a non-negative timestamp, got {now}")

    if state.count >= config.max_tokens:
        return state

    elapsed = now - state.refresh_time
    if elapsed < 0:
        return state

    period = config.refill_period_seconds
    periods = elapsed // period
    if config.refresh_marks_pending:
        # reaching refresh_time completes the pending token
        periods += 1
    if periods == 0:
        return state

    new_count = min(config.max_tokens, state.count + periods)
    if new_count >= config.max_tokens:
        new_state = TokenState(count=new_count, refresh_time=now)
    else:
        new_state = TokenState(count=new_count, refresh_time=state.refresh_time + periods * period)

    logger.debug(
        f"Token pool {state.count}@{state.refresh_time} -> {new_state.count}@{new_state.refresh_time} at {now}"
    )
    return new_state


def seconds_until_next_token(state: TokenState, now: int, config: TokenConfig) -> int:
    current = evaluate_token(state, now, config)
    if current.count >= config.max_tokens:
        return 0

    if config.refresh_marks_pending:
        due = current.refresh_time
    else:
        due = current.refresh_time + config.refill_period_seconds
    return max(0, due - now)


def spend_token(state: TokenState, now: int, config: TokenConfig) -> TokenState:
    """Evaluate at ``now`` and take one token out of the pool.

    A full pool has no pending refill, so spending from it starts a fresh
    schedule at ``now``.
    """
    current = evaluate_token(state, now, config)
    if current.count <= 0:
        raise InvalidArgument("no tokens available to spend")

    if current.count >= config.max_tokens:
        if config.refresh_marks_pending:
            refresh_time = now + config.refill_period_seconds
        else:
            refresh_time = now
    else:
        refresh_time = current.refresh_time

    return TokenState(count=current.count - 1, refresh_time=refresh_time)


def replay_token_usage(
    used_at: Iterable[Optional[int]],
    now: int,
    config: TokenConfig,
    initial_count: int = 2,
) -> TokenState:
    """Rebuild a pool from the timestamps at which tokens were spent.

    The pool is assumed to open at ``initial_count``. When the history shows
    more spends than that assumption allows, the member must have started
    full; the count is clamped at zero and the schedule restarts at that spend.
    The result is expressed with last-refill anchoring.
    """
    cfg = anchored(config)
    timestamps = sorted(ts for ts in used_at if ts is not None)

    start = timestamps[0] if timestamps else now
    state = TokenState(count=min(max(initial_count, 0), cfg.max_tokens), refresh_time=start)

    for ts in timestamps:
        state = evaluate_token(state, ts, cfg)
        if state.count == 0:
            state = TokenState(count=0, refresh_time=ts)
        else:
            state = spend_token(state, ts, cfg)

    return evaluate_token(state, now, cfg)


def bomb_cooldown_remaining(last_bomb_at: Optional[int], now: int, config: TokenConfig) -> int:
    if last_bomb_at is None:
        return 0
    return max(0, last_bomb_at + config.bomb_cooldown_seconds - now)


def pending_from_anchored(state: TokenState, now: int, config: TokenConfig) -> TokenState:
    """Convert a last-refill-anchored state into the stored pending form."""
    current = evaluate_token(state, now, anchored(config))
    if current.count >= config.max_tokens:
        return TokenState(count=current.count, refresh_time=now)
    return TokenState(count=current.count, refresh_time=current.refresh_time + config.refill_period_seconds)
