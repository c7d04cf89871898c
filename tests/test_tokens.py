"""Unit tests for the raid token ledger."""

from datetime import datetime, timezone

import pytest

from utils.errors import InvalidArgument, InvariantViolation
from utils.tokens import (
    TokenConfig,
    TokenState,
    bomb_cooldown_remaining,
    evaluate_token,
    get_unix_timestamp,
    pending_from_anchored,
    replay_token_usage,
    seconds_until_next_token,
    spend_token,
)

PERIOD = 12 * 60 * 60
BASE = 1696118400

STATES = [
    TokenState(0, BASE),
    TokenState(1, BASE),
    TokenState(2, BASE + 500),
    TokenState(3, BASE),
    TokenState(0, BASE + 10 * PERIOD),
]
OFFSETS = [-1, 0, 1, PERIOD - 1, PERIOD, PERIOD + 1, 2 * PERIOD, 5 * PERIOD + 17]


@pytest.fixture(params=[True, False], ids=["pending", "anchored"])
def any_config(request) -> TokenConfig:
    return TokenConfig(refresh_marks_pending=request.param)


class TestEvaluatePending:
    """Refresh time marks the instant the next token lands."""

    def test_before_refresh_time_is_unchanged(self, config):
        state = TokenState(1, BASE)
        assert evaluate_token(state, BASE - 1, config) is state

    def test_reaching_refresh_time_completes_one_token(self, config):
        result = evaluate_token(TokenState(1, BASE), BASE, config)
        assert result == TokenState(2, BASE + PERIOD)

    def test_partial_second_period_counts_only_the_first(self, config):
        result = evaluate_token(TokenState(0, BASE), BASE + PERIOD - 1, config)
        assert result == TokenState(1, BASE + PERIOD)

    def test_multi_period_jump_fills_pool_and_stamps_now(self, config):
        now = BASE + 4 * PERIOD + 123
        result = evaluate_token(TokenState(0, BASE), now, config)
        assert result == TokenState(3, now)

    def test_phase_is_preserved_for_late_observers(self, config):
        """
        Why: Resetting the timer to now on every check would slow regeneration
        What: One period boundary crossed late still schedules from the old phase
        How: Evaluate 123s after the refresh time and compare the new refresh time
        """
        result = evaluate_token(TokenState(0, BASE), BASE + 123, config)
        assert result.refresh_time == BASE + PERIOD
        assert result.refresh_time != BASE + 123 + PERIOD

    def test_full_pool_is_untouched(self, config):
        state = TokenState(config.max_tokens, 1000)
        assert evaluate_token(state, 999999, config) is state

    def test_does_not_mutate_input(self, config):
        state = TokenState(1, BASE)
        evaluate_token(state, BASE + 3 * PERIOD, config)
        assert state == TokenState(1, BASE)


class TestEvaluateAnchored:
    """Refresh time marks the instant the last token landed."""

    def test_thirteen_hours_later_adds_one_token(self, anchored_config):
        result = evaluate_token(TokenState(1, 1696118400), 1696168800, anchored_config)
        assert result == TokenState(2, 1696161600)

    def test_less_than_a_period_is_unchanged(self, anchored_config):
        state = TokenState(1, BASE)
        assert evaluate_token(state, BASE + PERIOD - 1, anchored_config) is state

    def test_future_refresh_time_is_unchanged(self, anchored_config):
        state = TokenState(0, BASE)
        assert evaluate_token(state, BASE - PERIOD - 5, anchored_config) is state

    def test_overflow_stamps_now(self, anchored_config):
        now = BASE + 3 * PERIOD
        assert evaluate_token(TokenState(1, BASE), now, anchored_config) == TokenState(3, now)


class TestEvaluateProperties:
    @pytest.mark.parametrize("state", STATES)
    @pytest.mark.parametrize("offset", OFFSETS)
    def test_idempotent_at_same_instant(self, any_config, state, offset):
        now = BASE + offset
        once = evaluate_token(state, now, any_config)
        assert evaluate_token(once, now, any_config) == once

    @pytest.mark.parametrize("state", STATES)
    def test_count_is_monotonic_in_time(self, any_config, state):
        counts = [evaluate_token(state, BASE + offset, any_config).count for offset in sorted(OFFSETS)]
        assert counts == sorted(counts)

    @pytest.mark.parametrize("state", STATES)
    @pytest.mark.parametrize("offset", OFFSETS)
    def test_count_stays_within_cap(self, any_config, state, offset):
        result = evaluate_token(state, BASE + offset, any_config)
        assert 0 <= result.count <= any_config.max_tokens

    @pytest.mark.parametrize("now", [0, 999, BASE, BASE * 2])
    def test_full_pool_is_noop(self, any_config, now):
        state = TokenState(any_config.max_tokens, 1000)
        assert evaluate_token(state, now, any_config).count == any_config.max_tokens

    def test_splitting_the_walk_matches_one_jump(self, any_config):
        state = TokenState(0, BASE)
        stepped = state
        for offset in range(0, 2 * PERIOD, 3600):
            stepped = evaluate_token(stepped, BASE + offset, any_config)
        end = BASE + 2 * PERIOD - 3600
        assert stepped == evaluate_token(state, end, any_config)


class TestEvaluateValidation:
    @pytest.mark.parametrize("count", [-1, 4])
    def test_out_of_range_count_is_rejected(self, config, count):
        with pytest.raises(InvariantViolation):
            evaluate_token(TokenState(count, BASE), BASE, config)

    def test_validation_can_be_disabled(self):
        config = TokenConfig(validate=False)
        state = TokenState(7, BASE)
        assert evaluate_token(state, BASE + PERIOD, config) is state

    def test_negative_now_is_rejected(self, config):
        with pytest.raises(InvalidArgument):
            evaluate_token(TokenState(1, BASE), -1, config)

    @pytest.mark.parametrize("kwargs", [
        {"max_tokens": 0},
        {"refill_period_seconds": 0},
        {"bomb_cooldown_seconds": -1},
    ])
    def test_bad_config_is_rejected(self, kwargs):
        with pytest.raises(InvalidArgument):
            TokenConfig(**kwargs)


class TestSecondsUntilNextToken:
    def test_pending_counts_down_to_refresh_time(self, config):
        assert seconds_until_next_token(TokenState(1, BASE + 100), BASE, config) == 100

    def test_pending_rolls_over_to_next_period(self, config):
        assert seconds_until_next_token(TokenState(0, BASE), BASE + 10, config) == PERIOD - 10

    def test_anchored_counts_from_last_refill(self, anchored_config):
        assert seconds_until_next_token(TokenState(1, BASE), BASE + 100, anchored_config) == PERIOD - 100

    def test_full_pool_has_no_cooldown(self, config):
        assert seconds_until_next_token(TokenState(3, BASE), BASE + 5, config) == 0


class TestSpendToken:
    def test_spending_from_full_starts_schedule(self, config):
        now = BASE + 42
        assert spend_token(TokenState(3, BASE), now, config) == TokenState(2, now + PERIOD)

    def test_spending_from_full_anchored_stamps_now(self, anchored_config):
        now = BASE + 42
        assert spend_token(TokenState(3, BASE), now, anchored_config) == TokenState(2, now)

    def test_spending_keeps_pending_schedule(self, config):
        assert spend_token(TokenState(2, BASE + 600), BASE, config) == TokenState(1, BASE + 600)

    def test_spending_evaluates_first(self, config):
        assert spend_token(TokenState(0, BASE), BASE, config) == TokenState(0, BASE + PERIOD)

    def test_empty_pool_cannot_spend(self, config):
        with pytest.raises(InvalidArgument):
            spend_token(TokenState(0, BASE + 10), BASE, config)


class TestReplayTokenUsage:
    def test_no_history_keeps_initial_count(self, config):
        assert replay_token_usage([], BASE, config) == TokenState(2, BASE)

    def test_overspend_clamps_and_restarts_schedule(self, config):
        used = [BASE, BASE + 10, BASE + 20]
        result = replay_token_usage(used, BASE + 20 + PERIOD, config)
        assert result == TokenState(1, BASE + 20 + PERIOD)

    def test_refills_between_spends(self, config):
        used = [BASE + 2 * PERIOD, BASE, None]
        result = replay_token_usage(used, BASE + 2 * PERIOD + 100, config)
        assert result == TokenState(2, BASE + 2 * PERIOD)

    def test_initial_count_is_clamped_to_cap(self, config):
        assert replay_token_usage([], BASE, config, initial_count=9).count == config.max_tokens


class TestHelpers:
    def test_pending_from_anchored_shifts_by_one_period(self, config):
        assert pending_from_anchored(TokenState(1, BASE), BASE + 100, config) == TokenState(1, BASE + PERIOD)

    def test_pending_from_anchored_full_pool(self, config):
        assert pending_from_anchored(TokenState(3, BASE), BASE + 100, config) == TokenState(3, BASE + 100)

    def test_bomb_never_used(self, config):
        assert bomb_cooldown_remaining(None, BASE, config) == 0

    def test_bomb_on_cooldown(self, config):
        assert bomb_cooldown_remaining(BASE - 3600, BASE, config) == 17 * 3600

    def test_bomb_cooldown_expired(self, config):
        assert bomb_cooldown_remaining(BASE - 18 * 3600, BASE, config) == 0

    def test_get_unix_timestamp(self):
        assert get_unix_timestamp(datetime(2023, 10, 1, tzinfo=timezone.utc)) == 1696118400
