from __future__ import annotations

import dataclasses

import pytest

from migration_api.libs.rate_limit import (
    GITHUB_RATE_LIMIT_RULES,
    NO_RATE_LIMIT_RULES,
    RETRY_AFTER_ONLY_RULES,
    RateLimitState,
    RetryDelay,
)
from migration_api.tests.conftest import NOW, rate_limit_headers


class TestRateLimitState:
    def test_from_headers(self):
        state = RateLimitState.from_headers({**rate_limit_headers(0, NOW + 30), "Retry-After": "12"}, now=NOW)

        assert state.remaining == 0
        assert state.reset_epoch == NOW + 30
        assert state.retry_after == 12.0
        assert state.seconds_until_reset == 30
        assert state.remaining_header_present is True

    def test_missing_headers_default_to_healthy_quota(self):
        state = RateLimitState.from_headers({}, now=NOW)

        assert state.remaining == 5000
        assert state.reset_epoch == NOW
        assert state.retry_after is None
        assert state.remaining_header_present is False

    def test_header_names_are_case_insensitive(self):
        state = RateLimitState.from_headers({"x-ratelimit-remaining": "7", "x-ratelimit-reset": str(NOW)}, now=NOW)

        assert state.remaining == 7

    def test_reset_in_the_past_is_zero(self):
        state = RateLimitState.from_headers(rate_limit_headers(0, NOW - 100), now=NOW)

        assert state.seconds_until_reset == 0

    def test_fractional_clock_rounds_wait_up(self):
        state = RateLimitState.from_headers(rate_limit_headers(0, NOW + 10), now=NOW + 0.7)

        assert state.seconds_until_reset == 10


class TestRateLimitRules:
    @pytest.mark.parametrize(
        "remaining, content, expected",
        [
            (0, '{"message": "API rate limit exceeded for user"}', True),
            (0, '{"message": "api RATE limit EXCEEDED"}', True),
            (1, '{"message": "API rate limit exceeded for user"}', False),
            (0, '{"message": "Bad credentials"}', False),
        ],
    )
    def test_is_primary_rate_limited(self, remaining, content, expected):
        state = RateLimitState(remaining=remaining, reset_epoch=NOW, now=NOW)

        assert GITHUB_RATE_LIMIT_RULES.is_primary_rate_limited(state, content) is expected

    @pytest.mark.parametrize(
        "status_code, content, expected",
        [
            (403, "You have exceeded a secondary rate limit", True),
            (429, "You have exceeded a secondary rate limit", True),
            (403, "You have triggered an abuse detection mechanism", True),
            (403, "API rate limit exceeded. Also a secondary rate limit", False),
            (429, "Too many requests", False),
            (500, "secondary rate limit", False),
            (403, "Resource not accessible by integration", False),
        ],
    )
    def test_is_secondary_rate_limit(self, status_code, content, expected):
        assert GITHUB_RATE_LIMIT_RULES.is_secondary_rate_limit(status_code, content) is expected

    def test_secondary_delay_prefers_retry_after(self):
        state = RateLimitState(remaining=0, reset_epoch=NOW + 600, now=NOW, retry_after=7)

        assert GITHUB_RATE_LIMIT_RULES.secondary_delay(state, attempt=2) == 7

    def test_secondary_delay_waits_for_reset_when_exhausted(self):
        state = RateLimitState(remaining=0, reset_epoch=NOW + 600, now=NOW)

        assert GITHUB_RATE_LIMIT_RULES.secondary_delay(state, attempt=0) == 600

    def test_secondary_delay_sub_second_reset_waits_one_second(self):
        state = RateLimitState(remaining=0, reset_epoch=NOW + 1, now=NOW + 0.6)

        assert GITHUB_RATE_LIMIT_RULES.secondary_delay(state, attempt=0) == 1

    def test_secondary_delay_exponential_backoff_is_capped(self):
        rules = dataclasses.replace(GITHUB_RATE_LIMIT_RULES, secondary_jitter=0)
        state = RateLimitState(remaining=100, reset_epoch=NOW, now=NOW)

        delays = [rules.secondary_delay(state, attempt) for attempt in range(6)]

        assert delays == [60, 120, 240, 480, 900, 900]

    def test_secondary_delay_adds_bounded_jitter(self):
        state = RateLimitState(remaining=100, reset_epoch=NOW, now=NOW)

        for _ in range(20):
            delay = GITHUB_RATE_LIMIT_RULES.secondary_delay(state, attempt=0)
            assert 60 <= delay <= 61

    @pytest.mark.parametrize("rules", [RETRY_AFTER_ONLY_RULES, NO_RATE_LIMIT_RULES])
    def test_disabled_rules_classify_nothing(self, rules):
        state = RateLimitState(remaining=0, reset_epoch=NOW + 10, now=NOW)

        assert rules.is_primary_rate_limited(state, "API RATE LIMIT EXCEEDED") is False
        assert rules.is_secondary_rate_limit(403, "secondary rate limit") is False


class TestRetryDelay:
    def test_set_and_clear(self):
        delay = RetryDelay()
        assert delay.pending == 0

        delay.set(30)
        seconds, generation = delay.snapshot()

        assert seconds == 30
        assert delay.clear(generation) is True
        assert delay.pending == 0

    def test_negative_delay_is_zero(self):
        delay = RetryDelay()
        delay.set(-5)

        assert delay.pending == 0

    def test_stale_clear_keeps_newer_delay(self):
        delay = RetryDelay()
        delay.set(10)
        _, generation = delay.snapshot()

        delay.set(20)

        assert delay.clear(generation) is False
        assert delay.pending == 20

    def test_snapshot_taken_before_a_delay_is_set_reads_zero(self):
        delay = RetryDelay()
        seconds, _ = delay.snapshot()

        delay.set(60)

        assert seconds == 0
        assert delay.pending == 60
