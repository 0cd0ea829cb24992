"""Rate limit bookkeeping shared by the HTTP clients.

Two independent regimes are tracked:

- Primary rate limit: the provider-wide quota is exhausted. Signaled by
  X-RateLimit-Remaining <= 0 together with a body marker. Recovery is deferred to
  the next call made through the same client (see RetryDelay).
- Secondary rate limit: burst / abuse throttling. Signaled by a 403/429 status together
  with a body marker. Recovery is an in-place retry with backoff.

The markers and status codes live in RateLimitRules so providers can be added as data.
"""

from __future__ import annotations

import math
import random
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass

from migration_api.utils.constants import (
    DEFAULT_RATE_LIMIT_REMAINING,
    PRIMARY_RATE_LIMIT_MARKER,
    RATE_LIMIT_REMAINING_HEADER,
    RATE_LIMIT_RESET_HEADER,
    RETRY_AFTER_HEADER,
    SECONDARY_RATE_LIMIT_BASE_DELAY,
    SECONDARY_RATE_LIMIT_JITTER,
    SECONDARY_RATE_LIMIT_MARKERS,
    SECONDARY_RATE_LIMIT_MAX_DELAY,
    SECONDARY_RATE_LIMIT_MAX_RETRIES,
    SECONDARY_RATE_LIMIT_STATUS_CODES,
)
from migration_api.utils.helpers import get_header_value, get_int_header, parse_retry_after


@dataclass(frozen=True)
class RateLimitRules:
    """Declarative description of how a provider signals rate limiting."""

    primary_marker: str | None = PRIMARY_RATE_LIMIT_MARKER
    secondary_markers: tuple[str, ...] = SECONDARY_RATE_LIMIT_MARKERS
    secondary_status_codes: frozenset[int] = SECONDARY_RATE_LIMIT_STATUS_CODES
    secondary_max_retries: int = SECONDARY_RATE_LIMIT_MAX_RETRIES
    secondary_base_delay: float = SECONDARY_RATE_LIMIT_BASE_DELAY
    secondary_max_delay: float = SECONDARY_RATE_LIMIT_MAX_DELAY
    secondary_jitter: float = SECONDARY_RATE_LIMIT_JITTER
    # Defer the next call by any Retry-After the provider returns (ADO throttling)
    defer_on_retry_after: bool = False

    def is_primary_rate_limited(self, state: RateLimitState, content: str) -> bool:
        if not self.primary_marker:
            return False
        return state.remaining <= 0 and self.primary_marker in content.upper()

    def is_secondary_rate_limit(self, status_code: int, content: str) -> bool:
        if status_code not in self.secondary_status_codes:
            return False

        content_upper = content.upper()

        # Ordinary quota exhaustion must never be classified as abuse throttling
        if self.primary_marker and self.primary_marker in content_upper:
            return False

        return any(marker in content_upper for marker in self.secondary_markers)

    def secondary_delay(self, state: RateLimitState, attempt: int) -> float:
        """
        Delay before the next in-place retry of a secondary rate limited request.

        Args:
            state: Rate limit state read from the throttled response
            attempt: Zero-based retry attempt

        Returns:
            Retry-After when present and positive, else the time until quota reset when the quota is
            exhausted, else exponential backoff from secondary_base_delay capped at secondary_max_delay,
            plus up to secondary_jitter seconds of random jitter.
        """
        if state.retry_after is not None and state.retry_after > 0:
            return state.retry_after

        if state.remaining <= 0:
            until_reset = state.seconds_until_reset
            if until_reset > 0:
                return until_reset

        backoff = min(self.secondary_base_delay * (2**attempt), self.secondary_max_delay)
        if self.secondary_jitter > 0:
            backoff += random.uniform(0, self.secondary_jitter)
        return backoff


GITHUB_RATE_LIMIT_RULES = RateLimitRules()

# Providers without GitHub's quota headers: nothing is classified, only Retry-After is honored
RETRY_AFTER_ONLY_RULES = RateLimitRules(
    primary_marker=None,
    secondary_markers=(),
    secondary_status_codes=frozenset(),
    defer_on_retry_after=True,
)

NO_RATE_LIMIT_RULES = RateLimitRules(
    primary_marker=None,
    secondary_markers=(),
    secondary_status_codes=frozenset(),
)


@dataclass(frozen=True)
class RateLimitState:
    """Quota information read from one response. Recomputed for every response, never persisted."""

    remaining: int
    reset_epoch: int
    now: float
    retry_after: float | None = None
    remaining_header_present: bool = True

    @property
    def seconds_until_reset(self) -> int:
        """Whole seconds until the quota resets, rounded up so a wait never ends before the reset."""
        return max(0, math.ceil(self.reset_epoch - self.now))

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], now: float | None = None) -> RateLimitState:
        current = time.time() if now is None else now
        remaining_value = get_header_value(headers, RATE_LIMIT_REMAINING_HEADER)

        return cls(
            remaining=get_int_header(headers, RATE_LIMIT_REMAINING_HEADER, DEFAULT_RATE_LIMIT_REMAINING),
            reset_epoch=get_int_header(headers, RATE_LIMIT_RESET_HEADER, int(current)),
            now=current,
            retry_after=parse_retry_after(get_header_value(headers, RETRY_AFTER_HEADER), now=current),
            remaining_header_present=remaining_value is not None,
        )


class RetryDelay:
    """
    Pending delay shared by every caller of one client instance.

    A response that reveals an exhausted quota stores a delay here; the next call made through the
    client, by any caller, sleeps for it before sending. This is a cooperative throttle, not a lock:
    callers that already read a zero delay proceed unthrottled.

    A generation counter makes clearing safe when callers overlap. A caller only clears the delay it
    slept for, so a newer delay stored while it slept survives for the following call.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._seconds: float = 0.0
        self._generation: int = 0

    @property
    def pending(self) -> float:
        with self._lock:
            return self._seconds

    def set(self, seconds: float) -> None:
        with self._lock:
            self._seconds = max(0.0, float(seconds))
            self._generation += 1

    def snapshot(self) -> tuple[float, int]:
        with self._lock:
            return self._seconds, self._generation

    def clear(self, generation: int) -> bool:
        """Clear the delay if it is still the one stored at `generation`. Returns True when cleared."""
        with self._lock:
            if self._generation != generation:
                return False
            self._seconds = 0.0
            return True
