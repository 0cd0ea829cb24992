"""Rate limit aware HTTP transport shared by the GitHub, ADO and BBS clients."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from simple_logger.logger import get_logger

from migration_api.libs.exceptions import HttpError, SecondaryRateLimitError
from migration_api.libs.rate_limit import GITHUB_RATE_LIMIT_RULES, RateLimitRules, RateLimitState, RetryDelay
from migration_api.libs.retry_policy import RetryPolicy
from migration_api.utils.constants import (
    DEFAULT_REQUEST_TIMEOUT,
    GITHUB_REQUEST_ID_HEADER,
    OCTET_STREAM_CONTENT_TYPE,
    RATE_LIMIT_REMAINING_HEADER,
)
from migration_api.utils.helpers import truncate_output


class RateLimitAwareTransport:
    """
    HTTP request/response exchange with primary and secondary rate limit handling.

    Per call:
        1. Sleep for any delay a previous response left in the shared RetryDelay, then clear it.
        2. Send the request.
        3. If the quota is exhausted and the body carries the primary marker, store the time until
           reset for the *next* call. The current response is still processed.
        4. If the response is a secondary rate limit (403/429 + abuse marker, not primary), wait and
           resend in place, up to rules.secondary_max_retries times.
        5. If the response is a 403 while a delay is pending, resend once (the resend waits first).
        6. Check the status: any 2xx, or exactly `expected_status` when the caller gave one.

    The RetryDelay is shared by every caller of this instance, so one caller discovering an exhausted
    quota throttles everyone sharing the client.

    Example:
        >>> async with RateLimitAwareTransport(logger=logger) as transport:
        ...     response = await transport.send("GET", "https://api.github.com/orgs/my-org")
    """

    def __init__(
        self,
        logger: logging.Logger | None = None,
        http_client: httpx.AsyncClient | None = None,
        default_headers: dict[str, str] | None = None,
        rules: RateLimitRules = GITHUB_RATE_LIMIT_RULES,
        retry_policy: RetryPolicy | None = None,
        retry_delay: RetryDelay | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        verify_ssl: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the transport.

        Args:
            logger: Logger instance for request logging
            http_client: httpx client to send with (default: a new AsyncClient owned by this transport)
            default_headers: Headers added to every request
            rules: How the provider signals rate limiting
            retry_policy: Policy used by callers that retry whole calls (default: RetryPolicy())
            retry_delay: Pending delay to share with other transports (default: a private one)
            timeout: Request timeout in seconds for an owned client
            verify_ssl: Verify TLS certificates for an owned client
            sleep: Coroutine used for every wait
            clock: Current unix time
        """
        self.logger = logger or get_logger(name="transport")
        self.rules = rules
        self.default_headers: dict[str, str] = dict(default_headers or {})
        self.retry_policy = retry_policy or RetryPolicy(logger=self.logger, sleep=sleep)
        self.retry_delay = retry_delay or RetryDelay()
        self._sleep = sleep
        self._clock = clock
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout, verify=verify_ssl, follow_redirects=False)

    async def __aenter__(self) -> RateLimitAwareTransport:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()
            self.logger.debug("HTTP client closed")

    async def send(
        self,
        method: str,
        url: str,
        body: Any = None,
        expected_status: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """
        Send one logical request.

        Args:
            method: HTTP method
            url: Absolute URL
            body: None, bytes (sent as application/octet-stream), str, or a JSON-serialisable object
            expected_status: Exact status the caller expects; None accepts any 2xx
            headers: Extra headers for this request

        Returns:
            The final response

        Raises:
            HttpError: The status did not match what the caller expected
            SecondaryRateLimitError: Secondary rate limit retries were exhausted
            httpx.TransportError: The exchange itself failed
        """
        secondary_attempt = 0
        resend_on_forbidden = True

        while True:
            await self._apply_retry_delay()
            response = await self._exchange(method=method, url=url, body=body, headers=headers)
            state = self._record_rate_limit(response)

            if self.rules.is_secondary_rate_limit(response.status_code, response.text):
                if secondary_attempt >= self.rules.secondary_max_retries:
                    self.logger.error(
                        f"SECONDARY RATE LIMIT: giving up on {method} {url} after "
                        f"{self.rules.secondary_max_retries} retries"
                    )
                    raise SecondaryRateLimitError(max_retries=self.rules.secondary_max_retries)

                delay = self.rules.secondary_delay(state, secondary_attempt)
                self.logger.warning(
                    f"SECONDARY RATE LIMIT: detected (attempt {secondary_attempt + 1}/"
                    f"{self.rules.secondary_max_retries}). Waiting {delay:.0f} seconds before retrying..."
                )
                await self._sleep(delay)
                secondary_attempt += 1
                continue

            if response.status_code == 403 and resend_on_forbidden and self.retry_delay.pending > 0:
                resend_on_forbidden = False
                continue

            self._ensure_expected_status(method, url, response, expected_status)
            return response

    async def _apply_retry_delay(self) -> None:
        seconds, generation = self.retry_delay.snapshot()
        if seconds <= 0:
            return

        self.logger.warning(f"RATE LIMIT: rate limit exceeded. Waiting {seconds:.0f} seconds before continuing")
        await self._sleep(seconds)
        self.retry_delay.clear(generation)

    async def _exchange(
        self,
        method: str,
        url: str,
        body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        request_headers = {**self.default_headers, **(headers or {})}
        kwargs: dict[str, Any] = {}

        self.logger.debug(f"HTTP {method}: {url}")

        if isinstance(body, (bytes, bytearray, memoryview)):
            kwargs["content"] = bytes(body)
            if not any(key.lower() == "content-type" for key in request_headers):
                request_headers["Content-Type"] = OCTET_STREAM_CONTENT_TYPE
            self.logger.debug("HTTP BODY: BLOB")
        elif isinstance(body, str):
            kwargs["content"] = body
            self.logger.debug(f"HTTP BODY: {truncate_output(body)}")
        elif body is not None:
            kwargs["json"] = body
            self.logger.debug(f"HTTP BODY: {truncate_output(json.dumps(body))}")

        response = await self._client.request(method, url, headers=request_headers, **kwargs)

        request_id = response.headers.get(GITHUB_REQUEST_ID_HEADER)
        if request_id:
            self.logger.debug(f"GITHUB REQUEST ID: {request_id}")
        self.logger.debug(f"RESPONSE ({response.status_code}): {truncate_output(response.text)}")

        return response

    def _record_rate_limit(self, response: httpx.Response) -> RateLimitState:
        state = RateLimitState.from_headers(response.headers, now=self._clock())

        if self.rules.is_primary_rate_limited(state, response.text):
            delay = state.seconds_until_reset
            self.logger.warning(
                f"RATE LIMIT: primary rate limit exceeded. The next call will wait {delay} seconds "
                f"until the quota resets at {state.reset_epoch}"
            )
            self.retry_delay.set(delay)

        elif (
            self.rules.primary_marker
            and not state.remaining_header_present
            and self.rules.primary_marker in response.text.upper()
        ):
            # Missing quota header counts as a healthy quota
            self.logger.debug(
                f"RATE LIMIT: rate limit marker without {RATE_LIMIT_REMAINING_HEADER} header, treating quota as healthy"
            )

        elif self.rules.defer_on_retry_after and state.retry_after is not None and state.retry_after > 0:
            self.logger.warning(f"THROTTLING IN EFFECT. The next call will wait {state.retry_after:.0f} seconds")
            self.retry_delay.set(state.retry_after)

        return state

    def _ensure_expected_status(
        self,
        method: str,
        url: str,
        response: httpx.Response,
        expected_status: int | None,
    ) -> None:
        if expected_status is None:
            if response.is_success:
                return
            body = truncate_output(response.text)
            raise HttpError(
                f"HTTP {response.status_code} error for {method} {url}: {body}",
                status_code=response.status_code,
                body=body,
            )

        if response.status_code != expected_status:
            raise HttpError(
                f"Expected status code {expected_status} but got {response.status_code} for {method} {url}",
                status_code=response.status_code,
                body=truncate_output(response.text),
            )
