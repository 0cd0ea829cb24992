from __future__ import annotations

import dataclasses
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from migration_api.libs.rate_limit import GITHUB_RATE_LIMIT_RULES
from migration_api.libs.retry_policy import RetryPolicy

# Fixed "now" for every test that reads the clock
NOW: int = 1_700_000_000

TEST_GITHUB_TOKEN = "ghp_" + "test1234567890abcdefghijklmnopqrstuvwxyz"  # pragma: allowlist secret

# Secondary backoff without jitter so waits are exact
GITHUB_RULES_NO_JITTER = dataclasses.replace(GITHUB_RATE_LIMIT_RULES, secondary_jitter=0)


class SequenceHandler:
    """httpx.MockTransport handler that answers with queued responses and records requests."""

    def __init__(self, *responses: httpx.Response | Callable[[httpx.Request], httpx.Response]) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"Unexpected request: {request.method} {request.url}")

        response = self.responses.pop(0)
        return response(request) if callable(response) else response


def make_http_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def rate_limit_headers(remaining: int, reset: int) -> dict[str, str]:
    return {"X-RateLimit-Remaining": str(remaining), "X-RateLimit-Reset": str(reset)}


@pytest.fixture
def mock_logger():
    """Create a mock logger."""
    logger = MagicMock()
    logger.debug = MagicMock()
    logger.info = MagicMock()
    logger.warning = MagicMock()
    logger.error = MagicMock()
    logger.exception = MagicMock()
    return logger


@pytest.fixture
def mock_sleep():
    """Replacement for asyncio.sleep that records waits without waiting."""
    return AsyncMock()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def retry_policy(mock_logger, mock_sleep):
    return RetryPolicy(logger=mock_logger, sleep=mock_sleep)
