from __future__ import annotations

import base64
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx
from simple_logger.logger import get_logger

from migration_api.libs.pagination import iter_start_limit_pages
from migration_api.libs.rate_limit import NO_RATE_LIMIT_RULES
from migration_api.libs.transport import RateLimitAwareTransport
from migration_api.utils.constants import BBS_PAGE_SIZE, USER_AGENT


class BbsClient(RateLimitAwareTransport):
    """Bitbucket Server REST client. Credentials are optional (anonymous access)."""

    def __init__(
        self,
        username: str | None = None,
        password: str | None = None,
        logger: logging.Logger | None = None,
        **kwargs: Any,
    ) -> None:
        logger = logger or get_logger(name="bbs-client")
        kwargs.setdefault("rules", NO_RATE_LIMIT_RULES)
        super().__init__(logger=logger, **kwargs)

        self.default_headers.update({"Accept": "application/json", "User-Agent": USER_AGENT})
        if username is not None and password is not None:
            credentials = base64.b64encode(f"{username}:{password}".encode("ascii")).decode("ascii")
            self.default_headers["Authorization"] = f"Basic {credentials}"

    async def get(self, url: str) -> Any:
        """GET `url` with retries and return the parsed JSON body."""
        response = await self._get_with_retry(url)
        return response.json()

    async def get_all(self, url: str, limit: int = BBS_PAGE_SIZE) -> AsyncIterator[Any]:
        """Iterate every item of a paged collection using `start/limit`."""
        async for item in iter_start_limit_pages(self._get_with_retry, url, limit=limit):
            yield item

    async def post(self, url: str, body: Any) -> str:
        return (await self.send("POST", url, body=body)).text

    async def delete(self, url: str) -> str:
        return (await self.send("DELETE", url)).text

    async def _get_with_retry(self, url: str) -> httpx.Response:
        return await self.retry_policy.retry(lambda: self.send("GET", url))
