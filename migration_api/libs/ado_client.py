from __future__ import annotations

import base64
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx
from simple_logger.logger import get_logger

from migration_api.libs.exceptions import HttpError
from migration_api.libs.pagination import get_count_using_skip, iter_continuation_token_pages, iter_top_skip_pages
from migration_api.libs.rate_limit import RETRY_AFTER_ONLY_RULES
from migration_api.libs.transport import RateLimitAwareTransport
from migration_api.utils.constants import USER_AGENT
from migration_api.utils.helpers import append_query_params


def _is_service_unavailable(error: BaseException) -> bool:
    return isinstance(error, HttpError) and error.status_code == 503


class AdoClient(RateLimitAwareTransport):
    """
    Azure DevOps REST client.

    Authenticates with a personal access token over basic auth. Azure DevOps throttles with
    Retry-After, which defers the next call made through this client.
    """

    def __init__(
        self,
        personal_access_token: str,
        logger: logging.Logger | None = None,
        **kwargs: Any,
    ) -> None:
        logger = logger or get_logger(name="ado-client")
        kwargs.setdefault("rules", RETRY_AFTER_ONLY_RULES)
        super().__init__(logger=logger, **kwargs)

        auth_token = base64.b64encode(f":{personal_access_token}".encode("ascii")).decode("ascii")
        self.default_headers.update({
            "Accept": "application/json",
            "Authorization": f"Basic {auth_token}",
            "User-Agent": USER_AGENT,
        })

    async def get(self, url: str) -> Any:
        """GET `url` with retries and return the parsed JSON body."""
        response = await self.retry_policy.retry(lambda: self.send("GET", url))
        return response.json()

    async def post(self, url: str, body: Any) -> str:
        return (await self.send("POST", url, body=body)).text

    async def put(self, url: str, body: Any) -> str:
        return (await self.send("PUT", url, body=body)).text

    async def patch(self, url: str, body: Any) -> str:
        return (await self.send("PATCH", url, body=body)).text

    async def delete(self, url: str) -> str:
        return (await self.send("DELETE", url)).text

    async def iter_with_paging(self, url: str, items_path: str = "value") -> AsyncIterator[Any]:
        """Iterate a collection paged with `x-ms-continuationtoken`. Pages are retried only on 503."""

        async def _fetch_page(page_url: str) -> httpx.Response:
            return await self.retry_policy.retry(lambda: self.send("GET", page_url), is_transient=_is_service_unavailable)

        async for item in iter_continuation_token_pages(_fetch_page, url, items_path=items_path):
            yield item

    async def get_with_paging(self, url: str, items_path: str = "value") -> list[Any]:
        return [item async for item in self.iter_with_paging(url, items_path=items_path)]

    async def iter_with_paging_top_skip(self, url: str, items_path: str = "value") -> AsyncIterator[Any]:
        """Iterate a collection with `$skip/$top` until an empty page is returned."""

        async def _fetch_page(page_url: str) -> httpx.Response:
            return await self.retry_policy.retry(lambda: self.send("GET", page_url))

        async for item in iter_top_skip_pages(_fetch_page, url, items_path=items_path):
            yield item

    async def get_count_using_skip(self, url: str) -> int:
        """Count the items behind `url` with `$top=1` offset probes."""

        async def _probe(skip: int) -> bool:
            data = await self.get(append_query_params(url, {"$top": 1, "$skip": skip}))
            return int(data["count"]) > 0

        count = await get_count_using_skip(_probe)
        self.logger.debug(f"Counted {count} items at {url}")
        return count
