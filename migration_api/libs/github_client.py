from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx
from simple_logger.logger import get_logger

from migration_api.libs.exceptions import GraphQLError
from migration_api.libs.pagination import iter_graphql_pages, iter_link_pages
from migration_api.libs.rate_limit import GITHUB_RATE_LIMIT_RULES
from migration_api.libs.transport import RateLimitAwareTransport
from migration_api.utils.constants import GITHUB_GRAPHQL_FEATURES, GRAPHQL_PAGE_SIZE, USER_AGENT


class GithubClient(RateLimitAwareTransport):
    """
    GitHub REST and GraphQL client on top of the rate limit aware transport.

    GET requests are retried by the retry policy; writes are sent once and left to the caller to
    retry when they are known to be idempotent.

    Example:
        >>> async with GithubClient(personal_access_token=token, logger=logger) as client:
        ...     org = await client.get("https://api.github.com/orgs/my-org")
    """

    def __init__(
        self,
        personal_access_token: str,
        logger: logging.Logger | None = None,
        **kwargs: Any,
    ) -> None:
        logger = logger or get_logger(name="github-client")
        kwargs.setdefault("rules", GITHUB_RATE_LIMIT_RULES)
        super().__init__(logger=logger, **kwargs)

        self.default_headers.update({
            "Accept": "application/vnd.github.v3+json",
            "GraphQL-Features": GITHUB_GRAPHQL_FEATURES,
            "Authorization": f"Bearer {personal_access_token}",
            "User-Agent": USER_AGENT,
        })

    async def get(self, url: str, headers: dict[str, str] | None = None) -> Any:
        """GET `url` with retries and return the parsed JSON body."""
        response = await self._get_with_retry(url, headers=headers)
        return response.json()

    async def get_non_success(self, url: str, expected_status: int) -> str:
        """GET `url` expecting exactly `expected_status` (e.g. 404 or 302); return the raw body."""
        response = await self._get_with_retry(url, expected_status=expected_status)
        return response.text

    async def get_non_success_with_full_response(self, url: str, expected_status: int) -> httpx.Response:
        return await self._get_with_retry(url, expected_status=expected_status)

    async def get_all(
        self,
        url: str,
        items_path: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> AsyncIterator[Any]:
        """Iterate every item of a REST collection, following Link headers page by page."""

        async def _fetch_page(page_url: str) -> httpx.Response:
            return await self._get_with_retry(page_url, headers=headers)

        async for item in iter_link_pages(_fetch_page, url, items_path=items_path):
            yield item

    async def post(self, url: str, body: Any, headers: dict[str, str] | None = None) -> str:
        response = await self.send("POST", url, body=body, headers=headers)
        return response.text

    async def post_with_full_response(
        self, url: str, body: Any, headers: dict[str, str] | None = None
    ) -> httpx.Response:
        return await self.send("POST", url, body=body, headers=headers)

    async def post_graphql(self, url: str, body: dict[str, Any], headers: dict[str, str] | None = None) -> Any:
        """
        POST a GraphQL request and return the parsed response.

        Raises:
            GraphQLError: The response carries a non-empty `errors` list
        """
        response = await self.send("POST", url, body=body, headers=headers)
        data = response.json()
        self._ensure_graphql_success(data)
        return data

    async def post_graphql_with_pagination(
        self,
        url: str,
        body: dict[str, Any],
        items_path: str,
        page_info_path: str,
        first: int = GRAPHQL_PAGE_SIZE,
        after: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> AsyncIterator[Any]:
        """Iterate the nodes of a GraphQL connection using `$first`/`$after` cursor pagination."""

        async def _post_page(payload: dict[str, Any]) -> Any:
            return await self.post_graphql(url, payload, headers=headers)

        async for item in iter_graphql_pages(
            _post_page, body, items_path=items_path, page_info_path=page_info_path, first=first, after=after
        ):
            yield item

    async def put(self, url: str, body: Any, headers: dict[str, str] | None = None) -> str:
        response = await self.send("PUT", url, body=body, headers=headers)
        return response.text

    async def patch(self, url: str, body: Any, headers: dict[str, str] | None = None) -> str:
        response = await self.send("PATCH", url, body=body, headers=headers)
        return response.text

    async def patch_with_full_response(
        self, url: str, body: Any, headers: dict[str, str] | None = None
    ) -> httpx.Response:
        return await self.send("PATCH", url, body=body, headers=headers)

    async def delete(self, url: str, headers: dict[str, str] | None = None) -> str:
        response = await self.send("DELETE", url, headers=headers)
        return response.text

    async def _get_with_retry(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        expected_status: int | None = None,
    ) -> httpx.Response:
        return await self.retry_policy.retry(
            lambda: self.send("GET", url, expected_status=expected_status, headers=headers)
        )

    def _ensure_graphql_success(self, data: Any) -> None:
        errors = data.get("errors") if isinstance(data, dict) else None
        if not errors:
            return

        message = errors[0].get("message") if isinstance(errors[0], dict) else None
        self.logger.error(f"GraphQL request failed: {message or 'UNKNOWN'}")
        raise GraphQLError(message or "UNKNOWN")
