"""Pagination strategies.

Every strategy is a lazy async generator driven by a single "fetch one page" callable, so the
caller decides how a page is fetched (retried or not) and may stop iterating at any time.
Cursor state lives in the small PageCursor dataclasses below and is replaced after every page.
"""

from __future__ import annotations

import copy
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from migration_api.libs.exceptions import PaginationSelectorError
from migration_api.utils.constants import (
    ADO_CONTINUATION_TOKEN_HEADER,
    ADO_TOP_SKIP_PAGE_SIZE,
    BBS_PAGE_SIZE,
    GRAPHQL_PAGE_SIZE,
    SKIP_COUNT_INITIAL_CEILING,
    SKIP_COUNT_INITIAL_FLOOR,
)
from migration_api.utils.helpers import append_query_params, get_header_value, get_next_link

PageFetcher = Callable[[str], Awaitable[httpx.Response]]


@dataclass(frozen=True)
class NoCursor:
    pass


@dataclass(frozen=True)
class NextLink:
    url: str


@dataclass(frozen=True)
class ContinuationToken:
    token: str


@dataclass(frozen=True)
class GraphQLCursor:
    cursor: str | None
    has_next: bool


@dataclass(frozen=True)
class SkipCursor:
    skip: int
    page_size: int


@dataclass(frozen=True)
class StartCursor:
    start: int


PageCursor = Union[NoCursor, NextLink, ContinuationToken, GraphQLCursor, SkipCursor, StartCursor]


def select_path(data: Any, path: str | None) -> Any:
    """
    Walk a dotted field path ("data.organization.repositories.nodes") into parsed JSON.

    Args:
        data: Parsed JSON document
        path: Dotted path; None or "" selects the document itself

    Returns:
        The selected value. An explicit JSON null is returned as None.

    Raises:
        PaginationSelectorError: A path segment is missing
    """
    if not path:
        return data

    current = data
    for key in path.split("."):
        if not isinstance(current, dict) or key not in current:
            raise PaginationSelectorError(path=path)
        current = current[key]

    return current


def _select_items(data: Any, path: str | None) -> list[Any]:
    items = select_path(data, path)
    return items or []


async def iter_link_pages(fetch_page: PageFetcher, url: str, items_path: str | None = None) -> AsyncIterator[Any]:
    """Yield the items of every page, following `Link: <url>; rel="next"` until it is absent."""
    cursor: PageCursor = NextLink(url=url)

    while isinstance(cursor, NextLink):
        response = await fetch_page(cursor.url)
        for item in _select_items(response.json(), items_path):
            yield item

        next_url = get_next_link(response.headers)
        cursor = NextLink(url=next_url) if next_url else NoCursor()


async def iter_graphql_pages(
    post_page: Callable[[dict[str, Any]], Awaitable[Any]],
    body: dict[str, Any],
    items_path: str,
    page_info_path: str,
    first: int = GRAPHQL_PAGE_SIZE,
    after: str | None = None,
) -> AsyncIterator[Any]:
    """
    Yield the nodes of a GraphQL connection, page by page.

    Sets `variables.first` to the page size and `variables.after` to the current cursor
    (None on the first page, serialised as JSON null). Continues with `pageInfo.endCursor`
    while `pageInfo.hasNextPage` is true. A null pageInfo ends the walk.

    Args:
        post_page: Sends one GraphQL request body and returns the parsed response
        body: Request body with `query` and optional `variables`; not modified
        items_path: Dotted path to the node list (e.g. "data.node.mannequins.nodes")
        page_info_path: Dotted path to the pageInfo object
        first: Page size
        after: Cursor to start after

    Raises:
        PaginationSelectorError: A selected path is missing from a page
    """
    payload = copy.deepcopy(body)
    variables = payload.get("variables") or {}
    payload["variables"] = variables
    variables["first"] = first

    cursor = GraphQLCursor(cursor=after, has_next=True)

    while cursor.has_next:
        variables["after"] = cursor.cursor
        data = await post_page(copy.deepcopy(payload))

        for item in _select_items(data, items_path):
            yield item

        page_info = select_path(data, page_info_path)
        if page_info is None:
            return

        cursor = GraphQLCursor(
            cursor=page_info.get("endCursor"),
            has_next=bool(page_info.get("hasNextPage", False)),
        )


async def get_count_using_skip(probe: Callable[[int], Awaitable[bool]]) -> int:
    """
    Count the items of a collection that can only be probed by offset.

    `probe(skip)` must return True when an item exists at offset `skip`. Uses exponential search
    for an upper bound followed by binary search, so a collection of N items costs O(log N) probes.
    """
    if not await probe(0):
        return 0

    floor = SKIP_COUNT_INITIAL_FLOOR
    ceiling = SKIP_COUNT_INITIAL_CEILING

    while await probe(ceiling):
        floor = ceiling + 1
        ceiling *= 2

    # probe(floor - 1) is non-empty and probe(ceiling) is empty
    while floor < ceiling:
        skip = floor + (ceiling - floor) // 2
        if await probe(skip):
            floor = skip + 1
        else:
            ceiling = skip

    return floor


async def iter_continuation_token_pages(
    fetch_page: PageFetcher,
    url: str,
    items_path: str = "value",
) -> AsyncIterator[Any]:
    """Yield items while the response carries an `x-ms-continuationtoken` header."""
    cursor: PageCursor = NoCursor()

    while True:
        page_url = url if isinstance(cursor, NoCursor) else append_query_params(url, {"continuationToken": cursor.token})
        response = await fetch_page(page_url)

        for item in _select_items(response.json(), items_path):
            yield item

        token = get_header_value(response.headers, ADO_CONTINUATION_TOKEN_HEADER)
        if not token:
            return
        cursor = ContinuationToken(token=token)


async def iter_top_skip_pages(
    fetch_page: PageFetcher,
    url: str,
    items_path: str = "value",
    page_size: int = ADO_TOP_SKIP_PAGE_SIZE,
) -> AsyncIterator[Any]:
    """Yield items of `$skip/$top` pages until a page comes back empty."""
    cursor = SkipCursor(skip=0, page_size=page_size)

    while True:
        response = await fetch_page(append_query_params(url, {"$skip": cursor.skip, "$top": cursor.page_size}))
        items = _select_items(response.json(), items_path)
        if not items:
            return

        for item in items:
            yield item

        cursor = SkipCursor(skip=cursor.skip + cursor.page_size, page_size=cursor.page_size)


def set_query_params(url: str, params: dict[str, str | int]) -> str:
    """Return `url` with `params` set, replacing any existing values of the same names."""
    parts = urlsplit(url)
    query = [(key, value) for key, value in parse_qsl(parts.query, keep_blank_values=True) if key not in params]
    query.extend((key, str(value)) for key, value in params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


async def iter_start_limit_pages(
    fetch_page: PageFetcher,
    url: str,
    limit: int = BBS_PAGE_SIZE,
    items_path: str = "values",
) -> AsyncIterator[Any]:
    """Yield items of Bitbucket Server `start/limit` pages until `isLastPage` is true."""
    cursor: PageCursor = StartCursor(start=0)

    while isinstance(cursor, StartCursor):
        response = await fetch_page(set_query_params(url, {"start": cursor.start, "limit": limit}))
        data = response.json()

        for item in _select_items(data, items_path):
            yield item

        if data.get("isLastPage", True):
            cursor = NoCursor()
        else:
            next_start = data.get("nextPageStart")
            cursor = StartCursor(start=int(next_start) if next_start is not None else cursor.start + limit)
