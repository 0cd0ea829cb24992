"""Tests for AdoClient and AdoApi."""

from __future__ import annotations

import base64
from datetime import datetime
from unittest.mock import call

import httpx
import pytest

from migration_api.libs.ado_api import AdoApi, AdoRepository
from migration_api.libs.ado_client import AdoClient
from migration_api.libs.exceptions import HttpError
from migration_api.tests.conftest import SequenceHandler, make_http_client

ADO_URL = "https://dev.azure.com"
ADO_PAT = "ado-" + "pat-value"  # pragma: allowlist secret


@pytest.fixture
def make_api(mock_logger, retry_policy, mock_sleep, clock):
    def _make_api(handler):
        client = AdoClient(
            personal_access_token=ADO_PAT,
            logger=mock_logger,
            http_client=make_http_client(handler),
            retry_policy=retry_policy,
            sleep=mock_sleep,
            clock=clock,
        )
        return AdoApi(client=client, ado_server_url=f"{ADO_URL}/", logger=mock_logger)

    return _make_api


class SkipCountHandler:
    """Serves `$top=1&$skip=n` probes for a collection of `total` items."""

    def __init__(self, total: int) -> None:
        self.total = total
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        assert request.url.params["$top"] == "1"
        skip = int(request.url.params["$skip"])
        return httpx.Response(200, json={"count": 1 if skip < self.total else 0, "value": []})


class TestAdoClient:
    @pytest.mark.asyncio
    async def test_basic_auth_header(self, make_api):
        handler = SequenceHandler(httpx.Response(200, json={}))
        api = make_api(handler)

        await api.client.get(f"{ADO_URL}/my-org/_apis/projects")

        expected = base64.b64encode(f":{ADO_PAT}".encode()).decode()
        assert handler.requests[0].headers["Authorization"] == f"Basic {expected}"
        assert handler.requests[0].headers["Accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_retry_after_defers_next_call(self, make_api, mock_sleep):
        handler = SequenceHandler(
            httpx.Response(200, json={"value": []}, headers={"Retry-After": "10"}),
            httpx.Response(200, json={"value": []}),
        )
        api = make_api(handler)

        await api.client.get(f"{ADO_URL}/my-org/_apis/projects")
        await api.client.post(f"{ADO_URL}/my-org/_apis/projects", {"name": "p"})

        assert mock_sleep.await_args_list == [call(10.0)]

    @pytest.mark.asyncio
    async def test_paging_retries_service_unavailable(self, make_api):
        url = f"{ADO_URL}/my-org/_apis/projects?api-version=6.1-preview"
        handler = SequenceHandler(
            httpx.Response(503, text="unavailable"),
            httpx.Response(200, json={"value": [{"name": "p1"}]}),
        )
        api = make_api(handler)

        assert await api.client.get_with_paging(url) == [{"name": "p1"}]
        assert len(handler.requests) == 2

    @pytest.mark.asyncio
    async def test_paging_does_not_retry_other_errors(self, make_api):
        handler = SequenceHandler(httpx.Response(500, text="boom"))
        api = make_api(handler)

        with pytest.raises(HttpError):
            await api.client.get_with_paging(f"{ADO_URL}/my-org/_apis/projects")

        assert len(handler.requests) == 1

    @pytest.mark.parametrize(
        "total, expected_requests",
        [(0, 1), (1, 11), (499, 11), (500, 10), (501, 12), (12345, 20)],
    )
    @pytest.mark.asyncio
    async def test_get_count_using_skip(self, make_api, total, expected_requests):
        handler = SkipCountHandler(total)
        api = make_api(handler)

        assert await api.client.get_count_using_skip(f"{ADO_URL}/my-org/p/_apis/git/pullrequests?api-version=7.1") == total
        assert len(handler.requests) == expected_requests


class TestAdoApi:
    @pytest.mark.asyncio
    async def test_get_team_projects_follows_continuation_token(self, make_api):
        url = f"{ADO_URL}/my-org/_apis/projects?api-version=6.1-preview"
        handler = SequenceHandler(
            httpx.Response(200, json={"value": [{"name": "p1"}]}, headers={"x-ms-continuationtoken": "next"}),
            httpx.Response(200, json={"value": [{"name": "p2"}]}),
        )
        api = make_api(handler)

        assert await api.get_team_projects("my-org") == ["p1", "p2"]
        assert str(handler.requests[0].url) == url
        assert handler.requests[1].url.params["continuationToken"] == "next"

    @pytest.mark.asyncio
    async def test_get_repos(self, make_api):
        handler = SequenceHandler(
            httpx.Response(
                200,
                json={
                    "value": [
                        {"id": "r1", "name": "repo one", "size": "2048", "isDisabled": "false"},
                        {"id": "r2", "name": "repo-two", "isDisabled": True},
                    ]
                },
            )
        )
        api = make_api(handler)

        assert await api.get_repos("my-org", "my project") == [
            AdoRepository(id="r1", name="repo one", size=2048, is_disabled=False),
            AdoRepository(id="r2", name="repo-two", size=None, is_disabled=True),
        ]
        assert "/my-org/my%20project/_apis/git/repositories?" in str(handler.requests[0].url)

    @pytest.mark.asyncio
    async def test_get_enabled_repos(self, make_api):
        handler = SequenceHandler(
            httpx.Response(
                200,
                json={"value": [{"id": "r1", "name": "a", "isDisabled": False}, {"id": "r2", "name": "b", "isDisabled": True}]},
            )
        )
        api = make_api(handler)

        assert [repo.name for repo in await api.get_enabled_repos("my-org", "p")] == ["a"]

    @pytest.mark.asyncio
    async def test_get_pull_request_count(self, make_api):
        handler = SkipCountHandler(3)
        api = make_api(handler)

        assert await api.get_pull_request_count("my-org", "p", "repo") == 3
        assert handler.requests[0].url.params["searchCriteria.status"] == "all"

    @pytest.mark.asyncio
    async def test_get_pushers_since(self, make_api):
        push = {"pushedBy": {"displayName": "Mona", "uniqueName": "mona@example.com"}}
        handler = SequenceHandler(
            httpx.Response(200, json={"value": [push, push]}),
            httpx.Response(200, json={"value": []}),
        )
        api = make_api(handler)

        pushers = await api.get_pushers_since("my-org", "p", "repo", datetime(2024, 3, 5))

        assert pushers == ["Mona (mona@example.com)", "Mona (mona@example.com)"]
        first_params = handler.requests[0].url.params
        assert first_params["searchCriteria.fromDate"] == "03/05/2024"
        assert first_params["$skip"] == "0"
        assert first_params["$top"] == "1000"
        assert handler.requests[1].url.params["$skip"] == "1000"
