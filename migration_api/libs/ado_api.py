from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from simple_logger.logger import get_logger

from migration_api.libs.ado_client import AdoClient
from migration_api.utils.constants import ADO_SERVER_URL
from migration_api.utils.helpers import escape_data_string


@dataclass(frozen=True)
class AdoRepository:
    id: str
    name: str
    size: int | None
    is_disabled: bool


class AdoApi:
    """Typed Azure DevOps operations used by migrations, built on AdoClient."""

    def __init__(self, client: AdoClient, ado_server_url: str = ADO_SERVER_URL, logger: logging.Logger | None = None) -> None:
        self.client = client
        self.ado_base_url = ado_server_url.rstrip("/")
        self.logger = logger or get_logger(name="ado-api")

    async def get_team_projects(self, org: str) -> list[str]:
        url = f"{self.ado_base_url}/{escape_data_string(org)}/_apis/projects?api-version=6.1-preview"
        return [project["name"] async for project in self.client.iter_with_paging(url)]

    async def get_repos(self, org: str, team_project: str) -> list[AdoRepository]:
        url = (
            f"{self.ado_base_url}/{escape_data_string(org)}/{escape_data_string(team_project)}"
            "/_apis/git/repositories?api-version=6.1-preview.1"
        )
        return [self._build_repository(repo) async for repo in self.client.iter_with_paging(url)]

    async def get_enabled_repos(self, org: str, team_project: str) -> list[AdoRepository]:
        return [repo for repo in await self.get_repos(org, team_project) if not repo.is_disabled]

    async def get_pull_request_count(self, org: str, team_project: str, repo: str) -> int:
        url = (
            f"{self.ado_base_url}/{escape_data_string(org)}/{escape_data_string(team_project)}"
            f"/_apis/git/repositories/{escape_data_string(repo)}/pullrequests"
            "?searchCriteria.status=all&api-version=7.1-preview.1"
        )
        return await self.client.get_count_using_skip(url)

    async def get_pushers_since(self, org: str, team_project: str, repo: str, from_date: datetime) -> list[str]:
        """Return "display name (unique name)" of everyone who pushed to `repo` since `from_date`."""
        url = (
            f"{self.ado_base_url}/{escape_data_string(org)}/{escape_data_string(team_project)}"
            f"/_apis/git/repositories/{escape_data_string(repo)}/pushes"
            f"?searchCriteria.fromDate={from_date.strftime('%m/%d/%Y')}&api-version=7.1-preview.1"
        )
        return [
            f"{push['pushedBy']['displayName']} ({push['pushedBy']['uniqueName']})"
            async for push in self.client.iter_with_paging_top_skip(url)
        ]

    @staticmethod
    def _build_repository(repo: dict[str, Any]) -> AdoRepository:
        size = repo.get("size")
        is_disabled = repo.get("isDisabled")
        return AdoRepository(
            id=repo["id"],
            name=repo["name"],
            size=int(size) if size not in (None, "") else None,
            is_disabled=str(is_disabled).lower() == "true",
        )
