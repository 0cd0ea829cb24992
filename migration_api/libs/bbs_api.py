from __future__ import annotations

import logging

from simple_logger.logger import get_logger

from migration_api.libs.bbs_client import BbsClient
from migration_api.utils.helpers import escape_data_string


class BbsApi:
    """Typed Bitbucket Server operations used by migrations, built on BbsClient."""

    def __init__(self, client: BbsClient, bbs_server_url: str, logger: logging.Logger | None = None) -> None:
        self.client = client
        self.bbs_base_url = bbs_server_url.rstrip("/")
        self.logger = logger or get_logger(name="bbs-api")

    async def get_server_version(self) -> str:
        data = await self.client.get(f"{self.bbs_base_url}/rest/api/1.0/application-properties")
        return data["version"]

    async def get_projects(self) -> list[tuple[int, str, str]]:
        """Return (id, key, name) of every project."""
        url = f"{self.bbs_base_url}/rest/api/1.0/projects"
        return [(project["id"], project["key"], project["name"]) async for project in self.client.get_all(url)]

    async def get_repos(self, project_key: str) -> list[tuple[int, str, str]]:
        """Return (id, slug, name) of every repository in `project_key`."""
        url = f"{self.bbs_base_url}/rest/api/1.0/projects/{escape_data_string(project_key)}/repos"
        return [(repo["id"], repo["slug"], repo["name"]) async for repo in self.client.get_all(url)]
