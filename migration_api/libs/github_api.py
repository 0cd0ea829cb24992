from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, BinaryIO

from simple_logger.logger import get_logger

from migration_api.libs.archive_uploader import ArchiveUploader
from migration_api.libs.exceptions import HttpError, MigrationApiError
from migration_api.libs.github_client import GithubClient
from migration_api.libs.retry_policy import RetryPolicy
from migration_api.utils.constants import GITHUB_API_URL, LOCATION_HEADER
from migration_api.utils.helpers import escape_data_string, get_header_value

MANNEQUINS_QUERY = """query($id: ID!, $first: Int, $after: String) {
    node(id: $id) {
        ... on Organization {
            mannequins(first: $first, after: $after) {
                pageInfo {
                    endCursor
                    hasNextPage
                }
                nodes {
                    login
                    id
                    claimant {
                        login
                        id
                    }
                }
            }
        }
    }
}"""


@dataclass(frozen=True)
class Claimant:
    id: str
    login: str


@dataclass(frozen=True)
class Mannequin:
    id: str
    login: str
    mapped_user: Claimant | None = None


@dataclass(frozen=True)
class Team:
    id: str
    name: str
    slug: str


class GithubApi:
    """Typed GitHub operations used by migrations, built on GithubClient."""

    def __init__(
        self,
        client: GithubClient,
        api_url: str = GITHUB_API_URL,
        retry_policy: RetryPolicy | None = None,
        archive_uploader: ArchiveUploader | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.api_url = api_url.rstrip("/")
        self.retry_policy = retry_policy or client.retry_policy
        self.archive_uploader = archive_uploader
        self.logger = logger or get_logger(name="github-api")

    @property
    def graphql_url(self) -> str:
        return f"{self.api_url}/graphql"

    async def get_repos(self, org: str) -> list[tuple[str, str]]:
        """Return (name, visibility) for every repository of `org`."""
        url = f"{self.api_url}/orgs/{escape_data_string(org)}/repos?per_page=100"
        return [(repo["name"], repo["visibility"]) async for repo in self.client.get_all(url)]

    async def get_teams(self, org: str) -> list[Team]:
        url = f"{self.api_url}/orgs/{escape_data_string(org)}/teams"
        return [
            Team(id=str(team["id"]), name=team["name"], slug=team["slug"]) async for team in self.client.get_all(url)
        ]

    async def get_team_members(self, org: str, team_slug: str) -> list[str]:
        url = f"{self.api_url}/orgs/{escape_data_string(org)}/teams/{escape_data_string(team_slug)}/members?per_page=100"

        async def _list_members() -> list[str]:
            return [member["login"] async for member in self.client.get_all(url)]

        # Freshly created teams can briefly 404
        return await self.retry_policy.retry(
            _list_members,
            is_transient=lambda ex: isinstance(ex, HttpError) and ex.status_code == 404,
        )

    async def create_team(self, org: str, team_name: str) -> tuple[str, str]:
        """
        Create a closed team and return its (id, slug).

        A server error may still have created the team, so before each retry the team is looked
        up by name and returned if it exists.
        """
        url = f"{self.api_url}/orgs/{escape_data_string(org)}/teams"
        payload = {"name": team_name, "privacy": "closed"}

        async def _create() -> tuple[str, str]:
            try:
                data = (await self.client.post_with_full_response(url, payload)).json()
                return str(data["id"]), data["slug"]
            except HttpError as ex:
                if ex.status_code < 500:
                    raise

                self.logger.warning(f"Creating team {team_name} failed with HTTP {ex.status_code}, checking if it exists")
                for team in await self.get_teams(org):
                    if team.name == team_name:
                        return team.id, team.slug
                raise

        return await self.retry_policy.retry(
            _create,
            is_transient=lambda ex: isinstance(ex, HttpError) and ex.status_code >= 500,
        )

    async def does_repo_exist(self, org: str, repo: str) -> bool:
        url = f"{self.api_url}/repos/{escape_data_string(org)}/{escape_data_string(repo)}"

        try:
            await self.client.get_non_success(url, expected_status=404)
            return False
        except HttpError as ex:
            if ex.status_code == 200:
                return True
            if ex.status_code == 301:
                return False
            raise

    async def does_org_exist(self, org: str) -> bool:
        url = f"{self.api_url}/orgs/{escape_data_string(org)}"

        try:
            await self.client.get(url)
            return True
        except HttpError as ex:
            if ex.status_code == 404:
                return False
            raise

    async def get_login_name(self) -> str:
        payload = {"query": "query{viewer{login}}"}

        try:
            data = await self.retry_policy.retry(lambda: self.client.post_graphql(self.graphql_url, payload))
            return data["data"]["viewer"]["login"]
        except Exception as ex:
            raise MigrationApiError("Failed to lookup the login for current user") from ex

    async def get_organization_id(self, org: str) -> str:
        return await self._get_organization_field(
            org, "id", f"Failed to lookup the Organization ID for organization '{org}'"
        )

    async def get_organization_database_id(self, org: str) -> str:
        return await self._get_organization_field(
            org, "databaseId", f"Failed to lookup the Organization database ID for organization '{org}'"
        )

    async def get_mannequins(self, org_id: str) -> list[Mannequin]:
        payload = {"query": MANNEQUINS_QUERY, "variables": {"id": org_id}}

        async def _list_mannequins() -> list[Mannequin]:
            return [
                self._build_mannequin(node)
                async for node in self.client.post_graphql_with_pagination(
                    self.graphql_url,
                    payload,
                    items_path="data.node.mannequins.nodes",
                    page_info_path="data.node.mannequins.pageInfo",
                )
            ]

        try:
            return await self.retry_policy.retry(_list_mannequins)
        except Exception as ex:
            raise MigrationApiError("Failed to retrieve the list of mannequins") from ex

    async def get_archive_migration_url(self, org: str, archive_id: int) -> str | None:
        """Return the redirect target of an organization migration archive download."""
        url = f"{self.api_url}/orgs/{escape_data_string(org)}/migrations/{archive_id}/archive"
        response = await self.client.get_non_success_with_full_response(url, expected_status=302)
        return get_header_value(response.headers, LOCATION_HEADER)

    async def upload_archive_to_github_storage(
        self, org_database_id: str, archive_name: str, archive: BinaryIO, size: int | None = None
    ) -> str:
        if archive is None:
            raise ValueError("The archive content stream cannot be null.")
        if self.archive_uploader is None:
            raise MigrationApiError("No archive uploader is configured")

        return await self.archive_uploader.upload(archive, archive_name, org_database_id, size=size)

    async def _get_organization_field(self, org: str, field: str, error_message: str) -> str:
        payload = {
            "query": f"query($login: String!) {{organization(login: $login) {{ login, {field}, name }} }}",
            "variables": {"login": org},
        }

        try:
            data = await self.retry_policy.retry(lambda: self.client.post_graphql(self.graphql_url, payload))
            return str(data["data"]["organization"][field])
        except Exception as ex:
            raise MigrationApiError(error_message) from ex

    @staticmethod
    def _build_mannequin(node: dict[str, Any]) -> Mannequin:
        claimant = node.get("claimant")
        return Mannequin(
            id=node["id"],
            login=node["login"],
            mapped_user=Claimant(id=claimant["id"], login=claimant["login"]) if claimant else None,
        )
