"""Build configured API clients from Config."""

from __future__ import annotations

import dataclasses
import logging

from migration_api.libs.ado_api import AdoApi
from migration_api.libs.ado_client import AdoClient
from migration_api.libs.archive_uploader import ArchiveUploader
from migration_api.libs.bbs_api import BbsApi
from migration_api.libs.bbs_client import BbsClient
from migration_api.libs.config import Config
from migration_api.libs.github_api import GithubApi
from migration_api.libs.github_client import GithubClient
from migration_api.libs.rate_limit import GITHUB_RATE_LIMIT_RULES, RateLimitRules
from migration_api.libs.retry_policy import RetryPolicy
from migration_api.utils.constants import (
    ADO_SERVER_URL,
    DEFAULT_REQUEST_TIMEOUT,
    GITHUB_API_URL,
    GITHUB_UPLOADS_URL,
    RETRY_INTERVAL,
    RETRY_MAX_ATTEMPTS,
)
from migration_api.utils.helpers import get_logger_with_params


def _get_retry_policy(config: Config, logger: logging.Logger) -> RetryPolicy:
    return RetryPolicy(
        logger=logger,
        max_attempts=int(config.get_value(value="retry.max-attempts", return_on_none=RETRY_MAX_ATTEMPTS)),
        retry_interval=float(config.get_value(value="retry.interval", return_on_none=RETRY_INTERVAL)),
    )


def _get_github_rules(config: Config) -> RateLimitRules:
    rules = GITHUB_RATE_LIMIT_RULES
    return dataclasses.replace(
        rules,
        secondary_max_retries=int(
            config.get_value(value="secondary-rate-limit.max-retries", return_on_none=rules.secondary_max_retries)
        ),
        secondary_base_delay=float(
            config.get_value(value="secondary-rate-limit.base-delay", return_on_none=rules.secondary_base_delay)
        ),
        secondary_max_delay=float(
            config.get_value(value="secondary-rate-limit.max-delay", return_on_none=rules.secondary_max_delay)
        ),
        secondary_jitter=float(
            config.get_value(value="secondary-rate-limit.jitter", return_on_none=rules.secondary_jitter)
        ),
    )


def _get_transport_kwargs(config: Config, logger: logging.Logger) -> dict:
    return {
        "retry_policy": _get_retry_policy(config=config, logger=logger),
        "timeout": float(config.get_value(value="request-timeout", return_on_none=DEFAULT_REQUEST_TIMEOUT)),
        "verify_ssl": not config.get_value(value="no-ssl-verify", return_on_none=False),
    }


def create_github_api(
    personal_access_token: str,
    config: Config | None = None,
    logger: logging.Logger | None = None,
    api_url: str | None = None,
    uploads_url: str | None = None,
) -> GithubApi:
    """
    Create a GithubApi with its client and archive uploader.

    Explicit `api_url` / `uploads_url` win over the `github-api-url` / `github-uploads-url`
    config keys, which win over the public GitHub URLs.
    """
    logger = logger or get_logger_with_params(name="github-api")
    config = config or Config(logger=logger)

    client = GithubClient(
        personal_access_token=personal_access_token,
        logger=logger,
        rules=_get_github_rules(config=config),
        **_get_transport_kwargs(config=config, logger=logger),
    )
    uploader = ArchiveUploader(
        client=client,
        uploads_url=uploads_url or config.get_value(value="github-uploads-url", return_on_none=GITHUB_UPLOADS_URL),
        logger=logger,
        multipart_mebibytes=config.multipart_mebibytes,
    )

    return GithubApi(
        client=client,
        api_url=api_url or config.get_value(value="github-api-url", return_on_none=GITHUB_API_URL),
        archive_uploader=uploader,
        logger=logger,
    )


def create_ado_api(
    personal_access_token: str,
    config: Config | None = None,
    logger: logging.Logger | None = None,
    ado_server_url: str | None = None,
) -> AdoApi:
    logger = logger or get_logger_with_params(name="ado-api")
    config = config or Config(logger=logger)

    client = AdoClient(
        personal_access_token=personal_access_token,
        logger=logger,
        **_get_transport_kwargs(config=config, logger=logger),
    )

    return AdoApi(
        client=client,
        ado_server_url=ado_server_url or config.get_value(value="ado-server-url", return_on_none=ADO_SERVER_URL),
        logger=logger,
    )


def create_bbs_api(
    bbs_server_url: str,
    username: str | None = None,
    password: str | None = None,
    config: Config | None = None,
    logger: logging.Logger | None = None,
) -> BbsApi:
    logger = logger or get_logger_with_params(name="bbs-api")
    config = config or Config(logger=logger)

    client = BbsClient(
        username=username,
        password=password,
        logger=logger,
        **_get_transport_kwargs(config=config, logger=logger),
    )

    return BbsApi(client=client, bbs_server_url=bbs_server_url, logger=logger)
