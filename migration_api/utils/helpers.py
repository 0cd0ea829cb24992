from __future__ import annotations

import os
import re
import time
from collections.abc import Mapping
from email.utils import parsedate_to_datetime
from logging import Logger
from urllib.parse import quote, urlsplit

from simple_logger.logger import get_logger

from migration_api.libs.config import Config
from migration_api.utils.constants import ERROR_BODY_MAX_LENGTH, LINK_HEADER

# Matches one entry of a Link header: <https://...>; rel="next"
_LINK_ENTRY_REGEX = re.compile(r'<(?P<url>[^>]+)>\s*;\s*rel="(?P<rel>[^"]+)"')


def get_logger_with_params(name: str = "migration-api") -> Logger:
    mask_sensitive_patterns: list[str] = [
        # Tokens and API keys
        "token",
        "apikey",
        "api_key",
        "github_token",
        "GITHUB_TOKEN",
        "GH_PAT",
        "GH_SOURCE_PAT",
        "ADO_PAT",
        "personal_access_token",
        # Authentication credentials
        "authorization",
        "Authorization",
        "password",
        "secret",
        "BBS_PASSWORD",
        "AZURE_STORAGE_CONNECTION_STRING",
        "AWS_SECRET_ACCESS_KEY",
    ]

    _config = Config()

    log_level: str = _config.get_value(value="log-level", return_on_none="INFO")
    log_file: str = _config.get_value(value="log-file")
    mask_sensitive: bool = _config.get_value(value="mask-sensitive-data", return_on_none=True)

    if log_file and not log_file.startswith("/"):
        log_file_path = os.path.join(_config.data_dir, "logs")

        if not os.path.isdir(log_file_path):
            os.makedirs(log_file_path, exist_ok=True)

        log_file = os.path.join(log_file_path, log_file)

    return get_logger(
        name=name,
        filename=log_file,
        level=log_level,
        file_max_bytes=1024 * 1024 * 10,
        mask_sensitive=mask_sensitive,
        mask_sensitive_patterns=mask_sensitive_patterns,
        console=True,
    )


def truncate_output(text: str, max_length: int = ERROR_BODY_MAX_LENGTH) -> str:
    """
    Truncate output text for logging and error messages.

    Args:
        text: The text to truncate
        max_length: Maximum length before truncation (default: 500)

    Returns:
        Truncated text with ellipsis if exceeds max_length
    """
    if len(text) <= max_length:
        return text

    return f"{text[:max_length]}... [truncated {len(text) - max_length} chars]"


def escape_data_string(value: str | int) -> str:
    """Percent-encode a value for use as a single URL path segment or query value."""
    return quote(str(value), safe="")


def append_query_params(url: str, params: Mapping[str, str | int]) -> str:
    """
    Append query parameters to a URL that may already carry a query string.

    Values are appended as given, so callers are responsible for escaping them.

    Examples:
        >>> append_query_params("https://host/items", {"$top": 1, "$skip": 0})
        'https://host/items?$top=1&$skip=0'
        >>> append_query_params("https://host/items?api-version=7.1", {"$top": 1})
        'https://host/items?api-version=7.1&$top=1'
    """
    if not params:
        return url

    separator = "&" if "?" in url else "?"
    query = "&".join(f"{key}={value}" for key, value in params.items())
    return f"{url}{separator}{query}"


def get_query_param(url: str, name: str) -> str | None:
    for pair in urlsplit(url).query.split("&"):
        key, _, value = pair.partition("=")
        if key == name:
            return value
    return None


def get_header_value(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup returning the first value, or None when absent or empty."""
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value or None
    return None


def get_int_header(headers: Mapping[str, str], name: str, default: int) -> int:
    value = get_header_value(headers, name)
    if value is None:
        return default

    try:
        return int(value.strip())
    except ValueError:
        return default


def parse_retry_after(value: str | None, now: float | None = None) -> float | None:
    """
    Parse a Retry-After header value.

    Args:
        value: Header value, either delta-seconds or an HTTP date
        now: Current unix time used to turn an HTTP date into a delay (default: time.time())

    Returns:
        Delay in seconds, or None when the value is missing or unparseable
    """
    if not value:
        return None

    value = value.strip()
    try:
        return float(int(value))
    except ValueError:
        pass

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None

    current = time.time() if now is None else now
    return retry_at.timestamp() - current


def parse_link_header(value: str | None) -> dict[str, str]:
    """
    Parse a Link header into a {rel: url} mapping.

    The first entry for each relation wins. Entries that do not match `<url>; rel="name"` are skipped.
    """
    links: dict[str, str] = {}
    if not value:
        return links

    for entry in value.split(","):
        match = _LINK_ENTRY_REGEX.search(entry.strip())
        if match:
            links.setdefault(match.group("rel"), match.group("url"))

    return links


def get_next_link(headers: Mapping[str, str]) -> str | None:
    return parse_link_header(get_header_value(headers, LINK_HEADER)).get("next")
