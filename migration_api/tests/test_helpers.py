from __future__ import annotations

import pytest

from migration_api.utils.helpers import (
    append_query_params,
    escape_data_string,
    get_header_value,
    get_int_header,
    get_logger_with_params,
    get_next_link,
    get_query_param,
    parse_link_header,
    parse_retry_after,
    truncate_output,
)

NOW = 1_700_000_000


class TestTruncateOutput:
    def test_short_text_is_unchanged(self):
        assert truncate_output("short") == "short"

    def test_long_text_is_truncated(self):
        result = truncate_output("a" * 600)

        assert result == "a" * 500 + "... [truncated 100 chars]"

    def test_custom_length(self):
        assert truncate_output("abcdef", max_length=3) == "abc... [truncated 3 chars]"


@pytest.mark.parametrize(
    "value, expected",
    [
        ("my-org", "my-org"),
        ("my project", "my%20project"),
        ("a/b", "a%2Fb"),
        ("a&b=c", "a%26b%3Dc"),
        (1234, "1234"),
    ],
)
def test_escape_data_string(value, expected):
    assert escape_data_string(value) == expected


class TestQueryParams:
    def test_append_to_url_without_query(self):
        assert append_query_params("https://host/items", {"$top": 1, "$skip": 0}) == "https://host/items?$top=1&$skip=0"

    def test_append_to_url_with_query(self):
        assert append_query_params("https://host/items?api-version=7.1", {"$top": 1}) == "https://host/items?api-version=7.1&$top=1"

    def test_append_nothing(self):
        assert append_query_params("https://host/items", {}) == "https://host/items"

    def test_get_query_param(self):
        url = "https://uploads.github.com/organizations/1/gei/archive/blobs/uploads?part_number=2&guid=abc"

        assert get_query_param(url, "guid") == "abc"
        assert get_query_param(url, "missing") is None


class TestHeaders:
    def test_get_header_value_is_case_insensitive(self):
        assert get_header_value({"x-ratelimit-remaining": "10"}, "X-RateLimit-Remaining") == "10"

    def test_empty_header_is_none(self):
        assert get_header_value({"Location": ""}, "Location") is None

    def test_get_int_header(self):
        headers = {"X-RateLimit-Remaining": " 42 ", "X-RateLimit-Reset": "soon"}

        assert get_int_header(headers, "X-RateLimit-Remaining", 5000) == 42
        assert get_int_header(headers, "X-RateLimit-Reset", 7) == 7
        assert get_int_header(headers, "Missing", 5000) == 5000


class TestRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("120") == 120.0

    def test_http_date(self):
        # 2023-11-14T22:13:30Z is NOW + 10
        assert parse_retry_after("Tue, 14 Nov 2023 22:13:30 GMT", now=NOW) == 10.0

    @pytest.mark.parametrize("value", [None, "", "not a date"])
    def test_unparseable(self, value):
        assert parse_retry_after(value) is None


class TestLinkHeader:
    def test_parse_link_header(self):
        value = (
            '<https://api.github.com/organizations/1/repos?page=2>; rel="next", '
            '<https://api.github.com/organizations/1/repos?page=5>; rel="last"'
        )

        assert parse_link_header(value) == {
            "next": "https://api.github.com/organizations/1/repos?page=2",
            "last": "https://api.github.com/organizations/1/repos?page=5",
        }

    def test_first_relation_wins(self):
        value = '<https://host/a>; rel="next", <https://host/b>; rel="next"'

        assert parse_link_header(value)["next"] == "https://host/a"

    def test_malformed_entries_are_skipped(self):
        assert parse_link_header('garbage, <https://host/a>; rel="next"') == {"next": "https://host/a"}

    def test_get_next_link(self):
        assert get_next_link({"link": '<https://host/a>; rel="next"'}) == "https://host/a"
        assert get_next_link({"link": '<https://host/a>; rel="prev"'}) is None
        assert get_next_link({}) is None


class TestGetLoggerWithParams:
    def test_reads_log_settings_from_config(self, tmp_path, monkeypatch, mocker):
        monkeypatch.setenv("MIGRATION_API_DATA_DIR", str(tmp_path))
        (tmp_path / "config.yaml").write_text("log-level: DEBUG\nlog-file: migration.log\nmask-sensitive-data: false\n")
        get_logger_mock = mocker.patch("migration_api.utils.helpers.get_logger")

        get_logger_with_params(name="ado-api")

        kwargs = get_logger_mock.call_args.kwargs
        assert kwargs["name"] == "ado-api"
        assert kwargs["level"] == "DEBUG"
        assert kwargs["filename"] == str(tmp_path / "logs" / "migration.log")
        assert kwargs["mask_sensitive"] is False
        assert "token" in kwargs["mask_sensitive_patterns"]
        assert (tmp_path / "logs").is_dir()

    def test_defaults_without_config(self, tmp_path, monkeypatch, mocker):
        monkeypatch.setenv("MIGRATION_API_DATA_DIR", str(tmp_path))
        get_logger_mock = mocker.patch("migration_api.utils.helpers.get_logger")

        get_logger_with_params()

        kwargs = get_logger_mock.call_args.kwargs
        assert kwargs["name"] == "migration-api"
        assert kwargs["level"] == "INFO"
        assert kwargs["filename"] is None
        assert kwargs["mask_sensitive"] is True
