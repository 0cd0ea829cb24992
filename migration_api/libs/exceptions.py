from __future__ import annotations


class MigrationApiError(Exception):
    """Base exception for remote API access errors."""

    pass


class HttpError(MigrationApiError):
    """Raised when a response status does not match what the caller expected."""

    def __init__(self, message: str, status_code: int, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SecondaryRateLimitError(MigrationApiError):
    """Raised when secondary rate limit retries are exhausted."""

    def __init__(self, max_retries: int) -> None:
        super().__init__(
            f"Secondary rate limit exceeded. Maximum retries ({max_retries}) reached. "
            "Please wait before retrying your request."
        )
        self.max_retries = max_retries


class GraphQLError(MigrationApiError):
    """Raised when a GraphQL response carries errors."""

    pass


class PaginationSelectorError(MigrationApiError):
    """Raised when a page does not contain the field path the caller selected."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Field path '{path}' is missing from the response")
        self.path = path


class MissingContinuationUrlError(MigrationApiError):
    """Raised when a multipart upload response carries no Location header."""

    pass


class UploadFailedError(MigrationApiError):
    """Raised when a multipart upload fails. Carries the failed phase and the original cause."""

    def __init__(self, phase: str, cause: BaseException) -> None:
        super().__init__(f"Failed during multipart upload ({phase}): {cause}")
        self.phase = phase
        self.cause = cause
