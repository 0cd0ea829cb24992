GITHUB_API_URL: str = "https://api.github.com"
GITHUB_UPLOADS_URL: str = "https://uploads.github.com"
ADO_SERVER_URL: str = "https://dev.azure.com"

# Response headers
RATE_LIMIT_REMAINING_HEADER: str = "X-RateLimit-Remaining"
RATE_LIMIT_RESET_HEADER: str = "X-RateLimit-Reset"
RETRY_AFTER_HEADER: str = "Retry-After"
LINK_HEADER: str = "Link"
LOCATION_HEADER: str = "Location"
GITHUB_REQUEST_ID_HEADER: str = "X-GitHub-Request-Id"
ADO_CONTINUATION_TOKEN_HEADER: str = "x-ms-continuationtoken"

# Providers that omit X-RateLimit-Remaining are treated as healthy
DEFAULT_RATE_LIMIT_REMAINING: int = 5000

# Primary rate limit: quota headers + this body marker (compared upper-cased)
PRIMARY_RATE_LIMIT_MARKER: str = "API RATE LIMIT EXCEEDED"

# Secondary rate limit: one of these statuses + one of these body markers (compared upper-cased)
SECONDARY_RATE_LIMIT_STATUS_CODES: frozenset[int] = frozenset({403, 429})
SECONDARY_RATE_LIMIT_MARKERS: tuple[str, ...] = (
    "SECONDARY RATE LIMIT",
    "ABUSE DETECTION",
    "YOU HAVE TRIGGERED AN ABUSE DETECTION MECHANISM",
)
SECONDARY_RATE_LIMIT_MAX_RETRIES: int = 3
SECONDARY_RATE_LIMIT_BASE_DELAY: float = 60.0
SECONDARY_RATE_LIMIT_MAX_DELAY: float = 900.0
SECONDARY_RATE_LIMIT_JITTER: float = 1.0

# Failures RetryPolicy retries by default
TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})
RETRY_MAX_ATTEMPTS: int = 5
RETRY_INTERVAL: float = 1.0
RETRY_ON_RESULT_INTERVAL: float = 4.0

# Pagination
GRAPHQL_PAGE_SIZE: int = 100
ADO_TOP_SKIP_PAGE_SIZE: int = 1000
BBS_PAGE_SIZE: int = 100
SKIP_COUNT_INITIAL_FLOOR: int = 1
SKIP_COUNT_INITIAL_CEILING: int = 500

# Archive uploads
BYTES_PER_MEBIBYTE: int = 1024 * 1024
MIN_MULTIPART_MEBIBYTES: int = 5
DEFAULT_MULTIPART_MEBIBYTES: int = 100
OCTET_STREAM_CONTENT_TYPE: str = "application/octet-stream"
MULTIPART_MEBIBYTES_ENV: str = "GITHUB_OWNED_STORAGE_MULTIPART_MEBIBYTES"
UPLOAD_PHASE_START: str = "start"
UPLOAD_PHASE_PART: str = "upload part"
UPLOAD_PHASE_COMPLETE: str = "complete"

GITHUB_GRAPHQL_FEATURES: str = "import_api,mannequin_claiming_emu,org_import_api"
USER_AGENT: str = "migration-api"
ERROR_BODY_MAX_LENGTH: int = 500
DEFAULT_REQUEST_TIMEOUT: float = 300.0
