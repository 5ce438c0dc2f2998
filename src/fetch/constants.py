"""HTTP constants for the fetch layer.

Centralizes all HTTP-related constants to avoid duplication across modules.
"""

# HTTP Status Code Ranges
HTTP_STATUS_OK_MIN = 200
HTTP_STATUS_OK_MAX = 300
HTTP_STATUS_NOT_MODIFIED = 304
HTTP_STATUS_BAD_REQUEST = 400
HTTP_STATUS_TOO_MANY_REQUESTS = 429
HTTP_STATUS_SERVER_ERROR_MIN = 500
HTTP_STATUS_SERVER_ERROR_MAX = 600

# Response header names (lower-cased; transports normalize header case)
HEADER_ETAG = "etag"
HEADER_EXPIRES = "expires"
HEADER_LAST_MODIFIED = "last-modified"
HEADER_RETRY_AFTER = "retry-after"
HEADER_PAGES = "x-pages"

# Request budget headers advertised by the ESI API
HEADER_RATE_LIMIT_REMAINING = "x-esi-error-limit-remain"
HEADER_RATE_LIMIT_RESET = "x-esi-error-limit-reset"

DEFAULT_USER_AGENT = "market-ingest/0.1.0 (+https://github.com/market-ingest)"

# Backoff defaults (milliseconds)
DEFAULT_BACKOFF_BASE_MS = 250
DEFAULT_BACKOFF_CAP_MS = 30_000

# Maximum retry delay cap for rate limiting (seconds)
MAX_RETRY_AFTER_SECONDS = 60

# Error bodies are truncated to this many characters in exceptions and logs
MAX_BODY_SNIPPET_CHARS = 200
