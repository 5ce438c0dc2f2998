"""Redaction utilities for logging and error messages."""

import re


# Headers that must never appear in logs
SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "cookie",
        "x-api-key",
        "x-auth-token",
        "proxy-authorization",
        "set-cookie",
    }
)

REDACTED_VALUE = "[REDACTED]"

_URL_CREDENTIALS = re.compile(r"(https?://)([^:/@]+):([^@]+)@")
_QUERY_SECRETS = re.compile(
    r"([?&](?:token|access_token|api_key|key)=)[^&#]*", re.IGNORECASE
)

_MESSAGE_SECRETS: list[re.Pattern[str]] = [
    re.compile(r"\bBearer\s+[a-zA-Z0-9_\-\.]+", re.IGNORECASE),
    re.compile(
        r"\b(?:token|api_key|password|secret)\s*[=:]\s*[^\s&'\"]+", re.IGNORECASE
    ),
]
_URL_IN_TEXT = re.compile(r"https?://[^\s'\"<>]+")


def redact_headers(headers: dict[str, str]) -> dict[str, str]:
    """Redact sensitive headers for logging.

    Args:
        headers: Original headers dictionary.

    Returns:
        New dictionary with sensitive values replaced by [REDACTED].
    """
    return {
        key: REDACTED_VALUE if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def is_sensitive_header(header_name: str) -> bool:
    """Check if a header name is sensitive."""
    return header_name.lower() in SENSITIVE_HEADERS


def redact_url(url: str) -> str:
    """Redact userinfo credentials and token-like query values from a URL.

    Args:
        url: URL that may contain credentials.

    Returns:
        URL safe for logs and error messages.
    """
    url = _URL_CREDENTIALS.sub(r"\1[REDACTED]:[REDACTED]@", url)
    return _QUERY_SECRETS.sub(rf"\1{REDACTED_VALUE}", url)


def truncate_snippet(text: str | None, limit: int) -> str | None:
    """Collapse whitespace and truncate a response body for error reporting.

    Args:
        text: Body text, possibly None.
        limit: Maximum number of characters kept.

    Returns:
        Truncated single-line snippet, or None for empty input.
    """
    if not text:
        return None
    collapsed = " ".join(text.split())
    if len(collapsed) <= limit:
        return collapsed
    return collapsed[:limit] + "..."


def redact_message(text: str, limit: int = 300) -> str:
    """Make a free-form error message safe to return to clients.

    URLs inside the text are redacted like ``redact_url`` and token-like
    values are masked before truncation.
    """
    text = _URL_IN_TEXT.sub(lambda m: redact_url(m.group(0)), text)
    for pattern in _MESSAGE_SECRETS:
        text = pattern.sub(REDACTED_VALUE, text)
    return truncate_snippet(text, limit) or ""
