"""Credential redaction for log records and stored error messages."""

from __future__ import annotations

import logging
import re
import traceback
from urllib.parse import parse_qsl, quote_plus, urlsplit, urlunsplit

import httpx

SENSITIVE_QUERY_KEYS = frozenset({"token", "access-token", "apikey", "api-key", "key", "secret", "password", "auth"})
_SENSITIVE_KEY_PATTERN = r"(?:token|access_token|apikey|api_key|secret|password|auth)"
_URL_PATTERN = re.compile(r"(?i)\b(?:https?|tcp|ssh)://[^\s\"'<>]+")
_KV_SECRET_PATTERN = re.compile(
    rf"(?i)(\b{_SENSITIVE_KEY_PATTERN}\b[ \t]*[=:][ \t]*)([^&\s,;\"'<>]+)"
)
_BEARER_PATTERN = re.compile(r"(?i)\bBearer\s+[A-Za-z0-9._~+\-/]+=*")

_FILTER_LOGGERS = (
    "",
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fleetcache",
)
_HTTP_LOGGER = logging.getLogger("fleetcache.http")


def _is_sensitive_query_key(key: str) -> bool:
    return key.strip().lower().replace("_", "-") in SENSITIVE_QUERY_KEYS


def redact_url(url: str) -> str:
    """Mask the password in ``user:pass@`` and sensitive query values; keep host and path."""
    if not url:
        return url
    try:
        parsed = urlsplit(url)
    except ValueError:
        return url

    netloc = parsed.netloc
    if "@" in netloc:
        userinfo, _, hostinfo = netloc.rpartition("@")
        user = userinfo.split(":", 1)[0]
        netloc = f"{user}:***@{hostinfo}" if ":" in userinfo else netloc

    query = parsed.query
    if query:
        pairs = parse_qsl(query, keep_blank_values=True)
        if any(_is_sensitive_query_key(key) for key, _ in pairs):
            query = "&".join(
                f"{quote_plus(key)}={'***' if _is_sensitive_query_key(key) else quote_plus(value)}"
                for key, value in pairs
            )

    if netloc == parsed.netloc and query == parsed.query:
        return url
    return urlunsplit((parsed.scheme, netloc, parsed.path, query, parsed.fragment))


def redact_text(value: str | None) -> str | None:
    """Redact credentials from arbitrary text such as exception messages."""
    if value is None:
        return None
    text = str(value)
    text = _URL_PATTERN.sub(lambda match: redact_url(match.group(0)), text)
    text = _KV_SECRET_PATTERN.sub(r"\1***", text)
    text = _BEARER_PATTERN.sub("Bearer ***", text)
    return text


class SecretRedactionFilter(logging.Filter):
    """Logging filter that redacts secrets before records are emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except Exception:
            message = str(record.msg)

        record.msg = redact_text(message) or ""
        record.args = ()
        if record.exc_info:
            exc_text = "".join(traceback.format_exception(*record.exc_info))
            record.exc_text = redact_text(exc_text)
        return True


def install_log_redaction() -> None:
    """Attach the redaction filter to root and service loggers; quiet httpx request lines."""
    redaction_filter = SecretRedactionFilter()
    for logger_name in _FILTER_LOGGERS:
        logger = logging.getLogger(logger_name)
        if not any(isinstance(existing, SecretRedactionFilter) for existing in logger.filters):
            logger.addFilter(redaction_filter)
        for handler in logger.handlers:
            if not any(isinstance(existing, SecretRedactionFilter) for existing in handler.filters):
                handler.addFilter(redaction_filter)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


async def _log_http_response(response: httpx.Response) -> None:
    request = response.request
    _HTTP_LOGGER.debug(
        "Docker API method=%s url=%s status=%d",
        request.method,
        redact_url(str(request.url)),
        response.status_code,
    )


def httpx_event_hooks() -> dict[str, list]:
    return {"response": [_log_http_response]}
