"""Shared HTTP response helpers for analyzer backends."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Type

import requests

from ..errors import AnalyzerError, AnalyzerQuotaError, AnalyzerTransportError

RequestsJSONDecodeError: Type[Exception]
if hasattr(requests.exceptions, "JSONDecodeError"):
    RequestsJSONDecodeError = requests.exceptions.JSONDecodeError
else:  # pragma: no cover - fallback for old requests versions
    RequestsJSONDecodeError = ValueError

# Lower-cased fragments that mark an error as quota or rate exhaustion.
QUOTA_MARKERS = ("quota", "rate limit", "ratelimit", "rate_limit", "too many requests")
_STATUS_429 = re.compile(r"\b429\b")

__all__ = [
    "QUOTA_MARKERS",
    "classify_response_status",
    "extract_error",
    "looks_like_quota_error",
    "safe_json",
]


def looks_like_quota_error(text: str | None, status: int | None = None) -> bool:
    """True when a status or backend error text signals quota/rate exhaustion.

    ``text`` must be the error body returned by the backend, never a
    transport exception message: those carry host, port and URL.
    """

    if status == 429:
        return True
    if not text:
        return False
    lowered = text.lower()
    if _STATUS_429.search(lowered):
        return True
    return any(marker in lowered for marker in QUOTA_MARKERS)


def classify_response_status(
    response: requests.Response, context: str
) -> Optional[AnalyzerError]:
    """Return the error to raise for a non-success status, or None when OK."""

    status = response.status_code
    if 200 <= status < 300:
        return None
    detail = extract_error(response)

    def with_detail(message: str) -> str:
        return f"{message} | {detail}" if detail else message

    if looks_like_quota_error(detail, status):
        message = with_detail(f"{context} quota or rate limit exceeded (status {status})")
        logging.warning(message)
        return AnalyzerQuotaError(message)

    message = with_detail(f"{context} request failed (status {status})")
    logging.error(message)
    return AnalyzerTransportError(message)


def extract_error(resp: Optional[requests.Response]) -> Optional[str]:
    """Return compact string with backend error info if present."""

    if resp is None:
        return None
    data = safe_json(resp)
    if data is None:
        return _extract_error_text(resp)
    if not isinstance(data, dict):
        return None
    parts = _collect_error_parts(data)
    return " | ".join(parts) if parts else None


def safe_json(resp: requests.Response) -> Optional[Any]:
    """Safely parse JSON; return None if parsing fails."""

    try:
        return resp.json()
    except (
        ValueError,
        RequestsJSONDecodeError,
    ) as exc:  # pragma: no cover - logging path
        logging.debug(
            "Failed to decode JSON from %s: %s", getattr(resp, "url", "?"), exc
        )
        return None


def _extract_error_text(resp: requests.Response) -> Optional[str]:
    """Best-effort plain-text extraction when JSON parsing fails."""

    text = getattr(resp, "text", "")
    if not isinstance(text, str):
        return None
    trimmed = text.strip()
    if not trimmed:
        return None
    return (trimmed[:297] + "...") if len(trimmed) > 300 else trimmed


def _collect_error_parts(data: Dict[str, Any]) -> List[str]:
    """Build error snippets from Ollama (``error``) and Azure (``error.message``) bodies."""

    parts: List[str] = []
    error = data.get("error")
    if isinstance(error, dict):
        code = error.get("code")
        message = error.get("message")
        if message:
            parts.append(str(message))
        if code:
            parts.append(str(code))
    elif error:
        parts.append(str(error))
    message = data.get("message")
    if message:
        parts.append(str(message))
    return parts
