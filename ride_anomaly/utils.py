"""General utility helpers shared across modules."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def to_utc_aware(value: datetime) -> datetime:
    """Return ``value`` as a timezone-aware UTC datetime (naive means UTC)."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_datetime(value: Any) -> datetime | None:
    """Parse ISO-8601 strings (``Z`` suffix allowed) or epoch seconds."""

    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc_aware(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return to_utc_aware(datetime.fromisoformat(text))
    except ValueError:
        return None


def mask_tail(value: str | None, visible: int = 4) -> str:
    if not value:
        return ""
    return f"****{value[-visible:]}"


def _normalise_value(value: Any) -> Any:
    """Convert objects to JSON-friendly representations."""

    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore")
    if isinstance(value, set):
        return sorted(_normalise_value(item) for item in value)
    if isinstance(value, (list, tuple)):
        return [_normalise_value(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _normalise_value(val) for key, val in value.items()}
    return value


def json_dumps(value: Any, *, indent: int | None = None) -> str:
    """Serialise nested payloads containing datetimes, enums and UUIDs."""

    return json.dumps(_normalise_value(value), indent=indent, ensure_ascii=False)
