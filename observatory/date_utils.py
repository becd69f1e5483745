"""Shared timestamp normalization helpers (epoch milliseconds, UTC days)."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

DAY_MS = 24 * 60 * 60 * 1000
# datetime cannot represent instants outside years 1..9999
MIN_TIMESTAMP_MS = -62135596800000
MAX_TIMESTAMP_MS = 253402300799999


def is_representable_ms(value: float) -> bool:
    return MIN_TIMESTAMP_MS <= value <= MAX_TIMESTAMP_MS


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        parsed = datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_iso_ms(value: Any) -> int | None:
    """Parse an ISO-8601 string into epoch milliseconds."""
    if not isinstance(value, str):
        return None
    parsed = _parse_datetime_token(value)
    if parsed is None:
        return None
    ms = int(round(parsed.timestamp() * 1000))
    return ms if is_representable_ms(ms) else None


def ms_to_datetime(ms: float) -> datetime:
    return datetime.fromtimestamp(ms / 1000.0, timezone.utc)


def ms_to_iso(ms: float) -> str:
    dt = ms_to_datetime(ms)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def day_key_from_ms(ms: float) -> str:
    """Return the UTC calendar day (YYYY-MM-DD) for an epoch-ms timestamp."""
    return ms_to_datetime(ms).strftime("%Y-%m-%d")


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)
