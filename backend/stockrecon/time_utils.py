# Overview: UTC timestamp helpers; rows store naive UTC, the API speaks ISO-8601 with a trailing Z.

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from .validation import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Any, field: str) -> Optional[datetime]:
    """
    Read a client-supplied timestamp (unit arrival, payment date).

    None and "" mean "not given". Strings are ISO-8601; a trailing Z or an
    offset is converted to UTC, a bare value is taken as UTC already.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _as_naive_utc(value)
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return _as_naive_utc(datetime.fromisoformat(text))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return _as_naive_utc(dt).replace(microsecond=0).isoformat() + "Z"


def day_stamp(dt: Optional[datetime] = None) -> str:
    """YYYYMMDD of `dt` (default now), as used in document numbers."""
    return (dt or utcnow()).strftime("%Y%m%d")
