"""UTC timestamp helpers shared by the engines and the wire format."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Callable, Optional

from .errors import InvalidRequestError


Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """ISO-8601 with millisecond precision and a ``Z`` suffix."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def parse_timestamp(value: object, field_name: str = "timestamp") -> datetime:
    """Parse an ISO-8601 date or date-time; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError as e:
            raise InvalidRequestError(f"{field_name} must be an ISO-8601 timestamp") from e
    else:
        raise InvalidRequestError(f"{field_name} must be an ISO-8601 timestamp")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_optional_timestamp(value: object, field_name: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    return parse_timestamp(value, field_name)
