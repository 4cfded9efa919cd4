"""Nanosecond-precision timestamp helpers."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Union

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
NANOS_PER_SECOND = 1_000_000_000

_FRACTION_RE = re.compile(r"^(?P<base>[^.,]+?T\d{2}:\d{2}:\d{2})[.,](?P<fraction>\d+)(?P<offset>.*)$")

TimestampInput = Union[int, str, datetime]


def datetime_to_ns(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value.astimezone(timezone.utc) - EPOCH
    seconds = delta.days * 86_400 + delta.seconds
    return seconds * NANOS_PER_SECOND + delta.microseconds * 1_000


def ns_to_datetime(value: int) -> datetime:
    """Convert epoch nanoseconds to an aware UTC datetime (microsecond resolution)."""
    return EPOCH + timedelta(microseconds=value // 1_000)


def parse_timestamp_ns(value: TimestampInput) -> int:
    """Parse an ISO-8601 string, datetime or epoch-ns integer into epoch nanoseconds.

    Fractional seconds are kept to nine digits, so sub-microsecond precision
    from the sensor gateway survives the round trip.
    """
    if isinstance(value, bool):
        raise ValueError("Timestamp must not be a boolean.")
    if isinstance(value, int):
        return value
    if isinstance(value, datetime):
        return datetime_to_ns(value)
    if not isinstance(value, str):
        raise ValueError(f"Unsupported timestamp type {type(value).__name__}.")

    candidate = value.strip()
    if not candidate:
        raise ValueError("Timestamp is empty.")
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"

    fraction_ns = 0
    match = _FRACTION_RE.match(candidate)
    if match:
        digits = match.group("fraction")
        fraction_ns = int(digits[:9].ljust(9, "0"))
        candidate = match.group("base") + match.group("offset")

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValueError("Invalid timestamp format") from exc

    return datetime_to_ns(parsed) + fraction_ns


def format_timestamp_ns(value: int) -> str:
    seconds, nanos = divmod(value, NANOS_PER_SECOND)
    base = (EPOCH + timedelta(seconds=seconds)).strftime("%Y-%m-%dT%H:%M:%S")
    return f"{base}.{nanos:09d}Z"
