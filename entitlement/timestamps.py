"""
Timestamp coercion for stored subscription dates.

Subscription dates reach us in several shapes depending on who wrote them:
- datetime / Firestore DatetimeWithNanoseconds (server SDK reads)
- seconds-based epoch objects ({"seconds": ..., "nanoseconds": ...},
  the "_seconds" variant of JSON exports, protobuf Timestamps)
- ISO-8601 strings (client caches)
- plain dates and bare epoch numbers (JavaScript milliseconds, or seconds)

All of them are folded into timezone-aware UTC datetimes. Anything that cannot
be interpreted becomes None, which the resolver treats as "no end date".
"""

from datetime import date, datetime, time, timezone
from numbers import Real
from typing import Any, Mapping, Optional

from utils.logger import logger


def to_datetime(value: Any) -> Optional[datetime]:
    """
    Convert a stored timestamp into an aware UTC datetime.

    Args:
        value: Raw timestamp value from a subscription record

    Returns:
        The instant as an aware UTC datetime, or None if absent/unparseable
    """
    if value is None:
        return None

    try:
        if isinstance(value, datetime):
            return _as_utc(value)

        if isinstance(value, date):
            return datetime.combine(value, time.min, tzinfo=timezone.utc)

        if isinstance(value, Mapping):
            return _from_epoch_mapping(value)

        if isinstance(value, str):
            return _from_iso_string(value)

        if isinstance(value, bool):
            return None

        if isinstance(value, Real):
            return _from_epoch_number(value)

        seconds = getattr(value, "seconds", None)
        if isinstance(seconds, Real) and not isinstance(seconds, bool):
            nanos = getattr(value, "nanos", None) or getattr(value, "nanoseconds", 0) or 0
            return _from_epoch(seconds, nanos)

    except (ValueError, TypeError, OverflowError, OSError) as e:
        logger.debug(f"Unparseable subscription timestamp {value!r}: {e}")
        return None

    return None


def _as_utc(moment: datetime) -> datetime:
    # Naive values are assumed to already be UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _from_epoch(seconds: Real, nanos: Real = 0) -> datetime:
    return datetime.fromtimestamp(float(seconds) + float(nanos) / 1e9, tz=timezone.utc)


def _from_epoch_mapping(value: Mapping) -> Optional[datetime]:
    for seconds_key, nanos_key in (("seconds", "nanoseconds"), ("_seconds", "_nanoseconds")):
        seconds = value.get(seconds_key)
        if seconds is None:
            continue
        if isinstance(seconds, bool) or not isinstance(seconds, Real):
            return None
        nanos = value.get(nanos_key) or value.get("nanos") or 0
        return _from_epoch(seconds, nanos)
    return None


def _from_iso_string(value: str) -> Optional[datetime]:
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return _as_utc(datetime.fromisoformat(text))


# Bare epoch numbers at or above this are milliseconds (Date.getTime());
# below it they are seconds. 1e11 ms is March 1973, 1e11 s is past year 5000.
MILLISECONDS_THRESHOLD = 1e11


def _from_epoch_number(value: Real) -> datetime:
    number = float(value)
    if abs(number) >= MILLISECONDS_THRESHOLD:
        return datetime.fromtimestamp(number / 1000, tz=timezone.utc)
    return datetime.fromtimestamp(number, tz=timezone.utc)
