"""
Identifier and timestamp utilities (stdlib-only).

Records carry timestamps as ISO-8601 UTC strings so that documents stay
JSON-serializable in every store; comparisons happen on parsed instants.

Features:
    - **utc_now():** Timezone-aware UTC datetime
    - **generate_id():** UUID4 record identifiers (references validate them as GUIDs)
    - **to_iso8601() / from_iso8601():** Round-trip, ``Z`` suffix accepted
    - **as_instant():** Lenient coercion used by predicate evaluation
    - **shift():** Calendar-aware offsets for duration set terms

Tags:
    timestamps, utc, datetime, uuid, entityspine, stdlib-only
"""

import calendar
import re
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

_ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}([T ]\d{2}:\d{2}|$)")


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def generate_id() -> str:
    """Generate a new record identifier."""
    return str(uuid.uuid4())


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to an ISO 8601 UTC string."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat()


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to an aware UTC datetime (naive input is taken as UTC)."""
    if s is None:
        return None
    dt = datetime.fromisoformat(s.strip())
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def as_instant(value: Any) -> datetime | None:
    """Return ``value`` as an aware datetime when it is one, or looks like one.

    Anything else (numbers, free text, None) yields None.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, str) and _ISO_PREFIX.match(value):
        try:
            return from_iso8601(value)
        except ValueError:
            return None
    return None


def shift(moment: datetime, amount: int, unit: str) -> datetime:
    """Offset ``moment`` by ``amount`` units (negative goes back in time).

    ``unit`` is one of ``minutes``, ``hours``, ``days``, ``weeks``, ``months``.
    Months are calendar months; the day is clamped to the target month's end.
    """
    if unit == "months":
        month_index = moment.month - 1 + amount
        year = moment.year + month_index // 12
        month = month_index % 12 + 1
        day = min(moment.day, calendar.monthrange(year, month)[1])
        return moment.replace(year=year, month=month, day=day)
    return moment + timedelta(**{unit: amount})


__all__ = [
    "utc_now",
    "generate_id",
    "to_iso8601",
    "from_iso8601",
    "as_instant",
    "shift",
]
