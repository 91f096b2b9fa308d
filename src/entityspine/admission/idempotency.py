"""
Idempotency keys for record creation.

Two create payloads are "the same request" when they agree on every
configured idempotency field. Agreement is judged on normalized values:

- arrays compare as sets (order and duplicates ignored)
- date-times compare by instant (``Z`` vs ``+00:00``, naive vs UTC)
- nested objects compare by content (key order ignored)

The normalized values are hashed into ``_idempotencyKey`` and stored on
the record, so the duplicate lookup is a single equality match.

Examples:
    >>> a = {"_name": "x", "tags": ["b", "a"]}
    >>> b = {"_name": "x", "tags": ["a", "b", "a"]}
    >>> compute_idempotency_key(a, ("_name", "tags")) == compute_idempotency_key(b, ("_name", "tags"))
    True

Tags:
    idempotency, hashing, deduplication, entityspine
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping, Sequence
from typing import Any

from entityspine.core.timestamps import as_instant, to_iso8601
from entityspine.sets.matcher import value_at


def normalize_value(value: Any) -> Any:
    """Canonical JSON-able form of ``value`` for key computation."""
    if isinstance(value, (list, tuple, set, frozenset)):
        items = {json.dumps(normalize_value(item), sort_keys=True) for item in value}
        return [json.loads(item) for item in sorted(items)]
    if isinstance(value, Mapping):
        return {str(key): normalize_value(item) for key, item in value.items()}
    instant = as_instant(value)
    if instant is not None:
        return to_iso8601(instant)
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def compute_idempotency_key(record: Mapping[str, Any], fields: Sequence[str]) -> str:
    """SHA-256 over the normalized values of ``fields``.

    Fields are dotted paths (``meta.isbn``); a missing value counts as null.
    """
    payload = [normalize_value(value_at(record, name)) for name in fields]
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


__all__ = [
    "normalize_value",
    "compute_idempotency_key",
]
