"""
Reference strings: pluggable parse/format of record pointers.

Records point at each other with opaque strings such as
``tapp://localhost/entities/3f0c…``. The core only relies on the
:class:`ReferenceCodec` pair; :class:`UriReferenceCodec` is the default
grammar.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urlsplit

from entityspine.core.enums import RecordFamily


@dataclass(frozen=True, slots=True)
class RecordReference:
    family: RecordFamily
    record_id: str


@runtime_checkable
class ReferenceCodec(Protocol):
    def parse(self, value: Any) -> RecordReference | None:
        """Decode ``value``; None for anything that is not a well-formed reference."""
        ...

    def format(self, family: RecordFamily, record_id: str) -> str:
        ...


@dataclass(frozen=True, slots=True)
class UriReferenceCodec:
    """``<scheme>://<host>/<family segment>/<uuid>`` references."""

    scheme: str = "tapp"
    host: str = "localhost"

    def parse(self, value: Any) -> RecordReference | None:
        if not isinstance(value, str):
            return None
        try:
            parts = urlsplit(value.strip())
        except ValueError:
            return None
        if parts.scheme != self.scheme or parts.netloc != self.host:
            return None
        if parts.query or parts.fragment:
            return None
        segments = parts.path.strip("/").split("/")
        if len(segments) != 2:
            return None
        family = _BY_SEGMENT.get(segments[0])
        if family is None or not _is_uuid(segments[1]):
            return None
        return RecordReference(family, segments[1])

    def format(self, family: RecordFamily, record_id: str) -> str:
        return f"{self.scheme}://{self.host}/{family.segment}/{record_id}"


_BY_SEGMENT = {family.segment: family for family in RecordFamily}


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    # uuid.UUID also accepts braces/urn forms; references carry the canonical one
    return len(value) == 36


__all__ = [
    "RecordReference",
    "ReferenceCodec",
    "UriReferenceCodec",
]
