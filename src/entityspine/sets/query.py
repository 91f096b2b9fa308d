"""
Bracket-notation query strings.

Rule scopes and CLI arguments are written the way request query strings
are::

    set[actives]&filter[where][_kind]=book
    set[or][0][publics]&set[or][1][owners][userIds]=u1,u2
    where[_kind]=${_kind}&set[owners][userIds]=${_ownerUsers}

:func:`parse_query` turns them into nested dicts (numeric keys become
lists); :func:`interpolate` substitutes ``${path}`` placeholders from a
record before parsing.
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import parse_qsl, quote

from entityspine.core.errors import InvalidSetError

_KEY = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])*)$")
_BRACKET = re.compile(r"\[([^\[\]]*)\]")
_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")


def parse_query(text: str) -> dict[str, Any]:
    """Parse a bracket query string into nested dicts and lists."""
    root: dict[str, Any] = {}
    for raw_key, value in parse_qsl(text.lstrip("?"), keep_blank_values=True):
        match = _KEY.match(raw_key)
        if match is None:
            raise InvalidSetError(f"Malformed query key '{raw_key}'.", value=raw_key)
        path = [match.group(1), *_BRACKET.findall(match.group(2))]
        if any(segment == "" for segment in path):
            raise InvalidSetError(f"Empty bracket in query key '{raw_key}'.", value=raw_key)
        _assign(root, path, value, raw_key)
    return _listify(root)


def _assign(node: dict[str, Any], path: list[str], value: str, raw_key: str) -> None:
    for segment in path[:-1]:
        child = node.setdefault(segment, {})
        if not isinstance(child, dict):
            raise InvalidSetError(f"Conflicting query keys at '{raw_key}'.", value=raw_key)
        node = child
    leaf = path[-1]
    if isinstance(node.get(leaf), dict):
        raise InvalidSetError(f"Conflicting query keys at '{raw_key}'.", value=raw_key)
    node[leaf] = value


def _listify(node: Any) -> Any:
    if not isinstance(node, dict):
        return node
    converted = {key: _listify(value) for key, value in node.items()}
    if converted and all(key.isdigit() for key in converted):
        return [converted[key] for key in sorted(converted, key=int)]
    return converted


def interpolate(template: str, record: dict[str, Any]) -> str:
    """Replace ``${path}`` placeholders with values drawn from ``record``.

    Arrays are comma-joined and missing values become empty strings.
    Substituted text is percent-encoded so it cannot inject extra keys.
    """
    return _PLACEHOLDER.sub(lambda m: quote(_plain(record, m.group(1)), safe=","), template)


def interpolate_values(value: Any, record: dict[str, Any]) -> Any:
    """:func:`interpolate` applied to every string leaf of a nested structure."""
    if isinstance(value, str):
        return _PLACEHOLDER.sub(lambda m: _plain(record, m.group(1)), value)
    if isinstance(value, dict):
        return {key: interpolate_values(item, record) for key, item in value.items()}
    if isinstance(value, list):
        return [interpolate_values(item, record) for item in value]
    return value


def _plain(record: dict[str, Any], path: str) -> str:
    current: Any = record
    for segment in path.strip().split("."):
        current = current.get(segment) if isinstance(current, dict) else None
    if current is None:
        return ""
    if isinstance(current, (list, tuple)):
        return ",".join(str(item) for item in current)
    return str(current)


__all__ = [
    "parse_query",
    "interpolate",
    "interpolate_values",
]
