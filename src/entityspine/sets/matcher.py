"""
In-memory evaluation of ``where`` predicates.

The predicate language is the one the compiler emits and callers pass in
filters: a mapping of field conditions plus optional ``and`` / ``or``
lists. A condition is a literal (equality) or an operator mapping::

    {"and": [
        {"_validFromDateTime": {"neq": None}},
        {"_validFromDateTime": {"lt": "2026-01-01T00:00:00+00:00"}},
        {"or": [{"_validUntilDateTime": None},
                {"_validUntilDateTime": {"gt": "2026-01-01T00:00:00+00:00"}}]},
    ]}

Rules:
    - Dotted paths traverse nested objects; an array on the way fans out.
    - Equality against an array value is a membership test.
    - ``None`` matches null or missing.
    - ISO-8601 strings and datetimes compare as instants.
    - Comparing incomparable types is simply false.

Both reference stores evaluate predicates with :func:`matches`; the
admission gate uses it to decide whether an incoming record falls inside
a rule's scope.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from entityspine.core.errors import InvalidFilterError
from entityspine.core.timestamps import as_instant

OPERATORS = frozenset(
    {
        "eq",
        "neq",
        "gt",
        "gte",
        "lt",
        "lte",
        "between",
        "inq",
        "nin",
        "like",
        "nlike",
        "ilike",
        "nilike",
        "regexp",
        "exists",
    }
)

MISSING = object()


def matches(record: Mapping[str, Any], where: Mapping[str, Any] | None) -> bool:
    """Return True when ``record`` satisfies ``where`` (an empty predicate matches all)."""
    if not where:
        return True
    if not isinstance(where, Mapping):
        raise InvalidFilterError(f"Where clause must be an object, got {where!r}.")

    for key, condition in where.items():
        if key == "and":
            if not all(matches(record, clause) for clause in _clauses(key, condition)):
                return False
        elif key == "or":
            if not any(matches(record, clause) for clause in _clauses(key, condition)):
                return False
        elif not _match_field(get_path(record, key), condition, key):
            return False
    return True


def get_path(record: Any, path: str) -> Any:
    """Value at a dotted ``path``; arrays on the way fan out into a flat list."""
    current = record
    for segment in path.split("."):
        if isinstance(current, list):
            collected = []
            for item in current:
                value = get_path(item, segment)
                if value is MISSING:
                    continue
                if isinstance(value, list):
                    collected.extend(value)
                else:
                    collected.append(value)
            current = collected
        elif isinstance(current, Mapping):
            current = current.get(segment, MISSING)
        else:
            return MISSING
        if current is MISSING:
            return MISSING
    return current


def value_at(record: Any, path: str) -> Any:
    """Like :func:`get_path`, with an absent value read as None."""
    value = get_path(record, path)
    return None if value is MISSING else value


def as_flag(flag: Any) -> bool:
    """Boolean reading of a filter flag; "false", "0" and "" are false."""
    if isinstance(flag, str):
        return flag.strip().lower() not in ("false", "0", "")
    return bool(flag)


def _clauses(key: str, condition: Any) -> list:
    if not isinstance(condition, list):
        raise InvalidFilterError(f"'{key}' expects a list of where clauses, got {condition!r}.")
    return condition


# -- Field conditions ---------------------------------------------------


def _match_field(value: Any, condition: Any, path: str) -> bool:
    if not isinstance(condition, Mapping):
        return _equals(value, condition)
    if not condition:
        raise InvalidFilterError(f"Empty condition for field '{path}'.")
    for operator, operand in condition.items():
        if operator not in OPERATORS:
            raise InvalidFilterError(
                f"Unknown operator '{operator}' for field '{path}'.",
                field=path,
                value=operator,
            )
        if not _apply(operator, value, operand, path):
            return False
    return True


def _apply(operator: str, value: Any, operand: Any, path: str) -> bool:
    if operator == "eq":
        return _equals(value, operand)
    if operator == "neq":
        return not _equals(value, operand)
    if operator == "exists":
        return (value is not MISSING) == as_flag(operand)
    if operator in ("inq", "nin"):
        if not isinstance(operand, (list, tuple, set, frozenset)):
            raise InvalidFilterError(f"'{operator}' on '{path}' expects a list.", field=path)
        hit = any(_equals(value, candidate) for candidate in operand)
        return hit if operator == "inq" else not hit
    if operator == "between":
        if not isinstance(operand, (list, tuple)) or len(operand) != 2:
            raise InvalidFilterError(f"'between' on '{path}' expects [low, high].", field=path)
        low, high = operand
        return _any_value(value, lambda v: _compare(v, low, "gte") and _compare(v, high, "lte"))
    if operator in ("gt", "gte", "lt", "lte"):
        return _any_value(value, lambda v: _compare(v, operand, operator))
    if operator in ("like", "nlike", "ilike", "nilike"):
        flags = re.IGNORECASE if operator in ("ilike", "nilike") else 0
        pattern = re.compile(str(operand).replace("%", ".*"), flags)
        hit = _any_value(value, lambda v: v is not None and bool(pattern.search(str(v))))
        return not hit if operator.startswith("n") else hit
    # regexp
    pattern = _compile_regexp(operand, path)
    return _any_value(value, lambda v: v is not None and bool(pattern.search(str(v))))


def _any_value(value: Any, test) -> bool:
    if value is MISSING:
        return False
    if isinstance(value, list):
        return any(test(item) for item in value)
    return test(value)


def _equals(value: Any, expected: Any) -> bool:
    if expected is None:
        return value is MISSING or value is None
    if value is MISSING:
        return False
    if isinstance(value, list) and not isinstance(expected, list):
        return any(_scalar_equals(item, expected) for item in value)
    return _scalar_equals(value, expected)


def _scalar_equals(left: Any, right: Any) -> bool:
    left_instant, right_instant = as_instant(left), as_instant(right)
    if left_instant is not None and right_instant is not None:
        return left_instant == right_instant
    return left == right


def _compare(left: Any, right: Any, operator: str) -> bool:
    if left is None or right is None:
        return False
    left_instant, right_instant = as_instant(left), as_instant(right)
    if left_instant is not None and right_instant is not None:
        left, right = left_instant, right_instant
    try:
        if operator == "gt":
            return left > right
        if operator == "gte":
            return left >= right
        if operator == "lt":
            return left < right
        return left <= right
    except TypeError:
        return False


def _compile_regexp(operand: Any, path: str) -> re.Pattern[str]:
    if isinstance(operand, re.Pattern):
        return operand
    if not isinstance(operand, str):
        raise InvalidFilterError(f"'regexp' on '{path}' expects a pattern string.", field=path)
    # "/pattern/i" form
    body, flags = operand, 0
    if len(operand) > 1 and operand.startswith("/") and operand.rfind("/") > 0:
        end = operand.rfind("/")
        body = operand[1:end]
        if "i" in operand[end + 1 :]:
            flags |= re.IGNORECASE
    try:
        return re.compile(body, flags)
    except re.error as exc:
        raise InvalidFilterError(
            f"Invalid regular expression for '{path}': {exc}", field=path, cause=exc
        ) from exc


__all__ = [
    "MISSING",
    "OPERATORS",
    "matches",
    "get_path",
    "value_at",
    "as_flag",
]
