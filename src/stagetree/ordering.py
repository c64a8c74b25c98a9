"""Value ordering for merged query results."""

from __future__ import annotations

import heapq
import logging
from functools import cmp_to_key
from typing import Any, Callable, Iterable, Iterator, TypeVar

from stagetree.values import NUMERIC_TYPES, STRING_LIKE_TYPES, PropertyType, Value

logger = logging.getLogger(__name__)

T = TypeVar("T")

Comparator = Callable[[Any, Any], int]


def _sign(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


def _same_kind(a: PropertyType, b: PropertyType) -> bool:
    if a == b:
        return True
    return (a in STRING_LIKE_TYPES and b in STRING_LIKE_TYPES) or (
        a in NUMERIC_TYPES and b in NUMERIC_TYPES
    )


def _comparable(v: Value) -> Any:
    if v.type in STRING_LIKE_TYPES:
        return str(v.value)
    if v.type == PropertyType.BINARY:
        return v.as_string()
    if v.type == PropertyType.BOOLEAN:
        return bool(v.value)
    return v.value


def _stored_form(v: Value) -> tuple[int, Any]:
    # SQLite sorts the stored field numbers first, then text by bytes.
    if v.type in NUMERIC_TYPES or v.type == PropertyType.BOOLEAN:
        return (0, _comparable(v))
    return (1, v.as_string())


def compare_values(a: Value | None, b: Value | None) -> int:
    """Ascending comparison; absent values sort lowest.

    Values of different declared kinds are compared by their stored forms: numbers and
    booleans before text, text kinds (strings, dates, binaries) by their string forms.
    This is the order the repository's sorted scans use, so merged results stay sorted.
    """
    if a is None or a.value is None:
        return 0 if b is None or b.value is None else -1
    if b is None or b.value is None:
        return 1
    if not _same_kind(a.type, b.type):
        logger.warning(
            "comparing values of different types %s and %s by their stored forms",
            a.type.value,
            b.type.value,
        )
        return _sign(_stored_form(a), _stored_form(b))
    return _sign(_comparable(a), _comparable(b))


def value_comparator(ascending: bool = True) -> Comparator:
    """Comparator over Values; descending reverses the whole order once."""
    if ascending:
        return compare_values
    return lambda a, b: compare_values(b, a)


def path_comparator(ascending: bool = True) -> Comparator:
    """Plain text order of paths, the order the repository sorts path columns in."""
    if ascending:
        return _sign
    return lambda a, b: _sign(b, a)


def merge_sorted(
    streams: Iterable[Iterable[T]], compare: Callable[[T, T], int]
) -> Iterator[T]:
    """Lazily merge streams each already sorted by ``compare``."""
    return heapq.merge(*streams, key=cmp_to_key(compare))
