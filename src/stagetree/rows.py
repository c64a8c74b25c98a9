"""Result rows of ``Query.select_and_execute``."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Iterable

from stagetree.errors import UsageError
from stagetree.filters import validate_property_name
from stagetree.types import COLUMN_PATH, Node
from stagetree.values import decode_property, format_date, parse_date

if TYPE_CHECKING:
    from stagetree.query import Query

_BRACKET_RE = re.compile(r"^([a-z][a-z0-9_]*)\.\[(.+)\]$")
_QUALIFIED_RE = re.compile(r"^([a-z][a-z0-9_]*)\.(.+)$")


@dataclass
class RawRow:
    """One row of one physical scan, with the live path it maps to."""

    source: str  # "live", "copy" or "archive"
    values: dict[str, Any]
    live_path: str
    anchor: str | None = None
    order_value: Any = None


def canonical_column(name: str, selectors: Iterable[str]) -> tuple[str, str]:
    """(selector, attribute) for ``title``, ``n.title`` or ``o.[title]`` style names."""
    known = set(selectors)
    m = _BRACKET_RE.match(name)
    if m:
        if m.group(1) not in known:
            raise UsageError(f"Unknown selector in column '{name}'")
        return m.group(1), validate_property_name(m.group(2))
    m = _QUALIFIED_RE.match(name)
    if m and m.group(1) in known:
        return m.group(1), validate_property_name(m.group(2))
    return "n", validate_property_name(name)


def _convert(value: Any, target: type) -> Any:
    if target is list:
        return value if isinstance(value, list) else [value]
    if isinstance(value, list):
        if not value:
            return None
        value = value[0]
    if type(value) is target:
        return value
    try:
        if target is str:
            if isinstance(value, bool):
                return "true" if value else "false"
            if isinstance(value, datetime):
                return format_date(value)
            return str(value)
        if target is bool:
            return value.lower() == "true" if isinstance(value, str) else bool(value)
        if target is datetime:
            if isinstance(value, str):
                return parse_date(value)
        elif target in (int, float):
            return target(value)
        elif target is Decimal:
            return Decimal(str(value))
    except (ValueError, TypeError, ArithmeticError) as e:
        raise UsageError(f"Cannot convert {value!r} to {target.__name__}") from e
    raise UsageError(f"Cannot convert {value!r} to {target.__name__}")


class ResultRow:
    """Projection of one result onto the selected columns.

    Column values are resolved on first access and memoized. The ``node:path``
    column is the live path, also for rows served from a release.
    """

    def __init__(self, query: Query, raw: RawRow, columns: list[tuple[str, str]],
                 aliases: dict[tuple[str, str], str]) -> None:
        self._query = query
        self._raw = raw
        self._columns = columns
        self._aliases = aliases
        self._resolved: dict[tuple[str, str], Any] = {}

    @property
    def path(self) -> str:
        return self._raw.live_path

    @property
    def columns(self) -> list[str]:
        return [name if sel == "n" else f"{sel}.{name}" for sel, name in self._columns]

    def _key(self, name: str) -> tuple[str, str]:
        key = canonical_column(name, self._query.selectors())
        if key not in self._columns:
            raise UsageError(f"Trying to access column '{name}' that was not selected")
        return key

    def _resolve(self, key: tuple[str, str]) -> Any:
        if key in self._resolved:
            return self._resolved[key]
        selector, attr = key
        if attr == COLUMN_PATH:
            value = self._query.live_path(self._raw, selector)
        else:
            raw = self._raw.values.get(self._aliases[key])
            value = decode_property(attr, json.loads(raw)).value if raw is not None else None
        self._resolved[key] = value
        return value

    def get(self, name: str, type: type | None = None, default: Any = None) -> Any:
        key = self._key(name)
        value = self._resolve(key)
        if value is None:
            return default
        if type is None:
            return value
        if key[1] == COLUMN_PATH and type is not str:
            raise UsageError(f"Column '{name}' can only be read as str")
        return _convert(value, type)

    def __getitem__(self, name: str) -> Any:
        return self._resolve(self._key(name))

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        try:
            return self._resolve(self._key(name)) is not None
        except UsageError:
            return False

    def to_dict(self) -> dict[str, Any]:
        """Selected columns with a value, keyed as requested."""
        result = {}
        for key, label in zip(self._columns, self.columns):
            value = self._resolve(key)
            if value is not None:
                result[label] = value
        return result

    def node(self) -> Node | None:
        return self._query.load_node(self._raw, "n")

    def join_node(self, selector: str) -> Node | None:
        if selector not in self._query.selectors():
            raise UsageError(f"Unknown selector '{selector}'")
        return self._query.load_node(self._raw, selector)

    def __repr__(self) -> str:
        return f"ResultRow({self.path!r})"
