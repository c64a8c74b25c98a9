"""Typed property values and their storage encoding."""

from __future__ import annotations

import base64
import io
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, BinaryIO, Callable

from stagetree.errors import UsageError


class PropertyType(str, Enum):
    STRING = "String"
    BINARY = "Binary"
    LONG = "Long"
    DOUBLE = "Double"
    DECIMAL = "Decimal"
    DATE = "Date"
    BOOLEAN = "Boolean"
    NAME = "Name"
    PATH = "Path"
    REFERENCE = "Reference"
    WEAKREFERENCE = "WeakReference"
    URI = "URI"


STRING_LIKE_TYPES = frozenset(
    {
        PropertyType.STRING,
        PropertyType.NAME,
        PropertyType.PATH,
        PropertyType.REFERENCE,
        PropertyType.WEAKREFERENCE,
        PropertyType.URI,
    }
)
NUMERIC_TYPES = frozenset({PropertyType.LONG, PropertyType.DOUBLE, PropertyType.DECIMAL})


class BinaryValue:
    """A binary payload that is only ever read through a stream.

    ``opener`` returns a fresh readable stream for every call of :meth:`open`.
    """

    def __init__(self, opener: Callable[[], BinaryIO], size: int | None = None) -> None:
        self._opener = opener
        self.size = size

    @classmethod
    def from_bytes(cls, data: bytes) -> BinaryValue:
        return cls(lambda: io.BytesIO(data), len(data))

    def open(self) -> BinaryIO:
        return self._opener()

    def read_all(self) -> bytes:
        with self.open() as stream:
            return stream.read()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BinaryValue):
            return NotImplemented
        return self.read_all() == other.read_all()

    def __repr__(self) -> str:
        return f"BinaryValue(size={self.size})"


@dataclass(frozen=True)
class Value:
    """One typed value as seen by comparators."""

    type: PropertyType
    value: Any

    def as_string(self) -> str:
        return value_to_string(self.type, self.value)


@dataclass(frozen=True)
class Property:
    """A named, typed node attribute with one or more values."""

    name: str
    type: PropertyType
    values: tuple[Any, ...] = field(default_factory=tuple)
    multiple: bool = False

    @property
    def value(self) -> Any:
        """The python value: a list for multi-valued properties."""
        if self.multiple:
            return list(self.values)
        return self.values[0] if self.values else None

    def typed_values(self) -> list[Value]:
        return [Value(self.type, v) for v in self.values]


def format_date(value: date | datetime) -> str:
    """ISO-8601 UTC rendering with millisecond precision, sortable as text."""
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    elif value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_date(text: str) -> datetime:
    return datetime.strptime(text, "%Y-%m-%dT%H:%M:%S.%f%z")


def epoch_millis(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86400 + delta.seconds) * 1000 + delta.microseconds // 1000


def value_to_string(ptype: PropertyType, value: Any) -> str:
    if value is None:
        return ""
    if ptype == PropertyType.DATE:
        return format_date(value)
    if ptype == PropertyType.BOOLEAN:
        return "true" if value else "false"
    if ptype == PropertyType.BINARY:
        return base64.b64encode(value.read_all()).decode("ascii")
    return str(value)


def infer_type(value: Any) -> PropertyType:
    """Property type for a python value; booleans are checked before integers."""
    if isinstance(value, bool):
        return PropertyType.BOOLEAN
    if isinstance(value, int):
        return PropertyType.LONG
    if isinstance(value, float):
        return PropertyType.DOUBLE
    if isinstance(value, Decimal):
        return PropertyType.DECIMAL
    if isinstance(value, (datetime, date)):
        return PropertyType.DATE
    if isinstance(value, (BinaryValue, bytes)):
        return PropertyType.BINARY
    if isinstance(value, str):
        return PropertyType.STRING
    raise UsageError(f"Unsupported property value type: {type(value).__name__}")


def _coerce(ptype: PropertyType, value: Any) -> Any:
    if ptype == PropertyType.BINARY and isinstance(value, bytes):
        return BinaryValue.from_bytes(value)
    if ptype == PropertyType.DATE and isinstance(value, str):
        return parse_date(value)
    if ptype == PropertyType.DATE and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if ptype == PropertyType.DATE and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    if ptype == PropertyType.DECIMAL and not isinstance(value, Decimal):
        return Decimal(str(value))
    return value


def make_property(name: str, value: Any, ptype: PropertyType | None = None) -> Property:
    """Build a Property from a python value or list of values, inferring the type."""
    if isinstance(value, Property):
        return value
    if isinstance(value, (list, tuple)):
        if ptype is None:
            ptype = infer_type(value[0]) if value else PropertyType.STRING
        return Property(name, ptype, tuple(_coerce(ptype, v) for v in value), multiple=True)
    if value is None:
        raise UsageError(f"Property '{name}' cannot be set to None")
    if ptype is None:
        ptype = infer_type(value)
    return Property(name, ptype, (_coerce(ptype, value),))


# --- storage encoding ---


def _encode_scalar(ptype: PropertyType, value: Any) -> Any:
    if ptype == PropertyType.DATE:
        return format_date(value)
    if ptype == PropertyType.DECIMAL:
        return float(value)
    if ptype == PropertyType.BINARY:
        return base64.b64encode(value.read_all()).decode("ascii")
    if ptype == PropertyType.BOOLEAN:
        return bool(value)
    return value


def _decode_scalar(ptype: PropertyType, raw: Any, exact: Any = None) -> Any:
    if raw is None:
        return None
    if ptype == PropertyType.DATE:
        return parse_date(raw)
    if ptype == PropertyType.DECIMAL:
        return Decimal(exact) if exact is not None else Decimal(str(raw))
    if ptype == PropertyType.BINARY:
        return BinaryValue.from_bytes(base64.b64decode(raw))
    if ptype == PropertyType.BOOLEAN:
        return bool(raw)
    if ptype == PropertyType.LONG:
        return int(raw)
    if ptype == PropertyType.DOUBLE:
        return float(raw)
    return raw


def encode_property(prop: Property) -> dict[str, Any]:
    """JSON-ready form ``{"t": type, "v": value}``; decimals keep an exact ``"s"`` copy.

    ``"v"`` is the scalar that SQL comparisons see: numbers stay numbers, dates become
    text that sorts chronologically, booleans become JSON booleans.
    """
    encoded = [_encode_scalar(prop.type, v) for v in prop.values]
    data: dict[str, Any] = {"t": prop.type.value}
    if prop.multiple:
        data["v"] = encoded
        data["m"] = True
    else:
        data["v"] = encoded[0] if encoded else None
    if prop.type == PropertyType.DECIMAL:
        exact = [str(v) for v in prop.values]
        data["s"] = exact if prop.multiple else (exact[0] if exact else None)
    return data


def decode_property(name: str, data: dict[str, Any]) -> Property:
    ptype = PropertyType(data["t"])
    raw = data.get("v")
    exact = data.get("s")
    if data.get("m"):
        exact_list = exact or [None] * len(raw)
        values = tuple(_decode_scalar(ptype, r, s) for r, s in zip(raw, exact_list))
        return Property(name, ptype, values, multiple=True)
    return Property(name, ptype, (_decode_scalar(ptype, raw, exact),))


def bind_value(value: Any) -> Any:
    """Convert a condition operand to the SQL parameter it is compared with."""
    if value is None:
        raise UsageError("Cannot bind None; use is_null() / is_not_null() instead")
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float, str)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return format_date(value)
    raise UsageError(f"Unsupported value for a query condition: {value!r}")
