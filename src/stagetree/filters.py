"""Condition expression types and the fluent condition DSL."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from stagetree import paths
from stagetree.errors import UsageError
from stagetree.values import bind_value

_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*(:[A-Za-z_][A-Za-z0-9_.\-]*)?$")
_SELECTOR_RE = re.compile(r"^[a-z][a-z0-9_]*$")

NULL_EQ_ERROR = "Use .is_null() instead of == None in stagetree conditions."
NULL_NE_ERROR = "Use .is_not_null() instead of != None in stagetree conditions."

COMPARISON_OPS = ("=", "<>", "<", "<=", ">", ">=", "LIKE")


def validate_property_name(name: str) -> str:
    if not _NAME_RE.match(name):
        raise UsageError(f"Invalid property name '{name}'")
    return name


def validate_selector(selector: str) -> str:
    if not _SELECTOR_RE.match(selector):
        raise UsageError(f"Invalid selector '{selector}'")
    return selector


class Condition:
    """Base class for condition expressions."""

    def __and__(self, other: Condition) -> LogicalCondition:
        return LogicalCondition(op="AND", children=[self, other])

    def __or__(self, other: Condition) -> LogicalCondition:
        return LogicalCondition(op="OR", children=[self, other])

    def __invert__(self) -> LogicalCondition:
        return LogicalCondition(op="NOT", children=[self])


@dataclass(frozen=True)
class Operand:
    """Left-hand side of a comparison.

    kind is "PROPERTY", "NAME" or "LOCALNAME"; functions are applied innermost last,
    e.g. ("LOWER", "LENGTH") means LOWER(LENGTH(value)).
    """

    kind: str
    property: str | None = None
    selector: str = "n"
    functions: tuple[str, ...] = ()


@dataclass
class Comparison(Condition):
    operand: Operand
    op: str
    value: Any


@dataclass
class NullCheck(Condition):
    property: str
    negated: bool = False  # True means IS NOT NULL
    selector: str = "n"


@dataclass
class PathConstraint(Condition):
    relation: str  # "SAME", "CHILD", "DESCENDANT"
    path: str
    selector: str = "n"


@dataclass
class FullTextContains(Condition):
    text: str
    property: str = "*"
    selector: str = "n"


@dataclass
class LogicalCondition(Condition):
    op: str  # "AND", "OR", "NOT"
    children: list[Condition] = field(default_factory=list)


def and_(*conditions: Condition) -> Condition:
    if len(conditions) == 1:
        return conditions[0]
    return LogicalCondition("AND", list(conditions))


def or_(*conditions: Condition) -> Condition:
    if len(conditions) == 1:
        return conditions[0]
    return LogicalCondition("OR", list(conditions))


class OperandProxy:
    """Proxy that turns python comparison operators into Comparison conditions."""

    def __init__(self, operand: Operand) -> None:
        self._operand = operand

    def _compare(self, op: str, value: Any) -> Comparison:
        bind_value(value)
        return Comparison(self._operand, op, value)

    def __eq__(self, other: object) -> Comparison:  # type: ignore[override]
        if other is None:
            raise TypeError(NULL_EQ_ERROR)
        return self._compare("=", other)

    def __ne__(self, other: object) -> Comparison:  # type: ignore[override]
        if other is None:
            raise TypeError(NULL_NE_ERROR)
        return self._compare("<>", other)

    def __lt__(self, other: Any) -> Comparison:
        return self._compare("<", other)

    def __le__(self, other: Any) -> Comparison:
        return self._compare("<=", other)

    def __gt__(self, other: Any) -> Comparison:
        return self._compare(">", other)

    def __ge__(self, other: Any) -> Comparison:
        return self._compare(">=", other)

    def like(self, pattern: str) -> Comparison:
        return self._compare("LIKE", pattern)

    def startswith(self, prefix: str) -> Comparison:
        return self._compare("LIKE", f"{prefix}%")

    def in_(self, values: Iterable[Any]) -> Condition:
        """Equality with any of ``values``; an empty collection means "is null"."""
        values = list(values)
        if not values:
            return self.is_null()
        return or_(*(self == v for v in values))

    def _wrap(self, function: str) -> OperandProxy:
        op = self._operand
        return OperandProxy(Operand(op.kind, op.property, op.selector, (function, *op.functions)))

    def lower(self) -> OperandProxy:
        return self._wrap("LOWER")

    def upper(self) -> OperandProxy:
        return self._wrap("UPPER")

    def length(self) -> OperandProxy:
        if self._operand.kind != "PROPERTY" or self._operand.functions:
            raise UsageError("length() applies to a plain property only")
        return self._wrap("LENGTH")

    def _plain_property(self) -> str:
        op = self._operand
        if op.kind != "PROPERTY" or op.functions:
            raise UsageError("This check applies to a plain property only")
        return op.property  # type: ignore[return-value]

    def is_null(self) -> NullCheck:
        return NullCheck(self._plain_property(), False, self._operand.selector)

    def is_not_null(self) -> NullCheck:
        return NullCheck(self._plain_property(), True, self._operand.selector)

    def contains(self, text: str) -> FullTextContains:
        return FullTextContains(text, self._plain_property(), self._operand.selector)


class Selector:
    """Entry point of the DSL for one selector ("n" is the queried node, joins use others).

    Usage: Selector("o").prop("title") == "x"
    """

    def __init__(self, name: str = "n") -> None:
        self.name = validate_selector(name)

    def prop(self, name: str) -> OperandProxy:
        return OperandProxy(Operand("PROPERTY", validate_property_name(name), self.name))

    def node_name(self) -> OperandProxy:
        return OperandProxy(Operand("NAME", None, self.name))

    def local_name(self) -> OperandProxy:
        return OperandProxy(Operand("LOCALNAME", None, self.name))

    def is_same_node_as(self, path: str) -> PathConstraint:
        return PathConstraint("SAME", paths.normalize(path), self.name)

    def is_child_of(self, path: str) -> PathConstraint:
        return PathConstraint("CHILD", paths.normalize(path), self.name)

    def is_descendant_of(self, path: str) -> PathConstraint:
        return PathConstraint("DESCENDANT", paths.normalize(path), self.name)

    def contains(self, text: str) -> FullTextContains:
        return FullTextContains(text, "*", self.name)

    def __repr__(self) -> str:
        return f"Selector({self.name!r})"


node = Selector("n")


def prop(name: str) -> OperandProxy:
    return node.prop(name)


def node_name() -> OperandProxy:
    return node.node_name()


def local_name() -> OperandProxy:
    return node.local_name()


def is_same_node_as(path: str) -> PathConstraint:
    return node.is_same_node_as(path)


def is_child_of(path: str) -> PathConstraint:
    return node.is_child_of(path)


def is_descendant_of(path: str) -> PathConstraint:
    return node.is_descendant_of(path)


def contains(text: str, property: str = "*") -> FullTextContains:
    if property == "*":
        return node.contains(text)
    return node.prop(property).contains(text)


def selectors_of(condition: Condition) -> set[str]:
    """All selectors a condition refers to."""
    if isinstance(condition, LogicalCondition):
        result: set[str] = set()
        for child in condition.children:
            result |= selectors_of(child)
        return result
    if isinstance(condition, Comparison):
        return {condition.operand.selector}
    return {condition.selector}  # type: ignore[attr-defined]
