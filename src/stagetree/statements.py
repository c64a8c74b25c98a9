"""Render conditions to SQL for both physical layouts, and parse them back.

A condition is rendered in one pass into two statements sharing one set of named
bindings (``:val1``, ``:val2``, ...): the live form runs against ``nodes``, the
archive form against ``archive_nodes``, where type and identity attributes live in
``frozen_*`` columns and paths have to be mapped back to the live tree.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable

from stagetree import types as t
from stagetree.errors import StatementSyntaxError, UsageError
from stagetree.filters import (
    Comparison,
    Condition,
    FullTextContains,
    LogicalCondition,
    NullCheck,
    Operand,
    PathConstraint,
)
from stagetree.paths import FROZEN_MARKER
from stagetree.values import bind_value

_LIVE = {"primary": "primary_type", "mixins": "mixins", "uuid": "uuid"}
_ARCHIVE = {"primary": "frozen_primary_type", "mixins": "frozen_mixins", "uuid": "frozen_uuid"}


def archive_live_path(selector: str) -> str:
    """SQL expression mapping an archive row back to the live path it was captured from."""
    marker = f"/{FROZEN_MARKER}"
    return (
        f"({selector}.origin_path || substr({selector}.path, "
        f"instr({selector}.path, '{marker}') + {len(marker)}))"
    )


def value_source(selector: str, prop: str, archive: bool) -> str:
    """Table-valued source yielding every scalar value of ``prop`` (zero rows when absent)."""
    cols = _ARCHIVE if archive else _LIVE
    if prop == t.PROP_PRIMARY_TYPE:
        return f"json_each(json_array({selector}.{cols['primary']}))"
    if prop == t.PROP_UUID:
        return f"json_each(json_array({selector}.{cols['uuid']}))"
    if prop == t.PROP_MIXIN_TYPES:
        return f"json_each({selector}.{cols['mixins']})"
    return f"json_each({selector}.properties, '$.\"{prop}\".v')"


def typed_value_column(selector: str, prop: str, archive: bool) -> str:
    """SQL expression yielding the stored ``{"t": ..., "v": ...}`` JSON of ``prop``."""
    cols = _ARCHIVE if archive else _LIVE
    if prop == t.PROP_PRIMARY_TYPE:
        return f"json_object('t', 'Name', 'v', {selector}.{cols['primary']})"
    if prop == t.PROP_UUID:
        return (
            f"CASE WHEN {selector}.{cols['uuid']} IS NULL THEN NULL "
            f"ELSE json_object('t', 'String', 'v', {selector}.{cols['uuid']}) END"
        )
    if prop == t.PROP_MIXIN_TYPES:
        return (
            f"CASE WHEN json_array_length({selector}.{cols['mixins']}) = 0 THEN NULL "
            f"ELSE json_object('t', 'Name', 'v', json({selector}.{cols['mixins']}), 'm', json('true')) END"
        )
    return f"json_extract({selector}.properties, '$.\"{prop}\"')"


def sort_value_column(selector: str, prop: str, archive: bool) -> str:
    """Scalar SQL expression a property sorts by (first value of multi-valued ones)."""
    cols = _ARCHIVE if archive else _LIVE
    if prop == t.PROP_PRIMARY_TYPE:
        return f"{selector}.{cols['primary']}"
    if prop == t.PROP_UUID:
        return f"{selector}.{cols['uuid']}"
    if prop == t.PROP_MIXIN_TYPES:
        return f"json_extract({selector}.{cols['mixins']}, '$[0]')"
    return (
        f"(SELECT value FROM json_each({selector}.properties, '$.\"{prop}\".v') LIMIT 1)"
    )


def _wrap(functions: tuple[str, ...], expr: str) -> str:
    for function in reversed(functions):
        expr = f"{function}({expr})"
    return expr


def _local_name(selector: str) -> str:
    return f"substr({selector}.name, instr({selector}.name, ':') + 1)"


@dataclass(frozen=True)
class CompiledCondition:
    """A condition rendered for both layouts; ``bindings`` holds the original values."""

    live: str
    archive: str
    bindings: dict[str, Any] = field(default_factory=dict)

    def parameters(self) -> dict[str, Any]:
        return {name: bind_value(value) for name, value in self.bindings.items()}


class _DualRenderer:
    def __init__(self, prefix: str) -> None:
        self.prefix = prefix
        self.bindings: dict[str, Any] = {}

    def bind(self, value: Any) -> str:
        bind_value(value)
        name = f"{self.prefix}{len(self.bindings) + 1}"
        self.bindings[name] = value
        return name

    def render(self, cond: Condition) -> tuple[str, str]:
        if isinstance(cond, LogicalCondition):
            if cond.op == "NOT":
                live, archive = self.render(cond.children[0])
                return f"NOT ({live})", f"NOT ({archive})"
            if cond.op in ("AND", "OR"):
                if not cond.children:
                    raise UsageError(f"Empty {cond.op} condition")
                parts = [self.render(c) for c in cond.children]
                joiner = f" {cond.op} "
                return (
                    f"({joiner.join(p[0] for p in parts)})",
                    f"({joiner.join(p[1] for p in parts)})",
                )
            raise UsageError(f"Unknown logical operator '{cond.op}'")
        if isinstance(cond, Comparison):
            return self._comparison(cond)
        if isinstance(cond, NullCheck):
            return self._both(
                lambda archive: (
                    ("EXISTS" if cond.negated else "NOT EXISTS")
                    + f" (SELECT 1 FROM {value_source(cond.selector, cond.property, archive)}"
                    " WHERE value IS NOT NULL)"
                )
            )
        if isinstance(cond, FullTextContains):
            p = self.bind(cond.text)
            match = f"instr(lower(value), lower(:{p})) > 0"
            if cond.property == "*":
                sql = (
                    f"EXISTS (SELECT 1 FROM json_tree({cond.selector}.properties) "
                    f"WHERE type = 'text' AND key IS NOT 't' AND {match})"
                )
                return sql, sql
            return self._both(
                lambda archive: (
                    f"EXISTS (SELECT 1 FROM {value_source(cond.selector, cond.property, archive)}"
                    f" WHERE {match})"
                )
            )
        if isinstance(cond, PathConstraint):
            return self._path(cond)
        raise UsageError(f"Unknown condition type: {type(cond).__name__}")

    @staticmethod
    def _both(build: Callable[[bool], str]) -> tuple[str, str]:
        return build(False), build(True)

    def _comparison(self, cond: Comparison) -> tuple[str, str]:
        if cond.op not in ("=", "<>", "<", "<=", ">", ">=", "LIKE"):
            raise UsageError(f"Unknown comparison operator '{cond.op}'")
        operand: Operand = cond.operand
        p = self.bind(cond.value)
        if operand.kind == "PROPERTY":
            expr = _wrap(operand.functions, "value")
            return self._both(
                lambda archive: (
                    f"EXISTS (SELECT 1 FROM "
                    f"{value_source(operand.selector, operand.property, archive)} "
                    f"WHERE {expr} {cond.op} :{p})"
                )
            )
        if operand.kind == "NAME":
            sql = f"{_wrap(operand.functions, f'{operand.selector}.name')} {cond.op} :{p}"
        elif operand.kind == "LOCALNAME":
            sql = f"{_wrap(operand.functions, _local_name(operand.selector))} {cond.op} :{p}"
        else:
            raise UsageError(f"Unknown operand kind '{operand.kind}'")
        return sql, sql

    def _path(self, cond: PathConstraint) -> tuple[str, str]:
        p = self.bind(cond.path)
        sel = cond.selector
        alp = archive_live_path(sel)
        prefix = f"rtrim(:{p}, '/') || '/'"
        if cond.relation == "SAME":
            return f"{sel}.path = :{p}", f"{alp} = :{p}"
        if cond.relation == "CHILD":
            return (
                f"{sel}.parent = :{p}",
                f"(instr({alp}, {prefix}) = 1 AND {alp} <> :{p} AND "
                f"instr(substr({alp}, length(rtrim(:{p}, '/')) + 2), '/') = 0)",
            )
        if cond.relation == "DESCENDANT":
            return (
                f"(instr({sel}.path, {prefix}) = 1 AND {sel}.path <> :{p})",
                f"(instr({alp}, {prefix}) = 1 AND {alp} <> :{p})",
            )
        raise UsageError(f"Unknown path relation '{cond.relation}'")


def compile_condition(cond: Condition, *, prefix: str = "val") -> CompiledCondition:
    """Render ``cond`` into live and archive SQL fragments with shared bindings."""
    renderer = _DualRenderer(prefix)
    live, archive = renderer.render(cond)
    return CompiledCondition(live, archive, dict(renderer.bindings))


# --- parsing ---

_SEL = r"[a-z][a-z0-9_]*"
_SRC = (
    rf"(?:json_each\((?P<ps>{_SEL})\.properties, '\$\.\"(?P<prop>[^\"]+)\"\.v'\)"
    rf"|json_each\(json_array\((?P<cs>{_SEL})\.(?P<col>primary_type|uuid)\)\)"
    rf"|json_each\((?P<ms>{_SEL})\.mixins\))"
)
_OP = r"(?P<op>LIKE|<>|<=|>=|=|<|>)"
_PARAM = r":(?P<param>\w+)"

_CONTAINS_ALL_RE = re.compile(
    rf"EXISTS \(SELECT 1 FROM json_tree\((?P<sel>{_SEL})\.properties\) WHERE type = 'text' "
    rf"AND key IS NOT 't' AND instr\(lower\(value\), lower\({_PARAM}\)\) > 0\)"
)
_CONTAINS_RE = re.compile(
    rf"EXISTS \(SELECT 1 FROM {_SRC} WHERE instr\(lower\(value\), lower\({_PARAM}\)\) > 0\)"
)
_NULL_RE = re.compile(rf"(?P<neg>NOT )?EXISTS \(SELECT 1 FROM {_SRC} WHERE value IS NOT NULL\)")
_COMPARE_RE = re.compile(
    rf"EXISTS \(SELECT 1 FROM {_SRC} WHERE (?P<fn>(?:(?:LOWER|UPPER|LENGTH)\()*)value"
    rf"(?P<close>\)*) {_OP} {_PARAM}\)"
)
_DESC_RE = re.compile(
    rf"\(instr\((?P<sel>{_SEL})\.path, rtrim\({_PARAM}, '/'\) \|\| '/'\) = 1 "
    rf"AND (?P=sel)\.path <> :(?P=param)\)"
)
_NAME_RE = re.compile(
    rf"(?P<fn>(?:(?:LOWER|UPPER)\()*)(?:(?P<ns>{_SEL})\.name"
    rf"|substr\((?P<ls>{_SEL})\.name, instr\((?P=ls)\.name, ':'\) \+ 1\))"
    rf"(?P<close>\)*) {_OP} {_PARAM}"
)
_SAME_RE = re.compile(rf"(?P<sel>{_SEL})\.path = {_PARAM}")
_CHILD_RE = re.compile(rf"(?P<sel>{_SEL})\.parent = {_PARAM}")
_FN_RE = re.compile(r"(LOWER|UPPER|LENGTH)\(")

_COLUMN_PROPS = {"primary_type": t.PROP_PRIMARY_TYPE, "uuid": t.PROP_UUID}


def _source(m: re.Match[str]) -> tuple[str, str]:
    if m.group("ps"):
        return m.group("ps"), m.group("prop")
    if m.group("cs"):
        return m.group("cs"), _COLUMN_PROPS[m.group("col")]
    return m.group("ms"), t.PROP_MIXIN_TYPES


class _Parser:
    def __init__(self, text: str, bindings: dict[str, Any]) -> None:
        self.text = text
        self.bindings = bindings
        self.pos = 0

    def error(self, reason: str) -> StatementSyntaxError:
        return StatementSyntaxError(self.text, self.pos, reason)

    def value(self, m: re.Match[str]) -> Any:
        name = m.group("param")
        if name not in self.bindings:
            raise self.error(f"no binding for ':{name}'")
        return self.bindings[name]

    def functions(self, m: re.Match[str]) -> tuple[str, ...]:
        fns = tuple(_FN_RE.findall(m.group("fn")))
        if len(fns) != len(m.group("close")):
            raise self.error("unbalanced function call")
        return fns

    def expect(self, token: str) -> None:
        if not self.text.startswith(token, self.pos):
            raise self.error(f"expected {token!r}")
        self.pos += len(token)

    def parse(self) -> Condition:
        cond = self.node()
        if self.pos != len(self.text):
            raise self.error("trailing input")
        return cond

    def node(self) -> Condition:
        if self.text.startswith("NOT (", self.pos):
            self.pos += len("NOT (")
            child = self.node()
            self.expect(")")
            return LogicalCondition("NOT", [child])
        atom = self.atom()
        if atom is not None:
            return atom
        if self.text.startswith("(", self.pos):
            return self.group()
        raise self.error("unrecognized condition")

    def group(self) -> Condition:
        self.expect("(")
        children = [self.node()]
        op: str | None = None
        while not self.text.startswith(")", self.pos):
            for candidate in ("AND", "OR"):
                if self.text.startswith(f" {candidate} ", self.pos):
                    if op is not None and op != candidate:
                        raise self.error("mixed AND/OR in one group")
                    op = candidate
                    self.pos += len(candidate) + 2
                    break
            else:
                raise self.error("expected AND or OR")
            children.append(self.node())
        self.expect(")")
        if op is None:
            return children[0]
        return LogicalCondition(op, children)

    def atom(self) -> Condition | None:
        m = _CONTAINS_ALL_RE.match(self.text, self.pos)
        if m:
            self.pos = m.end()
            return FullTextContains(self.value(m), "*", m.group("sel"))
        m = _CONTAINS_RE.match(self.text, self.pos)
        if m:
            self.pos = m.end()
            selector, prop = _source(m)
            return FullTextContains(self.value(m), prop, selector)
        m = _NULL_RE.match(self.text, self.pos)
        if m:
            self.pos = m.end()
            selector, prop = _source(m)
            return NullCheck(prop, negated=not m.group("neg"), selector=selector)
        m = _COMPARE_RE.match(self.text, self.pos)
        if m:
            fns = self.functions(m)
            self.pos = m.end()
            selector, prop = _source(m)
            return Comparison(Operand("PROPERTY", prop, selector, fns), m.group("op"), self.value(m))
        m = _DESC_RE.match(self.text, self.pos)
        if m:
            self.pos = m.end()
            return PathConstraint("DESCENDANT", self.value(m), m.group("sel"))
        m = _NAME_RE.match(self.text, self.pos)
        if m:
            fns = self.functions(m)
            self.pos = m.end()
            if m.group("ns"):
                operand = Operand("NAME", None, m.group("ns"), fns)
            else:
                operand = Operand("LOCALNAME", None, m.group("ls"), fns)
            return Comparison(operand, m.group("op"), self.value(m))
        m = _SAME_RE.match(self.text, self.pos)
        if m:
            self.pos = m.end()
            return PathConstraint("SAME", self.value(m), m.group("sel"))
        m = _CHILD_RE.match(self.text, self.pos)
        if m:
            self.pos = m.end()
            return PathConstraint("CHILD", self.value(m), m.group("sel"))
        return None


def parse_condition(statement: str, bindings: dict[str, Any]) -> Condition:
    """Rebuild a condition from its compiled live statement and bindings."""
    return _Parser(statement, bindings).parse()
