"""Release-aware queries over the live tree and the version archive.

Without a release a query is a plain scan of the live tree. With a release, content
inside the release root is served from the release: versionables come from the
archive (versions carrying the release label, located through the version references
of the release's content copy), the non-versioned structure comes from the content
copy, and anything outside the release root or excluded by the release mapper comes
from the live tree. Every result is reported under its live path.
"""

from __future__ import annotations

import itertools
import json
import logging
import sqlite3
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Iterator

from stagetree import paths
from stagetree import types as t
from stagetree.config import StagetreeConfig
from stagetree.errors import UsageError
from stagetree.filters import Condition, Selector, selectors_of, validate_property_name
from stagetree.ordering import compare_values, merge_sorted
from stagetree.releases import ALL_PERMISSIVE, Release, ReleaseMapper, version_reference_map
from stagetree.rows import RawRow, ResultRow, canonical_column
from stagetree.statements import (
    archive_live_path,
    compile_condition,
    sort_value_column,
    typed_value_column,
)
from stagetree.storage import ContentAccessor
from stagetree.typecheck import TypeConstraintCache, TypeConstraintChecker
from stagetree.types import COLUMN_PATH, Node
from stagetree.values import Value, decode_property

logger = logging.getLogger(__name__)

_JOIN_SELECTORS = "opqrstuvwxyz"


class QueryScope(str, Enum):
    """How a query is resolved against the content."""

    NO_RELEASE = "no-release-scope"
    LIVE_EXCLUDED = "inside-release-live-excluded"
    ARCHIVE_ROUTED = "inside-release-archive-routed"


class JoinType(str, Enum):
    INNER = "INNER"
    LEFT_OUTER = "LEFT OUTER"


class JoinOn(str, Enum):
    DESCENDANT = "DESCENDANT"
    CHILD = "CHILD"


@dataclass
class _Join:
    selector: str
    condition: Condition | None
    join_type: JoinType
    on: JoinOn
    exact_primary_type: str | None


@dataclass
class _Scan:
    name: str
    sql: str
    params: dict[str, Any]
    accept: Callable[[sqlite3.Row], RawRow | None]


class Query:
    """Builder and executor of one query. Setters return the query for chaining."""

    def __init__(
        self,
        accessor: ContentAccessor,
        *,
        release: Release | None = None,
        release_mapper: ReleaseMapper = ALL_PERMISSIVE,
        config: StagetreeConfig | None = None,
    ) -> None:
        self.accessor = accessor
        self.release = release
        self.release_mapper = release_mapper
        self.config = config or getattr(accessor, "config", None) or StagetreeConfig()
        self._path: str | None = None
        self._element: str | None = None
        self._type: str | None = None
        self._condition: Condition | None = None
        self._joins: list[_Join] = []
        self._order_by: str | None = None
        self._ascending = True
        self._limit: int | None = None
        self._offset = 0
        self._type_cache = TypeConstraintCache()
        self._version_refs: dict[str, str] | None = None

    # --- building ---

    def path(self, path: str) -> Query:
        self._path = paths.normalize(path)
        return self

    def element(self, name: str, type: str | None = None) -> Query:
        self._element = None if name == "*" else name
        if type is not None:
            self.type(type)
        return self

    def type(self, type_name: str | None) -> Query:
        if type_name != self._type:
            self._type_cache.clear()
        self._type = type_name
        return self

    def condition(self, condition: Condition) -> Query:
        unknown = selectors_of(condition) - {"n"}
        if unknown:
            raise UsageError(f"Query condition refers to join selectors {sorted(unknown)}")
        self._condition = condition if self._condition is None else self._condition & condition
        return self

    def join_selector(self) -> Selector:
        """A fresh selector for the next join."""
        used = {j.selector for j in self._joins}
        for name in _JOIN_SELECTORS:
            if name not in used:
                return Selector(name)
        raise UsageError("Too many joins")

    def join(
        self,
        condition: Condition,
        join_type: JoinType = JoinType.INNER,
        on: JoinOn = JoinOn.DESCENDANT,
        *,
        exact_primary_type: str | None = None,
    ) -> Query:
        """Join nodes below the queried node; ``condition`` names the joined selector."""
        joined = selectors_of(condition) - {"n"}
        if len(joined) != 1:
            raise UsageError("A join condition must refer to exactly one join selector")
        selector = joined.pop()
        if selector in self.selectors():
            raise UsageError(f"Selector '{selector}' is already joined")
        self._joins.append(_Join(selector, condition, JoinType(join_type), JoinOn(on), exact_primary_type))
        return self

    def order_by(self, attribute: str) -> Query:
        self._order_by = validate_property_name(attribute)
        return self

    def ascending(self) -> Query:
        self._ascending = True
        return self

    def descending(self) -> Query:
        self._ascending = False
        return self

    def limit(self, limit: int) -> Query:
        if limit < 0:
            raise UsageError(f"limit must not be negative: {limit}")
        self._limit = limit
        return self

    def offset(self, offset: int) -> Query:
        if offset < 0:
            raise UsageError(f"offset must not be negative: {offset}")
        self._offset = offset
        return self

    def selectors(self) -> list[str]:
        return ["n", *(j.selector for j in self._joins)]

    def scope(self) -> QueryScope:
        path = self._require_path()
        release = self.release
        if release is None:
            return QueryScope.NO_RELEASE
        if release.in_content_copy(path):
            return QueryScope.LIVE_EXCLUDED
        if paths.is_same_or_descendant(release.root_path, path):
            if self.release_mapper.release_mapping_allowed(path):
                return QueryScope.ARCHIVE_ROUTED
            return QueryScope.LIVE_EXCLUDED
        if paths.is_descendant(path, release.root_path):
            return QueryScope.ARCHIVE_ROUTED
        return QueryScope.LIVE_EXCLUDED

    def __str__(self) -> str:
        parts = [f"path={self._path}"]
        if self._element:
            parts.append(f"element={self._element}")
        if self._type:
            parts.append(f"type={self._type}")
        if self._condition is not None:
            parts.append(f"condition={compile_condition(self._condition).live}")
        for join in self._joins:
            parts.append(f"join={join.join_type.value}:{join.on.value}:{join.selector}")
        if self._order_by:
            parts.append(f"order_by={self._order_by} {'ASC' if self._ascending else 'DESC'}")
        if self._offset:
            parts.append(f"offset={self._offset}")
        if self._limit is not None:
            parts.append(f"limit={self._limit}")
        if self.release is not None:
            parts.append(f"release={self.release.number}")
        return f"Query({', '.join(parts)})"

    # --- execution ---

    def execute(self) -> list[Node]:
        return list(self.stream())

    def stream(self) -> Iterator[Node]:
        """Results as live-shaped nodes, lazily."""
        for raw in self._results([]):
            node = self.load_node(raw, "n")
            if node is not None:
                yield node

    def select_and_execute(self, *columns: str) -> list[ResultRow]:
        """Results projected onto ``columns`` (properties or ``node:path``, optionally qualified)."""
        keys = [canonical_column(c, self.selectors()) for c in columns]
        keys = list(dict.fromkeys(keys))
        aliases = {key: f"c{i}" for i, key in enumerate(keys) if key[1] != COLUMN_PATH}
        return [ResultRow(self, raw, keys, aliases) for raw in self._results(keys)]

    def statements(self) -> list[tuple[str, str, dict[str, Any]]]:
        """(scan name, SQL, parameters) of every physical scan the query would run."""
        return [(s.name, s.sql, s.params) for s in self._scans([])]

    def _require_path(self) -> str:
        if self._path is None:
            raise UsageError("Query path is required")
        return self._path

    def _results(self, columns: list[tuple[str, str]]) -> Iterator[RawRow]:
        self._require_path()
        if self._limit == 0:
            return iter(())
        scans = self._scans(columns)
        streams = [self._paged(scan) for scan in scans]
        if self._order_by is None:
            merged: Iterator[RawRow] = itertools.chain.from_iterable(streams)
        else:
            merged = merge_sorted(streams, self._row_comparator())
        stop = None if self._limit is None else self._offset + self._limit
        return itertools.islice(merged, self._offset, stop)

    def _row_comparator(self) -> Callable[[RawRow, RawRow], int]:
        by_path = self._order_by == COLUMN_PATH
        sign = 1 if self._ascending else -1

        def compare(a: RawRow, b: RawRow) -> int:
            result = 0 if by_path else compare_values(a.order_value, b.order_value)
            if result == 0:
                result = (a.live_path > b.live_path) - (a.live_path < b.live_path)
            return sign * result

        return compare

    def _batch_size(self) -> int:
        if self._limit is None:
            return self.config.scan_batch_size
        return max(self.config.scan_batch_size, self._offset + self._limit)

    def _paged(self, scan: _Scan) -> Iterator[RawRow]:
        batch = self._batch_size()
        start = 0
        while True:
            params = {**scan.params, "q_limit": batch, "q_offset": start}
            rows = self.accessor.execute(f"{scan.sql} LIMIT :q_limit OFFSET :q_offset", params)
            logger.debug("%s scan: %d rows at offset %d", scan.name, len(rows), start)
            for row in rows:
                raw = scan.accept(row)
                if raw is not None:
                    yield raw
            if len(rows) < batch:
                return
            start += batch

    def _order_value(self, row: sqlite3.Row) -> Value | None:
        if self._order_by is None or self._order_by == COLUMN_PATH:
            return None
        raw = row["q_order"]
        if raw is None:
            return None
        prop = decode_property(self._order_by, json.loads(raw))
        return Value(prop.type, prop.values[0]) if prop.values else None

    # --- scan construction ---

    def _scans(self, columns: list[tuple[str, str]]) -> list[_Scan]:
        path = self._require_path()
        scope = self.scope()
        release = self.release
        if scope == QueryScope.NO_RELEASE:
            return [self._live_scan("live", path, columns, None, self._accept_live)]
        assert release is not None
        area = self.config.releases_root
        exclude = None if paths.is_same_or_descendant(area, path) else area
        if scope == QueryScope.LIVE_EXCLUDED:
            return [self._live_scan("live", path, columns, exclude, self._accept_live)]

        if paths.is_same_or_descendant(release.root_path, path):
            copy_scope = release.map_to_content_copy(path)
        else:
            copy_scope = release.content_copy_path
        return [
            self._live_scan("workspace-copy", copy_scope, columns, None, self._accept_copy),
            self._archive_scan(columns),
            self._live_scan("live", path, columns, exclude, self._accept_outside_release),
        ]

    def _select_list(self, columns: list[tuple[str, str]], archive: bool) -> list[str]:
        if archive:
            select = [
                "n.path AS q_path",
                "n.version_id AS q_version",
                "n.frozen_primary_type AS q_type",
                "json_extract(n.frozen_mixins, '$[0]') AS q_mixin",
            ]
        else:
            select = [
                "n.path AS q_path",
                "n.primary_type AS q_type",
                "json_extract(n.mixins, '$[0]') AS q_mixin",
            ]
        if self._order_by is not None and self._order_by != COLUMN_PATH:
            select.append(f"{typed_value_column('n', self._order_by, archive)} AS q_order")
        for i, (selector, attr) in enumerate(columns):
            if attr != COLUMN_PATH:
                select.append(f"{typed_value_column(selector, attr, archive)} AS c{i}")
        for join in self._joins:
            select.append(f"{join.selector}.path AS j_{join.selector}")
        return select

    def _join_clauses(self, archive: bool, params: dict[str, Any]) -> list[str]:
        clauses = []
        for join in self._joins:
            s = join.selector
            table = "archive_nodes" if archive else "nodes"
            if join.on == JoinOn.CHILD:
                on = [f"{s}.parent = n.path"]
            else:
                on = [f"instr({s}.path, rtrim(n.path, '/') || '/') = 1", f"{s}.path <> n.path"]
            if archive:
                on.insert(0, f"{s}.version_id = n.version_id")
            else:
                on.append(f"{s}.primary_type <> :q_vref")
            if join.exact_primary_type:
                column = "frozen_primary_type" if archive else "primary_type"
                on.append(f"{s}.{column} = :q_{s}_type")
                params[f"q_{s}_type"] = join.exact_primary_type
            if join.condition is not None:
                compiled = compile_condition(join.condition, prefix=f"{s}_val")
                on.append(compiled.archive if archive else compiled.live)
                params.update(compiled.parameters())
            clauses.append(f"{join.join_type.value} JOIN {table} AS {s} ON {' AND '.join(on)}")
        return clauses

    def _common_where(self, archive: bool, params: dict[str, Any]) -> list[str]:
        where = []
        if self._element is not None:
            where.append("n.name = :q_element")
            params["q_element"] = self._element
        if self._condition is not None:
            compiled = compile_condition(self._condition)
            where.append(compiled.archive if archive else compiled.live)
            params.update(compiled.parameters())
        return where

    def _order_clause(self, archive: bool) -> str:
        direction = "ASC" if self._ascending else "DESC"
        path_expr = archive_live_path("n") if archive else "n.path"
        if self._order_by is None:
            keys = [path_expr]
        elif self._order_by == COLUMN_PATH:
            keys = [f"{path_expr} {direction}"]
        else:
            value_expr = sort_value_column("n", self._order_by, archive)
            keys = [f"{value_expr} {direction}", f"{path_expr} {direction}"]
        # joined rows of one node need a stable order for paging
        keys.extend(f"{j.selector}.path" for j in self._joins)
        return f"ORDER BY {', '.join(keys)}"

    def _live_scan(
        self,
        name: str,
        scope_path: str,
        columns: list[tuple[str, str]],
        exclude: str | None,
        accept: Callable[[sqlite3.Row], RawRow | None],
    ) -> _Scan:
        params: dict[str, Any] = {
            "q_scope": scope_path,
            "q_scope_prefix": paths.descendant_prefix(scope_path),
            "q_vref": t.TYPE_VERSION_REFERENCE,
        }
        joins = self._join_clauses(False, params)
        where = [
            "(n.path = :q_scope OR instr(n.path, :q_scope_prefix) = 1)",
            "n.primary_type <> :q_vref",
        ]
        if exclude is not None:
            where.append("NOT (n.path = :q_area OR instr(n.path, :q_area_prefix) = 1)")
            params["q_area"] = exclude
            params["q_area_prefix"] = paths.descendant_prefix(exclude)
        if self._type is not None:
            names = self.accessor.registry.subtypes_of(self._type)
            placeholders = []
            for i, type_name in enumerate(names, 1):
                params[f"q_type{i}"] = type_name
                placeholders.append(f":q_type{i}")
            in_list = ", ".join(placeholders)
            where.append(
                f"(n.primary_type IN ({in_list}) OR EXISTS "
                f"(SELECT 1 FROM json_each(n.mixins) WHERE value IN ({in_list})))"
            )
        where.extend(self._common_where(False, params))
        sql = " ".join(
            [
                f"SELECT {', '.join(self._select_list(columns, False))}",
                "FROM nodes AS n",
                *joins,
                f"WHERE {' AND '.join(where)}",
                self._order_clause(False),
            ]
        )
        return _Scan(name, sql, params, accept)

    def _archive_scan(self, columns: list[tuple[str, str]]) -> _Scan:
        release = self.release
        assert release is not None
        params: dict[str, Any] = {
            "q_label": release.label,
            "q_root": release.root_path,
            "q_root_prefix": paths.descendant_prefix(release.root_path),
        }
        joins = self._join_clauses(True, params)
        where = [
            "lbl.label = :q_label",
            "(n.origin_path = :q_root OR instr(n.origin_path, :q_root_prefix) = 1)",
        ]
        where.extend(self._common_where(True, params))
        sql = " ".join(
            [
                f"SELECT {', '.join(self._select_list(columns, True))}",
                "FROM archive_nodes AS n",
                "JOIN version_labels AS lbl ON lbl.version_id = n.version_id",
                *joins,
                f"WHERE {' AND '.join(where)}",
                self._order_clause(True),
            ]
        )
        return _Scan("version-storage", sql, params, self._accept_archive)

    # --- row acceptance ---

    def _accept_live(self, row: sqlite3.Row) -> RawRow:
        return RawRow("live", dict(row), row["q_path"], order_value=self._order_value(row))

    def _accept_copy(self, row: sqlite3.Row) -> RawRow | None:
        release = self.release
        assert release is not None
        live_path = release.unmap_from_content_copy(row["q_path"])
        if not self.release_mapper.release_mapping_allowed(live_path):
            return None
        return RawRow("copy", dict(row), live_path, order_value=self._order_value(row))

    def _accept_outside_release(self, row: sqlite3.Row) -> RawRow | None:
        release = self.release
        assert release is not None
        path = row["q_path"]
        if release.applies_to_path(path) and self.release_mapper.release_mapping_allowed(path):
            return None
        return RawRow("live", dict(row), path, order_value=self._order_value(row))

    def _version_reference_map(self) -> dict[str, str]:
        if self._version_refs is None:
            assert self.release is not None
            self._version_refs = version_reference_map(self.accessor, self.release)
        return self._version_refs

    def _accept_archive(self, row: sqlite3.Row) -> RawRow | None:
        release = self.release
        assert release is not None
        reference = self._version_reference_map().get(row["q_version"])
        if reference is None:
            return None
        anchor = release.unmap_from_content_copy(reference)
        live_path = paths.reconstruct_original_path(anchor, row["q_path"])
        if not paths.is_same_or_descendant(self._require_path(), live_path):
            return None
        if not self.release_mapper.release_mapping_allowed(live_path):
            return None
        if self._type is not None:
            checker = TypeConstraintChecker(self.accessor, self._type, self._type_cache)
            if not checker.has_appropriate_type(row["q_type"], row["q_mixin"], row["q_path"]):
                return None
        return RawRow("archive", dict(row), live_path, anchor, self._order_value(row))

    # --- row materialization ---

    def _stored_path(self, raw: RawRow, selector: str) -> str | None:
        if selector == "n":
            return raw.values["q_path"]
        return raw.values.get(f"j_{selector}")

    def live_path(self, raw: RawRow, selector: str = "n") -> str | None:
        """Live path of the node a row's selector points at."""
        if selector == "n":
            return raw.live_path
        stored = self._stored_path(raw, selector)
        if stored is None:
            return None
        if raw.source == "archive":
            return paths.reconstruct_original_path(raw.anchor, stored)  # type: ignore[arg-type]
        if raw.source == "copy":
            return self.release.unmap_from_content_copy(stored)  # type: ignore[union-attr]
        return stored

    def load_node(self, raw: RawRow, selector: str = "n") -> Node | None:
        stored = self._stored_path(raw, selector)
        if stored is None:
            return None
        if raw.source == "archive":
            node = self.accessor.get_archive_node(stored)
        else:
            node = self.accessor.get_node(stored)
        if node is None:
            return None
        return replace(node, path=self.live_path(raw, selector))


class QueryBuilder:
    """Creates queries bound to one accessor and, optionally, one release."""

    def __init__(
        self,
        accessor: ContentAccessor,
        release: Release | None = None,
        release_mapper: ReleaseMapper = ALL_PERMISSIVE,
        config: StagetreeConfig | None = None,
    ) -> None:
        self.accessor = accessor
        self.release = release
        self.release_mapper = release_mapper
        self.config = config

    def query(self) -> Query:
        return Query(
            self.accessor,
            release=self.release,
            release_mapper=self.release_mapper,
            config=self.config,
        )
