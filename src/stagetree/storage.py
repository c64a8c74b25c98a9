"""Content repository: the live node tree and the version archive, backed by SQLite."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid as uuidlib
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Protocol, runtime_checkable

from stagetree import paths
from stagetree import types as t
from stagetree.config import StagetreeConfig
from stagetree.errors import BackendAccessError, UsageError
from stagetree.nodetypes import NodeType, NodeTypeRegistry
from stagetree.types import Node
from stagetree.values import decode_property, encode_property, make_property

logger = logging.getLogger(__name__)

ARCHIVE_ROOT = "/archive"
_RESERVED = frozenset({t.PROP_PRIMARY_TYPE, t.PROP_MIXIN_TYPES, t.PROP_UUID})


@runtime_checkable
class ContentAccessor(Protocol):
    """What the query and replication engines need from a content session."""

    session_id: str
    registry: NodeTypeRegistry

    def get_node(self, path: str) -> Node | None: ...

    def list_children(self, path: str) -> list[Node]: ...

    def resolve_type(self, name: str) -> NodeType: ...

    def get_archive_node(self, archive_path: str) -> Node | None: ...

    def execute(self, sql: str, params: Mapping[str, Any] | None = None) -> list[sqlite3.Row]: ...

    def add_close_listener(self, listener: Callable[[str], None]) -> None: ...

    def close(self) -> None: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Repository:
    """SQLite-backed content session.

    ``nodes`` holds the live tree (including release content copies below the
    releases root); ``archive_nodes`` holds frozen copies of checked-in versionables at
    ``/archive/<history>/<version>/frozenNode[/...]``.
    """

    def __init__(
        self,
        db_path: str = ":memory:",
        *,
        registry: NodeTypeRegistry | None = None,
        config: StagetreeConfig | None = None,
    ) -> None:
        self.db_path = db_path
        self.session_id = uuidlib.uuid4().hex
        self.registry = registry or NodeTypeRegistry()
        self.config = config or StagetreeConfig()
        self._close_listeners: list[Callable[[str], None]] = []
        self._closed = False
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA case_sensitive_like=ON")
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS nodes (
                path TEXT PRIMARY KEY,
                parent TEXT,
                name TEXT NOT NULL,
                position INTEGER NOT NULL,
                primary_type TEXT NOT NULL,
                mixins TEXT NOT NULL DEFAULT '[]',
                uuid TEXT,
                properties TEXT NOT NULL DEFAULT '{}'
            );

            CREATE INDEX IF NOT EXISTS idx_nodes_parent ON nodes(parent, position);

            CREATE TABLE IF NOT EXISTS archive_nodes (
                path TEXT PRIMARY KEY,
                version_id TEXT NOT NULL,
                history_id TEXT NOT NULL,
                origin_path TEXT NOT NULL,
                parent TEXT,
                name TEXT NOT NULL,
                position INTEGER NOT NULL,
                frozen_primary_type TEXT NOT NULL,
                frozen_mixins TEXT NOT NULL DEFAULT '[]',
                frozen_uuid TEXT,
                properties TEXT NOT NULL DEFAULT '{}'
            );

            CREATE INDEX IF NOT EXISTS idx_archive_version ON archive_nodes(version_id);

            CREATE TABLE IF NOT EXISTS versions (
                version_id TEXT PRIMARY KEY,
                history_id TEXT NOT NULL,
                origin_path TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS version_labels (
                version_id TEXT NOT NULL,
                label TEXT NOT NULL,
                PRIMARY KEY (version_id, label)
            );
        """)
        self._conn.execute(
            "INSERT OR IGNORE INTO nodes (path, parent, name, position, primary_type) "
            "VALUES ('/', NULL, '', 0, ?)",
            (t.TYPE_UNSTRUCTURED,),
        )
        self._conn.commit()

    # --- session lifecycle ---

    def add_close_listener(self, listener: Callable[[str], None]) -> None:
        self._close_listeners.append(listener)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for listener in self._close_listeners:
            listener(self.session_id)
        self._conn.close()

    def __enter__(self) -> Repository:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # --- statements ---

    def execute(self, sql: str, params: Mapping[str, Any] | None = None) -> list[sqlite3.Row]:
        """Run a read statement, wrapping any backend failure in BackendAccessError."""
        logger.debug("execute: %s %s", sql, dict(params or {}))
        try:
            return self._conn.execute(sql, dict(params or {})).fetchall()
        except sqlite3.Error as e:
            raise BackendAccessError("execute", f"{e} [{sql}]") from e

    def resolve_type(self, name: str) -> NodeType:
        return self.registry.resolve(name)

    # --- live tree ---

    def _row_to_node(self, row: sqlite3.Row) -> Node:
        props = json.loads(row["properties"])
        return Node(
            path=row["path"],
            primary_type=row["primary_type"],
            mixins=json.loads(row["mixins"]),
            properties={k: decode_property(k, v) for k, v in props.items()},
            uuid=row["uuid"],
        )

    def get_node(self, path: str) -> Node | None:
        row = self._conn.execute("SELECT * FROM nodes WHERE path = ?", (path,)).fetchone()
        return self._row_to_node(row) if row else None

    def list_children(self, path: str) -> list[Node]:
        rows = self._conn.execute(
            "SELECT * FROM nodes WHERE parent = ? ORDER BY position, name", (path,)
        ).fetchall()
        return [self._row_to_node(r) for r in rows]

    def _is_of_type(self, primary_type: str, mixins: list[str], constraint: str) -> bool:
        return any(self.registry.is_node_type(n, constraint) for n in [primary_type, *mixins])

    def put_node(
        self,
        path: str,
        primary_type: str = t.TYPE_UNSTRUCTURED,
        *,
        mixins: list[str] | None = None,
        properties: Mapping[str, Any] | None = None,
        uuid: str | None = None,
    ) -> Node:
        """Create or replace the node at ``path``; its parent must exist."""
        path = paths.normalize(path)
        mixins = list(mixins or [])
        for type_name in [primary_type, *mixins]:
            self.registry.resolve(type_name)
        parent = paths.parent_of(path)
        if parent is not None and self.get_node(parent) is None:
            raise UsageError(f"Parent of '{path}' does not exist")
        reserved = _RESERVED.intersection(properties or {})
        if reserved:
            raise UsageError(f"Properties {sorted(reserved)} are maintained by the repository")
        encoded = {
            name: encode_property(make_property(name, value))
            for name, value in (properties or {}).items()
        }

        existing = self._conn.execute(
            "SELECT position, uuid FROM nodes WHERE path = ?", (path,)
        ).fetchone()
        if uuid is None and existing is not None:
            uuid = existing["uuid"]
        if uuid is None and self._is_of_type(primary_type, mixins, t.MIX_REFERENCEABLE):
            uuid = uuidlib.uuid4().hex
        if existing is not None:
            position = existing["position"]
        else:
            row = self._conn.execute(
                "SELECT COALESCE(MAX(position) + 1, 0) FROM nodes WHERE parent IS ?", (parent,)
            ).fetchone()
            position = row[0]

        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO nodes "
                "(path, parent, name, position, primary_type, mixins, uuid, properties) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    path,
                    parent,
                    paths.name_of(path),
                    position,
                    primary_type,
                    json.dumps(mixins),
                    uuid,
                    json.dumps(encoded, sort_keys=True),
                ),
            )
        return self.get_node(path)  # type: ignore[return-value]

    def update_properties(
        self,
        path: str,
        values: Mapping[str, Any] | None = None,
        *,
        remove: tuple[str, ...] | list[str] = (),
    ) -> Node:
        """Set and remove plain properties of an existing node."""
        node = self.get_node(path)
        if node is None:
            raise UsageError(f"No node at '{path}'")
        merged: dict[str, Any] = {
            k: p for k, p in node.properties.items() if k not in remove
        }
        merged.update(values or {})
        return self.put_node(
            path, node.primary_type, mixins=node.mixins, properties=merged, uuid=node.uuid
        )

    def remove_node(self, path: str) -> None:
        path = paths.normalize(path)
        if path == paths.ROOT:
            raise UsageError("The root node cannot be removed")
        with self._conn:
            self._conn.execute(
                "DELETE FROM nodes WHERE path = ? OR instr(path, ?) = 1",
                (path, paths.descendant_prefix(path)),
            )

    def order_before(self, path: str, before_name: str | None) -> None:
        """Move ``path`` before its sibling ``before_name`` (to the end when None)."""
        node = self.get_node(path)
        if node is None or node.parent_path is None:
            raise UsageError(f"No orderable node at '{path}'")
        names = [c.name for c in self.list_children(node.parent_path) if c.name != node.name]
        if before_name is None:
            names.append(node.name)
        elif before_name in names:
            names.insert(names.index(before_name), node.name)
        else:
            raise UsageError(f"No sibling '{before_name}' next to '{path}'")
        with self._conn:
            for position, name in enumerate(names):
                self._conn.execute(
                    "UPDATE nodes SET position = ? WHERE parent = ? AND name = ?",
                    (position, node.parent_path, name),
                )

    # --- version archive ---

    def checkin(self, path: str) -> str:
        """Capture the versionable at ``path`` into the archive; returns the version id.

        Nested versionables are versioned on their own and are left out of the capture.
        """
        node = self.get_node(path)
        if node is None:
            raise UsageError(f"No node at '{path}'")
        if not self._is_of_type(node.primary_type, node.mixins, t.MIX_VERSIONABLE):
            raise UsageError(f"Node '{path}' is not versionable")
        history_id = node.uuid or uuidlib.uuid4().hex
        version_id = uuidlib.uuid4().hex
        version_root = f"{ARCHIVE_ROOT}/{history_id}/{version_id}"
        frozen_root = f"{version_root}/{paths.FROZEN_MARKER}"

        rows = self._conn.execute(
            "SELECT * FROM nodes WHERE path = ? OR instr(path, ?) = 1 ORDER BY path",
            (node.path, paths.descendant_prefix(node.path)),
        ).fetchall()
        skipped: list[str] = []
        with self._conn:
            self._conn.execute(
                "INSERT INTO versions (version_id, history_id, origin_path, created_at) "
                "VALUES (?, ?, ?, ?)",
                (version_id, history_id, node.path, _now()),
            )
            for row in rows:
                live_path = row["path"]
                if any(paths.is_same_or_descendant(s, live_path) for s in skipped):
                    continue
                if live_path != node.path and self._is_of_type(
                    row["primary_type"], json.loads(row["mixins"]), t.MIX_VERSIONABLE
                ):
                    skipped.append(live_path)
                    continue
                archive_path = paths.rebase(live_path, node.path, frozen_root)
                self._conn.execute(
                    "INSERT INTO archive_nodes (path, version_id, history_id, origin_path, "
                    "parent, name, position, frozen_primary_type, frozen_mixins, frozen_uuid, "
                    "properties) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        archive_path,
                        version_id,
                        history_id,
                        node.path,
                        paths.parent_of(archive_path),
                        row["name"],
                        row["position"],
                        row["primary_type"],
                        row["mixins"],
                        row["uuid"],
                        row["properties"],
                    ),
                )
        self.update_properties(node.path, {t.PROP_BASE_VERSION: version_id})
        logger.debug("checked in %s as version %s", node.path, version_id)
        return version_id

    def get_version(self, version_id: str) -> dict[str, Any] | None:
        row = self._conn.execute(
            "SELECT * FROM versions WHERE version_id = ?", (version_id,)
        ).fetchone()
        if row is None:
            return None
        labels = [
            r[0]
            for r in self._conn.execute(
                "SELECT label FROM version_labels WHERE version_id = ? ORDER BY label",
                (version_id,),
            )
        ]
        return {**dict(row), "labels": labels}

    def add_version_label(self, version_id: str, label: str) -> None:
        """Attach ``label`` to a version, moving it away from other versions of the history."""
        version = self.get_version(version_id)
        if version is None:
            raise UsageError(f"Unknown version '{version_id}'")
        with self._conn:
            self._conn.execute(
                "DELETE FROM version_labels WHERE label = ? AND version_id IN "
                "(SELECT version_id FROM versions WHERE history_id = ?)",
                (label, version["history_id"]),
            )
            self._conn.execute(
                "INSERT INTO version_labels (version_id, label) VALUES (?, ?)",
                (version_id, label),
            )

    def remove_version_label(self, version_id: str, label: str) -> None:
        with self._conn:
            self._conn.execute(
                "DELETE FROM version_labels WHERE version_id = ? AND label = ?",
                (version_id, label),
            )

    def get_archive_node(self, archive_path: str) -> Node | None:
        row = self._conn.execute(
            "SELECT * FROM archive_nodes WHERE path = ?", (archive_path,)
        ).fetchone()
        if row is None:
            return None
        props = json.loads(row["properties"])
        return Node(
            path=paths.reconstruct_original_path(row["origin_path"], row["path"]),
            primary_type=row["frozen_primary_type"],
            mixins=json.loads(row["frozen_mixins"]),
            properties={k: decode_property(k, v) for k, v in props.items()},
            uuid=row["frozen_uuid"],
            archive_path=row["path"],
            version_id=row["version_id"],
        )


def open_repository(
    db_path: str = ":memory:",
    *,
    registry: NodeTypeRegistry | None = None,
    config: StagetreeConfig | None = None,
) -> Repository:
    """Open a content repository at ``db_path``."""
    return Repository(db_path, registry=registry, config=config)
