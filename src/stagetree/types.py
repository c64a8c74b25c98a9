"""Node snapshots and well-known names of the content model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from stagetree import paths
from stagetree.values import Property, PropertyType

PROP_PRIMARY_TYPE = "node:primaryType"
PROP_MIXIN_TYPES = "node:mixinTypes"
PROP_UUID = "node:uuid"
PROP_CREATED = "node:created"
PROP_CREATED_BY = "node:createdBy"
PROP_BASE_VERSION = "node:baseVersion"
PROP_TITLE = "node:title"

# pseudo-column: the node's (live) path
COLUMN_PATH = "node:path"

# content node of a page; only meaningful below a versionable
NAME_CONTENT = "node:content"

TYPE_BASE = "node:base"
TYPE_UNSTRUCTURED = "node:unstructured"
TYPE_FOLDER = "node:folder"
TYPE_ORDERED_FOLDER = "node:orderedFolder"
MIX_REFERENCEABLE = "mix:referenceable"
MIX_VERSIONABLE = "mix:versionable"
MIX_CREATED = "mix:created"
MIX_TITLE = "mix:title"

TYPE_VERSION_REFERENCE = "stage:VersionReference"
TYPE_RELEASE = "stage:Release"
PROP_VERSION = "stage:version"
PROP_DEACTIVATED = "stage:deactivated"
PROP_REPLICATED_VERSION = "stage:replicatedVersion"
PROP_CHANGE_NUMBER = "stage:changeNumber"
PROP_LAST_REPLICATION_DATE = "stage:lastReplicationDate"
PROP_RELEASE_NUMBER = "stage:number"
PROP_RELEASE_MARKS = "stage:marks"
PROP_RELEASE_ROOT = "stage:releaseRoot"
PROP_RELEASE_CLOSED = "stage:closed"


@dataclass
class Node:
    """A snapshot of one node, live or archived.

    Archived nodes carry ``archive_path`` / ``version_id``; their ``path`` is the live
    path they were captured from (or would be restored to).
    """

    path: str
    primary_type: str
    mixins: list[str] = field(default_factory=list)
    properties: dict[str, Property] = field(default_factory=dict)
    uuid: str | None = None
    archive_path: str | None = None
    version_id: str | None = None

    @property
    def name(self) -> str:
        return paths.name_of(self.path)

    @property
    def parent_path(self) -> str | None:
        return paths.parent_of(self.path)

    def get(self, name: str, default: Any = None) -> Any:
        prop = self.get_property(name)
        return default if prop is None else prop.value

    def get_property(self, name: str) -> Property | None:
        if name == PROP_PRIMARY_TYPE:
            return Property(name, PropertyType.NAME, (self.primary_type,))
        if name == PROP_MIXIN_TYPES:
            if not self.mixins:
                return None
            return Property(name, PropertyType.NAME, tuple(self.mixins), multiple=True)
        if name == PROP_UUID:
            return Property(name, PropertyType.STRING, (self.uuid,)) if self.uuid else None
        return self.properties.get(name)

    def all_properties(self) -> list[Property]:
        """Every attribute including the type and identity attributes."""
        result = [self.get_property(PROP_PRIMARY_TYPE)]
        for name in (PROP_MIXIN_TYPES, PROP_UUID):
            prop = self.get_property(name)
            if prop is not None:
                result.append(prop)
        result.extend(self.properties.values())
        return result  # type: ignore[return-value]

    @property
    def is_archived(self) -> bool:
        return self.archive_path is not None
