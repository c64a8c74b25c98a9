"""Node type descriptors and the type registry."""

from __future__ import annotations

from dataclasses import dataclass, field

from stagetree import types as t
from stagetree.errors import TypeResolutionError
from stagetree.values import PropertyType


@dataclass(frozen=True)
class PropertyDefinition:
    name: str
    type: PropertyType = PropertyType.STRING
    protected: bool = False
    multiple: bool = False


@dataclass
class NodeType:
    """Declared shape of a node: supertypes, property definitions, child ordering."""

    name: str
    supertypes: list[str] = field(default_factory=list)
    property_definitions: list[PropertyDefinition] = field(default_factory=list)
    orderable_children: bool = False
    mixin: bool = False


class NodeTypeRegistry:
    """Resolves type names, walking supertypes for inherited facts."""

    def __init__(self, node_types: list[NodeType] | None = None) -> None:
        self._types: dict[str, NodeType] = {}
        for nt in node_types if node_types is not None else builtin_node_types():
            self.register(nt)

    def register(self, node_type: NodeType) -> None:
        self._types[node_type.name] = node_type

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def resolve(self, name: str) -> NodeType:
        try:
            return self._types[name]
        except KeyError:
            raise TypeResolutionError(name) from None

    def ancestry(self, name: str) -> list[NodeType]:
        """The type itself followed by all (transitive) supertypes, each once."""
        seen: dict[str, NodeType] = {}
        stack = [name]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            nt = self.resolve(current)
            seen[current] = nt
            stack.extend(reversed(nt.supertypes))
        return list(seen.values())

    def is_node_type(self, name: str, constraint: str) -> bool:
        """True when ``name`` is ``constraint`` or inherits from it."""
        return any(nt.name == constraint for nt in self.ancestry(name))

    def subtypes_of(self, constraint: str) -> list[str]:
        """Names of all registered types that are or inherit from ``constraint``."""
        self.resolve(constraint)
        return sorted(n for n in self._types if self.is_node_type(n, constraint))

    def property_definitions(self, name: str) -> list[PropertyDefinition]:
        return [pd for nt in self.ancestry(name) for pd in nt.property_definitions]

    def has_orderable_children(self, name: str) -> bool:
        return any(nt.orderable_children for nt in self.ancestry(name))


def builtin_node_types() -> list[NodeType]:
    name = PropertyType.NAME
    return [
        NodeType(
            t.TYPE_BASE,
            property_definitions=[
                PropertyDefinition(t.PROP_PRIMARY_TYPE, name, protected=True),
                PropertyDefinition(t.PROP_MIXIN_TYPES, name, protected=True, multiple=True),
            ],
        ),
        NodeType(t.TYPE_UNSTRUCTURED, [t.TYPE_BASE], orderable_children=True),
        NodeType(t.TYPE_FOLDER, [t.TYPE_BASE, t.MIX_CREATED]),
        NodeType(t.TYPE_ORDERED_FOLDER, [t.TYPE_FOLDER], orderable_children=True),
        NodeType(
            t.MIX_REFERENCEABLE,
            property_definitions=[PropertyDefinition(t.PROP_UUID, protected=True)],
            mixin=True,
        ),
        NodeType(
            t.MIX_VERSIONABLE,
            [t.MIX_REFERENCEABLE],
            property_definitions=[
                PropertyDefinition(t.PROP_BASE_VERSION, PropertyType.REFERENCE, protected=True),
            ],
            mixin=True,
        ),
        NodeType(
            t.MIX_CREATED,
            property_definitions=[
                PropertyDefinition(t.PROP_CREATED, PropertyType.DATE, protected=True),
                PropertyDefinition(t.PROP_CREATED_BY, protected=True),
            ],
            mixin=True,
        ),
        NodeType(t.MIX_TITLE, property_definitions=[PropertyDefinition(t.PROP_TITLE)], mixin=True),
        NodeType(
            t.TYPE_VERSION_REFERENCE,
            [t.TYPE_BASE],
            property_definitions=[
                PropertyDefinition(t.PROP_VERSION, PropertyType.REFERENCE),
                PropertyDefinition(t.PROP_DEACTIVATED, PropertyType.BOOLEAN),
            ],
        ),
        NodeType(t.TYPE_RELEASE, [t.TYPE_UNSTRUCTURED]),
    ]
