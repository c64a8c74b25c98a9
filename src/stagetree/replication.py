"""Wire models exchanged between replication peers."""

from __future__ import annotations

from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class VersionableInfo(BaseModel):
    """A versionable node and the version identifier it was last replicated with."""

    model_config = ConfigDict(frozen=True)

    path: str
    version: str


class ChildrenOrderInfo(BaseModel):
    """Child names of an orderable node, in order."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    path: str
    child_names: list[str] = Field(alias="childNames")


class NodeAttributeComparisonInfo(BaseModel):
    """Attribute fingerprint of one node: attribute name -> comparison token."""

    model_config = ConfigDict(populate_by_name=True)

    path: str
    property_hashes: dict[str, str] = Field(alias="propertyHashes")

    @field_validator("property_hashes")
    @classmethod
    def _sorted(cls, value: dict[str, str]) -> dict[str, str]:
        return dict(sorted(value.items()))

    def differing_attributes(self, other: NodeAttributeComparisonInfo) -> set[str]:
        """Attribute names present on only one side or with different tokens."""
        names = set(self.property_hashes) | set(other.property_hashes)
        return {
            name
            for name in names
            if self.property_hashes.get(name) != other.property_hashes.get(name)
        }

    def describe_difference(self, other: NodeAttributeComparisonInfo) -> str:
        if self.path != other.path:
            return f"different paths: {self.path} vs {other.path}"
        diff = sorted(self.differing_attributes(other))
        if not diff:
            return ""
        return f"{self.path}: attributes differ: {', '.join(diff)}"


_VERSIONABLES = TypeAdapter(list[VersionableInfo])
_CHILDREN_ORDERS = TypeAdapter(list[ChildrenOrderInfo])
_FINGERPRINTS = TypeAdapter(list[NodeAttributeComparisonInfo])


def dump_versionables(infos: Iterable[VersionableInfo]) -> str:
    return _VERSIONABLES.dump_json(list(infos)).decode()


def load_versionables(data: str | bytes) -> list[VersionableInfo]:
    return _VERSIONABLES.validate_json(data)


def dump_children_orders(infos: Iterable[ChildrenOrderInfo]) -> str:
    return _CHILDREN_ORDERS.dump_json(list(infos), by_alias=True).decode()


def load_children_orders(data: str | bytes) -> list[ChildrenOrderInfo]:
    return _CHILDREN_ORDERS.validate_json(data)


def dump_fingerprints(infos: Iterable[NodeAttributeComparisonInfo]) -> str:
    return _FINGERPRINTS.dump_json(list(infos), by_alias=True).decode()


def load_fingerprints(data: str | bytes) -> list[NodeAttributeComparisonInfo]:
    return _FINGERPRINTS.validate_json(data)
