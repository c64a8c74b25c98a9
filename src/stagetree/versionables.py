"""Versionable marker collection, reconciliation and children order collection."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Iterator

from stagetree import paths
from stagetree import types as t
from stagetree.errors import ReconciliationError
from stagetree.replication import ChildrenOrderInfo, VersionableInfo
from stagetree.storage import ContentAccessor
from stagetree.types import Node

logger = logging.getLogger(__name__)

PathMapping = Callable[[str], str]


def has_versioning_capability(node: Node, accessor: ContentAccessor) -> bool:
    registry = accessor.registry
    return any(
        registry.is_node_type(name, t.MIX_VERSIONABLE) for name in [node.primary_type, *node.mixins]
    )


def versionable_info(
    node: Node, accessor: ContentAccessor, relative_to: str | None = None
) -> VersionableInfo | None:
    """Marker of ``node`` if it is versionable and carries a replicated version.

    With ``relative_to`` the marker path is relative to that ancestor.
    """
    if not has_versioning_capability(node, accessor):
        return None
    version = node.get(t.PROP_REPLICATED_VERSION)
    if version is None or not str(version).strip():
        logger.warning("versionable %s has no replicated version", node.path)
        return None
    path = node.path if relative_to is None else paths.relative_to(relative_to, node.path)
    return VersionableInfo(path=path, version=str(version))


def _is_versionable_leaf(node: Node, accessor: ContentAccessor) -> bool:
    """Nodes the marker walk does not descend into."""
    if has_versioning_capability(node, accessor):
        return True
    if node.name == t.NAME_CONTENT:
        logger.warning("content node %s is not inside a versionable", node.path)
        return True
    return False


def _walk(accessor: ContentAccessor, root: str) -> Iterator[Node]:
    node = accessor.get_node(root)
    if node is None:
        return
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(accessor.list_children(current.path)))


def iter_versionables(
    accessor: ContentAccessor,
    roots: Iterable[str],
    path_mapping: PathMapping | None = None,
) -> Iterator[VersionableInfo]:
    """Versionable markers below ``roots`` in tree order.

    The walk stops at every versionable; one without a replicated version yields no marker.
    """
    for root in roots:
        node = accessor.get_node(paths.normalize(root))
        if node is None:
            logger.debug("versionable root %s does not exist", root)
            continue
        stack = [node]
        while stack:
            current = stack.pop()
            if _is_versionable_leaf(current, accessor):
                info = versionable_info(current, accessor)
                if info is not None:
                    if path_mapping is not None:
                        info = VersionableInfo(path=path_mapping(info.path), version=info.version)
                    yield info
                continue
            stack.extend(reversed(accessor.list_children(current.path)))


class VersionableTree:
    """Reconciles a peer's versionable markers against the local tree.

    After :meth:`process`, ``deleted`` holds markers whose path no longer resolves and
    ``changed`` those whose node has another version or is no longer versionable.
    """

    def __init__(
        self,
        accessor: ContentAccessor,
        *,
        check_subpath: str | None = None,
        path_mapping: PathMapping | None = None,
    ) -> None:
        self.accessor = accessor
        self.check_subpath = paths.normalize(check_subpath) if check_subpath else None
        self.path_mapping = path_mapping
        self.deleted: list[VersionableInfo] = []
        self.changed: list[VersionableInfo] = []

    def process(self, previous: Iterable[VersionableInfo]) -> VersionableTree:
        for info in previous:
            if self.check_subpath and not paths.is_same_or_descendant(self.check_subpath, info.path):
                raise ReconciliationError(info.path, self.check_subpath)
            local_path = self.path_mapping(info.path) if self.path_mapping else info.path
            node = self.accessor.get_node(local_path)
            if node is None:
                self.deleted.append(info)
                continue
            current = versionable_info(node, self.accessor)
            if current is None or current.version != info.version:
                self.changed.append(info)
        return self

    @property
    def deleted_paths(self) -> list[str]:
        return [info.path for info in self.deleted]

    @property
    def changed_paths(self) -> list[str]:
        return [info.path for info in self.changed]


def children_order_info(node: Node, accessor: ContentAccessor) -> ChildrenOrderInfo | None:
    """Child order of ``node`` when its type orders children and it has more than one."""
    if not accessor.registry.has_orderable_children(node.primary_type):
        return None
    children = accessor.list_children(node.path)
    if len(children) <= 1:
        return None
    return ChildrenOrderInfo(path=node.path, child_names=[c.name for c in children])


def iter_children_orders(
    accessor: ContentAccessor, roots: Iterable[str]
) -> Iterator[ChildrenOrderInfo]:
    for root in roots:
        for node in _walk(accessor, paths.normalize(root)):
            info = children_order_info(node, accessor)
            if info is not None:
                yield info
