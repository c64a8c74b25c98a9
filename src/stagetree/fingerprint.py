"""Attribute fingerprints: compact per-node digests for cross-replica comparison.

Each retained attribute becomes a token ``<tag>:<representation>``. Equal tokens mean
equal attribute values across repositories, without shipping the values themselves.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from decimal import Decimal
from typing import Any, Callable

from stagetree import types as t
from stagetree.config import StagetreeConfig
from stagetree.errors import StagetreeError
from stagetree.replication import NodeAttributeComparisonInfo
from stagetree.storage import ContentAccessor
from stagetree.types import Node
from stagetree.values import NUMERIC_TYPES, BinaryValue, Property, PropertyType, epoch_millis

logger = logging.getLogger(__name__)

IGNORED_ATTRIBUTES = frozenset({t.PROP_CHANGE_NUMBER, t.PROP_LAST_REPLICATION_DATE})
# protected, but part of the fingerprint anyway
IMPORTANT_ATTRIBUTES = frozenset({t.PROP_PRIMARY_TYPE, t.PROP_MIXIN_TYPES})


class ProtectedPropertyCache:
    """Protected attribute names per session and node type.

    Entries of a session are dropped when that session closes.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, dict[str, frozenset[str]]] = {}
        self._lock = threading.Lock()

    def protected_names(self, accessor: ContentAccessor, type_names: list[str]) -> set[str]:
        session_id = accessor.session_id
        with self._lock:
            per_type = self._sessions.get(session_id)
            if per_type is None:
                per_type = self._sessions[session_id] = {}
                register = True
            else:
                register = False
        if register:
            accessor.add_close_listener(self.evict)
        result: set[str] = set()
        for type_name in type_names:
            with self._lock:
                names = per_type.get(type_name)
            if names is None:
                names = frozenset(
                    pd.name
                    for pd in accessor.registry.property_definitions(type_name)
                    if pd.protected
                )
                with self._lock:
                    per_type[type_name] = names
            result |= names
        return result

    def evict(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions


def type_tag(ptype: PropertyType) -> str:
    if ptype in NUMERIC_TYPES:
        return "n"
    if ptype == PropertyType.DATE:
        return "C"
    if ptype == PropertyType.BOOLEAN:
        return "b"
    if ptype == PropertyType.BINARY:
        return "B"
    return "S"


def _number(value: Any) -> str:
    d = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    if not d.is_finite():
        return str(d)
    if d.is_zero():
        return "0"
    return format(d.normalize(), "f")


class AttributeFingerprinter:
    """Computes NodeAttributeComparisonInfo for nodes of one or more sessions."""

    def __init__(
        self,
        config: StagetreeConfig | None = None,
        cache: ProtectedPropertyCache | None = None,
    ) -> None:
        self.config = config or StagetreeConfig()
        self.cache = cache if cache is not None else ProtectedPropertyCache()

    def _hasher(self) -> Any:
        return hashlib.blake2b(digest_size=self.config.hash_digest_size)

    def _digest_text(self, text: str) -> str:
        h = self._hasher()
        h.update(text.encode("utf-8"))
        return h.hexdigest()

    def binary_digest(self, value: BinaryValue) -> str:
        h = self._hasher()
        with value.open() as stream:
            while chunk := stream.read(self.config.binary_chunk_size):
                h.update(chunk)
        return h.hexdigest()

    def render(self, ptype: PropertyType, value: Any) -> str:
        """Type-normalized text of one value."""
        if ptype in NUMERIC_TYPES:
            return _number(value)
        if ptype == PropertyType.DATE:
            return str(epoch_millis(value))
        if ptype == PropertyType.BOOLEAN:
            return "true" if value else "false"
        if ptype == PropertyType.BINARY:
            return self.binary_digest(value)
        return str(value)

    def token(self, prop: Property) -> str:
        tag = type_tag(prop.type)
        if prop.multiple:
            rendered = [self.render(prop.type, v) for v in prop.values]
            if prop.name == t.PROP_MIXIN_TYPES:
                rendered.sort()
            h = self._hasher()
            for item in rendered:
                data = item.encode("utf-8")
                h.update(len(data).to_bytes(8, "big"))
                h.update(data)
            return f"{tag}:{h.hexdigest()}"
        rep = self.render(prop.type, prop.values[0]) if prop.values else ""
        if prop.type != PropertyType.BINARY and len(rep) > self.config.max_token_length:
            rep = self._digest_text(rep)
        return f"{tag}:{rep}"

    def fingerprint(
        self,
        node: Node,
        accessor: ContentAccessor,
        path_mapping: Callable[[str], str] | None = None,
    ) -> NodeAttributeComparisonInfo:
        try:
            protected = self.cache.protected_names(accessor, [node.primary_type, *node.mixins])
        except StagetreeError:
            logger.error("cannot resolve the node types of %s", node.path)
            raise
        hashes: dict[str, str] = {}
        for prop in node.all_properties():
            if prop.name in IGNORED_ATTRIBUTES:
                continue
            if prop.name in protected and prop.name not in IMPORTANT_ATTRIBUTES:
                continue
            try:
                hashes[prop.name] = self.token(prop)
            except (OSError, StagetreeError):
                logger.error("cannot read attribute %s of %s", prop.name, node.path)
                raise
        path = path_mapping(node.path) if path_mapping is not None else node.path
        return NodeAttributeComparisonInfo(path=path, property_hashes=hashes)


_default_fingerprinter = AttributeFingerprinter()


def attribute_fingerprint(
    node: Node,
    accessor: ContentAccessor,
    path_mapping: Callable[[str], str] | None = None,
) -> NodeAttributeComparisonInfo:
    """Fingerprint ``node`` with the shared fingerprinter and its protected-name cache."""
    return _default_fingerprinter.fingerprint(node, accessor, path_mapping)
