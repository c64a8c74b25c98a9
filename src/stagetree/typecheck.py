"""Type constraint checks for rows whose type cannot be filtered in SQL."""

from __future__ import annotations

import logging

from stagetree.storage import ContentAccessor

logger = logging.getLogger(__name__)


class TypeConstraintCache:
    """Memo of "type name satisfies the constraint" answers for one query.

    A query owns one instance and clears it whenever its type constraint changes.
    """

    def __init__(self) -> None:
        self._answers: dict[str, bool] = {}

    def get(self, type_name: str) -> bool | None:
        return self._answers.get(type_name)

    def put(self, type_name: str, answer: bool) -> None:
        self._answers[type_name] = answer

    def clear(self) -> None:
        self._answers.clear()

    def __len__(self) -> int:
        return len(self._answers)


class TypeConstraintChecker:
    """Tests archived rows against a node type constraint, walking supertypes."""

    def __init__(
        self, accessor: ContentAccessor, constraint: str, cache: TypeConstraintCache
    ) -> None:
        self.accessor = accessor
        self.constraint = constraint
        self.cache = cache

    def matches_type(self, type_name: str) -> bool:
        cached = self.cache.get(type_name)
        if cached is not None:
            return cached
        answer = any(nt.name == self.constraint for nt in self.accessor.registry.ancestry(type_name))
        logger.debug("type %s %s constraint %s", type_name, "meets" if answer else "misses", self.constraint)
        self.cache.put(type_name, answer)
        return answer

    def has_appropriate_type(
        self, primary_type: str, first_mixin: str | None, archive_path: str | None = None
    ) -> bool:
        """Primary type first, then the first mixin, then every mixin of the archived node."""
        if self.matches_type(primary_type):
            return True
        if first_mixin is None:
            return False
        if self.matches_type(first_mixin):
            return True
        if archive_path is None:
            return False
        node = self.accessor.get_archive_node(archive_path)
        if node is None:
            return False
        return any(self.matches_type(m) for m in node.mixins[1:])
