"""Structured error types for stagetree."""

from __future__ import annotations


class StagetreeError(Exception):
    """Base error for all stagetree errors."""


class BackendAccessError(StagetreeError):
    """Raised when the content repository fails to compile or execute a statement."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Backend error during {operation}: {detail}")


class UsageError(StagetreeError, ValueError):
    """Raised when the caller misuses an API (bad value, unselected column, ...)."""


class StatementSyntaxError(UsageError):
    """Raised when a compiled condition statement cannot be parsed back."""

    def __init__(self, statement: str, position: int, reason: str) -> None:
        self.statement = statement
        self.position = position
        super().__init__(f"Cannot parse statement at {position}: {reason} in {statement!r}")


class TypeResolutionError(StagetreeError, LookupError):
    """Raised when a node type name cannot be resolved."""

    def __init__(self, type_name: str) -> None:
        self.type_name = type_name
        super().__init__(f"Unknown node type '{type_name}'")


class ReleaseNotFoundError(StagetreeError):
    """Raised when no release matches a number or mark below a release root."""

    def __init__(self, root_path: str, key: str) -> None:
        self.root_path = root_path
        self.key = key
        super().__init__(f"No release '{key}' found for release root '{root_path}'")


class ReconciliationError(StagetreeError):
    """Raised when a peer reports a versionable outside the permitted sub path."""

    def __init__(self, path: str, subpath: str) -> None:
        self.path = path
        self.subpath = subpath
        super().__init__(f"Versionable '{path}' is not below the permitted sub path '{subpath}'")
