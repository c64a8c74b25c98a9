"""Absolute path helpers for the node tree."""

from __future__ import annotations

from stagetree.errors import UsageError

ROOT = "/"
FROZEN_MARKER = "frozenNode"


def normalize(path: str) -> str:
    """Return ``path`` without trailing slashes; raises UsageError for relative paths."""
    if not path or not path.startswith("/"):
        raise UsageError(f"Path must be absolute: {path!r}")
    if "//" in path:
        raise UsageError(f"Path must not contain empty segments: {path!r}")
    stripped = path.rstrip("/")
    return stripped or ROOT


def join(parent: str, name: str) -> str:
    if parent == ROOT:
        return f"/{name}"
    return f"{parent}/{name}"


def parent_of(path: str) -> str | None:
    if path == ROOT:
        return None
    head = path.rsplit("/", 1)[0]
    return head or ROOT


def name_of(path: str) -> str:
    if path == ROOT:
        return ""
    return path.rsplit("/", 1)[1]


def descendant_prefix(path: str) -> str:
    """Prefix shared by all strict descendants of ``path``."""
    return path.rstrip("/") + "/"


def is_same_or_descendant(ancestor: str, path: str) -> bool:
    return path == ancestor or path.startswith(descendant_prefix(ancestor))


def is_descendant(ancestor: str, path: str) -> bool:
    return path != ancestor and path.startswith(descendant_prefix(ancestor))


def relative_to(base: str, path: str) -> str:
    """Path of ``path`` relative to ``base``; empty for ``base`` itself."""
    if path == base:
        return ""
    if not is_descendant(base, path):
        raise UsageError(f"'{path}' is not below '{base}'")
    return path[len(descendant_prefix(base)):]


def rebase(path: str, old_base: str, new_base: str) -> str:
    """Move ``path`` from below ``old_base`` to the same place below ``new_base``."""
    suffix = relative_to(old_base, path)
    return join(new_base, suffix) if suffix else new_base


def reconstruct_original_path(anchor: str, archive_path: str) -> str:
    """Live path of an archived node.

    ``anchor`` is the live path the version was captured from; ``archive_path`` is the
    node's location inside the archive and must contain the frozen marker segment.
    Everything after the marker is appended to the anchor.
    """
    segments = archive_path.split("/")
    try:
        marker = segments.index(FROZEN_MARKER)
    except ValueError:
        raise UsageError(f"Not an archive path: {archive_path!r}") from None
    suffix = "/".join(segments[marker + 1:])
    return join(anchor, suffix) if suffix else anchor
