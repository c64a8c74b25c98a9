"""Releases: labelled snapshots of a content subtree and the policies that route to them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Protocol

from stagetree import paths
from stagetree import types as t
from stagetree.config import StagetreeConfig
from stagetree.errors import ReleaseNotFoundError, UsageError
from stagetree.storage import Repository

logger = logging.getLogger(__name__)


@dataclass
class Release:
    """A release of the subtree at ``root_path``.

    The release keeps a content copy at ``<releases_root><root_path>/<number>/root``;
    below it, versionables are replaced by version reference nodes pointing into the
    archive. The content copy is disjoint from the release root.
    """

    number: str
    root_path: str
    releases_root: str = "/var/releases"
    label_prefix: str = "release-"
    marks: list[str] = field(default_factory=list)
    closed: bool = False

    @property
    def release_area(self) -> str:
        """Parent of the metadata nodes of all releases of this root."""
        return paths.join(self.releases_root, self.root_path.lstrip("/"))

    @property
    def metadata_path(self) -> str:
        return paths.join(self.release_area, self.number)

    @property
    def content_copy_path(self) -> str:
        return paths.join(self.metadata_path, "root")

    @property
    def label(self) -> str:
        return f"{self.label_prefix}{self.number}"

    def applies_to_path(self, path: str) -> bool:
        """True for the release root, its descendants and the content copy."""
        return paths.is_same_or_descendant(self.root_path, path) or self.in_content_copy(path)

    def in_content_copy(self, path: str) -> bool:
        return paths.is_same_or_descendant(self.content_copy_path, path)

    def map_to_content_copy(self, path: str) -> str:
        if self.in_content_copy(path):
            return path
        if not paths.is_same_or_descendant(self.root_path, path):
            raise UsageError(f"'{path}' is not part of release root '{self.root_path}'")
        return paths.rebase(path, self.root_path, self.content_copy_path)

    def unmap_from_content_copy(self, path: str) -> str:
        if not self.in_content_copy(path):
            return path
        return paths.rebase(path, self.content_copy_path, self.root_path)


class ReleaseMapper(Protocol):
    """Decides whether a path inside a release root is served from the release.

    If it answers False for a path it must answer False for every subpath.
    """

    def release_mapping_allowed(self, path: str) -> bool: ...


class _AllPermissive:
    def release_mapping_allowed(self, path: str) -> bool:
        return True

    def __repr__(self) -> str:
        return "ALL_PERMISSIVE"


ALL_PERMISSIVE: ReleaseMapper = _AllPermissive()


class PrefixReleaseMapper:
    """Serves everything from the release except paths at or below ``excluded``."""

    def __init__(self, excluded: Iterable[str]) -> None:
        self.excluded = [paths.normalize(p) for p in excluded]

    def release_mapping_allowed(self, path: str) -> bool:
        return not any(paths.is_same_or_descendant(e, path) for e in self.excluded)


class ReleaseManager:
    """Creates releases and stages versionables into them."""

    def __init__(self, repo: Repository, config: StagetreeConfig | None = None) -> None:
        self.repo = repo
        self.config = config or repo.config

    def _release(
        self, root_path: str, number: str, marks: list[str], closed: bool = False
    ) -> Release:
        return Release(
            number=number,
            root_path=root_path,
            releases_root=self.config.releases_root,
            label_prefix=self.config.release_label_prefix,
            marks=marks,
            closed=closed,
        )

    @staticmethod
    def _check_open(release: Release) -> None:
        if release.closed:
            raise UsageError(f"Release '{release.number}' of '{release.root_path}' is closed")

    def _ensure_folder(self, path: str) -> None:
        missing: list[str] = []
        current: str | None = path
        while current is not None and self.repo.get_node(current) is None:
            missing.append(current)
            current = paths.parent_of(current)
        for p in reversed(missing):
            self.repo.put_node(p, t.TYPE_FOLDER)

    def create_release(self, root_path: str, number: str, marks: Iterable[str] = ()) -> Release:
        root_path = paths.normalize(root_path)
        root = self.repo.get_node(root_path)
        if root is None:
            raise UsageError(f"Release root '{root_path}' does not exist")
        release = self._release(root_path, number, [])
        if self.repo.get_node(release.metadata_path) is not None:
            raise UsageError(f"Release '{number}' already exists for '{root_path}'")
        self._ensure_folder(release.release_area)
        self.repo.put_node(
            release.metadata_path,
            t.TYPE_RELEASE,
            properties={t.PROP_RELEASE_NUMBER: number, t.PROP_RELEASE_ROOT: root_path},
        )
        self.repo.put_node(
            release.content_copy_path,
            root.primary_type,
            mixins=[m for m in root.mixins if m != t.MIX_VERSIONABLE],
            properties=root.properties,
        )
        for mark in marks:
            self.set_mark(release, mark)
        logger.info("created release %s for %s", number, root_path)
        return release

    def releases(self, root_path: str) -> list[Release]:
        root_path = paths.normalize(root_path)
        area = self._release(root_path, "_", []).release_area
        result = []
        for node in self.repo.list_children(area):
            if node.primary_type != t.TYPE_RELEASE:
                continue
            result.append(
                self._release(
                    root_path,
                    node.get(t.PROP_RELEASE_NUMBER),
                    node.get(t.PROP_RELEASE_MARKS, []),
                    node.get(t.PROP_RELEASE_CLOSED, False),
                )
            )
        return result

    def find_release(self, root_path: str, number: str) -> Release:
        for release in self.releases(root_path):
            if release.number == number:
                return release
        raise ReleaseNotFoundError(root_path, number)

    def find_release_by_mark(self, root_path: str, mark: str) -> Release:
        """Release carrying ``mark``; raises ReleaseNotFoundError when there is none."""
        for release in self.releases(root_path):
            if mark in release.marks:
                return release
        raise ReleaseNotFoundError(root_path, mark)

    def close_release(self, release: Release) -> None:
        """Freeze ``release``; its content can no longer be staged, deactivated or unstaged."""
        self.repo.update_properties(release.metadata_path, {t.PROP_RELEASE_CLOSED: True})
        release.closed = True
        logger.info("closed release %s of %s", release.number, release.root_path)

    def set_mark(self, release: Release, mark: str) -> None:
        """Put ``mark`` on ``release``, taking it away from any other release of the root."""
        for other in self.releases(release.root_path):
            if mark in other.marks and other.number != release.number:
                other.marks.remove(mark)
                if other.marks:
                    self.repo.update_properties(
                        other.metadata_path, {t.PROP_RELEASE_MARKS: other.marks}
                    )
                else:
                    self.repo.update_properties(
                        other.metadata_path, remove=(t.PROP_RELEASE_MARKS,)
                    )
        if mark not in release.marks:
            release.marks.append(mark)
        self.repo.update_properties(release.metadata_path, {t.PROP_RELEASE_MARKS: release.marks})

    def stage_versionable(
        self, release: Release, path: str, version_id: str | None = None
    ) -> str:
        """Put a version of the versionable at ``path`` into ``release``.

        Checks the node in when no version is given, labels the version with the
        release label and writes the version reference into the content copy. Missing
        ancestors in the content copy are copied from the live tree.
        """
        self._check_open(release)
        path = paths.normalize(path)
        if not paths.is_descendant(release.root_path, path):
            raise UsageError(f"'{path}' is not below release root '{release.root_path}'")
        if version_id is None:
            version_id = self.repo.checkin(path)
        self.repo.add_version_label(version_id, release.label)

        copy_path = release.map_to_content_copy(path)
        ancestors: list[str] = []
        current = paths.parent_of(copy_path)
        while current is not None and self.repo.get_node(current) is None:
            ancestors.append(current)
            current = paths.parent_of(current)
        for copy_ancestor in reversed(ancestors):
            live = self.repo.get_node(release.unmap_from_content_copy(copy_ancestor))
            if live is None:
                self.repo.put_node(copy_ancestor, t.TYPE_UNSTRUCTURED)
            else:
                self.repo.put_node(
                    copy_ancestor,
                    live.primary_type,
                    mixins=[m for m in live.mixins if m != t.MIX_VERSIONABLE],
                    properties=live.properties,
                )
        self.repo.put_node(
            copy_path,
            t.TYPE_VERSION_REFERENCE,
            properties={t.PROP_VERSION: version_id, t.PROP_DEACTIVATED: False},
        )
        return version_id

    def deactivate(self, release: Release, path: str) -> None:
        self._check_open(release)
        self.repo.update_properties(
            release.map_to_content_copy(path), {t.PROP_DEACTIVATED: True}
        )

    def unstage(self, release: Release, path: str) -> None:
        self._check_open(release)
        copy_path = release.map_to_content_copy(path)
        ref = self.repo.get_node(copy_path)
        if ref is None or ref.primary_type != t.TYPE_VERSION_REFERENCE:
            raise UsageError(f"'{path}' is not part of release '{release.number}'")
        self.repo.remove_version_label(ref.get(t.PROP_VERSION), release.label)
        self.repo.remove_node(copy_path)

    def version_references(self, release: Release) -> dict[str, str]:
        return version_reference_map(self.repo, release)


def version_reference_map(accessor, release: Release) -> dict[str, str]:
    """Version id -> version reference path for active references in the content copy."""
    rows = accessor.execute(
        "SELECT path, json_extract(properties, '$.\"stage:version\".v') AS version "
        "FROM nodes WHERE primary_type = :type "
        "AND (path = :copy OR instr(path, :prefix) = 1) "
        "AND COALESCE(json_extract(properties, '$.\"stage:deactivated\".v'), 0) = 0",
        {
            "type": t.TYPE_VERSION_REFERENCE,
            "copy": release.content_copy_path,
            "prefix": paths.descendant_prefix(release.content_copy_path),
        },
    )
    return {row["version"]: row["path"] for row in rows if row["version"]}
