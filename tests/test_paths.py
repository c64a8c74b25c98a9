"""Tests for path helpers."""

from __future__ import annotations

import pytest

from stagetree import paths
from stagetree.errors import UsageError


class TestNormalize:
    def test_trailing_slashes(self):
        assert paths.normalize("/a/b/") == "/a/b"
        assert paths.normalize("/") == "/"

    @pytest.mark.parametrize("bad", ["", "a/b", "/a//b"])
    def test_rejects(self, bad):
        with pytest.raises(UsageError):
            paths.normalize(bad)


class TestRelations:
    def test_parent_and_name(self):
        assert paths.parent_of("/a/b") == "/a"
        assert paths.parent_of("/a") == "/"
        assert paths.parent_of("/") is None
        assert paths.name_of("/a/b") == "b"
        assert paths.name_of("/") == ""

    def test_descendants(self):
        assert paths.is_same_or_descendant("/a", "/a")
        assert paths.is_descendant("/a", "/a/b")
        assert not paths.is_descendant("/a", "/ab")
        assert paths.is_descendant("/", "/a")

    def test_rebase(self):
        assert paths.rebase("/site/a/b", "/site", "/copy/root") == "/copy/root/a/b"
        assert paths.rebase("/site", "/site", "/copy/root") == "/copy/root"
        with pytest.raises(UsageError):
            paths.relative_to("/site", "/other")


class TestReconstructOriginalPath:
    def test_versionable_root(self):
        assert paths.reconstruct_original_path("/site/doc", "/archive/h/v/frozenNode") == "/site/doc"

    def test_descendant(self):
        archive = "/archive/h/v/frozenNode/content/text"
        assert paths.reconstruct_original_path("/site/doc", archive) == "/site/doc/content/text"

    def test_not_an_archive_path(self):
        with pytest.raises(UsageError):
            paths.reconstruct_original_path("/site/doc", "/site/doc/content")
