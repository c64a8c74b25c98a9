"""Shared test fixtures for stagetree tests."""

from __future__ import annotations

import pytest

from stagetree.releases import Release, ReleaseManager
from stagetree.storage import Repository

VERSIONABLE = ["mix:versionable"]

# paths the release r1 of /site shows
RELEASE_VIEW = {
    "/site",
    "/site/doc1",
    "/site/doc1/content",
    "/site/doc2",
    "/site/doc2/content",
    "/site/folder",
    "/site/folder/doc3",
}


def build_site(repo: Repository) -> Release:
    """A small site with one release; live content is edited after the release was cut.

    /site                 title "Site"
      doc1 (versionable)  title "Doc 1", rank 1, child content
      doc2 (versionable)  title "Doc 2", rank 2, child content
      folder (folder)
        doc3 (versionable) title "Doc 3", rank 3
    Release r1 (mark "public") contains doc1, doc2, doc3. Afterwards doc1's title
    changes to "Doc 1 draft", doc4 (rank 4) is added and /other (rank 0) exists
    outside the release root.
    """
    repo.put_node("/site", properties={"title": "Site"})
    for i in (1, 2):
        repo.put_node(f"/site/doc{i}", mixins=VERSIONABLE, properties={"title": f"Doc {i}", "rank": i})
        repo.put_node(f"/site/doc{i}/content", properties={"title": f"content {i}"})
    repo.put_node("/site/folder", "node:folder")
    repo.put_node(
        "/site/folder/doc3", mixins=VERSIONABLE, properties={"title": "Doc 3", "rank": 3}
    )
    manager = ReleaseManager(repo)
    release = manager.create_release("/site", "r1", marks=["public"])
    for path in ("/site/doc1", "/site/doc2", "/site/folder/doc3"):
        manager.stage_versionable(release, path)

    repo.update_properties("/site/doc1", {"title": "Doc 1 draft"})
    repo.put_node("/site/doc4", mixins=VERSIONABLE, properties={"title": "Doc 4", "rank": 4})
    repo.put_node("/other", properties={"title": "Other", "rank": 0})
    return release


@pytest.fixture
def tmp_db(tmp_path):
    """Create a temporary SQLite database path."""
    return str(tmp_path / "test.db")


@pytest.fixture
def repo(tmp_db):
    """Create a Repository instance with a temporary database."""
    r = Repository(tmp_db)
    yield r
    r.close()


@pytest.fixture
def site(repo):
    """The repository seeded by build_site, and its release."""
    return repo, build_site(repo)
