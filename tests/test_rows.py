"""Tests for projected result rows."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

import stagetree.rows as rows_module
from stagetree.errors import UsageError
from stagetree.query import Query
from stagetree.rows import canonical_column


@pytest.fixture
def released_rows(site):
    repo, release = site
    rows = Query(repo, release=release).path("/site").select_and_execute("title", "rank", "node:path")
    return {r.path: r for r in rows}


class TestColumnNames:
    def test_plain_qualified_and_bracketed_names_agree(self):
        assert canonical_column("title", ["n"]) == ("n", "title")
        assert canonical_column("n.title", ["n"]) == ("n", "title")
        assert canonical_column("n.[title]", ["n"]) == ("n", "title")
        assert canonical_column("o.[jcr:title]", ["n", "o"]) == ("o", "jcr:title")

    def test_bracketed_unknown_selector(self):
        with pytest.raises(UsageError, match="Unknown selector"):
            canonical_column("o.[title]", ["n"])

    def test_row_accepts_every_spelling(self, released_rows):
        row = released_rows["/site/doc2"]
        assert row["title"] == row["n.title"] == row["n.[title]"] == "Doc 2"
        assert row.columns == ["title", "rank", "node:path"]


class TestColumnAccess:
    def test_unselected_column(self, released_rows):
        row = released_rows["/site/doc1"]
        with pytest.raises(UsageError, match="not selected"):
            row["description"]
        with pytest.raises(UsageError, match="not selected"):
            row.get("description", default="x")
        assert "description" not in row
        assert 42 not in row

    def test_path_of_archived_row_is_live_shaped(self, released_rows):
        row = released_rows["/site/doc1"]
        assert row["node:path"] == "/site/doc1"
        assert row.get("node:path", str) == "/site/doc1"
        node = row.node()
        assert node.version_id is not None
        assert node.path == "/site/doc1"
        # the release still shows the title from before the draft edit
        assert row["title"] == "Doc 1"

    def test_path_column_only_reads_as_str(self, released_rows):
        with pytest.raises(UsageError, match="only be read as str"):
            released_rows["/site/doc1"].get("node:path", int)

    def test_missing_value_uses_default(self, released_rows):
        row = released_rows["/site/folder"]
        assert row["rank"] is None
        assert row.get("rank", int, default=-1) == -1
        assert "rank" not in row
        assert "title" not in row

    def test_to_dict_skips_empty_columns(self, released_rows):
        assert released_rows["/site/doc2"].to_dict() == {
            "title": "Doc 2",
            "rank": 2,
            "node:path": "/site/doc2",
        }
        assert released_rows["/site/folder"].to_dict() == {"node:path": "/site/folder"}

    def test_unknown_join_selector(self, released_rows):
        with pytest.raises(UsageError, match="Unknown selector"):
            released_rows["/site/doc1"].join_node("o")

    def test_values_are_resolved_once(self, released_rows, monkeypatch):
        calls = []
        decode = rows_module.decode_property

        def counting_decode(name, data):
            calls.append(name)
            return decode(name, data)

        monkeypatch.setattr(rows_module, "decode_property", counting_decode)
        row = released_rows["/site/doc2"]
        assert row["title"] == "Doc 2"
        assert row.get("title", str) == "Doc 2"
        assert "title" in row
        row.to_dict()
        assert calls.count("title") == 1


class TestTypedAccess:
    @pytest.fixture
    def row(self, repo):
        repo.put_node(
            "/d",
            properties={
                "when": datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc),
                "flag": "true",
                "price": "1.50",
                "tags": ["a", "b"],
            },
        )
        (row,) = Query(repo).path("/d").select_and_execute("when", "flag", "price", "tags")
        return row

    def test_numbers(self, released_rows):
        row = released_rows["/site/doc2"]
        assert row.get("rank") == 2
        assert row.get("rank", str) == "2"
        assert row.get("rank", float) == 2.0
        assert row.get("rank", Decimal) == Decimal("2")
        assert row.get("rank", list) == [2]

    def test_text_conversions(self, row):
        assert row.get("when", str) == "2024-01-02T03:04:05.678Z"
        assert row.get("when", datetime) == datetime(2024, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)
        assert row.get("flag", bool) is True
        assert row.get("price", Decimal) == Decimal("1.50")

    def test_multi_valued(self, row):
        assert row["tags"] == ["a", "b"]
        assert row.get("tags", str) == "a"
        assert row.get("tags", list) == ["a", "b"]

    def test_failed_conversion(self, row, released_rows):
        with pytest.raises(UsageError, match="Cannot convert"):
            row.get("price", int)
        with pytest.raises(UsageError, match="Cannot convert"):
            released_rows["/site/doc1"].get("title", float)
