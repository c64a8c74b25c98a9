"""Tests for the stagetree CLI commands."""

import json

from stagetree.cli import app
from tests.cli.conftest import invoke


def test_version(runner):
    result = invoke(runner, ["--version"])
    assert result.exit_code == 0
    assert result.output.startswith("stagetree ")


def test_missing_database(runner, tmp_path):
    result = invoke(runner, ["query", "/"], str(tmp_path / "nope.db"))
    assert result.exit_code == 3
    assert "Database not found" in result.output
    assert "STAGETREE_DB" not in result.output


def test_missing_default_database_hints_at_options(runner, tmp_path):
    with runner.isolated_filesystem(temp_dir=tmp_path):
        result = runner.invoke(app, ["query", "/"], env={"STAGETREE_DB": None})
    assert result.exit_code == 3
    assert "stagetree.db" in result.output
    assert "pass --db or set STAGETREE_DB" in result.output


def test_missing_database_from_environment(runner, tmp_path):
    missing = str(tmp_path / "env.db")
    result = runner.invoke(app, ["query", "/"], env={"STAGETREE_DB": missing})
    assert result.exit_code == 3
    assert missing in result.output
    assert "pass --db" not in result.output


def test_query_live(runner, seeded_db):
    result = invoke(runner, ["--json", "query", "/site", "--type", "mix:versionable"], seeded_db)
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert [d["path"] for d in data] == [
        "/site/doc1",
        "/site/doc2",
        "/site/doc4",
        "/site/folder/doc3",
    ]
    assert all(d["version"] == "" for d in data)


def test_query_table(runner, seeded_db):
    result = invoke(runner, ["query", "/site", "--element", "folder"], seeded_db)
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines[0].split() == ["path", "type", "version"]
    assert lines[2].split() == ["/site/folder", "node:folder"]


def test_query_marked_release(runner, seeded_db):
    result = invoke(
        runner,
        [
            "--json",
            "query",
            "/site",
            "--release-root",
            "/site",
            "--mark",
            "public",
            "--filter",
            'title eq "Doc 1"',
            "--select",
            "title",
        ],
        seeded_db,
    )
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data == [{"path": "/site/doc1", "title": "Doc 1"}]


def test_query_release_number_with_exclusion(runner, seeded_db):
    result = invoke(
        runner,
        [
            "--json",
            "query",
            "/site",
            "--release-root",
            "/site",
            "--release",
            "r1",
            "--exclude",
            "/site/folder",
            "--type",
            "mix:versionable",
        ],
        seeded_db,
    )
    assert result.exit_code == 0
    data = {d["path"]: d["version"] for d in json.loads(result.output)}
    assert set(data) == {"/site/doc1", "/site/doc2", "/site/folder/doc3"}
    assert data["/site/doc1"] != ""
    assert data["/site/folder/doc3"] == ""


def test_query_missing_mark_falls_back_to_live(runner, seeded_db):
    result = invoke(
        runner,
        ["query", "/site", "--release-root", "/site", "--mark", "staging", "--element", "doc4"],
        seeded_db,
    )
    assert result.exit_code == 0
    assert "no release of /site is marked 'staging'" in result.output
    assert "/site/doc4" in result.output


def test_query_unknown_release(runner, seeded_db):
    result = invoke(
        runner, ["query", "/site", "--release-root", "/site", "--release", "r9"], seeded_db
    )
    assert result.exit_code == 4
    assert "r9" in result.output


def test_query_ordering_and_paging(runner, seeded_db):
    result = invoke(
        runner,
        ["--json", "query", "/", "--order-by", "rank", "--desc", "--limit", "2", "--offset", "1"],
        seeded_db,
    )
    assert result.exit_code == 0
    assert [d["path"] for d in json.loads(result.output)] == ["/site/folder/doc3", "/site/doc2"]


def test_query_bad_filter(runner, seeded_db):
    result = invoke(runner, ["query", "/", "--filter", "title between 1"], seeded_db)
    assert result.exit_code == 2
    assert "Unknown filter operator" in result.output


def test_query_unknown_type(runner, seeded_db):
    result = invoke(runner, ["query", "/", "--type", "no:such"], seeded_db)
    assert result.exit_code == 4
    assert "no:such" in result.output


def test_versionables(runner, seeded_db):
    result = invoke(runner, ["versionables", "/site"], seeded_db)
    assert result.exit_code == 0
    assert json.loads(result.output) == [
        {"path": "/site/doc1", "version": "1.1"},
        {"path": "/site/doc2", "version": "2.0"},
    ]


def test_children_order(runner, seeded_db):
    result = invoke(runner, ["children-order", "/site"], seeded_db)
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data[0] == {"path": "/site", "childNames": ["doc1", "doc2", "folder", "doc4"]}


def test_fingerprint(runner, seeded_db):
    result = invoke(runner, ["fingerprint", "/other"], seeded_db)
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data == [
        {
            "path": "/other",
            "propertyHashes": {
                "node:primaryType": "S:node:unstructured",
                "rank": "n:0",
                "title": "S:Other",
            },
        }
    ]


def test_fingerprint_missing_node(runner, seeded_db):
    result = invoke(runner, ["fingerprint", "/nope"], seeded_db)
    assert result.exit_code == 2


def test_reconcile(runner, seeded_db, tmp_path):
    markers = tmp_path / "markers.json"
    markers.write_text(
        json.dumps(
            [
                {"path": "/site/doc1", "version": "1.0"},
                {"path": "/site/doc2", "version": "2.0"},
                {"path": "/site/gone", "version": "1.0"},
            ]
        )
    )
    result = invoke(runner, ["--json", "reconcile", str(markers)], seeded_db)
    assert result.exit_code == 0
    assert json.loads(result.output) == [
        {"status": "deleted", "path": "/site/gone"},
        {"status": "changed", "path": "/site/doc1"},
    ]


def test_reconcile_subpath_violation(runner, seeded_db, tmp_path):
    markers = tmp_path / "markers.json"
    markers.write_text(json.dumps([{"path": "/other", "version": "1"}]))
    result = invoke(runner, ["reconcile", str(markers), "--subpath", "/site"], seeded_db)
    assert result.exit_code == 4
    assert "/other" in result.output


def test_reconcile_bad_markers(runner, seeded_db, tmp_path):
    markers = tmp_path / "markers.json"
    markers.write_text("{not json")
    result = invoke(runner, ["reconcile", str(markers)], seeded_db)
    assert result.exit_code == 2
