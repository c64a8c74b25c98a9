"""Tests for attribute fingerprints."""

from __future__ import annotations

import io
import logging
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from stagetree.config import StagetreeConfig
from stagetree.errors import BackendAccessError, TypeResolutionError
from stagetree.fingerprint import (
    AttributeFingerprinter,
    ProtectedPropertyCache,
    attribute_fingerprint,
)
from stagetree.storage import Repository
from stagetree.types import Node
from stagetree.values import BinaryValue, make_property


def make_node(path="/n", primary_type="node:unstructured", mixins=(), **props):
    return Node(
        path=path,
        primary_type=primary_type,
        mixins=list(mixins),
        properties={name: make_property(name, value) for name, value in props.items()},
    )


@pytest.fixture
def fingerprinter():
    return AttributeFingerprinter()


class _FailingStream(io.BytesIO):
    def read(self, size=-1):
        raise OSError("disk gone")


class TestTokens:
    def test_type_tags(self, fingerprinter, repo):
        node = make_node(
            title="x",
            flag=True,
            rank=3,
            when=datetime(1970, 1, 1, 0, 0, 2, tzinfo=timezone.utc),
        )
        hashes = fingerprinter.fingerprint(node, repo).property_hashes
        assert hashes == {
            "flag": "b:true",
            "node:primaryType": "S:node:unstructured",
            "rank": "n:3",
            "title": "S:x",
            "when": "C:2000",
        }

    @pytest.mark.parametrize("value", [1, 1.0, Decimal("1.00")])
    def test_numbers_are_normalized(self, fingerprinter, value):
        assert fingerprinter.token(make_property("x", value)) == "n:1"

    def test_trailing_zeros_of_integers_survive(self, fingerprinter):
        assert fingerprinter.token(make_property("x", Decimal("10"))) == "n:10"

    def test_long_strings_are_digested(self, fingerprinter):
        token = fingerprinter.token(make_property("x", "a" * 65))
        assert token.startswith("S:")
        assert len(token) == 2 + 32
        assert fingerprinter.token(make_property("x", "a" * 64)) == "S:" + "a" * 64

    def test_multi_values_are_digested_in_order(self, fingerprinter):
        ab = fingerprinter.token(make_property("tags", ["a", "b"]))
        ba = fingerprinter.token(make_property("tags", ["b", "a"]))
        joined = fingerprinter.token(make_property("tags", ["ab"]))
        assert ab != ba
        assert ab != joined

    def test_mixin_order_does_not_matter(self, fingerprinter, repo):
        one = make_node(mixins=["mix:title", "mix:created"])
        two = make_node(mixins=["mix:created", "mix:title"])
        assert (
            fingerprinter.fingerprint(one, repo).property_hashes["node:mixinTypes"]
            == fingerprinter.fingerprint(two, repo).property_hashes["node:mixinTypes"]
        )

    def test_binary_streams(self, fingerprinter):
        config = StagetreeConfig(binary_chunk_size=2)
        small_chunks = AttributeFingerprinter(config)
        value = BinaryValue.from_bytes(b"payload")
        assert fingerprinter.token(make_property("b", value)) == small_chunks.token(
            make_property("b", value)
        )
        assert fingerprinter.token(make_property("b", value)).startswith("B:")

    def test_unreadable_binary(self, fingerprinter, repo, caplog):
        stream = _FailingStream(b"x")
        node = make_node(blob=BinaryValue(lambda: stream))
        with caplog.at_level(logging.ERROR, logger="stagetree.fingerprint"):
            with pytest.raises(OSError):
                fingerprinter.fingerprint(node, repo)
        assert stream.closed
        assert "blob" in caplog.text

    def test_failing_binary_source(self, fingerprinter, repo, caplog):
        def opener():
            raise BackendAccessError("read binary", "value store offline")

        node = make_node(blob=BinaryValue(opener))
        with caplog.at_level(logging.ERROR, logger="stagetree.fingerprint"):
            with pytest.raises(BackendAccessError):
                fingerprinter.fingerprint(node, repo)
        assert "cannot read attribute blob of /n" in caplog.text

    def test_unknown_node_type(self, fingerprinter, repo, caplog):
        node = make_node(primary_type="app:missing", title="x")
        with caplog.at_level(logging.ERROR, logger="stagetree.fingerprint"):
            with pytest.raises(TypeResolutionError):
                fingerprinter.fingerprint(node, repo)
        assert "/n" in caplog.text


class TestFingerprint:
    def test_equal_content_equal_fingerprint(self, fingerprinter, tmp_path):
        results = []
        for name in ("a.db", "b.db"):
            with Repository(str(tmp_path / name)) as repo:
                repo.put_node("/doc", mixins=["mix:versionable"], properties={"title": "t"})
                repo.checkin("/doc")
                results.append(fingerprinter.fingerprint(repo.get_node("/doc"), repo))
        assert results[0] == results[1]

    def test_protected_and_ignored_attributes_are_left_out(self, fingerprinter, repo):
        node = repo.put_node(
            "/doc",
            mixins=["mix:versionable"],
            properties={"stage:changeNumber": 4, "stage:lastReplicationDate": "x", "title": "t"},
        )
        hashes = fingerprinter.fingerprint(node, repo).property_hashes
        assert set(hashes) == {"node:primaryType", "node:mixinTypes", "title"}

    def test_attribute_change_is_detected(self, fingerprinter, repo):
        before = fingerprinter.fingerprint(make_node(title="a", rank=1), repo)
        after = fingerprinter.fingerprint(make_node(title="b", rank=1, extra="x"), repo)
        assert before.differing_attributes(after) == {"title", "extra"}
        assert before.describe_difference(after) == "/n: attributes differ: extra, title"

    def test_path_mapping(self, fingerprinter, repo):
        info = fingerprinter.fingerprint(make_node("/site/a"), repo, lambda p: p[len("/site"):])
        assert info.path == "/a"

    def test_module_level_helper(self, repo):
        assert attribute_fingerprint(make_node(title="x"), repo).property_hashes["title"] == "S:x"


class TestProtectedPropertyCache:
    def test_names_from_type_hierarchy(self, repo):
        cache = ProtectedPropertyCache()
        names = cache.protected_names(repo, ["node:folder", "mix:versionable"])
        assert {"node:created", "node:uuid", "node:baseVersion", "node:primaryType"} <= names

    def test_evicted_when_session_closes(self, tmp_db):
        cache = ProtectedPropertyCache()
        repo = Repository(tmp_db)
        cache.protected_names(repo, ["node:unstructured"])
        assert repo.session_id in cache
        repo.close()
        assert repo.session_id not in cache
