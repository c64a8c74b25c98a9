"""Tests for the replication wire models."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from stagetree.replication import (
    ChildrenOrderInfo,
    NodeAttributeComparisonInfo,
    VersionableInfo,
    dump_children_orders,
    dump_fingerprints,
    dump_versionables,
    load_children_orders,
    load_fingerprints,
    load_versionables,
)


class TestWireFormat:
    def test_versionables(self):
        data = dump_versionables([VersionableInfo(path="/a", version="1")])
        assert json.loads(data) == [{"path": "/a", "version": "1"}]
        assert load_versionables(data) == [VersionableInfo(path="/a", version="1")]

    def test_children_orders_use_camel_case(self):
        data = dump_children_orders([ChildrenOrderInfo(path="/a", child_names=["x", "y"])])
        assert json.loads(data) == [{"path": "/a", "childNames": ["x", "y"]}]
        assert load_children_orders(data)[0].child_names == ["x", "y"]

    def test_fingerprints_sorted_by_attribute(self):
        info = NodeAttributeComparisonInfo(path="/a", propertyHashes={"z": "S:1", "a": "S:2"})
        data = dump_fingerprints([info])
        assert data.index('"a"') < data.index('"z"')
        assert json.loads(data)[0]["propertyHashes"] == {"a": "S:2", "z": "S:1"}
        assert load_fingerprints(data) == [info]

    def test_markers_are_immutable(self):
        info = VersionableInfo(path="/a", version="1")
        with pytest.raises(ValidationError):
            info.version = "2"

    def test_different_paths(self):
        a = NodeAttributeComparisonInfo(path="/a", property_hashes={})
        b = NodeAttributeComparisonInfo(path="/b", property_hashes={})
        assert a.describe_difference(b) == "different paths: /a vs /b"
        assert a.describe_difference(a) == ""
