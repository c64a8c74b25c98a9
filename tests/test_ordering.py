"""Tests for value comparison and merging of sorted streams."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from stagetree.ordering import compare_values, merge_sorted, path_comparator, value_comparator
from stagetree.values import BinaryValue, PropertyType, Value


def long(v):
    return Value(PropertyType.LONG, v)


def string(v):
    return Value(PropertyType.STRING, v)


class TestCompareValues:
    def test_nulls_sort_lowest(self):
        assert compare_values(None, None) == 0
        assert compare_values(None, long(1)) == -1
        assert compare_values(long(1), None) == 1
        assert compare_values(Value(PropertyType.STRING, None), string("a")) == -1

    def test_same_type(self):
        assert compare_values(long(1), long(2)) == -1
        assert compare_values(long(2), long(2)) == 0
        assert compare_values(string("b"), string("a")) == 1

    def test_numeric_types_compare_by_value(self):
        assert compare_values(long(10), Value(PropertyType.DOUBLE, 9.5)) == 1
        assert compare_values(Value(PropertyType.DECIMAL, Decimal("1.5")), long(2)) == -1

    def test_string_like_types_compare_together(self):
        assert compare_values(Value(PropertyType.NAME, "a"), Value(PropertyType.PATH, "/b")) == 1

    def test_dates(self):
        early = Value(PropertyType.DATE, datetime(2020, 1, 1, tzinfo=timezone.utc))
        late = Value(PropertyType.DATE, datetime(2021, 1, 1, tzinfo=timezone.utc))
        assert compare_values(early, late) == -1

    def test_binaries_order_by_stored_text(self):
        # base64 of b"\xff" is "/w==", which sorts before "YWFh" (b"aaa")
        high_byte = Value(PropertyType.BINARY, BinaryValue.from_bytes(b"\xff"))
        letters = Value(PropertyType.BINARY, BinaryValue.from_bytes(b"aaa"))
        assert compare_values(high_byte, letters) == -1
        assert compare_values(letters, letters) == 0

    def test_type_mismatch_orders_numbers_before_text(self, caplog):
        with caplog.at_level(logging.WARNING, logger="stagetree.ordering"):
            assert compare_values(long(10), string("9")) == -1
            assert compare_values(string("1"), Value(PropertyType.BOOLEAN, True)) == 1
        assert "different types" in caplog.text

    def test_type_mismatch_between_text_kinds_compares_strings(self):
        when = Value(PropertyType.DATE, datetime(2024, 3, 1, tzinfo=timezone.utc))
        assert compare_values(when, string("2024-02-01")) == 1
        assert compare_values(when, string("2024-03-01T00:00:00.000Z")) == 0

    def test_type_mismatch_between_numbers_and_booleans(self):
        assert compare_values(Value(PropertyType.BOOLEAN, True), long(2)) == -1
        assert compare_values(Value(PropertyType.BOOLEAN, True), long(0)) == 1


class TestComparators:
    def test_descending_reverses_nulls_too(self):
        desc = value_comparator(ascending=False)
        assert desc(None, long(1)) == 1
        assert desc(long(1), long(2)) == 1

    def test_path_comparator_is_text_order(self):
        assert path_comparator()("/a/b", "/a-b") == 1
        assert path_comparator(ascending=False)("/a", "/b") == 1


class TestMergeSorted:
    def test_merges_sorted_streams(self):
        compare = value_comparator()
        streams = [[long(1), long(4)], [], [None, long(2), long(3)], [long(5)]]
        merged = [v.value if v else None for v in merge_sorted(streams, compare)]
        assert merged == [None, 1, 2, 3, 4, 5]

    def test_all_empty(self):
        assert list(merge_sorted([[], []], value_comparator())) == []

    def test_lazy(self):
        def endless(start):
            n = start
            while True:
                yield long(n)
                n += 2

        merged = merge_sorted([endless(0), endless(1)], value_comparator())
        assert [next(merged).value for _ in range(5)] == [0, 1, 2, 3, 4]
