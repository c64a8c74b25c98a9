"""Tests for the condition DSL."""

from __future__ import annotations

import pytest

from stagetree.errors import UsageError
from stagetree.filters import (
    NULL_EQ_ERROR,
    Comparison,
    FullTextContains,
    LogicalCondition,
    NullCheck,
    Operand,
    PathConstraint,
    Selector,
    and_,
    is_descendant_of,
    or_,
    prop,
    selectors_of,
)


class TestOperators:
    def test_comparisons(self):
        assert (prop("rank") == 1) == Comparison(Operand("PROPERTY", "rank"), "=", 1)
        assert (prop("rank") != 1).op == "<>"
        assert (prop("rank") < 1).op == "<"
        assert (prop("rank") <= 1).op == "<="
        assert (prop("rank") > 1).op == ">"
        assert (prop("rank") >= 1).op == ">="

    def test_none_comparison_points_to_null_checks(self):
        with pytest.raises(TypeError, match="is_null"):
            prop("title") == None  # noqa: E711
        with pytest.raises(TypeError, match="is_not_null"):
            prop("title") != None  # noqa: E711
        assert "is_null" in NULL_EQ_ERROR

    def test_unbindable_value(self):
        with pytest.raises(UsageError):
            prop("title") == object()

    def test_like_and_startswith(self):
        assert prop("title").like("a_c").value == "a_c"
        cond = prop("title").startswith("Doc")
        assert cond.op == "LIKE"
        assert cond.value == "Doc%"

    def test_in(self):
        cond = prop("rank").in_([1, 2])
        assert isinstance(cond, LogicalCondition)
        assert cond.op == "OR"
        assert [c.value for c in cond.children] == [1, 2]
        assert prop("rank").in_([3]) == (prop("rank") == 3)
        assert prop("rank").in_([]) == NullCheck("rank", False)

    def test_functions_stack_outermost_first(self):
        cond = prop("title").length().upper() == "3"
        assert cond.operand.functions == ("UPPER", "LENGTH")

    def test_length_needs_plain_property(self):
        with pytest.raises(UsageError):
            Selector().node_name().length()
        with pytest.raises(UsageError):
            prop("title").lower().length()

    def test_null_checks_need_plain_property(self):
        assert prop("title").is_not_null() == NullCheck("title", True)
        with pytest.raises(UsageError):
            prop("title").upper().is_null()

    def test_logical_combinators(self):
        a, b = prop("a") == 1, prop("b") == 2
        assert (a & b) == LogicalCondition("AND", [a, b])
        assert (a | b) == LogicalCondition("OR", [a, b])
        assert ~a == LogicalCondition("NOT", [a])
        assert and_(a) is a
        assert or_(a, b) == LogicalCondition("OR", [a, b])


class TestSelectors:
    def test_invalid_names(self):
        with pytest.raises(UsageError):
            Selector("N")
        with pytest.raises(UsageError):
            prop("bad name")

    def test_path_constraints_normalize(self):
        assert is_descendant_of("/site/") == PathConstraint("DESCENDANT", "/site")

    def test_contains(self):
        o = Selector("o")
        assert o.contains("x") == FullTextContains("x", "*", "o")
        assert o.prop("body").contains("x") == FullTextContains("x", "body", "o")

    def test_selectors_of(self):
        o = Selector("o")
        cond = (prop("a") == 1) & (o.prop("b").is_null() | o.is_child_of("/x"))
        assert selectors_of(cond) == {"n", "o"}
