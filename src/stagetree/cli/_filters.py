"""CLI filter token parser: converts CLI triples to conditions."""

from __future__ import annotations

import json
from typing import Any

from stagetree.filters import Condition, and_, prop

_OPS = ("eq", "ne", "gt", "gte", "lt", "lte", "like", "in", "is_null", "is_not_null", "contains")


def parse_cli_filters(triples: list[tuple[str, str, str]]) -> Condition | None:
    """Parse CLI filter triples (PROPERTY, OP, VALUE_JSON) into one AND-combined condition."""
    if not triples:
        return None

    conditions: list[Condition] = []
    for name, op, value_json in triples:
        if op not in _OPS:
            raise ValueError(
                f"Unknown filter operator '{op}'. Valid operators: {', '.join(sorted(_OPS))}"
            )
        operand = prop(name)
        if op == "is_null":
            conditions.append(operand.is_null())
            continue
        if op == "is_not_null":
            conditions.append(operand.is_not_null())
            continue
        value: Any = json.loads(value_json)
        if op == "in":
            conditions.append(operand.in_(value))
        elif op == "contains":
            conditions.append(operand.contains(value))
        elif op == "like":
            conditions.append(operand.like(value))
        elif op == "eq":
            conditions.append(operand == value)
        elif op == "ne":
            conditions.append(operand != value)
        elif op == "gt":
            conditions.append(operand > value)
        elif op == "gte":
            conditions.append(operand >= value)
        elif op == "lt":
            conditions.append(operand < value)
        else:
            conditions.append(operand <= value)
    return and_(*conditions)


def group_filter_args(filter_args: list[str] | None) -> list[tuple[str, str, str]]:
    """Each --filter value is "PROPERTY OP VALUE_JSON"; VALUE_JSON may be omitted for null checks."""
    triples: list[tuple[str, str, str]] = []
    for arg in filter_args or []:
        parts = arg.split(None, 2)
        if len(parts) == 2 and parts[1] in ("is_null", "is_not_null"):
            parts.append("null")
        if len(parts) != 3:
            raise ValueError(f"Invalid filter (expected 'PROPERTY OP VALUE_JSON'): {arg}")
        triples.append((parts[0], parts[1], parts[2]))
    return triples
