"""Tests for foreign-key dependency ordering"""

import pytest

from goldsync.database.ordering import build_table_dependencies, sort_tables_by_dependency
from goldsync.models import ForeignKeyInfo


def fk(child: str, parent: str) -> ForeignKeyInfo:
    child_schema, child_table = child.split(".")
    parent_schema, parent_table = parent.split(".")
    return ForeignKeyInfo(
        table_schema=child_schema,
        table_name=child_table,
        column_name=f"{parent_table}_id",
        referenced_schema=parent_schema,
        referenced_table=parent_table,
        referenced_column="id",
        constraint_name=f"{child_table}_{parent_table}_fkey",
    )


def test_no_edges_sorts_lexicographically() -> None:
    tables = ["public.orders", "public.accounts", "public.items"]
    assert sort_tables_by_dependency(tables, []) == ["public.accounts", "public.items", "public.orders"]


def test_parents_before_children() -> None:
    tables = ["public.order_items", "public.orders", "public.customers", "public.products"]
    edges = [
        fk("public.orders", "public.customers"),
        fk("public.order_items", "public.orders"),
        fk("public.order_items", "public.products"),
    ]

    result = sort_tables_by_dependency(tables, edges)

    assert sorted(result) == sorted(tables)
    for edge in edges:
        assert result.index(edge.parent) < result.index(edge.child)
    assert result == ["public.customers", "public.orders", "public.products", "public.order_items"]


def test_edges_outside_set_and_self_references_ignored() -> None:
    tables = ["public.b", "public.a"]
    edges = [fk("public.a", "public.outside"), fk("public.b", "public.b")]

    assert sort_tables_by_dependency(tables, edges) == ["public.a", "public.b"]
    assert build_table_dependencies(tables, edges) == {"public.b": set(), "public.a": set()}


def test_two_cycle_returns_each_table_once() -> None:
    tables = ["public.b", "public.a"]
    edges = [fk("public.a", "public.b"), fk("public.b", "public.a")]

    assert sort_tables_by_dependency(tables, edges) == ["public.a", "public.b"]


def test_cycle_remainder_appended_after_resolved_tables() -> None:
    tables = ["public.z_root", "public.x", "public.y"]
    edges = [fk("public.x", "public.y"), fk("public.y", "public.x")]

    assert sort_tables_by_dependency(tables, edges) == ["public.z_root", "public.x", "public.y"]


def test_duplicates_collapse() -> None:
    assert sort_tables_by_dependency(["public.a", "public.a"], []) == ["public.a"]


@pytest.mark.parametrize("tables", [[], ["public.only"]])
def test_trivial_inputs(tables: list[str]) -> None:
    assert sort_tables_by_dependency(tables, []) == tables
