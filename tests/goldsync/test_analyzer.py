"""Tests for source table analysis"""

from collections.abc import Callable
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from goldsync.database.analyzer import (
    determine_exclusions,
    diff_schemas,
    format_size,
    get_foreign_keys,
    get_table_indexes,
    is_likely_audit_table,
    list_tables,
    parse_index_columns,
    suggest_exclusions,
)
from goldsync.errors import IntrospectionError
from goldsync.models import ColumnSchema, SourceConfig, TableInfo, TableSchema

MB = 1024 * 1024


def mock_engine(rows: list[tuple]) -> MagicMock:
    """Engine whose connection returns the given rows from fetchall()"""
    engine = MagicMock()
    conn = engine.connect.return_value.__enter__.return_value
    conn.execute.return_value.fetchall.return_value = rows
    return engine


class TestAuditHeuristic:
    """Tests for is_likely_audit_table"""

    @pytest.mark.parametrize(
        "name", ["audit_log", "user_audits", "events", "login_history", "email_queue", "Sessions", "job_runs"]
    )
    def test_vocabulary(self, name: str) -> None:
        assert is_likely_audit_table(name, 10, 1000)

    def test_many_small_rows(self) -> None:
        assert is_likely_audit_table("measurements", 2_000_000, 2_000_000 * 100)

    def test_many_wide_rows(self) -> None:
        assert not is_likely_audit_table("documents", 2_000_000, 2_000_000 * 4000)

    def test_regular_table(self) -> None:
        assert not is_likely_audit_table("users", 1000, 1000 * 200)


class TestSuggestExclusions:
    """Tests for suggest_exclusions"""

    def test_large_table_over_threshold(self, make_table: Callable[..., TableInfo]) -> None:
        tables = [make_table("blobs", size_mb=200)]
        assert suggest_exclusions(tables, 100) == ["public.blobs"]

    def test_audit_table_regardless_of_threshold(self, make_table: Callable[..., TableInfo]) -> None:
        tables = [make_table("user_audit", size_mb=10, rows=500_000, is_audit=True)]
        assert suggest_exclusions(tables, 0) == ["public.user_audit"]
        assert suggest_exclusions(tables, 1000) == ["public.user_audit"]

    def test_small_regular_table_never_suggested(self, make_table: Callable[..., TableInfo]) -> None:
        tables = [make_table("users", size_mb=0.5, rows=1000)]
        assert suggest_exclusions(tables, 0) == []

    def test_small_audit_table_not_suggested(self, make_table: Callable[..., TableInfo]) -> None:
        tables = [make_table("audit_log", rows=50_000, is_audit=True)]
        assert suggest_exclusions(tables, 100) == []

    def test_table_matching_both_rules_appears_once(self, make_table: Callable[..., TableInfo]) -> None:
        tables = [make_table("event_log", size_mb=500, rows=5_000_000, is_audit=True)]
        assert suggest_exclusions(tables, 100) == ["public.event_log"]


def test_determine_exclusions_combines_explicit_and_threshold(make_table: Callable[..., TableInfo]) -> None:
    tables = [make_table("big", size_mb=300), make_table("small", size_mb=1)]
    config = SourceConfig(source="postgresql://x@y/z", exclude_tables=["public.audit_log"], size_threshold_mb=100)

    assert determine_exclusions(tables, config) == ["public.audit_log", "public.big"]


def test_determine_exclusions_threshold_disabled(make_table: Callable[..., TableInfo]) -> None:
    config = SourceConfig(source="postgresql://x@y/z")
    assert determine_exclusions([make_table("big", size_mb=300)], config) == []


class TestListTables:
    """Tests for list_tables with a mocked engine"""

    def test_rows_become_table_info(self) -> None:
        engine = mock_engine(
            [
                ("public", "audit_log", 500 * MB, 3_000_000, True),
                ("public", "users", MB, None, True),
                ("sales", "orders", 1024, 10, False),
            ]
        )

        with patch("goldsync.database.analyzer.create_database_engine", return_value=engine):
            tables = list_tables("postgresql://reader@db/app")

        assert [t.qualified_name for t in tables] == ["public.audit_log", "public.users", "sales.orders"]
        assert tables[0].is_audit
        assert tables[1].row_count == 0
        assert not tables[2].has_indexes
        engine.dispose.assert_called_once()

    def test_query_failure(self) -> None:
        engine = MagicMock()
        engine.connect.side_effect = OperationalError("SELECT", {}, Exception("timeout"))

        with (
            patch("goldsync.database.analyzer.create_database_engine", return_value=engine),
            pytest.raises(IntrospectionError, match="failed to list tables"),
        ):
            list_tables("postgresql://reader@db/app")


def test_get_foreign_keys_maps_rows() -> None:
    engine = mock_engine([("public", "orders", "customer_id", "public", "customers", "id", "orders_customer_fkey")])

    with patch("goldsync.database.analyzer.create_database_engine", return_value=engine):
        fks = get_foreign_keys("postgresql://reader@db/app", ["public.orders"])

    assert len(fks) == 1
    assert fks[0].child == "public.orders"
    assert fks[0].parent == "public.customers"


def test_get_foreign_keys_empty_subset_skips_query() -> None:
    with patch("goldsync.database.analyzer.create_database_engine") as create_engine:
        assert get_foreign_keys("postgresql://reader@db/app", []) == []
    create_engine.assert_not_called()


def test_get_table_indexes_groups_by_table() -> None:
    engine = mock_engine(
        [
            ("public", "orders", "orders_pkey", "CREATE UNIQUE INDEX orders_pkey ON public.orders USING btree (id)"),
            (
                "public",
                "orders",
                "orders_created_idx",
                "CREATE INDEX orders_created_idx ON public.orders USING btree (created_at DESC, status)",
            ),
        ]
    )

    with patch("goldsync.database.analyzer.create_database_engine", return_value=engine):
        indexes = get_table_indexes("postgresql://reader@db/app", ["public.orders"])

    orders = indexes["public.orders"]
    assert orders[0].is_primary and orders[0].is_unique
    assert orders[1].columns == ["created_at", "status"]
    assert not orders[1].is_unique


@pytest.mark.parametrize(
    ("index_def", "expected"),
    [
        ("CREATE INDEX idx ON public.t USING btree (col1, col2 DESC)", ["col1", "col2"]),
        ('CREATE INDEX idx ON public.t USING btree ("Mixed")', ["Mixed"]),
        ("no columns here", []),
    ],
)
def test_parse_index_columns(index_def: str, expected: list[str]) -> None:
    assert parse_index_columns(index_def) == expected


def test_diff_schemas() -> None:
    def table(name: str, *columns: tuple[str, str, bool]) -> TableSchema:
        return TableSchema(
            name=name,
            schema="public",
            columns=[ColumnSchema(name=c, data_type=t, is_nullable=n) for c, t, n in columns],
        )

    old = {
        "public.users": table("users", ("id", "integer", False), ("email", "text", False)),
        "public.legacy": table("legacy", ("id", "integer", False)),
        "public.orders": table("orders", ("id", "integer", False)),
    }
    new = {
        "public.users": table("users", ("id", "integer", False), ("email", "text", True)),
        "public.orders": table("orders", ("id", "integer", False)),
        "public.invoices": table("invoices", ("id", "integer", False)),
    }

    diff = diff_schemas(old, new)

    assert diff.added_tables == ["public.invoices"]
    assert diff.removed_tables == ["public.legacy"]
    assert diff.modified_tables == ["public.users"]
    assert diff.has_changes
    assert not diff_schemas(old, old).has_changes


@pytest.mark.parametrize(
    ("size", "expected"),
    [(512, "512 B"), (2048, "2 KB"), (1536, "1.5 KB"), (200 * MB, "200 MB"), (3 * 1024 * MB, "3 GB")],
)
def test_format_size(size: int, expected: str) -> None:
    assert format_size(size) == expected
