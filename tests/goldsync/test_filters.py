"""Tests for filter index validation"""

from goldsync.database.filters import extract_columns_from_where, validate_filter_indexes
from goldsync.models import IndexInfo


def test_extract_comparison_and_keyword_columns() -> None:
    columns = extract_columns_from_where("created_at > now() - interval '30 days' AND status IN ('open', 'paid')")
    assert columns == ["created_at", "status"]


def test_extract_skips_keywords_and_numbers() -> None:
    assert extract_columns_from_where("id < 1000 AND deleted_at IS NULL") == ["id", "deleted_at"]


def test_extract_deduplicates_case_insensitively() -> None:
    assert extract_columns_from_where("Id > 1 OR id < 0") == ["Id"]


def test_extract_nothing_from_constant() -> None:
    assert extract_columns_from_where("true") == []


def test_missing_index_warns() -> None:
    indexes = {"public.orders": [IndexInfo(schema="public", table="orders", index_name="orders_pkey", columns=["id"])]}

    warnings = validate_filter_indexes({"public.orders": "created_at > now()"}, indexes)

    assert warnings == [
        "public.orders filter uses 'created_at' which has no index (may cause full table scan on source)"
    ]


def test_indexed_column_does_not_warn() -> None:
    indexes = {
        "public.orders": [
            IndexInfo(schema="public", table="orders", index_name="orders_created_idx", columns=["Created_At"])
        ]
    }

    assert validate_filter_indexes({"public.orders": "created_at > now()"}, indexes) == []


def test_table_without_indexes_warns_for_every_column() -> None:
    warnings = validate_filter_indexes({"public.events": "kind = 'x' AND ts > now()"}, {})
    assert len(warnings) == 2
