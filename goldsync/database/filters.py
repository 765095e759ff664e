"""Checks that row-filter predicates can use an index on the source."""

import re

from goldsync.models import IndexInfo

# Heuristic column extraction, not a SQL parser
_COMPARISON = re.compile(r"(\w+)\s*[><=!]+")
_KEYWORD_OPERATOR = re.compile(r"(\w+)\s+(?:IN|BETWEEN|IS|LIKE|NOT)\b", re.IGNORECASE)

WHERE_KEYWORDS = frozenset(
    {
        "and",
        "or",
        "not",
        "null",
        "true",
        "false",
        "is",
        "in",
        "between",
        "like",
        "select",
        "from",
        "where",
        "now",
        "current_date",
        "current_timestamp",
        "interval",
        "case",
        "when",
        "then",
        "else",
        "end",
    }
)


def extract_columns_from_where(where_clause: str) -> list[str]:
    """Guess the column names a WHERE predicate filters on.

    Example:
        "created_at > now() - interval '30 days' AND status IN ('a')" -> ["created_at", "status"]

    Returns:
        Column names in order of first appearance, without SQL keywords or numbers
    """
    columns: list[str] = []
    seen: set[str] = set()

    for pattern in (_COMPARISON, _KEYWORD_OPERATOR):
        for match in pattern.finditer(where_clause):
            column = match.group(1)
            key = column.lower()
            if key in WHERE_KEYWORDS or key.isdigit() or key in seen:
                continue
            seen.add(key)
            columns.append(column)

    return columns


def validate_filter_indexes(filter_tables: dict[str, str], indexes: dict[str, list[IndexInfo]]) -> list[str]:
    """Warn about filter columns that have no index on the source table.

    Args:
        filter_tables: Qualified table name -> WHERE predicate
        indexes: Qualified table name -> indexes of that table

    Returns:
        One warning per unindexed filter column
    """
    warnings = []

    for table in sorted(filter_tables):
        filter_columns = extract_columns_from_where(filter_tables[table])
        if not filter_columns:
            continue

        indexed = {column.lower() for index in indexes.get(table, []) for column in index.columns}
        for column in filter_columns:
            if column.lower() not in indexed:
                warnings.append(
                    f"{table} filter uses '{column}' which has no index (may cause full table scan on source)"
                )

    return warnings
