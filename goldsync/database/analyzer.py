"""Source database analysis: table sizes, exclusions, relationships and schema snapshots."""

import logging

from sqlalchemy import bindparam, text
from sqlalchemy.dialects.postgresql import ARRAY, TEXT
from sqlalchemy.exc import DatabaseError, OperationalError, SQLAlchemyError

from goldsync.database.connection import create_database_engine, quote_identifier
from goldsync.errors import IntrospectionError
from goldsync.models import (
    ColumnSchema,
    ForeignKeyInfo,
    IndexInfo,
    SchemaDiff,
    SourceConfig,
    TableInfo,
    TableSchema,
)

logger = logging.getLogger(__name__)

# Statement timeouts (seconds) for catalog queries against a possibly remote source
LIST_TIMEOUT = 60
COUNT_TIMEOUT = 120
RELATION_TIMEOUT = 30

AUDIT_ROW_THRESHOLD = 1_000_000
AUDIT_AVG_ROW_BYTES = 500
SUGGEST_AUDIT_MIN_ROWS = 100_000

AUDIT_NAME_PATTERNS = (
    "log",
    "logs",
    "audit",
    "audits",
    "event",
    "events",
    "history",
    "histories",
    "activity",
    "activities",
    "tracking",
    "archive",
    "backup",
    "queue",
    "job",
    "jobs",
    "notification",
    "notifications",
    "email",
    "emails",
    "message",
    "messages",
    "session",
    "sessions",
)

_USER_TABLES_FILTER = "table_schema NOT IN ('pg_catalog', 'information_schema') AND table_type = 'BASE TABLE'"

_TABLE_INFO_QUERY = text("""
    SELECT
        t.table_schema,
        t.table_name,
        COALESCE(pg_total_relation_size(quote_ident(t.table_schema) || '.' || quote_ident(t.table_name)), 0)
            AS size_bytes,
        COALESCE(s.n_live_tup, 0) AS row_count,
        EXISTS(
            SELECT 1 FROM pg_indexes i WHERE i.schemaname = t.table_schema AND i.tablename = t.table_name
        ) AS has_indexes
    FROM information_schema.tables t
    LEFT JOIN pg_stat_user_tables s ON s.schemaname = t.table_schema AND s.relname = t.table_name
    WHERE t.table_schema NOT IN ('pg_catalog', 'information_schema')
      AND t.table_type = 'BASE TABLE'
    ORDER BY size_bytes DESC
""")


def is_likely_audit_table(name: str, row_count: int, size_bytes: int) -> bool:
    """Heuristic: does a table look like an audit/log table?

    Args:
        name: Unqualified table name
        row_count: Approximate row count
        size_bytes: Total relation size

    Returns:
        True if the name matches the audit vocabulary, or the table has many small rows
    """
    name_lower = name.lower()
    if any(pattern in name_lower for pattern in AUDIT_NAME_PATTERNS):
        return True

    # Many rows with a small average row size usually means append-only logging
    if row_count > AUDIT_ROW_THRESHOLD and size_bytes > 0:
        return size_bytes // row_count < AUDIT_AVG_ROW_BYTES

    return False


def list_tables(connection_string: str) -> list[TableInfo]:
    """List user tables with size and row statistics, largest first.

    Tables without a statistics row are reported with zero rows.

    Args:
        connection_string: Source database connection string

    Returns:
        List of TableInfo ordered by size descending

    Raises:
        IntrospectionError: If the catalog cannot be queried
    """
    engine = create_database_engine(connection_string, statement_timeout=LIST_TIMEOUT)

    try:
        with engine.connect() as conn:
            rows = conn.execute(_TABLE_INFO_QUERY).fetchall()
    except SQLAlchemyError as e:
        raise IntrospectionError(f"failed to list tables: {e}") from e
    finally:
        engine.dispose()

    tables = []
    for schema, name, size_bytes, row_count, has_indexes in rows:
        size_bytes = int(size_bytes or 0)
        row_count = max(int(row_count or 0), 0)
        tables.append(
            TableInfo(
                schema=schema,
                name=name,
                size_bytes=size_bytes,
                row_count=row_count,
                has_indexes=bool(has_indexes),
                is_audit=is_likely_audit_table(name, row_count, size_bytes),
            )
        )

    return tables


def suggest_exclusions(tables: list[TableInfo], threshold_mb: int) -> list[str]:
    """Suggest tables whose data should be excluded from sync.

    A table is suggested when it exceeds the size threshold (if > 0), or when it
    looks like an audit table with more than 100,000 rows.

    Args:
        tables: Output of list_tables
        threshold_mb: Size threshold in MB (0 disables the size rule)

    Returns:
        Qualified table names, each at most once, in input order
    """
    threshold_bytes = threshold_mb * 1024 * 1024
    suggestions: list[str] = []

    for table in tables:
        oversized = threshold_mb > 0 and table.size_bytes > threshold_bytes
        noisy_audit = table.is_audit and table.row_count > SUGGEST_AUDIT_MIN_ROWS
        if (oversized or noisy_audit) and table.qualified_name not in suggestions:
            suggestions.append(table.qualified_name)

    return suggestions


def determine_exclusions(tables: list[TableInfo], config: SourceConfig) -> list[str]:
    """Tables synced as schema only: explicit excludes plus tables over the size threshold.

    Returns:
        Sorted qualified table names
    """
    excluded = set(config.exclude_tables)

    if config.size_threshold_mb > 0:
        threshold_bytes = config.size_threshold_mb * 1024 * 1024
        excluded.update(t.qualified_name for t in tables if t.size_bytes > threshold_bytes)

    return sorted(excluded)


def get_accurate_row_counts(connection_string: str) -> dict[str, int]:
    """Count rows of every user table with COUNT(*).

    Slower than the statistics estimate but exact. Tables that cannot be
    counted (permissions and the like) are left out.

    Returns:
        Mapping of qualified table name to row count
    """
    engine = create_database_engine(connection_string, statement_timeout=COUNT_TIMEOUT)

    try:
        with engine.connect() as conn:
            tables = conn.execute(
                text(f"SELECT table_schema, table_name FROM information_schema.tables WHERE {_USER_TABLES_FILTER}")
            ).fetchall()

            counts: dict[str, int] = {}
            for schema, name in tables:
                query = text(f"SELECT COUNT(*) FROM {quote_identifier(schema)}.{quote_identifier(name)}")
                try:
                    counts[f"{schema}.{name}"] = int(conn.execute(query).scalar() or 0)
                except (DatabaseError, OperationalError) as e:
                    logger.debug(f"Could not count rows for '{schema}.{name}': {e}")
                    conn.rollback()
            return counts
    except SQLAlchemyError as e:
        raise IntrospectionError(f"failed to count rows: {e}") from e
    finally:
        engine.dispose()


def get_foreign_keys(connection_string: str, tables: list[str]) -> list[ForeignKeyInfo]:
    """Return foreign keys declared on the given tables.

    Args:
        connection_string: Source database connection string
        tables: Qualified names of the tables holding the constraints

    Returns:
        List of ForeignKeyInfo, one per constrained column
    """
    if not tables:
        return []

    query = text("""
        SELECT
            tc.table_schema,
            tc.table_name,
            kcu.column_name,
            ccu.table_schema AS referenced_schema,
            ccu.table_name AS referenced_table,
            ccu.column_name AS referenced_column,
            tc.constraint_name
        FROM information_schema.table_constraints tc
        JOIN information_schema.key_column_usage kcu
            ON tc.constraint_name = kcu.constraint_name
            AND tc.table_schema = kcu.table_schema
        JOIN information_schema.constraint_column_usage ccu
            ON tc.constraint_name = ccu.constraint_name
        WHERE tc.constraint_type = 'FOREIGN KEY'
          AND tc.table_schema || '.' || tc.table_name = ANY(:tables)
    """).bindparams(bindparam("tables", type_=ARRAY(TEXT)))

    engine = create_database_engine(connection_string, statement_timeout=RELATION_TIMEOUT)
    try:
        with engine.connect() as conn:
            rows = conn.execute(query, {"tables": list(tables)}).fetchall()
    except SQLAlchemyError as e:
        raise IntrospectionError(f"failed to query foreign keys: {e}") from e
    finally:
        engine.dispose()

    return [
        ForeignKeyInfo(
            table_schema=row[0],
            table_name=row[1],
            column_name=row[2],
            referenced_schema=row[3],
            referenced_table=row[4],
            referenced_column=row[5],
            constraint_name=row[6],
        )
        for row in rows
    ]


def parse_index_columns(index_def: str) -> list[str]:
    """Extract column names from an index definition.

    Example:
        "CREATE INDEX idx ON public.t USING btree (col1, col2 DESC)" -> ["col1", "col2"]
    """
    open_idx = index_def.rfind("(")
    close_idx = index_def.rfind(")")
    if open_idx == -1 or close_idx == -1 or close_idx <= open_idx:
        return []

    columns = []
    for part in index_def[open_idx + 1 : close_idx].split(","):
        column = part.strip().split(" ", 1)[0].strip('"')
        if column:
            columns.append(column)
    return columns


def get_table_indexes(connection_string: str, tables: list[str]) -> dict[str, list[IndexInfo]]:
    """Return index definitions for the given tables.

    Args:
        connection_string: Source database connection string
        tables: Qualified table names

    Returns:
        Mapping of qualified table name to its indexes
    """
    if not tables:
        return {}

    query = text("""
        SELECT schemaname, tablename, indexname, indexdef
        FROM pg_indexes
        WHERE schemaname || '.' || tablename = ANY(:tables)
    """).bindparams(bindparam("tables", type_=ARRAY(TEXT)))

    engine = create_database_engine(connection_string, statement_timeout=RELATION_TIMEOUT)
    try:
        with engine.connect() as conn:
            rows = conn.execute(query, {"tables": list(tables)}).fetchall()
    except SQLAlchemyError as e:
        raise IntrospectionError(f"failed to query indexes: {e}") from e
    finally:
        engine.dispose()

    result: dict[str, list[IndexInfo]] = {}
    for schema, table, index_name, index_def in rows:
        result.setdefault(f"{schema}.{table}", []).append(
            IndexInfo(
                schema=schema,
                table=table,
                index_name=index_name,
                columns=parse_index_columns(index_def),
                is_unique="UNIQUE" in index_def,
                is_primary=index_name.endswith("_pkey"),
            )
        )
    return result


def get_schema_snapshot(connection_string: str) -> dict[str, TableSchema]:
    """Capture the column layout of every user table.

    Returns:
        Mapping of qualified table name to TableSchema, columns in ordinal order
    """
    query = text("""
        SELECT
            c.table_schema,
            c.table_name,
            c.column_name,
            c.data_type,
            c.is_nullable = 'YES' AS is_nullable,
            COALESCE(c.column_default, '') AS column_default
        FROM information_schema.columns c
        JOIN information_schema.tables t
            ON c.table_schema = t.table_schema AND c.table_name = t.table_name
        WHERE c.table_schema NOT IN ('pg_catalog', 'information_schema')
          AND t.table_type = 'BASE TABLE'
        ORDER BY c.table_schema, c.table_name, c.ordinal_position
    """)

    engine = create_database_engine(connection_string, statement_timeout=LIST_TIMEOUT)
    try:
        with engine.connect() as conn:
            rows = conn.execute(query).fetchall()
    except SQLAlchemyError as e:
        raise IntrospectionError(f"failed to capture schema snapshot: {e}") from e
    finally:
        engine.dispose()

    snapshot: dict[str, TableSchema] = {}
    for schema, table, column, data_type, is_nullable, default in rows:
        table_schema = snapshot.setdefault(f"{schema}.{table}", TableSchema(name=table, schema=schema))
        table_schema.columns.append(
            ColumnSchema(name=column, data_type=data_type, is_nullable=bool(is_nullable), default_value=default)
        )
    return snapshot


def _columns_equal(old: list[ColumnSchema], new: list[ColumnSchema]) -> bool:
    if len(old) != len(new):
        return False

    old_by_name = {col.name: col for col in old}
    for col in new:
        previous = old_by_name.get(col.name)
        if previous is None:
            return False
        if previous.data_type != col.data_type or previous.is_nullable != col.is_nullable:
            return False
    return True


def diff_schemas(old: dict[str, TableSchema], new: dict[str, TableSchema]) -> SchemaDiff:
    """Compare two schema snapshots.

    Only column names, types and nullability count as modifications.

    Returns:
        SchemaDiff with sorted table lists
    """
    return SchemaDiff(
        added_tables=sorted(name for name in new if name not in old),
        removed_tables=sorted(name for name in old if name not in new),
        modified_tables=sorted(
            name for name, table in new.items() if name in old and not _columns_equal(old[name].columns, table.columns)
        ),
    )


def get_database_size(connection_string: str) -> int:
    """Total size in bytes of the database a connection string points at"""
    engine = create_database_engine(connection_string, statement_timeout=RELATION_TIMEOUT)
    try:
        with engine.connect() as conn:
            return int(conn.execute(text("SELECT pg_database_size(current_database())")).scalar() or 0)
    except SQLAlchemyError as e:
        raise IntrospectionError(f"failed to get database size: {e}") from e
    finally:
        engine.dispose()


def format_size(size_bytes: int) -> str:
    """Format a byte count as B, KB, MB or GB with at most one decimal"""
    for unit, factor in (("GB", 1024**3), ("MB", 1024**2), ("KB", 1024)):
        if size_bytes >= factor:
            return _format_number(size_bytes / factor) + " " + unit
    return _format_number(float(size_bytes)) + " B"


def _format_number(value: float) -> str:
    if value == int(value):
        return str(int(value))
    return f"{value:.1f}".removesuffix(".0")
