"""Pydantic models shared by the engine, the CLI and the MCP server"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

DEFAULT_DB_NAME_PATTERN = "{project}-{port}"

# ============================================================================
# Configuration
# ============================================================================


class SourceConfig(BaseModel):
    """Source database settings for one project"""

    source: str = Field(description="Source database connection string")
    exclude_tables: list[str] = Field(
        default_factory=list, description="Qualified table names synced as schema only"
    )
    filter_tables: dict[str, str] = Field(
        default_factory=dict, description="Qualified table name -> SQL predicate selecting rows to copy"
    )
    size_threshold_mb: int = Field(default=0, ge=0, description="Exclude data of tables larger than this (0 = off)")
    db_name_pattern: str = Field(
        default=DEFAULT_DB_NAME_PATTERN, description="Pattern for workspace database names"
    )


class ConnectionInfo(BaseModel):
    """Parsed components of a PostgreSQL connection string"""

    host: str = ""
    port: int = 5432
    user: str = ""
    password: str = ""
    database: str = ""
    ssl_mode: str = ""


# ============================================================================
# Introspection
# ============================================================================


class TableInfo(BaseModel):
    """Size and row statistics for one table"""

    schema_name: str = Field(alias="schema")
    name: str
    size_bytes: int = 0
    row_count: int = 0
    has_indexes: bool = False
    is_audit: bool = Field(default=False, description="Heuristic: likely an audit/log table")

    model_config = {"populate_by_name": True}

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"


class ForeignKeyInfo(BaseModel):
    """A foreign key edge from a child column to a parent column"""

    table_schema: str
    table_name: str
    column_name: str
    referenced_schema: str
    referenced_table: str
    referenced_column: str
    constraint_name: str

    @property
    def child(self) -> str:
        return f"{self.table_schema}.{self.table_name}"

    @property
    def parent(self) -> str:
        return f"{self.referenced_schema}.{self.referenced_table}"


class IndexInfo(BaseModel):
    """An index on a table"""

    schema_name: str = Field(alias="schema")
    table: str
    index_name: str
    columns: list[str] = Field(default_factory=list)
    is_unique: bool = False
    is_primary: bool = False

    model_config = {"populate_by_name": True}


class ColumnSchema(BaseModel):
    """A column as captured in a schema snapshot"""

    name: str
    data_type: str
    is_nullable: bool
    default_value: str = ""


class TableSchema(BaseModel):
    """A table as captured in a schema snapshot"""

    name: str
    schema_name: str = Field(alias="schema")
    columns: list[ColumnSchema] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class SchemaDiff(BaseModel):
    """Differences between two schema snapshots"""

    added_tables: list[str] = Field(default_factory=list)
    removed_tables: list[str] = Field(default_factory=list)
    modified_tables: list[str] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added_tables or self.removed_tables or self.modified_tables)


# ============================================================================
# Golden copy
# ============================================================================


class SyncMetadata(BaseModel):
    """One row of the sync ledger stored inside the golden database"""

    id: int | None = None
    synced_at: datetime
    source_url: str = Field(description="Masked source connection string")
    excluded_tables: list[str] = Field(default_factory=list)
    row_counts: dict[str, int] = Field(default_factory=dict)
    sync_duration_ms: int = 0
    is_incremental: bool = False


class GoldenDBSyncInfo(BaseModel):
    """Existence and latest-sync summary of a golden database"""

    golden_db_name: str
    exists: bool
    last_sync_at: datetime | None = None
    source_url: str | None = None
    sync_duration_ms: int | None = None
    is_incremental: bool = False
    table_count: int = 0


class SyncResult(BaseModel):
    """Outcome of a completed golden copy sync"""

    golden_db_name: str
    golden_db_url: str
    sync_duration_ms: int
    table_count: int
    excluded_tables: list[str] = Field(default_factory=list)
    filtered_tables: list[str] = Field(default_factory=list, description="Row-filtered tables in copy order")
    skipped_tables: list[str] = Field(default_factory=list, description="Filtered tables that failed to copy")
    row_counts: dict[str, int] = Field(default_factory=dict)
    table_sizes: dict[str, int] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    is_incremental: bool = False
    step_timings: dict[str, int] = Field(default_factory=dict, description="Step name -> duration in ms")


class SyncCheckResult(BaseModel):
    """Whether a new sync should run, and why"""

    needs_sync: bool
    reason: str


# ============================================================================
# Migrations
# ============================================================================


class MigrationCompatibility(str, Enum):
    """Relationship between a database's migrations and a worktree's migrations"""

    FORWARD = "forward"
    DIVERGED = "diverged"
    BEHIND = "behind"
    SYNCED = "synced"
    UNKNOWN = "unknown"


class AppliedMigration(BaseModel):
    """A row of the _prisma_migrations table"""

    id: str
    migration_name: str
    checksum: str
    applied_at: datetime | None = None
    applied_steps_count: int = 0
    rolled_back_at: datetime | None = None


class MigrationBaseline(BaseModel):
    """Captured shape of a migration ledger"""

    migration_names: list[str] = Field(default_factory=list)
    last_migration_name: str = ""
    last_migration_checksum: str = ""
    total_migrations: int = 0
    captured_at: datetime


class MigrationState(BaseModel):
    """Comparison between applied and on-disk migrations"""

    compatibility: MigrationCompatibility
    applied_migrations: list[AppliedMigration] = Field(default_factory=list)
    worktree_migrations: list[str] = Field(default_factory=list)
    pending_migrations: list[str] = Field(default_factory=list, description="On disk but not applied")
    extra_migrations: list[str] = Field(default_factory=list, description="Applied but not on disk")
    divergent_migrations: list[str] = Field(default_factory=list, description="Checksum mismatch")
    recommended_action: str = ""


class CloneResult(BaseModel):
    """Outcome of cloning or re-initializing a workspace database"""

    database_name: str
    database_url: str
    migration_state: MigrationState | None = None
    recommended_action: str = ""
