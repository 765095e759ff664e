"""Golden copy sync, worktree cloning and migration checks.

This package provides the engine behind the goldsync CLI and MCP server.
"""

from goldsync.database.cancel import CancellationToken
from goldsync.database.clone import clone_for_worktree, clone_from_golden, reinitialize_database
from goldsync.database.connection import (
    build_connection_string,
    build_worktree_url,
    generate_database_name,
    mask_connection_string,
    parse_connection_string,
    sanitize_identifier,
)
from goldsync.database.golden import (
    check_sync_needed,
    evaluate_sync_need,
    golden_db_name,
    golden_db_url,
    sync_to_golden_db,
)
from goldsync.database.manager import DatabaseManager
from goldsync.database.migrations import (
    classify_migrations,
    compare_migration_baselines,
    detect_migration_state,
    has_prisma_migrations,
)
from goldsync.database.ordering import sort_tables_by_dependency

__all__ = [
    # Connection identity
    "parse_connection_string",
    "build_connection_string",
    "mask_connection_string",
    "sanitize_identifier",
    "generate_database_name",
    "build_worktree_url",
    # Ordering
    "sort_tables_by_dependency",
    # Golden copy
    "golden_db_name",
    "golden_db_url",
    "sync_to_golden_db",
    "evaluate_sync_need",
    "check_sync_needed",
    # Cloning
    "clone_from_golden",
    "clone_for_worktree",
    "reinitialize_database",
    # Migrations
    "has_prisma_migrations",
    "detect_migration_state",
    "classify_migrations",
    "compare_migration_baselines",
    # Facade
    "CancellationToken",
    "DatabaseManager",
]
