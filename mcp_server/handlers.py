"""Read-only golden copy and migration handlers"""

import json
import logging
from pathlib import Path
from typing import Any

from cli.config import load_config
from goldsync.database import analyzer, golden, migrations
from goldsync.database.connection import mask_connection_string
from goldsync.errors import GoldsyncError

logger = logging.getLogger(__name__)


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


def _error(message: str) -> str:
    return _dump({"error": message})


class GoldsyncHandler:
    """Handles all tool calls; never writes to a database"""

    def analyze_source_tables(self, connection_string: str, threshold_mb: int = 100, limit: int = 50) -> str:
        """List source tables by size and suggest exclusions

        Args:
            connection_string: Source database connection string
            threshold_mb: Size threshold for exclusion suggestions (0 disables the size rule)
            limit: Maximum number of tables in the result

        Returns:
            JSON with tables, total size and suggested exclusions
        """
        try:
            tables = analyzer.list_tables(connection_string)
        except GoldsyncError as e:
            return _error(f"Failed to analyze {mask_connection_string(connection_string)}: {e}")

        return _dump(
            {
                "source": mask_connection_string(connection_string),
                "table_count": len(tables),
                "total_size": analyzer.format_size(sum(table.size_bytes for table in tables)),
                "tables": [
                    {**table.model_dump(mode="json", by_alias=True), "size": analyzer.format_size(table.size_bytes)}
                    for table in tables[:limit]
                ],
                "suggested_exclusions": analyzer.suggest_exclusions(tables, threshold_mb),
            }
        )

    def golden_copy_status(self, project: str, local_url: str | None = None) -> str:
        """Report a project's golden copy and whether a sync is due

        Args:
            project: Project name
            local_url: Local server URL (default: from the goldsync config)

        Returns:
            JSON with sync info and sync check
        """
        try:
            config = load_config()
            local_url = local_url or config.local_url
            info = golden.get_sync_info(local_url, project)
            check = golden.evaluate_sync_need(info)
        except (GoldsyncError, ValueError) as e:
            return _error(f"Failed to read golden copy status: {e}")

        return _dump(
            {
                "project": project,
                "golden_db_name": golden.golden_db_name(project),
                "golden": info.model_dump(mode="json") if info else None,
                "sync": check.model_dump(mode="json"),
            }
        )

    def migration_status(self, database_url: str, worktree_path: str) -> str:
        """Compare a database's applied Prisma migrations with a worktree's migration files

        Returns:
            JSON of the migration state
        """
        if not Path(worktree_path).is_absolute():
            return _dump({"error": "worktree_path must be an absolute path", "provided_path": worktree_path})

        if not migrations.has_prisma_migrations(worktree_path):
            return _error(f"{worktree_path} does not use Prisma migrations")

        try:
            state = migrations.detect_migration_state(database_url, worktree_path)
        except GoldsyncError as e:
            return _error(f"Failed to check migrations: {e}")

        return _dump(state.model_dump(mode="json"))

    def compare_schema(self, source_url: str, target_url: str) -> str:
        """Diff the table layout of two databases, e.g. a source and its golden copy

        Returns:
            JSON with added, removed and modified tables (target relative to source)
        """
        try:
            target_snapshot = analyzer.get_schema_snapshot(target_url)
            source_snapshot = analyzer.get_schema_snapshot(source_url)
            diff = analyzer.diff_schemas(target_snapshot, source_snapshot)
        except GoldsyncError as e:
            return _error(f"Failed to compare schemas: {e}")

        return _dump({**diff.model_dump(mode="json"), "has_changes": diff.has_changes})

    def compare_migration_baselines(self, golden_database_url: str, worktree_path: str) -> str:
        """Compare the migrations recorded in a golden copy with those in a worktree checkout

        Returns:
            JSON with both baselines and the compatibility
        """
        try:
            golden_baseline = migrations.get_migration_baseline_from_db(golden_database_url)
            current_baseline = None
            if migrations.has_prisma_migrations(worktree_path):
                current_baseline = migrations.baseline_from_worktree(worktree_path)
        except GoldsyncError as e:
            return _error(f"Failed to read migration baselines: {e}")

        compatibility = migrations.compare_migration_baselines(golden_baseline, current_baseline)
        return _dump(
            {
                "compatibility": compatibility.value,
                "golden": golden_baseline.model_dump(mode="json"),
                "worktree": current_baseline.model_dump(mode="json") if current_baseline else None,
            }
        )
