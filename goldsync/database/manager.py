"""Engine facade used by the CLI and the MCP server."""

import logging
import threading
from datetime import timedelta
from pathlib import Path

from goldsync.database import admin, analyzer, clone, golden, migrations
from goldsync.database.cancel import CancellationToken
from goldsync.database.connection import (
    build_worktree_url,
    generate_database_name,
    is_read_only,
    sanitize_identifier,
    validate_connection,
)
from goldsync.database.golden import DEFAULT_SYNC_COOLDOWN, ProgressCallback
from goldsync.errors import DatabaseNotFoundError, GoldenCopyMissingError, SyncInProgressError
from goldsync.models import (
    CloneResult,
    GoldenDBSyncInfo,
    MigrationBaseline,
    MigrationCompatibility,
    MigrationState,
    SchemaDiff,
    SourceConfig,
    SyncCheckResult,
    SyncMetadata,
    SyncResult,
    TableInfo,
)

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Golden copy and worktree database operations against one local server.

    At most one sync per project runs at a time; a second concurrent request
    fails immediately with SyncInProgressError.
    """

    def __init__(self, local_url: str):
        self.local_url = local_url
        self._lock = threading.Lock()
        self._syncing: set[str] = set()

    # ------------------------------------------------------------------
    # Golden copy
    # ------------------------------------------------------------------

    def is_syncing(self, project: str) -> bool:
        with self._lock:
            return project in self._syncing

    def sync_project(
        self,
        project: str,
        config: SourceConfig,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> SyncResult:
        """Sync the golden copy of a project from its source.

        Raises:
            SyncInProgressError: If a sync of the same project is already running
        """
        with self._lock:
            if project in self._syncing:
                raise SyncInProgressError(project)
            self._syncing.add(project)

        try:
            return golden.sync_to_golden_db(config, self.local_url, project, progress=progress, cancel=cancel)
        finally:
            with self._lock:
                self._syncing.discard(project)

    def check_sync_needed(self, project: str, cooldown: timedelta = DEFAULT_SYNC_COOLDOWN) -> SyncCheckResult:
        return golden.check_sync_needed(self.local_url, project, cooldown)

    def has_golden_copy(self, project: str) -> bool:
        return golden.golden_db_exists(self.local_url, project)

    def delete_golden_copy(self, project: str) -> None:
        golden.drop_golden_db(self.local_url, project)

    def golden_copy_size(self, project: str) -> int:
        return golden.golden_db_size(self.local_url, project)

    def sync_info(self, project: str) -> GoldenDBSyncInfo | None:
        return golden.get_sync_info(self.local_url, project)

    def sync_metadata(self, project: str) -> SyncMetadata | None:
        return golden.load_sync_metadata(self.local_url, project)

    def sync_history(self, project: str, limit: int = 10) -> list[SyncMetadata]:
        return golden.get_sync_history(self.local_url, project, limit=limit)

    # ------------------------------------------------------------------
    # Worktree databases
    # ------------------------------------------------------------------

    def generate_worktree_db_name(self, project: str, port: int, config: SourceConfig, worktree: str = "") -> str:
        return generate_database_name(project, port, config.db_name_pattern, worktree)

    def build_worktree_db_url(self, db_name: str) -> str:
        return build_worktree_url(self.local_url, sanitize_identifier(db_name))

    def clone_for_worktree(
        self,
        project: str,
        db_name: str,
        worktree_path: str | Path | None = None,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> CloneResult:
        return clone.clone_for_worktree(
            self.local_url, project, db_name, worktree_path, progress=progress, cancel=cancel
        )

    def reinit_worktree(
        self,
        project: str,
        db_name: str,
        worktree_path: str | Path | None = None,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> CloneResult:
        return clone.reinitialize_database(
            self.local_url, project, db_name, worktree_path, progress=progress, cancel=cancel
        )

    def migration_status(self, db_name: str, worktree_path: str | Path) -> MigrationState:
        """Compare a worktree database's applied migrations with the worktree's files.

        Raises:
            DatabaseNotFoundError: If the database does not exist
        """
        safe_name = sanitize_identifier(db_name)
        if not admin.database_exists(self.local_url, safe_name):
            raise DatabaseNotFoundError(safe_name)
        return migrations.detect_migration_state(self.build_worktree_db_url(safe_name), worktree_path)

    def drop_worktree_database(self, db_name: str) -> None:
        """Drop a worktree database.

        Raises:
            DatabaseNotFoundError: If the database does not exist
        """
        safe_name = sanitize_identifier(db_name)
        if not admin.database_exists(self.local_url, safe_name):
            raise DatabaseNotFoundError(safe_name)
        admin.drop_database(self.local_url, safe_name)

    def list_worktree_databases(self, db_names: list[str]) -> list[str]:
        """Those of the given worktree database names that exist on the local server"""
        return admin.existing_databases(self.local_url, sorted({sanitize_identifier(name) for name in db_names}))

    # ------------------------------------------------------------------
    # Source analysis and freshness
    # ------------------------------------------------------------------

    def analyze_source(self, config: SourceConfig) -> list[TableInfo]:
        return analyzer.list_tables(config.source)

    def suggest_table_exclusions(self, config: SourceConfig, threshold_mb: int | None = None) -> list[str]:
        tables = analyzer.list_tables(config.source)
        threshold = config.size_threshold_mb if threshold_mb is None else threshold_mb
        return analyzer.suggest_exclusions(tables, threshold)

    def schema_drift(self, project: str, config: SourceConfig) -> SchemaDiff:
        """Tables added, removed or changed on the source since the golden copy was taken.

        Raises:
            GoldenCopyMissingError: If the project has no golden copy
        """
        if not self.has_golden_copy(project):
            raise GoldenCopyMissingError(project)

        golden_snapshot = analyzer.get_schema_snapshot(golden.golden_db_url(self.local_url, project))
        source_snapshot = analyzer.get_schema_snapshot(config.source)
        return analyzer.diff_schemas(golden_snapshot, source_snapshot)

    def golden_freshness(
        self, project: str, worktree_path: str | Path | None
    ) -> tuple[MigrationBaseline | None, MigrationBaseline | None, MigrationCompatibility]:
        """Compare the golden copy's migration baseline with the worktree's migration files.

        Returns:
            (golden baseline, worktree baseline, compatibility); a baseline is None
            when there is no golden copy or the worktree does not use Prisma
        """
        golden_baseline = None
        if self.has_golden_copy(project):
            golden_baseline = migrations.get_migration_baseline_from_db(golden.golden_db_url(self.local_url, project))

        current_baseline = None
        if worktree_path is not None and migrations.has_prisma_migrations(worktree_path):
            current_baseline = migrations.baseline_from_worktree(worktree_path)

        compatibility = migrations.compare_migration_baselines(golden_baseline, current_baseline)
        return golden_baseline, current_baseline, compatibility

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def validate_local_connection(self) -> None:
        validate_connection(self.local_url)

    def validate_source_connection(self, config: SourceConfig) -> None:
        validate_connection(config.source)

    def is_source_read_only(self, config: SourceConfig) -> bool:
        return is_read_only(config.source)
