"""Cloning the golden copy into per-worktree databases."""

import logging
from pathlib import Path

from goldsync.database import admin, golden, migrations, pipeline
from goldsync.database.cancel import CancellationToken
from goldsync.database.connection import build_worktree_url, sanitize_identifier
from goldsync.database.golden import ProgressCallback
from goldsync.database.ledger import LEDGER_TABLE
from goldsync.errors import DatabaseExistsError, GoldenCopyMissingError, GoldsyncError, MigrationCheckError
from goldsync.models import CloneResult

logger = logging.getLogger(__name__)


def _report(progress: ProgressCallback | None, message: str) -> None:
    logger.info(message)
    if progress is not None:
        progress(message)


def _require_golden(local_url: str, project: str) -> None:
    if not golden.golden_db_exists(local_url, project):
        raise GoldenCopyMissingError(project)


def clone_from_golden(
    local_url: str,
    project: str,
    db_name: str,
    progress: ProgressCallback | None = None,
    cancel: CancellationToken | None = None,
) -> str:
    """Create a database and fill it with a dump of the golden copy.

    The sync ledger is left out of the clone. If the transfer fails or is
    cancelled or interrupted, the half-created database is dropped before the error propagates.

    Args:
        local_url: Connection string of the local server
        project: Project name
        db_name: Target database name (sanitized)
        progress: Optional progress callback
        cancel: Optional cancellation token

    Returns:
        Connection string of the new database

    Raises:
        GoldenCopyMissingError: If the project has no golden copy
        DatabaseExistsError: If the target database already exists
        TransferError: If pg_dump or psql fail
        OperationCancelledError: If cancelled
    """
    _require_golden(local_url, project)

    safe_name = sanitize_identifier(db_name)
    if admin.database_exists(local_url, safe_name):
        raise DatabaseExistsError(safe_name)

    _report(progress, "Creating worktree database...")
    admin.create_database(local_url, safe_name)

    target_url = build_worktree_url(local_url, safe_name)
    dump_args = pipeline.dump_command(golden.golden_db_url(local_url, project), f"--exclude-table={LEDGER_TABLE}")

    _report(progress, "Cloning from golden DB...")
    try:
        pipeline.run_pipe(dump_args, pipeline.restore_command(target_url), cancel=cancel, operation="clone")
    except (GoldsyncError, KeyboardInterrupt):
        logger.warning(f"Clone into {safe_name} failed, dropping the partial database")
        admin.drop_database(local_url, safe_name)
        raise

    _report(progress, "Clone completed")
    return target_url


def _attach_migration_state(result: CloneResult, worktree_path: str | Path | None) -> CloneResult:
    if worktree_path is None or not migrations.has_prisma_migrations(worktree_path):
        return result

    try:
        state = migrations.detect_migration_state(result.database_url, worktree_path)
    except MigrationCheckError as e:
        logger.warning(f"Could not check migrations of {result.database_name}: {e}")
        return result

    result.migration_state = state
    result.recommended_action = state.recommended_action
    return result


def clone_for_worktree(
    local_url: str,
    project: str,
    db_name: str,
    worktree_path: str | Path | None = None,
    progress: ProgressCallback | None = None,
    cancel: CancellationToken | None = None,
) -> CloneResult:
    """Clone the golden copy and report the migration state of the clone"""
    database_url = clone_from_golden(local_url, project, db_name, progress=progress, cancel=cancel)
    result = CloneResult(database_name=sanitize_identifier(db_name), database_url=database_url)
    return _attach_migration_state(result, worktree_path)


def reinitialize_database(
    local_url: str,
    project: str,
    db_name: str,
    worktree_path: str | Path | None = None,
    progress: ProgressCallback | None = None,
    cancel: CancellationToken | None = None,
) -> CloneResult:
    """Drop a worktree database if present and clone it again from the golden copy.

    Raises:
        GoldenCopyMissingError: If the project has no golden copy; nothing is dropped
    """
    _require_golden(local_url, project)

    safe_name = sanitize_identifier(db_name)
    if admin.database_exists(local_url, safe_name):
        _report(progress, "Dropping existing database...")
        admin.drop_database(local_url, safe_name)

    return clone_for_worktree(local_url, project, safe_name, worktree_path, progress=progress, cancel=cancel)
