"""Golden copy lifecycle: create, sync from the source, inspect and drop.

The golden database is a local replica of a project's source database. It is
filled by streaming ``pg_dump`` straight into ``psql`` and records every
completed sync in an append-only ledger table inside itself.
"""

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from goldsync.database import admin, analyzer, ledger, pipeline
from goldsync.database.cancel import CancellationToken
from goldsync.database.connection import (
    build_worktree_url,
    create_database_engine,
    mask_connection_string,
    sanitize_identifier,
)
from goldsync.database.filters import validate_filter_indexes
from goldsync.database.ordering import sort_tables_by_dependency
from goldsync.errors import GoldsyncError, IntrospectionError, OperationCancelledError, SyncStepError, TransferError
from goldsync.models import GoldenDBSyncInfo, SourceConfig, SyncCheckResult, SyncMetadata, SyncResult

logger = logging.getLogger(__name__)

GOLDEN_DB_SUFFIX = "_golden"
DEFAULT_SYNC_COOLDOWN = timedelta(hours=24)

ProgressCallback = Callable[[str], None]


# ============================================================================
# Naming and existence
# ============================================================================


def golden_db_name(project: str) -> str:
    return sanitize_identifier(project + GOLDEN_DB_SUFFIX)


def golden_db_url(local_url: str, project: str) -> str:
    return build_worktree_url(local_url, golden_db_name(project))


def golden_db_exists(local_url: str, project: str) -> bool:
    return admin.database_exists(local_url, golden_db_name(project))


def create_golden_db(local_url: str, project: str) -> str:
    """Create the golden database unless it already exists.

    Returns:
        The golden database name
    """
    name = golden_db_name(project)
    if not admin.database_exists(local_url, name):
        admin.create_database(local_url, name)
    return name


def drop_golden_db(local_url: str, project: str) -> None:
    admin.drop_database(local_url, golden_db_name(project))


def golden_db_size(local_url: str, project: str) -> int:
    """Size of the golden database in bytes, 0 when it does not exist"""
    if not golden_db_exists(local_url, project):
        return 0
    return analyzer.get_database_size(golden_db_url(local_url, project))


# ============================================================================
# Formatting
# ============================================================================


def format_duration(duration: timedelta) -> str:
    """Coarse human-readable duration: 45s, 12m, 3h, 2d"""
    seconds = int(duration.total_seconds())
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


def format_ms(ms: int) -> str:
    """Step timing: 123ms below a second, 1.5s below a minute, m:ss above"""
    if ms < 1000:
        return f"{ms}ms"
    seconds = ms // 1000
    if seconds < 60:
        return f"{ms / 1000:.1f}s"
    return f"{seconds // 60}:{seconds % 60:02d}"


# ============================================================================
# Sync
# ============================================================================


def _report(progress: ProgressCallback | None, message: str) -> None:
    logger.info(message)
    if progress is not None:
        progress(message)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


@contextmanager
def _sync_step(step: str, project: str) -> Iterator[None]:
    try:
        yield
    except OperationCancelledError:
        raise
    except (GoldsyncError, SQLAlchemyError) as e:
        raise SyncStepError(step, project, e) from e


def _short_name(table: str) -> str:
    return table.rpartition(".")[2]


def _copy_filtered_tables(
    source_url: str,
    golden_url: str,
    filter_tables: dict[str, str],
    result: SyncResult,
    progress: ProgressCallback | None,
    cancel: CancellationToken | None,
) -> None:
    """Copy row-filtered tables in dependency order; a failing table is skipped with a warning"""
    table_list = sorted(filter_tables)

    step_start = time.monotonic()
    try:
        foreign_keys = analyzer.get_foreign_keys(source_url, table_list)
    except IntrospectionError as e:
        foreign_keys = []
        warning = f"could not get foreign key info, copying filtered tables unordered: {e}"
        logger.warning(warning)
        result.warnings.append(warning)
    result.step_timings["fk_analysis"] = _elapsed_ms(step_start)
    _report(progress, f"Analyzed FK dependencies ({format_ms(result.step_timings['fk_analysis'])})")

    step_start = time.monotonic()
    try:
        indexes = analyzer.get_table_indexes(source_url, table_list)
    except IntrospectionError as e:
        logger.debug(f"Skipping filter index validation: {e}")
        indexes = None
    if indexes is not None:
        for warning in validate_filter_indexes(filter_tables, indexes):
            logger.warning(warning)
            result.warnings.append(warning)
            if progress is not None:
                progress(f"Warning: {warning}")
    result.step_timings["index_check"] = _elapsed_ms(step_start)
    _report(progress, f"Validated filter indexes ({format_ms(result.step_timings['index_check'])})")

    ordered = sort_tables_by_dependency(table_list, foreign_keys)
    result.filtered_tables = ordered

    filter_start = time.monotonic()
    for position, table in enumerate(ordered, start=1):
        if cancel is not None:
            cancel.raise_if_cancelled("sync")

        table_start = time.monotonic()
        try:
            pipeline.copy_filtered_table(source_url, golden_url, table, filter_tables[table], cancel=cancel)
        except OperationCancelledError:
            raise
        except TransferError as e:
            warning = f"failed to copy {table}: {e}"
            logger.warning(warning)
            result.warnings.append(warning)
            result.skipped_tables.append(table)
            if progress is not None:
                progress(f"Warning: {warning}")

        duration = _elapsed_ms(table_start)
        result.step_timings[f"filter:{_short_name(table)}"] = duration
        _report(progress, f"Filtered {_short_name(table)} [{position}/{len(ordered)}] ({format_ms(duration)})")

    result.step_timings["filter_total"] = _elapsed_ms(filter_start)


def sync_to_golden_db(
    config: SourceConfig,
    local_url: str,
    project: str,
    progress: ProgressCallback | None = None,
    cancel: CancellationToken | None = None,
) -> SyncResult:
    """Refresh the golden database of a project from its source.

    Steps: create the golden database if needed, analyze the source, stream a
    full dump (data of excluded and filtered tables left out), copy filtered
    tables row by row in dependency order, then append a ledger row.

    Args:
        config: Source settings of the project
        local_url: Connection string of the local server
        project: Project name
        progress: Optional callback receiving human-readable progress lines
        cancel: Optional cancellation token

    Returns:
        SyncResult describing the completed sync

    Raises:
        SyncStepError: If a step fails; the ledger is left untouched
        OperationCancelledError: If cancelled; the ledger is left untouched
    """
    start = time.monotonic()
    source_url = config.source
    golden_url = golden_db_url(local_url, project)
    step_timings: dict[str, int] = {}

    def checkpoint() -> None:
        if cancel is not None:
            cancel.raise_if_cancelled("sync")

    checkpoint()
    step_start = time.monotonic()
    with _sync_step("create", project):
        name = create_golden_db(local_url, project)
    step_timings["create"] = _elapsed_ms(step_start)
    _report(progress, f"Created golden database ({format_ms(step_timings['create'])})")

    checkpoint()
    step_start = time.monotonic()
    with _sync_step("analyze", project):
        tables = analyzer.list_tables(source_url)
        excluded_tables = analyzer.determine_exclusions(tables, config)
    step_timings["analyze"] = _elapsed_ms(step_start)
    _report(progress, f"Analyzed source tables ({format_ms(step_timings['analyze'])})")

    checkpoint()
    step_start = time.monotonic()
    with _sync_step("analyze", project):
        row_counts = analyzer.get_accurate_row_counts(source_url)
    step_timings["row_counts"] = _elapsed_ms(step_start)
    _report(progress, f"Got row counts ({format_ms(step_timings['row_counts'])})")

    filter_tables = dict(config.filter_tables)
    data_excluded = sorted(set(excluded_tables) | set(filter_tables))
    dump_args = pipeline.dump_command(
        source_url, "--clean", "--if-exists", *(f"--exclude-table-data={table}" for table in data_excluded)
    )

    if excluded_tables or filter_tables:
        _report(progress, f"Syncing (excl {len(excluded_tables)}, filter {len(filter_tables)})...")
    else:
        _report(progress, "Syncing to golden DB...")

    checkpoint()
    step_start = time.monotonic()
    with _sync_step("transfer", project):
        pipeline.run_pipe(dump_args, pipeline.restore_command(golden_url), cancel=cancel, operation="sync")
    step_timings["transfer"] = _elapsed_ms(step_start)
    _report(progress, f"Synced to golden DB ({format_ms(step_timings['transfer'])})")

    result = SyncResult(
        golden_db_name=name,
        golden_db_url=golden_url,
        sync_duration_ms=0,
        table_count=len(tables),
        excluded_tables=excluded_tables,
        row_counts=row_counts,
        table_sizes={table.qualified_name: table.size_bytes for table in tables},
        step_timings=step_timings,
    )

    if filter_tables:
        _copy_filtered_tables(source_url, golden_url, filter_tables, result, progress, cancel)

    checkpoint()
    result.sync_duration_ms = _elapsed_ms(start)

    step_start = time.monotonic()
    entry = SyncMetadata(
        synced_at=datetime.now(timezone.utc),
        source_url=mask_connection_string(source_url),
        excluded_tables=excluded_tables,
        row_counts=row_counts,
        sync_duration_ms=result.sync_duration_ms,
        is_incremental=False,
    )
    engine = create_database_engine(golden_url)
    try:
        with _sync_step("metadata", project):
            ledger.append_ledger_entry(engine, entry)
    finally:
        engine.dispose()
    result.step_timings["metadata"] = _elapsed_ms(step_start)
    _report(progress, f"Updated sync metadata ({format_ms(result.step_timings['metadata'])})")

    breakdown = ", ".join(f"{step}:{format_ms(ms)}" for step, ms in result.step_timings.items())
    _report(progress, f"Sync completed in {format_ms(result.sync_duration_ms)} [{breakdown}]")
    return result


# ============================================================================
# Sync state
# ============================================================================


def _count_user_tables(conn: Connection) -> int:
    return int(
        conn.execute(
            text(
                "SELECT COUNT(*) FROM information_schema.tables "
                "WHERE table_schema NOT IN ('pg_catalog', 'information_schema') "
                "AND table_type = 'BASE TABLE' AND table_name <> :ledger"
            ),
            {"ledger": ledger.LEDGER_TABLE},
        ).scalar()
        or 0
    )


def get_sync_info(local_url: str, project: str) -> GoldenDBSyncInfo | None:
    """Summarize the golden database and its latest sync.

    Returns:
        None if the golden database does not exist, otherwise GoldenDBSyncInfo
        (last_sync_at is None when no sync was ever recorded)
    """
    if not golden_db_exists(local_url, project):
        return None

    info = GoldenDBSyncInfo(golden_db_name=golden_db_name(project), exists=True)
    engine = create_database_engine(golden_db_url(local_url, project), statement_timeout=analyzer.RELATION_TIMEOUT)
    try:
        latest = ledger.latest_ledger_entry(engine)
        with engine.connect() as conn:
            info.table_count = _count_user_tables(conn)
    except SQLAlchemyError as e:
        raise IntrospectionError(f"failed to read sync info of {info.golden_db_name}: {e}") from e
    finally:
        engine.dispose()

    if latest is not None:
        info.last_sync_at = latest.synced_at
        info.source_url = latest.source_url
        info.sync_duration_ms = latest.sync_duration_ms
        info.is_incremental = latest.is_incremental

    return info


def load_sync_metadata(local_url: str, project: str) -> SyncMetadata | None:
    """Latest ledger row of the golden database, None if absent"""
    return next(iter(get_sync_history(local_url, project, limit=1)), None)


def get_sync_history(local_url: str, project: str, limit: int = 10) -> list[SyncMetadata]:
    """Ledger rows of the golden database, newest first"""
    if not golden_db_exists(local_url, project):
        return []

    engine = create_database_engine(golden_db_url(local_url, project), statement_timeout=analyzer.RELATION_TIMEOUT)
    try:
        return ledger.ledger_history(engine, limit=limit)
    except SQLAlchemyError as e:
        raise IntrospectionError(f"failed to read sync ledger: {e}") from e
    finally:
        engine.dispose()


def evaluate_sync_need(
    info: GoldenDBSyncInfo | None,
    cooldown: timedelta = DEFAULT_SYNC_COOLDOWN,
    now: datetime | None = None,
) -> SyncCheckResult:
    """Decide whether a sync is due from the golden database's sync info.

    Args:
        info: Output of get_sync_info
        cooldown: Minimum time between syncs
        now: Reference time (defaults to the current UTC time)

    Returns:
        SyncCheckResult with a human-readable reason
    """
    if info is None or not info.exists:
        return SyncCheckResult(needs_sync=True, reason="initial sync")

    if info.last_sync_at is None:
        return SyncCheckResult(needs_sync=True, reason="no previous sync record")

    now = now or datetime.now(timezone.utc)
    since_sync = now - info.last_sync_at

    if since_sync < cooldown:
        return SyncCheckResult(
            needs_sync=False,
            reason=f"synced {format_duration(since_sync)} ago (cooldown: {format_duration(cooldown)})",
        )

    return SyncCheckResult(needs_sync=True, reason=f"last sync was {format_duration(since_sync)} ago")


def check_sync_needed(local_url: str, project: str, cooldown: timedelta = DEFAULT_SYNC_COOLDOWN) -> SyncCheckResult:
    """Read the golden database state and decide whether a sync is due"""
    return evaluate_sync_need(get_sync_info(local_url, project), cooldown)
