"""Migration compatibility between a database and a worktree checkout.

Follows the Prisma layout: ``prisma/schema.prisma`` marks a Prisma project,
each ``prisma/migrations/<name>/migration.sql`` is one migration, and the
database records applied migrations in ``_prisma_migrations`` with the
SHA-256 checksum of each script.
"""

import hashlib
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from goldsync.database.connection import create_database_engine, mask_connection_string
from goldsync.errors import MigrationCheckError
from goldsync.models import AppliedMigration, MigrationBaseline, MigrationCompatibility, MigrationState

logger = logging.getLogger(__name__)

PRISMA_DIR = "prisma"
SCHEMA_FILE = "schema.prisma"
MIGRATIONS_DIR = "migrations"
MIGRATION_SCRIPT = "migration.sql"
MIGRATION_LOCK_FILE = "migration_lock.toml"
MIGRATIONS_TABLE = "_prisma_migrations"
QUERY_TIMEOUT = 30

REINIT_COMMAND = "goldsync database reinit"


def _migrations_dir(worktree_path: str | Path) -> Path:
    return Path(worktree_path) / PRISMA_DIR / MIGRATIONS_DIR


def has_prisma_migrations(worktree_path: str | Path) -> bool:
    """True if the worktree contains prisma/schema.prisma"""
    return (Path(worktree_path) / PRISMA_DIR / SCHEMA_FILE).is_file()


def get_applied_migrations(db_url: str) -> list[AppliedMigration]:
    """Read applied, not rolled back, migrations from a database.

    Args:
        db_url: Connection string of the database

    Returns:
        Migrations ordered by start time; empty if the ledger table is absent

    Raises:
        MigrationCheckError: If the database cannot be queried
    """
    engine = create_database_engine(db_url, statement_timeout=QUERY_TIMEOUT)
    try:
        if not inspect(engine).has_table(MIGRATIONS_TABLE, schema="public"):
            return []

        with engine.connect() as conn:
            rows = conn.execute(
                text(f"""
                    SELECT id, migration_name, checksum, started_at, applied_steps_count, rolled_back_at
                    FROM {MIGRATIONS_TABLE}
                    WHERE rolled_back_at IS NULL
                    ORDER BY started_at ASC
                """)
            ).fetchall()
    except SQLAlchemyError as e:
        raise MigrationCheckError(
            f"failed to read applied migrations from {mask_connection_string(db_url)}: {e}"
        ) from e
    finally:
        engine.dispose()

    return [
        AppliedMigration(
            id=str(row[0]),
            migration_name=row[1],
            checksum=row[2],
            applied_at=row[3],
            applied_steps_count=row[4] or 0,
            rolled_back_at=row[5],
        )
        for row in rows
    ]


def get_worktree_migrations(worktree_path: str | Path) -> list[str]:
    """List migration directories of a worktree, sorted by name.

    A directory counts only if it holds a migration.sql script.

    Raises:
        MigrationCheckError: If prisma/migrations exists but is not a directory
    """
    migrations_dir = _migrations_dir(worktree_path)
    if not migrations_dir.exists():
        return []
    if not migrations_dir.is_dir():
        raise MigrationCheckError(f"{migrations_dir} is not a directory")

    migrations = []
    for entry in migrations_dir.iterdir():
        if entry.name == MIGRATION_LOCK_FILE or entry.name.startswith(".") or not entry.is_dir():
            continue
        if (entry / MIGRATION_SCRIPT).is_file():
            migrations.append(entry.name)

    return sorted(migrations)


def compute_migration_checksum(worktree_path: str | Path, migration_name: str) -> str:
    """SHA-256 hex digest of a migration script, as recorded by Prisma.

    Raises:
        MigrationCheckError: If the script cannot be read
    """
    script = _migrations_dir(worktree_path) / migration_name / MIGRATION_SCRIPT
    try:
        content = script.read_bytes()
    except OSError as e:
        raise MigrationCheckError(f"failed to read migration file {script}: {e}") from e
    return hashlib.sha256(content).hexdigest()


def classify_migrations(pending: list[str], extra: list[str], divergent: list[str]) -> MigrationCompatibility:
    """Classify the relationship from the three difference sets.

    Divergent checksums win, then extra plus pending (diverged), then extra
    only (behind), then pending only (forward). Nothing different is synced.
    """
    if divergent:
        return MigrationCompatibility.DIVERGED
    if extra and pending:
        return MigrationCompatibility.DIVERGED
    if extra:
        return MigrationCompatibility.BEHIND
    if pending:
        return MigrationCompatibility.FORWARD
    return MigrationCompatibility.SYNCED


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def recommended_action(state: MigrationState) -> str:
    """User-facing next step for a migration state"""
    match state.compatibility:
        case MigrationCompatibility.SYNCED:
            return "Database is up to date with worktree migrations"
        case MigrationCompatibility.FORWARD:
            return f"Run 'prisma migrate deploy' to apply {_plural(len(state.pending_migrations), 'pending migration')}"
        case MigrationCompatibility.BEHIND:
            return (
                f"Database has {_plural(len(state.extra_migrations), 'migration')} not in worktree. "
                f"Consider rebasing your branch or re-initializing the database with '{REINIT_COMMAND}'"
            )
        case MigrationCompatibility.DIVERGED:
            if state.divergent_migrations:
                return f"Migrations have diverged (checksum mismatch). Re-initialize database with '{REINIT_COMMAND}'"
            return f"Migrations have diverged. Re-initialize database with '{REINIT_COMMAND}'"
        case _:
            return "Unable to determine migration state"


def build_migration_state(
    applied: list[AppliedMigration],
    on_disk: list[str],
    checksum_of: Callable[[str], str],
) -> MigrationState:
    """Compare applied migrations with on-disk migrations.

    Args:
        applied: Migrations recorded in the database
        on_disk: Migration names present in the worktree
        checksum_of: Returns the on-disk checksum of a migration; any exception
            marks that migration as divergent

    Returns:
        MigrationState with compatibility and recommended action filled in
    """
    applied_names = {migration.migration_name for migration in applied}
    on_disk_set = set(on_disk)

    pending = [name for name in on_disk if name not in applied_names]
    extra = [migration.migration_name for migration in applied if migration.migration_name not in on_disk_set]

    divergent = []
    for migration in applied:
        if migration.migration_name not in on_disk_set:
            continue
        try:
            checksum = checksum_of(migration.migration_name)
        except Exception as e:
            logger.debug(f"Cannot checksum {migration.migration_name}, treating as divergent: {e}")
            divergent.append(migration.migration_name)
            continue
        if checksum != migration.checksum:
            divergent.append(migration.migration_name)

    state = MigrationState(
        compatibility=classify_migrations(pending, extra, divergent),
        applied_migrations=applied,
        worktree_migrations=list(on_disk),
        pending_migrations=pending,
        extra_migrations=extra,
        divergent_migrations=divergent,
    )
    state.recommended_action = recommended_action(state)
    return state


def detect_migration_state(db_url: str, worktree_path: str | Path) -> MigrationState:
    """Compare a database's applied migrations with a worktree's migration files"""
    applied = get_applied_migrations(db_url)
    on_disk = get_worktree_migrations(worktree_path)
    return build_migration_state(applied, on_disk, lambda name: compute_migration_checksum(worktree_path, name))


# ============================================================================
# Baselines
# ============================================================================


def create_migration_baseline(migrations: list[AppliedMigration]) -> MigrationBaseline:
    """Capture the shape of a migration ledger"""
    captured_at = datetime.now(timezone.utc)
    if not migrations:
        return MigrationBaseline(captured_at=captured_at)

    last = migrations[-1]
    return MigrationBaseline(
        migration_names=[migration.migration_name for migration in migrations],
        last_migration_name=last.migration_name,
        last_migration_checksum=last.checksum,
        total_migrations=len(migrations),
        captured_at=captured_at,
    )


def baseline_from_worktree(worktree_path: str | Path) -> MigrationBaseline:
    """Baseline of the migrations a worktree would apply, checksums taken from disk"""
    names = get_worktree_migrations(worktree_path)
    if not names:
        return MigrationBaseline(captured_at=datetime.now(timezone.utc))

    return MigrationBaseline(
        migration_names=names,
        last_migration_name=names[-1],
        last_migration_checksum=compute_migration_checksum(worktree_path, names[-1]),
        total_migrations=len(names),
        captured_at=datetime.now(timezone.utc),
    )


def get_migration_baseline_from_db(db_url: str) -> MigrationBaseline:
    return create_migration_baseline(get_applied_migrations(db_url))


def _is_prefix(shorter: list[str], longer: list[str]) -> bool:
    return longer[: len(shorter)] == shorter


def compare_migration_baselines(
    golden: MigrationBaseline | None, current: MigrationBaseline | None
) -> MigrationCompatibility:
    """Compare a golden-copy baseline with a current one, without database access.

    Returns:
        SYNCED for identical ledgers, FORWARD if current extends golden, BEHIND if
        golden extends current, DIVERGED otherwise, UNKNOWN if either is missing
    """
    if golden is None or current is None:
        return MigrationCompatibility.UNKNOWN

    if (
        golden.total_migrations == current.total_migrations
        and golden.last_migration_name == current.last_migration_name
        and golden.last_migration_checksum == current.last_migration_checksum
    ):
        return MigrationCompatibility.SYNCED

    if current.total_migrations > golden.total_migrations:
        if _is_prefix(golden.migration_names, current.migration_names):
            return MigrationCompatibility.FORWARD
        return MigrationCompatibility.DIVERGED

    if golden.total_migrations > current.total_migrations:
        if _is_prefix(current.migration_names, golden.migration_names):
            return MigrationCompatibility.BEHIND
        return MigrationCompatibility.DIVERGED

    return MigrationCompatibility.DIVERGED
