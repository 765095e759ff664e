"""Append-only sync ledger stored inside the golden database."""

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    Table,
    Text,
    inspect,
    insert,
    select,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.engine import Engine

from goldsync.models import SyncMetadata

logger = logging.getLogger(__name__)

LEDGER_TABLE = "_goldsync_sync"

metadata = MetaData()

sync_ledger = Table(
    LEDGER_TABLE,
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("synced_at", DateTime(timezone=True), nullable=False),
    Column("source_url", Text, nullable=False),
    Column("excluded_tables", ARRAY(Text).with_variant(JSON(), "sqlite"), nullable=False),
    Column("row_counts", JSONB().with_variant(JSON(), "sqlite"), nullable=False),
    Column("sync_duration_ms", BigInteger, nullable=False, default=0),
    Column("is_incremental", Boolean, nullable=False, default=False),
)


def ensure_ledger_table(engine: Engine) -> None:
    """Create the ledger table if it does not exist"""
    metadata.create_all(engine, tables=[sync_ledger], checkfirst=True)


def ledger_table_exists(engine: Engine) -> bool:
    return inspect(engine).has_table(LEDGER_TABLE)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops the offset; stored values are always UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _row_to_metadata(row: Any) -> SyncMetadata:
    return SyncMetadata(
        id=row.id,
        synced_at=_as_utc(row.synced_at),
        source_url=row.source_url,
        excluded_tables=list(row.excluded_tables or []),
        row_counts={name: int(count) for name, count in (row.row_counts or {}).items()},
        sync_duration_ms=int(row.sync_duration_ms or 0),
        is_incremental=bool(row.is_incremental),
    )


def append_ledger_entry(engine: Engine, entry: SyncMetadata) -> SyncMetadata:
    """Insert a ledger row, creating the table on first use.

    Args:
        engine: Engine connected to the golden database
        entry: Row to append; its id is ignored

    Returns:
        The stored entry with its assigned id
    """
    ensure_ledger_table(engine)

    values = {
        "synced_at": _as_utc(entry.synced_at),
        "source_url": entry.source_url,
        "excluded_tables": list(entry.excluded_tables),
        "row_counts": dict(entry.row_counts),
        "sync_duration_ms": entry.sync_duration_ms,
        "is_incremental": entry.is_incremental,
    }

    with engine.begin() as conn:
        result = conn.execute(insert(sync_ledger).values(**values))
        entry_id = result.inserted_primary_key[0]

    logger.debug(f"Appended sync ledger entry {entry_id}")
    return entry.model_copy(update={"id": entry_id})


def latest_ledger_entry(engine: Engine) -> SyncMetadata | None:
    """Return the most recent ledger row, or None if the ledger is absent or empty"""
    if not ledger_table_exists(engine):
        return None

    with engine.connect() as conn:
        row = conn.execute(select(sync_ledger).order_by(sync_ledger.c.id.desc()).limit(1)).first()

    return _row_to_metadata(row) if row is not None else None


def ledger_history(engine: Engine, limit: int = 10) -> list[SyncMetadata]:
    """Return up to `limit` ledger rows, newest first"""
    if not ledger_table_exists(engine):
        return []

    with engine.connect() as conn:
        rows = conn.execute(select(sync_ledger).order_by(sync_ledger.c.id.desc()).limit(limit)).fetchall()

    return [_row_to_metadata(row) for row in rows]
