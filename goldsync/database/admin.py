"""Database creation, removal and listing on the local server."""

import logging

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from goldsync.database.connection import (
    build_worktree_url,
    create_database_engine,
    mask_connection_string,
    quote_identifier,
    sanitize_identifier,
)
from goldsync.errors import DatabaseConnectionError, DatabaseExistsError, GoldsyncError

logger = logging.getLogger(__name__)

MAINTENANCE_DATABASE = "postgres"
ADMIN_TIMEOUT_SECONDS = 30


def _admin_engine(local_url: str) -> Engine:
    """Engine connected to the maintenance database"""
    admin_url = build_worktree_url(local_url, MAINTENANCE_DATABASE)
    return create_database_engine(admin_url, statement_timeout=ADMIN_TIMEOUT_SECONDS)


def database_exists(local_url: str, db_name: str) -> bool:
    """Check whether a database exists on the local server.

    Args:
        local_url: Local server connection string
        db_name: Database name (sanitized before lookup)

    Returns:
        True if the database exists
    """
    engine = _admin_engine(local_url)
    try:
        with engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
            result = conn.execute(
                text("SELECT EXISTS(SELECT 1 FROM pg_database WHERE datname = :name)"),
                {"name": sanitize_identifier(db_name)},
            )
            return bool(result.scalar())
    except SQLAlchemyError as e:
        raise DatabaseConnectionError(
            f"failed to check database existence on {mask_connection_string(local_url)}: {e}",
            hint="Check the local PostgreSQL URL in your goldsync config",
        ) from e
    finally:
        engine.dispose()


def create_database(local_url: str, db_name: str) -> str:
    """Create a database on the local server.

    Args:
        local_url: Local server connection string
        db_name: Database name (sanitized before use)

    Returns:
        The sanitized name of the created database

    Raises:
        DatabaseExistsError: If the database already exists
    """
    safe_name = sanitize_identifier(db_name)
    engine = _admin_engine(local_url)
    try:
        with engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
            exists = conn.execute(
                text("SELECT EXISTS(SELECT 1 FROM pg_database WHERE datname = :name)"), {"name": safe_name}
            ).scalar()
            if exists:
                raise DatabaseExistsError(safe_name)

            # CREATE DATABASE does not accept bind parameters
            conn.execute(text(f"CREATE DATABASE {quote_identifier(safe_name)}"))
    except SQLAlchemyError as e:
        raise GoldsyncError(f"failed to create database {safe_name}: {e}") from e
    finally:
        engine.dispose()

    logger.info(f"Created database {safe_name}")
    return safe_name


def drop_database(local_url: str, db_name: str) -> None:
    """Drop a database on the local server, terminating its open connections.

    Dropping a database that does not exist is not an error.
    """
    safe_name = sanitize_identifier(db_name)
    engine = _admin_engine(local_url)
    try:
        with engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
            conn.execute(
                text(
                    "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
                    "WHERE datname = :name AND pid <> pg_backend_pid()"
                ),
                {"name": safe_name},
            )
            conn.execute(text(f"DROP DATABASE IF EXISTS {quote_identifier(safe_name)}"))
    except SQLAlchemyError as e:
        raise GoldsyncError(f"failed to drop database {safe_name}: {e}") from e
    finally:
        engine.dispose()

    logger.info(f"Dropped database {safe_name}")


def existing_databases(local_url: str, names: list[str]) -> list[str]:
    """Return which of the given databases exist.

    Args:
        local_url: Local server connection string
        names: Database names to look for (sanitized)

    Returns:
        Sorted names of the databases that exist
    """
    if not names:
        return []

    engine = _admin_engine(local_url)
    try:
        with engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
            rows = conn.execute(
                text("SELECT datname FROM pg_database WHERE datname = ANY(:names) ORDER BY datname"),
                {"names": list(names)},
            )
            return [row[0] for row in rows]
    except SQLAlchemyError as e:
        raise DatabaseConnectionError(f"failed to list databases: {e}") from e
    finally:
        engine.dispose()
