"""Producer/consumer process pipelines for streaming data between databases.

A producer (pg_dump, or psql running COPY ... TO STDOUT) writes to a pipe that
is the consumer's stdin (psql). Nothing touches disk except the captured
stderr of each process.
"""

import logging
import os
import re
import signal
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from goldsync.database.cancel import CancellationToken
from goldsync.database.connection import quote_qualified_name
from goldsync.errors import OperationCancelledError, TransferError

logger = logging.getLogger(__name__)

CLIENT_TOOLS_HINT = "Install the PostgreSQL client tools (pg_dump, psql) and make sure they are on PATH"
CONSUMER_ENV = {"PGOPTIONS": "-c client_min_messages=warning"}

_ERROR_TEXT = re.compile(r"\berror\b", re.IGNORECASE)


@dataclass
class PipeOutput:
    """Captured diagnostics of a finished pipeline"""

    producer_stderr: str
    consumer_stderr: str
    consumer_returncode: int


def _process_name(args: list[str]) -> str:
    return Path(args[0]).name


def _read(stream: IO[bytes]) -> str:
    stream.seek(0)
    return stream.read().decode("utf-8", errors="replace")


def _terminate(process: subprocess.Popen[bytes]) -> None:
    if process.poll() is None:
        try:
            process.terminate()
        except ProcessLookupError:
            pass


def run_pipe(
    producer_args: list[str],
    consumer_args: list[str],
    cancel: CancellationToken | None = None,
    operation: str = "transfer",
) -> PipeOutput:
    """Run producer | consumer and wait for both.

    Args:
        producer_args: Command line of the process writing to the pipe
        consumer_args: Command line of the process reading from the pipe
        cancel: Optional token; cancelling terminates both processes
        operation: Name used in the cancellation error

    Returns:
        PipeOutput with stderr of both processes

    Raises:
        TransferError: If a process cannot start, the producer exits non-zero,
            or the consumer exits non-zero with error output
        OperationCancelledError: If the token was cancelled
    """
    if cancel is not None:
        cancel.raise_if_cancelled(operation)

    producer_name = _process_name(producer_args)
    consumer_name = _process_name(consumer_args)
    consumer_env = {**os.environ, **CONSUMER_ENV}

    with tempfile.TemporaryFile() as producer_err, tempfile.TemporaryFile() as consumer_err:
        try:
            producer = subprocess.Popen(producer_args, stdout=subprocess.PIPE, stderr=producer_err)
        except OSError as e:
            raise TransferError(producer_name, None, str(e), hint=CLIENT_TOOLS_HINT) from e

        try:
            consumer = subprocess.Popen(
                consumer_args,
                stdin=producer.stdout,
                stdout=subprocess.DEVNULL,
                stderr=consumer_err,
                env=consumer_env,
            )
        except OSError as e:
            producer.kill()
            producer.wait()
            raise TransferError(consumer_name, None, str(e), hint=CLIENT_TOOLS_HINT) from e
        finally:
            # The consumer holds its own copy; ours must close so the producer sees EPIPE
            if producer.stdout is not None:
                producer.stdout.close()

        unregister = None
        if cancel is not None:

            def stop() -> None:
                logger.info(f"Cancelling {operation}: terminating {producer_name} and {consumer_name}")
                _terminate(producer)
                _terminate(consumer)

            unregister = cancel.on_cancel(stop)

        try:
            producer_rc = producer.wait()
            consumer_rc = consumer.wait()
        except BaseException:
            # Interrupted while waiting; never leave the children running
            _terminate(producer)
            _terminate(consumer)
            producer.wait()
            consumer.wait()
            raise
        finally:
            if unregister is not None:
                unregister()

        producer_stderr = _read(producer_err)
        consumer_stderr = _read(consumer_err)

    if cancel is not None and cancel.cancelled:
        raise OperationCancelledError(operation)

    consumer_failed = consumer_rc != 0 and bool(_ERROR_TEXT.search(consumer_stderr))
    # A producer killed by SIGPIPE only reports that the consumer went away first
    producer_broken_pipe = producer_rc == -signal.SIGPIPE

    if producer_rc != 0 and not (producer_broken_pipe and consumer_failed):
        raise TransferError(producer_name, producer_rc, producer_stderr)
    if consumer_failed:
        raise TransferError(consumer_name, consumer_rc, consumer_stderr)
    if consumer_rc != 0:
        logger.warning(f"{consumer_name} exited with code {consumer_rc} without errors: {consumer_stderr.strip()}")

    return PipeOutput(producer_stderr=producer_stderr, consumer_stderr=consumer_stderr, consumer_returncode=consumer_rc)


def dump_command(source_url: str, *extra_args: str) -> list[str]:
    """pg_dump invocation writing plain SQL to stdout"""
    return ["pg_dump", source_url, "--no-owner", "--no-acl", *extra_args]


def restore_command(target_url: str) -> list[str]:
    """psql invocation reading SQL from stdin"""
    return ["psql", target_url, "--no-psqlrc", "--quiet"]


def copy_filtered_table(
    source_url: str,
    target_url: str,
    table: str,
    where_clause: str,
    cancel: CancellationToken | None = None,
) -> PipeOutput:
    """Stream the rows of a table matching a predicate into the same table of another database.

    Args:
        source_url: Connection string of the database to read from
        target_url: Connection string of the database to write to
        table: Qualified table name (schema.table)
        where_clause: SQL predicate selecting the rows to copy
        cancel: Optional cancellation token

    Returns:
        PipeOutput of the COPY pipeline
    """
    quoted = quote_qualified_name(table)
    copy_out = f"COPY (SELECT * FROM {quoted} WHERE {where_clause}) TO STDOUT"
    copy_in = f"COPY {quoted} FROM STDIN"

    return run_pipe(
        ["psql", source_url, "--no-psqlrc", "-c", copy_out],
        ["psql", target_url, "--no-psqlrc", "-c", copy_in],
        cancel=cancel,
        operation=f"copy of {table}",
    )
