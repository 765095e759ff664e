"""Error types raised by the synchronization engine.

Every error carries an optional ``hint`` naming the next command the user
should run. The CLI prints both.
"""


class GoldsyncError(Exception):
    """Base class for all engine errors"""

    def __init__(self, message: str, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


# ============================================================================
# Connection errors
# ============================================================================


class DatabaseConnectionError(GoldsyncError):
    """Cannot reach the source or the local server"""


# ============================================================================
# Validation errors
# ============================================================================


class ConnectionStringError(GoldsyncError, ValueError):
    """Connection string could not be parsed"""


class InvalidSchemeError(ConnectionStringError):
    """Connection string uses a scheme other than postgresql/postgres"""


class InvalidFormatError(ConnectionStringError):
    """Connection string is malformed"""


class GoldenCopyMissingError(GoldsyncError):
    """Golden database does not exist for the project"""

    def __init__(self, project: str) -> None:
        super().__init__(
            f"golden database does not exist for project {project}",
            hint="Run 'goldsync database sync' first",
        )
        self.project = project


class DatabaseExistsError(GoldsyncError):
    """Target database already exists"""

    def __init__(self, db_name: str) -> None:
        super().__init__(
            f"database {db_name} already exists",
            hint=f"Use 'goldsync database reinit' to re-clone, or 'goldsync database drop {db_name}' first",
        )
        self.db_name = db_name


class DatabaseNotFoundError(GoldsyncError):
    """Target database does not exist"""

    def __init__(self, db_name: str) -> None:
        super().__init__(f"database '{db_name}' does not exist", hint="Run 'goldsync database list' to see databases")
        self.db_name = db_name


class SyncInProgressError(GoldsyncError):
    """A sync for the same project is already running"""

    def __init__(self, project: str) -> None:
        super().__init__(
            f"sync already in progress for project {project}",
            hint="Wait for the running sync to finish",
        )
        self.project = project


# ============================================================================
# Transfer errors
# ============================================================================


class TransferError(GoldsyncError):
    """A producer or consumer process failed"""

    def __init__(self, process: str, returncode: int | None, stderr: str = "", hint: str | None = None) -> None:
        message = f"{process} failed"
        if returncode is not None:
            message += f" (exit code {returncode})"
        if stderr.strip():
            message += f"\nstderr: {stderr.strip()}"
        super().__init__(message, hint=hint)
        self.process = process
        self.returncode = returncode
        self.stderr = stderr


class OperationCancelledError(GoldsyncError):
    """A long-running operation was cancelled by the caller"""

    def __init__(self, operation: str = "operation") -> None:
        super().__init__(f"{operation} cancelled")
        self.operation = operation


# ============================================================================
# Introspection and step errors
# ============================================================================


class IntrospectionError(GoldsyncError):
    """Failed to read catalog information from a database"""


class MigrationCheckError(GoldsyncError):
    """Failed to read migrations from a database or a worktree"""


class SyncStepError(GoldsyncError):
    """A sync step failed; wraps the underlying error with project context"""

    def __init__(self, step: str, project: str, cause: Exception) -> None:
        hint = cause.hint if isinstance(cause, GoldsyncError) else None
        super().__init__(f"sync of project {project} failed during {step}: {cause}", hint=hint)
        self.step = step
        self.project = project
        self.cause = cause
