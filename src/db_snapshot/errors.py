"""Error taxonomy for the backup engine.

Every fatal error unwinds to ``BackupRun`` (see
``db_snapshot.backup.orchestrator``), which is the only place that performs
teardown.  Components below it raise; they never recover on their own.

Hierarchy:
    DumpError
    +-- ConfigurationError     unresolvable names, conflicting options
    +-- QueryError             a catalog or data statement failed
    |   +-- QueryCancelledError
    +-- SnapshotError          lock acquisition failed
    |   +-- LockCancelledError
    +-- ExtractionError        metadata phase failed
"""


class DumpError(Exception):
    """Base class for all backup errors."""

    pass


class ConfigurationError(DumpError):
    """Raised when options are inconsistent or name unknown objects.

    Detected before the backup transaction opens, so there is no partial
    state to clean up.
    """

    pass


class QueryError(DumpError):
    """Raised when a statement sent to the cluster fails.

    Args:
        message: Human-readable description (usually the driver error).
        query: The SQL that failed, kept for diagnosis.
    """

    def __init__(self, message: str, query: str = ""):
        super().__init__(message)
        self.query = query

    def __str__(self) -> str:
        base = super().__str__()
        if self.query:
            return f"{base}\nFailed on query: {self.query.strip()}"
        return base


class QueryCancelledError(QueryError):
    """Raised when the server reports that a statement was cancelled."""

    pass


class SnapshotError(DumpError):
    """Raised when the lock set protecting the snapshot cannot be acquired."""

    pass


class LockCancelledError(SnapshotError):
    """Raised when lock acquisition is interrupted through its cancel token."""

    pass


class ExtractionError(DumpError):
    """Raised when catalog metadata cannot be gathered completely."""

    pass
