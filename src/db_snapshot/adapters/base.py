"""Database connection protocol definition.

Defines the ``DatabaseConnection`` Protocol that the backup engine talks to.
All methods are synchronous: the whole backup runs inside one transaction on
one connection, owned by the orchestrator.

Usage:
    from db_snapshot.adapters.base import DatabaseConnection

    def count_schemas(conn: DatabaseConnection) -> int:
        row = conn.get("SELECT count(*) AS n FROM pg_namespace")
        return row["n"]
"""

from typing import Any, BinaryIO, Protocol

from db_snapshot.adapters.version import GPDBVersion


class DatabaseConnection(Protocol):
    """Connection interface consumed by every catalog query and writer.

    Implementations raise ``db_snapshot.errors.QueryError`` (or its
    ``QueryCancelledError`` subclass) when a statement fails.
    """

    dbname: str
    version: GPDBVersion

    def connect(self) -> None:
        """Open the session and detect the server version."""
        ...

    def begin(self) -> None:
        """Open the snapshot transaction."""
        ...

    def exec(self, sql: str, params: Any = None) -> None:
        """Execute a statement that returns no rows.

        Example:
            conn.exec("LOCK TABLE public.foo IN ACCESS SHARE MODE")
        """
        ...

    def select(self, query: str, params: Any = None) -> list[dict[str, Any]]:
        """Run a query and return all rows as dicts keyed by column name.

        Returns:
            List of dicts, one per row.  Empty list if no rows.
        """
        ...

    def get(self, query: str, params: Any = None) -> dict[str, Any]:
        """Run a query expected to return exactly one row.

        Raises:
            QueryError: If the query returns no rows.
        """
        ...

    def copy_out(self, query: str, stream: BinaryIO) -> int:
        """Stream a ``COPY ... TO STDOUT`` into ``stream``.

        Returns:
            Number of bytes written.
        """
        ...

    def cancel(self) -> None:
        """Ask the server to cancel the statement currently running.

        Safe to call from a signal handler while another call blocks.
        """
        ...

    def commit(self) -> None:
        """Commit the snapshot transaction (releasing all table locks)."""
        ...

    def close(self) -> None:
        """Close the session.  Must tolerate an already-broken connection."""
        ...
