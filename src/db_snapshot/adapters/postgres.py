"""Synchronous psycopg connection for Greenplum.

Provides ``PostgresConnection``, the ``DatabaseConnection`` implementation
used for a backup run.  One instance wraps exactly one server session; the
session runs in autocommit mode so the snapshot transaction boundaries are
the explicit ``begin()`` / ``commit()`` calls issued by the orchestrator.

Usage:
    from db_snapshot.adapters.postgres import PostgresConnection

    conn = PostgresConnection("postgresql://gpadmin@mdw:5432/postgres", dbname="sales")
    conn.connect()
    conn.begin()
    rows = conn.select("SELECT oid, nspname FROM pg_namespace")
    conn.commit()
    conn.close()
"""

import logging
from typing import Any, BinaryIO

import psycopg
from psycopg import Connection
from psycopg.rows import dict_row

from db_snapshot.adapters.version import GPDBVersion
from db_snapshot.errors import ConfigurationError, DumpError, QueryCancelledError, QueryError

logger = logging.getLogger(__name__)

APPLICATION_NAME = "db-snapshot"


class PostgresConnection:
    """psycopg (v3) implementation of the ``DatabaseConnection`` protocol.

    Args:
        database_url: libpq connection URL or conninfo string.
        dbname: Database to back up.  Overrides the database in the URL when
            given.
        connect_timeout: Seconds to wait for the initial connection.
    """

    def __init__(
        self,
        database_url: str,
        dbname: str | None = None,
        connect_timeout: int = 10,
    ) -> None:
        # postgres:// is accepted by libpq, but normalize for log output
        if database_url.startswith("postgres://"):
            database_url = "postgresql://" + database_url[len("postgres://"):]

        self._database_url = database_url
        self._connect_timeout = connect_timeout
        self._conn: Connection | None = None
        self.dbname: str = dbname or ""
        self.version: GPDBVersion | None = None

    def __enter__(self) -> "PostgresConnection":
        """Context manager entry - opens connection."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - closes connection."""
        self.close()

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Open the session, set the application name and detect the version.

        The session is closed again if the version cannot be determined.

        Raises:
            QueryError: If the server cannot be reached or queried.
            ConfigurationError: If the server is not Greenplum.
        """
        kwargs: dict[str, Any] = {
            "autocommit": True,
            "row_factory": dict_row,
            "connect_timeout": self._connect_timeout,
            "application_name": APPLICATION_NAME,
        }
        if self.dbname:
            kwargs["dbname"] = self.dbname

        try:
            self._conn = psycopg.connect(self._database_url, **kwargs)
        except psycopg.Error as e:
            raise QueryError(f"Failed to connect to database: {e}") from e

        info = self._conn.info
        self.dbname = info.dbname
        try:
            version_string = self.get("SELECT version() AS version")["version"]
            self.version = GPDBVersion.parse(version_string)
        except ValueError as e:
            self.close()
            raise ConfigurationError(str(e)) from e
        except DumpError:
            self.close()
            raise
        logger.debug(
            "Connected to %s:%s/%s (Greenplum %s)", info.host, info.port, info.dbname, self.version
        )

    def begin(self) -> None:
        """Open the snapshot transaction.

        Greenplum 6+ supports REPEATABLE READ; on 5, SERIALIZABLE is the
        snapshot isolation level.
        """
        if self.version is not None and self.version.at_least("6"):
            self.exec("BEGIN ISOLATION LEVEL REPEATABLE READ")
        else:
            self.exec("BEGIN ISOLATION LEVEL SERIALIZABLE")

    def commit(self) -> None:
        """Commit the snapshot transaction."""
        self.exec("COMMIT")

    def close(self) -> None:
        """Close the session if one is open."""
        if self._conn is not None:
            try:
                self._conn.close()
            finally:
                self._conn = None

    def cancel(self) -> None:
        """Send a cancel request for the statement in progress."""
        if self._conn is not None:
            self._conn.cancel_safe()

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _require_connection(self) -> Connection:
        if self._conn is None:
            raise QueryError("Connection is not open. Call connect() first.")
        return self._conn

    def exec(self, sql: str, params: Any = None) -> None:
        """Execute a statement that returns no rows."""
        conn = self._require_connection()
        try:
            conn.execute(sql, params)
        except psycopg.errors.QueryCanceled as e:
            raise QueryCancelledError(str(e), sql) from e
        except psycopg.Error as e:
            raise QueryError(str(e), sql) from e

    def select(self, query: str, params: Any = None) -> list[dict[str, Any]]:
        """Run a query and return all rows as dicts."""
        conn = self._require_connection()
        try:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()
        except psycopg.errors.QueryCanceled as e:
            raise QueryCancelledError(str(e), query) from e
        except psycopg.Error as e:
            raise QueryError(str(e), query) from e

    def get(self, query: str, params: Any = None) -> dict[str, Any]:
        """Run a query and return its single row."""
        rows = self.select(query, params)
        if not rows:
            raise QueryError("Query returned no rows", query)
        return rows[0]

    def copy_out(self, query: str, stream: BinaryIO) -> int:
        """Stream ``COPY ... TO STDOUT`` output into ``stream``.

        Blocks are written as they arrive from the server; the table is never
        held in memory.
        """
        conn = self._require_connection()
        written = 0
        try:
            with conn.cursor() as cur:
                with cur.copy(query) as copy:
                    for block in copy:
                        stream.write(block)
                        written += len(block)
        except psycopg.errors.QueryCanceled as e:
            raise QueryCancelledError(str(e), query) from e
        except psycopg.Error as e:
            raise QueryError(str(e), query) from e
        return written
