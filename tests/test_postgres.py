"""Tests for the psycopg connection adapter.

``psycopg.connect`` is patched to return a MagicMock session, so no server
is needed.
"""

from unittest.mock import MagicMock, patch

import psycopg
import pytest

from db_snapshot.adapters.postgres import PostgresConnection
from db_snapshot.backup.orchestrator import BackupRun, BackupState
from db_snapshot.config.models import BackupOptions
from db_snapshot.errors import ConfigurationError, QueryError

GP6_VERSION = "PostgreSQL 9.4.26 (Greenplum Database 6.24.3 build commit:abc) on x86_64"
URL = "postgresql://gpadmin@mdw:5432/postgres"


def _make_mock_session(version_rows: list[dict] | None = None) -> MagicMock:
    """Raw psycopg session whose cursor returns ``version_rows``."""
    cur = MagicMock()
    cur.fetchall.return_value = [{"version": GP6_VERSION}] if version_rows is None else version_rows
    raw = MagicMock()
    raw.info.dbname = "sales"
    raw.cursor.return_value.__enter__.return_value = cur
    return raw


class TestConnect:
    """Session setup and version detection."""

    def test_version_detected(self):
        raw = _make_mock_session()
        with patch("psycopg.connect", return_value=raw) as mock_connect:
            conn = PostgresConnection(URL, dbname="sales")
            conn.connect()

        assert conn.version.major == 6
        assert conn.dbname == "sales"
        assert mock_connect.call_args.kwargs["application_name"] == "db-snapshot"
        raw.close.assert_not_called()

    def test_non_greenplum_server_closes_session(self):
        raw = _make_mock_session([{"version": "PostgreSQL 14.1 on x86_64"}])
        with patch("psycopg.connect", return_value=raw):
            conn = PostgresConnection(URL)
            with pytest.raises(ConfigurationError, match="Not a Greenplum Database server"):
                conn.connect()

        raw.close.assert_called_once()
        assert conn._conn is None

    def test_version_query_failure_closes_session(self):
        raw = _make_mock_session()
        raw.cursor.return_value.__enter__.return_value.execute.side_effect = psycopg.OperationalError(
            "server closed the connection unexpectedly"
        )
        with patch("psycopg.connect", return_value=raw):
            conn = PostgresConnection(URL)
            with pytest.raises(QueryError):
                conn.connect()

        raw.close.assert_called_once()

    def test_unreachable_server(self):
        with patch("psycopg.connect", side_effect=psycopg.OperationalError("timeout expired")):
            with pytest.raises(QueryError, match="Failed to connect"):
                PostgresConnection(URL).connect()

    def test_postgres_scheme_normalized(self):
        raw = _make_mock_session()
        with patch("psycopg.connect", return_value=raw) as mock_connect:
            PostgresConnection("postgres://gpadmin@mdw/postgres").connect()
        assert mock_connect.call_args[0][0] == "postgresql://gpadmin@mdw/postgres"


class TestSessionControl:
    """Transaction boundaries and cancellation."""

    def _connected(self, raw: MagicMock) -> PostgresConnection:
        with patch("psycopg.connect", return_value=raw):
            conn = PostgresConnection(URL)
            conn.connect()
        return conn

    def test_gp6_begins_repeatable_read(self):
        raw = _make_mock_session()
        self._connected(raw).begin()
        raw.execute.assert_called_with("BEGIN ISOLATION LEVEL REPEATABLE READ", None)

    def test_cancel_uses_cancel_safe(self):
        raw = _make_mock_session()
        self._connected(raw).cancel()
        raw.cancel_safe.assert_called_once()

    def test_cancel_without_session_is_noop(self):
        PostgresConnection(URL).cancel()

    def test_statement_errors_wrapped(self):
        raw = _make_mock_session()
        conn = self._connected(raw)
        raw.execute.side_effect = psycopg.errors.LockNotAvailable("could not obtain lock")
        with pytest.raises(QueryError) as exc_info:
            conn.exec("LOCK TABLE public.t IN ACCESS SHARE MODE")
        assert exc_info.value.query == "LOCK TABLE public.t IN ACCESS SHARE MODE"


class TestRunAgainstWrongServer:
    """A run pointed at plain PostgreSQL fails cleanly."""

    def test_configuration_error_and_session_closed(self, tmp_path):
        raw = _make_mock_session([{"version": "PostgreSQL 14.1 on x86_64"}])
        with patch("psycopg.connect", return_value=raw):
            result = BackupRun(BackupOptions(dump_dir=tmp_path), PostgresConnection(URL)).run()

        assert result.state == BackupState.FAILED
        assert result.error_type == "ConfigurationError"
        raw.close.assert_called_once()
