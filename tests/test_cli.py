"""Tests for the db-snapshot command line."""

import argparse
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from db_snapshot.backup.data import TableMap, TableMapEntry
from db_snapshot.backup.orchestrator import BackupResult, BackupState
from db_snapshot.backup.toc import MetadataFile, TableOfContents
from db_snapshot.cli import _build_options, cmd_profiles, cmd_show, cmd_tables, cmd_toc, main
from db_snapshot.config.models import BackupOptions
from db_snapshot.errors import ConfigurationError

SAMPLE_TOML = """
[profiles.prod]
url = "postgresql://gpadmin@mdw:5432/postgres"
description = "Production"

[backup]
dbname = "sales"
exclude_schemas = ["scratch"]
"""


def _backup_args(**overrides) -> argparse.Namespace:
    values = {
        "dbname": None,
        "dump_dir": None,
        "include_schema": [],
        "exclude_schema": [],
        "include_table": [],
        "exclude_table": [],
        "batch_size": None,
        "leaf_partition_data": False,
        "progress": False,
    }
    values.update(overrides)
    return argparse.Namespace(**values)


@pytest.fixture
def dump_dir(tmp_path):
    """A finished dump with two pre-data objects."""
    root = tmp_path / "20240101" / "20240101120000"
    root.mkdir(parents=True)
    toc = TableOfContents()
    with MetadataFile(root / "predata.sql", "predata", toc) as out:
        out.write_object("CREATE SCHEMA sales;", "sales", "sales", "SCHEMA")
        out.write_object("CREATE TABLE sales.orders (\n\tid integer\n);", "sales", "orders", "TABLE")
    toc.save(root / "toc.json")
    TableMap(
        tables=[
            TableMapEntry(oid=100, schema_name="sales", name="orders", path="data/100.copy", size_bytes=42),
            TableMapEntry(oid=200, schema_name="hr", name="staff", path="data/200.copy", size_bytes=3),
        ]
    ).save(root / "table_map.json")
    return root


# ------------------------------------------------------------------
# Option assembly
# ------------------------------------------------------------------


class TestBuildOptions:
    """Command line flags layered over db.toml."""

    def test_config_values_kept_when_flags_absent(self):
        defaults = BackupOptions(dbname="sales", exclude_schemas=["scratch"])
        options = _build_options(_backup_args(), defaults)
        assert options.dbname == "sales"
        assert options.exclude_schemas == ["scratch"]

    def test_flags_override(self):
        defaults = BackupOptions(dbname="sales")
        args = _build_options(
            _backup_args(dbname="hr", batch_size=10, leaf_partition_data=True, exclude_table=["hr.tmp"]),
            defaults,
        )
        assert args.dbname == "hr"
        assert args.lock_batch_size == 10
        assert args.leaf_partition_data
        assert args.exclude_relations == ["hr.tmp"]

    def test_zero_batch_size_reaches_validation(self):
        with pytest.raises(ValidationError):
            _build_options(_backup_args(batch_size=0), BackupOptions())

    def test_conflict_across_sources_rejected(self):
        defaults = BackupOptions(exclude_schemas=["scratch"])
        with pytest.raises(ConfigurationError):
            _build_options(_backup_args(include_schema=["sales"]), defaults)


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------


class TestBackupCommand:
    """The backup command end to end with the run mocked."""

    def test_success_exit_code(self, tmp_path, monkeypatch):
        (tmp_path / "db.toml").write_text(SAMPLE_TOML)
        monkeypatch.chdir(tmp_path)
        result = BackupResult(success=True, state=BackupState.COMMITTED, timestamp="20240101120000")

        with patch("sys.argv", ["db-snapshot", "backup", "--profile", "prod", "--dump-dir", str(tmp_path)]), \
                patch("db_snapshot.cli.setup_logging"), \
                patch("db_snapshot.cli.PostgresConnection") as connection_cls, \
                patch("db_snapshot.cli.BackupRun") as run_cls:
            run_cls.return_value.run.return_value = result
            assert main() == 0

        connection_cls.assert_called_once_with("postgresql://gpadmin@mdw:5432/postgres", dbname="sales")
        options = run_cls.call_args[0][0]
        assert options.exclude_schemas == ["scratch"]
        assert run_cls.call_args.kwargs["handle_signals"] is True

    def test_failure_exit_code(self, tmp_path, monkeypatch):
        (tmp_path / "db.toml").write_text(SAMPLE_TOML)
        monkeypatch.chdir(tmp_path)
        result = BackupResult(
            state=BackupState.FAILED,
            failed_after=BackupState.INIT,
            error="lock timeout",
            error_type="SnapshotError",
        )

        with patch("sys.argv", ["db-snapshot", "backup", "--profile", "prod"]), \
                patch("db_snapshot.cli.setup_logging"), \
                patch("db_snapshot.cli.PostgresConnection"), \
                patch("db_snapshot.cli.BackupRun") as run_cls:
            run_cls.return_value.run.return_value = result
            assert main() == 1

    def test_unknown_profile(self, tmp_path, monkeypatch):
        (tmp_path / "db.toml").write_text(SAMPLE_TOML)
        monkeypatch.chdir(tmp_path)

        with patch("sys.argv", ["db-snapshot", "backup", "--profile", "staging"]), \
                patch("db_snapshot.cli.setup_logging"), \
                patch("db_snapshot.cli.BackupRun") as run_cls:
            assert main() == 1
        run_cls.assert_not_called()

    def test_verbosity_flags_exclusive(self):
        with patch("sys.argv", ["db-snapshot", "backup", "--quiet", "--debug"]):
            with pytest.raises(SystemExit) as exc_info:
                main()
            assert exc_info.value.code == 2


class TestTocCommands:
    """Reading a finished dump."""

    def test_toc_lists_entries(self, dump_dir):
        args = argparse.Namespace(dump=str(dump_dir), phase=None, schema=None, type=None)
        assert cmd_toc(args) == 0

    def test_toc_missing(self, tmp_path):
        args = argparse.Namespace(dump=str(tmp_path), phase=None, schema=None, type=None)
        assert cmd_toc(args) == 1

    def test_show_prints_object(self, dump_dir, capsys):
        args = argparse.Namespace(dump=str(dump_dir), phase="predata", schema="sales", name="orders", type="table")
        assert cmd_show(args) == 0
        assert "CREATE TABLE sales.orders (\n\tid integer\n);" in capsys.readouterr().out

    def test_show_missing_object(self, dump_dir):
        args = argparse.Namespace(dump=str(dump_dir), phase="postdata", schema="sales", name="orders", type=None)
        assert cmd_show(args) == 1

    def test_phase_choices_enforced(self, dump_dir):
        with patch("sys.argv", ["db-snapshot", "toc", str(dump_dir), "--phase", "data"]):
            with pytest.raises(SystemExit) as exc_info:
                main()
            assert exc_info.value.code == 2


class TestProfilesCommand:
    """Listing profiles."""

    def test_lists_profiles(self, tmp_path):
        (tmp_path / "db.toml").write_text(SAMPLE_TOML)
        assert cmd_profiles(argparse.Namespace(config=str(tmp_path / "db.toml"))) == 0

    def test_missing_config(self, tmp_path):
        assert cmd_profiles(argparse.Namespace(config=str(tmp_path / "db.toml"))) == 1


class TestProgramName:
    """Parser metadata."""

    def test_prog_is_db_snapshot(self):
        with patch("sys.argv", ["db-snapshot", "profiles"]), \
                patch("db_snapshot.cli.cmd_profiles", return_value=0) as mock_profiles:
            assert main() == 0
        assert mock_profiles.call_args[0][0].command == "profiles"

    def test_command_required(self):
        with patch("sys.argv", ["db-snapshot"]):
            with pytest.raises(SystemExit):
                main()


class TestTablesCommand:
    """Listing data files from the table map."""

    def test_lists_tables(self, dump_dir, capsys):
        assert cmd_tables(argparse.Namespace(dump=str(dump_dir), schema=None, oid=None)) == 0
        out = capsys.readouterr().out
        assert "sales.orders" in out
        assert "hr.staff" in out

    def test_schema_filter(self, dump_dir, capsys):
        assert cmd_tables(argparse.Namespace(dump=str(dump_dir), schema="hr", oid=None)) == 0
        out = capsys.readouterr().out
        assert "hr.staff" in out
        assert "sales.orders" not in out

    def test_lookup_by_oid(self, dump_dir, capsys):
        assert cmd_tables(argparse.Namespace(dump=str(dump_dir), schema=None, oid=100)) == 0
        assert "data/100.copy" in capsys.readouterr().out

    def test_unknown_oid(self, dump_dir):
        assert cmd_tables(argparse.Namespace(dump=str(dump_dir), schema=None, oid=999)) == 1

    def test_missing_table_map(self, tmp_path):
        assert cmd_tables(argparse.Namespace(dump=str(tmp_path), schema=None, oid=None)) == 1
