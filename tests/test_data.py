"""Tests for the Table Data Exporter."""

from unittest.mock import MagicMock

import pytest

from db_snapshot.adapters.version import GPDBVersion
from db_snapshot.backup.data import END_OF_DATA, TableMap, backup_data, copy_query
from db_snapshot.backup.layout import DumpLayout
from db_snapshot.catalog.models import Table, TableDefinition
from db_snapshot.errors import QueryError


def _table(oid: int, name: str, **definition) -> Table:
    return Table(oid=oid, schema_name="public", name=name, definition=TableDefinition(**definition))


def _make_mock_connection(rows_by_table: dict[str, bytes] | None = None, major: int = 6) -> MagicMock:
    """Connection whose COPY writes ``rows_by_table[fqn]`` to the stream."""
    rows_by_table = rows_by_table or {}

    def copy_out(query, stream):
        for fqn, data in rows_by_table.items():
            if fqn in query:
                stream.write(data)
                return len(data)
        return 0

    conn = MagicMock()
    conn.copy_out.side_effect = copy_out
    conn.version = GPDBVersion(major=major)
    return conn


@pytest.fixture
def layout(tmp_path):
    layout = DumpLayout.for_run(tmp_path, "20240101000000")
    layout.create_dirs()
    return layout


# ------------------------------------------------------------------
# COPY statements
# ------------------------------------------------------------------


class TestCopyQuery:
    """COPY statement per table kind."""

    def test_plain_table(self):
        assert copy_query(_table(1, "t"), False, False) == "COPY public.t TO STDOUT"

    def test_root_with_leaf_data_copies_only_itself(self):
        root = _table(1, "root", partition_def="PARTITION BY RANGE (id)")
        assert copy_query(root, True, True) == "COPY (SELECT * FROM ONLY public.root) TO STDOUT"

    def test_gp7_root_reads_through_query(self):
        root = _table(1, "root", partition_def="PARTITION BY RANGE (id)")
        assert copy_query(root, False, True) == "COPY (SELECT * FROM public.root) TO STDOUT"

    def test_gp6_root_copied_directly(self):
        root = _table(1, "root", partition_def="PARTITION BY RANGE(id)")
        assert copy_query(root, False, False) == "COPY public.root TO STDOUT"


# ------------------------------------------------------------------
# backup_data
# ------------------------------------------------------------------


class TestBackupData:
    """Data files and the table map."""

    def test_one_file_per_table_with_terminator(self, layout):
        conn = _make_mock_connection({"public.a": b"1\tx\n2\t\\N\n"})
        tables = [_table(100, "a"), _table(200, "b")]

        table_map = backup_data(conn, tables, set(), layout)

        assert layout.table_data_path(100).read_bytes() == b"1\tx\n2\t\\N\n" + END_OF_DATA
        assert layout.table_data_path(200).read_bytes() == END_OF_DATA
        assert [entry.oid for entry in table_map.tables] == [100, 200]
        assert table_map.get(100).size_bytes == len(b"1\tx\n2\t\\N\n") + len(END_OF_DATA)

    def test_external_tables_skipped_with_warning(self, layout, caplog):
        conn = _make_mock_connection()
        tables = [_table(100, "a"), _table(300, "ext", is_external=True)]

        with caplog.at_level("WARNING"):
            table_map = backup_data(conn, tables, {300}, layout)

        assert table_map.get(300) is None
        assert not layout.table_data_path(300).exists()
        assert conn.copy_out.call_count == 1
        assert "Skipping data dump of table public.ext because it is an external table." in caplog.text

    def test_table_map_written(self, layout):
        conn = _make_mock_connection()
        backup_data(conn, [_table(100, "a")], set(), layout)

        loaded = TableMap.load(layout.table_map_path)
        entry = loaded.get(100)
        assert entry.path == "data/100.copy"
        assert (entry.schema_name, entry.name) == ("public", "a")

    def test_copy_failure_propagates(self, layout):
        conn = _make_mock_connection()
        conn.copy_out.side_effect = QueryError("relation does not exist", "COPY public.a TO STDOUT")

        with pytest.raises(QueryError):
            backup_data(conn, [_table(100, "a")], set(), layout)
        assert not layout.table_map_path.exists()

    def test_inventory_order_preserved(self, layout):
        conn = _make_mock_connection()
        tables = [_table(300, "c"), _table(100, "a"), _table(200, "b")]
        backup_data(conn, tables, set(), layout)
        queries = [c.args[0] for c in conn.copy_out.call_args_list]
        assert queries == [
            "COPY public.c TO STDOUT",
            "COPY public.a TO STDOUT",
            "COPY public.b TO STDOUT",
        ]
