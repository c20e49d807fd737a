"""Tests for the table of contents and byte-counting phase files."""

import pytest

from db_snapshot.backup.layout import DumpLayout, make_timestamp
from db_snapshot.backup.toc import (
    OBJECT_SEPARATOR,
    MetadataEntry,
    MetadataFile,
    TableOfContents,
    read_entry,
)


def _write_sample(path) -> TableOfContents:
    toc = TableOfContents()
    with MetadataFile(path, "predata", toc) as out:
        out.write_object("CREATE SCHEMA sales;", "sales", "sales", "SCHEMA")
        out.write_object("CREATE TABLE sales.orders (\n\tid integer\n);", "sales", "orders", "TABLE")
        out.write_object("COMMENT ON TABLE sales.orders IS 'café';", "sales", "orders", "COMMENT")
    return toc


# ------------------------------------------------------------------
# Byte ranges
# ------------------------------------------------------------------


class TestMetadataFile:
    """Entries recorded while writing a phase file."""

    def test_first_entry_starts_at_zero(self, tmp_path):
        toc = _write_sample(tmp_path / "predata.sql")
        assert toc.predata_entries[0].start_byte == 0

    def test_ranges_are_ordered_and_disjoint(self, tmp_path):
        toc = _write_sample(tmp_path / "predata.sql")
        entries = toc.predata_entries
        for previous, current in zip(entries, entries[1:]):
            assert previous.end_byte <= current.start_byte
            assert current.start_byte < current.end_byte

    def test_separator_outside_ranges(self, tmp_path):
        toc = _write_sample(tmp_path / "predata.sql")
        first, second = toc.predata_entries[:2]
        assert second.start_byte - first.end_byte == len(OBJECT_SEPARATOR)

    def test_read_entry_returns_exact_statements(self, tmp_path):
        path = tmp_path / "predata.sql"
        toc = _write_sample(path)
        assert read_entry(path, toc.predata_entries[1]) == "CREATE TABLE sales.orders (\n\tid integer\n);"

    def test_offsets_count_bytes_not_characters(self, tmp_path):
        path = tmp_path / "predata.sql"
        toc = _write_sample(path)
        entry = toc.predata_entries[2]
        text = "COMMENT ON TABLE sales.orders IS 'café';"
        assert entry.end_byte - entry.start_byte == len(text.encode("utf-8"))
        assert read_entry(path, entry) == text
        assert entry.end_byte == path.stat().st_size

    def test_entries_only_in_own_phase(self, tmp_path):
        toc = _write_sample(tmp_path / "predata.sql")
        assert toc.global_entries == []
        assert toc.postdata_entries == []

    def test_write_requires_open_file(self, tmp_path):
        out = MetadataFile(tmp_path / "x.sql", "global", TableOfContents())
        with pytest.raises(ValueError):
            out.write("SET x = 1;")

    def test_rewriting_same_objects_is_identical(self, tmp_path):
        first = _write_sample(tmp_path / "a.sql")
        second = _write_sample(tmp_path / "b.sql")
        assert first == second
        assert (tmp_path / "a.sql").read_bytes() == (tmp_path / "b.sql").read_bytes()


# ------------------------------------------------------------------
# TableOfContents
# ------------------------------------------------------------------


class TestTableOfContents:
    """Lookup, validation and persistence."""

    def test_lookup_returns_every_entry_for_object(self, tmp_path):
        toc = _write_sample(tmp_path / "predata.sql")
        entries = toc.lookup("predata", "sales", "orders")
        assert [e.object_type for e in entries] == ["TABLE", "COMMENT"]

    def test_lookup_by_type(self, tmp_path):
        toc = _write_sample(tmp_path / "predata.sql")
        assert len(toc.lookup("predata", "sales", "orders", "TABLE")) == 1

    def test_lookup_miss(self, tmp_path):
        toc = _write_sample(tmp_path / "predata.sql")
        assert toc.lookup("postdata", "sales", "orders") == []

    def test_unknown_phase(self):
        with pytest.raises(ValueError, match="Unknown phase"):
            TableOfContents().entries("data")

    def test_overlapping_entry_rejected(self):
        toc = TableOfContents()
        toc.add_entry("global", MetadataEntry(schema_name="", name="a", object_type="ROLE", start_byte=0, end_byte=10))
        with pytest.raises(ValueError):
            toc.add_entry(
                "global", MetadataEntry(schema_name="", name="b", object_type="ROLE", start_byte=5, end_byte=12)
            )

    def test_save_and_load(self, tmp_path):
        toc = _write_sample(tmp_path / "predata.sql")
        path = toc.save(tmp_path / "toc.json")
        assert TableOfContents.load(path) == toc


# ------------------------------------------------------------------
# Dump layout
# ------------------------------------------------------------------


class TestDumpLayout:
    """Directory structure of one run."""

    def test_run_directory_keyed_by_timestamp(self, tmp_path):
        layout = DumpLayout.for_run(tmp_path, "20240102030405")
        assert layout.root == tmp_path / "20240102" / "20240102030405"
        assert layout.timestamp == "20240102030405"

    def test_paths(self, tmp_path):
        layout = DumpLayout.for_run(tmp_path, "20240102030405")
        assert layout.phase_path("global").name == "global.sql"
        assert layout.toc_path.name == "toc.json"
        assert layout.table_data_path(16384) == layout.root / "data" / "16384.copy"

    def test_create_dirs_refuses_existing_run(self, tmp_path):
        layout = DumpLayout.for_run(tmp_path, "20240102030405")
        layout.create_dirs()
        assert layout.data_dir.is_dir()
        with pytest.raises(FileExistsError):
            layout.create_dirs()

    def test_timestamp_format(self):
        assert len(make_timestamp()) == 14
        assert make_timestamp().isdigit()
