"""Tests for the pre-data printers.

Covers the statement text of each object family and the ordering rules that
make the file replayable: shell types before functions, sequences after
tables with sequence-backed defaults deferred, OWNED BY after every sequence,
and foreign keys after every other constraint.
"""

from unittest.mock import MagicMock

import pytest

from db_snapshot.adapters.version import GPDBVersion
from db_snapshot.backup.ddl_predata import (
    dollar_quote,
    function_statement,
    print_constraints,
    print_create_aggregates,
    print_create_casts,
    print_create_schemas,
    print_create_sequences,
    print_create_shell_types,
    print_create_tables,
    print_sequence_defaults,
    sequence_default_target,
    table_statement,
)
from db_snapshot.backup.orchestrator import BackupRun
from db_snapshot.backup.toc import MetadataFile, TableOfContents, read_entry
from db_snapshot.catalog.models import (
    Aggregate,
    BaseType,
    Cast,
    ColumnDefinition,
    Constraint,
    ExternalTableDefinition,
    ForeignTableDefinition,
    Function,
    FunctionInfo,
    MaterializedView,
    ObjectMetadata,
    PartitionChild,
    Schema,
    Sequence,
    SequenceDefinition,
    ShellType,
    Table,
    TableDefinition,
    UniqueID,
    View,
)

GP5 = GPDBVersion(major=5)
GP6 = GPDBVersion(major=6)
GP7 = GPDBVersion(major=7)


def _column(name: str, type_: str = "integer", num: int = 1, **kwargs) -> ColumnDefinition:
    return ColumnDefinition(oid=0, num=num, name=name, type=type_, **kwargs)


def _table(oid: int, name: str, columns: list[ColumnDefinition] | None = None, **definition) -> Table:
    return Table(
        oid=oid,
        schema_name="public",
        name=name,
        definition=TableDefinition(columns=columns or [_column("id")], **definition),
    )


def _sequence(oid: int, name: str, owning_column: str = "", owning_table: str = "") -> Sequence:
    return Sequence(
        oid=oid,
        schema_name="public",
        name=name,
        definition=SequenceDefinition(
            last_val=5,
            start_val=1,
            increment=1,
            max_val=9223372036854775807,
            min_val=1,
            cache_val=1,
            is_cycled=False,
            is_called=True,
            owning_table=owning_table,
            owning_column=owning_column,
        ),
    )


def _print(tmp_path, printer, *args):
    """Run one printer into a fresh pre-data file; return (toc, path)."""
    toc = TableOfContents()
    path = tmp_path / "predata.sql"
    with MetadataFile(path, "predata", toc) as out:
        printer(out, *args)
    return toc, path


def _statements(toc: TableOfContents, path) -> list[str]:
    return [read_entry(path, entry) for entry in toc.predata_entries]


# ------------------------------------------------------------------
# Schemas and types
# ------------------------------------------------------------------


class TestSchemasAndTypes:
    """Schema and shell type output."""

    def test_public_schema_not_created(self, tmp_path):
        schemas = [Schema(oid=2200, name="public"), Schema(oid=16400, name="sales")]
        toc, path = _print(tmp_path, print_create_schemas, schemas, {})
        assert _statements(toc, path) == ["CREATE SCHEMA sales;"]

    def test_public_schema_metadata_still_written(self, tmp_path):
        metadata = {UniqueID(class_id=2615, oid=2200): ObjectMetadata(comment="standard public schema")}
        toc, path = _print(tmp_path, print_create_schemas, [Schema(oid=2200, name="public")], metadata)
        assert _statements(toc, path) == ["COMMENT ON SCHEMA public IS 'standard public schema';"]

    def test_shell_types_cover_base_types_in_oid_order(self, tmp_path):
        shells = [ShellType(oid=30, schema_name="public", name="later")]
        bases = [BaseType(oid=20, schema_name="public", name="complex", input="complex_in", output="complex_out")]
        toc, path = _print(tmp_path, print_create_shell_types, shells, bases)
        assert _statements(toc, path) == ["CREATE TYPE public.complex;", "CREATE TYPE public.later;"]


# ------------------------------------------------------------------
# Functions and dependents
# ------------------------------------------------------------------


class TestFunctions:
    """CREATE FUNCTION, AGGREGATE and CAST text."""

    def test_dollar_quote_avoids_body_collision(self):
        assert dollar_quote("SELECT 1") == "$$SELECT 1$$"
        assert dollar_quote("SELECT '$$'") == "$_1$SELECT '$$'$_1$"

    def test_sql_function(self):
        function = Function(
            oid=1,
            schema_name="public",
            name="add",
            arguments="a integer, b integer",
            identity_arguments="a integer, b integer",
            result_type="integer",
            function_body="SELECT a + b",
            language="sql",
            volatility="i",
            is_strict=True,
            config=["search_path=public, pg_catalog", "work_mem=64MB"],
        )
        statement = function_statement(function)
        assert statement.startswith("CREATE FUNCTION public.add(a integer, b integer) RETURNS integer")
        assert "AS $$SELECT a + b$$" in statement
        assert "IMMUTABLE STRICT" in statement
        assert "SET search_path TO public, pg_catalog" in statement
        assert "SET work_mem TO '64MB'" in statement

    def test_c_function_uses_binary_path(self):
        function = Function(
            oid=1,
            schema_name="public",
            name="complex_in",
            arguments="cstring",
            result_type="complex",
            function_body="complex_in",
            binary_path="$libdir/complex",
            language="c",
        )
        assert "AS '$libdir/complex', 'complex_in'" in function_statement(function)

    def _aggregate_fixture(self):
        func_info = {
            10: FunctionInfo(oid=10, schema_name="public", name="acc"),
            11: FunctionInfo(oid=11, schema_name="pg_catalog", name="int8pl", is_internal=True),
        }
        aggregate = Aggregate(
            oid=50,
            schema_name="public",
            name="mysum",
            arguments="bigint",
            identity_arguments="bigint",
            transition_function=10,
            prelim_function=11,
            transition_data_type="bigint",
            initial_value="0",
            initial_value_is_null=False,
        )
        return aggregate, func_info

    def test_aggregate_gp6_uses_combinefunc(self, tmp_path):
        aggregate, func_info = self._aggregate_fixture()
        toc, path = _print(tmp_path, print_create_aggregates, [aggregate], func_info, {}, GP6)
        statement = _statements(toc, path)[0]
        assert "SFUNC = public.acc" in statement
        assert "COMBINEFUNC = int8pl" in statement
        assert "INITCOND = '0'" in statement
        assert toc.predata_entries[0].name == "mysum(bigint)"

    def test_aggregate_gp5_uses_prefunc(self, tmp_path):
        aggregate, func_info = self._aggregate_fixture()
        toc, path = _print(tmp_path, print_create_aggregates, [aggregate], func_info, {}, GP5)
        assert "PREFUNC = int8pl" in _statements(toc, path)[0]

    def test_cast_contexts(self, tmp_path):
        casts = [
            Cast(oid=1, source_type="text", target_type="complex", function_schema="public",
                 function_name="to_complex", function_args="text", cast_context="a"),
            Cast(oid=2, source_type="complex", target_type="text", cast_method="i", cast_context="e"),
        ]
        toc, path = _print(tmp_path, print_create_casts, casts, {})
        assert _statements(toc, path) == [
            "CREATE CAST (text AS complex) WITH FUNCTION public.to_complex(text) AS ASSIGNMENT;",
            "CREATE CAST (complex AS text) WITH INOUT;",
        ]


# ------------------------------------------------------------------
# Tables
# ------------------------------------------------------------------


class TestTableStatement:
    """CREATE TABLE text for regular, partitioned, external and foreign tables."""

    def test_regular_table(self):
        table = _table(
            1,
            "orders",
            columns=[
                _column("id", not_null=True),
                _column("note", "text", num=2, default_val="'none'::text", encoding="compresstype=zlib"),
            ],
            distribution_policy="DISTRIBUTED BY (id)",
            storage_opts="appendonly=true",
        )
        assert table_statement(table, GP6) == (
            "CREATE TABLE public.orders (\n"
            "\tid integer NOT NULL,\n"
            "\tnote text ENCODING (compresstype=zlib) DEFAULT 'none'::text\n"
            ") WITH (appendonly=true) DISTRIBUTED BY (id);"
        )

    def test_sequence_default_left_out_of_create(self):
        table = _table(1, "orders", columns=[_column("id", default_val="nextval('public.orders_id_seq'::regclass)")])
        assert "nextval" not in table_statement(table, GP6)

    def test_gp6_partition_clause_after_distribution(self):
        table = _table(
            1,
            "sales",
            distribution_policy="DISTRIBUTED BY (id)",
            partition_def="PARTITION BY RANGE(id) (START (1) END (10) EVERY (5))",
            partition_template_def="ALTER TABLE public.sales SET SUBPARTITION TEMPLATE (...)",
        )
        statement = table_statement(table, GP6)
        assert "DISTRIBUTED BY (id) PARTITION BY RANGE(id)" in statement
        assert statement.endswith("SET SUBPARTITION TEMPLATE (...);")

    def test_gp7_partition_clause_and_children(self):
        table = _table(
            1,
            "sales",
            distribution_policy="DISTRIBUTED BY (id)",
            partition_def="PARTITION BY RANGE (id)",
            storage_opts="appendonly=true",
            partitions=[
                PartitionChild(name="public.sales_1", parent="public.sales", bound="FOR VALUES FROM (1) TO (5)"),
            ],
        )
        statement = table_statement(table, GP7)
        assert ") PARTITION BY RANGE (id) WITH (appendonly=true) DISTRIBUTED BY (id);" in statement
        assert "CREATE TABLE public.sales_1 PARTITION OF public.sales FOR VALUES FROM (1) TO (5);" in statement

    def test_inherits(self):
        table = _table(2, "child", inherits=["public.parent"])
        assert ") INHERITS (public.parent);" in table_statement(table, GP6)

    def test_external_table(self):
        table = _table(
            3,
            "ext",
            is_external=True,
            external=ExternalTableDefinition(
                oid=3,
                locations=["gpfdist://etl:8081/orders.csv"],
                format_type="c",
                format_opts="delimiter ','",
                encoding="UTF8",
                reject_limit=10,
                reject_limit_type="r",
                log_errors=True,
            ),
        )
        statement = table_statement(table, GP6)
        assert statement.startswith("CREATE READABLE EXTERNAL TABLE public.ext (")
        assert "'gpfdist://etl:8081/orders.csv'" in statement
        assert "FORMAT 'csv' (delimiter ',')" in statement
        assert "LOG ERRORS SEGMENT REJECT LIMIT 10 ROWS" in statement

    def test_external_web_execute_table(self):
        table = _table(
            4,
            "web",
            is_external=True,
            external=ExternalTableDefinition(oid=4, command="cat /tmp/x", exec_location="MASTER_ONLY"),
        )
        statement = table_statement(table, GP6)
        assert "EXTERNAL WEB TABLE" in statement
        assert "EXECUTE 'cat /tmp/x' ON MASTER" in statement

    def test_foreign_table(self):
        table = _table(5, "remote", foreign=ForeignTableDefinition(oid=5, server="srv", options="table_name 'r'"))
        assert table_statement(table, GP6).endswith("SERVER srv OPTIONS (table_name 'r');")

    def test_column_alterations_follow_create(self):
        table = _table(1, "t", columns=[_column("id", stat_target=200, storage_type="m", comment="key")])
        statement = table_statement(table, GP6)
        assert "ALTER TABLE ONLY public.t ALTER COLUMN id SET STATISTICS 200;" in statement
        assert "ALTER TABLE ONLY public.t ALTER COLUMN id SET STORAGE MAIN;" in statement
        assert "COMMENT ON COLUMN public.t.id IS 'key';" in statement


class TestPrintTables:
    """Tables written as TOC entries."""

    def test_partition_children_skipped(self, tmp_path):
        tables = [_table(1, "root", partition_def="PARTITION BY LIST (x)"), _table(2, "leaf", is_partition_child=True)]
        toc, path = _print(tmp_path, print_create_tables, tables, {}, GP7)
        assert [e.name for e in toc.predata_entries] == ["root"]

    def test_foreign_table_entry_type(self, tmp_path):
        tables = [_table(5, "remote", foreign=ForeignTableDefinition(oid=5, server="srv"))]
        toc, path = _print(tmp_path, print_create_tables, tables, {}, GP6)
        assert toc.predata_entries[0].object_type == "FOREIGN TABLE"

    def test_sequence_defaults_entry(self, tmp_path):
        tables = [
            _table(1, "orders", columns=[_column("id", default_val="nextval('public.orders_id_seq'::regclass)")]),
            _table(2, "plain"),
        ]
        toc, path = _print(tmp_path, print_sequence_defaults, tables)
        assert _statements(toc, path) == [
            "ALTER TABLE ONLY public.orders ALTER COLUMN id SET DEFAULT nextval('public.orders_id_seq'::regclass);"
        ]
        assert toc.predata_entries[0].object_type == "COLUMN DEFAULT"
        assert toc.predata_entries[0].reference_object == "public.orders"

    def test_default_skipped_when_sequence_not_dumped(self, tmp_path, caplog):
        tables = [
            _table(
                1,
                "orders",
                columns=[
                    _column("id", default_val="nextval('public.orders_id_seq'::regclass)"),
                    _column("ref", num=2, default_val="nextval('shared.ref_seq'::regclass)"),
                ],
            )
        ]
        with caplog.at_level("WARNING", logger="db_snapshot.backup.ddl_predata"):
            toc, path = _print(tmp_path, print_sequence_defaults, tables, {"public.orders_id_seq"})
        assert _statements(toc, path) == [
            "ALTER TABLE ONLY public.orders ALTER COLUMN id SET DEFAULT nextval('public.orders_id_seq'::regclass);"
        ]
        assert "shared.ref_seq" in caplog.text

    def test_no_entry_when_every_default_skipped(self, tmp_path):
        tables = [_table(1, "orders", columns=[_column("id", default_val="nextval('public.gone'::regclass)")])]
        toc, path = _print(tmp_path, print_sequence_defaults, tables, set())
        assert toc.predata_entries == []

    @pytest.mark.parametrize(
        "default, target",
        [
            ("nextval('public.orders_id_seq'::regclass)", "public.orders_id_seq"),
            ("nextval('\"My Schema\".\"s''q\"'::regclass)", "\"My Schema\".\"s'q\""),
            ("nextval('public.s')", "public.s"),
            ("now()", None),
        ],
    )
    def test_sequence_default_target(self, default, target):
        assert sequence_default_target(default) == target


# ------------------------------------------------------------------
# Constraints and sequences
# ------------------------------------------------------------------


class TestConstraints:
    """Constraint ordering and ONLY handling."""

    def _constraint(self, oid, name, con_type, table="public.orders"):
        return Constraint(
            oid=oid,
            schema_name="public",
            name=name,
            con_type=con_type,
            con_def="CHECK (x > 0)" if con_type == "c" else "PRIMARY KEY (id)",
            owning_object=table,
        )

    def test_foreign_keys_last(self, tmp_path):
        constraints = [
            self._constraint(1, "fk_a", "f"),
            self._constraint(2, "pk", "p"),
            self._constraint(3, "chk", "c"),
        ]
        toc, path = _print(tmp_path, print_constraints, constraints, {})
        assert [e.name for e in toc.predata_entries] == ["pk", "chk", "fk_a"]
        assert toc.predata_entries[0].reference_object == "public.orders"

    def test_only_omitted_for_partitioned_tables(self, tmp_path):
        constraints = [self._constraint(1, "pk", "p", "public.sales"), self._constraint(2, "pk2", "p")]
        toc, path = _print(tmp_path, print_constraints, constraints, {}, {"public.sales"})
        statements = _statements(toc, path)
        assert statements[0].startswith("ALTER TABLE public.sales ADD CONSTRAINT pk")
        assert statements[1].startswith("ALTER TABLE ONLY public.orders ADD CONSTRAINT pk2")


class TestSequences:
    """CREATE SEQUENCE and the OWNED BY pass."""

    def test_sequence_statement_restores_state(self, tmp_path):
        toc, path = _print(tmp_path, print_create_sequences, [_sequence(1, "s")], {})
        statement = _statements(toc, path)[0]
        assert statement.startswith("CREATE SEQUENCE public.s\n\tSTART WITH 1\n\tINCREMENT BY 1")
        assert "NO MAXVALUE" in statement
        assert "NO MINVALUE" in statement
        assert statement.endswith("SELECT pg_catalog.setval('public.s', 5, true);")

    def test_owned_by_after_every_sequence(self, tmp_path):
        sequences = [
            _sequence(1, "a_id_seq", owning_column="public.a.id", owning_table="public.a"),
            _sequence(2, "b_seq"),
        ]
        toc, path = _print(tmp_path, print_create_sequences, sequences, {})
        types = [e.object_type for e in toc.predata_entries]
        assert types == ["SEQUENCE", "SEQUENCE", "SEQUENCE OWNER"]
        owner = toc.predata_entries[2]
        assert owner.reference_object == "public.a"
        assert read_entry(path, owner) == "ALTER SEQUENCE public.a_id_seq OWNED BY public.a.id;"

    def test_owned_by_skipped_for_table_not_dumped(self, tmp_path):
        sequences = [
            _sequence(1, "a_id_seq", owning_column="public.a.id", owning_table="public.a"),
            _sequence(2, "b_id_seq", owning_column="public.b.id", owning_table="public.b"),
        ]
        toc, path = _print(tmp_path, print_create_sequences, sequences, {}, {"public.a"})
        owners = [e for e in toc.predata_entries if e.object_type == "SEQUENCE OWNER"]
        assert [e.reference_object for e in owners] == ["public.a"]
        assert [e.name for e in toc.predata_entries if e.object_type == "SEQUENCE"] == ["a_id_seq", "b_id_seq"]


# ------------------------------------------------------------------
# Views
# ------------------------------------------------------------------


class TestViewOrdering:
    """Views and materialized views are written referenced-first."""

    def test_view_over_view_sorted(self, tmp_path):
        # oid 10 selects from oid 20, so 20 must be created first
        conn = MagicMock()
        conn.select.return_value = [{"oid": 10, "depends_on": 20}]
        views = [
            View(oid=10, schema_name="public", name="top", definition="SELECT * FROM public.base"),
            View(oid=20, schema_name="public", name="base", definition="SELECT 1"),
        ]
        materialized = [MaterializedView(oid=15, schema_name="public", name="mv", definition="SELECT 2")]

        toc, path = _print(tmp_path, BackupRun._print_views, conn, views, materialized, {})

        assert [e.name for e in toc.predata_entries] == ["base", "top", "mv"]
        assert toc.predata_entries[2].object_type == "MATERIALIZED VIEW"
        assert _statements(toc, path)[2].endswith("WITH NO DATA;")

    @pytest.mark.parametrize("definition", ["SELECT 1;", " SELECT 1 ;\n"])
    def test_view_definition_terminated_once(self, tmp_path, definition):
        conn = MagicMock()
        conn.select.return_value = []
        views = [View(oid=1, schema_name="public", name="v", definition=definition)]
        toc, path = _print(tmp_path, BackupRun._print_views, conn, views, [], {})
        assert _statements(toc, path) == ["CREATE VIEW public.v AS SELECT 1;"]
