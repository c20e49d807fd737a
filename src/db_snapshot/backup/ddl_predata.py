"""Pre-data phase printers.

Each ``print_*`` function writes one object family into the pre-data file,
one TOC entry per object.  The order in which the orchestrator calls them is
the dependency order of the restored schema:

    schemas, shell types, domains, languages, composite and enum types,
    functions, base types, protocols, aggregates, casts, tables, views,
    materialized views, constraints, sequences, sequence-backed defaults

A base type and its I/O functions reference each other.  The cycle is broken
by declaring every base type as a shell first; the full definition follows
the functions.
"""

import logging
import re
from collections.abc import Sequence

from db_snapshot.adapters.version import GPDBVersion
from db_snapshot.backup.ddl_metadata import comment_statement, metadata_statements, with_metadata
from db_snapshot.backup.toc import MetadataFile
from db_snapshot.catalog.filters import quote_literal
from db_snapshot.catalog.models import (
    Aggregate,
    BaseType,
    Cast,
    ColumnDefinition,
    CompositeType,
    Constraint,
    Domain,
    EnumType,
    ExternalProtocol,
    Function,
    FunctionInfo,
    MaterializedView,
    ObjectMetadata,
    ProceduralLanguage,
    Schema,
    Sequence as SequenceRelation,
    ShellType,
    Table,
    UniqueID,
    View,
    make_fqn,
)

logger = logging.getLogger(__name__)

_NEXTVAL_RE = re.compile(r"nextval\('((?:[^']|'')+)'(?:::regclass)?\)")

MetadataMap = dict[UniqueID, ObjectMetadata]

# Largest and smallest values of a bigint sequence; the server defaults.
SEQUENCE_MAX = 9223372036854775807
SEQUENCE_MIN = -9223372036854775807

ALIGNMENTS = {"c": "char", "s": "int2", "i": "int4", "d": "double"}
STORAGE_TYPES = {"p": "plain", "e": "external", "m": "main", "x": "extended"}
VOLATILITIES = {"i": "IMMUTABLE", "s": "STABLE"}
DATA_ACCESS = {"n": "NO SQL", "r": "READS SQL DATA", "m": "MODIFIES SQL DATA"}
EXEC_LOCATIONS = {
    "m": "EXECUTE ON MASTER",
    "c": "EXECUTE ON COORDINATOR",
    "s": "EXECUTE ON ALL SEGMENTS",
    "i": "EXECUTE ON INITPLAN",
}
EXTERNAL_FORMATS = {"t": "text", "c": "csv", "b": "custom", "a": "avro", "p": "parquet"}


def dollar_quote(body: str) -> str:
    """Quote a function body with a dollar tag that does not occur in it."""
    tag = "$$"
    counter = 0
    while tag in body:
        counter += 1
        tag = f"$_{counter}$"
    return f"{tag}{body}{tag}"


def _guc_assignment(config: str) -> str:
    name, _, value = config.partition("=")
    if name.lower() != "search_path":
        value = quote_literal(value)
    return f"SET {name} TO {value}"


# ============================================================================
# Schemas and types
# ============================================================================


def print_create_schemas(out: MetadataFile, schemas: Sequence[Schema], metadata: MetadataMap) -> None:
    """CREATE every schema except ``public``, which always exists."""
    for schema in schemas:
        block = metadata_statements(metadata.get(schema.unique_id()), "SCHEMA", schema.name)
        if schema.name == "public":
            if block:
                out.write_object(block, schema.name, schema.name, "SCHEMA")
            continue
        out.write_object(with_metadata(f"CREATE SCHEMA {schema.name};", block), schema.name, schema.name, "SCHEMA")


def print_create_shell_types(
    out: MetadataFile,
    shell_types: Sequence[ShellType],
    base_types: Sequence[BaseType],
) -> None:
    """Shell declarations for explicit shell types and every base type."""
    declared = sorted([*shell_types, *base_types], key=lambda t: t.oid)
    for type_ in declared:
        out.write_object(f"CREATE TYPE {type_.fqn()};", type_.schema_name, type_.name, "TYPE")


def print_create_domains(out: MetadataFile, domains: Sequence[Domain], metadata: MetadataMap) -> None:
    for domain in domains:
        statement = f"CREATE DOMAIN {domain.fqn()} AS {domain.base_type}"
        if domain.default_val:
            statement += f" DEFAULT {domain.default_val}"
        if domain.not_null:
            statement += " NOT NULL"
        for constraint in domain.constraints:
            statement += f"\n\tCONSTRAINT {constraint.name} {constraint.definition}"
        statement += ";"
        block = metadata_statements(metadata.get(domain.unique_id()), "DOMAIN", domain.fqn())
        out.write_object(with_metadata(statement, block), domain.schema_name, domain.name, "DOMAIN")


def print_create_composite_and_enum_types(
    out: MetadataFile,
    composite_types: Sequence[CompositeType],
    enum_types: Sequence[EnumType],
    metadata: MetadataMap,
) -> None:
    for type_ in sorted([*composite_types, *enum_types], key=lambda t: t.oid):
        if isinstance(type_, CompositeType):
            attributes = ",\n".join(f"\t{a.name} {a.type}" for a in type_.attributes)
            statement = f"CREATE TYPE {type_.fqn()} AS (\n{attributes}\n);"
        else:
            labels = ",\n".join(f"\t{quote_literal(label)}" for label in type_.labels)
            statement = f"CREATE TYPE {type_.fqn()} AS ENUM (\n{labels}\n);"
        block = metadata_statements(metadata.get(type_.unique_id()), "TYPE", type_.fqn())
        out.write_object(with_metadata(statement, block), type_.schema_name, type_.name, "TYPE")


def print_create_base_types(
    out: MetadataFile,
    base_types: Sequence[BaseType],
    metadata: MetadataMap,
) -> None:
    """Full definitions of base types declared earlier as shells."""
    for type_ in base_types:
        options = [f"INPUT = {type_.input}", f"OUTPUT = {type_.output}"]
        if type_.receive:
            options.append(f"RECEIVE = {type_.receive}")
        if type_.send:
            options.append(f"SEND = {type_.send}")
        if type_.modin:
            options.append(f"TYPMOD_IN = {type_.modin}")
        if type_.modout:
            options.append(f"TYPMOD_OUT = {type_.modout}")
        length = "variable" if type_.internal_length < 0 else str(type_.internal_length)
        options.append(f"INTERNALLENGTH = {length}")
        if type_.is_passed_by_value:
            options.append("PASSEDBYVALUE")
        if type_.alignment in ALIGNMENTS:
            options.append(f"ALIGNMENT = {ALIGNMENTS[type_.alignment]}")
        if type_.storage in STORAGE_TYPES:
            options.append(f"STORAGE = {STORAGE_TYPES[type_.storage]}")
        if type_.default_val:
            options.append(f"DEFAULT = {quote_literal(type_.default_val)}")
        if type_.element:
            options.append(f"ELEMENT = {type_.element}")
        if type_.delimiter != ",":
            options.append(f"DELIMITER = {quote_literal(type_.delimiter)}")
        if type_.category != "U":
            options.append(f"CATEGORY = {quote_literal(type_.category)}")
        if type_.preferred:
            options.append("PREFERRED = true")

        body = ",\n".join(f"\t{option}" for option in options)
        statement = f"CREATE TYPE {type_.fqn()} (\n{body}\n);"
        block = metadata_statements(metadata.get(type_.unique_id()), "TYPE", type_.fqn())
        out.write_object(with_metadata(statement, block), type_.schema_name, type_.name, "TYPE")


# ============================================================================
# Languages, functions and function-referencing objects
# ============================================================================


def _function_name(func_info: dict[int, FunctionInfo], oid: int) -> str:
    """Callable name for a function oid; built-ins are left unqualified."""
    info = func_info[oid]
    return info.name if info.is_internal else info.qualified_name()


def print_create_languages(
    out: MetadataFile,
    languages: Sequence[ProceduralLanguage],
    func_info: dict[int, FunctionInfo],
    metadata: MetadataMap,
) -> None:
    for language in languages:
        trusted = "TRUSTED " if language.pl_trusted else ""
        statement = f"CREATE {trusted}PROCEDURAL LANGUAGE {language.name}"
        if language.handler:
            statement += f" HANDLER {_function_name(func_info, language.handler)}"
        if language.inline:
            statement += f" INLINE {_function_name(func_info, language.inline)}"
        if language.validator:
            statement += f" VALIDATOR {_function_name(func_info, language.validator)}"
        statement += ";"
        block = metadata_statements(metadata.get(language.unique_id()), "LANGUAGE", language.name)
        out.write_object(with_metadata(statement, block), "", language.name, "PROCEDURAL LANGUAGE")


def _function_body(function: Function) -> str:
    if function.language == "c":
        return f"AS {quote_literal(function.binary_path)}, {quote_literal(function.function_body)}"
    return f"AS {dollar_quote(function.function_body)}"


def function_statement(function: Function) -> str:
    """CREATE FUNCTION for one function record."""
    attributes = [f"LANGUAGE {function.language}"]
    if function.is_window:
        attributes.append("WINDOW")
    if function.volatility in VOLATILITIES:
        attributes.append(VOLATILITIES[function.volatility])
    if function.is_strict:
        attributes.append("STRICT")
    if function.is_security_definer:
        attributes.append("SECURITY DEFINER")
    if function.data_access in DATA_ACCESS:
        attributes.append(DATA_ACCESS[function.data_access])
    if function.exec_location in EXEC_LOCATIONS:
        attributes.append(EXEC_LOCATIONS[function.exec_location])
    if function.cost:
        attributes.append(f"COST {function.cost:g}")
    if function.num_rows:
        attributes.append(f"ROWS {function.num_rows:g}")
    attributes.extend(_guc_assignment(config) for config in function.config)

    return (
        f"CREATE FUNCTION {function.fqn()}({function.arguments}) RETURNS {function.result_type}\n"
        f"\t{_function_body(function)}\n"
        f"\t{' '.join(attributes)};"
    )


def print_create_functions(out: MetadataFile, functions: Sequence[Function], metadata: MetadataMap) -> None:
    for function in functions:
        block = metadata_statements(metadata.get(function.unique_id()), "FUNCTION", function.signature())
        out.write_object(
            with_metadata(function_statement(function), block),
            function.schema_name,
            f"{function.name}({function.identity_arguments})",
            "FUNCTION",
        )


def print_create_external_protocols(
    out: MetadataFile,
    protocols: Sequence[ExternalProtocol],
    func_info: dict[int, FunctionInfo],
    metadata: MetadataMap,
) -> None:
    for protocol in protocols:
        functions = []
        if protocol.read_function:
            functions.append(f"readfunc = {_function_name(func_info, protocol.read_function)}")
        if protocol.write_function:
            functions.append(f"writefunc = {_function_name(func_info, protocol.write_function)}")
        if protocol.validator:
            functions.append(f"validatorfunc = {_function_name(func_info, protocol.validator)}")
        trusted = "TRUSTED " if protocol.trusted else ""
        statement = f"CREATE {trusted}PROTOCOL {protocol.name} ({', '.join(functions)});"
        block = metadata_statements(metadata.get(protocol.unique_id()), "PROTOCOL", protocol.name)
        out.write_object(with_metadata(statement, block), "", protocol.name, "PROTOCOL")


def print_create_aggregates(
    out: MetadataFile,
    aggregates: Sequence[Aggregate],
    func_info: dict[int, FunctionInfo],
    metadata: MetadataMap,
    version: GPDBVersion,
) -> None:
    """CREATE AGGREGATE with support functions resolved through ``func_info``.

    Greenplum 5 names the two-phase function PREFUNC and marks ordered
    aggregates with the ORDERED keyword; later versions use COMBINEFUNC and
    carry the ORDER BY in the argument list.
    """
    legacy = version.before("6")
    for aggregate in aggregates:
        options = [
            f"SFUNC = {_function_name(func_info, aggregate.transition_function)}",
            f"STYPE = {aggregate.transition_data_type}",
        ]
        if aggregate.prelim_function:
            keyword = "PREFUNC" if legacy else "COMBINEFUNC"
            options.append(f"{keyword} = {_function_name(func_info, aggregate.prelim_function)}")
        if aggregate.final_function:
            options.append(f"FINALFUNC = {_function_name(func_info, aggregate.final_function)}")
        if not aggregate.initial_value_is_null:
            options.append(f"INITCOND = {quote_literal(aggregate.initial_value)}")
        if aggregate.sort_operator:
            options.append(f"SORTOP = {aggregate.sort_operator}")

        ordered = "ORDERED " if legacy and aggregate.is_ordered else ""
        arguments = aggregate.arguments or "*"
        body = ",\n".join(f"\t{option}" for option in options)
        statement = f"CREATE {ordered}AGGREGATE {aggregate.fqn()}({arguments}) (\n{body}\n);"

        signature = f"{aggregate.fqn()}({aggregate.identity_arguments or '*'})"
        block = metadata_statements(metadata.get(aggregate.unique_id()), "AGGREGATE", signature)
        out.write_object(
            with_metadata(statement, block),
            aggregate.schema_name,
            f"{aggregate.name}({aggregate.identity_arguments or '*'})",
            "AGGREGATE",
        )


def print_create_casts(out: MetadataFile, casts: Sequence[Cast], metadata: MetadataMap) -> None:
    for cast in casts:
        name = f"({cast.source_type} AS {cast.target_type})"
        if cast.cast_method == "i":
            method = "WITH INOUT"
        elif cast.cast_method == "b" or not cast.function_name:
            method = "WITHOUT FUNCTION"
        else:
            function = make_fqn(cast.function_schema, cast.function_name)
            method = f"WITH FUNCTION {function}({cast.function_args})"
        statement = f"CREATE CAST {name} {method}"
        if cast.cast_context == "a":
            statement += " AS ASSIGNMENT"
        elif cast.cast_context == "i":
            statement += " AS IMPLICIT"
        statement += ";"
        block = metadata_statements(metadata.get(cast.unique_id()), "CAST", name)
        out.write_object(with_metadata(statement, block), cast.function_schema, name, "CAST")


# ============================================================================
# Tables
# ============================================================================


def is_sequence_default(column: ColumnDefinition) -> bool:
    """Defaults drawing from a sequence are set once the sequence exists."""
    return "nextval(" in column.default_val


def _column_line(column: ColumnDefinition) -> str:
    line = f"\t{column.name} {column.type}"
    if column.encoding:
        line += f" ENCODING ({column.encoding})"
    if column.default_val and not is_sequence_default(column):
        line += f" DEFAULT {column.default_val}"
    if column.not_null:
        line += " NOT NULL"
    return line


def _column_block(table: Table) -> str:
    return ",\n".join(_column_line(column) for column in table.definition.columns)


def _external_table_statement(table: Table) -> str:
    external = table.definition.external
    kind = "WRITABLE" if external.writable else "READABLE"
    web = " WEB" if external.is_web else ""
    statement = f"CREATE {kind} EXTERNAL{web} TABLE {table.fqn()} (\n{_column_block(table)}\n)"

    if external.command:
        statement += f" EXECUTE {quote_literal(external.command)}{_execute_location(external.exec_location)}"
    else:
        locations = ",\n".join(f"\t{quote_literal(location)}" for location in external.locations)
        statement += f" LOCATION (\n{locations}\n)"

    format_name = EXTERNAL_FORMATS.get(external.format_type, "text")
    statement += f"\nFORMAT {quote_literal(format_name)}"
    if external.format_opts:
        statement += f" ({external.format_opts.strip()})"
    if external.encoding:
        statement += f"\nENCODING {quote_literal(external.encoding)}"
    if external.reject_limit > 0:
        statement += "\n"
        if external.log_errors:
            statement += "LOG ERRORS "
        unit = "PERCENT" if external.reject_limit_type == "p" else "ROWS"
        statement += f"SEGMENT REJECT LIMIT {external.reject_limit} {unit}"
    if external.writable and table.definition.distribution_policy:
        statement += f" {table.definition.distribution_policy}"
    return statement + ";"


def _execute_location(exec_location: str) -> str:
    """ON clause of an EXECUTE external table."""
    location, _, argument = exec_location.partition(":")
    if location == "ALL_SEGMENTS" or not location:
        return " ON ALL"
    if location in ("MASTER_ONLY", "COORDINATOR_ONLY"):
        return " ON MASTER"
    if location == "PER_HOST":
        return " ON HOST"
    if location == "HOST":
        return f" ON HOST {quote_literal(argument)}"
    if location == "SEGMENT_ID":
        return f" ON SEGMENT {argument}"
    if location == "TOTAL_SEGS":
        return f" ON {argument}"
    return " ON ALL"


def _regular_table_statement(table: Table, version: GPDBVersion) -> str:
    definition = table.definition
    statement = f"CREATE TABLE {table.fqn()} (\n{_column_block(table)}\n)"
    if definition.inherits:
        statement += f" INHERITS ({', '.join(definition.inherits)})"
    # declarative partitioning (7+) precedes storage options
    if definition.partition_def and version.at_least("7"):
        statement += f" {definition.partition_def}"
    if definition.storage_opts:
        statement += f" WITH ({definition.storage_opts})"
    if definition.tablespace:
        statement += f" TABLESPACE {definition.tablespace}"
    if definition.distribution_policy:
        statement += f" {definition.distribution_policy}"
    if definition.partition_def and version.before("7"):
        statement += f" {definition.partition_def}"
    statement += ";"

    if definition.partition_template_def:
        statement += f"\n\n{definition.partition_template_def};"
    for child in definition.partitions:
        statement += f"\n\nCREATE TABLE {child.name} PARTITION OF {child.parent} {child.bound}"
        if child.partition_key:
            statement += f" {child.partition_key}"
        statement += ";"
    return statement


def _column_alterations(table: Table) -> list[str]:
    """Per-column settings that CREATE TABLE cannot express."""
    statements: list[str] = []
    for column in table.definition.columns:
        if column.stat_target >= 0:
            statements.append(
                f"ALTER TABLE ONLY {table.fqn()} ALTER COLUMN {column.name} "
                f"SET STATISTICS {column.stat_target};"
            )
        if column.storage_type in STORAGE_TYPES:
            statements.append(
                f"ALTER TABLE ONLY {table.fqn()} ALTER COLUMN {column.name} "
                f"SET STORAGE {STORAGE_TYPES[column.storage_type].upper()};"
            )
    for column in table.definition.columns:
        comment = comment_statement("COLUMN", f"{table.fqn()}.{column.name}", column.comment)
        if comment:
            statements.append(comment)
    return statements


def table_statement(table: Table, version: GPDBVersion) -> str:
    """CREATE statement for a regular, external or foreign table."""
    definition = table.definition
    if definition.foreign is not None:
        statement = (
            f"CREATE FOREIGN TABLE {table.fqn()} (\n{_column_block(table)}\n) "
            f"SERVER {definition.foreign.server}"
        )
        if definition.foreign.options:
            statement += f" OPTIONS ({definition.foreign.options})"
        statement += ";"
    elif definition.is_external and definition.external is not None:
        statement = _external_table_statement(table)
    else:
        statement = _regular_table_statement(table, version)

    alterations = _column_alterations(table)
    if alterations:
        statement += "\n\n" + "\n".join(alterations)
    return statement


def print_create_tables(
    out: MetadataFile,
    tables: Sequence[Table],
    metadata: MetadataMap,
    version: GPDBVersion,
) -> None:
    """CREATE every table in the given order.

    The caller passes tables parents-first.  Child partitions are skipped:
    the partition root's statement creates them.
    """
    for table in tables:
        if table.definition.is_partition_child:
            logger.debug("Skipping CREATE for partition %s; created with its root", table.fqn())
            continue
        is_foreign = table.definition.foreign is not None
        object_type = "FOREIGN TABLE" if is_foreign else "TABLE"
        block = metadata_statements(
            metadata.get(table.unique_id()),
            object_type,
            table.fqn(),
            grant_type="TABLE",
            owner_type="FOREIGN TABLE" if is_foreign else "TABLE",
        )
        out.write_object(with_metadata(table_statement(table, version), block), table.schema_name, table.name, object_type)


def sequence_default_target(default_val: str) -> str | None:
    """Sequence named by a ``nextval('<seq>'::regclass)`` default."""
    match = _NEXTVAL_RE.search(default_val)
    if match is None:
        return None
    return match.group(1).replace("''", "'")


def print_sequence_defaults(
    out: MetadataFile,
    tables: Sequence[Table],
    sequence_names: set[str] | None = None,
) -> None:
    """Column defaults that call ``nextval()``, set after sequences exist.

    When ``sequence_names`` is given, a default drawing from a sequence that
    is not part of the dump is left out with a warning.
    """
    for table in tables:
        if table.definition.is_partition_child:
            continue
        statements = []
        for column in table.definition.columns:
            if not column.default_val or not is_sequence_default(column):
                continue
            target = sequence_default_target(column.default_val)
            if sequence_names is not None and target not in sequence_names:
                logger.warning(
                    "Skipping default of %s.%s: sequence %s is not included in the backup",
                    table.fqn(),
                    column.name,
                    target,
                )
                continue
            statements.append(
                f"ALTER TABLE ONLY {table.fqn()} ALTER COLUMN {column.name} SET DEFAULT {column.default_val};"
            )
        if statements:
            out.write_object("\n".join(statements), table.schema_name, table.name, "COLUMN DEFAULT", table.fqn())


# ============================================================================
# Views
# ============================================================================


def _view_query(definition: str) -> str:
    return definition.strip().rstrip(";").rstrip()


def print_create_views(out: MetadataFile, views: Sequence[View], metadata: MetadataMap) -> None:
    """CREATE VIEW in the given (dependency-sorted) order."""
    for view in views:
        statement = f"CREATE VIEW {view.fqn()}{view.options} AS {_view_query(view.definition)};"
        block = metadata_statements(
            metadata.get(view.unique_id()), "VIEW", view.fqn(), grant_type="TABLE", owner_type="TABLE"
        )
        out.write_object(with_metadata(statement, block), view.schema_name, view.name, "VIEW")


def print_create_materialized_views(
    out: MetadataFile,
    views: Sequence[MaterializedView],
    metadata: MetadataMap,
) -> None:
    """Materialized views are created empty; post-data refreshes them."""
    for view in views:
        tablespace = f" TABLESPACE {view.tablespace}" if view.tablespace else ""
        statement = (
            f"CREATE MATERIALIZED VIEW {view.fqn()}{view.options}{tablespace} "
            f"AS {_view_query(view.definition)}\nWITH NO DATA;"
        )
        block = metadata_statements(
            metadata.get(view.unique_id()), "MATERIALIZED VIEW", view.fqn(), grant_type="TABLE"
        )
        out.write_object(with_metadata(statement, block), view.schema_name, view.name, "MATERIALIZED VIEW")


# ============================================================================
# Constraints and sequences
# ============================================================================


def print_constraints(
    out: MetadataFile,
    constraints: Sequence[Constraint],
    metadata: MetadataMap,
    partitioned_tables: set[str] | None = None,
) -> None:
    """ADD CONSTRAINT for every constraint, foreign keys last.

    A foreign key may reference any table's primary or unique key, so all
    other constraints are in place before the first foreign key.
    Constraints on a partition root are added without ONLY so they reach
    every partition.
    """
    partitioned_tables = partitioned_tables or set()
    ordered = [c for c in constraints if c.con_type != "f"] + [c for c in constraints if c.con_type == "f"]
    for constraint in ordered:
        only = "" if constraint.owning_object in partitioned_tables else "ONLY "
        statement = (
            f"ALTER TABLE {only}{constraint.owning_object} "
            f"ADD CONSTRAINT {constraint.name} {constraint.con_def};"
        )
        block = metadata_statements(
            metadata.get(constraint.unique_id()),
            "CONSTRAINT",
            constraint.name,
            comment_name=f"{constraint.name} ON {constraint.owning_object}",
        )
        out.write_object(
            with_metadata(statement, block),
            constraint.schema_name,
            constraint.name,
            "CONSTRAINT",
            constraint.owning_object,
        )


def sequence_statement(sequence: SequenceRelation) -> str:
    """CREATE SEQUENCE followed by the setval that restores its state."""
    definition = sequence.definition
    lines = [f"CREATE SEQUENCE {sequence.fqn()}"]
    if definition.start_val:
        lines.append(f"\tSTART WITH {definition.start_val}")
    lines.append(f"\tINCREMENT BY {definition.increment}")

    ascending = definition.increment > 0
    default_max = SEQUENCE_MAX if ascending else -1
    default_min = 1 if ascending else SEQUENCE_MIN
    if definition.max_val == default_max:
        lines.append("\tNO MAXVALUE")
    else:
        lines.append(f"\tMAXVALUE {definition.max_val}")
    if definition.min_val == default_min:
        lines.append("\tNO MINVALUE")
    else:
        lines.append(f"\tMINVALUE {definition.min_val}")
    lines.append(f"\tCACHE {definition.cache_val}")
    if definition.is_cycled:
        lines.append("\tCYCLE")

    is_called = "true" if definition.is_called else "false"
    return (
        "\n".join(lines)
        + ";\n\n"
        + f"SELECT pg_catalog.setval({quote_literal(sequence.fqn())}, {definition.last_val}, {is_called});"
    )


def print_create_sequences(
    out: MetadataFile,
    sequences: Sequence[SequenceRelation],
    metadata: MetadataMap,
    table_names: set[str] | None = None,
) -> None:
    """CREATE each sequence, then link owned sequences to their column.

    When ``table_names`` is given, the OWNED BY link is only written for
    sequences whose owning table is part of the dump.
    """
    for sequence in sequences:
        block = metadata_statements(
            metadata.get(sequence.unique_id()),
            "SEQUENCE",
            sequence.fqn(),
            owner_type="TABLE",
        )
        out.write_object(
            with_metadata(sequence_statement(sequence), block),
            sequence.schema_name,
            sequence.name,
            "SEQUENCE",
        )

    for sequence in sequences:
        if not sequence.definition.owning_column:
            continue
        if table_names is not None and sequence.definition.owning_table not in table_names:
            continue
        out.write_object(
            f"ALTER SEQUENCE {sequence.fqn()} OWNED BY {sequence.definition.owning_column};",
            sequence.schema_name,
            sequence.name,
            "SEQUENCE OWNER",
            sequence.definition.owning_table,
        )


def partitioned_table_names(tables: Sequence[Table]) -> set[str]:
    return {table.fqn() for table in tables if table.definition.partition_def}

