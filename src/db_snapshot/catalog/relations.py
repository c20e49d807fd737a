"""Object Inventory: relations, sequences, views and their ownership edges.

Every enumeration is ordered by ascending oid.  Oid order follows creation
order, does not depend on names colliding across schemas, and keeps TOC
offsets reproducible across runs against an unmodified catalog.

Child partitions are left out of the table inventory unless
``leaf_partition_data`` is set: by default a partitioned table is dumped as a
single object whose DDL defines its partitions.
"""

import logging

from db_snapshot.adapters.base import DatabaseConnection
from db_snapshot.catalog.filters import (
    RelationFilter,
    extension_filter_clause,
    oid_in_clause,
    quote_literal,
)
from db_snapshot.catalog.models import (
    MaterializedView,
    Relation,
    Sequence,
    SequenceDefinition,
    View,
    make_fqn,
)

logger = logging.getLogger(__name__)

_RELATION_SELECT = """
    SELECT n.oid AS schema_oid,
        c.oid AS oid,
        quote_ident(n.nspname) AS schema_name,
        quote_ident(c.relname) AS name
    FROM pg_class c
        JOIN pg_namespace n ON c.relnamespace = n.oid"""


def _partition_filter(connection: DatabaseConnection, leaf_partition_data: bool) -> str:
    """Restrict the table inventory to the requested partition granularity.

    By default every child partition is left out (external leaves excepted
    on Greenplum 5/6).  With ``leaf_partition_data`` only intermediate levels
    are left out: roots and leaves are kept, so every row is reachable
    through exactly one inventory entry.
    """
    if connection.version.before("7"):
        if leaf_partition_data:
            return """
        AND c.oid NOT IN (
            SELECT p.parchildrelid
            FROM pg_partition_rule p
            WHERE p.parchildrelid IN (SELECT inhparent FROM pg_inherits))"""
        return """
        AND c.oid NOT IN (
            SELECT p.parchildrelid
            FROM pg_partition_rule p
                LEFT JOIN pg_exttable e ON p.parchildrelid = e.reloid
            WHERE e.reloid IS NULL)"""
    if leaf_partition_data:
        return """
        AND NOT (c.relispartition AND c.relkind = 'p')"""
    return """
        AND NOT c.relispartition"""


def get_user_table_relations(
    connection: DatabaseConnection,
    filters: RelationFilter,
    leaf_partition_data: bool = False,
) -> list[Relation]:
    """All user tables in scope, ordered by oid.

    With relation includes, exactly the included tables are returned (child
    partitions named explicitly are kept).  External tables are ordinary
    relations here; ``get_external_table_oids`` flags them.
    """
    relkinds = "'r'" if connection.version.before("7") else "'r', 'p'"

    partition_filter = ""
    if not filters.has_relation_includes:
        partition_filter = _partition_filter(connection, leaf_partition_data)

    query = f"""{_RELATION_SELECT}
    WHERE {filters.relation_clause()}{partition_filter}
        AND c.relkind IN ({relkinds})
        AND {extension_filter_clause(connection.version, "c")}
    ORDER BY c.oid"""

    tables = [Relation(**row) for row in connection.select(query)]
    logger.debug("Found %d user table(s)", len(tables))
    return tables


def get_foreign_table_relations(
    connection: DatabaseConnection, filters: RelationFilter
) -> list[Relation]:
    """All foreign tables in scope, ordered by oid (Greenplum 6+)."""
    if connection.version.before("6"):
        return []
    query = f"""{_RELATION_SELECT}
    WHERE {filters.relation_clause()}
        AND c.relkind = 'f'
        AND {extension_filter_clause(connection.version, "c")}
    ORDER BY c.oid"""
    return [Relation(**row) for row in connection.select(query)]


def get_external_table_oids(
    connection: DatabaseConnection, filters: RelationFilter
) -> set[int]:
    """Oids of external tables in scope.

    External tables keep their data outside the cluster; their DDL is dumped
    but their data is not.
    """
    if connection.version.before("6"):
        external_condition = "c.relstorage = 'x'"
    else:
        external_condition = "c.oid IN (SELECT reloid FROM pg_exttable)"
    query = f"""
    SELECT c.oid AS oid
    FROM pg_class c
        JOIN pg_namespace n ON c.relnamespace = n.oid
    WHERE {filters.relation_clause()}
        AND {external_condition}"""
    return {row["oid"] for row in connection.select(query)}


# ============================================================================
# Sequences
# ============================================================================


def get_all_sequence_relations(
    connection: DatabaseConnection, filters: RelationFilter
) -> list[Relation]:
    """All sequences in scope, ordered by oid."""
    query = f"""{_RELATION_SELECT}
    WHERE c.relkind = 'S'
        AND {filters.relation_clause()}
        AND {extension_filter_clause(connection.version, "c")}
    ORDER BY c.oid"""
    return [Relation(**row) for row in connection.select(query)]


def get_sequence_definition(connection: DatabaseConnection, sequence_fqn: str) -> SequenceDefinition:
    """Read one sequence's parameters and current state.

    Greenplum 7 keeps parameters in pg_sequence; earlier versions expose them
    as columns of the sequence relation itself.
    """
    if connection.version.at_least("7"):
        query = f"""
    SELECT s.last_value AS last_val,
        p.seqstart AS start_val,
        p.seqincrement AS increment,
        p.seqmax AS max_val,
        p.seqmin AS min_val,
        p.seqcache AS cache_val,
        s.log_cnt AS log_cnt,
        p.seqcycle AS is_cycled,
        s.is_called AS is_called
    FROM {sequence_fqn} s, pg_sequence p
    WHERE p.seqrelid = {quote_literal(sequence_fqn)}::regclass"""
    else:
        start_select = "start_value AS start_val," if connection.version.at_least("6") else ""
        query = f"""
    SELECT last_value AS last_val,
        {start_select}
        increment_by AS increment,
        max_value AS max_val,
        min_value AS min_val,
        cache_value AS cache_val,
        log_cnt AS log_cnt,
        is_cycled AS is_cycled,
        is_called AS is_called
    FROM {sequence_fqn}"""
    return SequenceDefinition(**connection.get(query))


def get_sequence_column_owner_map(
    connection: DatabaseConnection, filters: RelationFilter
) -> tuple[dict[str, str], dict[str, str]]:
    """Which table (and column) owns each sequence.

    Returns:
        Tuple of (sequence fqn -> owning table fqn,
        sequence fqn -> owning ``schema.table.column``).
    """
    query = f"""
    SELECT quote_ident(n.nspname) AS schema_name,
        quote_ident(s.relname) AS name,
        quote_ident(tn.nspname) AS table_schema,
        quote_ident(c.relname) AS table_name,
        quote_ident(a.attname) AS column_name
    FROM pg_depend d
        JOIN pg_attribute a ON a.attrelid = d.refobjid AND a.attnum = d.refobjsubid
        JOIN pg_class s ON s.oid = d.objid
        JOIN pg_class c ON c.oid = d.refobjid
        JOIN pg_namespace n ON n.oid = s.relnamespace
        JOIN pg_namespace tn ON tn.oid = c.relnamespace
    WHERE s.relkind = 'S'
        AND d.classid = 'pg_class'::regclass
        AND d.refclassid = 'pg_class'::regclass
        AND d.deptype = 'a'
        AND {filters.relation_clause("n", "s")}"""

    owner_tables: dict[str, str] = {}
    owner_columns: dict[str, str] = {}
    for row in connection.select(query):
        sequence_fqn = make_fqn(row["schema_name"], row["name"])
        table_fqn = make_fqn(row["table_schema"], row["table_name"])
        owner_tables[sequence_fqn] = table_fqn
        owner_columns[sequence_fqn] = f"{table_fqn}.{row['column_name']}"
    return owner_tables, owner_columns


def get_all_sequences(
    connection: DatabaseConnection,
    filters: RelationFilter,
    owner_tables: dict[str, str] | None = None,
    owner_columns: dict[str, str] | None = None,
) -> list[Sequence]:
    """Sequences in scope joined with their definitions and owners.

    Owner links come from ``get_sequence_column_owner_map`` and are attached
    after the definition is read.
    """
    if owner_tables is None or owner_columns is None:
        owner_tables, owner_columns = get_sequence_column_owner_map(connection, filters)

    sequences: list[Sequence] = []
    for relation in get_all_sequence_relations(connection, filters):
        definition = get_sequence_definition(connection, relation.fqn())
        definition = definition.model_copy(
            update={
                "owning_table": owner_tables.get(relation.fqn(), ""),
                "owning_column": owner_columns.get(relation.fqn(), ""),
            }
        )
        sequences.append(Sequence(**relation.model_dump(), definition=definition))
    return sequences


# ============================================================================
# Views
# ============================================================================


def get_all_views(
    connection: DatabaseConnection, filters: RelationFilter
) -> tuple[list[View], list[MaterializedView]]:
    """Regular and materialized views in scope, ordered by oid.

    One query returns both kinds; the result is split on the materialized
    flag so the two stay distinguishable for phase placement.  Materialized
    views exist from Greenplum 7.
    """
    select = """
    SELECT c.oid AS oid,
        quote_ident(n.nspname) AS schema_name,
        quote_ident(c.relname) AS name,
        pg_get_viewdef(c.oid) AS definition"""
    if connection.version.at_least("6"):
        select += """,
        coalesce(' WITH (' || array_to_string(c.reloptions, ', ') || ')', '') AS options"""
    from_clause = """
    FROM pg_class c
        LEFT JOIN pg_namespace n ON n.oid = c.relnamespace"""
    if connection.version.at_least("7"):
        select += """,
        coalesce(quote_ident(t.spcname), '') AS tablespace,
        c.relkind = 'm' AS is_materialized"""
        from_clause += """
        LEFT JOIN pg_tablespace t ON t.oid = c.reltablespace"""
        where = "\n    WHERE c.relkind IN ('m', 'v')"
    else:
        where = "\n    WHERE c.relkind = 'v'"
    where += f"""
        AND {filters.relation_clause()}
        AND {extension_filter_clause(connection.version, "c")}
    ORDER BY c.oid"""

    regular: list[View] = []
    materialized: list[MaterializedView] = []
    for row in connection.select(select + from_clause + where):
        view = View(**row)
        if view.is_materialized:
            materialized.append(view.to_materialized())
        else:
            regular.append(view)
    return regular, materialized


def get_view_dependencies(
    connection: DatabaseConnection, view_oids: list[int]
) -> dict[int, set[int]]:
    """For each view, the other views/relations its rewrite rule references."""
    if not view_oids:
        return {}
    query = f"""
    SELECT DISTINCT r.ev_class AS oid,
        d.refobjid AS depends_on
    FROM pg_depend d
        JOIN pg_rewrite r ON d.objid = r.oid
    WHERE d.classid = 'pg_rewrite'::regclass
        AND d.refclassid = 'pg_class'::regclass
        AND d.refobjid <> r.ev_class
        AND {oid_in_clause("r.ev_class", view_oids)}"""
    dependencies: dict[int, set[int]] = {oid: set() for oid in view_oids}
    for row in connection.select(query):
        dependencies[row["oid"]].add(row["depends_on"])
    return dependencies
