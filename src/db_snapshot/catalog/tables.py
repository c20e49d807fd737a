"""Table definitions and constraints.

Each query covers every table in the inventory at once, keyed by table oid,
and ``construct_table_definitions`` joins the results into ``Table`` records
in inventory order.

Queries branch on the server version:
- Greenplum 5/6 partitioning is read with ``pg_get_partition_def`` and
  ``pg_get_partition_template_def``.
- Greenplum 7 uses declarative partitioning: the key comes from
  ``pg_get_partkeydef`` and every descendant is listed with its bound.
"""

import logging
from collections.abc import Sequence

from db_snapshot.adapters.base import DatabaseConnection
from db_snapshot.catalog.dependencies import sort_objects
from db_snapshot.catalog.filters import RelationFilter, extension_filter_clause, oid_in_clause
from db_snapshot.catalog.models import (
    ColumnDefinition,
    Constraint,
    ExternalTableDefinition,
    ForeignTableDefinition,
    PartitionChild,
    Relation,
    Table,
    TableDefinition,
)

logger = logging.getLogger(__name__)


def _oid_value_map(connection: DatabaseConnection, query: str) -> dict[int, str]:
    """Run a query selecting ``oid`` and ``value`` columns into a dict."""
    return {row["oid"]: row["value"] for row in connection.select(query)}


# ============================================================================
# Columns
# ============================================================================


def get_column_definitions(
    connection: DatabaseConnection, table_oids: Sequence[int]
) -> dict[int, list[ColumnDefinition]]:
    """Columns of each table in definition order, dropped columns excluded."""
    if not table_oids:
        return {}
    query = f"""
    SELECT a.attrelid AS oid,
        a.attnum AS num,
        quote_ident(a.attname) AS name,
        a.attnotnull AS not_null,
        a.atthasdef AS has_default,
        pg_catalog.format_type(t.oid, a.atttypmod) AS type,
        coalesce(array_to_string(e.attoptions, ','), '') AS encoding,
        a.attstattarget AS stat_target,
        CASE WHEN a.attstorage <> t.typstorage THEN a.attstorage ELSE '' END AS storage_type,
        coalesce(pg_catalog.pg_get_expr(ad.adbin, ad.adrelid), '') AS default_val,
        coalesce(d.description, '') AS comment
    FROM pg_attribute a
        JOIN pg_type t ON a.atttypid = t.oid
        LEFT JOIN pg_attrdef ad ON a.attrelid = ad.adrelid AND a.attnum = ad.adnum
        LEFT JOIN pg_attribute_encoding e ON e.attrelid = a.attrelid AND e.attnum = a.attnum
        LEFT JOIN pg_description d
            ON d.objoid = a.attrelid
            AND d.classoid = 'pg_class'::regclass
            AND d.objsubid = a.attnum
    WHERE {oid_in_clause("a.attrelid", table_oids)}
        AND a.attnum > 0
        AND NOT a.attisdropped
    ORDER BY a.attrelid, a.attnum"""

    columns: dict[int, list[ColumnDefinition]] = {}
    for row in connection.select(query):
        columns.setdefault(row["oid"], []).append(ColumnDefinition(**row))
    return columns


# ============================================================================
# Distribution, partitioning and storage
# ============================================================================


def get_distribution_policies(
    connection: DatabaseConnection,
    table_oids: Sequence[int],
    columns: dict[int, list[ColumnDefinition]],
) -> dict[int, str]:
    """``DISTRIBUTED ...`` clause of each table.

    Greenplum 6+ renders the clause server-side.  On Greenplum 5 the policy
    is a list of attribute numbers resolved here against ``columns``; a table
    with an empty policy is distributed randomly.
    """
    if not table_oids:
        return {}
    if connection.version.at_least("6"):
        query = f"""
    SELECT localoid AS oid,
        pg_catalog.pg_get_table_distributedby(localoid) AS value
    FROM gp_distribution_policy
    WHERE {oid_in_clause("localoid", table_oids)}"""
        return _oid_value_map(connection, query)

    query = f"""
    SELECT localoid AS oid,
        attrnums
    FROM gp_distribution_policy
    WHERE {oid_in_clause("localoid", table_oids)}"""
    policies: dict[int, str] = {}
    for row in connection.select(query):
        if not row["attrnums"]:
            policies[row["oid"]] = "DISTRIBUTED RANDOMLY"
            continue
        names = {col.num: col.name for col in columns.get(row["oid"], [])}
        keys = ", ".join(names[num] for num in row["attrnums"])
        policies[row["oid"]] = f"DISTRIBUTED BY ({keys})"
    return policies


def get_partition_definitions(
    connection: DatabaseConnection, table_oids: Sequence[int]
) -> dict[int, str]:
    """``PARTITION BY`` clause of each partitioned table."""
    if not table_oids:
        return {}
    if connection.version.before("7"):
        value = "pg_get_partition_def(c.oid, true, true)"
    else:
        value = "'PARTITION BY ' || pg_get_partkeydef(c.oid)"
    query = f"""
    SELECT c.oid AS oid,
        {value} AS value
    FROM pg_class c
    WHERE {oid_in_clause("c.oid", table_oids)}"""
    return {oid: definition for oid, definition in _oid_value_map(connection, query).items() if definition}


def get_partition_template_definitions(
    connection: DatabaseConnection, table_oids: Sequence[int]
) -> dict[int, str]:
    """Subpartition templates (Greenplum 5/6 only)."""
    if not table_oids or connection.version.at_least("7"):
        return {}
    query = f"""
    SELECT c.oid AS oid,
        pg_get_partition_template_def(c.oid, true, true) AS value
    FROM pg_class c
    WHERE {oid_in_clause("c.oid", table_oids)}"""
    return {oid: template for oid, template in _oid_value_map(connection, query).items() if template}


def get_partition_children(
    connection: DatabaseConnection, table_oids: Sequence[int]
) -> dict[int, list[PartitionChild]]:
    """Every descendant of each partitioned root, parents before children.

    Greenplum 7 only; earlier versions carry the children inside the root's
    partition definition.
    """
    if not table_oids or connection.version.before("7"):
        return {}
    oid_array = ", ".join(str(int(oid)) for oid in table_oids)
    query = f"""
    SELECT r.oid AS oid,
        quote_ident(n.nspname) || '.' || quote_ident(c.relname) AS name,
        quote_ident(pn.nspname) || '.' || quote_ident(p.relname) AS parent,
        pg_get_expr(c.relpartbound, c.oid) AS bound,
        coalesce('PARTITION BY ' || pg_get_partkeydef(c.oid), '') AS partition_key
    FROM unnest(ARRAY[{oid_array}]::oid[]) AS r(oid)
        CROSS JOIN LATERAL pg_partition_tree(r.oid) AS t
        JOIN pg_class c ON c.oid = t.relid
        JOIN pg_namespace n ON n.oid = c.relnamespace
        JOIN pg_class p ON p.oid = t.parentrelid
        JOIN pg_namespace pn ON pn.oid = p.relnamespace
    WHERE t.level > 0
    ORDER BY r.oid, t.level, c.oid"""

    children: dict[int, list[PartitionChild]] = {}
    for row in connection.select(query):
        root = row.pop("oid")
        children.setdefault(root, []).append(PartitionChild(**row))
    return children


def get_partition_child_oids(connection: DatabaseConnection, table_oids: Sequence[int]) -> set[int]:
    """Which of ``table_oids`` are partitions of another table."""
    if not table_oids:
        return set()
    if connection.version.before("7"):
        query = f"""
    SELECT parchildrelid AS oid
    FROM pg_partition_rule
    WHERE {oid_in_clause("parchildrelid", table_oids)}"""
    else:
        query = f"""
    SELECT oid
    FROM pg_class
    WHERE relispartition
        AND {oid_in_clause("oid", table_oids)}"""
    return {row["oid"] for row in connection.select(query)}


def get_storage_options(connection: DatabaseConnection, table_oids: Sequence[int]) -> dict[int, str]:
    """``WITH (...)`` options of each table that has any."""
    if not table_oids:
        return {}
    query = f"""
    SELECT oid,
        array_to_string(reloptions, ', ') AS value
    FROM pg_class
    WHERE reloptions IS NOT NULL
        AND {oid_in_clause("oid", table_oids)}"""
    return _oid_value_map(connection, query)


def get_tablespaces(connection: DatabaseConnection, table_oids: Sequence[int]) -> dict[int, str]:
    """Non-default tablespace of each table."""
    if not table_oids:
        return {}
    query = f"""
    SELECT c.oid AS oid,
        quote_ident(t.spcname) AS value
    FROM pg_class c
        JOIN pg_tablespace t ON t.oid = c.reltablespace
    WHERE {oid_in_clause("c.oid", table_oids)}"""
    return _oid_value_map(connection, query)


def get_parent_tables(
    connection: DatabaseConnection, table_oids: Sequence[int]
) -> dict[int, list[str]]:
    """Inheritance parents of each table, in declaration order.

    Partitioning is also recorded in pg_inherits; those links are excluded
    here because the partition definition recreates them.
    """
    if not table_oids:
        return {}
    if connection.version.before("7"):
        partition_exclusion = "i.inhrelid NOT IN (SELECT parchildrelid FROM pg_partition_rule)"
    else:
        partition_exclusion = "NOT child.relispartition"
    query = f"""
    SELECT i.inhrelid AS oid,
        quote_ident(n.nspname) || '.' || quote_ident(p.relname) AS value
    FROM pg_inherits i
        JOIN pg_class child ON child.oid = i.inhrelid
        JOIN pg_class p ON p.oid = i.inhparent
        JOIN pg_namespace n ON n.oid = p.relnamespace
    WHERE {oid_in_clause("i.inhrelid", table_oids)}
        AND {partition_exclusion}
    ORDER BY i.inhrelid, i.inhseqno"""

    parents: dict[int, list[str]] = {}
    for row in connection.select(query):
        parents.setdefault(row["oid"], []).append(row["value"])
    return parents


# ============================================================================
# External and foreign tables
# ============================================================================


def get_external_table_definitions(
    connection: DatabaseConnection, table_oids: Sequence[int]
) -> dict[int, ExternalTableDefinition]:
    """Location, format and error handling of external tables."""
    if not table_oids:
        return {}
    if connection.version.before("6"):
        log_errors = "e.fmterrtbl IS NOT NULL"
    else:
        log_errors = "e.logerrors"
    query = f"""
    SELECT e.reloid AS oid,
        coalesce(e.urilocation, '{{}}') AS locations,
        coalesce(array_to_string(e.execlocation, ','), '') AS exec_location,
        e.fmttype AS format_type,
        coalesce(e.fmtopts, '') AS format_opts,
        coalesce(e.command, '') AS command,
        coalesce(e.rejectlimit, 0) AS reject_limit,
        coalesce(e.rejectlimittype, '') AS reject_limit_type,
        {log_errors} AS log_errors,
        pg_encoding_to_char(e.encoding) AS encoding,
        e.writable AS writable
    FROM pg_exttable e
    WHERE {oid_in_clause("e.reloid", table_oids)}"""
    return {row["oid"]: ExternalTableDefinition(**row) for row in connection.select(query)}


def get_foreign_table_definitions(
    connection: DatabaseConnection, table_oids: Sequence[int]
) -> dict[int, ForeignTableDefinition]:
    """Server and options of foreign tables (Greenplum 6+)."""
    if not table_oids or connection.version.before("6"):
        return {}
    query = f"""
    SELECT ft.ftrelid AS oid,
        quote_ident(fs.srvname) AS server,
        coalesce(array_to_string(ARRAY(
            SELECT quote_ident(option_name) || ' ' || quote_literal(option_value)
            FROM pg_options_to_table(ft.ftoptions)
            ORDER BY option_name
        ), ', '), '') AS options
    FROM pg_foreign_table ft
        JOIN pg_foreign_server fs ON ft.ftserver = fs.oid
    WHERE {oid_in_clause("ft.ftrelid", table_oids)}"""
    return {row["oid"]: ForeignTableDefinition(**row) for row in connection.select(query)}


# ============================================================================
# Assembly
# ============================================================================


def construct_table_definitions(
    connection: DatabaseConnection,
    relations: Sequence[Relation],
    external_oids: set[int] | None = None,
) -> list[Table]:
    """Join every per-table query into ``Table`` records, in input order.

    Args:
        connection: Connection inside the backup transaction.
        relations: Tables (and foreign tables) from the Object Inventory.
        external_oids: Oids flagged external by the inventory.

    Returns:
        One ``Table`` per relation, same order as ``relations``.
    """
    external_oids = external_oids or set()
    oids = [relation.oid for relation in relations]

    columns = get_column_definitions(connection, oids)
    distribution = get_distribution_policies(connection, oids, columns)
    partitions = get_partition_definitions(connection, oids)
    templates = get_partition_template_definitions(connection, oids)
    children = get_partition_children(connection, oids)
    child_oids = get_partition_child_oids(connection, oids)
    storage = get_storage_options(connection, oids)
    tablespaces = get_tablespaces(connection, oids)
    parents = get_parent_tables(connection, oids)
    externals = get_external_table_definitions(
        connection, [oid for oid in oids if oid in external_oids]
    )
    foreigns = get_foreign_table_definitions(connection, oids)

    tables: list[Table] = []
    for relation in relations:
        oid = relation.oid
        definition = TableDefinition(
            columns=columns.get(oid, []),
            distribution_policy=distribution.get(oid, ""),
            partition_def=partitions.get(oid, ""),
            partition_template_def=templates.get(oid, ""),
            partitions=children.get(oid, []),
            is_partition_child=oid in child_oids,
            storage_opts=storage.get(oid, ""),
            tablespace=tablespaces.get(oid, ""),
            inherits=parents.get(oid, []),
            is_external=oid in external_oids,
            external=externals.get(oid),
            foreign=foreigns.get(oid),
        )
        tables.append(Table(**relation.model_dump(), definition=definition))

    logger.debug("Constructed definitions for %d table(s)", len(tables))
    return tables


def sort_tables_by_inheritance(tables: Sequence[Table]) -> list[Table]:
    """Order tables so every inheritance parent precedes its children."""
    dependencies = {table.fqn(): set(table.definition.inherits) for table in tables}
    return sort_objects(tables, key=lambda table: table.fqn(), dependencies=dependencies)


# ============================================================================
# Constraints
# ============================================================================


def get_constraints(connection: DatabaseConnection, filters: RelationFilter) -> list[Constraint]:
    """Table constraints in scope, ordered by oid.

    Constraints inherited from a parent table or partition root are
    recreated with it and are not returned.  NOT NULL is part of the column
    definition and is not a constraint here.
    """
    if connection.version.before("6"):
        inherited = "1 = 1"
    else:
        inherited = "con.conislocal"
    if connection.version.before("7"):
        partition_exclusion = "c.oid NOT IN (SELECT parchildrelid FROM pg_partition_rule)"
    else:
        partition_exclusion = "NOT c.relispartition"
    query = f"""
    SELECT con.oid AS oid,
        quote_ident(n.nspname) AS schema_name,
        quote_ident(con.conname) AS name,
        con.contype AS con_type,
        pg_get_constraintdef(con.oid, TRUE) AS con_def,
        quote_ident(n.nspname) || '.' || quote_ident(c.relname) AS owning_object
    FROM pg_constraint con
        JOIN pg_class c ON con.conrelid = c.oid
        JOIN pg_namespace n ON c.relnamespace = n.oid
    WHERE {filters.relation_clause()}
        AND con.contype IN ('c', 'f', 'p', 'u', 'x')
        AND {inherited}
        AND {partition_exclusion}
        AND {extension_filter_clause(connection.version, "c")}
    ORDER BY con.oid"""
    return [Constraint(**row) for row in connection.select(query)]
