"""Post-data objects: indexes, rules and triggers.

These are created after table data is loaded, against fully populated and
fully constrained tables.
"""

import logging

from db_snapshot.adapters.base import DatabaseConnection
from db_snapshot.catalog.filters import RelationFilter, extension_filter_clause
from db_snapshot.catalog.models import IndexDefinition, RuleDefinition, TriggerDefinition

logger = logging.getLogger(__name__)

_OWNER_SELECT = """
        quote_ident(n.nspname) AS schema_name,
        quote_ident(n.nspname) AS owning_schema,
        quote_ident(c.relname) AS owning_table"""


def _partition_child_exclusion(connection: DatabaseConnection, alias: str) -> str:
    """Objects on child partitions are recreated through the partition root."""
    if connection.version.before("7"):
        return f"{alias}.oid NOT IN (SELECT parchildrelid FROM pg_partition_rule)"
    return f"NOT {alias}.relispartition"


def construct_implicit_index_names(connection: DatabaseConnection) -> set[str]:
    """Qualified names of indexes created implicitly by constraints.

    A PRIMARY KEY, UNIQUE or EXCLUDE constraint builds its own index when it
    is restored; emitting that index again would fail on a duplicate name.
    """
    query = """
    SELECT quote_ident(n.nspname) || '.' || quote_ident(ic.relname) AS name
    FROM pg_depend d
        JOIN pg_class ic ON d.objid = ic.oid
        JOIN pg_namespace n ON ic.relnamespace = n.oid
    WHERE d.classid = 'pg_class'::regclass
        AND d.refclassid = 'pg_constraint'::regclass
        AND d.deptype = 'i'
        AND ic.relkind = 'i'"""
    return {row["name"] for row in connection.select(query)}


def get_indexes(
    connection: DatabaseConnection,
    filters: RelationFilter,
    implicit_index_names: set[str] | None = None,
) -> list[IndexDefinition]:
    """Indexes in scope that are not backing a constraint, ordered by oid."""
    if implicit_index_names is None:
        implicit_index_names = construct_implicit_index_names(connection)
    query = f"""
    SELECT i.indexrelid AS oid,
        quote_ident(ic.relname) AS name,{_OWNER_SELECT},
        pg_get_indexdef(i.indexrelid) AS definition,
        coalesce(quote_ident(s.spcname), '') AS tablespace,
        i.indisclustered AS is_clustered
    FROM pg_index i
        JOIN pg_class ic ON ic.oid = i.indexrelid
        JOIN pg_class c ON c.oid = i.indrelid
        JOIN pg_namespace n ON c.relnamespace = n.oid
        LEFT JOIN pg_tablespace s ON ic.reltablespace = s.oid
    WHERE {filters.relation_clause()}
        AND {_partition_child_exclusion(connection, "c")}
        AND {extension_filter_clause(connection.version, "ic")}
    ORDER BY i.indexrelid"""

    indexes = [IndexDefinition(**row) for row in connection.select(query)]
    return [index for index in indexes if index.fqn() not in implicit_index_names]


def get_rules(connection: DatabaseConnection, filters: RelationFilter) -> list[RuleDefinition]:
    """Rewrite rules in scope, excluding the ``_RETURN`` rules behind views."""
    query = f"""
    SELECT r.oid AS oid,
        quote_ident(r.rulename) AS name,{_OWNER_SELECT},
        pg_get_ruledef(r.oid) AS definition
    FROM pg_rewrite r
        JOIN pg_class c ON c.oid = r.ev_class
        JOIN pg_namespace n ON c.relnamespace = n.oid
    WHERE {filters.relation_clause()}
        AND r.rulename <> '_RETURN'
        AND {extension_filter_clause(connection.version, "r")}
    ORDER BY r.oid"""
    return [RuleDefinition(**row) for row in connection.select(query)]


def get_triggers(connection: DatabaseConnection, filters: RelationFilter) -> list[TriggerDefinition]:
    """User triggers in scope; constraint triggers belong to their constraint."""
    if connection.version.before("6"):
        user_trigger = "NOT t.tgisconstraint"
    else:
        user_trigger = "NOT t.tgisinternal"
    query = f"""
    SELECT t.oid AS oid,
        quote_ident(t.tgname) AS name,{_OWNER_SELECT},
        pg_get_triggerdef(t.oid) AS definition
    FROM pg_trigger t
        JOIN pg_class c ON c.oid = t.tgrelid
        JOIN pg_namespace n ON c.relnamespace = n.oid
    WHERE {filters.relation_clause()}
        AND {user_trigger}
        AND {_partition_child_exclusion(connection, "c")}
        AND {extension_filter_clause(connection.version, "t")}
    ORDER BY t.oid"""
    return [TriggerDefinition(**row) for row in connection.select(query)]
