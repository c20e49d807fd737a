"""User-defined types: shell, base, composite, enum and domain.

Array types created implicitly alongside another type, and row types
belonging to tables, are never returned: the server recreates both.
"""

import logging

from db_snapshot.adapters.base import DatabaseConnection
from db_snapshot.catalog.filters import RelationFilter, extension_filter_clause, oid_in_clause
from db_snapshot.catalog.models import (
    BaseType,
    CompositeAttribute,
    CompositeType,
    Domain,
    DomainConstraint,
    EnumType,
    ShellType,
)

logger = logging.getLogger(__name__)

_TYPE_SELECT = """
    SELECT t.oid AS oid,
        quote_ident(n.nspname) AS schema_name,
        quote_ident(t.typname) AS name"""

_TYPE_FROM = """
    FROM pg_type t
        JOIN pg_namespace n ON t.typnamespace = n.oid"""


def _type_where(connection: DatabaseConnection, filters: RelationFilter, typtype: str) -> str:
    return f"""
    WHERE t.typtype = '{typtype}'
        AND {filters.schema_clause("n")}
        AND {extension_filter_clause(connection.version, "t")}"""


def get_shell_types(connection: DatabaseConnection, filters: RelationFilter) -> list[ShellType]:
    """Types declared with ``CREATE TYPE name;`` and never defined."""
    query = f"""{_TYPE_SELECT}{_TYPE_FROM}{_type_where(connection, filters, "p")}
        AND NOT t.typisdefined
    ORDER BY t.oid"""
    return [ShellType(**row) for row in connection.select(query)]


def get_base_types(connection: DatabaseConnection, filters: RelationFilter) -> list[BaseType]:
    """Base types with the names of their I/O and typmod functions."""
    if connection.version.at_least("6"):
        category = """,
        t.typcategory AS category,
        t.typispreferred AS preferred"""
    else:
        category = ""
    query = f"""{_TYPE_SELECT},
        t.typinput::regproc::text AS input,
        t.typoutput::regproc::text AS output,
        CASE WHEN t.typreceive = 0 THEN '' ELSE t.typreceive::regproc::text END AS receive,
        CASE WHEN t.typsend = 0 THEN '' ELSE t.typsend::regproc::text END AS send,
        CASE WHEN t.typmodin = 0 THEN '' ELSE t.typmodin::regproc::text END AS modin,
        CASE WHEN t.typmodout = 0 THEN '' ELSE t.typmodout::regproc::text END AS modout,
        t.typlen AS internal_length,
        t.typbyval AS is_passed_by_value,
        t.typalign AS alignment,
        t.typstorage AS storage,
        coalesce(t.typdefault, '') AS default_val,
        CASE WHEN t.typelem <> 0 THEN format_type(t.typelem, NULL) ELSE '' END AS element,
        t.typdelim AS delimiter{category}{_TYPE_FROM}{_type_where(connection, filters, "b")}
        AND t.oid NOT IN (SELECT typarray FROM pg_type WHERE typarray <> 0)
    ORDER BY t.oid"""
    return [BaseType(**row) for row in connection.select(query)]


def get_composite_types(connection: DatabaseConnection, filters: RelationFilter) -> list[CompositeType]:
    """Standalone composite types with their attributes in order."""
    query = f"""{_TYPE_SELECT}{_TYPE_FROM}
        JOIN pg_class c ON t.typrelid = c.oid{_type_where(connection, filters, "c")}
        AND c.relkind = 'c'
    ORDER BY t.oid"""
    rows = connection.select(query)
    if not rows:
        return []

    attribute_query = f"""
    SELECT t.oid AS oid,
        quote_ident(a.attname) AS name,
        format_type(a.atttypid, a.atttypmod) AS type
    FROM pg_type t
        JOIN pg_attribute a ON a.attrelid = t.typrelid
    WHERE {oid_in_clause("t.oid", [row["oid"] for row in rows])}
        AND a.attnum > 0
        AND NOT a.attisdropped
    ORDER BY t.oid, a.attnum"""
    attributes: dict[int, list[CompositeAttribute]] = {}
    for attribute in connection.select(attribute_query):
        attributes.setdefault(attribute.pop("oid"), []).append(CompositeAttribute(**attribute))

    return [CompositeType(**row, attributes=attributes.get(row["oid"], [])) for row in rows]


def get_enum_types(connection: DatabaseConnection, filters: RelationFilter) -> list[EnumType]:
    """Enum types with labels in sort order."""
    sort_column = "e.enumsortorder" if connection.version.at_least("6") else "e.oid"
    query = f"""{_TYPE_SELECT},
        ARRAY(
            SELECT e.enumlabel::text
            FROM pg_enum e
            WHERE e.enumtypid = t.oid
            ORDER BY {sort_column}
        ) AS labels{_TYPE_FROM}{_type_where(connection, filters, "e")}
    ORDER BY t.oid"""
    return [EnumType(**row) for row in connection.select(query)]


def get_domains(connection: DatabaseConnection, filters: RelationFilter) -> list[Domain]:
    """Domains with default, NOT NULL and CHECK constraints."""
    query = f"""{_TYPE_SELECT},
        format_type(t.typbasetype, t.typtypmod) AS base_type,
        coalesce(t.typdefault, '') AS default_val,
        t.typnotnull AS not_null{_TYPE_FROM}{_type_where(connection, filters, "d")}
    ORDER BY t.oid"""
    rows = connection.select(query)
    if not rows:
        return []

    constraint_query = f"""
    SELECT con.contypid AS oid,
        quote_ident(con.conname) AS name,
        pg_get_constraintdef(con.oid, TRUE) AS definition
    FROM pg_constraint con
    WHERE {oid_in_clause("con.contypid", [row["oid"] for row in rows])}
    ORDER BY con.oid"""
    constraints: dict[int, list[DomainConstraint]] = {}
    for constraint in connection.select(constraint_query):
        constraints.setdefault(constraint.pop("oid"), []).append(DomainConstraint(**constraint))

    return [Domain(**row, constraints=constraints.get(row["oid"], [])) for row in rows]
