"""Filter Resolver: user include/exclude options -> reusable SQL predicates.

Resolution happens once per run, before the backup transaction opens, and
produces an immutable ``RelationFilter`` that every catalog query receives
explicitly.  Any schema or relation name that matches nothing in the catalog
is a ``ConfigurationError``: the run fails before a single lock is taken.

Predicates are built for fixed table aliases: ``n`` for pg_namespace and
``c`` for pg_class unless the caller passes others.  They contain no ``%``
characters, so they can be embedded in queries that also carry bound
parameters.

Usage:
    filters = resolve_filters(conn, options)
    query = f"SELECT ... FROM pg_class c JOIN pg_namespace n ON ... WHERE {filters.relation_clause()}"
"""

import logging
import string
from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict

from db_snapshot.adapters.base import DatabaseConnection
from db_snapshot.adapters.version import GPDBVersion
from db_snapshot.config.models import BackupOptions
from db_snapshot.errors import ConfigurationError

logger = logging.getLogger(__name__)

_BARE_IDENT_CHARS = frozenset(string.ascii_lowercase + string.digits + "_")

# Schemas that belong to the server, never to the user.
SYSTEM_SCHEMAS = (
    "gp_toolkit",
    "information_schema",
    "pg_aoseg",
    "pg_bitmapindex",
    "pg_catalog",
)


def quote_literal(value: str) -> str:
    """Quote a string as a SQL literal (standard_conforming_strings on)."""
    return "'" + value.replace("'", "''") + "'"


def quote_ident(name: str) -> str:
    """Quote an identifier the way the server's ``quote_ident()`` does.

    Lower-case names made of letters, digits and underscores stay bare.
    """
    if name and name[0] not in string.digits and all(ch in _BARE_IDENT_CHARS for ch in name):
        return name
    return '"' + name.replace('"', '""') + '"'


def literal_list(values: Iterable[str]) -> str:
    """Comma-separated SQL literals for an IN list."""
    return ", ".join(quote_literal(v) for v in values)


def oid_in_clause(expression: str, oids: Iterable[int], negate: bool = False) -> str:
    """Build ``expr IN (...)`` over integer oids, valid for an empty list too.

    Example:
        >>> oid_in_clause("c.oid", [3, 1])
        'c.oid IN (3, 1)'
        >>> oid_in_clause("c.oid", [])
        '1 = 0'
    """
    oid_list = [int(oid) for oid in oids]
    if not oid_list:
        return "1 = 1" if negate else "1 = 0"
    operator = "NOT IN" if negate else "IN"
    return f"{expression} {operator} ({', '.join(str(oid) for oid in oid_list)})"


def extension_filter_clause(version: GPDBVersion, alias: str) -> str:
    """Exclude objects owned by an installed extension.

    Those objects are recreated by reinstalling the extension, so they are
    never dumped on their own.  Extensions do not exist before Greenplum 5.
    """
    if version.before("5"):
        return "1 = 1"
    return f"{alias}.oid NOT IN (SELECT objid FROM pg_depend WHERE deptype = 'e')"


class RelationFilter(BaseModel):
    """Resolved object scope for one backup run.

    Attributes:
        include_schemas: Only these schemas (raw names).
        exclude_schemas: Never these schemas (raw names).
        include_oids: Explicit relation membership; replaces schema filtering.
        exclude_oids: Relations removed from whatever the schema filter keeps.
    """

    model_config = ConfigDict(frozen=True)

    include_schemas: tuple[str, ...] = ()
    exclude_schemas: tuple[str, ...] = ()
    include_oids: tuple[int, ...] = ()
    exclude_oids: tuple[int, ...] = ()

    @property
    def has_relation_includes(self) -> bool:
        return bool(self.include_oids)

    def schema_clause(self, alias: str = "n") -> str:
        """Predicate restricting ``alias`` (a pg_namespace row) to user schemas."""
        clause = (
            f"{alias}.nspname !~ '^pg_temp_' "
            f"AND {alias}.nspname !~ '^pg_toast' "
            f"AND {alias}.nspname NOT IN ({literal_list(SYSTEM_SCHEMAS)})"
        )
        if self.include_schemas:
            clause += f"\n\tAND {alias}.nspname IN ({literal_list(self.include_schemas)})"
        if self.exclude_schemas:
            clause += f"\n\tAND {alias}.nspname NOT IN ({literal_list(self.exclude_schemas)})"
        return clause

    def relation_clause(self, namespace_alias: str = "n", class_alias: str = "c") -> str:
        """Predicate restricting a pg_class row to the backup scope.

        With relation includes the predicate is a pure OID membership test;
        otherwise it is the schema predicate minus excluded relations.
        """
        if self.include_oids:
            return oid_in_clause(f"{class_alias}.oid", self.include_oids)

        clause = self.schema_clause(namespace_alias)
        if self.exclude_oids:
            clause += "\n\tAND " + oid_in_clause(f"{class_alias}.oid", self.exclude_oids, negate=True)
        return clause


def get_oids_from_relation_list(
    connection: DatabaseConnection, relation_names: list[str]
) -> dict[str, int]:
    """Map ``schema.relation`` names to pg_class oids.

    Names are matched against raw (unquoted) catalog names.  Names with no
    match are absent from the result.
    """
    if not relation_names:
        return {}
    query = """
    SELECT c.oid AS oid,
        n.nspname || '.' || c.relname AS fqn
    FROM pg_class c
        JOIN pg_namespace n ON c.relnamespace = n.oid
    WHERE n.nspname || '.' || c.relname = ANY(%s)
    ORDER BY c.oid"""
    rows = connection.select(query, (list(relation_names),))
    return {row["fqn"]: row["oid"] for row in rows}


def get_owned_sequence_oids(connection: DatabaseConnection, table_oids: Iterable[int]) -> tuple[int, ...]:
    """Oids of the sequences owned by columns of ``table_oids``."""
    table_oids = list(table_oids)
    if not table_oids:
        return ()
    query = """
    SELECT d.objid AS oid
    FROM pg_depend d
        JOIN pg_class s ON s.oid = d.objid
    WHERE s.relkind = 'S'
        AND d.classid = 'pg_class'::regclass
        AND d.refclassid = 'pg_class'::regclass
        AND d.deptype = 'a'
        AND d.refobjid = ANY(%s::oid[])
    ORDER BY d.objid"""
    return tuple(row["oid"] for row in connection.select(query, (table_oids,)))


def _get_existing_schemas(connection: DatabaseConnection, schema_names: list[str]) -> set[str]:
    if not schema_names:
        return set()
    query = "SELECT nspname FROM pg_namespace WHERE nspname = ANY(%s)"
    return {row["nspname"] for row in connection.select(query, (list(schema_names),))}


def _resolve_relations(
    connection: DatabaseConnection, relation_names: list[str], kind: str
) -> tuple[int, ...]:
    resolved = get_oids_from_relation_list(connection, relation_names)
    missing = [name for name in relation_names if name not in resolved]
    if missing:
        raise ConfigurationError(
            f"{kind} relation(s) not found in database: {', '.join(missing)}"
        )
    # Preserve caller order, drop duplicates
    return tuple(dict.fromkeys(resolved[name] for name in relation_names))


def resolve_filters(connection: DatabaseConnection, options: BackupOptions) -> RelationFilter:
    """Resolve options against the live catalog.

    Args:
        connection: Open connection (no transaction required).
        options: Validated backup options.

    Returns:
        An immutable ``RelationFilter`` for the run.

    Raises:
        ConfigurationError: If any schema or relation name resolves to nothing.
    """
    for kind, schemas in (("Include", options.include_schemas), ("Exclude", options.exclude_schemas)):
        missing = sorted(set(schemas) - _get_existing_schemas(connection, schemas))
        if missing:
            raise ConfigurationError(
                f"{kind} schema(s) not found in database: {', '.join(missing)}"
            )

    include_oids = _resolve_relations(connection, options.include_relations, "Include")
    exclude_oids = _resolve_relations(connection, options.exclude_relations, "Exclude")

    if include_oids and exclude_oids:
        include_oids = tuple(oid for oid in include_oids if oid not in set(exclude_oids))
        if not include_oids:
            raise ConfigurationError("Every included relation is also excluded")

    if include_oids:
        # Sequences follow the tables that own them
        owned = [oid for oid in get_owned_sequence_oids(connection, include_oids) if oid not in exclude_oids]
        include_oids = tuple(dict.fromkeys([*include_oids, *owned]))

    logger.debug(
        "Resolved filters: %d included, %d excluded relation(s)",
        len(include_oids),
        len(exclude_oids),
    )
    return RelationFilter(
        include_schemas=tuple(options.include_schemas),
        exclude_schemas=tuple(options.exclude_schemas),
        include_oids=include_oids,
        exclude_oids=exclude_oids,
    )
