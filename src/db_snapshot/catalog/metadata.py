"""Ownership, privilege and comment extraction.

One query per object family gathers owner, ACL and comment for every object
in a catalog, keyed by ``UniqueID`` so that the printers can look metadata up
for any definition record without another round trip.

Usage:
    relation_meta = get_metadata_for_object_type(conn, filters, RELATION_PARAMS)
    relation_meta[table.unique_id()].owner
"""

import re
from typing import Literal

from pydantic import BaseModel, ConfigDict

from db_snapshot.adapters.base import DatabaseConnection
from db_snapshot.catalog.filters import RelationFilter, extension_filter_clause
from db_snapshot.catalog.models import ACL, ObjectMetadata, UniqueID

# aclitem privilege letters, in the order GRANT lists them.
PRIVILEGE_CODES: dict[str, str] = {
    "r": "SELECT",
    "a": "INSERT",
    "w": "UPDATE",
    "d": "DELETE",
    "D": "TRUNCATE",
    "x": "REFERENCES",
    "t": "TRIGGER",
    "X": "EXECUTE",
    "U": "USAGE",
    "C": "CREATE",
    "T": "TEMPORARY",
    "c": "CONNECT",
}

# grantee=privileges/grantor; grantee is empty for PUBLIC and may be quoted
_ACL_RE = re.compile(r'^(?P<grantee>"(?:[^"]|"")*"|[^=]*)=(?P<privs>[a-zA-Z*]*)/(?P<grantor>.*)$')


def parse_acl(aclitem: str) -> ACL | None:
    """Parse one ``aclitem`` text value.

    Returns:
        The parsed ACL, or None if the string is not an aclitem.

    Example:
        >>> parse_acl("alice=r*w/postgres")
        ACL(grantee='alice', privileges=['SELECT', 'UPDATE'], grantable=['SELECT'])
        >>> parse_acl("=U/postgres").grantee
        ''
    """
    match = _ACL_RE.match(aclitem.strip())
    if not match:
        return None

    grantee = match.group("grantee")
    if grantee.startswith("group "):
        grantee = grantee[len("group "):]

    privileges: list[str] = []
    grantable: list[str] = []
    codes = match.group("privs")
    for i, code in enumerate(codes):
        if code == "*":
            continue
        privilege = PRIVILEGE_CODES.get(code)
        if privilege is None:
            continue
        privileges.append(privilege)
        if i + 1 < len(codes) and codes[i + 1] == "*":
            grantable.append(privilege)

    return ACL(grantee=grantee, privileges=privileges, grantable=grantable)


# ============================================================================
# Query parameters per object family
# ============================================================================


class MetadataQueryParams(BaseModel):
    """Which columns of a catalog hold owner/ACL, and how to scope it.

    Attributes:
        catalog_table: Catalog holding the objects (also the comment classoid).
        oid_field: Column holding the object oid.
        acl_field: ACL column, or "" when the catalog has none.
        owner_field: Owner column, or "" when the catalog has none.
        namespace_field: Column joining to pg_namespace (scope "schema").
        scope: How the filter applies: "relation" (pg_class rows),
            "namespace" (pg_namespace rows), "schema" (objects in a schema)
            or "none" (cluster-wide objects).
        shared: Shared catalogs store comments in pg_shdescription.
        where: Extra predicate on the catalog alias ``o``.
        extension_filter: Drop objects owned by an extension.
    """

    model_config = ConfigDict(frozen=True)

    catalog_table: str
    oid_field: str = "oid"
    acl_field: str = ""
    owner_field: str = ""
    namespace_field: str = ""
    scope: Literal["relation", "namespace", "schema", "none"] = "none"
    shared: bool = False
    where: str = ""
    extension_filter: bool = False


SCHEMA_PARAMS = MetadataQueryParams(
    catalog_table="pg_namespace", acl_field="nspacl", owner_field="nspowner", scope="namespace"
)
RELATION_PARAMS = MetadataQueryParams(
    catalog_table="pg_class",
    acl_field="relacl",
    owner_field="relowner",
    namespace_field="relnamespace",
    scope="relation",
    extension_filter=True,
)
FUNCTION_PARAMS = MetadataQueryParams(
    catalog_table="pg_proc",
    acl_field="proacl",
    owner_field="proowner",
    namespace_field="pronamespace",
    scope="schema",
    extension_filter=True,
)
LANGUAGE_PARAMS = MetadataQueryParams(
    catalog_table="pg_language", acl_field="lanacl", owner_field="lanowner", extension_filter=True
)
PROTOCOL_PARAMS = MetadataQueryParams(
    catalog_table="pg_extprotocol", acl_field="ptcacl", owner_field="ptcowner"
)
DATABASE_PARAMS = MetadataQueryParams(
    catalog_table="pg_database",
    acl_field="datacl",
    owner_field="datdba",
    shared=True,
    where="o.datname = current_database()",
)
ROLE_PARAMS = MetadataQueryParams(catalog_table="pg_authid", shared=True)
RESOURCE_QUEUE_PARAMS = MetadataQueryParams(catalog_table="pg_resqueue", shared=True)

# Comment-only families
CONSTRAINT_PARAMS = MetadataQueryParams(catalog_table="pg_constraint")
CAST_PARAMS = MetadataQueryParams(catalog_table="pg_cast")
RULE_PARAMS = MetadataQueryParams(catalog_table="pg_rewrite")
TRIGGER_PARAMS = MetadataQueryParams(catalog_table="pg_trigger")
INDEX_PARAMS = MetadataQueryParams(catalog_table="pg_index")


def type_params(connection: DatabaseConnection) -> MetadataQueryParams:
    """pg_type gained an ACL column in Greenplum 6."""
    return MetadataQueryParams(
        catalog_table="pg_type",
        acl_field="typacl" if connection.version.at_least("6") else "",
        owner_field="typowner",
        namespace_field="typnamespace",
        scope="schema",
        extension_filter=True,
    )


# ============================================================================
# Queries
# ============================================================================


def _build_metadata_query(
    connection: DatabaseConnection,
    filters: RelationFilter,
    params: MetadataQueryParams,
    comment_class: str,
) -> str:
    acl_select = f"o.{params.acl_field}::text[]" if params.acl_field else "NULL::text[]"
    owner_select = (
        f"quote_ident(pg_get_userbyid(o.{params.owner_field}))" if params.owner_field else "''"
    )
    description_table = "pg_shdescription" if params.shared else "pg_description"
    subid_join = "" if params.shared else " AND d.objsubid = 0"

    joins = (
        f"\n\t\tLEFT JOIN {description_table} d ON d.objoid = o.{params.oid_field}"
        f" AND d.classoid = '{comment_class}'::regclass{subid_join}"
    )
    conditions: list[str] = []
    if params.scope == "relation":
        joins += f"\n\t\tJOIN pg_namespace n ON o.{params.namespace_field} = n.oid"
        conditions.append(filters.relation_clause(namespace_alias="n", class_alias="o"))
    elif params.scope == "schema":
        joins += f"\n\t\tJOIN pg_namespace n ON o.{params.namespace_field} = n.oid"
        conditions.append(filters.schema_clause("n"))
    elif params.scope == "namespace":
        conditions.append(filters.schema_clause("o"))
    if params.extension_filter:
        conditions.append(extension_filter_clause(connection.version, "o"))
    if params.where:
        conditions.append(params.where)

    where = "\n\tWHERE " + "\n\t\tAND ".join(conditions) if conditions else ""
    return f"""
    SELECT o.{params.oid_field} AS oid,
        '{comment_class}'::regclass::oid AS class_id,
        {acl_select} AS privileges,
        {owner_select} AS owner,
        coalesce(d.description, '') AS comment
    FROM {params.catalog_table} o{joins}{where}
    ORDER BY o.{params.oid_field}"""


def _metadata_from_row(row: dict) -> ObjectMetadata:
    acl_items = row["privileges"]
    privileges: list[ACL] = []
    if acl_items is not None:
        for item in acl_items:
            acl = parse_acl(item)
            if acl is not None:
                privileges.append(acl)
    return ObjectMetadata(
        privileges=privileges,
        explicit_acl=acl_items is not None,
        owner=row["owner"] or "",
        comment=row["comment"] or "",
    )


def get_metadata_for_object_type(
    connection: DatabaseConnection,
    filters: RelationFilter,
    params: MetadataQueryParams,
) -> dict[UniqueID, ObjectMetadata]:
    """Owner, privileges and comment for every object in one catalog.

    Returns:
        Dict mapping ``UniqueID`` to ``ObjectMetadata``.
    """
    query = _build_metadata_query(connection, filters, params, params.catalog_table)
    return {
        UniqueID(class_id=row["class_id"], oid=row["oid"]): _metadata_from_row(row)
        for row in connection.select(query)
    }


def get_comments_for_object_type(
    connection: DatabaseConnection,
    filters: RelationFilter,
    params: MetadataQueryParams,
    oid_field: str = "oid",
    comment_class: str | None = None,
) -> dict[UniqueID, ObjectMetadata]:
    """Comments only, for objects that have no owner or ACL of their own.

    Args:
        oid_field: Column holding the object oid (``indexrelid`` for pg_index).
        comment_class: Catalog the comment is recorded against when it differs
            from ``params.catalog_table`` (indexes comment as pg_class).
    """
    comment_params = params.model_copy(update={"oid_field": oid_field, "acl_field": "", "owner_field": ""})
    query = _build_metadata_query(
        connection, filters, comment_params, comment_class or params.catalog_table
    )
    result: dict[UniqueID, ObjectMetadata] = {}
    for row in connection.select(query):
        if row["comment"]:
            result[UniqueID(class_id=row["class_id"], oid=row["oid"])] = ObjectMetadata(
                comment=row["comment"]
            )
    return result
