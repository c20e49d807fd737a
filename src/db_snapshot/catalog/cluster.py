"""Cluster- and database-level objects for the global phase, plus schemas."""

import logging

from db_snapshot.adapters.base import DatabaseConnection
from db_snapshot.catalog.filters import RelationFilter, extension_filter_clause
from db_snapshot.catalog.models import DatabaseInfo, ResourceQueue, Role, Schema, SessionGUCs

logger = logging.getLogger(__name__)


def get_session_gucs(connection: DatabaseConnection) -> SessionGUCs:
    """Settings that the dump must be replayed with.

    ``default_with_oids`` no longer exists in Greenplum 7.
    """
    with_oids = ""
    if connection.version.before("7"):
        with_oids = ",\n        current_setting('default_with_oids') AS default_with_oids"
    query = f"""
    SELECT current_setting('client_encoding') AS client_encoding,
        current_setting('standard_conforming_strings') AS standard_conforming_strings{with_oids}"""
    return SessionGUCs(**connection.get(query))


def get_database_info(connection: DatabaseConnection) -> DatabaseInfo:
    """The database being backed up."""
    if connection.version.at_least("6"):
        locale = """,
        d.datcollate AS collate,
        d.datctype AS ctype"""
    else:
        locale = ""
    query = f"""
    SELECT d.oid AS oid,
        quote_ident(d.datname) AS name,
        quote_ident(t.spcname) AS tablespace,
        pg_encoding_to_char(d.encoding) AS encoding{locale}
    FROM pg_database d
        JOIN pg_tablespace t ON d.dattablespace = t.oid
    WHERE d.datname = current_database()"""
    return DatabaseInfo(**connection.get(query))


def get_database_gucs(connection: DatabaseConnection) -> list[str]:
    """``name=value`` settings attached to the database (not to a role)."""
    if connection.version.at_least("6"):
        query = """
    SELECT unnest(s.setconfig) AS config
    FROM pg_db_role_setting s
        JOIN pg_database d ON s.setdatabase = d.oid
    WHERE s.setrole = 0
        AND d.datname = current_database()"""
    else:
        query = """
    SELECT unnest(datconfig) AS config
    FROM pg_database
    WHERE datname = current_database()"""
    return [row["config"] for row in connection.select(query)]


def get_resource_queues(connection: DatabaseConnection) -> list[ResourceQueue]:
    """All resource queues, the built-in ``pg_default`` included."""
    query = """
    SELECT r.oid AS oid,
        quote_ident(r.rsqname) AS name,
        r.rsqcountlimit::int AS active_statements,
        r.rsqcostlimit::text AS max_cost,
        r.rsqovercommit AS cost_overcommit,
        r.rsqignorecostlimit::text AS min_cost,
        coalesce((
            SELECT a.ressetting FROM pg_resqueue_attributes a
            WHERE a.rsqname = r.rsqname AND a.resname = 'priority'
        ), 'medium') AS priority,
        coalesce((
            SELECT a.ressetting FROM pg_resqueue_attributes a
            WHERE a.rsqname = r.rsqname AND a.resname = 'memory_limit'
        ), '-1') AS memory_limit
    FROM pg_resqueue r
    ORDER BY r.oid"""
    return [ResourceQueue(**row) for row in connection.select(query)]


def get_roles(connection: DatabaseConnection) -> list[Role]:
    """All roles with their attributes (requires superuser to read passwords)."""
    query = """
    SELECT r.oid AS oid,
        quote_ident(r.rolname) AS name,
        r.rolsuper AS is_superuser,
        r.rolinherit AS inherit,
        r.rolcreaterole AS create_role,
        r.rolcreatedb AS create_db,
        r.rolcanlogin AS can_login,
        r.rolconnlimit AS connection_limit,
        coalesce(r.rolpassword, '') AS password,
        coalesce(r.rolvaliduntil::text, '') AS valid_until,
        coalesce(quote_ident(q.rsqname), '') AS resource_queue,
        r.rolcreaterextgpfd AS create_external_table,
        r.rolcreatewextgpfd AS create_writable_external_table
    FROM pg_authid r
        LEFT JOIN pg_resqueue q ON r.rolresqueue = q.oid
    ORDER BY r.oid"""
    return [Role(**row) for row in connection.select(query)]


def get_all_user_schemas(connection: DatabaseConnection, filters: RelationFilter) -> list[Schema]:
    """User schemas in scope, ordered by oid."""
    query = f"""
    SELECT n.oid AS oid,
        quote_ident(n.nspname) AS name
    FROM pg_namespace n
    WHERE {filters.schema_clause("n")}
        AND {extension_filter_clause(connection.version, "n")}
    ORDER BY n.oid"""
    return [Schema(**row) for row in connection.select(query)]
