"""Functions and the objects that reference functions by oid.

Procedural languages, aggregates, casts and external protocols store the
oids of their support functions.  ``get_function_oid_to_info_map`` resolves
those oids to callable names when the DDL is printed.
"""

import logging

from db_snapshot.adapters.base import DatabaseConnection
from db_snapshot.catalog.filters import RelationFilter, extension_filter_clause
from db_snapshot.catalog.models import (
    FIRST_NORMAL_OBJECT_ID,
    Aggregate,
    Cast,
    ExternalProtocol,
    Function,
    FunctionInfo,
    ProceduralLanguage,
)

logger = logging.getLogger(__name__)


def get_function_oid_to_info_map(connection: DatabaseConnection) -> dict[int, FunctionInfo]:
    """Every function in the database, system functions included, keyed by oid."""
    query = """
    SELECT p.oid AS oid,
        quote_ident(n.nspname) AS schema_name,
        quote_ident(p.proname) AS name,
        pg_get_function_arguments(p.oid) AS arguments,
        pg_get_function_identity_arguments(p.oid) AS identity_arguments,
        n.nspname = 'pg_catalog' AS is_internal
    FROM pg_proc p
        JOIN pg_namespace n ON p.pronamespace = n.oid"""
    return {row["oid"]: FunctionInfo(**row) for row in connection.select(query)}


def get_functions(connection: DatabaseConnection, filters: RelationFilter) -> list[Function]:
    """User-defined functions (aggregates excluded), ordered by oid."""
    version = connection.version
    if version.before("6"):
        window = "p.proiswin"
        not_aggregate = "NOT p.proisagg"
    elif version.before("7"):
        window = "p.proiswindow"
        not_aggregate = "NOT p.proisagg"
    else:
        window = "p.prokind = 'w'"
        not_aggregate = "p.prokind <> 'a'"
    exec_location = "p.proexeclocation" if version.at_least("6") else "'a'"

    query = f"""
    SELECT p.oid AS oid,
        quote_ident(n.nspname) AS schema_name,
        quote_ident(p.proname) AS name,
        pg_get_function_arguments(p.oid) AS arguments,
        pg_get_function_identity_arguments(p.oid) AS identity_arguments,
        pg_get_function_result(p.oid) AS result_type,
        coalesce(p.prosrc, '') AS function_body,
        coalesce(p.probin, '') AS binary_path,
        quote_ident(l.lanname) AS language,
        p.provolatile AS volatility,
        p.proisstrict AS is_strict,
        p.prosecdef AS is_security_definer,
        {window} AS is_window,
        coalesce(p.proconfig, '{{}}') AS config,
        p.procost AS cost,
        p.prorows AS num_rows,
        p.prodataaccess AS data_access,
        {exec_location} AS exec_location
    FROM pg_proc p
        JOIN pg_namespace n ON p.pronamespace = n.oid
        JOIN pg_language l ON p.prolang = l.oid
    WHERE {filters.schema_clause("n")}
        AND {not_aggregate}
        AND {extension_filter_clause(version, "p")}
    ORDER BY p.oid"""
    return [Function(**row) for row in connection.select(query)]


def get_procedural_languages(connection: DatabaseConnection) -> list[ProceduralLanguage]:
    """Procedural languages other than the built-in plpgsql."""
    inline = "l.laninline" if connection.version.at_least("6") else "0"
    query = f"""
    SELECT l.oid AS oid,
        quote_ident(l.lanname) AS name,
        quote_ident(pg_get_userbyid(l.lanowner)) AS owner,
        l.lanispl AS is_pl,
        l.lanpltrusted AS pl_trusted,
        l.lanplcallfoid AS handler,
        {inline} AS inline,
        l.lanvalidator AS validator
    FROM pg_language l
    WHERE l.lanispl
        AND l.lanname <> 'plpgsql'
        AND {extension_filter_clause(connection.version, "l")}
    ORDER BY l.oid"""
    return [ProceduralLanguage(**row) for row in connection.select(query)]


def get_aggregates(connection: DatabaseConnection, filters: RelationFilter) -> list[Aggregate]:
    """User-defined aggregates; support functions are returned as oids."""
    if connection.version.before("6"):
        prelim = "a.aggprelimfn"
        ordered = "a.aggordered"
    else:
        prelim = "a.aggcombinefn"
        ordered = "a.aggkind = 'o'"
    query = f"""
    SELECT p.oid AS oid,
        quote_ident(n.nspname) AS schema_name,
        quote_ident(p.proname) AS name,
        pg_get_function_arguments(p.oid) AS arguments,
        pg_get_function_identity_arguments(p.oid) AS identity_arguments,
        a.aggtransfn::oid AS transition_function,
        {prelim}::oid AS prelim_function,
        a.aggfinalfn::oid AS final_function,
        CASE WHEN a.aggsortop <> 0 THEN a.aggsortop::regoperator::text ELSE '' END AS sort_operator,
        format_type(a.aggtranstype, NULL) AS transition_data_type,
        coalesce(a.agginitval, '') AS initial_value,
        a.agginitval IS NULL AS initial_value_is_null,
        {ordered} AS is_ordered
    FROM pg_aggregate a
        JOIN pg_proc p ON a.aggfnoid = p.oid
        JOIN pg_namespace n ON p.pronamespace = n.oid
    WHERE {filters.schema_clause("n")}
        AND {extension_filter_clause(connection.version, "p")}
    ORDER BY p.oid"""
    return [Aggregate(**row) for row in connection.select(query)]


def get_casts(connection: DatabaseConnection, filters: RelationFilter) -> list[Cast]:
    """Casts created by users, ordered by oid.

    Built-in casts have oids below ``FIRST_NORMAL_OBJECT_ID``.  A cast whose
    function lives in an out-of-scope schema is left out.
    """
    if connection.version.at_least("6"):
        method = "c.castmethod"
    else:
        method = "CASE WHEN c.castfunc = 0 THEN 'b' ELSE 'f' END"
    query = f"""
    SELECT c.oid AS oid,
        format_type(c.castsource, NULL) AS source_type,
        format_type(c.casttarget, NULL) AS target_type,
        coalesce(quote_ident(n.nspname), '') AS function_schema,
        coalesce(quote_ident(p.proname), '') AS function_name,
        coalesce(pg_get_function_arguments(p.oid), '') AS function_args,
        c.castcontext AS cast_context,
        {method} AS cast_method
    FROM pg_cast c
        LEFT JOIN pg_proc p ON c.castfunc = p.oid
        LEFT JOIN pg_namespace n ON p.pronamespace = n.oid
    WHERE c.oid >= {FIRST_NORMAL_OBJECT_ID}
        AND (n.oid IS NULL OR ({filters.schema_clause("n")}))
        AND {extension_filter_clause(connection.version, "c")}
    ORDER BY c.oid"""
    return [Cast(**row) for row in connection.select(query)]


def get_external_protocols(connection: DatabaseConnection) -> list[ExternalProtocol]:
    """Custom external-table protocols."""
    query = f"""
    SELECT p.oid AS oid,
        quote_ident(p.ptcname) AS name,
        quote_ident(pg_get_userbyid(p.ptcowner)) AS owner,
        p.ptctrusted AS trusted,
        coalesce(p.ptcreadfn::oid, 0) AS read_function,
        coalesce(p.ptcwritefn::oid, 0) AS write_function,
        coalesce(p.ptcvalidatorfn::oid, 0) AS validator
    FROM pg_extprotocol p
    WHERE {extension_filter_clause(connection.version, "p")}
    ORDER BY p.oid"""
    return [ExternalProtocol(**row) for row in connection.select(query)]
