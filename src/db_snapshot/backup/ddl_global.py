"""Global phase printers: session settings, database, resource queues, roles.

Nothing in this phase depends on objects inside the database; it has to be
replayed before anything connects to the restored database.
"""

from db_snapshot.backup.ddl_metadata import metadata_statements, with_metadata
from db_snapshot.backup.toc import MetadataFile
from db_snapshot.catalog.filters import quote_ident, quote_literal
from db_snapshot.catalog.models import (
    DatabaseInfo,
    ObjectMetadata,
    ResourceQueue,
    Role,
    SessionGUCs,
    UniqueID,
)

DEFAULT_RESOURCE_QUEUE = "pg_default"


def print_connection_string(out: MetadataFile, dbname: str) -> None:
    """psql ``\\c`` line so a replayed file targets the right database.

    Written outside any TOC entry.
    """
    out.write(f"\\c {quote_ident(dbname)}\n")


def print_session_gucs(out: MetadataFile, gucs: SessionGUCs) -> None:
    """Settings every phase file starts with."""
    statements = (
        f"SET client_encoding = {quote_literal(gucs.client_encoding)};\n"
        f"SET standard_conforming_strings = {gucs.standard_conforming_strings};"
    )
    if gucs.default_with_oids:
        statements += f"\nSET default_with_oids = {gucs.default_with_oids};"
    out.write_object(statements, "", "", "SESSION GUCS")


def print_create_database(
    out: MetadataFile,
    database: DatabaseInfo,
    metadata: dict[UniqueID, ObjectMetadata],
) -> None:
    clauses = ["TEMPLATE template0"]
    if database.tablespace and database.tablespace != "pg_default":
        clauses.append(f"TABLESPACE {database.tablespace}")
    if database.encoding:
        clauses.append(f"ENCODING {quote_literal(database.encoding)}")
    if database.collate:
        clauses.append(f"LC_COLLATE {quote_literal(database.collate)}")
    if database.ctype:
        clauses.append(f"LC_CTYPE {quote_literal(database.ctype)}")

    statement = f"CREATE DATABASE {database.name} {' '.join(clauses)};"
    block = metadata_statements(metadata.get(database.unique_id()), "DATABASE", database.name)
    out.write_object(with_metadata(statement, block), "", database.name, "DATABASE")


def print_database_gucs(out: MetadataFile, gucs: list[str], database_name: str) -> None:
    """One ``ALTER DATABASE ... SET`` per database-level setting.

    ``search_path`` is a list and is written unquoted; every other value is
    a single literal.
    """
    for guc in gucs:
        name, _, value = guc.partition("=")
        if name.lower() != "search_path":
            value = quote_literal(value)
        out.write_object(
            f"ALTER DATABASE {database_name} SET {name} TO {value};",
            "",
            database_name,
            "DATABASE GUC",
        )


def _resource_queue_settings(queue: ResourceQueue) -> list[str]:
    settings: list[str] = []
    if queue.active_statements != -1:
        settings.append(f"ACTIVE_STATEMENTS={queue.active_statements}")
    if queue.max_cost not in ("-1", "-1.0"):
        settings.append(f"MAX_COST={queue.max_cost}")
        settings.append(f"COST_OVERCOMMIT={'TRUE' if queue.cost_overcommit else 'FALSE'}")
    if queue.min_cost not in ("0", "0.0"):
        settings.append(f"MIN_COST={queue.min_cost}")
    if queue.priority.lower() != "medium":
        settings.append(f"PRIORITY={queue.priority.upper()}")
    if queue.memory_limit != "-1":
        settings.append(f"MEMORY_LIMIT={quote_literal(queue.memory_limit)}")
    return settings


def print_resource_queues(
    out: MetadataFile,
    queues: list[ResourceQueue],
    metadata: dict[UniqueID, ObjectMetadata],
) -> None:
    """CREATE each queue; the built-in default queue is ALTERed instead."""
    for queue in queues:
        settings = _resource_queue_settings(queue)
        if queue.name == DEFAULT_RESOURCE_QUEUE:
            if not settings:
                continue
            statement = f"ALTER RESOURCE QUEUE {queue.name} WITH ({', '.join(settings)});"
        else:
            # a queue must carry at least one limit
            settings = settings or ["ACTIVE_STATEMENTS=-1"]
            statement = f"CREATE RESOURCE QUEUE {queue.name} WITH ({', '.join(settings)});"
        block = metadata_statements(metadata.get(queue.unique_id()), "RESOURCE QUEUE", queue.name)
        out.write_object(with_metadata(statement, block), "", queue.name, "RESOURCE QUEUE")


def _role_attributes(role: Role) -> list[str]:
    attributes = [
        "SUPERUSER" if role.is_superuser else "NOSUPERUSER",
        "INHERIT" if role.inherit else "NOINHERIT",
        "CREATEROLE" if role.create_role else "NOCREATEROLE",
        "CREATEDB" if role.create_db else "NOCREATEDB",
        "LOGIN" if role.can_login else "NOLOGIN",
    ]
    if role.connection_limit != -1:
        attributes.append(f"CONNECTION LIMIT {role.connection_limit}")
    if role.password:
        attributes.append(f"PASSWORD {quote_literal(role.password)}")
    if role.valid_until:
        attributes.append(f"VALID UNTIL {quote_literal(role.valid_until)}")
    if role.resource_queue:
        attributes.append(f"RESOURCE QUEUE {role.resource_queue}")
    if role.create_external_table:
        attributes.append("CREATEEXTTABLE (protocol='gpfdist', type='readable')")
    if role.create_writable_external_table:
        attributes.append("CREATEEXTTABLE (protocol='gpfdist', type='writable')")
    return attributes


def print_roles(
    out: MetadataFile,
    roles: list[Role],
    metadata: dict[UniqueID, ObjectMetadata],
) -> None:
    for role in roles:
        statement = (
            f"CREATE ROLE {role.name};\n"
            f"ALTER ROLE {role.name} WITH {' '.join(_role_attributes(role))};"
        )
        block = metadata_statements(metadata.get(role.unique_id()), "ROLE", role.name)
        out.write_object(with_metadata(statement, block), "", role.name, "ROLE")
