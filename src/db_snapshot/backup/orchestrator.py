"""Orchestrator: drives one backup run from connection to commit.

State machine:

    INIT -> LOCK_ACQUIRED -> GLOBAL_WRITTEN -> PREDATA_WRITTEN
         -> DATA_WRITTEN -> POSTDATA_WRITTEN -> COMMITTED

with FAILED reachable from any state.  Every phase runs inside the single
transaction opened after filters are resolved, so all metadata and data come
from one snapshot.  Phases are strictly sequential: each phase file is closed
before the next phase starts.

``BackupRun.run()`` never raises for a failed backup.  It returns a
``BackupResult`` describing how far the run got; teardown (closing the
connection) always runs and never raises.  A partially written dump
directory is left on disk for diagnosis.

Usage:
    from db_snapshot.adapters import PostgresConnection
    from db_snapshot.backup import BackupRun
    from db_snapshot.config import BackupOptions

    options = BackupOptions(dbname="sales", dump_dir="/data/backups")
    result = BackupRun(options, PostgresConnection(url, dbname="sales")).run()
    if not result.success:
        print(result.error)
"""

import logging
from contextlib import nullcontext
from enum import Enum

from pydantic import BaseModel
from rich.console import Console

from db_snapshot.adapters.base import DatabaseConnection
from db_snapshot.backup import ddl_global, ddl_postdata, ddl_predata
from db_snapshot.backup.data import backup_data
from db_snapshot.backup.layout import DumpLayout
from db_snapshot.backup.locks import CancelToken, cancel_on_signals, lock_tables
from db_snapshot.backup.toc import MetadataFile, TableOfContents
from db_snapshot.catalog import (
    construct_implicit_index_names,
    construct_table_definitions,
    get_aggregates,
    get_all_sequences,
    get_all_user_schemas,
    get_all_views,
    get_base_types,
    get_casts,
    get_comments_for_object_type,
    get_composite_types,
    get_constraints,
    get_database_gucs,
    get_database_info,
    get_domains,
    get_enum_types,
    get_external_protocols,
    get_external_table_oids,
    get_foreign_table_relations,
    get_function_oid_to_info_map,
    get_functions,
    get_indexes,
    get_metadata_for_object_type,
    get_procedural_languages,
    get_resource_queues,
    get_roles,
    get_rules,
    get_session_gucs,
    get_shell_types,
    get_triggers,
    get_user_table_relations,
    get_view_dependencies,
    resolve_filters,
    sort_objects,
    sort_tables_by_inheritance,
)
from db_snapshot.catalog.filters import RelationFilter
from db_snapshot.catalog.metadata import (
    CAST_PARAMS,
    CONSTRAINT_PARAMS,
    DATABASE_PARAMS,
    FUNCTION_PARAMS,
    INDEX_PARAMS,
    LANGUAGE_PARAMS,
    PROTOCOL_PARAMS,
    RELATION_PARAMS,
    RESOURCE_QUEUE_PARAMS,
    ROLE_PARAMS,
    RULE_PARAMS,
    SCHEMA_PARAMS,
    TRIGGER_PARAMS,
    type_params,
)
from db_snapshot.catalog.models import MaterializedView, Relation, SessionGUCs, Table, View
from db_snapshot.config.models import BackupOptions
from db_snapshot.errors import ConfigurationError, DumpError, ExtractionError, QueryError
from db_snapshot.log import VERBOSE

logger = logging.getLogger(__name__)


class BackupState(str, Enum):
    """Last state a run reached."""

    INIT = "init"
    LOCK_ACQUIRED = "lock_acquired"
    GLOBAL_WRITTEN = "global_written"
    PREDATA_WRITTEN = "predata_written"
    DATA_WRITTEN = "data_written"
    POSTDATA_WRITTEN = "postdata_written"
    COMMITTED = "committed"
    FAILED = "failed"


class BackupResult(BaseModel):
    """Outcome of one backup run.

    Attributes:
        success: True once the transaction committed.
        state: Last state reached (FAILED on error).
        failed_after: Last state reached before the failure.
        timestamp: Dump key of the run.
        dump_dir: Run directory ("" if it was never created).
        tables_locked: Tables covered by the lock set.
        tables_dumped: Tables with a data file.
        tables_skipped: External tables skipped during data export.
        toc_entries: Entries across the three phase files.
        error: Error message if the run failed.
        error_type: Class name of the error.

    Example:
        >>> BackupResult(success=True, state=BackupState.COMMITTED).success
        True
    """

    success: bool = False
    state: BackupState = BackupState.INIT
    failed_after: BackupState | None = None
    timestamp: str = ""
    dump_dir: str = ""
    tables_locked: int = 0
    tables_dumped: int = 0
    tables_skipped: int = 0
    toc_entries: int = 0
    error: str | None = None
    error_type: str | None = None


class BackupContext:
    """Everything one run shares between phases.

    Built once by ``BackupRun`` and passed explicitly; no component keeps
    module-level state.
    """

    def __init__(
        self,
        connection: DatabaseConnection,
        options: BackupOptions,
        filters: RelationFilter,
        layout: DumpLayout,
    ) -> None:
        self.connection = connection
        self.options = options
        self.filters = filters
        self.layout = layout
        self.toc = TableOfContents()
        self.gucs: SessionGUCs = SessionGUCs()
        self.tables: list[Relation] = []
        self.foreign_tables: list[Relation] = []
        self.external_oids: set[int] = set()
        self.table_definitions: list[Table] = []
        self.materialized_views: list[MaterializedView] = []

    @property
    def version(self):
        return self.connection.version


class BackupRun:
    """One backup of one database.

    Args:
        options: Validated backup options.
        connection: Unopened connection; the run opens and closes it.
        token: Cancellation token for lock acquisition.
        handle_signals: Route SIGINT/SIGTERM to ``token`` while locking.
        console: Console for the lock progress bar.
        timestamp: Dump key override (defaults to now).
    """

    def __init__(
        self,
        options: BackupOptions,
        connection: DatabaseConnection,
        token: CancelToken | None = None,
        handle_signals: bool = False,
        console: Console | None = None,
        timestamp: str | None = None,
    ) -> None:
        self.options = options
        self.connection = connection
        self.token = token or CancelToken()
        self.handle_signals = handle_signals
        self.console = console
        self.layout = DumpLayout.for_run(options.dump_dir, timestamp)
        self.result = BackupResult(timestamp=self.layout.timestamp)
        self._connected = False

    def _advance(self, state: BackupState) -> None:
        self.result.state = state
        logger.debug("Backup state: %s", state.value)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> BackupResult:
        """Execute every phase; always returns, never raises for a failed run."""
        try:
            ctx = self._setup()
            self._acquire_locks(ctx)
            self._extract_phase("global", self._backup_global, ctx)
            self._advance(BackupState.GLOBAL_WRITTEN)
            self._extract_phase("pre-data", self._backup_predata, ctx)
            self._advance(BackupState.PREDATA_WRITTEN)
            self._backup_data(ctx)
            self._advance(BackupState.DATA_WRITTEN)
            self._extract_phase("post-data", self._backup_postdata, ctx)
            self._advance(BackupState.POSTDATA_WRITTEN)

            ctx.toc.save(ctx.layout.toc_path)
            self.result.toc_entries = sum(
                len(ctx.toc.entries(phase)) for phase in ("global", "predata", "postdata")
            )
            self.connection.commit()
            self._advance(BackupState.COMMITTED)
            self.result.success = True
            logger.info("Backup %s completed successfully", self.layout.timestamp)
        except DumpError as e:
            self._fail(e)
        except Exception as e:
            logger.exception("Unexpected error during backup")
            self._fail(e)
        finally:
            self._teardown()
        return self.result

    def _fail(self, error: Exception) -> None:
        self.result.failed_after = self.result.state
        self.result.state = BackupState.FAILED
        self.result.error = str(error)
        self.result.error_type = type(error).__name__
        logger.error("Backup failed after state '%s': %s", self.result.failed_after.value, error)
        if self.result.dump_dir:
            logger.error("Partial dump left at %s; do not restore from it", self.result.dump_dir)

    def _teardown(self) -> None:
        """Close the connection; an uncommitted transaction is discarded."""
        if not self._connected:
            return
        try:
            self.connection.close()
        except Exception as e:
            logger.warning("Error while closing connection during teardown: %s", e)
        finally:
            self._connected = False

    # ------------------------------------------------------------------
    # Setup and locks
    # ------------------------------------------------------------------

    def _setup(self) -> BackupContext:
        """Connect, resolve filters, create the dump directory, open the snapshot.

        Filters are resolved before the transaction opens so a bad name
        fails the run before any lock is requested.
        """
        self.connection.connect()
        self._connected = True
        filters = resolve_filters(self.connection, self.options)

        try:
            self.layout.create_dirs()
        except FileExistsError as e:
            raise ConfigurationError(f"Dump directory already exists: {self.layout.root}") from e
        self.result.dump_dir = str(self.layout.root)

        logger.info("Dump Key = %s", self.layout.timestamp)
        logger.info("Dump Database = %s", self.connection.dbname)
        logger.info("Dump Directory = %s", self.layout.root)

        self.connection.begin()
        self.connection.exec("SET search_path TO pg_catalog")

        ctx = BackupContext(self.connection, self.options, filters, self.layout)
        ctx.gucs = get_session_gucs(self.connection)
        ctx.tables = get_user_table_relations(self.connection, filters, self.options.leaf_partition_data)
        ctx.foreign_tables = get_foreign_table_relations(self.connection, filters)
        ctx.external_oids = get_external_table_oids(self.connection, filters)
        return ctx

    def _acquire_locks(self, ctx: BackupContext) -> None:
        relations = ctx.tables + ctx.foreign_tables
        guard = cancel_on_signals(self.token) if self.handle_signals else nullcontext(self.token)
        with guard:
            self.result.tables_locked = lock_tables(
                self.connection,
                relations,
                batch_size=self.options.lock_batch_size,
                token=self.token,
                show_progress=self.options.show_progress,
                console=self.console,
            )
        self._advance(BackupState.LOCK_ACQUIRED)

    def _extract_phase(self, name: str, phase, ctx: BackupContext) -> None:
        """Run a metadata phase; a failed catalog query fails the run."""
        logger.info("Writing %s metadata", name)
        try:
            phase(ctx)
        except QueryError as e:
            raise ExtractionError(f"Extraction of {name} metadata failed: {e}") from e
        logger.info("%s metadata dump complete", name.capitalize())

    # ------------------------------------------------------------------
    # Global
    # ------------------------------------------------------------------

    def _backup_global(self, ctx: BackupContext) -> None:
        conn, filters = ctx.connection, ctx.filters
        with MetadataFile(ctx.layout.phase_path("global"), "global", ctx.toc) as out:
            logger.log(VERBOSE, "Writing session GUCs to global file")
            ddl_global.print_session_gucs(out, ctx.gucs)

            logger.log(VERBOSE, "Writing CREATE DATABASE statement to global file")
            database = get_database_info(conn)
            ddl_global.print_create_database(
                out, database, get_metadata_for_object_type(conn, filters, DATABASE_PARAMS)
            )

            logger.log(VERBOSE, "Writing database GUCs to global file")
            ddl_global.print_database_gucs(out, get_database_gucs(conn), database.name)

            logger.log(VERBOSE, "Writing CREATE RESOURCE QUEUE statements to global file")
            ddl_global.print_resource_queues(
                out,
                get_resource_queues(conn),
                get_comments_for_object_type(conn, filters, RESOURCE_QUEUE_PARAMS),
            )

            logger.log(VERBOSE, "Writing CREATE ROLE statements to global file")
            ddl_global.print_roles(
                out, get_roles(conn), get_comments_for_object_type(conn, filters, ROLE_PARAMS)
            )

    # ------------------------------------------------------------------
    # Pre-data
    # ------------------------------------------------------------------

    def _backup_predata(self, ctx: BackupContext) -> None:
        conn, filters, version = ctx.connection, ctx.filters, ctx.version
        with MetadataFile(ctx.layout.phase_path("predata"), "predata", ctx.toc) as out:
            ddl_global.print_connection_string(out, conn.dbname)
            ddl_global.print_session_gucs(out, ctx.gucs)

            logger.log(VERBOSE, "Writing CREATE SCHEMA statements to predata file")
            ddl_predata.print_create_schemas(
                out,
                get_all_user_schemas(conn, filters),
                get_metadata_for_object_type(conn, filters, SCHEMA_PARAMS),
            )

            shell_types = get_shell_types(conn, filters)
            base_types = get_base_types(conn, filters)
            type_metadata = get_metadata_for_object_type(conn, filters, type_params(conn))
            logger.log(VERBOSE, "Writing CREATE TYPE statements for shell types to predata file")
            ddl_predata.print_create_shell_types(out, shell_types, base_types)

            logger.log(VERBOSE, "Writing CREATE DOMAIN statements to predata file")
            ddl_predata.print_create_domains(out, get_domains(conn, filters), type_metadata)

            func_info = get_function_oid_to_info_map(conn)
            logger.log(VERBOSE, "Writing CREATE PROCEDURAL LANGUAGE statements to predata file")
            ddl_predata.print_create_languages(
                out,
                get_procedural_languages(conn),
                func_info,
                get_metadata_for_object_type(conn, filters, LANGUAGE_PARAMS),
            )

            logger.log(VERBOSE, "Writing CREATE TYPE statements for composite and enum types to predata file")
            ddl_predata.print_create_composite_and_enum_types(
                out, get_composite_types(conn, filters), get_enum_types(conn, filters), type_metadata
            )

            function_metadata = get_metadata_for_object_type(conn, filters, FUNCTION_PARAMS)
            logger.log(VERBOSE, "Writing CREATE FUNCTION statements to predata file")
            ddl_predata.print_create_functions(out, get_functions(conn, filters), function_metadata)

            logger.log(VERBOSE, "Writing CREATE TYPE statements for base types to predata file")
            ddl_predata.print_create_base_types(out, base_types, type_metadata)

            logger.log(VERBOSE, "Writing CREATE PROTOCOL statements to predata file")
            ddl_predata.print_create_external_protocols(
                out,
                get_external_protocols(conn),
                func_info,
                get_metadata_for_object_type(conn, filters, PROTOCOL_PARAMS),
            )

            logger.log(VERBOSE, "Writing CREATE AGGREGATE statements to predata file")
            ddl_predata.print_create_aggregates(
                out, get_aggregates(conn, filters), func_info, function_metadata, version
            )

            logger.log(VERBOSE, "Writing CREATE CAST statements to predata file")
            ddl_predata.print_create_casts(
                out, get_casts(conn, filters), get_comments_for_object_type(conn, filters, CAST_PARAMS)
            )

            relation_metadata = get_metadata_for_object_type(conn, filters, RELATION_PARAMS)
            logger.log(VERBOSE, "Writing CREATE TABLE statements to predata file")
            definitions = construct_table_definitions(
                conn, ctx.tables + ctx.foreign_tables, ctx.external_oids
            )
            table_oids = {table.oid for table in ctx.tables}
            ctx.table_definitions = [table for table in definitions if table.oid in table_oids]
            ordered_tables = sort_tables_by_inheritance(definitions)
            ddl_predata.print_create_tables(out, ordered_tables, relation_metadata, version)

            logger.log(VERBOSE, "Writing CREATE VIEW statements to predata file")
            views, materialized_views = get_all_views(conn, filters)
            ctx.materialized_views = materialized_views
            self._print_views(out, conn, views, materialized_views, relation_metadata)

            logger.log(VERBOSE, "Writing ADD CONSTRAINT statements to predata file")
            ddl_predata.print_constraints(
                out,
                get_constraints(conn, filters),
                get_comments_for_object_type(conn, filters, CONSTRAINT_PARAMS),
                ddl_predata.partitioned_table_names(definitions),
            )

            logger.log(VERBOSE, "Writing CREATE SEQUENCE statements to predata file")
            sequences = get_all_sequences(conn, filters)
            ddl_predata.print_create_sequences(
                out, sequences, relation_metadata, {table.fqn() for table in definitions}
            )
            ddl_predata.print_sequence_defaults(
                out, ordered_tables, {sequence.fqn() for sequence in sequences}
            )

    @staticmethod
    def _print_views(
        out: MetadataFile,
        conn: DatabaseConnection,
        views: list[View],
        materialized_views: list[MaterializedView],
        metadata,
    ) -> None:
        """Views and materialized views together, referenced views first."""
        all_views: list[View | MaterializedView] = sorted([*views, *materialized_views], key=lambda v: v.oid)
        dependencies = get_view_dependencies(conn, [view.oid for view in all_views])
        for view in sort_objects(all_views, key=lambda v: v.oid, dependencies=dependencies):
            if isinstance(view, MaterializedView):
                ddl_predata.print_create_materialized_views(out, [view], metadata)
            else:
                ddl_predata.print_create_views(out, [view], metadata)

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def _backup_data(self, ctx: BackupContext) -> None:
        logger.info("Writing data to file")
        table_map = backup_data(
            ctx.connection,
            ctx.table_definitions,
            ctx.external_oids,
            ctx.layout,
            leaf_partition_data=ctx.options.leaf_partition_data,
        )
        self.result.tables_dumped = len(table_map.tables)
        self.result.tables_skipped = sum(1 for table in ctx.table_definitions if table.oid in ctx.external_oids)
        logger.info("Data dump complete")

    # ------------------------------------------------------------------
    # Post-data
    # ------------------------------------------------------------------

    def _backup_postdata(self, ctx: BackupContext) -> None:
        conn, filters = ctx.connection, ctx.filters
        with MetadataFile(ctx.layout.phase_path("postdata"), "postdata", ctx.toc) as out:
            ddl_global.print_connection_string(out, conn.dbname)
            ddl_global.print_session_gucs(out, ctx.gucs)

            logger.log(VERBOSE, "Writing CREATE INDEX statements to postdata file")
            indexes = get_indexes(conn, filters, construct_implicit_index_names(conn))
            index_metadata = get_comments_for_object_type(
                conn, filters, INDEX_PARAMS, oid_field="indexrelid", comment_class="pg_class"
            )
            ddl_postdata.print_create_indexes(out, indexes, index_metadata)

            logger.log(VERBOSE, "Writing CREATE RULE statements to postdata file")
            ddl_postdata.print_create_rules(
                out, get_rules(conn, filters), get_comments_for_object_type(conn, filters, RULE_PARAMS)
            )

            logger.log(VERBOSE, "Writing CREATE TRIGGER statements to postdata file")
            ddl_postdata.print_create_triggers(
                out, get_triggers(conn, filters), get_comments_for_object_type(conn, filters, TRIGGER_PARAMS)
            )

            logger.log(VERBOSE, "Writing REFRESH MATERIALIZED VIEW statements to postdata file")
            ddl_postdata.print_refresh_materialized_views(out, ctx.materialized_views)
