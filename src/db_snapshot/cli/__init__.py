"""CLI module for consistent Greenplum backups.

Provides commands to run a backup, inspect the table of contents of a
finished dump, print single objects or data files back out of it, and list
profiles.

Usage:
    DB_SNAPSHOT_PROFILE=prod db-snapshot backup --dbname sales --dump-dir /data/backups
    db-snapshot backup --profile prod --dbname sales --exclude-schema scratch --progress
    db-snapshot backup --profile prod --include-table public.orders --leaf-partition-data
    db-snapshot toc /data/backups/20240101/20240101120000 --phase predata --type TABLE
    db-snapshot show /data/backups/20240101/20240101120000 predata public orders
    db-snapshot tables /data/backups/20240101/20240101120000 --schema public
    db-snapshot profiles

Commands:
    backup    - Back up one database into a new timestamped directory
    toc       - List table-of-contents entries of a dump
    show      - Print the statements of one object from a dump
    tables    - List the data files of a dump
    profiles  - List available profiles
"""

import argparse
import sys
from pathlib import Path

from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from db_snapshot.adapters import PostgresConnection
from db_snapshot.backup import BackupResult, BackupRun, TableOfContents, read_entry
from db_snapshot.backup.data import TableMap
from db_snapshot.backup.layout import DumpLayout
from db_snapshot.backup.toc import PHASES
from db_snapshot.config import (
    BackupOptions,
    get_active_profile_name,
    get_profile,
    load_db_config,
    resolve_url,
)
from db_snapshot.errors import ConfigurationError
from db_snapshot.log import resolve_level, setup_logging

console = Console()


# ============================================================================
# Option assembly
# ============================================================================


def _build_options(args: argparse.Namespace, defaults: BackupOptions) -> BackupOptions:
    """Overlay command line flags on the ``[backup]`` section of db.toml.

    Flags that were not given leave the configured value untouched.  The
    merged options are validated again, so conflicting filters coming from
    two sources are still rejected.

    Raises:
        ConfigurationError: If the merged filters conflict.
        pydantic.ValidationError: If a value is malformed.
    """
    data = defaults.model_dump()
    scalars = {
        "dbname": args.dbname,
        "dump_dir": args.dump_dir,
        "lock_batch_size": args.batch_size,
    }
    for key, value in scalars.items():
        if value is not None:
            data[key] = value

    # append-lists default to [] when the flag is absent
    lists = {
        "include_schemas": args.include_schema,
        "exclude_schemas": args.exclude_schema,
        "include_relations": args.include_table,
        "exclude_relations": args.exclude_table,
    }
    for key, value in lists.items():
        if value:
            data[key] = value
    if args.leaf_partition_data:
        data["leaf_partition_data"] = True
    if args.progress:
        data["show_progress"] = True
    return BackupOptions(**data)


def _print_result(result: BackupResult) -> None:
    table = Table(title="Backup Summary", show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")

    table.add_row("Dump key", result.timestamp)
    table.add_row("Dump directory", result.dump_dir or "-")
    table.add_row("Tables locked", str(result.tables_locked))
    table.add_row("Tables dumped", str(result.tables_dumped))
    if result.tables_skipped:
        table.add_row("External tables skipped", str(result.tables_skipped))
    table.add_row("TOC entries", str(result.toc_entries))
    console.print(table)


# ============================================================================
# Commands
# ============================================================================


def cmd_backup(args: argparse.Namespace) -> int:
    """Run one backup.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 on failure.
    """
    setup_logging(resolve_level(args.quiet, args.verbose, args.debug), args.log_file)

    try:
        config = load_db_config(Path(args.config) if args.config else None)
        profile = get_profile(config, get_active_profile_name(args.profile))
        options = _build_options(args, config.backup)
    except (FileNotFoundError, ConfigurationError, ValidationError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    connection = PostgresConnection(resolve_url(profile), dbname=options.dbname or None)
    result = BackupRun(options, connection, handle_signals=True, console=console).run()

    console.print()
    if result.success:
        console.print(f"[bold green]v[/bold green] Backup {result.timestamp} complete")
        _print_result(result)
        return 0

    console.print(f"[bold red]x[/bold red] Backup failed ({result.error_type}): {result.error}")
    if result.failed_after:
        console.print(f"  Last completed state: [yellow]{result.failed_after.value}[/yellow]")
    return 1


def cmd_toc(args: argparse.Namespace) -> int:
    """List TOC entries of a finished dump.

    Reads only local files -- no database calls.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 if the TOC cannot be read.
    """
    layout = DumpLayout(root=Path(args.dump))
    try:
        toc = TableOfContents.load(layout.toc_path)
    except (FileNotFoundError, ValidationError) as e:
        console.print(f"[red]Error: cannot read {layout.toc_path}: {e}[/red]")
        return 1

    table = Table(title=f"Table of Contents: {layout.timestamp}", show_header=True, header_style="bold")
    table.add_column("Phase")
    table.add_column("Schema")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Reference", style="dim")
    table.add_column("Bytes", justify="right")

    count = 0
    for phase in [args.phase] if args.phase else PHASES:
        for entry in toc.entries(phase):
            if args.schema is not None and entry.schema_name != args.schema:
                continue
            if args.type and entry.object_type != args.type.upper():
                continue
            table.add_row(
                phase,
                entry.schema_name,
                entry.name,
                entry.object_type,
                entry.reference_object,
                f"{entry.start_byte}-{entry.end_byte}",
            )
            count += 1

    console.print(table)
    console.print(f"\n{count} entr{'y' if count == 1 else 'ies'}")
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    """Print the statements of one object from a phase file.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 if the object was found, 1 otherwise.
    """
    layout = DumpLayout(root=Path(args.dump))
    try:
        toc = TableOfContents.load(layout.toc_path)
    except (FileNotFoundError, ValidationError) as e:
        console.print(f"[red]Error: cannot read {layout.toc_path}: {e}[/red]")
        return 1

    entries = toc.lookup(args.phase, args.schema, args.name, args.type.upper() if args.type else None)
    if not entries:
        console.print(f"[yellow]No {args.phase} entry for {args.schema}.{args.name}[/yellow]")
        return 1

    for entry in entries:
        print(read_entry(layout.phase_path(args.phase), entry))
        print()
    return 0


def cmd_tables(args: argparse.Namespace) -> int:
    """List the data files of a finished dump from its table map.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 if the table map cannot be read.
    """
    layout = DumpLayout(root=Path(args.dump))
    try:
        table_map = TableMap.load(layout.table_map_path)
    except (FileNotFoundError, ValidationError) as e:
        console.print(f"[red]Error: cannot read {layout.table_map_path}: {e}[/red]")
        return 1

    if args.oid is not None:
        entry = table_map.get(args.oid)
        if entry is None:
            console.print(f"[yellow]No table with oid {args.oid} in this dump[/yellow]")
            return 1
        entries = [entry]
    else:
        entries = [e for e in table_map.tables if args.schema is None or e.schema_name == args.schema]

    table = Table(title=f"Table Data: {layout.timestamp}", show_header=True, header_style="bold")
    table.add_column("Oid", justify="right")
    table.add_column("Table")
    table.add_column("File", style="dim")
    table.add_column("Bytes", justify="right")
    for entry in entries:
        table.add_row(str(entry.oid), f"{entry.schema_name}.{entry.name}", entry.path, str(entry.size_bytes))

    console.print(table)
    console.print(f"\n{len(entries)} table(s)")
    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from db.toml.

    Reads only local TOML config -- no database calls.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 if db.toml not found.
    """
    try:
        config = load_db_config(Path(args.config) if args.config else None)
    except (FileNotFoundError, ConfigurationError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    try:
        current = get_active_profile_name()
    except ConfigurationError:
        current = None

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        name_style = "bold cyan" if name == current else ""
        table.add_row(
            marker,
            f"[{name_style}]{name}[/{name_style}]" if name_style else name,
            profile.description or "",
        )

    console.print(table)

    if current:
        console.print("\n[bold green]*[/bold green] = active profile")

    return 0


# ============================================================================
# Main entry point
# ============================================================================


def main() -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="db-snapshot",
        description="Consistent logical backups of Greenplum databases",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to db.toml (default: ./db.toml)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # backup command
    p_backup = subparsers.add_parser(
        "backup",
        help="Back up one database",
    )
    p_backup.add_argument("--profile", "-p", default=None, help="Connection profile from db.toml")
    p_backup.add_argument("--dbname", default=None, help="Database to back up")
    p_backup.add_argument("--dump-dir", default=None, help="Directory receiving timestamped dumps")
    p_backup.add_argument(
        "--include-schema",
        action="append",
        default=[],
        help="Back up only this schema (repeatable)",
    )
    p_backup.add_argument(
        "--exclude-schema",
        action="append",
        default=[],
        help="Skip this schema (repeatable)",
    )
    p_backup.add_argument(
        "--include-table",
        action="append",
        default=[],
        help="Back up only this schema.table (repeatable)",
    )
    p_backup.add_argument(
        "--exclude-table",
        action="append",
        default=[],
        help="Skip this schema.table (repeatable)",
    )
    p_backup.add_argument(
        "--leaf-partition-data",
        action="store_true",
        help="Export each leaf partition as its own data file",
    )
    p_backup.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Tables per LOCK TABLE statement (default: 100)",
    )
    p_backup.add_argument("--progress", action="store_true", help="Show a progress bar while locking")
    p_backup.add_argument("--log-file", default=None, help="Also write log records to this file")
    verbosity = p_backup.add_mutually_exclusive_group()
    verbosity.add_argument("--quiet", "-q", action="store_true", help="Only log warnings and errors")
    verbosity.add_argument("--verbose", "-v", action="store_true", help="Log every object written")
    verbosity.add_argument("--debug", action="store_true", help="Log catalog queries and state changes")
    p_backup.set_defaults(func=cmd_backup)

    # toc command
    p_toc = subparsers.add_parser(
        "toc",
        help="List table-of-contents entries of a dump",
    )
    p_toc.add_argument("dump", help="Run directory (<dump-dir>/<date>/<timestamp>)")
    p_toc.add_argument("--phase", choices=PHASES, default=None, help="Only this phase")
    p_toc.add_argument("--schema", default=None, help="Only objects in this schema")
    p_toc.add_argument("--type", default=None, help="Only this object type (e.g. TABLE)")
    p_toc.set_defaults(func=cmd_toc)

    # show command
    p_show = subparsers.add_parser(
        "show",
        help="Print the statements of one object from a dump",
    )
    p_show.add_argument("dump", help="Run directory (<dump-dir>/<date>/<timestamp>)")
    p_show.add_argument("phase", choices=PHASES, help="Phase file holding the object")
    p_show.add_argument("schema", help='Object schema ("" for global objects)')
    p_show.add_argument("name", help="Object name")
    p_show.add_argument("--type", default=None, help="Object type, when the name is ambiguous")
    p_show.set_defaults(func=cmd_show)

    # tables command
    p_tables = subparsers.add_parser(
        "tables",
        help="List the data files of a dump",
    )
    p_tables.add_argument("dump", help="Run directory (<dump-dir>/<date>/<timestamp>)")
    p_tables.add_argument("--schema", default=None, help="Only tables in this schema")
    p_tables.add_argument("--oid", type=int, default=None, help="Only the table with this oid")
    p_tables.set_defaults(func=cmd_tables)

    # profiles command
    p_profiles = subparsers.add_parser(
        "profiles",
        help="List available profiles",
    )
    p_profiles.set_defaults(func=cmd_profiles)

    args = parser.parse_args()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
