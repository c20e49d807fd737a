"""db-snapshot: consistent logical backups of Greenplum databases.

Locks every table in scope, then writes global, pre-data and post-data DDL
(with a byte-offset table of contents) and one COPY file per table, all from
a single transaction snapshot.

Usage:
    from db_snapshot import BackupRun, BackupOptions, PostgresConnection
    from db_snapshot import TableOfContents, read_entry
    from db_snapshot import load_db_config, resolve_url
"""

__version__ = "0.1.0"

# Adapters
from db_snapshot.adapters.base import DatabaseConnection
from db_snapshot.adapters.postgres import PostgresConnection
from db_snapshot.adapters.version import GPDBVersion

# Config
from db_snapshot.config.loader import get_profile, load_db_config, resolve_url
from db_snapshot.config.models import BackupOptions, DatabaseConfig, DatabaseProfile

# Backup
from db_snapshot.backup.orchestrator import BackupResult, BackupRun, BackupState
from db_snapshot.backup.toc import MetadataEntry, TableOfContents, read_entry

# Errors
from db_snapshot.errors import (
    ConfigurationError,
    DumpError,
    ExtractionError,
    LockCancelledError,
    QueryError,
    SnapshotError,
)

__all__ = [
    # Adapters
    "DatabaseConnection",
    "PostgresConnection",
    "GPDBVersion",
    # Config
    "load_db_config",
    "get_profile",
    "resolve_url",
    "BackupOptions",
    "DatabaseProfile",
    "DatabaseConfig",
    # Backup
    "BackupRun",
    "BackupResult",
    "BackupState",
    "TableOfContents",
    "MetadataEntry",
    "read_entry",
    # Errors
    "DumpError",
    "ConfigurationError",
    "QueryError",
    "SnapshotError",
    "ExtractionError",
    "LockCancelledError",
]
