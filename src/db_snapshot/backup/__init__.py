"""Backup engine: locks, phase files with a table of contents, table data.

Provides ``BackupRun``, which drives one consistent backup of a database
inside a single transaction, plus the pieces it is built from.

Usage:
    from db_snapshot.backup import BackupRun, BackupResult, BackupState
    from db_snapshot.backup import TableOfContents, read_entry, DumpLayout
"""

from db_snapshot.backup.data import TableMap, TableMapEntry, backup_data
from db_snapshot.backup.layout import DumpLayout
from db_snapshot.backup.locks import CancelToken, cancel_on_signals, generate_table_batches, lock_tables
from db_snapshot.backup.orchestrator import BackupResult, BackupRun, BackupState
from db_snapshot.backup.toc import MetadataEntry, MetadataFile, TableOfContents, read_entry

__all__ = [
    # Orchestration
    "BackupRun",
    "BackupResult",
    "BackupState",
    # Locks
    "CancelToken",
    "cancel_on_signals",
    "generate_table_batches",
    "lock_tables",
    # Phase files
    "DumpLayout",
    "MetadataEntry",
    "MetadataFile",
    "TableOfContents",
    "read_entry",
    # Data
    "TableMap",
    "TableMapEntry",
    "backup_data",
]
