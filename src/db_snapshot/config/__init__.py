"""Configuration management: profiles, TOML loading, and option models.

Usage:
    >>> from db_snapshot.config import load_db_config, BackupOptions, DatabaseProfile
"""

from db_snapshot.config.loader import (
    get_active_profile_name,
    get_profile,
    load_db_config,
    resolve_url,
)
from db_snapshot.config.models import (
    DEFAULT_LOCK_BATCH_SIZE,
    BackupOptions,
    DatabaseConfig,
    DatabaseProfile,
)

__all__ = [
    "load_db_config",
    "get_active_profile_name",
    "get_profile",
    "resolve_url",
    "BackupOptions",
    "DatabaseConfig",
    "DatabaseProfile",
    "DEFAULT_LOCK_BATCH_SIZE",
]
