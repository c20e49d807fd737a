"""Database connection protocol and psycopg implementation.

Usage:
    from db_snapshot.adapters import DatabaseConnection, PostgresConnection, GPDBVersion
"""

from db_snapshot.adapters.base import DatabaseConnection
from db_snapshot.adapters.postgres import PostgresConnection
from db_snapshot.adapters.version import GPDBVersion

__all__ = [
    "DatabaseConnection",
    "PostgresConnection",
    "GPDBVersion",
]
