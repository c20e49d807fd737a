"""Greenplum server version parsing.

Catalog layouts differ between Greenplum 5, 6 and 7, so every query builder
that touches a changed catalog asks the connection's ``GPDBVersion``.

Usage:
    version = GPDBVersion.parse(
        "PostgreSQL 9.4.24 (Greenplum Database 6.20.3 build commit:...) ..."
    )
    version.at_least("6")   # True
    version.before("7")     # True
"""

import re

from pydantic import BaseModel

_GPDB_VERSION_RE = re.compile(r"Greenplum Database (\d+)\.(\d+)\.(\d+)")


class GPDBVersion(BaseModel):
    """Semantic version of the connected Greenplum cluster."""

    major: int
    minor: int = 0
    patch: int = 0
    version_string: str = ""

    @classmethod
    def parse(cls, version_string: str) -> "GPDBVersion":
        """Parse the output of ``SELECT version()``.

        Raises:
            ValueError: If the string does not identify a Greenplum server.
        """
        match = _GPDB_VERSION_RE.search(version_string)
        if not match:
            raise ValueError(f"Not a Greenplum Database server: {version_string!r}")
        major, minor, patch = (int(part) for part in match.groups())
        return cls(major=major, minor=minor, patch=patch, version_string=version_string)

    def _compare_key(self, target: str) -> tuple[tuple[int, ...], tuple[int, ...]]:
        parts = [int(p) for p in target.split(".")]
        mine = (self.major, self.minor, self.patch)[: len(parts)]
        return mine, tuple(parts)

    def at_least(self, target: str) -> bool:
        """True if this version is >= ``target`` (``"6"``, ``"6.2"``, ``"6.2.1"``)."""
        mine, theirs = self._compare_key(target)
        return mine >= theirs

    def before(self, target: str) -> bool:
        """True if this version is < ``target``."""
        return not self.at_least(target)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"
