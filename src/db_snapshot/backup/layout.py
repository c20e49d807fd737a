"""Dump directory layout.

One run writes everything under ``<dump_dir>/<YYYYMMDD>/<YYYYMMDDHHMMSS>/``:

    global.sql       global phase
    predata.sql      pre-data phase
    postdata.sql     post-data phase
    toc.json         byte ranges of every object in the three phase files
    table_map.json   table identity -> data file
    data/<oid>.copy  one COPY-format file per non-external table
"""

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel

from db_snapshot.backup.toc import Phase

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


def make_timestamp(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


class DumpLayout(BaseModel):
    """Paths of every file in one dump directory."""

    root: Path

    @classmethod
    def for_run(cls, dump_dir: str | Path, timestamp: str | None = None) -> "DumpLayout":
        """Layout of a new run under ``dump_dir``, keyed by its timestamp."""
        timestamp = timestamp or make_timestamp()
        return cls(root=Path(dump_dir) / timestamp[:8] / timestamp)

    @property
    def timestamp(self) -> str:
        return self.root.name

    @property
    def data_dir(self) -> Path:
        return self.root / "data"

    @property
    def toc_path(self) -> Path:
        return self.root / "toc.json"

    @property
    def table_map_path(self) -> Path:
        return self.root / "table_map.json"

    def phase_path(self, phase: Phase) -> Path:
        return self.root / f"{phase}.sql"

    def table_data_path(self, oid: int) -> Path:
        return self.data_dir / f"{oid}.copy"

    def create_dirs(self) -> None:
        """Create the run directory and its data subdirectory.

        Raises:
            FileExistsError: If a run with the same timestamp already exists.
        """
        self.root.mkdir(parents=True, exist_ok=False)
        self.data_dir.mkdir()
