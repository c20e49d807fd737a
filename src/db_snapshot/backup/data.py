"""Table Data Exporter.

Streams every non-external table, in inventory order, into its own file
with ``COPY ... TO STDOUT`` (text format: tab-delimited, ``\\N`` for NULL,
columns in definition order).  Each file ends with the ``\\.`` end-of-data
line, so an empty table still yields a well-formed file.

External tables keep their data outside the cluster; they are skipped with a
warning.  When every table is done, ``table_map.json`` records which file
holds which table, keyed by oid.
"""

import logging
from collections.abc import Sequence
from pathlib import Path

from pydantic import BaseModel, Field

from db_snapshot.adapters.base import DatabaseConnection
from db_snapshot.backup.layout import DumpLayout
from db_snapshot.catalog.models import Table
from db_snapshot.log import VERBOSE

logger = logging.getLogger(__name__)

END_OF_DATA = b"\\.\n"


class TableMapEntry(BaseModel):
    """Where one table's data lives, relative to the dump directory."""

    oid: int
    schema_name: str
    name: str
    path: str
    size_bytes: int = 0


class TableMap(BaseModel):
    """Identity of every exported table and its data file."""

    tables: list[TableMapEntry] = Field(default_factory=list)

    def get(self, oid: int) -> TableMapEntry | None:
        for entry in self.tables:
            if entry.oid == oid:
                return entry
        return None

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return path

    @classmethod
    def load(cls, path: str | Path) -> "TableMap":
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))


def copy_query(table: Table, leaf_partition_data: bool, at_least_gp7: bool) -> str:
    """COPY statement for one table.

    A partition root exported next to its leaves copies only its own rows;
    on Greenplum 7 a root cannot be the target of a plain COPY, so its rows
    are read through a query.
    """
    if table.definition.partition_def:
        if leaf_partition_data:
            return f"COPY (SELECT * FROM ONLY {table.fqn()}) TO STDOUT"
        if at_least_gp7:
            return f"COPY (SELECT * FROM {table.fqn()}) TO STDOUT"
    return f"COPY {table.fqn()} TO STDOUT"


def copy_table_out(
    connection: DatabaseConnection,
    table: Table,
    path: Path,
    leaf_partition_data: bool = False,
) -> int:
    """Stream one table into ``path``.

    Returns:
        Bytes written, terminator included.
    """
    query = copy_query(table, leaf_partition_data, connection.version.at_least("7"))
    with open(path, "wb") as f:
        written = connection.copy_out(query, f)
        f.write(END_OF_DATA)
    return written + len(END_OF_DATA)


def backup_data(
    connection: DatabaseConnection,
    tables: Sequence[Table],
    external_oids: set[int],
    layout: DumpLayout,
    leaf_partition_data: bool = False,
) -> TableMap:
    """Export every non-external table and write the table map.

    Args:
        connection: Connection inside the backup transaction.
        tables: Tables in inventory order.
        external_oids: Oids of external tables (skipped).
        layout: Dump directory receiving ``data/`` and ``table_map.json``.
        leaf_partition_data: Leaves are exported on their own.

    Returns:
        The table map that was written.
    """
    table_map = TableMap()
    for table in tables:
        if table.oid in external_oids:
            logger.warning("Skipping data dump of table %s because it is an external table.", table.fqn())
            continue
        path = layout.table_data_path(table.oid)
        logger.log(VERBOSE, "Writing data for table %s to file", table.fqn())
        written = copy_table_out(connection, table, path, leaf_partition_data)
        table_map.tables.append(
            TableMapEntry(
                oid=table.oid,
                schema_name=table.schema_name,
                name=table.name,
                path=str(path.relative_to(layout.root)),
                size_bytes=written,
            )
        )

    logger.log(VERBOSE, "Writing table map file to %s", layout.table_map_path)
    table_map.save(layout.table_map_path)
    return table_map
