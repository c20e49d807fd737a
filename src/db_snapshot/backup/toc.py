"""Table of contents: byte ranges of every object in the phase files.

Each phase file (global, pre-data, post-data) is written through a
``MetadataFile``, which counts bytes as they are written.  Every object
printed into it is recorded as a ``MetadataEntry`` whose
``[start_byte, end_byte)`` range holds exactly that object's statements, so
a restore can seek straight to one object without parsing SQL.

Usage:
    toc = TableOfContents()
    with MetadataFile(layout.predata_path, "predata", toc) as out:
        out.write_object("CREATE SCHEMA sales;", "sales", "sales", "SCHEMA")
    toc.save(layout.toc_path)

    entry = TableOfContents.load(layout.toc_path).lookup("predata", "sales", "sales")[0]
    read_entry(layout.predata_path, entry)
"""

from pathlib import Path
from typing import BinaryIO, Literal

from pydantic import BaseModel, Field

Phase = Literal["global", "predata", "postdata"]

PHASES: tuple[Phase, ...] = ("global", "predata", "postdata")

# Written between objects; never part of an object's range.
OBJECT_SEPARATOR = "\n\n"


class MetadataEntry(BaseModel):
    """One object's location within a phase file.

    Attributes:
        schema_name: Schema of the object ("" for cluster-level objects).
        name: Object name; signature for functions and aggregates.
        object_type: Statement kind, e.g. "TABLE", "INDEX", "SEQUENCE OWNER".
        reference_object: Object this one hangs off (an index's table), or "".
        start_byte: Offset of the first byte of the object's statements.
        end_byte: Offset one past the last byte.
    """

    schema_name: str
    name: str
    object_type: str
    reference_object: str = ""
    start_byte: int
    end_byte: int


class TableOfContents(BaseModel):
    """Entries of all three phase files, each list in file order."""

    global_entries: list[MetadataEntry] = Field(default_factory=list)
    predata_entries: list[MetadataEntry] = Field(default_factory=list)
    postdata_entries: list[MetadataEntry] = Field(default_factory=list)

    def entries(self, phase: Phase) -> list[MetadataEntry]:
        if phase not in PHASES:
            raise ValueError(f"Unknown phase '{phase}'. Expected one of: {', '.join(PHASES)}")
        return getattr(self, f"{phase}_entries")

    def add_entry(self, phase: Phase, entry: MetadataEntry) -> None:
        """Append an entry; ranges within a phase must not go backwards."""
        entries = self.entries(phase)
        if entries and entry.start_byte < entries[-1].end_byte:
            raise ValueError(
                f"Entry for {entry.name} starts at byte {entry.start_byte}, "
                f"before the previous entry ends ({entries[-1].end_byte})"
            )
        entries.append(entry)

    def lookup(
        self,
        phase: Phase,
        schema_name: str,
        name: str,
        object_type: str | None = None,
    ) -> list[MetadataEntry]:
        """All entries in ``phase`` for one object, in file order.

        An object can own more than one entry (a table and its column
        defaults, a sequence and its OWNED BY link).
        """
        return [
            entry
            for entry in self.entries(phase)
            if entry.schema_name == schema_name
            and entry.name == name
            and (object_type is None or entry.object_type == object_type)
        ]

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return path

    @classmethod
    def load(cls, path: str | Path) -> "TableOfContents":
        """Read a TOC written by ``save``.

        Raises:
            FileNotFoundError: If ``path`` does not exist.
            pydantic.ValidationError: If the file is not a valid TOC.
        """
        return cls.model_validate_json(Path(path).read_text(encoding="utf-8"))


class MetadataFile:
    """A phase file that records a TOC entry for every object written.

    Args:
        path: File to create (truncated if it exists).
        phase: Phase the file holds; selects the TOC entry list.
        toc: Table of contents receiving the entries.
    """

    def __init__(self, path: str | Path, phase: Phase, toc: TableOfContents) -> None:
        self.path = Path(path)
        self.phase = phase
        self.toc = toc
        self.byte_count = 0
        self._file: BinaryIO | None = None

    def __enter__(self) -> "MetadataFile":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, "wb")
        self.byte_count = 0

    def close(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            finally:
                self._file = None

    def write(self, text: str) -> None:
        """Write text that belongs to no object (headers, separators)."""
        if self._file is None:
            raise ValueError(f"{self.path} is not open for writing")
        data = text.encode("utf-8")
        self._file.write(data)
        self.byte_count += len(data)

    def write_object(
        self,
        statements: str,
        schema_name: str,
        name: str,
        object_type: str,
        reference_object: str = "",
    ) -> MetadataEntry:
        """Write one object's statements and record their byte range.

        Returns:
            The entry added to the TOC.
        """
        if self.byte_count > 0:
            self.write(OBJECT_SEPARATOR)
        start = self.byte_count
        self.write(statements)
        entry = MetadataEntry(
            schema_name=schema_name,
            name=name,
            object_type=object_type,
            reference_object=reference_object,
            start_byte=start,
            end_byte=self.byte_count,
        )
        self.toc.add_entry(self.phase, entry)
        return entry


def read_entry(path: str | Path, entry: MetadataEntry) -> str:
    """Read one object's statements back out of a phase file."""
    with open(path, "rb") as f:
        f.seek(entry.start_byte)
        return f.read(entry.end_byte - entry.start_byte).decode("utf-8")
