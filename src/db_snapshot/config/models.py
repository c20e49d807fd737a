"""Pydantic models for connection profiles and backup options."""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

from db_snapshot.errors import ConfigurationError

DEFAULT_LOCK_BATCH_SIZE = 100


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution


class BackupOptions(BaseModel):
    """Already-validated inputs for one backup run.

    Include/exclude lists follow these rules:

    - ``include_relations`` takes precedence: when present, relation scope is
      an explicit OID membership test and schema filters do not apply, so
      combining it with a schema filter is rejected.
    - ``include_schemas`` and ``exclude_schemas`` are mutually exclusive.
    - ``exclude_relations`` narrows whatever the schema filter selects.

    Example:
        >>> opts = BackupOptions(dbname="sales", exclude_relations=["a.bar"])
        >>> opts.lock_batch_size
        100
    """

    dbname: str = ""
    dump_dir: Path = Path("backups")
    include_schemas: list[str] = Field(default_factory=list)
    exclude_schemas: list[str] = Field(default_factory=list)
    include_relations: list[str] = Field(default_factory=list)
    exclude_relations: list[str] = Field(default_factory=list)
    leaf_partition_data: bool = False
    lock_batch_size: int = Field(default=DEFAULT_LOCK_BATCH_SIZE, ge=1)
    show_progress: bool = False

    @field_validator("include_relations", "exclude_relations")
    @classmethod
    def _require_qualified_names(cls, names: list[str]) -> list[str]:
        for name in names:
            schema, _, relation = name.partition(".")
            if not schema or not relation:
                raise ValueError(f"Relation '{name}' must be schema-qualified (schema.relation)")
        return names

    @model_validator(mode="after")
    def _check_exclusive_filters(self) -> "BackupOptions":
        if self.include_schemas and self.exclude_schemas:
            raise ConfigurationError(
                "include_schemas and exclude_schemas cannot be used together"
            )
        if self.include_relations and (self.include_schemas or self.exclude_schemas):
            raise ConfigurationError(
                "include_relations cannot be combined with include_schemas or exclude_schemas"
            )
        return self


class DatabaseConfig(BaseModel):
    """Complete configuration from db.toml."""

    profiles: dict[str, DatabaseProfile]
    backup: BackupOptions = Field(default_factory=BackupOptions)
