"""Pydantic models for catalog records.

Every record is built once, from a row returned inside the backup
transaction, and never mutated afterwards.  Records are correlated across
queries purely by identity: ``oid`` or ``UniqueID`` (classid, oid).

Names (``schema_name``, ``name``) are stored already passed through
``quote_ident`` on the server, so they can be spliced into DDL as-is.

This module contains:
- Identity: UniqueID, class id constants, make_fqn
- Metadata: ACL, ObjectMetadata
- Relations: Relation, SequenceDefinition, Sequence, View, MaterializedView
- Tables: ColumnDefinition, ExternalTableDefinition, ForeignTableDefinition,
  PartitionChild, TableDefinition, Table, Constraint
- Types: ShellType, BaseType, CompositeAttribute, CompositeType, EnumType,
  DomainConstraint, Domain
- Functions: FunctionInfo, Function, ProceduralLanguage, Aggregate, Cast,
  ExternalProtocol
- Post-data: IndexDefinition, RuleDefinition, TriggerDefinition
- Globals: SessionGUCs, DatabaseInfo, ResourceQueue, Role, Schema
"""

from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field

# ============================================================================
# Identity
# ============================================================================

# Fixed oids of the catalogs that define each object family.
PG_AUTHID_OID = 1260
PG_CAST_OID = 2605
PG_CLASS_OID = 1259
PG_CONSTRAINT_OID = 2606
PG_DATABASE_OID = 1262
PG_EXTPROTOCOL_OID = 7175
PG_LANGUAGE_OID = 2612
PG_NAMESPACE_OID = 2615
PG_PROC_OID = 1255
PG_RESQUEUE_OID = 6026
PG_REWRITE_OID = 2618
PG_TRIGGER_OID = 2620
PG_TYPE_OID = 1247

# Objects created by users get oids at or above this value.
FIRST_NORMAL_OBJECT_ID = 16384


def make_fqn(schema_name: str, name: str) -> str:
    """Join two already-quoted identifiers into a qualified name."""
    return f"{schema_name}.{name}"


class UniqueID(BaseModel):
    """(classid, oid) pair identifying one object across all catalogs."""

    model_config = ConfigDict(frozen=True)

    class_id: int
    oid: int


class CatalogObject(BaseModel):
    """Base for records that live in a schema."""

    model_config = ConfigDict(frozen=True)

    # Catalog that defines this object family; set by each subclass.
    CLASS_ID: ClassVar[int] = PG_CLASS_OID

    oid: int
    schema_name: str
    name: str

    def fqn(self) -> str:
        return make_fqn(self.schema_name, self.name)

    def unique_id(self) -> UniqueID:
        return UniqueID(class_id=self.CLASS_ID, oid=self.oid)


# ============================================================================
# Object Metadata (owner, privileges, comment)
# ============================================================================


class ACL(BaseModel):
    """One parsed ``aclitem``: privileges granted to a grantee.

    An empty ``grantee`` means PUBLIC.
    """

    grantee: str = ""
    privileges: list[str] = Field(default_factory=list)
    grantable: list[str] = Field(default_factory=list)


class ObjectMetadata(BaseModel):
    """Ownership, privileges and comment for one catalog object.

    ``explicit_acl`` is False when the ACL column is NULL (default
    privileges); nothing is emitted for privileges in that case.
    """

    privileges: list[ACL] = Field(default_factory=list)
    explicit_acl: bool = False
    owner: str = ""
    comment: str = ""


# ============================================================================
# Relations
# ============================================================================


class Relation(CatalogObject):
    """A pg_class entry: table, foreign table, sequence or view."""

    schema_oid: int = 0


class SequenceDefinition(BaseModel):
    """Parameters and state of one sequence."""

    last_val: int
    start_val: int = 0
    increment: int
    max_val: int
    min_val: int
    cache_val: int
    log_cnt: int = 0
    is_cycled: bool
    is_called: bool
    owning_table: str = ""
    owning_column: str = ""


class Sequence(Relation):
    """A sequence relation joined with its definition and owner links."""

    definition: SequenceDefinition


class View(CatalogObject):
    """A regular view (or, before partitioning, a materialized one)."""

    definition: str
    options: str = ""
    tablespace: str = ""
    is_materialized: bool = False

    def to_materialized(self) -> "MaterializedView":
        return MaterializedView(
            oid=self.oid,
            schema_name=self.schema_name,
            name=self.name,
            definition=self.definition,
            options=self.options,
            tablespace=self.tablespace,
        )


class MaterializedView(CatalogObject):
    """A materialized view; dumped like a view but refreshed after data load."""

    definition: str
    options: str = ""
    tablespace: str = ""


# ============================================================================
# Tables
# ============================================================================


class ColumnDefinition(BaseModel):
    """One column of a table, in definition order."""

    model_config = ConfigDict(frozen=True)

    oid: int  # owning table
    num: int
    name: str
    not_null: bool = False
    has_default: bool = False
    type: str
    encoding: str = ""
    stat_target: int = -1
    storage_type: str = ""
    default_val: str = ""
    comment: str = ""


class ExternalTableDefinition(BaseModel):
    """Location and format of an external (out-of-cluster) table."""

    oid: int
    locations: list[str] = Field(default_factory=list)
    exec_location: str = ""
    format_type: str = "t"
    format_opts: str = ""
    command: str = ""
    reject_limit: int = 0
    reject_limit_type: str = ""
    log_errors: bool = False
    encoding: str = ""
    writable: bool = False

    @property
    def is_web(self) -> bool:
        """EXECUTE tables and http:// locations are WEB external tables."""
        if self.command:
            return True
        return any(loc.startswith("http") for loc in self.locations)


class ForeignTableDefinition(BaseModel):
    """Server and options of a foreign table."""

    oid: int
    server: str
    options: str = ""


class PartitionChild(BaseModel):
    """One descendant of a partitioned table (Greenplum 7 declarative partitioning).

    ``partition_key`` is set when the child is itself partitioned.
    """

    name: str
    parent: str
    bound: str
    partition_key: str = ""


class TableDefinition(BaseModel):
    """Everything needed to emit CREATE TABLE for one relation.

    ``is_partition_child`` marks leaf partitions: their DDL is part of the
    root's partition definition and they are never created on their own.
    """

    columns: list[ColumnDefinition] = Field(default_factory=list)
    distribution_policy: str = ""
    partition_def: str = ""
    partition_template_def: str = ""
    partitions: list[PartitionChild] = Field(default_factory=list)
    is_partition_child: bool = False
    storage_opts: str = ""
    tablespace: str = ""
    inherits: list[str] = Field(default_factory=list)
    is_external: bool = False
    external: ExternalTableDefinition | None = None
    foreign: ForeignTableDefinition | None = None


class Table(Relation):
    """A relation joined with its full definition."""

    definition: TableDefinition


class Constraint(CatalogObject):
    """A table constraint added with ALTER TABLE after all tables exist.

    ``con_type`` is the pg_constraint.contype letter: c, f, p, u or x.
    """

    CLASS_ID: ClassVar[int] = PG_CONSTRAINT_OID

    con_type: str
    con_def: str
    owning_object: str


# ============================================================================
# Types
# ============================================================================


class _TypeObject(CatalogObject):
    CLASS_ID: ClassVar[int] = PG_TYPE_OID


class ShellType(_TypeObject):
    """A type declared with ``CREATE TYPE name;`` and never completed."""

    pass


class BaseType(_TypeObject):
    """A base type defined by its I/O functions."""

    input: str
    output: str
    receive: str = ""
    send: str = ""
    modin: str = ""
    modout: str = ""
    internal_length: int = -1
    is_passed_by_value: bool = False
    alignment: str = ""
    storage: str = ""
    default_val: str = ""
    element: str = ""
    delimiter: str = ","
    category: str = "U"
    preferred: bool = False


class CompositeAttribute(BaseModel):
    """One attribute of a composite type."""

    name: str
    type: str


class CompositeType(_TypeObject):
    """A standalone composite type (``CREATE TYPE ... AS (...)``)."""

    attributes: list[CompositeAttribute] = Field(default_factory=list)


class EnumType(_TypeObject):
    """An enum type with its labels in sort order."""

    labels: list[str] = Field(default_factory=list)


class DomainConstraint(BaseModel):
    """A CHECK constraint attached to a domain."""

    name: str
    definition: str


class Domain(_TypeObject):
    """A domain over a base type."""

    base_type: str
    default_val: str = ""
    not_null: bool = False
    constraints: list[DomainConstraint] = Field(default_factory=list)


# ============================================================================
# Functions and function-referencing objects
# ============================================================================


class FunctionInfo(BaseModel):
    """Identity of any function, used to resolve oid references.

    Aggregates, casts, languages and protocols store function oids; this
    record turns such an oid back into a callable name.
    """

    model_config = ConfigDict(frozen=True)

    oid: int
    schema_name: str
    name: str
    arguments: str = ""
    identity_arguments: str = ""
    is_internal: bool = False

    def qualified_name(self) -> str:
        return make_fqn(self.schema_name, self.name)

    def signature(self) -> str:
        return f"{self.qualified_name()}({self.identity_arguments})"


class Function(CatalogObject):
    """A user-defined function with everything needed for CREATE FUNCTION."""

    CLASS_ID: ClassVar[int] = PG_PROC_OID

    arguments: str = ""
    identity_arguments: str = ""
    result_type: str = ""
    function_body: str = ""
    binary_path: str = ""
    language: str
    volatility: str = "v"
    is_strict: bool = False
    is_security_definer: bool = False
    is_window: bool = False
    config: list[str] = Field(default_factory=list)
    cost: float = 0
    num_rows: float = 0
    data_access: str = ""
    exec_location: str = ""

    def signature(self) -> str:
        return f"{self.fqn()}({self.identity_arguments})"


class ProceduralLanguage(BaseModel):
    """A procedural language and the oids of its support functions."""

    model_config = ConfigDict(frozen=True)

    oid: int
    name: str
    owner: str = ""
    is_pl: bool = True
    pl_trusted: bool = False
    handler: int = 0
    inline: int = 0
    validator: int = 0

    def unique_id(self) -> UniqueID:
        return UniqueID(class_id=PG_LANGUAGE_OID, oid=self.oid)


class Aggregate(CatalogObject):
    """An aggregate; support functions are stored as oids."""

    CLASS_ID: ClassVar[int] = PG_PROC_OID

    arguments: str = ""
    identity_arguments: str = ""
    transition_function: int
    prelim_function: int = 0
    final_function: int = 0
    sort_operator: str = ""
    transition_data_type: str
    initial_value: str = ""
    initial_value_is_null: bool = True
    is_ordered: bool = False


class Cast(BaseModel):
    """A user-defined cast.

    ``cast_context``: e (explicit), a (assignment), i (implicit).
    ``cast_method``: f (function), i (inout), b (binary coercible).
    """

    model_config = ConfigDict(frozen=True)

    oid: int
    source_type: str
    target_type: str
    function_schema: str = ""
    function_name: str = ""
    function_args: str = ""
    cast_context: str = "e"
    cast_method: str = "f"

    def unique_id(self) -> UniqueID:
        return UniqueID(class_id=PG_CAST_OID, oid=self.oid)


class ExternalProtocol(BaseModel):
    """A custom external-table data-access protocol."""

    model_config = ConfigDict(frozen=True)

    oid: int
    name: str
    owner: str = ""
    trusted: bool = False
    read_function: int = 0
    write_function: int = 0
    validator: int = 0

    def unique_id(self) -> UniqueID:
        return UniqueID(class_id=PG_EXTPROTOCOL_OID, oid=self.oid)


# ============================================================================
# Post-data objects
# ============================================================================


class _TableDependent(CatalogObject):
    """An object whose DDL names the table it belongs to."""

    owning_schema: str
    owning_table: str
    definition: str

    def owning_fqn(self) -> str:
        return make_fqn(self.owning_schema, self.owning_table)


class IndexDefinition(_TableDependent):
    """A non-constraint index, emitted from ``pg_get_indexdef``."""

    tablespace: str = ""
    is_clustered: bool = False


class RuleDefinition(_TableDependent):
    """A rewrite rule, emitted from ``pg_get_ruledef``."""

    CLASS_ID: ClassVar[int] = PG_REWRITE_OID


class TriggerDefinition(_TableDependent):
    """A non-internal trigger, emitted from ``pg_get_triggerdef``."""

    CLASS_ID: ClassVar[int] = PG_TRIGGER_OID


# ============================================================================
# Global objects
# ============================================================================


class SessionGUCs(BaseModel):
    """Session settings that must match when the dump is replayed."""

    client_encoding: str = "UTF8"
    standard_conforming_strings: str = "on"
    default_with_oids: str = ""


class DatabaseInfo(BaseModel):
    """The database being backed up."""

    oid: int
    name: str
    tablespace: str = ""
    encoding: str = ""
    collate: str = ""
    ctype: str = ""

    def unique_id(self) -> UniqueID:
        return UniqueID(class_id=PG_DATABASE_OID, oid=self.oid)


class ResourceQueue(BaseModel):
    """A Greenplum resource queue."""

    oid: int
    name: str
    active_statements: int = -1
    max_cost: str = "-1"
    cost_overcommit: bool = False
    min_cost: str = "0"
    priority: str = "medium"
    memory_limit: str = "-1"

    def unique_id(self) -> UniqueID:
        return UniqueID(class_id=PG_RESQUEUE_OID, oid=self.oid)


class Role(BaseModel):
    """A cluster role with its attributes."""

    oid: int
    name: str
    is_superuser: bool = False
    inherit: bool = True
    create_role: bool = False
    create_db: bool = False
    can_login: bool = False
    connection_limit: int = -1
    password: str = ""
    valid_until: str = ""
    resource_queue: str = ""
    create_external_table: bool = False
    create_writable_external_table: bool = False

    def unique_id(self) -> UniqueID:
        return UniqueID(class_id=PG_AUTHID_OID, oid=self.oid)


class Schema(BaseModel):
    """A user schema (namespace)."""

    model_config = ConfigDict(frozen=True)

    oid: int
    name: str

    def unique_id(self) -> UniqueID:
        return UniqueID(class_id=PG_NAMESPACE_OID, oid=self.oid)
