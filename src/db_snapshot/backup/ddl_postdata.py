"""Post-data phase printers: indexes, rules, triggers, materialized view refresh.

Everything here is replayed after table data is loaded.
"""

from collections.abc import Sequence

from db_snapshot.backup.ddl_metadata import metadata_statements, with_metadata
from db_snapshot.backup.toc import MetadataFile
from db_snapshot.catalog.models import (
    IndexDefinition,
    MaterializedView,
    ObjectMetadata,
    RuleDefinition,
    TriggerDefinition,
    UniqueID,
)

MetadataMap = dict[UniqueID, ObjectMetadata]


def _terminated(definition: str) -> str:
    definition = definition.strip()
    return definition if definition.endswith(";") else definition + ";"


def print_create_indexes(
    out: MetadataFile,
    indexes: Sequence[IndexDefinition],
    metadata: MetadataMap,
) -> None:
    """CREATE INDEX, then tablespace and clustering where set."""
    for index in indexes:
        statements = [_terminated(index.definition)]
        if index.tablespace:
            statements.append(f"ALTER INDEX {index.fqn()} SET TABLESPACE {index.tablespace};")
        if index.is_clustered:
            statements.append(f"ALTER TABLE {index.owning_fqn()} CLUSTER ON {index.name};")
        block = metadata_statements(metadata.get(index.unique_id()), "INDEX", index.fqn())
        out.write_object(
            with_metadata("\n".join(statements), block),
            index.schema_name,
            index.name,
            "INDEX",
            index.owning_fqn(),
        )


def print_create_rules(out: MetadataFile, rules: Sequence[RuleDefinition], metadata: MetadataMap) -> None:
    for rule in rules:
        block = metadata_statements(
            metadata.get(rule.unique_id()),
            "RULE",
            rule.name,
            comment_name=f"{rule.name} ON {rule.owning_fqn()}",
        )
        out.write_object(
            with_metadata(_terminated(rule.definition), block),
            rule.schema_name,
            rule.name,
            "RULE",
            rule.owning_fqn(),
        )


def print_create_triggers(
    out: MetadataFile,
    triggers: Sequence[TriggerDefinition],
    metadata: MetadataMap,
) -> None:
    for trigger in triggers:
        block = metadata_statements(
            metadata.get(trigger.unique_id()),
            "TRIGGER",
            trigger.name,
            comment_name=f"{trigger.name} ON {trigger.owning_fqn()}",
        )
        out.write_object(
            with_metadata(_terminated(trigger.definition), block),
            trigger.schema_name,
            trigger.name,
            "TRIGGER",
            trigger.owning_fqn(),
        )


def print_refresh_materialized_views(out: MetadataFile, views: Sequence[MaterializedView]) -> None:
    """Populate materialized views created empty in pre-data."""
    for view in views:
        out.write_object(
            f"REFRESH MATERIALIZED VIEW {view.fqn()};",
            view.schema_name,
            view.name,
            "MATERIALIZED VIEW DATA",
        )
