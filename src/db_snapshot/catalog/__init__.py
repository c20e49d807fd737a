"""Catalog Query Layer: filters, inventory and metadata extraction.

Every function takes the connection and, where objects are schema-scoped,
the ``RelationFilter`` resolved once per run.  Nothing here opens its own
transaction or caches results between calls.

Usage:
    from db_snapshot.catalog import resolve_filters, get_user_table_relations
    from db_snapshot.catalog import construct_table_definitions, get_metadata_for_object_type
"""

from db_snapshot.catalog.cluster import (
    get_all_user_schemas,
    get_database_gucs,
    get_database_info,
    get_resource_queues,
    get_roles,
    get_session_gucs,
)
from db_snapshot.catalog.dependencies import sort_objects, topological_sort
from db_snapshot.catalog.filters import RelationFilter, resolve_filters
from db_snapshot.catalog.functions import (
    get_aggregates,
    get_casts,
    get_external_protocols,
    get_function_oid_to_info_map,
    get_functions,
    get_procedural_languages,
)
from db_snapshot.catalog.metadata import (
    get_comments_for_object_type,
    get_metadata_for_object_type,
    parse_acl,
)
from db_snapshot.catalog.models import UniqueID
from db_snapshot.catalog.postdata import (
    construct_implicit_index_names,
    get_indexes,
    get_rules,
    get_triggers,
)
from db_snapshot.catalog.relations import (
    get_all_sequences,
    get_all_views,
    get_external_table_oids,
    get_foreign_table_relations,
    get_sequence_column_owner_map,
    get_user_table_relations,
    get_view_dependencies,
)
from db_snapshot.catalog.tables import (
    construct_table_definitions,
    get_constraints,
    sort_tables_by_inheritance,
)
from db_snapshot.catalog.types import (
    get_base_types,
    get_composite_types,
    get_domains,
    get_enum_types,
    get_shell_types,
)

__all__ = [
    # Filters
    "RelationFilter",
    "resolve_filters",
    # Inventory
    "get_user_table_relations",
    "get_foreign_table_relations",
    "get_external_table_oids",
    "get_all_sequences",
    "get_sequence_column_owner_map",
    "get_all_views",
    "get_view_dependencies",
    # Tables
    "construct_table_definitions",
    "sort_tables_by_inheritance",
    "get_constraints",
    # Types
    "get_shell_types",
    "get_base_types",
    "get_composite_types",
    "get_enum_types",
    "get_domains",
    # Functions
    "get_function_oid_to_info_map",
    "get_functions",
    "get_procedural_languages",
    "get_aggregates",
    "get_casts",
    "get_external_protocols",
    # Post-data
    "construct_implicit_index_names",
    "get_indexes",
    "get_rules",
    "get_triggers",
    # Global
    "get_session_gucs",
    "get_database_info",
    "get_database_gucs",
    "get_resource_queues",
    "get_roles",
    "get_all_user_schemas",
    # Metadata
    "UniqueID",
    "parse_acl",
    "get_metadata_for_object_type",
    "get_comments_for_object_type",
    # Ordering
    "topological_sort",
    "sort_objects",
]
