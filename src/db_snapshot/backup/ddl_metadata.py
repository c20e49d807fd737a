"""Ownership, privilege and comment statements shared by every printer."""

from db_snapshot.catalog.filters import quote_literal
from db_snapshot.catalog.models import ACL, ObjectMetadata


def _grantee(acl: ACL) -> str:
    return acl.grantee or "PUBLIC"


def comment_statement(object_type: str, name: str, comment: str) -> str:
    """``COMMENT ON`` statement, or "" when there is no comment."""
    if not comment:
        return ""
    return f"COMMENT ON {object_type} {name} IS {quote_literal(comment)};"


def owner_statement(object_type: str, name: str, owner: str) -> str:
    if not owner:
        return ""
    return f"ALTER {object_type} {name} OWNER TO {owner};"


def privilege_statements(object_type: str, name: str, metadata: ObjectMetadata) -> list[str]:
    """REVOKE the defaults, then GRANT exactly what the ACL lists.

    Nothing is emitted when the object still has default privileges.
    """
    if not metadata.explicit_acl:
        return []

    statements = [f"REVOKE ALL ON {object_type} {name} FROM PUBLIC;"]
    if metadata.owner:
        statements.append(f"REVOKE ALL ON {object_type} {name} FROM {metadata.owner};")

    for acl in metadata.privileges:
        plain = [p for p in acl.privileges if p not in acl.grantable]
        if plain:
            statements.append(f"GRANT {','.join(plain)} ON {object_type} {name} TO {_grantee(acl)};")
        if acl.grantable:
            statements.append(
                f"GRANT {','.join(acl.grantable)} ON {object_type} {name} "
                f"TO {_grantee(acl)} WITH GRANT OPTION;"
            )
    return statements


def metadata_statements(
    metadata: ObjectMetadata | None,
    object_type: str,
    name: str,
    grant_type: str | None = None,
    owner_type: str | None = None,
    comment_type: str | None = None,
    comment_name: str | None = None,
) -> str:
    """Comment, owner and privileges for one object, as one block.

    The ``*_type`` arguments override ``object_type`` where the three
    statement kinds spell the object differently (``GRANT ... ON TABLE`` for
    a view, ``COMMENT ON CONSTRAINT c ON t``).

    Example:
        metadata_statements(meta, "FUNCTION", "public.add(integer, integer)")
    """
    if metadata is None:
        return ""
    statements = [
        comment_statement(comment_type or object_type, comment_name or name, metadata.comment),
        owner_statement(owner_type or object_type, name, metadata.owner),
        *privilege_statements(grant_type or object_type, name, metadata),
    ]
    return "\n".join(statement for statement in statements if statement)


def with_metadata(statement: str, metadata_block: str) -> str:
    """Append a metadata block to an object's definition."""
    if not metadata_block:
        return statement
    return f"{statement}\n\n{metadata_block}"
