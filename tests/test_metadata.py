"""Tests for ownership, privilege and comment extraction and printing."""

from unittest.mock import MagicMock

from db_snapshot.adapters.version import GPDBVersion
from db_snapshot.backup.ddl_metadata import (
    comment_statement,
    metadata_statements,
    owner_statement,
    privilege_statements,
    with_metadata,
)
from db_snapshot.catalog.filters import RelationFilter
from db_snapshot.catalog.metadata import (
    DATABASE_PARAMS,
    INDEX_PARAMS,
    RELATION_PARAMS,
    get_comments_for_object_type,
    get_metadata_for_object_type,
    parse_acl,
    type_params,
)
from db_snapshot.catalog.models import ACL, ObjectMetadata, UniqueID


def _make_mock_connection(rows: list[dict] | None = None, major: int = 6) -> MagicMock:
    conn = MagicMock()
    conn.select.return_value = rows or []
    conn.version = GPDBVersion(major=major)
    return conn


# ------------------------------------------------------------------
# aclitem parsing
# ------------------------------------------------------------------


class TestParseAcl:
    """Parsing of aclitem strings."""

    def test_simple_grant(self):
        acl = parse_acl("alice=rw/postgres")
        assert acl.grantee == "alice"
        assert acl.privileges == ["SELECT", "UPDATE"]
        assert acl.grantable == []

    def test_grant_option(self):
        acl = parse_acl("alice=r*w/postgres")
        assert acl.privileges == ["SELECT", "UPDATE"]
        assert acl.grantable == ["SELECT"]

    def test_public_grantee_is_empty(self):
        acl = parse_acl("=U/postgres")
        assert acl.grantee == ""
        assert acl.privileges == ["USAGE"]

    def test_quoted_grantee(self):
        acl = parse_acl('"Sales Team"=r/postgres')
        assert acl.grantee == '"Sales Team"'

    def test_group_prefix_stripped(self):
        acl = parse_acl("group analysts=r/postgres")
        assert acl.grantee == "analysts"

    def test_all_table_privileges(self):
        acl = parse_acl("bob=arwdDxt/postgres")
        assert acl.privileges == [
            "INSERT",
            "SELECT",
            "UPDATE",
            "DELETE",
            "TRUNCATE",
            "REFERENCES",
            "TRIGGER",
        ]

    def test_not_an_aclitem(self):
        assert parse_acl("garbage") is None


# ------------------------------------------------------------------
# Metadata queries
# ------------------------------------------------------------------


class TestMetadataQueries:
    """Query construction and row conversion."""

    def test_rows_keyed_by_unique_id(self):
        conn = _make_mock_connection(
            [
                {"oid": 10, "class_id": 1259, "privileges": ["=r/gpadmin"], "owner": "gpadmin", "comment": "hi"},
                {"oid": 11, "class_id": 1259, "privileges": None, "owner": "bob", "comment": ""},
            ]
        )
        result = get_metadata_for_object_type(conn, RelationFilter(), RELATION_PARAMS)

        first = result[UniqueID(class_id=1259, oid=10)]
        assert first.owner == "gpadmin"
        assert first.comment == "hi"
        assert first.explicit_acl
        assert first.privileges == [ACL(grantee="", privileges=["SELECT"])]

        second = result[UniqueID(class_id=1259, oid=11)]
        assert not second.explicit_acl
        assert second.privileges == []

    def test_relation_scope_uses_filter(self):
        conn = _make_mock_connection()
        get_metadata_for_object_type(conn, RelationFilter(include_oids=(42,)), RELATION_PARAMS)
        query = conn.select.call_args[0][0]
        assert "o.oid IN (42)" in query
        assert "FROM pg_class o" in query
        assert "o.relacl::text[]" in query

    def test_shared_catalog_uses_shdescription(self):
        conn = _make_mock_connection()
        get_metadata_for_object_type(conn, RelationFilter(), DATABASE_PARAMS)
        query = conn.select.call_args[0][0]
        assert "pg_shdescription" in query
        assert "current_database()" in query

    def test_type_acl_only_from_gp6(self):
        assert type_params(_make_mock_connection(major=5)).acl_field == ""
        assert type_params(_make_mock_connection(major=6)).acl_field == "typacl"

    def test_comments_only_keep_commented_objects(self):
        conn = _make_mock_connection(
            [
                {"oid": 5, "class_id": 1259, "privileges": None, "owner": "", "comment": "idx"},
                {"oid": 6, "class_id": 1259, "privileges": None, "owner": "", "comment": ""},
            ]
        )
        result = get_comments_for_object_type(
            conn, RelationFilter(), INDEX_PARAMS, oid_field="indexrelid", comment_class="pg_class"
        )
        assert list(result) == [UniqueID(class_id=1259, oid=5)]
        query = conn.select.call_args[0][0]
        assert "o.indexrelid AS oid" in query
        assert "'pg_class'::regclass" in query


# ------------------------------------------------------------------
# Metadata statements
# ------------------------------------------------------------------


class TestMetadataStatements:
    """COMMENT / OWNER / GRANT output."""

    def test_comment_escapes_quotes(self):
        assert comment_statement("TABLE", "public.t", "it's") == "COMMENT ON TABLE public.t IS 'it''s';"

    def test_no_comment_no_statement(self):
        assert comment_statement("TABLE", "public.t", "") == ""

    def test_owner(self):
        assert owner_statement("SCHEMA", "sales", "bob") == "ALTER SCHEMA sales OWNER TO bob;"

    def test_default_privileges_emit_nothing(self):
        assert privilege_statements("TABLE", "public.t", ObjectMetadata(owner="bob")) == []

    def test_explicit_acl_revokes_then_grants(self):
        metadata = ObjectMetadata(
            owner="bob",
            explicit_acl=True,
            privileges=[
                ACL(grantee="", privileges=["SELECT"]),
                ACL(grantee="alice", privileges=["SELECT", "UPDATE"], grantable=["UPDATE"]),
            ],
        )
        assert privilege_statements("TABLE", "public.t", metadata) == [
            "REVOKE ALL ON TABLE public.t FROM PUBLIC;",
            "REVOKE ALL ON TABLE public.t FROM bob;",
            "GRANT SELECT ON TABLE public.t TO PUBLIC;",
            "GRANT SELECT ON TABLE public.t TO alice;",
            "GRANT UPDATE ON TABLE public.t TO alice WITH GRANT OPTION;",
        ]

    def test_explicit_empty_acl_revokes_everything(self):
        metadata = ObjectMetadata(owner="bob", explicit_acl=True)
        statements = privilege_statements("TABLE", "public.t", metadata)
        assert statements == [
            "REVOKE ALL ON TABLE public.t FROM PUBLIC;",
            "REVOKE ALL ON TABLE public.t FROM bob;",
        ]

    def test_block_order_and_type_overrides(self):
        metadata = ObjectMetadata(owner="bob", comment="v", explicit_acl=True)
        block = metadata_statements(metadata, "VIEW", "public.v", grant_type="TABLE", owner_type="TABLE")
        lines = block.split("\n")
        assert lines[0] == "COMMENT ON VIEW public.v IS 'v';"
        assert lines[1] == "ALTER TABLE public.v OWNER TO bob;"
        assert lines[2] == "REVOKE ALL ON TABLE public.v FROM PUBLIC;"

    def test_missing_metadata_is_empty(self):
        assert metadata_statements(None, "TABLE", "public.t") == ""

    def test_with_metadata(self):
        assert with_metadata("CREATE X;", "") == "CREATE X;"
        assert with_metadata("CREATE X;", "ALTER X;") == "CREATE X;\n\nALTER X;"
