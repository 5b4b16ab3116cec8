"""Tests for the authorization model DSL parser."""

from __future__ import annotations

import pytest

from packages.fga.dsl import parse_dsl
from packages.fga.errors import ModelParseError
from packages.fga.schema import (
    ComputedUserset,
    SetDifference,
    SetIntersection,
    SetUnion,
    This,
    TupleToUserset,
)

FOLDER_MODEL = """
model
  schema 1.1

type user
type group
  relations
    define member: [user, group#member]
type folder
  relations
    define viewer: [user, user:*, group#member]
type document
  relations
    define parent: [folder]
    define owner: [user]
    define editor: [user] or owner
    define viewer: [user] or editor or viewer from parent
    define blocked: [user]
    define can_view: viewer but not blocked
    define can_share: (owner or editor) and viewer
"""


class TestParseDsl:
    """Tests for well-formed models."""

    def test_parses_acme_model(self, acme_model: str) -> None:
        """The document/app model parses into three types."""
        schema = parse_dsl(acme_model)
        assert schema.schema_version == "1.1"
        assert [t.type for t in schema.type_definitions] == ["user", "document", "app"]

        viewer = schema.get_relation("document", "viewer")
        assert isinstance(viewer.rewrite, SetUnion)
        assert isinstance(viewer.rewrite.children[0], This)
        assert viewer.rewrite.children[1] == ComputedUserset(relation="editor")
        assert [str(ref) for ref in viewer.directly_related] == ["user"]

    def test_parses_all_rewrite_kinds(self) -> None:
        """Union, intersection, difference and tuple-to-userset are supported."""
        schema = parse_dsl(FOLDER_MODEL)

        viewer = schema.get_relation("document", "viewer")
        assert TupleToUserset(tupleset="parent", computed_userset="viewer") in viewer.rewrite.children

        can_view = schema.get_relation("document", "can_view")
        assert isinstance(can_view.rewrite, SetDifference)
        assert can_view.rewrite.subtract == ComputedUserset(relation="blocked")

        can_share = schema.get_relation("document", "can_share")
        assert isinstance(can_share.rewrite, SetIntersection)
        assert isinstance(can_share.rewrite.children[0], SetUnion)

    def test_parses_type_restrictions(self) -> None:
        """Wildcards and usersets are recorded as type restrictions."""
        schema = parse_dsl(FOLDER_MODEL)
        refs = schema.get_relation("folder", "viewer").directly_related
        assert [str(ref) for ref in refs] == ["user", "user:*", "group#member"]
        assert refs[1].wildcard is True
        assert refs[2].relation == "member"

    def test_comments_are_ignored(self) -> None:
        """Full-line and trailing comments are stripped."""
        schema = parse_dsl(
            "# header\nmodel\n  schema 1.1\ntype user # people\ntype doc\n"
            "  relations\n    define viewer: [user] # direct only\n"
        )
        assert schema.get_relation("doc", "viewer") is not None

    def test_digest_is_stable(self, acme_model: str) -> None:
        """Whitespace differences do not change the schema digest."""
        compact = "model\nschema 1.1\ntype user\ntype document\nrelations\n" \
            "define viewer: [user] or editor\ndefine editor: [user]\n" \
            "type app\nrelations\ndefine admin: [user]\n"
        assert parse_dsl(compact).digest() == parse_dsl(acme_model).digest()

    def test_digest_changes_with_model(self, acme_model: str) -> None:
        """A different model has a different digest."""
        changed = acme_model.replace("define admin: [user]", "define admin: [user, user:*]")
        assert parse_dsl(changed).digest() != parse_dsl(acme_model).digest()


class TestParseDslErrors:
    """Tests for malformed models."""

    @pytest.mark.parametrize(
        "source",
        [
            "",
            "   \n",
            "type user",
            "model\n  schema 2.0\ntype user",
            "model\n  schema 1.1",
            "model\n  schema 1.1\ntype user\n  relations\n    define viewer: [user",
            "model\n  schema 1.1\ntype user\n  relations\n    define viewer: []",
        ],
    )
    def test_rejects_malformed_source(self, source: str) -> None:
        """Malformed source raises ModelParseError."""
        with pytest.raises(ModelParseError):
            parse_dsl(source)

    def test_rejects_unknown_type(self) -> None:
        """Type restrictions must name a defined type."""
        with pytest.raises(ModelParseError, match="unknown type 'team'"):
            parse_dsl("model\n  schema 1.1\ntype doc\n  relations\n    define viewer: [team]")

    def test_rejects_unknown_relation(self) -> None:
        """Computed relations must exist on the same type."""
        with pytest.raises(ModelParseError, match="'editor' is not defined"):
            parse_dsl(
                "model\n  schema 1.1\ntype user\ntype doc\n  relations\n"
                "    define viewer: [user] or editor"
            )

    def test_rejects_mixed_operators(self) -> None:
        """Mixing or/and without parentheses is ambiguous."""
        with pytest.raises(ModelParseError, match="parentheses"):
            parse_dsl(
                "model\n  schema 1.1\ntype user\ntype doc\n  relations\n"
                "    define a: [user]\n    define b: [user]\n"
                "    define c: [user] or a and b"
            )

    def test_rejects_conditions(self) -> None:
        """Conditional type restrictions are not supported."""
        with pytest.raises(ModelParseError, match="conditions"):
            parse_dsl(
                "model\n  schema 1.1\ntype user\ntype doc\n  relations\n"
                "    define viewer: [user with non_expired]"
            )

    def test_reports_line_number(self) -> None:
        """The offending line is reported."""
        with pytest.raises(ModelParseError) as exc_info:
            parse_dsl("model\n  schema 1.1\ntype user\n  bogus statement")
        assert exc_info.value.line == 4
        assert exc_info.value.code == "model_parse_error"

    def test_rejects_duplicate_relation(self) -> None:
        """A relation may only be defined once per type."""
        with pytest.raises(ModelParseError, match="duplicate relation"):
            parse_dsl(
                "model\n  schema 1.1\ntype user\ntype doc\n  relations\n"
                "    define viewer: [user]\n    define viewer: [user]"
            )
