"""Tests for batch splitting, statement classification and fingerprints."""

import pytest

from auditql import ParseError, Parser, SQLCategory, StatementKind


@pytest.fixture
def parser() -> Parser:
    return Parser()


class TestSplitting:
    """Batches split on top-level semicolons only."""

    def test_statements_keep_order_and_start_line(self, parser: Parser) -> None:
        statements = parser.parse("CREATE TABLE db.t (id INT);\nSELECT * FROM db.t")
        assert [s.kind for s in statements] == [StatementKind.CREATE_TABLE, StatementKind.SELECT]
        assert [s.start_line for s in statements] == [1, 2]
        assert [s.batch_index for s in statements] == [0, 1]

    def test_text_has_no_trailing_semicolon(self, parser: Parser) -> None:
        statements = parser.parse("SELECT 1;  SELECT 2;")
        assert [s.text for s in statements] == ["SELECT 1", "SELECT 2"]

    def test_semicolon_inside_string_does_not_split(self, parser: Parser) -> None:
        statements = parser.parse("SELECT 'a;b' FROM db.t; SELECT 2")
        assert len(statements) == 2
        assert statements[0].text == "SELECT 'a;b' FROM db.t"

    def test_empty_input_is_rejected(self, parser: Parser) -> None:
        with pytest.raises(ParseError):
            parser.parse("   ")

    def test_only_semicolons_is_rejected(self, parser: Parser) -> None:
        with pytest.raises(ParseError):
            parser.parse(";;")

    def test_malformed_statement_is_rejected(self, parser: Parser) -> None:
        with pytest.raises(ParseError):
            parser.parse("SELECT id FROM db.t WHERE (id = 1")

    def test_parse_one_rejects_batches(self, parser: Parser) -> None:
        with pytest.raises(ParseError):
            parser.parse_one("SELECT 1; SELECT 2")


class TestClassification:
    """Parsed nodes map onto a closed set of kinds."""

    @pytest.mark.parametrize(
        "sql,kind",
        [
            ("SELECT id FROM db.t", StatementKind.SELECT),
            ("SELECT id FROM db.a UNION SELECT id FROM db.b", StatementKind.UNION),
            ("INSERT INTO db.t (id) VALUES (1)", StatementKind.INSERT),
            ("UPDATE db.t SET a = 1 WHERE id = 1", StatementKind.UPDATE),
            ("DELETE FROM db.t WHERE id = 1", StatementKind.DELETE),
            ("CREATE TABLE db.t (id INT)", StatementKind.CREATE_TABLE),
            ("CREATE INDEX idx_a ON db.t (a)", StatementKind.CREATE_INDEX),
            ("CREATE DATABASE shop", StatementKind.CREATE_DATABASE),
            ("ALTER TABLE db.t ADD COLUMN c INT", StatementKind.ALTER_TABLE),
            ("DROP TABLE db.t", StatementKind.DROP_TABLE),
            ("DROP DATABASE shop", StatementKind.DROP_DATABASE),
            ("RENAME TABLE db.a TO db.b", StatementKind.RENAME_TABLE),
            ("USE shop", StatementKind.USE),
        ],
    )
    def test_kinds(self, parser: Parser, sql: str, kind: StatementKind) -> None:
        assert parser.parse(sql)[0].kind == kind

    def test_categories(self, parser: Parser) -> None:
        statements = parser.parse("SELECT id FROM db.t; DELETE FROM db.t WHERE id = 1; DROP TABLE db.t")
        assert [s.category for s in statements] == [SQLCategory.DQL, SQLCategory.DML, SQLCategory.DDL]

    def test_extract_tables_skips_cte_names(self, parser: Parser) -> None:
        node = parser.parse_one("WITH recent AS (SELECT id FROM db.orders) SELECT id FROM recent")
        assert [t.name for t in parser.extract_tables(node)] == ["orders"]


class TestFingerprint:
    """Equivalent statements share a fingerprint."""

    def test_literals_are_abstracted(self, parser: Parser) -> None:
        a = parser.parse("SELECT id FROM db.t WHERE id = 1 AND name = 'x'")[0]
        b = parser.parse("SELECT id FROM db.t WHERE id = 42 AND name = 'yy'")[0]
        assert a.fingerprint == b.fingerprint
        assert "42" not in b.fingerprint

    def test_different_shapes_differ(self, parser: Parser) -> None:
        a = parser.parse("SELECT id FROM db.t WHERE id = 1")[0]
        b = parser.parse("SELECT id FROM db.t WHERE name = 1")[0]
        assert a.fingerprint != b.fingerprint

    def test_table_names_fold_when_case_insensitive(self, parser: Parser) -> None:
        upper = parser.parse("SELECT id FROM DB.ORDERS", case_sensitive=False)[0]
        lower = parser.parse("SELECT id FROM db.orders", case_sensitive=False)[0]
        assert upper.fingerprint == lower.fingerprint

    def test_table_names_kept_when_case_sensitive(self, parser: Parser) -> None:
        upper = parser.parse("SELECT id FROM DB.ORDERS")[0]
        lower = parser.parse("SELECT id FROM db.orders")[0]
        assert upper.fingerprint != lower.fingerprint
