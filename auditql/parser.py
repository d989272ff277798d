"""SQL parsing on top of sqlglot.

The parser splits a batch into statements on top-level semicolons, keeps
each statement's source text and starting line, and classifies the parsed
node into a closed set of statement kinds that rules dispatch on.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

import sqlglot
from sqlglot import exp
from sqlglot.dialects.dialect import Dialect
from sqlglot.errors import ParseError as SqlglotParseError
from sqlglot.errors import TokenError
from sqlglot.tokens import TokenType

from .exceptions import ParseError


class SQLCategory(str, Enum):
    """Coarse statement category: query, mutation or definition."""

    DQL = "dql"
    DML = "dml"
    DDL = "ddl"


class StatementKind(str, Enum):
    """Closed set of statement kinds rules match on."""

    SELECT = "select"
    UNION = "union"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    CREATE_TABLE = "create_table"
    CREATE_INDEX = "create_index"
    CREATE_VIEW = "create_view"
    CREATE_DATABASE = "create_database"
    ALTER_TABLE = "alter_table"
    DROP_TABLE = "drop_table"
    DROP_INDEX = "drop_index"
    DROP_DATABASE = "drop_database"
    RENAME_TABLE = "rename_table"
    TRUNCATE = "truncate"
    USE = "use"
    SET = "set"
    SHOW = "show"
    OTHER = "other"


QUERY_KINDS = frozenset({StatementKind.SELECT, StatementKind.UNION})
MUTATION_KINDS = frozenset({StatementKind.INSERT, StatementKind.UPDATE, StatementKind.DELETE})

_RENAME_TABLE_RE = re.compile(r"^\s*TABLE\b", re.IGNORECASE)
_ALTER_TABLE_RE = re.compile(r"^\s*(ONLINE\s+|IGNORE\s+)*TABLE\b", re.IGNORECASE)
_DROP_INDEX_RE = re.compile(r"^\s*INDEX\b", re.IGNORECASE)
_DROP_INDEX_ON_RE = re.compile(r"^\s*DROP\s+(?P<rest>INDEX\s.+\sON\s.+)$", re.IGNORECASE | re.DOTALL)
_STRING_RE = re.compile(r"'(?:[^'\\]|\\.|'')*'|\"(?:[^\"\\]|\\.)*\"")
_NUMBER_RE = re.compile(r"\b\d+(?:\.\d+)?\b")
_SPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class Statement:
    """One statement of an audited batch.

    Attributes:
        text: Source text of the statement, without the trailing semicolon.
        node: Parsed sqlglot expression.
        fingerprint: Normalized text with literals replaced by ``?``.
        start_line: 1-based line the statement starts on in the batch.
        category: Query, mutation or definition.
        kind: Statement kind used for rule dispatch.
        batch_index: Position of the statement in its batch.
    """

    text: str
    node: exp.Expression
    fingerprint: str
    start_line: int
    category: SQLCategory
    kind: StatementKind
    batch_index: int


def statement_kind(node: exp.Expression) -> StatementKind:
    """Classify a parsed node."""
    if isinstance(node, exp.Select):
        return StatementKind.SELECT
    if isinstance(node, (exp.Union, exp.Except, exp.Intersect)):
        return StatementKind.UNION
    if isinstance(node, exp.Insert):
        return StatementKind.INSERT
    if isinstance(node, exp.Update):
        return StatementKind.UPDATE
    if isinstance(node, exp.Delete):
        return StatementKind.DELETE
    if isinstance(node, exp.Create):
        kind = str(node.args.get("kind") or "").upper()
        if kind == "TABLE":
            return StatementKind.CREATE_TABLE
        if kind == "INDEX":
            return StatementKind.CREATE_INDEX
        if kind == "VIEW":
            return StatementKind.CREATE_VIEW
        if kind in {"DATABASE", "SCHEMA"}:
            return StatementKind.CREATE_DATABASE
        return StatementKind.OTHER
    if isinstance(node, exp.Alter):
        if str(node.args.get("kind") or "").upper() == "TABLE":
            return StatementKind.ALTER_TABLE
        return StatementKind.OTHER
    if isinstance(node, exp.Drop):
        kind = str(node.args.get("kind") or "").upper()
        if kind == "TABLE":
            return StatementKind.DROP_TABLE
        if kind == "INDEX":
            return StatementKind.DROP_INDEX
        if kind in {"DATABASE", "SCHEMA"}:
            return StatementKind.DROP_DATABASE
        return StatementKind.OTHER
    if isinstance(node, exp.TruncateTable):
        return StatementKind.TRUNCATE
    if isinstance(node, exp.Use):
        return StatementKind.USE
    if isinstance(node, exp.Set):
        return StatementKind.SET
    if isinstance(node, exp.Show):
        return StatementKind.SHOW
    if isinstance(node, exp.Command):
        return _command_kind(node)
    return StatementKind.OTHER


def _command_kind(node: exp.Command) -> StatementKind:
    # sqlglot falls back to Command for MySQL forms it does not model
    # (RENAME TABLE, ALTER TABLE ... RENAME INDEX).
    head = str(node.this or "").upper()
    rest = command_text(node)
    if head == "RENAME" and _RENAME_TABLE_RE.match(rest):
        return StatementKind.RENAME_TABLE
    if head == "ALTER" and _ALTER_TABLE_RE.match(rest):
        return StatementKind.ALTER_TABLE
    if head == "SHOW":
        return StatementKind.SHOW
    if head == "DROP" and _DROP_INDEX_RE.match(rest):
        return StatementKind.DROP_INDEX
    return StatementKind.OTHER


def command_text(node: exp.Command) -> str:
    """Return the text following a Command's leading keyword."""
    rest = node.expression
    if isinstance(rest, exp.Literal):
        return rest.this
    return str(rest or "")


def statement_category(kind: StatementKind) -> SQLCategory:
    if kind in QUERY_KINDS:
        return SQLCategory.DQL
    if kind in MUTATION_KINDS:
        return SQLCategory.DML
    return SQLCategory.DDL


def fingerprint(node: exp.Expression, text: str, case_sensitive: bool = True) -> str:
    """Normalize a statement so equivalent statements group together.

    Literals become ``?``. Table identifiers are lower-cased when the server
    compares table names case-insensitively.
    """
    if isinstance(node, exp.Command):
        normalized = _NUMBER_RE.sub("?", _STRING_RE.sub("?", text))
        normalized = _SPACE_RE.sub(" ", normalized).strip()
        return normalized if case_sensitive else normalized.lower()

    def _abstract(n: exp.Expression) -> exp.Expression:
        if isinstance(n, exp.Literal):
            return exp.Placeholder()
        return n

    fp = node.copy().transform(_abstract)
    if not case_sensitive:
        for table in fp.find_all(exp.Table):
            for key in ("this", "db"):
                ident = table.args.get(key)
                if isinstance(ident, exp.Identifier):
                    ident.set("this", ident.name.lower())
    return fp.sql(dialect="mysql")


class Parser:
    """Splits and parses SQL batches with sqlglot.

    Example:
        >>> statements = Parser().parse("CREATE TABLE t (id INT);\\nSELECT * FROM t")
        >>> [s.kind.value for s in statements]
        ['create_table', 'select']
        >>> statements[1].start_line
        2
    """

    def __init__(self, dialect: str = "mysql") -> None:
        self.dialect = dialect
        self._dialect = Dialect.get_or_raise(dialect)

    def split(self, sql: str) -> list[tuple[str, int]]:
        """Split a batch into ``(statement_text, start_line)`` pairs."""
        try:
            tokens = self._dialect.tokenize(sql)
        except TokenError as e:
            raise ParseError(str(e)) from e

        chunks: list[tuple[str, int]] = []
        current: list = []
        for token in tokens:
            if token.token_type == TokenType.SEMICOLON:
                if current:
                    chunks.append(self._chunk(sql, current))
                    current = []
                continue
            current.append(token)
        if current:
            chunks.append(self._chunk(sql, current))
        return chunks

    @staticmethod
    def _chunk(sql: str, tokens: list) -> tuple[str, int]:
        first, last = tokens[0], tokens[-1]
        return sql[first.start : last.end + 1].strip(), first.line

    def parse_one(self, sql: str) -> exp.Expression:
        """Parse text holding exactly one statement."""
        text = sql.strip().rstrip(";")
        match = _DROP_INDEX_ON_RE.match(text)
        if match and ";" not in text:
            # sqlglot reads the ON clause of MySQL DROP INDEX as a bare identifier.
            return exp.Command(this="DROP", expression=exp.Literal.string(" " + match.group("rest").strip()))
        try:
            nodes = [n for n in sqlglot.parse(sql, read=self.dialect) if n is not None]
        except (SqlglotParseError, TokenError) as e:
            raise ParseError(str(e)) from e
        if len(nodes) != 1:
            raise ParseError(f"expected one statement, found {len(nodes)}")
        return nodes[0]

    def parse(self, sql: str, case_sensitive: bool = True) -> list[Statement]:
        """Parse a batch into statement envelopes.

        Raises:
            ParseError: On empty input or any malformed statement.
        """
        if not sql or not sql.strip():
            raise ParseError("Empty query")

        statements: list[Statement] = []
        for index, (text, line) in enumerate(self.split(sql)):
            node = self.parse_one(text)
            kind = statement_kind(node)
            statements.append(
                Statement(
                    text=text,
                    node=node,
                    fingerprint=fingerprint(node, text, case_sensitive),
                    start_line=line,
                    category=statement_category(kind),
                    kind=kind,
                    batch_index=index,
                )
            )
        if not statements:
            raise ParseError("No valid SQL statements found")
        return statements

    def extract_tables(self, node: exp.Expression) -> list[exp.Table]:
        """Return table references, skipping CTE names."""
        return table_refs(node)


def table_refs(node: exp.Expression) -> list[exp.Table]:
    cte_names = {cte.alias_or_name.lower() for cte in node.find_all(exp.CTE)}
    tables = []
    for table in node.find_all(exp.Table):
        if not table.name:
            continue
        if not table.db and table.name.lower() in cte_names:
            continue
        tables.append(table)
    return tables
