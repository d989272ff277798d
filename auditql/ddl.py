"""Normalized view of ALTER TABLE and RENAME TABLE statements.

sqlglot models common ALTER actions in ``exp.Alter`` but falls back to
``exp.Command`` for several MySQL clauses (RENAME INDEX, MODIFY with column
attributes, DROP PRIMARY KEY). Both shapes are reduced here to a list of
``AlterSpec`` objects so the session context and rules see one model.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError as SqlglotParseError
from sqlglot.errors import TokenError

from .parser import command_text
from .schema import (
    ColumnDefinition,
    IndexDefinition,
    IndexKind,
    column_from_def,
    column_is_unique,
    index_from_constraint,
)

_IDENT = r"(?:`[^`]+`|[\w$]+)"
_TABLE_NAME = rf"{_IDENT}(?:\s*\.\s*{_IDENT})?"

_ALTER_HEAD_RE = re.compile(
    rf"^\s*(?:ONLINE\s+|IGNORE\s+)*TABLE\s+(?P<table>{_TABLE_NAME})\s*(?P<rest>.*)$",
    re.IGNORECASE | re.DOTALL,
)
_RENAME_PAIR_RE = re.compile(
    rf"^\s*(?P<old>{_TABLE_NAME})\s+TO\s+(?P<new>{_TABLE_NAME})\s*$", re.IGNORECASE | re.DOTALL
)
_RENAME_INDEX_RE = re.compile(rf"^RENAME\s+(?:INDEX|KEY)\s+(?P<old>{_IDENT})\s+TO\s+(?P<new>{_IDENT})$", re.I)
_RENAME_COLUMN_RE = re.compile(rf"^RENAME\s+COLUMN\s+(?P<old>{_IDENT})\s+TO\s+(?P<new>{_IDENT})$", re.I)
_RENAME_TABLE_RE = re.compile(rf"^RENAME\s+(?:TO\s+|AS\s+)?(?P<new>{_TABLE_NAME})$", re.I)
_MODIFY_RE = re.compile(r"^MODIFY\s+(?:COLUMN\s+)?(?P<def>.+)$", re.I | re.S)
_CHANGE_RE = re.compile(rf"^CHANGE\s+(?:COLUMN\s+)?(?P<old>{_IDENT})\s+(?P<def>.+)$", re.I | re.S)
_DROP_PK_RE = re.compile(r"^DROP\s+PRIMARY\s+KEY$", re.I)
_DROP_INDEX_RE = re.compile(rf"^DROP\s+(?:INDEX|KEY)\s+(?P<name>{_IDENT})$", re.I)
_DROP_CONSTRAINT_RE = re.compile(rf"^DROP\s+(?:FOREIGN\s+KEY|CONSTRAINT|CHECK)\s+(?P<name>{_IDENT})$", re.I)
_DROP_COLUMN_RE = re.compile(rf"^DROP\s+(?:COLUMN\s+)?(?P<name>{_IDENT})$", re.I)
_ADD_KEY_RE = re.compile(
    r"^ADD\s+(?P<def>(?:CONSTRAINT|PRIMARY|UNIQUE|INDEX|KEY|FULLTEXT|SPATIAL|FOREIGN)\b.+)$", re.I | re.S
)
_ADD_COLUMNS_RE = re.compile(r"^ADD\s+(?:COLUMN\s+)?\((?P<defs>.+)\)$", re.I | re.S)
_ADD_COLUMN_RE = re.compile(r"^ADD\s+(?:COLUMN\s+)?(?P<def>.+)$", re.I | re.S)
_POSITION_RE = re.compile(rf"\s+(?:(?P<first>FIRST)|AFTER\s+(?P<after>{_IDENT}))\s*$", re.I)
_OPTION_RE = re.compile(
    r"^(?:DEFAULT\s+)?(?P<key>ENGINE|COMMENT|AUTO_INCREMENT|CHARSET|CHARACTER\s+SET)\s*=?\s*(?P<value>.+)$",
    re.I | re.S,
)


@dataclass
class AlterSpec:
    """One clause of an ALTER TABLE statement."""


@dataclass
class AddColumn(AlterSpec):
    column: ColumnDefinition
    unique: bool = False
    after: str | None = None
    first: bool = False


@dataclass
class DropColumn(AlterSpec):
    name: str


@dataclass
class ModifyColumn(AlterSpec):
    """MODIFY or CHANGE COLUMN; ``old_name`` differs from the new name on CHANGE."""

    old_name: str
    column: ColumnDefinition


@dataclass
class ChangeColumnType(AlterSpec):
    name: str
    type: str


@dataclass
class SetColumnDefault(AlterSpec):
    name: str
    default: str | None


@dataclass
class RenameColumn(AlterSpec):
    old_name: str
    new_name: str


@dataclass
class AddIndex(AlterSpec):
    index: IndexDefinition


@dataclass
class DropIndex(AlterSpec):
    name: str


@dataclass
class RenameIndex(AlterSpec):
    old_name: str
    new_name: str


@dataclass
class RenameTable(AlterSpec):
    new_table: exp.Table


@dataclass
class TableOption(AlterSpec):
    key: str
    value: str


@dataclass
class UnknownSpec(AlterSpec):
    text: str


@dataclass
class AlterTable:
    table: exp.Table
    specs: list[AlterSpec] = field(default_factory=list)

    def of_type(self, *types: type) -> list:
        return [s for s in self.specs if isinstance(s, types)]


@dataclass
class RenamePair:
    old: exp.Table
    new: exp.Table


def unquote(name: str) -> str:
    name = name.strip()
    if len(name) >= 2 and name[0] == name[-1] == "`":
        return name[1:-1]
    return name


def to_table(name: str) -> exp.Table:
    parts = [unquote(p) for p in re.findall(_IDENT, name)]
    if len(parts) == 2:
        return exp.table_(parts[1], db=parts[0])
    return exp.table_(parts[-1])


def split_clauses(text: str) -> list[str]:
    """Split on top-level commas, respecting parentheses and quotes."""
    clauses: list[str] = []
    depth = 0
    quote: str | None = None
    start = 0
    i = 0
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 1
            elif ch == quote:
                quote = None
        elif ch in ("'", '"', "`"):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "," and depth == 0:
            clauses.append(text[start:i].strip())
            start = i + 1
        i += 1
    tail = text[start:].strip()
    if tail:
        clauses.append(tail)
    return [c for c in clauses if c]


def _definition_item(text: str) -> exp.Expression | None:
    """Parse one column or key definition through a throwaway CREATE TABLE."""
    try:
        node = sqlglot.parse_one(f"CREATE TABLE _t ({text})", read="mysql")
    except (SqlglotParseError, TokenError):
        return None
    if isinstance(node, exp.Create) and isinstance(node.this, exp.Schema) and node.this.expressions:
        return node.this.expressions[0]
    return None


def alter_table_of(node: exp.Expression) -> AlterTable | None:
    """Normalize an ALTER TABLE statement; None for anything else."""
    if isinstance(node, exp.Alter):
        if str(node.args.get("kind") or "").upper() != "TABLE":
            return None
        alter = AlterTable(table=node.this)
        for action in node.args.get("actions") or []:
            alter.specs.extend(_specs_from_action(action))
        return alter
    if isinstance(node, exp.Command) and str(node.this or "").upper() == "ALTER":
        match = _ALTER_HEAD_RE.match(command_text(node))
        if not match:
            return None
        alter = AlterTable(table=to_table(match.group("table")))
        for clause in split_clauses(match.group("rest")):
            alter.specs.extend(_specs_from_text(clause))
        return alter
    return None


def rename_pairs_of(node: exp.Expression) -> list[RenamePair]:
    """Table pairs of a MySQL ``RENAME TABLE a TO b, c TO d`` statement."""
    if not isinstance(node, exp.Command) or str(node.this or "").upper() != "RENAME":
        return []
    text = re.sub(r"^\s*TABLE\s+", "", command_text(node), flags=re.IGNORECASE)
    pairs = []
    for clause in split_clauses(text):
        match = _RENAME_PAIR_RE.match(clause)
        if match:
            pairs.append(RenamePair(to_table(match.group("old")), to_table(match.group("new"))))
    return pairs


def _position(node: exp.ColumnDef) -> tuple[str | None, bool]:
    position = node.args.get("position")
    if not isinstance(position, exp.Expression):
        return None, False
    where = str(position.args.get("position") or "").upper()
    if where == "FIRST":
        return None, True
    anchor = position.this
    return (anchor.name if isinstance(anchor, exp.Expression) else None), False


def _specs_from_action(action: exp.Expression) -> list[AlterSpec]:
    if isinstance(action, exp.ColumnDef):
        after, first = _position(action)
        return [AddColumn(column_from_def(action), column_is_unique(action), after, first)]
    if isinstance(action, exp.AddConstraint):
        specs: list[AlterSpec] = []
        for item in action.expressions:
            specs.extend(_specs_from_action(item))
        return specs
    if isinstance(action, (exp.Constraint, exp.PrimaryKey, exp.UniqueColumnConstraint,
                           exp.IndexColumnConstraint, exp.ForeignKey)):
        index = index_from_constraint(action)
        return [AddIndex(index)] if index is not None else [UnknownSpec(action.sql(dialect="mysql"))]
    if isinstance(action, exp.Drop):
        kind = str(action.args.get("kind") or "").upper()
        name = action.this.name if isinstance(action.this, exp.Expression) else ""
        if kind in {"INDEX", "KEY", "CONSTRAINT"}:
            return [DropIndex(name)]
        return [DropColumn(name)]
    if isinstance(action, exp.AlterColumn):
        name = action.this.name
        if action.args.get("dtype") is not None:
            return [ChangeColumnType(name, action.args["dtype"].sql(dialect="mysql"))]
        if action.args.get("drop"):
            return [SetColumnDefault(name, None)]
        default = action.args.get("default")
        if default is not None:
            return [SetColumnDefault(name, default.sql(dialect="mysql"))]
        return [UnknownSpec(action.sql(dialect="mysql"))]
    if isinstance(action, exp.RenameColumn):
        return [RenameColumn(action.this.name, action.args["to"].name)]
    if isinstance(action, exp.AlterRename):
        return [RenameTable(action.this)]
    return [UnknownSpec(action.sql(dialect="mysql"))]


def _column_specs(text: str, old_name: str | None = None) -> list[AlterSpec]:
    after, first = None, False
    position = _POSITION_RE.search(text)
    if position:
        first = bool(position.group("first"))
        after = unquote(position.group("after")) if position.group("after") else None
        text = text[: position.start()]
    item = _definition_item(text)
    if not isinstance(item, exp.ColumnDef):
        return [UnknownSpec(text)]
    column = column_from_def(item)
    if old_name is not None:
        return [ModifyColumn(old_name, column)]
    return [AddColumn(column, column_is_unique(item), after, first)]


def _rename_index(m: re.Match) -> list[AlterSpec]:
    return [RenameIndex(unquote(m.group("old")), unquote(m.group("new")))]


def _rename_column(m: re.Match) -> list[AlterSpec]:
    return [RenameColumn(unquote(m.group("old")), unquote(m.group("new")))]


def _rename_table(m: re.Match) -> list[AlterSpec]:
    return [RenameTable(to_table(m.group("new")))]


def _change_column(m: re.Match) -> list[AlterSpec]:
    return _column_specs(m.group("def"), old_name=unquote(m.group("old")))


def _modify_column(m: re.Match) -> list[AlterSpec]:
    specs = _column_specs(m.group("def"))
    if specs and isinstance(specs[0], AddColumn):
        column = specs[0].column
        return [ModifyColumn(column.name, column)]
    return specs


def _drop_index(m: re.Match) -> list[AlterSpec]:
    name = m.groupdict().get("name")
    return [DropIndex(unquote(name) if name else "PRIMARY")]


def _drop_column(m: re.Match) -> list[AlterSpec]:
    return [DropColumn(unquote(m.group("name")))]


def _add_key(m: re.Match) -> list[AlterSpec]:
    item = _definition_item(m.group("def"))
    index = index_from_constraint(item) if item is not None else None
    return [AddIndex(index)] if index is not None else [UnknownSpec(m.group(0))]


def _add_columns(m: re.Match) -> list[AlterSpec]:
    specs: list[AlterSpec] = []
    for definition in split_clauses(m.group("defs")):
        specs.extend(_column_specs(definition))
    return specs


def _add_column(m: re.Match) -> list[AlterSpec]:
    return _column_specs(m.group("def"))


def _table_option(m: re.Match) -> list[AlterSpec]:
    key = re.sub(r"\s+", " ", m.group("key").upper())
    if key == "CHARACTER SET":
        key = "CHARSET"
    return [TableOption(key, m.group("value").strip().strip("'\""))]


# Order matters: the more specific forms come first.
_CLAUSE_HANDLERS = (
    (_RENAME_INDEX_RE, _rename_index),
    (_RENAME_COLUMN_RE, _rename_column),
    (_RENAME_TABLE_RE, _rename_table),
    (_CHANGE_RE, _change_column),
    (_MODIFY_RE, _modify_column),
    (_DROP_PK_RE, _drop_index),
    (_DROP_INDEX_RE, _drop_index),
    (_DROP_CONSTRAINT_RE, _drop_index),
    (_DROP_COLUMN_RE, _drop_column),
    (_ADD_KEY_RE, _add_key),
    (_ADD_COLUMNS_RE, _add_columns),
    (_ADD_COLUMN_RE, _add_column),
    (_OPTION_RE, _table_option),
)


def _specs_from_text(clause: str) -> list[AlterSpec]:
    clause = clause.strip()
    for pattern, handler in _CLAUSE_HANDLERS:
        match = pattern.match(clause)
        if match:
            return handler(match)
    return [UnknownSpec(clause)]


def unique_index_specs(alter: AlterTable) -> list[IndexDefinition]:
    """Unique indexes added by an ALTER TABLE."""
    return [s.index for s in alter.of_type(AddIndex) if s.index.kind == IndexKind.UNIQUE]


_DROP_INDEX_ON_RE = re.compile(rf"^\s*INDEX\s+(?P<name>{_IDENT})\s+ON\s+(?P<table>{_TABLE_NAME})", re.I)


def drop_index_target(node: exp.Expression) -> tuple[str, exp.Table] | None:
    """Index name and table of ``DROP INDEX idx ON t``."""
    if isinstance(node, exp.Command) and str(node.this or "").upper() == "DROP":
        match = _DROP_INDEX_ON_RE.match(command_text(node))
        if match:
            return unquote(match.group("name")), to_table(match.group("table"))
        return None
    if isinstance(node, exp.Drop) and isinstance(node.this, exp.Expression):
        tables = [t for t in node.find_all(exp.Table) if t is not node.this]
        if tables:
            return node.this.name, tables[0]
    return None


def alter_body(sql: str) -> str:
    """Text of an ALTER TABLE statement after the table name."""
    text = re.sub(r"^\s*ALTER\s+", "", sql.strip().rstrip(";"), flags=re.IGNORECASE)
    match = _ALTER_HEAD_RE.match(text)
    return match.group("rest").strip() if match else ""
