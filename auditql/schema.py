"""Table definitions tracked by the session context."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum

from sqlglot import exp


class IndexKind(str, Enum):
    PRIMARY = "primary"
    UNIQUE = "unique"
    INDEX = "index"
    FULLTEXT = "fulltext"
    SPATIAL = "spatial"
    FOREIGN = "foreign"


class DefinitionSource(str, Enum):
    """Where a cached definition came from."""

    LIVE = "live"
    SYNTHESIZED = "synthesized"


@dataclass
class ColumnDefinition:
    name: str
    type: str = ""
    nullable: bool = True
    default: str | None = None
    auto_increment: bool = False
    comment: str | None = None
    primary_key: bool = False

    def to_sql(self) -> str:
        parts = [f"`{self.name}`", self.type or "TEXT"]
        if not self.nullable:
            parts.append("NOT NULL")
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        if self.auto_increment:
            parts.append("AUTO_INCREMENT")
        if self.comment is not None:
            parts.append("COMMENT '{}'".format(self.comment.replace("'", "''")))
        return " ".join(parts)


@dataclass
class IndexDefinition:
    name: str
    columns: list[str] = field(default_factory=list)
    kind: IndexKind = IndexKind.INDEX

    def to_sql(self) -> str:
        cols = ", ".join(f"`{c}`" for c in self.columns)
        if self.kind == IndexKind.PRIMARY:
            return f"PRIMARY KEY ({cols})"
        if self.kind == IndexKind.UNIQUE:
            return f"UNIQUE KEY `{self.name}` ({cols})"
        if self.kind == IndexKind.FULLTEXT:
            return f"FULLTEXT KEY `{self.name}` ({cols})"
        if self.kind == IndexKind.SPATIAL:
            return f"SPATIAL KEY `{self.name}` ({cols})"
        if self.kind == IndexKind.FOREIGN:
            return f"CONSTRAINT `{self.name}` FOREIGN KEY ({cols})"
        return f"KEY `{self.name}` ({cols})"


@dataclass
class TableDefinition:
    """Columns, indexes and options of one table.

    Identifier lookups are case-insensitive, matching MySQL's handling of
    column and index names.
    """

    schema: str
    name: str
    columns: list[ColumnDefinition] = field(default_factory=list)
    indexes: list[IndexDefinition] = field(default_factory=list)
    engine: str | None = None
    charset: str | None = None
    auto_increment: int | None = None
    comment: str | None = None
    size_mb: float | None = None
    row_count: int | None = None
    source: DefinitionSource = DefinitionSource.SYNTHESIZED

    def copy(self) -> TableDefinition:
        return copy.deepcopy(self)

    # Columns

    def column(self, name: str) -> ColumnDefinition | None:
        lowered = name.lower()
        for col in self.columns:
            if col.name.lower() == lowered:
                return col
        return None

    def has_column(self, name: str) -> bool:
        return self.column(name) is not None

    def add_column(self, column: ColumnDefinition, after: str | None = None, first: bool = False) -> None:
        if first:
            self.columns.insert(0, column)
        elif after and self.has_column(after):
            pos = [c.name.lower() for c in self.columns].index(after.lower())
            self.columns.insert(pos + 1, column)
        else:
            self.columns.append(column)
        if column.primary_key:
            self.add_index(IndexDefinition("PRIMARY", [column.name], IndexKind.PRIMARY))

    def drop_column(self, name: str) -> ColumnDefinition | None:
        col = self.column(name)
        if col is None:
            return None
        self.columns.remove(col)
        lowered = name.lower()
        for index in list(self.indexes):
            index.columns = [c for c in index.columns if c.lower() != lowered]
            if not index.columns:
                self.indexes.remove(index)
        return col

    def replace_column(self, old_name: str, column: ColumnDefinition) -> None:
        """Replace a column in place (MODIFY / CHANGE COLUMN)."""
        existing = self.column(old_name)
        if existing is None:
            self.add_column(column)
            return
        pos = self.columns.index(existing)
        self.columns[pos] = column
        if column.name.lower() != old_name.lower():
            self._rename_index_column(old_name, column.name)

    def rename_column(self, old_name: str, new_name: str) -> None:
        col = self.column(old_name)
        if col is None:
            return
        col.name = new_name
        self._rename_index_column(old_name, new_name)

    def _rename_index_column(self, old_name: str, new_name: str) -> None:
        lowered = old_name.lower()
        for index in self.indexes:
            index.columns = [new_name if c.lower() == lowered else c for c in index.columns]

    # Indexes

    def index(self, name: str) -> IndexDefinition | None:
        lowered = name.lower()
        for index in self.indexes:
            if index.name.lower() == lowered:
                return index
        return None

    def has_index(self, name: str) -> bool:
        return self.index(name) is not None

    def add_index(self, index: IndexDefinition) -> None:
        if index.kind == IndexKind.PRIMARY:
            self.indexes = [i for i in self.indexes if i.kind != IndexKind.PRIMARY]
            index.name = "PRIMARY"
            for col in self.columns:
                if col.name.lower() in {c.lower() for c in index.columns}:
                    col.nullable = False
        elif not index.name:
            index.name = self._generated_index_name(index.columns)
        self.indexes.append(index)

    def drop_index(self, name: str) -> IndexDefinition | None:
        index = self.index(name)
        if index is not None:
            self.indexes.remove(index)
        return index

    def rename_index(self, old_name: str, new_name: str) -> None:
        index = self.index(old_name)
        if index is not None:
            index.name = new_name

    def _generated_index_name(self, columns: list[str]) -> str:
        base = columns[0] if columns else "idx"
        name, n = base, 2
        while self.has_index(name):
            name = f"{base}_{n}"
            n += 1
        return name

    @property
    def primary_key(self) -> IndexDefinition | None:
        for index in self.indexes:
            if index.kind == IndexKind.PRIMARY:
                return index
        return None

    def indexes_of(self, *kinds: IndexKind) -> list[IndexDefinition]:
        return [i for i in self.indexes if i.kind in kinds]

    def to_create_sql(self) -> str:
        """Render the definition back to a MySQL CREATE TABLE statement."""
        lines = [f"  {c.to_sql()}" for c in self.columns]
        lines.extend(f"  {i.to_sql()}" for i in self.indexes)
        sql = f"CREATE TABLE {quote_table(self.schema, self.name)} (\n" + ",\n".join(lines) + "\n)"
        if self.engine:
            sql += f" ENGINE={self.engine}"
        if self.charset:
            sql += f" DEFAULT CHARSET={self.charset}"
        if self.comment is not None:
            sql += " COMMENT='{}'".format(self.comment.replace("'", "''"))
        return sql


def quote_table(schema: str, table: str) -> str:
    if schema:
        return f"`{schema}`.`{table}`"
    return f"`{table}`"


def _text(node: object) -> str:
    if node is None:
        return ""
    if isinstance(node, exp.Expression):
        return node.name or node.sql(dialect="mysql")
    return str(node)


def column_name(node: exp.Expression) -> str:
    """Name of a column reference inside an index or key definition."""
    if isinstance(node, exp.Ordered):
        node = node.this
    if isinstance(node, (exp.Column, exp.Identifier, exp.ColumnDef, exp.Anonymous)):
        return node.name
    return node.name or node.sql(dialect="mysql")


def column_from_def(node: exp.ColumnDef) -> ColumnDefinition:
    """Build a ColumnDefinition from a sqlglot ColumnDef."""
    kind = node.args.get("kind")
    column = ColumnDefinition(
        name=node.name,
        type=kind.sql(dialect="mysql") if kind is not None else "",
    )
    for constraint in node.args.get("constraints") or []:
        ckind = constraint.args.get("kind") if isinstance(constraint, exp.ColumnConstraint) else constraint
        if isinstance(ckind, exp.NotNullColumnConstraint):
            column.nullable = bool(ckind.args.get("allow_null"))
        elif isinstance(ckind, exp.PrimaryKeyColumnConstraint):
            column.primary_key = True
            column.nullable = False
        elif isinstance(ckind, exp.AutoIncrementColumnConstraint):
            column.auto_increment = True
        elif isinstance(ckind, exp.DefaultColumnConstraint):
            column.default = ckind.this.sql(dialect="mysql") if ckind.this is not None else None
        elif isinstance(ckind, exp.CommentColumnConstraint):
            column.comment = _text(ckind.this)
    return column


def column_is_unique(node: exp.ColumnDef) -> bool:
    for constraint in node.args.get("constraints") or []:
        ckind = constraint.args.get("kind") if isinstance(constraint, exp.ColumnConstraint) else constraint
        if isinstance(ckind, exp.UniqueColumnConstraint):
            return True
    return False


def index_from_constraint(node: exp.Expression, name: str = "") -> IndexDefinition | None:
    """Build an IndexDefinition from a table-level key or constraint node.

    Returns None for constraints that are not indexes (CHECK and friends).
    """
    if isinstance(node, exp.Constraint):
        inner_name = node.name
        for inner in node.expressions:
            index = index_from_constraint(inner, inner_name)
            if index is not None:
                return index
        return None
    if isinstance(node, exp.PrimaryKey):
        return IndexDefinition("PRIMARY", [column_name(e) for e in node.expressions], IndexKind.PRIMARY)
    if isinstance(node, exp.UniqueColumnConstraint):
        target = node.this
        if isinstance(target, exp.Schema):
            if target.this is not None:
                name = target.this.name or name
            columns = [column_name(e) for e in target.expressions]
        else:
            if target is not None:
                name = target.name or name
            columns = []
        return IndexDefinition(name, columns, IndexKind.UNIQUE)
    if isinstance(node, exp.IndexColumnConstraint):
        kind = str(node.args.get("kind") or "").upper()
        index_kind = {"FULLTEXT": IndexKind.FULLTEXT, "SPATIAL": IndexKind.SPATIAL}.get(kind, IndexKind.INDEX)
        if kind == "UNIQUE":
            index_kind = IndexKind.UNIQUE
        this = node.this
        return IndexDefinition(
            (this.name if this is not None else "") or name,
            [column_name(e) for e in node.expressions],
            index_kind,
        )
    if isinstance(node, exp.ForeignKey):
        return IndexDefinition(name, [column_name(e) for e in node.expressions], IndexKind.FOREIGN)
    return None


def index_from_create_index(node: exp.Create) -> IndexDefinition:
    """Build an IndexDefinition from CREATE [UNIQUE] INDEX."""
    index = node.this
    params = index.args.get("params")
    columns = params.args.get("columns") if params is not None else index.args.get("columns")
    kind = IndexKind.UNIQUE if node.args.get("unique") else IndexKind.INDEX
    modifier = str(node.args.get("kind_modifier") or "").upper()
    if modifier == "FULLTEXT":
        kind = IndexKind.FULLTEXT
    return IndexDefinition(index.name, [column_name(c) for c in columns or []], kind)


def create_target(node: exp.Create) -> exp.Table | None:
    """Table named by a CREATE statement, unwrapping the column schema."""
    target = node.this
    if isinstance(target, exp.Schema):
        target = target.this
    if isinstance(target, exp.Index):
        target = target.args.get("table")
    return target if isinstance(target, exp.Table) else None


def table_from_create(node: exp.Create, default_schema: str = "") -> TableDefinition:
    """Build a TableDefinition from a CREATE TABLE node."""
    table = create_target(node)
    if table is None:
        raise ValueError("CREATE statement has no table target")

    definition = TableDefinition(schema=table.db or default_schema, name=table.name)
    items = node.this.expressions if isinstance(node.this, exp.Schema) else []
    pending: list[IndexDefinition] = []
    for item in items:
        if isinstance(item, exp.ColumnDef):
            column = column_from_def(item)
            definition.add_column(column)
            if column_is_unique(item):
                pending.append(IndexDefinition(column.name, [column.name], IndexKind.UNIQUE))
            continue
        index = index_from_constraint(item)
        if index is not None:
            pending.append(index)
    for index in pending:
        definition.add_index(index)

    properties = node.args.get("properties")
    for prop in properties.expressions if properties is not None else []:
        if isinstance(prop, exp.EngineProperty):
            definition.engine = _text(prop.this)
        elif isinstance(prop, exp.CharacterSetProperty):
            definition.charset = _text(prop.this)
        elif isinstance(prop, exp.SchemaCommentProperty):
            definition.comment = _text(prop.this)
        elif isinstance(prop, exp.AutoIncrementProperty):
            value = _text(prop.this)
            definition.auto_increment = int(value) if value.isdigit() else None
    return definition


def declared_indexes(node: exp.Create) -> list[IndexDefinition]:
    """Table-level keys of a CREATE TABLE, as written (no generated names)."""
    items = node.this.expressions if isinstance(node.this, exp.Schema) else []
    indexes = []
    for item in items:
        if isinstance(item, exp.ColumnDef):
            continue
        index = index_from_constraint(item)
        if index is not None:
            indexes.append(index)
    return indexes
