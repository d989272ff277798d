"""Naming convention rules for tables, columns and indexes."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlglot import exp

from ..ddl import (
    AddColumn,
    AddIndex,
    ModifyColumn,
    RenameColumn,
    RenameIndex,
    RenameTable,
    alter_table_of,
    rename_pairs_of,
)
from ..parser import StatementKind
from ..schema import IndexDefinition, IndexKind, create_target, declared_indexes, index_from_create_index
from .base import ParamType, Rule, RuleCategory, RuleInput, RuleLevel, RuleParam

if TYPE_CHECKING:
    from sqlglot.expressions import Expression


def added_indexes(node: Expression) -> tuple[exp.Table | None, list[IndexDefinition]]:
    """Table and named indexes introduced by CREATE TABLE, CREATE INDEX or ALTER TABLE."""
    if isinstance(node, exp.Create):
        kind = str(node.args.get("kind") or "").upper()
        if kind == "TABLE":
            return create_target(node), declared_indexes(node)
        if kind == "INDEX":
            return create_target(node), [index_from_create_index(node)]
        return None, []
    alter = alter_table_of(node)
    if alter is None:
        return None, []
    return alter.table, [spec.index for spec in alter.of_type(AddIndex)]


def renamed_indexes(
    ri: RuleInput, table: exp.Table, kinds: tuple[IndexKind, ...]
) -> list[tuple[IndexDefinition, str]]:
    """``(existing index, new name)`` for each RENAME INDEX of an index of ``kinds``.

    The renamed index's prior name is matched against the table's current
    index names. Raises SchemaUnknown when the table cannot be resolved.
    """
    alter = alter_table_of(ri.statement.node)
    renames = alter.of_type(RenameIndex) if alter is not None else []
    if not renames:
        return []
    definition = ri.context.get_table(table)
    pairs = []
    for spec in renames:
        index = definition.index(spec.old_name)
        if index is not None and index.kind in kinds:
            pairs.append((index, spec.new_name))
    return pairs


class UniqueIndexPrefixRule(Rule):
    """Unique indexes must start with a fixed prefix.

    Covers CREATE TABLE unique keys, CREATE UNIQUE INDEX, ALTER TABLE ADD
    UNIQUE and ALTER TABLE RENAME INDEX of an existing unique index.
    """

    message = "unique index names must start with {prefix}"
    params = (RuleParam("prefix", "uniq_", "required prefix", ParamType.STRING),)
    allow_offline = False
    tags = frozenset({"index", "ddl"})

    @property
    def name(self) -> str:
        return "ddl_check_unique_index_prefix"

    @property
    def description(self) -> str:
        return "Unique index names must use a fixed prefix."

    @property
    def category(self) -> RuleCategory:
        return RuleCategory.NAMING

    @property
    def level(self) -> RuleLevel:
        return RuleLevel.WARN

    def check(self, node: Expression, ri: RuleInput) -> None:
        prefix = ri.param("prefix")
        table, indexes = added_indexes(node)
        if table is None:
            return
        for index in indexes:
            if index.kind == IndexKind.UNIQUE and not index.name.startswith(prefix):
                ri.report()
                return
        if ri.statement.kind != StatementKind.ALTER_TABLE:
            return
        for _, new_name in renamed_indexes(ri, table, (IndexKind.UNIQUE,)):
            if not new_name.startswith(prefix):
                ri.report()
                return


class UniqueIndexNameFormatRule(Rule):
    """Unique index names must follow ``IDX_UK_<table>_<columns>``.

    The comparison ignores case. For RENAME INDEX the new name is checked
    against the columns of the unique index being renamed.
    """

    message = "unique index names must follow the format {format}"
    params = (
        RuleParam(
            "format",
            "IDX_UK_{table}_{columns}",
            "name template; {table} is the table name, {columns} the column names joined by _",
            ParamType.STRING,
        ),
    )
    allow_offline = False
    tags = frozenset({"index", "ddl"})

    @property
    def name(self) -> str:
        return "ddl_check_unique_index_name_format"

    @property
    def description(self) -> str:
        return "Unique index names must follow a fixed naming format."

    @property
    def category(self) -> RuleCategory:
        return RuleCategory.NAMING

    @property
    def level(self) -> RuleLevel:
        return RuleLevel.WARN

    @staticmethod
    def expected_name(template: str, table: str, columns: list[str]) -> str:
        return template.replace("{table}", table).replace("{columns}", "_".join(columns))

    def check(self, node: Expression, ri: RuleInput) -> None:
        template = ri.param("format")
        table, indexes = added_indexes(node)
        if table is None:
            return
        for index in indexes:
            if index.kind != IndexKind.UNIQUE:
                continue
            if index.name.lower() != self.expected_name(template, table.name, index.columns).lower():
                ri.report()
                return
        if ri.statement.kind != StatementKind.ALTER_TABLE:
            return
        for index, new_name in renamed_indexes(ri, table, (IndexKind.UNIQUE,)):
            if new_name.lower() != self.expected_name(template, table.name, index.columns).lower():
                ri.report()
                return


class IndexPrefixRule(Rule):
    """Ordinary (non-unique) indexes must start with a fixed prefix."""

    message = "index names must start with {prefix}"
    params = (RuleParam("prefix", "idx_", "required prefix", ParamType.STRING),)
    tags = frozenset({"index", "ddl"})

    @property
    def name(self) -> str:
        return "ddl_check_index_prefix"

    @property
    def description(self) -> str:
        return "Ordinary index names must use a fixed prefix."

    @property
    def category(self) -> RuleCategory:
        return RuleCategory.NAMING

    @property
    def level(self) -> RuleLevel:
        return RuleLevel.NOTICE

    def check(self, node: Expression, ri: RuleInput) -> None:
        prefix = ri.param("prefix")
        _, indexes = added_indexes(node)
        for index in indexes:
            if index.kind == IndexKind.INDEX and index.name and not index.name.startswith(prefix):
                ri.report()
                return


class ObjectNameLengthRule(Rule):
    """Table, column and index names must not exceed a length."""

    message = "table, column and index names must not be longer than {max_length} characters"
    params = (RuleParam("max_length", 64, "maximum identifier length", ParamType.INT),)
    tags = frozenset({"table", "column", "index", "ddl"})

    @property
    def name(self) -> str:
        return "ddl_check_object_name_length"

    @property
    def description(self) -> str:
        return "Object names must not exceed the maximum identifier length."

    @property
    def category(self) -> RuleCategory:
        return RuleCategory.NAMING

    @property
    def level(self) -> RuleLevel:
        return RuleLevel.ERROR

    def check(self, node: Expression, ri: RuleInput) -> None:
        max_length = ri.param("max_length")
        if any(len(name) > max_length for name in self._names(node)):
            ri.report()

    @staticmethod
    def _names(node: Expression) -> list[str]:
        names: list[str] = []
        if isinstance(node, exp.Create):
            table = create_target(node)
            kind = str(node.args.get("kind") or "").upper()
            if kind == "TABLE" and table is not None:
                names.append(table.name)
                names.extend(col.name for col in node.find_all(exp.ColumnDef))
            _, indexes = added_indexes(node)
            names.extend(i.name for i in indexes)
            return names

        for pair in rename_pairs_of(node):
            names.append(pair.new.name)
        alter = alter_table_of(node)
        if alter is None:
            return names
        for spec in alter.specs:
            if isinstance(spec, (AddColumn, ModifyColumn)):
                names.append(spec.column.name)
            elif isinstance(spec, AddIndex):
                names.append(spec.index.name)
            elif isinstance(spec, (RenameColumn, RenameIndex)):
                names.append(spec.new_name)
            elif isinstance(spec, RenameTable):
                names.append(spec.new_table.name)
        return names


RULES = (
    UniqueIndexPrefixRule,
    UniqueIndexNameFormatRule,
    IndexPrefixRule,
    ObjectNameLengthRule,
)
