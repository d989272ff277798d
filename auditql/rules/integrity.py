"""Integrity constraint rules for table definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlglot import exp

from ..ddl import AddColumn, ModifyColumn, alter_table_of
from ..parser import StatementKind
from ..schema import ColumnDefinition, create_target, table_from_create
from .base import Rule, RuleCategory, RuleInput, RuleLevel

if TYPE_CHECKING:
    from sqlglot.expressions import Expression

# Types MySQL does not allow a literal DEFAULT on.
_NO_DEFAULT_TYPES = ("BLOB", "TEXT", "JSON", "GEOMETRY")


def _is_table_definition(node: Expression) -> bool:
    """CREATE TABLE with an explicit column list (not LIKE / AS SELECT)."""
    return (
        isinstance(node, exp.Create)
        and str(node.args.get("kind") or "").upper() == "TABLE"
        and isinstance(node.this, exp.Schema)
        and create_target(node) is not None
    )


class PrimaryKeyNotExistRule(Rule):
    """Tables must be created with a primary key."""

    message = "table must have a primary key"
    tags = frozenset({"table", "ddl"})

    @property
    def name(self) -> str:
        return "ddl_check_pk_not_exist"

    @property
    def description(self) -> str:
        return "CREATE TABLE must declare a primary key."

    @property
    def category(self) -> RuleCategory:
        return RuleCategory.INTEGRITY

    @property
    def level(self) -> RuleLevel:
        return RuleLevel.ERROR

    def check(self, node: Expression, ri: RuleInput) -> None:
        if not _is_table_definition(node):
            return
        if table_from_create(node).primary_key is None:
            ri.report()


class AutoIncrementInitialValueRule(Rule):
    """Auto-increment values should start at 0.

    Flags CREATE TABLE ... AUTO_INCREMENT=<n> with n != 0, and
    SET auto_increment_offset to a value above 1.
    """

    message = "the table auto-increment initial value should be 0"
    tags = frozenset({"table", "ddl"})

    @property
    def name(self) -> str:
        return "ddl_check_auto_increment_initial_value"

    @property
    def description(self) -> str:
        return "Auto-increment columns should start from 0."

    @property
    def category(self) -> RuleCategory:
        return RuleCategory.INTEGRITY

    @property
    def level(self) -> RuleLevel:
        return RuleLevel.WARN

    def check(self, node: Expression, ri: RuleInput) -> None:
        if _is_table_definition(node):
            start = table_from_create(node).auto_increment
            if start is not None and start != 0:
                ri.report()
            return

        if ri.statement.kind != StatementKind.SET:
            return
        for eq in node.find_all(exp.EQ):
            target = eq.this
            value = eq.expression
            if target is None or target.name.lstrip("@").lower() != "auto_increment_offset":
                continue
            if isinstance(value, exp.Literal) and value.is_int and int(value.this) > 1:
                ri.report()
                return


class ColumnWithoutDefaultRule(Rule):
    """Columns need a DEFAULT, except auto-increment and large-object columns."""

    message = "every column except auto-increment and blob/text columns needs a default value"
    tags = frozenset({"column", "ddl"})

    @property
    def name(self) -> str:
        return "ddl_check_column_without_default"

    @property
    def description(self) -> str:
        return "Columns must declare a default value."

    @property
    def category(self) -> RuleCategory:
        return RuleCategory.INTEGRITY

    @property
    def level(self) -> RuleLevel:
        return RuleLevel.ERROR

    @staticmethod
    def needs_default(column: ColumnDefinition) -> bool:
        if column.auto_increment or column.default is not None:
            return False
        type_name = column.type.upper()
        return not any(t in type_name for t in _NO_DEFAULT_TYPES)

    def check(self, node: Expression, ri: RuleInput) -> None:
        if _is_table_definition(node):
            columns = table_from_create(node).columns
        else:
            alter = alter_table_of(node)
            if alter is None:
                return
            columns = [spec.column for spec in alter.of_type(AddColumn, ModifyColumn)]
        if any(self.needs_default(column) for column in columns):
            ri.report()


RULES = (
    PrimaryKeyNotExistRule,
    AutoIncrementInitialValueRule,
    ColumnWithoutDefaultRule,
)
