"""Performance risk rules for queries and DDL on large tables."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlglot import exp

from ..ddl import alter_table_of
from ..parser import StatementKind
from .base import ParamType, Rule, RuleCategory, RuleInput, RuleLevel, RuleParam

if TYPE_CHECKING:
    from sqlglot.expressions import Expression


def _has_table(node: Expression) -> bool:
    return node.args.get("from") is not None or isinstance(node, (exp.Update, exp.Delete))


class WhereIsInvalidRule(Rule):
    """SELECT, UPDATE and DELETE need a WHERE clause that is not always true.

    A WHERE clause that references no column (``1=1``, ``TRUE``) counts as
    always true.
    """

    message = "WHERE clause is missing or always true"
    tags = frozenset({"dml"})

    @property
    def name(self) -> str:
        return "dml_check_where_is_invalid"

    @property
    def description(self) -> str:
        return "DML must carry a WHERE clause that filters rows."

    @property
    def category(self) -> RuleCategory:
        return RuleCategory.PERFORMANCE

    @property
    def level(self) -> RuleLevel:
        return RuleLevel.ERROR

    def check(self, node: Expression, ri: RuleInput) -> None:
        if not isinstance(node, (exp.Select, exp.Update, exp.Delete)) or not _has_table(node):
            return
        where = node.args.get("where")
        if where is None or next(where.find_all(exp.Column), None) is None:
            ri.report()


class SelectStarRule(Rule):
    """SELECT * couples callers to the table layout and reads every column."""

    message = "avoid SELECT *; list the needed columns"
    tags = frozenset({"dml"})

    @property
    def name(self) -> str:
        return "dml_check_select_star"

    @property
    def description(self) -> str:
        return "Queries should not use SELECT *."

    @property
    def category(self) -> RuleCategory:
        return RuleCategory.PERFORMANCE

    @property
    def level(self) -> RuleLevel:
        return RuleLevel.NOTICE

    def check(self, node: Expression, ri: RuleInput) -> None:
        for select in node.find_all(exp.Select):
            if any(e.is_star for e in select.expressions):
                ri.report()
                return


class SelectLimitRule(Rule):
    """SELECT must carry a LIMIT no larger than ``max_rows``.

    LIMIT values that are not integer literals cannot be checked statically
    and pass.
    """

    message = "SELECT must have a LIMIT of at most {max_rows}"
    params = (RuleParam("max_rows", 1000, "maximum LIMIT value", ParamType.INT),)
    tags = frozenset({"dml"})

    @property
    def name(self) -> str:
        return "dml_check_select_limit"

    @property
    def description(self) -> str:
        return "SELECT statements need a bounded LIMIT."

    @property
    def category(self) -> RuleCategory:
        return RuleCategory.PERFORMANCE

    @property
    def level(self) -> RuleLevel:
        return RuleLevel.WARN

    def check(self, node: Expression, ri: RuleInput) -> None:
        if not isinstance(node, exp.Select) or node.args.get("from") is None:
            return
        max_rows = ri.param("max_rows")
        limit_clause = node.args.get("limit")
        if limit_clause is None:
            ri.report()
            return
        limit_value = self._extract_limit_value(limit_clause)
        if limit_value is not None and limit_value > max_rows:
            ri.report()

    @staticmethod
    def _extract_limit_value(limit_clause: Expression) -> int | None:
        if isinstance(limit_clause, exp.Limit):
            limit_expr = limit_clause.expression
            if isinstance(limit_expr, exp.Literal) and limit_expr.is_int:
                return int(limit_expr.this)
        elif isinstance(limit_clause, exp.Literal) and limit_clause.is_int:
            return int(limit_clause.this)
        return None


class TableSizeRule(Rule):
    """ALTER, DROP and TRUNCATE on large tables lock or rewrite a lot of data."""

    message = "table is larger than {size} MB; schedule this change carefully"
    params = (RuleParam("size", 1024, "table size threshold in MB", ParamType.INT),)
    allow_offline = False
    disabled_for_executed = True
    tags = frozenset({"table", "ddl"})

    @property
    def name(self) -> str:
        return "ddl_check_table_size"

    @property
    def description(self) -> str:
        return "DDL on tables above a size threshold is risky."

    @property
    def category(self) -> RuleCategory:
        return RuleCategory.PERFORMANCE

    @property
    def level(self) -> RuleLevel:
        return RuleLevel.WARN

    def check(self, node: Expression, ri: RuleInput) -> None:
        kind = ri.statement.kind
        if kind == StatementKind.ALTER_TABLE:
            alter = alter_table_of(node)
            tables = [alter.table] if alter is not None else []
        elif kind in (StatementKind.DROP_TABLE, StatementKind.TRUNCATE):
            tables = [t for t in node.find_all(exp.Table) if t.name]
        else:
            return
        threshold = ri.param("size")
        for table in tables:
            schema = ri.context.resolve_schema_name(table)
            if ri.context.get_table_size(schema, table.name) > threshold:
                ri.report()
                return


RULES = (
    WhereIsInvalidRule,
    SelectStarRule,
    SelectLimitRule,
    TableSizeRule,
)
