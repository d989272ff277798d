"""Index advice for DDL and DML statements."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlglot import exp

from .ddl import AddIndex, alter_table_of
from .exceptions import LiveExecutionFailure, SchemaUnknown
from .parser import StatementKind
from .schema import IndexDefinition, IndexKind, create_target, index_from_create_index, table_from_create

if TYPE_CHECKING:
    from .parser import Statement
    from .schema import TableDefinition
    from .session import SessionContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexAdvice:
    """One piece of index advice.

    Attributes:
        table: Table the advice is about.
        columns: Columns the advice concerns.
        reason: Human-readable explanation.
    """

    table: str
    columns: tuple[str, ...]
    reason: str


class IndexOptimizer:
    """Advises on index design from statement structure and live statistics.

    Advice kinds:
    - Composite indexes wider than ``max_index_column``
    - WHERE equality columns that no index can serve
    - Indexed columns whose selectivity is below ``min_column_selectivity``
      (percent); needs a live connection and is skipped otherwise

    Advice never blocks a statement; the auditor reports it as NOTICE.
    """

    def __init__(self, max_index_column: int = 3, min_column_selectivity: float = 2.0) -> None:
        self.max_index_column = max_index_column
        self.min_column_selectivity = min_column_selectivity

    def advise(self, statement: Statement, context: SessionContext) -> list[IndexAdvice]:
        """Collect advice for one statement, in discovery order."""
        kind = statement.kind
        node = statement.node
        if kind == StatementKind.CREATE_TABLE:
            if not isinstance(node.this, exp.Schema):
                return []
            definition = table_from_create(node, context.current_schema)
            return self._width_advice(definition.name, definition.indexes)
        if kind == StatementKind.CREATE_INDEX:
            table = create_target(node)
            if table is None:
                return []
            return self._new_index_advice(table, [index_from_create_index(node)], context)
        if kind == StatementKind.ALTER_TABLE:
            alter = alter_table_of(node)
            if alter is None:
                return []
            indexes = [spec.index for spec in alter.of_type(AddIndex)]
            return self._new_index_advice(alter.table, indexes, context)
        if kind in (StatementKind.SELECT, StatementKind.UPDATE, StatementKind.DELETE):
            return self._where_advice(node, context)
        return []

    # Composite width

    def _width_advice(self, table: str, indexes: list[IndexDefinition]) -> list[IndexAdvice]:
        advice = []
        for index in indexes:
            if index.kind == IndexKind.FOREIGN or len(index.columns) <= self.max_index_column:
                continue
            advice.append(
                IndexAdvice(
                    table,
                    tuple(index.columns),
                    f"index {index.name or '(unnamed)'} on {table} has {len(index.columns)} columns, "
                    f"composite indexes should have at most {self.max_index_column}",
                )
            )
        return advice

    def _new_index_advice(
        self, table: exp.Table, indexes: list[IndexDefinition], context: SessionContext
    ) -> list[IndexAdvice]:
        advice = self._width_advice(table.name, indexes)
        schema = context.resolve_schema_name(table)
        for index in indexes:
            if index.columns:
                advice.extend(self._selectivity_advice(schema, table.name, index.columns[0], context))
        return advice

    # Selectivity

    def _selectivity_advice(
        self, schema: str, table: str, column: str, context: SessionContext
    ) -> list[IndexAdvice]:
        if not context.is_online:
            return []
        try:
            selectivity = context.get_column_selectivity(schema, table, column)
        except SchemaUnknown as e:
            logger.debug("selectivity of %s.%s skipped: %s", table, column, e)
            return []
        except LiveExecutionFailure as e:
            logger.warning("selectivity of %s.%s unavailable: %s", table, column, e)
            return []
        if selectivity >= self.min_column_selectivity:
            return []
        return [
            IndexAdvice(
                table,
                (column,),
                f"column {column} of {table} has selectivity {selectivity:.2f}%, "
                f"below {self.min_column_selectivity}%; an index on it is of little use",
            )
        ]

    # WHERE equality columns

    def _where_advice(self, node: exp.Expression, context: SessionContext) -> list[IndexAdvice]:
        where = node.args.get("where")
        if where is None:
            return []
        tables = self._tables_by_alias(node)
        if not tables:
            return []

        wanted: dict[str, list[str]] = {}
        for column in self._equality_columns(where.this):
            qualifier = column.table
            if not qualifier and len(tables) == 1:
                qualifier = next(iter(tables))
            if qualifier not in tables:
                continue
            columns = wanted.setdefault(qualifier, [])
            if column.name not in columns:
                columns.append(column.name)

        advice = []
        for alias, columns in wanted.items():
            table = tables[alias]
            try:
                definition = context.get_table(table)
            except SchemaUnknown as e:
                logger.debug("index advice for %s skipped: %s", table.name, e)
                continue
            advice.extend(self._usable_index_advice(definition, columns, context))
        return advice

    def _usable_index_advice(
        self, definition: TableDefinition, columns: list[str], context: SessionContext
    ) -> list[IndexAdvice]:
        known = [c for c in columns if definition.has_column(c)]
        if not known:
            return []
        lowered = {c.lower() for c in known}
        for index in definition.indexes:
            if index.columns and index.columns[0].lower() in lowered:
                return self._selectivity_advice(definition.schema, definition.name, index.columns[0], context)
        suggested = known[: self.max_index_column]
        return [
            IndexAdvice(
                definition.name,
                tuple(suggested),
                f"no index on {definition.name} serves the equality conditions on "
                f"{', '.join(known)}; consider an index on ({', '.join(suggested)})",
            )
        ]

    @staticmethod
    def _tables_by_alias(node: exp.Expression) -> dict[str, exp.Table]:
        tables: dict[str, exp.Table] = {}
        for table in node.find_all(exp.Table):
            if table.find_ancestor(exp.Subquery) is not None:
                continue
            tables[table.alias_or_name] = table
        return tables

    @staticmethod
    def _equality_columns(condition: exp.Expression) -> list[exp.Column]:
        """Columns compared to a constant in the top-level AND chain."""
        if isinstance(condition, exp.Paren):
            return IndexOptimizer._equality_columns(condition.this)
        if isinstance(condition, exp.And):
            return IndexOptimizer._equality_columns(condition.left) + IndexOptimizer._equality_columns(
                condition.right
            )
        if isinstance(condition, (exp.EQ, exp.In)):
            left = condition.this
            if isinstance(condition, exp.EQ):
                right = condition.expression
                if isinstance(right, exp.Column) and not isinstance(left, exp.Column):
                    left, right = right, left
                if isinstance(right, exp.Column):
                    return []
            if isinstance(left, exp.Column):
                return [left]
        return []
