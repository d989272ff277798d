"""Statement pre-validation.

Checks that a statement is well-formed for the current schema before any
rule runs. Every mode checks the statement against itself (duplicate
columns or indexes, keys on unknown columns, several primary keys).
Connected audits of fresh SQL also check object existence through the
session context.

Failures become ERROR findings under ``pre_check``. An unparseable
``SHOW CREATE TABLE`` surfaces as ShowCreateTableParseError for the
pipeline to downgrade.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlglot import exp

from .ddl import (
    AddColumn,
    AddIndex,
    ChangeColumnType,
    DropColumn,
    DropIndex,
    ModifyColumn,
    RenameColumn,
    RenameIndex,
    SetColumnDefault,
    alter_table_of,
    drop_index_target,
    rename_pairs_of,
)
from .exceptions import SchemaUnknown, ShowCreateTableParseError
from .parser import MUTATION_KINDS, QUERY_KINDS, StatementKind, table_refs
from .rules.base import RuleLevel
from .schema import IndexKind, create_target, index_from_create_index, table_from_create

if TYPE_CHECKING:
    from .parser import Statement
    from .result import AuditResult
    from .schema import IndexDefinition, TableDefinition
    from .session import SessionContext

logger = logging.getLogger(__name__)

PRE_CHECK = "pre_check"
PRE_CHECK_ERR = "pre_check_err"


def _duplicates(names: list[str]) -> list[str]:
    seen: set[str] = set()
    dups = []
    for name in names:
        key = name.lower()
        if key in seen and name not in dups:
            dups.append(name)
        seen.add(key)
    return dups


def _name(schema: str, table: str) -> str:
    return f"{schema}.{table}" if schema else table


class PreValidator:
    """Runs the PreValidate stage for one statement."""

    def check(
        self,
        statement: Statement,
        context: SessionContext,
        result: AuditResult,
        connected: bool,
    ) -> list[str]:
        """Validate a statement and add a finding per problem.

        Args:
            connected: Also check object existence through the context.

        Returns:
            The problems found, in order.

        Raises:
            ShowCreateTableParseError: A live table definition could not be parsed.
        """
        problems = self.offline_problems(statement)
        if connected:
            try:
                problems.extend(self.online_problems(statement, context))
            except ShowCreateTableParseError:
                raise
            except SchemaUnknown as e:
                logger.debug("existence checks skipped: %s", e)
        for problem in problems:
            result.add(RuleLevel.ERROR, PRE_CHECK, problem)
        return problems

    # Intra-statement checks

    def offline_problems(self, statement: Statement) -> list[str]:
        node = statement.node
        if statement.kind == StatementKind.CREATE_TABLE and isinstance(node.this, exp.Schema):
            return self._create_table_shape(node)
        if statement.kind == StatementKind.ALTER_TABLE:
            alter = alter_table_of(node)
            if alter is None:
                return []
            added = [s.column.name for s in alter.of_type(AddColumn)]
            problems = [f"column {c} is duplicated" for c in _duplicates(added)]
            indexes = [s.index.name for s in alter.of_type(AddIndex) if s.index.name]
            problems.extend(f"index {i} is duplicated" for i in _duplicates(indexes))
            if len([s for s in alter.of_type(AddIndex) if s.index.kind == IndexKind.PRIMARY]) > 1:
                problems.append("multiple primary keys defined")
            return problems
        if statement.kind == StatementKind.CREATE_INDEX:
            index = index_from_create_index(node)
            return [f"column {c} is duplicated in index {index.name}" for c in _duplicates(index.columns)]
        return []

    @staticmethod
    def _create_table_shape(node: exp.Create) -> list[str]:
        items = node.this.expressions
        problems = []
        columns = [item.name for item in items if isinstance(item, exp.ColumnDef)]
        problems.extend(f"column {c} is duplicated" for c in _duplicates(columns))

        definition = table_from_create(node)
        named = [i.name for i in definition.indexes if i.kind != IndexKind.PRIMARY]
        problems.extend(f"index {i} is duplicated" for i in _duplicates(named))

        column_pks = sum(1 for c in definition.columns if c.primary_key)
        table_pks = sum(1 for item in items if isinstance(item, exp.PrimaryKey))
        if column_pks + table_pks > 1:
            problems.append("multiple primary keys defined")

        known = {c.lower() for c in columns}
        for index in definition.indexes:
            for col in index.columns:
                if col.lower() not in known:
                    problems.append(f"index {index.name} uses unknown column {col}")
        return problems

    # Existence checks

    def online_problems(self, statement: Statement, context: SessionContext) -> list[str]:
        node = statement.node
        kind = statement.kind
        if kind in QUERY_KINDS or kind in MUTATION_KINDS:
            return self._tables_exist(table_refs(node), context)
        if kind == StatementKind.CREATE_TABLE:
            return self._create_table(node, context)
        if kind == StatementKind.ALTER_TABLE:
            return self._alter_table(node, context)
        if kind == StatementKind.DROP_TABLE:
            if node.args.get("exists"):
                return []
            tables = [t for t in [node.this, *node.expressions] if isinstance(t, exp.Table)]
            return self._tables_exist(tables, context)
        if kind == StatementKind.RENAME_TABLE:
            problems = []
            for pair in rename_pairs_of(node):
                problems.extend(self._tables_exist([pair.old], context))
                problems.extend(self._table_absent(pair.new, context))
            return problems
        if kind == StatementKind.CREATE_INDEX:
            return self._create_index(node, context)
        if kind == StatementKind.DROP_INDEX:
            return self._drop_index(node, context)
        if kind in (StatementKind.CREATE_DATABASE, StatementKind.DROP_DATABASE, StatementKind.USE):
            return self._database(node, kind, context)
        return []

    @staticmethod
    def _tables_exist(tables: list[exp.Table], context: SessionContext) -> list[str]:
        problems = []
        for table in tables:
            schema = context.resolve_schema_name(table)
            if context.is_schema_exist(schema) is False:
                problems.append(f"schema {schema} does not exist")
            elif context.is_table_exist(schema, table.name) is False:
                problems.append(f"table {_name(schema, table.name)} does not exist")
        return problems

    @staticmethod
    def _table_absent(table: exp.Table, context: SessionContext) -> list[str]:
        schema = context.resolve_schema_name(table)
        if context.is_schema_exist(schema) is False:
            return [f"schema {schema} does not exist"]
        if context.is_table_exist(schema, table.name):
            return [f"table {_name(schema, table.name)} already exists"]
        return []

    def _create_table(self, node: exp.Create, context: SessionContext) -> list[str]:
        table = create_target(node)
        if table is None or node.args.get("exists"):
            return []
        problems = self._table_absent(table, context)
        like = node.find(exp.LikeProperty)
        if like is not None and isinstance(like.this, exp.Table):
            problems.extend(self._tables_exist([like.this], context))
        return problems

    def _alter_table(self, node: exp.Expression, context: SessionContext) -> list[str]:
        alter = alter_table_of(node)
        if alter is None:
            return []
        missing = self._tables_exist([alter.table], context)
        if missing:
            return missing
        definition = context.get_table(alter.table)
        problems: list[str] = []
        for spec in alter.specs:
            problems.extend(self._spec_problems(spec, definition))
        return problems

    @staticmethod
    def _spec_problems(spec: object, definition: TableDefinition) -> list[str]:
        if isinstance(spec, AddColumn):
            if definition.has_column(spec.column.name):
                return [f"column {spec.column.name} already exists"]
            return []
        if isinstance(spec, ModifyColumn):
            name = spec.old_name
        elif isinstance(spec, (DropColumn, ChangeColumnType, SetColumnDefault)):
            name = spec.name
        elif isinstance(spec, RenameColumn):
            name = spec.old_name
        elif isinstance(spec, AddIndex):
            return PreValidator._index_problems(spec.index, definition)
        elif isinstance(spec, DropIndex):
            if spec.name.upper() == "PRIMARY":
                return [] if definition.primary_key is not None else ["primary key does not exist"]
            return [] if definition.has_index(spec.name) else [f"index {spec.name} does not exist"]
        elif isinstance(spec, RenameIndex):
            if not definition.has_index(spec.old_name):
                return [f"index {spec.old_name} does not exist"]
            if definition.has_index(spec.new_name):
                return [f"index {spec.new_name} already exists"]
            return []
        else:
            return []
        return [] if definition.has_column(name) else [f"column {name} does not exist"]

    @staticmethod
    def _index_problems(index: IndexDefinition, definition: TableDefinition) -> list[str]:
        problems = []
        if index.kind == IndexKind.PRIMARY:
            if definition.primary_key is not None:
                problems.append("primary key already exists")
        elif index.name and definition.has_index(index.name):
            problems.append(f"index {index.name} already exists")
        for col in index.columns:
            if not definition.has_column(col):
                problems.append(f"column {col} does not exist")
        return problems

    def _create_index(self, node: exp.Create, context: SessionContext) -> list[str]:
        table = create_target(node)
        if table is None:
            return []
        missing = self._tables_exist([table], context)
        if missing:
            return missing
        return self._index_problems(index_from_create_index(node), context.get_table(table))

    def _drop_index(self, node: exp.Expression, context: SessionContext) -> list[str]:
        target = drop_index_target(node)
        if target is None:
            return []
        index_name, table = target
        missing = self._tables_exist([table], context)
        if missing:
            return missing
        if not context.get_table(table).has_index(index_name):
            return [f"index {index_name} does not exist"]
        return []

    @staticmethod
    def _database(node: exp.Expression, kind: StatementKind, context: SessionContext) -> list[str]:
        target = node.this
        name = target.name if isinstance(target, exp.Expression) else str(target or "")
        exists = context.is_schema_exist(name)
        if kind == StatementKind.CREATE_DATABASE:
            if exists and not node.args.get("exists"):
                return [f"schema {name} already exists"]
            return []
        if kind == StatementKind.DROP_DATABASE and node.args.get("exists"):
            return []
        if exists is False:
            return [f"schema {name} does not exist"]
        return []
