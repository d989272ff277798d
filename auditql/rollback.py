"""Reverse statements for DDL.

Rollback text is built from the session context *before* the statement's
effect is applied, so dropped columns and indexes can be recreated from
their prior definitions. When any part of a statement cannot be reversed
(unknown ALTER clause, table unknown offline) no rollback is produced.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlglot import exp

from .ddl import (
    AddColumn,
    AddIndex,
    AlterSpec,
    ChangeColumnType,
    DropColumn,
    DropIndex,
    ModifyColumn,
    RenameColumn,
    RenameIndex,
    RenameTable,
    SetColumnDefault,
    TableOption,
    alter_table_of,
    drop_index_target,
    rename_pairs_of,
)
from .exceptions import SchemaUnknown
from .parser import StatementKind
from .schema import IndexKind, create_target, index_from_create_index, quote_table

if TYPE_CHECKING:
    from .parser import Statement
    from .schema import TableDefinition
    from .session import SessionContext

logger = logging.getLogger(__name__)


class _Irreversible(Exception):
    pass


def generate_rollback(statement: Statement, context: SessionContext) -> str | None:
    """Statement(s) undoing a DDL statement, or None when it cannot be undone.

    Args:
        statement: The DDL statement, not yet applied to ``context``.
        context: Session context describing the schema before the statement.

    Returns:
        One or more ``;``-terminated statements, or None.
    """
    handler = _HANDLERS.get(statement.kind)
    if handler is None:
        return None
    try:
        statements = handler(statement.node, context)
    except SchemaUnknown as e:
        logger.debug("no rollback for statement %d: %s", statement.batch_index, e)
        return None
    except _Irreversible as e:
        logger.debug("no rollback for statement %d: %s", statement.batch_index, e)
        return None
    if not statements:
        return None
    return "\n".join(f"{s};" for s in statements)


def _quoted(table: exp.Table, context: SessionContext) -> str:
    return quote_table(context.resolve_schema_name(table), table.name)


def _create_table(node: exp.Create, context: SessionContext) -> list[str]:
    table = create_target(node)
    if table is None:
        return []
    if node.args.get("exists"):
        # None: the table may predate this statement.
        if context.is_table_exist(context.resolve_schema_name(table), table.name) is not False:
            return []
    return [f"DROP TABLE {_quoted(table, context)}"]


def _drop_table(node: exp.Drop, context: SessionContext) -> list[str]:
    statements = []
    for table in [node.this, *node.expressions]:
        if not isinstance(table, exp.Table):
            continue
        schema = context.resolve_schema_name(table)
        if node.args.get("exists") and not context.is_table_exist(schema, table.name):
            continue
        statements.append(context.get_table_definition(schema, table.name).to_create_sql())
    return statements


def _create_database(node: exp.Create, context: SessionContext) -> list[str]:
    name = node.this.name if isinstance(node.this, exp.Expression) else str(node.this or "")
    if node.args.get("exists") and context.is_schema_exist(name):
        return []
    return [f"DROP DATABASE `{name}`"]


def _rename_table(node: exp.Expression, context: SessionContext) -> list[str]:
    pairs = rename_pairs_of(node)
    if not pairs:
        return []
    reversed_pairs = ", ".join(
        f"{_quoted(p.new, context)} TO {_quoted(p.old, context)}" for p in reversed(pairs)
    )
    return [f"RENAME TABLE {reversed_pairs}"]


def _create_index(node: exp.Create, context: SessionContext) -> list[str]:
    table = create_target(node)
    index = index_from_create_index(node)
    if table is None or not index.name:
        return []
    return [f"DROP INDEX `{index.name}` ON {_quoted(table, context)}"]


def _drop_index(node: exp.Expression, context: SessionContext) -> list[str]:
    target = drop_index_target(node)
    if target is None:
        return []
    name, table = target
    index = context.get_table(table).index(name)
    if index is None:
        raise _Irreversible(f"index {name} is unknown")
    return [f"ALTER TABLE {_quoted(table, context)} ADD {index.to_sql()}"]


def _alter_table(node: exp.Expression, context: SessionContext) -> list[str]:
    alter = alter_table_of(node)
    if alter is None or not alter.specs:
        return []
    definition = context.get_table(alter.table)
    target = _quoted(alter.table, context)
    clauses = []
    for spec in reversed(alter.specs):
        if isinstance(spec, RenameTable):
            target = _quoted(spec.new_table, context)
        clauses.append(reverse_alter_spec(spec, definition))
    return [f"ALTER TABLE {target} {', '.join(clauses)}"]


def reverse_alter_spec(spec: AlterSpec, definition: TableDefinition) -> str:
    """ALTER clause undoing ``spec`` on a table currently shaped like ``definition``."""
    if isinstance(spec, AddColumn):
        return f"DROP COLUMN `{spec.column.name}`"
    if isinstance(spec, RenameColumn):
        return f"RENAME COLUMN `{spec.new_name}` TO `{spec.old_name}`"
    if isinstance(spec, AddIndex):
        if spec.index.kind == IndexKind.PRIMARY:
            return "DROP PRIMARY KEY"
        name = spec.index.name or (spec.index.columns[0] if spec.index.columns else "")
        if not name:
            raise _Irreversible("unnamed index")
        return f"DROP INDEX `{name}`"
    if isinstance(spec, RenameIndex):
        return f"RENAME INDEX `{spec.new_name}` TO `{spec.old_name}`"
    if isinstance(spec, RenameTable):
        return f"RENAME TO {quote_table(definition.schema, definition.name)}"
    if isinstance(spec, DropIndex):
        index = definition.primary_key if spec.name.upper() == "PRIMARY" else definition.index(spec.name)
        if index is None:
            raise _Irreversible(f"index {spec.name} is unknown")
        return f"ADD {index.to_sql()}"
    if isinstance(spec, TableOption):
        return _reverse_option(spec, definition)

    name = spec.old_name if isinstance(spec, ModifyColumn) else getattr(spec, "name", None)
    column = definition.column(name) if name else None
    if column is None:
        raise _Irreversible(f"cannot reverse {spec}")
    if isinstance(spec, DropColumn):
        return f"ADD COLUMN {column.to_sql()}"
    if isinstance(spec, ModifyColumn):
        return f"CHANGE COLUMN `{spec.column.name}` {column.to_sql()}"
    if isinstance(spec, ChangeColumnType):
        return f"MODIFY COLUMN {column.to_sql()}"
    if isinstance(spec, SetColumnDefault):
        if column.default is None:
            return f"ALTER COLUMN `{column.name}` DROP DEFAULT"
        return f"ALTER COLUMN `{column.name}` SET DEFAULT {column.default}"
    raise _Irreversible(f"cannot reverse {spec}")


def _reverse_option(spec: TableOption, definition: TableDefinition) -> str:
    if spec.key == "ENGINE" and definition.engine:
        return f"ENGINE={definition.engine}"
    if spec.key == "CHARSET" and definition.charset:
        return f"DEFAULT CHARSET={definition.charset}"
    if spec.key == "COMMENT":
        return "COMMENT='{}'".format((definition.comment or "").replace("'", "''"))
    if spec.key == "AUTO_INCREMENT" and definition.auto_increment is not None:
        return f"AUTO_INCREMENT={definition.auto_increment}"
    raise _Irreversible(f"previous {spec.key} is unknown")


_HANDLERS = {
    StatementKind.CREATE_TABLE: _create_table,
    StatementKind.DROP_TABLE: _drop_table,
    StatementKind.CREATE_DATABASE: _create_database,
    StatementKind.RENAME_TABLE: _rename_table,
    StatementKind.CREATE_INDEX: _create_index,
    StatementKind.DROP_INDEX: _drop_index,
    StatementKind.ALTER_TABLE: _alter_table,
}
