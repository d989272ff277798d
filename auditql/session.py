"""Session-scoped virtual schema.

A SessionContext answers "what does the schema look like right now" for
rules, the pipeline and the affected-rows estimator. With a live executor,
facts are fetched once and memoized; without one (offline audit), only
what earlier statements of the session created is known.

Every accessor distinguishes two failure modes:

- ``TableNotExists``: the table is known to be absent.
- ``SchemaUnknown``: the fact cannot be determined (typically offline).

Rules must treat the second as "skip", never as a violation.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError as SqlglotParseError
from sqlglot.errors import TokenError

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
from .exceptions import (
    AuditCancelled,
    LiveExecutionFailure,
    SchemaUnknown,
    ShowCreateTableParseError,
    TableNotExists,
    VariableUnavailable,
)
from .parser import StatementKind, statement_kind
from .schema import (
    DefinitionSource,
    IndexDefinition,
    IndexKind,
    TableDefinition,
    create_target,
    index_from_create_index,
    quote_table,
    table_from_create,
)

if TYPE_CHECKING:
    from .executor import ExplainRecord, Executor

logger = logging.getLogger(__name__)

SYS_VAR_LOWER_CASE_TABLE_NAMES = "lower_case_table_names"

_TableKey = tuple[str, str]


class SessionContext:
    """Virtual catalog for one audit session.

    Not safe for concurrent mutation: one session audits its statements
    sequentially. Concurrent reads of the same table are memoized once.

    Args:
        executor: Live executor, or None for offline audits.
        current_schema: Schema unqualified table names resolve to.
        cancel: Event that, once set, stops any new live query.
    """

    def __init__(
        self,
        executor: Executor | None = None,
        current_schema: str = "",
        cancel: threading.Event | None = None,
    ) -> None:
        self._executor = executor
        self._current_schema = current_schema
        self._default_schema = current_schema
        self._cancel = cancel

        # None marks a table known to be absent (dropped in this session,
        # or reported missing by the live database).
        self._tables: dict[_TableKey, TableDefinition | None] = {}
        self._schemas: dict[str, bool] = {}
        self._schemas_loaded = False
        # None marks a variable the server does not have.
        self._variables: dict[str, str | None] = {}
        self._plans: dict[str, list[ExplainRecord]] = {}
        self._selectivity: dict[tuple[_TableKey, str], float] = {}

        self._lock = threading.Lock()
        self._key_locks: dict[object, threading.Lock] = {}
        self._closed = False

    # Capability and identity

    @property
    def is_online(self) -> bool:
        return self._executor is not None and not self._closed

    @property
    def executor(self) -> Executor | None:
        return self._executor if self.is_online else None

    @property
    def current_schema(self) -> str:
        return self._current_schema

    @property
    def default_schema(self) -> str:
        return self._default_schema

    def set_current_schema(self, name: str) -> None:
        self._current_schema = name

    def resolve_schema_name(self, table: exp.Table | None) -> str:
        """Explicit schema of a table reference, else the current schema."""
        if table is not None and table.db:
            return table.db
        return self._current_schema or ""

    @property
    def is_case_sensitive(self) -> bool:
        """Whether table names compare case-sensitively.

        Falls back to case-sensitive when the variable cannot be read.
        """
        try:
            return self.get_system_variable(SYS_VAR_LOWER_CASE_TABLE_NAMES) == "0"
        except VariableUnavailable:
            return True

    def _key(self, schema: str, table: str) -> _TableKey:
        if self.is_case_sensitive:
            return (schema, table)
        return (schema.lower(), table.lower())

    def _schema_key(self, schema: str) -> str:
        return schema if self.is_case_sensitive else schema.lower()

    def _lock_for(self, key: object) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    def _live(self) -> Executor:
        """Executor for a new live query; raises when offline or cancelled."""
        if self._cancel is not None and self._cancel.is_set():
            raise AuditCancelled("audit cancelled by caller")
        if self._executor is None or self._closed:
            raise SchemaUnknown("no live connection")
        return self._executor

    # Tables

    def get_table_definition(self, schema: str, table: str) -> TableDefinition:
        """Return the definition of ``schema.table``.

        Raises:
            TableNotExists: The table is known to be absent.
            SchemaUnknown: Offline and the table was not created in session.
            ShowCreateTableParseError: The live definition could not be parsed.
        """
        key = self._key(schema, table)
        if key in self._tables:
            return self._cached(key, schema, table)
        if self._schemas.get(self._schema_key(schema)) is False:
            raise TableNotExists(schema, table)
        if not self.is_online:
            raise SchemaUnknown(f"table {schema}.{table} is unknown offline")

        with self._lock_for(key):
            if key not in self._tables:
                try:
                    self._tables[key] = self._fetch_table(schema, table)
                except TableNotExists:
                    self._tables[key] = None
                    raise
        return self._cached(key, schema, table)

    def get_table(self, table: exp.Table) -> TableDefinition:
        """Definition for a sqlglot table reference."""
        return self.get_table_definition(self.resolve_schema_name(table), table.name)

    def _cached(self, key: _TableKey, schema: str, table: str) -> TableDefinition:
        definition = self._tables[key]
        if definition is None:
            raise TableNotExists(schema, table)
        return definition

    def _fetch_table(self, schema: str, table: str) -> TableDefinition:
        executor = self._live()
        logger.debug("fetching definition of %s.%s", schema, table)
        rows = executor.query(
            "SELECT TABLE_NAME FROM information_schema.tables "
            "WHERE table_schema = %s AND table_name = %s",
            (schema, table),
        )
        if not rows:
            raise TableNotExists(schema, table)

        rows = executor.query(f"SHOW CREATE TABLE {quote_table(schema, table)}")
        if not rows:
            raise TableNotExists(schema, table)
        row = rows[0]
        body = row.get("Create Table") or list(row.values())[-1]
        try:
            node = sqlglot.parse_one(str(body), read="mysql")
        except (SqlglotParseError, TokenError) as e:
            raise ShowCreateTableParseError(
                f"cannot parse SHOW CREATE TABLE of {schema}.{table}: {e}"
            ) from e
        if not isinstance(node, exp.Create) or create_target(node) is None:
            raise ShowCreateTableParseError(f"unexpected SHOW CREATE TABLE body for {schema}.{table}")

        definition = table_from_create(node, default_schema=schema)
        definition.schema = schema
        definition.name = table
        definition.source = DefinitionSource.LIVE
        return definition

    def is_table_exist(self, schema: str, table: str) -> bool | None:
        """True/False when known, None when it cannot be determined."""
        try:
            self.get_table_definition(schema, table)
        except TableNotExists:
            return False
        except ShowCreateTableParseError:
            return True
        except SchemaUnknown:
            return None
        return True

    def get_table_size(self, schema: str, table: str) -> float:
        """Approximate data plus index size in MB."""
        definition = self.get_table_definition(schema, table)
        if definition.size_mb is not None:
            return definition.size_mb
        if definition.source is DefinitionSource.SYNTHESIZED:
            return 0.0
        rows = self._live().query(
            "SELECT (DATA_LENGTH + INDEX_LENGTH) / 1024 / 1024 AS size, TABLE_ROWS AS table_rows "
            "FROM information_schema.tables WHERE table_schema = %s AND table_name = %s",
            (schema, table),
        )
        if not rows:
            raise TableNotExists(schema, table)
        definition.size_mb = float(rows[0].get("size") or 0)
        if rows[0].get("table_rows") is not None:
            definition.row_count = int(rows[0]["table_rows"])
        return definition.size_mb

    def get_column_selectivity(self, schema: str, table: str, column: str) -> float:
        """Distinct values of a column as a percentage of the table's rows.

        Raises:
            SchemaUnknown: Offline, or the table only exists in this session.
        """
        definition = self.get_table_definition(schema, table)
        if definition.source is DefinitionSource.SYNTHESIZED:
            raise SchemaUnknown(f"{schema}.{table} has no live rows")
        key = (self._key(schema, table), column.lower())
        if key in self._selectivity:
            return self._selectivity[key]

        rows = self._live().query(
            f"SELECT COUNT(DISTINCT `{column}`) AS distinct_count, COUNT(*) AS total "
            f"FROM {quote_table(schema, table)}"
        )
        row = rows[0] if rows else {}
        total = int(row.get("total") or 0)
        distinct = int(row.get("distinct_count") or 0)
        value = 100.0 if total == 0 else distinct * 100.0 / total
        self._selectivity[key] = value
        return value

    # Schemas

    def is_schema_exist(self, schema: str) -> bool | None:
        key = self._schema_key(schema)
        if key in self._schemas:
            return self._schemas[key]
        if not self.is_online:
            return None
        with self._lock_for(("schemas",)):
            if not self._schemas_loaded:
                for name in self._live().list_schemas(exclude_system=False):
                    self._schemas.setdefault(self._schema_key(name), True)
                self._schemas_loaded = True
        return self._schemas.get(key, False)

    # Variables and plans

    def get_system_variable(self, name: str) -> str:
        """Read a global system variable once and cache it.

        Raises:
            VariableUnavailable: Offline, or the server has no such variable.
        """
        if name not in self._variables:
            if not self.is_online:
                raise VariableUnavailable(f"{name} is unavailable offline")
            with self._lock_for(("var", name)):
                if name not in self._variables:
                    self._variables[name] = self._fetch_variable(name)
        value = self._variables[name]
        if value is None:
            raise VariableUnavailable(f"{name} is not set on the server")
        return value

    def _fetch_variable(self, name: str) -> str | None:
        try:
            rows = self._live().query("SHOW GLOBAL VARIABLES LIKE %s", (name,))
        except LiveExecutionFailure as e:
            raise VariableUnavailable(f"{name}: {e}") from e
        if not rows:
            return None
        row = {str(k).lower(): v for k, v in rows[0].items()}
        return str(row.get("value", ""))

    def get_execution_plan(self, sql: str) -> list[ExplainRecord]:
        """EXPLAIN a statement on the live database, memoized per SQL text."""
        if sql in self._plans:
            return self._plans[sql]
        plan = self._live().explain(sql)
        self._plans[sql] = plan
        return plan

    # DDL effects

    def apply_ddl_effect(self, node: exp.Expression) -> None:
        """Update the catalog with the effect of a statement.

        Changes are computed first and committed together, so a failure
        leaves the context as it was.
        """
        kind = statement_kind(node)
        updates: dict[_TableKey, TableDefinition | None] = {}

        if kind == StatementKind.USE:
            target = node.this
            self.set_current_schema(target.name if isinstance(target, exp.Expression) else str(target))
            return
        if kind == StatementKind.CREATE_DATABASE:
            self._schemas[self._schema_key(self._object_name(node))] = True
            return
        if kind == StatementKind.DROP_DATABASE:
            self._drop_schema(self._object_name(node))
            return
        if kind == StatementKind.CREATE_TABLE:
            self._create_table(node, updates)
        elif kind == StatementKind.DROP_TABLE:
            for table in [node.this, *node.expressions]:
                if isinstance(table, exp.Table):
                    updates[self._key(self.resolve_schema_name(table), table.name)] = None
        elif kind == StatementKind.RENAME_TABLE:
            for pair in rename_pairs_of(node):
                self._move_table(pair.old, pair.new, updates)
        elif kind == StatementKind.ALTER_TABLE:
            self._alter_table(node, updates)
        elif kind == StatementKind.CREATE_INDEX:
            self._create_index(node, updates)
        elif kind == StatementKind.DROP_INDEX:
            self._drop_index(node, updates)
        else:
            return

        self._tables.update(updates)

    @staticmethod
    def _object_name(node: exp.Expression) -> str:
        target = node.this
        return target.name if isinstance(target, exp.Expression) else str(target or "")

    def _drop_schema(self, schema: str) -> None:
        key = self._schema_key(schema)
        self._schemas[key] = False
        for table_key in [k for k in self._tables if k[0] == key]:
            self._tables[table_key] = None

    def _peek(self, schema: str, table: str) -> TableDefinition | None:
        try:
            return self.get_table_definition(schema, table)
        except SchemaUnknown as e:
            logger.debug("no definition for %s.%s: %s", schema, table, e)
            return None

    def _create_table(self, node: exp.Create, updates: dict) -> None:
        target = create_target(node)
        if target is None:
            return
        schema = self.resolve_schema_name(target)
        key = self._key(schema, target.name)
        if node.args.get("exists") and self.is_table_exist(schema, target.name):
            return

        like = node.find(exp.LikeProperty)
        if like is not None and isinstance(like.this, exp.Table):
            source = self._peek(self.resolve_schema_name(like.this), like.this.name)
            definition = source.copy() if source else TableDefinition(schema, target.name)
            definition.schema, definition.name = schema, target.name
        else:
            definition = table_from_create(node, default_schema=schema)
            definition.schema = schema
        definition.source = DefinitionSource.SYNTHESIZED
        definition.size_mb = 0.0
        definition.row_count = 0
        updates[key] = definition

    def _move_table(self, old: exp.Table, new: exp.Table, updates: dict) -> None:
        old_schema = self.resolve_schema_name(old)
        definition = self._peek(old_schema, old.name)
        new_schema = self.resolve_schema_name(new)
        updates[self._key(old_schema, old.name)] = None
        if definition is None:
            return
        moved = definition.copy()
        moved.schema, moved.name = new_schema, new.name
        updates[self._key(new_schema, new.name)] = moved

    def _alter_table(self, node: exp.Expression, updates: dict) -> None:
        alter = alter_table_of(node)
        if alter is None:
            return
        schema = self.resolve_schema_name(alter.table)
        current = self._peek(schema, alter.table.name)
        if current is None:
            return
        definition = current.copy()
        new_table: exp.Table | None = None
        for spec in alter.specs:
            if isinstance(spec, RenameTable):
                new_table = spec.new_table
            else:
                apply_alter_spec(definition, spec)

        if new_table is not None:
            updates[self._key(schema, alter.table.name)] = None
            definition.schema = self.resolve_schema_name(new_table)
            definition.name = new_table.name
            updates[self._key(definition.schema, definition.name)] = definition
        else:
            updates[self._key(schema, alter.table.name)] = definition

    def _create_index(self, node: exp.Create, updates: dict) -> None:
        table = create_target(node)
        if table is None:
            return
        schema = self.resolve_schema_name(table)
        current = self._peek(schema, table.name)
        if current is None:
            return
        definition = current.copy()
        definition.add_index(index_from_create_index(node))
        updates[self._key(schema, table.name)] = definition

    def _drop_index(self, node: exp.Expression, updates: dict) -> None:
        target = drop_index_target(node)
        if target is None:
            return
        index_name, table = target
        schema = self.resolve_schema_name(table)
        current = self._peek(schema, table.name)
        if current is None:
            return
        definition = current.copy()
        definition.drop_index(index_name)
        updates[self._key(schema, table.name)] = definition

    # Lifecycle

    def close(self) -> None:
        """Release the live executor exactly once."""
        if self._closed:
            return
        self._closed = True
        if self._executor is not None:
            self._executor.close()


def apply_alter_spec(definition: TableDefinition, spec: AlterSpec) -> None:
    """Apply one ALTER TABLE clause to a definition in place."""
    if isinstance(spec, AddColumn):
        definition.add_column(spec.column, after=spec.after, first=spec.first)
        if spec.unique:
            definition.add_index(IndexDefinition(spec.column.name, [spec.column.name], IndexKind.UNIQUE))
    elif isinstance(spec, DropColumn):
        definition.drop_column(spec.name)
    elif isinstance(spec, ModifyColumn):
        definition.replace_column(spec.old_name, spec.column)
        if spec.column.primary_key:
            definition.add_index(IndexDefinition("PRIMARY", [spec.column.name], IndexKind.PRIMARY))
    elif isinstance(spec, ChangeColumnType):
        column = definition.column(spec.name)
        if column is not None:
            column.type = spec.type
    elif isinstance(spec, SetColumnDefault):
        column = definition.column(spec.name)
        if column is not None:
            column.default = spec.default
    elif isinstance(spec, RenameColumn):
        definition.rename_column(spec.old_name, spec.new_name)
    elif isinstance(spec, AddIndex):
        definition.add_index(IndexDefinition(spec.index.name, list(spec.index.columns), spec.index.kind))
    elif isinstance(spec, DropIndex):
        definition.drop_index(spec.name)
    elif isinstance(spec, RenameIndex):
        definition.rename_index(spec.old_name, spec.new_name)
    elif isinstance(spec, TableOption):
        _apply_table_option(definition, spec)
    else:
        logger.debug("ALTER clause has no schema effect: %s", spec)


def _apply_table_option(definition: TableDefinition, spec: TableOption) -> None:
    if spec.key == "ENGINE":
        definition.engine = spec.value
    elif spec.key == "COMMENT":
        definition.comment = spec.value
    elif spec.key == "CHARSET":
        definition.charset = spec.value
    elif spec.key == "AUTO_INCREMENT" and spec.value.isdigit():
        definition.auto_increment = int(spec.value)
