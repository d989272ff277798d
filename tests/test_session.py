"""Tests for the session-scoped virtual schema."""

import threading

import pytest
from conftest import ORDERS_DDL, FakeExecutor

from auditql import (
    AuditCancelled,
    DBAPIExecutor,
    Parser,
    SchemaUnknown,
    SessionContext,
    ShowCreateTableParseError,
    TableNotExists,
    VariableUnavailable,
)
from auditql import session as session_module
from auditql.schema import DefinitionSource


class _ShowDatabasesCursor:
    """DB-API cursor of a server holding the system schemas and ``shop``."""

    description = None

    def execute(self, sql, params=None):
        self.rows = []
        self.description = None
        if sql == "SHOW DATABASES":
            self.description = [("Database",)]
            self.rows = [("information_schema",), ("mysql",), ("performance_schema",), ("shop",)]

    def fetchall(self):
        return self.rows

    def close(self):
        pass


class _ShowDatabasesConnection:
    def cursor(self):
        return _ShowDatabasesCursor()

    def close(self):
        pass


@pytest.fixture
def parser() -> Parser:
    return Parser()


def apply(context: SessionContext, parser: Parser, *sqls: str) -> None:
    for sql in sqls:
        context.apply_ddl_effect(parser.parse_one(sql))


class TestOfflineContext:
    """Offline, only what the session created is known."""

    def test_create_alter_then_read(self, parser: Parser) -> None:
        context = SessionContext()
        apply(
            context,
            parser,
            "CREATE TABLE db.t (id INT PRIMARY KEY, a INT)",
            "ALTER TABLE db.t ADD COLUMN b VARCHAR(10)",
        )
        definition = context.get_table_definition("db", "t")
        assert [c.name for c in definition.columns] == ["id", "a", "b"]
        assert definition.source is DefinitionSource.SYNTHESIZED
        assert context.get_table_size("db", "t") == 0.0

    def test_unknown_table_is_schema_unknown_not_absent(self) -> None:
        context = SessionContext()
        with pytest.raises(SchemaUnknown) as excinfo:
            context.get_table_definition("db", "t")
        assert not isinstance(excinfo.value, TableNotExists)
        assert context.is_table_exist("db", "t") is None

    def test_dropped_table_is_tombstoned(self, parser: Parser) -> None:
        context = SessionContext()
        apply(context, parser, "CREATE TABLE db.t (id INT PRIMARY KEY)", "DROP TABLE db.t")
        with pytest.raises(TableNotExists):
            context.get_table_definition("db", "t")
        assert context.is_table_exist("db", "t") is False

    def test_recreate_after_drop(self, parser: Parser) -> None:
        context = SessionContext()
        apply(
            context,
            parser,
            "CREATE TABLE db.t (id INT PRIMARY KEY)",
            "DROP TABLE db.t",
            "CREATE TABLE db.t (k INT PRIMARY KEY)",
        )
        assert [c.name for c in context.get_table_definition("db", "t").columns] == ["k"]

    def test_rename_table_moves_definition(self, parser: Parser) -> None:
        context = SessionContext()
        apply(context, parser, "CREATE TABLE db.a (id INT PRIMARY KEY)", "RENAME TABLE db.a TO db.b")
        assert context.is_table_exist("db", "a") is False
        assert context.get_table_definition("db", "b").has_column("id")

    def test_alter_rename_to(self, parser: Parser) -> None:
        context = SessionContext()
        apply(context, parser, "CREATE TABLE db.a (id INT PRIMARY KEY)", "ALTER TABLE db.a RENAME TO db.b")
        assert context.is_table_exist("db", "a") is False
        assert context.is_table_exist("db", "b") is True

    def test_create_index_is_visible(self, parser: Parser) -> None:
        context = SessionContext()
        apply(context, parser, "CREATE TABLE db.t (id INT PRIMARY KEY, a INT)", "CREATE INDEX idx_a ON db.t (a)")
        assert context.get_table_definition("db", "t").index("idx_a").columns == ["a"]

    def test_use_switches_current_schema(self, parser: Parser) -> None:
        context = SessionContext(current_schema="db")
        apply(context, parser, "USE other", "CREATE TABLE t (id INT PRIMARY KEY)")
        assert context.current_schema == "other"
        assert context.default_schema == "db"
        assert context.is_table_exist("other", "t") is True

    def test_drop_database_tombstones_its_tables(self, parser: Parser) -> None:
        context = SessionContext()
        apply(context, parser, "CREATE DATABASE shop", "CREATE TABLE shop.t (id INT PRIMARY KEY)")
        assert context.is_schema_exist("shop") is True
        apply(context, parser, "DROP DATABASE shop")
        assert context.is_schema_exist("shop") is False
        assert context.is_table_exist("shop", "t") is False
        assert context.is_table_exist("shop", "never_seen") is False

    def test_failed_alter_leaves_context_unchanged(self, parser: Parser, monkeypatch: pytest.MonkeyPatch) -> None:
        context = SessionContext()
        apply(context, parser, "CREATE TABLE db.t (id INT PRIMARY KEY)")

        def boom(definition, spec):
            definition.columns.clear()
            raise RuntimeError("boom")

        monkeypatch.setattr(session_module, "apply_alter_spec", boom)
        with pytest.raises(RuntimeError):
            apply(context, parser, "ALTER TABLE db.t ADD COLUMN c INT")
        assert [c.name for c in context.get_table_definition("db", "t").columns] == ["id"]

    def test_variables_unavailable_offline(self) -> None:
        context = SessionContext()
        with pytest.raises(VariableUnavailable):
            context.get_system_variable("lower_case_table_names")
        assert context.is_case_sensitive is True


class TestLiveContext:
    """With an executor, facts are fetched once and memoized."""

    def test_definition_is_fetched_once(self, shop_executor: FakeExecutor) -> None:
        context = SessionContext(shop_executor)
        first = context.get_table_definition("shop", "orders")
        second = context.get_table_definition("shop", "orders")

        assert first is second
        assert first.source is DefinitionSource.LIVE
        assert first.primary_key.columns == ["id"]
        show_creates = [q for q in shop_executor.catalog_queries() if q.startswith("SHOW CREATE TABLE")]
        assert show_creates == ["SHOW CREATE TABLE `shop`.`orders`"]

    def test_missing_table_is_cached_as_absent(self, shop_executor: FakeExecutor) -> None:
        context = SessionContext(shop_executor)
        with pytest.raises(TableNotExists):
            context.get_table_definition("shop", "missing")
        issued = len(shop_executor.catalog_queries())
        assert context.is_table_exist("shop", "missing") is False
        assert len(shop_executor.catalog_queries()) == issued

    def test_session_ddl_overrides_live_state(self, shop_executor: FakeExecutor, parser: Parser) -> None:
        context = SessionContext(shop_executor)
        apply(context, parser, "ALTER TABLE shop.orders DROP COLUMN note", "DROP INDEX idx_customer ON shop.orders")
        definition = context.get_table_definition("shop", "orders")
        assert not definition.has_column("note")
        assert not definition.has_index("idx_customer")

    def test_table_size(self, shop_executor: FakeExecutor) -> None:
        context = SessionContext(shop_executor)
        assert context.get_table_size("shop", "orders") == 10.0
        assert context.get_table_definition("shop", "orders").row_count == 100

    def test_case_insensitive_names_share_cache(self) -> None:
        executor = FakeExecutor(
            tables={("shop", "orders"): "CREATE TABLE orders (id INT PRIMARY KEY)"},
            variables={"lower_case_table_names": "1"},
        )
        context = SessionContext(executor)
        assert context.is_case_sensitive is False
        context.get_table_definition("shop", "orders")
        assert context.get_table_definition("SHOP", "Orders").has_column("id")

    def test_schema_existence(self, shop_executor: FakeExecutor) -> None:
        context = SessionContext(shop_executor)
        assert context.is_schema_exist("shop") is True
        assert context.is_schema_exist("nope") is False
        with pytest.raises(TableNotExists):
            context.get_table_definition("nope", "t")

    def test_system_schemas_exist(self) -> None:
        executor = FakeExecutor(
            tables={("shop", "orders"): ORDERS_DDL},
            schemas=["information_schema", "mysql", "shop"],
        )
        context = SessionContext(executor)
        assert context.is_schema_exist("information_schema") is True
        assert context.is_schema_exist("mysql") is True

    def test_system_schemas_exist_through_dbapi(self) -> None:
        context = SessionContext(DBAPIExecutor(_ShowDatabasesConnection))
        assert context.is_schema_exist("information_schema") is True
        assert context.is_schema_exist("shop") is True
        assert context.is_schema_exist("nope") is False

    def test_missing_variable_is_looked_up_once(self, shop_executor: FakeExecutor) -> None:
        del shop_executor.variables["lower_case_table_names"]
        context = SessionContext(shop_executor)
        for _ in range(3):
            assert context.is_case_sensitive is True
            with pytest.raises(VariableUnavailable):
                context.get_system_variable("lower_case_table_names")
        context.get_table_definition("shop", "orders")
        lookups = [sql for sql, _ in shop_executor.queries if sql.startswith("SHOW GLOBAL VARIABLES")]
        assert len(lookups) == 1

    def test_unparseable_show_create_table(self) -> None:
        executor = FakeExecutor(tables={("shop", "bad"): "this is not a table definition"})
        context = SessionContext(executor)
        with pytest.raises(ShowCreateTableParseError):
            context.get_table_definition("shop", "bad")
        assert context.is_table_exist("shop", "bad") is True

    def test_column_selectivity(self, shop_executor: FakeExecutor) -> None:
        sql = "SELECT COUNT(DISTINCT `status`) AS distinct_count, COUNT(*) AS total FROM `shop`.`orders`"
        shop_executor.results[sql] = [{"distinct_count": 3, "total": 300}]
        context = SessionContext(shop_executor)
        assert context.get_column_selectivity("shop", "orders", "status") == 1.0
        assert context.get_column_selectivity("shop", "orders", "STATUS") == 1.0
        assert [q for q in shop_executor.catalog_queries() if q == sql] == [sql]

    def test_execution_plan_is_memoized(self, shop_executor: FakeExecutor) -> None:
        context = SessionContext(shop_executor)
        context.get_execution_plan("SELECT id FROM shop.orders")
        context.get_execution_plan("SELECT id FROM shop.orders")
        assert shop_executor.explained == ["SELECT id FROM shop.orders"]

    def test_cancelled_session_issues_no_query(self, shop_executor: FakeExecutor) -> None:
        cancel = threading.Event()
        cancel.set()
        context = SessionContext(shop_executor, cancel=cancel)
        with pytest.raises(AuditCancelled):
            context.get_table_definition("shop", "orders")
        assert shop_executor.queries == []

    def test_close_releases_executor_once(self, shop_executor: FakeExecutor) -> None:
        context = SessionContext(shop_executor)
        context.close()
        context.close()
        assert shop_executor.closed == 1
        assert context.is_online is False
