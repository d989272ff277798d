"""Tests for reverse DDL generation."""

import pytest
from conftest import FakeExecutor

from auditql import Auditor, Parser, RuleSet, SessionContext
from auditql.ddl import (
    AddColumn,
    AddIndex,
    ChangeColumnType,
    DropColumn,
    DropIndex,
    RenameIndex,
    SetColumnDefault,
    TableOption,
)
from auditql.rollback import generate_rollback, reverse_alter_spec
from auditql.schema import ColumnDefinition, IndexDefinition, IndexKind, TableDefinition, table_from_create


@pytest.fixture
def parser() -> Parser:
    return Parser()


@pytest.fixture
def context(parser: Parser) -> SessionContext:
    context = SessionContext()
    context.apply_ddl_effect(
        parser.parse_one("CREATE TABLE db.t (id INT PRIMARY KEY, a INT DEFAULT 0, KEY idx_a (a)) ENGINE=InnoDB")
    )
    return context


def rollback(sql: str, context: SessionContext) -> str:
    return generate_rollback(Parser().parse(sql)[0], context)


class TestGenerateRollback:
    def test_create_table(self, context: SessionContext) -> None:
        assert rollback("CREATE TABLE db.u (id INT PRIMARY KEY)", context) == "DROP TABLE `db`.`u`;"

    def test_create_table_if_not_exists_on_existing_table(self, context: SessionContext) -> None:
        assert rollback("CREATE TABLE IF NOT EXISTS db.t (id INT PRIMARY KEY)", context) is None

    def test_create_if_not_exists_on_unknown_table_offline(self, context: SessionContext) -> None:
        assert rollback("CREATE TABLE IF NOT EXISTS db.other (id INT PRIMARY KEY)", context) is None
        assert rollback("CREATE TABLE IF NOT EXISTS db.other (id INT PRIMARY KEY)", SessionContext()) is None

    def test_create_if_not_exists_on_missing_live_table(self, shop_executor: FakeExecutor) -> None:
        context = SessionContext(shop_executor)
        assert rollback("CREATE TABLE IF NOT EXISTS shop.items (id INT PRIMARY KEY)", context) == (
            "DROP TABLE `shop`.`items`;"
        )

    def test_drop_table_recreates_definition(self, context: SessionContext, parser: Parser) -> None:
        sql = rollback("DROP TABLE db.t", context)
        assert sql.startswith("CREATE TABLE `db`.`t` (")
        assert sql.endswith(";")
        recreated = table_from_create(parser.parse_one(sql.rstrip(";")))
        assert [c.name for c in recreated.columns] == ["id", "a"]
        assert recreated.index("idx_a").columns == ["a"]

    def test_drop_unknown_table_offline(self, context: SessionContext) -> None:
        assert rollback("DROP TABLE db.unknown", context) is None

    def test_add_column(self, context: SessionContext) -> None:
        assert rollback("ALTER TABLE db.t ADD COLUMN c INT", context) == "ALTER TABLE `db`.`t` DROP COLUMN `c`;"

    def test_drop_column(self, context: SessionContext) -> None:
        assert (
            rollback("ALTER TABLE db.t DROP COLUMN a", context)
            == "ALTER TABLE `db`.`t` ADD COLUMN `a` INT DEFAULT 0;"
        )

    def test_create_database(self, context: SessionContext) -> None:
        assert rollback("CREATE DATABASE shop", context) == "DROP DATABASE `shop`;"

    def test_rename_table(self, context: SessionContext) -> None:
        assert rollback("RENAME TABLE db.t TO db.u", context) == "RENAME TABLE `db`.`u` TO `db`.`t`;"

    def test_create_index(self, context: SessionContext) -> None:
        assert rollback("CREATE INDEX idx_id ON db.t (id)", context) == "DROP INDEX `idx_id` ON `db`.`t`;"

    def test_drop_index(self, context: SessionContext) -> None:
        assert rollback("DROP INDEX idx_a ON db.t", context) == "ALTER TABLE `db`.`t` ADD KEY `idx_a` (`a`);"

    def test_dml_has_no_rollback(self, context: SessionContext) -> None:
        assert rollback("DELETE FROM db.t WHERE id = 1", context) is None


class TestReverseAlterSpec:
    @pytest.fixture
    def table(self) -> TableDefinition:
        definition = TableDefinition("db", "t", engine="InnoDB", comment="orders")
        definition.add_column(ColumnDefinition("id", "INT", nullable=False, primary_key=True))
        definition.add_column(ColumnDefinition("a", "VARCHAR(10)", default="'x'"))
        definition.add_index(IndexDefinition("uniq_a", ["a"], IndexKind.UNIQUE))
        return definition

    def test_add_column(self, table: TableDefinition) -> None:
        assert reverse_alter_spec(AddColumn(ColumnDefinition("c", "INT")), table) == "DROP COLUMN `c`"

    def test_drop_column(self, table: TableDefinition) -> None:
        assert reverse_alter_spec(DropColumn("a"), table) == "ADD COLUMN `a` VARCHAR(10) DEFAULT 'x'"

    def test_add_primary_key(self, table: TableDefinition) -> None:
        spec = AddIndex(IndexDefinition("", ["id"], IndexKind.PRIMARY))
        assert reverse_alter_spec(spec, table) == "DROP PRIMARY KEY"

    def test_drop_unique_index(self, table: TableDefinition) -> None:
        assert reverse_alter_spec(DropIndex("uniq_a"), table) == "ADD UNIQUE KEY `uniq_a` (`a`)"

    def test_drop_primary_key(self, table: TableDefinition) -> None:
        assert reverse_alter_spec(DropIndex("PRIMARY"), table) == "ADD PRIMARY KEY (`id`)"

    def test_rename_index(self, table: TableDefinition) -> None:
        assert reverse_alter_spec(RenameIndex("uniq_a", "uniq_b"), table) == "RENAME INDEX `uniq_b` TO `uniq_a`"

    def test_change_type(self, table: TableDefinition) -> None:
        spec = ChangeColumnType("a", "TEXT")
        assert reverse_alter_spec(spec, table) == "MODIFY COLUMN `a` VARCHAR(10) DEFAULT 'x'"

    def test_set_default(self, table: TableDefinition) -> None:
        assert reverse_alter_spec(SetColumnDefault("a", "'y'"), table) == "ALTER COLUMN `a` SET DEFAULT 'x'"
        assert reverse_alter_spec(SetColumnDefault("id", "1"), table) == "ALTER COLUMN `id` DROP DEFAULT"

    def test_table_options(self, table: TableDefinition) -> None:
        assert reverse_alter_spec(TableOption("ENGINE", "MyISAM"), table) == "ENGINE=InnoDB"
        assert reverse_alter_spec(TableOption("COMMENT", "new"), table) == "COMMENT='orders'"


class TestAuditorAnnotation:
    def test_ddl_results_carry_rollback(self) -> None:
        results = Auditor(RuleSet()).audit_text(
            "CREATE TABLE db.t (id INT PRIMARY KEY); ALTER TABLE db.t ADD COLUMN c INT; SELECT id FROM db.t"
        )
        assert [r.rollback_sql for r in results] == [
            "DROP TABLE `db`.`t`;",
            "ALTER TABLE `db`.`t` DROP COLUMN `c`;",
            None,
        ]

    def test_rollback_sees_state_before_statement(self, shop_executor: FakeExecutor) -> None:
        auditor = Auditor(RuleSet(), executor=shop_executor)
        [result] = auditor.audit(["ALTER TABLE shop.orders DROP COLUMN note"])
        assert result.rollback_sql == "ALTER TABLE `shop`.`orders` ADD COLUMN `note` VARCHAR(255) DEFAULT NULL;"
