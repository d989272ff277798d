"""Tests for the Auditor pipeline: online DDL, execution and lifecycle."""

from __future__ import annotations

import threading

import pytest
from conftest import FakeExecutor, FakeOnlineDDLRunner

import auditql
from auditql import (
    DSN,
    AuditAborted,
    AuditCancelled,
    Auditor,
    ConfigurationError,
    LiveExecutionFailure,
    ParseError,
    RuleLevel,
    RuleSet,
    build_default_registry,
)
from auditql.config import CONFIG_DDL_GHOST_MIN_SIZE, CONFIG_DDL_OSC_MIN_SIZE
from auditql.onlineddl import OSC_NOT_NULL_WITHOUT_DEFAULT
from auditql.rules import DispatchMode
from auditql.validation import PRE_CHECK

ALTER_ORDERS = "ALTER TABLE shop.orders ADD COLUMN c INT DEFAULT 0"


def config_rules(*entries: dict) -> RuleSet:
    return RuleSet.from_template(build_default_registry(), list(entries))


def ghost_rules(min_size: int) -> RuleSet:
    return config_rules({"name": CONFIG_DDL_GHOST_MIN_SIZE, "params": {"min_size": min_size}})


class TestOnlineDDLDecision:
    """ALTER TABLE on tables above the gh-ost threshold gets a dry run."""

    def test_large_table_runs_dry_run(self, shop_executor: FakeExecutor) -> None:
        runner = FakeOnlineDDLRunner()
        auditor = Auditor(ghost_rules(5), executor=shop_executor, ghost_runner=runner)
        [result] = auditor.audit([ALTER_ORDERS])

        [finding] = result.by_rule(CONFIG_DDL_GHOST_MIN_SIZE)
        assert finding.level == RuleLevel.NOTICE
        assert "larger than 5 MB" in finding.message
        assert runner.calls == [("shop", "orders", ALTER_ORDERS, True)]

    def test_threshold_is_exclusive(self, shop_executor: FakeExecutor) -> None:
        runner = FakeOnlineDDLRunner()
        auditor = Auditor(ghost_rules(10), executor=shop_executor, ghost_runner=runner)
        [result] = auditor.audit([ALTER_ORDERS])
        assert result.by_rule(CONFIG_DDL_GHOST_MIN_SIZE) == []
        assert runner.calls == []

    def test_dry_run_failure_is_an_error(self, shop_executor: FakeExecutor) -> None:
        runner = FakeOnlineDDLRunner(fail_dry_run=True)
        auditor = Auditor(ghost_rules(5), executor=shop_executor, ghost_runner=runner)
        [result] = auditor.audit([ALTER_ORDERS])

        [finding] = result.by_rule(CONFIG_DDL_GHOST_MIN_SIZE)
        assert finding.level == RuleLevel.ERROR
        assert "gh-ost dry run failed" in finding.message
        assert not result.passed()

    def test_skipped_offline(self) -> None:
        runner = FakeOnlineDDLRunner()
        auditor = Auditor(ghost_rules(0), ghost_runner=runner)
        auditor.audit_text("CREATE TABLE shop.orders (id INT PRIMARY KEY); " + ALTER_ORDERS)
        assert runner.calls == []

    def test_other_statements_are_ignored(self, shop_executor: FakeExecutor) -> None:
        runner = FakeOnlineDDLRunner()
        auditor = Auditor(ghost_rules(0), executor=shop_executor, ghost_runner=runner)
        auditor.audit(["UPDATE shop.orders SET status = 'done' WHERE id = 1"])
        assert runner.calls == []

    def test_no_ghost_rule_no_decision(self, shop_executor: FakeExecutor) -> None:
        runner = FakeOnlineDDLRunner()
        [result] = Auditor(RuleSet(), executor=shop_executor, ghost_runner=runner).audit([ALTER_ORDERS])
        assert result.by_rule(CONFIG_DDL_GHOST_MIN_SIZE) == []
        assert runner.calls == []
        assert Auditor(RuleSet(), executor=shop_executor, ghost_runner=runner).exec(ALTER_ORDERS) == 1
        assert runner.calls == []


class TestOSCAnnotation:
    @pytest.fixture
    def auditor(self, shop_executor: FakeExecutor) -> Auditor:
        rule_set = config_rules({"name": CONFIG_DDL_OSC_MIN_SIZE, "params": {"size": 5}})
        return Auditor(rule_set, executor=shop_executor, dsn=DSN("db.internal", user="audit"))

    def test_command_line(self, auditor: Auditor) -> None:
        [result] = auditor.audit([ALTER_ORDERS])
        [finding] = result.by_rule(CONFIG_DDL_OSC_MIN_SIZE)
        assert finding.level == RuleLevel.NOTICE
        assert finding.message == (
            'pt-online-schema-change D=shop,t=orders --alter="ADD COLUMN c INT DEFAULT 0" '
            "--host=db.internal --user=audit --port=3306 --ask-pass --print --execute"
        )

    def test_refusal_is_reported_instead(self, auditor: Auditor) -> None:
        [result] = auditor.audit(["ALTER TABLE shop.orders ADD COLUMN c INT NOT NULL"])
        [finding] = result.by_rule(CONFIG_DDL_OSC_MIN_SIZE)
        assert finding.message == OSC_NOT_NULL_WITHOUT_DEFAULT

    def test_small_table_gets_no_command(self, shop_executor: FakeExecutor) -> None:
        rule_set = config_rules({"name": CONFIG_DDL_OSC_MIN_SIZE, "params": {"size": 50}})
        [result] = Auditor(rule_set, executor=shop_executor).audit([ALTER_ORDERS])
        assert result.by_rule(CONFIG_DDL_OSC_MIN_SIZE) == []


class TestExplainPreCheck:
    def test_failed_explain_is_an_error(self, shop_executor: FakeExecutor) -> None:
        sql = "DELETE FROM shop.orders WHERE id = 1"
        shop_executor.plans[sql] = LiveExecutionFailure("Unknown column")
        auditor = Auditor(config_rules({"name": "dml_explain_pre_check_enable"}), executor=shop_executor)
        [result] = auditor.audit([sql])

        [finding] = result.by_rule(PRE_CHECK)
        assert finding.level == RuleLevel.ERROR
        assert finding.message.startswith("EXPLAIN failed: Unknown column")

    def test_disabled_by_default(self, shop_executor: FakeExecutor) -> None:
        Auditor(RuleSet(), executor=shop_executor).audit(["DELETE FROM shop.orders WHERE id = 1"])
        assert shop_executor.explained == []


class TestExecution:
    """Statements run on the live database, through gh-ost when large."""

    def test_exec_offline_is_none(self) -> None:
        assert Auditor(RuleSet()).exec("DELETE FROM db.t WHERE id = 1") is None

    def test_exec(self, shop_executor: FakeExecutor) -> None:
        sql = "DELETE FROM shop.orders WHERE id = 1"
        assert Auditor(RuleSet(), executor=shop_executor).exec(sql) == 1
        assert shop_executor.executed == [sql]

    def test_exec_through_ghost(self, shop_executor: FakeExecutor) -> None:
        runner = FakeOnlineDDLRunner()
        auditor = Auditor(ghost_rules(5), executor=shop_executor, ghost_runner=runner)

        assert auditor.exec(ALTER_ORDERS) == 0
        assert [call[3] for call in runner.calls] == [True, False]
        assert shop_executor.executed == []

    def test_ghost_run_failure_raises(self, shop_executor: FakeExecutor) -> None:
        runner = FakeOnlineDDLRunner(fail_run=True)
        auditor = Auditor(ghost_rules(5), executor=shop_executor, ghost_runner=runner)
        with pytest.raises(LiveExecutionFailure, match="exec sql failed"):
            auditor.exec_batch(ALTER_ORDERS)

    def test_exec_batch_stops_at_first_failure(self, shop_executor: FakeExecutor) -> None:
        shop_executor.failing.add("DELETE FROM shop.orders WHERE id = 2")
        auditor = Auditor(RuleSet(), executor=shop_executor)
        with pytest.raises(LiveExecutionFailure, match="exec sql failed"):
            auditor.exec_batch(
                "DELETE FROM shop.orders WHERE id = 1",
                "DELETE FROM shop.orders WHERE id = 2",
                "DELETE FROM shop.orders WHERE id = 3",
            )
        assert len(shop_executor.executed) == 2

    def test_tx(self, shop_executor: FakeExecutor) -> None:
        auditor = Auditor(RuleSet(), executor=shop_executor)
        assert auditor.tx("DELETE FROM shop.orders WHERE id = 1", "DELETE FROM shop.orders WHERE id = 2") == [1, 1]

    def test_schemas(self, shop_executor: FakeExecutor) -> None:
        assert Auditor(RuleSet(), executor=shop_executor).schemas() == ["shop"]
        assert Auditor(RuleSet()).schemas() is None


class TestKillProcess:
    def test_kill_uses_separate_connection(self, shop_executor: FakeExecutor) -> None:
        killer = FakeExecutor()
        auditor = Auditor(RuleSet(), executor=shop_executor, kill_executor_factory=lambda: killer)
        auditor.kill_process()
        assert killer.executed == ["KILL 42"]
        assert killer.closed == 1
        assert shop_executor.executed == []

    def test_kill_without_factory(self, shop_executor: FakeExecutor) -> None:
        with pytest.raises(ConfigurationError):
            Auditor(RuleSet(), executor=shop_executor).kill_process()

    def test_kill_without_connection_id(self) -> None:
        executor = FakeExecutor(connection_id="")
        auditor = Auditor(RuleSet(), executor=executor, kill_executor_factory=FakeExecutor)
        with pytest.raises(LiveExecutionFailure):
            auditor.kill_process()


class TestBatchFailures:
    def test_empty_statement_is_rejected_up_front(self) -> None:
        auditor = Auditor()
        with pytest.raises(ParseError, match="empty sql at position 1"):
            auditor.audit(["SELECT id FROM db.t WHERE id = 1", "   "])

    def test_abort_keeps_earlier_results(self, shop_executor: FakeExecutor, monkeypatch) -> None:
        auditor = Auditor(ghost_rules(5), executor=shop_executor, ghost_runner=FakeOnlineDDLRunner())

        def broken_size(schema: str, table: str) -> float:
            raise RuntimeError("lost connection")

        monkeypatch.setattr(auditor.context, "get_table_size", broken_size)
        with pytest.raises(AuditAborted) as excinfo:
            auditor.audit(["SELECT id FROM shop.orders WHERE id = 1", ALTER_ORDERS])

        aborted = excinfo.value
        assert aborted.index == 1
        assert len(aborted.results) == 1
        assert isinstance(aborted.cause, RuntimeError)

    def test_cancelled_before_start(self) -> None:
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(AuditCancelled):
            Auditor(cancel=cancel).audit_text("SELECT id FROM db.t WHERE id = 1")

    def test_cancel_stops_live_queries(self, shop_executor: FakeExecutor) -> None:
        cancel = threading.Event()
        auditor = Auditor(RuleSet(), executor=shop_executor, cancel=cancel)
        auditor.audit(["SELECT id FROM shop.orders WHERE id = 1"])
        issued = len(shop_executor.queries)

        cancel.set()
        with pytest.raises(AuditCancelled):
            auditor.audit(["SELECT id FROM shop.orders WHERE id = 2"])
        assert len(shop_executor.queries) == issued


class TestModes:
    def test_offline(self) -> None:
        assert Auditor().mode == DispatchMode.OFFLINE
        assert Auditor(config_rules({"name": "sql_is_executed"})).mode == DispatchMode.OFFLINE

    def test_online(self, shop_executor: FakeExecutor) -> None:
        assert Auditor(RuleSet(), executor=shop_executor).mode == DispatchMode.ONLINE

    def test_executed(self, shop_executor: FakeExecutor) -> None:
        auditor = Auditor(config_rules({"name": "sql_is_executed"}), executor=shop_executor)
        assert auditor.mode == DispatchMode.EXECUTED

    def test_executed_sql_leaves_context_untouched(self) -> None:
        auditor = Auditor(config_rules({"name": "sql_is_executed"}))
        auditor.audit_text("CREATE TABLE db.t (id INT PRIMARY KEY)")
        assert auditor.context.is_table_exist("db", "t") is None

    def test_context_tracks_created_tables(self) -> None:
        auditor = Auditor(RuleSet())
        auditor.audit_text("CREATE TABLE db.t (id INT PRIMARY KEY)")
        assert auditor.context.is_table_exist("db", "t") is True


class TestLifecycle:
    def test_from_template(self, tmp_path) -> None:
        path = tmp_path / "rules.yaml"
        path.write_text(
            "rules:\n"
            "  - name: ddl_check_index_prefix\n"
            "    level: error\n"
            "    params:\n"
            "      prefix: ix_\n"
        )
        auditor = Auditor.from_template(path)
        assert auditor.rule_set.names() == ["ddl_check_index_prefix"]

        [result] = auditor.audit(["CREATE INDEX idx_a ON db.t (a)"])
        assert result.level == RuleLevel.ERROR
        assert result.findings[0].message == "index names must start with ix_"

    def test_context_manager_closes_once(self, shop_executor: FakeExecutor) -> None:
        with Auditor(RuleSet(), executor=shop_executor) as auditor:
            auditor.ping()
        auditor.close()
        assert shop_executor.closed == 1
        assert auditor.is_offline


class TestConvenienceFunctions:
    def test_audit(self) -> None:
        results = auditql.audit("CREATE TABLE db.t (id INT AUTO_INCREMENT PRIMARY KEY);DELETE FROM db.t")
        assert len(results) == 2
        assert "dml_check_where_is_invalid" in results[1].rule_names

    def test_passes(self) -> None:
        assert auditql.passes("SELECT id FROM db.t WHERE id = 1 LIMIT 10")

    def test_passes_with_custom_rules(self) -> None:
        rule_set = RuleSet.from_template(
            build_default_registry(),
            [{"name": "ddl_check_index_prefix", "level": "error", "params": {"prefix": "ix_"}}],
        )
        assert not auditql.passes("CREATE INDEX idx_a ON db.t (a)", rule_set=rule_set)
        assert auditql.passes("CREATE INDEX ix_a ON db.t (a)", rule_set=rule_set)
