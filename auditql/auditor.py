"""Main Auditor class - the primary entry point for auditql."""

from __future__ import annotations

import dataclasses
import logging
import threading
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Sequence

from .affected_rows import AffectedRowsEstimator
from .config import (
    CONFIG_DDL_GHOST_MIN_SIZE,
    CONFIG_DDL_OSC_MIN_SIZE,
    CONFIG_OPTIMIZE_INDEX_ENABLED,
    AuditConfig,
    load_rule_template,
)
from .ddl import alter_table_of
from .exceptions import (
    AuditAborted,
    AuditCancelled,
    ConfigurationError,
    LiveExecutionFailure,
    OnlineDDLError,
    ParseError,
    SchemaUnknown,
    ShowCreateTableParseError,
    UnsupportedStatementType,
)
from .onlineddl import DSN, GhostRunner, osc_command_line
from .optimizer import IndexOptimizer
from .parser import MUTATION_KINDS, QUERY_KINDS, Parser, SQLCategory, StatementKind
from .result import AuditResult, EstimatedAffectedRows
from .rollback import generate_rollback
from .rules import DispatchMode, RuleEngine, RuleLevel, RuleSet, build_default_registry
from .session import SessionContext
from .validation import PRE_CHECK, PRE_CHECK_ERR, PreValidator

if TYPE_CHECKING:
    from .executor import Executor
    from .onlineddl import OnlineDDLRunner
    from .parser import Statement
    from .rules import RuleRegistry

logger = logging.getLogger(__name__)


class AuditStage(str, Enum):
    """Stages one statement moves through, in order."""

    PARSE = "parse"
    PRE_VALIDATE = "pre_validate"
    RULE_DISPATCH = "rule_dispatch"
    INDEX_OPTIMIZATION = "index_optimization"
    ONLINE_DDL_DECISION = "online_ddl_decision"
    ROLLBACK_ANNOTATION = "rollback_annotation"
    CONTEXT_UPDATE = "context_update"
    DONE = "done"


class Auditor:
    """SQL auditor that checks statements against a configurable rule set.

    This is the main entry point for auditql. Create an Auditor with the
    rules you want, optionally a live executor, then call audit() on SQL.

    Each statement goes through these stages:
    1. Pre-validation: statement shape, and object existence when connected
    2. Rule dispatch: every active rule of the RuleSet
    3. Index optimization: advisory notices (optional)
    4. Online DDL decision: gh-ost dry run for large ALTER TABLE (optional)
    5. Rollback annotation: pt-osc command line and reverse DDL
    6. Context update: the session schema absorbs the statement's effect

    Statements are audited strictly in order, so each one sees the schema
    left by the previous ones.

    Example:
        >>> auditor = Auditor()
        >>> results = auditor.audit_text(
        ...     "CREATE TABLE db.t (id INT AUTO_INCREMENT PRIMARY KEY);"
        ...     "SELECT * FROM db.t WHERE id = 1 LIMIT 10"
        ... )
        >>> results[1].rule_names
        ['dml_check_select_star']

        # Connected, with gh-ost for tables above 1 GB
        >>> registry = build_default_registry()
        >>> rule_set = RuleSet.from_template(registry, [{"name": "ddl_ghost_min_size"}])
        >>> auditor = Auditor(rule_set, executor=executor, dsn=DSN("db.internal"))
    """

    def __init__(
        self,
        rule_set: RuleSet | None = None,
        executor: Executor | None = None,
        current_schema: str = "",
        ghost_runner: OnlineDDLRunner | None = None,
        dsn: DSN | None = None,
        kill_executor_factory: Callable[[], Executor] | None = None,
        dialect: str = "mysql",
        cancel: threading.Event | None = None,
    ) -> None:
        """Initialize the auditor.

        Args:
            rule_set: Rules to run. Defaults to every built-in non-config rule.
            executor: Live executor; None audits offline.
            current_schema: Schema unqualified table names resolve to.
            ghost_runner: Online schema-change runner for large ALTER TABLE.
                Defaults to a GhostRunner when ``dsn`` is given.
            dsn: Server coordinates for gh-ost and pt-osc command lines.
            kill_executor_factory: Opens a separate connection for
                kill_process().
            dialect: sqlglot dialect used for parsing.
            cancel: Event that stops new live queries once set.
        """
        self.rule_set = rule_set if rule_set is not None else RuleSet.default(build_default_registry())
        self.config = AuditConfig.from_rules(self.rule_set)
        self.context = SessionContext(executor, current_schema=current_schema, cancel=cancel)
        self.dsn = dsn

        self._parser = Parser(dialect=dialect)
        self._engine = RuleEngine(self.rule_set)
        self._validator = PreValidator()
        self._optimizer = IndexOptimizer(
            max_index_column=self.config.max_index_column,
            min_column_selectivity=self.config.min_column_selectivity,
        )
        self._cancel = cancel
        self._kill_executor_factory = kill_executor_factory

        self._ghost_runner: OnlineDDLRunner | None = ghost_runner
        if ghost_runner is None and dsn is not None:
            self._ghost_runner = GhostRunner(dsn)

    @classmethod
    def from_template(
        cls,
        path: str | Path,
        registry: RuleRegistry | None = None,
        **kwargs: Any,
    ) -> Auditor:
        """Build an auditor whose rules come from a YAML rule template."""
        registry = registry if registry is not None else build_default_registry()
        rule_set = RuleSet.from_template(registry, load_rule_template(path))
        return cls(rule_set, **kwargs)

    # Mode

    @property
    def is_offline(self) -> bool:
        return not self.context.is_online

    @property
    def mode(self) -> DispatchMode:
        if self.is_offline:
            return DispatchMode.OFFLINE
        if self.config.sql_is_executed:
            return DispatchMode.EXECUTED
        return DispatchMode.ONLINE

    # Parsing

    def parse(self, sql: str) -> list[Statement]:
        """Split and parse a batch into statement envelopes with fingerprints."""
        return self._parser.parse(sql, case_sensitive=self.context.is_case_sensitive)

    def _parse_single(self, sql: str, index: int) -> Statement:
        statements = self.parse(sql)
        if len(statements) != 1:
            raise ParseError(f"expected one statement, found {len(statements)}")
        return dataclasses.replace(statements[0], batch_index=index)

    # Auditing

    def audit(self, sqls: Sequence[str]) -> list[AuditResult]:
        """Audit statements given one per string.

        Args:
            sqls: One SQL statement per item.

        Returns:
            One frozen AuditResult per statement, in order.

        Raises:
            ParseError: If any item is empty (checked before auditing starts).
            AuditAborted: A statement failed with a non-recoverable error;
                carries the results of the statements before it.
            AuditCancelled: The cancel event was set.
        """
        for index, sql in enumerate(sqls):
            if not sql or not sql.strip():
                raise ParseError(f"empty sql at position {index}")

        results: list[AuditResult] = []
        for index, sql in enumerate(sqls):
            self._check_cancelled()
            try:
                logger.debug("statement %d stage %s", index, AuditStage.PARSE.value)
                statement = self._parse_single(sql, index)
                results.append(self._audit_statement(statement))
            except AuditCancelled:
                raise
            except Exception as e:
                raise AuditAborted(sql, index, e, list(results)) from e
        return results

    def audit_text(self, text: str) -> list[AuditResult]:
        """Audit a batch of ``;``-separated statements.

        Raises:
            ParseError: If the batch is empty or does not parse.
            AuditAborted: As for audit().
        """
        logger.debug("batch stage %s", AuditStage.PARSE.value)
        statements = self.parse(text)
        results: list[AuditResult] = []
        for statement in statements:
            self._check_cancelled()
            try:
                results.append(self._audit_statement(statement))
            except AuditCancelled:
                raise
            except Exception as e:
                raise AuditAborted(statement.text, statement.batch_index, e, list(results)) from e
        return results

    def _check_cancelled(self) -> None:
        if self._cancel is not None and self._cancel.is_set():
            raise AuditCancelled("audit cancelled by caller")

    @staticmethod
    def _stage(statement: Statement, stage: AuditStage) -> None:
        logger.debug("statement %d stage %s", statement.batch_index, stage.value)

    def _audit_statement(self, statement: Statement) -> AuditResult:
        result = AuditResult()

        self._stage(statement, AuditStage.PRE_VALIDATE)
        self._pre_validate(statement, result)

        self._stage(statement, AuditStage.RULE_DISPATCH)
        self._engine.dispatch(statement, self.context, result, self.mode)

        if self.config.optimize_index_enabled:
            self._stage(statement, AuditStage.INDEX_OPTIMIZATION)
            for advice in self._optimizer.advise(statement, self.context):
                result.add(RuleLevel.NOTICE, CONFIG_OPTIMIZE_INDEX_ENABLED, advice.reason)

        self._stage(statement, AuditStage.ONLINE_DDL_DECISION)
        self._online_ddl_decision(statement, result)

        self._stage(statement, AuditStage.ROLLBACK_ANNOTATION)
        self._rollback_annotation(statement, result)

        if not self.config.sql_is_executed:
            self._stage(statement, AuditStage.CONTEXT_UPDATE)
            self.context.apply_ddl_effect(statement.node)

        self._stage(statement, AuditStage.DONE)
        return result.freeze()

    def _pre_validate(self, statement: Statement, result: AuditResult) -> None:
        connected = self.context.is_online and not self.config.sql_is_executed
        try:
            self._validator.check(statement, self.context, result, connected)
        except ShowCreateTableParseError as e:
            logger.error("check invalid failed: %s", e)
            result.add(RuleLevel.WARN, PRE_CHECK_ERR, f"pre-check failed, the table definition could not be parsed: {e}")

        is_dml = statement.kind in QUERY_KINDS or statement.kind in MUTATION_KINDS
        if not result.has_result and self.config.dml_explain_pre_check and connected and is_dml:
            try:
                self.context.get_execution_plan(statement.text)
            except LiveExecutionFailure as e:
                result.add(RuleLevel.ERROR, PRE_CHECK, f"EXPLAIN failed: {e}")

        if result.has_result:
            logger.warning("SQL %s invalid, %s", statement.text, result.message)

    # Online DDL

    def _use_ghost(self, statement: Statement) -> bool:
        """Whether an ALTER TABLE goes through gh-ost (table size > threshold)."""
        if self.config.ddl_ghost_min_size < 0 or statement.kind != StatementKind.ALTER_TABLE:
            return False
        alter = alter_table_of(statement.node)
        if alter is None:
            return False
        schema = self.context.resolve_schema_name(alter.table)
        try:
            size = self.context.get_table_size(schema, alter.table.name)
        except SchemaUnknown as e:
            logger.warning("online DDL decision skipped for %s.%s: %s", schema, alter.table.name, e)
            return False
        return size > self.config.ddl_ghost_min_size

    def _run_ghost(self, statement: Statement, dry_run: bool) -> None:
        if self._ghost_runner is None:
            raise OnlineDDLError("no online schema-change runner is configured")
        alter = alter_table_of(statement.node)
        if alter is None:
            raise OnlineDDLError("gh-ost only runs ALTER TABLE statements")
        schema = self.context.resolve_schema_name(alter.table)
        self._ghost_runner.run(schema, alter.table.name, statement.text, dry_run)

    def _online_ddl_decision(self, statement: Statement, result: AuditResult) -> None:
        ghost = self.rule_set.get(CONFIG_DDL_GHOST_MIN_SIZE)
        if ghost is None or statement.kind != StatementKind.ALTER_TABLE:
            return
        if self.is_offline:
            logger.debug("online DDL decision skipped offline")
            return
        if not self._use_ghost(statement):
            return

        try:
            self._run_ghost(statement, dry_run=True)
        except OnlineDDLError as e:
            result.add(
                RuleLevel.ERROR,
                ghost.name,
                f"table is larger than {self.config.ddl_ghost_min_size} MB and the gh-ost dry run failed: {e}",
            )
        else:
            result.add(ghost.level, ghost.name, ghost.render())

    # Annotations

    def _rollback_annotation(self, statement: Statement, result: AuditResult) -> None:
        if statement.kind == StatementKind.ALTER_TABLE and self.config.ddl_osc_min_size >= 0:
            try:
                command = self._osc_command_line(statement)
            except ShowCreateTableParseError as e:
                logger.error("generate osc command failed: %s", e)
            except SchemaUnknown as e:
                logger.debug("osc command skipped: %s", e)
            else:
                if command is not None:
                    result.add(RuleLevel.NOTICE, CONFIG_DDL_OSC_MIN_SIZE, command)

        if statement.category == SQLCategory.DDL:
            result.rollback_sql = generate_rollback(statement, self.context)

    def _osc_command_line(self, statement: Statement) -> str | None:
        alter = alter_table_of(statement.node)
        if alter is None:
            return None
        schema = self.context.resolve_schema_name(alter.table)
        size = self.context.get_table_size(schema, alter.table.name)
        if size < self.config.ddl_osc_min_size:
            return None
        definition = self.context.get_table_definition(schema, alter.table.name)
        return osc_command_line(definition, alter, statement.text, self.dsn or DSN(host=""))

    # Execution

    def _executor(self) -> Executor | None:
        return self.context.executor

    def exec(self, sql: str) -> int | None:
        """Run one statement on the live database.

        ALTER TABLE on a table above the gh-ost threshold runs through the
        online schema-change runner: a dry run first, then the real run.

        Returns:
            Affected rows, 0 for the gh-ost path, None offline.
        """
        executor = self._executor()
        if executor is None:
            return None
        statement = self._parse_single(sql, 0)
        if self._use_ghost(statement):
            self._run_ghost(statement, dry_run=True)
            self._run_ghost(statement, dry_run=False)
            return 0
        return executor.exec(sql)

    def exec_batch(self, *sqls: str) -> list[int | None]:
        """Run statements one by one, stopping at the first failure."""
        results: list[int | None] = []
        for sql in sqls:
            try:
                results.append(self.exec(sql))
            except (LiveExecutionFailure, OnlineDDLError, ParseError) as e:
                raise LiveExecutionFailure(f"exec sql failed: {e}", sql) from e
        return results

    def tx(self, *sqls: str) -> list[int] | None:
        """Run statements in one transaction."""
        executor = self._executor()
        if executor is None:
            return None
        return executor.transact(list(sqls))

    def ping(self) -> None:
        executor = self._executor()
        if executor is not None:
            executor.ping()

    def schemas(self) -> list[str] | None:
        executor = self._executor()
        if executor is None:
            return None
        return executor.list_schemas()

    def kill_process(self) -> None:
        """Kill the running query of this auditor's connection.

        The KILL goes through a separate connection from
        ``kill_executor_factory``.

        Raises:
            ConfigurationError: No kill executor factory was given.
            LiveExecutionFailure: The connection id is unknown or KILL failed.
        """
        executor = self._executor()
        if executor is None:
            return
        connection_id = executor.connection_id()
        if not connection_id:
            raise LiveExecutionFailure("cannot find the connection id")
        if self._kill_executor_factory is None:
            raise ConfigurationError("kill_process needs a kill_executor_factory")

        kill_sql = f"KILL {connection_id}"
        killer = self._kill_executor_factory()
        try:
            killer.exec(kill_sql)
        finally:
            killer.close()
        logger.info("exec sql(%s) successfully", kill_sql)

    def estimate_affected_rows(self, sql: str) -> EstimatedAffectedRows | None:
        """Estimate rows touched by a DML statement; None offline.

        Unsupported statement types come back as ``error_message``; other
        failures raise.
        """
        executor = self._executor()
        if executor is None:
            return None
        estimator = AffectedRowsEstimator(executor, explain=self.context.get_execution_plan, parser=self._parser)
        try:
            count = estimator.estimate(sql)
        except UnsupportedStatementType as e:
            return EstimatedAffectedRows(error_message=str(e))
        return EstimatedAffectedRows(count=count)

    # Lifecycle

    def close(self) -> None:
        self.context.close()

    def __enter__(self) -> Auditor:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
