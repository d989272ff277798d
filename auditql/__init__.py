"""auditql - SQL audit engine for MySQL-family databases.

auditql checks SQL against governance rules (naming conventions, integrity
constraints, performance risks, security policy) before it runs, tracks
the schema a batch of DDL builds up, and estimates how many rows DML will
touch.

Quick Start:
    >>> import auditql

    # Offline audit of a batch; each statement sees the schema so far
    >>> results = auditql.audit(
    ...     "CREATE TABLE db.t (id INT AUTO_INCREMENT PRIMARY KEY);"
    ...     "DELETE FROM db.t"
    ... )
    >>> results[1].rule_names
    ['dml_check_where_is_invalid']

    # Quick boolean check against a severity threshold
    >>> auditql.passes("SELECT id FROM db.t WHERE id = 1 LIMIT 10")
    True

    # With custom rules
    >>> from auditql import Auditor, RuleSet, build_default_registry
    >>> registry = build_default_registry()
    >>> rules = RuleSet.from_template(registry, [
    ...     {"name": "ddl_check_index_prefix", "level": "error", "params": {"prefix": "ix_"}},
    ... ])
    >>> with Auditor(rules) as auditor:
    ...     auditor.audit(["CREATE INDEX idx_a ON db.t (a)"])[0].passed()
    False

Rule levels:
    - normal: no finding
    - notice: advisory
    - warn: should be reviewed
    - error: blocks the statement at the default threshold

Connected audits:
    Pass any Executor (``DBAPIExecutor`` wraps a PEP 249 connection
    factory) to resolve existing tables, sizes and execution plans, to run
    large ALTER TABLE through gh-ost and to estimate affected rows.
"""

from __future__ import annotations

from .affected_rows import AffectedRowsEstimator
from .auditor import Auditor, AuditStage
from .config import AuditConfig, load_rule_template
from .exceptions import (
    AuditAborted,
    AuditCancelled,
    AuditQLError,
    ConfigurationError,
    LiveExecutionFailure,
    MissingParameter,
    OnlineDDLError,
    ParseError,
    RewriteValidationFailed,
    RuleHandlerFailure,
    SchemaUnknown,
    ShowCreateTableParseError,
    TableNotExists,
    UnsupportedStatementType,
    VariableUnavailable,
)
from .executor import DBAPIExecutor, Executor, ExplainRecord
from .onlineddl import DSN, GhostRunner, OnlineDDLRunner
from .parser import Parser, SQLCategory, Statement, StatementKind
from .result import AuditResult, EstimatedAffectedRows, Finding
from .rules import BoundRule, Rule, RuleLevel, RuleRegistry, RuleSet, build_default_registry
from .session import SessionContext

__version__ = "0.1.0"
__all__ = [
    # Main API
    "audit",
    "passes",
    "Auditor",
    "AuditStage",
    # Types
    "AuditResult",
    "Finding",
    "EstimatedAffectedRows",
    "Statement",
    "StatementKind",
    "SQLCategory",
    "Parser",
    "SessionContext",
    "AffectedRowsEstimator",
    # Rules and configuration
    "Rule",
    "RuleLevel",
    "RuleRegistry",
    "RuleSet",
    "BoundRule",
    "build_default_registry",
    "AuditConfig",
    "load_rule_template",
    # Collaborators
    "Executor",
    "DBAPIExecutor",
    "ExplainRecord",
    "OnlineDDLRunner",
    "GhostRunner",
    "DSN",
    # Exceptions
    "AuditQLError",
    "ParseError",
    "ConfigurationError",
    "SchemaUnknown",
    "TableNotExists",
    "ShowCreateTableParseError",
    "VariableUnavailable",
    "UnsupportedStatementType",
    "RewriteValidationFailed",
    "MissingParameter",
    "RuleHandlerFailure",
    "LiveExecutionFailure",
    "OnlineDDLError",
    "AuditCancelled",
    "AuditAborted",
]


def audit(sql: str, *, rule_set: RuleSet | None = None, current_schema: str = "") -> list[AuditResult]:
    """Audit a batch of SQL offline.

    This is the simplest way to use auditql. Every call starts a fresh
    session; for connected audits or batches spread over several calls,
    create an Auditor.

    Args:
        sql: One or more ``;``-separated statements.
        rule_set: Rules to run; defaults to every built-in rule.
        current_schema: Schema unqualified table names resolve to.

    Returns:
        One AuditResult per statement.
    """
    with Auditor(rule_set, current_schema=current_schema) as auditor:
        return auditor.audit_text(sql)


def passes(
    sql: str,
    *,
    threshold: RuleLevel | str = RuleLevel.ERROR,
    rule_set: RuleSet | None = None,
    current_schema: str = "",
) -> bool:
    """Check whether every statement of a batch stays below ``threshold``.

    This is a shorthand for ``all(r.passed(threshold) for r in audit(sql))``.

    Examples:
        >>> import auditql
        >>> auditql.passes("DELETE FROM db.t")
        False
        >>> auditql.passes("DELETE FROM db.t WHERE id = 1")
        True
        >>> auditql.passes("SELECT * FROM db.t WHERE id = 1 LIMIT 5", threshold="notice")
        False
    """
    level = RuleLevel.parse(threshold)
    return all(r.passed(level) for r in audit(sql, rule_set=rule_set, current_schema=current_schema))
