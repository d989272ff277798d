"""Exception hierarchy for auditql."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .result import AuditResult


class AuditQLError(Exception):
    """Base class for all auditql errors."""


class ParseError(AuditQLError):
    """Raised when SQL text cannot be parsed."""


class ConfigurationError(AuditQLError):
    """Raised for invalid rule or auditor configuration."""


class SchemaUnknown(AuditQLError):
    """The session context cannot resolve a schema fact.

    Rules treat this as "cannot determine" and skip, never as a violation.
    """


class TableNotExists(SchemaUnknown):
    """The table is known to be absent (dropped in session or missing live)."""

    def __init__(self, schema: str, table: str) -> None:
        super().__init__(f"table {schema}.{table} does not exist")
        self.schema = schema
        self.table = table


class ShowCreateTableParseError(SchemaUnknown):
    """The body returned by SHOW CREATE TABLE could not be parsed.

    The audit pipeline downgrades this to a warning finding.
    """


class VariableUnavailable(AuditQLError):
    """A system variable could not be read (offline, or absent on server)."""


class UnsupportedStatementType(AuditQLError):
    """The affected-rows estimator cannot handle this statement shape."""


class RewriteValidationFailed(AuditQLError):
    """A rewritten count query did not project exactly one COUNT aggregate."""


class MissingParameter(AuditQLError):
    """A rule read a parameter that has neither a bound nor a default value."""


class RuleHandlerFailure(AuditQLError):
    """A rule handler failed unexpectedly."""

    def __init__(self, rule_name: str, cause: BaseException) -> None:
        super().__init__(f"rule {rule_name} failed: {cause}")
        self.rule_name = rule_name
        self.cause = cause


class LiveExecutionFailure(AuditQLError):
    """A query against the live database failed."""

    def __init__(self, message: str, sql: str | None = None) -> None:
        if sql:
            message = f"{message} (sql: {sql})"
        super().__init__(message)
        self.sql = sql


class OnlineDDLError(AuditQLError):
    """The online schema-change tool failed."""


class AuditCancelled(AuditQLError):
    """The caller cancelled the audit; no further live queries are issued."""


class AuditAborted(AuditQLError):
    """A statement in a batch failed with a non-recoverable error.

    Attributes:
        statement: Text of the failing statement.
        index: Position of the statement in the batch.
        results: Results of the statements audited before the failure.
    """

    def __init__(
        self,
        statement: str,
        index: int,
        cause: BaseException,
        results: list[AuditResult] | None = None,
    ) -> None:
        super().__init__(f"audit aborted at statement {index} ({statement!r}): {cause}")
        self.statement = statement
        self.index = index
        self.cause = cause
        self.results = results or []
