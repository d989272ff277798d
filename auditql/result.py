"""Audit result types."""

from __future__ import annotations

from dataclasses import dataclass, field

from .rules.base import RuleLevel


@dataclass(frozen=True)
class Finding:
    """One rule finding.

    Attributes:
        level: Severity of the finding.
        rule_name: Rule that produced it.
        message: Rendered message.
        is_error: True when the finding records a handler failure rather than
            a rule violation.
    """

    level: RuleLevel
    rule_name: str
    message: str
    is_error: bool = False

    def __str__(self) -> str:
        return f"[{self.level}]{self.message}"


@dataclass
class AuditResult:
    """Findings for one audited statement.

    Findings keep the order rules were evaluated in. The overall level only
    ever grows as findings are added. The result is frozen once returned by
    the auditor.

    Attributes:
        findings: Ordered findings.
        rollback_sql: Statement reverting a DDL statement, when one can be built.
    """

    findings: list[Finding] = field(default_factory=list)
    rollback_sql: str | None = None
    _frozen: bool = field(default=False, repr=False, compare=False)

    def add(self, level: RuleLevel, rule_name: str, message: str, is_error: bool = False) -> None:
        if self._frozen:
            raise RuntimeError("audit result is frozen")
        self.findings.append(Finding(RuleLevel.parse(level), rule_name, message, is_error))

    def freeze(self) -> AuditResult:
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def level(self) -> RuleLevel:
        """Highest level over all findings (NORMAL when empty)."""
        return max((f.level for f in self.findings), default=RuleLevel.NORMAL)

    @property
    def has_result(self) -> bool:
        return bool(self.findings)

    @property
    def message(self) -> str:
        return "\n".join(str(f) for f in self.findings)

    @property
    def rule_names(self) -> list[str]:
        return [f.rule_name for f in self.findings]

    def by_rule(self, rule_name: str) -> list[Finding]:
        return [f for f in self.findings if f.rule_name == rule_name]

    def passed(self, threshold: RuleLevel = RuleLevel.ERROR) -> bool:
        """True when no finding reaches ``threshold``."""
        return self.level < threshold


@dataclass(frozen=True)
class EstimatedAffectedRows:
    """Outcome of an affected-rows estimate.

    Attributes:
        count: Estimated rows; None when no estimate could be made.
        error_message: Why the estimate failed, if it did.
    """

    count: int | None = None
    error_message: str | None = None

    def __bool__(self) -> bool:
        return self.error_message is None
