"""Rule engine that dispatches bound rules against statements."""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from ..exceptions import AuditCancelled, RuleHandlerFailure, SchemaUnknown, VariableUnavailable
from .base import RuleInput, RuleLevel

if TYPE_CHECKING:
    from ..parser import Statement
    from ..result import AuditResult
    from ..session import SessionContext
    from .base import BoundRule
    from .registry import RuleSet

logger = logging.getLogger(__name__)


class DispatchMode(str, Enum):
    """How the statement is being audited.

    ONLINE: a live connection backs the session.
    OFFLINE: no live connection; rules that need one are skipped.
    EXECUTED: re-audit of SQL that already ran.
    """

    ONLINE = "online"
    OFFLINE = "offline"
    EXECUTED = "executed"


class RuleEngine:
    """Runs a RuleSet against statements.

    Rules run in RuleSet order. A handler that cannot determine a fact
    (SchemaUnknown, VariableUnavailable) is skipped; any other exception is
    recorded as an ERROR finding for that rule and the remaining rules
    still run.

    Example:
        engine = RuleEngine(RuleSet.default(build_default_registry()))
        result = AuditResult()
        engine.dispatch(statement, context, result, DispatchMode.OFFLINE)
        print(result.message)
    """

    def __init__(self, rule_set: RuleSet) -> None:
        self.rule_set = rule_set

    @staticmethod
    def should_run(bound: BoundRule, mode: DispatchMode) -> bool:
        rule = bound.rule
        if rule.is_config:
            return False
        if mode == DispatchMode.OFFLINE and not rule.allow_offline:
            return False
        if mode == DispatchMode.EXECUTED and rule.disabled_for_executed:
            return False
        return True

    def active_rules(self, mode: DispatchMode) -> list[BoundRule]:
        """Rules that would actually run in ``mode``."""
        return [b for b in self.rule_set if self.should_run(b, mode)]

    def dispatch(
        self,
        statement: Statement,
        context: SessionContext,
        result: AuditResult,
        mode: DispatchMode,
    ) -> None:
        """Evaluate every applicable rule against one statement."""
        for bound in self.active_rules(mode):
            ri = RuleInput(statement=statement, context=context, result=result, rule=bound)
            try:
                bound.rule.check(statement.node, ri)
            except AuditCancelled:
                raise
            except (SchemaUnknown, VariableUnavailable) as e:
                logger.debug("rule %s skipped: %s", bound.name, e)
            except Exception as e:
                failure = RuleHandlerFailure(bound.name, e)
                logger.error(
                    "rule %s (%s) failed on statement %d: %s",
                    bound.name,
                    bound.rule.description,
                    statement.batch_index,
                    e,
                )
                result.add(RuleLevel.ERROR, bound.name, str(failure), is_error=True)
