"""Affected-rows estimation for DML.

Statements are rewritten into a single ``COUNT`` query. The EXPLAIN plan of
that query decides whether the count is cheap enough to run; when it is
not, the plan's own row estimate is returned instead.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from sqlglot import exp

from .exceptions import LiveExecutionFailure, RewriteValidationFailed, UnsupportedStatementType
from .executor import ACCESS_TYPE_ALL
from .parser import Parser

if TYPE_CHECKING:
    from .executor import ExplainRecord, Executor

logger = logging.getLogger(__name__)

EXPLAIN_ROWS_LIMIT = 100_000
"""Above this many estimated plan rows the count query is not run."""

_WRAP_TEMPLATE = "SELECT COUNT(*) FROM ({}) AS t"


def _count_one() -> exp.Select:
    return exp.Select(expressions=[exp.Count(this=exp.Literal.number(1))])


def _copy_args(source: exp.Expression, target: exp.Select, *keys: str) -> exp.Select:
    for key in keys:
        value = source.args.get(key)
        if value is None:
            continue
        if isinstance(value, list):
            target.set(key, [v.copy() for v in value])
        else:
            target.set(key, value.copy())
    return target


def _needs_wrap(select: exp.Select) -> bool:
    # GROUP BY / HAVING change the row count meaning; LIMIT offsets can make
    # a plain COUNT(1) return no row at all.
    return any(select.args.get(key) for key in ("group", "having", "limit", "offset"))


class AffectedRowsEstimator:
    """Estimates how many rows a DML statement touches.

    Supported shapes:
    - ``INSERT ... VALUES``: number of value tuples, no I/O
    - ``INSERT ... SELECT``: count of the inner query
    - ``UPDATE`` / ``DELETE``: ``SELECT COUNT(1)`` over the same rows
    - ``SELECT``: ``COUNT(1)`` over the same FROM/WHERE, or the whole query
      wrapped in ``SELECT COUNT(*) FROM (...) AS t`` when it groups or limits

    Args:
        executor: Live executor the count query runs on.
        explain: Plan lookup; defaults to ``executor.explain``. Pass a
            session's ``get_execution_plan`` to share its cache.
        parser: Parser used for the input and for validating rewrites.

    Example:
        estimator = AffectedRowsEstimator(executor)
        estimator.estimate("DELETE FROM orders WHERE status = 'void'")
    """

    def __init__(
        self,
        executor: Executor,
        explain: Callable[[str], list[ExplainRecord]] | None = None,
        parser: Parser | None = None,
    ) -> None:
        self._executor = executor
        self._explain = explain or executor.explain
        self._parser = parser or Parser()

    def estimate(self, sql: str) -> int:
        """Estimate the rows affected by one statement.

        Raises:
            ParseError: ``sql`` is not exactly one parseable statement.
            UnsupportedStatementType: Not an INSERT/UPDATE/DELETE/SELECT shape
                the estimator handles.
            RewriteValidationFailed: The rewritten query is not a single COUNT.
            LiveExecutionFailure: EXPLAIN or the count query failed.
        """
        node = self._parser.parse_one(sql)
        if isinstance(node, exp.Insert):
            values = node.expression
            if isinstance(values, exp.Values):
                return len(values.expressions)

        count_sql = self.rewrite(node, sql)
        self.validate(count_sql)
        return self._count(count_sql)

    def rewrite(self, node: exp.Expression, sql: str) -> str:
        """Build the count query for ``node``.

        Args:
            node: Parsed statement.
            sql: Its source text, used verbatim when the query is wrapped.
        """
        if isinstance(node, exp.Select):
            if _needs_wrap(node):
                return _WRAP_TEMPLATE.format(sql.strip().rstrip(";").strip())
            return _copy_args(node, _count_one(), "from", "joins", "where", "order").sql(dialect="mysql")
        if isinstance(node, exp.Insert):
            inner = node.expression
            if isinstance(inner, exp.Subquery):
                inner = inner.unnest()
            if isinstance(inner, (exp.Union, exp.Except, exp.Intersect)):
                return _WRAP_TEMPLATE.format(inner.sql(dialect="mysql"))
            if isinstance(inner, exp.Select):
                return self.rewrite(inner, inner.sql(dialect="mysql"))
            raise UnsupportedStatementType(f"unsupported sql type: {node.key}")
        if isinstance(node, (exp.Update, exp.Delete)):
            return self._from_mutation(node).sql(dialect="mysql")
        raise UnsupportedStatementType(f"unsupported sql type: {node.key}")

    @staticmethod
    def _from_mutation(node: exp.Expression) -> exp.Select:
        select = _count_one()
        source = node.args.get("from")
        if source is not None:
            select.set("from", source.copy())
            if isinstance(node, exp.Update) and isinstance(node.this, exp.Table):
                select.set("joins", [exp.Join(this=node.this.copy())])
        elif isinstance(node.this, exp.Table):
            select.set("from", exp.From(this=node.this.copy()))
        else:
            raise UnsupportedStatementType(f"{node.key} without a target table")
        return _copy_args(node, select, "joins", "where", "order", "limit")

    def validate(self, count_sql: str) -> None:
        """Check that ``count_sql`` is a SELECT projecting exactly one COUNT.

        Raises:
            RewriteValidationFailed: If it is anything else.
        """
        node = self._parser.parse_one(count_sql)
        if not isinstance(node, exp.Select) or len(node.expressions) != 1:
            raise RewriteValidationFailed(f"rewritten sql is not a single-column SELECT: {count_sql}")
        projection = node.expressions[0]
        if isinstance(projection, exp.Alias):
            projection = projection.this
        if not isinstance(projection, exp.Count):
            raise RewriteValidationFailed(f"rewritten sql does not project COUNT: {count_sql}")

    def _count(self, count_sql: str) -> int:
        try:
            plan = self._explain(count_sql)
        except LiveExecutionFailure as e:
            logger.error("explain of affected rows sql failed: %s", e)
            raise LiveExecutionFailure(f"get execution plan failed: {e}", sql=count_sql) from e

        if plan:
            full_scan = any(r.access_type.upper() == ACCESS_TYPE_ALL for r in plan)
            if full_scan or sum(r.rows for r in plan) > EXPLAIN_ROWS_LIMIT:
                return plan[-1].rows

        try:
            rows = self._executor.query(count_sql)
        except LiveExecutionFailure as e:
            raise LiveExecutionFailure(f"get affected rows failed: {e}", sql=count_sql) from e
        if not rows:
            logger.warning("affected rows sql returned no row: %s", count_sql)
            return 0
        value = next(iter(rows[0].values()), 0)
        try:
            return int(value or 0)
        except (TypeError, ValueError) as e:
            raise LiveExecutionFailure(f"unexpected count value {value!r}", sql=count_sql) from e
