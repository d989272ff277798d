"""Shared fixtures: an in-memory executor and a recording online DDL runner."""

from __future__ import annotations

import re
from typing import Any, Sequence

import pytest

from auditql import Auditor, RuleSet, build_default_registry
from auditql.exceptions import LiveExecutionFailure, OnlineDDLError
from auditql.executor import SYSTEM_SCHEMAS, ExplainRecord

_QUOTED = re.compile(r"`([^`]*)`")


class FakeExecutor:
    """Executor answering the catalog queries the session context issues.

    Args:
        tables: ``{(schema, table): "CREATE TABLE ..."}`` bodies for SHOW CREATE TABLE.
        sizes: ``{(schema, table): size_mb}``.
        variables: Global variables; lower_case_table_names defaults to 0.
        schemas: SHOW DATABASES result; defaults to the schemas of ``tables``.
        plans: ``{sql: [ExplainRecord] | Exception}`` for explain().
        results: ``{sql: rows}`` for any other query.
    """

    def __init__(
        self,
        tables: dict[tuple[str, str], str] | None = None,
        sizes: dict[tuple[str, str], float] | None = None,
        variables: dict[str, str] | None = None,
        schemas: list[str] | None = None,
        plans: dict[str, Any] | None = None,
        results: dict[str, list[dict[str, Any]]] | None = None,
        connection_id: str = "42",
    ) -> None:
        self.tables = dict(tables or {})
        self.sizes = dict(sizes or {})
        self.variables = {"lower_case_table_names": "0", **(variables or {})}
        self.schemas = list(schemas) if schemas is not None else sorted({s for s, _ in self.tables})
        self.plans = dict(plans or {})
        self.default_plan = [ExplainRecord(access_type="ref", rows=1, table="t")]
        self.results = dict(results or {})
        self.conn_id = connection_id

        self.queries: list[tuple[str, tuple]] = []
        self.explained: list[str] = []
        self.executed: list[str] = []
        self.failing: set[str] = set()
        self.closed = 0

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        params = tuple(params)
        self.queries.append((sql, params))
        if sql.startswith("SELECT TABLE_NAME FROM information_schema.tables"):
            return [{"TABLE_NAME": params[1]}] if params in self.tables else []
        if sql.startswith("SHOW CREATE TABLE"):
            key = tuple(_QUOTED.findall(sql))
            if key not in self.tables:
                return []
            return [{"Table": key[1], "Create Table": self.tables[key]}]
        if sql.startswith("SELECT (DATA_LENGTH + INDEX_LENGTH)"):
            if params not in self.tables:
                return []
            return [{"size": self.sizes.get(params, 0.0), "table_rows": 100}]
        if sql.startswith("SHOW GLOBAL VARIABLES"):
            name = params[0]
            if name not in self.variables:
                return []
            return [{"Variable_name": name, "Value": self.variables[name]}]
        if sql in self.results:
            return self.results[sql]
        return []

    def exec(self, sql: str) -> int:
        self.executed.append(sql)
        if sql in self.failing:
            raise LiveExecutionFailure("server said no", sql)
        return 1

    def transact(self, statements: Sequence[str]) -> list[int]:
        return [self.exec(s) for s in statements]

    def explain(self, sql: str) -> list[ExplainRecord]:
        self.explained.append(sql)
        plan = self.plans.get(sql, self.default_plan)
        if isinstance(plan, Exception):
            raise plan
        return plan

    def ping(self) -> None:
        self.query("SELECT 1")

    def list_schemas(self, exclude_system: bool = True) -> list[str]:
        if exclude_system:
            return [s for s in self.schemas if s.lower() not in SYSTEM_SCHEMAS]
        return list(self.schemas)

    def connection_id(self) -> str:
        return self.conn_id

    def close(self) -> None:
        self.closed += 1

    def catalog_queries(self) -> list[str]:
        """Queries other than the lower_case_table_names lookups."""
        return [sql for sql, _ in self.queries if not sql.startswith("SHOW GLOBAL VARIABLES")]


class FakeOnlineDDLRunner:
    """Records gh-ost invocations; optionally fails dry runs or real runs."""

    def __init__(self, fail_dry_run: bool = False, fail_run: bool = False) -> None:
        self.fail_dry_run = fail_dry_run
        self.fail_run = fail_run
        self.calls: list[tuple[str, str, str, bool]] = []

    def run(self, schema: str, table: str, statement: str, dry_run: bool) -> None:
        self.calls.append((schema, table, statement, dry_run))
        if dry_run and self.fail_dry_run:
            raise OnlineDDLError("dry-run gh-ost: cannot determine table size")
        if not dry_run and self.fail_run:
            raise OnlineDDLError("run gh-ost: cut-over failed")


ORDERS_DDL = (
    "CREATE TABLE `orders` (\n"
    "  `id` bigint NOT NULL AUTO_INCREMENT,\n"
    "  `customer_id` bigint NOT NULL DEFAULT 0,\n"
    "  `status` varchar(16) NOT NULL DEFAULT 'new',\n"
    "  `note` varchar(255) DEFAULT NULL,\n"
    "  PRIMARY KEY (`id`),\n"
    "  KEY `idx_customer` (`customer_id`)\n"
    ") ENGINE=InnoDB DEFAULT CHARSET=utf8mb4"
)


@pytest.fixture
def registry():
    return build_default_registry()


@pytest.fixture
def shop_executor() -> FakeExecutor:
    """A live database with one ``shop.orders`` table of 10 MB."""
    return FakeExecutor(tables={("shop", "orders"): ORDERS_DDL}, sizes={("shop", "orders"): 10.0})


@pytest.fixture
def offline_auditor() -> Auditor:
    return Auditor(RuleSet.default(build_default_registry()))
