"""Live database executor boundary."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

from .exceptions import LiveExecutionFailure

logger = logging.getLogger(__name__)

ACCESS_TYPE_ALL = "ALL"
"""EXPLAIN access type for a full table scan."""

SYSTEM_SCHEMAS = frozenset({"information_schema", "mysql", "performance_schema", "sys"})


@dataclass(frozen=True)
class ExplainRecord:
    """One row of MySQL's tabular EXPLAIN output."""

    access_type: str = ""
    rows: int = 0
    table: str = ""
    select_type: str = ""
    possible_keys: Optional[str] = None
    key: Optional[str] = None
    extra: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ExplainRecord":
        normalized = {str(k).lower(): v for k, v in row.items()}
        rows = normalized.get("rows")
        return cls(
            access_type=str(normalized.get("type") or ""),
            rows=int(rows) if rows is not None else 0,
            table=str(normalized.get("table") or ""),
            select_type=str(normalized.get("select_type") or ""),
            possible_keys=normalized.get("possible_keys"),
            key=normalized.get("key"),
            extra=str(normalized.get("extra") or ""),
        )


class Executor(Protocol):
    """Protocol for live database executors.

    Every method is blocking I/O and may raise LiveExecutionFailure.
    """

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run a query and return rows as dicts."""
        ...

    def exec(self, sql: str) -> int:
        """Run a statement and return the affected row count."""
        ...

    def transact(self, statements: Sequence[str]) -> list[int]:
        """Run statements in one transaction, rolling back on failure."""
        ...

    def explain(self, sql: str) -> list[ExplainRecord]:
        """Return the execution plan rows for a statement."""
        ...

    def ping(self) -> None:
        ...

    def list_schemas(self, exclude_system: bool = True) -> list[str]:
        """Schema names, without MySQL's system schemas unless asked."""
        ...

    def connection_id(self) -> str:
        ...

    def close(self) -> None:
        ...


class DBAPIExecutor:
    """Executor over any PEP 249 (DB-API 2.0) connection.

    Usage:
        with DBAPIExecutor(lambda: driver.connect(host="db", user="audit")) as db:
            rows = db.query("SELECT 1 AS one")

    Args:
        connect: Zero-argument factory returning a new DB-API connection.
            Connect and read timeouts belong to the factory.
    """

    def __init__(self, connect: Callable[[], Any]) -> None:
        self._connect = connect
        self._conn: Any = None
        self._closed = False

    def connect(self) -> None:
        if self._conn is not None:
            return
        try:
            self._conn = self._connect()
        except Exception as e:
            raise LiveExecutionFailure(f"connect failed: {e}") from e
        self._closed = False

    def _ensure_connected(self) -> Any:
        if self._conn is None:
            self.connect()
        return self._conn

    def __enter__(self) -> "DBAPIExecutor":
        self.connect()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        conn = self._ensure_connected()
        cur = conn.cursor()
        try:
            if params:
                cur.execute(sql, tuple(params))
            else:
                cur.execute(sql)
            if not cur.description:
                return []
            names = [d[0] for d in cur.description]
            return [dict(zip(names, row)) for row in cur.fetchall()]
        except Exception as e:
            raise LiveExecutionFailure(str(e), sql) from e
        finally:
            cur.close()

    def exec(self, sql: str) -> int:
        conn = self._ensure_connected()
        cur = conn.cursor()
        try:
            cur.execute(sql)
            conn.commit()
            return cur.rowcount
        except Exception as e:
            raise LiveExecutionFailure(str(e), sql) from e
        finally:
            cur.close()

    def transact(self, statements: Sequence[str]) -> list[int]:
        conn = self._ensure_connected()
        cur = conn.cursor()
        counts: list[int] = []
        current = ""
        try:
            for current in statements:
                cur.execute(current)
                counts.append(cur.rowcount)
            conn.commit()
            return counts
        except Exception as e:
            conn.rollback()
            raise LiveExecutionFailure(f"transaction rolled back: {e}", current) from e
        finally:
            cur.close()

    def explain(self, sql: str) -> list[ExplainRecord]:
        return [ExplainRecord.from_row(row) for row in self.query(f"EXPLAIN {sql}")]

    def ping(self) -> None:
        self.query("SELECT 1")

    def list_schemas(self, exclude_system: bool = True) -> list[str]:
        schemas = []
        for row in self.query("SHOW DATABASES"):
            name = str(next(iter(row.values())))
            if exclude_system and name.lower() in SYSTEM_SCHEMAS:
                continue
            schemas.append(name)
        return schemas

    def connection_id(self) -> str:
        rows = self.query("SELECT CONNECTION_ID() AS id")
        return str(rows[0]["id"]) if rows else ""

    def close(self) -> None:
        """Close the connection; safe to call more than once."""
        if self._closed or self._conn is None:
            self._closed = True
            return
        try:
            self._conn.close()
        except Exception as e:
            logger.warning("closing connection failed: %s", e)
        self._conn = None
        self._closed = True
