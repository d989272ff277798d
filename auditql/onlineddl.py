"""Online schema-change tooling: gh-ost execution and pt-osc command lines."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from .ddl import AddColumn, AlterTable, RenameTable, alter_body, unique_index_specs
from .exceptions import OnlineDDLError
from .schema import IndexKind, TableDefinition

logger = logging.getLogger(__name__)

PT_OSC_COMMAND = (
    'pt-online-schema-change D={schema},t={table} --alter="{alter}" '
    "--host={host} --user={user} --port={port} --ask-pass --print --execute"
)

OSC_NO_UNIQUE_KEY = "pt-online-schema-change requires a primary key or unique key on the table"
OSC_ADD_UNIQUE_KEY = "adding a unique key with pt-online-schema-change may lose duplicate rows"
OSC_RENAME_TABLE = "pt-online-schema-change does not support renaming a table"
OSC_NOT_NULL_WITHOUT_DEFAULT = "NOT NULL columns need a default value, otherwise pt-online-schema-change fails"


@dataclass(frozen=True)
class DSN:
    """Connection coordinates handed to external schema-change tools."""

    host: str
    port: int = 3306
    user: str = ""
    password: str = ""


class OnlineDDLRunner(Protocol):
    """Runs an ALTER TABLE through an online schema-change tool.

    Raises OnlineDDLError on any failure, including timeouts.
    """

    def run(self, schema: str, table: str, statement: str, dry_run: bool) -> None:
        ...


class GhostRunner:
    """OnlineDDLRunner that shells out to the ``gh-ost`` binary.

    Args:
        dsn: Server the migration runs against.
        binary: gh-ost executable name or path.
        timeout: Seconds before a single invocation is abandoned.
        extra_args: Additional flags, e.g. ``("--allow-on-master",)``.
    """

    def __init__(
        self,
        dsn: DSN,
        binary: str = "gh-ost",
        timeout: Optional[float] = None,
        extra_args: Sequence[str] = (),
    ) -> None:
        self.dsn = dsn
        self.binary = binary
        self.timeout = timeout
        self.extra_args = tuple(extra_args)

    def command(self, schema: str, table: str, statement: str, dry_run: bool) -> list[str]:
        cmd = [
            self.binary,
            f"--host={self.dsn.host}",
            f"--port={self.dsn.port}",
            f"--user={self.dsn.user}",
            f"--password={self.dsn.password}",
            f"--database={schema}",
            f"--table={table}",
            f"--alter={alter_body(statement)}",
            "--assume-rbr",
            *self.extra_args,
        ]
        if not dry_run:
            cmd.append("--execute")
        return cmd

    def run(self, schema: str, table: str, statement: str, dry_run: bool) -> None:
        action = "dry-run" if dry_run else "run"
        logger.info("%s gh-ost on %s.%s", action, schema, table)
        try:
            result = subprocess.run(
                self.command(schema, table, statement, dry_run),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            logger.error("%s gh-ost timed out after %ss", action, self.timeout)
            raise OnlineDDLError(f"{action} gh-ost timed out after {self.timeout}s") from e
        except FileNotFoundError as e:
            raise OnlineDDLError(f"{action} gh-ost: {self.binary} not found") from e

        if result.returncode != 0:
            error = (result.stderr or result.stdout or "unknown error").strip()
            logger.error("%s gh-ost error: %s", action, error[:500])
            raise OnlineDDLError(f"{action} gh-ost: {error[:200]}")
        logger.info("%s OK!", action)


def osc_refusal(definition: TableDefinition, alter: AlterTable) -> Optional[str]:
    """Reason pt-online-schema-change cannot run this ALTER, if any."""
    if alter.of_type(RenameTable):
        return OSC_RENAME_TABLE
    if not definition.indexes_of(IndexKind.PRIMARY, IndexKind.UNIQUE):
        return OSC_NO_UNIQUE_KEY
    added = alter.of_type(AddColumn)
    if unique_index_specs(alter) or any(spec.unique for spec in added):
        return OSC_ADD_UNIQUE_KEY
    for spec in added:
        column = spec.column
        if not column.nullable and column.default is None and not column.auto_increment:
            return OSC_NOT_NULL_WITHOUT_DEFAULT
    return None


def osc_command_line(definition: TableDefinition, alter: AlterTable, statement: str, dsn: DSN) -> str:
    """pt-online-schema-change invocation for an ALTER, or why it cannot be used."""
    reason = osc_refusal(definition, alter)
    if reason is not None:
        return reason
    return PT_OSC_COMMAND.format(
        schema=definition.schema,
        table=definition.name,
        alter=alter_body(statement).replace('"', '\\"'),
        host=dsn.host,
        user=dsn.user,
        port=dsn.port,
    )
