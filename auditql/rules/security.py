"""Security policy rules: schema qualification, file access, dynamic SQL, privileges."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlglot import exp

from ..ddl import alter_table_of, rename_pairs_of
from ..parser import StatementKind, command_text, table_refs
from .base import Rule, RuleCategory, RuleInput, RuleLevel

if TYPE_CHECKING:
    from sqlglot.expressions import Expression

_UNQUALIFIED_EXEMPT = frozenset(
    {
        StatementKind.USE,
        StatementKind.SET,
        StatementKind.SHOW,
        StatementKind.CREATE_DATABASE,
        StatementKind.DROP_DATABASE,
    }
)

_FILE_FUNCTIONS = frozenset({"load_file"})


class SchemaQualifiedRule(Rule):
    """Objects should be referenced with an explicit schema name.

    Applies to every table reference of queries, mutations and DDL,
    including both sides of RENAME TABLE.
    """

    message = "qualify tables and views with their schema name"
    tags = frozenset({"table", "dml", "ddl"})

    @property
    def name(self) -> str:
        return "dml_check_schema_qualified"

    @property
    def description(self) -> str:
        return "Table references should carry an explicit schema."

    @property
    def category(self) -> RuleCategory:
        return RuleCategory.SECURITY

    @property
    def level(self) -> RuleLevel:
        return RuleLevel.NOTICE

    def check(self, node: Expression, ri: RuleInput) -> None:
        if ri.statement.kind in _UNQUALIFIED_EXEMPT:
            return
        if any(not table.db for table in self._tables(node)):
            ri.report()

    @staticmethod
    def _tables(node: Expression) -> list[exp.Table]:
        if isinstance(node, exp.Command):
            pairs = rename_pairs_of(node)
            if pairs:
                return [t for pair in pairs for t in (pair.old, pair.new)]
            alter = alter_table_of(node)
            return [alter.table] if alter is not None else []
        return table_refs(node)


class FileAccessRule(Rule):
    """Detects SQL patterns that access the server's file system.

    This rule catches INTO OUTFILE / INTO DUMPFILE, LOAD DATA INFILE and
    the LOAD_FILE() function.
    """

    message = "file system access detected: {pattern}"
    tags = frozenset({"dml"})

    @property
    def name(self) -> str:
        return "dml_check_file_access"

    @property
    def description(self) -> str:
        return (
            "Detects SQL patterns that read from or write to the server file "
            "system, including INTO OUTFILE, LOAD DATA INFILE and LOAD_FILE()."
        )

    @property
    def category(self) -> RuleCategory:
        return RuleCategory.SECURITY

    @property
    def level(self) -> RuleLevel:
        return RuleLevel.ERROR

    def check(self, node: Expression, ri: RuleInput) -> None:
        pattern = self._pattern(node)
        if pattern is not None:
            ri.report(pattern=pattern)

    @staticmethod
    def _pattern(node: Expression) -> str | None:
        for into in node.find_all(exp.Into):
            into_sql = into.sql(dialect="mysql").upper()
            if "OUTFILE" in into_sql or "DUMPFILE" in into_sql:
                return "INTO OUTFILE/DUMPFILE"

        for _load in node.find_all(exp.LoadData):
            return "LOAD DATA INFILE"

        for cmd in node.find_all(exp.Command):
            cmd_name = str(cmd.this).upper() if cmd.this else ""
            if cmd_name == "LOAD" and command_text(cmd).strip().upper().startswith("DATA"):
                return "LOAD DATA INFILE"

        for func in node.find_all(exp.Anonymous):
            func_name = func.name.lower() if func.name else ""
            if func_name in _FILE_FUNCTIONS:
                return f"{func_name}()"
        return None


class DynamicSQLRule(Rule):
    """Detects dynamic SQL execution (PREPARE / EXECUTE).

    Dynamic SQL builds statements at runtime, out of reach of static audit.
    """

    message = "dynamic SQL detected: {command}"
    tags = frozenset({"dml"})

    @property
    def name(self) -> str:
        return "all_check_dynamic_sql"

    @property
    def description(self) -> str:
        return "Detects PREPARE/EXECUTE which bypass static analysis."

    @property
    def category(self) -> RuleCategory:
        return RuleCategory.SECURITY

    @property
    def level(self) -> RuleLevel:
        return RuleLevel.ERROR

    def check(self, node: Expression, ri: RuleInput) -> None:
        stmt_type = node.key.upper()
        if stmt_type in {"EXECUTE", "PREPARE"}:
            ri.report(command=stmt_type)
            return
        for cmd in node.find_all(exp.Command):
            cmd_name = str(cmd.this).upper() if cmd.this else ""
            if cmd_name in {"EXECUTE", "PREPARE", "DEALLOCATE"}:
                ri.report(command=cmd_name)
                return


class PrivilegeChangeRule(Rule):
    """Detects user, role and grant manipulation."""

    message = "privilege change detected: {command}"
    tags = frozenset({"user"})

    @property
    def name(self) -> str:
        return "all_check_privilege_change"

    @property
    def description(self) -> str:
        return "Detects statements creating users or roles, or changing grants."

    @property
    def category(self) -> RuleCategory:
        return RuleCategory.SECURITY

    @property
    def level(self) -> RuleLevel:
        return RuleLevel.ERROR

    def check(self, node: Expression, ri: RuleInput) -> None:
        if node.key in {"grant", "revoke"}:
            ri.report(command=node.key.upper())
            return
        for cmd in node.find_all(exp.Command):
            cmd_name = str(cmd.this).upper() if cmd.this else ""
            rest = command_text(cmd).strip().upper()
            if cmd_name in {"GRANT", "REVOKE"}:
                ri.report(command=cmd_name)
                return
            if cmd_name in {"CREATE", "ALTER", "DROP", "RENAME", "SET"} and rest.startswith(
                ("USER", "ROLE", "PASSWORD", "DEFAULT ROLE")
            ):
                ri.report(command=f"{cmd_name} {rest.split()[0]}")
                return


RULES = (
    SchemaQualifiedRule,
    FileAccessRule,
    DynamicSQLRule,
    PrivilegeChangeRule,
)
