"""Pipeline configuration: config rules, AuditConfig and YAML rule templates."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from .exceptions import ConfigurationError
from .rules.base import ConfigRule, ParamType, RuleParam

if TYPE_CHECKING:
    from .rules.registry import RuleSet

logger = logging.getLogger(__name__)

CONFIG_DDL_GHOST_MIN_SIZE = "ddl_ghost_min_size"
CONFIG_DDL_OSC_MIN_SIZE = "ddl_osc_min_size"
CONFIG_OPTIMIZE_INDEX_ENABLED = "optimize_index_enabled"
CONFIG_DML_EXPLAIN_PRE_CHECK_ENABLE = "dml_explain_pre_check_enable"
CONFIG_SQL_IS_EXECUTED = "sql_is_executed"

DISABLED = -1


class GhostMinSizeRule(ConfigRule):
    """Route ALTER TABLE through gh-ost when the table exceeds ``min_size`` MB."""

    message = "table is larger than {min_size} MB; the change runs through gh-ost"
    params = (RuleParam("min_size", 1024, "table size threshold in MB", ParamType.INT),)

    @property
    def name(self) -> str:
        return CONFIG_DDL_GHOST_MIN_SIZE

    @property
    def description(self) -> str:
        return "Use gh-ost for ALTER TABLE on tables above a size threshold."


class OSCMinSizeRule(ConfigRule):
    """Print a pt-online-schema-change command for ALTERs of large tables."""

    params = (RuleParam("size", 16, "table size threshold in MB", ParamType.INT),)

    @property
    def name(self) -> str:
        return CONFIG_DDL_OSC_MIN_SIZE

    @property
    def description(self) -> str:
        return "Suggest pt-online-schema-change for ALTER TABLE on large tables."


class OptimizeIndexRule(ConfigRule):
    """Enable index advice on composite index width and column selectivity."""

    params = (
        RuleParam("min_column_selectivity", 2.0, "minimum column selectivity in percent", ParamType.FLOAT),
        RuleParam("max_index_column", 3, "maximum columns in a composite index", ParamType.INT),
    )

    @property
    def name(self) -> str:
        return CONFIG_OPTIMIZE_INDEX_ENABLED

    @property
    def description(self) -> str:
        return "Advise on index width and selectivity."


class DMLExplainPreCheckRule(ConfigRule):
    @property
    def name(self) -> str:
        return CONFIG_DML_EXPLAIN_PRE_CHECK_ENABLE

    @property
    def description(self) -> str:
        return "EXPLAIN DML on the live database before running rules."


class SQLIsExecutedRule(ConfigRule):
    @property
    def name(self) -> str:
        return CONFIG_SQL_IS_EXECUTED

    @property
    def description(self) -> str:
        return "The audited SQL has already been executed."


RULES = (
    GhostMinSizeRule,
    OSCMinSizeRule,
    OptimizeIndexRule,
    DMLExplainPreCheckRule,
    SQLIsExecutedRule,
)


@dataclass
class AuditConfig:
    """Pipeline settings derived from the config rules of a RuleSet.

    Attributes:
        ddl_ghost_min_size: gh-ost threshold in MB; -1 disables.
        ddl_osc_min_size: pt-osc suggestion threshold in MB; -1 disables.
        optimize_index_enabled: Whether the index advisor runs.
        min_column_selectivity: Advisor selectivity floor, in percent.
        max_index_column: Advisor composite index width limit.
        dml_explain_pre_check: EXPLAIN DML before the rules run.
        sql_is_executed: The SQL already ran; audit without side effects.
    """

    ddl_ghost_min_size: int = DISABLED
    ddl_osc_min_size: int = DISABLED
    optimize_index_enabled: bool = False
    min_column_selectivity: float = 2.0
    max_index_column: int = 3
    dml_explain_pre_check: bool = False
    sql_is_executed: bool = False

    @classmethod
    def from_rules(cls, rule_set: RuleSet) -> AuditConfig:
        """Read settings from the config rules present in ``rule_set``."""
        config = cls()
        ghost = rule_set.get(CONFIG_DDL_GHOST_MIN_SIZE)
        if ghost is not None:
            config.ddl_ghost_min_size = ghost.params["min_size"]
        osc = rule_set.get(CONFIG_DDL_OSC_MIN_SIZE)
        if osc is not None:
            config.ddl_osc_min_size = osc.params["size"]
        optimize = rule_set.get(CONFIG_OPTIMIZE_INDEX_ENABLED)
        if optimize is not None:
            config.optimize_index_enabled = True
            config.min_column_selectivity = optimize.params["min_column_selectivity"]
            config.max_index_column = optimize.params["max_index_column"]
        config.dml_explain_pre_check = CONFIG_DML_EXPLAIN_PRE_CHECK_ENABLE in rule_set
        config.sql_is_executed = CONFIG_SQL_IS_EXECUTED in rule_set
        return config


def load_rule_template(path: str | Path) -> list[dict[str, Any]]:
    """Load rule entries from a YAML template.

    The file holds a top-level ``rules`` list; each entry has a ``name`` and
    optional ``level`` and ``params``::

        rules:
          - name: ddl_check_index_prefix
            level: warn
            params:
              prefix: idx_

    Raises:
        ConfigurationError: If the file is missing or malformed.
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except OSError as e:
        raise ConfigurationError(f"cannot read rule template {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"malformed rule template {path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("rules"), list):
        raise ConfigurationError(f"{path} must have a top-level 'rules' list")
    entries = []
    for entry in data["rules"]:
        if isinstance(entry, str):
            entry = {"name": entry}
        if not isinstance(entry, dict):
            raise ConfigurationError(f"{path}: invalid rule entry {entry!r}")
        entries.append(entry)
    logger.debug("loaded %d rule entries from %s", len(entries), path)
    return entries
