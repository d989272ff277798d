"""Base classes for audit rules."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any, Mapping

from ..exceptions import ConfigurationError, MissingParameter

if TYPE_CHECKING:
    from sqlglot.expressions import Expression

    from ..parser import Statement
    from ..result import AuditResult
    from ..session import SessionContext


class RuleLevel(IntEnum):
    """Finding levels, ordered from informational to blocking."""

    NORMAL = 0
    NOTICE = 1
    WARN = 2
    ERROR = 3

    def __str__(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: object) -> RuleLevel:
        """Accept a RuleLevel, its integer value or its name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError as e:
                raise ConfigurationError(f"invalid rule level: {value}") from e
        name = str(value).strip().upper()
        if name == "WARNING":
            name = "WARN"
        try:
            return cls[name]
        except KeyError as e:
            raise ConfigurationError(f"invalid rule level: {value!r}") from e


class RuleCategory(str, Enum):
    NAMING = "naming"
    INTEGRITY = "integrity"
    PERFORMANCE = "performance"
    SECURITY = "security"
    CONFIG = "config"


class ParamType(str, Enum):
    """Declared type of a rule parameter."""

    STRING = "string"
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    ENUM = "enum"


_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


@dataclass(frozen=True)
class RuleParam:
    """A typed, declared rule parameter.

    Attributes:
        key: Parameter name used in templates and messages.
        default: Value used when the caller supplies none. None means required.
        description: Human-readable description.
        type: Declared type values are coerced to.
        enums: Allowed values for ENUM parameters.
    """

    key: str
    default: Any = None
    description: str = ""
    type: ParamType = ParamType.STRING
    enums: tuple[str, ...] = ()

    def coerce(self, value: object) -> Any:
        """Convert a supplied value to the declared type.

        Raises:
            ConfigurationError: If the value does not fit the declared type.
        """
        if value is None:
            return None
        try:
            if self.type == ParamType.INT:
                if isinstance(value, bool):
                    raise ValueError("bool is not an int")
                return int(str(value).strip())
            if self.type == ParamType.FLOAT:
                return float(str(value).strip())
            if self.type == ParamType.BOOL:
                if isinstance(value, bool):
                    return value
                text = str(value).strip().lower()
                if text in _TRUE:
                    return True
                if text in _FALSE:
                    return False
                raise ValueError(f"not a boolean: {value!r}")
        except ValueError as e:
            raise ConfigurationError(f"parameter {self.key!r}: {e}") from e

        text = str(value)
        if self.type == ParamType.ENUM and text not in self.enums:
            raise ConfigurationError(
                f"parameter {self.key!r}: {text!r} is not one of {', '.join(self.enums)}"
            )
        return text


@dataclass(frozen=True)
class RuleInput:
    """Everything a rule handler sees for one statement.

    Attributes:
        statement: The statement under audit.
        context: Session context shared by all rules of the statement.
        result: Accumulator findings are appended to.
        rule: The bound rule being evaluated.
    """

    statement: Statement
    context: SessionContext
    result: AuditResult
    rule: BoundRule

    def param(self, key: str) -> Any:
        """Resolved value of a parameter.

        Raises:
            MissingParameter: If no value was supplied and none is defaulted.
        """
        value = self.rule.params.get(key)
        if value is None:
            raise MissingParameter(f"rule {self.rule.name} requires parameter {key!r}")
        return value

    def report(self, **values: object) -> None:
        """Append a finding at the rule's bound level."""
        self.result.add(self.rule.level, self.rule.name, self.rule.render(**values))


class Rule(ABC):
    """Abstract base class for audit rules.

    Subclasses must implement:
    - name: Unique identifier for the rule
    - description: Detailed description of what the rule checks
    - category: Rule family
    - level: Default finding level
    - check(): The actual validation logic

    and may override the class attributes below.
    """

    message: str = ""
    """Finding text; ``{key}`` placeholders render parameters and handler values."""

    params: tuple[RuleParam, ...] = ()
    allow_offline: bool = True
    disabled_for_executed: bool = False
    tags: frozenset[str] = frozenset()

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this rule (e.g., 'ddl_check_index_prefix')."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    @abstractmethod
    def category(self) -> RuleCategory:
        ...

    @property
    @abstractmethod
    def level(self) -> RuleLevel:
        """Default level for findings of this rule."""
        ...

    @property
    def is_config(self) -> bool:
        """Config rules carry settings for the pipeline and never run."""
        return False

    @abstractmethod
    def check(self, node: Expression, ri: RuleInput) -> None:
        """Inspect a statement node and report findings through ``ri``.

        Handlers return without findings on node types they do not handle.
        """
        ...


class ConfigRule(Rule):
    """A rule that only carries pipeline settings."""

    @property
    def category(self) -> RuleCategory:
        return RuleCategory.CONFIG

    @property
    def level(self) -> RuleLevel:
        return RuleLevel.NOTICE

    @property
    def is_config(self) -> bool:
        return True

    def check(self, node: Expression, ri: RuleInput) -> None:
        return None


@dataclass(frozen=True)
class BoundRule:
    """A rule bound to caller-supplied parameter values and level."""

    rule: Rule
    level: RuleLevel
    params: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def bind(
        cls,
        rule: Rule,
        level: object = None,
        params: Mapping[str, object] | None = None,
    ) -> BoundRule:
        """Validate parameters against the rule's declaration.

        Unknown keys are ignored. Declared keys without a supplied value
        take the declared default.
        """
        supplied = params or {}
        values: dict[str, Any] = {}
        for param in rule.params:
            raw = supplied.get(param.key, param.default)
            values[param.key] = param.coerce(raw)
        bound_level = rule.level if level is None else RuleLevel.parse(level)
        return cls(rule=rule, level=bound_level, params=values)

    @property
    def name(self) -> str:
        return self.rule.name

    def render(self, **values: object) -> str:
        merged = {**self.params, **values}
        try:
            return self.rule.message.format(**merged)
        except (KeyError, IndexError):
            return self.rule.message
