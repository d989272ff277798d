"""Rule registry and per-audit rule sets."""

from __future__ import annotations

from typing import Any, Iterable, Iterator, Mapping

from ..exceptions import ConfigurationError
from .base import BoundRule, Rule, RuleCategory


class RuleRegistry:
    """Registry of audit rules.

    Provides rule discovery, filtering, and management. Registration order
    is preserved and is the order rules are dispatched in.

    Example:
        registry = RuleRegistry()
        registry.register(IndexPrefixRule())
        registry.register(SelectStarRule())

        # Get all rules
        all_rules = registry.all()

        # Get only naming rules
        naming = registry.by_category(RuleCategory.NAMING)
    """

    def __init__(self) -> None:
        self._rules: dict[str, Rule] = {}

    def register(self, rule: Rule) -> None:
        """Register a rule with the registry.

        Raises:
            ValueError: If a rule with the same name is already registered
        """
        if rule.name in self._rules:
            raise ValueError(f"Rule '{rule.name}' is already registered")
        self._rules[rule.name] = rule

    def unregister(self, name: str) -> None:
        self._rules.pop(name, None)

    def get(self, name: str) -> Rule | None:
        return self._rules.get(name)

    def all(self) -> list[Rule]:
        """Get all registered rules, in registration order."""
        return list(self._rules.values())

    def by_category(self, category: RuleCategory) -> list[Rule]:
        return [r for r in self._rules.values() if r.category == category]

    def __contains__(self, name: object) -> bool:
        return name in self._rules

    def __len__(self) -> int:
        return len(self._rules)


def build_default_registry() -> RuleRegistry:
    """Registry with every built-in rule, in a fixed order."""
    from ..config import RULES as config_rules
    from . import integrity, naming, performance, security

    registry = RuleRegistry()
    for module_rules in (
        naming.RULES,
        integrity.RULES,
        performance.RULES,
        security.RULES,
        config_rules,
    ):
        for rule_cls in module_rules:
            registry.register(rule_cls())
    return registry


class RuleSet:
    """Ordered rules bound for one audit run.

    Dispatch follows the registry's order regardless of the order entries
    appear in a template.
    """

    def __init__(self, rules: Iterable[BoundRule] = ()) -> None:
        self._rules: list[BoundRule] = []
        self._by_name: dict[str, BoundRule] = {}
        for bound in rules:
            if bound.name in self._by_name:
                raise ConfigurationError(f"rule {bound.name!r} is bound twice")
            self._rules.append(bound)
            self._by_name[bound.name] = bound

    @classmethod
    def default(cls, registry: RuleRegistry) -> RuleSet:
        """Every non-config rule of the registry with its defaults."""
        return cls(BoundRule.bind(rule) for rule in registry.all() if not rule.is_config)

    @classmethod
    def from_template(cls, registry: RuleRegistry, entries: Iterable[Mapping[str, Any]]) -> RuleSet:
        """Bind ``{name, level?, params?}`` entries against a registry.

        Raises:
            ConfigurationError: On unknown rule names or invalid parameters.
        """
        wanted: dict[str, Mapping[str, Any]] = {}
        for entry in entries:
            name = entry.get("name")
            if not name:
                raise ConfigurationError(f"rule entry without a name: {dict(entry)!r}")
            if name not in registry:
                raise ConfigurationError(f"unknown rule {name!r}")
            wanted[name] = entry
        return cls(
            BoundRule.bind(rule, wanted[rule.name].get("level"), wanted[rule.name].get("params"))
            for rule in registry.all()
            if rule.name in wanted
        )

    def get(self, name: str) -> BoundRule | None:
        return self._by_name.get(name)

    def names(self) -> list[str]:
        return [b.name for b in self._rules]

    def __iter__(self) -> Iterator[BoundRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name
