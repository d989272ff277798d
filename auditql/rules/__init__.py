"""Audit rules for auditql.

This module provides a composable, extensible rule system. Each rule
inspects one parsed statement, optionally consults the session context,
and reports findings at a configurable level.

Architecture:
    - Rule: Abstract base class every rule implements
    - RuleParam / BoundRule: Typed parameters validated at bind time
    - RuleRegistry: Explicit registry of available rules
    - RuleSet: The rules bound for one audit run
    - RuleEngine: Dispatches a RuleSet against statements

Usage:
    from auditql.rules import RuleEngine, RuleSet, build_default_registry

    registry = build_default_registry()
    engine = RuleEngine(RuleSet.default(registry))
"""

from .base import BoundRule, ConfigRule, ParamType, Rule, RuleCategory, RuleInput, RuleLevel, RuleParam
from .engine import DispatchMode, RuleEngine
from .registry import RuleRegistry, RuleSet, build_default_registry

__all__ = [
    "BoundRule",
    "ConfigRule",
    "DispatchMode",
    "ParamType",
    "Rule",
    "RuleCategory",
    "RuleEngine",
    "RuleInput",
    "RuleLevel",
    "RuleParam",
    "RuleRegistry",
    "RuleSet",
    "build_default_registry",
]
