"""
Rule engine used by the adapter.

Key Components:
- RuleCatalog: immutable set of named rule definitions
- ExpressionParser: compiles formulas and guards
- RuleEngine: evaluates rules against a situation
"""

from .errors import (
    CatalogError,
    CyclicReferenceError,
    EngineError,
    ExpressionParseError,
    UnknownRuleError,
)
from .catalog import RawRule, RuleCatalog, RuleDefinition
from .expressions import Evaluated, ExpressionParser, ParsedExpression
from .engine import EngineResult, RuleEngine

__all__ = [
    "CatalogError",
    "CyclicReferenceError",
    "EngineError",
    "EngineResult",
    "Evaluated",
    "ExpressionParseError",
    "ExpressionParser",
    "ParsedExpression",
    "RawRule",
    "RuleCatalog",
    "RuleDefinition",
    "RuleEngine",
    "UnknownRuleError",
]
