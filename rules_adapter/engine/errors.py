"""
Exceptions raised by the rule engine.
"""

from typing import Any, List, Optional


class EngineError(Exception):
    """Base class for rule engine errors."""


class CatalogError(EngineError):
    """Raised when a rule definition is malformed."""

    def __init__(self, rule_name: str, reason: str):
        self.rule_name = rule_name
        self.reason = reason
        super().__init__(f"Invalid rule '{rule_name}': {reason}")


class UnknownRuleError(EngineError):
    """Raised when a rule name does not exist in the catalog."""

    def __init__(self, rule_name: str, context: Optional[str] = None):
        self.rule_name = rule_name
        self.context = context
        message = f"Unknown rule '{rule_name}'"
        if context:
            message += f" (referenced from '{context}')"
        super().__init__(message)


class ExpressionParseError(EngineError):
    """Raised when an expression cannot be parsed."""

    def __init__(self, expression: Any, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid expression {expression!r}: {reason}")


class CyclicReferenceError(EngineError):
    """Raised when rule evaluation loops back on itself."""

    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__("Cyclic reference: " + " -> ".join(cycle))
