"""
Expression parser for rule formulas, guards and situation values.

Expressions come from YAML and are compiled once into closures that are
evaluated against an EvaluationScope (one engine evaluation run).

Formats supported:
- Literals: 12, 2.5, oui, non, 'texte'
- Reference: "prix . réduit" (resolved from the current namespace outward)
- Infix: "prix * 0.5 + frais", "age >= 18", "couleur = 'rouge'", parentheses
- Mechanisms (mapping with a single key):
    {"toutes ces conditions": [...]}
    {"une de ces conditions": [...]}
    {"somme": [...]}
    {"le maximum de": [...]}, {"le minimum de": [...]}
    {"variations": [{"si": ..., "alors": ...}, {"sinon": ...}]}
    {"est applicable": "rule"}, {"est non applicable": "rule"}
    {"valeur": ...}
"""

import operator
import re
from dataclasses import dataclass, field
from typing import (
    Any, Callable, Dict, List, Optional, Protocol, Tuple, Union
)

from rules_adapter.engine import names
from rules_adapter.engine.errors import ExpressionParseError, UnknownRuleError


Expression = Union[str, int, float, bool, None, Dict[str, Any]]

ALL_OF = "toutes ces conditions"
ANY_OF = "une de ces conditions"
SUM = "somme"
MAXIMUM = "le maximum de"
MINIMUM = "le minimum de"
VARIATIONS = "variations"
IS_APPLICABLE = "est applicable"
IS_NOT_APPLICABLE = "est non applicable"
VALUE = "valeur"

MECHANISMS = (ALL_OF, ANY_OF, SUM, MAXIMUM, MINIMUM, VARIATIONS, IS_APPLICABLE, IS_NOT_APPLICABLE, VALUE)

_NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?$")
_REFERENCE_RE = re.compile(r"^[\w\s.'’\-%]+$")
# Binary operators need whitespace on both sides so that names such as
# "aller-retour" keep their dash
_SPLIT_RE = re.compile(r"(\(|\)|\s(?:>=|<=|!=|[+\-*/<>=])\s)")

_PRECEDENCE = {
    "<": 1, "<=": 1, ">": 1, ">=": 1, "=": 1, "!=": 1,
    "+": 2, "-": 2,
    "*": 3, "/": 3,
}

_ARITHMETIC: Dict[str, Callable[[Any, Any], Any]] = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
}

_COMPARISON: Dict[str, Callable[[Any, Any], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "=": operator.eq,
    "!=": operator.ne,
}


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_number(text: str) -> Optional[Union[int, float]]:
    """Parse a numeric literal, None when the text is not a number."""
    text = text.strip()
    if not _NUMBER_RE.match(text):
        return None
    return float(text) if "." in text else int(text)


def strip_quotes(text: str) -> str:
    """Remove a single leading and a single trailing quote."""
    if text.startswith("'"):
        text = text[1:]
    if text.endswith("'"):
        text = text[:-1]
    return text


@dataclass(frozen=True)
class Evaluated:
    """
    Value of an expression plus the unanswered questions it depends on.

    Attributes:
        value: Computed value, None when absent
        missing: Question name -> number of times it was needed
    """
    value: Any = None
    missing: Dict[str, int] = field(default_factory=dict)

    def truth(self) -> Optional[bool]:
        """
        Boolean reading of the value.

        Only `non` and absent values are falsy. An absent value that still
        waits for answers is undetermined (None).
        """
        if self.value is None:
            return None if self.missing else False
        if isinstance(self.value, bool):
            return self.value
        return True


def merge_missing(*items: Evaluated) -> Dict[str, int]:
    merged: Dict[str, int] = {}
    for item in items:
        for name, weight in item.missing.items():
            merged[name] = merged.get(name, 0) + weight
    return merged


class EvaluationScope(Protocol):
    """What a compiled expression needs from the engine."""

    def evaluate_rule(self, name: str) -> Evaluated:
        ...

    def applicability(self, name: str) -> Evaluated:
        ...


Evaluator = Callable[[EvaluationScope], Evaluated]


@dataclass
class ParsedExpression:
    """
    A compiled expression.

    Attributes:
        evaluator: Closure computing the expression in a scope
        source: Original expression (for debugging)
        context: Namespace the expression was written in
    """
    evaluator: Evaluator
    source: Any
    context: Optional[str] = None

    def evaluate(self, scope: EvaluationScope) -> Evaluated:
        return self.evaluator(scope)


def constant(value: Any, source: Any, context: Optional[str]) -> ParsedExpression:
    result = Evaluated(value)
    return ParsedExpression(evaluator=lambda scope: result, source=source, context=context)


class ExpressionParser:
    """
    Compiles expressions against a set of known rule names.

    Example:
        parser = ExpressionParser(catalog)
        expr = parser.parse("prix * 0.5", context="prix . réduit")
        result = expr.evaluate(engine)
    """

    def __init__(
        self,
        known_names,
        yes_token: str = "oui",
        no_token: str = "non",
    ):
        """
        Args:
            known_names: Container of normalized rule names (usually a RuleCatalog)
            yes_token: Literal read as True
            no_token: Literal read as False
        """
        self.known_names = known_names
        self.yes_token = yes_token
        self.no_token = no_token
        self._cache: Dict[str, ParsedExpression] = {}

    def parse(self, expression: Expression, context: Optional[str] = None) -> ParsedExpression:
        """
        Parse an expression written inside the `context` namespace.

        Raises:
            ExpressionParseError: If the expression is malformed
            UnknownRuleError: If a reference does not resolve
        """
        cache_key = repr((context, self._normalize_expression(expression)))
        if cache_key in self._cache:
            return self._cache[cache_key]

        parsed = self._parse_internal(expression, context)
        self._cache[cache_key] = parsed
        return parsed

    def _normalize_expression(self, expression: Any) -> Any:
        if isinstance(expression, dict):
            return {k: self._normalize_expression(v) for k, v in sorted(expression.items())}
        if isinstance(expression, list):
            return [self._normalize_expression(item) for item in expression]
        return expression

    def resolve(self, reference: str, context: Optional[str] = None) -> str:
        """
        Resolve a reference to a full rule name.

        Raises:
            UnknownRuleError: If no candidate exists
        """
        for candidate in names.candidates(reference, context):
            if candidate in self.known_names:
                return candidate
        raise UnknownRuleError(names.normalize(reference), context)

    def _parse_internal(self, expression: Any, context: Optional[str]) -> ParsedExpression:
        if expression is None or isinstance(expression, bool) or is_number(expression):
            return constant(expression, expression, context)

        if isinstance(expression, str):
            return self._parse_text(expression, context)

        if isinstance(expression, dict):
            if len(expression) != 1:
                raise ExpressionParseError(expression, "mechanism mapping must have exactly one key")
            (mechanism, operand), = expression.items()
            if mechanism in (ALL_OF, ANY_OF):
                return self._parse_condition_list(mechanism, operand, context)
            if mechanism in (SUM, MAXIMUM, MINIMUM):
                return self._parse_aggregate(mechanism, operand, context)
            if mechanism == VARIATIONS:
                return self._parse_variations(operand, context)
            if mechanism in (IS_APPLICABLE, IS_NOT_APPLICABLE):
                return self._parse_applicability(mechanism, operand, context)
            if mechanism == VALUE:
                return self._parse_internal(operand, context)
            raise ExpressionParseError(
                expression,
                f"unknown mechanism '{mechanism}', expected one of: {', '.join(MECHANISMS)}"
            )

        raise ExpressionParseError(
            expression,
            f"expected string, number or mapping, got {type(expression).__name__}"
        )

    # ------------------------------------------------------------------
    # Infix expressions
    # ------------------------------------------------------------------

    def _tokenize(self, text: str) -> List[Tuple[str, str]]:
        tokens = []
        for piece in _SPLIT_RE.split(text):
            stripped = piece.strip()
            if not stripped:
                continue
            if stripped == "(":
                tokens.append(("lparen", stripped))
            elif stripped == ")":
                tokens.append(("rparen", stripped))
            elif stripped in _PRECEDENCE and piece != stripped:
                tokens.append(("op", stripped))
            else:
                tokens.append(("operand", stripped))
        return tokens

    def _parse_text(self, text: str, context: Optional[str]) -> ParsedExpression:
        tokens = self._tokenize(text)
        if not tokens:
            raise ExpressionParseError(text, "empty expression")

        position = 0

        def parse_primary() -> ParsedExpression:
            nonlocal position
            if position >= len(tokens):
                raise ExpressionParseError(text, "unexpected end of expression")
            kind, value = tokens[position]
            position += 1
            if kind == "lparen":
                inner = parse_binary(0)
                if position >= len(tokens) or tokens[position][0] != "rparen":
                    raise ExpressionParseError(text, "missing closing parenthesis")
                position += 1
                return inner
            if kind == "operand":
                return self._parse_operand(value, context, text)
            raise ExpressionParseError(text, f"unexpected '{value}'")

        def parse_binary(min_precedence: int) -> ParsedExpression:
            nonlocal position
            left = parse_primary()
            while position < len(tokens):
                kind, op = tokens[position]
                if kind != "op" or _PRECEDENCE[op] < min_precedence:
                    break
                position += 1
                right = parse_binary(_PRECEDENCE[op] + 1)
                left = self._binary(op, left, right, context)
            return left

        parsed = parse_binary(0)
        if position != len(tokens):
            raise ExpressionParseError(text, f"unexpected '{tokens[position][1]}'")
        parsed.source = text
        return parsed

    def _parse_operand(self, token: str, context: Optional[str], text: str) -> ParsedExpression:
        if token == self.yes_token:
            return constant(True, token, context)
        if token == self.no_token:
            return constant(False, token, context)

        number = parse_number(token)
        if number is not None:
            return constant(number, token, context)

        if len(token) >= 2 and token.startswith("'") and token.endswith("'"):
            return constant(token[1:-1], token, context)

        if not _REFERENCE_RE.match(token):
            raise ExpressionParseError(text, f"invalid operand '{token}'")

        name = self.resolve(token, context)

        def evaluator(scope: EvaluationScope) -> Evaluated:
            return scope.evaluate_rule(name)

        return ParsedExpression(evaluator=evaluator, source=token, context=context)

    def _binary(
        self,
        op: str,
        left: ParsedExpression,
        right: ParsedExpression,
        context: Optional[str]
    ) -> ParsedExpression:
        def evaluator(scope: EvaluationScope) -> Evaluated:
            a = left.evaluate(scope)
            b = right.evaluate(scope)
            missing = merge_missing(a, b)
            if a.value is None or b.value is None:
                return Evaluated(None, missing)
            if op in _ARITHMETIC:
                if not (is_number(a.value) and is_number(b.value)):
                    return Evaluated(None, missing)
                if op == "/" and b.value == 0:
                    return Evaluated(None, missing)
                return Evaluated(_ARITHMETIC[op](a.value, b.value), missing)
            if op in ("=", "!="):
                return Evaluated(_COMPARISON[op](a.value, b.value), missing)
            if not (is_number(a.value) and is_number(b.value)):
                return Evaluated(None, missing)
            return Evaluated(_COMPARISON[op](a.value, b.value), missing)

        return ParsedExpression(
            evaluator=evaluator,
            source=(left.source, op, right.source),
            context=context,
        )

    # ------------------------------------------------------------------
    # Mechanisms
    # ------------------------------------------------------------------

    def _parse_list(self, mechanism: str, operands: Any, context: Optional[str]) -> List[ParsedExpression]:
        if not isinstance(operands, list) or not operands:
            raise ExpressionParseError({mechanism: operands}, f"'{mechanism}' value must be a non-empty list")
        return [self._parse_internal(op, context) for op in operands]

    def _parse_condition_list(self, mechanism: str, operands: Any, context: Optional[str]) -> ParsedExpression:
        parsed_operands = self._parse_list(mechanism, operands, context)
        # all: stop at the first False; any: stop at the first True
        deciding = mechanism == ANY_OF

        def evaluator(scope: EvaluationScope) -> Evaluated:
            seen: List[Evaluated] = []
            undetermined = False
            for parsed in parsed_operands:
                result = parsed.evaluate(scope)
                seen.append(result)
                truth = result.truth()
                if truth is deciding:
                    return Evaluated(deciding, merge_missing(*seen))
                if truth is None:
                    undetermined = True
            value = None if undetermined else (not deciding)
            return Evaluated(value, merge_missing(*seen))

        return ParsedExpression(
            evaluator=evaluator,
            source={mechanism: operands},
            context=context,
        )

    def _parse_aggregate(self, mechanism: str, operands: Any, context: Optional[str]) -> ParsedExpression:
        parsed_operands = self._parse_list(mechanism, operands, context)

        def evaluator(scope: EvaluationScope) -> Evaluated:
            results = [parsed.evaluate(scope) for parsed in parsed_operands]
            missing = merge_missing(*results)
            numbers = [r.value for r in results if is_number(r.value)]
            if mechanism == SUM:
                # absent terms count as zero
                return Evaluated(sum(numbers), missing)
            if not numbers:
                return Evaluated(None, missing)
            pick = max if mechanism == MAXIMUM else min
            return Evaluated(pick(numbers), missing)

        return ParsedExpression(
            evaluator=evaluator,
            source={mechanism: operands},
            context=context,
        )

    def _parse_variations(self, branches: Any, context: Optional[str]) -> ParsedExpression:
        if not isinstance(branches, list) or not branches:
            raise ExpressionParseError({VARIATIONS: branches}, "'variations' value must be a non-empty list")

        compiled: List[Tuple[Optional[ParsedExpression], ParsedExpression]] = []
        for index, branch in enumerate(branches):
            if not isinstance(branch, dict):
                raise ExpressionParseError(branch, "variation must be a mapping")
            if "sinon" in branch:
                if index != len(branches) - 1 or len(branch) != 1:
                    raise ExpressionParseError(branch, "'sinon' must be the last variation, alone")
                compiled.append((None, self._parse_internal(branch["sinon"], context)))
            elif set(branch) == {"si", "alors"}:
                compiled.append((
                    self._parse_internal(branch["si"], context),
                    self._parse_internal(branch["alors"], context),
                ))
            else:
                raise ExpressionParseError(branch, "variation needs 'si' and 'alors', or 'sinon'")

        def evaluator(scope: EvaluationScope) -> Evaluated:
            seen: List[Evaluated] = []
            for condition, consequence in compiled:
                if condition is not None:
                    test = condition.evaluate(scope)
                    seen.append(test)
                    truth = test.truth()
                    if truth is None:
                        return Evaluated(None, merge_missing(*seen))
                    if not truth:
                        continue
                result = consequence.evaluate(scope)
                return Evaluated(result.value, merge_missing(*seen, result))
            return Evaluated(None, merge_missing(*seen))

        return ParsedExpression(
            evaluator=evaluator,
            source={VARIATIONS: branches},
            context=context,
        )

    def _parse_applicability(self, mechanism: str, operand: Any, context: Optional[str]) -> ParsedExpression:
        if not isinstance(operand, str):
            raise ExpressionParseError({mechanism: operand}, f"'{mechanism}' expects a rule name")
        name = self.resolve(operand, context)
        negate = mechanism == IS_NOT_APPLICABLE

        def evaluator(scope: EvaluationScope) -> Evaluated:
            result = scope.applicability(name)
            if negate and result.value is not None:
                return Evaluated(not result.value, result.missing)
            return result

        return ParsedExpression(
            evaluator=evaluator,
            source={mechanism: operand},
            context=context,
        )

    def clear_cache(self) -> None:
        self._cache.clear()

    def get_cache_stats(self) -> Dict[str, Any]:
        return {"cache_size": len(self._cache)}

    def __repr__(self) -> str:
        return f"ExpressionParser(cached={len(self._cache)})"


__all__ = [
    "Evaluated",
    "EvaluationScope",
    "constant",
    "Expression",
    "ExpressionParser",
    "ParsedExpression",
    "merge_missing",
    "parse_number",
    "strip_quotes",
    "is_number",
]
