"""
Rule engine: evaluates rules of a RuleCatalog against a situation.

Applicability follows these rules:
- a rule is not applicable when its parent is not applicable;
- a rule is not applicable when its parent is a question or a namespace
  whose value is `non` (parents with a formula only pass on applicability);
- `applicable si` must hold and `non applicable si` must not;
- when the deciding guard is still waiting for answers, applicability is
  undetermined (None).

A non applicable rule evaluates to None.

The engine is thread safe: situation changes and evaluations are serialized
on an internal lock, and each evaluation tracks its own cycle stack.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from rules_adapter.engine import names
from rules_adapter.engine.catalog import RawRule, RuleCatalog, RuleDefinition
from rules_adapter.engine.errors import CyclicReferenceError, UnknownRuleError
from rules_adapter.engine.expressions import (
    Evaluated,
    Expression,
    ExpressionParser,
    ParsedExpression,
    constant,
    merge_missing,
    parse_number,
    strip_quotes,
)
from rules_adapter.logger import logger
from rules_adapter.settings import settings

_VALUE = "value"
_APPLICABILITY = "applicability"

MemoKey = Tuple[str, str]


@dataclass(frozen=True)
class EngineResult:
    """
    Result of RuleEngine.evaluate().

    Attributes:
        node_value: Computed value, None when absent
        missing_variables: Unanswered question -> weight
    """
    node_value: Any = None
    missing_variables: Dict[str, int] = field(default_factory=dict)


@dataclass
class _CompiledRule:
    definition: RuleDefinition
    value: Optional[ParsedExpression] = None
    default: Optional[ParsedExpression] = None
    applicable_if: Optional[ParsedExpression] = None
    not_applicable_if: Optional[ParsedExpression] = None


class _EvaluationRun:
    """
    Scope of one evaluation: resolves rules through the engine memo and
    keeps the stack of rules being computed to detect cycles.
    """

    def __init__(
        self,
        rules: Dict[str, _CompiledRule],
        situation: Dict[str, ParsedExpression],
        memo: Dict[MemoKey, Evaluated],
    ):
        self.rules = rules
        self.situation = situation
        self.memo = memo
        self.stack: List[MemoKey] = []

    def _enter(self, key: MemoKey) -> None:
        if key in self.stack:
            cycle = [name for _, name in self.stack[self.stack.index(key):]] + [key[1]]
            raise CyclicReferenceError(cycle)
        self.stack.append(key)

    def _leave(self, key: MemoKey, result: Evaluated) -> Evaluated:
        self.stack.pop()
        self.memo[key] = result
        return result

    def evaluate_rule(self, name: str) -> Evaluated:
        key = (_VALUE, name)
        if key in self.memo:
            return self.memo[key]
        self._enter(key)

        rule = self.rules[name]
        applicability = self.applicability(name)
        if applicability.value is not True:
            return self._leave(key, Evaluated(None, applicability.missing))

        if name in self.situation:
            answer = self.situation[name].evaluate(self)
            result = Evaluated(answer.value, merge_missing(applicability, answer))
        elif rule.value is not None:
            computed = rule.value.evaluate(self)
            result = Evaluated(computed.value, merge_missing(applicability, computed))
        elif rule.definition.is_question:
            own = Evaluated(None, {name: 1})
            if rule.default is not None:
                default = rule.default.evaluate(self)
                result = Evaluated(default.value, merge_missing(applicability, own, default))
            else:
                result = Evaluated(None, merge_missing(applicability, own))
        else:
            # namespaces and options
            result = Evaluated(True, dict(applicability.missing))

        return self._leave(key, result)

    def applicability(self, name: str) -> Evaluated:
        key = (_APPLICABILITY, name)
        if key in self.memo:
            return self.memo[key]
        self._enter(key)

        rule = self.rules[name]
        seen: List[Evaluated] = []

        def verdict(value: Optional[bool]) -> Evaluated:
            return self._leave(key, Evaluated(value, merge_missing(*seen)))

        parent = names.parent(name)
        if parent is not None and parent in self.rules:
            parent_applicability = self.applicability(parent)
            seen.append(parent_applicability)
            if parent_applicability.value is not True:
                return verdict(parent_applicability.value)
            parent_rule = self.rules[parent]
            if parent in self.situation or parent_rule.value is None:
                parent_value = self.evaluate_rule(parent)
                seen.append(parent_value)
                if parent_value.value is False:
                    return verdict(False)
                if parent_value.value is None:
                    return verdict(None if parent_value.missing else False)

        if rule.applicable_if is not None:
            guard = rule.applicable_if.evaluate(self)
            seen.append(guard)
            truth = guard.truth()
            if truth is not True:
                return verdict(truth)

        if rule.not_applicable_if is not None:
            guard = rule.not_applicable_if.evaluate(self)
            seen.append(guard)
            truth = guard.truth()
            if truth is None:
                return verdict(None)
            if truth:
                return verdict(False)

        return verdict(True)


class RuleEngine:
    """
    Evaluates expressions over a catalog and the current situation.

    Example:
        engine = RuleEngine({"prix": {"question": "Prix ?"}, "total": "prix * 2"})
        engine.set_situation({"prix": 5})
        engine.evaluate("total").node_value   # 10
        engine.evaluate_name("total")         # same, without parsing the name
    """

    def __init__(
        self,
        rules: Union[RuleCatalog, Mapping[str, RawRule]],
        yes_token: Optional[str] = None,
        no_token: Optional[str] = None,
    ):
        self.catalog = rules if isinstance(rules, RuleCatalog) else RuleCatalog(dict(rules))
        self.yes_token = yes_token or settings.get_nested("situation.yes_token", "oui")
        self.no_token = no_token or settings.get_nested("situation.no_token", "non")
        self.parser = ExpressionParser(self.catalog, yes_token=self.yes_token, no_token=self.no_token)

        self._rules: Dict[str, _CompiledRule] = {}
        self._situation: Dict[str, ParsedExpression] = {}
        self._memo: Dict[MemoKey, Evaluated] = {}
        self._lock = threading.RLock()

        start = time.perf_counter()
        for name, definition in self.catalog.items():
            self._rules[name] = self._compile(definition)
        logger.debug(
            "Rules compiled",
            rules=len(self._rules),
            elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
        )

    def _compile(self, definition: RuleDefinition) -> _CompiledRule:
        def compile_expr(expression: Any) -> Optional[ParsedExpression]:
            if expression is None:
                return None
            return self.parser.parse(expression, context=definition.name)

        return _CompiledRule(
            definition=definition,
            value=compile_expr(definition.value),
            default=compile_expr(definition.default),
            applicable_if=compile_expr(definition.applicable_if),
            not_applicable_if=compile_expr(definition.not_applicable_if),
        )

    # ------------------------------------------------------------------
    # Situation
    # ------------------------------------------------------------------

    def set_situation(
        self,
        situation: Optional[Mapping[str, Any]] = None,
        keep_previous_situation: bool = False,
    ) -> "RuleEngine":
        """
        Replace (or merge into) the situation.

        Raises:
            UnknownRuleError: If a key is not a rule of the catalog
            ExpressionParseError: If a value is not a valid expression
        """
        with self._lock:
            parsed = dict(self._situation) if keep_previous_situation else {}
            for raw_name, value in (situation or {}).items():
                name = names.normalize(raw_name)
                if name not in self.catalog:
                    raise UnknownRuleError(raw_name)
                if value is None:
                    parsed.pop(name, None)
                    continue
                parsed[name] = self._parse_situation_value(name, value)

            self._situation = parsed
            self._memo.clear()
        return self

    def _parse_situation_value(self, name: str, value: Any) -> ParsedExpression:
        context = names.parent(name)
        if isinstance(value, str):
            text = value.strip()
            if text == self.yes_token or text == self.no_token:
                return self.parser.parse(text, context)
            option = strip_quotes(text)
            if text.startswith("'") or (option and names.join(name, option) in self.catalog):
                return constant(names.normalize(option), value, context)
            number = parse_number(text)
            if number is not None:
                return self.parser.parse(number, context)
        return self.parser.parse(value, context)

    @property
    def situation_names(self) -> List[str]:
        return list(self._situation)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _run(self) -> _EvaluationRun:
        return _EvaluationRun(self._rules, self._situation, self._memo)

    def evaluate(self, expression: Expression) -> EngineResult:
        """
        Evaluate an expression in the root namespace.

        Rule names are better evaluated with evaluate_name(): any text given
        here is read as a formula.

        Raises:
            UnknownRuleError: If the expression references an unknown rule
            ExpressionParseError: If the expression is malformed
            CyclicReferenceError: If rules depend on each other in a loop
        """
        parsed = self.parser.parse(expression)
        with self._lock:
            result = parsed.evaluate(self._run())
        return EngineResult(node_value=result.value, missing_variables=dict(result.missing))

    def _require_name(self, name: str) -> str:
        rule_name = names.normalize(name) if isinstance(name, str) else None
        if rule_name not in self._rules:
            raise UnknownRuleError(str(name))
        return rule_name

    def evaluate_name(self, name: str) -> EngineResult:
        """
        Evaluate a rule by name, whatever characters the name contains.

        Raises:
            UnknownRuleError: If the rule does not exist
            CyclicReferenceError: If rules depend on each other in a loop
        """
        rule_name = self._require_name(name)
        with self._lock:
            result = self._run().evaluate_rule(rule_name)
        return EngineResult(node_value=result.value, missing_variables=dict(result.missing))

    def applicability_of(self, name: str) -> EngineResult:
        """
        Applicability of a rule by name: True, False or None (undetermined).

        Raises:
            UnknownRuleError: If the rule does not exist
            CyclicReferenceError: If rules depend on each other in a loop
        """
        rule_name = self._require_name(name)
        with self._lock:
            result = self._run().applicability(rule_name)
        return EngineResult(node_value=result.value, missing_variables=dict(result.missing))

    def get_rule(self, name: str) -> RuleDefinition:
        """
        Raises:
            UnknownRuleError: If the rule does not exist
        """
        return self.catalog.require(name)

    def __repr__(self) -> str:
        return f"RuleEngine(rules={len(self._rules)}, situation={len(self._situation)})"
