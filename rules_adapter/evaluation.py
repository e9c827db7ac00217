"""
Evaluation coordinator: evaluates named rules against the current situation.

Each rule is reported as an EvaluatedRule:
- node_value: computed value, None when absent (never confused with 0 / False)
- applicability: True, False, or None while its guards wait for answers
- is_applicable: True only when applicability is exactly True
- missing_variables: unanswered questions blocking the value, most needed first

`is_nullable` is derived from those fields: the value is legitimately
absent (rule disabled, or resolved to nothing) rather than waiting for
answers. A rule whose applicability is undetermined is never nullable.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from rules_adapter.engine import RuleEngine, UnknownRuleError
from rules_adapter.logger import logger


@dataclass(frozen=True)
class EvaluatedRule:
    """
    Result of evaluating one rule.

    Attributes:
        node_value: Computed value, None when absent
        applicability: Whether the rule is in scope given its guards and parents,
            None while undetermined
        missing_variables: Unanswered questions, most needed first
    """
    node_value: Any
    applicability: Optional[bool]
    missing_variables: Tuple[str, ...] = ()

    @property
    def is_applicable(self) -> bool:
        return self.applicability is True

    @property
    def is_nullable(self) -> bool:
        """True when the absence of value is final, not pending answers."""
        if self.node_value is not None:
            return False
        if self.applicability is False:
            return True
        return not self.missing_variables

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_value": self.node_value,
            "is_applicable": self.is_applicable,
            "is_nullable": self.is_nullable,
            "missing_variables": list(self.missing_variables),
        }


@dataclass(frozen=True)
class EvaluationBatchResult:
    """
    Ordered (rule name, EvaluatedRule) pairs, in the order requested.

    Repeated names are kept.
    """
    items: Tuple[Tuple[str, EvaluatedRule], ...] = ()

    def __iter__(self) -> Iterator[Tuple[str, EvaluatedRule]]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __getitem__(self, index: int) -> Tuple[str, EvaluatedRule]:
        return self.items[index]

    def names(self) -> List[str]:
        return [name for name, _ in self.items]

    def get(self, name: str) -> Optional[EvaluatedRule]:
        """First result for `name`, None when it was not requested."""
        for item_name, result in self.items:
            if item_name == name:
                return result
        return None

    def to_list(self) -> List[List[Any]]:
        """JSON-friendly form: [[name, {...}], ...]"""
        return [[name, result.to_dict()] for name, result in self.items]


def _sorted_missing(missing: Dict[str, int]) -> Tuple[str, ...]:
    return tuple(name for name, _ in sorted(missing.items(), key=lambda item: (-item[1], item[0])))


class EvaluationCoordinator:
    """
    Evaluates rules through the engine and adds applicability metadata.

    Unknown rule names are caller errors and raise UnknownRuleError, unlike
    situation entries which are filtered.
    """

    def __init__(self, engine: RuleEngine):
        self.engine = engine

    def _require(self, target: str) -> None:
        if not isinstance(target, str) or target not in self.engine.catalog:
            raise UnknownRuleError(str(target))

    def _evaluate(self, target: str) -> EvaluatedRule:
        value = self.engine.evaluate_name(target)
        applicable = self.engine.applicability_of(target)

        missing = dict(value.missing_variables)
        for name, weight in applicable.missing_variables.items():
            missing[name] = missing.get(name, 0) + weight

        return EvaluatedRule(
            node_value=value.node_value,
            applicability=applicable.node_value,
            missing_variables=_sorted_missing(missing),
        )

    def evaluate_one(self, target: str) -> EvaluatedRule:
        """
        Evaluate one rule.

        Raises:
            UnknownRuleError: If `target` is not a rule of the catalog
        """
        self._require(target)
        return self._evaluate(target)

    def evaluate_many(self, targets: Sequence[str]) -> EvaluationBatchResult:
        """
        Evaluate rules in the given order, duplicates included.

        All names are checked before anything is evaluated.

        Raises:
            UnknownRuleError: If any target is not a rule of the catalog
        """
        targets = list(targets)
        for target in targets:
            self._require(target)

        start = time.perf_counter()
        batch = EvaluationBatchResult(
            items=tuple((target, self._evaluate(target)) for target in targets)
        )
        logger.metric(
            "evaluation_time_ms",
            round((time.perf_counter() - start) * 1000, 3),
            rules=len(targets),
        )
        return batch
