"""
Rule catalog: the immutable set of named rule definitions.

Rules are given as a mapping from dotted name to definition, usually loaded
from YAML:

    prix:
      question: Quel est le prix du billet ?
      par défaut: 10
    prix . réduit:
      applicable si: étudiant
      valeur: prix * 0.5
    couleur:
      question: Quelle couleur ?
      une possibilité: [rouge, bleu]
    couleur . rouge:
    couleur . bleu:

A scalar body is shorthand for `valeur`; an empty body declares a namespace
(or an option) whose value is `oui`.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import yaml

from rules_adapter.engine import names
from rules_adapter.engine.errors import CatalogError, UnknownRuleError

# Definition keys
VALUE_KEYS = ("valeur", "formule")
QUESTION_KEY = "question"
DEFAULT_KEY = "par défaut"
APPLICABLE_IF_KEY = "applicable si"
NOT_APPLICABLE_IF_KEY = "non applicable si"
POSSIBILITY_KEY = "une possibilité"
POSSIBILITIES_KEY = "possibilités"
METADATA_KEYS = ("titre", "description", "unité", "note", "références")

KNOWN_KEYS = frozenset(
    VALUE_KEYS
    + (QUESTION_KEY, DEFAULT_KEY, APPLICABLE_IF_KEY, NOT_APPLICABLE_IF_KEY, POSSIBILITY_KEY)
    + METADATA_KEYS
)

RawRule = Union[Dict[str, Any], str, int, float, bool, None]


@dataclass(frozen=True)
class RuleDefinition:
    """
    A parsed rule definition.

    Attributes:
        name: Normalized dotted name
        value: Formula expression (None when the rule is a question or namespace)
        question: Question text, set for rules answered by the user
        default: Expression used while a question is unanswered
        applicable_if: Guard that must hold for the rule to be applicable
        not_applicable_if: Guard that disables the rule when it holds
        options: Option names for multi-choice questions
        title: Human readable title
        description: Longer description
        unit: Unit of the computed value
    """
    name: str
    value: Any = None
    question: Optional[str] = None
    default: Any = None
    applicable_if: Any = None
    not_applicable_if: Any = None
    options: Tuple[str, ...] = ()
    title: Optional[str] = None
    description: Optional[str] = None
    unit: Optional[str] = None
    raw: Any = field(default=None, compare=False, repr=False)

    @property
    def is_question(self) -> bool:
        return self.question is not None

    @property
    def has_value(self) -> bool:
        return self.value is not None

    @property
    def has_default(self) -> bool:
        return self.default is not None

    @property
    def parent(self) -> Optional[str]:
        return names.parent(self.name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "question": self.question,
            "options": list(self.options),
            "unit": self.unit,
        }


def _parse_options(name: str, body: Any) -> Tuple[str, ...]:
    if isinstance(body, dict):
        body = body.get(POSSIBILITIES_KEY)
    if not isinstance(body, list) or not body:
        raise CatalogError(name, f"'{POSSIBILITY_KEY}' must be a non-empty list of options")
    options = []
    for option in body:
        if not isinstance(option, str) or not option.strip():
            raise CatalogError(name, f"invalid option {option!r}")
        options.append(names.normalize(option))
    return tuple(options)


def parse_rule(name: str, body: RawRule) -> RuleDefinition:
    """
    Parse one raw rule body.

    Raises:
        CatalogError: If the body has an unsupported shape or unknown keys
    """
    name = names.normalize(name)

    if body is None:
        return RuleDefinition(name=name, raw=body)

    if isinstance(body, (str, int, float, bool)):
        return RuleDefinition(name=name, value=body, raw=body)

    if not isinstance(body, dict):
        raise CatalogError(name, f"expected mapping or scalar, got {type(body).__name__}")

    unknown = sorted(set(body) - KNOWN_KEYS)
    if unknown:
        raise CatalogError(name, f"unknown keys: {', '.join(unknown)}")

    values = [key for key in VALUE_KEYS if key in body]
    if len(values) > 1:
        raise CatalogError(name, "'valeur' and 'formule' are mutually exclusive")

    question = body.get(QUESTION_KEY)
    if question is not None and not isinstance(question, str):
        raise CatalogError(name, "'question' must be a string")

    options: Tuple[str, ...] = ()
    if POSSIBILITY_KEY in body:
        options = _parse_options(name, body[POSSIBILITY_KEY])

    return RuleDefinition(
        name=name,
        value=body[values[0]] if values else None,
        question=question,
        default=body.get(DEFAULT_KEY),
        applicable_if=body.get(APPLICABLE_IF_KEY),
        not_applicable_if=body.get(NOT_APPLICABLE_IF_KEY),
        options=options,
        title=body.get("titre"),
        description=body.get("description"),
        unit=body.get("unité"),
        raw=body,
    )


class RuleCatalog(Mapping):
    """
    Immutable mapping from rule name to RuleDefinition.

    Example:
        catalog = RuleCatalog({"a": 1, "b": "a + 1"})
        catalog.has("b")          # True
        catalog["b"].value        # "a + 1"
    """

    def __init__(self, rules: Optional[Dict[str, RawRule]] = None):
        self._rules: Dict[str, RuleDefinition] = {}
        for raw_name, body in (rules or {}).items():
            if not isinstance(raw_name, str) or not raw_name.strip():
                raise CatalogError(str(raw_name), "rule names must be non-empty strings")
            rule = parse_rule(raw_name, body)
            if rule.name in self._rules:
                raise CatalogError(rule.name, "defined twice")
            self._rules[rule.name] = rule
        self._check_options()

    def _check_options(self) -> None:
        for rule in self._rules.values():
            for option in rule.options:
                if names.join(rule.name, option) not in self._rules:
                    raise CatalogError(
                        rule.name,
                        f"option '{option}' has no rule '{names.join(rule.name, option)}'"
                    )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "RuleCatalog":
        """Load a catalog from a YAML file."""
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise CatalogError(str(path), "rules file must contain a mapping")
        return cls(data)

    def __getitem__(self, name: str) -> RuleDefinition:
        return self._rules[names.normalize(name)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and names.normalize(name) in self._rules

    def has(self, name: str) -> bool:
        """Check if a rule exists."""
        return name in self

    def require(self, name: str) -> RuleDefinition:
        """
        Get a rule or fail.

        Raises:
            UnknownRuleError: If the rule does not exist
        """
        if name not in self:
            raise UnknownRuleError(name)
        return self[name]

    def names(self) -> List[str]:
        return list(self._rules)

    def questions(self) -> List[str]:
        """Names of the rules answered by the user."""
        return [name for name, rule in self._rules.items() if rule.is_question]

    def children(self, name: str) -> List[str]:
        """Direct children of a rule."""
        name = names.normalize(name)
        return [child for child in self._rules if names.parent(child) == name]

    def __repr__(self) -> str:
        return f"RuleCatalog(rules={len(self._rules)})"
