"""
Situation store: the authoritative set of user answers.

Every write goes through SituationFilter. Entries that do not match the
catalog (unknown rule, unknown option) are dropped and reported, never
raised: situations are usually restored from storage written by an older
version of the rules.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from rules_adapter.engine import RuleEngine, names
from rules_adapter.engine.expressions import parse_number, strip_quotes
from rules_adapter.logger import logger
from rules_adapter.settings import settings

Situation = Mapping[str, Any]


class RejectionReason(str, Enum):
    """Why a situation entry was dropped."""
    UNKNOWN_RULE = "unknown_rule"
    UNKNOWN_OPTION = "unknown_option"
    DUPLICATE_RULE = "duplicate_rule"


@dataclass(frozen=True)
class RejectedAnswer:
    """
    A dropped situation entry.

    Attributes:
        name: Key as given by the caller
        value: Value as given by the caller
        reason: Why it was dropped
    """
    name: str
    value: Any
    reason: RejectionReason

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "value": self.value, "reason": self.reason.value}


@dataclass
class SituationFilterReport:
    """
    Outcome of filtering one candidate situation.

    Attributes:
        accepted: Keys kept, in candidate order
        rejected: Entries dropped, in candidate order
    """
    accepted: List[str] = field(default_factory=list)
    rejected: List[RejectedAnswer] = field(default_factory=list)

    @property
    def has_rejections(self) -> bool:
        return len(self.rejected) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accepted": list(self.accepted),
            "rejected": [r.to_dict() for r in self.rejected],
        }


class SituationFilter:
    """
    Checks candidate answers against the catalog.

    A string answer is valid when it is one of the boolean tokens, a number
    written as a string, or an option of the rule: `"<rule> . <value>"` must
    exist once a single leading and trailing quote are stripped. Other values
    (numbers, booleans, expressions) are only checked for a known key.

    Rules declaring `une possibilité` only take one of their options or a
    boolean token.

    Several spellings of one rule ("a.b", "a . b") keep the last one; the
    others are dropped as duplicates.
    """

    def __init__(self, catalog, yes_token: str, no_token: str):
        self.catalog = catalog
        self.yes_token = yes_token
        self.no_token = no_token

    def check(self, name: str, value: Any) -> Optional[RejectionReason]:
        """Return why the entry must be dropped, None when it is valid."""
        if not isinstance(name, str) or name not in self.catalog:
            return RejectionReason.UNKNOWN_RULE

        options = self.catalog[name].options
        if not isinstance(value, str):
            return RejectionReason.UNKNOWN_OPTION if options else None

        text = value.strip()
        if text in (self.yes_token, self.no_token):
            return None
        option = strip_quotes(text)
        if options:
            if option and names.normalize(option) in options:
                return None
            return RejectionReason.UNKNOWN_OPTION
        if parse_number(text) is not None:
            return None
        if option and names.join(name, option) in self.catalog:
            return None
        return RejectionReason.UNKNOWN_OPTION

    def filter(self, candidate: Optional[Mapping[str, Any]]) -> Tuple[Dict[str, Any], SituationFilterReport]:
        """
        Split a candidate situation into kept and dropped entries.

        Filtering is idempotent: filtering the kept entries again drops nothing.
        """
        entries = list((candidate or {}).items())
        last_spelling: Dict[str, str] = {}
        for name, _ in entries:
            if isinstance(name, str) and name in self.catalog:
                last_spelling[names.normalize(name)] = name

        report = SituationFilterReport()
        filtered: Dict[str, Any] = {}
        for name, value in entries:
            reason = self.check(name, value)
            if reason is None and last_spelling[names.normalize(name)] != name:
                reason = RejectionReason.DUPLICATE_RULE
            if reason is None:
                filtered[name] = value
                report.accepted.append(name)
            else:
                report.rejected.append(RejectedAnswer(name=name, value=value, reason=reason))
        return filtered, report


class SituationStore:
    """
    Holds the current situation and forwards it to the engine.

    Example:
        store = SituationStore(engine)
        store.set_situation({"prix": 12, "couleur": "'rouge'"})
        store.get_situation()   # read-only mapping
    """

    def __init__(
        self,
        engine: RuleEngine,
        yes_token: Optional[str] = None,
        no_token: Optional[str] = None,
        log_rejections: Optional[bool] = None,
    ):
        self.engine = engine
        self.filter = SituationFilter(
            engine.catalog,
            yes_token=yes_token or settings.get_nested("situation.yes_token", "oui"),
            no_token=no_token or settings.get_nested("situation.no_token", "non"),
        )
        if log_rejections is None:
            log_rejections = settings.get_nested("situation.log_rejections", True)
        self.log_rejections = log_rejections
        self._situation: Dict[str, Any] = {}
        self.last_report = SituationFilterReport()

    def get_situation(self) -> Situation:
        """Current situation as a read-only view of a private copy."""
        return MappingProxyType(dict(self._situation))

    def set_situation(
        self,
        candidate: Optional[Mapping[str, Any]] = None,
        keep_previous_situation: bool = False,
    ) -> Situation:
        """
        Replace the situation, or merge `candidate` over it.

        Invalid entries are dropped and recorded in `last_report`. The engine
        receives the full filtered situation; the snapshot only changes once
        the engine accepted it.

        Returns:
            The new situation (read-only)
        """
        merged: Dict[str, Any] = dict(self._situation) if keep_previous_situation else {}
        merged.update(candidate or {})

        filtered, report = self.filter.filter(merged)
        if self.log_rejections:
            for rejected in report.rejected:
                logger.warning(
                    "Situation entry dropped",
                    rule=rejected.name,
                    value=rejected.value,
                    reason=rejected.reason.value,
                )

        self.engine.set_situation(filtered)
        self._situation = filtered
        self.last_report = report

        logger.debug(
            "Situation updated",
            accepted=len(report.accepted),
            rejected=len(report.rejected),
            merged=keep_previous_situation,
        )
        return self.get_situation()

    def __len__(self) -> int:
        return len(self._situation)

    def __repr__(self) -> str:
        return f"SituationStore(answers={len(self._situation)})"
