"""
RulesAdapter: public entry point of the package.

Wires the rule engine, the situation store, the evaluation coordinator and
the notification channel together.

Usage:
    adapter = RulesAdapter(rules, situation=saved_situation)
    adapter.attach(CallbackConsumer(situation_changed=refresh, rules_evaluated=render))

    adapter.update_answer("prix", 12)
    batch = adapter.evaluate_many(["total", "total . réduit"])

Async construction (rules are compiled on a worker thread):
    adapter = await RulesAdapter.create_async(rules, situation)
"""

import asyncio
import threading
import time
from typing import Any, Mapping, Optional, Sequence, Union

from rules_adapter.engine import RawRule, RuleCatalog, RuleEngine
from rules_adapter.evaluation import EvaluatedRule, EvaluationBatchResult, EvaluationCoordinator
from rules_adapter.logger import logger
from rules_adapter.notifications import (
    AdapterEventBus,
    EventType,
    NotificationChannel,
    RulesEvaluatedEvent,
    SituationChangedEvent,
    SituationConsumer,
)
from rules_adapter.settings import settings
from rules_adapter.situation import Situation, SituationFilterReport, SituationStore

Rules = Union[RuleCatalog, Mapping[str, RawRule]]


class AdapterNotInitializedError(RuntimeError):
    """Raised when the adapter is used before its rules are loaded."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Cannot {operation}: rules are not loaded yet")


class RulesAdapter:
    """
    Situation synchronization and batch evaluation over a rule engine.

    The adapter holds the engine rather than extending it: validation and
    notifications are layered around plain engine calls.

    Until a consumer is attached the adapter runs detached: situation updates
    and evaluations work, notifications go nowhere.

    Public operations are serialized on a reentrant lock, so consumers may
    call back into the adapter from the notification worker thread.
    """

    def __init__(
        self,
        rules: Optional[Rules] = None,
        situation: Optional[Mapping[str, Any]] = None,
        channel: Optional[NotificationChannel] = None,
    ):
        """
        Args:
            rules: Catalog or raw rule definitions; None defers loading to
                load() / load_async()
            situation: Initial situation (filtered like any update)
            channel: Where notifications go (defaults to an AdapterEventBus)
        """
        if channel is None:
            channel = AdapterEventBus(
                async_mode=settings.get_nested("events.async_mode", False),
                history_size=settings.get_nested("events.history_size", 100),
            )
        self.channel = channel
        self._consumer: Optional[SituationConsumer] = None
        self._lock = threading.RLock()

        self._engine: Optional[RuleEngine] = None
        self._store: Optional[SituationStore] = None
        self._coordinator: Optional[EvaluationCoordinator] = None

        if rules is not None:
            self.load(rules, situation)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @staticmethod
    def _build_engine(rules: Rules) -> RuleEngine:
        start = time.perf_counter()
        engine = RuleEngine(rules)
        if settings.get_nested("engine.log_parsing_time", True):
            logger.info(
                f"[rules:parsing] {len(engine.catalog)} rules",
                elapsed_ms=round((time.perf_counter() - start) * 1000, 2),
            )
        return engine

    def _install(self, engine: RuleEngine, situation: Optional[Mapping[str, Any]]) -> None:
        store = SituationStore(engine)
        store.set_situation(situation or {})
        with self._lock:
            self._engine = engine
            self._store = store
            self._coordinator = EvaluationCoordinator(engine)

    def load(self, rules: Rules, situation: Optional[Mapping[str, Any]] = None) -> "RulesAdapter":
        """Compile the rules and install the initial situation."""
        self._install(self._build_engine(rules), situation)
        return self

    async def load_async(self, rules: Rules, situation: Optional[Mapping[str, Any]] = None) -> "RulesAdapter":
        """Same as load(), compiling the rules on a worker thread."""
        engine = await asyncio.to_thread(self._build_engine, rules)
        self._install(engine, situation)
        return self

    @classmethod
    async def create_async(
        cls,
        rules: Rules,
        situation: Optional[Mapping[str, Any]] = None,
        channel: Optional[NotificationChannel] = None,
    ) -> "RulesAdapter":
        """Build a fully loaded adapter without blocking the event loop."""
        adapter = cls(channel=channel)
        return await adapter.load_async(rules, situation)

    @property
    def is_ready(self) -> bool:
        return self._engine is not None

    def _require_ready(self, operation: str) -> None:
        if not self.is_ready:
            raise AdapterNotInitializedError(operation)

    @property
    def engine(self) -> RuleEngine:
        self._require_ready("access the engine")
        return self._engine

    @property
    def catalog(self) -> RuleCatalog:
        self._require_ready("access the catalog")
        return self._engine.catalog

    def close(self) -> None:
        """Stop the notification worker, if any."""
        if isinstance(self.channel, AdapterEventBus):
            self.channel.stop()

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------

    def attach(self, consumer: SituationConsumer) -> None:
        """
        Attach the external consumer (replaces the previous one).

        Raises:
            TypeError: If the channel is not an AdapterEventBus
        """
        if not isinstance(self.channel, AdapterEventBus):
            raise TypeError("attach() needs an AdapterEventBus channel")
        self.detach()
        self.channel.subscribe(EventType.SITUATION_CHANGED, consumer.on_situation_changed)
        self.channel.subscribe(EventType.RULES_EVALUATED, consumer.on_rules_evaluated)
        self._consumer = consumer
        logger.debug("Consumer attached", consumer=type(consumer).__name__)

    def detach(self) -> None:
        """Detach the consumer; notifications are dropped afterwards."""
        if self._consumer is None:
            return
        self.channel.unsubscribe(EventType.SITUATION_CHANGED, self._consumer.on_situation_changed)
        self.channel.unsubscribe(EventType.RULES_EVALUATED, self._consumer.on_rules_evaluated)
        self._consumer = None

    @property
    def is_attached(self) -> bool:
        return self._consumer is not None

    # ------------------------------------------------------------------
    # Situation
    # ------------------------------------------------------------------

    def get_situation(self) -> Situation:
        self._require_ready("read the situation")
        with self._lock:
            return self._store.get_situation()

    def set_situation(
        self,
        situation: Optional[Mapping[str, Any]] = None,
        keep_previous_situation: bool = False,
    ) -> Situation:
        """
        Replace (or merge into) the situation, then notify the consumer.

        Unknown rules and unknown options are dropped; see last_report.
        """
        self._require_ready("set the situation")
        with self._lock:
            result = self._store.set_situation(situation, keep_previous_situation=keep_previous_situation)
            self.channel.publish(SituationChangedEvent())
        return result

    def update_answer(self, name: str, value: Any) -> Situation:
        """Overlay one answer on the current situation."""
        self._require_ready("update an answer")
        with self._lock:
            situation = dict(self._store.get_situation())
            situation[name] = value
            return self.set_situation(situation)

    @property
    def last_report(self) -> SituationFilterReport:
        """Filtering report of the latest situation update."""
        self._require_ready("read the filter report")
        with self._lock:
            return self._store.last_report

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, target: str) -> EvaluatedRule:
        """
        Evaluate one rule. Nothing is published.

        Raises:
            UnknownRuleError: If `target` is not a rule of the catalog
        """
        self._require_ready("evaluate")
        with self._lock:
            return self._coordinator.evaluate_one(target)

    def evaluate_many(self, targets: Sequence[str]) -> EvaluationBatchResult:
        """
        Evaluate rules in order and publish the batch.

        Raises:
            UnknownRuleError: If any target is not a rule of the catalog
        """
        self._require_ready("evaluate")
        with self._lock:
            batch = self._coordinator.evaluate_many(targets)
            self.channel.publish(RulesEvaluatedEvent(batch))
        return batch

    def __repr__(self) -> str:
        if not self.is_ready:
            return "RulesAdapter(ready=False)"
        return (
            f"RulesAdapter(rules={len(self._engine.catalog)}, "
            f"answers={len(self._store)}, attached={self.is_attached})"
        )
