"""
rules_adapter: situation synchronization and batch evaluation for a
declarative rule engine.

Key Components:
- RulesAdapter: public entry point (load, situation, evaluation, consumer)
- SituationStore / SituationFilter: validated answers
- EvaluationCoordinator: values plus applicability metadata
- AdapterEventBus: one-way notifications to the consumer
- rules_adapter.engine: rule catalog and evaluation engine
"""

from .adapter import AdapterNotInitializedError, RulesAdapter
from .engine import (
    CatalogError,
    EngineError,
    ExpressionParseError,
    RuleCatalog,
    RuleEngine,
    UnknownRuleError,
)
from .evaluation import EvaluatedRule, EvaluationBatchResult, EvaluationCoordinator
from .notifications import (
    AdapterEvent,
    AdapterEventBus,
    CallbackConsumer,
    EventRecorder,
    EventType,
    NotificationChannel,
    NullChannel,
    RulesEvaluatedEvent,
    SituationChangedEvent,
    SituationConsumer,
)
from .situation import (
    RejectedAnswer,
    RejectionReason,
    SituationFilter,
    SituationFilterReport,
    SituationStore,
)

__version__ = "0.1.0"

__all__ = [
    "AdapterEvent",
    "AdapterEventBus",
    "AdapterNotInitializedError",
    "CallbackConsumer",
    "CatalogError",
    "EngineError",
    "EvaluatedRule",
    "EvaluationBatchResult",
    "EvaluationCoordinator",
    "EventRecorder",
    "EventType",
    "ExpressionParseError",
    "NotificationChannel",
    "NullChannel",
    "RejectedAnswer",
    "RejectionReason",
    "RuleCatalog",
    "RuleEngine",
    "RulesAdapter",
    "RulesEvaluatedEvent",
    "SituationChangedEvent",
    "SituationConsumer",
    "SituationFilter",
    "SituationFilterReport",
    "SituationStore",
    "UnknownRuleError",
]
