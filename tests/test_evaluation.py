"""
Tests for EvaluationCoordinator and its result types.
"""

import pytest
from unittest.mock import patch

from rules_adapter.engine import RuleEngine, UnknownRuleError
from rules_adapter.evaluation import (
    EvaluatedRule,
    EvaluationBatchResult,
    EvaluationCoordinator,
)


@pytest.fixture
def coordinator(engine):
    return EvaluationCoordinator(engine)


class TestEvaluatedRule:
    """Tests for EvaluatedRule.is_nullable and serialization."""

    def test_value_present_is_not_nullable(self):
        assert not EvaluatedRule(node_value=0, applicability=True).is_nullable
        assert not EvaluatedRule(node_value=False, applicability=True).is_nullable

    def test_waiting_for_answers_is_not_nullable(self):
        assert not EvaluatedRule(None, True, ("q",)).is_nullable

    def test_resolved_to_nothing_is_nullable(self):
        assert EvaluatedRule(None, True, ()).is_nullable

    def test_not_applicable_is_nullable(self):
        assert EvaluatedRule(None, False, ("q",)).is_nullable

    def test_undetermined_applicability_is_not_nullable(self):
        """A guard still waiting for answers keeps the rule pending."""
        result = EvaluatedRule(None, None, ("q",))
        assert result.is_applicable is False
        assert not result.is_nullable

    def test_to_dict(self):
        result = EvaluatedRule(12, True, ("b", "a"))
        assert result.to_dict() == {
            "node_value": 12,
            "is_applicable": True,
            "is_nullable": False,
            "missing_variables": ["b", "a"],
        }


class TestEvaluateOne:
    """Single rule evaluation."""

    def test_unanswered_formula(self, coordinator):
        result = coordinator.evaluate_one("billet . total")
        assert result.node_value is None
        assert result.is_applicable is True
        assert result.missing_variables == ("billet . nombre", "billet . prix")
        assert not result.is_nullable

    def test_disabled_by_parent(self, coordinator):
        result = coordinator.evaluate_one("restauration . empreinte")
        assert result.node_value is None
        assert result.is_applicable is False
        assert result.missing_variables == ("restauration",)
        assert result.is_nullable

    def test_zero_value(self, coordinator):
        result = coordinator.evaluate_one("zéro")
        assert result == EvaluatedRule(node_value=0, applicability=True, missing_variables=())

    def test_default_guard(self, coordinator):
        result = coordinator.evaluate_one("b")
        assert result.node_value == 10
        assert result.is_applicable is True
        assert result.missing_variables == ("a",)

    def test_undetermined_applicability_is_not_applicable(self, coordinator):
        """Only an exact True counts as applicable."""
        result = coordinator.evaluate_one("couleur . rouge")
        assert result.applicability is None
        assert result.is_applicable is False
        assert result.missing_variables == ("couleur",)
        assert not result.is_nullable

    def test_undetermined_guard_is_pending(self):
        engine = RuleEngine({
            "a": {"question": "A ?"},
            "b": {"applicable si": "a", "valeur": 10},
        })
        result = EvaluationCoordinator(engine).evaluate_one("b")
        assert result.node_value is None
        assert result.applicability is None
        assert result.missing_variables == ("a",)
        assert result.is_nullable is False

        engine.set_situation({"a": "non"})
        result = EvaluationCoordinator(engine).evaluate_one("b")
        assert result.applicability is False
        assert result.is_nullable is True

    @pytest.mark.parametrize("name", ["vitesse en km/h", "coût en €", "total (kg)", "2024"])
    def test_names_are_not_read_as_formulas(self, name):
        engine = RuleEngine({name: 5})
        result = EvaluationCoordinator(engine).evaluate_one(name)
        assert result.node_value == 5
        assert result.is_applicable is True

    def test_numeric_rule_name_uses_its_formula(self):
        engine = RuleEngine({"2024": "3 * 2"})
        assert EvaluationCoordinator(engine).evaluate_one("2024").node_value == 6

    def test_answers_are_used(self, engine, coordinator):
        engine.set_situation({"billet . nombre": 2, "billet . prix": 15})
        result = coordinator.evaluate_one("billet . total")
        assert result.node_value == 30
        assert result.missing_variables == ()

    @pytest.mark.parametrize("target", ["inconnu", 42, None])
    def test_unknown_target(self, coordinator, target):
        with pytest.raises(UnknownRuleError):
            coordinator.evaluate_one(target)

    def test_missing_variables_most_needed_first(self):
        engine = RuleEngine({
            "z": {"question": "Z ?"},
            "a": {"question": "A ?"},
            "t": "z + z + a",
        })
        result = EvaluationCoordinator(engine).evaluate_one("t")
        assert result.missing_variables == ("z", "a")


class TestEvaluateMany:
    """Batch evaluation."""

    def test_keeps_requested_order_and_duplicates(self, coordinator):
        batch = coordinator.evaluate_many(["b", "zéro", "b", "billet . tarif"])
        assert batch.names() == ["b", "zéro", "b", "billet . tarif"]
        assert batch[0] == batch[2]
        assert batch[3][1].node_value == "abordable"

    def test_empty_batch(self, coordinator):
        batch = coordinator.evaluate_many([])
        assert len(batch) == 0
        assert batch.to_list() == []

    def test_sum_with_absent_terms(self, coordinator):
        result = coordinator.evaluate_many(["bilan"]).get("bilan")
        assert result.node_value == 0
        assert result.is_applicable is True
        assert "restauration" in result.missing_variables

    def test_unknown_target_fails_before_evaluating(self, engine, coordinator):
        with patch.object(engine, "evaluate_name", wraps=engine.evaluate_name) as evaluate:
            with pytest.raises(UnknownRuleError) as exc_info:
                coordinator.evaluate_many(["billet . total", "inconnu"])

        assert exc_info.value.rule_name == "inconnu"
        evaluate.assert_not_called()

    def test_deterministic(self, engine, coordinator):
        engine.set_situation({"billet . nombre": 3, "restauration": "oui"})
        targets = ["bilan", "billet . total", "restauration . empreinte"]
        assert coordinator.evaluate_many(targets) == coordinator.evaluate_many(targets)

    def test_accepts_any_sequence(self, coordinator):
        batch = coordinator.evaluate_many(("zéro",))
        assert isinstance(batch, EvaluationBatchResult)
        assert batch.get("zéro").node_value == 0
        assert batch.get("b") is None

    def test_to_list(self, coordinator):
        batch = coordinator.evaluate_many(["zéro"])
        assert batch.to_list() == [
            ["zéro", {"node_value": 0, "is_applicable": True, "is_nullable": False, "missing_variables": []}],
        ]

    def test_logs_evaluation_time(self, coordinator):
        with patch("rules_adapter.evaluation.logger") as mock_logger:
            coordinator.evaluate_many(["zéro", "b"])

        mock_logger.metric.assert_called_once()
        args, kwargs = mock_logger.metric.call_args
        assert args[0] == "evaluation_time_ms"
        assert kwargs["rules"] == 2
