"""
Tests for SituationFilter and SituationStore.

These tests verify:
1. Unknown rules and unknown options are dropped, never raised
2. The filter report lists accepted and rejected entries in order
3. Filtering is idempotent
4. Snapshots are read-only and never change after being returned
5. The engine always sees the filtered situation
"""

import pytest
from unittest.mock import patch

from rules_adapter.engine.errors import ExpressionParseError
from rules_adapter.situation import (
    RejectedAnswer,
    RejectionReason,
    SituationFilter,
    SituationFilterReport,
    SituationStore,
)


@pytest.fixture
def situation_filter(catalog):
    return SituationFilter(catalog, yes_token="oui", no_token="non")


@pytest.fixture
def store(engine):
    return SituationStore(engine, yes_token="oui", no_token="non", log_rejections=True)


# =============================================================================
# FILTER
# =============================================================================

class TestSituationFilter:
    """Tests for SituationFilter.check / filter."""

    @pytest.mark.parametrize("name,value", [
        ("billet . nombre", 3),
        ("billet . nombre", "3"),
        ("billet . prix", "12.5"),
        ("restauration", "oui"),
        ("restauration", "non"),
        ("restauration", True),
        ("couleur", "rouge"),
        ("couleur", "'rouge'"),
        ("couleur", " bleu "),
        ("billet.nombre", 2),
    ])
    def test_valid_entries(self, situation_filter, name, value):
        """Numbers, boolean tokens and known options are kept."""
        assert situation_filter.check(name, value) is None

    def test_unknown_rule(self, situation_filter):
        assert situation_filter.check("inconnu", 1) == RejectionReason.UNKNOWN_RULE

    def test_non_string_key(self, situation_filter):
        assert situation_filter.check(42, 1) == RejectionReason.UNKNOWN_RULE

    @pytest.mark.parametrize("value", ["vert", "'vert'", "rouge foncé", "", "''"])
    def test_unknown_option(self, situation_filter, value):
        assert situation_filter.check("couleur", value) == RejectionReason.UNKNOWN_OPTION

    def test_free_text_on_numeric_question(self, situation_filter):
        """A string that is neither token, number nor option is dropped."""
        assert situation_filter.check("billet . nombre", "beaucoup") == RejectionReason.UNKNOWN_OPTION

    @pytest.mark.parametrize("value", ["5", "12.5", 5, True])
    def test_choice_question_takes_only_options(self, situation_filter, value):
        assert situation_filter.check("couleur", value) == RejectionReason.UNKNOWN_OPTION

    @pytest.mark.parametrize("value", ["oui", "non"])
    def test_choice_question_takes_boolean_tokens(self, situation_filter, value):
        assert situation_filter.check("couleur", value) is None

    def test_last_spelling_wins(self, situation_filter):
        filtered, report = situation_filter.filter({"billet.nombre": 1, "billet . nombre": 2})
        assert filtered == {"billet . nombre": 2}
        assert report.accepted == ["billet . nombre"]
        assert report.rejected == [
            RejectedAnswer("billet.nombre", 1, RejectionReason.DUPLICATE_RULE),
        ]

    def test_filter_report_keeps_candidate_order(self, situation_filter):
        filtered, report = situation_filter.filter({
            "inconnu": 1,
            "billet . nombre": 3,
            "couleur": "vert",
            "couleur . rouge": "oui",
        })

        assert filtered == {"billet . nombre": 3, "couleur . rouge": "oui"}
        assert report.accepted == ["billet . nombre", "couleur . rouge"]
        assert report.rejected == [
            RejectedAnswer("inconnu", 1, RejectionReason.UNKNOWN_RULE),
            RejectedAnswer("couleur", "vert", RejectionReason.UNKNOWN_OPTION),
        ]
        assert report.has_rejections

    def test_filter_is_idempotent(self, situation_filter):
        candidate = {"inconnu": 1, "couleur": "'bleu'", "a": "non", "billet . prix": "vert"}
        filtered, _ = situation_filter.filter(candidate)
        again, report = situation_filter.filter(filtered)
        assert again == filtered
        assert not report.has_rejections

    def test_filter_empty(self, situation_filter):
        filtered, report = situation_filter.filter(None)
        assert filtered == {}
        assert report == SituationFilterReport()

    def test_report_to_dict(self, situation_filter):
        _, report = situation_filter.filter({"couleur": "vert"})
        assert report.to_dict() == {
            "accepted": [],
            "rejected": [{"name": "couleur", "value": "vert", "reason": "unknown_option"}],
        }


# =============================================================================
# STORE
# =============================================================================

class TestSituationStore:
    """Tests for SituationStore."""

    def test_starts_empty(self, store):
        assert dict(store.get_situation()) == {}
        assert len(store) == 0

    def test_set_situation_drops_invalid_entries(self, store, engine):
        result = store.set_situation({"billet . nombre": 3, "couleur": "vert", "inconnu": 2})

        assert dict(result) == {"billet . nombre": 3}
        assert [r.name for r in store.last_report.rejected] == ["couleur", "inconnu"]
        assert engine.situation_names == ["billet . nombre"]
        assert engine.evaluate("billet . total").node_value == 30

    def test_replace_by_default(self, store):
        store.set_situation({"billet . nombre": 3})
        store.set_situation({"billet . prix": 5})
        assert dict(store.get_situation()) == {"billet . prix": 5}

    def test_keep_previous_situation(self, store, engine):
        store.set_situation({"billet . nombre": 3})
        store.set_situation({"billet . prix": 5}, keep_previous_situation=True)
        assert dict(store.get_situation()) == {"billet . nombre": 3, "billet . prix": 5}
        assert engine.evaluate("billet . total").node_value == 15

    def test_keys_keep_caller_spelling(self, store, engine):
        store.set_situation({"billet.nombre": 2})
        assert list(store.get_situation()) == ["billet.nombre"]
        assert engine.evaluate("billet . nombre").node_value == 2

    def test_numeric_string_on_choice_question_is_dropped(self, store, engine):
        result = store.set_situation({"couleur": "5"})
        assert dict(result) == {}
        assert store.last_report.rejected[0].reason == RejectionReason.UNKNOWN_OPTION
        assert engine.evaluate("couleur").node_value is None

    def test_one_entry_per_rule(self, store, engine):
        store.set_situation({"billet . nombre": 1})
        result = store.set_situation({"billet.nombre": 2}, keep_previous_situation=True)
        assert dict(result) == {"billet.nombre": 2}
        assert engine.evaluate("billet . nombre").node_value == 2

        result = store.set_situation({"billet.nombre": 1, "billet . nombre": 3})
        assert dict(result) == {"billet . nombre": 3}
        assert engine.evaluate("billet . nombre").node_value == 3

    def test_snapshot_is_read_only(self, store):
        situation = store.set_situation({"billet . nombre": 3})
        with pytest.raises(TypeError):
            situation["billet . prix"] = 4

    def test_snapshot_does_not_follow_updates(self, store):
        before = store.set_situation({"billet . nombre": 3})
        store.set_situation({"billet . nombre": 4})
        assert before["billet . nombre"] == 3
        assert store.get_situation()["billet . nombre"] == 4

    def test_caller_mapping_is_copied(self, store):
        candidate = {"billet . nombre": 3}
        store.set_situation(candidate)
        candidate["billet . nombre"] = 99
        assert store.get_situation()["billet . nombre"] == 3

    def test_empty_update_clears_situation(self, store, engine):
        store.set_situation({"billet . nombre": 3})
        store.set_situation({})
        assert len(store) == 0
        assert engine.situation_names == []

    def test_engine_failure_keeps_previous_situation(self, store, engine):
        """A value the engine cannot parse leaves the store untouched."""
        store.set_situation({"billet . nombre": 3})
        with pytest.raises(ExpressionParseError):
            store.set_situation({"billet . prix": {"produit": [1, 2]}})

        assert dict(store.get_situation()) == {"billet . nombre": 3}
        assert engine.evaluate("billet . total").node_value == 30

    def test_rejections_are_logged(self, store):
        with patch("rules_adapter.situation.logger") as mock_logger:
            store.set_situation({"inconnu": 1, "billet . nombre": 2})

        mock_logger.warning.assert_called_once()
        kwargs = mock_logger.warning.call_args.kwargs
        assert kwargs["rule"] == "inconnu"
        assert kwargs["reason"] == "unknown_rule"

    def test_rejection_logging_can_be_disabled(self, engine):
        store = SituationStore(engine, log_rejections=False)
        with patch("rules_adapter.situation.logger") as mock_logger:
            store.set_situation({"inconnu": 1})

        mock_logger.warning.assert_not_called()
        assert store.last_report.has_rejections

    def test_default_tokens_come_from_settings(self, engine):
        store = SituationStore(engine)
        assert store.filter.yes_token == "oui"
        assert store.filter.no_token == "non"
