"""
Shared pytest fixtures for rules_adapter tests.

Provides fixtures for:
- A small festival rule set exercising questions, defaults, options and guards
- Engines and adapters built from it
- Event recorders attached to the adapter
"""

import pytest
from pathlib import Path
from typing import Any, Dict
from unittest.mock import MagicMock
import sys

import yaml

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from rules_adapter.adapter import RulesAdapter
from rules_adapter.engine import RuleCatalog, RuleEngine
from rules_adapter.notifications import AdapterEventBus, EventRecorder


# =============================================================================
# Rule fixtures
# =============================================================================

FESTIVAL_RULES: Dict[str, Any] = {
    "billet": {"titre": "Billetterie"},
    "billet . prix": {"question": "Quel est le prix du billet ?", "par défaut": 10, "unité": "€"},
    "billet . nombre": {"question": "Combien de billets ?"},
    "billet . total": "prix * nombre",
    "billet . tarif": {
        "valeur": {
            "variations": [
                {"si": "prix > 20", "alors": "'cher'"},
                {"sinon": "'abordable'"},
            ]
        }
    },
    "restauration": {"question": "Proposez-vous de la restauration ?", "par défaut": "non"},
    "restauration . repas": {"question": "Combien de repas ?", "par défaut": 100},
    "restauration . empreinte": "repas * 2",
    "couleur": {"question": "Quelle couleur ?", "une possibilité": ["rouge", "bleu"]},
    "couleur . rouge": None,
    "couleur . bleu": None,
    "décor": "couleur = 'rouge'",
    "a": {"question": "A ?", "par défaut": "oui"},
    "b": {"applicable si": "a", "valeur": 10},
    "zéro": 0,
    "bilan": {"valeur": {"somme": ["billet . total", "restauration . empreinte"]}},
}


@pytest.fixture
def festival_rules() -> Dict[str, Any]:
    """Raw rule definitions (fresh copy per test)."""
    return dict(FESTIVAL_RULES)


@pytest.fixture
def catalog(festival_rules) -> RuleCatalog:
    return RuleCatalog(festival_rules)


@pytest.fixture
def engine(catalog) -> RuleEngine:
    return RuleEngine(catalog, yes_token="oui", no_token="non")


@pytest.fixture
def rules_file(tmp_path, festival_rules) -> Path:
    """Festival rules written to a YAML file."""
    path = tmp_path / "rules.yaml"
    path.write_text(yaml.safe_dump(festival_rules, allow_unicode=True), encoding="utf-8")
    return path


# =============================================================================
# Adapter fixtures
# =============================================================================

@pytest.fixture
def bus() -> AdapterEventBus:
    return AdapterEventBus(async_mode=False, history_size=50)


@pytest.fixture
def adapter(catalog, bus) -> RulesAdapter:
    """Loaded adapter, detached."""
    return RulesAdapter(catalog, channel=bus)


@pytest.fixture
def recorder(bus) -> EventRecorder:
    """Records every event published on the adapter bus."""
    recorder = EventRecorder()
    bus.subscribe_all(recorder.handle_event)
    return recorder


@pytest.fixture
def mock_consumer():
    """Consumer double with both callbacks."""
    consumer = MagicMock()
    consumer.on_situation_changed = MagicMock()
    consumer.on_rules_evaluated = MagicMock()
    return consumer
