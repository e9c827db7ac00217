"""
Settings loader for rules_adapter (settings.yaml).

Usage:
    from rules_adapter.settings import settings

    yes = settings.situation.yes_token
    level = settings.get_nested("logging.level", "INFO")
"""

import logging
from pathlib import Path
from typing import Any, List, Optional

import yaml

logger = logging.getLogger(__name__)


# Path to the bundled settings file
SETTINGS_FILE = Path(__file__).parent / "settings.yaml"

# Defaults (used when a key is missing from the YAML file)
DEFAULTS = {
    "logging": {
        "level": "INFO",
    },
    "situation": {
        "yes_token": "oui",
        "no_token": "non",
        "log_rejections": True,
    },
    "events": {
        "async_mode": False,
        "history_size": 100,
    },
    "engine": {
        "log_parsing_time": True,
    },
}


class DotDict(dict):
    """Dict with attribute access: d.key instead of d['key']"""

    def __getattr__(self, key: str) -> Any:
        try:
            value = self[key]
            if isinstance(value, dict):
                return DotDict(value)
            return value
        except KeyError:
            raise AttributeError(f"Setting '{key}' not found")

    def __setattr__(self, key: str, value: Any) -> None:
        self[key] = value

    def get_nested(self, path: str, default: Any = None) -> Any:
        """Get a value by dotted path: 'situation.yes_token'"""
        keys = path.split('.')
        value = self
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge of two dicts (override wins)"""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_settings(filepath: Optional[Path] = None) -> DotDict:
    """
    Load settings from a YAML file.

    Priority:
    1. Values from the YAML file
    2. DEFAULTS

    Args:
        filepath: Settings file (defaults to the bundled settings.yaml)

    Returns:
        DotDict with the merged settings
    """
    filepath = Path(filepath) if filepath else SETTINGS_FILE

    config = _deep_merge({}, DEFAULTS)

    if filepath.exists():
        with open(filepath, "r", encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}

        config = _deep_merge(config, yaml_config)
    else:
        logger.info(f"Settings file not found: {filepath}, using defaults")

    return DotDict(config)


def validate_settings(settings: DotDict) -> List[str]:
    """
    Validate settings.

    Returns:
        List of errors (empty when everything is fine)
    """
    errors = []

    yes_token = settings.situation.yes_token
    no_token = settings.situation.no_token
    if not yes_token or not isinstance(yes_token, str):
        errors.append("situation.yes_token must be a non-empty string")
    if not no_token or not isinstance(no_token, str):
        errors.append("situation.no_token must be a non-empty string")
    if yes_token == no_token:
        errors.append("situation.yes_token and situation.no_token must differ")

    if settings.events.history_size < 0:
        errors.append("events.history_size must be >= 0")

    level = str(settings.logging.level).upper()
    if not isinstance(getattr(logging, level, None), int):
        errors.append(f"logging.level '{settings.logging.level}' is not a logging level")

    return errors


# Global settings instance (lazy)
_settings = None


def get_settings() -> DotDict:
    """Get the global settings (singleton)"""
    global _settings
    if _settings is None:
        _settings = load_settings()
        errors = validate_settings(_settings)
        for err in errors:
            logger.warning(f"Invalid setting: {err}")
    return _settings


def reload_settings() -> DotDict:
    """Reload settings from the file"""
    global _settings
    _settings = None
    return get_settings()


# For convenient import: from rules_adapter.settings import settings
settings = get_settings()
