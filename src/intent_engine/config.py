"""Intent Engine Configuration

Configuration loading with environment variable support and sensible defaults.
Every numeric constant used by the scorers lives here so deployments can tune
thresholds without touching control flow.

Environment Variables:
    INTENT_ENGINE_CONFIG_PATH: Path to config file (no default; defaults apply)
    INTENT_ENGINE_DB_PATH: Override storage.db_path from config
    INTENT_ENGINE_DEBUG: Enable the read-only debug surface ("1" or "true")

Configuration Schema:
    stability:
        base_score, accepted_bonus, high_negative_penalty, medium_negative_penalty,
        max_counted_per_kind, min_evidence, low_evidence_cap, high_band, medium_band,
        recent_window
    learning:
        auto_apply_threshold, negative_threshold, unreliable_threshold, ttl_days,
        pattern_text_length
    preferences:
        min_observations, positive_ratio, min_active_strength, max_strength,
        decay_per_day, ttl_days, cleanup_interval_hours, observation_bonus_cap
    outcomes:
        max_records, ttl_days, undo_window_seconds, edit_window_seconds,
        resend_window_seconds, accept_after_seconds
    continuity:
        window_size, min_consecutive, max_history, rapid_window_seconds,
        stale_after_seconds
    guard:
        light/medium/heavy: max_weight, min_length_ratio, max_length_ratio,
        max_structural, max_drift
        light_escalation_structural
    orchestrator:
        confirm_below_confidence: Base heuristic threshold for DEFAULT gates
    storage:
        backend: "sqlite" or "memory"
        db_path: Path to sqlite database (default: ~/.intent_engine/state.db)
    server:
        log_level: str - Logging level (default: "INFO")
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


class IntentEngineError(Exception):
    """Base class for intent engine errors."""
    pass


class ConfigurationError(IntentEngineError):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    "stability": {
        "base_score": 50,
        "accepted_bonus": 8,
        "high_negative_penalty": 18,
        "medium_negative_penalty": 8,
        "max_counted_per_kind": 3,
        "min_evidence": 3,
        "low_evidence_cap": 60,
        "high_band": 80,
        "medium_band": 50,
        "recent_window": 20,
    },
    "learning": {
        "auto_apply_threshold": 2,
        "negative_threshold": 2,
        "unreliable_threshold": 2,
        "ttl_days": 30,
        "pattern_text_length": 50,
    },
    "preferences": {
        "min_observations": 3,
        "positive_ratio": 0.6,
        "min_active_strength": 0.3,
        "max_strength": 0.85,
        "decay_per_day": 0.05,
        "ttl_days": 21,
        "cleanup_interval_hours": 24,
        "observation_bonus_cap": 10,
    },
    "outcomes": {
        "max_records": 100,
        "ttl_days": 30,
        "undo_window_seconds": 5,
        "edit_window_seconds": 60,
        "resend_window_seconds": 10,
        "accept_after_seconds": 20,
    },
    "continuity": {
        "window_size": 5,
        "min_consecutive": 2,
        "max_history": 20,
        "rapid_window_seconds": 60,
        "stale_after_seconds": 300,
    },
    "guard": {
        "light": {
            "max_weight": 2,
            "min_length_ratio": 0.85,
            "max_length_ratio": 1.15,
            "max_structural": 0.15,
            "max_drift": 0.2,
        },
        "medium": {
            "max_weight": 4,
            "min_length_ratio": 0.6,
            "max_length_ratio": 1.4,
            "max_structural": 0.4,
            "max_drift": 0.35,
        },
        "heavy": {
            "max_weight": 6,
            "min_length_ratio": 0.3,
            "max_length_ratio": 2.0,
            "max_structural": 0.7,
            "max_drift": 0.5,
        },
        "light_escalation_structural": 0.5,
    },
    "orchestrator": {
        "confirm_below_confidence": 0.7,
    },
    "storage": {
        "backend": "sqlite",
        "db_path": None,  # Use get_default_db_path()
    },
    "server": {
        "log_level": "INFO",
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge override dict into base dict.

    Args:
        base: Base dictionary (defaults)
        override: Override dictionary (user config)

    Returns:
        Merged dictionary with override values taking precedence
    """
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _resolve_path(path: Optional[str], base_dir: Path) -> Optional[Path]:
    """Resolve a path, making relative paths absolute from base_dir."""
    if path is None:
        return None

    path_obj = Path(path).expanduser()
    if path_obj.is_absolute():
        return path_obj
    return (base_dir / path_obj).resolve()


def load_config(
    config_path: Optional[str] = None,
    base_dir: Optional[Path] = None
) -> Dict[str, Any]:
    """
    Load configuration from YAML file with environment variable overrides.

    Configuration Loading Order (later overrides earlier):
    1. Default values (DEFAULT_CONFIG)
    2. Config file (from INTENT_ENGINE_CONFIG_PATH or config_path parameter)
    3. Environment variable overrides (INTENT_ENGINE_DB_PATH)

    Args:
        config_path: Explicit config file path (overrides INTENT_ENGINE_CONFIG_PATH)
        base_dir: Directory for relative path resolution (default: cwd)

    Returns:
        Merged configuration dictionary

    Raises:
        ConfigurationError: If config file exists but is invalid YAML

    Examples:
        # Load with defaults (no config file required)
        config = load_config()

        # Load from specific file
        config = load_config("/path/to/intent-engine.yaml")
    """
    if base_dir is None:
        base_dir = Path.cwd()

    config = copy.deepcopy(DEFAULT_CONFIG)

    file_path = config_path or os.environ.get("INTENT_ENGINE_CONFIG_PATH")

    if file_path:
        resolved_path = _resolve_path(file_path, base_dir)
        if resolved_path and resolved_path.exists():
            try:
                with open(resolved_path, 'r', encoding='utf-8') as f:
                    file_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in config file: {e}")
            except IOError as e:
                raise ConfigurationError(f"Cannot read config file: {e}")
            if not isinstance(file_config, dict):
                raise ConfigurationError(
                    f"Config file must contain a mapping, got {type(file_config).__name__}"
                )
            config = _deep_merge(config, file_config)
            logger.info(f"Loaded configuration from: {resolved_path}")
        else:
            logger.warning(f"Config file not found (using defaults): {file_path}")

    env_db_path = os.environ.get("INTENT_ENGINE_DB_PATH")
    if env_db_path:
        config["storage"]["db_path"] = env_db_path
        logger.info(f"Storage path overridden by INTENT_ENGINE_DB_PATH: {env_db_path}")

    if config["storage"]["db_path"]:
        config["storage"]["db_path"] = str(
            _resolve_path(config["storage"]["db_path"], base_dir)
        )

    _validate_config(config)
    return config


def _validate_config(config: Dict[str, Any]) -> None:
    """Reject configurations that would make the scorers inconsistent."""
    stability = config["stability"]
    if not stability["medium_band"] <= stability["high_band"]:
        raise ConfigurationError(
            "stability.medium_band must not exceed stability.high_band"
        )

    prefs = config["preferences"]
    if not 0 < prefs["positive_ratio"] < 1:
        raise ConfigurationError("preferences.positive_ratio must be between 0 and 1")

    backend = config["storage"]["backend"]
    if backend not in ("sqlite", "memory"):
        raise ConfigurationError(f"Unknown storage backend: {backend}")


def get_stability_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get stability scorer constants."""
    return (config or DEFAULT_CONFIG)["stability"]


def get_learning_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get learned-choice and pattern reliability constants."""
    return (config or DEFAULT_CONFIG)["learning"]


def get_preference_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get preference store constants."""
    return (config or DEFAULT_CONFIG)["preferences"]


def get_outcome_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get outcome store caps and signal windows."""
    return (config or DEFAULT_CONFIG)["outcomes"]


def get_continuity_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get continuity tracker window settings."""
    return (config or DEFAULT_CONFIG)["continuity"]


def get_guard_thresholds(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get edit guard thresholds keyed by weight class."""
    return (config or DEFAULT_CONFIG)["guard"]


def get_orchestrator_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get orchestrator fallback settings."""
    return (config or DEFAULT_CONFIG)["orchestrator"]


def get_storage_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get storage backend settings."""
    return (config or DEFAULT_CONFIG)["storage"]
