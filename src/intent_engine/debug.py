"""
Read-only observability surface.

Enabled by ``?debugIntent=1`` (or ``true``) in a query string, or by the
``INTENT_ENGINE_DEBUG`` environment variable. Nothing here writes to a
store or touches continuity state, so collecting a snapshot any number of
times never changes a later decision.
"""

import os
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

from intent_engine.continuity import get_continuity_debug_summary
from intent_engine.edit_intent import get_normalizer_debug_summary
from intent_engine.governance import get_governance_debug_summary
from intent_engine.preferences import get_preference_debug_summary
from intent_engine.stability import compute_stability, get_stability_debug_summary

DEBUG_QUERY_PARAM = "debugIntent"
DEBUG_ENV_VAR = "INTENT_ENGINE_DEBUG"

_TRUTHY = {"1", "true"}


def is_debug_enabled(query_string: Optional[str] = None) -> bool:
    if query_string:
        values = parse_qs(query_string.lstrip("?")).get(DEBUG_QUERY_PARAM, [])
        if any(v.lower() in _TRUTHY for v in values):
            return True
    return os.environ.get(DEBUG_ENV_VAR, "").lower() in _TRUTHY


def collect_debug_snapshot(engine, pattern_hash: Optional[str] = None, decision=None) -> Dict[str, Any]:
    """
    Human-readable summaries of every subsystem.

    Args:
        engine: IntentEngine to inspect
        pattern_hash: Pattern to score (defaults to the decision's pattern)
        decision: Optional TurnDecision for the normalizer summary

    Returns:
        Dict of summary strings keyed by subsystem
    """
    if pattern_hash is None and decision is not None:
        pattern_hash = decision.pattern_hash

    snapshot: Dict[str, Any] = {
        "governance": get_governance_debug_summary(engine.governance_context),
        "continuity": get_continuity_debug_summary(engine.continuity.state),
        "preferences": get_preference_debug_summary(engine.preferences.get_active_preferences()),
        "outcomes": engine.outcomes.get_stats().to_dict(),
    }
    if pattern_hash:
        metrics = compute_stability(pattern_hash, engine.outcomes, engine.learning, engine.config)
        snapshot["stability"] = get_stability_debug_summary(metrics)
    if decision is not None:
        snapshot["normalizer"] = get_normalizer_debug_summary(decision.edit_intent)
        snapshot["confirmation"] = f"{decision.confirmation.gate.value}: {decision.confirmation.reason}"
    return snapshot
