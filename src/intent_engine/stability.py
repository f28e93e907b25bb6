"""
Pattern Stability Scorer

Aggregates recent outcomes of one instruction pattern into a 0-100 trust
score and a band. Recomputed on demand from the outcome store and the
pattern reliability aggregate; nothing here writes.

Score:
    base
    + accepted_bonus * min(accepted, cap)
    - high_negative_penalty * min(high negatives, cap)
    - medium_negative_penalty * min(medium negatives, cap)
    capped at low_evidence_cap while recent_count < min_evidence
    clamped to [0, 100]
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from intent_engine.config import get_stability_config
from intent_engine.learning import LearningStore
from intent_engine.models import ConfirmationGate
from intent_engine.outcomes import OutcomeStore, Severity

logger = logging.getLogger(__name__)


class StabilityBand(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


@dataclass
class StabilityMetrics:
    pattern_hash: str
    stability_score: int
    band: StabilityBand
    accepted_count: int
    negative_high_count: int
    negative_medium_count: int
    recent_count: int
    auto_apply_eligible: bool
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pattern_hash": self.pattern_hash,
            "stability_score": self.stability_score,
            "band": self.band.value,
            "accepted_count": self.accepted_count,
            "negative_high_count": self.negative_high_count,
            "negative_medium_count": self.negative_medium_count,
            "recent_count": self.recent_count,
            "auto_apply_eligible": self.auto_apply_eligible,
            "reason": self.reason,
        }


def get_stability_band(score: float, config: Optional[Dict[str, Any]] = None) -> StabilityBand:
    cfg = get_stability_config(config)
    if score >= cfg["high_band"]:
        return StabilityBand.HIGH
    if score >= cfg["medium_band"]:
        return StabilityBand.MEDIUM
    return StabilityBand.LOW


def score_from_counts(
    accepted: int,
    high_negative: int,
    medium_negative: int,
    recent_count: int,
    config: Optional[Dict[str, Any]] = None,
) -> int:
    """Pure scoring formula; always returns an int in [0, 100]."""
    cfg = get_stability_config(config)
    cap = cfg["max_counted_per_kind"]

    score = cfg["base_score"]
    score += min(max(accepted, 0), cap) * cfg["accepted_bonus"]
    score -= min(max(high_negative, 0), cap) * cfg["high_negative_penalty"]
    score -= min(max(medium_negative, 0), cap) * cfg["medium_negative_penalty"]

    if recent_count < cfg["min_evidence"]:
        score = min(score, cfg["low_evidence_cap"])

    return int(round(max(0, min(100, score))))


def _reason(
    band: StabilityBand,
    accepted: int,
    high_negative: int,
    medium_negative: int,
    recent_count: int,
    min_evidence: int,
) -> str:
    if recent_count < min_evidence:
        return "Learning: limited evidence"
    if high_negative >= 2:
        return "Unstable: frequent reversals"
    if high_negative >= 1 or medium_negative >= 2:
        return "Caution: some negatives"
    if band == StabilityBand.HIGH and accepted >= 2:
        return "Stable: accepted consistently"
    if band == StabilityBand.MEDIUM:
        return "Moderate: mixed signals"
    return "Building confidence"


def compute_stability(
    pattern_hash: str,
    outcomes: OutcomeStore,
    learning: LearningStore,
    config: Optional[Dict[str, Any]] = None,
) -> StabilityMetrics:
    """
    Compute stability metrics for a pattern.

    Args:
        pattern_hash: Pattern to score
        outcomes: Outcome store (recent window is read, never modified)
        learning: Learning store (reliability aggregate and auto-apply lookup)
        config: Optional full config

    Returns:
        StabilityMetrics; on any read failure a low-evidence default that
        never allows skipping confirmation
    """
    cfg = get_stability_config(config)

    try:
        recent = outcomes.list_for_pattern(pattern_hash, limit=cfg["recent_window"])
        accepted = sum(1 for r in recent if r.derived.accepted)
        high_negative = sum(
            1 for r in recent if r.derived.negative and r.derived.severity == Severity.HIGH
        )
        medium_negative = sum(
            1 for r in recent if r.derived.negative and r.derived.severity == Severity.MEDIUM
        )

        reliability = learning.get_pattern_reliability(pattern_hash)
        if reliability is not None:
            accepted += reliability.accepted_count
            high_negative += reliability.high_negative_count

        auto_apply_eligible = learning.get_auto_apply_choice(pattern_hash) is not None
    except Exception as e:
        logger.warning(f"Failed to compute stability for {pattern_hash}: {e}")
        score = score_from_counts(0, 0, 0, 0, config)
        return StabilityMetrics(
            pattern_hash=pattern_hash,
            stability_score=score,
            band=get_stability_band(score, config),
            accepted_count=0,
            negative_high_count=0,
            negative_medium_count=0,
            recent_count=0,
            auto_apply_eligible=False,
            reason="Learning: limited evidence",
        )

    recent_count = len(recent)
    score = score_from_counts(accepted, high_negative, medium_negative, recent_count, config)
    band = get_stability_band(score, config)

    metrics = StabilityMetrics(
        pattern_hash=pattern_hash,
        stability_score=score,
        band=band,
        accepted_count=accepted,
        negative_high_count=high_negative,
        negative_medium_count=medium_negative,
        recent_count=recent_count,
        auto_apply_eligible=auto_apply_eligible,
        reason=_reason(band, accepted, high_negative, medium_negative, recent_count,
                       cfg["min_evidence"]),
    )
    logger.debug(f"Stability {get_stability_debug_summary(metrics)}")
    return metrics


def get_confirmation_gating(metrics: StabilityMetrics) -> ConfirmationGate:
    """
    Gate suggested by stability alone.

    FORCE when the band is LOW or any high-severity negative exists;
    SKIP only for a HIGH band with an eligible auto-apply choice;
    DEFAULT otherwise.
    """
    if metrics.band == StabilityBand.LOW or metrics.negative_high_count >= 1:
        return ConfirmationGate.FORCE
    if metrics.band == StabilityBand.HIGH and metrics.auto_apply_eligible:
        return ConfirmationGate.SKIP
    return ConfirmationGate.DEFAULT


_TRUST_COPY = {
    "en": {
        StabilityBand.HIGH: "Stable",
        StabilityBand.MEDIUM: "Learning",
        StabilityBand.LOW: "Confirm",
    },
    "vi": {
        StabilityBand.HIGH: "Ổn định",
        StabilityBand.MEDIUM: "Đang học",
        StabilityBand.LOW: "Cần xác nhận",
    },
}


def get_trust_copy(metrics: StabilityMetrics, lang: str = "vi") -> str:
    """Short badge text for the confirmation UI."""
    copy = _TRUST_COPY.get(lang, _TRUST_COPY["vi"])
    return copy[metrics.band]


def get_stability_debug_summary(metrics: StabilityMetrics) -> str:
    auto = "auto✓" if metrics.auto_apply_eligible else "auto✗"
    return (
        f"{metrics.stability_score}% {metrics.band.value} | "
        f"+{metrics.accepted_count} -{metrics.negative_high_count}H "
        f"-{metrics.negative_medium_count}M | n={metrics.recent_count} | {auto}"
    )
