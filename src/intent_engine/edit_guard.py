"""
Edit Guard - post-generation scope validation.

Compares a generated output with the original using three metrics and
checks them against thresholds scaled by the requested operation's weight:

- length ratio: len(output) / len(original)
- structural change: 0.6 * paragraph-count delta + 0.4 * sentence-count
  delta, each normalized by the original count
- semantic drift: share of original keywords missing from the output
  (stop-word filtered, NFC-normalized, tokens of 3+ characters)
"""

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from intent_engine.config import get_guard_thresholds
from intent_engine.editorial import (
    EditorialOp,
    EditorialOpType,
    EditorialScope,
    get_editorial_op_label,
)
from intent_engine.outcomes import Severity

logger = logging.getLogger(__name__)

STOP_WORDS: Set[str] = {
    # English
    "the", "and", "for", "are", "but", "not", "you", "all", "can", "had",
    "her", "was", "one", "our", "out", "day", "get", "has", "him", "his",
    "how", "its", "may", "new", "now", "old", "see", "way", "who", "did",
    "let", "say", "she", "too", "use",
    # Vietnamese (with and without diacritics)
    "trong", "như", "nhu", "của", "cua", "cho", "với", "voi", "khi", "được",
    "duoc", "này", "nay", "một", "mot", "các", "cac", "những", "nhung", "đến",
    "den", "còn", "con", "thì", "thi", "hay", "bằng", "bang", "vào", "vao",
    "that",
}

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_NON_WORD = re.compile(r"[^\w]|_")


@dataclass
class EditGuardMetrics:
    length_ratio: float
    structural_change_score: float
    semantic_drift_score: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "length_ratio": round(self.length_ratio, 4),
            "structural_change_score": round(self.structural_change_score, 4),
            "semantic_drift_score": round(self.semantic_drift_score, 4),
        }


@dataclass
class EditGuardResult:
    violated: bool
    severity: Severity
    reason: str
    metrics: EditGuardMetrics
    detected_op: Optional[EditorialOpType] = None
    detected_scope: Optional[EditorialScope] = None
    violations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "violated": self.violated,
            "severity": self.severity.value,
            "reason": self.reason,
            "detected_op": self.detected_op.value if self.detected_op else None,
            "detected_scope": self.detected_scope.value if self.detected_scope else None,
            "violations": list(self.violations),
            "metrics": self.metrics.to_dict(),
        }


# =============================================================================
# Metrics
# =============================================================================


def count_paragraphs(text: str) -> int:
    return len([p for p in _PARAGRAPH_SPLIT.split(text) if p.strip()])


def count_sentences(text: str) -> int:
    return len([s for s in _SENTENCE_SPLIT.split(text) if s.strip()])


def _normalized_delta(original: int, output: int) -> float:
    if original == 0:
        return 1.0 if output > 0 else 0.0
    return abs(output - original) / original


def structural_change_score(original: str, output: str) -> float:
    para = _normalized_delta(count_paragraphs(original), count_paragraphs(output))
    sent = _normalized_delta(count_sentences(original), count_sentences(output))
    return min(1.0, para * 0.6 + sent * 0.4)


def extract_keywords(text: str) -> Set[str]:
    normalized = unicodedata.normalize("NFC", text.lower())
    tokens = _NON_WORD.sub(" ", normalized).split()
    return {t for t in tokens if len(t) >= 3 and t not in STOP_WORDS}


def semantic_drift_score(original: str, output: str) -> float:
    original_keywords = extract_keywords(original)
    if not original_keywords:
        return 0.0
    preserved = original_keywords & extract_keywords(output)
    return 1 - len(preserved) / len(original_keywords)


def compute_metrics(original: str, output: str) -> EditGuardMetrics:
    return EditGuardMetrics(
        length_ratio=len(output) / len(original),
        structural_change_score=structural_change_score(original, output),
        semantic_drift_score=semantic_drift_score(original, output),
    )


# =============================================================================
# Classification
# =============================================================================


def _thresholds_for(weight: int, config: Optional[Dict[str, Any]]) -> Dict[str, float]:
    guard = get_guard_thresholds(config)
    for tier in ("light", "medium"):
        if weight <= guard[tier]["max_weight"]:
            return guard[tier]
    return guard["heavy"]


def detect_actual_operation(
    length_ratio: float,
    structural: float,
    drift: float,
) -> Tuple[EditorialOpType, EditorialScope]:
    """Classify what the output actually did, purely from the metrics."""
    if structural < 0.1 and drift < 0.1 and 0.9 < length_ratio < 1.1:
        return EditorialOpType.MICRO_POLISH, EditorialScope.WORDING_ONLY
    if structural < 0.2 and drift < 0.2:
        return EditorialOpType.FLOW_SMOOTHING, EditorialScope.SENTENCE_LEVEL
    if length_ratio < 0.7:
        return EditorialOpType.TRIM, EditorialScope.PARAGRAPH_LEVEL
    if structural < 0.5 and drift < 0.4:
        return EditorialOpType.SECTION_REWRITE, EditorialScope.SECTION_LEVEL
    if drift >= 0.5:
        return EditorialOpType.FULL_REWRITE, EditorialScope.FULL
    return EditorialOpType.BODY_REWRITE, EditorialScope.SECTION_LEVEL


def evaluate_edit_guard(
    original: str,
    output: str,
    requested_op: EditorialOp,
    config: Optional[Dict[str, Any]] = None,
) -> EditGuardResult:
    """
    Check that ``output`` stayed within the scope of ``requested_op``.

    Args:
        original: Text before the edit
        output: Generated text
        requested_op: Operation the user asked for
        config: Optional full config (guard thresholds)

    Returns:
        EditGuardResult; empty inputs are never a violation
    """
    if not (original or "").strip() or not (output or "").strip():
        return EditGuardResult(
            violated=False,
            severity=Severity.LOW,
            reason="Empty text",
            metrics=EditGuardMetrics(1.0, 0.0, 0.0),
        )

    metrics = compute_metrics(original, output)
    limits = _thresholds_for(requested_op.weight, config)
    label = get_editorial_op_label(requested_op.op, "en")

    violations: List[str] = []
    if metrics.length_ratio < limits["min_length_ratio"]:
        violations.append(f"shortened by {round((1 - metrics.length_ratio) * 100)}%")
    elif metrics.length_ratio > limits["max_length_ratio"]:
        violations.append(f"lengthened by {round((metrics.length_ratio - 1) * 100)}%")
    if metrics.structural_change_score > limits["max_structural"]:
        violations.append("structural changes detected")
    if metrics.semantic_drift_score > limits["max_drift"]:
        violations.append("significant content changes")

    detected_op, detected_scope = detect_actual_operation(
        metrics.length_ratio, metrics.structural_change_score, metrics.semantic_drift_score
    )

    if not violations:
        return EditGuardResult(
            violated=False,
            severity=Severity.LOW,
            reason="Output matches expected scope",
            metrics=metrics,
            detected_op=detected_op,
            detected_scope=detected_scope,
        )

    if len(violations) >= 3:
        severity = Severity.HIGH
    elif len(violations) == 2:
        severity = Severity.MEDIUM
    else:
        severity = Severity.LOW

    escalation = get_guard_thresholds(config)["light_escalation_structural"]
    if requested_op.is_light and metrics.structural_change_score > escalation:
        severity = Severity.HIGH

    result = EditGuardResult(
        violated=True,
        severity=severity,
        reason=f'Requested "{label}" but: {", ".join(violations)}',
        metrics=metrics,
        detected_op=detected_op,
        detected_scope=detected_scope,
        violations=violations,
    )
    logger.debug(f"Edit guard violation ({severity.value}): {result.reason}")
    return result
