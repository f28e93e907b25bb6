"""
Edit Intent Normalizer

Maps free-form Vietnamese/English instructions to a canonical
``EDIT_IN_PLACE`` intent when an active draft exists. No generation call:
matching is driven entirely by the weighted rule tables in ``lexicon/``.

Scoring:
- matched TARGET_* weights are summed per target, highest wins (ties -> BODY)
- summed weight maps to confidence: >=4 HIGH, >=2 MEDIUM, else LOW
- any NOT_CREATE match upgrades confidence to HIGH
- a PRESERVE_REST match lifts LOW to MEDIUM
- target-only matches are not an edit (the user may be asking about the hook)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

from intent_engine.lexicon_loader import PatternRule, RuleTable, SignalClass, get_rule_table

logger = logging.getLogger(__name__)


class EditTarget(str, Enum):
    """Draft section the user intends to modify."""

    BODY = "BODY"
    HOOK = "HOOK"
    CTA = "CTA"
    TONE = "TONE"
    FULL = "FULL"  # No rules point here; reserved for explicit callers


class IntentConfidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


_TARGET_BY_SIGNAL: Dict[SignalClass, EditTarget] = {
    SignalClass.TARGET_BODY: EditTarget.BODY,
    SignalClass.TARGET_HOOK: EditTarget.HOOK,
    SignalClass.TARGET_CTA: EditTarget.CTA,
    SignalClass.TARGET_TONE: EditTarget.TONE,
}

# Canon sections that map onto edit targets
_SECTION_TARGETS: Dict[str, EditTarget] = {
    "HOOK": EditTarget.HOOK,
    "BODY": EditTarget.BODY,
    "CTA": EditTarget.CTA,
}

_EDIT_SIGNALS = {SignalClass.EDIT_INTENT, SignalClass.NOT_CREATE, SignalClass.PRESERVE_REST}

_REASONS = {
    "vi": {
        "not_create": "Người dùng xác nhận muốn chỉnh sửa, không tạo mới",
        "preserve": "Người dùng muốn giữ nguyên phần khác",
        "context": "Phát hiện ý định chỉnh sửa từ ngữ cảnh",
        "locked": "phần này đang bị khóa",
    },
    "en": {
        "not_create": "User confirmed edit intent, not create",
        "preserve": "User wants to preserve other sections",
        "context": "Edit intent detected from context",
        "locked": "target section is locked",
    },
}


@dataclass
class CanonLockState:
    """Sections locked by the editorial canon."""

    locked_sections: Set[str] = field(default_factory=set)
    has_active_canon: bool = False

    def is_locked(self, target: EditTarget) -> bool:
        if not self.has_active_canon:
            return False
        return any(_SECTION_TARGETS.get(s.upper()) == target for s in self.locked_sections)


@dataclass
class NormalizerContext:
    has_active_draft: bool
    canon_lock_state: Optional[CanonLockState] = None
    lang: str = "vi"


@dataclass
class NormalizedEditIntent:
    """Canonical edit intent produced by the normalizer."""

    target: EditTarget
    confidence: IntentConfidence
    reason: str
    matched_patterns: List[str] = field(default_factory=list)
    action: str = "EDIT_IN_PLACE"

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "target": self.target.value,
            "confidence": self.confidence.value,
            "reason": self.reason,
            "matched_patterns": list(self.matched_patterns),
        }


def _confidence_for(score: int) -> IntentConfidence:
    if score >= 4:
        return IntentConfidence.HIGH
    if score >= 2:
        return IntentConfidence.MEDIUM
    return IntentConfidence.LOW


def _downgrade(confidence: IntentConfidence) -> IntentConfidence:
    if confidence == IntentConfidence.HIGH:
        return IntentConfidence.MEDIUM
    return IntentConfidence.LOW


def infer_target(matches: List[PatternRule]) -> tuple:
    """
    Pick the target with the highest summed weight.

    Returns:
        (EditTarget, IntentConfidence) - BODY when nothing (or a tie) wins
    """
    scores: Dict[EditTarget, int] = {target: 0 for target in _TARGET_BY_SIGNAL.values()}
    for rule in matches:
        target = _TARGET_BY_SIGNAL.get(rule.indicates)
        if target is not None:
            scores[target] += rule.weight

    best_target = EditTarget.BODY
    best_score = scores[EditTarget.BODY]
    for target, score in scores.items():
        if score > best_score:
            best_target, best_score = target, score

    return best_target, _confidence_for(best_score)


def normalize_edit_intent(
    instruction: str,
    ctx: NormalizerContext,
    rules: Optional[RuleTable] = None,
) -> Optional[NormalizedEditIntent]:
    """
    Normalize a user instruction into an EDIT_IN_PLACE intent.

    Args:
        instruction: Raw instruction text
        ctx: Draft and language context
        rules: Optional rule table (defaults to the bundled table for ctx.lang)

    Returns:
        NormalizedEditIntent, or None when there is no active draft or no
        edit signal
    """
    if not ctx.has_active_draft:
        return None

    text = (instruction or "").strip()
    if not text:
        return None

    lang = "en" if ctx.lang == "en" else "vi"
    table = rules if rules is not None else get_rule_table(lang)
    matches = table.match(text)

    if not matches:
        return None

    if not any(m.indicates in _EDIT_SIGNALS for m in matches):
        logger.debug(f"Target-only match ignored: {[m.label for m in matches]}")
        return None

    has_not_create = any(m.indicates == SignalClass.NOT_CREATE for m in matches)
    has_preserve = any(m.indicates == SignalClass.PRESERVE_REST for m in matches)

    target, confidence = infer_target(matches)
    if has_not_create:
        confidence = IntentConfidence.HIGH
    elif has_preserve and confidence == IntentConfidence.LOW:
        confidence = IntentConfidence.MEDIUM

    reasons = _REASONS[lang]
    if has_not_create:
        reason = reasons["not_create"]
    elif has_preserve:
        reason = reasons["preserve"]
    else:
        reason = reasons["context"]

    if ctx.canon_lock_state and ctx.canon_lock_state.is_locked(target):
        confidence = _downgrade(confidence)
        reason = f"{reason} ({reasons['locked']})"

    result = NormalizedEditIntent(
        target=target,
        confidence=confidence,
        reason=reason,
        matched_patterns=[m.label for m in matches],
    )
    logger.debug(f"Normalized edit intent: {get_normalizer_debug_summary(result)}")
    return result


def has_explicit_not_create_signal(instruction: str, lang: str = "vi") -> bool:
    """Quick check for the routing layer: did the user say "not a new post"?"""
    table = get_rule_table(lang)
    return any(m.indicates == SignalClass.NOT_CREATE for m in table.match(instruction or ""))


def get_normalizer_debug_summary(result: Optional[NormalizedEditIntent]) -> str:
    if result is None:
        return "No edit intent"
    labels = ", ".join(result.matched_patterns[:3])
    return f"{result.action} → {result.target.value} ({result.confidence.value}) [{labels}]"
