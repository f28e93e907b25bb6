"""
Continuity Tracker

Sliding-window state machine over recent intent classifications.

States:
- NORMAL: nothing notable
- REPEATING: the same intent type for at least ``min_consecutive`` turns
- CORRECTION_CYCLE: the user keeps rejecting and retrying (a rejected turn
  followed by a retry, repeated rejections, or rapid alternation between
  intent types)

State is immutable and re-derived from history on every update. A
correction cycle only ever raises caution: the orchestrator may force
confirmation from it, never skip.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple

from intent_engine.config import get_continuity_config

logger = logging.getLogger(__name__)


class ContinuityMode(str, Enum):
    NORMAL = "NORMAL"
    REPEATING = "REPEATING"
    CORRECTION_CYCLE = "CORRECTION_CYCLE"


@dataclass(frozen=True)
class IntentTurn:
    """One classified turn and, once known, how the user reacted."""

    intent_type: str
    timestamp: float
    pattern_hash: Optional[str] = None
    accepted: Optional[bool] = None
    negative: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent_type": self.intent_type,
            "timestamp": self.timestamp,
            "pattern_hash": self.pattern_hash,
            "accepted": self.accepted,
            "negative": self.negative,
        }


@dataclass(frozen=True)
class ContinuityState:
    mode: ContinuityMode = ContinuityMode.NORMAL
    mode_confidence: float = 0.0
    consecutive_count: int = 0
    dominant_type: Optional[str] = None
    history: Tuple[IntentTurn, ...] = field(default_factory=tuple)  # newest first
    in_correction_cycle: bool = False
    reason: str = "No history"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "mode_confidence": round(self.mode_confidence, 3),
            "consecutive_count": self.consecutive_count,
            "dominant_type": self.dominant_type,
            "history": [t.to_dict() for t in self.history],
            "in_correction_cycle": self.in_correction_cycle,
            "reason": self.reason,
        }


def create_initial_state() -> ContinuityState:
    return ContinuityState()


def _consecutive(history: Sequence[IntentTurn]) -> int:
    if not history:
        return 0
    latest = history[0].intent_type
    count = 0
    for turn in history:
        if turn.intent_type != latest:
            break
        count += 1
    return count


def _dominant(window: Sequence[IntentTurn]) -> Optional[str]:
    if not window:
        return None
    counts = Counter(t.intent_type for t in window)
    best = max(counts.values())
    # Ties go to the most recent type
    for turn in window:
        if counts[turn.intent_type] == best:
            return turn.intent_type
    return None


def _correction_reason(window: Sequence[IntentTurn], rapid_window: float) -> Optional[str]:
    negatives = sum(1 for t in window if t.negative)
    if negatives >= 2:
        return f"{negatives} rejections in the last {len(window)} turns"

    # A rejected turn among the last three, followed by a retry
    if any(t.negative for t in window[1:3]):
        return "Retry after a rejected result"

    if len(window) >= 3:
        a, b, c = window[0], window[1], window[2]
        alternating = a.intent_type != b.intent_type and b.intent_type != c.intent_type
        if alternating and a.timestamp - c.timestamp <= rapid_window:
            return "Rapid alternation between intents"

    return None


def detect_mode(
    history: Sequence[IntentTurn],
    now: Optional[float] = None,
    config: Optional[Dict[str, Any]] = None,
) -> ContinuityState:
    """
    Derive the continuity state from a newest-first history.

    Args:
        history: Turns, newest first
        now: Current time (defaults to time.time())
        config: Optional full config

    Returns:
        ContinuityState carrying ``history`` unchanged
    """
    cfg = get_continuity_config(config)
    history = tuple(history)
    if not history:
        return ContinuityState(history=history)

    now = time.time() if now is None else now
    window = history[: cfg["window_size"]]
    consecutive = _consecutive(window)
    dominant = _dominant(window)

    reason = _correction_reason(window, cfg["rapid_window_seconds"])
    if reason:
        return ContinuityState(
            mode=ContinuityMode.CORRECTION_CYCLE,
            mode_confidence=0.9,
            consecutive_count=consecutive,
            dominant_type=dominant,
            history=history,
            in_correction_cycle=True,
            reason=reason,
        )

    if consecutive >= cfg["min_consecutive"]:
        confidence = min(0.5 + consecutive * 0.15, 0.95)
        if now - history[0].timestamp > cfg["stale_after_seconds"]:
            confidence /= 2
        return ContinuityState(
            mode=ContinuityMode.REPEATING,
            mode_confidence=confidence,
            consecutive_count=consecutive,
            dominant_type=history[0].intent_type,
            history=history,
            reason=f"Same intent {history[0].intent_type} x{consecutive}",
        )

    return ContinuityState(
        mode=ContinuityMode.NORMAL,
        mode_confidence=0.3,
        consecutive_count=consecutive,
        dominant_type=dominant,
        history=history,
        reason="No continuity pattern",
    )


def update_continuity(
    state: ContinuityState,
    turn: IntentTurn,
    config: Optional[Dict[str, Any]] = None,
) -> ContinuityState:
    """Push a new turn and re-derive the state."""
    cfg = get_continuity_config(config)
    history = ((turn,) + state.history)[: cfg["max_history"]]
    new_state = detect_mode(history, now=turn.timestamp, config=config)
    if new_state.mode != state.mode:
        logger.debug(f"Continuity {state.mode.value} -> {new_state.mode.value}: {new_state.reason}")
    return new_state


def mark_latest_outcome(
    state: ContinuityState,
    accepted: bool,
    negative: bool,
    now: Optional[float] = None,
    config: Optional[Dict[str, Any]] = None,
) -> ContinuityState:
    """Attach the user's reaction to the most recent turn."""
    if not state.history:
        return state
    latest = replace(state.history[0], accepted=accepted, negative=negative)
    history = (latest,) + state.history[1:]
    return detect_mode(history, now=now if now is not None else latest.timestamp, config=config)


def mark_recent_undo(
    state: ContinuityState,
    now: Optional[float] = None,
    config: Optional[Dict[str, Any]] = None,
) -> ContinuityState:
    """Mark the latest turn as undone. An undo always opens a correction cycle."""
    marked = mark_latest_outcome(state, accepted=False, negative=True, now=now, config=config)
    if not marked.history or marked.in_correction_cycle:
        return marked
    return replace(
        marked,
        mode=ContinuityMode.CORRECTION_CYCLE,
        mode_confidence=0.9,
        in_correction_cycle=True,
        reason="Undo on the latest result",
    )


class ContinuityTracker:
    """Holds the current state for one conversation."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self._config = config
        self._state = create_initial_state()

    @property
    def state(self) -> ContinuityState:
        return self._state

    def record_turn(self, turn: IntentTurn) -> ContinuityState:
        self._state = update_continuity(self._state, turn, self._config)
        return self._state

    def mark_latest_outcome(self, accepted: bool, negative: bool) -> ContinuityState:
        self._state = mark_latest_outcome(self._state, accepted, negative, config=self._config)
        return self._state

    def mark_recent_undo(self) -> ContinuityState:
        self._state = mark_recent_undo(self._state, config=self._config)
        return self._state

    def reset(self) -> None:
        self._state = create_initial_state()


def get_continuity_debug_summary(state: ContinuityState) -> str:
    if not state.history:
        return "Continuity: empty"
    cycle = " ⚠cycle" if state.in_correction_cycle else ""
    return (
        f"{state.mode.value} ({round(state.mode_confidence * 100)}%) "
        f"x{state.consecutive_count} {state.dominant_type or '-'}{cycle}"
    )
