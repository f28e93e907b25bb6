"""
Intent outcomes: what the user did after a response.

Signals are observed within fixed windows after generation (undo, re-edit,
resend, silent acceptance). The derived label (accepted / negative /
severity) is computed once when the outcome is recorded and stored with
it; later reads never re-derive from raw signals, so aggregates built on
old records stay comparable across code versions.

Outcomes live in a capped ring buffer (newest first) under ``outcomes:v1``.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from intent_engine.config import get_outcome_config
from intent_engine.models import IntentRoute
from intent_engine.storage import (
    KeyValueBackend,
    delete_blob,
    load_versioned_blob,
    save_versioned_blob,
)

logger = logging.getLogger(__name__)

OUTCOMES_KEY = "outcomes:v1"
OUTCOMES_VERSION = 1

SECONDS_PER_DAY = 24 * 60 * 60


class OutcomeSignal(str, Enum):
    """Post-response user behaviour."""

    UNDO_WITHIN_WINDOW = "UNDO_WITHIN_WINDOW"  # Undo from the result toast
    EDIT_AFTER = "EDIT_AFTER"  # Manual edit right after the result
    RESEND_IMMEDIATELY = "RESEND_IMMEDIATELY"  # Same request sent again
    ACCEPT_SILENTLY = "ACCEPT_SILENTLY"  # No negative action within the window


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class DerivedOutcome:
    accepted: bool
    negative: bool
    severity: Severity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accepted": self.accepted,
            "negative": self.negative,
            "severity": self.severity.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DerivedOutcome":
        return cls(
            accepted=bool(data.get("accepted", False)),
            negative=bool(data.get("negative", False)),
            severity=Severity(data.get("severity", Severity.LOW.value)),
        )


def derive_outcome(signals: Iterable[OutcomeSignal]) -> DerivedOutcome:
    """
    Derive the outcome label from raw signals.

    Precedence: an undo is always a high-severity rejection; an acceptance
    outweighs a re-edit or resend; a re-edit or resend on its own is a
    medium-severity rejection.
    """
    signal_set = set(signals)

    if OutcomeSignal.UNDO_WITHIN_WINDOW in signal_set:
        return DerivedOutcome(accepted=False, negative=True, severity=Severity.HIGH)

    if OutcomeSignal.ACCEPT_SILENTLY in signal_set:
        return DerivedOutcome(accepted=True, negative=False, severity=Severity.LOW)

    if signal_set & {OutcomeSignal.RESEND_IMMEDIATELY, OutcomeSignal.EDIT_AFTER}:
        return DerivedOutcome(accepted=False, negative=True, severity=Severity.MEDIUM)

    return DerivedOutcome(accepted=False, negative=False, severity=Severity.LOW)


def should_mark_unreliable(derived: DerivedOutcome) -> bool:
    """High-severity rejections count against the pattern's reliability."""
    return derived.negative and derived.severity == Severity.HIGH


# =============================================================================
# Signal detection
# =============================================================================


@dataclass
class ReactionEvents:
    """Timestamps (epoch seconds) of user actions after a response."""

    generated_at: float
    now: float
    undo_at: Optional[float] = None
    edit_at: Optional[float] = None
    resend_at: Optional[float] = None


def _within(event_at: Optional[float], start: float, window: float) -> bool:
    return event_at is not None and 0 <= event_at - start <= window


def detect_outcome_signals(
    events: ReactionEvents,
    config: Optional[Dict[str, Any]] = None,
) -> List[OutcomeSignal]:
    """
    Turn raw reaction timestamps into outcome signals.

    Args:
        events: Reaction timestamps relative to the response
        config: Optional full config (uses the ``outcomes`` section)

    Returns:
        Detected signals; ACCEPT_SILENTLY only once the acceptance window has
        elapsed with no negative action
    """
    cfg = get_outcome_config(config)
    signals: List[OutcomeSignal] = []

    if _within(events.undo_at, events.generated_at, cfg["undo_window_seconds"]):
        signals.append(OutcomeSignal.UNDO_WITHIN_WINDOW)
    if _within(events.edit_at, events.generated_at, cfg["edit_window_seconds"]):
        signals.append(OutcomeSignal.EDIT_AFTER)
    if _within(events.resend_at, events.generated_at, cfg["resend_window_seconds"]):
        signals.append(OutcomeSignal.RESEND_IMMEDIATELY)

    if not signals and events.now - events.generated_at >= cfg["accept_after_seconds"]:
        signals.append(OutcomeSignal.ACCEPT_SILENTLY)

    return signals


# =============================================================================
# Records
# =============================================================================


def new_intent_id(now: Optional[float] = None) -> str:
    millis = int((now if now is not None else time.time()) * 1000)
    return f"intent-{millis:x}-{uuid.uuid4().hex[:6]}"


@dataclass
class OutcomeRecord:
    """One observed intent and how the user reacted to it."""

    intent_id: str
    pattern_hash: str
    route_used: IntentRoute
    created_at: float
    derived: DerivedOutcome
    signals: List[OutcomeSignal] = field(default_factory=list)
    last_event_at: Optional[float] = None
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent_id": self.intent_id,
            "pattern_hash": self.pattern_hash,
            "route_used": self.route_used.value,
            "created_at": self.created_at,
            "last_event_at": self.last_event_at,
            "confidence": self.confidence,
            "signals": [s.value for s in self.signals],
            "derived": self.derived.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OutcomeRecord":
        return cls(
            intent_id=data["intent_id"],
            pattern_hash=data["pattern_hash"],
            route_used=IntentRoute(data["route_used"]),
            created_at=float(data["created_at"]),
            last_event_at=data.get("last_event_at"),
            confidence=data.get("confidence"),
            signals=[OutcomeSignal(s) for s in data.get("signals", [])],
            derived=DerivedOutcome.from_dict(data.get("derived", {})),
        )

    @classmethod
    def create(
        cls,
        pattern_hash: str,
        route_used: IntentRoute,
        signals: List[OutcomeSignal],
        now: float,
        intent_id: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> "OutcomeRecord":
        """Build a record, deriving its label from ``signals`` exactly once."""
        return cls(
            intent_id=intent_id or new_intent_id(now),
            pattern_hash=pattern_hash,
            route_used=route_used,
            created_at=now,
            last_event_at=now,
            confidence=confidence,
            signals=list(signals),
            derived=derive_outcome(signals),
        )


@dataclass
class OutcomeStats:
    total: int = 0
    accepted: int = 0
    negative: int = 0
    high_severity: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "accepted": self.accepted,
            "negative": self.negative,
            "high_severity": self.high_severity,
        }


class OutcomeStore:
    """
    Capped ring buffer of outcome records, newest first.

    Reads are side-effect free: expired records are filtered out but only
    removed by an explicit cleanup_expired() or on the next write.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        config: Optional[Dict[str, Any]] = None,
        clock: Callable[[], float] = time.time,
        key: str = OUTCOMES_KEY,
    ):
        self._backend = backend
        self._cfg = get_outcome_config(config)
        self._clock = clock
        self._key = key

    @staticmethod
    def _empty() -> Dict[str, Any]:
        return {"version": OUTCOMES_VERSION, "records": []}

    def _load_records(self) -> List[OutcomeRecord]:
        state = load_versioned_blob(
            self._backend, self._key, OUTCOMES_VERSION, self._empty, fields={"records": list}
        )
        records = []
        for item in state["records"]:
            try:
                records.append(OutcomeRecord.from_dict(item))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Dropping malformed outcome record: {e}")
        return records

    def _save_records(self, records: List[OutcomeRecord]) -> bool:
        return save_versioned_blob(
            self._backend,
            self._key,
            {"version": OUTCOMES_VERSION, "records": [r.to_dict() for r in records]},
        )

    def _is_expired(self, record: OutcomeRecord, now: float) -> bool:
        return now - record.created_at > self._cfg["ttl_days"] * SECONDS_PER_DAY

    def _live(self) -> List[OutcomeRecord]:
        now = self._clock()
        return [r for r in self._load_records() if not self._is_expired(r, now)]

    def record(self, outcome: OutcomeRecord) -> bool:
        """
        Append an outcome (replacing any record with the same intent id).

        Returns:
            True if persisted, False if the backend failed
        """
        now = self._clock()
        records = [
            r for r in self._load_records()
            if r.intent_id != outcome.intent_id and not self._is_expired(r, now)
        ]
        records.insert(0, outcome)
        del records[self._cfg["max_records"]:]

        saved = self._save_records(records)
        if saved:
            logger.debug(
                f"Recorded outcome {outcome.intent_id} pattern={outcome.pattern_hash} "
                f"negative={outcome.derived.negative} severity={outcome.derived.severity.value}"
            )
        return saved

    def record_signals(
        self,
        pattern_hash: str,
        route_used: IntentRoute,
        signals: List[OutcomeSignal],
        intent_id: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> OutcomeRecord:
        """Create, derive and store an outcome in one step."""
        outcome = OutcomeRecord.create(
            pattern_hash=pattern_hash,
            route_used=route_used,
            signals=signals,
            now=self._clock(),
            intent_id=intent_id,
            confidence=confidence,
        )
        self.record(outcome)
        return outcome

    def get(self, intent_id: str) -> Optional[OutcomeRecord]:
        for record in self._live():
            if record.intent_id == intent_id:
                return record
        return None

    def list_recent(self, limit: int = 10) -> List[OutcomeRecord]:
        """Newest unexpired records, at most ``limit``."""
        if limit <= 0:
            return []
        return self._live()[:limit]

    def list_for_pattern(self, pattern_hash: str, limit: int = 20) -> List[OutcomeRecord]:
        """Outcomes of ``pattern_hash`` among the newest ``limit`` records."""
        return [r for r in self.list_recent(limit) if r.pattern_hash == pattern_hash]

    def cleanup_expired(self) -> int:
        """Remove expired records. Returns the number removed."""
        records = self._load_records()
        live = self._live()
        removed = len(records) - len(live)
        if removed:
            self._save_records(live)
            logger.info(f"Removed {removed} expired outcomes")
        return removed

    def clear(self) -> None:
        delete_blob(self._backend, self._key)

    def get_stats(self) -> OutcomeStats:
        stats = OutcomeStats()
        for record in self._live():
            stats.total += 1
            if record.derived.accepted:
                stats.accepted += 1
            if record.derived.negative:
                stats.negative += 1
            if record.derived.severity == Severity.HIGH:
                stats.high_severity += 1
        return stats
