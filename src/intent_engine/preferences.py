"""
User Preference Store

Cross-session counters of positive/negative observations per preference
key. A preference only becomes active with enough evidence (>= 3
observations, >= 60% positive) and a strength above the activity floor;
it then softly biases the confirmation UI (default choice and option order)
but never forces a decision.

Strength:
    0 below the evidence thresholds, otherwise
    (ratio - 0.6) / 0.4
    * time decay (5% per day since last observation)
    * observation bonus (0.7 + 0.3 * min(1, total / 10))
    capped at 0.85
"""

import logging
import re
import time
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from intent_engine.config import get_preference_config
from intent_engine.governance import user_scoped_key
from intent_engine.models import DEFAULT_CHOICE_ORDER, IntentRoute, RouteChoice
from intent_engine.outcomes import SECONDS_PER_DAY
from intent_engine.storage import (
    KeyValueBackend,
    delete_blob,
    load_versioned_blob,
    save_versioned_blob,
)

logger = logging.getLogger(__name__)

PREFERENCES_KEY = "preferences:v1"
PREFERENCES_VERSION = 1

# Records whose decay drops below this are removed on cleanup
_MIN_DECAY = 0.1


class PreferenceKey(str, Enum):
    PREFERS_SHORT_OUTPUT = "prefers_short_output"
    PREFERS_LONG_OUTPUT = "prefers_long_output"
    PREFERS_PROFESSIONAL_TONE = "prefers_professional_tone"
    PREFERS_CASUAL_TONE = "prefers_casual_tone"
    AVOIDS_EMOJI = "avoids_emoji"
    LIKES_EMOJI = "likes_emoji"
    PREFERS_EDIT_IN_PLACE = "prefers_edit_in_place"
    PREFERS_TRANSFORM_OVER_CREATE = "prefers_transform_over_create"
    PREFERS_CREATE_OVER_TRANSFORM = "prefers_create_over_transform"
    PREFERS_VIETNAMESE = "prefers_vietnamese"
    PREFERS_ENGLISH = "prefers_english"


@dataclass(frozen=True)
class PreferenceSignal:
    """One observation. ``hint`` is the detector's own confidence, informational only."""

    key: PreferenceKey
    hint: Optional[float] = None


@dataclass
class PreferenceRecord:
    key: PreferenceKey
    positive_count: int = 0
    negative_count: int = 0
    first_observed: float = 0.0
    last_observed: float = 0.0

    @property
    def total(self) -> int:
        return self.positive_count + self.negative_count

    @property
    def positive_ratio(self) -> float:
        return self.positive_count / self.total if self.total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "positive_count": self.positive_count,
            "negative_count": self.negative_count,
            "first_observed": self.first_observed,
            "last_observed": self.last_observed,
        }

    @classmethod
    def from_dict(cls, key: PreferenceKey, data: Dict[str, Any]) -> "PreferenceRecord":
        return cls(
            key=key,
            positive_count=int(data.get("positive_count", 0)),
            negative_count=int(data.get("negative_count", 0)),
            first_observed=float(data.get("first_observed", 0)),
            last_observed=float(data.get("last_observed", 0)),
        )


@dataclass
class PreferenceBias:
    key: PreferenceKey
    strength: float
    active: bool
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key.value,
            "strength": round(self.strength, 4),
            "active": self.active,
            "reason": self.reason,
        }


@dataclass
class PreferenceContext:
    has_active_source: bool = False
    route_hint: Optional[IntentRoute] = None


@dataclass
class BiasResult:
    active_preferences: List[PreferenceBias] = field(default_factory=list)
    default_choice_bias: Optional[RouteChoice] = None
    default_choice_strength: float = 0.0
    option_order_bias: List[RouteChoice] = field(default_factory=lambda: list(DEFAULT_CHOICE_ORDER))
    debug_summary: str = "No active preferences"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_preferences": [p.to_dict() for p in self.active_preferences],
            "default_choice_bias": self.default_choice_bias.value if self.default_choice_bias else None,
            "default_choice_strength": round(self.default_choice_strength, 4),
            "option_order_bias": [c.value for c in self.option_order_bias],
            "debug_summary": self.debug_summary,
        }


def calculate_decay(last_observed: float, now: float, decay_per_day: float) -> float:
    days = max(0.0, now - last_observed) / SECONDS_PER_DAY
    return max(0.0, 1 - days * decay_per_day)


def calculate_strength(record: PreferenceRecord, now: float, cfg: Dict[str, Any]) -> float:
    """Effective strength in [0, max_strength]; 0 below the evidence thresholds."""
    if record.total < cfg["min_observations"]:
        return 0.0

    ratio = record.positive_ratio
    threshold = cfg["positive_ratio"]
    if ratio < threshold:
        return 0.0

    base = (ratio - threshold) / (1 - threshold)
    decayed = base * calculate_decay(record.last_observed, now, cfg["decay_per_day"])
    bonus = min(1.0, record.total / cfg["observation_bonus_cap"])
    boosted = decayed * (0.7 + 0.3 * bonus)
    return min(cfg["max_strength"], boosted)


class PreferenceStore:
    """
    Persisted preference counters under ``preferences:v1``.

    When a user id is given (governance active) the key is scoped to that
    user so that shared devices do not mix preferences.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        config: Optional[Dict[str, Any]] = None,
        clock: Callable[[], float] = time.time,
        user_id: Optional[str] = None,
    ):
        self._backend = backend
        self._cfg = get_preference_config(config)
        self._clock = clock
        self._key = user_scoped_key(PREFERENCES_KEY, user_id) if user_id else PREFERENCES_KEY

    @property
    def storage_key(self) -> str:
        return self._key

    def _empty(self) -> Dict[str, Any]:
        return {"version": PREFERENCES_VERSION, "preferences": {}, "last_cleanup": self._clock()}

    def _load_state(self) -> Dict[str, Any]:
        return load_versioned_blob(
            self._backend, self._key, PREFERENCES_VERSION, self._empty, fields={"preferences": dict}
        )

    def _records(self, state: Dict[str, Any]) -> Dict[PreferenceKey, PreferenceRecord]:
        records = {}
        for raw_key, data in state["preferences"].items():
            try:
                key = PreferenceKey(raw_key)
            except ValueError:
                logger.warning(f"Ignoring unknown preference key: {raw_key}")
                continue
            try:
                records[key] = PreferenceRecord.from_dict(key, data)
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning(f"Ignoring malformed preference {raw_key}: {e}")
        return records

    def _cleanup(self, state: Dict[str, Any], now: float) -> None:
        ttl = self._cfg["ttl_days"] * SECONDS_PER_DAY
        expired = []
        for raw_key, data in state["preferences"].items():
            try:
                last = float(data.get("last_observed", 0))
            except (AttributeError, TypeError, ValueError):
                expired.append(raw_key)
                continue
            if now - last > ttl or calculate_decay(last, now, self._cfg["decay_per_day"]) < _MIN_DECAY:
                expired.append(raw_key)
        for raw_key in expired:
            del state["preferences"][raw_key]
        if expired:
            logger.info(f"Removed {len(expired)} expired preferences")

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def record_preference(self, signal: PreferenceSignal, negative: bool = False) -> None:
        """Record one observation (negative=True for a contradicting one)."""
        self.record_preferences([(signal, negative)])

    def record_preferences(self, batch: Iterable[Tuple[PreferenceSignal, bool]]) -> None:
        """Record several observations with a single write."""
        try:
            state = self._load_state()
            now = self._clock()

            records = self._records(state)
            for signal, negative in batch:
                record = records.get(signal.key) or PreferenceRecord(
                    key=signal.key, first_observed=now, last_observed=now
                )
                records[signal.key] = record
                if negative:
                    record.negative_count += 1
                else:
                    record.positive_count += 1
                record.last_observed = now
                state["preferences"][signal.key.value] = record.to_dict()

            interval = self._cfg["cleanup_interval_hours"] * 60 * 60
            if now - float(state.get("last_cleanup", 0)) > interval:
                self._cleanup(state, now)
                state["last_cleanup"] = now

            save_versioned_blob(self._backend, self._key, state)
        except Exception as e:
            logger.warning(f"Failed to record preferences: {e}")

    def clear(self) -> None:
        delete_blob(self._backend, self._key)

    # -------------------------------------------------------------------------
    # Reads (side-effect free)
    # -------------------------------------------------------------------------

    def get_record(self, key: PreferenceKey) -> Optional[PreferenceRecord]:
        return self._records(self._load_state()).get(key)

    def _bias_for(self, record: PreferenceRecord, now: float) -> PreferenceBias:
        cfg = self._cfg
        strength = calculate_strength(record, now, cfg)
        enough = record.total >= cfg["min_observations"]
        positive = record.positive_ratio >= cfg["positive_ratio"]
        active = enough and positive and strength >= cfg["min_active_strength"]

        if active:
            reason = (f"{record.positive_count}/{record.total} observations, "
                      f"{round(strength * 100)}% strength")
        elif not enough:
            reason = f"Insufficient observations ({record.total}/{cfg['min_observations']})"
        elif not positive:
            reason = f"Below positive ratio ({round(record.positive_ratio * 100)}%)"
        else:
            reason = f"Weak signal ({round(strength * 100)}%)"

        return PreferenceBias(
            key=record.key,
            strength=strength if active else 0.0,
            active=active,
            reason=reason,
        )

    def get_preference(self, key: PreferenceKey) -> Optional[PreferenceBias]:
        record = self.get_record(key)
        if record is None:
            return None
        return self._bias_for(record, self._clock())

    def get_active_preferences(self) -> List[PreferenceBias]:
        """Active preferences sorted by strength, strongest first."""
        now = self._clock()
        biases = [self._bias_for(r, now) for r in self._records(self._load_state()).values()]
        active = [b for b in biases if b.active]
        return sorted(active, key=lambda b: b.strength, reverse=True)

    def get_preference_bias(self, ctx: Optional[PreferenceContext] = None) -> BiasResult:
        """
        Soft suggestions for the confirmation UI.

        - prefers_edit_in_place only biases when a source is active
        - transform/create preferences only bias when consistent with the
          route hint
        - option order sorts choices by summed active strength, keeping the
          base order for ties
        """
        ctx = ctx or PreferenceContext()
        active = self.get_active_preferences()
        if not active:
            return BiasResult()

        scores = {choice: 0.0 for choice in DEFAULT_CHOICE_ORDER}
        default_choice: Optional[RouteChoice] = None
        default_strength = 0.0

        for pref in active:
            if pref.key == PreferenceKey.PREFERS_EDIT_IN_PLACE:
                choice, allowed = RouteChoice.EDIT_IN_PLACE, ctx.has_active_source
            elif pref.key == PreferenceKey.PREFERS_TRANSFORM_OVER_CREATE:
                choice, allowed = RouteChoice.TRANSFORM_NEW_VERSION, ctx.route_hint != IntentRoute.CREATE
            elif pref.key == PreferenceKey.PREFERS_CREATE_OVER_TRANSFORM:
                choice, allowed = RouteChoice.CREATE_NEW, ctx.route_hint != IntentRoute.TRANSFORM
            else:
                continue

            scores[choice] += pref.strength
            if allowed and pref.strength > default_strength:
                default_choice = choice
                default_strength = pref.strength

        order = sorted(DEFAULT_CHOICE_ORDER, key=lambda c: scores[c], reverse=True)
        summary = "Active: " + ", ".join(
            f"{p.key.value}({round(p.strength * 100)}%)" for p in active
        )
        return BiasResult(
            active_preferences=active,
            default_choice_bias=default_choice,
            default_choice_strength=default_strength,
            option_order_bias=order,
            debug_summary=summary,
        )

    def get_stats(self) -> Dict[str, Any]:
        records = self._records(self._load_state())
        return {
            "total_keys": len(records),
            "active_count": len(self.get_active_preferences()),
            "total_observations": sum(r.total for r in records.values()),
        }


def get_preference_debug_summary(active: List[PreferenceBias]) -> str:
    if not active:
        return "No prefs"
    parts = [f"{p.key.value}:{round(p.strength * 100)}%" for p in active[:3]]
    if len(active) > 3:
        parts.append(f"+{len(active) - 3}")
    return " | ".join(parts)


# =============================================================================
# Signal detection
# =============================================================================


def detect_choice_signals(choice: RouteChoice, ctx: Optional[PreferenceContext] = None) -> List[PreferenceSignal]:
    """Signals implied by the option the user picked."""
    ctx = ctx or PreferenceContext()
    if choice == RouteChoice.EDIT_IN_PLACE:
        return [PreferenceSignal(PreferenceKey.PREFERS_EDIT_IN_PLACE)]
    if choice == RouteChoice.TRANSFORM_NEW_VERSION and ctx.route_hint == IntentRoute.CREATE:
        return [PreferenceSignal(PreferenceKey.PREFERS_TRANSFORM_OVER_CREATE)]
    if choice == RouteChoice.CREATE_NEW and ctx.route_hint == IntentRoute.TRANSFORM:
        return [PreferenceSignal(PreferenceKey.PREFERS_CREATE_OVER_TRANSFORM)]
    return []


_EMOJI_IN_OUTPUT = re.compile("[\U0001F300-\U0001F9FF\u2600-\u26FF\u2700-\u27BF]")


def detect_output_signals(output: str) -> List[PreferenceSignal]:
    """Signals from an accepted output's length and emoji use."""
    signals = []
    words = len((output or "").split())
    if words < 100:
        signals.append(PreferenceSignal(PreferenceKey.PREFERS_SHORT_OUTPUT, hint=0.3))
    elif words > 300:
        signals.append(PreferenceSignal(PreferenceKey.PREFERS_LONG_OUTPUT, hint=0.3))
    if _EMOJI_IN_OUTPUT.search(output or ""):
        signals.append(PreferenceSignal(PreferenceKey.LIKES_EMOJI, hint=0.2))
    return signals


_INSTRUCTION_SIGNALS = [
    (PreferenceKey.PREFERS_SHORT_OUTPUT, re.compile(r"\b(?:ngắn|gọn|súc tích|brief|short|concise)\b")),
    (PreferenceKey.PREFERS_LONG_OUTPUT, re.compile(r"\b(?:dài|chi tiết|detailed|elaborate|expand)\b")),
    (PreferenceKey.PREFERS_PROFESSIONAL_TONE,
     re.compile(r"\b(?:chuyên nghiệp|professional|formal|trang trọng)\b")),
    (PreferenceKey.PREFERS_CASUAL_TONE, re.compile(r"\b(?:thân thiện|casual|friendly|thoải mái)\b")),
    (PreferenceKey.AVOIDS_EMOJI, re.compile(r"\b(?:bỏ emoji|no emoji|không emoji|remove emoji)\b")),
]

_LIKES_EMOJI = re.compile(r"\b(?:thêm emoji|add emoji|emoji)\b")


def detect_instruction_signals(instruction: str) -> List[PreferenceSignal]:
    """Signals from wording such as "ngắn gọn" or "more professional"."""
    normalized = unicodedata.normalize("NFC", (instruction or "").lower())
    signals = [PreferenceSignal(key) for key, pattern in _INSTRUCTION_SIGNALS if pattern.search(normalized)]
    avoids = any(s.key == PreferenceKey.AVOIDS_EMOJI for s in signals)
    if not avoids and _LIKES_EMOJI.search(normalized):
        signals.append(PreferenceSignal(PreferenceKey.LIKES_EMOJI))
    return signals
