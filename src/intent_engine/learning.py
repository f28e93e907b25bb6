"""
Pattern learning: hashed instruction patterns, learned choices, reliability.

Raw instruction text is never stored. A pattern hash is derived from a
truncated, normalized instruction plus the context bits that change what the
instruction means (active source, last valid assistant message, explicit
UI selection).

Two aggregates are kept per pattern hash:
- learned choice: the route the user picked, and how often in a row
- reliability: accepted vs. high-severity negative outcomes
"""

import logging
import re
import time
import unicodedata
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from intent_engine.config import get_learning_config
from intent_engine.models import RouteChoice
from intent_engine.outcomes import SECONDS_PER_DAY, DerivedOutcome, Severity
from intent_engine.storage import (
    KeyValueBackend,
    delete_blob,
    load_versioned_blob,
    save_versioned_blob,
)

logger = logging.getLogger(__name__)

CHOICES_KEY = "learning:choices:v1"
RELIABILITY_KEY = "learning:reliability:v1"
LEARNING_VERSION = 1

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def safe_hash(text: str) -> str:
    """djb2 (xor variant) over code points, unsigned 32-bit, base36."""
    value = 5381
    for ch in text:
        value = (((value << 5) + value) ^ ord(ch)) & 0xFFFFFFFF
    return _to_base36(value)


def normalize_pattern_text(text: str, max_length: int = 50) -> str:
    normalized = unicodedata.normalize("NFC", (text or "").lower()).strip()
    normalized = re.sub(r"\s+", " ", normalized)
    return normalized[:max_length]


def compute_pattern_hash(
    instruction: str,
    has_active_source: bool,
    has_last_valid_assistant: bool,
    ui_source_selected: bool,
    max_length: int = 50,
) -> str:
    """
    Privacy-safe identifier for a recurring instruction shape.

    Args:
        instruction: Raw instruction (only its normalized prefix is hashed)
        has_active_source: A source message is bound
        has_last_valid_assistant: The log has a usable assistant message
        ui_source_selected: The user picked the source explicitly
        max_length: Prefix length of the normalized instruction

    Returns:
        Base36 hash string
    """
    parts = [
        normalize_pattern_text(instruction, max_length),
        f"src:{int(has_active_source)}",
        f"ctx:{int(has_last_valid_assistant)}",
        f"ui:{int(ui_source_selected)}",
    ]
    return safe_hash("|".join(parts))


@dataclass
class LearnedChoice:
    pattern_hash: str
    choice: RouteChoice
    count: int
    negative_count: int
    last_used: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "choice": self.choice.value,
            "count": self.count,
            "negative_count": self.negative_count,
            "last_used": self.last_used,
        }

    @classmethod
    def from_dict(cls, pattern_hash: str, data: Dict[str, Any]) -> "LearnedChoice":
        return cls(
            pattern_hash=pattern_hash,
            choice=RouteChoice(data["choice"]),
            count=int(data.get("count", 0)),
            negative_count=int(data.get("negative_count", 0)),
            last_used=float(data.get("last_used", 0)),
        )


@dataclass
class PatternReliability:
    pattern_hash: str
    accepted_count: int = 0
    high_negative_count: int = 0
    last_updated: float = 0.0
    last_intent_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accepted_count": self.accepted_count,
            "high_negative_count": self.high_negative_count,
            "last_updated": self.last_updated,
            "last_intent_id": self.last_intent_id,
        }

    @classmethod
    def from_dict(cls, pattern_hash: str, data: Dict[str, Any]) -> "PatternReliability":
        return cls(
            pattern_hash=pattern_hash,
            accepted_count=int(data.get("accepted_count", 0)),
            high_negative_count=int(data.get("high_negative_count", 0)),
            last_updated=float(data.get("last_updated", 0)),
            last_intent_id=data.get("last_intent_id"),
        )


class LearningStore:
    """Persisted learned choices and pattern reliability aggregates."""

    def __init__(
        self,
        backend: KeyValueBackend,
        config: Optional[Dict[str, Any]] = None,
        clock: Callable[[], float] = time.time,
        key_suffix: str = "",
    ):
        self._backend = backend
        self._cfg = get_learning_config(config)
        self._clock = clock
        self._choices_key = CHOICES_KEY + key_suffix
        self._reliability_key = RELIABILITY_KEY + key_suffix

    @staticmethod
    def _empty() -> Dict[str, Any]:
        return {"version": LEARNING_VERSION, "patterns": {}}

    def _load(self, key: str) -> Dict[str, Any]:
        return load_versioned_blob(
            self._backend, key, LEARNING_VERSION, self._empty, fields={"patterns": dict}
        )

    def _expired(self, timestamp: float) -> bool:
        return self._clock() - timestamp > self._cfg["ttl_days"] * SECONDS_PER_DAY

    # -------------------------------------------------------------------------
    # Learned choices
    # -------------------------------------------------------------------------

    def get_learned_choice(self, pattern_hash: str) -> Optional[LearnedChoice]:
        data = self._load(self._choices_key)["patterns"].get(pattern_hash)
        if not data:
            return None
        try:
            learned = LearnedChoice.from_dict(pattern_hash, data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed learned choice for {pattern_hash}: {e}")
            return None
        if self._expired(learned.last_used):
            return None
        return learned

    def record_choice(self, pattern_hash: str, choice: RouteChoice) -> Optional[LearnedChoice]:
        """
        Record the route the user picked for a pattern.

        The same choice again increments the streak; a different choice
        restarts it at 1.
        """
        try:
            state = self._load(self._choices_key)
            now = self._clock()
            existing = self.get_learned_choice(pattern_hash)

            if existing and existing.choice == choice:
                existing.count += 1
                existing.last_used = now
                learned = existing
            else:
                learned = LearnedChoice(
                    pattern_hash=pattern_hash,
                    choice=choice,
                    count=1,
                    negative_count=existing.negative_count if existing else 0,
                    last_used=now,
                )

            state["patterns"][pattern_hash] = learned.to_dict()
            save_versioned_blob(self._backend, self._choices_key, state)
            return learned
        except Exception as e:
            logger.warning(f"Failed to record choice for {pattern_hash}: {e}")
            return None

    def record_negative_signal(self, pattern_hash: str) -> None:
        try:
            state = self._load(self._choices_key)
            data = state["patterns"].get(pattern_hash)
            if not data:
                return
            data["negative_count"] = int(data.get("negative_count", 0)) + 1
            save_versioned_blob(self._backend, self._choices_key, state)
        except Exception as e:
            logger.warning(f"Failed to record negative signal for {pattern_hash}: {e}")

    def get_auto_apply_choice(self, pattern_hash: str) -> Optional[RouteChoice]:
        """
        Choice that may be applied without asking, or None.

        Requires a consistent streak of at least ``auto_apply_threshold``,
        fewer than ``negative_threshold`` negatives, and a pattern that is not
        marked unreliable.
        """
        learned = self.get_learned_choice(pattern_hash)
        if learned is None:
            return None
        if learned.negative_count >= self._cfg["negative_threshold"]:
            return None
        if self.is_pattern_unreliable(pattern_hash):
            return None
        if learned.count >= self._cfg["auto_apply_threshold"]:
            return learned.choice
        return None

    # -------------------------------------------------------------------------
    # Reliability
    # -------------------------------------------------------------------------

    def get_pattern_reliability(self, pattern_hash: str) -> Optional[PatternReliability]:
        data = self._load(self._reliability_key)["patterns"].get(pattern_hash)
        if not data:
            return None
        try:
            reliability = PatternReliability.from_dict(pattern_hash, data)
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed reliability for {pattern_hash}: {e}")
            return None
        if self._expired(reliability.last_updated):
            return None
        return reliability

    def record_outcome_reliability(
        self, intent_id: str, pattern_hash: str, derived: DerivedOutcome
    ) -> None:
        """Fold one derived outcome into the pattern's reliability counters."""
        high_negative = derived.negative and derived.severity == Severity.HIGH
        if not high_negative and not derived.accepted:
            return

        try:
            state = self._load(self._reliability_key)
            current = self.get_pattern_reliability(pattern_hash) or PatternReliability(pattern_hash)
            if high_negative:
                current.high_negative_count += 1
            else:
                current.accepted_count += 1
            current.last_updated = self._clock()
            current.last_intent_id = intent_id
            state["patterns"][pattern_hash] = current.to_dict()
            save_versioned_blob(self._backend, self._reliability_key, state)
        except Exception as e:
            logger.warning(f"Failed to record reliability for {pattern_hash}: {e}")

    def is_pattern_unreliable(self, pattern_hash: str) -> bool:
        reliability = self.get_pattern_reliability(pattern_hash)
        if reliability is None:
            return False
        return reliability.high_negative_count >= self._cfg["unreliable_threshold"]

    def clear(self) -> None:
        delete_blob(self._backend, self._choices_key)
        delete_blob(self._backend, self._reliability_key)
