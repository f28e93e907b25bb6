"""Tests for pattern hashing, learned choices and reliability."""

import json

from intent_engine.learning import (
    CHOICES_KEY,
    RELIABILITY_KEY,
    LearningStore,
    compute_pattern_hash,
    normalize_pattern_text,
    safe_hash,
)
from intent_engine.models import RouteChoice
from intent_engine.outcomes import OutcomeSignal, derive_outcome

UNDO = derive_outcome([OutcomeSignal.UNDO_WITHIN_WINDOW])
ACCEPT = derive_outcome([OutcomeSignal.ACCEPT_SILENTLY])
EDIT = derive_outcome([OutcomeSignal.EDIT_AFTER])


class TestPatternHash:
    """Tests for compute_pattern_hash."""

    def test_deterministic(self):
        a = compute_pattern_hash("Sửa hook", True, True, False)
        b = compute_pattern_hash("Sửa hook", True, True, False)
        assert a == b

    def test_case_and_whitespace_insensitive(self):
        a = compute_pattern_hash("Sửa   HOOK ", True, True, False)
        b = compute_pattern_hash("sửa hook", True, True, False)
        assert a == b

    def test_context_changes_hash(self):
        """The same words with a different source context are a different pattern."""
        a = compute_pattern_hash("sửa hook", True, True, False)
        b = compute_pattern_hash("sửa hook", False, True, False)
        c = compute_pattern_hash("sửa hook", True, True, True)
        assert len({a, b, c}) == 3

    def test_raw_text_not_in_hash(self):
        digest = compute_pattern_hash("secret product launch", True, True, False)
        assert "secret" not in digest
        assert digest.isalnum()

    def test_only_prefix_hashed(self):
        prefix = "x" * 50
        assert compute_pattern_hash(prefix + "aaa", True, True, False) == compute_pattern_hash(
            prefix + "bbb", True, True, False
        )

    def test_safe_hash_is_base36(self):
        assert safe_hash("") == "45h"  # 5381 in base36
        assert all(ch in "0123456789abcdefghijklmnopqrstuvwxyz" for ch in safe_hash("hello"))

    def test_normalize_pattern_text(self):
        assert normalize_pattern_text("  A\tB  ") == "a b"


class TestLearnedChoices:
    """Tests for learned choice streaks and auto-apply."""

    def test_first_choice(self, learning_store):
        learned = learning_store.record_choice("p1", RouteChoice.TRANSFORM_NEW_VERSION)
        assert learned.count == 1
        assert learning_store.get_auto_apply_choice("p1") is None

    def test_consistent_choice_enables_auto_apply(self, learning_store):
        learning_store.record_choice("p1", RouteChoice.TRANSFORM_NEW_VERSION)
        learning_store.record_choice("p1", RouteChoice.TRANSFORM_NEW_VERSION)
        assert learning_store.get_auto_apply_choice("p1") == RouteChoice.TRANSFORM_NEW_VERSION

    def test_different_choice_resets_streak(self, learning_store):
        learning_store.record_choice("p1", RouteChoice.TRANSFORM_NEW_VERSION)
        learning_store.record_choice("p1", RouteChoice.TRANSFORM_NEW_VERSION)
        learned = learning_store.record_choice("p1", RouteChoice.CREATE_NEW)
        assert learned.count == 1
        assert learning_store.get_auto_apply_choice("p1") is None

    def test_negatives_block_auto_apply(self, learning_store):
        learning_store.record_choice("p1", RouteChoice.CREATE_NEW)
        learning_store.record_choice("p1", RouteChoice.CREATE_NEW)
        learning_store.record_negative_signal("p1")
        assert learning_store.get_auto_apply_choice("p1") == RouteChoice.CREATE_NEW
        learning_store.record_negative_signal("p1")
        assert learning_store.get_auto_apply_choice("p1") is None

    def test_negative_for_unknown_pattern_is_ignored(self, learning_store):
        learning_store.record_negative_signal("nope")
        assert learning_store.get_learned_choice("nope") is None

    def test_expired_choice(self, learning_store, clock):
        learning_store.record_choice("p1", RouteChoice.CREATE_NEW)
        clock.advance_days(31)
        assert learning_store.get_learned_choice("p1") is None

    def test_version_mismatch_resets(self, learning_store, memory_backend):
        memory_backend.set(CHOICES_KEY, json.dumps({"version": 0, "patterns": {"p1": {}}}))
        assert learning_store.get_learned_choice("p1") is None

    def test_patterns_not_a_mapping_resets(self, learning_store, memory_backend, caplog):
        memory_backend.set(CHOICES_KEY, json.dumps({"version": 1, "patterns": ["p1"]}))
        assert learning_store.get_learned_choice("p1") is None
        assert "Unexpected shape" in caplog.text
        assert learning_store.record_choice("p1", RouteChoice.CREATE_NEW).count == 1

    def test_malformed_choice_is_ignored(self, learning_store, memory_backend):
        state = {"version": 1, "patterns": {"p1": {"choice": "CREATE_NEW", "count": "x"}}}
        memory_backend.set(CHOICES_KEY, json.dumps(state))
        assert learning_store.get_learned_choice("p1") is None
        assert learning_store.get_auto_apply_choice("p1") is None

    def test_clear(self, learning_store):
        learning_store.record_choice("p1", RouteChoice.CREATE_NEW)
        learning_store.clear()
        assert learning_store.get_learned_choice("p1") is None


class TestReliability:
    """Tests for the pattern reliability aggregate."""

    def test_accept_and_undo_counted(self, learning_store):
        learning_store.record_outcome_reliability("i1", "p1", ACCEPT)
        learning_store.record_outcome_reliability("i2", "p1", UNDO)
        reliability = learning_store.get_pattern_reliability("p1")
        assert reliability.accepted_count == 1
        assert reliability.high_negative_count == 1
        assert reliability.last_intent_id == "i2"

    def test_medium_negative_not_counted(self, learning_store):
        learning_store.record_outcome_reliability("i1", "p1", EDIT)
        assert learning_store.get_pattern_reliability("p1") is None

    def test_unreliable_after_two_undos(self, learning_store):
        learning_store.record_outcome_reliability("i1", "p1", UNDO)
        assert learning_store.is_pattern_unreliable("p1") is False
        learning_store.record_outcome_reliability("i2", "p1", UNDO)
        assert learning_store.is_pattern_unreliable("p1") is True

    def test_unreliable_blocks_auto_apply(self, learning_store):
        learning_store.record_choice("p1", RouteChoice.TRANSFORM_NEW_VERSION)
        learning_store.record_choice("p1", RouteChoice.TRANSFORM_NEW_VERSION)
        learning_store.record_outcome_reliability("i1", "p1", UNDO)
        learning_store.record_outcome_reliability("i2", "p1", UNDO)
        assert learning_store.get_auto_apply_choice("p1") is None

    def test_malformed_reliability_is_ignored(self, learning_store, memory_backend, caplog):
        state = {"version": 1, "patterns": {"p1": {"high_negative_count": "many"}}}
        memory_backend.set(RELIABILITY_KEY, json.dumps(state))
        assert learning_store.get_pattern_reliability("p1") is None
        assert learning_store.is_pattern_unreliable("p1") is False
        assert "Ignoring malformed reliability for p1" in caplog.text

    def test_user_scoped_keys(self, memory_backend, config, clock):
        """Stores with different key suffixes do not share state."""
        a = LearningStore(memory_backend, config, clock=clock, key_suffix=":user:a")
        b = LearningStore(memory_backend, config, clock=clock, key_suffix=":user:b")
        a.record_choice("p1", RouteChoice.CREATE_NEW)
        assert b.get_learned_choice("p1") is None
