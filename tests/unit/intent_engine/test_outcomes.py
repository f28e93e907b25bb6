"""Tests for outcome signals, derivation and the outcome store."""

import json

from intent_engine.models import IntentRoute
from intent_engine.outcomes import (
    OUTCOMES_KEY,
    OutcomeRecord,
    OutcomeSignal,
    OutcomeStore,
    ReactionEvents,
    Severity,
    derive_outcome,
    detect_outcome_signals,
    should_mark_unreliable,
)


class TestDeriveOutcome:
    """Tests for derive_outcome."""

    def test_undo_is_high_severity(self):
        derived = derive_outcome([OutcomeSignal.UNDO_WITHIN_WINDOW])
        assert derived.negative is True
        assert derived.accepted is False
        assert derived.severity == Severity.HIGH

    def test_edit_after_is_medium(self):
        derived = derive_outcome([OutcomeSignal.EDIT_AFTER])
        assert derived.negative is True
        assert derived.severity == Severity.MEDIUM

    def test_resend_is_medium(self):
        derived = derive_outcome([OutcomeSignal.RESEND_IMMEDIATELY])
        assert derived.negative is True
        assert derived.severity == Severity.MEDIUM

    def test_accept(self):
        derived = derive_outcome([OutcomeSignal.ACCEPT_SILENTLY])
        assert derived.accepted is True
        assert derived.negative is False

    def test_undo_beats_accept(self):
        """An undo outweighs everything else."""
        derived = derive_outcome([OutcomeSignal.ACCEPT_SILENTLY, OutcomeSignal.UNDO_WITHIN_WINDOW])
        assert derived.negative is True
        assert derived.severity == Severity.HIGH

    def test_no_signals(self):
        derived = derive_outcome([])
        assert derived.accepted is False
        assert derived.negative is False
        assert derived.severity == Severity.LOW

    def test_should_mark_unreliable(self):
        assert should_mark_unreliable(derive_outcome([OutcomeSignal.UNDO_WITHIN_WINDOW])) is True
        assert should_mark_unreliable(derive_outcome([OutcomeSignal.EDIT_AFTER])) is False


class TestDetectOutcomeSignals:
    """Tests for detect_outcome_signals."""

    def test_undo_inside_window(self):
        events = ReactionEvents(generated_at=100, now=103, undo_at=103)
        assert detect_outcome_signals(events) == [OutcomeSignal.UNDO_WITHIN_WINDOW]

    def test_undo_outside_window_ignored(self):
        """An undo after the window is not a signal; acceptance needs time too."""
        events = ReactionEvents(generated_at=100, now=110, undo_at=110)
        assert detect_outcome_signals(events) == []

    def test_edit_and_resend(self):
        events = ReactionEvents(generated_at=0, now=30, edit_at=30, resend_at=5)
        assert detect_outcome_signals(events) == [
            OutcomeSignal.EDIT_AFTER,
            OutcomeSignal.RESEND_IMMEDIATELY,
        ]

    def test_silent_acceptance_after_window(self):
        events = ReactionEvents(generated_at=0, now=20)
        assert detect_outcome_signals(events) == [OutcomeSignal.ACCEPT_SILENTLY]

    def test_too_early_for_acceptance(self):
        events = ReactionEvents(generated_at=0, now=19)
        assert detect_outcome_signals(events) == []

    def test_windows_from_config(self, config):
        config["outcomes"]["undo_window_seconds"] = 30
        events = ReactionEvents(generated_at=0, now=25, undo_at=25)
        assert detect_outcome_signals(events, config) == [OutcomeSignal.UNDO_WITHIN_WINDOW]


class TestOutcomeRecord:
    """Tests for OutcomeRecord."""

    def test_derived_once_at_creation(self):
        """Stored derived labels are read back, not recomputed."""
        record = OutcomeRecord.create("p1", IntentRoute.TRANSFORM, [OutcomeSignal.EDIT_AFTER], now=1.0)
        data = record.to_dict()
        data["derived"]["severity"] = "high"
        restored = OutcomeRecord.from_dict(data)
        assert restored.derived.severity == Severity.HIGH
        assert restored.signals == [OutcomeSignal.EDIT_AFTER]

    def test_generated_intent_id(self):
        record = OutcomeRecord.create("p1", IntentRoute.CREATE, [], now=1.0)
        assert record.intent_id.startswith("intent-")


class TestOutcomeStore:
    """Tests for OutcomeStore."""

    def test_record_and_list_recent(self, outcome_store, clock):
        """Newest records come first."""
        outcome_store.record_signals("p1", IntentRoute.TRANSFORM, [OutcomeSignal.ACCEPT_SILENTLY])
        clock.advance(1)
        outcome_store.record_signals("p2", IntentRoute.TRANSFORM, [OutcomeSignal.EDIT_AFTER])

        recent = outcome_store.list_recent(10)
        assert [r.pattern_hash for r in recent] == ["p2", "p1"]
        assert outcome_store.list_recent(1)[0].pattern_hash == "p2"
        assert outcome_store.list_recent(0) == []

    def test_capped_ring_buffer(self, memory_backend, config, clock):
        config["outcomes"]["max_records"] = 3
        store = OutcomeStore(memory_backend, config, clock=clock)
        for i in range(5):
            store.record_signals(f"p{i}", IntentRoute.TRANSFORM, [])
        assert [r.pattern_hash for r in store.list_recent(10)] == ["p4", "p3", "p2"]

    def test_same_intent_id_replaces(self, outcome_store):
        outcome_store.record_signals("p1", IntentRoute.TRANSFORM, [], intent_id="i1")
        outcome_store.record_signals("p1", IntentRoute.TRANSFORM, [OutcomeSignal.UNDO_WITHIN_WINDOW], intent_id="i1")
        records = outcome_store.list_recent(10)
        assert len(records) == 1
        assert records[0].derived.severity == Severity.HIGH

    def test_list_for_pattern(self, outcome_store):
        outcome_store.record_signals("p1", IntentRoute.TRANSFORM, [])
        outcome_store.record_signals("p2", IntentRoute.TRANSFORM, [])
        outcome_store.record_signals("p1", IntentRoute.TRANSFORM, [])
        assert len(outcome_store.list_for_pattern("p1")) == 2

    def test_get(self, outcome_store):
        outcome_store.record_signals("p1", IntentRoute.TRANSFORM, [], intent_id="i-42")
        assert outcome_store.get("i-42").pattern_hash == "p1"
        assert outcome_store.get("nope") is None

    def test_expired_hidden_but_not_deleted_on_read(self, outcome_store, memory_backend, clock):
        """Reads filter expired records without writing."""
        outcome_store.record_signals("p1", IntentRoute.TRANSFORM, [])
        clock.advance_days(31)
        raw_before = memory_backend.get(OUTCOMES_KEY)

        assert outcome_store.list_recent(10) == []
        assert memory_backend.get(OUTCOMES_KEY) == raw_before

        assert outcome_store.cleanup_expired() == 1
        assert json.loads(memory_backend.get(OUTCOMES_KEY))["records"] == []

    def test_version_mismatch_resets(self, memory_backend, outcome_store):
        """A blob from another schema version is treated as empty."""
        memory_backend.set(OUTCOMES_KEY, json.dumps({"version": 99, "records": [{"x": 1}]}))
        assert outcome_store.list_recent(10) == []

    def test_malformed_json_resets(self, memory_backend, outcome_store):
        memory_backend.set(OUTCOMES_KEY, "{not json")
        assert outcome_store.list_recent(10) == []
        assert outcome_store.record_signals("p1", IntentRoute.TRANSFORM, []) is not None
        assert len(outcome_store.list_recent(10)) == 1

    def test_records_not_a_list_resets(self, memory_backend, outcome_store, caplog):
        memory_backend.set(OUTCOMES_KEY, json.dumps({"version": 1, "records": 5}))
        assert outcome_store.list_recent(10) == []
        assert outcome_store.get_stats().total == 0
        assert "Unexpected shape" in caplog.text

        outcome = outcome_store.record_signals("p1", IntentRoute.TRANSFORM, [OutcomeSignal.ACCEPT_SILENTLY])
        assert outcome_store.get(outcome.intent_id) is not None

    def test_malformed_record_is_dropped(self, memory_backend, outcome_store, caplog):
        memory_backend.set(OUTCOMES_KEY, json.dumps({"version": 1, "records": ["junk", {"intent_id": "x"}]}))
        assert outcome_store.list_recent(10) == []
        assert "Dropping malformed outcome record" in caplog.text

    def test_stats(self, outcome_store):
        outcome_store.record_signals("p1", IntentRoute.TRANSFORM, [OutcomeSignal.ACCEPT_SILENTLY])
        outcome_store.record_signals("p1", IntentRoute.TRANSFORM, [OutcomeSignal.UNDO_WITHIN_WINDOW])
        stats = outcome_store.get_stats()
        assert stats.total == 2
        assert stats.accepted == 1
        assert stats.negative == 1
        assert stats.high_severity == 1

    def test_clear(self, outcome_store, memory_backend):
        outcome_store.record_signals("p1", IntentRoute.TRANSFORM, [])
        outcome_store.clear()
        assert memory_backend.get(OUTCOMES_KEY) is None
