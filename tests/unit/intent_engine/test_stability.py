"""Tests for the pattern stability scorer."""

import itertools

from intent_engine.models import ConfirmationGate, IntentRoute, RouteChoice
from intent_engine.outcomes import OutcomeSignal
from intent_engine.stability import (
    StabilityBand,
    StabilityMetrics,
    compute_stability,
    get_confirmation_gating,
    get_stability_band,
    get_stability_debug_summary,
    get_trust_copy,
    score_from_counts,
)

ACCEPT = [OutcomeSignal.ACCEPT_SILENTLY]
UNDO = [OutcomeSignal.UNDO_WITHIN_WINDOW]
EDIT = [OutcomeSignal.EDIT_AFTER]


def record(store, pattern_hash, signals, times=1):
    for _ in range(times):
        store.record_signals(pattern_hash, IntentRoute.TRANSFORM, signals)


def snapshot(backend):
    return {key: backend.get(key) for key in backend.keys()}


class TestScoreFromCounts:
    """Tests for the scoring formula."""

    def test_base_score(self):
        assert score_from_counts(0, 0, 0, 5) == 50

    def test_contributions_are_capped(self):
        """Each kind counts at most three times."""
        assert score_from_counts(10, 0, 0, 10) == 74
        assert score_from_counts(0, 10, 0, 10) == 0
        assert score_from_counts(0, 0, 10, 10) == 26

    def test_always_within_bounds(self):
        """Score stays in [0, 100] for any counts."""
        for accepted, high, medium, recent in itertools.product(range(0, 7), repeat=4):
            score = score_from_counts(accepted, high, medium, recent)
            assert 0 <= score <= 100

    def test_low_evidence_cap(self):
        """Fewer than three recent outcomes never score above 60."""
        for accepted, high, medium in itertools.product(range(0, 7), repeat=3):
            for recent in (0, 1, 2):
                assert score_from_counts(accepted, high, medium, recent) <= 60

    def test_overridable_constants(self, config):
        config["stability"]["base_score"] = 90
        assert score_from_counts(3, 0, 0, 5, config) == 100

    def test_bands(self):
        assert get_stability_band(80) == StabilityBand.HIGH
        assert get_stability_band(79) == StabilityBand.MEDIUM
        assert get_stability_band(50) == StabilityBand.MEDIUM
        assert get_stability_band(49) == StabilityBand.LOW


class TestComputeStability:
    """Tests for compute_stability."""

    def test_no_history(self, outcome_store, learning_store):
        metrics = compute_stability("p1", outcome_store, learning_store)
        assert metrics.stability_score == 50
        assert metrics.band == StabilityBand.MEDIUM
        assert metrics.recent_count == 0
        assert metrics.reason == "Learning: limited evidence"
        assert metrics.auto_apply_eligible is False

    def test_few_accepts_capped_at_60(self, outcome_store, learning_store):
        record(outcome_store, "p1", ACCEPT, times=2)
        metrics = compute_stability("p1", outcome_store, learning_store)
        assert metrics.stability_score == 60

    def test_repeated_undos_are_low(self, outcome_store, learning_store):
        record(outcome_store, "p1", UNDO, times=3)
        metrics = compute_stability("p1", outcome_store, learning_store)
        assert metrics.stability_score == 0
        assert metrics.band == StabilityBand.LOW
        assert metrics.negative_high_count == 3
        assert metrics.reason == "Unstable: frequent reversals"

    def test_medium_negatives(self, outcome_store, learning_store):
        record(outcome_store, "p1", EDIT, times=2)
        record(outcome_store, "p1", ACCEPT, times=1)
        metrics = compute_stability("p1", outcome_store, learning_store)
        assert metrics.negative_medium_count == 2
        assert metrics.stability_score == 50 + 8 - 16
        assert metrics.reason == "Caution: some negatives"

    def test_other_patterns_ignored(self, outcome_store, learning_store):
        record(outcome_store, "p2", UNDO, times=3)
        metrics = compute_stability("p1", outcome_store, learning_store)
        assert metrics.recent_count == 0

    def test_reliability_aggregate_included(self, outcome_store, learning_store):
        """High-severity negatives from the reliability aggregate count too."""
        from intent_engine.outcomes import derive_outcome

        learning_store.record_outcome_reliability("i1", "p1", derive_outcome(UNDO))
        metrics = compute_stability("p1", outcome_store, learning_store)
        assert metrics.negative_high_count == 1

    def test_auto_apply_eligibility_read_from_learning(self, outcome_store, learning_store):
        learning_store.record_choice("p1", RouteChoice.CREATE_NEW)
        learning_store.record_choice("p1", RouteChoice.CREATE_NEW)
        metrics = compute_stability("p1", outcome_store, learning_store)
        assert metrics.auto_apply_eligible is True

    def test_high_band_with_tuned_config(self, memory_backend, config, clock):
        from intent_engine.learning import LearningStore
        from intent_engine.outcomes import OutcomeStore

        config["stability"]["accepted_bonus"] = 12
        outcomes = OutcomeStore(memory_backend, config, clock=clock)
        learning = LearningStore(memory_backend, config, clock=clock)
        record(outcomes, "p1", ACCEPT, times=3)
        learning.record_choice("p1", RouteChoice.TRANSFORM_NEW_VERSION)
        learning.record_choice("p1", RouteChoice.TRANSFORM_NEW_VERSION)

        metrics = compute_stability("p1", outcomes, learning, config)
        assert metrics.band == StabilityBand.HIGH
        assert get_confirmation_gating(metrics) == ConfirmationGate.SKIP

    def test_read_failure_yields_safe_default(self, learning_store):
        class BrokenOutcomes:
            def list_for_pattern(self, pattern_hash, limit=20):
                raise RuntimeError("disk gone")

        metrics = compute_stability("p1", BrokenOutcomes(), learning_store)
        assert metrics.stability_score == 50
        assert metrics.auto_apply_eligible is False
        assert get_confirmation_gating(metrics) != ConfirmationGate.SKIP

    def test_repeated_reads_do_not_write(self, outcome_store, learning_store, memory_backend, clock):
        """Computing stability any number of times leaves storage untouched."""
        record(outcome_store, "p1", ACCEPT, times=2)
        learning_store.record_choice("p1", RouteChoice.CREATE_NEW)
        clock.advance_days(40)
        before = snapshot(memory_backend)
        for _ in range(5):
            compute_stability("p1", outcome_store, learning_store)
        assert snapshot(memory_backend) == before


class TestConfirmationGating:
    """Tests for get_confirmation_gating."""

    def make(self, band, high=0, eligible=False):
        return StabilityMetrics(
            pattern_hash="p",
            stability_score=50,
            band=band,
            accepted_count=0,
            negative_high_count=high,
            negative_medium_count=0,
            recent_count=5,
            auto_apply_eligible=eligible,
            reason="",
        )

    def test_never_skip_when_low_or_high_negative(self):
        """LOW band or any high-severity negative never skips."""
        for band, high, eligible in itertools.product(StabilityBand, range(0, 4), (True, False)):
            gate = get_confirmation_gating(self.make(band, high, eligible))
            if band == StabilityBand.LOW or high >= 1:
                assert gate == ConfirmationGate.FORCE

    def test_skip_requires_eligibility(self):
        assert get_confirmation_gating(self.make(StabilityBand.HIGH, eligible=True)) == ConfirmationGate.SKIP
        assert get_confirmation_gating(self.make(StabilityBand.HIGH)) == ConfirmationGate.DEFAULT

    def test_medium_defers(self):
        assert get_confirmation_gating(self.make(StabilityBand.MEDIUM, eligible=True)) == ConfirmationGate.DEFAULT

    def test_trust_copy_and_summary(self):
        metrics = self.make(StabilityBand.MEDIUM)
        assert get_trust_copy(metrics, "en") == "Learning"
        assert get_trust_copy(metrics, "vi") == "Đang học"
        assert "MEDIUM" in get_stability_debug_summary(metrics)
