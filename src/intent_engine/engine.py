"""
Intent engine facade.

Wires the stores and runs one turn through the pipeline:

    instruction
      -> local apply (short-circuit)
      -> edit intent normalizer + editorial op
      -> origin binding
      -> stability / preferences / continuity / governance
      -> confirmation orchestrator

and records how the user reacted afterwards. Every write (outcomes,
learned choices, reliability, preferences) is gated by governance's
``learning_allowed``.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from intent_engine.config import get_learning_config
from intent_engine.continuity import ContinuityState, ContinuityTracker, IntentTurn
from intent_engine.edit_guard import EditGuardResult, evaluate_edit_guard
from intent_engine.edit_intent import CanonLockState, NormalizedEditIntent, NormalizerContext, normalize_edit_intent
from intent_engine.editorial import EditorialOp, EditorialOpType, detect_editorial_op, make_editorial_op
from intent_engine.governance import GovernanceContext, GovernanceDecision, evaluate_governance
from intent_engine.learning import LearningStore, compute_pattern_hash
from intent_engine.local_apply import LocalApplyResult, can_handle_locally, local_apply
from intent_engine.models import ConfirmationGate, IntentRoute, Message, RouteChoice, choice_to_route
from intent_engine.orchestrator import ConfirmationDecision, orchestrate_confirmation, resolve_confirmation
from intent_engine.origin_binding import TransformBinding, bind_transform
from intent_engine.outcomes import (
    OutcomeRecord,
    OutcomeSignal,
    OutcomeStore,
    ReactionEvents,
    detect_outcome_signals,
    new_intent_id,
    should_mark_unreliable,
)
from intent_engine.preferences import (
    BiasResult,
    PreferenceContext,
    PreferenceStore,
    detect_choice_signals,
    detect_instruction_signals,
    detect_output_signals,
)
from intent_engine.stability import StabilityMetrics, compute_stability, get_confirmation_gating
from intent_engine.storage import KeyValueBackend, create_backend

logger = logging.getLogger(__name__)


@dataclass
class TurnRequest:
    """Everything the caller knows about a new instruction."""

    instruction: str
    content: Optional[str] = None  # Active draft, if any
    lang: str = "vi"
    base_confidence: float = 0.5
    route_hint: Optional[IntentRoute] = None
    messages: List[Message] = field(default_factory=list)
    ui_selected_id: Optional[str] = None
    chain_locked_id: Optional[str] = None
    previous_route: Optional[IntentRoute] = None
    canon_lock_state: Optional[CanonLockState] = None


@dataclass
class TurnDecision:
    intent_id: str
    instruction: str
    route: Optional[IntentRoute]
    pattern_hash: str
    confirmation: ConfirmationDecision
    confirmation_required: bool
    governance: GovernanceDecision
    stability: Optional[StabilityMetrics] = None
    bias: Optional[BiasResult] = None
    continuity: Optional[ContinuityState] = None
    local_result: Optional[LocalApplyResult] = None
    edit_intent: Optional[NormalizedEditIntent] = None
    editorial_op: Optional[EditorialOp] = None
    binding: Optional[TransformBinding] = None
    auto_apply_choice: Optional[RouteChoice] = None
    base_confidence: float = 0.5

    @property
    def is_local(self) -> bool:
        return self.local_result is not None and self.local_result.ok

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent_id": self.intent_id,
            "route": self.route.value if self.route else None,
            "pattern_hash": self.pattern_hash,
            "confirmation": self.confirmation.to_dict(),
            "confirmation_required": self.confirmation_required,
            "governance": self.governance.to_dict(),
            "stability": self.stability.to_dict() if self.stability else None,
            "bias": self.bias.to_dict() if self.bias else None,
            "continuity": self.continuity.to_dict() if self.continuity else None,
            "local_result": self.local_result.to_dict() if self.local_result else None,
            "edit_intent": self.edit_intent.to_dict() if self.edit_intent else None,
            "editorial_op": self.editorial_op.to_dict() if self.editorial_op else None,
            "binding": self.binding.to_dict() if self.binding else None,
            "auto_apply_choice": self.auto_apply_choice.value if self.auto_apply_choice else None,
        }


class IntentEngine:
    """Per-conversation entry point used by the dispatch layer."""

    def __init__(
        self,
        backend: KeyValueBackend,
        config: Optional[Dict[str, Any]] = None,
        clock: Callable[[], float] = time.time,
        governance: Optional[GovernanceContext] = None,
    ):
        self.config = config
        self.governance_context = governance
        self._clock = clock

        user_id = governance.user_id if governance is not None and governance.active else None
        self.outcomes = OutcomeStore(backend, config, clock)
        self.learning = LearningStore(backend, config, clock)
        self.preferences = PreferenceStore(backend, config, clock, user_id=user_id)
        self.continuity = ContinuityTracker(config)

    # -------------------------------------------------------------------------
    # Decision
    # -------------------------------------------------------------------------

    def _pattern_hash(self, request: TurnRequest, binding: Optional[TransformBinding]) -> str:
        return compute_pattern_hash(
            request.instruction,
            has_active_source=binding is not None,
            has_last_valid_assistant=any(m.is_assistant for m in request.messages),
            ui_source_selected=request.ui_selected_id is not None,
            max_length=get_learning_config(self.config)["pattern_text_length"],
        )

    def _local_decision(self, request: TurnRequest, result: LocalApplyResult) -> TurnDecision:
        governance = evaluate_governance(self.governance_context)
        # Deterministic transforms need no trust; only governance can stop them
        confirmation = orchestrate_confirmation(governance, ConfirmationGate.SKIP)
        return TurnDecision(
            intent_id=new_intent_id(self._clock()),
            instruction=request.instruction,
            route=IntentRoute.LOCAL_APPLY,
            pattern_hash=self._pattern_hash(request, None),
            confirmation=confirmation,
            confirmation_required=confirmation.gate != ConfirmationGate.SKIP,
            governance=governance,
            local_result=result,
            base_confidence=request.base_confidence,
        )

    def decide(self, request: TurnRequest) -> TurnDecision:
        """
        Run one instruction through the pipeline.

        Args:
            request: Instruction plus the caller's context

        Returns:
            TurnDecision with the confirmation gate and every intermediate
            result; the continuity history gains one turn
        """
        if request.content and can_handle_locally(request.instruction):
            result = local_apply(request.content, request.instruction)
            if result.ok:
                return self._local_decision(request, result)

        edit_intent = normalize_edit_intent(
            request.instruction,
            NormalizerContext(
                has_active_draft=bool(request.content),
                canon_lock_state=request.canon_lock_state,
                lang=request.lang,
            ),
        )
        editorial_op = detect_editorial_op(request.instruction)
        if editorial_op is None and edit_intent is not None:
            editorial_op = make_editorial_op(EditorialOpType.SECTION_REWRITE)

        route = request.route_hint
        if edit_intent is not None:
            route = IntentRoute.TRANSFORM

        binding = None
        if route != IntentRoute.CREATE:
            binding = bind_transform(
                request.ui_selected_id, request.chain_locked_id, request.previous_route, request.messages
            )

        pattern_hash = self._pattern_hash(request, binding)
        governance = evaluate_governance(self.governance_context)
        stability = compute_stability(pattern_hash, self.outcomes, self.learning, self.config)
        bias = self.preferences.get_preference_bias(
            PreferenceContext(has_active_source=binding is not None, route_hint=route)
        )
        continuity = self.continuity.record_turn(
            IntentTurn(
                intent_type=route.value if route else "UNKNOWN",
                timestamp=self._clock(),
                pattern_hash=pattern_hash,
            )
        )

        confirmation = orchestrate_confirmation(governance, get_confirmation_gating(stability), continuity)
        auto_apply_choice = None
        if confirmation.gate == ConfirmationGate.SKIP and governance.auto_apply_allowed:
            auto_apply_choice = self.learning.get_auto_apply_choice(pattern_hash)

        decision = TurnDecision(
            intent_id=new_intent_id(self._clock()),
            instruction=request.instruction,
            route=route,
            pattern_hash=pattern_hash,
            confirmation=confirmation,
            confirmation_required=resolve_confirmation(
                confirmation, request.base_confidence, config=self.config
            ),
            governance=governance,
            stability=stability,
            bias=bias,
            continuity=continuity,
            edit_intent=edit_intent,
            editorial_op=editorial_op,
            binding=binding,
            auto_apply_choice=auto_apply_choice,
            base_confidence=request.base_confidence,
        )
        logger.debug(
            f"Turn {decision.intent_id}: route={route.value if route else None} "
            f"gate={confirmation.gate.value} pattern={pattern_hash}"
        )
        return decision

    # -------------------------------------------------------------------------
    # Feedback
    # -------------------------------------------------------------------------

    def record_choice(self, decision: TurnDecision, choice: RouteChoice) -> None:
        """The user picked an option in the confirmation UI."""
        if not decision.governance.learning_allowed:
            logger.debug(f"Learning disabled, choice for {decision.pattern_hash} not recorded")
            return
        self.learning.record_choice(decision.pattern_hash, choice)
        signals = detect_choice_signals(
            choice,
            PreferenceContext(has_active_source=decision.binding is not None, route_hint=decision.route),
        )
        if signals:
            self.preferences.record_preferences([(s, False) for s in signals])
        decision.route = choice_to_route(choice)

    def record_outcome(
        self,
        decision: TurnDecision,
        events: ReactionEvents,
        output: Optional[str] = None,
    ) -> Optional[OutcomeRecord]:
        """
        Record how the user reacted to a generated result.

        Returns:
            The stored OutcomeRecord, or None when governance disallows
            learning (continuity is still updated)
        """
        signals = detect_outcome_signals(events, self.config)
        return self.record_signals(decision, signals, output=output)

    def record_signals(
        self,
        decision: TurnDecision,
        signals: List[OutcomeSignal],
        output: Optional[str] = None,
    ) -> Optional[OutcomeRecord]:
        outcome = OutcomeRecord.create(
            pattern_hash=decision.pattern_hash,
            route_used=decision.route or IntentRoute.CREATE,
            signals=signals,
            now=self._clock(),
            intent_id=decision.intent_id,
            confidence=decision.base_confidence,
        )
        derived = outcome.derived
        if OutcomeSignal.UNDO_WITHIN_WINDOW in signals:
            self.continuity.mark_recent_undo()
        else:
            self.continuity.mark_latest_outcome(accepted=derived.accepted, negative=derived.negative)

        if not decision.governance.learning_allowed:
            logger.debug(f"Learning disabled, outcome {outcome.intent_id} not recorded")
            return None

        self.outcomes.record(outcome)
        if derived.accepted or should_mark_unreliable(derived):
            self.learning.record_outcome_reliability(outcome.intent_id, outcome.pattern_hash, derived)
        if derived.negative:
            self.learning.record_negative_signal(outcome.pattern_hash)

        if derived.accepted:
            signals_seen = detect_instruction_signals(decision.instruction)
            if output:
                signals_seen += detect_output_signals(output)
            if signals_seen:
                self.preferences.record_preferences([(s, False) for s in signals_seen])
        return outcome

    def check_output(
        self,
        original: str,
        output: str,
        decision: Optional[TurnDecision] = None,
    ) -> EditGuardResult:
        """Validate a generated output against the requested editorial op."""
        op = decision.editorial_op if decision is not None else None
        if op is None:
            op = make_editorial_op(EditorialOpType.FULL_REWRITE)
        return evaluate_edit_guard(original, output, op, self.config)


def create_engine(
    config: Optional[Dict[str, Any]] = None,
    governance: Optional[GovernanceContext] = None,
) -> IntentEngine:
    """Engine backed by the configured storage backend."""
    return IntentEngine(create_backend(config), config=config, governance=governance)
