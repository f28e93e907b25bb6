"""
Confirmation Orchestrator

Combines governance, stability and continuity into a single
SKIP / FORCE / DEFAULT gate for the confirmation UI. Holds no state.

Precedence (first match wins):
1. Governance requires confirmation -> FORCE
2. Stability gate is FORCE -> FORCE
3. Continuity reports a correction cycle -> FORCE
4. Stability gate is SKIP -> SKIP
5. Otherwise -> DEFAULT (caller's base heuristic decides)
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from intent_engine.config import get_orchestrator_config
from intent_engine.continuity import ContinuityState
from intent_engine.governance import GovernanceDecision
from intent_engine.models import ConfirmationGate

logger = logging.getLogger(__name__)


@dataclass
class ConfirmationDecision:
    gate: ConfirmationGate
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"gate": self.gate.value, "reason": self.reason}


def orchestrate_confirmation(
    governance: Optional[GovernanceDecision],
    stability_gate: Optional[ConfirmationGate],
    continuity: Optional[ContinuityState] = None,
) -> ConfirmationDecision:
    """
    Combine the per-subsystem signals into one confirmation gate.

    Args:
        governance: Governance decision (None when governance is off)
        stability_gate: Gate suggested by stability (None when no pattern)
        continuity: Current continuity state, if tracked

    Returns:
        ConfirmationDecision; never SKIP while governance requires
        confirmation or a correction cycle is active
    """
    if governance is not None and governance.confirmation_required:
        decision = ConfirmationDecision(ConfirmationGate.FORCE, f"Governance: {governance.reason}")
    elif stability_gate == ConfirmationGate.FORCE:
        decision = ConfirmationDecision(ConfirmationGate.FORCE, "Stability: low trust")
    elif continuity is not None and continuity.in_correction_cycle:
        decision = ConfirmationDecision(
            ConfirmationGate.FORCE, f"Correction cycle: {continuity.reason}"
        )
    elif stability_gate == ConfirmationGate.SKIP:
        decision = ConfirmationDecision(ConfirmationGate.SKIP, "Stability: trusted pattern")
    else:
        decision = ConfirmationDecision(ConfirmationGate.DEFAULT, "Base heuristic")

    logger.debug(f"Confirmation gate {decision.gate.value}: {decision.reason}")
    return decision


def resolve_confirmation(
    decision: ConfirmationDecision,
    base_confidence: float,
    threshold: Optional[float] = None,
    config: Optional[Dict[str, Any]] = None,
) -> bool:
    """Whether the UI should ask for confirmation."""
    if decision.gate == ConfirmationGate.FORCE:
        return True
    if decision.gate == ConfirmationGate.SKIP:
        return False
    if threshold is None:
        threshold = get_orchestrator_config(config)["confirm_below_confidence"]
    return base_confidence < threshold
