# Role: Routing brain for classifier output. Maps confidence to a tier (execute / confirm / present alternatives)
# and drives the per-session escalation state machine:
# NORMAL -> LOW_RETRY(1) -> LOW_RETRY(2) -> ESCALATING -> NORMAL.
# The third consecutive LOW result asks for exactly one advanced-model call; while ESCALATING, no re-escalation.

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import errand_backend.config as config
from errand_backend.models.decision import (
    Action,
    ConfidenceTier,
    Decision,
    EscalationPhase,
    EscalationTracker,
)
from errand_backend.models.nlu import NLUResult

HIGH_THRESHOLD = 0.80
MEDIUM_THRESHOLD = 0.60

# LOW results tolerated before the advanced model is consulted.
LOW_RETRIES_BEFORE_ESCALATION = 2


def tier_for(confidence: float) -> ConfidenceTier:
    if confidence >= HIGH_THRESHOLD:
        return ConfidenceTier.HIGH
    if confidence >= MEDIUM_THRESHOLD:
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.LOW


def _effective_confidence(nlu: NLUResult) -> float:
    # A fast-model result that defers to the advanced model counts as LOW whatever it claims.
    if nlu.requires_advanced and nlu.source == "fast":
        return 0.0
    return nlu.confidence


@dataclass(frozen=True)
class RoutingOutcome:
    decision: Decision
    tracker: EscalationTracker


class ConfidenceRouter:
    def route(self, nlu: NLUResult, tracker: Optional[EscalationTracker] = None) -> RoutingOutcome:
        # 1) Tier from (effective) confidence
        # 2) Advance the escalation machine
        # 3) LOW + machine just entered ESCALATING -> ESCALATE, otherwise CLARIFY
        tracker = tracker or EscalationTracker()
        confidence = _effective_confidence(nlu)
        tier = tier_for(confidence)
        next_tracker, escalate = self.record_result(tracker, tier)

        if tier == ConfidenceTier.HIGH:
            action = Action.EXECUTE
        elif tier == ConfidenceTier.MEDIUM:
            action = Action.CONFIRM
        else:
            action = Action.ESCALATE if escalate else Action.CLARIFY

        decision = Decision(
            action=action,
            tier=tier,
            confidence=confidence,
            notes=f"{nlu.intent.value} ({nlu.source}) -> {tier.value}, escalation={next_tracker.phase.value}",
        )

        if config.DEBUG:
            print("\n--- CONFIDENCE ROUTER ---")
            print("DECISION:", decision.model_dump())
            print("TRACKER:", tracker.model_dump(), "->", next_tracker.model_dump())
            print("-------------------------\n")

        return RoutingOutcome(decision=decision, tracker=next_tracker)

    @staticmethod
    def record_result(tracker: EscalationTracker, tier: ConfidenceTier) -> tuple:
        """
        Apply one classification result to the escalation machine.
        Returns (new tracker, whether to make the advanced call now).
        """
        if tier != ConfidenceTier.LOW:
            return EscalationTracker(), False

        if tracker.phase == EscalationPhase.ESCALATING:
            return tracker, False

        count = tracker.low_count + 1
        if count > LOW_RETRIES_BEFORE_ESCALATION:
            return EscalationTracker(phase=EscalationPhase.ESCALATING, low_count=count), True
        return EscalationTracker(phase=EscalationPhase.LOW_RETRY, low_count=count), False

    @staticmethod
    def on_selection(tracker: EscalationTracker) -> EscalationTracker:
        # User picked one of the offered alternatives: the ambiguity is resolved.
        return EscalationTracker()

    def after_escalation(self, tracker: EscalationTracker, escalated: NLUResult) -> RoutingOutcome:
        """Tier the advanced result. A non-LOW result resets the machine; a LOW one stays ESCALATING."""
        tier = tier_for(escalated.confidence)
        if tier == ConfidenceTier.HIGH:
            action = Action.EXECUTE
        elif tier == ConfidenceTier.MEDIUM:
            action = Action.CONFIRM
        else:
            action = Action.CLARIFY
        next_tracker = EscalationTracker() if tier != ConfidenceTier.LOW else tracker
        decision = Decision(
            action=action,
            tier=tier,
            confidence=escalated.confidence,
            notes=f"{escalated.intent.value} (advanced) -> {tier.value}",
        )
        if config.DEBUG:
            print("ESCALATION RESULT:", decision.model_dump())
        return RoutingOutcome(decision=decision, tracker=next_tracker)
