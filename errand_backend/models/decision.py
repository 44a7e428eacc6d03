# Role: Small typed contract for confidence routing. Decision is the output of ConfidenceRouter and drives the
# Orchestrator: (execute / confirm / clarify / escalate). The validator keeps action and tier consistent.
# EscalationTracker is the per-session escalation state machine: NORMAL -> LOW_RETRY(n) -> ESCALATING -> NORMAL.

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class ConfidenceTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Action(str, Enum):
    EXECUTE = "execute"
    CONFIRM = "confirm"
    CLARIFY = "clarify"
    ESCALATE = "escalate"


class Decision(BaseModel):
    action: Action
    tier: ConfidenceTier
    confidence: float = Field(ge=0.0, le=1.0)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _check_tier(self):
        # EXECUTE only for HIGH, CONFIRM only for MEDIUM, CLARIFY/ESCALATE only for LOW.
        expected = {
            Action.EXECUTE: {ConfidenceTier.HIGH},
            Action.CONFIRM: {ConfidenceTier.MEDIUM},
            Action.CLARIFY: {ConfidenceTier.LOW},
            Action.ESCALATE: {ConfidenceTier.LOW},
        }[self.action]
        if self.tier not in expected:
            raise ValueError(f"action={self.action.value} is not valid for tier={self.tier.value}")
        return self


class EscalationPhase(str, Enum):
    NORMAL = "normal"
    LOW_RETRY = "low_retry"
    ESCALATING = "escalating"


class EscalationTracker(BaseModel):
    phase: EscalationPhase = EscalationPhase.NORMAL
    # Consecutive LOW results seen while in LOW_RETRY (1 or 2).
    low_count: int = 0

    @property
    def escalating(self) -> bool:
        return self.phase == EscalationPhase.ESCALATING
