# Role: Result of one Orchestrator.process_request call, consumed by the text-chat and voice adapters.

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel

from errand_backend.models.route import RouteSummary


class OutcomeEvent(BaseModel):
    session_id: str
    success: bool
    completed: bool
    response: Optional[str] = None
    clarification_question: Optional[str] = None
    clarification_options: Optional[List[str]] = None
    route: Optional[RouteSummary] = None
    error: Optional[str] = None

    intent: Optional[str] = None
    confidence: Optional[float] = None
    tier: Optional[str] = None
