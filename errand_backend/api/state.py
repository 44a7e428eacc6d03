# Role: Read-only transparency endpoint for clients.
# Does NOT change any flow logic. Only exposes a session snapshot by session_id.

from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from errand_backend.api.deps import orchestrator
from errand_backend.models.session import ActiveEntities, CurrentRouteState, PendingClarification

router = APIRouter(tags=["state"])


class StateSnapshot(BaseModel):
    session_id: str
    active_entities: ActiveEntities
    current_route: Optional[CurrentRouteState] = None
    pending_clarification: Optional[PendingClarification] = None
    last_intent: Optional[str] = None
    escalation_phase: str
    turn_count: int
    recent: List[dict]


@router.get("/state/{session_id}", response_model=StateSnapshot)
def get_state(session_id: str) -> StateSnapshot:
    session = orchestrator.store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Unknown or expired session")
    return StateSnapshot(
        session_id=session_id,
        active_entities=session.active_entities,
        current_route=session.current_route,
        pending_clarification=session.pending_clarification,
        last_intent=session.agent_state.last_intent,
        escalation_phase=session.agent_state.escalation.phase.value,
        turn_count=len(session.history),
        recent=[{"role": t.role, "content": t.content} for t in session.history[-6:]],
    )
