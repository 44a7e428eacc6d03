# Role: Thin HTTP adapter for the text-chat endpoint. Validates request/response shapes and delegates the entire
# conversation turn to the Orchestrator (business logic lives in core, not in the API layer).

from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from errand_backend.api.deps import orchestrator
from errand_backend.errors import ClassifierUnavailable
from errand_backend.models.geo import LatLng
from errand_backend.models.outcome import OutcomeEvent

router = APIRouter(tags=["chat"])


class ChatRequest(BaseModel):
    session_id: str
    user_message: str
    location: Optional[LatLng] = None
    user_id: Optional[str] = None


def run_turn(session_id: str, utterance: str, location: Optional[LatLng], user_id: Optional[str]) -> OutcomeEvent:
    # Key line: classifier unavailability is the only error a client should see as a 503.
    try:
        return orchestrator.process_request(session_id, utterance, location, user_id)
    except ClassifierUnavailable as e:
        raise HTTPException(status_code=503, detail={"error": e.to_dict()}) from e


@router.post("/chat", response_model=OutcomeEvent)
def chat(req: ChatRequest) -> OutcomeEvent:
    # 1) Forward (session_id, user_message, location) to the orchestrator
    # 2) Return the OutcomeEvent in a stable schema for UI/clients
    return run_turn(req.session_id, req.user_message, req.location, req.user_id)
