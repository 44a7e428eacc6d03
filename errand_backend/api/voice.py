# Role: Voice webhook adapter. The voice platform does speech-to-text and text-to-speech; this endpoint receives
# the transcript of one user turn and returns the text to speak plus the structured outcome.
# Barge-in is reported through /voice/interrupt, which abandons the in-flight turn.

from typing import List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from errand_backend.api.chat import run_turn
from errand_backend.api.deps import orchestrator
from errand_backend.models.geo import LatLng
from errand_backend.models.outcome import OutcomeEvent

router = APIRouter(prefix="/voice", tags=["voice"])


class VoiceTurnRequest(BaseModel):
    session_id: str
    transcript: str
    location: Optional[LatLng] = None
    user_id: Optional[str] = None


class VoiceTurnResponse(BaseModel):
    session_id: str
    speak: str
    # True while the assistant expects an answer (keep the microphone open).
    expect_reply: bool
    options: List[str] = Field(default_factory=list)
    outcome: OutcomeEvent


class InterruptRequest(BaseModel):
    session_id: str


@router.post("/turn", response_model=VoiceTurnResponse)
def voice_turn(req: VoiceTurnRequest) -> VoiceTurnResponse:
    outcome = run_turn(req.session_id, req.transcript, req.location, req.user_id)
    speak = outcome.response or ("" if outcome.error == "interrupted" else "Sorry, something went wrong.")
    return VoiceTurnResponse(
        session_id=req.session_id,
        speak=speak,
        expect_reply=not outcome.completed and outcome.clarification_question is not None,
        options=outcome.clarification_options or [],
        outcome=outcome,
    )


@router.post("/interrupt")
def voice_interrupt(req: InterruptRequest) -> dict:
    return {"session_id": req.session_id, "interrupted": orchestrator.interrupt(req.session_id)}
