# Role: Per-session state container. Holds rolling history, resolved entities, the in-progress route,
# the single pending clarification, and small "agent memory" fields (last intent/confidence, escalation).
# Only SessionStore mutates these objects.

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from errand_backend.models.decision import EscalationTracker
from errand_backend.models.geo import LatLng, NamedLocation
from errand_backend.models.turn import Turn


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RouteStatus(str, Enum):
    PLANNING = "planning"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    CANCELLED = "cancelled"


class RouteStop(BaseModel):
    id: str
    name: str
    category: str = "stop"
    place_name: Optional[str] = None
    # Unset until the next re-optimization resolves a freshly added stop.
    location: Optional[LatLng] = None
    confirmed: bool = False
    # Over the detour budget and waiting on the user (keep or remove).
    flagged: bool = False
    # Over the detour budget but explicitly kept by the user.
    kept: bool = False


class CurrentRouteState(BaseModel):
    route_id: str
    origin: NamedLocation
    destination: NamedLocation
    stops: List[RouteStop] = Field(default_factory=list)
    total_time_min: float = 0.0
    total_distance_m: float = 0.0
    status: RouteStatus = RouteStatus.PLANNING


class PendingClarification(BaseModel):
    clarification_id: str
    question: str
    options: Optional[List[str]] = None
    reason: str = ""
    created_at: datetime
    expires_at: datetime
    related_intent: Optional[str] = None
    # NLUResult.to_dict() of a MEDIUM-tier result waiting for "yes".
    pending_nlu: Optional[Dict[str, Any]] = None
    # Data a deterministic follow-up needs (e.g. which stops were over budget).
    payload: Dict[str, Any] = Field(default_factory=dict)


class AgentState(BaseModel):
    last_intent: Optional[str] = None
    last_confidence: Optional[float] = None
    awaiting_response: bool = False
    escalation: EscalationTracker = Field(default_factory=EscalationTracker)


class UserLocation(LatLng):
    address: Optional[str] = None
    updated_at: datetime = Field(default_factory=_utcnow)


class UserPreferences(BaseModel):
    detour_tolerance: Literal["low", "medium", "high"] = "medium"
    prefer_quick_routes: bool = True
    avoid_highways: bool = False
    preferred_coffee: Optional[str] = None
    preferred_gas: Optional[str] = None
    preferred_grocery: Optional[str] = None


class ActiveEntities(BaseModel):
    destination: Optional[str] = None
    stops: List[str] = Field(default_factory=list)


class Session(BaseModel):
    session_id: str
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    last_activity_at: datetime = Field(default_factory=_utcnow)

    # Key line: append-only; capping is left to whoever consumes the history.
    history: List[Turn] = Field(default_factory=list)
    active_entities: ActiveEntities = Field(default_factory=ActiveEntities)
    agent_state: AgentState = Field(default_factory=AgentState)

    current_route: Optional[CurrentRouteState] = None
    pending_clarification: Optional[PendingClarification] = None

    user_location: Optional[UserLocation] = None
    preferences: UserPreferences = Field(default_factory=UserPreferences)

    def last_user_turn(self) -> Optional[Turn]:
        for turn in reversed(self.history):
            if turn.role == "user":
                return turn
        return None
