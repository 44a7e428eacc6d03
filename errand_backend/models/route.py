# Role: Route-feasibility types. DetourBudget and DetourClassification come out of the detour budget engine;
# OrderedStop / PlannedRoute come out of stop ordering + route assembly; RouteSummary is the API-facing view.

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from errand_backend.models.geo import LatLng, NamedLocation


class DetourClassification(str, Enum):
    NO_DETOUR = "NO_DETOUR"
    MINIMAL = "MINIMAL"
    ACCEPTABLE = "ACCEPTABLE"
    NOT_RECOMMENDED = "NOT_RECOMMENDED"


class DistanceTier(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"


@dataclass(frozen=True)
class DetourBudget:
    base_distance_m: float
    tier: DistanceTier
    percentage: float
    allowed_extra_m: float


@dataclass(frozen=True)
class CandidateStop:
    name: str
    location: LatLng
    place_id: Optional[str] = None
    address: Optional[str] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class OrderedStop:
    candidate: CandidateStop
    extra_m: float
    allowed_extra_m: float
    classification: DetourClassification
    flagged: bool = False

    @property
    def name(self) -> str:
        return self.candidate.name


@dataclass(frozen=True)
class OrderingResult:
    ordered: List[OrderedStop]
    flagged: List[OrderedStop]
    base_distance_m: float
    final_distance_m: float

    @property
    def has_flagged(self) -> bool:
        return bool(self.flagged)


@dataclass
class PlannedRoute:
    route_id: str
    origin: NamedLocation
    destination: NamedLocation
    ordering: OrderingResult
    budget: DetourBudget
    total_distance_m: float
    total_time_min: float
    direct_distance_m: float
    direct_time_min: float
    polyline: str = ""
    unresolved: List[str] = field(default_factory=list)

    @property
    def stops(self) -> List[OrderedStop]:
        return self.ordering.ordered

    @property
    def flagged(self) -> List[OrderedStop]:
        return self.ordering.flagged

    @property
    def infeasible(self) -> bool:
        return self.ordering.has_flagged


class StopSummary(BaseModel):
    name: str
    # What the user asked for ("coffee", "Walmart"); name is the resolved place.
    query: Optional[str] = None
    location: LatLng
    address: Optional[str] = None
    category: Optional[str] = None
    extra_distance_m: float = 0.0
    classification: DetourClassification
    flagged: bool = False


class RouteSummary(BaseModel):
    route_id: str
    origin: NamedLocation
    destination: NamedLocation
    stops: List[StopSummary] = Field(default_factory=list)
    flagged_stops: List[StopSummary] = Field(default_factory=list)
    unresolved_stops: List[str] = Field(default_factory=list)
    total_time_min: float = 0.0
    total_distance_m: float = 0.0
    detour_budget_m: float = 0.0
    status: str = "planning"


def _stop_summary(stop: OrderedStop) -> StopSummary:
    c = stop.candidate
    return StopSummary(
        name=c.name,
        query=c.category,
        location=c.location,
        address=c.address,
        category=c.category,
        extra_distance_m=round(stop.extra_m, 1),
        classification=stop.classification,
        flagged=stop.flagged,
    )


def summarize_plan(plan: PlannedRoute, status: str = "planning") -> RouteSummary:
    return RouteSummary(
        route_id=plan.route_id,
        origin=plan.origin,
        destination=plan.destination,
        stops=[_stop_summary(s) for s in plan.stops],
        flagged_stops=[_stop_summary(s) for s in plan.flagged],
        unresolved_stops=list(plan.unresolved),
        total_time_min=round(plan.total_time_min, 1),
        total_distance_m=round(plan.total_distance_m, 1),
        detour_budget_m=round(plan.budget.allowed_extra_m, 1),
        status=status,
    )
