# Role: Route assembly. Turns (origin, destination name, stop names) into a PlannedRoute:
# resolve the destination, resolve each stop to a concrete place, take the direct road route as the base,
# order the stops against the detour budget, then fetch the final road route through the accepted stops.

from __future__ import annotations

import uuid
from typing import Iterable, List, Optional, Sequence, Union

import errand_backend.config as config
from errand_backend.core.detour_budget import compute_budget
from errand_backend.core.stop_ordering import best_insertion, order_stops
from errand_backend.errors import PlaceNotFound, RouteInfeasible
from errand_backend.models.geo import LatLng, NamedLocation
from errand_backend.models.route import CandidateStop, PlannedRoute
from errand_backend.tools.anchor_store import AnchorStore
from errand_backend.tools.maps_client import Geocoder, PlaceCandidate, PlacesProvider, RoutingProvider
from errand_backend.utils.geo import corridor_points, haversine_m

# Text search ranks by relevance, not distance: start with a small radius so nearby places win.
SEARCH_RADII_M = (5000, 15000, 30000)
# Stops are searched around several points along the trip, so each search can stay tighter.
CORRIDOR_RADII_M = (3000, 10000, 30000)
CANDIDATES_PER_SEARCH = 10

CURRENT_LOCATION_NAMES = {"here", "current location", "my location", "where i am"}


class RoutePlanner:
    def __init__(
        self,
        places: PlacesProvider,
        routing: RoutingProvider,
        geocoder: Geocoder,
        anchors: Optional[AnchorStore] = None,
    ) -> None:
        self.places = places
        self.routing = routing
        self.geocoder = geocoder
        self.anchors = anchors

    def resolve_destination(self, text: str, near: LatLng, user_id: Optional[str] = None) -> NamedLocation:
        # 1) Saved anchor ("home", "work")
        # 2) Geocoded address
        # 3) Nearest matching place around the user
        name = (text or "").strip()
        if not name:
            raise PlaceNotFound("No destination given")

        if name.lower() in CURRENT_LOCATION_NAMES:
            return NamedLocation(name="Current location", location=near)

        if self.anchors is not None and user_id:
            anchor = self.anchors.find(user_id, name)
            if anchor is not None:
                return NamedLocation(name=anchor.name, location=anchor.location)

        geo = self.geocoder.geocode(name)
        if geo is not None:
            return NamedLocation(name=geo.address, location=geo.location)

        for radius in SEARCH_RADII_M:
            found = self.places.search_places(name, near, radius, CANDIDATES_PER_SEARCH)
            if found:
                nearest = min(found, key=lambda p: haversine_m(near, p.location))
                return NamedLocation(name=nearest.name, location=nearest.location)

        raise PlaceNotFound(f"Could not resolve destination: {name}")

    def resolve_stop(self, query: str, origin: LatLng, destination: LatLng) -> Optional[CandidateStop]:
        """Cheapest-to-insert place matching `query`, searched at points along the trip corridor."""
        centers = corridor_points(origin, destination)
        path = [origin, destination]
        for radius in CORRIDOR_RADII_M:
            found = {}
            for center in centers:
                for p in self.places.search_places(query, center, radius, CANDIDATES_PER_SEARCH):
                    # Neighbouring centers overlap; the same place comes back more than once.
                    found.setdefault(p.place_id or (p.name, p.location.lat, p.location.lng), p)
            if not found:
                continue
            best = min(found.values(), key=lambda p: best_insertion(path, p.location)[1])
            if config.DEBUG:
                print(
                    f"STOP RESOLVED: '{query}' -> {best.name} "
                    f"({len(found)} candidates, {len(centers)} centers within {radius} m)"
                )
            return _candidate(query, best)
        if config.DEBUG:
            print(f"STOP NOT FOUND: '{query}'")
        return None

    def plan(
        self,
        origin: LatLng,
        destination: Union[str, NamedLocation],
        stop_names: Sequence[str] = (),
        keep: Iterable[str] = (),
        user_id: Optional[str] = None,
        origin_name: str = "Current location",
    ) -> PlannedRoute:
        # 1) Resolve destination + stops
        # 2) Direct road route -> base distance for the budget
        # 3) Order stops (greedy insertion, flag over-budget stops)
        # 4) Final road route through the accepted stops
        if isinstance(destination, NamedLocation):
            dest = destination
        else:
            dest = self.resolve_destination(destination, origin, user_id)

        candidates: List[CandidateStop] = []
        unresolved: List[str] = []
        seen = set()
        for name in stop_names:
            key = (name or "").strip().lower()
            if not key or key in seen:
                continue
            seen.add(key)
            cand = self.resolve_stop(name, origin, dest.location)
            if cand is None:
                unresolved.append(name)
            else:
                candidates.append(cand)

        direct = self.routing.directions(origin, dest.location)
        if direct is None:
            raise PlaceNotFound(f"No drivable route to {dest.name}")

        ordering = order_stops(
            origin,
            dest.location,
            candidates,
            base_distance_m=direct.total_distance_m,
            keep=keep,
        )

        if ordering.ordered:
            final = self.routing.directions(origin, dest.location, [s.candidate.location for s in ordering.ordered])
            if final is None:
                raise PlaceNotFound(f"No drivable route to {dest.name} through the requested stops")
        else:
            final = direct

        plan = PlannedRoute(
            route_id=f"route_{uuid.uuid4().hex[:10]}",
            origin=NamedLocation(name=origin_name, location=origin),
            destination=dest,
            ordering=ordering,
            budget=compute_budget(direct.total_distance_m),
            total_distance_m=final.total_distance_m,
            total_time_min=final.total_duration_min,
            direct_distance_m=direct.total_distance_m,
            direct_time_min=direct.total_duration_min,
            polyline=final.polyline,
            unresolved=unresolved,
        )

        if config.DEBUG:
            print("\n--- ROUTE PLANNER ---")
            print("DESTINATION:", dest.name)
            print("ORDERED:", [s.name for s in plan.stops])
            print("FLAGGED:", [s.name for s in plan.flagged])
            print("UNRESOLVED:", unresolved)
            print(f"TOTAL: {plan.total_distance_m:.0f} m, {plan.total_time_min:.1f} min")
            print("---------------------\n")

        return plan

    @staticmethod
    def check_feasible(plan: PlannedRoute) -> PlannedRoute:
        if plan.infeasible:
            raise RouteInfeasible([s.name for s in plan.flagged], plan.flagged[0].allowed_extra_m)
        return plan


def _candidate(query: str, place: PlaceCandidate) -> CandidateStop:
    return CandidateStop(
        name=place.name or query,
        location=place.location,
        place_id=place.place_id or None,
        address=place.address,
        category=query,
    )
