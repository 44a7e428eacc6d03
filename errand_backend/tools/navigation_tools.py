# Role: Capability tools the orchestrator exposes to the model. Each executor takes a params dict and returns a
# ToolResult; recoverable problems (missing GPS, unknown anchor, a stop over budget) come back as
# needs_user_input questions instead of errors. The orchestrator injects user_location, user_id and current_route.

from __future__ import annotations

from typing import Any, Dict, List, Optional

import errand_backend.config as config
from errand_backend.core.detour_budget import categorize_extra_minutes, detour_warning
from errand_backend.core.route_planner import RoutePlanner
from errand_backend.core.tool_registry import ToolRegistry
from errand_backend.errors import PlaceNotFound, RouteInfeasible, ToolInputError
from errand_backend.llm.response_generator import MESSAGE_TYPES, ResponseGenerator
from errand_backend.models.geo import LatLng, NamedLocation
from errand_backend.models.route import summarize_plan
from errand_backend.models.tool import ToolDefinition, ToolErrorKind, ToolParameter, ToolResult
from errand_backend.tools.anchor_store import AnchorStore
from errand_backend.utils.geo import haversine_m, meters_to_miles

GPS_QUESTION = "I need your current location to do that. Would you like to enable GPS?"
GPS_OPTIONS = ["Enable GPS", "Cancel"]

INFEASIBLE_OPTIONS = ["Keep it anyway", "Remove it", "Expand detour budget"]


def infeasible_question(stop_names: List[str]) -> str:
    names = " and ".join(stop_names)
    verb = "is" if len(stop_names) == 1 else "are"
    return f"{names} {verb} too far off your route. {RouteInfeasible.SUGGESTION} What would you like to do?"


TOOL_DEFINITIONS: List[ToolDefinition] = [
    ToolDefinition(
        name="resolve_anchor",
        description="Resolve a saved place name such as 'home' or 'work' to coordinates.",
        parameters=[
            ToolParameter(name="anchor_name", type="string", description="Saved place name, e.g. home", required=True),
        ],
        returns="{name, location, address}",
        examples=["take me home -> resolve_anchor(anchor_name='home')"],
    ),
    ToolDefinition(
        name="save_anchor",
        description="Save a named place for the user (e.g. 'this is my gym'). Uses the address if given, otherwise the current location.",
        parameters=[
            ToolParameter(name="anchor_name", type="string", description="Name to save, e.g. gym", required=True),
            ToolParameter(name="address", type="string", description="Street address; omit to use the current location"),
        ],
        returns="{name, location, address}",
    ),
    ToolDefinition(
        name="search_places",
        description="Search for places (stores, restaurants, gas) near a location.",
        parameters=[
            ToolParameter(name="query", type="string", description="What to search for, e.g. coffee", required=True),
            ToolParameter(
                name="location",
                type="object",
                description="Search center; defaults to the user's location",
                properties={"lat": "number", "lng": "number"},
            ),
            ToolParameter(name="radius_meters", type="number", description="Search radius in meters (default 5000)"),
            ToolParameter(name="max_results", type="integer", description="Maximum results (default 5)"),
        ],
        returns="list of {id, name, address, location, rating, distance_m}",
    ),
    ToolDefinition(
        name="calculate_route",
        description="Plan a route from the user's location to a destination, optionally through stops. Stops are ordered automatically and checked against the detour budget.",
        parameters=[
            ToolParameter(name="destination", type="string", description="Destination name, address or saved place", required=True),
            ToolParameter(name="waypoints", type="array", items="string", description="Stops to visit, in any order"),
            ToolParameter(name="keep", type="array", items="string", description="Stops to keep even if they exceed the detour budget"),
        ],
        returns="route summary with ordered stops, flagged stops, total time and distance",
        examples=["take me home via Starbucks -> calculate_route(destination='home', waypoints=['Starbucks'])"],
    ),
    ToolDefinition(
        name="calculate_detour",
        description="Estimate the extra time and distance of adding a stop to the current route.",
        parameters=[
            ToolParameter(name="new_stop", type="string", description="Stop to evaluate", required=True),
        ],
        returns="{stop_name, extra_time_min, extra_distance_mi, category}",
    ),
    ToolDefinition(
        name="ask_user",
        description="Ask the user a clarifying question. Ends the turn until they answer.",
        parameters=[
            ToolParameter(name="question", type="string", description="Short spoken question", required=True),
            ToolParameter(name="options", type="array", items="string", description="Suggested answers"),
        ],
    ),
    ToolDefinition(
        name="confirm_action",
        description="Ask the user to confirm an action with yes or no.",
        parameters=[
            ToolParameter(name="action", type="string", description="Action to confirm, phrased as a question", required=True),
            ToolParameter(name="details", type="string", description="Extra detail appended to the question"),
        ],
    ),
    ToolDefinition(
        name="start_navigation",
        description="Start turn-by-turn navigation on the planned route.",
        parameters=[
            ToolParameter(name="route_id", type="string", description="Id of the planned route", required=True),
        ],
        returns="{route_id, status}",
    ),
    ToolDefinition(
        name="generate_response",
        description="Produce the final spoken reply from a template.",
        parameters=[
            ToolParameter(
                name="message_type",
                type="string",
                description="Kind of message",
                required=True,
                enum=list(MESSAGE_TYPES),
            ),
            ToolParameter(name="message", type="string", description="Message text for confirmation/error/info"),
            ToolParameter(name="destination", type="string", description="Destination for route_summary"),
            ToolParameter(name="stops", type="array", items="string", description="Stops for route_summary"),
            ToolParameter(name="time_min", type="number", description="Total minutes for route_summary"),
        ],
        returns="{text}",
    ),
]


def _user_location(params: Dict[str, Any]) -> Optional[LatLng]:
    return LatLng.coerce(params.get("user_location"))


def _needs_gps() -> ToolResult:
    return ToolResult.ask(
        GPS_QUESTION,
        GPS_OPTIONS,
        success=False,
        error="Current location unavailable",
        error_kind=ToolErrorKind.INVALID_PARAMS,
    )


class NavigationTools:
    def __init__(
        self,
        planner: RoutePlanner,
        anchors: AnchorStore,
        responder: Optional[ResponseGenerator] = None,
    ) -> None:
        self.planner = planner
        self.anchors = anchors
        self.responder = responder or ResponseGenerator()

    def register(self, registry: ToolRegistry) -> ToolRegistry:
        executors = {
            "resolve_anchor": self.resolve_anchor,
            "save_anchor": self.save_anchor,
            "search_places": self.search_places,
            "calculate_route": self.calculate_route,
            "calculate_detour": self.calculate_detour,
            "ask_user": self.ask_user,
            "confirm_action": self.confirm_action,
            "start_navigation": self.start_navigation,
            "generate_response": self.generate_response,
        }
        for definition in TOOL_DEFINITIONS:
            registry.register(definition, executors[definition.name])
        return registry

    def resolve_anchor(self, params: Dict[str, Any]) -> ToolResult:
        name = params["anchor_name"].strip()
        user_id = params.get("user_id")
        here = _user_location(params)

        if name.lower() in {"here", "current location", "my location"}:
            if here is None:
                return _needs_gps()
            return ToolResult.ok({"name": "Current location", "location": here.as_dict(), "source": "gps"})

        anchor = self.anchors.find(user_id, name) if user_id else None
        if anchor is None:
            return ToolResult.ask(
                f"I don't have your {name} address saved. What's the address?",
                ["Use my current location", "Cancel"],
                success=False,
                error=f"No saved location named '{name}'",
                error_kind=ToolErrorKind.NOT_FOUND,
            )
        return ToolResult.ok(
            {"name": anchor.name, "location": anchor.location.as_dict(), "address": anchor.address, "source": "anchor"}
        )

    def save_anchor(self, params: Dict[str, Any]) -> ToolResult:
        name = params["anchor_name"].strip()
        user_id = params.get("user_id")
        if not user_id:
            raise ToolInputError("Saving places needs a signed-in user")

        address = (params.get("address") or "").strip()
        if address:
            geo = self.planner.geocoder.geocode(address)
            if geo is None:
                raise PlaceNotFound(f"Could not find the address: {address}")
            location, label = geo.location, geo.address
        else:
            location = _user_location(params)
            if location is None:
                return _needs_gps()
            label = None

        anchor = self.anchors.save(user_id, name, location, label)
        return ToolResult.ok({"name": anchor.name, "location": anchor.location.as_dict(), "address": anchor.address})

    def search_places(self, params: Dict[str, Any]) -> ToolResult:
        center = LatLng.coerce(params.get("location")) or _user_location(params)
        if center is None:
            return _needs_gps()

        radius = int(params.get("radius_meters") or 5000)
        limit = int(params.get("max_results") or 5)
        found = self.planner.places.search_places(params["query"], center, radius, limit)

        # Nearest first.
        found = sorted(found, key=lambda p: haversine_m(center, p.location))[:limit]
        return ToolResult.ok(
            [
                {
                    "id": p.place_id,
                    "name": p.name,
                    "address": p.address,
                    "location": p.location.as_dict(),
                    "rating": p.rating,
                    "distance_m": round(haversine_m(center, p.location)),
                }
                for p in found
            ]
        )

    def calculate_route(self, params: Dict[str, Any]) -> ToolResult:
        # 1) Origin is the user's GPS position (never a guess)
        # 2) Plan + order stops
        # 3) Any stop over budget -> recoverable ROUTE_INFEASIBLE question (route still returned)
        origin = _user_location(params)
        if origin is None:
            return _needs_gps()

        destination: Any = params["destination"]
        current = params.get("current_route")
        if isinstance(current, dict) and current.get("destination"):
            # Re-plans name the current destination; reuse its coordinates instead of resolving again.
            known = NamedLocation.model_validate(current["destination"])
            if known.name.strip().lower() == str(destination).strip().lower():
                destination = known

        plan = self.planner.plan(
            origin,
            destination,
            list(params.get("waypoints") or []),
            keep=list(params.get("keep") or []),
            user_id=params.get("user_id"),
        )
        summary = summarize_plan(plan)
        data = summary.model_dump(mode="json")
        data["polyline"] = plan.polyline

        try:
            self.planner.check_feasible(plan)
        except RouteInfeasible as e:
            return ToolResult(
                success=False,
                data=data,
                error=str(e),
                error_kind=ToolErrorKind.ROUTE_INFEASIBLE,
                needs_user_input=True,
                question=infeasible_question(e.stop_names),
                options=list(INFEASIBLE_OPTIONS),
            )

        return ToolResult.ok(data)

    def calculate_detour(self, params: Dict[str, Any]) -> ToolResult:
        current = params.get("current_route")
        if not isinstance(current, dict):
            raise ToolInputError("No current route to calculate a detour from. Plan a route first.")

        origin = LatLng.coerce((current.get("origin") or {}).get("location")) or _user_location(params)
        destination = NamedLocation.model_validate(current["destination"])
        if origin is None:
            return _needs_gps()

        new_stop = params["new_stop"].strip()
        existing = [s.get("name") for s in current.get("stops") or [] if s.get("name")]
        with_stop = self.planner.plan(origin, destination, existing + [new_stop], keep=[new_stop])

        extra_min = with_stop.total_time_min - float(current.get("total_time_min") or with_stop.direct_time_min)
        extra_m = with_stop.total_distance_m - float(current.get("total_distance_m") or with_stop.direct_distance_m)
        category = categorize_extra_minutes(extra_min)

        data = {
            "stop_name": new_stop,
            "extra_time_min": max(int(round(extra_min)), 0),
            "extra_distance_mi": round(meters_to_miles(max(extra_m, 0.0)), 1),
            "category": category,
            "new_total_time_min": round(with_stop.total_time_min, 1),
            "new_total_distance_m": round(with_stop.total_distance_m, 1),
        }

        if config.DEBUG:
            print(f"DETOUR: {new_stop} +{extra_min:.1f} min ({category})")

        if category in {"significant", "far"}:
            return ToolResult.ask(
                f"{detour_warning(new_stop, extra_min)} Would you like to add it anyway?",
                ["Yes, add it", "No, skip it", "Find a closer one"],
                data=data,
            )
        return ToolResult.ok(data)

    def ask_user(self, params: Dict[str, Any]) -> ToolResult:
        return ToolResult.ask(params["question"], list(params.get("options") or []) or None)

    def confirm_action(self, params: Dict[str, Any]) -> ToolResult:
        details = params.get("details")
        question = f"{params['action']} {details}" if details else params["action"]
        return ToolResult.ask(question, ["Yes", "No"])

    def start_navigation(self, params: Dict[str, Any]) -> ToolResult:
        route_id = params["route_id"]
        current = params.get("current_route")
        if not isinstance(current, dict):
            raise PlaceNotFound("There's no planned route to start.")
        if current.get("route_id") != route_id:
            raise ToolInputError(f"Unknown route id {route_id}; the current route is {current.get('route_id')}")
        if current.get("status") == "cancelled":
            raise ToolInputError("That route was cancelled.")
        return ToolResult.ok({"route_id": route_id, "status": "navigating"})

    def generate_response(self, params: Dict[str, Any]) -> ToolResult:
        text = self.responder.render(params["message_type"], params)
        return ToolResult.ok({"text": text})


def register_navigation_tools(
    registry: ToolRegistry,
    planner: RoutePlanner,
    anchors: AnchorStore,
    responder: Optional[ResponseGenerator] = None,
) -> ToolRegistry:
    return NavigationTools(planner, anchors, responder).register(registry)
