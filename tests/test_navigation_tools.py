import pytest

from errand_backend.core.route_planner import RoutePlanner
from errand_backend.core.tool_registry import ToolRegistry
from errand_backend.models.geo import LatLng
from errand_backend.models.tool import ToolErrorKind
from errand_backend.tools.anchor_store import normalize_anchor_name
from errand_backend.tools.navigation_tools import register_navigation_tools

HERE = {"lat": 37.7749, "lng": -122.4194}


@pytest.fixture
def registry(fake_maps, anchors):
    planner = RoutePlanner(places=fake_maps, routing=fake_maps, geocoder=fake_maps, anchors=anchors)
    return register_navigation_tools(ToolRegistry(), planner, anchors)


def test_anchor_aliases():
    assert normalize_anchor_name("My  House") == "home"
    assert normalize_anchor_name("Office") == "work"
    assert normalize_anchor_name("Gym") == "gym"


def test_resolve_anchor(registry):
    found = registry.execute("resolve_anchor", {"anchor_name": "my house", "user_id": "u1"})
    assert found.success
    assert found.data["address"] == "1 Home St"

    missing = registry.execute("resolve_anchor", {"anchor_name": "work", "user_id": "u1"})
    assert missing.needs_user_input
    assert missing.error_kind == ToolErrorKind.NOT_FOUND


def test_save_anchor_uses_current_location(registry, anchors):
    result = registry.execute("save_anchor", {"anchor_name": "gym", "user_id": "u1", "user_location": HERE})
    assert result.success
    assert anchors.find("u1", "Gym").location == LatLng(**HERE)

    anonymous = registry.execute("save_anchor", {"anchor_name": "gym", "user_location": HERE})
    assert anonymous.error_kind == ToolErrorKind.INVALID_PARAMS


def test_search_places_nearest_first(registry, fake_maps):
    result = registry.execute("search_places", {"query": "coffee", "user_location": HERE})
    assert result.success
    assert result.data[0]["name"] == "Blue Bottle"
    assert result.data[0]["distance_m"] > 0


def test_calculate_route_unknown_destination(registry):
    result = registry.execute("calculate_route", {"destination": "Atlantis", "user_location": HERE, "user_id": "u1"})
    assert not result.success
    assert result.error_kind == ToolErrorKind.NOT_FOUND


def test_calculate_route_reports_unresolved_stops(registry):
    result = registry.execute(
        "calculate_route",
        {"destination": "home", "waypoints": ["coffee", "unicorn shop"], "user_location": HERE, "user_id": "u1"},
    )
    assert result.success
    assert [s["name"] for s in result.data["stops"]] == ["Blue Bottle"]
    assert result.data["unresolved_stops"] == ["unicorn shop"]


def test_calculate_detour_needs_a_route(registry):
    result = registry.execute("calculate_detour", {"new_stop": "coffee", "user_location": HERE})
    assert result.error_kind == ToolErrorKind.INVALID_PARAMS


def test_calculate_detour_on_current_route(registry):
    planned = registry.execute("calculate_route", {"destination": "home", "user_location": HERE, "user_id": "u1"})
    current = dict(planned.data, stops=[])
    result = registry.execute("calculate_detour", {"new_stop": "gas station", "user_location": HERE, "current_route": current})

    assert result.success
    assert result.data["category"] == "minimal"
    assert not result.needs_user_input


def test_start_navigation_checks_route_id(registry):
    current = {"route_id": "route_1", "status": "planning"}
    ok = registry.execute("start_navigation", {"route_id": "route_1", "current_route": current})
    assert ok.success

    wrong = registry.execute("start_navigation", {"route_id": "route_2", "current_route": current})
    assert wrong.error_kind == ToolErrorKind.INVALID_PARAMS

    none = registry.execute("start_navigation", {"route_id": "route_1"})
    assert none.error_kind == ToolErrorKind.NOT_FOUND


def test_generate_response_templates(registry):
    result = registry.execute(
        "generate_response",
        {"message_type": "route_summary", "destination": "work", "stops": ["Shell"], "time_min": 12},
    )
    assert result.data["text"] == "Your route to work with a stop at Shell is ready. Total time is about 12 minutes. Ready to go?"

    bad = registry.execute("generate_response", {"message_type": "poem"})
    assert bad.error_kind == ToolErrorKind.INVALID_PARAMS
