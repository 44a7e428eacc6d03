"""
Shared fixtures: a scripted language model, a deterministic maps provider, and an orchestrator wired to both.
No test talks to Gemini or Google Maps.
"""
import json
from collections import deque
from datetime import datetime, timedelta, timezone

import pytest

from errand_backend.core.orchestrator import Orchestrator
from errand_backend.core.route_planner import RoutePlanner
from errand_backend.core.session_store import SessionStore
from errand_backend.core.tool_registry import ToolRegistry
from errand_backend.llm.intent_classifier import IntentClassifier
from errand_backend.models.geo import LatLng
from errand_backend.tools.anchor_store import InMemoryAnchorStore
from errand_backend.tools.maps_client import DirectionsResult, GeocodeResult, PlaceCandidate
from errand_backend.tools.navigation_tools import register_navigation_tools
from errand_backend.utils.geo import path_length_m

USER_ID = "u1"
ORIGIN = LatLng(lat=37.7749, lng=-122.4194)
HOME = LatLng(lat=37.7749, lng=-122.4014)
# Just off the origin -> home line.
COFFEE = LatLng(lat=37.7752, lng=-122.4100)
GAS = LatLng(lat=37.7747, lng=-122.4060)


class ScriptedModel:
    """Stands in for GeminiClient. Each call pops the next scripted reply."""

    def __init__(self):
        self.texts = deque()
        self.turns = deque()
        self.text_calls = []
        self.tool_calls = []

    def queue_text(self, *payloads):
        for p in payloads:
            self.texts.append(p if isinstance(p, (str, Exception)) else json.dumps(p))

    def queue_turn(self, *turns):
        self.turns.extend(turns)

    def generate_text(self, prompt, system=None, model=None):
        self.text_calls.append({"prompt": prompt, "system": system, "model": model})
        if not self.texts:
            raise AssertionError(f"unexpected generate_text call: {prompt[:80]!r}")
        item = self.texts.popleft()
        if isinstance(item, Exception):
            raise item
        return item

    def generate_with_tools(self, transcript, tools, system=None, model=None):
        self.tool_calls.append({"transcript": list(transcript), "tools": tools, "system": system, "model": model})
        if not self.turns:
            raise AssertionError("unexpected generate_with_tools call")
        item = self.turns.popleft()
        if isinstance(item, Exception):
            raise item
        return item


class FakeMaps:
    """Places / routing / geocoding over straight-line geometry (2 minutes per km)."""

    def __init__(self, places=None, addresses=None):
        self.places = {k.lower(): v for k, v in (places or {}).items()}
        self.addresses = {k.lower(): v for k, v in (addresses or {}).items()}
        self.direction_calls = []

    def search_places(self, query, near, radius_m=10000, limit=20):
        return list(self.places.get(query.lower(), []))[:limit]

    def directions(self, origin, destination, waypoints=()):
        self.direction_calls.append((origin, destination, list(waypoints)))
        distance = path_length_m([origin, *waypoints, destination])
        return DirectionsResult(polyline="abc", total_distance_m=distance, total_duration_min=distance / 1000 * 2)

    def geocode(self, address):
        loc = self.addresses.get(address.lower())
        return GeocodeResult(address=address, location=loc) if loc else None


def place(name, loc, place_id=None):
    return PlaceCandidate(place_id=place_id or name.lower().replace(" ", "_"), name=name, location=loc)


@pytest.fixture
def scripted_model():
    return ScriptedModel()


@pytest.fixture
def fake_maps():
    return FakeMaps(
        places={
            "coffee": [place("Blue Bottle", COFFEE)],
            "gas station": [place("Shell", GAS)],
        },
    )


@pytest.fixture
def anchors():
    store = InMemoryAnchorStore()
    store.save(USER_ID, "home", HOME, "1 Home St")
    return store


class Clock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store(clock):
    return SessionStore(session_ttl_minutes=30, sweep_interval_seconds=300, clarification_ttl_seconds=60, now_fn=clock)


@pytest.fixture
def make_orchestrator(scripted_model, fake_maps, anchors, store):
    def _make(**kwargs):
        planner = RoutePlanner(places=fake_maps, routing=fake_maps, geocoder=fake_maps, anchors=anchors)
        registry = register_navigation_tools(ToolRegistry(), planner, anchors)
        classifier = IntentClassifier(client=scripted_model, fast_model="fast", advanced_model="advanced")
        return Orchestrator(
            store=store,
            classifier=classifier,
            registry=registry,
            model_client=scripted_model,
            anchors=anchors,
            **kwargs,
        )

    return _make


def nlu_json(intent, confidence, destination=None, stops=(), requires_advanced=False):
    return json.dumps(
        {
            "intent": intent,
            "destination": destination,
            "stops": list(stops),
            "confidence": confidence,
            "requires_advanced": requires_advanced,
        }
    )


@pytest.fixture
def nlu():
    return nlu_json
