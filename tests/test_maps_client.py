import pytest
import requests

import errand_backend.tools.maps_client as maps_client
from errand_backend.errors import ProviderUnavailable
from errand_backend.models.geo import LatLng
from errand_backend.tools.maps_client import GoogleMapsClient

A = LatLng(lat=37.7749, lng=-122.4194)
B = LatLng(lat=37.7849, lng=-122.4094)


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


@pytest.fixture
def client():
    return GoogleMapsClient(api_key="test-key")


def test_missing_key_is_provider_unavailable(monkeypatch):
    monkeypatch.delenv("GOOGLE_MAPS_API_KEY", raising=False)
    with pytest.raises(ProviderUnavailable):
        GoogleMapsClient().geocode("1 Main St")


def test_directions_parses_routes_payload(monkeypatch, client):
    seen = {}

    def fake_post(url, json=None, headers=None, timeout=None):
        seen.update(url=url, body=json, headers=headers)
        return FakeResponse(
            {
                "routes": [
                    {
                        "distanceMeters": 2500,
                        "duration": "420s",
                        "polyline": {"encodedPolyline": "xyz"},
                        "legs": [
                            {
                                "distanceMeters": 2500,
                                "duration": "420s",
                                "startLocation": {"latLng": {"latitude": A.lat, "longitude": A.lng}},
                                "endLocation": {"latLng": {"latitude": B.lat, "longitude": B.lng}},
                            }
                        ],
                    }
                ]
            }
        )

    monkeypatch.setattr(maps_client.requests, "post", fake_post)
    result = client.directions(A, B, [LatLng(lat=37.78, lng=-122.41)])

    assert result.total_distance_m == 2500
    assert result.total_duration_min == pytest.approx(7)
    assert result.polyline == "xyz"
    assert result.legs[0].end_location == B
    assert seen["headers"]["X-Goog-Api-Key"] == "test-key"
    assert len(seen["body"]["intermediates"]) == 1


def test_directions_without_routes(monkeypatch, client):
    monkeypatch.setattr(maps_client.requests, "post", lambda *a, **k: FakeResponse({}))
    assert client.directions(A, B) is None


def test_search_places_skips_results_without_location(monkeypatch, client):
    payload = {
        "status": "OK",
        "results": [
            {
                "place_id": "p1",
                "name": "Blue Bottle",
                "geometry": {"location": {"lat": 37.77, "lng": -122.41}},
                "rating": 4.5,
                "opening_hours": {"open_now": True},
            },
            {"place_id": "p2", "name": "No Geometry"},
        ],
    }
    monkeypatch.setattr(maps_client.requests, "get", lambda *a, **k: FakeResponse(payload))
    found = client.search_places("coffee", A)

    assert [p.name for p in found] == ["Blue Bottle"]
    assert found[0].is_open is True


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse({"status": "REQUEST_DENIED", "error_message": "bad key"}),
        FakeResponse({}, status=500),
        FakeResponse(ValueError("not json")),
    ],
)
def test_provider_failures(monkeypatch, client, response):
    monkeypatch.setattr(maps_client.requests, "get", lambda *a, **k: response)
    with pytest.raises(ProviderUnavailable):
        client.geocode("1 Main St")


def test_geocode_zero_results(monkeypatch, client):
    monkeypatch.setattr(maps_client.requests, "get", lambda *a, **k: FakeResponse({"status": "ZERO_RESULTS", "results": []}))
    assert client.geocode("nowhere") is None
