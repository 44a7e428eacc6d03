# Role: External tool adapter for Google Maps. Routes API v2 (computeRoutes) for directions,
# Places text search for stop candidates, and Geocoding for free-form addresses.
# The planner and tools depend only on the small provider protocols below, so tests can pass fakes.

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests

import errand_backend.config as config
from errand_backend.errors import ProviderUnavailable
from errand_backend.models.geo import LatLng


@dataclass(frozen=True)
class PlaceCandidate:
    place_id: str
    name: str
    location: LatLng
    address: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    types: List[str] = field(default_factory=list)
    is_open: Optional[bool] = None


@dataclass(frozen=True)
class DirectionsLeg:
    distance_m: float
    duration_min: float
    start_location: LatLng
    end_location: LatLng


@dataclass(frozen=True)
class DirectionsResult:
    polyline: str
    total_distance_m: float
    total_duration_min: float
    legs: List[DirectionsLeg] = field(default_factory=list)


@dataclass(frozen=True)
class GeocodeResult:
    address: str
    location: LatLng


class PlacesProvider(Protocol):
    def search_places(
        self, query: str, near: LatLng, radius_m: int = 10000, limit: int = 20
    ) -> List[PlaceCandidate]: ...


class RoutingProvider(Protocol):
    def directions(
        self, origin: LatLng, destination: LatLng, waypoints: Sequence[LatLng] = ()
    ) -> Optional[DirectionsResult]: ...


class Geocoder(Protocol):
    def geocode(self, address: str) -> Optional[GeocodeResult]: ...


def _parse_duration_s(value: Any) -> float:
    # Routes API durations look like "1234s".
    if not isinstance(value, str):
        return 0.0
    m = re.fullmatch(r"(\d+(?:\.\d+)?)s", value.strip())
    return float(m.group(1)) if m else 0.0


def _latlng_from_routes(value: Any) -> LatLng:
    ll = (value or {}).get("latLng", {}) if isinstance(value, dict) else {}
    return LatLng(lat=float(ll.get("latitude", 0.0)), lng=float(ll.get("longitude", 0.0)))


def _waypoint(point: LatLng) -> Dict[str, Any]:
    return {"location": {"latLng": {"latitude": point.lat, "longitude": point.lng}}}


class GoogleMapsClient:
    ROUTES_URL = "https://routes.googleapis.com/directions/v2:computeRoutes"
    PLACES_TEXT_URL = "https://maps.googleapis.com/maps/api/place/textsearch/json"
    GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
    ROUTES_FIELD_MASK = (
        "routes.duration,routes.distanceMeters,routes.polyline.encodedPolyline,"
        "routes.legs.startLocation,routes.legs.endLocation,routes.legs.distanceMeters,routes.legs.duration"
    )

    def __init__(self, api_key: Optional[str] = None, timeout: int = 15) -> None:
        self.api_key = api_key or config.google_maps_api_key()
        self.timeout = timeout

    def _require_key(self) -> None:
        if not self.api_key:
            raise ProviderUnavailable("GOOGLE_MAPS_API_KEY is not set. Add it to .env or set the environment variable.")

    def _get(self, url: str, params: Dict[str, str]) -> Dict[str, Any]:
        # 1) Key check
        # 2) GET with key param
        # 3) Map HTTP / API status failures to ProviderUnavailable
        self._require_key()
        try:
            r = requests.get(url, params={**params, "key": self.api_key}, timeout=self.timeout)
            r.raise_for_status()
            payload = r.json()
        except requests.RequestException as e:
            raise ProviderUnavailable(f"Google Maps request failed: {e}") from e
        except ValueError as e:
            raise ProviderUnavailable("Google Maps returned invalid JSON") from e

        status = payload.get("status")
        if status not in {"OK", "ZERO_RESULTS"}:
            raise ProviderUnavailable(payload.get("error_message") or f"Google Maps API: {status}")
        return payload

    def directions(
        self, origin: LatLng, destination: LatLng, waypoints: Sequence[LatLng] = ()
    ) -> Optional[DirectionsResult]:
        self._require_key()
        body: Dict[str, Any] = {
            "origin": _waypoint(origin),
            "destination": _waypoint(destination),
            "travelMode": "DRIVE",
            "polylineQuality": "OVERVIEW",
            "polylineEncoding": "ENCODED_POLYLINE",
        }
        if waypoints:
            body["intermediates"] = [_waypoint(w) for w in waypoints]

        headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": self.ROUTES_FIELD_MASK,
        }

        try:
            r = requests.post(self.ROUTES_URL, json=body, headers=headers, timeout=self.timeout)
            r.raise_for_status()
            payload = r.json()
        except requests.RequestException as e:
            raise ProviderUnavailable(f"Routes API request failed: {e}") from e
        except ValueError as e:
            raise ProviderUnavailable("Routes API returned invalid JSON") from e

        routes = payload.get("routes") or []
        if not routes:
            return None
        route = routes[0]

        legs = [
            DirectionsLeg(
                distance_m=float(leg.get("distanceMeters", 0)),
                duration_min=_parse_duration_s(leg.get("duration")) / 60.0,
                start_location=_latlng_from_routes(leg.get("startLocation")),
                end_location=_latlng_from_routes(leg.get("endLocation")),
            )
            for leg in route.get("legs") or []
        ]

        total_distance = float(route.get("distanceMeters") or sum(l.distance_m for l in legs))
        total_minutes = _parse_duration_s(route.get("duration")) / 60.0 or sum(l.duration_min for l in legs)

        if config.DEBUG:
            print(f"ROUTES API: {len(waypoints)} waypoint(s) -> {total_distance:.0f} m, {total_minutes:.1f} min")

        return DirectionsResult(
            polyline=(route.get("polyline") or {}).get("encodedPolyline", ""),
            total_distance_m=total_distance,
            total_duration_min=total_minutes,
            legs=legs,
        )

    def search_places(self, query: str, near: LatLng, radius_m: int = 10000, limit: int = 20) -> List[PlaceCandidate]:
        payload = self._get(
            self.PLACES_TEXT_URL,
            {"query": query, "location": f"{near.lat},{near.lng}", "radius": str(radius_m)},
        )
        out: List[PlaceCandidate] = []
        for r in (payload.get("results") or [])[:limit]:
            loc = (r.get("geometry") or {}).get("location") or {}
            if "lat" not in loc or "lng" not in loc:
                continue
            out.append(
                PlaceCandidate(
                    place_id=r.get("place_id", ""),
                    name=r.get("name", ""),
                    location=LatLng(lat=loc["lat"], lng=loc["lng"]),
                    address=r.get("formatted_address"),
                    rating=r.get("rating"),
                    review_count=r.get("user_ratings_total"),
                    types=list(r.get("types") or []),
                    is_open=(r.get("opening_hours") or {}).get("open_now"),
                )
            )
        return out

    def geocode(self, address: str) -> Optional[GeocodeResult]:
        payload = self._get(self.GEOCODE_URL, {"address": address})
        results = payload.get("results") or []
        if not results:
            return None
        loc = (results[0].get("geometry") or {}).get("location")
        if not loc:
            return None
        return GeocodeResult(
            address=results[0].get("formatted_address") or address,
            location=LatLng(lat=loc.get("lat", 0.0), lng=loc.get("lng", 0.0)),
        )
