# Role: Coordinate schema shared by sessions, tools and API payloads.

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class LatLng(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)

    def as_dict(self) -> dict:
        return {"lat": self.lat, "lng": self.lng}

    @classmethod
    def coerce(cls, value: Any) -> Optional["LatLng"]:
        # Accepts LatLng, {"lat", "lng"}, {"latitude", "longitude"} or {"location": {...}}.
        if value is None:
            return None
        if isinstance(value, LatLng):
            return value
        if not isinstance(value, dict):
            return None
        if "location" in value and isinstance(value["location"], dict):
            return cls.coerce(value["location"])
        lat = value.get("lat", value.get("latitude"))
        lng = value.get("lng", value.get("longitude"))
        if lat is None or lng is None:
            return None
        try:
            return cls(lat=float(lat), lng=float(lng))
        except (TypeError, ValueError):
            return None


class NamedLocation(BaseModel):
    name: str
    location: LatLng
