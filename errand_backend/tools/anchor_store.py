# Role: User anchors (home, work, gym...). Saved locations a user refers to by name.
# In-memory only; durable profile storage lives outside this service.

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from errand_backend.models.geo import LatLng

_ALIASES = {
    "my house": "home",
    "house": "home",
    "my home": "home",
    "office": "work",
    "my office": "work",
    "my work": "work",
    "job": "work",
}


def normalize_anchor_name(name: str) -> str:
    key = " ".join((name or "").lower().split())
    return _ALIASES.get(key, key)


@dataclass(frozen=True)
class Anchor:
    id: str
    name: str
    location: LatLng
    address: Optional[str] = None
    type: str = "anchor"


class AnchorStore(Protocol):
    def list(self, user_id: str) -> List[Anchor]: ...

    def find(self, user_id: str, name: str) -> Optional[Anchor]: ...

    def save(self, user_id: str, name: str, location: LatLng, address: Optional[str] = None) -> Anchor: ...


class InMemoryAnchorStore:
    def __init__(self) -> None:
        self._anchors: Dict[str, Dict[str, Anchor]] = {}
        self._lock = threading.Lock()

    def list(self, user_id: str) -> List[Anchor]:
        with self._lock:
            return sorted(self._anchors.get(user_id, {}).values(), key=lambda a: a.name)

    def find(self, user_id: str, name: str) -> Optional[Anchor]:
        with self._lock:
            return self._anchors.get(user_id, {}).get(normalize_anchor_name(name))

    def save(self, user_id: str, name: str, location: LatLng, address: Optional[str] = None) -> Anchor:
        # Saving an existing name replaces its location.
        key = normalize_anchor_name(name)
        with self._lock:
            existing = self._anchors.get(user_id, {}).get(key)
            anchor = Anchor(
                id=existing.id if existing else f"anchor_{uuid.uuid4().hex[:8]}",
                name=key,
                location=location,
                address=address,
                type=key if key in {"home", "work"} else "anchor",
            )
            self._anchors.setdefault(user_id, {})[key] = anchor
            return anchor

    def delete(self, user_id: str, name: str) -> bool:
        with self._lock:
            return self._anchors.get(user_id, {}).pop(normalize_anchor_name(name), None) is not None
