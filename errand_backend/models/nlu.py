# Role: Per-utterance classification result. Ephemeral: folded into the user Turn and into
# Session.active_entities, never persisted on its own.

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from errand_backend.models.intent import Intent


@dataclass(frozen=True)
class NLUResult:
    intent: Intent
    confidence: float
    destination: Optional[str] = None
    stops: List[str] = field(default_factory=list)
    requires_advanced: bool = False
    source: str = "fast"
    reasoning: Optional[str] = None
    raw_text: str = ""

    @classmethod
    def unresolved(cls, raw_text: str = "", source: str = "fast", requires_advanced: bool = True) -> "NLUResult":
        # Key line: malformed or deferred model output is data, not an error.
        return cls(
            intent=Intent.UNKNOWN,
            confidence=0.0,
            requires_advanced=requires_advanced,
            source=source,
            raw_text=raw_text or "",
        )

    @property
    def entities(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.destination:
            out["destination"] = self.destination
        if self.stops:
            out["stops"] = list(self.stops)
        return out

    def with_confidence(self, confidence: float) -> "NLUResult":
        return replace(self, confidence=min(max(confidence, 0.0), 1.0))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent": self.intent.value,
            "destination": self.destination,
            "stops": list(self.stops),
            "confidence": self.confidence,
            "requires_advanced": self.requires_advanced,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NLUResult":
        return cls(
            intent=Intent(data.get("intent", Intent.UNKNOWN.value)),
            confidence=float(data.get("confidence", 0.0)),
            destination=data.get("destination"),
            stops=list(data.get("stops") or []),
            requires_advanced=bool(data.get("requires_advanced", False)),
            source=data.get("source", "fast"),
        )
