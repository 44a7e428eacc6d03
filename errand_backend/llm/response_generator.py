# Role: Produces the final assistant text. Route replies are formatted deterministically from tool data
# (the tool result is the source of truth); free model text is cleaned of "assistant preamble" artifacts.

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import errand_backend.config as config
from errand_backend.models.route import DetourClassification, RouteSummary
from errand_backend.utils.geo import meters_to_miles

MESSAGE_TYPES = ("route_summary", "confirmation", "error", "info")


def _join(items: Sequence[str]) -> str:
    items = list(items)
    if len(items) <= 1:
        return "".join(items)
    return ", ".join(items[:-1]) + f" and {items[-1]}"


class ResponseGenerator:
    def clean(self, text: str) -> str:
        # Role: remove common filler/preambles without changing actual content.
        if not text:
            return ""

        lines = [ln.rstrip() for ln in text.strip().splitlines()]

        always_drop_prefixes = (
            "the user",
            "my plan",
            "i will call",
            "i'll call",
            "i am going to call",
            "here's my plan",
            "tool result",
        )
        soft_drop_prefixes = ("okay", "ok", "sure", "alright", "got it")

        cleaned: List[str] = []
        skipping = True
        for ln in lines:
            low_norm = ln.strip().lower().rstrip(":,.-! ")
            if skipping:
                if not low_norm:
                    continue
                if any(low_norm.startswith(p) for p in always_drop_prefixes):
                    continue
                if any(low_norm.startswith(p) for p in soft_drop_prefixes) and len(low_norm) <= 12:
                    continue
            skipping = False
            cleaned.append(ln)

        out = "\n".join(cleaned).strip()
        # Tool-call syntax must never reach the user.
        out = out.replace("```tool_code", "").replace("```json", "").replace("```", "").strip()
        return out if out else text.strip()

    def route_summary(self, destination: str, stops: Sequence[str] = (), time_min: Optional[float] = None) -> str:
        summary = f"Your route to {destination}"
        if stops:
            summary += f" with a stop at {_join(stops)}"
        summary += " is ready."
        if time_min:
            summary += f" Total time is about {int(round(time_min))} minutes."
        return summary + " Ready to go?"

    def route_reply(self, route: RouteSummary) -> str:
        """Spoken summary of a planned route, with a heads-up for kept over-budget stops."""
        parts = [self.route_summary(route.destination.name, [s.name for s in route.stops], route.total_time_min)]

        for stop in route.stops:
            if stop.flagged or stop.classification == DetourClassification.NOT_RECOMMENDED:
                parts.insert(
                    0,
                    f"Heads up: {stop.name} adds about {meters_to_miles(stop.extra_distance_m):.1f} miles, "
                    "more than I'd usually suggest.",
                )
        if route.unresolved_stops:
            parts.insert(0, f"I couldn't find {_join(route.unresolved_stops)} nearby.")

        out = " ".join(parts)
        if config.DEBUG:
            print("ROUTE REPLY:", out)
        return out

    def render(self, message_type: str, content: Dict[str, Any]) -> str:
        # Deterministic templates for the generate_response tool.
        if message_type == "route_summary":
            return self.route_summary(
                content.get("destination") or "your destination",
                content.get("stops") or [],
                content.get("time_min"),
            )
        if message_type == "confirmation":
            return content.get("message") or "Please confirm."
        if message_type == "error":
            return content.get("message") or "Something went wrong."
        if message_type == "info":
            return content.get("message") or "Here you go."
        return "How can I help you?"

    def navigation_started(self, destination: str, stops: Sequence[str] = ()) -> str:
        if stops:
            return f"Starting navigation to {destination} via {_join(stops)}."
        return f"Starting navigation to {destination}."

    def cancelled(self, had_route: bool) -> str:
        return "Okay, I've cancelled your route." if had_route else "Okay, cancelled."

    def stop_unchanged(self, stop_name: str, added: bool) -> str:
        if added:
            return f"{stop_name} is already on your route."
        return f"{stop_name} isn't on your route."

    def tool_limit_reached(self) -> str:
        return "I'm still working that out. Could you say it a little more simply?"

    def generic_failure(self) -> str:
        return "Sorry, I couldn't do that. Could you try again?"
