# Role: Error kinds shared across the orchestration core.
# Only ClassifierUnavailable (and unexpected faults) escape Orchestrator.process_request; everything else
# is absorbed into a next-best user-facing action within the same turn.

from __future__ import annotations

from typing import List, Optional


class ClassifierUnavailable(RuntimeError):
    """Language-model credentials/config missing or the model endpoint is unreachable."""

    MISSING_API_KEY = "MISSING_API_KEY"
    UNAVAILABLE = "UNAVAILABLE"

    def __init__(self, code: str, message: str, suggestions: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestions = suggestions or []

    @classmethod
    def missing_api_key(cls) -> "ClassifierUnavailable":
        return cls(
            cls.MISSING_API_KEY,
            "GEMINI_API_KEY is not set. Add it to .env or set the environment variable.",
            [
                "Copy .env.example to .env and set GEMINI_API_KEY",
                "Get a key at https://aistudio.google.com/apikey",
            ],
        )

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "suggestions": list(self.suggestions)}


class MalformedModelOutput(ValueError):
    """Model output that is not a well-formed JSON object. Converted to an `unknown` result, never raised out."""


class ToolError(Exception):
    """Base for failures raised inside tool executors; ToolRegistry converts them to ToolResult."""


class ToolInputError(ToolError):
    """Missing or ill-typed tool parameters."""


class PlaceNotFound(ToolError):
    """A named anchor, place or address could not be resolved."""


class ProviderUnavailable(ToolError):
    """Maps/places provider failed (network, quota, missing key). Retryable."""


class RouteInfeasible(Exception):
    """One or more requested stops exceed the detour budget and need the user's decision."""

    SUGGESTION = "You can remove a stop, keep it anyway, or expand your detour budget."

    def __init__(self, stop_names: List[str], allowed_extra_m: float) -> None:
        names = ", ".join(stop_names) or "the requested stops"
        super().__init__(f"Stops exceed the detour budget ({allowed_extra_m:.0f} m): {names}")
        self.stop_names = stop_names
        self.allowed_extra_m = allowed_extra_m


class InvalidRouteTransition(ValueError):
    """Route status change that the planning -> confirmed -> active lifecycle does not allow."""
