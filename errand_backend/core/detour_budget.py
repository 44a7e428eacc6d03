# Role: Detour budget engine. Pure functions of the CURRENT base route length:
# how much extra distance a route may absorb, and how a stop's insertion cost compares to that allowance.
# Never cache a budget across base routes; call compute_budget again whenever the base changes.

from __future__ import annotations

from errand_backend.models.route import DetourBudget, DetourClassification, DistanceTier

SHORT_MAX_M = 3218.0     # <= 2 miles
MEDIUM_MAX_M = 16093.0   # <= 10 miles

TIER_PERCENTAGES = {
    DistanceTier.SHORT: 0.10,
    DistanceTier.MEDIUM: 0.07,
    DistanceTier.LONG: 0.05,
}

MIN_ALLOWANCE_M = 400.0   # 0.25 miles
MAX_ALLOWANCE_M = 1600.0  # 1 mile

NO_DETOUR_THRESHOLD_M = 50.0
MINIMAL_RATIO = 0.25


def distance_tier(base_distance_m: float) -> DistanceTier:
    if base_distance_m <= SHORT_MAX_M:
        return DistanceTier.SHORT
    if base_distance_m <= MEDIUM_MAX_M:
        return DistanceTier.MEDIUM
    return DistanceTier.LONG


def compute_budget(base_distance_m: float) -> DetourBudget:
    base = max(float(base_distance_m), 0.0)
    tier = distance_tier(base)
    percentage = TIER_PERCENTAGES[tier]
    allowed = min(max(base * percentage, MIN_ALLOWANCE_M), MAX_ALLOWANCE_M)
    return DetourBudget(
        base_distance_m=base,
        tier=tier,
        percentage=percentage,
        allowed_extra_m=allowed,
    )


def classify_detour(extra_m: float, allowed_extra_m: float) -> DetourClassification:
    if extra_m <= NO_DETOUR_THRESHOLD_M:
        return DetourClassification.NO_DETOUR
    if extra_m <= MINIMAL_RATIO * allowed_extra_m:
        return DetourClassification.MINIMAL
    if extra_m <= allowed_extra_m:
        return DetourClassification.ACCEPTABLE
    return DetourClassification.NOT_RECOMMENDED


def categorize_extra_minutes(extra_minutes: float) -> str:
    # Time view used for spoken warnings: minimal (<=5 min), significant (<=10 min), far.
    if extra_minutes <= 5:
        return "minimal"
    if extra_minutes <= 10:
        return "significant"
    return "far"


def detour_warning(stop_name: str, extra_minutes: float) -> str:
    minutes = max(int(round(extra_minutes)), 0)
    category = categorize_extra_minutes(extra_minutes)
    if category == "far":
        return f"Adding {stop_name} would add {minutes} minutes to your trip. That's a significant detour."
    if category == "significant":
        return f"Adding {stop_name} would add about {minutes} minutes."
    return f"{stop_name} is barely out of the way (about {minutes} extra minutes)."
