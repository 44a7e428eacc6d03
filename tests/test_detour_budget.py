import pytest

from errand_backend.core.detour_budget import (
    MAX_ALLOWANCE_M,
    MIN_ALLOWANCE_M,
    categorize_extra_minutes,
    classify_detour,
    compute_budget,
    detour_warning,
)
from errand_backend.models.route import DetourClassification, DistanceTier


@pytest.mark.parametrize(
    "base, tier, pct",
    [
        (0, DistanceTier.SHORT, 0.10),
        (3218, DistanceTier.SHORT, 0.10),
        (3219, DistanceTier.MEDIUM, 0.07),
        (16093, DistanceTier.MEDIUM, 0.07),
        (16094, DistanceTier.LONG, 0.05),
    ],
)
def test_tier_boundaries(base, tier, pct):
    budget = compute_budget(base)
    assert budget.tier == tier
    assert budget.percentage == pct


def test_allowance_is_clamped():
    assert compute_budget(1000).allowed_extra_m == MIN_ALLOWANCE_M
    assert compute_budget(100_000).allowed_extra_m == MAX_ALLOWANCE_M
    assert compute_budget(10_000).allowed_extra_m == pytest.approx(700)


def test_one_mile_base_gets_minimum_allowance():
    assert compute_budget(1609.34).allowed_extra_m == 400


def test_allowance_monotonic_within_each_tier():
    for lo, hi in [(0, 3218), (3219, 16093), (16094, 60000)]:
        values = [compute_budget(b).allowed_extra_m for b in range(lo, hi, 250)]
        assert values == sorted(values)
        assert all(MIN_ALLOWANCE_M <= v <= MAX_ALLOWANCE_M for v in values)


@pytest.mark.parametrize(
    "extra, expected",
    [
        (0, DetourClassification.NO_DETOUR),
        (50, DetourClassification.NO_DETOUR),
        (51, DetourClassification.MINIMAL),
        (100, DetourClassification.MINIMAL),
        (101, DetourClassification.ACCEPTABLE),
        (400, DetourClassification.ACCEPTABLE),
        (401, DetourClassification.NOT_RECOMMENDED),
    ],
)
def test_classification_boundaries(extra, expected):
    assert classify_detour(extra, 400) == expected


def test_minutes_categories_and_warning():
    assert categorize_extra_minutes(5) == "minimal"
    assert categorize_extra_minutes(9) == "significant"
    assert categorize_extra_minutes(12) == "far"
    assert "significant detour" in detour_warning("Costco", 14)
    assert "about 7 minutes" in detour_warning("Costco", 7)
