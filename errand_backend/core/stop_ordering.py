# Role: Visiting order for an unordered set of candidate stops.
# Greedy cheapest insertion: each round picks the candidate whose best insertion point adds the least
# distance, re-computes the detour budget from the grown base, and classifies the stop against it.
# NOT_RECOMMENDED stops are kept in `flagged` (never silently dropped); excluding them is the user's call.

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

import errand_backend.config as config
from errand_backend.core.detour_budget import classify_detour, compute_budget
from errand_backend.models.geo import LatLng
from errand_backend.models.route import CandidateStop, DetourClassification, OrderedStop, OrderingResult
from errand_backend.utils.geo import haversine_m, path_length_m


def best_insertion(path: Sequence[LatLng], point: LatLng) -> Tuple[int, float]:
    """
    Cheapest place to insert `point` into `path` (origin ... destination).
    Returns (index to insert at, extra meters).
    """
    best_idx = 1
    best_cost = float("inf")
    for i in range(len(path) - 1):
        a, b = path[i], path[i + 1]
        cost = haversine_m(a, point) + haversine_m(point, b) - haversine_m(a, b)
        if cost < best_cost:
            best_cost = cost
            best_idx = i + 1
    # Floating point can produce tiny negatives for points on the segment.
    return best_idx, max(best_cost, 0.0)


def order_stops(
    origin: LatLng,
    destination: LatLng,
    candidates: Sequence[CandidateStop],
    base_distance_m: Optional[float] = None,
    keep: Iterable[str] = (),
) -> OrderingResult:
    # 1) Start from the direct origin -> destination path
    # 2) Each round: cheapest marginal insertion among remaining candidates
    # 3) Budget from the CURRENT base (direct + accepted insertions), classify
    # 4) Accepted (or user-kept) stops join the path and grow the base; others are flagged
    keep_names = {k.strip().lower() for k in keep if k and k.strip()}

    path: List[LatLng] = [origin, destination]
    stops_in_path: List[OrderedStop] = []
    flagged: List[OrderedStop] = []

    direct = base_distance_m if base_distance_m is not None else path_length_m(path)
    base = float(direct)
    remaining = list(candidates)

    while remaining:
        scored = []
        for cand in remaining:
            idx, cost = best_insertion(path, cand.location)
            scored.append((cost, idx, cand))
        scored.sort(key=lambda t: (t[0], t[2].name.lower()))
        cost, idx, cand = scored[0]
        remaining.remove(cand)

        budget = compute_budget(base)
        classification = classify_detour(cost, budget.allowed_extra_m)
        # The user may refer to a stop by what they asked for ("coffee") or by the place name.
        kept = bool({cand.name.strip().lower(), (cand.category or "").strip().lower()} & keep_names)
        not_recommended = classification == DetourClassification.NOT_RECOMMENDED

        stop = OrderedStop(
            candidate=cand,
            extra_m=cost,
            allowed_extra_m=budget.allowed_extra_m,
            classification=classification,
            flagged=not_recommended,
        )

        if config.DEBUG:
            print(
                f"ORDERING: {cand.name} +{cost:.0f}m vs allowance {budget.allowed_extra_m:.0f}m "
                f"(base {base:.0f}m) -> {classification.value}{' [kept]' if kept else ''}"
            )

        if not_recommended and not kept:
            flagged.append(stop)
            continue

        path.insert(idx, cand.location)
        # Key line: position among accepted stops mirrors the insertion index (path[0] is the origin).
        stops_in_path.insert(idx - 1, stop)
        base += cost

    return OrderingResult(
        ordered=stops_in_path,
        flagged=flagged,
        base_distance_m=float(direct),
        final_distance_m=base,
    )
