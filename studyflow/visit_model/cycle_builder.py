"""
Cycle Builder

Groups treatment visits into fixed-length treatment cycles, infers the
cycle length from visit spacing, and reports structural problems (gaps,
overlaps, empty cycles) without repairing them.
"""

import logging
from collections import Counter
from dataclasses import replace
from typing import Dict, List, Optional

from studyflow.schema import TreatmentCycle, Visit, VisitType

logger = logging.getLogger(__name__)

CYCLE_MATCH_RATIO = 0.6


def _treatment_visits(visits: List[Visit]) -> List[Visit]:
    return sorted((v for v in visits if v.type == VisitType.TREATMENT), key=lambda v: v.day)


def build_cycles(visits: List[Visit], cycle_length_days: int) -> List[TreatmentCycle]:
    """Group treatment visits into cycles of ``cycle_length_days``.

    A visit on day ``d`` falls in the cycle starting at
    ``floor(d / length) * length``.  Cycles are numbered in order of
    appearance; day ranges with no treatment visit produce no cycle, which
    ``validate_cycles`` then reports as a gap.
    """
    if cycle_length_days <= 0:
        raise ValueError(f"cycle_length_days must be positive, got {cycle_length_days}")

    cycles: List[TreatmentCycle] = []
    by_start: Dict[int, TreatmentCycle] = {}
    for visit in _treatment_visits(visits):
        start = (visit.day // cycle_length_days) * cycle_length_days
        cycle = by_start.get(start)
        if cycle is None:
            number = len(cycles) + 1
            cycle = TreatmentCycle(
                id=f"cycle_{number}",
                cycle_number=number,
                length_days=cycle_length_days,
                start_day=start,
                end_day=start + cycle_length_days - 1,
            )
            by_start[start] = cycle
            cycles.append(cycle)
        cycle.visits_in_cycle.append(visit.id)

    logger.debug(f"Built {len(cycles)} cycle(s) of {cycle_length_days} days")
    return cycles


def infer_cycle_length(visits: List[Visit], match_ratio: float = CYCLE_MATCH_RATIO) -> Optional[int]:
    """Most frequent spacing between consecutive treatment visits.

    Returns None ("no cycle detected") with fewer than two treatment visits
    or when the most frequent interval covers less than ``match_ratio`` of
    all intervals.  Ties go to the interval seen first.
    """
    treatment = _treatment_visits(visits)
    if len(treatment) < 2:
        return None

    intervals = [b.day - a.day for a, b in zip(treatment, treatment[1:])]
    intervals = [i for i in intervals if i > 0]
    if not intervals:
        return None

    # Counter.most_common keeps first-seen order among equal counts
    interval, count = Counter(intervals).most_common(1)[0]
    if count >= len(intervals) * match_ratio:
        logger.debug(f"Inferred cycle length {interval} ({count}/{len(intervals)} intervals)")
        return interval
    return None


def assign_visits_to_cycles(visits: List[Visit], cycles: List[TreatmentCycle]) -> List[Visit]:
    """Return visits with ``cycle`` set for those inside a cycle's day range."""
    result = []
    for visit in visits:
        cycle = next((c for c in cycles if c.start_day <= visit.day <= c.end_day), None)
        if cycle is not None and visit.type == VisitType.TREATMENT:
            visit = replace(visit, cycle=cycle.cycle_number)
        result.append(visit)
    return result


def validate_cycles(cycles: List[TreatmentCycle]) -> Dict[str, object]:
    """Report gaps, overlaps and empty cycles as errors."""
    errors: List[str] = []

    for prev, current in zip(cycles, cycles[1:]):
        if current.start_day != prev.end_day + 1:
            if current.start_day > prev.end_day + 1:
                errors.append(
                    f"Gap between Cycle {prev.cycle_number} and Cycle {current.cycle_number}"
                )

    for i, first in enumerate(cycles):
        for second in cycles[i + 1:]:
            if first.start_day <= second.end_day and first.end_day >= second.start_day:
                errors.append(
                    f"Overlap between Cycle {first.cycle_number} and Cycle {second.cycle_number}"
                )

    for cycle in cycles:
        if not cycle.visits_in_cycle:
            errors.append(f"Cycle {cycle.cycle_number} has no visits")

    return {"valid": not errors, "errors": errors}


def get_cycle_summary(cycles: List[TreatmentCycle]) -> Dict[str, object]:
    if not cycles:
        return {"totalCycles": 0, "averageCycleLength": 0, "totalDuration": 0, "visitsPerCycle": []}
    return {
        "totalCycles": len(cycles),
        "averageCycleLength": sum(c.length_days for c in cycles) / len(cycles),
        "totalDuration": cycles[-1].end_day - cycles[0].start_day + 1,
        "visitsPerCycle": [len(c.visits_in_cycle) for c in cycles],
    }
