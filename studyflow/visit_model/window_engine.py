"""
Visit Window Engine

Computes the allowed ± tolerance around a visit day from the categories of
the procedures performed at the visit.  Tightest requirement wins:

    pk / pd    → strict     (±1 … ±3)
    efficacy   → moderate   (±2 … ±7)
    safety     → narrow     (±1 … ±3)
    otherwise  → standard   (10% of day, at least ±3)

Day 0 always gets a zero window.
"""

import logging
import math
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from studyflow.schema import Procedure, ProcedureCategory, Visit, VisitWindow

logger = logging.getLogger(__name__)

_ZERO = VisitWindow(0, 0)


def _symmetric(days: int) -> VisitWindow:
    return VisitWindow(days, days)


def strict_window(day: int) -> VisitWindow:
    if day == 0:
        return _ZERO
    if day <= 7:
        return _symmetric(1)
    if day <= 28:
        return _symmetric(2)
    return _symmetric(3)


def moderate_window(day: int) -> VisitWindow:
    if day == 0:
        return _ZERO
    if day <= 7:
        return _symmetric(2)
    if day <= 28:
        return _symmetric(3)
    if day <= 84:
        return _symmetric(5)
    return _symmetric(7)


def narrow_window(day: int) -> VisitWindow:
    if day == 0:
        return _ZERO
    if day <= 14:
        return _symmetric(1)
    if day <= 28:
        return _symmetric(2)
    return _symmetric(3)


def standard_window(day: int) -> VisitWindow:
    if day == 0:
        return _ZERO
    return _symmetric(max(math.ceil(day * 0.1), 3))


def window_class(categories: Iterable[ProcedureCategory]) -> str:
    """Name of the window family selected for a set of categories."""
    cats = set(categories)
    if ProcedureCategory.PK in cats or ProcedureCategory.PD in cats:
        return "strict"
    if ProcedureCategory.EFFICACY in cats:
        return "moderate"
    if ProcedureCategory.SAFETY in cats:
        return "narrow"
    return "standard"


_WINDOW_FUNCS = {
    "strict": strict_window,
    "moderate": moderate_window,
    "narrow": narrow_window,
    "standard": standard_window,
}


def calculate_optimal_window(day: int, categories: Iterable[ProcedureCategory]) -> VisitWindow:
    """Window for a visit day given the categories of its procedures."""
    if day == 0:
        return _ZERO
    return _WINDOW_FUNCS[window_class(categories)](day)


def visit_categories(visit: Visit, procedures: List[Procedure]) -> List[ProcedureCategory]:
    assigned = set(visit.procedures)
    return [p.category for p in procedures if p.id in assigned]


def window_for_visit(visit: Visit, procedures: List[Procedure],
                     keep_existing: bool = True) -> VisitWindow:
    """Window for a visit record.

    An already-defined window is kept when ``keep_existing`` is set, except
    at day 0 where the window is always zero.
    """
    if visit.day == 0:
        return _ZERO
    if keep_existing and visit.window is not None:
        return visit.window
    return calculate_optimal_window(visit.day, visit_categories(visit, procedures))


def apply_windows_to_visits(visits: List[Visit], procedures: List[Procedure],
                            keep_existing: bool = True) -> List[Visit]:
    """Return new visits with windows filled in."""
    result = [replace(v, window=window_for_visit(v, procedures, keep_existing)) for v in visits]
    logger.debug(f"Applied windows to {len(result)} visits")
    return result


def validate_windows(visits: List[Visit],
                     warning_ratio: float = 0.3) -> Dict[str, object]:
    """Flag visits without windows, oversized windows and overlapping windows.

    Each overlapping pair is reported once.
    """
    warnings: List[str] = []

    for visit in visits:
        if visit.window is None:
            warnings.append(f"Visit {visit.name} has no window defined")
            continue
        if visit.day > 0 and visit.window.total > visit.day * warning_ratio:
            warnings.append(
                f"Visit {visit.name} has large window "
                f"(±{visit.window.minus}/{visit.window.plus} days for Day {visit.day})"
            )

    windowed = [v for v in visits if v.window is not None]
    for i, first in enumerate(windowed):
        for second in windowed[i + 1:]:
            start1, end1 = first.day - first.window.minus, first.day + first.window.plus
            start2, end2 = second.day - second.window.minus, second.day + second.window.plus
            if start1 <= end2 and end1 >= start2:
                warnings.append(f"Window overlap between {first.name} and {second.name}")

    return {"valid": not warnings, "warnings": warnings}


def get_window_summary(visits: List[Visit]) -> Dict[str, float]:
    """Average/min/max total window; strict ≤4, moderate 5–10, flexible >10 days."""
    totals = [v.window.total for v in visits if v.window is not None]
    if not totals:
        return {
            "averageWindow": 0, "minWindow": 0, "maxWindow": 0,
            "strictVisits": 0, "moderateVisits": 0, "flexibleVisits": 0,
        }
    return {
        "averageWindow": sum(totals) / len(totals),
        "minWindow": min(totals),
        "maxWindow": max(totals),
        "strictVisits": sum(1 for w in totals if w <= 4),
        "moderateVisits": sum(1 for w in totals if 4 < w <= 10),
        "flexibleVisits": sum(1 for w in totals if w > 10),
    }
