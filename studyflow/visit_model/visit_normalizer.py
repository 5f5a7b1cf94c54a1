"""
Visit Normalizer

Parses free-text visit labels ("Day 14", "Week 4", "Screening", "Визит 3")
into canonical visit records with a day offset, a visit type and a
confidence score.  Supports English and Russian label variants.

Patterns are tried in priority order:
1. explicit day:    "Day 14", "D14", "День 14"        → day N         (0.95)
2. week:            "Week 4", "Wk 4", "Неделя 4"       → day N×7       (0.95)
3. month:           "Month 3", "Месяц 3"               → day N×30      (0.90)
4. named milestone: Screening / Baseline / EOT / Follow-up / Unscheduled
5. visit ordinal:   "Visit 3", "V3", "Визит 3"         → day (N−1)×7   (0.70)

Anything else degrades to ``day=0, type=treatment, confidence=0.3``; the
normalizer never raises for unrecognized text.
"""

import logging
import math
import re
from typing import Iterable, List, Optional, Pattern, Tuple

from studyflow.schema import (
    Visit,
    VisitNormalizationResult,
    VisitType,
    VisitWindow,
)

logger = logging.getLogger(__name__)

# Sentinel days for milestones whose position is only known once the
# treatment schedule is known.
EOT_SENTINEL_DAY = 999
FOLLOW_UP_SENTINEL_DAY = 1000

DAY_CONFIDENCE = 0.95
WEEK_CONFIDENCE = 0.95
MONTH_CONFIDENCE = 0.9
ORDINAL_CONFIDENCE = 0.7
FALLBACK_CONFIDENCE = 0.3

_FLAGS = re.IGNORECASE | re.UNICODE

# ==========================================================================
# REGEX PATTERNS (English first, then Russian)
# ==========================================================================

DAY_PATTERNS: Tuple[Pattern, ...] = (
    re.compile(r"\b(?:day|d)\s*(-?\d+)\b", _FLAGS),
    re.compile(r"(?:^|\s)(?:день|д)\.?\s*(-?\d+)", _FLAGS),
)

WEEK_PATTERNS: Tuple[Pattern, ...] = (
    re.compile(r"\b(?:week|wk|w)\s*(\d+)\b", _FLAGS),
    re.compile(r"(?:^|\s)(?:неделя|недели|нед)\.?\s*(\d+)", _FLAGS),
)

MONTH_PATTERNS: Tuple[Pattern, ...] = (
    re.compile(r"\b(?:month|mo|m)\s*(\d+)\b", _FLAGS),
    re.compile(r"(?:^|\s)(?:месяц|мес)\.?\s*(\d+)", _FLAGS),
)

VISIT_ORDINAL_PATTERNS: Tuple[Pattern, ...] = (
    re.compile(r"\b(?:visit|v)\s*(\d+)\b", _FLAGS),
    re.compile(r"(?:^|\s)(?:визит|в)\.?\s*(\d+)", _FLAGS),
)

# (pattern, canonical name, day, type, confidence), checked in order
MILESTONE_PATTERNS: Tuple[Tuple[Pattern, str, int, VisitType, float], ...] = (
    (re.compile(r"\bscreening\b|\bscr\b|скрининг", _FLAGS),
     "Screening", -14, VisitType.SCREENING, 0.98),
    (re.compile(r"\bbaseline\b|базов|исходн", _FLAGS),
     "Baseline", 0, VisitType.BASELINE, 0.98),
    (re.compile(r"end\s+of\s+treatment|\beot\b|окончани[еяи]\s+лечения", _FLAGS),
     "End of Treatment", EOT_SENTINEL_DAY, VisitType.END_OF_TREATMENT, 0.95),
    (re.compile(r"\bfollow|последующ|наблюдени", _FLAGS),
     "Follow-up", FOLLOW_UP_SENTINEL_DAY, VisitType.FOLLOW_UP, 0.9),
    (re.compile(r"\bunscheduled\b|внепланов", _FLAGS),
     "Unscheduled", -1, VisitType.UNSCHEDULED, 0.95),
)


def _first_int(patterns: Iterable[Pattern], text: str) -> Optional[int]:
    for pattern in patterns:
        m = pattern.search(text)
        if m:
            return int(m.group(1))
    return None


def determine_visit_type(day: int) -> VisitType:
    """Visit type implied by a day offset alone."""
    if day < 0:
        return VisitType.SCREENING
    if day == 0:
        return VisitType.BASELINE
    if day >= FOLLOW_UP_SENTINEL_DAY:
        return VisitType.FOLLOW_UP
    if day == EOT_SENTINEL_DAY:
        return VisitType.END_OF_TREATMENT
    return VisitType.TREATMENT


def normalize_visit_name(visit_name: str) -> VisitNormalizationResult:
    """Parse one free-text visit label."""
    text = (visit_name or "").strip()

    day = _first_int(DAY_PATTERNS, text)
    if day is not None:
        return VisitNormalizationResult(
            original_name=visit_name, normalized_name=f"Day {day}",
            day=day, type=determine_visit_type(day), confidence=DAY_CONFIDENCE,
        )

    week = _first_int(WEEK_PATTERNS, text)
    if week is not None:
        day = week * 7
        return VisitNormalizationResult(
            original_name=visit_name, normalized_name=f"Week {week}",
            day=day, type=determine_visit_type(day), confidence=WEEK_CONFIDENCE,
        )

    month = _first_int(MONTH_PATTERNS, text)
    if month is not None:
        day = month * 30
        return VisitNormalizationResult(
            original_name=visit_name, normalized_name=f"Month {month}",
            day=day, type=determine_visit_type(day), confidence=MONTH_CONFIDENCE,
        )

    for pattern, name, day, visit_type, confidence in MILESTONE_PATTERNS:
        if pattern.search(text):
            return VisitNormalizationResult(
                original_name=visit_name, normalized_name=name,
                day=day, type=visit_type, confidence=confidence,
            )

    ordinal = _first_int(VISIT_ORDINAL_PATTERNS, text)
    if ordinal is not None:
        # Heuristic: weekly visits starting at baseline
        day = 0 if ordinal <= 1 else (ordinal - 1) * 7
        return VisitNormalizationResult(
            original_name=visit_name, normalized_name=f"Visit {ordinal}",
            day=day, type=determine_visit_type(day), confidence=ORDINAL_CONFIDENCE,
        )

    logger.debug(f"Unrecognized visit label {visit_name!r}, using fallback")
    return VisitNormalizationResult(
        original_name=visit_name, normalized_name=text or "Unnamed Visit",
        day=0, type=VisitType.TREATMENT, confidence=FALLBACK_CONFIDENCE,
    )


def normalize_visits(visit_names: List[str], sort: bool = True) -> List[VisitNormalizationResult]:
    """Normalize a batch of labels; sorted by day unless ``sort`` is False."""
    results = [normalize_visit_name(name) for name in visit_names]
    if sort:
        results = sorted(results, key=lambda r: r.day)
    return results


def sort_visits_by_day(visits: List[Visit]) -> List[Visit]:
    """Stable sort by day, returned as a new list."""
    return sorted(visits, key=lambda v: v.day)


def calculate_visit_window(visit_type: VisitType, day: int) -> VisitWindow:
    """Default window for a visit type, before procedure categories are known."""
    if visit_type == VisitType.SCREENING:
        return VisitWindow(7, 7)
    if visit_type == VisitType.BASELINE:
        return VisitWindow(0, 0)
    if visit_type == VisitType.TREATMENT:
        width = max(math.ceil(day * 0.1), 3)
        return VisitWindow(width, width)
    if visit_type == VisitType.END_OF_TREATMENT:
        return VisitWindow(3, 3)
    if visit_type == VisitType.FOLLOW_UP:
        return VisitWindow(7, 7)
    return VisitWindow(3, 3)


def visit_id_for(name: str) -> str:
    """Stable id derived from a canonical visit name."""
    slug = re.sub(r"[^\w]+", "_", name.lower(), flags=re.UNICODE).strip("_")
    return f"visit_{slug or 'unnamed'}"


def visits_from_labels(visit_names: List[str], source: str = "normalized") -> List[Visit]:
    """Build Visit records from raw labels, sorted by day.

    Ids are derived from the canonical name; repeated names get a numeric
    suffix so every id is unique.
    """
    visits: List[Visit] = []
    seen: dict = {}
    for result in normalize_visits(visit_names):
        base_id = visit_id_for(result.normalized_name)
        count = seen.get(base_id, 0)
        seen[base_id] = count + 1
        visit_id = base_id if count == 0 else f"{base_id}_{count + 1}"
        visits.append(Visit(
            id=visit_id,
            name=result.normalized_name,
            day=result.day,
            type=result.type,
            window=calculate_visit_window(result.type, result.day),
            metadata={
                "originalName": result.original_name,
                "source": source,
                "confidence": result.confidence,
            },
        ))
    logger.debug(f"Normalized {len(visits)} visit labels")
    return visits
