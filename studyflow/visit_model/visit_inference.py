"""
Visit Inference

Completes a visit schedule with the mandatory milestones (Screening,
Baseline, End of Treatment, Follow-up) and places milestones that were
normalized to sentinel days once the treatment schedule is known.
"""

import logging
from collections import OrderedDict
from dataclasses import replace
from typing import Dict, List, Optional

from core.config import FlowEngineConfig, get_config
from studyflow.schema import Visit, VisitType, VisitWindow
from studyflow.visit_model.visit_normalizer import (
    EOT_SENTINEL_DAY,
    FOLLOW_UP_SENTINEL_DAY,
    sort_visits_by_day,
)

logger = logging.getLogger(__name__)


def unique_visit_id(base: str, visits: List[Visit]) -> str:
    existing = {v.id for v in visits}
    if base not in existing:
        return base
    n = 2
    while f"{base}_{n}" in existing:
        n += 1
    return f"{base}_{n}"


def find_last_treatment_day(visits: List[Visit], default: int) -> int:
    treatment_days = [v.day for v in visits if v.type == VisitType.TREATMENT]
    return max(treatment_days) if treatment_days else default


def create_screening_visit(visits: List[Visit], day: int) -> Visit:
    return Visit(
        id=unique_visit_id("visit_screening", visits),
        name="Screening",
        day=day,
        type=VisitType.SCREENING,
        window=VisitWindow(7, 7),
        required=True,
        metadata={"source": "inferred", "notes": "Automatically added screening visit"},
    )


def create_baseline_visit(visits: List[Visit], source: str = "inferred") -> Visit:
    return Visit(
        id=unique_visit_id("visit_baseline", visits),
        name="Baseline",
        day=0,
        type=VisitType.BASELINE,
        window=VisitWindow(0, 0),
        required=True,
        metadata={"source": source, "notes": "Automatically added baseline visit (Day 0)"},
    )


def create_eot_visit(visits: List[Visit], day: int, source: str = "inferred") -> Visit:
    return Visit(
        id=unique_visit_id("visit_eot", visits),
        name="End of Treatment",
        day=day,
        type=VisitType.END_OF_TREATMENT,
        window=VisitWindow(3, 3),
        required=True,
        metadata={"source": source, "notes": f"Automatically added EOT visit at Day {day}"},
    )


def create_follow_up_visit(visits: List[Visit], eot_day: int, offset: int) -> Visit:
    return Visit(
        id=unique_visit_id("visit_follow_up", visits),
        name="Follow-up",
        day=eot_day + offset,
        type=VisitType.FOLLOW_UP,
        window=VisitWindow(7, 7),
        required=False,
        metadata={"source": "inferred",
                  "notes": f"Automatically added follow-up visit {offset} days after EOT"},
    )


def resolve_milestone_days(
    visits: List[Visit],
    config: Optional[FlowEngineConfig] = None,
) -> List[Visit]:
    """Replace EOT / follow-up sentinel days with concrete offsets.

    EOT goes to the last treatment day (or the configured default when
    there are no treatment visits); each follow-up is placed ``offset`` days
    after the EOT, in label order.
    """
    config = config or get_config()
    last_treatment = find_last_treatment_day(visits, config.default_eot_day)

    resolved: List[Visit] = []
    for visit in visits:
        if visit.type == VisitType.END_OF_TREATMENT and visit.day == EOT_SENTINEL_DAY:
            visit = replace(visit, day=last_treatment)
        resolved.append(visit)

    eot_days = [v.day for v in resolved if v.type == VisitType.END_OF_TREATMENT]
    anchor = max(eot_days) if eot_days else last_treatment
    follow_up_index = 0
    for i, visit in enumerate(resolved):
        if visit.type == VisitType.FOLLOW_UP and visit.day >= FOLLOW_UP_SENTINEL_DAY:
            follow_up_index += 1
            resolved[i] = replace(visit, day=anchor + config.follow_up_offset_days * follow_up_index)

    return sort_visits_by_day(resolved)


def infer_missing_visits(
    visits: List[Visit],
    config: Optional[FlowEngineConfig] = None,
) -> List[Visit]:
    """Add any missing mandatory milestone; returns a new list sorted by day."""
    config = config or get_config()
    result = list(visits)
    types = {v.type for v in visits}

    if VisitType.SCREENING not in types:
        result.append(create_screening_visit(result, config.screening_day))
        logger.debug("Inferred missing screening visit")

    if VisitType.BASELINE not in types:
        result.append(create_baseline_visit(result))
        logger.debug("Inferred missing baseline visit")

    if VisitType.END_OF_TREATMENT not in types:
        last_day = find_last_treatment_day(visits, config.default_eot_day)
        result.append(create_eot_visit(result, last_day))
        logger.debug(f"Inferred missing EOT visit at Day {last_day}")

    if VisitType.FOLLOW_UP not in types:
        eot = next((v for v in result if v.type == VisitType.END_OF_TREATMENT), None)
        eot_day = eot.day if eot else find_last_treatment_day(result, config.default_eot_day)
        result.append(create_follow_up_visit(result, eot_day, config.follow_up_offset_days))
        logger.debug("Inferred missing follow-up visit")

    added = len(result) - len(visits)
    if added:
        logger.info(f"Inferred {added} missing visit(s)")
    return sort_visits_by_day(result)


def add_unscheduled_visit(visits: List[Visit], name: str = "Unscheduled") -> List[Visit]:
    """Append an unscheduled-visit placeholder (day -1, not required)."""
    placeholder = Visit(
        id=unique_visit_id("visit_unscheduled", visits),
        name=name,
        day=-1,
        type=VisitType.UNSCHEDULED,
        required=False,
        metadata={"source": "inferred", "notes": "Placeholder for unscheduled visits"},
    )
    return sort_visits_by_day(list(visits) + [placeholder])


def validate_visit_sequence(visits: List[Visit]) -> Dict[str, object]:
    """Structural checks on a visit schedule.

    Returns ``{"valid": bool, "errors": [...], "warnings": [...]}``.
    """
    errors: List[str] = []
    warnings: List[str] = []

    baselines = [v for v in visits if v.type == VisitType.BASELINE]
    if not baselines:
        errors.append("Missing baseline visit (Day 0)")
    elif len(baselines) > 1:
        errors.append(f"Multiple baseline visits: {', '.join(v.name for v in baselines)}")
    for b in baselines:
        if b.day != 0:
            warnings.append(f"Baseline visit {b.name} is on Day {b.day}, expected Day 0")

    invalid = [v for v in visits
               if v.day < 0 and v.type not in (VisitType.SCREENING, VisitType.UNSCHEDULED)]
    if invalid:
        errors.append(
            f"Invalid negative days for non-screening visits: {', '.join(v.name for v in invalid)}"
        )

    by_day: "OrderedDict[int, List[Visit]]" = OrderedDict()
    for v in visits:
        if v.type == VisitType.UNSCHEDULED:
            continue
        by_day.setdefault(v.day, []).append(v)
    for day, on_day in by_day.items():
        if len(on_day) < 2:
            continue
        names = ", ".join(v.name for v in on_day)
        if len({v.type for v in on_day}) < len(on_day):
            errors.append(f"Multiple visits on Day {day}: {names}")
        else:
            warnings.append(f"Visits of different types share Day {day}: {names}")

    return {"valid": not errors, "errors": errors, "warnings": warnings}
