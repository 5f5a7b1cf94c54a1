"""
Visit-Endpoint Alignment

For every (visit, endpoint) pair, checks that the visit carries the
procedures the endpoint requires at that study phase and that the phase is
one at which the endpoint may be assessed.  All aggregate views are pure
reductions over the alignment list.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, List

from studyflow.alignment.endpoint_procedure_map import get_procedures_for_endpoint_at_visit
from studyflow.schema import (
    EndpointProcedureMap,
    EndpointType,
    Visit,
    VisitEndpointAlignment,
    VisitType,
)

logger = logging.getLogger(__name__)


def _timing_correct(visit: Visit, endpoint_map: EndpointProcedureMap) -> bool:
    timing = endpoint_map.timing
    if visit.type == VisitType.BASELINE:
        return timing.baseline
    if visit.type == VisitType.TREATMENT:
        return timing.treatment
    if visit.type in (VisitType.FOLLOW_UP, VisitType.END_OF_TREATMENT):
        return timing.follow_up
    if visit.type == VisitType.UNSCHEDULED:
        return True
    # Screening is never an endpoint assessment point
    return False


def check_visit_endpoint_alignment(
    visit: Visit,
    endpoint_map: EndpointProcedureMap,
) -> VisitEndpointAlignment:
    required = get_procedures_for_endpoint_at_visit(endpoint_map, visit.type)
    present = set(visit.procedures)
    missing = tuple(p for p in required if p not in present)
    return VisitEndpointAlignment(
        visit_id=visit.id,
        endpoint_id=endpoint_map.endpoint_id,
        has_procedures=not missing,
        missing_procedures=missing,
        timing_correct=_timing_correct(visit, endpoint_map),
    )


def check_all_visit_endpoint_alignments(
    visits: List[Visit],
    maps: List[EndpointProcedureMap],
) -> List[VisitEndpointAlignment]:
    """Visit-major cross product of alignment checks."""
    alignments = [
        check_visit_endpoint_alignment(visit, endpoint_map)
        for visit in visits
        for endpoint_map in maps
    ]
    logger.debug(f"Checked {len(alignments)} visit/endpoint pair(s)")
    return alignments


def get_misaligned_pairs(alignments: List[VisitEndpointAlignment]) -> List[VisitEndpointAlignment]:
    return [a for a in alignments if not a.aligned]


def get_alignment_summary(alignments: List[VisitEndpointAlignment]) -> Dict[str, Any]:
    total = len(alignments)
    aligned = sum(1 for a in alignments if a.aligned)
    return {
        "totalChecks": total,
        "aligned": aligned,
        "misaligned": total - aligned,
        "alignmentPercentage": aligned / total * 100 if total else 100.0,
        "missingProceduresCount": sum(len(a.missing_procedures) for a in alignments),
        "timingIssuesCount": sum(1 for a in alignments if not a.timing_correct),
    }


def _group_percentages(alignments: List[VisitEndpointAlignment], key: str) -> Dict[str, Dict[str, Any]]:
    grouped: Dict[str, Dict[str, Any]] = {}
    for a in alignments:
        bucket = grouped.setdefault(getattr(a, key), {"total": 0, "aligned": 0})
        bucket["total"] += 1
        if a.aligned:
            bucket["aligned"] += 1
    for bucket in grouped.values():
        bucket["percentage"] = bucket["aligned"] / bucket["total"] * 100
    return grouped


def get_alignment_by_visit(alignments: List[VisitEndpointAlignment]) -> Dict[str, Dict[str, Any]]:
    return _group_percentages(alignments, "visit_id")


def get_alignment_by_endpoint(alignments: List[VisitEndpointAlignment]) -> Dict[str, Dict[str, Any]]:
    return _group_percentages(alignments, "endpoint_id")


def suggest_procedures_to_add(
    visits: List[Visit],
    maps: List[EndpointProcedureMap],
) -> List[Dict[str, Any]]:
    """One suggestion per misaligned pair that is missing procedures."""
    visit_index = {v.id: v for v in visits}
    map_index = {m.endpoint_id: m for m in maps}
    suggestions = []
    for a in check_all_visit_endpoint_alignments(visits, maps):
        if not a.missing_procedures:
            continue
        visit = visit_index[a.visit_id]
        endpoint_map = map_index[a.endpoint_id]
        suggestions.append({
            "visitId": visit.id,
            "visitName": visit.name,
            "endpointId": endpoint_map.endpoint_id,
            "endpointName": endpoint_map.endpoint_name,
            "proceduresToAdd": list(a.missing_procedures),
            "reason": (
                f"Required for {endpoint_map.endpoint_type.value} endpoint "
                f'"{endpoint_map.endpoint_name}"'
            ),
        })
    return suggestions


def auto_fix_visit_endpoint_alignment(
    visits: List[Visit],
    maps: List[EndpointProcedureMap],
) -> Dict[str, Any]:
    """Add every missing required procedure to its visit.

    Returns ``{"updatedVisits", "changesApplied", "suggestions"}``; the input
    visits are left untouched.
    """
    suggestions = suggest_procedures_to_add(visits, maps)
    additions: Dict[str, List[str]] = {}
    for s in suggestions:
        bucket = additions.setdefault(s["visitId"], [])
        for proc_id in s["proceduresToAdd"]:
            if proc_id not in bucket:
                bucket.append(proc_id)

    updated = []
    changes = 0
    for visit in visits:
        to_add = [p for p in additions.get(visit.id, []) if p not in visit.procedures]
        if to_add:
            changes += len(to_add)
            visit = replace(visit, procedures=list(visit.procedures) + to_add)
        else:
            visit = replace(visit, procedures=list(visit.procedures))
        updated.append(visit)

    if changes:
        logger.info(f"Alignment auto-fix added {changes} procedure assignment(s)")
    return {
        "updatedVisits": updated,
        "changesApplied": changes,
        "suggestions": [
            {"visitId": s["visitId"], "proceduresAdded": s["proceduresToAdd"], "reason": s["reason"]}
            for s in suggestions
        ],
    }


def validate_primary_endpoint_coverage(
    visits: List[Visit],
    maps: List[EndpointProcedureMap],
) -> Dict[str, Any]:
    """Primary endpoints must be fully assessed at baseline and on treatment."""
    errors: List[str] = []
    warnings: List[str] = []

    baseline = next((v for v in visits if v.type == VisitType.BASELINE), None)
    treatment = [v for v in visits if v.type == VisitType.TREATMENT]
    has_follow_up = any(
        v.type in (VisitType.FOLLOW_UP, VisitType.END_OF_TREATMENT) for v in visits
    )

    for m in maps:
        if m.endpoint_type != EndpointType.PRIMARY:
            continue
        name = m.endpoint_name

        if baseline is None:
            errors.append(f'Primary endpoint "{name}" has no baseline visit')
        elif not check_visit_endpoint_alignment(baseline, m).aligned:
            errors.append(f'Primary endpoint "{name}" is not properly assessed at baseline')

        if not treatment:
            warnings.append(f'Primary endpoint "{name}" has no treatment visits')
        elif not any(check_visit_endpoint_alignment(v, m).aligned for v in treatment):
            errors.append(f'Primary endpoint "{name}" is not assessed at any treatment visit')

        if not has_follow_up:
            warnings.append(f'Primary endpoint "{name}" has no follow-up or end-of-treatment visit')

    return {"valid": not errors, "errors": errors, "warnings": warnings}
