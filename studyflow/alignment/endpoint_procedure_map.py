"""
Endpoint-Procedure Mapping

Builds one ``EndpointProcedureMap`` per endpoint: the inferred procedures
split into required and recommended ids, plus the study phases at which
the endpoint must be measured.

Timing is derived from the endpoint name:

    primary endpoint                     → baseline + treatment + follow-up
    safety / adverse / tolerability      → baseline + treatment + follow-up
    pk / pharmacokinetic                 → treatment only
    quality of life / qol                → baseline + follow-up
    anything else                        → baseline + treatment

Timing hints supplied with the endpoint are OR-ed on top.
"""

import logging
import re
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional

from studyflow.procedures.procedure_catalog import ProcedureCatalog
from studyflow.procedures.procedure_inference import (
    InferenceRules,
    infer_procedures_for_endpoint,
)
from studyflow.schema import (
    Endpoint,
    EndpointProcedureMap,
    EndpointTiming,
    EndpointType,
    Procedure,
    VisitType,
)

logger = logging.getLogger(__name__)

_SAFETY_RE = re.compile(r"safety|adverse|tolerability|безопасн|нежелательн|переносимост")
_PK_RE = re.compile(r"(?<!\w)pk(?!\w)|pharmacokinetic|фармакокинет")
_QOL_RE = re.compile(r"quality of life|(?<!\w)qol(?!\w)|качеств\w* жизни")

_HINT_KEYS = {
    "baseline": "baseline",
    "treatment": "treatment",
    "followUp": "follow_up",
    "follow_up": "follow_up",
}


def determine_endpoint_timing(
    endpoint_name: str,
    endpoint_type: EndpointType,
    hints: Optional[Dict[str, Any]] = None,
) -> EndpointTiming:
    """Timing triple for an endpoint."""
    lower = (endpoint_name or "").lower()

    if EndpointType(endpoint_type) == EndpointType.PRIMARY or _SAFETY_RE.search(lower):
        flags = {"baseline": True, "treatment": True, "follow_up": True}
    elif _PK_RE.search(lower):
        flags = {"baseline": False, "treatment": True, "follow_up": False}
    elif _QOL_RE.search(lower):
        flags = {"baseline": True, "treatment": False, "follow_up": True}
    else:
        flags = {"baseline": True, "treatment": True, "follow_up": False}

    for key, value in (hints or {}).items():
        attr = _HINT_KEYS.get(key)
        if attr and value:
            flags[attr] = True

    specific = tuple((hints or {}).get("specificVisits", ()) or ())
    return EndpointTiming(specific_visits=specific, **flags)


def create_endpoint_procedure_map(
    endpoint: Endpoint,
    rules: Optional[InferenceRules] = None,
    catalog: Optional[ProcedureCatalog] = None,
) -> EndpointProcedureMap:
    procedures = infer_procedures_for_endpoint(endpoint, rules, catalog)
    return EndpointProcedureMap(
        endpoint_id=endpoint.id,
        endpoint_name=endpoint.name,
        endpoint_type=endpoint.type,
        required_procedures=tuple(p.id for p in procedures if p.required),
        recommended_procedures=tuple(p.id for p in procedures if not p.required),
        timing=determine_endpoint_timing(endpoint.name, endpoint.type, endpoint.timing_hints),
    )


def create_endpoint_procedure_maps(
    endpoints: Iterable[Endpoint],
    rules: Optional[InferenceRules] = None,
    catalog: Optional[ProcedureCatalog] = None,
) -> List[EndpointProcedureMap]:
    maps = [create_endpoint_procedure_map(ep, rules, catalog) for ep in endpoints]
    logger.debug(f"Built {len(maps)} endpoint-procedure map(s)")
    return maps


def merge_endpoint_procedure_maps(maps: List[EndpointProcedureMap]) -> Dict[str, Any]:
    """Union of required and recommended ids across maps, first-seen order."""
    required: "OrderedDict[str, None]" = OrderedDict()
    recommended: "OrderedDict[str, None]" = OrderedDict()
    for m in maps:
        for proc_id in m.required_procedures:
            required.setdefault(proc_id, None)
        for proc_id in m.recommended_procedures:
            recommended.setdefault(proc_id, None)
    return {
        "allRequiredProcedures": list(required),
        "allRecommendedProcedures": list(recommended),
        "byEndpoint": list(maps),
    }


def get_procedures_for_endpoint_at_visit(
    endpoint_map: EndpointProcedureMap,
    visit_type: VisitType,
) -> List[str]:
    """Required procedure ids for a visit type; screening/unscheduled get none."""
    visit_type = VisitType(visit_type)
    timing = endpoint_map.timing
    if visit_type == VisitType.BASELINE and timing.baseline:
        return list(endpoint_map.required_procedures)
    if visit_type == VisitType.TREATMENT and timing.treatment:
        return list(endpoint_map.required_procedures)
    if visit_type in (VisitType.FOLLOW_UP, VisitType.END_OF_TREATMENT) and timing.follow_up:
        return list(endpoint_map.required_procedures)
    return []


def validate_endpoint_procedure_map(
    endpoint_map: EndpointProcedureMap,
    available_procedures: List[Procedure],
) -> Dict[str, Any]:
    """Check that mapped procedures exist and the endpoint has a timing."""
    errors: List[str] = []
    warnings: List[str] = []
    available = {p.id for p in available_procedures}

    for proc_id in endpoint_map.required_procedures:
        if proc_id not in available:
            errors.append(f"Required procedure {proc_id} not found in available procedures")
    for proc_id in endpoint_map.recommended_procedures:
        if proc_id not in available:
            warnings.append(f"Recommended procedure {proc_id} not found in available procedures")

    if not endpoint_map.required_procedures and not endpoint_map.recommended_procedures:
        warnings.append(f'Endpoint "{endpoint_map.endpoint_name}" has no associated procedures')

    timing = endpoint_map.timing
    if not (timing.baseline or timing.treatment or timing.follow_up):
        errors.append(f'Endpoint "{endpoint_map.endpoint_name}" has no timing requirements')

    return {"valid": not errors, "errors": errors, "warnings": warnings}


def get_endpoint_procedure_map_summary(maps: List[EndpointProcedureMap]) -> Dict[str, Any]:
    total = len(maps)
    merged = merge_endpoint_procedure_maps(maps)
    required_count = sum(len(m.required_procedures) for m in maps)
    recommended_count = sum(len(m.recommended_procedures) for m in maps)
    return {
        "totalEndpoints": total,
        "primaryEndpoints": sum(1 for m in maps if m.endpoint_type == EndpointType.PRIMARY),
        "secondaryEndpoints": sum(1 for m in maps if m.endpoint_type == EndpointType.SECONDARY),
        "exploratoryEndpoints": sum(1 for m in maps if m.endpoint_type == EndpointType.EXPLORATORY),
        "totalRequiredProcedures": len(merged["allRequiredProcedures"]),
        "totalRecommendedProcedures": len(merged["allRecommendedProcedures"]),
        "averageRequiredPerEndpoint": required_count / total if total else 0,
        "averageRecommendedPerEndpoint": recommended_count / total if total else 0,
        "endpointsWithBaseline": sum(1 for m in maps if m.timing.baseline),
        "endpointsWithTreatment": sum(1 for m in maps if m.timing.treatment),
        "endpointsWithFollowUp": sum(1 for m in maps if m.timing.follow_up),
    }


def find_missing_procedures_for_endpoint(
    endpoint_map: EndpointProcedureMap,
    actual_procedures: Iterable[str],
) -> Dict[str, List[str]]:
    actual = set(actual_procedures)
    return {
        "missingRequired": [p for p in endpoint_map.required_procedures if p not in actual],
        "missingRecommended": [p for p in endpoint_map.recommended_procedures if p not in actual],
    }


def get_procedure_coverage_for_endpoints(
    maps: List[EndpointProcedureMap],
    actual_procedures: Iterable[str],
) -> List[Dict[str, Any]]:
    """Per-endpoint coverage percentages; an empty list counts as 100%."""
    actual = list(actual_procedures)
    coverage = []
    for m in maps:
        missing = find_missing_procedures_for_endpoint(m, actual)
        n_req, n_rec = len(m.required_procedures), len(m.recommended_procedures)
        coverage.append({
            "endpointId": m.endpoint_id,
            "endpointName": m.endpoint_name,
            "requiredCoverage": (n_req - len(missing["missingRequired"])) / n_req * 100 if n_req else 100.0,
            "recommendedCoverage": (n_rec - len(missing["missingRecommended"])) / n_rec * 100 if n_rec else 100.0,
            "missingRequired": len(missing["missingRequired"]),
            "missingRecommended": len(missing["missingRecommended"]),
        })
    return coverage
