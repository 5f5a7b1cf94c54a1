"""
Study Flow Generator

Builds a complete ``StudyFlow`` (visits, procedures, cycles and the Table
of Procedures) from a protocol's visit labels and endpoints:

  1. Visit schedule    — normalize the labels, or derive one from the duration
  2. Milestones        — place EOT / follow-up, infer missing mandatory visits
  3. Procedures        — infer from endpoints, add the standard per-visit sets
  4. Assignment        — endpoint procedures by timing, then standard sets
  5. Windows / cycles  — category-aware windows, cycle detection
  6. ToP matrix        — Visit x Procedure matrix, sorted by day
"""

import logging
from collections import OrderedDict
from dataclasses import replace
from typing import Iterable, List, Optional, Union

from core.config import FlowEngineConfig, get_config
from studyflow.alignment.endpoint_procedure_map import create_endpoint_procedure_maps
from studyflow.procedures.procedure_catalog import (
    ProcedureCatalog,
    create_procedure_from_catalog,
    get_procedure_catalog,
)
from studyflow.procedures.procedure_inference import (
    InferenceRules,
    get_inference_rules,
    infer_procedures_from_endpoints,
)
from studyflow.schema import (
    Endpoint,
    EndpointProcedureMap,
    EndpointType,
    FlowSource,
    Procedure,
    StudyFlow,
    Visit,
    VisitType,
    utc_timestamp,
)
from studyflow.top.top_builder import build_top_matrix
from studyflow.visit_model.cycle_builder import (
    assign_visits_to_cycles,
    build_cycles,
    infer_cycle_length,
)
from studyflow.visit_model.visit_inference import infer_missing_visits, resolve_milestone_days
from studyflow.visit_model.visit_normalizer import (
    EOT_SENTINEL_DAY,
    visits_from_labels,
)
from studyflow.visit_model.window_engine import apply_windows_to_visits

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINTS = (
    'Primary efficacy endpoint',
    'Safety assessment',
    'Vital signs',
    'Laboratory parameters',
)

FLOW_VERSION = "1.0"


# ---------------------------------------------------------------------------
# Visit schedule
# ---------------------------------------------------------------------------

def build_visit_schedule(duration_weeks: int) -> List[str]:
    """Default visit labels for a treatment period of ``duration_weeks``.

    Up to 4 weeks: Week 2 and 4.  Up to 12: every 4 weeks to Week 12.
    Up to 24: every 4 weeks to Week 24.  Longer studies: every 4 weeks to
    the end of the period.
    """
    labels = ['Screening', 'Baseline']
    if duration_weeks <= 4:
        labels += ['Week 2', 'Week 4']
    elif duration_weeks <= 12:
        labels += ['Week 4', 'Week 8', 'Week 12']
    elif duration_weeks <= 24:
        labels += [f'Week {w}' for w in range(4, 25, 4)]
    else:
        labels += [f'Week {w}' for w in range(4, duration_weeks + 1, 4)]
    labels += ['End of Treatment', 'Follow-up']
    return labels


def _coerce_endpoints(endpoints: Iterable[Union[Endpoint, str, dict]],
                      max_endpoints: int) -> List[Endpoint]:
    """Endpoints from objects, dicts or plain names; the first plain name is primary."""
    result: List[Endpoint] = []
    seen_names = set()
    for i, item in enumerate(endpoints):
        if isinstance(item, Endpoint):
            endpoint = item
        elif isinstance(item, dict):
            endpoint = Endpoint.from_dict(item)
        else:
            endpoint = Endpoint(
                id=f"ep_{i}",
                name=str(item),
                type=EndpointType.PRIMARY if i == 0 else EndpointType.SECONDARY,
            )
        if endpoint.name in seen_names:
            continue
        seen_names.add(endpoint.name)
        result.append(endpoint)

    if not result:
        logger.info("No endpoints supplied; using default endpoint set")
        return _coerce_endpoints(DEFAULT_ENDPOINTS, max_endpoints)
    if len(result) > max_endpoints:
        logger.warning(f"Keeping the first {max_endpoints} of {len(result)} endpoints")
    return result[:max_endpoints]


# ---------------------------------------------------------------------------
# Procedure assignment
# ---------------------------------------------------------------------------

def _timing_applies(visit_type: VisitType, endpoint_map: EndpointProcedureMap) -> bool:
    timing = endpoint_map.timing
    if visit_type == VisitType.BASELINE:
        return timing.baseline
    if visit_type == VisitType.TREATMENT:
        return timing.treatment
    if visit_type in (VisitType.FOLLOW_UP, VisitType.END_OF_TREATMENT):
        return timing.follow_up
    return False


def assign_procedures_to_visits(
    visits: List[Visit],
    endpoint_maps: List[EndpointProcedureMap],
    rules: Optional[InferenceRules] = None,
) -> List[Visit]:
    """Return new visits with endpoint and standard procedures assigned.

    Required endpoint procedures go to every visit whose type matches the
    endpoint timing; the standard set for the visit type is appended after.
    Lists are deduplicated in insertion order.
    """
    rules = rules or get_inference_rules()
    result = []
    for visit in visits:
        ids: "OrderedDict[str, None]" = OrderedDict((p, None) for p in visit.procedures)
        for endpoint_map in endpoint_maps:
            if _timing_applies(visit.type, endpoint_map):
                for proc_id in endpoint_map.required_procedures:
                    ids.setdefault(proc_id, None)
        for proc_id in rules.procedures_for_visit_type(visit.type):
            ids.setdefault(proc_id, None)
        result.append(replace(visit, procedures=list(ids)))
    return result


def _standard_visit_procedures(visits: List[Visit], known: List[Procedure],
                               rules: InferenceRules,
                               catalog: ProcedureCatalog) -> List[Procedure]:
    """Catalog procedures from the per-visit-type sets not already in ``known``."""
    have = {p.id for p in known}
    added: List[Procedure] = []
    for visit_type in OrderedDict((v.type, None) for v in visits):
        for proc_id in rules.procedures_for_visit_type(visit_type):
            if proc_id in have:
                continue
            entry = catalog.get(proc_id)
            if entry is None:
                logger.debug(f"Standard procedure {proc_id} not in catalog")
                continue
            have.add(proc_id)
            added.append(create_procedure_from_catalog(entry, required=True))
    return added


def _total_duration(visits: List[Visit], duration_weeks: Optional[int]) -> int:
    days = [v.day for v in visits if v.day < EOT_SENTINEL_DAY]
    candidates = days + ([duration_weeks * 7] if duration_weeks else [])
    return max(candidates) if candidates else 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def generate_study_flow(
    protocol_id: str,
    endpoints: Iterable[Union[Endpoint, str, dict]] = (),
    visit_labels: Optional[List[str]] = None,
    phase: Optional[str] = None,
    duration_weeks: Optional[int] = None,
    study_id: Optional[str] = None,
    config: Optional[FlowEngineConfig] = None,
    rules: Optional[InferenceRules] = None,
    catalog: Optional[ProcedureCatalog] = None,
) -> StudyFlow:
    """Generate a study flow for one protocol.

    Without ``visit_labels`` a default schedule is built from
    ``duration_weeks`` (configured default when absent).
    """
    config = config or get_config()
    rules = rules or get_inference_rules()
    catalog = catalog or get_procedure_catalog()

    if not visit_labels:
        duration_weeks = duration_weeks or config.default_duration_weeks
        visit_labels = build_visit_schedule(duration_weeks)
        logger.info(f"Built default {duration_weeks}-week visit schedule ({len(visit_labels)} visits)")

    visits = visits_from_labels(visit_labels)
    visits = resolve_milestone_days(visits, config)
    visits = infer_missing_visits(visits, config)

    endpoint_list = _coerce_endpoints(endpoints, config.max_endpoints)
    procedures = infer_procedures_from_endpoints(endpoint_list, rules, catalog)
    endpoint_maps = create_endpoint_procedure_maps(endpoint_list, rules, catalog)
    procedures += _standard_visit_procedures(visits, procedures, rules, catalog)

    visits = assign_procedures_to_visits(visits, endpoint_maps, rules)
    # Treatment windows come from procedure categories; milestones keep their defaults
    visits = [replace(v, window=None) if v.type == VisitType.TREATMENT else v for v in visits]
    visits = apply_windows_to_visits(visits, procedures)

    cycles = []
    cycle_length = infer_cycle_length(visits, config.cycle_match_ratio)
    if cycle_length:
        cycles = build_cycles(visits, cycle_length)
        visits = assign_visits_to_cycles(visits, cycles)

    top = build_top_matrix(visits, procedures, study_id=study_id, protocol_id=protocol_id)
    flow = StudyFlow(
        id=f"flow_{protocol_id}",
        protocol_id=protocol_id,
        study_id=study_id,
        visits=top.visits,
        procedures=procedures,
        top_matrix=top,
        total_duration=_total_duration(top.visits, duration_weeks),
        cycles=cycles,
        generated_at=utc_timestamp(),
        version=FLOW_VERSION,
        source=FlowSource.GENERATED,
    )
    logger.info(
        f"Generated study flow {flow.id}"
        f"{f' ({phase})' if phase else ''}: {len(flow.visits)} visits, "
        f"{len(flow.procedures)} procedures, {len(cycles)} cycle(s), "
        f"{flow.total_duration} days"
    )
    return flow


# ---------------------------------------------------------------------------
# Context formatting
# ---------------------------------------------------------------------------

def _procedure_label(proc_id: str) -> str:
    return proc_id.replace('proc_', '', 1).replace('_', ' ')


def format_study_flow_for_context(flow: Optional[StudyFlow]) -> str:
    """Markdown block describing the flow, for document generation prompts."""
    if flow is None:
        return ''

    lines = ['', '', '## STUDY FLOW DATA', '', '### Visit Schedule',
             '| Visit | Day | Type | Key Procedures |',
             '|-------|-----|------|----------------|']
    for visit in flow.visits:
        key_procs = ', '.join(_procedure_label(p) for p in visit.procedures[:3])
        lines.append(f"| {visit.name} | {visit.day} | {visit.type.value} | {key_procs} |")

    lines += ['', '### Procedures Summary']
    for proc in flow.procedures:
        lines.append(f"- **{proc.name}** ({proc.category.value})")

    lines += ['', '### Study Duration',
              f"Total duration: {flow.total_duration} days "
              f"({round(flow.total_duration / 7)} weeks)", '']
    return '\n'.join(lines)
