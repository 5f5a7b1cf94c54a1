"""
Study Flow Auto-Fix

Deterministic, additive repairs for validation issues:
  1. Missing baseline         — add a Day 0 baseline visit
  2. Missing end of treatment — add an EOT visit at the last treatment day
  3. Missing assessment       — add the endpoint's missing procedures
  4. Endpoint timing drift    — record an SAP assessment-schedule change
  5. Unsupported visit timing — shrink the visit window to ±10% of its day

Each selected issue id is dispatched by prefix to one fixer.  The proposed
changes are checked one at a time by ``validate_auto_fix_changes``; a
rejected change does not block the others.  Accepted changes are folded
into a new ``StudyFlow`` by ``apply_changes_to_flow``.  The input flow is
never mutated and the result is not re-validated here.
"""

import logging
from dataclasses import fields, replace
from typing import Any, Dict, List, Optional

from core.config import FlowEngineConfig, get_config
from studyflow.procedures.procedure_catalog import (
    ProcedureCatalog,
    create_procedure_from_catalog,
    get_procedure_catalog,
)
from studyflow.schema import (
    AutoFixRequest,
    AutoFixResult,
    ChangeType,
    FixStrategy,
    FlowChange,
    FlowIssue,
    Procedure,
    StudyFlow,
    Visit,
    VisitType,
    VisitWindow,
)
from studyflow.top.top_builder import build_top_matrix
from studyflow.validation.global_rules import ten_percent_window
from studyflow.visit_model.visit_inference import (
    unique_visit_id,
    create_baseline_visit,
    create_eot_visit,
    find_last_treatment_day,
)
from studyflow.visit_model.visit_normalizer import calculate_visit_window, sort_visits_by_day

logger = logging.getLogger(__name__)

AUTOFIX_SOURCE = "autofix"

# Visit types that receive a procedure added to the protocol
_ASSESSMENT_VISIT_TYPES = (
    VisitType.BASELINE,
    VisitType.TREATMENT,
    VisitType.END_OF_TREATMENT,
    VisitType.FOLLOW_UP,
)

_VISIT_FIELDS = {f.name for f in fields(Visit)} - {'id'}


# ---------------------------------------------------------------------------
# Fixers
# ---------------------------------------------------------------------------

def fix_missing_baseline(flow: StudyFlow) -> List[FlowChange]:
    if any(v.type == VisitType.BASELINE for v in flow.visits):
        return []
    return [FlowChange(
        type=ChangeType.ADD_VISIT,
        target_id='protocol',
        new_value=create_baseline_visit(flow.visits, source=AUTOFIX_SOURCE),
        reason='Baseline visit is mandatory for all clinical trials',
    )]


def fix_missing_eot(flow: StudyFlow, config: Optional[FlowEngineConfig] = None) -> List[FlowChange]:
    config = config or get_config()
    if any(v.type == VisitType.END_OF_TREATMENT for v in flow.visits):
        return []
    day = find_last_treatment_day(flow.visits, config.default_eot_day)
    return [FlowChange(
        type=ChangeType.ADD_VISIT,
        target_id='protocol',
        new_value=create_eot_visit(flow.visits, day, source=AUTOFIX_SOURCE),
        reason='End-of-treatment visit is required to assess final outcomes',
    )]


def fix_missing_assessment(flow: StudyFlow, endpoint_id: str,
                           issue: Optional[FlowIssue]) -> List[FlowChange]:
    """One add_procedure change per procedure the issue lists as missing."""
    if issue is None:
        logger.warning(f"No issue details for MISSING_ASSESSMENT_{endpoint_id}; "
                       f"cannot tell which procedures are missing")
        return []
    present = {p.id for p in flow.procedures}
    return [
        FlowChange(
            type=ChangeType.ADD_PROCEDURE,
            target_id='protocol',
            new_value=proc_id,
            reason=f'Required for endpoint {endpoint_id}',
        )
        for proc_id in issue.affected_procedures
        if proc_id not in present
    ]


def fix_endpoint_timing_drift(flow: StudyFlow, endpoint_id: str) -> List[FlowChange]:
    scheduled = [v.id for v in flow.visits
                 if v.type in (VisitType.BASELINE, VisitType.TREATMENT)]
    return [FlowChange(
        type=ChangeType.MODIFY_VISIT,
        target_id='sap',
        field='assessment_schedule',
        new_value={'endpointId': endpoint_id, 'visits': scheduled},
        reason='Align SAP assessment schedule with Protocol visits',
    )]


def fix_unsupported_visit_timing(flow: StudyFlow, visit_id: str) -> List[FlowChange]:
    visit = flow.visit_by_id(visit_id)
    if visit is None:
        # Left for the pre-commit check to reject as an unknown target
        return [FlowChange(
            type=ChangeType.MODIFY_VISIT,
            target_id=visit_id,
            field='window',
            reason='Adjust visit window to standard ±10%',
        )]
    if visit.window is None:
        return []
    return [FlowChange(
        type=ChangeType.MODIFY_VISIT,
        target_id=visit_id,
        field='window',
        old_value=visit.window,
        new_value=ten_percent_window(visit.day),
        reason='Adjust visit window to standard ±10%',
    )]


FIXABLE_PREFIXES = (
    "MISSING_BASELINE",
    "NO_BASELINE_",
    "MISSING_EOT",
    "NO_EOT_",
    "MISSING_ASSESSMENT_",
    "ENDPOINT_TIMING_DRIFT_",
    "UNSUPPORTED_VISIT_TIMING_",
)


def has_fixer(issue_id: str) -> bool:
    return issue_id.startswith(FIXABLE_PREFIXES)


def issue_still_present(flow: StudyFlow, issue_id: str,
                        issues: Optional[Dict[str, FlowIssue]] = None) -> bool:
    """Whether the condition behind a fixable issue id still holds in ``flow``.

    Assessment issues without details cannot be checked and count as present.
    """
    issues = issues or {}
    if issue_id.startswith(("MISSING_BASELINE", "NO_BASELINE_")):
        return not any(v.type == VisitType.BASELINE for v in flow.visits)
    if issue_id.startswith(("MISSING_EOT", "NO_EOT_")):
        return not any(v.type == VisitType.END_OF_TREATMENT for v in flow.visits)
    if issue_id.startswith("MISSING_ASSESSMENT_"):
        issue = issues.get(issue_id)
        if issue is None:
            return True
        present = {p.id for p in flow.procedures}
        return any(proc_id not in present for proc_id in issue.affected_procedures)
    if issue_id.startswith("UNSUPPORTED_VISIT_TIMING_"):
        visit = flow.visit_by_id(issue_id[len("UNSUPPORTED_VISIT_TIMING_"):])
        return visit is None or visit.window is not None
    return False


def changes_for_issue(flow: StudyFlow, issue_id: str,
                      issues: Optional[Dict[str, FlowIssue]] = None,
                      config: Optional[FlowEngineConfig] = None) -> Optional[List[FlowChange]]:
    """Proposed changes for one issue id, or None when no fixer handles it."""
    issues = issues or {}
    if issue_id.startswith(("MISSING_BASELINE", "NO_BASELINE_")):
        return fix_missing_baseline(flow)
    if issue_id.startswith(("MISSING_EOT", "NO_EOT_")):
        return fix_missing_eot(flow, config)
    if issue_id.startswith("MISSING_ASSESSMENT_"):
        endpoint_id = issue_id[len("MISSING_ASSESSMENT_"):]
        return fix_missing_assessment(flow, endpoint_id, issues.get(issue_id))
    if issue_id.startswith("ENDPOINT_TIMING_DRIFT_"):
        return fix_endpoint_timing_drift(flow, issue_id[len("ENDPOINT_TIMING_DRIFT_"):])
    if issue_id.startswith("UNSUPPORTED_VISIT_TIMING_"):
        return fix_unsupported_visit_timing(flow, issue_id[len("UNSUPPORTED_VISIT_TIMING_"):])
    return None


# ---------------------------------------------------------------------------
# Change application
# ---------------------------------------------------------------------------

def _visit_from_value(value: Any, visits: List[Visit],
                      config: FlowEngineConfig) -> Optional[Visit]:
    """Resolve an add_visit payload to a Visit.

    Accepts a Visit, a full visit dict (with ``id``) or a partial
    ``{'type', 'day', 'name'}`` dict as carried by validation suggestions.
    """
    if isinstance(value, Visit):
        return value
    if not isinstance(value, dict) or 'type' not in value:
        return None
    if 'id' in value:
        return Visit.from_dict(value)

    visit_type = VisitType(value['type'])
    if visit_type == VisitType.BASELINE:
        return create_baseline_visit(visits, source=AUTOFIX_SOURCE)
    if visit_type == VisitType.END_OF_TREATMENT:
        day = value.get('day', find_last_treatment_day(visits, config.default_eot_day))
        return create_eot_visit(visits, int(day), source=AUTOFIX_SOURCE)

    day = int(value.get('day', 0))
    return Visit(
        id=unique_visit_id(f"visit_{visit_type.value}", visits),
        name=value.get('name', visit_type.value.replace('_', ' ').title()),
        day=day,
        type=visit_type,
        window=calculate_visit_window(visit_type, day),
        metadata={"source": AUTOFIX_SOURCE},
    )


def _procedure_id(value: Any) -> Optional[str]:
    if isinstance(value, Procedure):
        return value.id
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get('id')
    return None


def _modified_visit(visit: Visit, field_name: str, value: Any) -> Visit:
    if field_name == 'window' and isinstance(value, dict):
        value = VisitWindow.from_dict(value)
    elif field_name == 'type':
        value = VisitType(value)
    return replace(visit, **{field_name: value})


def apply_changes_to_flow(
    flow: StudyFlow,
    changes: List[FlowChange],
    catalog: Optional[ProcedureCatalog] = None,
    config: Optional[FlowEngineConfig] = None,
) -> StudyFlow:
    """Fold changes into a new StudyFlow.

    Document-level targets (``sap``, ``icf``, and ``protocol`` for
    modifications) are recorded by the caller only.  Visits are re-sorted
    by day and the ToP matrix rebuilt afterwards.
    """
    catalog = catalog or get_procedure_catalog()
    config = config or get_config()
    visits = [replace(v, procedures=list(v.procedures)) for v in flow.visits]
    procedures = list(flow.procedures)

    for change in changes:
        if change.target_id in ('sap', 'icf'):
            continue

        if change.type == ChangeType.ADD_VISIT:
            visit = _visit_from_value(change.new_value, visits, config)
            if visit is None:
                logger.warning(f"Unusable add_visit payload for {change.target_id}")
                continue
            visits.append(replace(visit, procedures=list(visit.procedures)))

        elif change.type == ChangeType.ADD_PROCEDURE:
            proc_id = _procedure_id(change.new_value)
            if proc_id is None:
                continue
            if not any(p.id == proc_id for p in procedures):
                if isinstance(change.new_value, Procedure):
                    procedures.append(change.new_value)
                else:
                    entry = catalog.get(proc_id)
                    if entry is None:
                        logger.warning(f"Procedure {proc_id} not in catalog; not added")
                        continue
                    procedures.append(create_procedure_from_catalog(entry, required=True))
            for visit in visits:
                if visit.type in _ASSESSMENT_VISIT_TYPES and proc_id not in visit.procedures:
                    visit.procedures.append(proc_id)

        elif change.type == ChangeType.MODIFY_VISIT:
            if change.targets_document:
                continue
            if change.field not in _VISIT_FIELDS:
                logger.warning(f"Cannot modify visit field '{change.field}' on {change.target_id}")
                continue
            visits = [
                _modified_visit(v, change.field, change.new_value) if v.id == change.target_id else v
                for v in visits
            ]

        else:
            logger.warning(f"Change type {change.type.value} is not applied by auto-fix")

    visits = sort_visits_by_day(visits)
    top = build_top_matrix(visits, procedures, flow.study_id, flow.protocol_id)
    return replace(
        flow,
        visits=top.visits,
        procedures=procedures,
        top_matrix=top,
        total_duration=max([flow.total_duration] + [v.day for v in visits]),
    )


# ---------------------------------------------------------------------------
# Pre-commit checks
# ---------------------------------------------------------------------------

def validate_auto_fix_changes(
    flow: StudyFlow,
    changes: List[FlowChange],
    catalog: Optional[ProcedureCatalog] = None,
    config: Optional[FlowEngineConfig] = None,
) -> Dict[str, Any]:
    """Hard errors: duplicate visit (same day and type), modify of an
    unknown visit, unknown procedure.  Visit additions and removals are
    reported as warnings."""
    catalog = catalog or get_procedure_catalog()
    config = config or get_config()
    errors: List[str] = []
    warnings: List[str] = []

    for change in changes:
        if change.type == ChangeType.ADD_VISIT and change.target_id not in ('sap', 'icf'):
            visit = _visit_from_value(change.new_value, flow.visits, config)
            if visit is not None and any(
                v.day == visit.day and v.type == visit.type for v in flow.visits
            ):
                errors.append(
                    f'Cannot add visit "{visit.name}" - similar visit already exists at Day {visit.day}'
                )

        if change.type == ChangeType.MODIFY_VISIT and not change.targets_document:
            if flow.visit_by_id(change.target_id) is None:
                errors.append(f"Cannot modify visit {change.target_id} - not found")

        if change.type == ChangeType.ADD_PROCEDURE:
            proc_id = _procedure_id(change.new_value)
            known = (proc_id is not None and (
                flow.procedure_by_id(proc_id) is not None
                or proc_id in catalog
                or isinstance(change.new_value, Procedure)
            ))
            if not known:
                errors.append(f'Cannot add procedure "{proc_id}" - not in catalog')

        if change.type in (ChangeType.ADD_VISIT, ChangeType.REMOVE_VISIT):
            warnings.append(f"High-impact change: {change.type.value} for {change.target_id}")

    return {'valid': not errors, 'errors': errors, 'warnings': warnings}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def apply_auto_fixes(
    flow: StudyFlow,
    request: AutoFixRequest,
    config: Optional[FlowEngineConfig] = None,
    catalog: Optional[ProcedureCatalog] = None,
) -> AutoFixResult:
    """Apply fixes for ``request.issue_ids`` and return the new flow."""
    config = config or get_config()
    catalog = catalog or get_procedure_catalog()
    strategy = FixStrategy(request.strategy)
    if strategy != FixStrategy.CONSERVATIVE:
        logger.info(f"Strategy '{strategy.value}' applies the conservative additive fixes only")

    issues = {i.id: i for i in request.issues}
    current = flow
    applied: List[FlowChange] = []
    rejected: List[FlowChange] = []
    errors: List[str] = []
    warnings: List[str] = []
    fixed: List[str] = []

    for issue_id in request.issue_ids:
        proposed = changes_for_issue(current, issue_id, issues, config)
        if proposed is None:
            warnings.append(f"No automatic fix for issue {issue_id}")
            continue
        if not proposed:
            if issue_still_present(current, issue_id, issues):
                warnings.append(f"Issue {issue_id} is still present but no fix could be derived")
            else:
                logger.debug(f"Issue {issue_id} needs no changes")
            continue

        accepted = []
        for change in proposed:
            check = validate_auto_fix_changes(current, [change], catalog, config)
            warnings.extend(check['warnings'])
            if check['valid']:
                accepted.append(change)
            else:
                rejected.append(change)
                errors.extend(check['errors'])

        if accepted:
            current = apply_changes_to_flow(current, accepted, catalog, config)
            applied.extend(accepted)
            fixed.append(issue_id)

    logger.info(
        f"Auto-fix for flow {flow.id}: {len(applied)} change(s) applied, "
        f"{len(rejected)} rejected, {len(fixed)}/{len(request.issue_ids)} issue(s) fixed"
    )
    return AutoFixResult(
        applied_changes=applied,
        updated_flow=current,
        rejected_changes=rejected,
        errors=errors,
        warnings=warnings,
        fixed_issue_ids=fixed,
        remaining_issues=[],
    )


# ---------------------------------------------------------------------------
# Reporting helpers
# ---------------------------------------------------------------------------

def generate_auto_fix_suggestions(issues: List[FlowIssue]) -> List[Dict[str, Any]]:
    """One entry per issue that carries suggestions."""
    result = []
    for issue in issues:
        if not issue.suggestions:
            continue
        fixable = next((s for s in issue.suggestions if s.auto_fixable), None)
        result.append({
            'issueId': issue.id,
            'issueCode': issue.code,
            'fixable': fixable is not None,
            'suggestion': fixable.label if fixable else 'Manual fix required',
            'changes': list(fixable.changes) if fixable else [],
        })
    return result


def estimate_auto_fix_impact(changes: List[FlowChange]) -> Dict[str, Any]:
    """Counts by change kind and a low / medium / high risk level.

    Window adjustments do not count as visit modifications.
    """
    visits_added = sum(1 for c in changes if c.type == ChangeType.ADD_VISIT)
    visits_modified = sum(1 for c in changes
                          if c.type == ChangeType.MODIFY_VISIT and c.field != 'window')
    procedures_added = sum(1 for c in changes if c.type == ChangeType.ADD_PROCEDURE)
    procedures_modified = sum(1 for c in changes if c.type == ChangeType.MODIFY_PROCEDURE)

    if visits_added > 2 or visits_modified > 3:
        risk = 'high'
    elif visits_added > 0 or visits_modified > 1 or procedures_added > 5:
        risk = 'medium'
    else:
        risk = 'low'

    return {
        'visitsAdded': visits_added,
        'visitsModified': visits_modified,
        'proceduresAdded': procedures_added,
        'proceduresModified': procedures_modified,
        'riskLevel': risk,
    }
