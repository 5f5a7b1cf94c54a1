"""
Protocol ↔ SAP flow rules.

Every endpoint needs an assessment schedule in the SAP, primary endpoints
need their required procedures in the protocol, and primary endpoints
measured at baseline or follow-up need the matching visits.
"""

from typing import List

from studyflow.schema import (
    ChangeType,
    EndpointProcedureMap,
    EndpointType,
    FlowChange,
    FlowIssue,
    FlowSuggestion,
    IssueCategory,
    Procedure,
    Severity,
    Visit,
    VisitType,
)
from studyflow.validation.context import SapDocument


def check_endpoint_timing_drift(endpoint_maps: List[EndpointProcedureMap],
                                sap: SapDocument) -> List[FlowIssue]:
    """ENDPOINT_TIMING_DRIFT: endpoint without an SAP assessment schedule."""
    issues = []
    for m in endpoint_maps:
        if sap.schedule_for(m.endpoint_id) is not None:
            continue
        primary = m.endpoint_type == EndpointType.PRIMARY
        issues.append(FlowIssue(
            id=f"ENDPOINT_TIMING_DRIFT_{m.endpoint_id}",
            code="ENDPOINT_TIMING_DRIFT",
            severity=Severity.CRITICAL if primary else Severity.ERROR,
            category=IssueCategory.TIMING,
            message=f'Endpoint "{m.endpoint_name}" timing not defined in SAP',
            details=(
                f'The {m.endpoint_type.value} endpoint "{m.endpoint_name}" is defined in the '
                f'Protocol but its assessment schedule is not specified in the SAP.'
            ),
            suggestions=[FlowSuggestion(
                id=f"fix_timing_{m.endpoint_id}",
                label="Add assessment schedule to SAP",
                auto_fixable=True,
                changes=[FlowChange(
                    type=ChangeType.ADD_VISIT,
                    target_id='sap',
                    new_value={'endpointId': m.endpoint_id, 'timing': m.timing.to_dict()},
                    reason='SAP must specify when each endpoint will be assessed',
                )],
            )],
        ))
    return issues


def check_missing_assessment_for_endpoint(endpoint_maps: List[EndpointProcedureMap],
                                          procedures: List[Procedure]) -> List[FlowIssue]:
    """MISSING_ASSESSMENT_FOR_ENDPOINT: primary endpoint procedures absent from the protocol."""
    present = {p.id for p in procedures}
    issues = []
    for m in endpoint_maps:
        if m.endpoint_type != EndpointType.PRIMARY:
            continue
        missing = [p for p in m.required_procedures if p not in present]
        if not missing:
            continue
        issues.append(FlowIssue(
            id=f"MISSING_ASSESSMENT_{m.endpoint_id}",
            code="MISSING_ASSESSMENT_FOR_ENDPOINT",
            severity=Severity.CRITICAL,
            category=IssueCategory.PROCEDURE,
            message=f'Missing assessment procedures for primary endpoint "{m.endpoint_name}"',
            details=(
                f'The primary endpoint "{m.endpoint_name}" requires {len(missing)} procedures '
                f'that are not included in the Protocol.'
            ),
            affected_procedures=missing,
            suggestions=[FlowSuggestion(
                id=f"add_procs_{m.endpoint_id}",
                label=f"Add {len(missing)} required procedures to Protocol",
                auto_fixable=True,
                changes=[
                    FlowChange(
                        type=ChangeType.ADD_PROCEDURE,
                        target_id='protocol',
                        new_value=proc_id,
                        reason=f'Required for primary endpoint "{m.endpoint_name}"',
                    )
                    for proc_id in missing
                ],
            )],
        ))
    return issues


def check_incorrect_schedule_for_primary(endpoint_maps: List[EndpointProcedureMap],
                                         visits: List[Visit]) -> List[FlowIssue]:
    """INCORRECT_SCHEDULE_FOR_PRIMARY: baseline / end-of-treatment visit missing."""
    has_baseline = any(v.type == VisitType.BASELINE for v in visits)
    has_eot = any(v.type in (VisitType.END_OF_TREATMENT, VisitType.FOLLOW_UP) for v in visits)
    issues = []
    for m in endpoint_maps:
        if m.endpoint_type != EndpointType.PRIMARY:
            continue
        if m.timing.baseline and not has_baseline:
            issues.append(FlowIssue(
                id=f"NO_BASELINE_{m.endpoint_id}",
                code="INCORRECT_SCHEDULE_FOR_PRIMARY",
                severity=Severity.CRITICAL,
                category=IssueCategory.VISIT,
                message=f'No baseline visit for primary endpoint "{m.endpoint_name}"',
                details=(
                    f'Primary endpoint "{m.endpoint_name}" requires baseline assessment, but no '
                    f'baseline visit is defined in the Protocol.'
                ),
                suggestions=[FlowSuggestion(
                    id="add_baseline",
                    label="Add baseline visit to Protocol",
                    auto_fixable=True,
                    changes=[FlowChange(
                        type=ChangeType.ADD_VISIT,
                        target_id='protocol',
                        new_value={'type': VisitType.BASELINE.value, 'day': 0},
                        reason='Baseline required for primary endpoint assessment',
                    )],
                )],
            ))
        if m.timing.follow_up and not has_eot:
            issues.append(FlowIssue(
                id=f"NO_EOT_{m.endpoint_id}",
                code="INCORRECT_SCHEDULE_FOR_PRIMARY",
                severity=Severity.ERROR,
                category=IssueCategory.VISIT,
                message=f'No end-of-treatment visit for primary endpoint "{m.endpoint_name}"',
                details=(
                    f'Primary endpoint "{m.endpoint_name}" requires end-of-treatment assessment, '
                    f'but no EOT or follow-up visit is defined.'
                ),
                suggestions=[FlowSuggestion(
                    id="add_eot",
                    label="Add end-of-treatment visit to Protocol",
                    auto_fixable=True,
                    changes=[FlowChange(
                        type=ChangeType.ADD_VISIT,
                        target_id='protocol',
                        new_value={'type': VisitType.END_OF_TREATMENT.value},
                        reason='EOT required for primary endpoint assessment',
                    )],
                )],
            ))
    return issues
