"""
Global flow rules: cross-document drift, cycle consistency, visit timing
sanity and the mandatory baseline / end-of-treatment visits.
"""

import math
from typing import List, Optional

from studyflow.schema import (
    ChangeType,
    FlowChange,
    FlowIssue,
    FlowSuggestion,
    IssueCategory,
    Severity,
    TreatmentCycle,
    Visit,
    VisitType,
    VisitWindow,
)


def _scheduled_count(visits: List[Visit]) -> int:
    return sum(1 for v in visits if v.type != VisitType.UNSCHEDULED)


def check_flow_integrity_drift(
    visits: List[Visit],
    sap_visits: Optional[List[Visit]] = None,
    icf_visit_count: int = 0,
    sap_tolerance: int = 1,
    icf_tolerance: int = 2,
) -> List[FlowIssue]:
    """FLOW_INTEGRITY_DRIFT: scheduled-visit counts disagree across documents.

    The SAP comparison runs only when SAP visits are given; the ICF
    comparison only when the ICF mentions at least one visit.
    """
    issues = []
    protocol_count = _scheduled_count(visits)

    if sap_visits is not None:
        sap_count = _scheduled_count(sap_visits)
        if abs(protocol_count - sap_count) > sap_tolerance:
            issues.append(FlowIssue(
                id="FLOW_INTEGRITY_DRIFT_PROTOCOL_SAP",
                code="FLOW_INTEGRITY_DRIFT",
                severity=Severity.ERROR,
                category=IssueCategory.GLOBAL,
                message="Visit count mismatch between Protocol and SAP",
                details=(
                    f"Protocol defines {protocol_count} visits, but SAP specifies "
                    f"{sap_count} visits."
                ),
                affected_visits=[v.id for v in visits] + [v.id for v in sap_visits],
                suggestions=[FlowSuggestion(
                    id="align_visits",
                    label="Align visit schedules between Protocol and SAP",
                    auto_fixable=False,
                    changes=[FlowChange(
                        type=ChangeType.MODIFY_VISIT,
                        target_id='sap',
                        field='visit_count',
                        old_value=sap_count,
                        new_value=protocol_count,
                        reason='SAP must match Protocol visit schedule',
                    )],
                )],
            ))

    if icf_visit_count > 0 and abs(protocol_count - icf_visit_count) > icf_tolerance:
        issues.append(FlowIssue(
            id="FLOW_INTEGRITY_DRIFT_PROTOCOL_ICF",
            code="FLOW_INTEGRITY_DRIFT",
            severity=Severity.WARNING,
            category=IssueCategory.GLOBAL,
            message="Visit count mismatch between Protocol and ICF",
            details=f"Protocol defines {protocol_count} visits, but ICF mentions {icf_visit_count} visits.",
            affected_visits=[v.id for v in visits],
            suggestions=[FlowSuggestion(
                id="align_icf_visits",
                label="Update ICF visit count to match Protocol",
                auto_fixable=False,
                changes=[FlowChange(
                    type=ChangeType.MODIFY_VISIT,
                    target_id='icf',
                    field='visit_count',
                    old_value=icf_visit_count,
                    new_value=protocol_count,
                    reason='ICF should accurately reflect Protocol visit schedule',
                )],
            )],
        ))

    return issues


def check_cycles_inconsistent(protocol_cycles: List[TreatmentCycle],
                              sap_cycles: List[TreatmentCycle]) -> List[FlowIssue]:
    """CYCLES_INCONSISTENT: count mismatch, else per-cycle length mismatch."""
    if not protocol_cycles and not sap_cycles:
        return []

    if len(protocol_cycles) != len(sap_cycles):
        return [FlowIssue(
            id="CYCLES_INCONSISTENT_COUNT",
            code="CYCLES_INCONSISTENT",
            severity=Severity.ERROR,
            category=IssueCategory.CYCLE,
            message="Cycle count mismatch between Protocol and SAP",
            details=(
                f"Protocol defines {len(protocol_cycles)} treatment cycles, but SAP specifies "
                f"{len(sap_cycles)} cycles."
            ),
            suggestions=[FlowSuggestion(
                id="align_cycles",
                label="Align cycle definitions between Protocol and SAP",
                auto_fixable=False,
                changes=[FlowChange(
                    type=ChangeType.MODIFY_VISIT,
                    target_id='sap',
                    field='cycles',
                    old_value=len(sap_cycles),
                    new_value=len(protocol_cycles),
                    reason='SAP must match Protocol cycle structure',
                )],
            )],
        )]

    issues = []
    for n, (ours, theirs) in enumerate(zip(protocol_cycles, sap_cycles), start=1):
        if ours.length_days == theirs.length_days:
            continue
        issues.append(FlowIssue(
            id=f"CYCLES_INCONSISTENT_LENGTH_{n}",
            code="CYCLES_INCONSISTENT",
            severity=Severity.ERROR,
            category=IssueCategory.CYCLE,
            message=f"Cycle {n} length mismatch",
            details=(
                f"Protocol defines Cycle {n} as {ours.length_days} days, but SAP specifies "
                f"{theirs.length_days} days."
            ),
            suggestions=[FlowSuggestion(
                id=f"fix_cycle_{n}",
                label=f"Update SAP Cycle {n} length to {ours.length_days} days",
                auto_fixable=True,
                changes=[FlowChange(
                    type=ChangeType.MODIFY_VISIT,
                    target_id='sap',
                    field='cycle_length',
                    old_value=theirs.length_days,
                    new_value=ours.length_days,
                    reason='SAP cycle length must match Protocol',
                )],
            )],
        ))
    return issues


def ten_percent_window(day: int) -> VisitWindow:
    width = math.ceil(day * 0.1)
    return VisitWindow(width, width)


def check_unsupported_visit_timing(visits: List[Visit],
                                   max_window_ratio: float = 0.5,
                                   too_close_days: int = 3) -> List[FlowIssue]:
    """UNSUPPORTED_VISIT_TIMING: oversized windows (warning) and near-duplicate
    scheduled visits (info, once per pair)."""
    issues = []

    for visit in visits:
        window = visit.window
        if window is None or visit.day <= 0:
            continue
        total = window.total
        if total <= visit.day * max_window_ratio:
            continue
        issues.append(FlowIssue(
            id=f"UNSUPPORTED_VISIT_TIMING_{visit.id}",
            code="UNSUPPORTED_VISIT_TIMING",
            severity=Severity.WARNING,
            category=IssueCategory.TIMING,
            message=f'Visit "{visit.name}" has unrealistic window',
            details=(
                f'Visit "{visit.name}" (Day {visit.day}) has a window of '
                f'±{window.minus}/{window.plus} days, which is '
                f'{total / visit.day * 100:.0f}% of the visit day.'
            ),
            affected_visits=[visit.id],
            suggestions=[FlowSuggestion(
                id=f"fix_window_{visit.id}",
                label="Reduce visit window to ±10-20%",
                auto_fixable=True,
                changes=[FlowChange(
                    type=ChangeType.MODIFY_VISIT,
                    target_id=visit.id,
                    field='window',
                    old_value=window,
                    new_value=ten_percent_window(visit.day),
                    reason='Visit windows should typically be ±10-20% of visit day',
                )],
            )],
        ))

    scheduled = [v for v in visits if v.type != VisitType.UNSCHEDULED]
    for i, a in enumerate(scheduled):
        for b in scheduled[i + 1:]:
            gap = abs(a.day - b.day)
            if not 0 < gap < too_close_days:
                continue
            issues.append(FlowIssue(
                id=f"VISITS_TOO_CLOSE_{a.id}_{b.id}",
                code="UNSUPPORTED_VISIT_TIMING",
                severity=Severity.INFO,
                category=IssueCategory.TIMING,
                message=f'Visits "{a.name}" and "{b.name}" are very close',
                details=(
                    f'Visits "{a.name}" (Day {a.day}) and "{b.name}" (Day {b.day}) are only '
                    f'{gap} days apart. Consider combining or spacing them further.'
                ),
                affected_visits=[a.id, b.id],
                suggestions=[FlowSuggestion(
                    id=f"combine_visits_{a.id}_{b.id}",
                    label="Consider combining these visits",
                    auto_fixable=False,
                )],
            ))

    return issues


def check_missing_mandatory_visits(visits: List[Visit]) -> List[FlowIssue]:
    """MISSING_MANDATORY_VISITS: baseline (critical) and end of treatment (error)."""
    issues = []
    if not any(v.type == VisitType.BASELINE for v in visits):
        issues.append(FlowIssue(
            id="MISSING_BASELINE",
            code="MISSING_MANDATORY_VISITS",
            severity=Severity.CRITICAL,
            category=IssueCategory.VISIT,
            message="No baseline visit defined",
            details=(
                "A baseline visit (Day 0) is mandatory for all clinical trials to establish "
                "baseline measurements."
            ),
            suggestions=[FlowSuggestion(
                id="add_baseline",
                label="Add baseline visit",
                auto_fixable=True,
                changes=[FlowChange(
                    type=ChangeType.ADD_VISIT,
                    target_id='protocol',
                    new_value={'type': VisitType.BASELINE.value, 'day': 0, 'name': 'Baseline'},
                    reason='Baseline visit is mandatory',
                )],
            )],
        ))
    if not any(v.type == VisitType.END_OF_TREATMENT for v in visits):
        issues.append(FlowIssue(
            id="MISSING_EOT",
            code="MISSING_MANDATORY_VISITS",
            severity=Severity.ERROR,
            category=IssueCategory.VISIT,
            message="No end-of-treatment visit defined",
            details="An end-of-treatment visit is required to assess final outcomes and safety.",
            suggestions=[FlowSuggestion(
                id="add_eot",
                label="Add end-of-treatment visit",
                auto_fixable=True,
                changes=[FlowChange(
                    type=ChangeType.ADD_VISIT,
                    target_id='protocol',
                    new_value={'type': VisitType.END_OF_TREATMENT.value, 'name': 'End of Treatment'},
                    reason='EOT visit is required',
                )],
            )],
        ))
    return issues
