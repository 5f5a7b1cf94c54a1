"""
Protocol ↔ ICF flow rules.

Procedures that carry participant risk (invasive, imaging, device) must be
disclosed in the informed-consent form, the ICF must describe those risks,
and its visit schedule must roughly match the protocol.
"""

from typing import List

from studyflow.schema import (
    ChangeType,
    FlowChange,
    FlowIssue,
    FlowSuggestion,
    IssueCategory,
    Procedure,
    ProcedureCategory,
    Severity,
    Visit,
    VisitType,
)

_DISCLOSED_CATEGORIES = (ProcedureCategory.IMAGING, ProcedureCategory.DEVICE)


def requires_icf_disclosure(proc: Procedure) -> bool:
    return proc.invasive or proc.category in _DISCLOSED_CATEGORIES


def is_high_risk(proc: Procedure) -> bool:
    if requires_icf_disclosure(proc):
        return True
    return proc.category == ProcedureCategory.LABS and 'biopsy' in proc.name.lower()


def check_procedure_not_in_icf(procedures: List[Procedure],
                               icf_procedure_mentions: List[str]) -> List[FlowIssue]:
    """PROCEDURE_NOT_IN_ICF: one error per undisclosed risky procedure."""
    mentions = [m.lower() for m in icf_procedure_mentions]
    issues = []
    for proc in procedures:
        if not requires_icf_disclosure(proc):
            continue
        name = proc.name.lower()
        if any(name in m for m in mentions):
            continue
        issues.append(FlowIssue(
            id=f"PROCEDURE_NOT_IN_ICF_{proc.id}",
            code="PROCEDURE_NOT_IN_ICF",
            severity=Severity.ERROR,
            category=IssueCategory.PROCEDURE,
            message=f'Procedure "{proc.name}" not described in ICF',
            details=(
                f'The protocol includes procedure "{proc.name}" which is not mentioned in the '
                f'Informed Consent Form. All study procedures, especially invasive ones, must be '
                f'described in the ICF.'
            ),
            affected_procedures=[proc.id],
            suggestions=[FlowSuggestion(
                id=f"fix_{proc.id}",
                label=f'Add "{proc.name}" description to ICF',
                auto_fixable=False,
                changes=[FlowChange(
                    type=ChangeType.ADD_PROCEDURE,
                    target_id='icf',
                    new_value={
                        'procedureName': proc.name,
                        'description': f'Add description of {proc.name} procedure to ICF',
                    },
                    reason='Regulatory requirement: all procedures must be disclosed in ICF',
                )],
            )],
        ))
    return issues


def check_risks_not_described(procedures: List[Procedure],
                              icf_risks: List[str]) -> List[FlowIssue]:
    """RISKS_NOT_DESCRIBED: critical when high-risk procedures exist and the ICF has no risks."""
    high_risk = [p for p in procedures if is_high_risk(p)]
    if not high_risk or icf_risks:
        return []
    return [FlowIssue(
        id="RISKS_NOT_DESCRIBED",
        code="RISKS_NOT_DESCRIBED",
        severity=Severity.CRITICAL,
        category=IssueCategory.GLOBAL,
        message="ICF missing risk descriptions for invasive procedures",
        details=(
            f"The protocol includes {len(high_risk)} invasive or high-risk procedures, but the "
            f"ICF does not contain adequate risk descriptions."
        ),
        affected_procedures=[p.id for p in high_risk],
        suggestions=[FlowSuggestion(
            id="add_risks",
            label="Add risk descriptions to ICF",
            auto_fixable=False,
            changes=[FlowChange(
                type=ChangeType.MODIFY_PROCEDURE,
                target_id='icf',
                field='risks',
                new_value='Add comprehensive risk descriptions for all invasive procedures',
                reason='Critical regulatory requirement for informed consent',
            )],
        )],
    )]


def check_visit_missing_in_icf(visits: List[Visit],
                               icf_visit_mentions: List[str],
                               tolerance: int = 2) -> List[FlowIssue]:
    """VISIT_MISSING_IN_ICF: no schedule in the ICF, or a count off by more than ``tolerance``."""
    visit_ids = [v.id for v in visits]

    if not icf_visit_mentions:
        last_day = max((v.day for v in visits), default=0)
        return [FlowIssue(
            id="VISIT_MISSING_IN_ICF",
            code="VISIT_MISSING_IN_ICF",
            severity=Severity.WARNING,
            category=IssueCategory.VISIT,
            message="Visit schedule not described in ICF",
            details=(
                f"The protocol defines {len(visits)} visits, but the ICF does not describe the "
                f"visit schedule. Participants should be informed about the number and timing "
                f"of study visits."
            ),
            affected_visits=visit_ids,
            suggestions=[FlowSuggestion(
                id="add_visit_schedule",
                label="Add visit schedule to ICF",
                auto_fixable=False,
                changes=[FlowChange(
                    type=ChangeType.ADD_VISIT,
                    target_id='icf',
                    new_value={'visitCount': len(visits), 'duration': f"{last_day} days"},
                    reason='Participants should be informed about study duration and visit frequency',
                )],
            )],
        )]

    mentioned = len(icf_visit_mentions)
    actual = sum(1 for v in visits if v.type != VisitType.UNSCHEDULED)
    if abs(mentioned - actual) <= tolerance:
        return []
    return [FlowIssue(
        id="VISIT_COUNT_MISMATCH",
        code="VISIT_MISSING_IN_ICF",
        severity=Severity.WARNING,
        category=IssueCategory.VISIT,
        message="Visit count mismatch between Protocol and ICF",
        details=f"Protocol defines {actual} visits, but ICF mentions {mentioned} visits.",
        affected_visits=visit_ids,
        suggestions=[FlowSuggestion(
            id="align_visit_count",
            label="Align visit count in ICF with Protocol",
            auto_fixable=False,
            changes=[FlowChange(
                type=ChangeType.MODIFY_VISIT,
                target_id='icf',
                field='visit_count',
                old_value=mentioned,
                new_value=actual,
                reason='ICF should accurately reflect protocol visit schedule',
            )],
        )],
    )]
