"""
Study flow vs. document text.

Plain-text consistency checks between a generated flow and the protocol,
ICF and CSR bodies.  Each document is optional; checks for an absent
document are skipped.

    SF_001_VISIT_MISSING           visit neither named nor typed in the protocol   warning
    SF_002_PROCEDURE_MISSING_ICF   key procedure not described in the ICF          warning
    SF_003_DURATION_MISMATCH       "N weeks" in the protocol far from flow length  warning
    SF_004_CSR_VISIT_MISSING       baseline / EOT visit not referenced in the CSR  info
"""

import logging
import re
from typing import List, Optional

from studyflow.schema import FlowIssue, IssueCategory, Severity, StudyFlow, VisitType

logger = logging.getLogger(__name__)

KEY_PROCEDURE_TERMS = ('blood', 'physical exam', 'ecg', 'vital', 'laboratory')
DURATION_TOLERANCE_WEEKS = 4

_WEEKS_RE = re.compile(r"(\d+)\s*weeks?", re.IGNORECASE)


def _check_protocol_visits(flow: StudyFlow, protocol_lower: str) -> List[FlowIssue]:
    issues = []
    for visit in flow.visits:
        if visit.name.lower() in protocol_lower or visit.type.value in protocol_lower:
            continue
        issues.append(FlowIssue(
            id=f"SF_001_VISIT_MISSING_{visit.id}",
            code="SF_001_VISIT_MISSING",
            severity=Severity.WARNING,
            category=IssueCategory.VISIT,
            message=f'Visit "{visit.name}" (Day {visit.day}) from Study Flow not found in Protocol',
            details="Document: PROTOCOL",
            affected_visits=[visit.id],
        ))
    return issues


def _check_icf_procedures(flow: StudyFlow, icf_lower: str) -> List[FlowIssue]:
    issues = []
    for proc in flow.procedures:
        name = proc.name.lower().replace('_', ' ')
        if not any(term in name for term in KEY_PROCEDURE_TERMS):
            continue
        if name in icf_lower:
            continue
        issues.append(FlowIssue(
            id=f"SF_002_PROCEDURE_MISSING_ICF_{proc.id}",
            code="SF_002_PROCEDURE_MISSING_ICF",
            severity=Severity.WARNING,
            category=IssueCategory.PROCEDURE,
            message=f'Procedure "{proc.name}" from Study Flow not described in ICF',
            details="Document: ICF",
            affected_procedures=[proc.id],
        ))
    return issues


def _check_duration(flow: StudyFlow, protocol_text: str) -> List[FlowIssue]:
    flow_weeks = round(flow.total_duration / 7)
    issues = []
    seen = set()
    for match in _WEEKS_RE.finditer(protocol_text):
        weeks = int(match.group(1))
        if weeks in seen:
            continue
        seen.add(weeks)
        if weeks > DURATION_TOLERANCE_WEEKS and abs(weeks - flow_weeks) > DURATION_TOLERANCE_WEEKS:
            issues.append(FlowIssue(
                id=f"SF_003_DURATION_MISMATCH_{weeks}",
                code="SF_003_DURATION_MISMATCH",
                severity=Severity.WARNING,
                category=IssueCategory.GLOBAL,
                message=(
                    f"Protocol mentions {weeks} weeks but Study Flow duration is "
                    f"{flow_weeks} weeks"
                ),
                details="Document: PROTOCOL",
            ))
    return issues


def _check_csr_visits(flow: StudyFlow, csr_lower: str) -> List[FlowIssue]:
    issues = []
    for visit in flow.visits:
        if visit.type not in (VisitType.BASELINE, VisitType.END_OF_TREATMENT):
            continue
        if visit.name.lower() in csr_lower or f"day {visit.day}" in csr_lower:
            continue
        issues.append(FlowIssue(
            id=f"SF_004_CSR_VISIT_MISSING_{visit.id}",
            code="SF_004_CSR_VISIT_MISSING",
            severity=Severity.INFO,
            category=IssueCategory.VISIT,
            message=f'Key visit "{visit.name}" (Day {visit.day}) not explicitly mentioned in CSR',
            details="Document: CSR",
            affected_visits=[visit.id],
        ))
    return issues


def check_study_flow_consistency(
    flow: StudyFlow,
    protocol_text: Optional[str] = None,
    icf_text: Optional[str] = None,
    csr_text: Optional[str] = None,
) -> List[FlowIssue]:
    issues: List[FlowIssue] = []
    if protocol_text:
        issues.extend(_check_protocol_visits(flow, protocol_text.lower()))
    if icf_text:
        issues.extend(_check_icf_procedures(flow, icf_text.lower()))
    if protocol_text:
        issues.extend(_check_duration(flow, protocol_text))
    if csr_text:
        issues.extend(_check_csr_visits(flow, csr_text.lower()))
    logger.debug(f"Document consistency: {len(issues)} issue(s) for flow {flow.id}")
    return issues
