"""
Flow Validation Rule Engine

Runs a fixed battery of ten rules over a ``StudyFlow`` and collects their
issues, in rule order, into a ``FlowValidationResult``.  Each rule is a
``RuleId`` bound to one pure evaluator in ``RULE_EVALUATORS``; rules never
depend on each other's output.

    Protocol ↔ ICF    PROCEDURE_NOT_IN_ICF, RISKS_NOT_DESCRIBED, VISIT_MISSING_IN_ICF
    Protocol ↔ SAP    ENDPOINT_TIMING_DRIFT, MISSING_ASSESSMENT_FOR_ENDPOINT,
                      INCORRECT_SCHEDULE_FOR_PRIMARY
    Global            FLOW_INTEGRITY_DRIFT, CYCLES_INCONSISTENT,
                      UNSUPPORTED_VISIT_TIMING, MISSING_MANDATORY_VISITS

ICF rules need an ``IcfDocument`` in the context; the SAP schedule and
cycle comparisons need a ``SapDocument``.  Without them those rules return
no issues.
"""

import json
import logging
import time
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from core.logging_config import FlowLoggerAdapter
from studyflow.schema import FlowIssue, FlowValidationResult, StudyFlow, utc_timestamp
from studyflow.validation.context import ValidationContext
from studyflow.validation.global_rules import (
    check_cycles_inconsistent,
    check_flow_integrity_drift,
    check_missing_mandatory_visits,
    check_unsupported_visit_timing,
)
from studyflow.validation.protocol_icf_rules import (
    check_procedure_not_in_icf,
    check_risks_not_described,
    check_visit_missing_in_icf,
)
from studyflow.validation.protocol_sap_rules import (
    check_endpoint_timing_drift,
    check_incorrect_schedule_for_primary,
    check_missing_assessment_for_endpoint,
)

logger = logging.getLogger(__name__)

REPORT_FILENAME = "flow_validation_report.json"


class RuleId(str, Enum):
    PROCEDURE_NOT_IN_ICF = 'PROCEDURE_NOT_IN_ICF'
    RISKS_NOT_DESCRIBED = 'RISKS_NOT_DESCRIBED'
    VISIT_MISSING_IN_ICF = 'VISIT_MISSING_IN_ICF'
    ENDPOINT_TIMING_DRIFT = 'ENDPOINT_TIMING_DRIFT'
    MISSING_ASSESSMENT_FOR_ENDPOINT = 'MISSING_ASSESSMENT_FOR_ENDPOINT'
    INCORRECT_SCHEDULE_FOR_PRIMARY = 'INCORRECT_SCHEDULE_FOR_PRIMARY'
    FLOW_INTEGRITY_DRIFT = 'FLOW_INTEGRITY_DRIFT'
    CYCLES_INCONSISTENT = 'CYCLES_INCONSISTENT'
    UNSUPPORTED_VISIT_TIMING = 'UNSUPPORTED_VISIT_TIMING'
    MISSING_MANDATORY_VISITS = 'MISSING_MANDATORY_VISITS'


RuleEvaluator = Callable[[StudyFlow, ValidationContext], List[FlowIssue]]


# ── Evaluators ───────────────────────────────────────────────────────

def _procedure_not_in_icf(flow: StudyFlow, ctx: ValidationContext) -> List[FlowIssue]:
    if ctx.icf is None:
        return []
    return check_procedure_not_in_icf(flow.procedures, ctx.icf.procedure_mentions)


def _risks_not_described(flow: StudyFlow, ctx: ValidationContext) -> List[FlowIssue]:
    if ctx.icf is None:
        return []
    return check_risks_not_described(flow.procedures, ctx.icf.risk_descriptions)


def _visit_missing_in_icf(flow: StudyFlow, ctx: ValidationContext) -> List[FlowIssue]:
    if ctx.icf is None:
        return []
    return check_visit_missing_in_icf(flow.visits, ctx.icf.visit_mentions,
                                      ctx.config.icf_visit_tolerance)


def _endpoint_timing_drift(flow: StudyFlow, ctx: ValidationContext) -> List[FlowIssue]:
    if ctx.sap is None:
        return []
    return check_endpoint_timing_drift(ctx.endpoint_maps, ctx.sap)


def _missing_assessment(flow: StudyFlow, ctx: ValidationContext) -> List[FlowIssue]:
    return check_missing_assessment_for_endpoint(ctx.endpoint_maps, flow.procedures)


def _incorrect_schedule(flow: StudyFlow, ctx: ValidationContext) -> List[FlowIssue]:
    return check_incorrect_schedule_for_primary(ctx.endpoint_maps, flow.visits)


def _flow_integrity_drift(flow: StudyFlow, ctx: ValidationContext) -> List[FlowIssue]:
    return check_flow_integrity_drift(
        flow.visits,
        sap_visits=ctx.sap.visits if ctx.sap is not None else None,
        icf_visit_count=len(ctx.icf.visit_mentions) if ctx.icf is not None else 0,
        sap_tolerance=ctx.config.sap_visit_tolerance,
        icf_tolerance=ctx.config.icf_visit_tolerance,
    )


def _cycles_inconsistent(flow: StudyFlow, ctx: ValidationContext) -> List[FlowIssue]:
    if ctx.sap is None:
        return []
    return check_cycles_inconsistent(flow.cycles, ctx.sap.cycles)


def _unsupported_visit_timing(flow: StudyFlow, ctx: ValidationContext) -> List[FlowIssue]:
    return check_unsupported_visit_timing(flow.visits, ctx.config.max_window_ratio,
                                          ctx.config.visit_too_close_days)


def _missing_mandatory_visits(flow: StudyFlow, ctx: ValidationContext) -> List[FlowIssue]:
    return check_missing_mandatory_visits(flow.visits)


RULE_EVALUATORS: Dict[RuleId, RuleEvaluator] = {
    RuleId.PROCEDURE_NOT_IN_ICF: _procedure_not_in_icf,
    RuleId.RISKS_NOT_DESCRIBED: _risks_not_described,
    RuleId.VISIT_MISSING_IN_ICF: _visit_missing_in_icf,
    RuleId.ENDPOINT_TIMING_DRIFT: _endpoint_timing_drift,
    RuleId.MISSING_ASSESSMENT_FOR_ENDPOINT: _missing_assessment,
    RuleId.INCORRECT_SCHEDULE_FOR_PRIMARY: _incorrect_schedule,
    RuleId.FLOW_INTEGRITY_DRIFT: _flow_integrity_drift,
    RuleId.CYCLES_INCONSISTENT: _cycles_inconsistent,
    RuleId.UNSUPPORTED_VISIT_TIMING: _unsupported_visit_timing,
    RuleId.MISSING_MANDATORY_VISITS: _missing_mandatory_visits,
}

_unbound = [r.value for r in RuleId if r not in RULE_EVALUATORS]
if _unbound:
    raise RuntimeError(f"Rules without an evaluator: {', '.join(_unbound)}")


# ── Runner ───────────────────────────────────────────────────────────

def validate_flow(
    flow: StudyFlow,
    ctx: Optional[ValidationContext] = None,
    rules: Optional[Iterable[RuleId]] = None,
) -> FlowValidationResult:
    """Run the selected rules (default: all, in ``RuleId`` order)."""
    ctx = ctx or ValidationContext()
    selected = set(RuleId(r) for r in rules) if rules is not None else set(RuleId)
    started = time.perf_counter()

    flow_log = FlowLoggerAdapter(logger, {"flow_id": flow.id})
    issues: List[FlowIssue] = []
    for rule_id in RuleId:
        if rule_id not in selected:
            continue
        found = RULE_EVALUATORS[rule_id](flow, ctx)
        if found:
            flow_log.for_rule(rule_id.value).debug(f"{len(found)} issue(s)")
        issues.extend(found)

    result = FlowValidationResult(
        issues=issues,
        validated_at=utc_timestamp(),
        duration_ms=(time.perf_counter() - started) * 1000,
    )
    summary = result.summary
    flow_log.info(
        f"Validated flow: {summary['total']} issue(s) "
        f"({summary['critical']} critical, {summary['error']} error, "
        f"{summary['warning']} warning, {summary['info']} info)",
        extra={"issue_count": summary['total'], "duration_ms": round(result.duration_ms, 1)},
    )
    return result


def save_validation_report(result: FlowValidationResult, output_dir: str) -> str:
    """Write ``flow_validation_report.json`` into ``output_dir``."""
    path = Path(output_dir) / REPORT_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(result.to_dict(), f, indent=2, ensure_ascii=False)
    logger.info(f"Flow validation report saved: {path}")
    return str(path)
