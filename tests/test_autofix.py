"""
Tests for studyflow.autofix — deterministic additive repairs.

Validates:
  - each fixer proposes the expected changes
  - rejected changes do not block accepted ones
  - the input flow is never mutated
  - reporting helpers (suggestions, impact estimate)
"""

import pytest

from studyflow.autofix import (
    apply_auto_fixes,
    apply_changes_to_flow,
    changes_for_issue,
    estimate_auto_fix_impact,
    fix_missing_baseline,
    fix_missing_eot,
    generate_auto_fix_suggestions,
    has_fixer,
    issue_still_present,
    validate_auto_fix_changes,
)
from studyflow.schema import (
    AutoFixRequest,
    ChangeType,
    FixStrategy,
    FlowChange,
    FlowIssue,
    IssueCategory,
    Procedure,
    ProcedureCategory,
    Severity,
    Visit,
    VisitType,
    VisitWindow,
)
from studyflow.validation.engine import validate_flow
from studyflow.validation.global_rules import (
    check_missing_mandatory_visits,
    check_unsupported_visit_timing,
)


def _assessment_issue(proc_ids, endpoint_id="ep_0"):
    return FlowIssue(
        id=f"MISSING_ASSESSMENT_{endpoint_id}",
        code="MISSING_ASSESSMENT_FOR_ENDPOINT",
        severity=Severity.CRITICAL,
        category=IssueCategory.PROCEDURE,
        message="missing",
        affected_procedures=list(proc_ids),
    )


class TestFixers:

    def test_baseline(self, flow_without_baseline):
        changes = fix_missing_baseline(flow_without_baseline)
        assert len(changes) == 1
        visit = changes[0].new_value
        assert changes[0].type == ChangeType.ADD_VISIT
        assert (visit.id, visit.day, visit.type) == ("visit_baseline", 0, VisitType.BASELINE)
        assert visit.metadata["source"] == "autofix"

    def test_baseline_already_present(self, sample_flow):
        assert fix_missing_baseline(sample_flow) == []

    def test_eot_at_last_treatment_day(self, sample_visits, sample_procedures, flow_factory):
        flow = flow_factory([v for v in sample_visits if v.type != VisitType.END_OF_TREATMENT],
                            sample_procedures)
        visit = fix_missing_eot(flow)[0].new_value
        assert (visit.id, visit.day) == ("visit_eot", 56)

    def test_dispatch(self, sample_flow):
        assert has_fixer("NO_BASELINE_ep_0")
        assert has_fixer("UNSUPPORTED_VISIT_TIMING_visit_week_4")
        assert not has_fixer("VISITS_TOO_CLOSE_a_b")
        assert changes_for_issue(sample_flow, "VISITS_TOO_CLOSE_a_b") is None
        assert changes_for_issue(sample_flow, "NO_BASELINE_ep_0") == []

    def test_issue_still_present(self, sample_flow, flow_without_baseline):
        assert issue_still_present(flow_without_baseline, "MISSING_BASELINE")
        assert not issue_still_present(sample_flow, "MISSING_BASELINE")
        assert issue_still_present(sample_flow, "UNSUPPORTED_VISIT_TIMING_visit_nope")
        assert issue_still_present(sample_flow, "MISSING_ASSESSMENT_ep_0")
        assert not issue_still_present(sample_flow, "VISITS_TOO_CLOSE_a_b")

    def test_timing_drift_targets_sap(self, sample_flow):
        change = changes_for_issue(sample_flow, "ENDPOINT_TIMING_DRIFT_ep_0")[0]
        assert change.target_id == "sap"
        assert change.new_value == {
            "endpointId": "ep_0",
            "visits": ["visit_baseline", "visit_week_4", "visit_week_8"],
        }


class TestMissingBaselineScenario:

    def test_adds_baseline_and_clears_issue(self, flow_without_baseline):
        before = validate_flow(flow_without_baseline)
        assert "MISSING_BASELINE" in before.issue_ids()

        result = apply_auto_fixes(flow_without_baseline, AutoFixRequest(issue_ids=["MISSING_BASELINE"]))
        assert result.fixed_issue_ids == ["MISSING_BASELINE"]
        assert result.summary["changesApplied"] == 1
        assert result.summary["changesRejected"] == 0
        assert "High-impact change: add_visit for protocol" in result.warnings

        updated = result.updated_flow
        assert [v.id for v in updated.visits][:2] == ["visit_screening", "visit_baseline"]
        assert len(updated.top_matrix.matrix) == len(updated.visits)
        assert "MISSING_BASELINE" not in validate_flow(updated).issue_ids()

    def test_input_not_mutated(self, flow_without_baseline):
        snapshot = flow_without_baseline.to_dict()
        apply_auto_fixes(flow_without_baseline, AutoFixRequest(issue_ids=["MISSING_BASELINE"]))
        assert flow_without_baseline.to_dict() == snapshot

    def test_strategy_does_not_change_outcome(self, flow_without_baseline):
        conservative = apply_auto_fixes(flow_without_baseline, AutoFixRequest(["MISSING_BASELINE"]))
        aggressive = apply_auto_fixes(
            flow_without_baseline, AutoFixRequest(["MISSING_BASELINE"], FixStrategy.AGGRESSIVE))
        assert [v.id for v in conservative.updated_flow.visits] == \
            [v.id for v in aggressive.updated_flow.visits]


class TestApplyAutoFixes:

    def test_missing_assessment_adds_procedure(self, sample_flow):
        issue = _assessment_issue(["proc_fasting_glucose"])
        result = apply_auto_fixes(sample_flow, AutoFixRequest([issue.id], issues=[issue]))
        updated = result.updated_flow
        assert updated.procedure_by_id("proc_fasting_glucose").required is True
        with_proc = [v.id for v in updated.visits if "proc_fasting_glucose" in v.procedures]
        assert with_proc == ["visit_baseline", "visit_week_4", "visit_week_8", "visit_eot"]
        assert result.fixed_issue_ids == ["MISSING_ASSESSMENT_ep_0"]

    def test_missing_assessment_without_details(self, sample_flow):
        result = apply_auto_fixes(sample_flow, AutoFixRequest(["MISSING_ASSESSMENT_ep_0"]))
        assert result.applied_changes == []
        assert result.fixed_issue_ids == []
        assert result.warnings == [
            "Issue MISSING_ASSESSMENT_ep_0 is still present but no fix could be derived"
        ]

    def test_missing_assessment_already_satisfied(self, sample_flow):
        issue = _assessment_issue(["proc_hba1c"])
        result = apply_auto_fixes(sample_flow, AutoFixRequest([issue.id], issues=[issue]))
        assert result.applied_changes == []
        assert result.warnings == []

    def test_window_fix_unknown_visit_rejected(self, sample_flow):
        result = apply_auto_fixes(sample_flow, AutoFixRequest(["UNSUPPORTED_VISIT_TIMING_visit_nope"]))
        assert result.errors == ["Cannot modify visit visit_nope - not found"]
        assert [(c.type, c.target_id) for c in result.rejected_changes] == [
            (ChangeType.MODIFY_VISIT, "visit_nope"),
        ]
        assert result.applied_changes == []
        assert result.fixed_issue_ids == []

    def test_rejected_unknown_procedure(self, sample_flow):
        issue = _assessment_issue(["proc_ghost", "proc_fasting_glucose"])
        result = apply_auto_fixes(sample_flow, AutoFixRequest([issue.id], issues=[issue]))
        assert result.errors == ['Cannot add procedure "proc_ghost" - not in catalog']
        assert [c.new_value for c in result.rejected_changes] == ["proc_ghost"]
        assert [c.new_value for c in result.applied_changes] == ["proc_fasting_glucose"]
        assert result.fixed_issue_ids == [issue.id]

    def test_window_fix(self, sample_visits, sample_procedures, flow_factory):
        visits = [v if v.id != "visit_week_4" else Visit(
            id=v.id, name=v.name, day=v.day, type=v.type, procedures=list(v.procedures),
            window=VisitWindow(20, 20)) for v in sample_visits]
        flow = flow_factory(visits, sample_procedures)
        assert [i.id for i in check_unsupported_visit_timing(flow.visits)] == \
            ["UNSUPPORTED_VISIT_TIMING_visit_week_4"]

        result = apply_auto_fixes(flow, AutoFixRequest(["UNSUPPORTED_VISIT_TIMING_visit_week_4"]))
        assert result.updated_flow.visit_by_id("visit_week_4").window == VisitWindow(3, 3)
        assert check_unsupported_visit_timing(result.updated_flow.visits) == []

    def test_sap_change_recorded_not_applied(self, sample_flow):
        result = apply_auto_fixes(sample_flow, AutoFixRequest(["ENDPOINT_TIMING_DRIFT_ep_0"]))
        assert len(result.applied_changes) == 1
        assert result.updated_flow.to_dict()["visits"] == sample_flow.to_dict()["visits"]

    def test_unknown_issue_warns(self, sample_flow):
        result = apply_auto_fixes(sample_flow, AutoFixRequest(["VISITS_TOO_CLOSE_a_b"]))
        assert result.warnings == ["No automatic fix for issue VISITS_TOO_CLOSE_a_b"]
        assert result.summary == {
            "changesApplied": 0, "changesRejected": 0, "issuesFixed": 0, "issuesRemaining": 0,
        }

    def test_result_to_dict(self, flow_without_baseline):
        data = apply_auto_fixes(flow_without_baseline, AutoFixRequest(["MISSING_BASELINE"])).to_dict()
        assert data["appliedChanges"][0]["type"] == "add_visit"
        assert data["summary"]["issuesFixed"] == 1


class TestValidateChanges:

    def test_duplicate_visit(self, sample_flow):
        change = FlowChange(ChangeType.ADD_VISIT, "protocol", new_value={"type": "baseline", "day": 0})
        result = validate_auto_fix_changes(sample_flow, [change])
        assert result["valid"] is False
        assert result["errors"] == ['Cannot add visit "Baseline" - similar visit already exists at Day 0']

    def test_modify_unknown_visit(self, sample_flow):
        change = FlowChange(ChangeType.MODIFY_VISIT, "visit_nope", field="window",
                            new_value=VisitWindow(1, 1))
        assert validate_auto_fix_changes(sample_flow, [change])["errors"] == [
            "Cannot modify visit visit_nope - not found",
        ]

    def test_document_targets_skip_checks(self, sample_flow):
        changes = [FlowChange(ChangeType.MODIFY_VISIT, "sap", field="cycles", new_value=2)]
        assert validate_auto_fix_changes(sample_flow, changes) == {"valid": True, "errors": [], "warnings": []}


class TestApplyChanges:

    def test_partial_visit_dict(self, flow_without_baseline):
        change = FlowChange(ChangeType.ADD_VISIT, "protocol",
                            new_value={"type": "follow_up", "day": 114, "name": "Follow-up"})
        updated = apply_changes_to_flow(flow_without_baseline, [change])
        visit = updated.visits[-1]
        assert (visit.id, visit.day, visit.name) == ("visit_follow_up", 114, "Follow-up")
        assert updated.total_duration == 114

    def test_custom_procedure_object(self, sample_flow):
        proc = Procedure(id="proc_custom", name="Custom", category=ProcedureCategory.OTHER)
        updated = apply_changes_to_flow(sample_flow, [FlowChange(ChangeType.ADD_PROCEDURE, "protocol", new_value=proc)])
        assert updated.procedure_by_id("proc_custom") is proc
        assert updated.top_matrix.matrix[0][-1] is False
        assert updated.top_matrix.matrix[1][-1] is True


class TestReporting:

    def test_suggestions(self):
        issues = check_missing_mandatory_visits([])
        issues += check_unsupported_visit_timing([
            Visit(id="a", name="A", day=28, type=VisitType.TREATMENT),
            Visit(id="b", name="B", day=29, type=VisitType.TREATMENT),
        ])
        suggestions = generate_auto_fix_suggestions(issues)
        assert [(s["issueId"], s["fixable"]) for s in suggestions] == [
            ("MISSING_BASELINE", True), ("MISSING_EOT", True), ("VISITS_TOO_CLOSE_a_b", False),
        ]
        assert suggestions[0]["suggestion"] == "Add baseline visit"
        assert suggestions[2]["suggestion"] == "Manual fix required"
        assert suggestions[2]["changes"] == []

    @pytest.mark.parametrize("changes,risk", [
        ([], "low"),
        ([FlowChange(ChangeType.MODIFY_VISIT, "v", field="window")] * 5, "low"),
        ([FlowChange(ChangeType.ADD_PROCEDURE, "protocol")] * 6, "medium"),
        ([FlowChange(ChangeType.ADD_VISIT, "protocol")], "medium"),
        ([FlowChange(ChangeType.MODIFY_VISIT, "v", field="day")] * 2, "medium"),
        ([FlowChange(ChangeType.ADD_VISIT, "protocol")] * 3, "high"),
        ([FlowChange(ChangeType.MODIFY_VISIT, "v", field="day")] * 4, "high"),
    ])
    def test_impact(self, changes, risk):
        assert estimate_auto_fix_impact(changes)["riskLevel"] == risk
