"""
Tests for studyflow.alignment.visit_endpoint_alignment — per-visit checks.
"""

from studyflow.alignment.visit_endpoint_alignment import (
    auto_fix_visit_endpoint_alignment,
    check_all_visit_endpoint_alignments,
    check_visit_endpoint_alignment,
    get_alignment_by_endpoint,
    get_alignment_by_visit,
    get_alignment_summary,
    get_misaligned_pairs,
    suggest_procedures_to_add,
    validate_primary_endpoint_coverage,
)
from studyflow.schema import (
    EndpointProcedureMap,
    EndpointTiming,
    EndpointType,
    Visit,
    VisitType,
)


def _make_map(eid="ep_0", ep_type=EndpointType.PRIMARY, timing=None, required=("proc_hba1c",)):
    return EndpointProcedureMap(
        endpoint_id=eid,
        endpoint_name="HbA1c change",
        endpoint_type=ep_type,
        required_procedures=tuple(required),
        recommended_procedures=(),
        timing=timing or EndpointTiming(True, True, True),
    )


def _visits(with_hba1c=True):
    treat_procs = ["proc_hba1c"] if with_hba1c else []
    return [
        Visit(id="visit_screening", name="Screening", day=-14, type=VisitType.SCREENING),
        Visit(id="visit_baseline", name="Baseline", day=0, type=VisitType.BASELINE,
              procedures=["proc_hba1c"]),
        Visit(id="visit_week_12", name="Week 12", day=84, type=VisitType.TREATMENT,
              procedures=list(treat_procs)),
        Visit(id="visit_eot", name="End of Treatment", day=168,
              type=VisitType.END_OF_TREATMENT, procedures=list(treat_procs)),
    ]


class TestSingleCheck:

    def test_aligned_at_baseline(self):
        a = check_visit_endpoint_alignment(_visits()[1], _make_map())
        assert a.aligned
        assert a.missing_procedures == ()

    def test_missing_at_treatment(self):
        a = check_visit_endpoint_alignment(_visits(with_hba1c=False)[2], _make_map())
        assert a.has_procedures is False
        assert a.missing_procedures == ("proc_hba1c",)
        assert a.timing_correct is True

    def test_screening_timing_never_correct(self):
        a = check_visit_endpoint_alignment(_visits()[0], _make_map())
        assert a.has_procedures is True
        assert a.timing_correct is False
        assert a.aligned is False

    def test_unscheduled_timing_always_correct(self):
        visit = Visit(id="visit_unscheduled", name="Unscheduled", day=-1, type=VisitType.UNSCHEDULED)
        a = check_visit_endpoint_alignment(visit, _make_map(timing=EndpointTiming()))
        assert a.timing_correct is True


class TestAggregates:

    def test_cross_product_visit_major(self):
        maps = [_make_map("ep_0"), _make_map("ep_1", EndpointType.SECONDARY)]
        alignments = check_all_visit_endpoint_alignments(_visits(), maps)
        assert len(alignments) == 8
        assert [(a.visit_id, a.endpoint_id) for a in alignments[:2]] == [
            ("visit_screening", "ep_0"), ("visit_screening", "ep_1"),
        ]

    def test_summary(self):
        alignments = check_all_visit_endpoint_alignments(_visits(), [_make_map()])
        summary = get_alignment_summary(alignments)
        assert summary["totalChecks"] == 4
        assert summary["aligned"] == 3
        assert summary["misaligned"] == 1
        assert summary["alignmentPercentage"] == 75.0
        assert summary["timingIssuesCount"] == 1
        assert summary["missingProceduresCount"] == 0
        assert [a.visit_id for a in get_misaligned_pairs(alignments)] == ["visit_screening"]

    def test_empty_summary_is_fully_aligned(self):
        summary = get_alignment_summary([])
        assert summary["totalChecks"] == 0
        assert summary["alignmentPercentage"] == 100.0

    def test_group_by(self):
        alignments = check_all_visit_endpoint_alignments(_visits(), [_make_map()])
        by_visit = get_alignment_by_visit(alignments)
        assert by_visit["visit_screening"]["percentage"] == 0
        assert by_visit["visit_baseline"]["percentage"] == 100
        by_endpoint = get_alignment_by_endpoint(alignments)
        assert by_endpoint["ep_0"] == {"total": 4, "aligned": 3, "percentage": 75.0}


class TestAutoFix:

    def test_suggestions(self):
        suggestions = suggest_procedures_to_add(_visits(with_hba1c=False), [_make_map()])
        assert [s["visitId"] for s in suggestions] == ["visit_week_12", "visit_eot"]
        assert suggestions[0]["proceduresToAdd"] == ["proc_hba1c"]
        assert suggestions[0]["reason"] == 'Required for primary endpoint "HbA1c change"'

    def test_fix_adds_missing_without_mutating(self):
        visits = _visits(with_hba1c=False)
        result = auto_fix_visit_endpoint_alignment(visits, [_make_map()])
        assert result["changesApplied"] == 2
        updated = {v.id: v for v in result["updatedVisits"]}
        assert updated["visit_week_12"].procedures == ["proc_hba1c"]
        assert updated["visit_eot"].procedures == ["proc_hba1c"]
        assert visits[2].procedures == []

    def test_fix_is_noop_when_aligned(self):
        result = auto_fix_visit_endpoint_alignment(_visits(), [_make_map()])
        assert result["changesApplied"] == 0
        assert result["suggestions"] == []

    def test_fix_dedupes_across_endpoints(self):
        maps = [_make_map("ep_0"), _make_map("ep_1")]
        result = auto_fix_visit_endpoint_alignment(_visits(with_hba1c=False), maps)
        assert result["changesApplied"] == 2
        assert len(result["suggestions"]) == 4


class TestPrimaryCoverage:

    def test_covered(self):
        assert validate_primary_endpoint_coverage(_visits(), [_make_map()]) == {
            "valid": True, "errors": [], "warnings": [],
        }

    def test_not_assessed_on_treatment(self):
        result = validate_primary_endpoint_coverage(_visits(with_hba1c=False), [_make_map()])
        assert result["errors"] == ['Primary endpoint "HbA1c change" is not assessed at any treatment visit']

    def test_no_baseline(self):
        visits = [v for v in _visits() if v.type != VisitType.BASELINE]
        result = validate_primary_endpoint_coverage(visits, [_make_map()])
        assert 'Primary endpoint "HbA1c change" has no baseline visit' in result["errors"]

    def test_no_treatment_or_follow_up(self):
        visits = _visits()[:2]
        result = validate_primary_endpoint_coverage(visits, [_make_map()])
        assert result["valid"] is True
        assert result["warnings"] == [
            'Primary endpoint "HbA1c change" has no treatment visits',
            'Primary endpoint "HbA1c change" has no follow-up or end-of-treatment visit',
        ]

    def test_secondary_ignored(self):
        result = validate_primary_endpoint_coverage([], [_make_map(ep_type=EndpointType.SECONDARY)])
        assert result == {"valid": True, "errors": [], "warnings": []}
