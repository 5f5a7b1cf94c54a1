"""
Tests for studyflow.alignment.endpoint_procedure_map — per-endpoint maps.
"""

import pytest

from studyflow.alignment.endpoint_procedure_map import (
    create_endpoint_procedure_map,
    create_endpoint_procedure_maps,
    determine_endpoint_timing,
    find_missing_procedures_for_endpoint,
    get_endpoint_procedure_map_summary,
    get_procedure_coverage_for_endpoints,
    get_procedures_for_endpoint_at_visit,
    merge_endpoint_procedure_maps,
    validate_endpoint_procedure_map,
)
from studyflow.schema import (
    Endpoint,
    EndpointProcedureMap,
    EndpointTiming,
    EndpointType,
    Procedure,
    ProcedureCategory,
    VisitType,
)

P, S = EndpointType.PRIMARY, EndpointType.SECONDARY


def _make_map(eid="ep_1", required=("proc_a",), recommended=(), timing=None, ep_type=S):
    return EndpointProcedureMap(
        endpoint_id=eid,
        endpoint_name=f"Endpoint {eid}",
        endpoint_type=ep_type,
        required_procedures=tuple(required),
        recommended_procedures=tuple(recommended),
        timing=timing or EndpointTiming(baseline=True, treatment=True),
    )


class TestTiming:

    @pytest.mark.parametrize("name,ep_type,expected", [
        ("HbA1c", P, (True, True, True)),
        ("Incidence of adverse events", S, (True, True, True)),
        ("Безопасность и переносимость", S, (True, True, True)),
        ("PK parameters", S, (False, True, False)),
        ("Cmax pharmacokinetics", S, (False, True, False)),
        ("Quality of life (SF-36)", S, (True, False, True)),
        ("Body weight", S, (True, True, False)),
        ("Upkeep score", S, (True, True, False)),
    ])
    def test_rules(self, name, ep_type, expected):
        t = determine_endpoint_timing(name, ep_type)
        assert (t.baseline, t.treatment, t.follow_up) == expected

    def test_hints_are_ored(self):
        t = determine_endpoint_timing("PK parameters", S, {"followUp": True, "baseline": False})
        assert (t.baseline, t.treatment, t.follow_up) == (False, True, True)

    def test_specific_visits(self):
        t = determine_endpoint_timing("Body weight", S, {"specificVisits": ["visit_week_12"]})
        assert t.specific_visits == ("visit_week_12",)


class TestCreateMap:

    def test_primary_all_required(self):
        m = create_endpoint_procedure_map(Endpoint(id="ep_0", name="HbA1c", type=P))
        assert "proc_hba1c" in m.required_procedures
        assert m.recommended_procedures == ()
        assert m.timing == EndpointTiming(True, True, True)

    def test_secondary_recommended(self):
        m = create_endpoint_procedure_map(Endpoint(id="ep_1", name="Body weight", type=S))
        assert m.required_procedures == ()
        assert "proc_body_weight" in m.recommended_procedures

    def test_many_and_merge(self):
        maps = create_endpoint_procedure_maps([
            Endpoint(id="ep_0", name="HbA1c", type=P),
            Endpoint(id="ep_1", name="Body weight", type=S),
        ])
        merged = merge_endpoint_procedure_maps(maps)
        assert merged["allRequiredProcedures"][0] == "proc_hba1c"
        assert "proc_body_weight" in merged["allRecommendedProcedures"]
        assert merged["byEndpoint"] == maps


class TestAtVisit:

    @pytest.mark.parametrize("visit_type,timing,expected", [
        (VisitType.BASELINE, EndpointTiming(baseline=True), ["proc_a"]),
        (VisitType.BASELINE, EndpointTiming(treatment=True), []),
        (VisitType.TREATMENT, EndpointTiming(treatment=True), ["proc_a"]),
        (VisitType.END_OF_TREATMENT, EndpointTiming(follow_up=True), ["proc_a"]),
        (VisitType.FOLLOW_UP, EndpointTiming(follow_up=True), ["proc_a"]),
        (VisitType.FOLLOW_UP, EndpointTiming(baseline=True, treatment=True), []),
        (VisitType.SCREENING, EndpointTiming(True, True, True), []),
        (VisitType.UNSCHEDULED, EndpointTiming(True, True, True), []),
    ])
    def test_by_visit_type(self, visit_type, timing, expected):
        assert get_procedures_for_endpoint_at_visit(_make_map(timing=timing), visit_type) == expected


class TestValidateMap:

    AVAILABLE = [Procedure(id="proc_a", name="A", category=ProcedureCategory.LABS)]

    def test_valid(self):
        assert validate_endpoint_procedure_map(_make_map(), self.AVAILABLE) == {
            "valid": True, "errors": [], "warnings": [],
        }

    def test_missing_required_and_recommended(self):
        result = validate_endpoint_procedure_map(
            _make_map(required=("proc_x",), recommended=("proc_y",)), self.AVAILABLE)
        assert result["valid"] is False
        assert result["errors"] == ["Required procedure proc_x not found in available procedures"]
        assert result["warnings"] == ["Recommended procedure proc_y not found in available procedures"]

    def test_no_procedures_no_timing(self):
        result = validate_endpoint_procedure_map(
            _make_map(required=(), timing=EndpointTiming()), self.AVAILABLE)
        assert result["errors"] == ['Endpoint "Endpoint ep_1" has no timing requirements']
        assert result["warnings"] == ['Endpoint "Endpoint ep_1" has no associated procedures']


class TestCoverage:

    def test_missing(self):
        m = _make_map(required=("a", "b"), recommended=("c",))
        assert find_missing_procedures_for_endpoint(m, ["a"]) == {
            "missingRequired": ["b"], "missingRecommended": ["c"],
        }

    def test_percentages(self):
        maps = [_make_map(required=("a", "b"), recommended=()),
                _make_map(eid="ep_2", required=(), recommended=("c", "d"))]
        coverage = get_procedure_coverage_for_endpoints(maps, ["a", "c"])
        assert coverage[0]["requiredCoverage"] == 50.0
        assert coverage[0]["recommendedCoverage"] == 100.0
        assert coverage[1]["requiredCoverage"] == 100.0
        assert coverage[1]["recommendedCoverage"] == 50.0
        assert coverage[1]["missingRecommended"] == 1

    def test_summary(self):
        maps = [_make_map(ep_type=P, timing=EndpointTiming(True, True, True)),
                _make_map(eid="ep_2", required=("proc_a", "proc_b"))]
        summary = get_endpoint_procedure_map_summary(maps)
        assert summary["totalEndpoints"] == 2
        assert summary["primaryEndpoints"] == 1
        assert summary["secondaryEndpoints"] == 1
        assert summary["totalRequiredProcedures"] == 2
        assert summary["averageRequiredPerEndpoint"] == 1.5
        assert summary["endpointsWithFollowUp"] == 1

    def test_summary_empty(self):
        assert get_endpoint_procedure_map_summary([])["averageRequiredPerEndpoint"] == 0
