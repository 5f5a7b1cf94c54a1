"""
Tests for studyflow.procedures.procedure_inference — endpoint-driven procedures.

Validates:
  - keyword detection (stems, whole words, Russian text)
  - required flag follows the primary endpoint and is OR-ed on merge
  - standard per-stage sets and per-visit-type sets
  - rules YAML validation
"""

import os

import pytest
import yaml

from core.errors import CatalogError
from studyflow.procedures.procedure_catalog import get_procedure_catalog
from studyflow.procedures.procedure_inference import (
    _RULES_PATH,
    add_baseline_procedures,
    add_eot_procedures,
    add_safety_monitoring_procedures,
    add_screening_procedures,
    detect_endpoint_categories,
    get_inference_rules,
    get_inference_summary,
    infer_procedures_for_endpoint,
    infer_procedures_from_endpoints,
    load_inference_rules,
    validate_inference_rules,
)
from studyflow.schema import Endpoint, EndpointType, VisitType


def _endpoint(eid, name, ep_type=EndpointType.SECONDARY):
    return Endpoint(id=eid, name=name, type=ep_type)


class TestDetectCategories:

    @pytest.mark.parametrize("name,expected", [
        ("Change in HbA1c from baseline to Week 24", ["diabetes", "glycemic_control", "safety"]),
        ("Изменение уровня HbA1c", ["diabetes", "glycemic_control", "safety"]),
        ("Fasting glucose", ["glycemic_control", "safety"]),
        ("Mean SBP at Week 12", ["hypertension", "cardiovascular", "safety"]),
        ("Salt intake", ["safety"]),
        ("Serum ALT", ["hepatotoxicity", "safety"]),
        ("", ["safety"]),
    ])
    def test_categories(self, name, expected):
        assert detect_endpoint_categories(name) == expected

    def test_safety_always_last(self):
        cats = detect_endpoint_categories("Body weight and quality of life")
        assert cats[-1] == "safety"
        assert cats.count("safety") == 1


class TestInferForEndpoint:

    def test_primary_endpoint_procedures_required(self):
        procs = infer_procedures_for_endpoint(_endpoint("ep_1", "HbA1c", EndpointType.PRIMARY))
        assert [p.id for p in procs] == [
            "proc_hba1c", "proc_fasting_glucose", "proc_cbc", "proc_alt", "proc_ast",
            "proc_creatinine", "proc_vital_signs", "proc_physical_exam",
            "proc_ae_assessment", "proc_conmed_review",
        ]
        assert all(p.required for p in procs)
        assert all(p.linked_endpoints == ["ep_1"] for p in procs)

    def test_secondary_endpoint_not_required(self):
        procs = infer_procedures_for_endpoint(_endpoint("ep_2", "Body weight"))
        assert "proc_body_weight" in {p.id for p in procs}
        assert not any(p.required for p in procs)


class TestInferFromEndpoints:

    def test_merge_links_and_or_required(self):
        procs = infer_procedures_from_endpoints([
            _endpoint("ep_2", "Body weight"),
            _endpoint("ep_1", "HbA1c", EndpointType.PRIMARY),
        ])
        by_id = {p.id: p for p in procs}
        assert len(by_id) == len(procs)

        vitals = by_id["proc_vital_signs"]
        assert vitals.linked_endpoints == ["ep_2", "ep_1"]
        assert vitals.required is True

        weight = by_id["proc_body_weight"]
        assert weight.linked_endpoints == ["ep_2"]
        assert weight.required is False

    def test_required_never_downgraded(self):
        procs = infer_procedures_from_endpoints([
            _endpoint("ep_1", "HbA1c", EndpointType.PRIMARY),
            _endpoint("ep_2", "HbA1c at Week 52"),
        ])
        hba1c = next(p for p in procs if p.id == "proc_hba1c")
        assert hba1c.required is True
        assert hba1c.linked_endpoints == ["ep_1", "ep_2"]

    def test_empty(self):
        assert infer_procedures_from_endpoints([]) == []

    def test_summary(self):
        procs = infer_procedures_from_endpoints([
            _endpoint("ep_1", "HbA1c", EndpointType.PRIMARY),
            _endpoint("ep_2", "Body weight"),
        ])
        summary = get_inference_summary(procs)
        assert summary["total"] == len(procs)
        assert summary["required"] + summary["optional"] == len(procs)
        assert summary["linkedToEndpoints"] == len(procs)
        assert sum(summary["byCategory"].values()) == len(procs)


class TestStandardSets:

    @pytest.mark.parametrize("fn,name", [
        (add_screening_procedures, "screening"),
        (add_baseline_procedures, "baseline"),
        (add_safety_monitoring_procedures, "safety_monitoring"),
        (add_eot_procedures, "end_of_treatment"),
    ])
    def test_sets_match_rules(self, fn, name):
        procs = fn()
        assert [p.id for p in procs] == list(get_inference_rules().standard_set(name))
        assert all(p.required for p in procs)
        assert all(p.linked_endpoints == [] for p in procs)

    def test_screening_starts_with_consent(self):
        assert add_screening_procedures()[0].id == "proc_informed_consent"

    def test_visit_type_procedures(self):
        rules = get_inference_rules()
        assert "proc_randomization" in rules.procedures_for_visit_type(VisitType.BASELINE)
        assert "proc_drug_dispensing" in rules.procedures_for_visit_type("treatment")
        assert rules.procedures_for_visit_type(VisitType.UNSCHEDULED) == ()


class TestValidateRules:

    def _raw(self):
        with open(_RULES_PATH, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)

    def test_shipped_rules_valid(self):
        assert validate_inference_rules(self._raw(), get_procedure_catalog()) == []

    def test_not_mapping(self):
        assert validate_inference_rules("nope") == ["inference rules must be a mapping"]

    def test_rule_without_keywords(self):
        raw = self._raw()
        raw["keyword_rules"].append({"categories": ["safety"]})
        errors = validate_inference_rules(raw)
        assert any("needs 'keywords' or 'words'" in e for e in errors)

    def test_unknown_category(self):
        raw = self._raw()
        raw["keyword_rules"].append({"categories": ["astrology"], "keywords": ["star"]})
        errors = validate_inference_rules(raw)
        assert any("category 'astrology'" in e for e in errors)

    def test_unknown_procedure_with_catalog(self):
        raw = self._raw()
        raw["category_procedures"]["safety"].append("proc_ghost")
        assert validate_inference_rules(raw) == []
        errors = validate_inference_rules(raw, get_procedure_catalog())
        assert errors == ["category_procedures.safety: unknown procedure 'proc_ghost'"]

    def test_bad_visit_type(self):
        raw = self._raw()
        raw["visit_type_procedures"]["lunch"] = ["proc_vital_signs"]
        errors = validate_inference_rules(raw)
        assert "visit_type_procedures.lunch: not a visit type" in errors

    def test_load_raises(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(yaml.safe_dump({"keyword_rules": "x"}), encoding="utf-8")
        with pytest.raises(CatalogError):
            load_inference_rules(str(path))

    def test_load_default_path(self):
        rules = load_inference_rules()
        assert rules.always_include == ("safety",)
        assert os.path.basename(_RULES_PATH) == "inference_rules.yaml"
