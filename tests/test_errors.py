"""
Tests for core.errors — StudyFlowError hierarchy.

Validates:
- Hierarchy relationships (isinstance checks)
- Structured to_dict() output
- Cause chaining
- Entity ids on matrix lookup errors
"""

import pytest
from core.errors import (
    StudyFlowError,
    ConfigurationError,
    CatalogError,
    FlowStructureError,
    VisitNotFoundError,
    ProcedureNotFoundError,
    ExportError,
)


# ── Hierarchy ────────────────────────────────────────────────────────

class TestHierarchy:
    """All errors inherit from StudyFlowError and Exception."""

    @pytest.mark.parametrize("err", [
        ConfigurationError("bad"),
        CatalogError(["x"]),
        FlowStructureError("bad edit"),
        VisitNotFoundError("visit_1"),
        ProcedureNotFoundError("proc_1"),
        ExportError("nope"),
    ])
    def test_is_study_flow_error(self, err):
        assert isinstance(err, StudyFlowError)
        assert isinstance(err, Exception)

    def test_not_found_subtypes(self):
        assert issubclass(VisitNotFoundError, FlowStructureError)
        assert issubclass(ProcedureNotFoundError, FlowStructureError)


# ── Attributes ───────────────────────────────────────────────────────

class TestAttributes:

    def test_base_attributes(self):
        err = StudyFlowError("boom", flow_id="flow_P-001", rule="MISSING_MANDATORY_VISITS")
        assert str(err) == "boom"
        assert err.flow_id == "flow_P-001"
        assert err.rule == "MISSING_MANDATORY_VISITS"
        assert err.cause is None

    def test_cause_chaining(self):
        original = OSError("disk full")
        err = ExportError("write failed", cause=original)
        assert err.cause is original
        assert err.__cause__ is original

    def test_visit_not_found_message(self):
        err = VisitNotFoundError("visit_week_4")
        assert str(err) == "Visit visit_week_4 not found"
        assert err.entity_id == "visit_week_4"

    def test_procedure_not_found_message(self):
        err = ProcedureNotFoundError("proc_x")
        assert str(err) == "Procedure proc_x not found"
        assert err.entity_id == "proc_x"

    def test_catalog_error_lists_errors(self):
        err = CatalogError(["a missing", "b duplicate"], source="procedure_catalog.yaml")
        assert "procedure_catalog.yaml has 2 validation error(s)" in str(err)
        assert "  - a missing" in str(err)
        assert err.errors == ["a missing", "b duplicate"]


# ── to_dict ──────────────────────────────────────────────────────────

class TestToDict:
    """Structured output for logging."""

    def test_minimal(self):
        d = StudyFlowError("oops").to_dict()
        assert d == {"error_type": "StudyFlowError", "message": "oops"}

    def test_full(self):
        err = StudyFlowError("failed", flow_id="flow_1", rule="R1", cause=RuntimeError("timeout"))
        d = err.to_dict()
        assert d["flow_id"] == "flow_1"
        assert d["rule"] == "R1"
        assert "RuntimeError: timeout" in d["cause"]

    def test_entity_id_included(self):
        d = VisitNotFoundError("visit_9").to_dict()
        assert d["error_type"] == "VisitNotFoundError"
        assert d["entity_id"] == "visit_9"

    def test_catalog_error_dict(self):
        d = CatalogError(["bad"], source="rules").to_dict()
        assert d["errors"] == ["bad"]
        assert d["source"] == "rules"


# ── Catch patterns ───────────────────────────────────────────────────

class TestCatchPatterns:

    def test_catch_all_engine_errors(self):
        with pytest.raises(StudyFlowError):
            raise ProcedureNotFoundError("proc_1")

    def test_catch_structure_errors(self):
        with pytest.raises(FlowStructureError):
            raise VisitNotFoundError("visit_1")
