"""Shared pytest configuration and fixtures for the test suite."""

import pytest

from studyflow.schema import (
    Procedure,
    ProcedureCategory,
    StudyFlow,
    Visit,
    VisitType,
    VisitWindow,
)
from studyflow.top.top_builder import build_top_matrix


def pytest_addoption(parser):
    """Add custom CLI options."""
    parser.addoption(
        "--run-slow", action="store_true", default=False,
        help="Run slow tests (full catalog sweeps, large schedules)",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: slow test (full catalog sweep or large schedule)")


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless --run-slow is passed."""
    if config.getoption("--run-slow"):
        return
    skip_slow = pytest.mark.skip(reason="need --run-slow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep STUDYFLOW_* variables and cwd config files out of the tests."""
    import os
    for key in list(os.environ):
        if key.startswith("STUDYFLOW_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


# ── Sample data ──────────────────────────────────────────────────────

@pytest.fixture
def sample_procedures():
    return [
        Procedure(id="proc_vital_signs", name="Vital Signs",
                  category=ProcedureCategory.VITAL_SIGNS, required=True),
        Procedure(id="proc_physical_exam", name="Physical Examination",
                  category=ProcedureCategory.PHYSICAL_EXAM, required=True),
        Procedure(id="proc_cbc", name="Complete Blood Count",
                  category=ProcedureCategory.LABS, required=True),
        Procedure(id="proc_hba1c", name="HbA1c",
                  category=ProcedureCategory.EFFICACY, linked_endpoints=["ep_0"], required=True),
    ]


@pytest.fixture
def sample_visits():
    return [
        Visit(id="visit_screening", name="Screening", day=-14, type=VisitType.SCREENING,
              window=VisitWindow(7, 7), procedures=["proc_vital_signs", "proc_physical_exam"]),
        Visit(id="visit_baseline", name="Baseline", day=0, type=VisitType.BASELINE,
              window=VisitWindow(0, 0),
              procedures=["proc_vital_signs", "proc_physical_exam", "proc_cbc", "proc_hba1c"]),
        Visit(id="visit_week_4", name="Week 4", day=28, type=VisitType.TREATMENT,
              window=VisitWindow(3, 3), procedures=["proc_vital_signs", "proc_hba1c"]),
        Visit(id="visit_week_8", name="Week 8", day=56, type=VisitType.TREATMENT,
              window=VisitWindow(6, 6), procedures=["proc_vital_signs", "proc_hba1c"]),
        Visit(id="visit_eot", name="End of Treatment", day=84, type=VisitType.END_OF_TREATMENT,
              window=VisitWindow(3, 3),
              procedures=["proc_vital_signs", "proc_physical_exam", "proc_cbc", "proc_hba1c"]),
    ]


def make_flow(visits, procedures, flow_id="flow_test", cycles=None):
    top = build_top_matrix(visits, procedures, study_id="STUDY-1", protocol_id="P-001")
    return StudyFlow(
        id=flow_id,
        protocol_id="P-001",
        study_id="STUDY-1",
        visits=top.visits,
        procedures=list(procedures),
        top_matrix=top,
        total_duration=max((v.day for v in visits), default=0),
        cycles=list(cycles or []),
    )


@pytest.fixture
def flow_factory():
    return make_flow


@pytest.fixture
def sample_flow(sample_visits, sample_procedures):
    return make_flow(sample_visits, sample_procedures)


@pytest.fixture
def flow_without_baseline(sample_visits, sample_procedures):
    visits = [v for v in sample_visits if v.type != VisitType.BASELINE]
    return make_flow(visits, sample_procedures, flow_id="flow_no_baseline")
