"""
Tests for studyflow.top.top_matrix — read-only ToP projections.
"""

import csv
import io

import pytest

from studyflow.schema import ProcedureCategory, Visit, VisitType
from studyflow.top.top_builder import add_procedure_to_visit, add_visit_to_matrix, build_top_matrix
from studyflow.top.top_matrix import (
    CELL_MARK_CSV,
    CELL_MARK_TEXT,
    compare_top_matrices,
    filter_top_by_procedure_category,
    filter_top_by_visit_type,
    get_top_summary_by_category,
    top_to_csv,
    top_to_excel_data,
    top_to_html,
    top_to_json,
    top_to_markdown,
    transpose_top,
)


@pytest.fixture
def top(sample_visits, sample_procedures):
    return build_top_matrix(sample_visits, sample_procedures, study_id="STUDY-1", protocol_id="P-001")


class TestJson:

    def test_fill_counts(self, top):
        data = top_to_json(top)
        assert data["metadata"]["totalVisits"] == 5
        assert data["metadata"]["totalProcedures"] == 4
        assert data["metadata"]["studyId"] == "STUDY-1"
        assert [v["procedureCount"] for v in data["visits"]] == [2, 4, 2, 2, 4]
        assert [p["visitCount"] for p in data["procedures"]] == [5, 3, 2, 4]
        assert data["procedures"][2]["visits"] == ["visit_baseline", "visit_eot"]
        assert data["visits"][2]["window"] == {"minus": 3, "plus": 3, "unit": "days"}

    def test_matrix_copied(self, top):
        data = top_to_json(top)
        data["matrix"][0][0] = False
        assert top.matrix[0][0] is True


class TestCsv:

    def test_header_and_rows(self, top):
        text = top_to_csv(top)
        lines = text.split("\n")
        assert lines[0] == "Visit,Day,Type,Vital Signs,Physical Examination,Complete Blood Count,HbA1c"
        assert lines[1] == "Screening,-14,screening,X,X,,"
        assert lines[-1] == "End of Treatment,84,end_of_treatment,X,X,X,X"
        assert not text.endswith("\n")

    def test_quoting(self, sample_procedures):
        visit = Visit(id="v", name="Visit 1, fasted", day=1, type=VisitType.TREATMENT)
        rows = list(csv.reader(io.StringIO(top_to_csv(build_top_matrix([visit], sample_procedures)))))
        assert rows[1][0] == "Visit 1, fasted"
        assert len(rows[1]) == 7

    def test_marks_count(self, top):
        assert top_to_csv(top).count(CELL_MARK_CSV) == 14


class TestMarkdownHtml:

    def test_markdown(self, top):
        lines = top_to_markdown(top).split("\n")
        assert lines[0] == "| Visit | Day | Vital Signs | Physical Examination | Complete Blood Count | HbA1c |"
        assert lines[1] == "| --- | --- | --- | --- | --- | --- |"
        assert lines[4] == f"| Week 4 | 28 | {CELL_MARK_TEXT} |  |  | {CELL_MARK_TEXT} |"
        assert len(lines) == 7

    def test_markdown_escapes_pipes(self, sample_procedures):
        visit = Visit(id="v", name="A|B", day=1, type=VisitType.TREATMENT)
        assert "A\\|B" in top_to_markdown(build_top_matrix([visit], sample_procedures))

    def test_html(self, top):
        out = top_to_html(top)
        assert out.startswith('<table class="top-matrix">')
        assert '<th class="category-efficacy">HbA1c</th>' in out
        assert out.count('class="has-proc"') == 14
        assert out.count('class="no-proc"') == 6

    def test_html_escapes(self, sample_procedures):
        visit = Visit(id="v", name="<Week 1>", day=7, type=VisitType.TREATMENT)
        assert "&lt;Week 1&gt;" in top_to_html(build_top_matrix([visit], sample_procedures))


class TestExcelData:

    def test_rows(self, top):
        data = top_to_excel_data(top)
        assert data[0] == ["Visit", "Day", "Type", "Window", "Vital Signs",
                           "Physical Examination", "Complete Blood Count", "HbA1c"]
        assert data[3] == ["Week 4", 28, "treatment", "±3/3 days", "X", "", "", "X"]
        assert len(data) == 6

    def test_no_window(self, sample_procedures):
        visit = Visit(id="v", name="V", day=7, type=VisitType.TREATMENT)
        assert top_to_excel_data(build_top_matrix([visit], sample_procedures))[1][3] == ""


class TestDerived:

    def test_transpose(self, top):
        t = transpose_top(top)
        assert t.version == "1.0-transposed"
        assert len(t.matrix) == 4
        assert len(t.matrix[0]) == 5
        assert t.matrix[2] == [False, True, False, False, True]
        assert top.version == "1.0"

    def test_filter_by_visit_type(self, top):
        f = filter_top_by_visit_type(top, VisitType.TREATMENT)
        assert [v.id for v in f.visits] == ["visit_week_4", "visit_week_8"]
        assert f.version == "1.0-filtered-treatment"
        assert len(f.matrix) == 2

    def test_filter_by_category(self, top):
        f = filter_top_by_procedure_category(top, ProcedureCategory.LABS)
        assert [p.id for p in f.procedures] == ["proc_cbc"]
        assert f.matrix == [[False], [True], [False], [False], [True]]
        assert f.version == "1.0-filtered-labs"

    def test_filter_no_match(self, top):
        f = filter_top_by_procedure_category(top, "imaging")
        assert f.procedures == []
        assert f.matrix == [[], [], [], [], []]

    def test_summary_by_category(self, top):
        summary = get_top_summary_by_category(top)
        assert [s["category"] for s in summary] == ["vital_signs", "physical_exam", "labs", "efficacy"]
        efficacy = summary[-1]
        assert efficacy["procedureCount"] == 1
        assert efficacy["totalOccurrences"] == 4
        assert efficacy["averagePerVisit"] == pytest.approx(0.8)


class TestCompare:

    def test_identical(self, top):
        diff = compare_top_matrices(top, top)
        assert all(diff[k] == [] for k in
                   ("addedVisits", "removedVisits", "addedProcedures", "removedProcedures", "changedCells"))

    def test_changes(self, top):
        visit = Visit(id="visit_week_6", name="Week 6", day=42, type=VisitType.TREATMENT)
        new = add_visit_to_matrix(add_procedure_to_visit(top, "visit_week_4", "proc_cbc"), visit)
        diff = compare_top_matrices(top, new)
        assert [v.id for v in diff["addedVisits"]] == ["visit_week_6"]
        assert diff["removedVisits"] == []
        assert diff["changedCells"] == [{
            "visitId": "visit_week_4",
            "procedureId": "proc_cbc",
            "oldValue": False,
            "newValue": True,
        }]

    def test_removed_procedure(self, top):
        reduced = filter_top_by_procedure_category(top, ProcedureCategory.EFFICACY)
        diff = compare_top_matrices(top, reduced)
        assert [p.id for p in diff["removedProcedures"]] == [
            "proc_vital_signs", "proc_physical_exam", "proc_cbc",
        ]
        assert diff["changedCells"] == []
