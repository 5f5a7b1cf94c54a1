"""
Table of Procedures projections.

Read-only views of a ``TopMatrix``: JSON with fill counts, CSV, Markdown,
HTML, Excel rows, plus transposed and filtered matrices.  Derived matrices
carry a version suffix (``1.0-transposed``, ``1.0-filtered-baseline``) so
they are never confused with the source.
"""

import csv
import html
import io
from dataclasses import replace
from typing import Any, Dict, List

from studyflow.schema import ProcedureCategory, TopMatrix, VisitType

CELL_MARK_CSV = "X"
CELL_MARK_TEXT = "✓"


def top_to_json(top: TopMatrix) -> Dict[str, Any]:
    """Matrix plus per-visit and per-procedure fill annotations."""
    visits = []
    for visit, row in zip(top.visits, top.matrix):
        visits.append({
            "id": visit.id,
            "name": visit.name,
            "day": visit.day,
            "type": visit.type.value,
            "window": visit.window.to_dict() if visit.window else None,
            "procedures": [p.id for p, cell in zip(top.procedures, row) if cell],
            "procedureCount": sum(1 for c in row if c),
        })

    procedures = []
    for j, proc in enumerate(top.procedures):
        visit_ids = [v.id for v, row in zip(top.visits, top.matrix) if row[j]]
        procedures.append({
            "id": proc.id,
            "name": proc.name,
            "category": proc.category.value,
            "required": proc.required,
            "visitCount": len(visit_ids),
            "visits": visit_ids,
        })

    return {
        "metadata": {
            "generatedAt": top.generated_at,
            "version": top.version,
            "studyId": top.study_id,
            "protocolId": top.protocol_id,
            "totalVisits": len(top.visits),
            "totalProcedures": len(top.procedures),
        },
        "visits": visits,
        "procedures": procedures,
        "matrix": [list(row) for row in top.matrix],
    }


def top_to_csv(top: TopMatrix) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["Visit", "Day", "Type"] + [p.name for p in top.procedures])
    for visit, row in zip(top.visits, top.matrix):
        writer.writerow(
            [visit.name, visit.day, visit.type.value]
            + [CELL_MARK_CSV if cell else "" for cell in row]
        )
    return buf.getvalue().rstrip("\n")


def _md_escape(text: str) -> str:
    return text.replace("|", "\\|")


def top_to_markdown(top: TopMatrix) -> str:
    header = ["Visit", "Day"] + [_md_escape(p.name) for p in top.procedures]
    lines = [
        "| " + " | ".join(header) + " |",
        "| " + " | ".join("---" for _ in header) + " |",
    ]
    for visit, row in zip(top.visits, top.matrix):
        cells = [_md_escape(visit.name), str(visit.day)]
        cells += [CELL_MARK_TEXT if cell else "" for cell in row]
        lines.append("| " + " | ".join(cells) + " |")
    return "\n".join(lines)


def top_to_html(top: TopMatrix) -> str:
    """Bare ``<table class="top-matrix">``; header cells carry a category class."""
    out = ['<table class="top-matrix">', "  <thead>", "    <tr>",
           "      <th>Visit</th>", "      <th>Day</th>", "      <th>Type</th>"]
    for proc in top.procedures:
        out.append(f'      <th class="category-{proc.category.value}">{html.escape(proc.name)}</th>')
    out += ["    </tr>", "  </thead>", "  <tbody>"]
    for visit, row in zip(top.visits, top.matrix):
        out.append("    <tr>")
        out.append(f"      <td>{html.escape(visit.name)}</td>")
        out.append(f"      <td>{visit.day}</td>")
        out.append(f"      <td>{visit.type.value}</td>")
        for cell in row:
            css = "has-proc" if cell else "no-proc"
            out.append(f'      <td class="{css}">{CELL_MARK_TEXT if cell else ""}</td>')
        out.append("    </tr>")
    out += ["  </tbody>", "</table>"]
    return "\n".join(out)


def top_to_excel_data(top: TopMatrix) -> List[List[Any]]:
    """Header row followed by one row per visit, ready for a worksheet."""
    data: List[List[Any]] = [["Visit", "Day", "Type", "Window"] + [p.name for p in top.procedures]]
    for visit, row in zip(top.visits, top.matrix):
        window = visit.window
        window_str = f"±{window.minus}/{window.plus} {window.unit}" if window else ""
        data.append(
            [visit.name, visit.day, visit.type.value, window_str]
            + [CELL_MARK_CSV if cell else "" for cell in row]
        )
    return data


# ── Derived matrices ───────────────────────────────────────────────────

def transpose_top(top: TopMatrix) -> TopMatrix:
    """Procedure-major view: ``matrix[procedure][visit]``, for display only."""
    matrix = [
        [top.matrix[i][j] for i in range(len(top.visits))]
        for j in range(len(top.procedures))
    ]
    return replace(
        top,
        visits=list(top.visits),
        procedures=list(top.procedures),
        matrix=matrix,
        version=f"{top.version}-transposed",
    )


def filter_top_by_visit_type(top: TopMatrix, visit_type: VisitType) -> TopMatrix:
    visit_type = VisitType(visit_type)
    keep = [i for i, v in enumerate(top.visits) if v.type == visit_type]
    return replace(
        top,
        visits=[top.visits[i] for i in keep],
        procedures=list(top.procedures),
        matrix=[list(top.matrix[i]) for i in keep],
        version=f"{top.version}-filtered-{visit_type.value}",
    )


def filter_top_by_procedure_category(top: TopMatrix, category: ProcedureCategory) -> TopMatrix:
    category = ProcedureCategory(category)
    keep = [j for j, p in enumerate(top.procedures) if p.category == category]
    return replace(
        top,
        visits=list(top.visits),
        procedures=[top.procedures[j] for j in keep],
        matrix=[[row[j] for j in keep] for row in top.matrix],
        version=f"{top.version}-filtered-{category.value}",
    )


def get_top_summary_by_category(top: TopMatrix) -> List[Dict[str, Any]]:
    """Categories in first-appearance order with occurrence counts."""
    columns: Dict[ProcedureCategory, List[int]] = {}
    for j, proc in enumerate(top.procedures):
        columns.setdefault(proc.category, []).append(j)

    n_visits = len(top.visits)
    summary = []
    for category, idxs in columns.items():
        occurrences = sum(1 for row in top.matrix for j in idxs if row[j])
        summary.append({
            "category": category.value,
            "procedureCount": len(idxs),
            "totalOccurrences": occurrences,
            "averagePerVisit": occurrences / n_visits if n_visits else 0.0,
        })
    return summary


def compare_top_matrices(old: TopMatrix, new: TopMatrix) -> Dict[str, Any]:
    """Added/removed visits and procedures, and changed cells on common ones."""
    old_visits = {v.id: i for i, v in enumerate(old.visits)}
    new_visits = {v.id: i for i, v in enumerate(new.visits)}
    old_procs = {p.id: j for j, p in enumerate(old.procedures)}
    new_procs = {p.id: j for j, p in enumerate(new.procedures)}

    changed = []
    for visit in old.visits:
        if visit.id not in new_visits:
            continue
        i_old, i_new = old_visits[visit.id], new_visits[visit.id]
        for proc in old.procedures:
            if proc.id not in new_procs:
                continue
            before = old.matrix[i_old][old_procs[proc.id]]
            after = new.matrix[i_new][new_procs[proc.id]]
            if before != after:
                changed.append({
                    "visitId": visit.id,
                    "procedureId": proc.id,
                    "oldValue": before,
                    "newValue": after,
                })

    return {
        "addedVisits": [v for v in new.visits if v.id not in old_visits],
        "removedVisits": [v for v in old.visits if v.id not in new_visits],
        "addedProcedures": [p for p in new.procedures if p.id not in old_procs],
        "removedProcedures": [p for p in old.procedures if p.id not in new_procs],
        "changedCells": changed,
    }
