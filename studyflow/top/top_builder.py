"""
Table of Procedures Builder

Builds the Visit x Procedure boolean matrix and edits it without mutating
the input: every operation returns a new ``TopMatrix`` whose rows, visit
list and affected visits are copies.  Visits stay sorted by day and
``len(matrix) == len(visits)``, ``len(row) == len(procedures)`` after every
operation.
"""

import bisect
import logging
from collections import OrderedDict
from dataclasses import replace
from typing import Any, Dict, List, Optional

from core.errors import ProcedureNotFoundError, VisitNotFoundError
from studyflow.schema import (
    Procedure,
    ProcedureCategory,
    TopMatrix,
    Visit,
    VisitType,
    VisitWindow,
    utc_timestamp,
)
from studyflow.visit_model.visit_normalizer import sort_visits_by_day

logger = logging.getLogger(__name__)

TOP_VERSION = "1.0"


def _visit_index(top: TopMatrix, visit_id: str) -> int:
    for i, v in enumerate(top.visits):
        if v.id == visit_id:
            return i
    raise VisitNotFoundError(visit_id)


def _procedure_index(top: TopMatrix, procedure_id: str) -> int:
    for i, p in enumerate(top.procedures):
        if p.id == procedure_id:
            return i
    raise ProcedureNotFoundError(procedure_id)


def _row_for(visit: Visit, procedures: List[Procedure]) -> List[bool]:
    assigned = set(visit.procedures)
    return [p.id in assigned for p in procedures]


def build_top_matrix(
    visits: List[Visit],
    procedures: List[Procedure],
    study_id: Optional[str] = None,
    protocol_id: Optional[str] = None,
) -> TopMatrix:
    """Sort visits by day and mark every assigned procedure.

    Procedure ids on a visit that are not in ``procedures`` are ignored.
    """
    sorted_visits = sort_visits_by_day(visits)
    matrix = [_row_for(v, procedures) for v in sorted_visits]
    logger.info(f"Built ToP matrix: {len(sorted_visits)} visits x {len(procedures)} procedures")
    return TopMatrix(
        visits=sorted_visits,
        procedures=list(procedures),
        matrix=matrix,
        version=TOP_VERSION,
        generated_at=utc_timestamp(),
        study_id=study_id,
        protocol_id=protocol_id,
    )


# ── Cell edits ──────────────────────────────────────────────────────────

def add_procedure_to_visit(top: TopMatrix, visit_id: str, procedure_id: str) -> TopMatrix:
    """Raises VisitNotFoundError / ProcedureNotFoundError for unknown ids."""
    v_idx = _visit_index(top, visit_id)
    p_idx = _procedure_index(top, procedure_id)

    matrix = [list(row) for row in top.matrix]
    matrix[v_idx][p_idx] = True

    visits = list(top.visits)
    visit = visits[v_idx]
    if procedure_id not in visit.procedures:
        visits[v_idx] = replace(visit, procedures=list(visit.procedures) + [procedure_id])
    return replace(top, visits=visits, matrix=matrix)


def remove_procedure_from_visit(top: TopMatrix, visit_id: str, procedure_id: str) -> TopMatrix:
    v_idx = _visit_index(top, visit_id)
    p_idx = _procedure_index(top, procedure_id)

    matrix = [list(row) for row in top.matrix]
    matrix[v_idx][p_idx] = False

    visits = list(top.visits)
    visit = visits[v_idx]
    visits[v_idx] = replace(visit, procedures=[p for p in visit.procedures if p != procedure_id])
    return replace(top, visits=visits, matrix=matrix)


def add_procedure_to_all_visits(top: TopMatrix, procedure_id: str) -> TopMatrix:
    p_idx = _procedure_index(top, procedure_id)

    matrix = []
    for row in top.matrix:
        row = list(row)
        row[p_idx] = True
        matrix.append(row)

    visits = [
        v if procedure_id in v.procedures
        else replace(v, procedures=list(v.procedures) + [procedure_id])
        for v in top.visits
    ]
    return replace(top, visits=visits, matrix=matrix)


# ── Growth ─────────────────────────────────────────────────────────────

def add_visit_to_matrix(top: TopMatrix, visit: Visit) -> TopMatrix:
    """Insert a row at the visit's day position (after visits on the same day)."""
    visit = replace(visit, procedures=list(OrderedDict.fromkeys(visit.procedures)))
    days = [v.day for v in top.visits]
    idx = bisect.bisect_right(days, visit.day)
    visits = list(top.visits)
    visits.insert(idx, visit)
    matrix = [list(row) for row in top.matrix]
    matrix.insert(idx, _row_for(visit, top.procedures))
    return replace(top, visits=visits, matrix=matrix)


def add_procedure_column(top: TopMatrix, procedure: Procedure) -> TopMatrix:
    """Append a column; cells are set where visits already list the procedure."""
    if any(p.id == procedure.id for p in top.procedures):
        return clone_top_matrix(top)
    matrix = [
        list(row) + [procedure.id in visit.procedures]
        for row, visit in zip(top.matrix, top.visits)
    ]
    return replace(top, procedures=list(top.procedures) + [procedure], matrix=matrix)


# ── Queries ────────────────────────────────────────────────────────────

def get_procedures_for_visit(top: TopMatrix, visit_id: str) -> List[Procedure]:
    """Unknown visit ids yield an empty list."""
    for idx, v in enumerate(top.visits):
        if v.id == visit_id:
            return [p for p, cell in zip(top.procedures, top.matrix[idx]) if cell]
    return []


def get_visits_for_procedure(top: TopMatrix, procedure_id: str) -> List[Visit]:
    for idx, p in enumerate(top.procedures):
        if p.id == procedure_id:
            return [v for v, row in zip(top.visits, top.matrix) if row[idx]]
    return []


def get_top_stats(top: TopMatrix) -> Dict[str, Any]:
    total_visits = len(top.visits)
    total_procedures = len(top.procedures)
    total_cells = total_visits * total_procedures

    procedures_per_visit = [sum(1 for c in row if c) for row in top.matrix]
    visits_per_procedure = [
        sum(1 for row in top.matrix if row[j]) for j in range(total_procedures)
    ]
    filled = sum(procedures_per_visit)

    most_common = sorted(
        zip(top.procedures, visits_per_procedure), key=lambda pair: pair[1], reverse=True
    )[:10]
    busiest = sorted(
        zip(top.visits, procedures_per_visit), key=lambda pair: pair[1], reverse=True
    )[:10]

    return {
        "totalVisits": total_visits,
        "totalProcedures": total_procedures,
        "totalCells": total_cells,
        "filledCells": filled,
        "fillPercentage": filled / total_cells * 100 if total_cells else 0.0,
        "proceduresPerVisit": procedures_per_visit,
        "visitsPerProcedure": visits_per_procedure,
        "mostCommonProcedures": [{"procedure": p, "count": n} for p, n in most_common],
        "busiestVisits": [{"visit": v, "count": n} for v, n in busiest],
    }


_BASELINE_CATEGORIES = (
    (ProcedureCategory.VITAL_SIGNS, "Baseline visit missing vital signs"),
    (ProcedureCategory.PHYSICAL_EXAM, "Baseline visit missing physical exam"),
    (ProcedureCategory.LABS, "Baseline visit missing laboratory tests"),
)


def validate_top_completeness(top: TopMatrix) -> Dict[str, Any]:
    """Empty visits, unused procedures and a thin baseline are warnings;
    a required procedure assigned nowhere is an error."""
    errors: List[str] = []
    warnings: List[str] = []

    for visit, row in zip(top.visits, top.matrix):
        if not any(row):
            warnings.append(f'Visit "{visit.name}" has no procedures')

    for j, proc in enumerate(top.procedures):
        used = any(row[j] for row in top.matrix)
        if not used:
            warnings.append(f'Procedure "{proc.name}" is not used in any visit')
            if proc.required:
                errors.append(f'Required procedure "{proc.name}" is missing from all visits')

    baseline_idx = next(
        (i for i, v in enumerate(top.visits) if v.type == VisitType.BASELINE), None
    )
    if baseline_idx is not None:
        present = {
            p.category for p, cell in zip(top.procedures, top.matrix[baseline_idx]) if cell
        }
        for category, message in _BASELINE_CATEGORIES:
            if category not in present:
                warnings.append(message)

    return {"valid": not errors, "errors": errors, "warnings": warnings}


def clone_top_matrix(top: TopMatrix) -> TopMatrix:
    return replace(
        top,
        visits=[replace(v, procedures=list(v.procedures), metadata=dict(v.metadata))
                for v in top.visits],
        procedures=[replace(p, linked_endpoints=list(p.linked_endpoints), metadata=dict(p.metadata))
                    for p in top.procedures],
        matrix=[list(row) for row in top.matrix],
    )


def top_from_json(data: Dict[str, Any]) -> TopMatrix:
    """Rebuild a TopMatrix from ``top_to_json`` output.

    Visit procedure lists are re-derived from the matrix so the two stay
    consistent.
    """
    meta = data.get("metadata", {})
    procedures = [
        Procedure(
            id=p["id"],
            name=p.get("name", p["id"]),
            category=ProcedureCategory(p.get("category", ProcedureCategory.OTHER.value)),
            required=bool(p.get("required", False)),
        )
        for p in data.get("procedures", [])
    ]
    matrix = [[bool(c) for c in row] for row in data.get("matrix", [])]

    visits = []
    for idx, v in enumerate(data.get("visits", [])):
        window = v.get("window")
        row = matrix[idx] if idx < len(matrix) else [False] * len(procedures)
        visits.append(Visit(
            id=v["id"],
            name=v.get("name", v["id"]),
            day=int(v.get("day", 0)),
            type=VisitType(v.get("type", VisitType.TREATMENT.value)),
            window=VisitWindow.from_dict(window) if window else None,
            procedures=[p.id for p, cell in zip(procedures, row) if cell],
        ))
    if len(matrix) != len(visits):
        matrix = [_row_for(v, procedures) for v in visits]

    return TopMatrix(
        visits=visits,
        procedures=procedures,
        matrix=matrix,
        version=meta.get("version", TOP_VERSION),
        generated_at=meta.get("generatedAt", ""),
        study_id=meta.get("studyId"),
        protocol_id=meta.get("protocolId"),
    )
