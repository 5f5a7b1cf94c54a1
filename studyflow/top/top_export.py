"""
Table of Procedures export.

Writes a ToP as a standalone HTML report, an Excel workbook (openpyxl) or a
landscape Word table (python-docx), and dispatches the text projections
from ``top_matrix``.  PDF rendering belongs to the external document
renderer; asking for it raises ``ExportError``.
"""

import html
import json
import logging
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from docx import Document
from docx.enum.section import WD_ORIENT
from docx.enum.table import WD_TABLE_ALIGNMENT
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml.ns import qn
from docx.shared import Inches, Pt
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from core.errors import ExportError
from studyflow.schema import TopMatrix
from studyflow.top.top_builder import get_top_stats
from studyflow.top.top_matrix import (
    CELL_MARK_CSV,
    CELL_MARK_TEXT,
    get_top_summary_by_category,
    top_to_csv,
    top_to_excel_data,
    top_to_json,
    top_to_markdown,
)

logger = logging.getLogger(__name__)


class ExportFormat(str, Enum):
    JSON = 'json'
    CSV = 'csv'
    MARKDOWN = 'markdown'
    HTML = 'html'
    EXCEL = 'excel'
    DOCX = 'docx'
    PDF = 'pdf'


CATEGORY_COLORS = {
    'efficacy': '#3498db',
    'safety': '#e74c3c',
    'labs': '#9b59b6',
    'pk': '#f39c12',
    'pd': '#e67e22',
    'questionnaire': '#1abc9c',
    'vital_signs': '#16a085',
    'physical_exam': '#27ae60',
    'ecg': '#2980b9',
    'imaging': '#8e44ad',
    'adverse_events': '#c0392b',
    'concomitant_meds': '#d35400',
    'device': '#7f8c8d',
    'other': '#95a5a6',
}


# ── HTML report ──────────────────────────────────────────────────────

_REPORT_CSS = """
    body { font-family: Arial, sans-serif; margin: 20px; color: #333; }
    h1 { color: #2c3e50; border-bottom: 2px solid #3498db; padding-bottom: 10px; }
    .metadata { background: #ecf0f1; padding: 15px; border-radius: 5px; margin: 20px 0; }
    .stats { display: grid; grid-template-columns: repeat(auto-fit, minmax(200px, 1fr)); gap: 15px; }
    .stat-card { border: 1px solid #ddd; border-radius: 5px; padding: 15px; text-align: center; }
    .stat-value { font-size: 32px; font-weight: bold; color: #3498db; }
    .stat-label { font-size: 14px; color: #7f8c8d; margin-top: 5px; }
    table { width: 100%; border-collapse: collapse; margin: 20px 0; font-size: 12px; }
    th { background: #34495e; color: white; padding: 10px; text-align: left; position: sticky; top: 0; }
    td { border: 1px solid #ddd; padding: 8px; }
    tr:nth-child(even) { background: #f9f9f9; }
    .has-proc { background: #2ecc71; color: white; text-align: center; font-weight: bold; }
    .no-proc { background: #ecf0f1; }
"""


def _category_css() -> str:
    return "\n".join(
        f"    .category-{name} {{ background: {color}; color: white; }}"
        for name, color in CATEGORY_COLORS.items()
    )


def _stat_card(value: str, label: str) -> str:
    return (f'    <div class="stat-card"><div class="stat-value">{value}</div>'
            f'<div class="stat-label">{label}</div></div>')


def generate_top_report(top: TopMatrix) -> str:
    """Standalone HTML page: metadata, headline stats, matrix, category summary."""
    stats = get_top_stats(top)
    n_visits = stats["totalVisits"]
    avg_per_visit = stats["filledCells"] / n_visits if n_visits else 0.0
    title = html.escape(top.study_id or "Study")

    lines = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '  <meta charset="UTF-8">',
        f"  <title>Table of Procedures - {title}</title>",
        "  <style>" + _REPORT_CSS + _category_css() + "\n  </style>",
        "</head>",
        "<body>",
        "  <h1>Table of Procedures</h1>",
        '  <div class="metadata">',
        f"    <strong>Study ID:</strong> {html.escape(top.study_id or 'N/A')}<br>",
        f"    <strong>Protocol ID:</strong> {html.escape(top.protocol_id or 'N/A')}<br>",
        f"    <strong>Generated:</strong> {html.escape(top.generated_at or 'N/A')}<br>",
        f"    <strong>Version:</strong> {html.escape(top.version)}",
        "  </div>",
        '  <div class="stats">',
        _stat_card(str(n_visits), "Total Visits"),
        _stat_card(str(stats["totalProcedures"]), "Total Procedures"),
        _stat_card(f"{stats['fillPercentage']:.1f}%", "Matrix Fill"),
        _stat_card(f"{avg_per_visit:.1f}", "Avg Procedures/Visit"),
        "  </div>",
        "  <h2>Table of Procedures Matrix</h2>",
        '  <table class="top-matrix">',
        "    <thead><tr><th>Visit</th><th>Day</th><th>Type</th>"
        + "".join(
            f'<th class="category-{p.category.value}">{html.escape(p.name)}</th>'
            for p in top.procedures
        )
        + "</tr></thead>",
        "    <tbody>",
    ]
    for visit, row in zip(top.visits, top.matrix):
        cells = "".join(
            f'<td class="{"has-proc" if cell else "no-proc"}">{CELL_MARK_TEXT if cell else ""}</td>'
            for cell in row
        )
        lines.append(
            f"      <tr><td><strong>{html.escape(visit.name)}</strong></td>"
            f"<td>{visit.day}</td><td>{visit.type.value}</td>{cells}</tr>"
        )
    lines += [
        "    </tbody>",
        "  </table>",
        "  <h2>Procedure Summary by Category</h2>",
        "  <table>",
        "    <thead><tr><th>Category</th><th>Procedures</th>"
        "<th>Total Occurrences</th><th>Avg per Visit</th></tr></thead>",
        "    <tbody>",
    ]
    for cat in get_top_summary_by_category(top):
        lines.append(
            f'      <tr><td class="category-{cat["category"]}">{cat["category"]}</td>'
            f'<td>{cat["procedureCount"]}</td><td>{cat["totalOccurrences"]}</td>'
            f'<td>{cat["averagePerVisit"]:.1f}</td></tr>'
        )
    lines += ["    </tbody>", "  </table>", "</body>", "</html>", ""]
    return "\n".join(lines)


# ── Excel ────────────────────────────────────────────────────────────

_XLSX_HEADER_FILL = PatternFill(start_color="D9E2F3", end_color="D9E2F3", fill_type="solid")
_XLSX_MARK_FILL = PatternFill(start_color="E2EFDA", end_color="E2EFDA", fill_type="solid")


def write_top_excel(top: TopMatrix, path: Union[str, Path]) -> Path:
    """Workbook with the matrix sheet (frozen header and visit columns) and a
    per-category summary sheet."""
    path = Path(path)
    wb = Workbook()
    ws = wb.active
    ws.title = "Table of Procedures"

    for row in top_to_excel_data(top):
        ws.append(row)

    for cell in ws[1]:
        cell.fill = _XLSX_HEADER_FILL
        cell.font = Font(bold=True)
        cell.alignment = Alignment(horizontal='center', vertical='center', wrap_text=True)
    for row in ws.iter_rows(min_row=2, min_col=5):
        for cell in row:
            if cell.value == CELL_MARK_CSV:
                cell.fill = _XLSX_MARK_FILL
                cell.alignment = Alignment(horizontal='center')

    ws.column_dimensions['A'].width = 24
    ws.column_dimensions['D'].width = 14
    for col in range(5, 5 + len(top.procedures)):
        ws.column_dimensions[get_column_letter(col)].width = 12
    ws.freeze_panes = 'E2'

    summary = wb.create_sheet("By Category")
    summary.append(["Category", "Procedures", "Total Occurrences", "Avg per Visit"])
    for cell in summary[1]:
        cell.fill = _XLSX_HEADER_FILL
        cell.font = Font(bold=True)
    for cat in get_top_summary_by_category(top):
        summary.append([cat["category"], cat["procedureCount"], cat["totalOccurrences"],
                        round(cat["averagePerVisit"], 2)])
    summary.freeze_panes = 'A2'

    path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(str(path))
    logger.info(f"Wrote ToP workbook: {path}")
    return path


# ── DOCX ─────────────────────────────────────────────────────────────

_HEADER_SHADE = 'D9E2F3'
_FONT_NAME = 'Arial Narrow'


def _shade_cell(cell, hex_color: str):
    tc_pr = cell._tc.get_or_add_tcPr()
    shading = tc_pr.makeelement(qn('w:shd'), {
        qn('w:val'): 'clear',
        qn('w:color'): 'auto',
        qn('w:fill'): hex_color,
    })
    tc_pr.append(shading)


def _mark_row_as_header(row):
    """Repeat the row on every page."""
    tr_pr = row._tr.get_or_add_trPr()
    tr_pr.append(tr_pr.makeelement(qn('w:tblHeader'), {}))


def _write_cell(cell, text: str, font_size: float = 8, bold: bool = False, center: bool = False):
    cell.text = ''
    p = cell.paragraphs[0]
    run = p.add_run(text)
    run.bold = bold
    run.font.size = Pt(font_size)
    run.font.name = _FONT_NAME
    if center:
        p.alignment = WD_ALIGN_PARAGRAPH.CENTER
    p.paragraph_format.space_before = Pt(0)
    p.paragraph_format.space_after = Pt(0)


def write_top_docx(top: TopMatrix, path: Union[str, Path]) -> Path:
    """Landscape document with a single grid table: visits x procedures."""
    path = Path(path)
    doc = Document()

    section = doc.sections[0]
    section.orientation = WD_ORIENT.LANDSCAPE
    section.page_width = Inches(11)
    section.page_height = Inches(8.5)
    for margin in ('top_margin', 'bottom_margin', 'left_margin', 'right_margin'):
        setattr(section, margin, Inches(0.5))

    doc.add_heading('Table of Procedures', level=1)
    if top.study_id or top.protocol_id:
        doc.add_paragraph(
            f"Study: {top.study_id or 'N/A'}    Protocol: {top.protocol_id or 'N/A'}"
        )

    headers = ['Visit', 'Day', 'Type'] + [p.name for p in top.procedures]
    table = doc.add_table(rows=1 + len(top.visits), cols=len(headers))
    table.style = 'Table Grid'
    table.alignment = WD_TABLE_ALIGNMENT.CENTER

    _mark_row_as_header(table.rows[0])
    for j, text in enumerate(headers):
        cell = table.cell(0, j)
        _write_cell(cell, text, bold=True, center=True)
        _shade_cell(cell, _HEADER_SHADE)

    for i, (visit, row) in enumerate(zip(top.visits, top.matrix), start=1):
        _write_cell(table.cell(i, 0), visit.name, bold=True)
        _write_cell(table.cell(i, 1), str(visit.day), center=True)
        _write_cell(table.cell(i, 2), visit.type.value)
        for j, filled in enumerate(row, start=3):
            _write_cell(table.cell(i, j), CELL_MARK_CSV if filled else '', center=True)

    path.parent.mkdir(parents=True, exist_ok=True)
    doc.save(str(path))
    logger.info(f"Wrote ToP document: {path}")
    return path


# ── Dispatcher ───────────────────────────────────────────────────────

_TEXT_EXPORTERS = {
    ExportFormat.JSON: lambda top: json.dumps(top_to_json(top), indent=2, ensure_ascii=False),
    ExportFormat.CSV: top_to_csv,
    ExportFormat.MARKDOWN: top_to_markdown,
    ExportFormat.HTML: generate_top_report,
}

_FILE_EXPORTERS = {
    ExportFormat.EXCEL: write_top_excel,
    ExportFormat.DOCX: write_top_docx,
}


def export_top(
    top: TopMatrix,
    fmt: Union[ExportFormat, str],
    path: Optional[Union[str, Path]] = None,
) -> Union[str, Path]:
    """Export a ToP.

    Text formats return the rendered text (and also write it when ``path``
    is given).  Excel and DOCX need ``path`` and return it.

    Raises:
        ExportError: unknown format, PDF, or a binary format without a path.
    """
    try:
        fmt = ExportFormat(fmt)
    except ValueError:
        raise ExportError(f"Unsupported export format: {fmt}")

    if fmt == ExportFormat.PDF:
        raise ExportError("PDF export is handled by the document renderer, not the flow engine")

    if fmt in _FILE_EXPORTERS:
        if path is None:
            raise ExportError(f"{fmt.value} export requires an output path")
        try:
            return _FILE_EXPORTERS[fmt](top, path)
        except OSError as e:
            raise ExportError(f"Failed to write {fmt.value} export to {path}", cause=e)

    text = _TEXT_EXPORTERS[fmt](top)
    if path is not None:
        out = Path(path)
        try:
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(text, encoding='utf-8')
        except OSError as e:
            raise ExportError(f"Failed to write {fmt.value} export to {out}", cause=e)
        logger.info(f"Wrote ToP {fmt.value}: {out}")
    return text
