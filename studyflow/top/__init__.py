"""
Table of Procedures: matrix construction, projections and export.
"""

from .top_builder import (
    build_top_matrix,
    add_procedure_to_visit,
    remove_procedure_from_visit,
    add_procedure_to_all_visits,
    add_visit_to_matrix,
    add_procedure_column,
    get_procedures_for_visit,
    get_visits_for_procedure,
    get_top_stats,
    validate_top_completeness,
    clone_top_matrix,
    top_from_json,
)
from .top_matrix import (
    top_to_json,
    top_to_csv,
    top_to_markdown,
    top_to_html,
    top_to_excel_data,
    transpose_top,
    filter_top_by_visit_type,
    filter_top_by_procedure_category,
    get_top_summary_by_category,
    compare_top_matrices,
)
from .top_export import (
    ExportFormat,
    generate_top_report,
    write_top_excel,
    write_top_docx,
    export_top,
)

__all__ = [
    'build_top_matrix',
    'add_procedure_to_visit',
    'remove_procedure_from_visit',
    'add_procedure_to_all_visits',
    'add_visit_to_matrix',
    'add_procedure_column',
    'get_procedures_for_visit',
    'get_visits_for_procedure',
    'get_top_stats',
    'validate_top_completeness',
    'clone_top_matrix',
    'top_from_json',
    'top_to_json',
    'top_to_csv',
    'top_to_markdown',
    'top_to_html',
    'top_to_excel_data',
    'transpose_top',
    'filter_top_by_visit_type',
    'filter_top_by_procedure_category',
    'get_top_summary_by_category',
    'compare_top_matrices',
    'ExportFormat',
    'generate_top_report',
    'write_top_excel',
    'write_top_docx',
    'export_top',
]
