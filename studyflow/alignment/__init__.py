"""
Alignment: endpoint requirement records and visit/endpoint cross-checks.
"""

from .endpoint_procedure_map import (
    determine_endpoint_timing,
    create_endpoint_procedure_map,
    create_endpoint_procedure_maps,
    merge_endpoint_procedure_maps,
    get_procedures_for_endpoint_at_visit,
    validate_endpoint_procedure_map,
    get_endpoint_procedure_map_summary,
    find_missing_procedures_for_endpoint,
    get_procedure_coverage_for_endpoints,
)
from .visit_endpoint_alignment import (
    check_visit_endpoint_alignment,
    check_all_visit_endpoint_alignments,
    get_misaligned_pairs,
    get_alignment_summary,
    get_alignment_by_visit,
    get_alignment_by_endpoint,
    suggest_procedures_to_add,
    auto_fix_visit_endpoint_alignment,
    validate_primary_endpoint_coverage,
)

__all__ = [
    'determine_endpoint_timing',
    'create_endpoint_procedure_map',
    'create_endpoint_procedure_maps',
    'merge_endpoint_procedure_maps',
    'get_procedures_for_endpoint_at_visit',
    'validate_endpoint_procedure_map',
    'get_endpoint_procedure_map_summary',
    'find_missing_procedures_for_endpoint',
    'get_procedure_coverage_for_endpoints',
    'check_visit_endpoint_alignment',
    'check_all_visit_endpoint_alignments',
    'get_misaligned_pairs',
    'get_alignment_summary',
    'get_alignment_by_visit',
    'get_alignment_by_endpoint',
    'suggest_procedures_to_add',
    'auto_fix_visit_endpoint_alignment',
    'validate_primary_endpoint_coverage',
]
