"""
Procedures: reference catalog, fuzzy text mapping and endpoint-driven
procedure inference.
"""

from .procedure_catalog import (
    ProcedureCatalog,
    get_procedure_catalog,
    load_procedure_catalog,
    get_procedure_by_id,
    get_procedures_by_category,
    search_procedures,
    get_procedures_for_endpoint,
    get_catalog_stats,
    create_procedure_from_catalog,
)
from .procedure_mapping import (
    map_procedure,
    map_procedures,
    extract_procedures_from_text,
    validate_mapping,
    get_mapping_stats,
)
from .procedure_inference import (
    InferenceRules,
    get_inference_rules,
    load_inference_rules,
    detect_endpoint_categories,
    infer_procedures_for_endpoint,
    infer_procedures_from_endpoints,
    add_screening_procedures,
    add_baseline_procedures,
    add_safety_monitoring_procedures,
    add_eot_procedures,
    get_inference_summary,
)

__all__ = [
    'ProcedureCatalog',
    'get_procedure_catalog',
    'load_procedure_catalog',
    'get_procedure_by_id',
    'get_procedures_by_category',
    'search_procedures',
    'get_procedures_for_endpoint',
    'get_catalog_stats',
    'create_procedure_from_catalog',
    'map_procedure',
    'map_procedures',
    'extract_procedures_from_text',
    'validate_mapping',
    'get_mapping_stats',
    'InferenceRules',
    'get_inference_rules',
    'load_inference_rules',
    'detect_endpoint_categories',
    'infer_procedures_for_endpoint',
    'infer_procedures_from_endpoints',
    'add_screening_procedures',
    'add_baseline_procedures',
    'add_safety_monitoring_procedures',
    'add_eot_procedures',
    'get_inference_summary',
]
