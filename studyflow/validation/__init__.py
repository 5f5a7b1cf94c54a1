"""
Flow validation: the ten-rule battery and document text consistency checks.
"""

from .context import (
    IcfDocument,
    SapAssessment,
    SapDocument,
    ValidationContext,
    endpoint_map_from_dict,
)
from .engine import (
    RuleId,
    RULE_EVALUATORS,
    validate_flow,
    save_validation_report,
)
from .document_consistency import check_study_flow_consistency

__all__ = [
    'IcfDocument',
    'SapAssessment',
    'SapDocument',
    'ValidationContext',
    'endpoint_map_from_dict',
    'RuleId',
    'RULE_EVALUATORS',
    'validate_flow',
    'save_validation_report',
    'check_study_flow_consistency',
]
