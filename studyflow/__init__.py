"""
Study Flow Engine.

Turns a protocol's visit labels and endpoints into a structured study
flow (visits, procedures, treatment cycles and the Table of Procedures),
validates it against the ICF and SAP, and repairs what it can.
"""

from .schema import (
    AutoFixRequest,
    AutoFixResult,
    Endpoint,
    EndpointType,
    FixStrategy,
    FlowChange,
    FlowIssue,
    FlowValidationResult,
    Procedure,
    ProcedureCategory,
    Severity,
    StudyFlow,
    TopMatrix,
    Visit,
    VisitType,
    VisitWindow,
)
from .generator import generate_study_flow, build_visit_schedule, format_study_flow_for_context
from .autofix import (
    apply_auto_fixes,
    apply_changes_to_flow,
    generate_auto_fix_suggestions,
    estimate_auto_fix_impact,
    validate_auto_fix_changes,
)
from .validation import ValidationContext, validate_flow, check_study_flow_consistency
from .top import ExportFormat, build_top_matrix, export_top
from .engine import StudyFlowEngine

__all__ = [
    # Model
    "AutoFixRequest",
    "AutoFixResult",
    "Endpoint",
    "EndpointType",
    "FixStrategy",
    "FlowChange",
    "FlowIssue",
    "FlowValidationResult",
    "Procedure",
    "ProcedureCategory",
    "Severity",
    "StudyFlow",
    "TopMatrix",
    "Visit",
    "VisitType",
    "VisitWindow",
    # Generation
    "generate_study_flow",
    "build_visit_schedule",
    "format_study_flow_for_context",
    # Auto-fix
    "apply_auto_fixes",
    "apply_changes_to_flow",
    "generate_auto_fix_suggestions",
    "estimate_auto_fix_impact",
    "validate_auto_fix_changes",
    # Validation
    "ValidationContext",
    "validate_flow",
    "check_study_flow_consistency",
    # ToP
    "ExportFormat",
    "build_top_matrix",
    "export_top",
    # Facade
    "StudyFlowEngine",
]
