"""
Study Flow Engine facade.

One object bundling configuration, the procedure catalog and the inference
rules, exposing generation, validation, auto-fix, ToP construction and
export over shared state.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from core.config import FlowEngineConfig, get_config
from studyflow.alignment.endpoint_procedure_map import create_endpoint_procedure_maps
from studyflow.autofix import apply_auto_fixes
from studyflow.generator import generate_study_flow
from studyflow.procedures.procedure_catalog import ProcedureCatalog, get_procedure_catalog
from studyflow.procedures.procedure_inference import InferenceRules, get_inference_rules
from studyflow.schema import (
    AutoFixRequest,
    AutoFixResult,
    Endpoint,
    FixStrategy,
    FlowIssue,
    FlowValidationResult,
    Procedure,
    StudyFlow,
    TopMatrix,
    Visit,
)
from studyflow.top import top_builder
from studyflow.top.top_export import ExportFormat, export_top
from studyflow.validation import engine as validation_engine
from studyflow.validation.context import IcfDocument, SapDocument, ValidationContext
from studyflow.validation.engine import RuleId

logger = logging.getLogger(__name__)


class StudyFlowEngine:
    """
    Entry point for callers that work on whole flows.

    Every method returns a new value; the engine holds no per-flow state
    and can be shared between threads.
    """

    def __init__(
        self,
        config: Optional[FlowEngineConfig] = None,
        catalog: Optional[ProcedureCatalog] = None,
        rules: Optional[InferenceRules] = None,
    ):
        self.config = config or get_config()
        self.catalog = catalog or get_procedure_catalog()
        self.rules = rules or get_inference_rules()
        logger.debug(f"Study flow engine ready: {len(self.catalog.entries)} catalog entries")

    def generate_flow(
        self,
        protocol_id: str,
        endpoints: Iterable[Union[Endpoint, str, dict]] = (),
        visit_labels: Optional[List[str]] = None,
        phase: Optional[str] = None,
        duration_weeks: Optional[int] = None,
        study_id: Optional[str] = None,
    ) -> StudyFlow:
        return generate_study_flow(
            protocol_id,
            endpoints,
            visit_labels=visit_labels,
            phase=phase,
            duration_weeks=duration_weeks,
            study_id=study_id,
            config=self.config,
            rules=self.rules,
            catalog=self.catalog,
        )

    def build_context(
        self,
        endpoints: Iterable[Union[Endpoint, dict]] = (),
        icf: Optional[IcfDocument] = None,
        sap: Optional[SapDocument] = None,
    ) -> ValidationContext:
        """Validation context with endpoint maps built from ``endpoints``."""
        endpoint_list = [e if isinstance(e, Endpoint) else Endpoint.from_dict(e) for e in endpoints]
        return ValidationContext(
            endpoint_maps=create_endpoint_procedure_maps(endpoint_list, self.rules, self.catalog),
            icf=icf,
            sap=sap,
            config=self.config,
        )

    def validate_flow(
        self,
        flow: StudyFlow,
        context: Optional[Union[ValidationContext, Dict[str, Any]]] = None,
        rules: Optional[Iterable[RuleId]] = None,
    ) -> FlowValidationResult:
        """
        Run the rule battery.

        Args:
            flow: Flow to check
            context: ValidationContext, or its JSON form (endpointMaps, icf, sap)
            rules: Subset of rules to run (default: all)
        """
        if context is None:
            context = ValidationContext(config=self.config)
        elif isinstance(context, dict):
            context = ValidationContext.from_dict(context, self.config)
        return validation_engine.validate_flow(flow, context, rules)

    def apply_auto_fix(
        self,
        flow: StudyFlow,
        issue_ids: List[str],
        strategy: Union[FixStrategy, str] = FixStrategy.CONSERVATIVE,
        issues: Optional[List[FlowIssue]] = None,
    ) -> AutoFixResult:
        request = AutoFixRequest(
            issue_ids=list(issue_ids),
            strategy=FixStrategy(strategy),
            issues=list(issues or []),
        )
        return apply_auto_fixes(flow, request, config=self.config, catalog=self.catalog)

    def build_top_matrix(
        self,
        visits: List[Visit],
        procedures: List[Procedure],
        study_id: Optional[str] = None,
        protocol_id: Optional[str] = None,
    ) -> TopMatrix:
        return top_builder.build_top_matrix(visits, procedures, study_id, protocol_id)

    def export_top(
        self,
        top: TopMatrix,
        fmt: Union[ExportFormat, str],
        path: Optional[Union[str, Path]] = None,
    ) -> Union[str, Path]:
        return export_top(top, fmt, path)
