"""
Inputs to a validation pass besides the flow itself.

The ICF and SAP arrive already normalized by the ingestion step: the ICF
as lists of procedure mentions, risk descriptions and visit mentions, the
SAP as an assessment schedule plus its own visits and cycles.  A missing
document means the rules that compare against it produce no issues.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.config import FlowEngineConfig, get_config
from studyflow.schema import (
    EndpointProcedureMap,
    EndpointTiming,
    EndpointType,
    TreatmentCycle,
    Visit,
)


@dataclass
class IcfDocument:
    procedure_mentions: List[str] = field(default_factory=list)
    risk_descriptions: List[str] = field(default_factory=list)
    visit_mentions: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'IcfDocument':
        return cls(
            procedure_mentions=list(data.get('procedureMentions', [])),
            risk_descriptions=list(data.get('riskDescriptions', [])),
            visit_mentions=list(data.get('visitMentions', [])),
        )


@dataclass
class SapAssessment:
    endpoint_id: str
    visit_ids: List[str] = field(default_factory=list)


@dataclass
class SapDocument:
    assessment_schedule: List[SapAssessment] = field(default_factory=list)
    visits: List[Visit] = field(default_factory=list)
    cycles: List[TreatmentCycle] = field(default_factory=list)

    def schedule_for(self, endpoint_id: str) -> Optional[SapAssessment]:
        return next((s for s in self.assessment_schedule if s.endpoint_id == endpoint_id), None)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SapDocument':
        return cls(
            assessment_schedule=[
                SapAssessment(endpoint_id=s['endpointId'], visit_ids=list(s.get('visitIds', [])))
                for s in data.get('assessmentSchedule', [])
            ],
            visits=[Visit.from_dict(v) for v in data.get('visits', [])],
            cycles=[TreatmentCycle.from_dict(c) for c in data.get('cycles', [])],
        )


def endpoint_map_from_dict(data: Dict[str, Any]) -> EndpointProcedureMap:
    timing = data.get('timing', {})
    return EndpointProcedureMap(
        endpoint_id=data['endpointId'],
        endpoint_name=data.get('endpointName', data['endpointId']),
        endpoint_type=EndpointType(data.get('endpointType', EndpointType.SECONDARY.value)),
        required_procedures=tuple(data.get('requiredProcedures', [])),
        recommended_procedures=tuple(data.get('recommendedProcedures', [])),
        timing=EndpointTiming(
            baseline=bool(timing.get('baseline', False)),
            treatment=bool(timing.get('treatment', False)),
            follow_up=bool(timing.get('followUp', False)),
            specific_visits=tuple(timing.get('specificVisits', [])),
        ),
    )


@dataclass
class ValidationContext:
    endpoint_maps: List[EndpointProcedureMap] = field(default_factory=list)
    icf: Optional[IcfDocument] = None
    sap: Optional[SapDocument] = None
    config: FlowEngineConfig = field(default_factory=get_config)

    @classmethod
    def from_dict(cls, data: Dict[str, Any],
                  config: Optional[FlowEngineConfig] = None) -> 'ValidationContext':
        icf = data.get('icf')
        sap = data.get('sap')
        return cls(
            endpoint_maps=[endpoint_map_from_dict(m) for m in data.get('endpointMaps', [])],
            icf=IcfDocument.from_dict(icf) if icf is not None else None,
            sap=SapDocument.from_dict(sap) if sap is not None else None,
            config=config or get_config(),
        )
