"""
Study Flow data model.

Dataclasses for visits, procedures, the Table of Procedures, validation
issues and auto-fix changes.  Every type serializes with ``to_dict()`` to
the camelCase JSON shape callers persist between runs, and the aggregate
types can be rebuilt with ``from_dict()``.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class VisitType(str, Enum):
    SCREENING = 'screening'
    BASELINE = 'baseline'
    TREATMENT = 'treatment'
    FOLLOW_UP = 'follow_up'
    END_OF_TREATMENT = 'end_of_treatment'
    UNSCHEDULED = 'unscheduled'


class ProcedureCategory(str, Enum):
    EFFICACY = 'efficacy'
    SAFETY = 'safety'
    LABS = 'labs'
    PK = 'pk'
    PD = 'pd'
    QUESTIONNAIRE = 'questionnaire'
    VITAL_SIGNS = 'vital_signs'
    PHYSICAL_EXAM = 'physical_exam'
    IMAGING = 'imaging'
    ECG = 'ecg'
    ADVERSE_EVENTS = 'adverse_events'
    CONCOMITANT_MEDS = 'concomitant_meds'
    DEVICE = 'device'
    OTHER = 'other'


class EndpointType(str, Enum):
    PRIMARY = 'primary'
    SECONDARY = 'secondary'
    EXPLORATORY = 'exploratory'


class Severity(str, Enum):
    CRITICAL = 'critical'
    ERROR = 'error'
    WARNING = 'warning'
    INFO = 'info'


class IssueCategory(str, Enum):
    VISIT = 'visit'
    PROCEDURE = 'procedure'
    TIMING = 'timing'
    ALIGNMENT = 'alignment'
    CYCLE = 'cycle'
    GLOBAL = 'global'


class ChangeType(str, Enum):
    ADD_VISIT = 'add_visit'
    REMOVE_VISIT = 'remove_visit'
    MODIFY_VISIT = 'modify_visit'
    ADD_PROCEDURE = 'add_procedure'
    REMOVE_PROCEDURE = 'remove_procedure'
    MODIFY_PROCEDURE = 'modify_procedure'
    ADJUST_TIMING = 'adjust_timing'


class FixStrategy(str, Enum):
    CONSERVATIVE = 'conservative'
    AGGRESSIVE = 'aggressive'
    BALANCED = 'balanced'


class FlowSource(str, Enum):
    MANUAL = 'manual'
    GENERATED = 'generated'
    IMPORTED = 'imported'


class CodeSystem(str, Enum):
    LOINC = 'LOINC'
    SNOMED = 'SNOMED'
    MEDDRA = 'MedDRA'


# Document-level change targets. Changes aimed at these are recorded, not
# applied to the visit list.
DOCUMENT_TARGETS = ('protocol', 'sap', 'icf')


def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='seconds').replace('+00:00', 'Z')


# ---------------------------------------------------------------------------
# Visits
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VisitWindow:
    """Allowed ± tolerance around a scheduled visit day."""
    minus: int = 0
    plus: int = 0
    unit: str = 'days'

    @property
    def total(self) -> int:
        return self.minus + self.plus

    def to_dict(self) -> dict:
        return {'minus': self.minus, 'plus': self.plus, 'unit': self.unit}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VisitWindow':
        return cls(
            minus=int(data.get('minus', 0)),
            plus=int(data.get('plus', 0)),
            unit=data.get('unit', 'days'),
        )


@dataclass
class Visit:
    """A scheduled study visit."""
    id: str
    name: str
    day: int
    type: VisitType
    procedures: List[str] = field(default_factory=list)
    required: bool = True
    window: Optional[VisitWindow] = None
    cycle: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = {
            'id': self.id,
            'name': self.name,
            'day': self.day,
            'type': self.type.value,
            'procedures': list(self.procedures),
            'required': self.required,
        }
        if self.window is not None:
            d['window'] = self.window.to_dict()
        if self.cycle is not None:
            d['cycle'] = self.cycle
        if self.metadata:
            d['metadata'] = dict(self.metadata)
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Visit':
        window = data.get('window')
        return cls(
            id=data['id'],
            name=data.get('name', data['id']),
            day=int(data.get('day', 0)),
            type=VisitType(data.get('type', VisitType.TREATMENT.value)),
            procedures=list(OrderedDict.fromkeys(data.get('procedures', []))),
            required=bool(data.get('required', True)),
            window=VisitWindow.from_dict(window) if window else None,
            cycle=data.get('cycle'),
            metadata=dict(data.get('metadata', {})),
        )


@dataclass
class VisitNormalizationResult:
    """Outcome of parsing one free-text visit label."""
    original_name: str
    normalized_name: str
    day: int
    type: VisitType
    confidence: float

    def to_dict(self) -> dict:
        return {
            'originalName': self.original_name,
            'normalizedName': self.normalized_name,
            'day': self.day,
            'type': self.type.value,
            'confidence': self.confidence,
        }


@dataclass
class TreatmentCycle:
    """A contiguous day range of treatment visits."""
    id: str
    cycle_number: int
    length_days: int
    start_day: int
    end_day: int
    visits_in_cycle: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'cycleNumber': self.cycle_number,
            'lengthDays': self.length_days,
            'visitsInCycle': list(self.visits_in_cycle),
            'startDay': self.start_day,
            'endDay': self.end_day,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TreatmentCycle':
        return cls(
            id=data['id'],
            cycle_number=int(data['cycleNumber']),
            length_days=int(data['lengthDays']),
            start_day=int(data['startDay']),
            end_day=int(data['endDay']),
            visits_in_cycle=list(data.get('visitsInCycle', [])),
        )


# ---------------------------------------------------------------------------
# Procedures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StandardCode:
    system: CodeSystem
    code: str

    def to_dict(self) -> dict:
        return {'system': self.system.value, 'code': self.code}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StandardCode':
        return cls(system=CodeSystem(data['system']), code=str(data['code']))


@dataclass(frozen=True)
class ProcedureCatalogEntry:
    """Immutable reference definition of a clinical procedure."""
    id: str
    name: str
    category: ProcedureCategory
    synonyms: Tuple[str, ...] = ()
    name_ru: Optional[str] = None
    standard_code: Optional[StandardCode] = None
    linked_endpoint_types: Tuple[str, ...] = ()
    description: str = ''
    duration: Optional[int] = None   # minutes
    fasting: bool = False
    invasive: bool = False

    def match_names(self) -> List[str]:
        """Name, localized name and synonyms, in that order."""
        names = [self.name]
        if self.name_ru:
            names.append(self.name_ru)
        names.extend(self.synonyms)
        return names

    def to_dict(self) -> dict:
        return _drop_none({
            'id': self.id,
            'name': self.name,
            'nameRu': self.name_ru,
            'category': self.category.value,
            'synonyms': list(self.synonyms),
            'standardCode': self.standard_code.to_dict() if self.standard_code else None,
            'linkedEndpointTypes': list(self.linked_endpoint_types),
            'metadata': _drop_none({
                'description': self.description or None,
                'duration': self.duration,
                'fasting': self.fasting,
                'invasive': self.invasive,
            }),
        })


@dataclass
class Procedure:
    """A procedure instance used by a study flow."""
    id: str
    name: str
    category: ProcedureCategory
    linked_endpoints: List[str] = field(default_factory=list)
    required: bool = False
    standard_code: Optional[StandardCode] = None
    frequency: Optional[Dict[str, Any]] = None
    timing: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def invasive(self) -> bool:
        return bool(self.metadata.get('invasive', False))

    def to_dict(self) -> dict:
        d = {
            'id': self.id,
            'name': self.name,
            'category': self.category.value,
            'linkedEndpoints': list(self.linked_endpoints),
            'required': self.required,
        }
        if self.standard_code is not None:
            d['standardCode'] = self.standard_code.to_dict()
        if self.frequency is not None:
            d['frequency'] = dict(self.frequency)
        if self.timing is not None:
            d['timing'] = dict(self.timing)
        if self.metadata:
            d['metadata'] = dict(self.metadata)
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Procedure':
        code = data.get('standardCode')
        return cls(
            id=data['id'],
            name=data.get('name', data['id']),
            category=ProcedureCategory(data.get('category', ProcedureCategory.OTHER.value)),
            linked_endpoints=list(data.get('linkedEndpoints', [])),
            required=bool(data.get('required', False)),
            standard_code=StandardCode.from_dict(code) if code else None,
            frequency=data.get('frequency'),
            timing=data.get('timing'),
            metadata=dict(data.get('metadata', {})),
        )


@dataclass
class MappingAlternative:
    procedure: ProcedureCatalogEntry
    confidence: float

    def to_dict(self) -> dict:
        return {'procedureId': self.procedure.id, 'name': self.procedure.name,
                'confidence': round(self.confidence, 4)}


@dataclass
class ProcedureMappingResult:
    """Resolution of free text against the procedure catalog."""
    original_text: str
    matched_procedure: Optional[ProcedureCatalogEntry]
    confidence: float
    alternatives: List[MappingAlternative] = field(default_factory=list)
    low_confidence: bool = False

    @property
    def matched(self) -> bool:
        return self.matched_procedure is not None

    def to_dict(self) -> dict:
        return {
            'originalText': self.original_text,
            'matchedProcedure': self.matched_procedure.id if self.matched_procedure else None,
            'confidence': round(self.confidence, 4),
            'lowConfidence': self.low_confidence,
            'alternatives': [a.to_dict() for a in self.alternatives],
        }


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@dataclass
class Endpoint:
    """Endpoint as supplied by protocol ingestion."""
    id: str
    name: str
    type: EndpointType = EndpointType.SECONDARY
    timing_hints: Dict[str, bool] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Endpoint':
        return cls(
            id=data['id'],
            name=data['name'],
            type=EndpointType(data.get('type', EndpointType.SECONDARY.value)),
            timing_hints=dict(data.get('timing', {}) or {}),
        )


@dataclass(frozen=True)
class EndpointTiming:
    baseline: bool = False
    treatment: bool = False
    follow_up: bool = False
    specific_visits: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        d = {'baseline': self.baseline, 'treatment': self.treatment, 'followUp': self.follow_up}
        if self.specific_visits:
            d['specificVisits'] = list(self.specific_visits)
        return d


@dataclass(frozen=True)
class EndpointProcedureMap:
    """Per-endpoint required/recommended procedures and timing triple."""
    endpoint_id: str
    endpoint_name: str
    endpoint_type: EndpointType
    required_procedures: Tuple[str, ...]
    recommended_procedures: Tuple[str, ...]
    timing: EndpointTiming

    def to_dict(self) -> dict:
        return {
            'endpointId': self.endpoint_id,
            'endpointName': self.endpoint_name,
            'endpointType': self.endpoint_type.value,
            'requiredProcedures': list(self.required_procedures),
            'recommendedProcedures': list(self.recommended_procedures),
            'timing': self.timing.to_dict(),
        }


@dataclass(frozen=True)
class VisitEndpointAlignment:
    visit_id: str
    endpoint_id: str
    has_procedures: bool
    missing_procedures: Tuple[str, ...]
    timing_correct: bool

    @property
    def aligned(self) -> bool:
        return self.has_procedures and self.timing_correct

    def to_dict(self) -> dict:
        return {
            'visitId': self.visit_id,
            'endpointId': self.endpoint_id,
            'hasProcedures': self.has_procedures,
            'missingProcedures': list(self.missing_procedures),
            'timingCorrect': self.timing_correct,
            'aligned': self.aligned,
        }


# ---------------------------------------------------------------------------
# Table of Procedures
# ---------------------------------------------------------------------------

@dataclass
class TopMatrix:
    """Visit x Procedure boolean matrix; visits sorted by day."""
    visits: List[Visit]
    procedures: List[Procedure]
    matrix: List[List[bool]]
    version: str = '1.0'
    generated_at: str = ''
    study_id: Optional[str] = None
    protocol_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'visits': [v.to_dict() for v in self.visits],
            'procedures': [p.to_dict() for p in self.procedures],
            'matrix': [list(row) for row in self.matrix],
            'metadata': _drop_none({
                'generatedAt': self.generated_at,
                'version': self.version,
                'studyId': self.study_id,
                'protocolId': self.protocol_id,
            }),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TopMatrix':
        meta = data.get('metadata', {})
        return cls(
            visits=[Visit.from_dict(v) for v in data.get('visits', [])],
            procedures=[Procedure.from_dict(p) for p in data.get('procedures', [])],
            matrix=[[bool(c) for c in row] for row in data.get('matrix', [])],
            version=meta.get('version', '1.0'),
            generated_at=meta.get('generatedAt', ''),
            study_id=meta.get('studyId'),
            protocol_id=meta.get('protocolId'),
        )


# ---------------------------------------------------------------------------
# Validation issues and changes
# ---------------------------------------------------------------------------

@dataclass
class FlowChange:
    """Typed structural edit descriptor."""
    type: ChangeType
    target_id: str
    new_value: Any = None
    old_value: Any = None
    field: Optional[str] = None
    reason: str = ''

    @property
    def targets_document(self) -> bool:
        return self.target_id in DOCUMENT_TARGETS

    def to_dict(self) -> dict:
        new_value = self.new_value.to_dict() if hasattr(self.new_value, 'to_dict') else self.new_value
        old_value = self.old_value.to_dict() if hasattr(self.old_value, 'to_dict') else self.old_value
        return _drop_none({
            'type': self.type.value,
            'targetId': self.target_id,
            'field': self.field,
            'oldValue': old_value,
            'newValue': new_value,
            'reason': self.reason,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FlowChange':
        return cls(
            type=ChangeType(data['type']),
            target_id=data['targetId'],
            new_value=data.get('newValue'),
            old_value=data.get('oldValue'),
            field=data.get('field'),
            reason=data.get('reason', ''),
        )


@dataclass
class FlowSuggestion:
    id: str
    label: str
    auto_fixable: bool
    changes: List[FlowChange] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'label': self.label,
            'autoFixable': self.auto_fixable,
            'changes': [c.to_dict() for c in self.changes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FlowSuggestion':
        return cls(
            id=data['id'],
            label=data.get('label', ''),
            auto_fixable=bool(data.get('autoFixable', False)),
            changes=[FlowChange.from_dict(c) for c in data.get('changes', [])],
        )


@dataclass
class FlowIssue:
    """A single validation finding."""
    id: str
    code: str
    severity: Severity
    category: IssueCategory
    message: str
    details: str = ''
    affected_visits: List[str] = field(default_factory=list)
    affected_procedures: List[str] = field(default_factory=list)
    suggestions: List[FlowSuggestion] = field(default_factory=list)

    @property
    def auto_fixable(self) -> bool:
        return any(s.auto_fixable for s in self.suggestions)

    def to_dict(self) -> dict:
        d = {
            'id': self.id,
            'code': self.code,
            'severity': self.severity.value,
            'category': self.category.value,
            'message': self.message,
        }
        if self.details:
            d['details'] = self.details
        if self.affected_visits:
            d['affectedVisits'] = list(self.affected_visits)
        if self.affected_procedures:
            d['affectedProcedures'] = list(self.affected_procedures)
        if self.suggestions:
            d['suggestions'] = [s.to_dict() for s in self.suggestions]
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FlowIssue':
        return cls(
            id=data['id'],
            code=data.get('code', data['id']),
            severity=Severity(data['severity']),
            category=IssueCategory(data['category']),
            message=data.get('message', ''),
            details=data.get('details', ''),
            affected_visits=list(data.get('affectedVisits', [])),
            affected_procedures=list(data.get('affectedProcedures', [])),
            suggestions=[FlowSuggestion.from_dict(s) for s in data.get('suggestions', [])],
        )


@dataclass
class FlowValidationResult:
    """Ordered issue list with severity counts and a by-category index."""
    issues: List[FlowIssue] = field(default_factory=list)
    validated_at: str = ''
    duration_ms: float = 0.0

    def count(self, severity: Severity) -> int:
        return sum(1 for i in self.issues if i.severity == severity)

    @property
    def summary(self) -> Dict[str, int]:
        return {
            'total': len(self.issues),
            'critical': self.count(Severity.CRITICAL),
            'error': self.count(Severity.ERROR),
            'warning': self.count(Severity.WARNING),
            'info': self.count(Severity.INFO),
        }

    @property
    def by_category(self) -> Dict[str, List[FlowIssue]]:
        grouped: Dict[str, List[FlowIssue]] = {}
        for issue in self.issues:
            grouped.setdefault(issue.category.value, []).append(issue)
        return grouped

    @property
    def has_blocking_issues(self) -> bool:
        return self.count(Severity.CRITICAL) > 0 or self.count(Severity.ERROR) > 0

    def issue_ids(self) -> List[str]:
        return [i.id for i in self.issues]

    def to_dict(self) -> dict:
        return {
            'issues': [i.to_dict() for i in self.issues],
            'summary': self.summary,
            'byCategory': {k: [i.id for i in v] for k, v in self.by_category.items()},
            'metadata': {
                'validatedAt': self.validated_at,
                'duration': round(self.duration_ms, 3),
            },
        }


# ---------------------------------------------------------------------------
# Aggregate root
# ---------------------------------------------------------------------------

@dataclass
class StudyFlow:
    """Visits, procedures, cycles and the ToP for one protocol.

    Changed only through ``autofix.apply_changes_to_flow``, which returns a
    new instance; regeneration replaces the whole value.
    """
    id: str
    protocol_id: str
    visits: List[Visit]
    procedures: List[Procedure]
    top_matrix: TopMatrix
    total_duration: int
    study_id: Optional[str] = None
    cycles: List[TreatmentCycle] = field(default_factory=list)
    generated_at: str = ''
    version: str = '1.0'
    source: FlowSource = FlowSource.GENERATED

    def visit_by_id(self, visit_id: str) -> Optional[Visit]:
        return next((v for v in self.visits if v.id == visit_id), None)

    def procedure_by_id(self, procedure_id: str) -> Optional[Procedure]:
        return next((p for p in self.procedures if p.id == procedure_id), None)

    def to_dict(self) -> dict:
        d = {
            'id': self.id,
            'studyId': self.study_id,
            'protocolId': self.protocol_id,
            'visits': [v.to_dict() for v in self.visits],
            'procedures': [p.to_dict() for p in self.procedures],
            'topMatrix': self.top_matrix.to_dict(),
            'totalDuration': self.total_duration,
            'metadata': {
                'generatedAt': self.generated_at,
                'version': self.version,
                'source': self.source.value,
            },
        }
        if self.cycles:
            d['cycles'] = [c.to_dict() for c in self.cycles]
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StudyFlow':
        meta = data.get('metadata', {})
        return cls(
            id=data['id'],
            study_id=data.get('studyId'),
            protocol_id=data.get('protocolId', ''),
            visits=[Visit.from_dict(v) for v in data.get('visits', [])],
            procedures=[Procedure.from_dict(p) for p in data.get('procedures', [])],
            top_matrix=TopMatrix.from_dict(data.get('topMatrix', {})),
            total_duration=int(data.get('totalDuration', 0)),
            cycles=[TreatmentCycle.from_dict(c) for c in data.get('cycles', [])],
            generated_at=meta.get('generatedAt', ''),
            version=meta.get('version', '1.0'),
            source=FlowSource(meta.get('source', FlowSource.IMPORTED.value)),
        )


# ---------------------------------------------------------------------------
# Auto-fix request / result
# ---------------------------------------------------------------------------

@dataclass
class AutoFixRequest:
    issue_ids: List[str]
    strategy: FixStrategy = FixStrategy.CONSERVATIVE
    # Issues from the validation pass; fixers read their affected ids.
    issues: List[FlowIssue] = field(default_factory=list)


@dataclass
class AutoFixResult:
    applied_changes: List[FlowChange]
    updated_flow: StudyFlow
    rejected_changes: List[FlowChange] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    fixed_issue_ids: List[str] = field(default_factory=list)
    remaining_issues: List[FlowIssue] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        return {
            'changesApplied': len(self.applied_changes),
            'changesRejected': len(self.rejected_changes),
            'issuesFixed': len(self.fixed_issue_ids),
            'issuesRemaining': len(self.remaining_issues),
        }

    def to_dict(self) -> dict:
        return {
            'appliedChanges': [c.to_dict() for c in self.applied_changes],
            'rejectedChanges': [c.to_dict() for c in self.rejected_changes],
            'errors': list(self.errors),
            'warnings': list(self.warnings),
            'updatedFlow': self.updated_flow.to_dict(),
            'fixedIssueIds': list(self.fixed_issue_ids),
            'remainingIssues': [i.to_dict() for i in self.remaining_issues],
            'summary': self.summary,
        }
