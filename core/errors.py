"""
StudyFlowError hierarchy for the Study Flow Engine.

Flow diagnostics (validation issues, mapping misses, rejected auto-fix
changes) are returned as data.  These exceptions cover the remaining
cases: bad configuration, broken reference data, and misuse of the
matrix mutation API, so callers and log handlers can categorize a failure
without parsing message strings.

Hierarchy:
    StudyFlowError                      (base — all engine errors)
    ├── ConfigurationError              (bad settings file, bad env override)
    ├── CatalogError                    (procedure catalog / rule YAML invalid)
    ├── FlowStructureError              (matrix edit targets an unknown entity)
    │   ├── VisitNotFoundError          (visit id not in the ToP)
    │   └── ProcedureNotFoundError      (procedure id not in the ToP)
    └── ExportError                     (unsupported format / writer failure)
"""

from typing import List, Optional


class StudyFlowError(Exception):
    """Base exception for all Study Flow Engine errors."""

    def __init__(self, message: str, *, flow_id: Optional[str] = None,
                 rule: Optional[str] = None, cause: Optional[Exception] = None):
        self.flow_id = flow_id
        self.rule = rule
        self.cause = cause
        super().__init__(message)
        if cause and not self.__cause__:
            self.__cause__ = cause

    def to_dict(self) -> dict:
        """Structured representation for logging."""
        d = {
            "error_type": type(self).__name__,
            "message": str(self),
        }
        if self.flow_id:
            d["flow_id"] = self.flow_id
        if self.rule:
            d["rule"] = self.rule
        if self.cause:
            d["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return d


# ── Configuration ────────────────────────────────────────────────────

class ConfigurationError(StudyFlowError):
    """Settings file unreadable or an override value has the wrong type."""
    pass


class CatalogError(StudyFlowError):
    """Reference data YAML failed structural validation."""

    def __init__(self, errors: List[str], *, source: str = "catalog", **kwargs):
        self.errors = errors
        self.source = source
        super().__init__(
            f"{source} has {len(errors)} validation error(s):\n"
            + "\n".join(f"  - {e}" for e in errors),
            **kwargs,
        )

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["errors"] = list(self.errors)
        d["source"] = self.source
        return d


# ── Flow structure ───────────────────────────────────────────────────

class FlowStructureError(StudyFlowError):
    """A matrix edit referenced an entity that is not part of the ToP."""

    def __init__(self, message: str, *, entity_id: str = "", **kwargs):
        self.entity_id = entity_id
        super().__init__(message, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.entity_id:
            d["entity_id"] = self.entity_id
        return d


class VisitNotFoundError(FlowStructureError):
    """Visit id not present in the matrix."""

    def __init__(self, visit_id: str, **kwargs):
        super().__init__(f"Visit {visit_id} not found", entity_id=visit_id, **kwargs)


class ProcedureNotFoundError(FlowStructureError):
    """Procedure id not present in the matrix."""

    def __init__(self, procedure_id: str, **kwargs):
        super().__init__(f"Procedure {procedure_id} not found", entity_id=procedure_id, **kwargs)


# ── Export ───────────────────────────────────────────────────────────

class ExportError(StudyFlowError):
    """Export format not supported or the writer backend failed."""
    pass
