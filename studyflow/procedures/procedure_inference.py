"""
Procedure Inference

Derives the procedures an endpoint needs from its free-text name:

    endpoint name ──keyword rules──▶ categories ──category table──▶ procedure ids

Keyword rules, the category → procedure table and the standard per-stage
procedure sets live in ``inference_rules.yaml`` and are loaded once.
Every endpoint also receives the ``safety`` category.  Procedures inferred
for a primary endpoint are required; when several endpoints share a
procedure, ``required`` is OR-ed across them and never downgraded.
"""

import logging
import os
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from core.errors import CatalogError
from studyflow.procedures.procedure_catalog import (
    ProcedureCatalog,
    create_procedure_from_catalog,
    get_procedure_catalog,
)
from studyflow.schema import Endpoint, EndpointType, Procedure, VisitType

logger = logging.getLogger(__name__)

_RULES_PATH = os.path.join(os.path.dirname(__file__), "inference_rules.yaml")

STANDARD_SET_NAMES = ("screening", "baseline", "safety_monitoring", "end_of_treatment")


# ---------------------------------------------------------------------------
# Data classes: typed views over the YAML rules
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class KeywordRule:
    """Adds ``categories`` when any keyword stem or whole word is found."""
    categories: Tuple[str, ...]
    keywords: Tuple[str, ...] = ()
    words: Tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        lower = text.lower()
        if any(k in lower for k in self.keywords):
            return True
        if self.words:
            pattern = r"(?<!\w)(?:" + "|".join(re.escape(w) for w in self.words) + r")(?!\w)"
            return re.search(pattern, lower) is not None
        return False


@dataclass
class InferenceRules:
    """Parsed inference configuration."""
    schema_version: str
    always_include: Tuple[str, ...] = ()
    keyword_rules: Tuple[KeywordRule, ...] = ()
    _category_procedures: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    _standard_sets: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    _visit_type_procedures: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    def categories(self) -> List[str]:
        return list(self._category_procedures)

    def procedures_for_category(self, category: str) -> Tuple[str, ...]:
        return self._category_procedures.get(category, ())

    def standard_set(self, name: str) -> Tuple[str, ...]:
        return self._standard_sets.get(name, ())

    def procedures_for_visit_type(self, visit_type: VisitType) -> Tuple[str, ...]:
        return self._visit_type_procedures.get(VisitType(visit_type).value, ())


# ---------------------------------------------------------------------------
# Parser / validator
# ---------------------------------------------------------------------------

def _parse_rules(raw: Dict[str, Any]) -> InferenceRules:
    return InferenceRules(
        schema_version=str(raw.get("schema_version", "1.0")),
        always_include=tuple(raw.get("always_include", []) or []),
        keyword_rules=tuple(
            KeywordRule(
                categories=tuple(r["categories"]),
                keywords=tuple(str(k).lower() for k in r.get("keywords", []) or []),
                words=tuple(str(w).lower() for w in r.get("words", []) or []),
            )
            for r in raw.get("keyword_rules", [])
        ),
        _category_procedures={
            str(k): tuple(v) for k, v in (raw.get("category_procedures") or {}).items()
        },
        _standard_sets={
            str(k): tuple(v) for k, v in (raw.get("standard_sets") or {}).items()
        },
        _visit_type_procedures={
            str(k): tuple(v) for k, v in (raw.get("visit_type_procedures") or {}).items()
        },
    )


_VALID_VISIT_TYPES = {t.value for t in VisitType}


def validate_inference_rules(raw: Any, catalog: Optional[ProcedureCatalog] = None) -> List[str]:
    """Validate raw rules YAML; procedure ids are checked when a catalog is given.

    Returns a list of error strings (empty = valid).
    """
    errors: List[str] = []
    if not isinstance(raw, dict):
        return ["inference rules must be a mapping"]

    rules = raw.get("keyword_rules")
    if not isinstance(rules, list):
        errors.append("'keyword_rules' must be a list")
        rules = []

    table = raw.get("category_procedures")
    if not isinstance(table, dict):
        errors.append("'category_procedures' must be a mapping")
        table = {}

    for i, rule in enumerate(rules):
        prefix = f"keyword_rules[{i}]"
        if not isinstance(rule, dict):
            errors.append(f"{prefix}: must be a mapping")
            continue
        cats = rule.get("categories")
        if not isinstance(cats, list) or not cats:
            errors.append(f"{prefix}.categories: must be a non-empty list")
            cats = []
        if not rule.get("keywords") and not rule.get("words"):
            errors.append(f"{prefix}: needs 'keywords' or 'words'")
        for cat in cats:
            if cat not in table:
                errors.append(f"{prefix}: category '{cat}' has no entry in category_procedures")

    for cat in raw.get("always_include", []) or []:
        if cat not in table:
            errors.append(f"always_include: category '{cat}' has no entry in category_procedures")

    def _check_ids(where: str, ids: Any) -> None:
        if not isinstance(ids, list):
            errors.append(f"{where}: must be a list")
            return
        if catalog is None:
            return
        for proc_id in ids:
            if proc_id not in catalog:
                errors.append(f"{where}: unknown procedure '{proc_id}'")

    for cat, ids in table.items():
        _check_ids(f"category_procedures.{cat}", ids)

    for name, ids in (raw.get("standard_sets") or {}).items():
        _check_ids(f"standard_sets.{name}", ids)

    for visit_type, ids in (raw.get("visit_type_procedures") or {}).items():
        if visit_type not in _VALID_VISIT_TYPES:
            errors.append(f"visit_type_procedures.{visit_type}: not a visit type")
        _check_ids(f"visit_type_procedures.{visit_type}", ids)

    return errors


def load_inference_rules(path: str = _RULES_PATH,
                         catalog: Optional[ProcedureCatalog] = None) -> InferenceRules:
    """Load, validate, and parse the inference rules.

    Raises CatalogError if the YAML is invalid or names unknown procedures.
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    errors = validate_inference_rules(raw, catalog)
    if errors:
        raise CatalogError(errors, source=os.path.basename(path))

    rules = _parse_rules(raw)
    logger.debug(
        f"Loaded inference rules: {len(rules.keyword_rules)} keyword rules, "
        f"{len(rules.categories())} categories"
    )
    return rules


@lru_cache(maxsize=1)
def get_inference_rules() -> InferenceRules:
    """Get the cached inference rules, checked against the procedure catalog."""
    return load_inference_rules(catalog=get_procedure_catalog())


# ---------------------------------------------------------------------------
# Inference
# ---------------------------------------------------------------------------

def detect_endpoint_categories(endpoint_name: str,
                               rules: Optional[InferenceRules] = None) -> List[str]:
    """Endpoint categories in rule order, deduplicated, ``safety`` last."""
    rules = rules or get_inference_rules()
    found: "OrderedDict[str, None]" = OrderedDict()
    for rule in rules.keyword_rules:
        if rule.matches(endpoint_name or ""):
            for cat in rule.categories:
                found.setdefault(cat, None)
    for cat in rules.always_include:
        found.setdefault(cat, None)
    return list(found)


def infer_procedures_for_endpoint(
    endpoint: Endpoint,
    rules: Optional[InferenceRules] = None,
    catalog: Optional[ProcedureCatalog] = None,
) -> List[Procedure]:
    """Procedures required by a single endpoint, in category-table order."""
    rules = rules or get_inference_rules()
    catalog = catalog or get_procedure_catalog()
    required = endpoint.type == EndpointType.PRIMARY

    ids: "OrderedDict[str, None]" = OrderedDict()
    for cat in detect_endpoint_categories(endpoint.name, rules):
        for proc_id in rules.procedures_for_category(cat):
            ids.setdefault(proc_id, None)

    procedures = []
    for proc_id in ids:
        entry = catalog.get(proc_id)
        if entry is None:
            logger.debug(f"Skipping unknown procedure {proc_id} for endpoint {endpoint.id}")
            continue
        procedures.append(create_procedure_from_catalog(entry, [endpoint.id], required))
    return procedures


def infer_procedures_from_endpoints(
    endpoints: Iterable[Endpoint],
    rules: Optional[InferenceRules] = None,
    catalog: Optional[ProcedureCatalog] = None,
) -> List[Procedure]:
    """Union of inferred procedures, keyed by procedure id.

    First-seen order is kept; linked endpoints accumulate and ``required``
    is OR-ed across all linking endpoints.
    """
    merged: "OrderedDict[str, Procedure]" = OrderedDict()
    for endpoint in endpoints:
        for proc in infer_procedures_for_endpoint(endpoint, rules, catalog):
            existing = merged.get(proc.id)
            if existing is None:
                merged[proc.id] = proc
                continue
            for ep_id in proc.linked_endpoints:
                if ep_id not in existing.linked_endpoints:
                    existing.linked_endpoints.append(ep_id)
            existing.required = existing.required or proc.required

    result = list(merged.values())
    logger.info(f"Inferred {len(result)} procedure(s) from endpoints")
    return result


# ── Standard procedure sets ──────────────────────────────────────────

def _standard_procedures(set_name: str,
                         rules: Optional[InferenceRules] = None,
                         catalog: Optional[ProcedureCatalog] = None) -> List[Procedure]:
    rules = rules or get_inference_rules()
    catalog = catalog or get_procedure_catalog()
    procedures = []
    for proc_id in rules.standard_set(set_name):
        entry = catalog.get(proc_id)
        if entry is not None:
            procedures.append(create_procedure_from_catalog(entry, required=True))
    return procedures


def add_screening_procedures(rules: Optional[InferenceRules] = None,
                             catalog: Optional[ProcedureCatalog] = None) -> List[Procedure]:
    return _standard_procedures("screening", rules, catalog)


def add_baseline_procedures(rules: Optional[InferenceRules] = None,
                            catalog: Optional[ProcedureCatalog] = None) -> List[Procedure]:
    return _standard_procedures("baseline", rules, catalog)


def add_safety_monitoring_procedures(rules: Optional[InferenceRules] = None,
                                     catalog: Optional[ProcedureCatalog] = None) -> List[Procedure]:
    return _standard_procedures("safety_monitoring", rules, catalog)


def add_eot_procedures(rules: Optional[InferenceRules] = None,
                       catalog: Optional[ProcedureCatalog] = None) -> List[Procedure]:
    return _standard_procedures("end_of_treatment", rules, catalog)


def get_inference_summary(procedures: List[Procedure]) -> Dict[str, Any]:
    by_category: Dict[str, int] = {}
    for proc in procedures:
        by_category[proc.category.value] = by_category.get(proc.category.value, 0) + 1
    return {
        "total": len(procedures),
        "required": sum(1 for p in procedures if p.required),
        "optional": sum(1 for p in procedures if not p.required),
        "byCategory": by_category,
        "linkedToEndpoints": sum(1 for p in procedures if p.linked_endpoints),
    }
