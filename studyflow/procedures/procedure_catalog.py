"""
Procedure Catalog Loader

Static reference set of clinical procedures, read from
``procedure_catalog.yaml`` next to this module.  The catalog is loaded,
validated and parsed once; every lookup function takes an optional
``catalog`` argument so callers and tests can inject their own.

Usage:
    from studyflow.procedures.procedure_catalog import get_procedure_by_id

    entry = get_procedure_by_id("proc_hba1c")
    print(entry.name, entry.standard_code)
"""

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

import yaml

from core.errors import CatalogError
from studyflow.schema import (
    CodeSystem,
    Procedure,
    ProcedureCatalogEntry,
    ProcedureCategory,
    StandardCode,
)

logger = logging.getLogger(__name__)

_CATALOG_PATH = os.path.join(os.path.dirname(__file__), "procedure_catalog.yaml")


@dataclass
class ProcedureCatalog:
    """Ordered, id-indexed view over the catalog entries."""
    schema_version: str
    catalog_version: str
    entries: Tuple[ProcedureCatalogEntry, ...] = ()
    _by_id: Dict[str, ProcedureCatalogEntry] = field(default_factory=dict, repr=False)

    def __post_init__(self):
        if not self._by_id:
            self._by_id = {e.id: e for e in self.entries}

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def __contains__(self, procedure_id: str) -> bool:
        return procedure_id in self._by_id

    def get(self, procedure_id: str) -> Optional[ProcedureCatalogEntry]:
        return self._by_id.get(procedure_id)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _parse_entry(raw: Dict[str, Any]) -> ProcedureCatalogEntry:
    code = raw.get("standard_code")
    return ProcedureCatalogEntry(
        id=raw["id"],
        name=raw["name"],
        name_ru=raw.get("name_ru"),
        category=ProcedureCategory(raw["category"]),
        synonyms=tuple(str(s) for s in raw.get("synonyms", []) or []),
        standard_code=StandardCode(CodeSystem(code["system"]), str(code["code"])) if code else None,
        linked_endpoint_types=tuple(raw.get("endpoint_types", []) or []),
        description=raw.get("description", ""),
        duration=raw.get("duration"),
        fasting=bool(raw.get("fasting", False)),
        invasive=bool(raw.get("invasive", False)),
    )


def _parse_catalog(raw: Dict[str, Any]) -> ProcedureCatalog:
    """Parse raw YAML dict into a typed ProcedureCatalog."""
    entries = tuple(_parse_entry(p) for p in raw.get("procedures", []))
    return ProcedureCatalog(
        schema_version=str(raw.get("schema_version", "1.0")),
        catalog_version=str(raw.get("catalog_version", "")),
        entries=entries,
    )


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------

_VALID_CATEGORIES = {c.value for c in ProcedureCategory}
_VALID_CODE_SYSTEMS = {s.value for s in CodeSystem}


def validate_catalog(raw: Any) -> List[str]:
    """Validate raw catalog YAML against structural rules.

    Returns a list of error strings (empty = valid).
    """
    errors: List[str] = []

    if not isinstance(raw, dict):
        return ["catalog must be a mapping"]
    if "schema_version" not in raw:
        errors.append("Missing top-level key: 'schema_version'")

    procedures = raw.get("procedures")
    if not isinstance(procedures, list):
        errors.append("'procedures' must be a list")
        return errors

    seen_ids = set()
    for i, proc in enumerate(procedures):
        prefix = f"procedures[{i}]"
        if not isinstance(proc, dict):
            errors.append(f"{prefix}: must be a mapping")
            continue

        for req in ("id", "name", "category"):
            if req not in proc:
                errors.append(f"{prefix}: missing '{req}'")

        proc_id = proc.get("id")
        if proc_id is not None:
            prefix = f"procedures[{i}] ({proc_id})"
            if not str(proc_id).startswith("proc_"):
                errors.append(f"{prefix}: id must start with 'proc_'")
            if proc_id in seen_ids:
                errors.append(f"{prefix}: duplicate id")
            seen_ids.add(proc_id)

        category = proc.get("category")
        if category is not None and category not in _VALID_CATEGORIES:
            errors.append(f"{prefix}.category: '{category}' not in {sorted(_VALID_CATEGORIES)}")

        for list_key in ("synonyms", "endpoint_types"):
            val = proc.get(list_key)
            if val is not None and not isinstance(val, list):
                errors.append(f"{prefix}.{list_key}: must be a list")

        code = proc.get("standard_code")
        if code is not None:
            if not isinstance(code, dict) or "system" not in code or "code" not in code:
                errors.append(f"{prefix}.standard_code: must have 'system' and 'code'")
            elif code["system"] not in _VALID_CODE_SYSTEMS:
                errors.append(f"{prefix}.standard_code.system: '{code['system']}' not recognized")

        duration = proc.get("duration")
        if duration is not None and (not isinstance(duration, int) or duration < 0):
            errors.append(f"{prefix}.duration: must be a non-negative integer")

        for flag in ("fasting", "invasive"):
            if flag in proc and not isinstance(proc[flag], bool):
                errors.append(f"{prefix}.{flag}: must be boolean")

    return errors


def load_procedure_catalog(path: str = _CATALOG_PATH) -> ProcedureCatalog:
    """Load, validate, and parse the procedure catalog from YAML.

    Raises CatalogError if the YAML is structurally invalid.
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    errors = validate_catalog(raw)
    if errors:
        raise CatalogError(errors, source=os.path.basename(path))

    catalog = _parse_catalog(raw)

    # Shared synonyms make exact matching order-dependent
    owners: Dict[str, str] = {}
    for entry in catalog:
        for name in entry.match_names():
            key = name.lower()
            if key in owners and owners[key] != entry.id:
                logger.warning(f"Catalog name {name!r} used by {owners[key]} and {entry.id}")
            owners.setdefault(key, entry.id)

    logger.debug(f"Loaded procedure catalog {catalog.catalog_version}: {len(catalog)} entries")
    return catalog


@lru_cache(maxsize=1)
def get_procedure_catalog() -> ProcedureCatalog:
    """Get the cached procedure catalog (singleton)."""
    return load_procedure_catalog()


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def get_procedure_by_id(procedure_id: str,
                        catalog: Optional[ProcedureCatalog] = None) -> Optional[ProcedureCatalogEntry]:
    return (catalog or get_procedure_catalog()).get(procedure_id)


def get_procedures_by_category(category: ProcedureCategory,
                               catalog: Optional[ProcedureCatalog] = None) -> List[ProcedureCatalogEntry]:
    category = ProcedureCategory(category)
    return [e for e in (catalog or get_procedure_catalog()) if e.category == category]


def search_procedures(query: str,
                      catalog: Optional[ProcedureCatalog] = None) -> List[ProcedureCatalogEntry]:
    """Case-insensitive substring search over names, localized names and synonyms."""
    needle = query.lower().strip()
    if not needle:
        return []
    return [
        e for e in (catalog or get_procedure_catalog())
        if any(needle in name.lower() for name in e.match_names())
    ]


def get_procedures_for_endpoint(endpoint_type: str,
                                catalog: Optional[ProcedureCatalog] = None) -> List[ProcedureCatalogEntry]:
    """Entries tagged with the given endpoint-category tag."""
    return [e for e in (catalog or get_procedure_catalog()) if endpoint_type in e.linked_endpoint_types]


def get_catalog_stats(catalog: Optional[ProcedureCatalog] = None) -> Dict[str, Any]:
    catalog = catalog or get_procedure_catalog()
    by_category: Dict[str, int] = {}
    for entry in catalog:
        by_category[entry.category.value] = by_category.get(entry.category.value, 0) + 1
    return {
        "total": len(catalog),
        "byCategory": by_category,
        "withStandardCodes": sum(1 for e in catalog if e.standard_code),
        "withEndpointLinks": sum(1 for e in catalog if e.linked_endpoint_types),
        "invasive": sum(1 for e in catalog if e.invasive),
    }


def create_procedure_from_catalog(
    entry: ProcedureCatalogEntry,
    linked_endpoints: Optional[List[str]] = None,
    required: bool = False,
) -> Procedure:
    """Instantiate a runtime Procedure from a catalog entry."""
    metadata: Dict[str, Any] = {"fasting": entry.fasting}
    if entry.duration is not None:
        metadata["duration"] = entry.duration
    if entry.description:
        metadata["description"] = entry.description
    if entry.invasive:
        metadata["invasive"] = True
    return Procedure(
        id=entry.id,
        name=entry.name,
        category=entry.category,
        linked_endpoints=list(linked_endpoints or []),
        required=required,
        standard_code=entry.standard_code,
        metadata=metadata,
    )
