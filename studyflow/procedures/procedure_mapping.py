"""
Procedure Mapping

Resolves free-text procedure names to catalog entries.

1. Exact case-insensitive match on name, localized name or a synonym
   short-circuits with confidence 1.0.
2. Otherwise every entry is scored with ``combined_similarity`` against each
   of its names (maximum wins); entries above the match threshold are
   ranked, the best becomes the match and the next ones are surfaced as
   alternatives.  Matches under the low-confidence threshold are flagged.

A text with no candidate above the threshold yields an explicit no-match
result; mapping never raises for bad input.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from core.config import FlowEngineConfig, get_config
from studyflow.procedures.procedure_catalog import ProcedureCatalog, get_procedure_catalog
from studyflow.procedures.similarity import combined_similarity
from studyflow.schema import MappingAlternative, ProcedureCatalogEntry, ProcedureMappingResult

logger = logging.getLogger(__name__)

MIN_FRAGMENT_LENGTH = 3
_FRAGMENT_SPLIT_RE = re.compile(r"[\n,;]")


def _find_exact_match(text: str, catalog: ProcedureCatalog) -> Optional[ProcedureCatalogEntry]:
    lower = text.lower()
    for entry in catalog:
        if any(name.lower() == lower for name in entry.match_names()):
            return entry
    return None


def calculate_match_confidence(
    text: str,
    entry: ProcedureCatalogEntry,
    config: Optional[FlowEngineConfig] = None,
) -> float:
    """Best combined similarity between text and any name of the entry."""
    config = config or get_config()
    weights = (config.jaccard_weight, config.cosine_weight, config.levenshtein_weight)
    return max(
        combined_similarity(text, name, weights=weights, ngram_size=config.ngram_size)
        for name in entry.match_names()
    )


def _rank_fuzzy_matches(
    text: str,
    catalog: ProcedureCatalog,
    config: FlowEngineConfig,
) -> List[Tuple[ProcedureCatalogEntry, float]]:
    scored = []
    for entry in catalog:
        confidence = calculate_match_confidence(text, entry, config)
        if confidence > config.match_threshold:
            scored.append((entry, confidence))
    # sorted() is stable: equal scores keep catalog order
    return sorted(scored, key=lambda pair: pair[1], reverse=True)


def map_procedure(
    text: str,
    catalog: Optional[ProcedureCatalog] = None,
    config: Optional[FlowEngineConfig] = None,
) -> ProcedureMappingResult:
    """Map one procedure text to the catalog."""
    catalog = catalog or get_procedure_catalog()
    config = config or get_config()
    cleaned = (text or "").strip()

    if not cleaned:
        return ProcedureMappingResult(original_text=text, matched_procedure=None, confidence=0.0)

    exact = _find_exact_match(cleaned, catalog)
    if exact is not None:
        return ProcedureMappingResult(original_text=text, matched_procedure=exact, confidence=1.0)

    ranked = _rank_fuzzy_matches(cleaned, catalog, config)
    if not ranked:
        logger.debug(f"No catalog match for {cleaned!r}")
        return ProcedureMappingResult(original_text=text, matched_procedure=None, confidence=0.0)

    best, confidence = ranked[0]
    alternatives = [
        MappingAlternative(procedure=entry, confidence=score)
        for entry, score in ranked[1:1 + config.max_alternatives]
    ]
    low = confidence < config.low_confidence_threshold
    if low:
        logger.debug(f"Low-confidence match {cleaned!r} -> {best.id} ({confidence:.2f})")
    return ProcedureMappingResult(
        original_text=text,
        matched_procedure=best,
        confidence=confidence,
        alternatives=alternatives,
        low_confidence=low,
    )


def map_procedures(
    texts: List[str],
    catalog: Optional[ProcedureCatalog] = None,
    config: Optional[FlowEngineConfig] = None,
) -> List[ProcedureMappingResult]:
    return [map_procedure(t, catalog, config) for t in texts]


def extract_procedures_from_text(
    text: str,
    catalog: Optional[ProcedureCatalog] = None,
    config: Optional[FlowEngineConfig] = None,
) -> List[ProcedureMappingResult]:
    """Map each newline/comma/semicolon separated fragment of protocol prose.

    Fragments shorter than three characters are skipped; only results above
    the extraction threshold are returned.
    """
    config = config or get_config()
    results = []
    for fragment in _FRAGMENT_SPLIT_RE.split(text or ""):
        fragment = fragment.strip()
        if len(fragment) < MIN_FRAGMENT_LENGTH:
            continue
        result = map_procedure(fragment, catalog, config)
        if result.confidence > config.extraction_threshold:
            results.append(result)
    logger.debug(f"Extracted {len(results)} procedure(s) from text")
    return results


def validate_mapping(
    result: ProcedureMappingResult,
    config: Optional[FlowEngineConfig] = None,
) -> Dict[str, Any]:
    """Check a mapping result for no-match, low confidence and ambiguity.

    Returns ``{"valid": bool, "warnings": [...]}``.
    """
    config = config or get_config()
    warnings: List[str] = []

    if result.matched_procedure is None:
        warnings.append(f'No match found for "{result.original_text}"')
        return {"valid": False, "warnings": warnings}

    if result.confidence < config.low_confidence_threshold:
        warnings.append(
            f"Low confidence match ({result.confidence * 100:.0f}%) for "
            f'"{result.original_text}" → "{result.matched_procedure.name}"'
        )

    if result.alternatives and \
            result.alternatives[0].confidence > result.confidence - config.ambiguity_margin:
        warnings.append(
            f'Ambiguous match: "{result.matched_procedure.name}" vs '
            f'"{result.alternatives[0].procedure.name}"'
        )

    return {"valid": result.confidence >= config.low_confidence_threshold, "warnings": warnings}


def get_mapping_stats(results: List[ProcedureMappingResult]) -> Dict[str, int]:
    """Counts by confidence band: high ≥0.8, medium 0.6–0.8, low <0.6."""
    return {
        "total": len(results),
        "matched": sum(1 for r in results if r.matched),
        "highConfidence": sum(1 for r in results if r.confidence >= 0.8),
        "mediumConfidence": sum(1 for r in results if 0.6 <= r.confidence < 0.8),
        "lowConfidence": sum(1 for r in results if 0 < r.confidence < 0.6),
        "unmatched": sum(1 for r in results if not r.matched),
    }
