"""
Tests for studyflow.procedures.procedure_catalog — YAML reference catalog.
"""

import pytest
import yaml

from core.errors import CatalogError
from studyflow.procedures.procedure_catalog import (
    create_procedure_from_catalog,
    get_catalog_stats,
    get_procedure_by_id,
    get_procedure_catalog,
    get_procedures_by_category,
    get_procedures_for_endpoint,
    load_procedure_catalog,
    search_procedures,
    validate_catalog,
)
from studyflow.schema import CodeSystem, ProcedureCategory


class TestShippedCatalog:

    def test_loads_and_validates(self):
        catalog = get_procedure_catalog()
        assert len(catalog) == 176
        assert catalog.schema_version == "1.0"

    def test_ids_unique_and_prefixed(self):
        ids = [e.id for e in get_procedure_catalog()]
        assert len(ids) == len(set(ids))
        assert all(i.startswith("proc_") for i in ids)

    def test_hba1c_entry(self):
        entry = get_procedure_by_id("proc_hba1c")
        assert entry.name == "HbA1c"
        assert entry.category == ProcedureCategory.EFFICACY
        assert "glycated hemoglobin" in entry.synonyms
        assert entry.standard_code.system == CodeSystem.LOINC
        assert "diabetes" in entry.linked_endpoint_types

    def test_unknown_id(self):
        assert get_procedure_by_id("proc_nope") is None

    def test_invasive_flag(self):
        assert get_procedure_by_id("proc_liver_biopsy").invasive is True
        assert get_procedure_by_id("proc_vital_signs").invasive is False


class TestQueries:

    def test_by_category(self):
        imaging = get_procedures_by_category(ProcedureCategory.IMAGING)
        assert "proc_mri" in {e.id for e in imaging}
        assert all(e.category == ProcedureCategory.IMAGING for e in imaging)

    def test_search_matches_synonyms(self):
        ids = {e.id for e in search_procedures("glycohemoglobin")}
        assert ids == {"proc_hba1c"}

    def test_search_localized_name(self):
        assert "proc_hba1c" in {e.id for e in search_procedures("гликированный")}

    def test_search_blank(self):
        assert search_procedures("   ") == []

    def test_for_endpoint(self):
        ids = {e.id for e in get_procedures_for_endpoint("glycemic_control")}
        assert "proc_hba1c" in ids

    def test_stats(self):
        stats = get_catalog_stats()
        assert stats["total"] == 176
        assert sum(stats["byCategory"].values()) == 176
        assert stats["invasive"] >= 1

    def test_create_procedure(self):
        proc = create_procedure_from_catalog(get_procedure_by_id("proc_liver_biopsy"), ["ep_0"], True)
        assert proc.id == "proc_liver_biopsy"
        assert proc.linked_endpoints == ["ep_0"]
        assert proc.required is True
        assert proc.invasive is True


class TestValidateCatalog:

    def _raw(self, **overrides):
        proc = {"id": "proc_a", "name": "A", "category": "labs"}
        proc.update(overrides)
        return {"schema_version": "1.0", "procedures": [proc]}

    def test_valid(self):
        assert validate_catalog(self._raw()) == []

    def test_not_mapping(self):
        assert validate_catalog([]) == ["catalog must be a mapping"]

    def test_bad_prefix(self):
        errors = validate_catalog(self._raw(id="a"))
        assert any("must start with 'proc_'" in e for e in errors)

    def test_bad_category(self):
        assert any(".category" in e for e in validate_catalog(self._raw(category="magic")))

    def test_duplicate_id(self):
        raw = self._raw()
        raw["procedures"].append(dict(raw["procedures"][0]))
        assert any("duplicate id" in e for e in validate_catalog(raw))

    def test_bad_code_system(self):
        errors = validate_catalog(self._raw(standard_code={"system": "ICD", "code": "1"}))
        assert any("not recognized" in e for e in errors)

    def test_bad_flag(self):
        assert any(".invasive" in e for e in validate_catalog(self._raw(invasive="yes")))

    def test_load_raises_catalog_error(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"procedures": [{"id": "x"}]}), encoding="utf-8")
        with pytest.raises(CatalogError) as exc:
            load_procedure_catalog(str(path))
        assert exc.value.source == "bad.yaml"

    def test_load_custom(self, tmp_path):
        path = tmp_path / "mini.yaml"
        path.write_text(yaml.safe_dump(self._raw(synonyms=["aa"])), encoding="utf-8")
        catalog = load_procedure_catalog(str(path))
        assert len(catalog) == 1
        assert "proc_a" in catalog
        assert catalog.get("proc_a").synonyms == ("aa",)
