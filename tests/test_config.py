"""
Tests for core.config — engine settings from defaults, files and environment.
"""

import json

import pytest

from core.config import FlowEngineConfig, load_config, save_config
from core.errors import ConfigurationError


class TestDefaults:

    def test_thresholds(self):
        config = FlowEngineConfig()
        assert config.match_threshold == 0.5
        assert config.low_confidence_threshold == 0.7
        assert config.extraction_threshold == 0.6
        assert (config.jaccard_weight, config.cosine_weight, config.levenshtein_weight) == (0.3, 0.4, 0.3)
        assert config.cycle_match_ratio == 0.6
        assert config.default_eot_day == 84

    def test_from_dict_ignores_unknown_keys(self):
        config = FlowEngineConfig.from_dict({"match_threshold": 0.4, "nope": 1})
        assert config.match_threshold == 0.4

    def test_merge_skips_none(self):
        config = FlowEngineConfig().merge({"max_endpoints": 3, "default_eot_day": None})
        assert config.max_endpoints == 3
        assert config.default_eot_day == 84


class TestLoadConfig:

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("match_threshold: 0.45\ndefault_duration_weeks: 12\n", encoding="utf-8")
        config = load_config(str(path), use_env=False)
        assert config.match_threshold == 0.45
        assert config.default_duration_weeks == 12

    def test_json_file(self, tmp_path):
        path = tmp_path / "engine.json"
        path.write_text(json.dumps({"follow_up_offset_days": 14}), encoding="utf-8")
        assert load_config(str(path), use_env=False).follow_up_offset_days == 14

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(str(tmp_path / "absent.yaml"))

    def test_non_mapping_raises(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_config(str(path), use_env=False)

    def test_cwd_search(self, tmp_path):
        (tmp_path / "studyflow_config.yaml").write_text("max_endpoints: 2\n", encoding="utf-8")
        assert load_config(use_env=False).max_endpoints == 2

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("STUDYFLOW_MATCH_THRESHOLD", "0.65")
        monkeypatch.setenv("STUDYFLOW_DEFAULT_EOT_DAY", "112")
        config = load_config(search_cwd=False)
        assert config.match_threshold == 0.65
        assert config.default_eot_day == 112

    def test_env_bad_value(self, monkeypatch):
        monkeypatch.setenv("STUDYFLOW_MAX_ENDPOINTS", "many")
        with pytest.raises(ConfigurationError, match="STUDYFLOW_MAX_ENDPOINTS"):
            load_config(search_cwd=False)


class TestSaveConfig:

    @pytest.mark.parametrize("name", ["out.yaml", "out.json"])
    def test_save_and_reload(self, tmp_path, name):
        path = tmp_path / name
        save_config(FlowEngineConfig(ngram_size=3), str(path))
        assert load_config(str(path), use_env=False).ngram_size == 3
