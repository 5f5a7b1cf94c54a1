"""
Configuration Management for the Study Flow Engine

Holds the tunable thresholds and defaults used across the engine.  The
numbers are empirically chosen heuristics; they are collected here so they
can be adjusted per deployment without touching the algorithms.

Supports YAML/JSON config files, a ``.env`` file and ``STUDYFLOW_*``
environment variables (env takes precedence over the file).
"""

import json
import logging
import os
from dataclasses import dataclass, asdict
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from core.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Default config file locations
CONFIG_LOCATIONS = [
    "studyflow_config.yaml",
    "studyflow_config.json",
    ".studyflow_config.yaml",
    ".studyflow_config.json",
]

ENV_PREFIX = "STUDYFLOW_"


@dataclass
class FlowEngineConfig:
    """Tunable parameters for the Study Flow Engine."""

    # Procedure mapping
    match_threshold: float = 0.5
    low_confidence_threshold: float = 0.7
    extraction_threshold: float = 0.6
    ambiguity_margin: float = 0.1
    max_alternatives: int = 2
    jaccard_weight: float = 0.3
    cosine_weight: float = 0.4
    levenshtein_weight: float = 0.3
    ngram_size: int = 2

    # Visit model
    cycle_match_ratio: float = 0.6
    default_cycle_length: int = 28
    default_eot_day: int = 84
    follow_up_offset_days: int = 30
    screening_day: int = -14

    # Validation
    visit_too_close_days: int = 3
    max_window_ratio: float = 0.5
    window_warning_ratio: float = 0.3
    icf_visit_tolerance: int = 2
    sap_visit_tolerance: int = 1

    # Generation
    default_duration_weeks: int = 24
    max_endpoints: int = 10

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FlowEngineConfig":
        """Create config from dictionary, ignoring unknown keys."""
        valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
        unknown = sorted(k for k in data if k not in valid_fields)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {unknown}")
        filtered = {k: v for k, v in data.items() if k in valid_fields}
        return cls(**filtered)

    def merge(self, overrides: Dict[str, Any]) -> "FlowEngineConfig":
        """Return a copy with the non-None values from ``overrides`` applied."""
        data = self.to_dict()
        for key, value in overrides.items():
            if value is not None and key in data:
                data[key] = value
        return FlowEngineConfig(**data)


def load_config(
    config_path: Optional[str] = None,
    search_cwd: bool = True,
    use_env: bool = True,
) -> FlowEngineConfig:
    """
    Load configuration from file and environment.

    Args:
        config_path: Explicit path to config file
        search_cwd: Whether to search current directory for config files
        use_env: Whether to apply STUDYFLOW_* environment overrides

    Returns:
        FlowEngineConfig with loaded settings
    """
    config = FlowEngineConfig()

    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        config = _load_config_file(path)
        logger.info(f"Loaded config from {path}")
    elif search_cwd:
        for filename in CONFIG_LOCATIONS:
            path = Path(filename)
            if path.exists():
                config = _load_config_file(path)
                logger.info(f"Loaded config from {path}")
                break

    if use_env:
        load_dotenv()
        config = _load_from_env(config)

    return config


def _load_config_file(path: Path) -> FlowEngineConfig:
    """Load config from YAML or JSON file."""
    with open(path, 'r', encoding='utf-8') as f:
        content = f.read()

    try:
        if path.suffix in ('.yaml', '.yml'):
            data = yaml.safe_load(content) or {}
        else:
            data = json.loads(content)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not parse config file {path}", cause=e)

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return FlowEngineConfig.from_dict(data)


def _load_from_env(config: FlowEngineConfig) -> FlowEngineConfig:
    """Override config with STUDYFLOW_<FIELD> environment variables."""
    overrides: Dict[str, Any] = {}
    for field_name in config.__dataclass_fields__:
        env_var = f"{ENV_PREFIX}{field_name.upper()}"
        value = os.environ.get(env_var)
        if value is None:
            continue
        # Convert to the type of the default value
        field_type = type(getattr(config, field_name))
        try:
            if field_type == bool:
                overrides[field_name] = value.lower() in ('true', '1', 'yes')
            elif field_type == float:
                overrides[field_name] = float(value)
            elif field_type == int:
                overrides[field_name] = int(value)
            else:
                overrides[field_name] = value
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid value for {env_var}: {value!r} (expected {field_type.__name__})",
                cause=e,
            )
        logger.debug(f"Config override from {env_var}: {overrides[field_name]}")

    return config.merge(overrides) if overrides else config


def save_config(config: FlowEngineConfig, path: str) -> None:
    """Save config to a YAML or JSON file, chosen by extension."""
    path_obj = Path(path)
    path_obj.parent.mkdir(parents=True, exist_ok=True)
    with open(path_obj, 'w', encoding='utf-8') as f:
        if path_obj.suffix in ('.yaml', '.yml'):
            yaml.safe_dump(config.to_dict(), f, sort_keys=False)
        else:
            json.dump(config.to_dict(), f, indent=2)
    logger.info(f"Saved config to {path_obj}")


@lru_cache(maxsize=1)
def get_config() -> FlowEngineConfig:
    """Get the cached engine config (singleton)."""
    return load_config()
