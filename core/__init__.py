"""
Core utilities for the Study Flow Engine.

Shared, domain-independent pieces used by every ``studyflow`` subpackage:
- Error hierarchy
- Logging configuration
- Engine configuration (file + environment)
"""

from .errors import (
    StudyFlowError,
    ConfigurationError,
    CatalogError,
    FlowStructureError,
    VisitNotFoundError,
    ProcedureNotFoundError,
    ExportError,
)
from .logging_config import configure_logging, FlowLoggerAdapter
from .config import (
    FlowEngineConfig,
    load_config,
    save_config,
    get_config,
)

__all__ = [
    # Errors
    "StudyFlowError",
    "ConfigurationError",
    "CatalogError",
    "FlowStructureError",
    "VisitNotFoundError",
    "ProcedureNotFoundError",
    "ExportError",
    # Logging
    "configure_logging",
    "FlowLoggerAdapter",
    # Configuration
    "FlowEngineConfig",
    "load_config",
    "save_config",
    "get_config",
]
