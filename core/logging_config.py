"""
Logging setup for the Study Flow Engine.

Library modules only call ``logging.getLogger(__name__)``; ``main.py`` installs
handlers through :func:`configure_logging`. Records may carry flow context
(``flow_id``, ``rule``, ``issue_count``, ``duration_ms``), attached with
``extra=`` or through :class:`FlowLoggerAdapter`.

Console lines read ``[WARN] (flow_P-001/MISSING_BASELINE) message``; JSON lines
carry the same context as top-level keys.
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

# Record attributes promoted into JSON output when set
CONTEXT_FIELDS: Tuple[str, ...] = ("flow_id", "rule", "issue_count", "duration_ms")

# Third-party loggers held at WARNING or above
QUIET_LIBRARIES: Tuple[str, ...] = ("openpyxl", "docx")

_LEVEL_STYLES = {
    logging.DEBUG: ("DEBUG", "\033[90m"),
    logging.INFO: ("INFO", ""),
    logging.WARNING: ("WARN", "\033[33m"),
    logging.ERROR: ("ERROR", "\033[31m"),
    logging.CRITICAL: ("CRIT", "\033[1;31m"),
}
_RESET = "\033[0m"


def _record_context(record: logging.LogRecord) -> Dict[str, Any]:
    context = {}
    for name in CONTEXT_FIELDS:
        value = getattr(record, name, None)
        if value is not None and value != "":
            context[name] = value
    return context


def _stream_supports_color(stream) -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


class JSONFormatter(logging.Formatter):
    """One JSON object per record: ts, level, logger, msg, flow context, error."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.name != "root":
            entry["module"] = record.module
        entry.update(_record_context(record))

        exc = record.exc_info[1] if record.exc_info else None
        if exc is not None:
            error = {"type": type(exc).__name__, "message": str(exc)}
            # StudyFlowError subclasses carry their own flow/rule/cause details
            to_dict = getattr(exc, "to_dict", None)
            if callable(to_dict):
                details = to_dict()
                error.update({k: v for k, v in details.items() if k not in ("error_type", "message")})
            entry["error"] = error
        return json.dumps(entry, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """``[LEVEL] (flow/rule) message``, coloured only when writing to a terminal."""

    def __init__(self, use_color: Optional[bool] = None):
        super().__init__()
        self.use_color = _stream_supports_color(sys.stderr) if use_color is None else use_color

    def format(self, record: logging.LogRecord) -> str:
        label, color = _LEVEL_STYLES.get(record.levelno, (record.levelname, ""))
        prefix = f"[{label}]"
        if self.use_color and color:
            prefix = f"{color}{prefix}{_RESET}"

        scope = "/".join(
            str(value) for value in (getattr(record, "flow_id", ""), getattr(record, "rule", ""))
            if value
        )
        message = record.getMessage()
        line = f"{prefix} ({scope}) {message}" if scope else f"{prefix} {message}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _build_handler(handler: logging.Handler, formatter: logging.Formatter, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def configure_logging(
    *,
    json_mode: bool = False,
    log_file: Optional[str] = None,
    level: int = logging.INFO,
    quiet: bool = False,
) -> None:
    """
    Replace the root handlers with the engine's console and file handlers.

    Args:
        json_mode: JSON lines on stderr instead of the console format.
        log_file: Also append JSON lines to this file; parent folders are created.
        level: Threshold for the root logger and every handler.
        quiet: No stderr handler; only ``log_file`` (if any) receives records.
    """
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if isinstance(handler, logging.FileHandler):
            handler.close()

    if not quiet:
        formatter = JSONFormatter() if json_mode else ConsoleFormatter()
        root.addHandler(_build_handler(logging.StreamHandler(sys.stderr), formatter, level))

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        root.addHandler(_build_handler(logging.FileHandler(path, encoding="utf-8"), JSONFormatter(), level))

    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


class FlowLoggerAdapter(logging.LoggerAdapter):
    """Stamps flow context on every record; explicit ``extra`` values win."""

    def process(self, msg, kwargs):
        extra = kwargs.setdefault("extra", {})
        extra.setdefault("flow_id", self.extra.get("flow_id", ""))
        extra.setdefault("rule", self.extra.get("rule", ""))
        for name in CONTEXT_FIELDS[2:]:
            if name in self.extra:
                extra.setdefault(name, self.extra[name])
        return msg, kwargs

    def for_rule(self, rule: str) -> "FlowLoggerAdapter":
        """Same flow context, scoped to one validation rule."""
        return FlowLoggerAdapter(self.logger, {**self.extra, "rule": rule})
