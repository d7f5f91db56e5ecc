"""
Centralized logging for the swap quote engine.

Every component gets its own file under ``logs/<Module_Folder>/``. Provider
payloads, pool selection and final quotes are additionally traced as JSON
lines in ``Deep_Dive_Logs/deep_dive_trace.log`` so one request can be
followed end to end by its ``trace_id``.

Usage:
    from engine_logging.logger_manager import setup_module_logger

    logger = setup_module_logger("quote_aggregator", "quote_aggregator.log",
                                 module_folder="Quote_Aggregator_Logs")
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from config.loader import get_config

_PROJECT_ROOT = Path(__file__).parent.parent

_logging_cfg: dict[str, Any] = get_config().get_app_config().get("logging", {})

_LOG_DIR = str(_PROJECT_ROOT / _logging_cfg.get("log_dir", "logs"))
_CONSOLE = bool(_logging_cfg.get("console", False))
_LEVEL = logging.getLevelName(str(_logging_cfg.get("level", "INFO")).upper())
_MODULE_FOLDERS: dict[str, str] = _logging_cfg.get(
    "module_folders", {"main": "Main_Logs", "deep_dive": "Deep_Dive_Logs"}
)

_TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-18s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# ============================================================================
# FORMATTERS
# ============================================================================


class TraceFormatter(logging.Formatter):
    """One JSON object per line: the ``trace`` extra plus level and logger."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            **getattr(record, "trace", {"message": record.getMessage()}),
        }
        return json.dumps(entry, default=str)


# ============================================================================
# LOGGER FACTORY
# ============================================================================


def create_module_log_directories() -> dict[str, str]:
    """Create ``logs/<folder>`` for every configured module; returns key -> path."""
    created = {}
    for key, folder_name in _MODULE_FOLDERS.items():
        folder_path = os.path.join(_LOG_DIR, folder_name)
        os.makedirs(folder_path, exist_ok=True)
        created[key] = folder_path
    return created


def setup_module_logger(
    name: str,
    log_file: str,
    module_folder: str | None = None,
    json_format: bool = False,
) -> logging.Logger:
    """
    Return the named logger, attaching a file handler on first use.

    Args:
        name: Logger name, one per component.
        log_file: File name inside ``module_folder`` (or ``logs/`` itself).
        module_folder: Subfolder of the log directory, e.g. ``Liquidity_Logs``.
        json_format: Write trace JSON lines instead of text.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    log_path = os.path.join(_LOG_DIR, module_folder or "", log_file)
    os.makedirs(os.path.dirname(log_path), exist_ok=True)

    formatter = TraceFormatter() if json_format else logging.Formatter(_TEXT_FORMAT, _DATE_FORMAT)
    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if _CONSOLE and not json_format:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(_TEXT_FORMAT, _DATE_FORMAT))
        logger.addHandler(stream_handler)

    logger.setLevel(_LEVEL)
    logger.propagate = False
    return logger


_deep_dive_logger: logging.Logger | None = None


def get_deep_dive_logger() -> logging.Logger:
    """Lazily create the JSON trace logger."""
    global _deep_dive_logger
    if _deep_dive_logger is None:
        _deep_dive_logger = setup_module_logger(
            "deep_dive",
            "deep_dive_trace.log",
            module_folder=_MODULE_FOLDERS.get("deep_dive", "Deep_Dive_Logs"),
            json_format=True,
        )
    return _deep_dive_logger


# ============================================================================
# DEEP-DIVE TRACING
# ============================================================================


def _trace(
    event: str, trace_id: str, source_module: str, what: str, why: str, **fields: Any
) -> None:
    get_deep_dive_logger().info(
        "%s %s",
        event,
        trace_id,
        extra={
            "trace": {
                "event": event,
                "trace_id": trace_id,
                "source_module": source_module,
                "what": what,
                "why": why,
                **fields,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        },
    )


def log_data_entry(
    trace_id: str, source_module: str, what: str, why: str, data_type: str, data: Any
) -> None:
    """Trace a provider payload entering the engine."""
    _trace("DATA_ENTRY", trace_id, source_module, what, why, data_type=data_type, data=data)


def log_data_processing(
    trace_id: str,
    source_module: str,
    what: str,
    why: str,
    data_type: str,
    input_data: Any,
    output_data: Any,
) -> None:
    """Trace a selection step: the candidates considered and the one chosen."""
    _trace(
        "DATA_PROCESSING",
        trace_id,
        source_module,
        what,
        why,
        data_type=data_type,
        input_data=input_data,
        output_data=output_data,
    )


def log_data_output(
    trace_id: str,
    source_module: str,
    what: str,
    why: str,
    data_type: str,
    data: Any,
    next_stage: str,
) -> None:
    _trace(
        "DATA_OUTPUT",
        trace_id,
        source_module,
        what,
        why,
        data_type=data_type,
        data=data,
        next_stage=next_stage,
    )
