"""
Logging Setup for the Telemetry Pipeline

Console output for operators, an appending trace file whose level is
selected through ENABLE_TELEMETRY_DEBUG, and optional JSON lines carrying
the run correlation ID.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from typing import Mapping, Optional

from src.utils.correlation import correlation_id_filter

TRACE_FILE = "telemetry2db.trace.log"
DEBUG_ENV = "ENABLE_TELEMETRY_DEBUG"


class StructuredJSONFormatter(logging.Formatter):
    """JSON formatter with correlation ID support."""

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'correlation_id': getattr(record, 'correlation_id', None),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if hasattr(record, 'table'):
            log_data['table'] = record.table
        if hasattr(record, 'step'):
            log_data['step'] = record.step

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def trace_level(value: Optional[str]) -> int:
    """Map the ENABLE_TELEMETRY_DEBUG value to a logging level."""
    if value in ("debug", "1"):
        return logging.DEBUG
    if value in ("info", "2"):
        return logging.INFO
    return logging.WARNING


def configure_logging(
    verbose: bool = False,
    environ: Optional[Mapping[str, str]] = None,
    logger_name: str = "src"
) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        verbose: Also show DEBUG messages on the console
        environ: Environment to read (defaults to os.environ)
        logger_name: Logger to configure

    Returns:
        The configured logger
    """
    env = os.environ if environ is None else environ
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(logging.Formatter(
        '[%(asctime)s] %(levelname)s - %(message)s',
        datefmt='%Y-%m-%dT%H:%M:%S'
    ))
    logger.addHandler(console_handler)

    path = os.path.join(env.get("LOGPATH") or tempfile.gettempdir(), TRACE_FILE)
    try:
        file_handler = logging.FileHandler(path, mode="a")
    except OSError as e:
        logger.warning(f"Error opening trace log {path}: {e}")
    else:
        file_handler.setLevel(trace_level(env.get(DEBUG_ENV)))
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s %(name)s: %(message)s',
            datefmt='%Y-%m-%dT%H:%M:%S'
        ))
        logger.addHandler(file_handler)

    if str(env.get('JSON_LOGGING', 'false')).lower() == 'true':
        json_handler = logging.StreamHandler()
        json_handler.setFormatter(StructuredJSONFormatter())
        json_handler.addFilter(correlation_id_filter)
        logger.addHandler(json_handler)

    logger.debug(f"Logging initiated, trace file {path}")
    return logger
