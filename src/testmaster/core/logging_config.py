"""
Logging configuration for TestMaster.

This module provides structured logging with separate rotating files for
healing operations and errors, plus a contextual adapter used by the
healing coordinator and the testing orchestrators.
"""

import logging
import logging.handlers
import json
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import asdict, is_dataclass


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging."""

    EXTRA_FIELDS = (
        'session_id', 'test_case', 'operation', 'phase', 'duration',
        'success', 'error_code', 'progress', 'metadata',
    )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        for name in self.EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data['exception'] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info)
            }

        return json.dumps(log_data, default=self._json_serializer)

    def _json_serializer(self, obj):
        """Custom JSON serializer for complex objects."""
        if is_dataclass(obj):
            return asdict(obj)
        elif isinstance(obj, Enum):
            return obj.value
        elif isinstance(obj, bytes):
            return f"<{len(obj)} bytes>"
        elif hasattr(obj, 'isoformat'):
            return obj.isoformat()
        elif hasattr(obj, '__dict__'):
            return obj.__dict__
        else:
            return str(obj)


class HealingLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter carrying session and test case context."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs.setdefault('extra', {})
        kwargs['extra'].update(self.extra)
        return msg, kwargs

    def log_operation_start(self, operation: str, **metadata):
        """Log the start of an operation."""
        self.info(f"Starting {operation}", extra={
            'operation': operation,
            'phase': 'start',
            'metadata': metadata
        })

    def log_operation_success(self, operation: str, duration: float, **metadata):
        """Log successful completion of an operation."""
        self.info(f"Completed {operation} successfully", extra={
            'operation': operation,
            'phase': 'complete',
            'success': True,
            'duration': duration,
            'metadata': metadata
        })

    def log_operation_failure(self, operation: str, duration: float, error: str,
                              error_code: Optional[str] = None, **metadata):
        """Log failure of an operation."""
        self.error(f"Failed {operation}: {error}", extra={
            'operation': operation,
            'phase': 'complete',
            'success': False,
            'duration': duration,
            'error_code': error_code,
            'metadata': metadata
        })

    def log_progress(self, operation: str, progress: float, message: str, **metadata):
        """Log progress of an operation."""
        self.info(f"{operation} progress: {message}", extra={
            'operation': operation,
            'phase': 'progress',
            'progress': progress,
            'metadata': metadata
        })


def _rotating_handler(path: Path, max_bytes: int, backup_count: int,
                      level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setFormatter(formatter)
    handler.setLevel(level)
    return handler


def setup_logging(log_level: str = "INFO", log_dir: str = "logs") -> Dict[str, logging.Logger]:
    """
    Set up structured logging for the service.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory to store log files

    Returns:
        Dictionary of configured component loggers
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    level = getattr(logging, log_level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    structured_formatter = StructuredFormatter()
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    console_handler.setLevel(level)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(_rotating_handler(
        log_path / "testmaster_all.log", 10 * 1024 * 1024, 5, logging.DEBUG, structured_formatter))

    healing_handler = _rotating_handler(
        log_path / "healing_operations.log", 10 * 1024 * 1024, 10, logging.INFO, structured_formatter)
    error_handler = _rotating_handler(
        log_path / "errors.log", 5 * 1024 * 1024, 10, logging.ERROR, structured_formatter)

    loggers = {}
    for component in ("coordinator", "strategies", "event_store", "orchestrator", "multi_panel", "executor"):
        component_logger = logging.getLogger(f"testmaster.{component}")
        component_logger.addHandler(healing_handler)
        component_logger.addHandler(error_handler)
        loggers[component] = component_logger

    # Third-party libraries are noisy at DEBUG
    for name, default in (("litellm", "WARNING"), ("LiteLLM", "WARNING"),
                          ("playwright", "WARNING"), ("urllib3", "WARNING")):
        logging.getLogger(name).setLevel(getattr(logging, default))

    return loggers


def get_healing_logger(component: str, session_id: Optional[str] = None,
                       test_case: Optional[str] = None) -> HealingLoggerAdapter:
    """
    Get a logger adapter with contextual information.

    Args:
        component: Component name (coordinator, orchestrator, etc.)
        session_id: Optional testing session ID
        test_case: Optional test case identifier
    """
    logger = logging.getLogger(f"testmaster.{component}")

    extra = {}
    if session_id:
        extra['session_id'] = session_id
    if test_case is not None:
        extra['test_case'] = str(test_case)

    return HealingLoggerAdapter(logger, extra)
