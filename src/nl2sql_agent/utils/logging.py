import json
import logging
import inspect
from typing import Any

import structlog

from nl2sql_agent.config import get_settings
from nl2sql_agent.utils.tracing import current_trace_id

# Module-level flag to prevent multiple configuration
_logging_configured = False

_PROJECT_PREFIX = 'nl2sql_agent.'


def _add_module_info(logger: Any, method_name: str, event_dict: structlog.types.EventDict) -> structlog.types.EventDict:
    """
    Custom processor to add a short module name to log records.

    "nl2sql_agent.repositories.sql_refinement" becomes "repositories.sql_refinement".
    """
    logger_name = event_dict.get('logger', 'unknown')

    if logger_name.startswith(_PROJECT_PREFIX):
        module_parts = logger_name.split('.')
        event_dict['module'] = '.'.join(module_parts[-2:])
    else:
        event_dict['module'] = logger_name

    return event_dict


def _add_trace_id(logger: Any, method_name: str, event_dict: structlog.types.EventDict) -> structlog.types.EventDict:
    """
    Fill in trace_id from the request context when the call site did not pass one.

    Concurrent runs each carry their own context, so ids never leak between them.
    """
    if not event_dict.get('trace_id'):
        trace_id = current_trace_id()
        if trace_id:
            event_dict['trace_id'] = trace_id
    return event_dict


def _pretty_json_renderer(logger: Any, method_name: str, event_dict: structlog.types.EventDict) -> str:
    """Render the event as indented JSON."""
    return json.dumps(event_dict, indent=2, ensure_ascii=False, default=str)


def _dev_formatter(logger: Any, method_name: str, event_dict: structlog.types.EventDict) -> str:
    """
    Development-friendly single-line formatter.

    Format: "<timestamp> [LEVEL] module: event (trace: abcd1234) | key=value, ..."
    """
    timestamp = event_dict.get('timestamp', '')
    level = event_dict.get('level', '').upper()
    module = event_dict.get('module', '')
    event = event_dict.get('event', '')
    trace_id = event_dict.get('trace_id', '')

    colors = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    reset = '\033[0m'
    color = colors.get(level, '')

    line = f"{timestamp} {color}[{level}]{reset} {module}: {event}"
    if trace_id:
        line += f" (trace: {str(trace_id)[:8]})"

    skip_fields = {'timestamp', 'level', 'module', 'event', 'trace_id', 'logger'}
    other_fields = [f"{key}={value}" for key, value in event_dict.items() if key not in skip_fields]
    if other_fields:
        line += f" | {', '.join(other_fields)}"

    return line


def configure_logging() -> None:
    """Configure structured logging for the application (runs once)."""

    global _logging_configured

    if _logging_configured:
        return
    _logging_configured = True

    settings = get_settings()

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, settings.app.log_level.value),
        handlers=[logging.StreamHandler()]
    )

    renderer = _pretty_json_renderer if settings.app.json_logs else _dev_formatter

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _add_module_info,
            _add_trace_id,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name, typically __name__ to get the module name

    Returns:
        Configured structlog logger

    Usage:
        logger = get_logger(__name__)
        logger.info("Refinement attempt failed", attempt=2, trace_id="abc-123")
    """
    return structlog.get_logger(name)


def get_module_logger() -> structlog.stdlib.BoundLogger:
    """
    Get a logger for the calling module automatically.

    Returns:
        Configured structlog logger for the calling module

    Note:
        Falls back to 'unknown' module name if frame inspection fails.
    """
    module_name = 'unknown'
    frame = None

    try:
        frame = inspect.currentframe()
        if frame is not None and frame.f_back is not None:
            module_name = frame.f_back.f_globals.get('__name__', 'unknown')
    except (AttributeError, RuntimeError):
        # Frame inspection can fail in some environments (e.g., some REPL implementations)
        pass
    finally:
        if frame is not None:
            del frame

    return get_logger(module_name)
