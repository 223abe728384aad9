"""
Structured logging for holder risk analysis

structlog events are rendered by stdlib handlers: the console gets JSON or
the dev renderer on stderr (stdout is kept for reports), an optional log
file always gets JSON lines.
"""

import logging
import re
import sys
from pathlib import Path
from typing import List, Optional

import structlog
from structlog.typing import EventDict, Processor

# BscScan takes its key as a query parameter, so request errors carry it
API_KEY_PATTERN = re.compile(r"(apikey=)[^&\s'\"]+", re.IGNORECASE)

_handlers: List[logging.Handler] = []


def redact_api_keys(logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask apikey=... in string values"""
    for key, value in event_dict.items():
        if isinstance(value, str) and "apikey=" in value.lower():
            event_dict[key] = API_KEY_PATTERN.sub(r"\1***", value)
    return event_dict


def _shared_processors() -> List[Processor]:
    return [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_api_keys,
    ]


def _formatter(renderer: Processor) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def _console_renderer(format: str) -> Processor:
    if format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stderr.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def setup_logging(
    level: str = "INFO",
    format: str = "json",
    output_file: Optional[str] = None
) -> None:
    """
    Configure structured logging

    Safe to call more than once; handlers from an earlier call are replaced.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        format: Console format ("json" or "console")
        output_file: Optional file path for JSON-lines log output
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()

    for handler in _handlers:
        root.removeHandler(handler)
        handler.close()
    _handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(_console_renderer(format)))
    _handlers.append(console)

    if output_file:
        Path(output_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(output_file)
        file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
        _handlers.append(file_handler)

    for handler in _handlers:
        handler.setLevel(numeric_level)
        root.addHandler(handler)
    root.setLevel(numeric_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name)
