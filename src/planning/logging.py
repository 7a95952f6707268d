"""structlog configuration for the planning engine.

JSON lines in production, coloured console output in development. Logs are
written to stderr: the operator CLI keeps stdout for its JSON results.
Modules log through get_logger() with event-style messages, e.g.
``log.info("schedule_replaced", semester_id=3, inserted=455)``.
"""

import logging
import sys
from typing import TextIO

import structlog

# stdlib loggers that are too chatty below WARNING unless debugging
_NOISY_LOGGERS = ("sqlalchemy.engine", "urllib3", "openpyxl")


def setup_logging(
    json_output: bool = False,
    log_level: str = "INFO",
    stream: TextIO | None = None,
) -> None:
    """Configure structlog and the stdlib bridge.

    Args:
        json_output: If True, render JSON (production). If False, console format.
        log_level: Minimum level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        stream: Destination, stderr by default.
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    stream = stream or sys.stderr

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_output:
        processors.append(structlog.processors.dict_tracebacks)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )

    # Bridge stdlib logging (SQLAlchemy, urllib3) to the same stream
    root = logging.getLogger()
    root.handlers = [logging.StreamHandler(stream)]
    root.setLevel(numeric_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(
            numeric_level if numeric_level <= logging.DEBUG else logging.WARNING
        )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger bound with the module name.

    Args:
        name: Logger name (typically __name__ from calling module).
    """
    return structlog.get_logger(name)
