"""MADO Bridge Structured Logging

Structured logging for conversion and validation runs. Uses structlog on top
of the stdlib logging module so library users keep control of handlers.
"""

import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

SENSITIVE_FIELDS = {
    "patient_id",
    "patient_name",
    "patient_birth_date",
    "other_patient_ids",
    "accession_number",
    "referring_physician",
}

REDACTED = "***REDACTED***"


def redact_sensitive_data(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Processor to mask patient-identifying values in log entries.

    Args:
        logger: The wrapped logger instance
        method_name: The name of the method being called
        event_dict: The event dictionary to process

    Returns:
        Processed event dictionary with identifying values masked

    """
    for key, value in event_dict.items():
        if key.lower() in SENSITIVE_FIELDS:
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {
                k: (REDACTED if k.lower() in SENSITIVE_FIELDS else v)
                for k, v in value.items()
            }

    return event_dict


def add_timestamp(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Processor to add ISO-formatted timestamp to log entries."""
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def configure_logging(
    log_level: str = "INFO", json_format: bool = True, log_file: Path | None = None
) -> None:
    """Configure structlog for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Whether to output JSON format (True) or human-readable (False)
        log_file: Optional file path to write logs to

    Example:
        >>> configure_logging(log_level="DEBUG", json_format=False)
        >>> logger = get_logger("mado_bridge")
        >>> logger.info("bundle_built", entries=7)

    """
    level = getattr(logging, log_level.upper())

    # stderr keeps stdout free for converted documents
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level,
        force=True,
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_timestamp,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        redact_sensitive_data,
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        logging.root.addHandler(file_handler)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured structlog logger.

    Args:
        name: Logger name (typically module name using __name__)

    Returns:
        Configured structlog BoundLogger instance

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("manifest_validated", errors=0, warnings=1)

    """
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
