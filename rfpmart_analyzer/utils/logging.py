"""
Centralized logging configuration and utilities.

Provides structured logging with JSON or console output and an optional
rotating log file, plus helpers for the recurring pipeline events.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from structlog.stdlib import LoggerFactory

from ..config import get_config


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    log_format: Optional[str] = None
) -> structlog.stdlib.BoundLogger:
    """
    Set up structured logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file. If None, uses the configured file.
        log_format: Log format ('json' or 'text')
    """
    config = get_config()

    log_level = (level or config.logging.level).upper()
    log_format = log_format or config.logging.format
    log_file = log_file if log_file is not None else config.logging.file

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
        )

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level),
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(getattr(logging, log_level))
        logging.getLogger().addHandler(file_handler)

    # Keep engine and event-loop chatter out of DEBUG runs
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    return structlog.get_logger("root")


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Structured logger instance
    """
    return structlog.get_logger(name)


def log_navigation(
    url: str,
    elapsed: float,
    success: bool,
    attempt: int = 1,
    error_message: Optional[str] = None
) -> None:
    """
    Log a browser navigation for audit and troubleshooting.

    Args:
        url: URL that was visited
        elapsed: Time taken in seconds
        success: Whether the navigation completed
        attempt: Attempt number, starting at 1
        error_message: Error message if navigation failed
    """
    logger = get_logger(__name__)

    log_data = {
        "url": url,
        "elapsed": round(elapsed, 3),
        "attempt": attempt,
        "success": success,
    }

    if error_message:
        log_data["error_message"] = error_message

    if success:
        logger.debug("Navigation completed", **log_data)
    else:
        logger.warning("Navigation failed", **log_data)


def log_acquisition(
    opportunity_id: str,
    documents: int,
    rejected: int,
    success: bool,
    error_message: Optional[str] = None
) -> None:
    """
    Log the outcome of acquiring one opportunity's documents.

    Args:
        opportunity_id: ID of the opportunity
        documents: Number of document buffers produced
        rejected: Number of artifacts or entries rejected
        success: Whether acquisition succeeded
        error_message: Failure reason if acquisition failed
    """
    logger = get_logger(__name__)

    log_data = {
        "opportunity_id": opportunity_id,
        "documents": documents,
        "rejected": rejected,
        "success": success,
    }

    if error_message:
        log_data["error_message"] = error_message

    if success:
        logger.info("Acquisition completed", **log_data)
    else:
        logger.error("Acquisition failed", **log_data)


def log_scoring(
    opportunity_id: str,
    total_score: int,
    percentage: int,
    tier: str,
    error_message: Optional[str] = None
) -> None:
    """
    Log a fit scoring result.

    Args:
        opportunity_id: ID of the opportunity being scored
        total_score: Sum of category scores
        percentage: Score as a percentage of the maximum
        tier: Recommendation tier
        error_message: Error marker if scoring degraded
    """
    logger = get_logger(__name__)

    log_data: Dict[str, Any] = {
        "opportunity_id": opportunity_id,
        "total_score": total_score,
        "percentage": percentage,
        "tier": tier,
    }

    if error_message:
        log_data["error_message"] = error_message
        logger.error("Scoring degraded", **log_data)
    else:
        logger.info("Scoring completed", **log_data)


def log_database_operation(
    operation: str,
    table: str,
    record_id: Optional[str] = None,
    success: bool = True,
    error_message: Optional[str] = None
) -> None:
    """
    Log database operations.

    Args:
        operation: Type of operation (INSERT, UPDATE, DELETE, SELECT)
        table: Database table name
        record_id: ID of the record being operated on
        success: Whether the operation was successful
        error_message: Error message if operation failed
    """
    logger = get_logger(__name__)

    log_data = {
        "operation": operation,
        "table": table,
        "success": success,
    }

    if record_id:
        log_data["record_id"] = record_id

    if error_message:
        log_data["error_message"] = error_message

    if success:
        logger.debug("Database operation completed", **log_data)
    else:
        logger.error("Database operation failed", **log_data)
