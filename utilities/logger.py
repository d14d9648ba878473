"""
Logging system using structlog.
Provides structured logging with different output formats and levels.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[Union[str, Path]] = None,
    debug: bool = False
) -> None:
    """
    Set up structured logging with configurable output formats.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format (json or console)
        log_file: Optional log file path
        debug: Enable debug mode for more verbose logging
    """

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if debug:
        processors.append(structlog.processors.CallsiteParameterAdder())

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(logging.Formatter('%(message)s'))
        logging.getLogger().addHandler(file_handler)

    logger = structlog.get_logger(__name__)
    logger.info(
        "Logging system initialized",
        level=log_level,
        format=log_format,
        file=str(log_file) if log_file else None,
        debug=debug
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


class AuditLogger:
    """
    Logger for security-relevant events: authentication failures,
    ownership denials and book mutations.
    """

    def __init__(self, name: str = "audit"):
        self.logger = structlog.get_logger(name)

    def log_auth_failure(self, code: str, username: Optional[str] = None,
                         user_id: Optional[str] = None) -> None:
        """Log a rejected authentication attempt."""
        self.logger.warning(
            "Authentication failed",
            code=code,
            username=username,
            user_id=user_id
        )

    def log_access_denied(self, user_id: str, book_id: str, operation: str) -> None:
        """Log an attempt to touch a book owned by someone else."""
        self.logger.warning(
            "Access denied to book",
            user_id=user_id,
            book_id=book_id,
            operation=operation
        )

    def log_book_mutation(self, operation: str, user_id: str, book_id: str,
                          fields: Optional[list] = None) -> None:
        """Log a successful create, update or delete."""
        self.logger.info(
            "Book mutated",
            operation=operation,
            user_id=user_id,
            book_id=book_id,
            fields=fields
        )

    def log_reconciliation(self, user_id: str, dangling_ids: list) -> None:
        """Log removal of collection ids that no longer point to a book."""
        self.logger.warning(
            "Removed dangling book ids from collection",
            user_id=user_id,
            dangling_ids=dangling_ids,
            count=len(dangling_ids)
        )
