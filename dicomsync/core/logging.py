"""Logging utilities for dicomsync.

Provides structured logging with audit trail support.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Generator, Optional

# =============================================================================
# Constants
# =============================================================================

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
AUDIT_LOGGER_NAME = "dicomsync.audit"


# =============================================================================
# Logger Setup
# =============================================================================


def setup_logging(
    level: int = logging.INFO,
    *,
    quiet: bool = False,
    verbose: bool = False,
) -> None:
    """Configure logging for dicomsync.

    Args:
        level: Base logging level.
        quiet: If True, only show errors.
        verbose: If True, show debug messages.
    """
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=sys.stderr,
    )

    # Suppress noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("google_auth_oauthlib").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Logger instance.
    """
    return logging.getLogger(name)


# =============================================================================
# Log Context
# =============================================================================


class LogContext:
    """Context manager that logs the start, end and duration of an operation."""

    def __init__(
        self,
        operation: str,
        logger: Optional[logging.Logger] = None,
        **context: Any,
    ):
        self.operation = operation
        self.logger = logger or get_logger(__name__)
        self.context = context
        self.start_time: Optional[datetime] = None

    def __enter__(self) -> "LogContext":
        self.start_time = datetime.now()
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        self.logger.info("Starting %s (%s)", self.operation, ctx_str)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        duration = (datetime.now() - self.start_time).total_seconds() if self.start_time else 0

        if exc_type:
            self.logger.error(
                "%s failed after %.2fs: %s",
                self.operation,
                duration,
                exc_val,
            )
        else:
            self.logger.info("%s completed in %.2fs", self.operation, duration)


@contextmanager
def log_context(
    operation: str,
    logger: Optional[logging.Logger] = None,
    **context: Any,
) -> Generator[LogContext, None, None]:
    """Context manager for timing an operation in the log.

    Args:
        operation: Name of the operation.
        logger: Logger instance.
        **context: Additional context fields.

    Yields:
        LogContext instance.
    """
    ctx = LogContext(operation, logger, **context)
    with ctx:
        yield ctx


# =============================================================================
# Audit Logger
# =============================================================================


class AuditLogger:
    """Logger for the audit trail of transfers."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(AUDIT_LOGGER_NAME)

    def log_transfer(
        self,
        direction: str,
        subject: str,
        *,
        success: bool = True,
        detail: Optional[str] = None,
    ) -> None:
        """Log one terminal transfer outcome.

        Args:
            direction: "upload" or "download".
            subject: Local path or remote URL the outcome refers to.
            success: Whether the transfer succeeded.
            detail: Additional detail (status code, error text).
        """
        audit_record: dict[str, Any] = {
            "timestamp": datetime.now().isoformat(),
            "direction": direction,
            "subject": subject,
            "success": success,
        }
        if detail:
            audit_record["detail"] = detail

        level = logging.INFO if success else logging.WARNING
        self.logger.log(level, "AUDIT: %s", audit_record)


def get_audit_logger() -> AuditLogger:
    """Get the audit logger instance.

    Returns:
        AuditLogger instance.
    """
    return AuditLogger()
