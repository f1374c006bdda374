"""Structured logging configuration for the application."""

from datetime import UTC, datetime
import json
import logging
import sys

from fieldengine.core.config import settings


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields if present
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging() -> None:
    """Configure application logging based on environment."""
    # Determine log level
    log_level = logging.INFO
    if settings.ENVIRONMENT == "development":
        log_level = logging.DEBUG
    elif settings.ENVIRONMENT == "production":
        log_level = logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    # Use JSON formatter in production, standard in development
    if settings.ENVIRONMENT == "production":
        formatter = JSONFormatter()
    else:
        formatter = StandardFormatter()

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Set specific log levels for noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("fastapi").setLevel(logging.INFO)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class MutationLogger:
    """Specialized logger for field schema mutations.

    Production deployments ship these records to the audit index, so every
    event carries an ``event_type`` and the counters an operator needs to
    verify convergence without reading the per-batch lines.
    """

    def __init__(self) -> None:
        self.logger = get_logger("field_mutations")

    def log_mutation_started(self, operation: str, field_name: str, **details) -> None:
        """Log the start of a field mutation."""
        self.logger.info(
            f"{operation} started for field: {field_name}",
            extra={
                "extra_fields": {
                    "event_type": "field_mutation_started",
                    "operation": operation,
                    "field_name": field_name,
                    **details,
                }
            },
        )

    def log_batch_committed(
        self,
        operation: str,
        field_name: str,
        batch_index: int,
        matched: int,
        modified: int,
    ) -> None:
        """Log a committed bulk batch."""
        self.logger.info(
            f"[{operation}] Batch {batch_index} modified {modified} voters",
            extra={
                "extra_fields": {
                    "event_type": "field_mutation_batch",
                    "operation": operation,
                    "field_name": field_name,
                    "batch_index": batch_index,
                    "matched": matched,
                    "modified": modified,
                }
            },
        )

    def log_batch_failed(
        self,
        operation: str,
        field_name: str,
        batch_index: int,
        failed_count: int,
        reason: str,
    ) -> None:
        """Log a bulk batch that could not be committed."""
        self.logger.error(
            f"[{operation}] Batch {batch_index} failed for {failed_count} voters: {reason}",
            extra={
                "extra_fields": {
                    "event_type": "field_mutation_batch_failed",
                    "operation": operation,
                    "field_name": field_name,
                    "batch_index": batch_index,
                    "failed_count": failed_count,
                    "reason": reason,
                }
            },
        )

    def log_mutation_finished(
        self, operation: str, field_name: str, completed: bool, **counters
    ) -> None:
        """Log the end of a field mutation with its aggregate counters."""
        message = f"{operation} {'finished' if completed else 'stopped early'} for field: {field_name}"
        extra = {
            "extra_fields": {
                "event_type": "field_mutation_finished",
                "operation": operation,
                "field_name": field_name,
                "completed": completed,
                **counters,
            }
        }
        if completed and not counters.get("failed_count"):
            self.logger.info(message, extra=extra)
        else:
            self.logger.warning(message, extra=extra)


# Global mutation logger instance
mutation_logger = MutationLogger()
