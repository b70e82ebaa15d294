"""
Structured logging framework for Polity.

Provides correlation IDs, context propagation, and JSON output so that a vote,
the resolution it triggered and the law execution that followed can be traced
as one unit of work.
"""

import contextvars
import logging
import os
import secrets
import sys
import time
from collections.abc import Mapping
from typing import Any

import structlog

from polity.kernel.errors import GovernanceError

# Context variable for correlation ID (thread-safe)
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)


def generate_correlation_id() -> str:
    """Generate a new 22-character URL-safe correlation ID (128 bits)."""
    return secrets.token_urlsafe(16)


def get_correlation_id() -> str:
    """Get the current correlation ID, or generate a new one if not set."""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current context."""
    correlation_id_var.set(correlation_id)


def add_correlation_id(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Add correlation ID to log event."""
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


def configure_logging(
    *,
    json_output: bool = False,
    log_level: str = "INFO",
    stream: Any = None,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        json_output: If True, output JSON logs (for production).
                    If False, output human-readable console logs (for development).
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        stream: Output stream (defaults to stdout; the CLI passes stderr)
    """
    level = getattr(logging, log_level.upper())

    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stdout,
        level=level,
    )

    # Disable overly verbose third-party loggers
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_correlation_id,
    ]

    if json_output:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.ExceptionRenderer(),
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger for the given module.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Structured logger instance
    """
    return structlog.get_logger(name)


def is_production() -> bool:
    """True when the ENVIRONMENT variable is 'production'."""
    return os.getenv("ENVIRONMENT", "development").lower() == "production"


# Member identities are personal data; ballots must not be linkable from logs
REDACTED_FIELDS = {
    "requester_id",
    "user_id",
    "proposer_id",
    "voter_id",
}


def redact_context(context: dict[str, Any]) -> dict[str, Any]:
    """
    Redact sensitive fields from log context.

    Example:
        >>> redact_context({"requester_id": "alice", "operation": "vote"})
        {"requester_id": "***REDACTED***", "operation": "vote"}
    """
    return {
        k: "***REDACTED***" if k in REDACTED_FIELDS else v
        for k, v in context.items()
    }


# Keys bound into structlog's context for the length of an operation, so the
# resolution and execution logs it triggers carry the same proposal/community
TRACE_KEYS = ("proposal_id", "community_id", "law_type", "sweep_id")


class LogOperation:
    """
    Log one governance operation (propose, vote, fast_track, sweep_expired)

    Emits "<operation> started" and then "<operation> completed", "refused"
    or "failed" with the duration. A GovernanceError is a refusal of the
    caller's request and logs as a warning without a stack trace; any other
    exception is a fault and logs as an error. Member identities in the
    context are redacted.
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        **context: Any,
    ):
        """
        Args:
            logger: Structured logger instance
            operation: Operation name (e.g., "propose", "sweep_expired")
            **context: Request context (proposal_id, community_id, requester_id, ...)
        """
        self.logger = logger
        self.operation = operation
        self.context = context
        self.start_time: float = 0.0
        self._tokens: Mapping[str, contextvars.Token[Any]] = {}

    def bind(self, **context: Any) -> None:
        """Add context learned while running, e.g. the new proposal's id or status"""
        self.context.update(context)

    def __enter__(self) -> "LogOperation":
        self.start_time = time.perf_counter()
        get_correlation_id()
        self._tokens = structlog.contextvars.bind_contextvars(
            **{k: v for k, v in self.context.items() if k in TRACE_KEYS and v is not None}
        )
        self.logger.info(
            f"{self.operation} started",
            operation=self.operation,
            **redact_context(self.context),
        )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        duration_ms = round((time.perf_counter() - self.start_time) * 1000, 2)
        redacted = redact_context(self.context)
        structlog.contextvars.reset_contextvars(**self._tokens)

        if exc_type is None:
            self.logger.info(
                f"{self.operation} completed",
                operation=self.operation,
                duration_ms=duration_ms,
                **redacted,
            )
        elif isinstance(exc_val, GovernanceError):
            self.logger.warning(
                f"{self.operation} refused",
                operation=self.operation,
                duration_ms=duration_ms,
                reason=exc_type.__name__,
                error=str(exc_val),
                **redacted,
            )
        else:
            # Stack traces only in development
            self.logger.error(
                f"{self.operation} failed",
                operation=self.operation,
                duration_ms=duration_ms,
                error_type=exc_type.__name__,
                error=str(exc_val),
                exc_info=not is_production(),
                **redacted,
            )
