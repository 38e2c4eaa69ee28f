"""
Structured logging setup for the workflow-runs core.

All modules log through structlog with snake_case event names and keyword
context. ``bind_run_context`` attaches the identity of the run being operated
on to every log line emitted while an operation is in flight.
"""

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog for the process. Log lines go to stderr.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Render JSON lines when True, a human-readable console
            format otherwise (useful for the CLI)
    """
    renderer: Any = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level.upper()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
        cache_logger_on_first_use=True,
    )


@contextmanager
def bind_run_context(project_id: str | None, run_id: str | None, operation: str) -> Iterator[None]:
    """Bind run identity to all log lines emitted inside the block.

    Example:
        >>> with bind_run_context(run.project_id, run.run_id, "retry_run"):
        ...     log.info("retry_started")  # includes run_id and operation
    """
    with structlog.contextvars.bound_contextvars(project_id=project_id, run_id=run_id, operation=operation):
        yield
