"""
Logging configuration using structlog.

Log records go to stderr; stdout is reserved for the stdio transport.
Context bound with ``structlog.contextvars`` (the workflow run id) is
merged into every record, per asyncio task.
"""

import logging
import sys
import structlog
from structlog.stdlib import LoggerFactory


def configure_logging(debug: bool = False):
    """
    Configure structured logging.

    Args:
        debug: Enable debug logging
    """
    log_level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=log_level,
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None):
    """Get a configured logger."""
    return structlog.get_logger(name)


def bind_run_context(**values):
    """Bind values to every record logged by the current task until the block exits."""
    return structlog.contextvars.bound_contextvars(**values)
