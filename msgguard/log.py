"""Structured logging configuration with structlog.

Call :func:`configure_logging` once at startup, then in each module::

    from msgguard.log import get_logger

    log = get_logger(__name__)
    log.info("report_created", report_id=report.id)
"""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.typing import FilteringBoundLogger, Processor


class _StderrProxy:
    """Looks up ``sys.stderr`` on every write so redirected streams are honoured."""

    def write(self, message: str) -> None:
        sys.stderr.write(message)

    def flush(self) -> None:
        sys.stderr.flush()


def configure_logging(environment: str = "production", level: str = "INFO") -> None:
    """Configure structlog: JSON in production, colored console otherwise."""
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if environment == "production":
        final_processor: Processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=_StderrProxy()),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> FilteringBoundLogger:
    """Return a logger bound to the calling module's name."""
    return structlog.get_logger(module=name)
