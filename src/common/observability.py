"""Structured logging setup.

Call `configure_logging()` once at process start; modules then use
`structlog.get_logger(__name__)` and log snake_case events with context:

    log.info("vote_submitted", voter=voter, target=target, tx_hash=receipt.tx_hash)

Never pass plaintext preferences, decrypted bits, key material or signatures
as log context.
"""

from __future__ import annotations

import logging
import os
from typing import List

import structlog
from structlog.typing import Processor


LOG_LEVEL_ENV = "LOG_LEVEL"
DEFAULT_LOG_LEVEL = "INFO"


def _get_log_level() -> int:
    level_name = os.getenv(LOG_LEVEL_ENV, DEFAULT_LOG_LEVEL).upper()
    return getattr(logging, level_name, logging.INFO)


def configure_logging(environment: str = "production") -> None:
    """JSON lines in production, colored console output otherwise."""
    shared: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if environment == "production":
        shared.append(structlog.processors.format_exc_info)
        final: Processor = structlog.processors.JSONRenderer()
    else:
        final = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared + [final],
        wrapper_class=structlog.make_filtering_bound_logger(_get_log_level()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
