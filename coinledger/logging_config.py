"""structlog setup for the coin ledger.

Service modules log business events (`wallet_credited`,
`referral_applied`, `transaction_conflict_retry`, ...) through
`get_logger`. `setup_logging` picks the output format from settings:
readable console lines locally, one JSON object per line when deployed.
"""

import logging
import sys
from typing import Optional

import structlog

from .settings import Settings, settings


def _renderer(log_format: str):
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


def setup_logging(config: Optional[Settings] = None) -> None:
    config = config or settings
    timestamp_format = "iso" if config.log_format == "json" else "%Y-%m-%d %H:%M:%S"

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt=timestamp_format, utc=True),
            _renderer(config.log_format),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, config.log_level.upper())),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
