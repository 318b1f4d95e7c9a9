"""Structured logging setup."""

import logging

import structlog


def level_number(level: str) -> int:
    return getattr(logging, str(level or "INFO").upper(), logging.INFO)


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog console output filtered at the given level."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_number(level)),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
