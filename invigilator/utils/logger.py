from __future__ import annotations
"""
Invigilator Logger

Centralized logging configuration.
"""

import logging
import sys
from typing import Optional


DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def get_logger(
    name: str,
    level: int = logging.INFO,
    format_str: Optional[str] = None,
) -> logging.Logger:
    """
    Get a configured logger.

    Args:
        name: Logger name (usually __name__)
        level: Logging level
        format_str: Custom format string

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(format_str or DEFAULT_FORMAT))

        logger.addHandler(handler)
        logger.setLevel(level)
        # Root handler from setup_logging would print everything twice
        logger.propagate = False

    return logger


def setup_logging(level: str = "INFO") -> None:
    """
    Setup root logging for the service entry point.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter(fmt=DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.addHandler(handler)

    for name in list(logging.root.manager.loggerDict):
        if name.startswith("invigilator"):
            logging.getLogger(name).setLevel(log_level)

    # Reduce noise from other libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


class SessionLogger:
    """Specialized logger for proctoring events of one session."""

    def __init__(self, session_id: str | None = None):
        self.logger = get_logger("invigilator.session")
        self.session_id = session_id

    def log_transition(self, previous: str, current: str, detail: str = ""):
        """Log a committed status transition."""
        self.logger.info(
            f"STATUS | {self.session_id} | {previous} -> {current} {detail}".rstrip()
        )

    def log_violation(self, rule_id: str, stage: int, action: str):
        """Log a violation record."""
        self.logger.warning(
            f"VIOLATION | {self.session_id} | {rule_id} | stage={stage} | {action}"
        )

    def log_sample(self, sampler: str, outcome: str, elapsed_ms: float):
        """Log a completed sample."""
        self.logger.debug(
            f"SAMPLE | {self.session_id} | {sampler} | {outcome} | {elapsed_ms:.1f}ms"
        )

    def log_skipped(self, sampler: str, reason: str):
        """Log a skipped or failed tick."""
        self.logger.warning(
            f"SKIP | {self.session_id} | {sampler} | {reason}"
        )
