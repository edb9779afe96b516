from __future__ import annotations
"""
Invigilator Utilities Module

Logging and rule/message constants.
"""

from invigilator.utils.logger import get_logger, setup_logging, SessionLogger
from invigilator.utils.alerts import (
    RuleId,
    ExitReason,
    ViolationType,
    AlertMessage,
    get_warning_message,
    get_termination_message,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "SessionLogger",
    "RuleId",
    "ExitReason",
    "ViolationType",
    "AlertMessage",
    "get_warning_message",
    "get_termination_message",
]
