"""
Invigilator Configuration Module

One pydantic model per subsystem, loaded from the environment by Settings.
"""

from invigilator.cfg.config import (
    BaseConfig,
    IdentityConfig,
    BehaviorConfig,
    RuleConfig,
    TerminationConfig,
    NarrationConfig,
    BackendConfig,
    StoreConfig,
    Settings,
    get_settings,
)

__all__ = [
    "BaseConfig",
    "IdentityConfig",
    "BehaviorConfig",
    "RuleConfig",
    "TerminationConfig",
    "NarrationConfig",
    "BackendConfig",
    "StoreConfig",
    "Settings",
    "get_settings",
]
