# src/sepstrat/utils/__init__.py
"""
Utility functions for the stratification pipeline.

Components:
- config: OmegaConf loading and validation
- logging: Console/file logging setup and verbose narration sinks
"""

from sepstrat.utils.config import (
    ConfigError,
    get_value,
    load_config,
    merge_configs,
    save_config,
    to_dict,
    validate_config,
)
from sepstrat.utils.logging import ProgressCallback, make_progress, setup_logging

__all__ = [
    # Config
    "ConfigError",
    "get_value",
    "load_config",
    "merge_configs",
    "save_config",
    "to_dict",
    "validate_config",
    # Logging
    "ProgressCallback",
    "make_progress",
    "setup_logging",
]
