"""Utilities: errors, constants, configuration, logging."""

from .config import PipelineConfig, load_config
from .errors import RowscribeError, format_error_for_user

__all__ = ["PipelineConfig", "load_config", "RowscribeError", "format_error_for_user"]
