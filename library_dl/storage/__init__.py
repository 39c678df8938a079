"""
Storage Layer.

This package handles all local persistence: the configuration file, the
resumable progress state of each run, and the per-run failure log.
"""

from .config_manager import ConfigManager
from .error_log import ErrorLog
from .progress_store import ProgressStore

__all__ = ["ConfigManager", "ErrorLog", "ProgressStore"]
