"""
Local package for pingguard.

This package provides the merged supervisor configuration through the
effective_settings singleton and houses the supervisor itself.
"""

from .config import ConfigError, effective_settings

__all__ = ["ConfigError", "effective_settings"]
