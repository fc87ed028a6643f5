"""
Logging module for pingguard.
This module provides functionality to set up console logging and optional
shipping of supervisor and child output to Grafana Loki.
"""

from .setup import setup_logging
from .handler import LokiHandler

__all__ = ["setup_logging", "LokiHandler"]
