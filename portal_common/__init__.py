"""
Portal Common - Shared models, configuration, and utilities.
"""

__version__ = "1.0.0"

from portal_common.config import get_settings
from portal_common.logging import setup_logging

__all__ = ["get_settings", "setup_logging"]
