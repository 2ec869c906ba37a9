"""
Storage Layer.

This package handles the configuration file that supplies connection defaults.
"""

from .config_manager import ConfigManager

__all__ = ["ConfigManager"]
