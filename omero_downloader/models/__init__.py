"""
Data Models Layer.

This package contains the Pydantic models and dataclasses that define the core
data structures used throughout the application: configuration, download
targets, remote operations and session statistics.
"""

from .config import DownloadConfig
from .stats import DownloadStats
from .targets import Target

__all__ = ["DownloadConfig", "DownloadStats", "Target"]
