"""
Remote API Layer.

This package handles all communication with the server's JSON gateway.
"""

from .auth import SessionAuthenticator
from .client import RemoteSession

__all__ = ["RemoteSession", "SessionAuthenticator"]
