"""
File Transfer Layer.

This package is responsible for all local file operations on downloaded
data: streaming transfers and integrity validation.
"""

from .downloader import FileTransferManager, TransferResult, TransferStatus
from .integrity import FileIntegrityChecker

__all__ = [
    "FileIntegrityChecker",
    "FileTransferManager",
    "TransferResult",
    "TransferStatus",
]
