"""
Defines custom exceptions for the application to allow for more specific error handling.

Every exception carries the process exit code the CLI reports for it.
"""


class DownloaderError(Exception):
    """Base exception for all application-specific errors."""

    exit_code = 3


class UsageError(DownloaderError):
    """Raised for bad input: arguments, flags or targets the user supplied."""

    exit_code = 2


class ConfigurationError(UsageError):
    """Raised for issues related to configuration loading or validation."""


class TargetSyntaxError(UsageError):
    """Raised when a 'Target:ids' argument cannot be parsed."""


class AuthenticationError(DownloaderError):
    """Raised when a session cannot be established or authorized."""


class ProtocolError(DownloaderError):
    """Raised when the server sends malformed data or an unexpected shape."""


class ProtocolMismatchError(ProtocolError):
    """
    Raised when a request completes with a response of a different kind than
    the caller required.
    """


class TransientRemoteError(DownloaderError):
    """Raised for remote failures that might succeed if attempted again."""


class RequestTimeoutError(TransientRemoteError):
    """Raised when a remote request does not finish within the maximum wait."""


class RequestCancelledError(TransientRemoteError):
    """Raised when waiting for a remote request is interrupted."""


class OperationFailedError(DownloaderError):
    """Raised when the server reports an application-level error for a request."""


class RemoteFileNotFoundError(DownloaderError):
    """Raised when the file store has no file with the requested id."""


class FileIntegrityError(DownloaderError):
    """Raised when a downloaded file fails a post-download integrity check."""


class LocalIOError(DownloaderError):
    """Raised when writing to the local filesystem fails."""


class BaseDirectoryError(LocalIOError):
    """Raised when the base download directory cannot be created or written."""


class RelationshipError(DownloaderError):
    """Raised when the relationship graph is updated or read out of order."""
