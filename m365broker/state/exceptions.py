"""
Token storage exceptions.

Custom exceptions for persistence adapter operations.
"""


class StorageError(Exception):
    """Base exception for all token storage errors."""

    pass


class TokenNotFoundError(StorageError):
    """Raised when a requested artifact has never been stored."""

    pass


class StorageIOError(StorageError):
    """Raised when reading, writing or removing an artifact fails."""

    pass
