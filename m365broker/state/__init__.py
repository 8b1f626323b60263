"""
Token Storage Module.

Persistence adapter for the broker: one storage instance per artifact
(serialized session, identity-library token cache).
"""

from .storage import TokenStorage
from .file_storage import FileTokenStorage
from .memory_storage import InMemoryTokenStorage
from .exceptions import (
    StorageError,
    TokenNotFoundError,
    StorageIOError,
)

__all__ = [
    # Abstract interface
    "TokenStorage",
    # Implementations
    "FileTokenStorage",
    "InMemoryTokenStorage",
    # Exceptions
    "StorageError",
    "TokenNotFoundError",
    "StorageIOError",
]
