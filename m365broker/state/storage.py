"""
Abstract Token Storage Interface.

Defines the contract for persisting opaque blobs such as the serialized
session and the identity library's token cache. Each storage instance
holds exactly one artifact.
"""

from abc import ABC, abstractmethod


class TokenStorage(ABC):
    """
    Abstract base class for single-artifact persistence.

    Implementations store one opaque text blob. Callers own the encoding;
    storage only guarantees that what was written is read back unchanged.
    """

    @abstractmethod
    async def get(self) -> str:
        """
        Read the stored artifact.

        Returns:
            The stored blob

        Raises:
            TokenNotFoundError: If nothing has been stored
            StorageIOError: If the artifact cannot be read
        """
        pass

    @abstractmethod
    async def set(self, value: str) -> None:
        """
        Store the artifact, replacing any previous value.

        Args:
            value: Blob to store

        Raises:
            StorageIOError: If the artifact cannot be written
        """
        pass

    @abstractmethod
    async def remove(self) -> None:
        """
        Remove the artifact. Removing a missing artifact is not an error.

        Raises:
            StorageIOError: If the artifact exists but cannot be removed
        """
        pass
