"""
In-Memory Token Storage.

Keeps the artifact in process memory. Used by tests and by embedders that
do not want anything written to disk.
"""

import asyncio
from typing import Optional

from .exceptions import TokenNotFoundError
from .storage import TokenStorage


class InMemoryTokenStorage(TokenStorage):
    """Token storage holding a single string in memory."""

    def __init__(self, value: Optional[str] = None):
        self._value = value
        self._lock = asyncio.Lock()

    async def get(self) -> str:
        async with self._lock:
            if self._value is None:
                raise TokenNotFoundError("Nothing stored")
            return self._value

    async def set(self, value: str) -> None:
        async with self._lock:
            self._value = value

    async def remove(self) -> None:
        async with self._lock:
            self._value = None
