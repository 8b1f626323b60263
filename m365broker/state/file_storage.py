"""
File-based Token Storage.

Persists a single artifact as a file in the user's configuration directory.
Writes go through a temp file and a rename; files are created with mode 0600.
"""

import asyncio
import os
from pathlib import Path
from typing import Union

from .exceptions import StorageIOError, TokenNotFoundError
from .storage import TokenStorage


class FileTokenStorage(TokenStorage):
    """Token storage backed by one file on disk."""

    def __init__(self, file_path: Union[str, Path]):
        self._path = Path(file_path).expanduser()
        self._write_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def get(self) -> str:
        """Read the artifact from disk."""
        if not self._path.exists():
            raise TokenNotFoundError(f"File not found: {self._path}")

        try:
            return self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageIOError(f"Failed to read {self._path}: {e}") from e

    async def set(self, value: str) -> None:
        """Write the artifact atomically."""
        temp_path = self._path.with_suffix(self._path.suffix + ".tmp")

        async with self._write_lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)

                fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(value)
                    f.flush()
                    os.fsync(f.fileno())

                os.replace(temp_path, self._path)
            except OSError as e:
                if temp_path.exists():
                    temp_path.unlink()
                raise StorageIOError(f"Failed to write {self._path}: {e}") from e

    async def remove(self) -> None:
        """Delete the artifact if present."""
        async with self._write_lock:
            try:
                self._path.unlink(missing_ok=True)
            except OSError as e:
                raise StorageIOError(f"Failed to remove {self._path}: {e}") from e
