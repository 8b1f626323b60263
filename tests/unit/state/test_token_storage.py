"""
Tests for the token storage backends.
"""

import os
import stat
from unittest.mock import patch

import pytest

from m365broker.state import (
    FileTokenStorage,
    InMemoryTokenStorage,
    StorageError,
    StorageIOError,
    TokenNotFoundError,
)


@pytest.fixture
def file_storage(tmp_path):
    return FileTokenStorage(tmp_path / "state" / "connection.json")


class TestFileTokenStorage:
    """Test FileTokenStorage backend."""

    async def test_get_missing_raises_not_found(self, file_storage):
        """Test reading an artifact that was never written."""
        with pytest.raises(TokenNotFoundError):
            await file_storage.get()

    async def test_set_then_get(self, file_storage):
        """Test a written value reads back unchanged."""
        await file_storage.set('{"connected": true}')

        assert await file_storage.get() == '{"connected": true}'

    async def test_set_creates_parent_directory(self, file_storage):
        """Test the configuration directory is created on first write."""
        await file_storage.set("value")

        assert file_storage.path.parent.is_dir()

    async def test_set_overwrites(self, file_storage):
        """Test a second write replaces the first."""
        await file_storage.set("first")
        await file_storage.set("second")

        assert await file_storage.get() == "second"

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    async def test_file_readable_only_by_owner(self, file_storage):
        """Test credentials are not world readable."""
        await file_storage.set("secret")

        mode = stat.S_IMODE(file_storage.path.stat().st_mode)
        assert mode == 0o600

    async def test_no_temp_file_left_behind(self, file_storage):
        """Test the atomic write cleans up after itself."""
        await file_storage.set("value")

        assert [p.name for p in file_storage.path.parent.iterdir()] == ["connection.json"]

    async def test_write_failure_raises_storage_io_error(self, file_storage):
        """Test OS errors surface as StorageIOError."""
        with patch("m365broker.state.file_storage.os.replace", side_effect=PermissionError("denied")):
            with pytest.raises(StorageIOError):
                await file_storage.set("value")

        assert not file_storage.path.exists()
        assert not file_storage.path.with_suffix(".json.tmp").exists()

    async def test_remove(self, file_storage):
        """Test removing a stored artifact."""
        await file_storage.set("value")

        await file_storage.remove()

        assert not file_storage.path.exists()
        with pytest.raises(TokenNotFoundError):
            await file_storage.get()

    async def test_remove_missing_is_noop(self, file_storage):
        """Test removing an artifact that does not exist."""
        await file_storage.remove()

    async def test_path_expands_user(self):
        """Test ~ in the path is expanded."""
        storage = FileTokenStorage("~/connection.json")

        assert "~" not in str(storage.path)

    async def test_artifacts_are_independent(self, tmp_path):
        """Test removing one artifact leaves the other in place."""
        session = FileTokenStorage(tmp_path / "connection.json")
        cache = FileTokenStorage(tmp_path / "msal_cache.json")
        await session.set("session")
        await cache.set("cache")

        await session.remove()

        assert await cache.get() == "cache"


class TestInMemoryTokenStorage:
    """Test InMemoryTokenStorage backend."""

    async def test_empty_raises_not_found(self):
        with pytest.raises(TokenNotFoundError):
            await InMemoryTokenStorage().get()

    async def test_initial_value(self):
        assert await InMemoryTokenStorage("seed").get() == "seed"

    async def test_set_get_remove(self):
        storage = InMemoryTokenStorage()

        await storage.set("value")
        assert await storage.get() == "value"

        await storage.remove()
        with pytest.raises(TokenNotFoundError):
            await storage.get()


class TestExceptions:
    """Test the storage exception hierarchy."""

    def test_hierarchy(self):
        assert issubclass(TokenNotFoundError, StorageError)
        assert issubclass(StorageIOError, StorageError)
