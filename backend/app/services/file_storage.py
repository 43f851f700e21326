"""Local blob store. Bytes live on the filesystem under FILE_STORAGE_PATH.

Blobs are addressed by a relative storage key (``<uuid><ext>``) that is
assigned once and never rewritten in place.
"""
import uuid
from pathlib import Path

import aiofiles
import aiofiles.os

from app.config import settings


class LocalIOError(Exception):
    """Missing, unreadable or unwritable local blob."""

    def __init__(self, message: str, key: str = ""):
        self.key = key
        super().__init__(message)


class LocalBlobStore:
    """Handles blob read/write on local disk."""

    def __init__(self, base_path: str | Path | None = None):
        self.base_path = Path(base_path or settings.FILE_STORAGE_PATH).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def new_key(original_name: str) -> str:
        """Generate a fresh storage key keeping the original extension."""
        return f"{uuid.uuid4()}{Path(original_name).suffix}"

    def path_for(self, key: str) -> Path:
        """Resolve ``key`` under the base path, rejecting traversal outside it."""
        candidate = (self.base_path / key.lstrip("/")).resolve()
        if candidate == self.base_path or not candidate.is_relative_to(self.base_path):
            raise LocalIOError(f"Storage key escapes storage root: {key}", key)
        return candidate

    async def save(self, file_bytes: bytes, original_name: str) -> str:
        """Save bytes under a new key. Returns the key."""
        key = self.new_key(original_name)
        await self.write(key, file_bytes)
        return key

    async def write(self, key: str, file_bytes: bytes) -> None:
        path = self.path_for(key)
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(file_bytes)
        except OSError as e:
            raise LocalIOError(f"Cannot write blob {key}: {e}", key) from e

    async def read(self, key: str) -> bytes:
        path = self.path_for(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except OSError as e:
            raise LocalIOError(f"Cannot read blob {key}: {e}", key) from e

    async def delete(self, key: str) -> None:
        """Delete a blob. Deleting a missing blob is a no-op."""
        path = self.path_for(key)
        try:
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.remove(path)
        except OSError as e:
            raise LocalIOError(f"Cannot delete blob {key}: {e}", key) from e

    async def exists(self, key: str) -> bool:
        return await aiofiles.os.path.isfile(self.path_for(key))

    async def size_of(self, key: str) -> int:
        try:
            stat = await aiofiles.os.stat(self.path_for(key))
        except OSError as e:
            raise LocalIOError(f"Cannot stat blob {key}: {e}", key) from e
        return stat.st_size


file_storage = LocalBlobStore()
