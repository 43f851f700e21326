"""Shared fixtures: temp SQLite database, temp blob store, in-memory Drive."""
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.models import Base, FileRecord, SyncStatus
from app.services.drive_client import RemoteError, RemoteStorageClient
from app.services.drive_sync import DriveSyncEngine
from app.services.file_storage import LocalBlobStore


class FakeDrive(RemoteStorageClient):
    """In-memory remote storage that records every call."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.calls: list[tuple[str, str]] = []
        self.failing_ops: set[str] = set()
        self.failing_ids: set[str] = set()
        self._counter = 0

    def _check(self, op: str, remote_id: str | None = None) -> None:
        if op in self.failing_ops or (remote_id is not None and remote_id in self.failing_ids):
            raise RemoteError(f"{op} rejected", status=500, remote_id=remote_id)

    async def upload_new(self, local_path, mime_type, name):
        self.calls.append(("upload_new", name))
        self._check("upload_new")
        self._counter += 1
        remote_id = f"remote-{self._counter}"
        self.objects[remote_id] = Path(local_path).read_bytes()
        return remote_id

    async def update_existing(self, remote_id, local_path, mime_type, name=None):
        self.calls.append(("update_existing", remote_id))
        self._check("update_existing", remote_id)
        if remote_id not in self.objects:
            raise RemoteError("File not found", status=404, remote_id=remote_id)
        self.objects[remote_id] = Path(local_path).read_bytes()
        return remote_id

    async def delete(self, remote_id):
        self.calls.append(("delete", remote_id))
        self._check("delete", remote_id)
        self.objects.pop(remote_id, None)

    async def download_to_local(self, remote_id, destination):
        self.calls.append(("download_to_local", remote_id))
        self._check("download_to_local", remote_id)
        if remote_id not in self.objects:
            raise RemoteError("File not found", status=404, remote_id=remote_id)
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(self.objects[remote_id])

    def ops(self) -> list[str]:
        return [op for op, _ in self.calls]


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Isolated SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "uploads")


@pytest.fixture
def drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def sync_engine(session_factory, storage, drive) -> DriveSyncEngine:
    return DriveSyncEngine(session_factory, storage, drive)


@pytest.fixture
def make_record(session_factory, storage):
    """Insert a FileRecord directly in a given state (bypasses the mutators)."""

    async def _make(
        *,
        status: SyncStatus = SyncStatus.IN_PROGRESS,
        remote_id: str | None = None,
        content: bytes = b"hello drive",
        blob: bool = True,
        name: str = "report.txt",
        updated_at=None,
    ) -> FileRecord:
        key = storage.new_key(name)
        if blob:
            await storage.write(key, content)
        record = FileRecord(
            original_name=name,
            storage_key=key,
            mime_type="text/plain",
            size_bytes=len(content),
            remote_id=remote_id,
            sync_status=status,
        )
        if updated_at is not None:
            record.updated_at = updated_at
        async with session_factory() as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
        return record

    return _make


@pytest.fixture
def reload(session_factory):
    """Read a record back through a fresh session."""

    async def _reload(record_id) -> FileRecord:
        async with session_factory() as session:
            return await session.get(FileRecord, record_id)

    return _reload
