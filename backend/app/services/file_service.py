"""File lifecycle mutators: create, replace content, request deletion.

These run on API requests and only flip sync_status; talking to Google Drive
is left to the reconciliation engine.
"""
import logging
import uuid
from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import urlparse

import aiohttp
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.file_record import FileRecord, SyncStatus
from app.services.file_storage import LocalBlobStore
from app.services.record_store import FileRecordStore
from app.services.sync_state import transition

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


class NotFoundError(Exception):
    """Unknown file record id."""

    def __init__(self, record_id):
        self.record_id = record_id
        super().__init__(f"File not found: {record_id}")


class IngestError(Exception):
    """Fetching a file from a remote URL failed."""

    def __init__(self, url: str, message: str):
        self.url = url
        self.message = message
        super().__init__(f"Cannot fetch {url}: {message}")


async def get_record(db: AsyncSession, record_id: uuid.UUID) -> FileRecord:
    record = await FileRecordStore(db).find_by_id(record_id)
    if record is None:
        raise NotFoundError(record_id)
    return record


async def create_from_upload(
    db: AsyncSession,
    storage: LocalBlobStore,
    *,
    content: bytes,
    original_name: str,
    mime_type: Optional[str],
    project_name: str = "",
) -> FileRecord:
    """Store uploaded bytes locally and register them for the next sync pass."""
    storage_key = await storage.save(content, original_name)
    record = FileRecord(
        original_name=original_name,
        storage_key=storage_key,
        mime_type=mime_type or DEFAULT_MIME_TYPE,
        size_bytes=len(content),
        project_name=project_name,
        remote_id=None,
    )
    transition(record, SyncStatus.IN_PROGRESS)
    record = await FileRecordStore(db).add(record)
    logger.info(f"Created file {record.id} ({original_name}, {len(content)} bytes)")
    return record


def _name_from_url(url: str) -> str:
    return PurePosixPath(urlparse(url).path).name or "file"


async def fetch_url(url: str, timeout: Optional[float] = None) -> tuple[bytes, str, int]:
    """Download ``url``. Returns (content, content_type, declared_length)."""
    client_timeout = aiohttp.ClientTimeout(total=timeout or settings.URL_FETCH_TIMEOUT)
    try:
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.get(url) as resp:
                if resp.status >= 400:
                    raise IngestError(url, f"HTTP {resp.status}")
                content = await resp.read()
                content_type = resp.headers.get("Content-Type") or DEFAULT_MIME_TYPE
                declared = int(resp.headers.get("Content-Length") or 0)
    except aiohttp.ClientError as e:
        raise IngestError(url, str(e) or type(e).__name__) from e
    except TimeoutError as e:
        raise IngestError(url, "timed out") from e
    return content, content_type, declared


async def create_from_url(
    db: AsyncSession,
    storage: LocalBlobStore,
    *,
    url: str,
    project_name: str = "",
    timeout: Optional[float] = None,
) -> FileRecord:
    """Fetch a file from ``url`` and register it like an upload."""
    content, content_type, declared = await fetch_url(url, timeout)
    original_name = _name_from_url(url)
    storage_key = await storage.save(content, original_name)
    record = FileRecord(
        original_name=original_name,
        storage_key=storage_key,
        mime_type=content_type,
        size_bytes=declared or await storage.size_of(storage_key),
        project_name=project_name,
        remote_id=None,
    )
    transition(record, SyncStatus.IN_PROGRESS)
    record = await FileRecordStore(db).add(record)
    logger.info(f"Ingested {url} as file {record.id}")
    return record


async def replace_content(
    db: AsyncSession,
    storage: LocalBlobStore,
    record_id: uuid.UUID,
    *,
    content: bytes,
    original_name: str,
    mime_type: Optional[str],
) -> FileRecord:
    """Swap the blob behind a record and mark it outdated for Drive.

    The old blob is removed and the new one gets a fresh storage key. A
    content replacement always supersedes whatever the backend holds, so the
    status is forced to outdated from any state.
    """
    store = FileRecordStore(db)
    record = await store.find_by_id(record_id)
    if record is None:
        raise NotFoundError(record_id)

    await storage.delete(record.storage_key)
    new_key = await storage.save(content, original_name)

    if record.sync_status is SyncStatus.DELETED:
        # The remote copy was purged; the next push must create a new one
        record.remote_id = None
    record.original_name = original_name
    record.storage_key = new_key
    record.mime_type = mime_type or DEFAULT_MIME_TYPE
    record.size_bytes = len(content)
    transition(record, SyncStatus.OUTDATED)
    record = await store.save(record)
    logger.info(f"Replaced content of file {record.id}, marked outdated")
    return record


async def request_deletion(
    db: AsyncSession,
    storage: LocalBlobStore,
    record_id: uuid.UUID,
) -> FileRecord:
    """Delete the local blob now and queue the remote copy for the delete phase.

    Records without a remote_id still go through pending_delete so the engine
    is the only path to ``deleted``.
    """
    store = FileRecordStore(db)
    record = await store.find_by_id(record_id)
    if record is None:
        raise NotFoundError(record_id)

    await storage.delete(record.storage_key)
    transition(record, SyncStatus.PENDING_DELETE)
    record = await store.save(record)
    logger.info(f"File {record.id} marked pending_delete")
    return record


async def list_records(
    db: AsyncSession,
    *,
    status: Optional[SyncStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[FileRecord]:
    return await FileRecordStore(db).list_records(status=status, limit=limit, offset=offset)
