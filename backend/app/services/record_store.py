"""File record store - the queries and writes the sync engine and mutators need.

Wraps a single AsyncSession. ``save()`` commits immediately so every status
change is durable before the next record is touched.
"""
import uuid
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.file_record import FileRecord, SyncStatus


class FileRecordStore:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_id(self, record_id: uuid.UUID) -> Optional[FileRecord]:
        # Always re-read the row; the engine may have moved it in another session
        return await self.db.get(FileRecord, record_id, populate_existing=True)

    async def find_by_status(
        self,
        statuses: Iterable[SyncStatus],
        *,
        oldest_first: bool = False,
        limit: Optional[int] = None,
        with_remote_id: bool = False,
    ) -> list[FileRecord]:
        """Records whose sync_status is one of ``statuses``.

        oldest_first orders by updated_at ascending; without it the order is
        unspecified (insertion order in practice).
        """
        query = select(FileRecord).where(FileRecord.sync_status.in_(list(statuses)))
        if with_remote_id:
            query = query.where(FileRecord.remote_id.is_not(None), FileRecord.remote_id != "")
        if oldest_first:
            query = query.order_by(FileRecord.updated_at.asc(), FileRecord.created_at.asc())
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_records(
        self,
        *,
        status: Optional[SyncStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[FileRecord]:
        query = select(FileRecord).order_by(FileRecord.created_at.desc()).limit(limit).offset(offset)
        if status is not None:
            query = query.where(FileRecord.sync_status == status)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def add(self, record: FileRecord) -> FileRecord:
        self.db.add(record)
        return await self.save(record)

    async def save(self, record: FileRecord) -> FileRecord:
        """Commit pending changes on ``record`` and reload server-side columns."""
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)
        return record
