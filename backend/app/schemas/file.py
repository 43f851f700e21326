"""File request/response schemas."""
import uuid
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, HttpUrl

from app.models.file_record import SyncStatus
from app.schemas.base import CamelModel, CamelORMModel


class SaveFileByUrl(CamelModel):
    url: HttpUrl


class FileResponse(CamelORMModel):
    id: uuid.UUID
    original_name: str
    mime_type: str
    size_bytes: int
    url: str
    project_name: str = ""
    sync_status: SyncStatus
    remote_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class DeleteFileResponse(BaseModel):
    ok: bool = True


class SyncResultResponse(BaseModel):
    synced: int
    deleted: int
    failed: int


class RestoreResultResponse(BaseModel):
    limit: int
    checked: int
    restored: int
    skipped: int
    failed: int
