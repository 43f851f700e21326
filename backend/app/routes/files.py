"""Files API routes."""
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, UploadFile, File as FastAPIFile
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.models.file_record import FileRecord, SyncStatus
from app.schemas.file import (
    DeleteFileResponse,
    FileResponse as FileResponseSchema,
    RestoreResultResponse,
    SaveFileByUrl,
    SyncResultResponse,
)
from app.services import file_service
from app.services.drive_sync import DriveSyncEngine, RESTORE_MAX_LIMIT, get_sync_engine
from app.services.file_service import IngestError, NotFoundError
from app.services.file_storage import LocalBlobStore, file_storage

router = APIRouter(prefix="/api/files", tags=["files"])


def get_storage() -> LocalBlobStore:
    return file_storage


def get_engine() -> DriveSyncEngine:
    """Sync engine dependency; 503 when Google Drive is not configured."""
    try:
        return get_sync_engine()
    except (ValueError, FileNotFoundError) as e:
        raise HTTPException(status_code=503, detail=f"Remote storage not configured: {e}")


async def _read_upload(file: UploadFile) -> bytes:
    contents = await file.read()
    if len(contents) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds {settings.MAX_UPLOAD_BYTES} bytes",
        )
    return contents


@router.post("/upload", response_model=FileResponseSchema, status_code=201)
async def upload_file(
    request: Request,
    file: UploadFile = FastAPIFile(...),
    x_project_name: str = Header(""),
    db: AsyncSession = Depends(get_db),
    storage: LocalBlobStore = Depends(get_storage),
):
    """Upload a file and queue it for Drive sync."""
    contents = await _read_upload(file)
    record = await file_service.create_from_upload(
        db, storage,
        content=contents,
        original_name=file.filename or "unnamed",
        mime_type=file.content_type,
        project_name=x_project_name,
    )
    return _to_response(record, request)


@router.post("/upload-by-url", response_model=FileResponseSchema, status_code=201)
async def upload_by_url(
    body: SaveFileByUrl,
    request: Request,
    x_project_name: str = Header(""),
    db: AsyncSession = Depends(get_db),
    storage: LocalBlobStore = Depends(get_storage),
):
    """Fetch a file from a URL and queue it for Drive sync."""
    try:
        record = await file_service.create_from_url(
            db, storage, url=str(body.url), project_name=x_project_name,
        )
    except IngestError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return _to_response(record, request)


@router.get("", response_model=list[FileResponseSchema])
async def list_files(
    request: Request,
    status: Optional[SyncStatus] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """List file records, newest first, optionally filtered by sync status."""
    records = await file_service.list_records(db, status=status, limit=limit, offset=offset)
    return [_to_response(r, request) for r in records]


@router.get("/sync", response_model=SyncResultResponse)
async def sync_files(engine: DriveSyncEngine = Depends(get_engine)):
    """Upload in_progress/outdated files to Drive and purge pending_delete ones."""
    summary = await engine.run_reconciliation_pass()
    return summary.as_dict()


@router.get("/restore-missing", response_model=RestoreResultResponse)
async def restore_missing(
    limit: Optional[int] = Query(None, description="Files per batch (1..50). Defaults to 50"),
    engine: DriveSyncEngine = Depends(get_engine),
):
    """Restore locally missing files from Drive, one bounded batch."""
    summary = await engine.restore_missing(limit or RESTORE_MAX_LIMIT)
    return summary.as_dict()


@router.get("/{file_id}", response_model=FileResponseSchema)
async def get_file_metadata(
    file_id: UUID,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Get file metadata by ID."""
    try:
        record = await file_service.get_record(db, file_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="File not found")
    return _to_response(record, request)


@router.get("/{file_id}/download")
async def download_file(
    file_id: UUID,
    db: AsyncSession = Depends(get_db),
    storage: LocalBlobStore = Depends(get_storage),
):
    """Download a file by ID."""
    try:
        record = await file_service.get_record(db, file_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="File not found")
    if not await storage.exists(record.storage_key):
        raise HTTPException(status_code=404, detail="File content not available locally")

    return FileResponse(
        path=storage.path_for(record.storage_key),
        filename=record.original_name,
        media_type=record.mime_type or "application/octet-stream",
    )


@router.put("/{file_id}", response_model=FileResponseSchema)
async def replace_file(
    file_id: UUID,
    request: Request,
    file: UploadFile = FastAPIFile(...),
    db: AsyncSession = Depends(get_db),
    storage: LocalBlobStore = Depends(get_storage),
):
    """Replace a file's content. The Drive copy is updated on the next sync."""
    contents = await _read_upload(file)
    try:
        record = await file_service.replace_content(
            db, storage, file_id,
            content=contents,
            original_name=file.filename or "unnamed",
            mime_type=file.content_type,
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="File not found")
    return _to_response(record, request)


@router.delete("/{file_id}", response_model=DeleteFileResponse)
async def delete_file(
    file_id: UUID,
    db: AsyncSession = Depends(get_db),
    storage: LocalBlobStore = Depends(get_storage),
):
    """Delete the local file now; the Drive copy goes on the next sync."""
    try:
        await file_service.request_deletion(db, storage, file_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="File not found")
    return {"ok": True}


def _to_response(record: FileRecord, request: Request) -> dict:
    """Convert SQLAlchemy model to response dict."""
    return {
        "id": record.id,
        "original_name": record.original_name,
        "mime_type": record.mime_type,
        "size_bytes": record.size_bytes,
        "url": f"{str(request.base_url).rstrip('/')}/uploads/{record.storage_key}",
        "project_name": record.project_name,
        "sync_status": record.sync_status,
        "remote_id": record.remote_id,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }
