"""FileRecord model - file metadata plus Google Drive sync state.

Actual bytes live in the local blob store under ``storage_key``; the remote
copy is addressed by ``remote_id`` once the first upload succeeded.
"""
import enum
import uuid
from sqlalchemy import BigInteger, Enum, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from app.models.base import Base, TimestampMixin


class SyncStatus(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    OUTDATED = "outdated"
    UPLOADED = "uploaded"
    ERROR = "error"
    PENDING_DELETE = "pending_delete"
    DELETED = "deleted"


class FileRecord(Base, TimestampMixin):
    __tablename__ = "files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    original_name: Mapped[str] = mapped_column(String(500), nullable=False)
    storage_key: Mapped[str] = mapped_column(String(1000), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), default="application/octet-stream")
    size_bytes: Mapped[int] = mapped_column(BigInteger, default=0)
    project_name: Mapped[str] = mapped_column(String(255), default="")
    remote_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sync_status: Mapped[SyncStatus] = mapped_column(
        Enum(
            SyncStatus,
            name="sync_status",
            native_enum=False,
            length=20,
            values_callable=lambda members: [m.value for m in members],
        ),
        default=SyncStatus.IN_PROGRESS,
        index=True,
    )

    __table_args__ = (
        Index("idx_files_updated_at", "updated_at"),
    )

    def __repr__(self) -> str:
        return f"<FileRecord {self.id} {self.sync_status} remote={self.remote_id}>"
