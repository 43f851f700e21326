"""Drive sync reconciliation engine.

One pass = push phase (upload/update in_progress + outdated records) followed
by delete phase (purge remote copies of pending_delete records). A separate,
batch-bounded restore operation pulls locally missing blobs back from Drive.

Records are processed strictly one at a time and every status change is
committed before moving on, so a crash leaves at most the in-flight record
ambiguous. Per-record failures become ItemOutcome values; they never abort a
pass. Only faults in the scaffolding itself (e.g. the status query) propagate.

The status query is only a candidate list. Each record is re-read before and
after its remote call; if a mutator deleted or replaced it meanwhile, the
mutator's status wins and the outcome is ``skipped``.

The single-flight guard is an asyncio.Lock owned by the engine: it protects
one process only. Running several app instances against the same database can
still produce duplicate uploads.
"""
import asyncio
import enum
import logging
import uuid
from dataclasses import asdict, dataclass
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.file_record import FileRecord, SyncStatus
from app.services.drive_client import RemoteError, RemoteStorageClient
from app.services.file_storage import LocalBlobStore, LocalIOError
from app.services.record_store import FileRecordStore
from app.services.sync_state import PUSHABLE, RESTORABLE, transition

logger = logging.getLogger(__name__)

RESTORE_MIN_LIMIT = 1
RESTORE_MAX_LIMIT = 50


def clamp_restore_limit(limit) -> int:
    """Clamp a requested restore batch size to [1, 50]."""
    try:
        value = int(limit)
    except (TypeError, ValueError):
        value = RESTORE_MAX_LIMIT
    return max(RESTORE_MIN_LIMIT, min(value, RESTORE_MAX_LIMIT))


# ── Per-item results ─────────────────────────────────────────────

class Action(str, enum.Enum):
    SYNCED = "synced"
    DELETED = "deleted"
    RESTORED = "restored"
    SKIPPED = "skipped"
    FAILED = "failed"


class FailureKind(str, enum.Enum):
    LOCAL_MISSING = "local_missing"
    LOCAL_IO = "local_io"
    REMOTE = "remote"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class ItemOutcome:
    record_id: uuid.UUID
    action: Action
    failure: Optional[FailureKind] = None
    detail: str = ""

    @classmethod
    def failed(cls, record_id, kind: FailureKind, detail: str = "") -> "ItemOutcome":
        return cls(record_id, Action.FAILED, kind, detail)


def _classify(error: Exception) -> FailureKind:
    if isinstance(error, RemoteError):
        return FailureKind.REMOTE
    if isinstance(error, LocalIOError):
        return FailureKind.LOCAL_IO
    return FailureKind.UNEXPECTED


@dataclass
class SyncSummary:
    synced: int = 0
    deleted: int = 0
    failed: int = 0

    def add(self, outcome: ItemOutcome) -> None:
        if outcome.action is Action.SYNCED:
            self.synced += 1
        elif outcome.action is Action.DELETED:
            self.deleted += 1
        elif outcome.action is Action.FAILED:
            self.failed += 1

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class RestoreSummary:
    limit: int
    checked: int = 0
    restored: int = 0
    skipped: int = 0
    failed: int = 0

    def add(self, outcome: ItemOutcome) -> None:
        self.checked += 1
        if outcome.action is Action.RESTORED:
            self.restored += 1
        elif outcome.action is Action.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1

    def as_dict(self) -> dict:
        return asdict(self)


# ── Engine ───────────────────────────────────────────────────────

class DriveSyncEngine:
    """Drives file records through the sync state machine.

    Args:
        session_factory: async_sessionmaker (or any zero-arg callable returning
            an AsyncSession context manager). One session spans one pass.
        storage: local blob store.
        remote: remote storage capability (Google Drive in production).
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        storage: LocalBlobStore,
        remote: RemoteStorageClient,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.remote = remote
        self._pass_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._pass_lock.locked()

    async def run_reconciliation_pass(self) -> SyncSummary:
        """Push then delete. Returns zeros without doing anything if a pass is
        already in flight (skip, not queue)."""
        if self._pass_lock.locked():
            logger.info("Drive sync pass already running, skipping")
            return SyncSummary()

        async with self._pass_lock:
            summary = SyncSummary()
            logger.info("Drive sync pass started")
            async with self.session_factory() as db:
                store = FileRecordStore(db)

                for candidate in await store.find_by_status(PUSHABLE):
                    record = await self._reload(store, candidate.id, PUSHABLE)
                    if record is None:
                        continue
                    outcome = await self._push_one(store, record)
                    self._log_outcome(outcome)
                    summary.add(outcome)

                for candidate in await store.find_by_status([SyncStatus.PENDING_DELETE]):
                    record = await self._reload(store, candidate.id, [SyncStatus.PENDING_DELETE])
                    if record is None:
                        continue
                    outcome = await self._delete_one(store, record)
                    self._log_outcome(outcome)
                    summary.add(outcome)

            logger.info(f"Drive sync pass finished: {summary.as_dict()}")
            return summary

    async def restore_missing(self, limit: int = RESTORE_MAX_LIMIT) -> RestoreSummary:
        """Re-download up to ``limit`` locally missing blobs, oldest-touched first.

        Not guarded by the pass lock: it only copies remote state into local
        state.
        """
        batch_limit = clamp_restore_limit(limit)
        summary = RestoreSummary(limit=batch_limit)

        async with self.session_factory() as db:
            store = FileRecordStore(db)
            candidates = await store.find_by_status(
                RESTORABLE, oldest_first=True, limit=batch_limit, with_remote_id=True,
            )
            for candidate in candidates:
                record = await self._reload(store, candidate.id, RESTORABLE)
                if record is None or not record.remote_id:
                    outcome = ItemOutcome(candidate.id, Action.SKIPPED, detail="changed before restore")
                else:
                    outcome = await self._restore_one(store, record)
                self._log_outcome(outcome)
                summary.add(outcome)

        logger.info(f"Drive restore batch finished: {summary.as_dict()}")
        return summary

    # ── Per-record steps ─────────────────────────────────────────
    # Mutators run in other sessions while a remote call is in flight, so each
    # step re-reads the row before writing and leaves a record alone once a
    # mutator has moved it on.

    @staticmethod
    async def _reload(store: FileRecordStore, record_id, statuses) -> Optional[FileRecord]:
        record = await store.find_by_id(record_id)
        if record is None or record.sync_status not in statuses:
            return None
        return record

    async def _push_one(self, store: FileRecordStore, record: FileRecord) -> ItemOutcome:
        record_id = record.id
        storage_key = record.storage_key
        remote_id = None
        try:
            if not await self.storage.exists(storage_key):
                outcome = ItemOutcome.failed(
                    record_id, FailureKind.LOCAL_MISSING, f"blob {storage_key} missing",
                )
            else:
                local_path = self.storage.path_for(storage_key)
                if record.remote_id:
                    remote_id = await self.remote.update_existing(
                        record.remote_id, local_path, record.mime_type, record.original_name,
                    )
                else:
                    remote_id = await self.remote.upload_new(
                        local_path, record.mime_type, record.original_name,
                    )
                outcome = ItemOutcome(record_id, Action.SYNCED)
        except Exception as e:
            outcome = ItemOutcome.failed(record_id, _classify(e), str(e))

        record = await store.find_by_id(record_id)
        if record is None:
            return ItemOutcome(record_id, Action.SKIPPED, detail="record vanished during push")
        if remote_id:
            # Keep the id even if the record moved on: a later delete or
            # update must target the copy that now exists on Drive
            record.remote_id = remote_id
        if record.storage_key != storage_key or record.sync_status not in PUSHABLE:
            if remote_id:
                await store.save(record)
            return ItemOutcome(record_id, Action.SKIPPED, detail="changed during push")

        transition(record, SyncStatus.UPLOADED if outcome.action is Action.SYNCED else SyncStatus.ERROR)
        await store.save(record)
        return outcome

    async def _delete_one(self, store: FileRecordStore, record: FileRecord) -> ItemOutcome:
        record_id = record.id
        remote_id = record.remote_id
        try:
            if remote_id:
                await self.remote.delete(remote_id)
            outcome = ItemOutcome(record_id, Action.DELETED)
        except Exception as e:
            outcome = ItemOutcome.failed(record_id, _classify(e), str(e))

        record = await store.find_by_id(record_id)
        if record is None:
            return ItemOutcome(record_id, Action.SKIPPED, detail="record vanished during delete")
        if record.sync_status is not SyncStatus.PENDING_DELETE:
            if outcome.action is Action.DELETED and remote_id and record.remote_id == remote_id:
                # Remote copy is gone; the next push has to create a new one
                record.remote_id = None
                await store.save(record)
            return ItemOutcome(record_id, Action.SKIPPED, detail="changed during delete")

        transition(record, SyncStatus.DELETED if outcome.action is Action.DELETED else SyncStatus.ERROR)
        await store.save(record)
        return outcome

    async def _restore_one(self, store: FileRecordStore, record: FileRecord) -> ItemOutcome:
        record_id = record.id
        storage_key = record.storage_key
        size = None
        try:
            if await self.storage.exists(storage_key):
                return ItemOutcome(record_id, Action.SKIPPED)
            destination = self.storage.path_for(storage_key)
            await self.remote.download_to_local(record.remote_id, destination)
            size = await self.storage.size_of(storage_key)
            outcome = ItemOutcome(record_id, Action.RESTORED)
        except Exception as e:
            outcome = ItemOutcome.failed(record_id, _classify(e), str(e))

        record = await store.find_by_id(record_id)
        if record is None or record.storage_key != storage_key or record.sync_status not in RESTORABLE:
            if size is not None:
                # The record was deleted or replaced mid-download; drop the stale blob
                await self._discard(storage_key)
            return ItemOutcome(record_id, Action.SKIPPED, detail="changed during restore")

        if size is not None:
            record.size_bytes = size
        transition(record, SyncStatus.UPLOADED if outcome.action is Action.RESTORED else SyncStatus.ERROR)
        await store.save(record)
        return outcome

    async def _discard(self, storage_key: str) -> None:
        try:
            await self.storage.delete(storage_key)
        except LocalIOError as e:
            logger.warning(f"Could not remove stale restored blob {storage_key}: {e}")

    @staticmethod
    def _log_outcome(outcome: ItemOutcome) -> None:
        if outcome.action is Action.FAILED:
            logger.warning(
                "File %s failed (%s): %s", outcome.record_id, outcome.failure.value, outcome.detail,
            )
        else:
            logger.debug("File %s %s", outcome.record_id, outcome.action.value)


# ── Process-wide engine ──────────────────────────────────────────
# Shared by the scheduler and the API so both hit the same lock.

_engine: Optional[DriveSyncEngine] = None


def get_sync_engine() -> DriveSyncEngine:
    """Return the process-wide engine, building the Drive client on first use.

    Raises ValueError when Google Drive credentials are not configured.
    """
    global _engine
    if _engine is None:
        from app.config import settings
        from app.database import async_session
        from app.services.drive_client import GoogleDriveClient
        from app.services.file_storage import file_storage

        _engine = DriveSyncEngine(async_session, file_storage, GoogleDriveClient.from_settings(settings))
    return _engine
