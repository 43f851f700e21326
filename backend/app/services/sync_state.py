"""Drive sync state machine.

Every status change on a FileRecord goes through ``transition()`` so an
illegal move (e.g. ``deleted`` -> ``uploaded``) fails loudly at the call site
instead of being persisted.

    (new) --create--> in_progress
    in_progress/outdated --push ok--> uploaded
    in_progress/outdated --push failed--> error
    * --content replaced--> outdated
    uploaded/error/outdated/in_progress/deleted --delete requested--> pending_delete
    pending_delete --remote delete ok--> deleted
    pending_delete --remote delete failed--> error
    uploaded/error/outdated/in_progress --restore ok/failed--> uploaded/error
"""
from app.models.file_record import FileRecord, SyncStatus

S = SyncStatus

ALLOWED_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    S.IN_PROGRESS: frozenset({S.OUTDATED, S.UPLOADED, S.ERROR, S.PENDING_DELETE}),
    S.OUTDATED: frozenset({S.OUTDATED, S.UPLOADED, S.ERROR, S.PENDING_DELETE}),
    S.UPLOADED: frozenset({S.UPLOADED, S.OUTDATED, S.ERROR, S.PENDING_DELETE}),
    S.ERROR: frozenset({S.ERROR, S.OUTDATED, S.UPLOADED, S.PENDING_DELETE}),
    S.PENDING_DELETE: frozenset({S.PENDING_DELETE, S.DELETED, S.ERROR, S.OUTDATED}),
    S.DELETED: frozenset({S.OUTDATED, S.PENDING_DELETE}),
}

# Statuses the push phase picks up
PUSHABLE = (S.IN_PROGRESS, S.OUTDATED)

# Statuses whose local blob may be restored from Drive
RESTORABLE = (S.IN_PROGRESS, S.OUTDATED, S.UPLOADED, S.ERROR)


class IllegalTransitionError(ValueError):
    """Raised when a status change is not in ALLOWED_TRANSITIONS."""

    def __init__(self, current: SyncStatus | None, target: SyncStatus):
        self.current = current
        self.target = target
        source = current.value if current is not None else "new"
        super().__init__(f"Illegal sync status transition: {source} -> {target.value}")


def can_transition(current: SyncStatus, target: SyncStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition(record: FileRecord, target: SyncStatus) -> FileRecord:
    """Move ``record`` to ``target`` after validating against the table.

    Records that have not been flushed yet (no status) may only start in
    ``in_progress``.
    """
    current = record.sync_status
    if current is None:
        if target is not S.IN_PROGRESS:
            raise IllegalTransitionError(None, target)
    elif not can_transition(current, target):
        raise IllegalTransitionError(current, target)
    record.sync_status = target
    return record
