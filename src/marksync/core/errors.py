"""Error taxonomy shared by the store, query engine and sync coordinator."""

from typing import Any, Dict


class MarksyncError(Exception):
    """Base error.

    Keyword details (field, entity_id, entity_type, ids) are kept so callers
    can render an actionable message.
    """

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message, **self.details}


class ValidationError(MarksyncError):
    """Malformed input: a required field is missing or empty."""

    def __init__(self, message: str, field: str, **details: Any):
        super().__init__(message, field=field, **details)
        self.field = field


class NotFoundError(MarksyncError):
    """Reference to a nonexistent id."""

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(
            f"{entity_type.capitalize()} not found: {entity_id}",
            entity_type=entity_type,
            entity_id=entity_id,
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class ConflictError(MarksyncError):
    """Duplicate unique key."""

    pass


class CycleError(MarksyncError):
    """Folder parent chain would become cyclic."""

    pass


class AccessDeniedError(MarksyncError):
    """Locked folder without a successful password check."""

    pass


class SyncError(MarksyncError):
    """Terminal sync failure. Nothing was committed locally."""

    pass


class SyncInProgressError(SyncError):
    """A sync is already running."""

    pass


class SyncConflictError(SyncError):
    """Both sides changed an entity at the same instant with different content."""

    pass


class RestoreError(MarksyncError):
    """Snapshot is corrupt or cannot be applied as a whole."""

    pass


class IntegrityError(RestoreError):
    """A document violates a referential or uniqueness invariant."""

    pass
