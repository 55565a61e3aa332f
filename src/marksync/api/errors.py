"""Translation of domain errors into HTTP responses."""

import logging

from fastapi import HTTPException

from ..core.entity_store import StorageError
from ..core.errors import (
    AccessDeniedError,
    ConflictError,
    CycleError,
    MarksyncError,
    NotFoundError,
    RestoreError,
    SyncConflictError,
    SyncError,
    SyncInProgressError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Order matters: subclasses before their bases.
STATUS_CODES = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (AccessDeniedError, 403),
    (ConflictError, 409),
    (CycleError, 409),
    (SyncInProgressError, 409),
    (SyncConflictError, 409),
    (SyncError, 502),
    (RestoreError, 500),
)


def http_error(error: Exception) -> HTTPException:
    """Build the HTTPException for a domain or storage error."""
    if isinstance(error, MarksyncError):
        for error_type, status_code in STATUS_CODES:
            if isinstance(error, error_type):
                return HTTPException(status_code=status_code, detail=error.to_dict())
        logger.error(f"Unmapped error: {error.message}")
        return HTTPException(status_code=500, detail=error.to_dict())

    if isinstance(error, StorageError):
        logger.error(f"Storage error: {error}")
        return HTTPException(
            status_code=500, detail={"error": "StorageError", "message": str(error)}
        )

    logger.error(f"Internal error: {error}")
    return HTTPException(
        status_code=500, detail={"error": "InternalError", "message": f"Internal error: {error}"}
    )
