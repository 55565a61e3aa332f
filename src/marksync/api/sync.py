"""Sync, backup and restore endpoints."""

import logging
from typing import List

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from ..core.entity_store import StorageError
from ..core.errors import MarksyncError
from ..core.sync_coordinator import SyncStatus
from ..models.snapshot import BackupInfo
from .dependencies import Services, get_services
from .errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter()


class RestoreResponse(BaseModel):
    restored: BackupInfo
    bookmark_count: int


@router.post("/sync", status_code=204)
async def trigger_sync(services: Services = Depends(get_services)):
    """Run one sync with the remote store.

    409 if a sync is already running, 502 if the remote keeps failing.
    """
    try:
        await services.coordinator.sync()
        return Response(status_code=204)
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e


@router.get("/sync/status", response_model=SyncStatus)
async def sync_status(services: Services = Depends(get_services)):
    return services.coordinator.status


@router.post("/backup", response_model=BackupInfo, status_code=201)
async def create_backup(services: Services = Depends(get_services)):
    """Write a snapshot of the current state."""
    try:
        return await services.coordinator.backup(reason="manual")
    except (MarksyncError, StorageError, OSError) as e:
        raise http_error(e) from e


@router.get("/backup", response_model=List[BackupInfo])
async def list_backups(services: Services = Depends(get_services)):
    """Snapshots, newest first."""
    return services.coordinator.list_backups()


@router.post("/backup/{backup_id}/restore", response_model=RestoreResponse)
async def restore_backup(backup_id: str, services: Services = Depends(get_services)):
    """Replace all state with a snapshot. On failure nothing changes."""
    try:
        info = await services.coordinator.restore(backup_id)
        return RestoreResponse(restored=info, bookmark_count=len(services.store.state.bookmarks))
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e
