"""Health check endpoint."""

from fastapi import APIRouter, Depends

from .dependencies import Services, get_services

router = APIRouter()


@router.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """Health check endpoint."""
    state = services.store.state
    status = services.coordinator.status
    storage_ok = services.store.data_path is None or services.store.data_path.parent.exists()

    return {
        "status": "healthy" if storage_ok and status.last_result != "failed" else "degraded",
        "version": "0.1.0",
        "storage_accessible": storage_ok,
        "data_file": str(services.store.data_path) if services.store.data_path else None,
        "revision": state.revision,
        "bookmark_count": len(state.bookmarks),
        "folder_count": len(state.folders),
        "tag_count": len(state.tags),
        "remote": status.remote,
        "sync_state": status.state.value,
        "last_sync_result": status.last_result,
        "last_synced_at": status.last_synced_at,
        "backup_count": len(services.coordinator.list_backups()),
    }
