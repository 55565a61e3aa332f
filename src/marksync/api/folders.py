"""Folder endpoints, including password locks."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from ..core.entity_store import StorageError
from ..core.errors import AccessDeniedError, MarksyncError
from ..core.folder_lock import AccessSession
from ..models.folder import FolderCreate, FolderUpdate, FolderView
from .dependencies import SESSION_HEADER, Services, get_services, get_session
from .errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter()


class PasswordRequest(BaseModel):
    password: str = ""


class UnlockResponse(BaseModel):
    folder_id: str
    session_token: str


def _view(services: Services, folder, session: Optional[AccessSession]) -> FolderView:
    policy = services.lock_policy
    return FolderView.from_folder(
        folder,
        accessible=policy.is_folder_accessible(folder.id, session),
        locked_by=policy.effective_lock(folder.id),
    )


@router.get("/folders", response_model=List[FolderView])
async def list_folders(
    services: Services = Depends(get_services),
    session: Optional[AccessSession] = Depends(get_session),
):
    """List all folders. Locked ones are listed but marked inaccessible."""
    return [_view(services, f, session) for f in services.store.list_folders()]


@router.post("/folders", response_model=FolderView, status_code=201)
async def create_folder(
    request: FolderCreate,
    services: Services = Depends(get_services),
    session: Optional[AccessSession] = Depends(get_session),
):
    try:
        services.lock_policy.ensure_target_access(request.parent_id, session)
        folder = await services.store.create_folder(request)
        return _view(services, folder, session)
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e


@router.get("/folders/{folder_id}", response_model=FolderView)
async def get_folder(
    folder_id: str,
    services: Services = Depends(get_services),
    session: Optional[AccessSession] = Depends(get_session),
):
    try:
        return _view(services, services.store.get_folder(folder_id), session)
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e


@router.put("/folders/{folder_id}", response_model=FolderView)
async def update_folder(
    folder_id: str,
    request: FolderUpdate,
    services: Services = Depends(get_services),
    session: Optional[AccessSession] = Depends(get_session),
):
    """Rename, recolor or move a folder. Moves that would form a cycle fail with 409."""
    try:
        services.lock_policy.ensure_access(folder_id, session)
        services.lock_policy.ensure_target_access(request.parent_id, session)
        folder = await services.store.update_folder(folder_id, request)
        return _view(services, folder, session)
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e


@router.delete("/folders/{folder_id}", response_model=dict)
async def delete_folder(
    folder_id: str,
    services: Services = Depends(get_services),
    session: Optional[AccessSession] = Depends(get_session),
):
    """Delete a folder. Its bookmarks move to the root, never deleted."""
    try:
        services.lock_policy.ensure_access(folder_id, session)
        reassigned = await services.store.delete_folder(folder_id)
        return {"deleted": folder_id, "reassigned_bookmarks": reassigned}
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e


@router.put("/folders/{folder_id}/lock", status_code=204)
async def lock_folder(
    folder_id: str,
    request: PasswordRequest,
    services: Services = Depends(get_services),
    session: Optional[AccessSession] = Depends(get_session),
):
    """Lock a folder behind a password, or change the password of a locked one."""
    try:
        services.lock_policy.ensure_access(folder_id, session)
        await services.store.lock_folder(folder_id, request.password)
        return Response(status_code=204)
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e


@router.post("/folders/{folder_id}/unlock", response_model=UnlockResponse)
async def unlock_folder(
    folder_id: str,
    request: PasswordRequest,
    response: Response,
    services: Services = Depends(get_services),
    session: Optional[AccessSession] = Depends(get_session),
):
    """Verify a folder's password and open it for the returned session.

    Send the token back in the X-Marksync-Session header on later requests.
    """
    try:
        session = session or services.sessions.create()
        if not await services.lock_policy.verify(folder_id, request.password, session):
            raise AccessDeniedError("Folder is locked", entity_id=folder_id)
        response.headers[SESSION_HEADER] = session.token
        return UnlockResponse(folder_id=folder_id, session_token=session.token)
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e


@router.delete("/folders/{folder_id}/lock", response_model=FolderView)
async def remove_folder_lock(
    folder_id: str,
    request: PasswordRequest,
    services: Services = Depends(get_services),
    session: Optional[AccessSession] = Depends(get_session),
):
    """Remove a folder's lock. The current password is required."""
    try:
        folder = await services.store.remove_folder_lock(folder_id, request.password)
        return _view(services, folder, session)
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e
