"""Bookmark CRUD and query endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..core.entity_store import StorageError
from ..core.errors import MarksyncError
from ..core.folder_lock import AccessSession
from ..core.url_metadata import UrlMetadata
from ..models.bookmark import BookmarkCreate, BookmarkUpdate, BookmarkView
from .dependencies import Services, get_services, get_session
from .errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter()


class MetadataRequest(BaseModel):
    url: Optional[str] = None


def _listing(bookmarks: list) -> dict:
    return {"bookmarks": bookmarks, "total": len(bookmarks)}


@router.get("/bookmarks", response_model=dict)
async def list_bookmarks(
    folder_id: Optional[str] = Query(None, description="Only bookmarks directly in this folder"),
    tag: Optional[str] = Query(None, description="Only bookmarks carrying this exact tag"),
    q: Optional[str] = Query(None, description="Case-insensitive text search"),
    services: Services = Depends(get_services),
    session: Optional[AccessSession] = Depends(get_session),
):
    """List visible bookmarks, optionally filtered (criteria are combined)."""
    try:
        return _listing(services.queries.filter(folder_id=folder_id, tag=tag, query=q, session=session))
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e


@router.get("/bookmarks/search", response_model=dict)
async def search_bookmarks(
    q: str = Query("", description="Matched against title, description, url and tags"),
    services: Services = Depends(get_services),
    session: Optional[AccessSession] = Depends(get_session),
):
    """Search visible bookmarks. An empty query lists everything visible."""
    results = services.queries.search(q, session=session)
    return {**_listing(results), "query": q}


@router.get("/bookmarks/folder/{folder_id}", response_model=dict)
async def list_folder_bookmarks(
    folder_id: str,
    services: Services = Depends(get_services),
    session: Optional[AccessSession] = Depends(get_session),
):
    """Bookmarks directly inside a folder."""
    try:
        return _listing(services.queries.list_by_folder(folder_id, session=session))
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e


@router.get("/bookmarks/tag/{tag}", response_model=dict)
async def list_tag_bookmarks(
    tag: str,
    services: Services = Depends(get_services),
    session: Optional[AccessSession] = Depends(get_session),
):
    """Visible bookmarks carrying a tag. Unknown tags give an empty list."""
    return _listing(services.queries.list_by_tag(tag, session=session))


@router.post("/bookmarks", response_model=BookmarkView, status_code=201)
async def create_bookmark(
    request: BookmarkCreate,
    services: Services = Depends(get_services),
    session: Optional[AccessSession] = Depends(get_session),
):
    """Create a bookmark. Unknown tag names create the tags."""
    try:
        services.lock_policy.ensure_target_access(request.folder_id, session)
        bookmark = await services.store.create_bookmark(request)
        return BookmarkView.from_bookmark(bookmark, services.store.tag_names())
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e


@router.post("/bookmarks/fetch-metadata", response_model=UrlMetadata)
async def fetch_url_metadata(
    request: MetadataRequest,
    services: Services = Depends(get_services),
):
    """Look up a page's title, description and favicon to prefill a new bookmark.

    Unreachable pages still answer 200, titled with the host name and
    carrying the failure in `error`. A blank url is a 400.
    """
    try:
        return await services.metadata.fetch(request.url)
    except MarksyncError as e:
        raise http_error(e) from e


@router.get("/bookmarks/{bookmark_id}", response_model=BookmarkView)
async def get_bookmark(
    bookmark_id: str,
    services: Services = Depends(get_services),
    session: Optional[AccessSession] = Depends(get_session),
):
    """Get a specific bookmark by ID."""
    try:
        return services.queries.get_bookmark(bookmark_id, session=session)
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e


@router.put("/bookmarks/{bookmark_id}", response_model=BookmarkView)
async def update_bookmark(
    bookmark_id: str,
    request: BookmarkUpdate,
    services: Services = Depends(get_services),
    session: Optional[AccessSession] = Depends(get_session),
):
    """Update a bookmark. Only fields present in the body change."""
    try:
        services.queries.get_bookmark(bookmark_id, session=session)
        services.lock_policy.ensure_target_access(request.folder_id, session)
        bookmark = await services.store.update_bookmark(bookmark_id, request)
        return BookmarkView.from_bookmark(bookmark, services.store.tag_names())
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e


@router.delete("/bookmarks/{bookmark_id}", response_model=BookmarkView)
async def delete_bookmark(
    bookmark_id: str,
    services: Services = Depends(get_services),
    session: Optional[AccessSession] = Depends(get_session),
):
    """Delete a bookmark and return it."""
    try:
        bookmark = services.queries.get_bookmark(bookmark_id, session=session)
        await services.store.delete_bookmark(bookmark_id)
        return bookmark
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e


@router.post("/bookmarks/{bookmark_id}/visit", response_model=BookmarkView)
async def record_visit(
    bookmark_id: str,
    services: Services = Depends(get_services),
    session: Optional[AccessSession] = Depends(get_session),
):
    """Track a visit (visit count and last visited time)."""
    try:
        services.queries.get_bookmark(bookmark_id, session=session)
        bookmark = await services.store.record_visit(bookmark_id)
        return BookmarkView.from_bookmark(bookmark, services.store.tag_names())
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e
