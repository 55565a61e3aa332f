"""Tag endpoints."""

import logging
from typing import List

from fastapi import APIRouter, Depends

from ..core.entity_store import StorageError
from ..core.errors import MarksyncError
from ..models.tag import TagCreate, TagUpdate, TagView
from .dependencies import Services, get_services
from .errors import http_error

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/tags", response_model=List[TagView])
async def list_tags(services: Services = Depends(get_services)):
    """List tags with usage counts derived from the bookmark set."""
    usage = services.queries.tag_usage()
    return [TagView.from_tag(tag, usage.get(tag.id, 0)) for tag in services.store.list_tags()]


@router.post("/tags", response_model=TagView, status_code=201)
async def create_tag(request: TagCreate, services: Services = Depends(get_services)):
    """Create a tag. Names are unique (409 on duplicates)."""
    try:
        tag = await services.store.create_tag(request)
        return TagView.from_tag(tag, 0)
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e


@router.put("/tags/{tag_id}", response_model=TagView)
async def update_tag(tag_id: str, request: TagUpdate, services: Services = Depends(get_services)):
    try:
        tag = await services.store.update_tag(tag_id, request)
        return TagView.from_tag(tag, services.queries.tag_usage().get(tag.id, 0))
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e


@router.delete("/tags/{tag_id}", response_model=dict)
async def delete_tag(tag_id: str, services: Services = Depends(get_services)):
    """Delete a tag and remove it from every bookmark."""
    try:
        stripped = await services.store.delete_tag(tag_id)
        return {"deleted": tag_id, "updated_bookmarks": stripped}
    except (MarksyncError, StorageError) as e:
        raise http_error(e) from e
