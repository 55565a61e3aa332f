"""Bookmark data models."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _dedupe(values: List[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


class BookmarkMetadata(BaseModel):
    """Usage metadata. Advisory only, never needed for correctness."""

    visit_count: int = Field(default=0, ge=0, description="Number of recorded visits")
    last_visited: Optional[datetime] = Field(None, description="Last visit timestamp")
    custom_data: Dict[str, Any] = Field(default_factory=dict)


class Bookmark(BaseModel):
    """Stored bookmark.

    Tags are held as Tag ids; names are resolved through the tag set so the
    two can never drift apart.
    """

    id: str = Field(default_factory=lambda: str(uuid4()), description="Unique identifier (UUID)")
    url: str = Field(..., min_length=1, description="The bookmarked URL")
    title: str = Field(..., min_length=1, max_length=500, description="Bookmark title")
    description: Optional[str] = Field(None, max_length=5000)
    favicon: Optional[str] = Field(None, description="Favicon URL or data reference")
    folder_id: Optional[str] = Field(None, description="Owning folder, None for the root")
    tag_ids: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    metadata: BookmarkMetadata = Field(default_factory=BookmarkMetadata)

    @field_validator("url", "title")
    @classmethod
    def validate_required_text(cls, v: str) -> str:
        """Reject empty or whitespace-only values."""
        if not v.strip():
            raise ValueError("Value cannot be empty or whitespace")
        return v.strip()

    @field_validator("tag_ids")
    @classmethod
    def validate_tag_ids(cls, v: List[str]) -> List[str]:
        return _dedupe(v)


class BookmarkCreate(BaseModel):
    """Incoming bookmark without an id.

    url and title are plain strings here; blank values are rejected by the
    entity store so the error can name the offending field.
    """

    url: str = ""
    title: str = ""
    description: Optional[str] = None
    favicon: Optional[str] = None
    folder_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list, description="Tag names")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "url": "https://github.com/python/cpython",
                "title": "CPython",
                "description": "Reference interpreter",
                "folder_id": None,
                "tags": ["python", "open-source"],
            }
        }
    )


class BookmarkUpdate(BaseModel):
    """Partial bookmark update.

    Only fields present in the request are applied; an explicit null
    folder_id moves the bookmark back to the root.
    """

    url: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    favicon: Optional[str] = None
    folder_id: Optional[str] = None
    tags: Optional[List[str]] = None


class BookmarkView(BaseModel):
    """Bookmark as returned to callers, with tag names resolved."""

    id: str
    url: str
    title: str
    description: Optional[str] = None
    favicon: Optional[str] = None
    folder_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    metadata: BookmarkMetadata = Field(default_factory=BookmarkMetadata)

    @classmethod
    def from_bookmark(cls, bookmark: Bookmark, tag_names: Dict[str, str]) -> "BookmarkView":
        """Build a view, dropping tag ids that no longer resolve."""
        return cls(
            id=bookmark.id,
            url=bookmark.url,
            title=bookmark.title,
            description=bookmark.description,
            favicon=bookmark.favicon,
            folder_id=bookmark.folder_id,
            tags=[tag_names[t] for t in bookmark.tag_ids if t in tag_names],
            created_at=bookmark.created_at,
            updated_at=bookmark.updated_at,
            metadata=bookmark.metadata,
        )
