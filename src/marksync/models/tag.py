"""Tag data models."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from .bookmark import utc_now
from .folder import DEFAULT_FOLDER_COLOR


class Tag(BaseModel):
    """Stored tag. The name is the business key and is unique (case-sensitive)."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = Field(..., min_length=1, max_length=100)
    color: str = DEFAULT_FOLDER_COLOR
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Tag name cannot be empty or whitespace")
        return v.strip()


class TagCreate(BaseModel):
    name: str = ""
    color: Optional[str] = None


class TagUpdate(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None


class TagView(BaseModel):
    """Tag with its usage count, always derived from the bookmark set."""

    id: str
    name: str
    color: str
    usage_count: int = 0
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_tag(cls, tag: Tag, usage_count: int) -> "TagView":
        return cls(**tag.model_dump(), usage_count=usage_count)
