"""Folder data models."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from .bookmark import utc_now

DEFAULT_FOLDER_COLOR = "#4285F4"


class Folder(BaseModel):
    """Stored folder. password_hash is set only while is_locked is True."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = Field(..., min_length=1, max_length=200)
    parent_id: Optional[str] = None
    is_locked: bool = False
    password_hash: Optional[str] = None
    color: str = DEFAULT_FOLDER_COLOR
    icon: str = "folder"
    order: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Folder name cannot be empty or whitespace")
        return v.strip()


class FolderCreate(BaseModel):
    name: str = ""
    parent_id: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    order: Optional[int] = None


class FolderUpdate(BaseModel):
    """Partial folder update. An explicit null parent_id moves the folder to the root.

    Locking goes through the lock operations.
    """

    name: Optional[str] = None
    parent_id: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    order: Optional[int] = None


class FolderView(BaseModel):
    """Folder as returned to callers. Never carries the password hash."""

    id: str
    name: str
    parent_id: Optional[str] = None
    is_locked: bool = False
    color: str = DEFAULT_FOLDER_COLOR
    icon: str = "folder"
    order: int = 0
    accessible: bool = True
    locked_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_folder(
        cls, folder: Folder, accessible: bool = True, locked_by: Optional[str] = None
    ) -> "FolderView":
        """locked_by names the nearest locked folder on the chain, itself included."""
        return cls(
            **folder.model_dump(exclude={"password_hash"}),
            accessible=accessible,
            locked_by=locked_by,
        )
