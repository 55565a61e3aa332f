"""Persisted document and backup metadata models."""

from datetime import datetime
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field

from .bookmark import Bookmark, utc_now
from .folder import Folder
from .tag import Tag

DOCUMENT_VERSION = "1.0"


class BookmarkData(BaseModel):
    """Self-contained document holding the full entity set.

    This is the unit written to the local data file, exchanged with the
    remote store and frozen into backups.
    """

    version: str = DOCUMENT_VERSION
    last_modified: datetime = Field(default_factory=utc_now)
    bookmarks: List[Bookmark] = Field(default_factory=list)
    folders: List[Folder] = Field(default_factory=list)
    tags: List[Tag] = Field(default_factory=list)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "version": "1.0",
                "last_modified": "2026-02-03T10:30:00Z",
                "bookmarks": [],
                "folders": [],
                "tags": [],
            }
        }
    )

    def counts(self) -> dict:
        return {
            "bookmark_count": len(self.bookmarks),
            "folder_count": len(self.folders),
            "tag_count": len(self.tags),
        }


class BackupInfo(BaseModel):
    """Metadata describing one stored snapshot."""

    id: str
    created_at: datetime
    bookmark_count: int = 0
    folder_count: int = 0
    tag_count: int = 0
    size_bytes: int = 0
    reason: Literal["manual", "pre-restore", "cli"] = "manual"
