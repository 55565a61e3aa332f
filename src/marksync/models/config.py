"""Configuration models."""

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvSettings(BaseSettings):
    """Settings loaded from .env file (secrets and credentials)."""

    marksync_remote_token: Optional[str] = Field(
        None, description="Bearer token for the HTTP remote store"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class AppConfig(BaseModel):
    """Application configuration from config.yaml."""

    # Server settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: Optional[int] = Field(None, description="Server port (default 8000 if None)")
    allowed_origins: List[str] = Field(
        default_factory=list, description="Extra CORS origins for the web client"
    )

    # Local durable state
    data_dir: str = Field(..., description="Directory holding the local data document")
    backup_dir: Optional[str] = Field(
        None, description="Where snapshots are written (default: <data_dir>/backups)"
    )
    max_backups: int = Field(default=20, ge=1, le=1000, description="Snapshots to retain")
    seed_default_folders: bool = Field(
        default=True, description="Create the default folders on first start"
    )

    # Remote store
    remote_provider: Literal["none", "drive_folder", "http"] = Field(
        default="none",
        description="'drive_folder' syncs through a cloud drive's local folder, 'http' talks to a document endpoint.",
    )
    remote_path: Optional[str] = Field(
        None, description="Cloud drive folder (required for drive_folder)"
    )
    remote_url: Optional[str] = Field(None, description="Base URL (required for http)")
    remote_timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    # Sync behaviour
    sync_interval_seconds: int = Field(
        default=0, ge=0, description="Background sync period, 0 disables it"
    )
    sync_max_attempts: int = Field(default=3, ge=1, le=10)
    sync_retry_delay_seconds: float = Field(default=0.5, ge=0, le=60)
    sync_tie_break: Literal["prefer_remote", "raise"] = Field(
        default="prefer_remote",
        description="What to do when both sides changed an entity at the same instant",
    )

    # Page metadata lookups
    metadata_timeout_seconds: float = Field(default=5.0, gt=0, le=60)

    # Locked folder sessions
    session_ttl_seconds: int = Field(default=3600, ge=60, le=86400 * 7)

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "host": "127.0.0.1",
            "port": 8000,
            "data_dir": "/home/user/.marksync/data",
            "remote_provider": "drive_folder",
            "remote_path": "/home/user/GoogleDrive/Marksync",
            "sync_interval_seconds": 300,
            "sync_tie_break": "prefer_remote",
        }
    })

    def data_file(self) -> Path:
        return Path(self.data_dir) / "bookmarks.yaml"

    def base_file(self) -> Path:
        """Document agreed with the remote at the last successful sync."""
        return Path(self.data_dir) / "sync_base.yaml"

    def backup_path(self) -> Path:
        if self.backup_dir:
            return Path(self.backup_dir)
        return Path(self.data_dir) / "backups"
