"""Remote durable stores the sync coordinator reconciles against."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import httpx
from pydantic import ValidationError

from ..models.config import AppConfig, EnvSettings
from ..models.snapshot import BookmarkData
from ..utils.file_lock import FileLocker, FileLockError

logger = logging.getLogger(__name__)

REMOTE_DOCUMENT_NAME = "bookmarks.json"

TRANSIENT_FAILURES = {"timeout", "network", "ratelimit", "server_error", "busy", "io"}


class RemoteStoreError(Exception):
    """Remote store failure, classified for retry decisions."""

    def __init__(self, store: str, failure_type: str, message: str):
        super().__init__(message)
        self.store = store
        self.failure_type = failure_type
        self.message = message

    @property
    def is_transient(self) -> bool:
        return self.failure_type in TRANSIENT_FAILURES


def parse_remote_document(raw: str, store: str) -> BookmarkData:
    try:
        return BookmarkData.model_validate_json(raw)
    except ValidationError as e:
        raise RemoteStoreError(store, "invalid_document", f"Remote document is invalid: {e}") from e


class RemoteStore(ABC):
    """A place holding one BookmarkData document."""

    name = "remote"

    @abstractmethod
    async def fetch(self) -> Optional[BookmarkData]:
        """Return the remote document, or None if nothing was pushed yet."""

    @abstractmethod
    async def push(self, document: BookmarkData) -> None:
        """Replace the remote document."""

    @abstractmethod
    def describe(self) -> str:
        """Human readable location for logs and status output."""

    async def close(self) -> None:
        return None


class DriveFolderRemoteStore(RemoteStore):
    """Document kept in a cloud drive's locally synced folder.

    The drive client (Google Drive, OneDrive, Dropbox) moves the file; this
    store only reads and atomically replaces it.
    """

    name = "drive_folder"

    def __init__(self, folder: Path, lock_timeout: float = 5.0):
        self.folder = Path(folder)
        self.document_path = self.folder / REMOTE_DOCUMENT_NAME
        self.lock_timeout = lock_timeout

    def describe(self) -> str:
        return str(self.document_path)

    async def fetch(self) -> Optional[BookmarkData]:
        if not self.folder.exists():
            raise RemoteStoreError(
                self.name, "unavailable", f"Drive folder does not exist: {self.folder}"
            )
        if not self.document_path.exists():
            return None
        try:
            raw = await asyncio.to_thread(self.document_path.read_text, encoding="utf-8")
        except OSError as e:
            raise RemoteStoreError(self.name, "io", f"Failed to read {self.document_path}: {e}") from e
        return parse_remote_document(raw, self.name)

    async def push(self, document: BookmarkData) -> None:
        if not self.folder.exists():
            raise RemoteStoreError(
                self.name, "unavailable", f"Drive folder does not exist: {self.folder}"
            )
        payload = document.model_dump_json(indent=2)
        try:
            async with FileLocker(self.document_path, timeout=self.lock_timeout):
                await asyncio.to_thread(self._write, payload)
        except FileLockError as e:
            raise RemoteStoreError(self.name, "busy", str(e)) from e
        except OSError as e:
            raise RemoteStoreError(self.name, "io", f"Failed to write {self.document_path}: {e}") from e
        logger.info(f"Pushed document to {self.document_path}")

    def _write(self, payload: str) -> None:
        tmp_path = self.document_path.with_name(REMOTE_DOCUMENT_NAME + ".tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        tmp_path.replace(self.document_path)


class HttpRemoteStore(RemoteStore):
    """Document served at `{base_url}/bookmarks.json` (GET / PUT)."""

    name = "http"

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.document_url = f"{self.base_url}/{REMOTE_DOCUMENT_NAME}"
        self.token = token
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def describe(self) -> str:
        return self.document_url

    async def fetch(self) -> Optional[BookmarkData]:
        response = await self._request("GET")
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        return parse_remote_document(response.text, self.name)

    async def push(self, document: BookmarkData) -> None:
        response = await self._request(
            "PUT",
            content=document.model_dump_json(),
            headers={"Content-Type": "application/json"},
        )
        self._raise_for_status(response)
        logger.info(f"Pushed document to {self.document_url}")

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, **kwargs) -> httpx.Response:
        headers = dict(kwargs.pop("headers", {}) or {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        try:
            return await self._client.request(method, self.document_url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteStoreError(self.name, "timeout", f"Request timed out: {e}") from e
        except httpx.TransportError as e:
            # Connection, protocol and proxy failures alike.
            raise RemoteStoreError(self.name, "network", f"Network error: {e}") from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        message = f"HTTP {response.status_code}: {response.text[:500]}"
        if response.status_code in {401, 403}:
            raise RemoteStoreError(self.name, "authentication", message)
        if response.status_code == 429:
            raise RemoteStoreError(self.name, "ratelimit", message)
        if response.status_code >= 500:
            raise RemoteStoreError(self.name, "server_error", message)
        raise RemoteStoreError(self.name, "invalid_request", message)


def build_remote_store(config: AppConfig, env: Optional[EnvSettings] = None) -> Optional[RemoteStore]:
    """Create the configured remote store, or None when sync is disabled."""
    if config.remote_provider == "drive_folder":
        return DriveFolderRemoteStore(Path(config.remote_path))
    if config.remote_provider == "http":
        token = env.marksync_remote_token if env else None
        return HttpRemoteStore(config.remote_url, token=token, timeout=config.remote_timeout_seconds)
    return None
