"""Point-in-time snapshots of the entity set."""

import asyncio
import logging
import os
import re
import secrets
import stat
from pathlib import Path
from typing import List

import yaml

from ..models.bookmark import utc_now
from ..models.snapshot import BackupInfo, BookmarkData
from ..utils.yaml_handler import YAMLError, load_document_from_file, serialize_document
from .errors import NotFoundError, RestoreError

logger = logging.getLogger(__name__)

BACKUP_ID_PATTERN = re.compile(r"^\d{8}T\d{12}Z-[0-9a-f]{6}$")


class BackupStore:
    """Directory of immutable snapshot files.

    Each backup is `<id>.yaml` (the document itself) plus `<id>.meta.yaml`
    (its BackupInfo). Files are created exclusively and made read-only;
    nothing ever rewrites them. Only retention pruning removes them.
    """

    def __init__(self, directory: Path, max_backups: int = 20):
        self.directory = Path(directory)
        self.max_backups = max_backups

    async def save(self, document: BookmarkData, reason: str = "manual") -> BackupInfo:
        """Write a new snapshot and prune old ones beyond max_backups."""
        info = await asyncio.to_thread(self._write, document, reason)
        logger.info(
            f"Created backup {info.id} ({info.bookmark_count} bookmarks, reason={reason})"
        )
        await asyncio.to_thread(self.prune)
        return info

    def list(self) -> List[BackupInfo]:
        """Snapshot metadata, newest first. Unreadable metadata is skipped."""
        if not self.directory.exists():
            return []

        backups = []
        for meta_file in self.directory.glob("*.meta.yaml"):
            try:
                data = yaml.safe_load(meta_file.read_text(encoding="utf-8"))
                backups.append(BackupInfo(**data))
            except Exception as e:
                logger.warning(f"Skipping unreadable backup metadata {meta_file.name}: {e}")
        return sorted(backups, key=lambda b: (b.created_at, b.id), reverse=True)

    def get_info(self, backup_id: str) -> BackupInfo:
        for info in self.list():
            if info.id == backup_id:
                return info
        raise NotFoundError("backup", backup_id)

    async def load(self, backup_id: str) -> BookmarkData:
        """Read a snapshot's document.

        Raises:
            NotFoundError: If no backup has this id
            RestoreError: If the snapshot file is corrupt
        """
        path = self._document_path(backup_id)
        if not path.exists():
            raise NotFoundError("backup", backup_id)
        try:
            return await asyncio.to_thread(load_document_from_file, path)
        except YAMLError as e:
            raise RestoreError(f"Backup {backup_id} is corrupt: {e}", entity_id=backup_id) from e

    def prune(self) -> List[str]:
        """Delete the oldest snapshots beyond max_backups."""
        removed = []
        for info in self.list()[self.max_backups:]:
            for path in (self._document_path(info.id), self._meta_path(info.id)):
                path.unlink(missing_ok=True)
            removed.append(info.id)
            logger.info(f"Pruned backup {info.id}")
        return removed

    def _write(self, document: BookmarkData, reason: str) -> BackupInfo:
        self.directory.mkdir(parents=True, exist_ok=True)
        created_at = utc_now()
        backup_id = f"{created_at.strftime('%Y%m%dT%H%M%S%f')}Z-{secrets.token_hex(3)}"

        content = serialize_document(document)
        document_path = self._document_path(backup_id)
        with open(document_path, "x", encoding="utf-8") as f:
            f.write(content)

        info = BackupInfo(
            id=backup_id,
            created_at=created_at,
            size_bytes=len(content.encode("utf-8")),
            reason=reason,
            **document.counts(),
        )
        meta_path = self._meta_path(backup_id)
        with open(meta_path, "x", encoding="utf-8") as f:
            yaml.safe_dump(info.model_dump(mode="json"), f, sort_keys=False)

        if os.name != "nt":
            for path in (document_path, meta_path):
                os.chmod(path, stat.S_IRUSR | stat.S_IRGRP)
        return info

    def _document_path(self, backup_id: str) -> Path:
        self._check_id(backup_id)
        return self.directory / f"{backup_id}.yaml"

    def _meta_path(self, backup_id: str) -> Path:
        self._check_id(backup_id)
        return self.directory / f"{backup_id}.meta.yaml"

    def _check_id(self, backup_id: str) -> None:
        if not BACKUP_ID_PATTERN.match(backup_id):
            raise NotFoundError("backup", backup_id)
