"""Tests for snapshot storage."""

import os
import tempfile
from pathlib import Path

import pytest

from marksync.core.backup_store import BACKUP_ID_PATTERN, BackupStore
from marksync.core.errors import NotFoundError, RestoreError
from marksync.models.bookmark import Bookmark
from marksync.models.folder import Folder
from marksync.models.snapshot import BookmarkData
from marksync.models.tag import Tag


def _document() -> BookmarkData:
    folder = Folder(name="Work")
    tag = Tag(name="rust")
    return BookmarkData(
        folders=[folder],
        tags=[tag],
        bookmarks=[
            Bookmark(url="https://a.com", title="A", folder_id=folder.id, tag_ids=[tag.id])
        ],
    )


class TestBackupStore:
    @pytest.mark.asyncio
    async def test_save_and_load_preserve_content(self):
        """Test a snapshot reproduces ids and content exactly."""
        with tempfile.TemporaryDirectory() as temp_dir:
            backups = BackupStore(Path(temp_dir))
            document = _document()

            info = await backups.save(document)
            loaded = await backups.load(info.id)

            assert BACKUP_ID_PATTERN.match(info.id)
            assert info.bookmark_count == 1
            assert info.folder_count == 1
            assert info.tag_count == 1
            assert info.size_bytes > 0
            assert loaded.bookmarks == document.bookmarks
            assert loaded.folders == document.folders
            assert loaded.tags == document.tags

    @pytest.mark.asyncio
    async def test_list_newest_first(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            backups = BackupStore(Path(temp_dir))
            first = await backups.save(BookmarkData())
            second = await backups.save(_document(), reason="pre-restore")

            listed = backups.list()

            assert [b.id for b in listed] == [second.id, first.id]
            assert listed[0].reason == "pre-restore"

    @pytest.mark.asyncio
    async def test_retention_prunes_oldest(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            backups = BackupStore(Path(temp_dir), max_backups=2)
            created = [await backups.save(BookmarkData()) for _ in range(4)]

            listed = backups.list()

            assert [b.id for b in listed] == [created[3].id, created[2].id]
            assert len(list(Path(temp_dir).iterdir())) == 4

    @pytest.mark.asyncio
    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    async def test_snapshot_files_are_read_only(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            backups = BackupStore(Path(temp_dir))
            info = await backups.save(BookmarkData())

            document_path = Path(temp_dir) / f"{info.id}.yaml"
            assert not os.access(document_path, os.W_OK) or os.geteuid() == 0

    @pytest.mark.asyncio
    async def test_unknown_backup(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            backups = BackupStore(Path(temp_dir))

            with pytest.raises(NotFoundError):
                await backups.load("20260101T000000000000Z-abcdef")
            with pytest.raises(NotFoundError):
                backups.get_info("20260101T000000000000Z-abcdef")

    @pytest.mark.asyncio
    async def test_malformed_id_never_touches_filesystem(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            backups = BackupStore(Path(temp_dir))
            with pytest.raises(NotFoundError):
                await backups.load("../../etc/passwd")

    @pytest.mark.asyncio
    async def test_corrupt_snapshot(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            backups = BackupStore(Path(temp_dir))
            info = await backups.save(BookmarkData())
            path = Path(temp_dir) / f"{info.id}.yaml"
            os.chmod(path, 0o600)
            path.write_text("bookmarks: [unclosed", encoding="utf-8")

            with pytest.raises(RestoreError, match="corrupt"):
                await backups.load(info.id)

    def test_missing_directory_lists_nothing(self):
        assert BackupStore(Path("/nonexistent/backups")).list() == []

    @pytest.mark.asyncio
    async def test_unreadable_metadata_skipped(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            backups = BackupStore(Path(temp_dir))
            info = await backups.save(BookmarkData())
            (Path(temp_dir) / "junk.meta.yaml").write_text("- not a mapping", encoding="utf-8")

            assert [b.id for b in backups.list()] == [info.id]
