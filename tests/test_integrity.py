"""Tests for document invariant checks and repairs."""

from datetime import datetime, timedelta, timezone

import pytest

from marksync.core.errors import IntegrityError
from marksync.core.integrity import (
    check_document,
    find_cycle,
    repair_document,
    would_create_cycle,
)
from marksync.models.bookmark import Bookmark
from marksync.models.folder import Folder
from marksync.models.snapshot import BookmarkData
from marksync.models.tag import Tag

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


class TestCycles:
    def test_find_cycle(self):
        parents = {"a": "b", "b": "c", "c": "a", "d": None}
        assert sorted(find_cycle("a", parents)) == ["a", "b", "c"]
        assert find_cycle("d", parents) is None

    def test_would_create_cycle(self):
        parents = {"a": None, "b": "a", "c": "b"}
        assert would_create_cycle("a", "c", parents)
        assert would_create_cycle("a", "a", parents)
        assert not would_create_cycle("c", "a", parents)
        assert not would_create_cycle("a", None, parents)


class TestCheckDocument:
    """Test strict validation used before restore."""

    def test_valid_document_passes(self):
        folder = Folder(name="Work")
        tag = Tag(name="rust")
        document = BookmarkData(
            folders=[folder],
            tags=[tag],
            bookmarks=[Bookmark(url="https://a.com", title="A", folder_id=folder.id, tag_ids=[tag.id])],
        )
        check_document(document)

    def test_duplicate_ids(self):
        folder = Folder(id="f1", name="Work")
        with pytest.raises(IntegrityError, match="Duplicate folder ids"):
            check_document(BookmarkData(folders=[folder, folder.model_copy()]))

    def test_duplicate_tag_names(self):
        with pytest.raises(IntegrityError, match="Duplicate tag names: rust"):
            check_document(BookmarkData(tags=[Tag(name="rust"), Tag(name="rust")]))

    def test_dangling_bookmark_folder(self):
        bookmark = Bookmark(url="https://a.com", title="A", folder_id="gone")
        with pytest.raises(IntegrityError, match="missing folder"):
            check_document(BookmarkData(bookmarks=[bookmark]))

    def test_dangling_tag(self):
        bookmark = Bookmark(url="https://a.com", title="A", tag_ids=["gone"])
        with pytest.raises(IntegrityError, match="missing tags"):
            check_document(BookmarkData(bookmarks=[bookmark]))

    def test_locked_without_hash(self):
        with pytest.raises(IntegrityError, match="no password hash"):
            check_document(BookmarkData(folders=[Folder(name="Private", is_locked=True)]))

    def test_cycle(self):
        folders = [Folder(id="a", name="A", parent_id="b"), Folder(id="b", name="B", parent_id="a")]
        with pytest.raises(IntegrityError, match="cycle"):
            check_document(BookmarkData(folders=folders))


class TestRepairDocument:
    """Test coercion of merged documents back into valid ones."""

    def test_valid_document_unchanged(self):
        document = BookmarkData(folders=[Folder(name="Work")])
        repaired, repairs = repair_document(document)
        assert repairs == []
        assert repaired.folders == document.folders

    def test_dangling_references_cleared(self):
        tag = Tag(name="rust")
        bookmark = Bookmark(
            url="https://a.com", title="A", folder_id="gone", tag_ids=[tag.id, "gone"]
        )
        orphan = Folder(name="Orphan", parent_id="gone")

        repaired, repairs = repair_document(
            BookmarkData(bookmarks=[bookmark], folders=[orphan], tags=[tag])
        )

        assert repaired.bookmarks[0].folder_id is None
        assert repaired.bookmarks[0].tag_ids == [tag.id]
        assert repaired.folders[0].parent_id is None
        assert len(repairs) == 2
        check_document(repaired)

    def test_cycle_broken_at_smallest_id(self):
        folders = [Folder(id="a", name="A", parent_id="b"), Folder(id="b", name="B", parent_id="a")]
        repaired, repairs = repair_document(BookmarkData(folders=folders))

        by_id = {f.id: f for f in repaired.folders}
        assert by_id["a"].parent_id is None
        assert by_id["b"].parent_id == "a"
        check_document(repaired)

    def test_duplicate_tag_names_collapse_onto_oldest(self):
        old = Tag(name="rust", created_at=T0, updated_at=T0)
        new = Tag(name="rust", created_at=T0 + timedelta(days=1), updated_at=T0 + timedelta(days=1))
        bookmark = Bookmark(url="https://a.com", title="A", tag_ids=[new.id, old.id])

        repaired, repairs = repair_document(
            BookmarkData(bookmarks=[bookmark], tags=[new, old])
        )

        assert [t.id for t in repaired.tags] == [old.id]
        assert repaired.bookmarks[0].tag_ids == [old.id]
        check_document(repaired)

    def test_locked_without_hash_is_unlocked(self):
        """Test a folder locked with no hash is opened rather than left unusable."""
        folder = Folder(name="Private", is_locked=True)
        bookmark = Bookmark(url="https://bank.example.com", title="Bank", folder_id=folder.id)

        repaired, repairs = repair_document(BookmarkData(bookmarks=[bookmark], folders=[folder]))

        assert repaired.folders[0].is_locked is False
        assert repaired.bookmarks[0].folder_id == folder.id
        assert repairs == [f"Unlocked folder {folder.id} (locked without a password hash)"]
        check_document(repaired)
