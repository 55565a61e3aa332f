"""Entity store: the single source of truth for bookmarks, folders and tags."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..models.bookmark import Bookmark, BookmarkCreate, BookmarkMetadata, BookmarkUpdate, utc_now
from ..models.folder import Folder, FolderCreate, FolderUpdate
from ..models.snapshot import BookmarkData
from ..models.tag import Tag, TagCreate, TagUpdate
from ..utils.file_lock import FileLocker, FileLockError
from ..utils.passwords import MAX_PASSWORD_BYTES, hash_password, verify_password
from ..utils.yaml_handler import YAMLError, load_document_from_file, save_document_to_file
from .errors import (
    AccessDeniedError,
    ConflictError,
    CycleError,
    IntegrityError,
    NotFoundError,
    ValidationError,
)
from .integrity import check_document, would_create_cycle

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

DEFAULT_FOLDERS = (
    {"name": "General", "color": "#4285F4", "icon": "folder", "order": 1},
    {"name": "Important", "color": "#EA4335", "icon": "star", "order": 2},
)


class StorageError(Exception):
    """The local data document could not be read or written."""

    pass


@dataclass(frozen=True)
class StoreState:
    """One consistent version of the entity set.

    States are never mutated after publication; writers build a new one and
    swap the reference, so readers need no lock.
    """

    bookmarks: Dict[str, Bookmark] = field(default_factory=dict)
    folders: Dict[str, Folder] = field(default_factory=dict)
    tags: Dict[str, Tag] = field(default_factory=dict)
    revision: int = 0

    @classmethod
    def from_document(cls, document: BookmarkData, revision: int = 0) -> "StoreState":
        return cls(
            bookmarks={b.id: b for b in document.bookmarks},
            folders={f.id: f for f in document.folders},
            tags={t.id: t for t in document.tags},
            revision=revision,
        )

    def to_document(self) -> BookmarkData:
        return BookmarkData(
            bookmarks=list(self.bookmarks.values()),
            folders=list(self.folders.values()),
            tags=list(self.tags.values()),
        )


def _build(model: Type[M], **values) -> M:
    """Construct an entity, turning pydantic failures into ValidationError."""
    try:
        return model(**values)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field_name = ".".join(str(part) for part in first.get("loc", ())) or "body"
        raise ValidationError(f"Invalid {field_name}: {first.get('msg')}", field=field_name) from e


def _require_text(value: Optional[str], field_name: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field_name} is required and cannot be empty", field=field_name)
    return value.strip()


class EntityStore:
    """Holds the entity set and enforces its invariants.

    Every mutation runs under one asyncio lock, persists the resulting
    document and only then publishes the new state. A failed write leaves
    the previous state untouched.
    """

    def __init__(self, data_path: Optional[Path] = None, seed_default_folders: bool = False):
        """Initialize entity store.

        Args:
            data_path: YAML document backing the store (None = memory only)
            seed_default_folders: Create the default folders when no document exists
        """
        self.data_path = data_path
        self.seed_default_folders = seed_default_folders
        self._state = StoreState()
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Load the local document, or start empty.

        Raises:
            StorageError: If the document exists but cannot be loaded
        """
        if self.data_path is not None and self.data_path.exists():
            try:
                document = await asyncio.to_thread(load_document_from_file, self.data_path)
                check_document(document)
            except (YAMLError, IntegrityError) as e:
                raise StorageError(f"Failed to load {self.data_path}: {e}") from e

            self._state = StoreState.from_document(document)
            logger.info(
                f"Loaded {len(document.bookmarks)} bookmarks, {len(document.folders)} folders "
                f"and {len(document.tags)} tags from {self.data_path}"
            )
            return

        if self.seed_default_folders:
            async with self._lock:
                folders = {}
                for defaults in DEFAULT_FOLDERS:
                    folder = Folder(**defaults)
                    folders[folder.id] = folder
                await self._commit({}, folders, {})
            logger.info("Initialized empty store with default folders")

    async def close(self) -> None:
        """Wait for in-flight mutations and drop the in-memory state."""
        async with self._lock:
            self._state = StoreState(revision=self._state.revision)
        logger.info("Entity store closed")

    # ------------------------------------------------------------------
    # Reads (lock-free against the current published state)

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def revision(self) -> int:
        return self._state.revision

    def export_data(self) -> Tuple[BookmarkData, int]:
        """Return a consistent copy of the full entity set and its revision."""
        state = self._state
        return state.to_document(), state.revision

    def get_bookmark(self, bookmark_id: str) -> Bookmark:
        bookmark = self._state.bookmarks.get(bookmark_id)
        if bookmark is None:
            raise NotFoundError("bookmark", bookmark_id)
        return bookmark

    def get_folder(self, folder_id: str) -> Folder:
        folder = self._state.folders.get(folder_id)
        if folder is None:
            raise NotFoundError("folder", folder_id)
        return folder

    def get_tag(self, tag_id: str) -> Tag:
        tag = self._state.tags.get(tag_id)
        if tag is None:
            raise NotFoundError("tag", tag_id)
        return tag

    def get_tag_by_name(self, name: str) -> Optional[Tag]:
        for tag in self._state.tags.values():
            if tag.name == name:
                return tag
        return None

    def list_bookmarks(self) -> List[Bookmark]:
        return list(self._state.bookmarks.values())

    def list_folders(self) -> List[Folder]:
        return sorted(self._state.folders.values(), key=lambda f: (f.order, f.name, f.id))

    def list_tags(self) -> List[Tag]:
        return sorted(self._state.tags.values(), key=lambda t: t.name)

    def tag_names(self) -> Dict[str, str]:
        """Map of tag id to tag name."""
        return {tag.id: tag.name for tag in self._state.tags.values()}

    # ------------------------------------------------------------------
    # Bookmarks

    async def create_bookmark(self, data: BookmarkCreate) -> Bookmark:
        """Create a new bookmark.

        Tag names without a Tag entity create one.

        Raises:
            ValidationError: If url or title is blank, or folder_id is unknown
            StorageError: If persisting fails
        """
        url = _require_text(data.url, "url")
        title = _require_text(data.title, "title")

        async with self._lock:
            state = self._state
            self._check_folder_ref(state, data.folder_id)

            tags = dict(state.tags)
            now = utc_now()
            tag_ids = self._resolve_tag_names(data.tags, tags, now)

            bookmark = _build(
                Bookmark,
                url=url,
                title=title,
                description=data.description,
                favicon=data.favicon,
                folder_id=data.folder_id,
                tag_ids=tag_ids,
                created_at=now,
                updated_at=now,
                metadata=BookmarkMetadata(visit_count=0),
            )

            bookmarks = dict(state.bookmarks)
            bookmarks[bookmark.id] = bookmark
            await self._commit(bookmarks, state.folders, tags)

        logger.info(f"Created bookmark {bookmark.id}: {bookmark.title}")
        return bookmark

    async def update_bookmark(self, bookmark_id: str, data: BookmarkUpdate) -> Bookmark:
        """Apply the fields present in data to a bookmark.

        Raises:
            NotFoundError: If the bookmark doesn't exist
            ValidationError: If url/title become blank or folder_id is unknown
            StorageError: If persisting fails
        """
        provided = data.model_fields_set

        async with self._lock:
            state = self._state
            bookmark = state.bookmarks.get(bookmark_id)
            if bookmark is None:
                raise NotFoundError("bookmark", bookmark_id)

            update = {}
            if "url" in provided:
                update["url"] = _require_text(data.url, "url")
            if "title" in provided:
                update["title"] = _require_text(data.title, "title")
            for name in ("description", "favicon"):
                if name in provided:
                    update[name] = getattr(data, name)
            if "folder_id" in provided:
                self._check_folder_ref(state, data.folder_id)
                update["folder_id"] = data.folder_id

            tags = state.tags
            now = utc_now()
            if "tags" in provided:
                tags = dict(state.tags)
                update["tag_ids"] = self._resolve_tag_names(data.tags or [], tags, now)

            update["updated_at"] = now
            updated = _build(Bookmark, **{**bookmark.model_dump(), **update})

            bookmarks = dict(state.bookmarks)
            bookmarks[bookmark_id] = updated
            await self._commit(bookmarks, state.folders, tags)

        logger.info(f"Updated bookmark {bookmark_id}")
        return updated

    async def delete_bookmark(self, bookmark_id: str) -> None:
        """Remove a bookmark.

        Deleting an unknown id is an error rather than a no-op.

        Raises:
            NotFoundError: If the bookmark doesn't exist
            StorageError: If persisting fails
        """
        async with self._lock:
            state = self._state
            if bookmark_id not in state.bookmarks:
                raise NotFoundError("bookmark", bookmark_id)

            bookmarks = dict(state.bookmarks)
            del bookmarks[bookmark_id]
            await self._commit(bookmarks, state.folders, state.tags)

        logger.info(f"Deleted bookmark {bookmark_id}")

    async def record_visit(self, bookmark_id: str) -> Bookmark:
        """Bump visit_count and last_visited. updated_at is left alone.

        Raises:
            NotFoundError: If the bookmark doesn't exist
        """
        async with self._lock:
            state = self._state
            bookmark = state.bookmarks.get(bookmark_id)
            if bookmark is None:
                raise NotFoundError("bookmark", bookmark_id)

            metadata = bookmark.metadata.model_copy(
                update={
                    "visit_count": bookmark.metadata.visit_count + 1,
                    "last_visited": utc_now(),
                }
            )
            visited = bookmark.model_copy(update={"metadata": metadata})

            bookmarks = dict(state.bookmarks)
            bookmarks[bookmark_id] = visited
            await self._commit(bookmarks, state.folders, state.tags)

        logger.debug(f"Recorded visit for bookmark {bookmark_id}")
        return visited

    # ------------------------------------------------------------------
    # Folders

    async def create_folder(self, data: FolderCreate) -> Folder:
        """Create a folder.

        Raises:
            ValidationError: If the name is blank or parent_id is unknown
            StorageError: If persisting fails
        """
        name = _require_text(data.name, "name")

        async with self._lock:
            state = self._state
            if data.parent_id is not None and data.parent_id not in state.folders:
                raise ValidationError(
                    f"Parent folder does not exist: {data.parent_id}",
                    field="parent_id",
                    entity_id=data.parent_id,
                )

            values = {"name": name, "parent_id": data.parent_id}
            for key in ("color", "icon"):
                if getattr(data, key) is not None:
                    values[key] = getattr(data, key)
            values["order"] = data.order if data.order is not None else len(state.folders) + 1
            folder = _build(Folder, **values)

            folders = dict(state.folders)
            folders[folder.id] = folder
            await self._commit(state.bookmarks, folders, state.tags)

        logger.info(f"Created folder {folder.id}: {folder.name}")
        return folder

    async def update_folder(self, folder_id: str, data: FolderUpdate) -> Folder:
        """Apply the fields present in data to a folder.

        Raises:
            NotFoundError: If the folder doesn't exist
            ValidationError: If the name becomes blank or parent_id is unknown
            CycleError: If the new parent is the folder itself or a descendant
            StorageError: If persisting fails
        """
        provided = data.model_fields_set

        async with self._lock:
            state = self._state
            folder = state.folders.get(folder_id)
            if folder is None:
                raise NotFoundError("folder", folder_id)

            update = {}
            if "name" in provided:
                update["name"] = _require_text(data.name, "name")
            if "parent_id" in provided:
                parent_id = data.parent_id
                if parent_id is not None and parent_id not in state.folders:
                    raise ValidationError(
                        f"Parent folder does not exist: {parent_id}",
                        field="parent_id",
                        entity_id=parent_id,
                    )
                parents = {f.id: f.parent_id for f in state.folders.values()}
                if would_create_cycle(folder_id, parent_id, parents):
                    raise CycleError(
                        f"Folder {folder_id} cannot be moved under {parent_id}: "
                        "it would become its own ancestor",
                        entity_id=folder_id,
                        field="parent_id",
                    )
                update["parent_id"] = parent_id
            for key in ("color", "icon", "order"):
                if key in provided and getattr(data, key) is not None:
                    update[key] = getattr(data, key)

            update["updated_at"] = utc_now()
            updated = _build(Folder, **{**folder.model_dump(), **update})

            folders = dict(state.folders)
            folders[folder_id] = updated
            await self._commit(state.bookmarks, folders, state.tags)

        logger.info(f"Updated folder {folder_id}")
        return updated

    async def delete_folder(self, folder_id: str) -> List[str]:
        """Delete a folder, moving its bookmarks to the root.

        Child folders move up to the deleted folder's parent. Bookmarks are
        never deleted. Reassignment and removal publish as one state.

        Returns:
            Ids of the bookmarks that were reassigned

        Raises:
            NotFoundError: If the folder doesn't exist
            StorageError: If persisting fails
        """
        async with self._lock:
            state = self._state
            folder = state.folders.get(folder_id)
            if folder is None:
                raise NotFoundError("folder", folder_id)

            now = utc_now()
            bookmarks = dict(state.bookmarks)
            reassigned = []
            for bookmark in state.bookmarks.values():
                if bookmark.folder_id == folder_id:
                    bookmarks[bookmark.id] = bookmark.model_copy(
                        update={"folder_id": None, "updated_at": now}
                    )
                    reassigned.append(bookmark.id)

            folders = dict(state.folders)
            del folders[folder_id]
            for child in state.folders.values():
                if child.parent_id == folder_id:
                    folders[child.id] = child.model_copy(
                        update={"parent_id": folder.parent_id, "updated_at": now}
                    )

            await self._commit(bookmarks, folders, state.tags)

        logger.info(f"Deleted folder {folder_id}, moved {len(reassigned)} bookmarks to root")
        return reassigned

    async def lock_folder(self, folder_id: str, password: str) -> Folder:
        """Lock a folder behind a password. Only the bcrypt hash is stored.

        Locking an already locked folder replaces its password.

        Raises:
            NotFoundError: If the folder doesn't exist
            ValidationError: If the password is empty or too long
        """
        if not password or not password.strip():
            raise ValidationError("Password cannot be empty", field="password")
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValidationError(
                f"Password cannot be longer than {MAX_PASSWORD_BYTES} bytes", field="password"
            )

        self.get_folder(folder_id)
        password_hash = await asyncio.to_thread(hash_password, password)

        async with self._lock:
            state = self._state
            folder = state.folders.get(folder_id)
            if folder is None:
                raise NotFoundError("folder", folder_id)

            locked = folder.model_copy(
                update={"is_locked": True, "password_hash": password_hash, "updated_at": utc_now()}
            )
            folders = dict(state.folders)
            folders[folder_id] = locked
            await self._commit(state.bookmarks, folders, state.tags)

        logger.info(f"Locked folder {folder_id}")
        return locked

    async def unlock_check(self, folder_id: str, password: str) -> bool:
        """Check a password against a folder's stored hash.

        Returns False on mismatch or when the folder carries no lock.

        Raises:
            NotFoundError: If the folder doesn't exist
        """
        folder = self.get_folder(folder_id)
        if not folder.is_locked or not folder.password_hash or not password:
            return False
        return await asyncio.to_thread(verify_password, password, folder.password_hash)

    async def remove_folder_lock(self, folder_id: str, password: str) -> Folder:
        """Remove a folder's lock after checking its password.

        Raises:
            NotFoundError: If the folder doesn't exist
            AccessDeniedError: If the password does not match
        """
        folder = self.get_folder(folder_id)
        if not folder.is_locked:
            return folder
        if not await self.unlock_check(folder_id, password):
            raise AccessDeniedError("Folder is locked", entity_id=folder_id)

        async with self._lock:
            state = self._state
            folder = state.folders.get(folder_id)
            if folder is None:
                raise NotFoundError("folder", folder_id)

            unlocked = folder.model_copy(
                update={"is_locked": False, "password_hash": None, "updated_at": utc_now()}
            )
            folders = dict(state.folders)
            folders[folder_id] = unlocked
            await self._commit(state.bookmarks, folders, state.tags)

        logger.info(f"Removed lock from folder {folder_id}")
        return unlocked

    # ------------------------------------------------------------------
    # Tags

    async def create_tag(self, data: TagCreate) -> Tag:
        """Create a tag.

        Raises:
            ValidationError: If the name is blank
            ConflictError: If a tag with the same name exists
        """
        name = _require_text(data.name, "name")

        async with self._lock:
            state = self._state
            self._check_tag_name_free(state, name)

            values = {"name": name}
            if data.color is not None:
                values["color"] = data.color
            tag = _build(Tag, **values)

            tags = dict(state.tags)
            tags[tag.id] = tag
            await self._commit(state.bookmarks, state.folders, tags)

        logger.info(f"Created tag {tag.id}: {tag.name}")
        return tag

    async def update_tag(self, tag_id: str, data: TagUpdate) -> Tag:
        """Rename or recolor a tag. Bookmarks follow since they hold ids.

        Raises:
            NotFoundError: If the tag doesn't exist
            ConflictError: If the new name belongs to another tag
        """
        async with self._lock:
            state = self._state
            tag = state.tags.get(tag_id)
            if tag is None:
                raise NotFoundError("tag", tag_id)

            update = {"updated_at": utc_now()}
            if data.name is not None:
                name = _require_text(data.name, "name")
                if name != tag.name:
                    self._check_tag_name_free(state, name)
                update["name"] = name
            if data.color is not None:
                update["color"] = data.color
            updated = _build(Tag, **{**tag.model_dump(), **update})

            tags = dict(state.tags)
            tags[tag_id] = updated
            await self._commit(state.bookmarks, state.folders, tags)

        logger.info(f"Updated tag {tag_id}")
        return updated

    async def delete_tag(self, tag_id: str) -> List[str]:
        """Delete a tag and strip it from every bookmark.

        Returns:
            Ids of the bookmarks that carried the tag

        Raises:
            NotFoundError: If the tag doesn't exist
        """
        async with self._lock:
            state = self._state
            if tag_id not in state.tags:
                raise NotFoundError("tag", tag_id)

            now = utc_now()
            bookmarks = dict(state.bookmarks)
            stripped = []
            for bookmark in state.bookmarks.values():
                if tag_id in bookmark.tag_ids:
                    bookmarks[bookmark.id] = bookmark.model_copy(
                        update={
                            "tag_ids": [t for t in bookmark.tag_ids if t != tag_id],
                            "updated_at": now,
                        }
                    )
                    stripped.append(bookmark.id)

            tags = dict(state.tags)
            del tags[tag_id]
            await self._commit(bookmarks, state.folders, tags)

        logger.info(f"Deleted tag {tag_id}, stripped from {len(stripped)} bookmarks")
        return stripped

    # ------------------------------------------------------------------
    # Whole-document operations

    async def replace_data(self, document: BookmarkData) -> None:
        """Replace the entire entity set with document, all or nothing.

        Raises:
            IntegrityError: If the document violates an invariant
            StorageError: If persisting fails
        """
        check_document(document)
        async with self._lock:
            state = StoreState.from_document(document)
            await self._commit(state.bookmarks, state.folders, state.tags)

        logger.info(
            f"Replaced store contents: {len(document.bookmarks)} bookmarks, "
            f"{len(document.folders)} folders, {len(document.tags)} tags"
        )

    async def apply_sync_result(
        self,
        document: BookmarkData,
        expected_revision: int,
        rebase: Callable[[BookmarkData], BookmarkData],
    ) -> BookmarkData:
        """Publish a sync result.

        If the store changed since expected_revision, rebase receives the
        current document and returns the document to publish instead, so
        edits made during network I/O are not lost.
        """
        async with self._lock:
            if self._state.revision != expected_revision:
                logger.info(
                    f"Store moved from revision {expected_revision} to "
                    f"{self._state.revision} during sync, rebasing local edits"
                )
                document = rebase(self._state.to_document())
            check_document(document)
            state = StoreState.from_document(document)
            await self._commit(state.bookmarks, state.folders, state.tags)
        return document

    # ------------------------------------------------------------------
    # Internals

    def _check_folder_ref(self, state: StoreState, folder_id: Optional[str]) -> None:
        if folder_id is not None and folder_id not in state.folders:
            raise ValidationError(
                f"Folder does not exist: {folder_id}", field="folder_id", entity_id=folder_id
            )

    def _check_tag_name_free(self, state: StoreState, name: str) -> None:
        for tag in state.tags.values():
            if tag.name == name:
                raise ConflictError(
                    f"Tag already exists: {name}", field="name", entity_id=tag.id
                )

    def _resolve_tag_names(
        self, names: List[str], tags: Dict[str, Tag], now: datetime
    ) -> List[str]:
        """Map names to tag ids, adding implicit tags to `tags` in place."""
        by_name = {tag.name: tag.id for tag in tags.values()}
        tag_ids = []
        for raw in names:
            name = raw.strip()
            if not name:
                continue
            if name not in by_name:
                tag = _build(Tag, name=name, created_at=now, updated_at=now)
                tags[tag.id] = tag
                by_name[name] = tag.id
                logger.debug(f"Implicitly created tag {tag.id}: {name}")
            if by_name[name] not in tag_ids:
                tag_ids.append(by_name[name])
        return tag_ids

    async def _commit(
        self,
        bookmarks: Dict[str, Bookmark],
        folders: Dict[str, Folder],
        tags: Dict[str, Tag],
    ) -> None:
        """Persist and publish a new state. Caller holds the mutation lock."""
        state = StoreState(bookmarks, folders, tags, self._state.revision + 1)
        # Shielded so a cancelled caller cannot leave disk and memory apart.
        await asyncio.shield(self._write_and_publish(state))

    async def _write_and_publish(self, state: StoreState) -> None:
        if self.data_path is not None:
            try:
                async with FileLocker(self.data_path):
                    await asyncio.to_thread(
                        save_document_to_file, state.to_document(), self.data_path
                    )
            except (FileLockError, YAMLError) as e:
                raise StorageError(f"Failed to persist store: {e}") from e
        self._state = state
