"""Document-level invariant checks and repairs.

`check_document` is strict and is used before a document replaces live
state (restore). `repair_document` coerces a merged document back into a
valid one and is used by sync, where two individually valid sides can
combine into dangling references, cycles or duplicate tag names.
"""

import logging
from typing import Dict, List, Optional, Set, Tuple

from ..models.folder import Folder
from ..models.snapshot import BookmarkData
from .errors import IntegrityError

logger = logging.getLogger(__name__)


def find_cycle(folder_id: str, parents: Dict[str, Optional[str]]) -> Optional[List[str]]:
    """Return the folder ids forming a cycle reachable from folder_id, if any."""
    path: List[str] = []
    position: Dict[str, int] = {}
    current: Optional[str] = folder_id
    while current is not None and current in parents:
        if current in position:
            return path[position[current]:]
        position[current] = len(path)
        path.append(current)
        current = parents[current]
    return None


def would_create_cycle(
    folder_id: str, new_parent_id: Optional[str], parents: Dict[str, Optional[str]]
) -> bool:
    """True if making new_parent_id the parent of folder_id closes a loop."""
    current = new_parent_id
    seen: Set[str] = set()
    while current is not None and current not in seen:
        if current == folder_id:
            return True
        seen.add(current)
        current = parents.get(current)
    return False


def check_document(document: BookmarkData) -> None:
    """Raise IntegrityError on the first violated invariant."""
    for name, items in (
        ("bookmark", document.bookmarks),
        ("folder", document.folders),
        ("tag", document.tags),
    ):
        ids = [item.id for item in items]
        if len(ids) != len(set(ids)):
            raise IntegrityError(f"Duplicate {name} ids in document", entity_type=name)

    names = [tag.name for tag in document.tags]
    if len(names) != len(set(names)):
        duplicates = sorted({n for n in names if names.count(n) > 1})
        raise IntegrityError(f"Duplicate tag names: {', '.join(duplicates)}", field="name")

    folder_ids = {f.id for f in document.folders}
    tag_ids = {t.id for t in document.tags}
    parents = {f.id: f.parent_id for f in document.folders}

    for folder in document.folders:
        if folder.parent_id is not None and folder.parent_id not in folder_ids:
            raise IntegrityError(
                f"Folder {folder.id} references missing parent {folder.parent_id}",
                entity_id=folder.id,
                field="parent_id",
            )
        if folder.is_locked and not folder.password_hash:
            raise IntegrityError(
                f"Locked folder {folder.id} has no password hash",
                entity_id=folder.id,
                field="password_hash",
            )
        cycle = find_cycle(folder.id, parents)
        if cycle:
            raise IntegrityError(
                f"Folder parent cycle: {' -> '.join(cycle)}", ids=cycle, field="parent_id"
            )

    for bookmark in document.bookmarks:
        if bookmark.folder_id is not None and bookmark.folder_id not in folder_ids:
            raise IntegrityError(
                f"Bookmark {bookmark.id} references missing folder {bookmark.folder_id}",
                entity_id=bookmark.id,
                field="folder_id",
            )
        missing = [t for t in bookmark.tag_ids if t not in tag_ids]
        if missing:
            raise IntegrityError(
                f"Bookmark {bookmark.id} references missing tags {missing}",
                entity_id=bookmark.id,
                field="tag_ids",
            )


def repair_document(document: BookmarkData) -> Tuple[BookmarkData, List[str]]:
    """Return a copy of document with every invariant restored, plus notes."""
    repairs: List[str] = []

    # Duplicate tag names collapse onto the oldest tag carrying the name.
    keepers: Dict[str, str] = {}
    remap: Dict[str, str] = {}
    tags = []
    for tag in sorted(document.tags, key=lambda t: (t.created_at, t.id)):
        if tag.name in keepers:
            remap[tag.id] = keepers[tag.name]
            repairs.append(f"Merged duplicate tag '{tag.name}' ({tag.id} -> {keepers[tag.name]})")
            continue
        keepers[tag.name] = tag.id
        tags.append(tag)
    tag_ids = {t.id for t in tags}

    folder_ids = {f.id for f in document.folders}
    folders: Dict[str, Folder] = {}
    for folder in document.folders:
        if folder.parent_id is not None and folder.parent_id not in folder_ids:
            repairs.append(f"Moved folder {folder.id} to root (parent {folder.parent_id} gone)")
            folder = folder.model_copy(update={"parent_id": None})
        if folder.is_locked and not folder.password_hash:
            # No password could ever open it again.
            repairs.append(f"Unlocked folder {folder.id} (locked without a password hash)")
            folder = folder.model_copy(update={"is_locked": False})
        folders[folder.id] = folder

    while True:
        parents = {f.id: f.parent_id for f in folders.values()}
        cycle = next(
            (c for c in (find_cycle(fid, parents) for fid in sorted(folders)) if c), None
        )
        if cycle is None:
            break
        breaker = min(cycle)
        repairs.append(f"Broke folder cycle {' -> '.join(cycle)} at {breaker}")
        folders[breaker] = folders[breaker].model_copy(update={"parent_id": None})

    bookmarks = []
    for bookmark in document.bookmarks:
        update = {}
        if bookmark.folder_id is not None and bookmark.folder_id not in folders:
            update["folder_id"] = None
            repairs.append(f"Moved bookmark {bookmark.id} to root (folder {bookmark.folder_id} gone)")
        resolved = []
        for tag_id in bookmark.tag_ids:
            tag_id = remap.get(tag_id, tag_id)
            if tag_id in tag_ids and tag_id not in resolved:
                resolved.append(tag_id)
        if resolved != bookmark.tag_ids:
            update["tag_ids"] = resolved
        bookmarks.append(bookmark.model_copy(update=update) if update else bookmark)

    for note in repairs:
        logger.warning(note)

    repaired = document.model_copy(
        update={"bookmarks": bookmarks, "folders": list(folders.values()), "tags": tags}
    )
    return repaired, repairs
