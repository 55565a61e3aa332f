"""Read-only queries over the entity store."""

import logging
from typing import Dict, Iterable, List, Optional

from ..models.bookmark import Bookmark, BookmarkView
from .entity_store import EntityStore, StoreState
from .folder_lock import AccessSession, FolderLockPolicy

logger = logging.getLogger(__name__)


def text_matches(query: str, values: Iterable[str]) -> bool:
    """Substring match after plain lower-casing (no Unicode case folding)."""
    needle = query.lower()
    return any(needle in value.lower() for value in values)


def matches_query(bookmark: Bookmark, query: str, tag_names: Dict[str, str]) -> bool:
    """Case-insensitive substring match on title, description, url or any tag name."""
    fields = [bookmark.title, bookmark.description or "", bookmark.url]
    fields.extend(tag_names[t] for t in bookmark.tag_ids if t in tag_names)
    return text_matches(query, fields)


class QueryEngine:
    """Serves bookmark listings and searches.

    Every result is filtered through the folder lock policy: bookmarks in a
    locked folder stay hidden until the session has unlocked it.
    """

    def __init__(self, store: EntityStore, lock_policy: FolderLockPolicy):
        self.store = store
        self.lock_policy = lock_policy

    def list_all(self, session: Optional[AccessSession] = None) -> List[BookmarkView]:
        """All bookmarks visible to the session."""
        state = self.store.state
        return self._views(state, self._visible(state, session))

    def list_by_folder(
        self, folder_id: str, session: Optional[AccessSession] = None
    ) -> List[BookmarkView]:
        """Bookmarks directly inside folder_id.

        Raises:
            NotFoundError: If the folder doesn't exist
            AccessDeniedError: If the folder is locked for this session
        """
        self.lock_policy.ensure_access(folder_id, session)
        state = self.store.state
        bookmarks = [b for b in state.bookmarks.values() if b.folder_id == folder_id]
        return self._views(state, bookmarks)

    def list_by_tag(
        self, tag_name: str, session: Optional[AccessSession] = None
    ) -> List[BookmarkView]:
        """Visible bookmarks carrying exactly tag_name (case-sensitive)."""
        state = self.store.state
        tag_ids = {t.id for t in state.tags.values() if t.name == tag_name}
        if not tag_ids:
            return []
        bookmarks = [
            b for b in self._visible(state, session) if tag_ids.intersection(b.tag_ids)
        ]
        return self._views(state, bookmarks)

    def search(self, query: str, session: Optional[AccessSession] = None) -> List[BookmarkView]:
        """Visible bookmarks where query appears in any searchable field.

        An empty query returns everything visible.
        """
        state = self.store.state
        visible = self._visible(state, session)
        if not query or not query.strip():
            return self._views(state, visible)

        tag_names = {t.id: t.name for t in state.tags.values()}
        bookmarks = [b for b in visible if matches_query(b, query.strip(), tag_names)]
        logger.debug(f"Search '{query}' matched {len(bookmarks)} of {len(visible)} bookmarks")
        return self._views(state, bookmarks)

    def filter(
        self,
        folder_id: Optional[str] = None,
        tag: Optional[str] = None,
        query: Optional[str] = None,
        session: Optional[AccessSession] = None,
    ) -> List[BookmarkView]:
        """Combine the folder, tag and text criteria that are given (AND)."""
        if folder_id is not None:
            results = self.list_by_folder(folder_id, session)
        elif tag is not None:
            results = self.list_by_tag(tag, session)
        else:
            results = self.search(query or "", session)

        if folder_id is not None and tag is not None:
            results = [b for b in results if tag in b.tags]
        if query and query.strip() and (folder_id is not None or tag is not None):
            needle = query.strip()
            results = [
                b
                for b in results
                if text_matches(needle, [b.title, b.description or "", b.url, *b.tags])
            ]
        return results

    def get_bookmark(self, bookmark_id: str, session: Optional[AccessSession] = None) -> BookmarkView:
        """Fetch one bookmark, honouring its folder's lock.

        Raises:
            NotFoundError: If the bookmark doesn't exist
            AccessDeniedError: If its folder is locked for this session
        """
        bookmark = self.store.get_bookmark(bookmark_id)
        if bookmark.folder_id is not None:
            self.lock_policy.ensure_access(bookmark.folder_id, session)
        return BookmarkView.from_bookmark(bookmark, self.store.tag_names())

    def tag_usage(self) -> Dict[str, int]:
        """Derived usage count per tag id, over every bookmark."""
        state = self.store.state
        usage = {tag_id: 0 for tag_id in state.tags}
        for bookmark in state.bookmarks.values():
            for tag_id in bookmark.tag_ids:
                if tag_id in usage:
                    usage[tag_id] += 1
        return usage

    def _visible(self, state: StoreState, session: Optional[AccessSession]) -> List[Bookmark]:
        accessible = self.lock_policy.accessible_folders(session, state)
        return [
            b
            for b in state.bookmarks.values()
            if b.folder_id is None or b.folder_id in accessible
        ]

    def _views(self, state: StoreState, bookmarks: List[Bookmark]) -> List[BookmarkView]:
        tag_names = {t.id: t.name for t in state.tags.values()}
        ordered = sorted(bookmarks, key=lambda b: (b.created_at, b.id))
        return [BookmarkView.from_bookmark(b, tag_names) for b in ordered]
