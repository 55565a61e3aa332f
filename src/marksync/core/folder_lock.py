"""Folder lock policy: who may see the contents of locked folders."""

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Set

from ..models.bookmark import Bookmark
from .entity_store import EntityStore, StoreState
from .errors import AccessDeniedError

logger = logging.getLogger(__name__)


@dataclass
class AccessSession:
    """Folders a caller has unlocked.

    Each verification remembers the hash it was checked against, so
    changing or removing and re-adding a folder's password revokes it.
    """

    token: str
    verified: Dict[str, str] = field(default_factory=dict)
    last_seen: float = field(default_factory=time.monotonic)

    def touch(self) -> None:
        self.last_seen = time.monotonic()


class SessionRegistry:
    """In-memory session table with idle expiry."""

    def __init__(self, ttl_seconds: int = 3600):
        self.ttl_seconds = ttl_seconds
        self._sessions: Dict[str, AccessSession] = {}

    def create(self) -> AccessSession:
        session = AccessSession(token=secrets.token_urlsafe(24))
        self._sessions[session.token] = session
        return session

    def get(self, token: Optional[str]) -> Optional[AccessSession]:
        """Return the live session for token, or None if unknown or expired."""
        self.purge_expired()
        if not token:
            return None
        session = self._sessions.get(token)
        if session is not None:
            session.touch()
        return session

    def get_or_create(self, token: Optional[str]) -> AccessSession:
        return self.get(token) or self.create()

    def purge_expired(self) -> int:
        cutoff = time.monotonic() - self.ttl_seconds
        expired = [t for t, s in self._sessions.items() if s.last_seen < cutoff]
        for token in expired:
            del self._sessions[token]
        return len(expired)

    def clear(self) -> None:
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)


class FolderLockPolicy:
    """Decides visibility of folders and bookmarks for a session.

    A folder is accessible when every locked folder on its ancestor chain
    (itself included) has been verified in the session. Locking therefore
    hides both reads and listings of everything beneath the locked folder.
    """

    def __init__(self, store: EntityStore):
        self.store = store

    def effective_lock(
        self, folder_id: Optional[str], state: Optional[StoreState] = None
    ) -> Optional[str]:
        """Nearest locked folder on the chain from folder_id upward, or None."""
        state = state or self.store.state
        seen: Set[str] = set()
        current = folder_id
        while current is not None and current not in seen:
            seen.add(current)
            folder = state.folders.get(current)
            if folder is None:
                return None
            if folder.is_locked:
                return folder.id
            current = folder.parent_id
        return None

    def is_folder_accessible(
        self,
        folder_id: str,
        session: Optional[AccessSession],
        state: Optional[StoreState] = None,
    ) -> bool:
        state = state or self.store.state
        seen: Set[str] = set()
        current: Optional[str] = folder_id
        while current is not None and current not in seen:
            seen.add(current)
            folder = state.folders.get(current)
            if folder is None:
                break
            if folder.is_locked and not self._is_verified(folder.id, folder.password_hash, session):
                return False
            current = folder.parent_id
        return True

    def accessible_folders(
        self, session: Optional[AccessSession], state: Optional[StoreState] = None
    ) -> Set[str]:
        """Ids of every folder the session may list."""
        state = state or self.store.state
        return {
            folder_id
            for folder_id in state.folders
            if self.is_folder_accessible(folder_id, session, state)
        }

    def is_visible(
        self,
        bookmark: Bookmark,
        session: Optional[AccessSession],
        state: Optional[StoreState] = None,
    ) -> bool:
        if bookmark.folder_id is None:
            return True
        return self.is_folder_accessible(bookmark.folder_id, session, state)

    def ensure_access(self, folder_id: str, session: Optional[AccessSession]) -> None:
        """Raise unless the session may read folder_id.

        Raises:
            NotFoundError: If the folder doesn't exist
            AccessDeniedError: If a locked folder on the chain is unverified
        """
        self.store.get_folder(folder_id)
        if not self.is_folder_accessible(folder_id, session):
            raise AccessDeniedError("Folder is locked", entity_id=folder_id)

    def ensure_target_access(
        self, folder_id: Optional[str], session: Optional[AccessSession]
    ) -> None:
        """Raise unless the session may put a bookmark or folder into folder_id.

        The root (None) is always open. Unknown ids pass through so the store
        can reject them as invalid references.

        Raises:
            AccessDeniedError: If folder_id is locked for this session
        """
        if folder_id is None or folder_id not in self.store.state.folders:
            return
        if not self.is_folder_accessible(folder_id, session):
            raise AccessDeniedError("Folder is locked", entity_id=folder_id)

    async def verify(self, folder_id: str, password: str, session: AccessSession) -> bool:
        """Check password and, on success, unlock folder_id for the session.

        Raises:
            NotFoundError: If the folder doesn't exist
        """
        if not await self.store.unlock_check(folder_id, password):
            logger.warning(f"Failed unlock attempt for folder {folder_id}")
            return False

        folder = self.store.get_folder(folder_id)
        session.verified[folder_id] = folder.password_hash
        session.touch()
        logger.info(f"Folder {folder_id} unlocked for session")
        return True

    def _is_verified(
        self, folder_id: str, password_hash: Optional[str], session: Optional[AccessSession]
    ) -> bool:
        if session is None or password_hash is None:
            return False
        return session.verified.get(folder_id) == password_hash
