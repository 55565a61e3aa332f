"""Tests for the folder lock policy and access sessions."""

import time

import pytest

from marksync.core.entity_store import EntityStore
from marksync.core.errors import AccessDeniedError, NotFoundError
from marksync.core.folder_lock import FolderLockPolicy, SessionRegistry
from marksync.models.bookmark import BookmarkCreate
from marksync.models.folder import FolderCreate


@pytest.fixture
async def store():
    entity_store = EntityStore()
    await entity_store.initialize()
    return entity_store


@pytest.fixture
def policy(store):
    return FolderLockPolicy(store)


class TestSessionRegistry:
    def test_create_and_get(self):
        registry = SessionRegistry()
        session = registry.create()

        assert registry.get(session.token) is session
        assert registry.get("unknown") is None
        assert registry.get(None) is None
        assert len(registry) == 1

    def test_get_or_create(self):
        registry = SessionRegistry()
        session = registry.get_or_create(None)
        assert registry.get_or_create(session.token) is session

    def test_idle_sessions_expire(self):
        registry = SessionRegistry(ttl_seconds=60)
        session = registry.create()
        session.last_seen = time.monotonic() - 120

        assert registry.get(session.token) is None
        assert len(registry) == 0


class TestFolderLockPolicy:
    """Test visibility of locked folders."""

    @pytest.mark.asyncio
    async def test_unlocked_folder_is_accessible(self, store, policy):
        folder = await store.create_folder(FolderCreate(name="Open"))
        assert policy.is_folder_accessible(folder.id, None)
        assert policy.effective_lock(folder.id) is None

    @pytest.mark.asyncio
    async def test_locked_folder_hidden_until_verified(self, store, policy):
        folder = await store.create_folder(FolderCreate(name="Private"))
        await store.lock_folder(folder.id, "s3cret")
        session = SessionRegistry().create()

        assert not policy.is_folder_accessible(folder.id, session)
        with pytest.raises(AccessDeniedError, match="Folder is locked"):
            policy.ensure_access(folder.id, session)

        assert await policy.verify(folder.id, "s3cret", session) is True
        assert policy.is_folder_accessible(folder.id, session)
        policy.ensure_access(folder.id, session)

    @pytest.mark.asyncio
    async def test_wrong_password_keeps_folder_hidden(self, store, policy):
        folder = await store.create_folder(FolderCreate(name="Private"))
        await store.lock_folder(folder.id, "s3cret")
        session = SessionRegistry().create()

        assert await policy.verify(folder.id, "wrong", session) is False
        assert not policy.is_folder_accessible(folder.id, session)

    @pytest.mark.asyncio
    async def test_lock_hides_descendants(self, store, policy):
        parent = await store.create_folder(FolderCreate(name="Private"))
        child = await store.create_folder(FolderCreate(name="Inner", parent_id=parent.id))
        await store.lock_folder(parent.id, "s3cret")

        assert policy.effective_lock(child.id) == parent.id
        assert not policy.is_folder_accessible(child.id, None)
        assert child.id not in policy.accessible_folders(None)

    @pytest.mark.asyncio
    async def test_bookmark_visibility(self, store, policy):
        folder = await store.create_folder(FolderCreate(name="Private"))
        hidden = await store.create_bookmark(
            BookmarkCreate(url="https://a.com", title="A", folder_id=folder.id)
        )
        loose = await store.create_bookmark(BookmarkCreate(url="https://b.com", title="B"))
        await store.lock_folder(folder.id, "s3cret")

        assert not policy.is_visible(hidden, None)
        assert policy.is_visible(loose, None)

    @pytest.mark.asyncio
    async def test_relocking_revokes_verification(self, store, policy):
        """Test a new password invalidates earlier unlocks."""
        folder = await store.create_folder(FolderCreate(name="Private"))
        await store.lock_folder(folder.id, "first")
        session = SessionRegistry().create()
        await policy.verify(folder.id, "first", session)

        await store.lock_folder(folder.id, "second")

        assert not policy.is_folder_accessible(folder.id, session)

    @pytest.mark.asyncio
    async def test_removed_lock_makes_folder_accessible(self, store, policy):
        folder = await store.create_folder(FolderCreate(name="Private"))
        await store.lock_folder(folder.id, "s3cret")
        await store.remove_folder_lock(folder.id, "s3cret")

        assert policy.is_folder_accessible(folder.id, None)

    @pytest.mark.asyncio
    async def test_unknown_folder(self, policy):
        with pytest.raises(NotFoundError):
            policy.ensure_access("missing", None)
        with pytest.raises(NotFoundError):
            await policy.verify("missing", "pw", SessionRegistry().create())

    @pytest.mark.asyncio
    async def test_target_access(self, store, policy):
        parent = await store.create_folder(FolderCreate(name="Private"))
        child = await store.create_folder(FolderCreate(name="Statements", parent_id=parent.id))
        await store.lock_folder(parent.id, "s3cret")
        session = SessionRegistry().create()

        policy.ensure_target_access(None, None)
        policy.ensure_target_access("missing", None)
        with pytest.raises(AccessDeniedError):
            policy.ensure_target_access(child.id, session)

        await policy.verify(parent.id, "s3cret", session)
        policy.ensure_target_access(child.id, session)
