"""Service container shared by the API routers and the CLI."""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, Request

from ..core.backup_store import BackupStore
from ..core.entity_store import EntityStore
from ..core.folder_lock import AccessSession, FolderLockPolicy, SessionRegistry
from ..core.query_engine import QueryEngine
from ..core.remote_store import build_remote_store
from ..core.sync_coordinator import SyncCoordinator, TieBreak
from ..core.url_metadata import UrlMetadataFetcher
from ..models.config import AppConfig, EnvSettings

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Marksync-Session"


@dataclass
class Services:
    config: AppConfig
    store: EntityStore
    sessions: SessionRegistry
    lock_policy: FolderLockPolicy
    queries: QueryEngine
    coordinator: SyncCoordinator
    metadata: UrlMetadataFetcher

    async def close(self) -> None:
        if self.coordinator.remote is not None:
            await self.coordinator.remote.close()
        await self.metadata.close()
        await self.store.close()


async def build_services(config: AppConfig, env: Optional[EnvSettings] = None) -> Services:
    """Create and initialize every service from configuration.

    Raises:
        StorageError: If the local document exists but cannot be loaded
    """
    data_file = config.data_file()
    data_file.parent.mkdir(parents=True, exist_ok=True)

    store = EntityStore(data_file, seed_default_folders=config.seed_default_folders)
    await store.initialize()

    lock_policy = FolderLockPolicy(store)
    remote = build_remote_store(config, env)
    coordinator = SyncCoordinator(
        store,
        remote,
        BackupStore(config.backup_path(), max_backups=config.max_backups),
        base_path=config.base_file(),
        max_attempts=config.sync_max_attempts,
        retry_delay=config.sync_retry_delay_seconds,
        tie_break=TieBreak(config.sync_tie_break),
    )

    logger.info(f"Services ready (data: {data_file}, remote: {remote.describe() if remote else 'none'})")
    return Services(
        config=config,
        store=store,
        sessions=SessionRegistry(ttl_seconds=config.session_ttl_seconds),
        lock_policy=lock_policy,
        queries=QueryEngine(store, lock_policy),
        coordinator=coordinator,
        metadata=UrlMetadataFetcher(timeout=config.metadata_timeout_seconds),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_session(
    request: Request,
    session_token: Optional[str] = Header(None, alias=SESSION_HEADER),
) -> Optional[AccessSession]:
    """The caller's unlock session, if it sent a live token."""
    return get_services(request).sessions.get(session_token)
