"""Sync and backup coordination between the entity store and durable copies.

Conflict policy
---------------
Entities are reconciled one by one with last-write-wins on `updated_at`,
using the document agreed at the previous successful sync as the common
base so deletions can be told apart from creations:

* present on both sides: the later `updated_at` wins. Equal timestamps
  with different content is a tie, settled by the tie-break setting:
  `prefer_remote` (the default, DEFAULT_TIE_BREAK), `prefer_local`, or
  `raise`, which aborts the sync with SyncConflictError before anything
  is written.
* present on one side only: new if the base lacks it (kept); otherwise the
  other side deleted it, and the deletion wins unless the surviving copy
  was modified after the base copy.

The base is only trusted for the remote it was agreed with, and never when
the remote document is missing: in both cases the merge runs against an
empty base, so local entities are pushed rather than read as deletions.

Bookmark usage metadata never takes part in conflict detection; the
merged copy carries the highest visit count and latest visit.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from pydantic import BaseModel, Field

from ..models.bookmark import Bookmark, utc_now
from ..models.snapshot import BackupInfo, BookmarkData
from ..utils.yaml_handler import YAMLError, load_document_from_file, save_document_to_file
from .backup_store import BackupStore
from .entity_store import EntityStore, StorageError
from .errors import (
    IntegrityError,
    MarksyncError,
    RestoreError,
    SyncConflictError,
    SyncError,
    SyncInProgressError,
)
from .integrity import check_document, repair_document
from .remote_store import RemoteStore, RemoteStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TieBreak(str, Enum):
    PREFER_REMOTE = "prefer_remote"
    PREFER_LOCAL = "prefer_local"
    RAISE = "raise"


DEFAULT_TIE_BREAK = TieBreak.PREFER_REMOTE
DEFAULT_MAX_ATTEMPTS = 3


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


class SyncReport(BaseModel):
    """What one successful sync changed."""

    pushed: int = 0
    pulled: int = 0
    deleted_local: int = 0
    deleted_remote: int = 0
    conflicts: List[str] = Field(default_factory=list)
    repairs: List[str] = Field(default_factory=list)
    rebased: bool = False
    started_at: datetime = Field(default_factory=utc_now)
    finished_at: Optional[datetime] = None


class SyncStatus(BaseModel):
    state: SyncState = SyncState.IDLE
    remote: Optional[str] = None
    last_result: Optional[str] = None
    last_error: Optional[str] = None
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    last_report: Optional[SyncReport] = None


@dataclass
class MergeOutcome:
    document: BookmarkData
    pushed: int = 0
    pulled: int = 0
    deleted_local: int = 0
    deleted_remote: int = 0
    ties: List[str] = field(default_factory=list)
    repairs: List[str] = field(default_factory=list)


def _conflict_content(entity: BaseModel) -> dict:
    return entity.model_dump(mode="json", exclude={"metadata"})


def _with_merged_usage(winner: Bookmark, local: Bookmark, remote: Bookmark) -> Bookmark:
    visits = [v for v in (local.metadata.last_visited, remote.metadata.last_visited) if v]
    metadata = winner.metadata.model_copy(
        update={
            "visit_count": max(local.metadata.visit_count, remote.metadata.visit_count),
            "last_visited": max(visits) if visits else None,
        }
    )
    return winner.model_copy(update={"metadata": metadata})


def _merge_collection(
    kind: str,
    local: Dict[str, T],
    remote: Dict[str, T],
    base: Dict[str, T],
    tie_break: TieBreak,
    outcome: MergeOutcome,
) -> List[T]:
    merged: List[T] = []
    ids = list(local) + [i for i in remote if i not in local]
    for entity_id in ids:
        mine, theirs, common = local.get(entity_id), remote.get(entity_id), base.get(entity_id)

        if mine is not None and theirs is not None:
            winner = mine
            if _conflict_content(mine) != _conflict_content(theirs):
                if mine.updated_at > theirs.updated_at:
                    outcome.pushed += 1
                elif theirs.updated_at > mine.updated_at:
                    winner = theirs
                    outcome.pulled += 1
                else:
                    outcome.ties.append(f"{kind}:{entity_id}")
                    if tie_break is not TieBreak.PREFER_LOCAL:
                        winner = theirs
                        outcome.pulled += 1
            if isinstance(winner, Bookmark):
                winner = _with_merged_usage(winner, mine, theirs)
            merged.append(winner)
        elif mine is not None:
            if common is None or mine.updated_at > common.updated_at:
                merged.append(mine)
                outcome.pushed += 1
            else:
                outcome.deleted_local += 1
        else:
            if common is None or theirs.updated_at > common.updated_at:
                merged.append(theirs)
                outcome.pulled += 1
            else:
                outcome.deleted_remote += 1
    return merged


def merge_documents(
    local: BookmarkData,
    remote: BookmarkData,
    base: BookmarkData,
    tie_break: TieBreak = DEFAULT_TIE_BREAK,
) -> MergeOutcome:
    """Three-way merge of two documents against their last common base.

    Raises:
        SyncConflictError: On ties when tie_break is RAISE
    """
    outcome = MergeOutcome(document=BookmarkData())
    collections = {}
    for kind in ("bookmarks", "folders", "tags"):
        collections[kind] = _merge_collection(
            kind[:-1],
            {e.id: e for e in getattr(local, kind)},
            {e.id: e for e in getattr(remote, kind)},
            {e.id: e for e in getattr(base, kind)},
            tie_break,
            outcome,
        )

    if outcome.ties and tie_break is TieBreak.RAISE:
        raise SyncConflictError(
            f"Local and remote changed {len(outcome.ties)} entities at the same instant",
            ids=outcome.ties,
        )

    document, repairs = repair_document(BookmarkData(**collections))
    outcome.document = document
    outcome.repairs = repairs
    return outcome


def rebase_local_edits(
    current: BookmarkData, snapshot: BookmarkData, merged: BookmarkData
) -> BookmarkData:
    """Replay edits made locally after snapshot on top of merged.

    An entity that differs from its snapshot copy, or that did not exist in
    the snapshot, was touched during the sync and keeps its current form;
    an entity removed since the snapshot stays removed.
    """
    collections = {}
    for kind in ("bookmarks", "folders", "tags"):
        now = {e.id: e for e in getattr(current, kind)}
        before = {e.id: e for e in getattr(snapshot, kind)}
        result = {}
        for entity in getattr(merged, kind):
            if entity.id in before and entity.id not in now:
                continue
            result[entity.id] = entity
        for entity_id, entity in now.items():
            previous = before.get(entity_id)
            if previous is None or previous.model_dump() != entity.model_dump():
                result[entity_id] = entity
        collections[kind] = list(result.values())
    document, _ = repair_document(BookmarkData(**collections))
    return document


class SyncCoordinator:
    """Reconciles the entity store with a remote store and manages backups.

    Only one sync runs at a time; a second request while one is in flight
    is rejected with SyncInProgressError rather than queued.
    """

    def __init__(
        self,
        store: EntityStore,
        remote: Optional[RemoteStore],
        backups: BackupStore,
        base_path: Optional[Path] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = 0.5,
        tie_break: TieBreak = DEFAULT_TIE_BREAK,
    ):
        """Initialize sync coordinator.

        Args:
            store: EntityStore to reconcile
            remote: Remote store, or None when sync is not configured
            backups: BackupStore for snapshots
            base_path: Where the last agreed document is kept (None = memory)
            max_attempts: Tries per remote call before giving up
            retry_delay: Base delay between tries, grows linearly
            tie_break: Policy for equal timestamps with different content
        """
        self.store = store
        self.remote = remote
        self.backups = backups
        self.base_path = base_path
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.tie_break = TieBreak(tie_break)
        self.status = SyncStatus(remote=remote.describe() if remote else None)
        self._base: Optional[BookmarkData] = None

    @property
    def state(self) -> SyncState:
        return self.status.state

    # ------------------------------------------------------------------
    # Sync

    async def sync(self) -> SyncReport:
        """Run one pull-merge-push cycle.

        Raises:
            SyncInProgressError: If a sync is already running
            SyncConflictError: On an ambiguous tie with tie_break=raise
            SyncError: If no remote is configured, the remote keeps failing, or
                anything else goes wrong mid-sync
        """
        if self.remote is None:
            raise SyncError("No remote store configured")
        if self.status.state is SyncState.SYNCING:
            raise SyncInProgressError("A sync is already running")

        self.status.state = SyncState.SYNCING
        self.status.last_started_at = utc_now()
        logger.info(f"Sync started against {self.remote.describe()}")

        try:
            report = await self._run_sync()
        except asyncio.CancelledError:
            self._finish("cancelled", "Sync cancelled")
            logger.warning("Sync cancelled, local state unchanged")
            raise
        except IntegrityError as e:
            self._finish("failed", e.message)
            logger.error(f"Sync produced an invalid document: {e.message}")
            raise SyncError(f"Sync produced an invalid document: {e.message}", **e.details) from e
        except MarksyncError as e:
            self._finish("failed", e.message)
            logger.error(f"Sync failed: {e.message}")
            raise
        except StorageError as e:
            self._finish("failed", str(e))
            logger.error(f"Sync failed: {e}")
            raise SyncError(f"Sync failed: {e}") from e
        except Exception as e:
            # Anything unexpected still has to release the SYNCING state.
            self._finish("failed", str(e))
            logger.exception(f"Sync failed unexpectedly: {e}")
            raise SyncError(f"Sync failed: {e}") from e

        self._finish("success")
        self.status.last_synced_at = report.finished_at
        self.status.last_report = report
        logger.info(
            f"Sync finished: {report.pushed} pushed, {report.pulled} pulled, "
            f"{report.deleted_local} removed locally, {report.deleted_remote} removed remotely, "
            f"{len(report.conflicts)} ties"
        )
        return report

    async def _run_sync(self) -> SyncReport:
        report = SyncReport()
        snapshot, revision = self.store.export_data()

        remote_document = await self._with_retries("fetch", self.remote.fetch)
        if remote_document is None:
            # Nothing on the remote to have deleted from: push everything back.
            base = None
            logger.info(f"No document at {self.remote.describe()}, pushing local state")
        else:
            base = await self._load_base()

        outcome = merge_documents(
            snapshot,
            remote_document or BookmarkData(),
            base or BookmarkData(),
            self.tie_break,
        )
        merged = outcome.document
        for tie in outcome.ties:
            logger.warning(f"Timestamp tie on {tie}, resolved with {self.tie_break.value}")

        await self._with_retries("push", lambda: self.remote.push(merged))

        rebased = False

        def rebase(current: BookmarkData) -> BookmarkData:
            nonlocal rebased
            rebased = True
            return rebase_local_edits(current, snapshot, merged)

        await self.store.apply_sync_result(merged, revision, rebase)
        await self._save_base(merged)

        report.pushed = outcome.pushed
        report.pulled = outcome.pulled
        report.deleted_local = outcome.deleted_local
        report.deleted_remote = outcome.deleted_remote
        report.conflicts = outcome.ties
        report.repairs = outcome.repairs
        report.rebased = rebased
        report.finished_at = utc_now()
        return report

    async def _with_retries(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        last_error: Optional[RemoteStoreError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await call()
            except RemoteStoreError as e:
                last_error = e
                if not e.is_transient:
                    raise SyncError(
                        f"Remote {operation} failed: {e.message}", failure_type=e.failure_type
                    ) from e
                logger.warning(
                    f"Remote {operation} attempt {attempt}/{self.max_attempts} failed: {e.message}"
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay * attempt)

        raise SyncError(
            f"Remote {operation} failed after {self.max_attempts} attempts: {last_error.message}",
            failure_type=last_error.failure_type,
            attempts=self.max_attempts,
        ) from last_error

    def _finish(self, result: str, error: Optional[str] = None) -> None:
        self.status.state = SyncState.IDLE
        self.status.last_result = result
        self.status.last_error = error
        self.status.last_finished_at = utc_now()

    @property
    def base_owner_path(self) -> Optional[Path]:
        """File naming the remote the persisted base was agreed with."""
        if self.base_path is None:
            return None
        return self.base_path.with_name(self.base_path.name + ".remote")

    async def _load_base(self) -> Optional[BookmarkData]:
        if self._base is not None or self.base_path is None:
            return self._base
        if not self.base_path.exists():
            return None
        owner = await asyncio.to_thread(self._read_base_owner)
        if owner != self.remote.describe():
            # A base agreed with another remote says nothing about this one.
            logger.warning(
                f"Ignoring sync base {self.base_path}: recorded for {owner or 'an unknown remote'}, "
                f"now syncing with {self.remote.describe()}"
            )
            return None
        try:
            self._base = await asyncio.to_thread(load_document_from_file, self.base_path)
        except YAMLError as e:
            # Without a base nothing is treated as deleted; the next sync re-establishes it.
            logger.warning(f"Ignoring unreadable sync base {self.base_path}: {e}")
            return None
        return self._base

    async def _save_base(self, document: BookmarkData) -> None:
        self._base = document
        if self.base_path is None:
            return
        try:
            await asyncio.to_thread(save_document_to_file, document, self.base_path)
            await asyncio.to_thread(
                self.base_owner_path.write_text, self.remote.describe(), encoding="utf-8"
            )
        except (YAMLError, OSError) as e:
            logger.warning(f"Could not persist sync base {self.base_path}: {e}")

    def _read_base_owner(self) -> Optional[str]:
        try:
            return self.base_owner_path.read_text(encoding="utf-8").strip()
        except OSError:
            return None

    async def run_periodic(self, interval_seconds: float) -> None:
        """Sync every interval_seconds until cancelled."""
        logger.info(f"Periodic sync every {interval_seconds}s")
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.sync()
            except SyncInProgressError:
                logger.debug("Skipping periodic sync, one is already running")
            except MarksyncError as e:
                logger.error(f"Periodic sync failed: {e.message}")

    # ------------------------------------------------------------------
    # Backups

    async def backup(self, reason: str = "manual") -> BackupInfo:
        """Snapshot the store. Never touches live state or the mutation lock."""
        document, _ = self.store.export_data()
        return await self.backups.save(document, reason)

    def list_backups(self) -> List[BackupInfo]:
        """Snapshot metadata, newest first."""
        return self.backups.list()

    async def restore(self, backup_id: str) -> BackupInfo:
        """Replace live state with a snapshot, all or nothing.

        A pre-restore backup of the current state is taken first.

        Raises:
            NotFoundError: If the backup doesn't exist
            SyncInProgressError: If a sync is running
            RestoreError: If the snapshot is corrupt or cannot be applied
        """
        if self.status.state is SyncState.SYNCING:
            raise SyncInProgressError("Cannot restore while a sync is running")

        info = self.backups.get_info(backup_id)
        document = await self.backups.load(backup_id)
        check_document(document)

        await self.backup(reason="pre-restore")
        try:
            await self.store.replace_data(document)
        except StorageError as e:
            raise RestoreError(
                f"Failed to apply backup {backup_id}: {e}", entity_id=backup_id
            ) from e

        logger.info(f"Restored backup {backup_id}")
        return info
