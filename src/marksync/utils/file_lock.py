"""Lock-file coordination for writers sharing a data directory."""

import asyncio
import os
import time
from pathlib import Path


class FileLockError(Exception):
    """File locking error."""

    pass


class FileLocker:
    """Context manager holding a `<file>.lock` sibling while writing.

    Guards against a second process (another server, or the CLI) writing
    the same document. In-process writers are already serialized by the
    entity store's mutation lock.
    """

    def __init__(self, file_path: Path, timeout: float = 5.0, poll_interval: float = 0.1):
        """Initialize file locker.

        Args:
            file_path: Path to the file to lock
            timeout: Maximum time to wait for lock acquisition (seconds)
            poll_interval: Delay between acquisition attempts (seconds)
        """
        self.file_path = file_path
        self.lock_path = Path(str(file_path) + ".lock")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.acquired = False

    def __enter__(self) -> "FileLocker":
        deadline = time.monotonic() + self.timeout
        while not self._try_acquire():
            if time.monotonic() > deadline:
                raise FileLockError(
                    f"Could not acquire lock on {self.file_path} after {self.timeout}s"
                )
            time.sleep(self.poll_interval)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._release_lock()
        return False

    async def __aenter__(self) -> "FileLocker":
        deadline = time.monotonic() + self.timeout
        while not await asyncio.to_thread(self._try_acquire):
            if time.monotonic() > deadline:
                raise FileLockError(
                    f"Could not acquire lock on {self.file_path} after {self.timeout}s"
                )
            await asyncio.sleep(self.poll_interval)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self._release_lock()
        return False

    def _try_acquire(self) -> bool:
        """Create the lock file exclusively. Returns False if it is held."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._remove_stale_lock()
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        except OSError as e:
            raise FileLockError(f"Could not create lock file {self.lock_path}: {e}") from e
        with os.fdopen(fd, "w") as handle:
            handle.write(str(os.getpid()))
        self.acquired = True
        return True

    def _remove_stale_lock(self) -> None:
        # A lock older than twice the timeout belongs to a crashed writer.
        try:
            age = time.time() - self.lock_path.stat().st_mtime
        except FileNotFoundError:
            return
        if age > self.timeout * 2:
            self.lock_path.unlink(missing_ok=True)

    def _release_lock(self) -> None:
        if self.acquired:
            self.lock_path.unlink(missing_ok=True)
            self.acquired = False
