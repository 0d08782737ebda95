"""
Cross-process locking of package working copies.

Importing a package is a multi-step sequence (fetch, reconfigure, checkout,
patch) that git does not make atomic. Callers serialize operations on one
working copy by holding the lock keyed on its directory; different packages
can be processed concurrently.
"""

import os
import time
import logging
import threading
from pathlib import Path
from contextlib import contextmanager

import psutil


class FileLock:
    """
    Exclusive lock materialized as a file created with O_CREAT | O_EXCL.

    Locks left behind by dead processes, or older than ``stale_after``
    seconds, are cleaned up when acquiring.
    """

    def __init__(self, lock_file_path: Path, timeout: float = 300.0, stale_after: float = 3600.0):
        """
        Initialize file lock.

        Args:
            lock_file_path: Path to the lock file
            timeout: Maximum time to wait for lock acquisition (seconds)
            stale_after: Age after which an existing lock is considered abandoned
        """
        self.lock_file_path = Path(lock_file_path)
        self.timeout = timeout
        self.stale_after = stale_after
        self.logger = logging.getLogger('buildsync.lock')
        self._lock_acquired = False

    def acquire(self) -> bool:
        """
        Acquire the file lock.

        Returns:
            True if lock was acquired, False if timeout occurred
        """
        start_time = time.time()

        while True:
            self.lock_file_path.parent.mkdir(parents=True, exist_ok=True)
            if self._try_create() or (self._cleanup_stale_lock() and self._try_create()):
                self._lock_acquired = True
                self.logger.debug(f"Acquired lock: {self.lock_file_path}")
                return True

            if time.time() - start_time >= self.timeout:
                break
            time.sleep(0.1)

        self.logger.warning(f"Failed to acquire lock {self.lock_file_path} within {self.timeout}s")
        return False

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.lock_file_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False

        with os.fdopen(fd, 'w') as f:
            f.write(f"locked_by_pid_{os.getpid()}_thread_{threading.get_ident()}")
        return True

    def _cleanup_stale_lock(self) -> bool:
        """
        Remove the lock file if its owner is gone.

        Returns:
            True if the lock file was removed (or had already disappeared)
        """
        try:
            lock_age = time.time() - self.lock_file_path.stat().st_mtime
            lock_content = self.lock_file_path.read_text()
        except FileNotFoundError:
            return True

        if lock_age > self.stale_after:
            self.logger.warning(f"Cleaning up stale lock file: {self.lock_file_path}")
        else:
            try:
                pid = int(lock_content.split("locked_by_pid_")[1].split("_")[0])
            except (ValueError, IndexError):
                # Being written right now, or garbage; only age can tell
                return False
            if psutil.pid_exists(pid):
                return False
            self.logger.warning(f"Cleaning up lock from dead process {pid}: {self.lock_file_path}")

        try:
            self.lock_file_path.unlink()
        except FileNotFoundError:
            pass
        return True

    def release(self) -> None:
        """Release the file lock."""
        if not self._lock_acquired:
            return

        try:
            self.lock_file_path.unlink()
            self.logger.debug(f"Released lock: {self.lock_file_path}")
        except FileNotFoundError:
            self.logger.warning(f"Lock file {self.lock_file_path} vanished while held")
        self._lock_acquired = False

    def is_locked(self) -> bool:
        """Check if the lock is currently held by this instance."""
        return self._lock_acquired

    def __enter__(self):
        """Context manager entry."""
        if not self.acquire():
            raise TimeoutError(f"Could not acquire lock {self.lock_file_path} within {self.timeout}s")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.release()


def lock_path_for(working_directory: Path) -> Path:
    """Lock file guarding a working copy, kept next to it so that removing
    the working copy does not remove the lock."""
    working_directory = Path(working_directory)
    return working_directory.parent / f".{working_directory.name}.buildsync-lock"


@contextmanager
def working_copy_lock(working_directory: Path, timeout: float = 300.0):
    """
    Context manager serializing operations on one working copy.

    Raises:
        TimeoutError: If lock cannot be acquired within timeout
    """
    lock = FileLock(lock_path_for(working_directory), timeout)
    with lock:
        yield lock
