"""
Cross-process lock around manifest read-modify-write.

The lock is a marker file created with ``O_CREAT | O_EXCL``, which is atomic on
local filesystems. The marker records who took it and when. A marker older than
``stale_after`` seconds is considered abandoned and removed by the next caller.
Acquisition is bounded: after ``max_attempts`` polls the marker is removed anyway
and ManifestLockError is raised, so a crashed holder can never wedge every later
invocation.
"""

import logging
import os
import socket
import time
from pathlib import Path
from typing import Callable, Optional

from repocache.exceptions import ManifestLockError
from repocache.manifest.models import now_iso

logger = logging.getLogger(__name__)

LOCK_STALE_SECONDS = 30.0
LOCK_RETRY_DELAY = 0.1
LOCK_MAX_ATTEMPTS = 300


def holder_identity() -> str:
    return f"{os.getpid()}@{socket.gethostname()}"


class ManifestLock:
    """
    Marker-file lock with stale detection and bounded polling.

    Usage:
        with ManifestLock(cache_dir / "manifest.lock"):
            ...
    """

    def __init__(
        self,
        lock_path: Path,
        stale_after: float = LOCK_STALE_SECONDS,
        retry_delay: float = LOCK_RETRY_DELAY,
        max_attempts: int = LOCK_MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.lock_path = Path(lock_path)
        self.stale_after = stale_after
        self.retry_delay = retry_delay
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._acquired = False

    @property
    def is_acquired(self) -> bool:
        return self._acquired

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as handle:
            handle.write(f"{holder_identity()}\n{now_iso()}\n")
        return True

    def _age(self) -> Optional[float]:
        """Seconds since the marker was last modified, or None if it is gone."""
        try:
            mtime = self.lock_path.stat().st_mtime
        except FileNotFoundError:
            return None
        return time.time() - mtime

    def _remove(self) -> None:
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass

    def read_holder(self) -> Optional[str]:
        """First line of the marker (``pid@host``), if any."""
        try:
            content = self.lock_path.read_text()
        except OSError:
            return None
        return content.splitlines()[0] if content else None

    def acquire(self) -> None:
        """
        Acquire the lock, polling until it is free.

        Raises:
            ManifestLockError: If the lock is still held after max_attempts polls
        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)

        for _ in range(self.max_attempts):
            if self._try_create():
                self._acquired = True
                logger.debug(f"Acquired manifest lock {self.lock_path}")
                return

            age = self._age()
            if age is None or age > self.stale_after:
                if age is not None:
                    logger.warning(
                        f"Removing stale manifest lock {self.lock_path} "
                        f"(held by {self.read_holder()}, {age:.1f}s old)"
                    )
                    self._remove()
                continue

            self._sleep(self.retry_delay)

        holder = self.read_holder()
        self._remove()
        raise ManifestLockError(
            str(self.lock_path),
            f"still held by {holder} after {self.max_attempts} attempts",
        )

    def release(self) -> None:
        if self._acquired:
            self._remove()
            self._acquired = False
            logger.debug(f"Released manifest lock {self.lock_path}")

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False

