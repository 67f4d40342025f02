"""
Durable manifest storage.

The manifest is one JSON document in the cache root. Writes go to a temporary
sibling and are renamed over the canonical path, so a reader sees either the
previous document or the new one, never a partial write. Read-modify-write
sequences must run under the manifest lock (see ``with_lock``/``update``).
"""

import json
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, TypeVar

from repocache.manifest.lock import (
    LOCK_MAX_ATTEMPTS,
    LOCK_RETRY_DELAY,
    LOCK_STALE_SECONDS,
    ManifestLock,
)
from repocache.manifest.models import Manifest

logger = logging.getLogger(__name__)

T = TypeVar("T")

MANIFEST_FILENAME = "manifest.json"
LOCK_FILENAME = "manifest.lock"


class ManifestStore:
    """Loads, saves and locks the manifest kept in ``cache_dir``."""

    def __init__(
        self,
        cache_dir: Path,
        stale_after: float = LOCK_STALE_SECONDS,
        retry_delay: float = LOCK_RETRY_DELAY,
        max_attempts: int = LOCK_MAX_ATTEMPTS,
    ):
        self.cache_dir = Path(cache_dir)
        self.manifest_path = self.cache_dir / MANIFEST_FILENAME
        self.tmp_path = self.cache_dir / f"{MANIFEST_FILENAME}.tmp"
        self.lock_path = self.cache_dir / LOCK_FILENAME
        self.stale_after = stale_after
        self.retry_delay = retry_delay
        self.max_attempts = max_attempts

    def load(self) -> Manifest:
        """
        Read the manifest.

        A missing, unreadable or corrupted document yields an empty manifest.
        """
        if not self.manifest_path.exists():
            return Manifest()

        try:
            content = self.manifest_path.read_text(encoding="utf-8")
            raw = json.loads(content)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            logger.warning(
                f"Manifest at {self.manifest_path} is unreadable ({e}); "
                "starting from an empty manifest"
            )
            return Manifest()

        return Manifest.from_raw(raw)

    def save(self, manifest: Manifest) -> None:
        """Atomically replace the manifest document."""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        document = manifest.normalized().to_document()

        with open(self.tmp_path, "w", encoding="utf-8") as handle:
            json.dump(document, handle, indent=2)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(self.tmp_path, self.manifest_path)

    def _new_lock(self) -> ManifestLock:
        return ManifestLock(
            self.lock_path,
            stale_after=self.stale_after,
            retry_delay=self.retry_delay,
            max_attempts=self.max_attempts,
        )

    @contextmanager
    def lock(self) -> Iterator[None]:
        """Hold the manifest lock for the duration of the block."""
        with self._new_lock():
            yield

    def with_lock(self, body: Callable[[], T]) -> T:
        """Run ``body`` while holding the manifest lock and return its result."""
        with self.lock():
            return body()

    def update(self, mutator: Callable[[Manifest], T]) -> T:
        """
        Locked read-modify-write.

        ``mutator`` receives the freshly loaded manifest and may change it in place;
        the manifest is saved afterwards unless the mutator raises.
        """

        def body() -> T:
            manifest = self.load()
            result = mutator(manifest)
            self.save(manifest)
            return result

        return self.with_lock(body)

