"""
Manifest of managed repositories.

The manifest maps ``owner/repo`` keys to repository entries and is persisted as a
single JSON document inside the cache root, next to a transient lock marker:

    <cache_dir>/
    ├── manifest.json
    ├── manifest.lock      # present only while a writer holds the lock
    └── <owner>/<repo>/    # cached working trees
"""

from .lock import ManifestLock
from .models import Manifest, RepoEntry, RepoType, now_iso, parse_iso
from .store import ManifestStore

__all__ = [
    "Manifest",
    "ManifestLock",
    "ManifestStore",
    "RepoEntry",
    "RepoType",
    "now_iso",
    "parse_iso",
]
