"""
Repository orchestration: make ``owner/repo[@branch]`` available on disk.

``ensure_available`` reconciles a request with the manifest and the filesystem:

    no entry                      -> clone (protocol fallback)            "cloned"
    local entry                   -> untouched, lastAccessed refreshed    "cached"
    cached entry, valid checkout  -> switch branch if needed              "cached"
    cached entry, broken checkout -> entry dropped, treated as no entry
    untracked dir at cache path   -> adopted if origin matches, else
                                     deleted and re-cloned                "reused"

The whole decide-and-mutate sequence for one repository runs under a per-repository
claim lock (``<cache_dir>/.locks/<owner>/<repo>.lock``), so two processes asking for
the same uncached repository cannot both clone it. Manifest writes additionally take
the manifest lock, which serialises writers across all repositories.
"""

import logging
import os
from contextlib import contextmanager
from functools import partial
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Tuple, Union

from filelock import FileLock, Timeout

from repocache import scanner
from repocache.config import RepoCacheConfig, parse_search_paths
from repocache.exceptions import (
    CloneAttempt,
    CloneError,
    RepoAcquisitionError,
    RepoClaimError,
    RepoNotRegisteredError,
    RepoPathError,
    RepoSpecError,
)
from repocache.git.engine import GitEngine, remove_tree
from repocache.git.spec import build_git_url, parse_repo_spec, remote_to_repo_key
from repocache.manifest.models import Manifest, RepoEntry, RepoType, now_iso, parse_iso
from repocache.manifest.store import ManifestStore
from repocache.repos.models import (
    EnsureResult,
    EnsureStatus,
    FileContent,
    FindResult,
    ReadResult,
    RemoveResult,
    RemoveStatus,
    RepoTarget,
    ScanSummary,
    UpdateResult,
)

logger = logging.getLogger(__name__)

UrlBuilder = Callable[[str, str, bool, str], str]
Scanner = Callable[[Iterable[Path]], List[scanner.LocalRepo]]
RemoteKey = Callable[[Optional[str]], Optional[str]]

DEFAULT_MAX_LINES = 500
GLOB_CHARACTERS = "*?["


def directory_size(path: Path) -> int:
    """Total size in bytes of the files below ``path``, ``.git`` included."""
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                continue
    return total


def is_within(parent: Path, candidate: Path) -> bool:
    parent = Path(parent).resolve()
    candidate = Path(candidate).resolve()
    return candidate == parent or parent in candidate.parents


def read_lines(root: Path, path: Path, max_lines: int) -> FileContent:
    """The first ``max_lines`` lines of ``path``; unreadable files carry an error instead."""
    relative = path.relative_to(root).as_posix()
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return FileContent(relative, error="not a UTF-8 text file")
    except OSError as e:
        return FileContent(relative, error=e.strerror or str(e))
    lines = text.splitlines()
    return FileContent(relative, lines[:max_lines], len(lines))


class RepoManager:
    """Keeps the manifest and the cached working trees consistent with requests."""

    def __init__(
        self,
        config: RepoCacheConfig,
        store: Optional[ManifestStore] = None,
        engine: Optional[GitEngine] = None,
        scan: Optional[Scanner] = None,
        url_builder: UrlBuilder = build_git_url,
        remote_key: Optional[RemoteKey] = None,
    ):
        """
        Args:
            config: Resolved configuration
            store: Manifest store (defaults to one rooted at ``config.cache_dir``)
            engine: Git engine (defaults to one using ``config.default_branch``)
            scan: Local repository scanner (defaults to ``repocache.scanner.scan``)
            url_builder: ``(owner, repo, use_https, host) -> url``
            remote_key: ``remote -> owner/repo or None``, deciding which checkouts
                count as a repository (defaults to remotes on ``config.host``)
        """
        self.config = config
        self.store = store or ManifestStore(config.cache_dir)
        self.engine = engine or GitEngine(default_branch=config.default_branch)
        self.scan_local = scan or scanner.scan
        self.url_builder = url_builder
        self.remote_key = remote_key or partial(remote_to_repo_key, host=config.host)

    # Requests

    def resolve_target(self, spec: Union[str, RepoTarget]) -> RepoTarget:
        """Parse ``owner/repo[@branch]``; raises RepoSpecError before any I/O."""
        if isinstance(spec, RepoTarget):
            target = spec
        else:
            parsed = parse_repo_spec(spec)
            target = RepoTarget(
                owner=parsed.owner,
                repo=parsed.repo,
                branch=parsed.branch or self.config.default_branch,
                explicit_branch=parsed.branch,
            )
        self.cache_path(target)
        return target

    def cache_path(self, target: RepoTarget) -> Path:
        """
        ``<cache_dir>/<owner>/<repo>``.

        Raises:
            RepoSpecError: If the path would not be a checkout directory of its own
                below the cache root (relative components, the claims directory)
        """
        path = self.config.cache_dir / target.owner / target.repo
        normalized = Path(os.path.normpath(path))
        if (
            normalized.parent.parent != Path(os.path.normpath(self.config.cache_dir))
            or normalized.parent.name == self.config.claims_dir.name
            or normalized.name != target.repo
        ):
            raise RepoSpecError(
                target.repo_key, "does not resolve to a directory inside the cache"
            )
        return path

    @contextmanager
    def claim(self, target: RepoTarget) -> Iterator[None]:
        """Hold the per-repository lock for ``target``."""
        lock_file = self.config.claims_dir / target.owner / f"{target.repo}.lock"
        lock_file.parent.mkdir(parents=True, exist_ok=True)
        lock = FileLock(str(lock_file), timeout=self.config.claim_timeout)
        try:
            lock.acquire()
        except Timeout as e:
            raise RepoClaimError(
                target.repo_key, str(lock_file), self.config.claim_timeout
            ) from e
        try:
            yield
        finally:
            lock.release()

    # Manifest mutations

    def _touch(
        self,
        repo_key: str,
        branch: Optional[str] = None,
        updated: bool = False,
        size_bytes: Optional[int] = None,
    ) -> None:
        def mutate(manifest: Manifest) -> None:
            entry = manifest.repos.get(repo_key)
            if entry is None:
                return
            now = now_iso()
            entry.last_accessed = now
            if branch:
                entry.current_branch = branch
            if updated:
                entry.last_updated = now
            if size_bytes is not None:
                entry.size_bytes = size_bytes

        self.store.update(mutate)

    def _upsert_cached(
        self,
        repo_key: str,
        path: Path,
        branch: str,
        remote: Optional[str],
        cloned_at: Optional[str] = None,
    ) -> None:
        size = directory_size(path)

        def mutate(manifest: Manifest) -> None:
            now = now_iso()
            existing = manifest.repos.get(repo_key)
            previous_clone = existing.cloned_at if existing and existing.is_cached else None
            if existing is not None and existing.is_local:
                manifest.unindex_path(existing.path)
            manifest.repos[repo_key] = RepoEntry(
                type=RepoType.cached,
                path=str(path),
                current_branch=branch,
                last_accessed=now,
                last_updated=now,
                cloned_at=cloned_at or previous_clone or now,
                shallow=True,
                remote=remote,
                size_bytes=size,
            )

        self.store.update(mutate)

    def _drop_entry(self, repo_key: str) -> None:
        def mutate(manifest: Manifest) -> None:
            entry = manifest.repos.pop(repo_key, None)
            if entry is not None:
                manifest.unindex_path(entry.path)

        self.store.update(mutate)

    # Acquisition

    def _candidate_urls(self, target: RepoTarget) -> List[str]:
        preferred = self.config.use_https
        urls: List[str] = []
        for use_https in (preferred, not preferred):
            url = self.url_builder(target.owner, target.repo, use_https, self.config.host)
            if url not in urls:
                urls.append(url)
        return urls

    def _acquire(self, target: RepoTarget, destination: Path) -> Tuple[str, str]:
        """
        Clone ``target`` into ``destination``, trying each URL scheme in turn.

        Returns:
            (checked-out branch, URL that worked)

        Raises:
            RepoAcquisitionError: Listing every URL/branch attempt
        """
        attempts: List[CloneAttempt] = []
        for url in self._candidate_urls(target):
            try:
                branch = self.engine.clone(url, destination, target.explicit_branch)
            except CloneError as e:
                attempts.extend(e.attempts)
                logger.warning(f"Could not clone {target.repo_key} from {url}")
                continue
            return branch, url

        raise RepoAcquisitionError(target.repo_key, target.branch_label, attempts)

    def _is_due_for_refresh(self, entry: RepoEntry) -> bool:
        if self.config.refresh_hours <= 0:
            return False
        last = parse_iso(entry.last_updated or entry.cloned_at)
        if last is None:
            return True
        age = datetime.now(timezone.utc) - last
        return age > timedelta(hours=self.config.refresh_hours)

    def _reuse_cached(self, target: RepoTarget, entry: RepoEntry) -> EnsureResult:
        path = Path(entry.path)
        current = self.engine.current_branch(path) or entry.current_branch
        # without an explicit branch the checkout stays where it is; the configured
        # default may not even exist on this remote
        wanted = target.explicit_branch or current

        changed = False
        if current != wanted:
            logger.info(f"Switching {target.repo_key} from {current} to {wanted}")
            self.engine.switch_branch(path, wanted)
            changed = True
        elif self._is_due_for_refresh(entry):
            logger.info(f"Refreshing {target.repo_key}@{wanted}")
            self.engine.switch_branch(path, wanted)
            changed = True

        branch = wanted if wanted != entry.current_branch or changed else None
        self._touch(
            target.repo_key,
            branch=branch,
            updated=changed,
            size_bytes=directory_size(path) if changed else None,
        )
        return EnsureResult(path, wanted, RepoType.cached, EnsureStatus.cached)

    def _try_adopt(self, target: RepoTarget, path: Path) -> Optional[EnsureResult]:
        if not self.engine.is_repo(path):
            return None
        remote = self.engine.get_remote(path)
        key = self.remote_key(remote)
        if key is None or key.lower() != target.repo_key.lower():
            logger.info(f"{path} holds {remote}, not {target.repo_key}")
            return None

        current = self.engine.current_branch(path) or self.config.default_branch
        wanted = target.explicit_branch or current
        if current != wanted:
            self.engine.switch_branch(path, wanted)

        logger.info(f"Adopting existing checkout of {target.repo_key} at {path}")
        self._upsert_cached(target.repo_key, path, wanted, remote)
        return EnsureResult(path, wanted, RepoType.cached, EnsureStatus.reused)

    def ensure_available(
        self, spec: Union[str, RepoTarget], force: bool = False
    ) -> EnsureResult:
        """
        Make the requested repository available and correctly branched.

        Args:
            spec: ``owner/repo`` or ``owner/repo@branch`` (or a resolved target)
            force: Re-clone cached repositories even if the checkout looks fine

        Returns:
            Where the working tree is, which branch it is on, and what was done

        Raises:
            RepoSpecError: Malformed spec
            RepoAcquisitionError: Every clone attempt failed
            GitOperationError: A branch switch on an existing checkout failed
            RepoClaimError, ManifestLockError: Locks could not be acquired
        """
        target = self.resolve_target(spec)
        with self.claim(target):
            return self._ensure(target, force)

    def _ensure(self, target: RepoTarget, force: bool) -> EnsureResult:
        manifest = self.store.load()
        existing = manifest.repos.get(target.repo_key)

        if existing is not None and existing.is_local:
            self._touch(target.repo_key)
            return EnsureResult(
                Path(existing.path),
                existing.current_branch,
                RepoType.local,
                EnsureStatus.cached,
            )

        if existing is not None:
            if not force:
                if self.engine.is_repo(existing.path):
                    return self._reuse_cached(target, existing)
                logger.warning(
                    f"Cached checkout of {target.repo_key} at {existing.path} is missing "
                    "or corrupted; cloning again"
                )
            # the entry must not outlive its tree if the clone below fails
            self._drop_entry(target.repo_key)

        destination = self.cache_path(target)
        if destination.exists() or destination.is_symlink():
            if not force:
                adopted = self._try_adopt(target, destination)
                if adopted is not None:
                    return adopted
            logger.info(f"Removing stale directory {destination}")
            remove_tree(destination)

        logger.info(f"Cloning {target.repo_key}@{target.branch_label}")
        branch, remote = self._acquire(target, destination)
        self._upsert_cached(target.repo_key, destination, branch, remote, cloned_at=now_iso())
        return EnsureResult(destination, branch, RepoType.cached, EnsureStatus.cloned)

    # Maintenance operations

    def _require_entry(self, target: RepoTarget) -> RepoEntry:
        entry = self.store.load().repos.get(target.repo_key)
        if entry is None:
            raise RepoNotRegisteredError(target.repo_key)
        return entry

    def update(self, spec: Union[str, RepoTarget]) -> UpdateResult:
        """
        Bring a registered repository up to date.

        Cached repositories are fetched and hard-reset to the remote tip of the
        requested branch (or their current branch). Local repositories are never
        modified; their short status is reported instead.

        Raises:
            RepoNotRegisteredError: If the repository is not in the manifest
        """
        target = self.resolve_target(spec)
        with self.claim(target):
            entry = self._require_entry(target)

            if entry.is_local:
                status = self.engine.status(entry.path)
                self._touch(target.repo_key)
                return UpdateResult(
                    Path(entry.path),
                    entry.current_branch,
                    RepoType.local,
                    status=status,
                )

            if not self.engine.is_repo(entry.path):
                ensured = self._ensure(target, force=False)
                info = self.engine.get_info(ensured.path)
                return UpdateResult(ensured.path, ensured.branch, RepoType.cached, info.commit)

            path = Path(entry.path)
            wanted = (
                target.explicit_branch
                or self.engine.current_branch(path)
                or entry.current_branch
            )
            self.engine.switch_branch(path, wanted)
            info = self.engine.get_info(path)
            branch = info.branch or wanted
            size = directory_size(path)

            def mutate(manifest: Manifest) -> None:
                current = manifest.repos.get(target.repo_key)
                if current is None:
                    return
                now = now_iso()
                current.current_branch = branch
                current.last_updated = now
                current.last_accessed = now
                current.remote = info.remote
                current.size_bytes = size

            self.store.update(mutate)
            logger.info(f"Updated {target.repo_key}@{branch} to {info.commit[:7]}")
            return UpdateResult(path, branch, RepoType.cached, info.commit)

    def read(
        self, spec: Union[str, RepoTarget], path: str, max_lines: int = DEFAULT_MAX_LINES
    ) -> ReadResult:
        """
        Read files from a registered repository.

        ``path`` is either a single path relative to the repository root or a glob
        pattern (``src/**/*.py``). Hidden files and directories, ``.git`` included,
        are never matched by a pattern. A cached repository asked for with an
        explicit branch is switched to it first; local repositories are read as
        they are.

        Args:
            spec: ``owner/repo`` or ``owner/repo@branch``
            path: File path or glob pattern, relative to the repository root
            max_lines: Lines returned per file; longer files are truncated

        Raises:
            RepoNotRegisteredError: If the repository is not in the manifest
            RepoPathError: If ``path`` leaves the repository or names no file
        """
        if max_lines < 1:
            raise ValueError(f"max_lines must be at least 1, got {max_lines}")

        target = self.resolve_target(spec)
        with self.claim(target):
            entry = self._require_entry(target)
            root = Path(entry.path)
            branch = entry.current_branch

            if entry.is_cached and not self.engine.is_repo(root):
                ensured = self._ensure(target, force=False)
                root, branch = ensured.path, ensured.branch
            elif entry.is_cached and target.explicit_branch:
                current = self.engine.current_branch(root) or entry.current_branch
                if current != target.explicit_branch:
                    logger.info(
                        f"Switching {target.repo_key} from {current} to {target.explicit_branch}"
                    )
                    self.engine.switch_branch(root, target.explicit_branch)
                    self._touch(target.repo_key, branch=target.explicit_branch, updated=True)
                else:
                    self._touch(target.repo_key)
                branch = target.explicit_branch
            else:
                self._touch(target.repo_key)
                branch = self.engine.current_branch(root) or branch

            root = root.resolve()
            files = [
                read_lines(root, file, max_lines)
                for file in self._match_files(target, root, path)
            ]

        return ReadResult(
            repo_key=target.repo_key,
            branch=branch,
            root=root,
            pattern=path,
            max_lines=max_lines,
            files=files,
        )

    def _match_files(self, target: RepoTarget, root: Path, pattern: str) -> List[Path]:
        if not any(char in pattern for char in GLOB_CHARACTERS):
            candidate = root / pattern
            if not is_within(root, candidate):
                raise RepoPathError(
                    target.repo_key, pattern, "resolves outside the repository root"
                )
            if not candidate.is_file():
                raise RepoPathError(target.repo_key, pattern, "no file exists at this path")
            return [candidate.resolve()]

        if Path(pattern).is_absolute():
            raise RepoPathError(
                target.repo_key, pattern, "resolves outside the repository root"
            )
        try:
            candidates = list(root.glob(pattern))
        except (ValueError, NotImplementedError) as e:
            raise RepoPathError(target.repo_key, pattern, str(e)) from e

        matched = set()
        for candidate in candidates:
            parts = candidate.relative_to(root).parts
            if any(part.startswith(".") for part in parts):
                continue
            if candidate.is_file() and is_within(root, candidate):
                matched.add(candidate.resolve())
        return sorted(matched)

    def remove(self, spec: Union[str, RepoTarget], confirm: bool = False) -> RemoveResult:
        """
        Remove a repository from the manifest.

        Local repositories are only unregistered. Cached repositories are deleted
        from disk, which requires ``confirm=True``; without it nothing changes and
        the result says confirmation is required.
        """
        target = self.resolve_target(spec)
        with self.claim(target):
            entry = self.store.load().repos.get(target.repo_key)
            if entry is None:
                return RemoveResult(target.repo_key, RemoveStatus.not_found)

            path = Path(entry.path)
            if entry.is_local:
                self._drop_entry(target.repo_key)
                logger.info(f"Unregistered local repository {target.repo_key}; files kept")
                return RemoveResult(
                    target.repo_key, RemoveStatus.unregistered, path, RepoType.local
                )

            if not confirm:
                return RemoveResult(
                    target.repo_key,
                    RemoveStatus.confirmation_required,
                    path,
                    RepoType.cached,
                )

            if is_within(self.config.cache_dir, path):
                remove_tree(path)
            else:
                logger.warning(
                    f"{path} is outside the cache directory; unregistering without deleting"
                )
            self._drop_entry(target.repo_key)
            logger.info(f"Removed {target.repo_key} ({path})")
            return RemoveResult(target.repo_key, RemoveStatus.removed, path, RepoType.cached)

    def list_repos(self, repo_type: Optional[RepoType] = None) -> List[Tuple[str, RepoEntry]]:
        """Registered repositories sorted by key, optionally filtered by type."""
        manifest = self.store.load()
        return sorted(
            (
                (key, entry)
                for key, entry in manifest.repos.items()
                if repo_type is None or entry.type == repo_type
            ),
            key=lambda item: item[0],
        )

    def scan(self, paths: Optional[Iterable[Union[str, Path]]] = None) -> ScanSummary:
        """
        Register repositories found below ``paths`` (or the configured search paths)
        as local entries.

        Repositories without a recognisable origin, and keys already held by a
        cached entry, are skipped.
        """
        search_paths = tuple(
            parse_search_paths(str(p) for p in paths)
            if paths
            else self.config.local_search_paths
        )
        if not search_paths:
            return ScanSummary(search_paths=())

        discovered = self.scan_local(search_paths)
        if not discovered:
            return ScanSummary(search_paths=search_paths)

        def register(manifest: Manifest) -> Tuple[int, int]:
            added = skipped = 0
            for repo in discovered:
                key = self.remote_key(repo.remote)
                if key is None:
                    skipped += 1
                    continue
                existing = manifest.repos.get(key)
                if existing is not None and existing.is_cached:
                    skipped += 1
                    continue
                if existing is not None:
                    manifest.unindex_path(existing.path)
                manifest.repos[key] = RepoEntry(
                    type=RepoType.local,
                    path=repo.path,
                    current_branch=repo.branch or self.config.default_branch,
                    last_accessed=now_iso(),
                    shallow=False,
                    remote=repo.remote,
                )
                manifest.local_index[repo.remote] = repo.path
                added += 1
            return added, skipped

        added, skipped = self.store.update(register)
        logger.info(
            f"Scanned {len(search_paths)} path(s): {len(discovered)} found, "
            f"{added} registered, {skipped} skipped"
        )
        return ScanSummary(search_paths, len(discovered), added, skipped)

    def find(self, query: str) -> FindResult:
        """Match ``query`` against registered keys and unregistered local checkouts."""
        query = query.strip()
        query_lower = query.lower()
        result = FindResult(query=query)

        result.registered = [
            (key, entry)
            for key, entry in self.list_repos()
            if query_lower in key.lower()
        ]

        if self.config.local_search_paths:
            registered_paths = {entry.path for _key, entry in result.registered}
            registered_paths.update(self.store.load().local_index.values())
            result.local = [
                repo
                for repo in scanner.filter_by_query(
                    self.scan_local(self.config.local_search_paths),
                    query,
                    key=lambda repo: self.remote_key(repo.remote),
                )
                if repo.path not in registered_paths
            ]

        return result
