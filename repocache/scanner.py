"""
Discovery of existing local working trees.

A breadth-first walk below each search path; any directory that contains a
``.git`` entry (directory, or file for worktrees) is a repository root and is not
descended into. Remote and branch are read with dulwich, so scanning never runs
the git binary.
"""

import logging
import os
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from dulwich import porcelain

from repocache.git.spec import remote_to_repo_key

logger = logging.getLogger(__name__)

MAX_SCAN_DEPTH = 4
SKIPPED_DIRECTORIES = {".git", "node_modules", ".next", "dist", "build"}


@dataclass(frozen=True)
class LocalRepo:
    path: str
    remote: str
    branch: str

    @property
    def key(self) -> Optional[str]:
        return remote_to_repo_key(self.remote)


def find_git_roots(search_path: Path, max_depth: int = MAX_SCAN_DEPTH) -> List[Path]:
    queue = deque([(Path(search_path), 0)])
    roots: List[Path] = []

    while queue:
        current, depth = queue.popleft()
        if depth > max_depth:
            continue

        try:
            entries = list(os.scandir(current))
        except OSError:
            continue

        if any(entry.name == ".git" for entry in entries):
            roots.append(current)
            continue

        for entry in sorted(entries, key=lambda e: e.name):
            if entry.name in SKIPPED_DIRECTORIES or entry.is_symlink():
                continue
            if entry.is_dir(follow_symlinks=False):
                queue.append((Path(entry.path), depth + 1))

    return roots


def read_local_repo(path: Path) -> Optional[LocalRepo]:
    """Origin URL and branch of the repository at ``path``; None without an origin."""
    try:
        with porcelain.open_repo_closing(str(path)) as repo:
            remote = repo.get_config().get((b"remote", b"origin"), b"url")
            head = repo.refs.follow(b"HEAD")[0]
    except Exception as e:
        logger.debug(f"Skipping {path}: {e}")
        return None

    if not remote:
        return None

    # follow() returns the chain of symbolic refs; the last one is the branch
    branch = ""
    if head and len(head) > 1 and head[-1].startswith(b"refs/heads/"):
        branch = head[-1][len(b"refs/heads/") :].decode("utf-8")

    return LocalRepo(path=str(path), remote=remote.decode("utf-8"), branch=branch)


def scan(paths: Iterable[Path], max_depth: int = MAX_SCAN_DEPTH) -> List[LocalRepo]:
    """Discover repositories with an ``origin`` remote below ``paths``, deduplicated by path."""
    seen = set()
    found: List[LocalRepo] = []
    for search_path in paths:
        for root in find_git_roots(Path(search_path), max_depth):
            if str(root) in seen:
                continue
            seen.add(str(root))
            repo = read_local_repo(root)
            if repo is not None:
                found.append(repo)
    logger.debug(f"Scan found {len(found)} repositories")
    return found


def filter_by_query(
    repos: Iterable[LocalRepo],
    query: str,
    key: Optional[Callable[[LocalRepo], Optional[str]]] = None,
) -> List[LocalRepo]:
    """
    Keep repositories matching ``query``.

    An ``owner/repo`` style query matches against the remote's key; a bare name
    also matches the directory name. ``key`` maps a repository to its key
    (default: ``LocalRepo.key``); repositories without a key never match.
    """
    query_lower = query.strip().lower()
    owner_repo_query = "/" in query_lower
    results: List[LocalRepo] = []

    for repo in repos:
        repo_key = key(repo) if key else repo.key
        if repo_key is None:
            continue
        key_lower = repo_key.lower()
        dir_name = Path(repo.path).name.lower()
        if owner_repo_query:
            matches = query_lower in key_lower
        else:
            matches = query_lower in key_lower or query_lower in dir_name
        if matches:
            results.append(repo)

    return results


def find_local_repos(paths: Iterable[Path], query: str) -> List[LocalRepo]:
    """Scan ``paths`` and keep repositories matching ``query``."""
    return filter_by_query(scan(paths), query)
