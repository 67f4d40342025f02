"""Parsing of ``owner/repo[@branch]`` specs and git remote URLs."""

import re
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlparse

from repocache.exceptions import RepoSpecError


@dataclass(frozen=True)
class RepoSpec:
    owner: str
    repo: str
    branch: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_repo_spec(spec: str) -> RepoSpec:
    """
    Split ``owner/repo`` or ``owner/repo@branch``.

    The spec is split at the first ``@``, so branch names may contain ``/`` (and
    even ``@``). The repository part must contain exactly one ``/``, and neither
    part may be a relative path component, since ``owner/repo`` doubles as the
    checkout path below the cache root.

    Raises:
        RepoSpecError: With a reason naming what is wrong
    """
    repo_path, sep, branch = spec.partition("@")
    if sep and not branch:
        raise RepoSpecError(spec, "branch cannot be empty after @")

    owner, slash, repo = repo_path.partition("/")
    if not slash:
        raise RepoSpecError(
            spec, 'must be in format "owner/repo" or "owner/repo@branch"'
        )
    if not owner or not repo:
        raise RepoSpecError(spec, "owner and repo cannot be empty")
    if "/" in repo:
        raise RepoSpecError(spec, 'repo name cannot contain "/"')
    if owner in (".", "..") or repo in (".", ".."):
        raise RepoSpecError(spec, 'owner and repo cannot be "." or ".."')
    if owner.startswith("."):
        raise RepoSpecError(spec, 'owner cannot start with "."')

    return RepoSpec(owner=owner, repo=repo, branch=branch if sep else None)


def build_git_url(owner: str, repo: str, use_https: bool, host: str = "github.com") -> str:
    """
    Build a clone URL.

    Examples:
        build_git_url("acme", "widgets", True) -> https://github.com/acme/widgets.git
        build_git_url("acme", "widgets", False) -> git@github.com:acme/widgets.git
    """
    if use_https:
        return f"https://{host}/{owner}/{repo}.git"
    return f"git@{host}:{owner}/{repo}.git"


def _split_remote(remote: str) -> Tuple[Optional[str], str]:
    """(host, path) of a remote URL; host is None for file:// and plain paths."""
    url = remote.strip().rstrip("/")
    if url.endswith(".git"):
        url = url[:-4]

    # scp-like SSH syntax (user@host:path) has no scheme
    ssh_match = re.match(r"^[\w.-]+@([^:/]+):(.+)$", url)
    if ssh_match:
        return ssh_match.group(1), ssh_match.group(2)

    parsed = urlparse(url)
    if not parsed.scheme:
        return None, url
    return parsed.hostname, parsed.path


def remote_to_repo_key(remote: Optional[str], host: Optional[str] = None) -> Optional[str]:
    """
    Derive the ``owner/repo`` key of a remote URL.

    Examples:
        git@github.com:user/repo.git -> user/repo
        https://github.com/user/repo/ -> user/repo
        ssh://git@github.com/user/repo.git -> user/repo
        file:///srv/git/user/repo.git -> user/repo

    Args:
        remote: Remote URL
        host: When given, only remotes on this host whose path is exactly
            ``owner/repo`` yield a key; file:// URLs and paths never do

    Returns:
        The key, or None if the URL does not name a repository
    """
    if not remote:
        return None

    remote_host, path = _split_remote(remote)
    parts = [part for part in path.split("/") if part]

    if host is not None:
        if remote_host is None or remote_host.lower() != host.lower():
            return None
        if len(parts) != 2:
            return None

    if len(parts) < 2:
        return None
    return f"{parts[-2]}/{parts[-1]}"


def remote_matches(
    remote: Optional[str], repo_key: str, host: Optional[str] = None
) -> bool:
    """Whether ``remote`` points at ``repo_key`` (case-insensitive)."""
    key = remote_to_repo_key(remote, host)
    return key is not None and key.lower() == repo_key.lower()
