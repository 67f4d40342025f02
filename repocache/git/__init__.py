"""
Git acquisition for repocache.

    spec    parse owner/repo[@branch] specs, build and recognise remote URLs
    engine  shallow clone / switch branch / update working trees
"""

from .engine import FALLBACK_BRANCHES, GitEngine, RepoInfo, remove_tree
from .spec import (
    RepoSpec,
    build_git_url,
    parse_repo_spec,
    remote_matches,
    remote_to_repo_key,
)

__all__ = [
    "FALLBACK_BRANCHES",
    "GitEngine",
    "RepoInfo",
    "RepoSpec",
    "build_git_url",
    "parse_repo_spec",
    "remote_matches",
    "remote_to_repo_key",
    "remove_tree",
]
