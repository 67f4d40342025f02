"""Request and result types for repository orchestration."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from repocache.manifest.models import RepoEntry, RepoType
from repocache.scanner import LocalRepo


@dataclass(frozen=True)
class RepoTarget:
    """A parsed request. ``branch`` falls back to the configured default branch."""

    owner: str
    repo: str
    branch: str
    explicit_branch: Optional[str] = None

    @property
    def repo_key(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def branch_label(self) -> str:
        return self.explicit_branch or "<default branch>"


class EnsureStatus(str, Enum):
    cached = "cached"  # already available, possibly after a branch switch
    reused = "reused"  # untracked checkout adopted into the manifest
    cloned = "cloned"


@dataclass(frozen=True)
class EnsureResult:
    path: Path
    branch: str
    type: RepoType
    status: EnsureStatus


@dataclass(frozen=True)
class UpdateResult:
    path: Path
    branch: str
    type: RepoType
    commit: Optional[str] = None
    status: Optional[str] = None  # `git status --short` of local repositories


class RemoveStatus(str, Enum):
    not_found = "not_found"
    unregistered = "unregistered"
    confirmation_required = "confirmation_required"
    removed = "removed"


@dataclass(frozen=True)
class RemoveResult:
    repo_key: str
    status: RemoveStatus
    path: Optional[Path] = None
    type: Optional[RepoType] = None


@dataclass(frozen=True)
class ScanSummary:
    search_paths: Tuple[Path, ...]
    found: int = 0
    added: int = 0
    skipped: int = 0


@dataclass
class FindResult:
    query: str
    registered: List[Tuple[str, RepoEntry]] = field(default_factory=list)
    local: List[LocalRepo] = field(default_factory=list)


@dataclass(frozen=True)
class FileContent:
    """One file read from a repository, possibly cut short at ``max_lines``."""

    path: str  # relative to the repository root
    lines: List[str] = field(default_factory=list)
    total_lines: int = 0
    error: Optional[str] = None

    @property
    def truncated(self) -> bool:
        return self.total_lines > len(self.lines)


@dataclass(frozen=True)
class ReadResult:
    repo_key: str
    branch: str
    root: Path
    pattern: str
    max_lines: int
    files: List[FileContent] = field(default_factory=list)
