"""
Exception classes for repocache.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence


class RepoCacheError(Exception):
    """Base exception for all repocache errors."""

    pass


class RepoSpecError(RepoCacheError, ValueError):
    """Raised when an ``owner/repo[@branch]`` spec is malformed."""

    def __init__(self, spec: str, reason: str):
        self.spec = spec
        self.reason = reason
        super().__init__(f"Invalid repo spec '{spec}': {reason}")


class ManifestLockError(RepoCacheError):
    """Raised when the manifest lock cannot be acquired."""

    def __init__(self, lock_file: str, message: str = ""):
        self.lock_file = lock_file
        if message:
            super().__init__(f"Lock error for {lock_file}: {message}")
        else:
            super().__init__(f"Could not acquire lock for {lock_file}")


class RepoClaimError(RepoCacheError):
    """Raised when another process holds a repository claim for too long."""

    def __init__(self, repo_key: str, lock_file: str, timeout: float):
        self.repo_key = repo_key
        self.lock_file = lock_file
        self.timeout = timeout
        super().__init__(
            f"Timed out after {timeout:g}s waiting for {repo_key} "
            f"(claim held at {lock_file})"
        )


class GitOperationError(RepoCacheError):
    """Raised when a git command fails on an existing working tree."""

    def __init__(
        self,
        operation: str,
        path: str,
        detail: str,
        branch: Optional[str] = None,
    ):
        self.operation = operation
        self.path = path
        self.detail = detail
        self.branch = branch
        where = f"{path}@{branch}" if branch else path
        super().__init__(f"git {operation} failed for {where}: {detail}")


@dataclass(frozen=True)
class CloneAttempt:
    """One failed clone attempt: which URL, which branch, and why."""

    url: str
    branch: Optional[str]
    reason: str

    def describe(self) -> str:
        branch = self.branch or "<remote default>"
        return f"{self.url} @ {branch}: {self.reason}"


def _format_attempts(attempts: Sequence[CloneAttempt]) -> str:
    return " | ".join(attempt.describe() for attempt in attempts)


class CloneError(RepoCacheError):
    """Raised when every clone attempt for a single URL failed."""

    def __init__(self, url: str, destination: str, attempts: List[CloneAttempt]):
        self.url = url
        self.destination = destination
        self.attempts = list(attempts)
        super().__init__(
            f"Failed to clone {url} into {destination}. "
            f"{_format_attempts(self.attempts)}"
        )


class RepoAcquisitionError(RepoCacheError):
    """Raised when a repository could not be acquired over any protocol."""

    def __init__(self, repo_key: str, branch: str, attempts: List[CloneAttempt]):
        self.repo_key = repo_key
        self.branch = branch
        self.attempts = list(attempts)
        super().__init__(
            f"Unable to clone {repo_key}@{branch}. {_format_attempts(self.attempts)}"
        )


class RepoNotRegisteredError(RepoCacheError):
    """Raised when an operation needs a manifest entry that does not exist."""

    def __init__(self, repo_key: str):
        self.repo_key = repo_key
        super().__init__(
            f"Repository {repo_key} is not registered. Clone it first."
        )


class RepoPathError(RepoCacheError):
    """Raised when a path inside a repository cannot be read."""

    def __init__(self, repo_key: str, path: str, reason: str):
        self.repo_key = repo_key
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot read '{path}' from {repo_key}: {reason}")
