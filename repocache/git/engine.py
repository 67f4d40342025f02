"""
Git acquisition engine.

Mutating operations (clone, fetch, checkout, reset) go through GitPython, which
drives the git binary; the cheap read-only predicates (``is_repo``,
``get_remote``) use dulwich so they never spawn a process.

Every clone is shallow (depth 1), single-branch and has hooks disabled through
``core.hooksPath=/dev/null``, which is written into the new repository's config
and therefore also applies to later fetches and checkouts.

Branch fallback is an ordered list of attempts consumed until one succeeds:

    explicit branch                       (when the caller named one)
    remote HEAD -> default -> main -> master  (otherwise, deduplicated)
    plain clone, reading back the branch  (last resort)

A failed attempt never leaves a partial checkout behind.
"""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Union

from dulwich import porcelain
from git import Repo
from git.cmd import Git
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from repocache.exceptions import CloneAttempt, CloneError, GitOperationError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

HOOKS_DISABLED = "core.hooksPath=/dev/null"
FALLBACK_BRANCHES = ("main", "master")


@dataclass(frozen=True)
class RepoInfo:
    remote: str
    branch: str
    commit: str


def describe_git_error(error: GitCommandError) -> str:
    """Condense a GitCommandError into its most telling stderr line."""
    stderr = (error.stderr or "").strip()
    if stderr.startswith("stderr:"):
        stderr = stderr[len("stderr:") :].strip().strip("'").strip()
    lines = [line.strip() for line in stderr.splitlines() if line.strip()]
    fatal = [line for line in lines if line.startswith(("fatal:", "error:"))]
    if fatal:
        return fatal[-1]
    if lines:
        return lines[-1]
    return f"git exited with status {error.status}"


def remove_tree(path: PathLike) -> None:
    """Delete a working tree (or stray file) if present."""
    path = Path(path)
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path, ignore_errors=True)


def _unique(values: Iterable[Optional[str]]) -> List[str]:
    output: List[str] = []
    for value in values:
        if value and value not in output:
            output.append(value)
    return output


class GitEngine:
    """Clone, update and switch branches of shallow working trees."""

    def __init__(
        self,
        default_branch: str = "main",
        fallback_branches: Iterable[str] = FALLBACK_BRANCHES,
    ):
        self.default_branch = default_branch
        self.fallback_branches = tuple(fallback_branches)

    # Remote queries

    def remote_default_branch(self, url: str) -> Optional[str]:
        """
        Ask the remote which branch its HEAD points to.

        Returns:
            The branch name, or None if the remote cannot be queried
        """
        try:
            output = Git().ls_remote("--symref", url, "HEAD")
        except GitCommandError as e:
            logger.debug(f"Could not query default branch of {url}: {describe_git_error(e)}")
            return None

        for line in output.splitlines():
            if not line.startswith("ref:"):
                continue
            ref = line[len("ref:") :].split("\t")[0].strip()
            if ref.startswith("refs/heads/"):
                return ref[len("refs/heads/") :]
        return None

    def candidate_branches(self, url: str, branch: Optional[str] = None) -> List[str]:
        """Named branches to try, in order, when cloning ``url``."""
        if branch:
            return [branch]
        return _unique(
            [self.remote_default_branch(url), self.default_branch, *self.fallback_branches]
        )

    # Clone

    def _clone_once(self, url: str, destination: Path, branch: Optional[str]) -> str:
        kwargs = {"depth": 1, "single_branch": True}
        if branch:
            kwargs["branch"] = branch
        repo = Repo.clone_from(
            url,
            str(destination),
            multi_options=[f"--config {HOOKS_DISABLED}"],
            allow_unsafe_options=True,
            **kwargs,
        )
        try:
            if repo.head.is_detached:
                return branch or ""
            return repo.active_branch.name
        finally:
            repo.close()

    def clone(self, url: str, destination: PathLike, branch: Optional[str] = None) -> str:
        """
        Shallow-clone ``url`` into ``destination``.

        Args:
            url: Remote URL (SSH, HTTPS or file://)
            destination: Target directory; must not exist or be empty
            branch: Branch to check out. When None the remote default is
                discovered and conventional names are tried in turn

        Returns:
            The branch that ended up checked out

        Raises:
            CloneError: Listing every (url, branch) attempt and why it failed
        """
        destination = Path(destination)
        if destination.exists() and any(destination.iterdir()):
            raise CloneError(
                url,
                str(destination),
                [CloneAttempt(url, branch, "destination exists and is not empty")],
            )
        destination.parent.mkdir(parents=True, exist_ok=True)

        plan: List[Optional[str]] = list(self.candidate_branches(url, branch))
        if branch is None:
            plan.append(None)

        attempts: List[CloneAttempt] = []
        for candidate in plan:
            label = candidate or "<remote default>"
            logger.debug(f"Cloning {url} @ {label} into {destination}")
            try:
                checked_out = self._clone_once(url, destination, candidate)
            except GitCommandError as e:
                reason = describe_git_error(e)
                attempts.append(CloneAttempt(url, candidate, reason))
                logger.info(f"Clone of {url} @ {label} failed: {reason}")
                remove_tree(destination)
                continue
            except BaseException:
                remove_tree(destination)
                raise

            logger.info(f"Cloned {url} @ {checked_out} into {destination}")
            return checked_out

        raise CloneError(url, str(destination), attempts)

    # Existing working trees

    def _open(self, path: PathLike, operation: str, branch: Optional[str] = None) -> Repo:
        try:
            return Repo(str(path))
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise GitOperationError(
                operation, str(path), f"not a git repository ({e})", branch=branch
            ) from e

    def switch_branch(self, path: PathLike, branch: str) -> None:
        """
        Make the working tree match the remote tip of ``branch`` exactly.

        Fetches the branch at depth 1, checks it out (creating a local branch
        tracking ``origin/<branch>`` if needed) and hard-resets to the fetched tip.
        Local changes and local commits are discarded.

        Raises:
            GitOperationError: If the branch cannot be fetched or checked out
        """
        repo = self._open(path, "switch", branch)
        remote_ref = f"refs/remotes/origin/{branch}"
        try:
            repo.git.fetch("--depth=1", "origin", f"+refs/heads/{branch}:{remote_ref}")
            if branch in [head.name for head in repo.heads]:
                repo.git.checkout("--force", branch)
            else:
                repo.git.checkout("--force", "-b", branch, remote_ref)
                with repo.config_writer() as writer:
                    section = f'branch "{branch}"'
                    writer.set_value(section, "remote", "origin")
                    writer.set_value(section, "merge", f"refs/heads/{branch}")
            repo.git.reset("--hard", remote_ref)
        except GitCommandError as e:
            raise GitOperationError(
                "switch", str(path), describe_git_error(e), branch=branch
            ) from e
        finally:
            repo.close()
        logger.info(f"Switched {path} to {branch}")

    def update(self, path: PathLike) -> str:
        """
        Fetch and hard-reset the currently checked-out branch.

        Returns:
            The branch that was updated
        """
        branch = self.current_branch(path)
        if not branch:
            raise GitOperationError("update", str(path), "HEAD is not on a branch")
        self.switch_branch(path, branch)
        return branch

    def current_branch(self, path: PathLike) -> Optional[str]:
        """Checked-out branch name, or None when detached or unreadable."""
        try:
            repo = Repo(str(path))
        except (InvalidGitRepositoryError, NoSuchPathError):
            return None
        try:
            if repo.head.is_detached:
                return None
            return repo.active_branch.name
        except (TypeError, ValueError):
            return None
        finally:
            repo.close()

    def get_info(self, path: PathLike) -> RepoInfo:
        """
        Remote URL, current branch and full commit hash of a working tree.

        Raises:
            GitOperationError: If the path is not a readable repository
        """
        repo = self._open(path, "info")
        try:
            remote = repo.git.remote("get-url", "origin").strip()
            branch = repo.git.branch("--show-current").strip()
            commit = repo.head.commit.hexsha
        except (GitCommandError, ValueError) as e:
            detail = describe_git_error(e) if isinstance(e, GitCommandError) else str(e)
            raise GitOperationError("info", str(path), detail) from e
        finally:
            repo.close()
        return RepoInfo(remote=remote, branch=branch, commit=commit)

    def status(self, path: PathLike) -> str:
        """Short porcelain status of a working tree (empty when clean)."""
        repo = self._open(path, "status")
        try:
            return repo.git.status("--short")
        except GitCommandError as e:
            raise GitOperationError("status", str(path), describe_git_error(e)) from e
        finally:
            repo.close()

    def is_repo(self, path: PathLike) -> bool:
        """
        Whether ``path`` holds a usable checkout.

        False for missing directories, directories without their own ``.git`` and
        repositories whose HEAD cannot be resolved (e.g. an interrupted clone).
        """
        path = Path(path)
        if not (path / ".git").exists():
            return False
        try:
            with porcelain.open_repo_closing(str(path)) as repo:
                repo.head()
        except Exception as e:
            logger.debug(f"{path} is not a usable repository: {e}")
            return False
        return True

    def get_remote(self, path: PathLike) -> Optional[str]:
        """URL of the ``origin`` remote, or None."""
        if not (Path(path) / ".git").exists():
            return None
        try:
            with porcelain.open_repo_closing(str(path)) as repo:
                url = repo.get_config().get((b"remote", b"origin"), b"url")
        except Exception as e:
            logger.debug(f"Could not read origin of {path}: {e}")
            return None
        return url.decode("utf-8") if url else None
