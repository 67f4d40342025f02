"""Pydantic models for the manifest document."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

MANIFEST_VERSION = 1


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a timestamp written by now_iso; None when absent or malformed."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RepoType(str, Enum):
    """Who owns the working tree."""

    cached = "cached"
    local = "local"


class RepoEntry(BaseModel):
    """One managed repository. ``type`` decides which optional fields apply."""

    model_config = ConfigDict(populate_by_name=True)

    type: RepoType
    path: str
    current_branch: str = Field("main", alias="currentBranch")
    last_accessed: str = Field(default_factory=now_iso, alias="lastAccessed")
    cloned_at: Optional[str] = Field(None, alias="clonedAt")
    last_updated: Optional[str] = Field(None, alias="lastUpdated")
    size_bytes: Optional[int] = Field(None, alias="sizeBytes")
    shallow: Optional[bool] = None
    remote: Optional[str] = None

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("path must be a non-empty string")
        return v

    @field_validator("current_branch", mode="before")
    @classmethod
    def default_branch(cls, v: Any) -> Any:
        if v is None or v == "":
            return "main"
        return v

    @field_validator("last_accessed", mode="before")
    @classmethod
    def default_last_accessed(cls, v: Any) -> Any:
        if v is None or v == "":
            return now_iso()
        return v

    @property
    def is_cached(self) -> bool:
        return self.type == RepoType.cached

    @property
    def is_local(self) -> bool:
        return self.type == RepoType.local


class Manifest(BaseModel):
    """Root document: repository entries plus the remote URL -> local path index."""

    model_config = ConfigDict(populate_by_name=True)

    version: Literal[1] = MANIFEST_VERSION
    repos: Dict[str, RepoEntry] = Field(default_factory=dict)
    local_index: Dict[str, str] = Field(default_factory=dict, alias="localIndex")

    @classmethod
    def from_raw(cls, raw: Any) -> "Manifest":
        """
        Build a manifest from decoded JSON, dropping whatever does not validate.

        Invalid entries are skipped one by one so a single bad record does not
        discard the rest of the document.
        """
        manifest = cls()
        if not isinstance(raw, dict):
            return manifest

        repos = raw.get("repos")
        if isinstance(repos, dict):
            for key, value in repos.items():
                if not isinstance(value, dict):
                    logger.warning(f"Dropping malformed manifest entry {key!r}")
                    continue
                try:
                    manifest.repos[key] = RepoEntry.model_validate(value)
                except ValidationError as e:
                    logger.warning(f"Dropping invalid manifest entry {key!r}: {e}")

        local_index = raw.get("localIndex")
        if isinstance(local_index, dict):
            for remote, path in local_index.items():
                if isinstance(path, str):
                    manifest.local_index[remote] = path

        return manifest.normalized()

    def normalized(self) -> "Manifest":
        """Return a copy whose ``localIndex`` only points at local entries."""
        local_paths = {entry.path for entry in self.repos.values() if entry.is_local}
        return Manifest(
            repos={key: entry.model_copy() for key, entry in self.repos.items()},
            local_index={
                remote: path
                for remote, path in self.local_index.items()
                if path in local_paths
            },
        )

    def to_document(self) -> Dict[str, Any]:
        """Serializable form using the on-disk camelCase keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def unindex_path(self, path: str) -> None:
        for remote in [r for r, p in self.local_index.items() if p == path]:
            del self.local_index[remote]
