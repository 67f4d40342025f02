from .manager import RepoManager
from .models import (
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

__all__ = [
    "EnsureResult",
    "EnsureStatus",
    "FileContent",
    "FindResult",
    "ReadResult",
    "RemoveResult",
    "RemoveStatus",
    "RepoManager",
    "RepoTarget",
    "ScanSummary",
    "UpdateResult",
]
