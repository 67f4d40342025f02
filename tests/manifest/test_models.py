import re
from datetime import timezone

import pytest
from pydantic import ValidationError

from repocache.exceptions import CloneAttempt, RepoAcquisitionError
from repocache.manifest import RepoEntry, RepoType, now_iso, parse_iso


@pytest.mark.short
def test_now_iso_format():
    value = now_iso()

    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z", value)
    assert parse_iso(value).tzinfo == timezone.utc


@pytest.mark.short
def test_parse_iso_rejects_garbage():
    assert parse_iso(None) is None
    assert parse_iso("") is None
    assert parse_iso("yesterday") is None


@pytest.mark.short
def test_entry_accepts_aliases_and_names():
    by_alias = RepoEntry.model_validate(
        {"type": "local", "path": "/code/x", "currentBranch": "dev", "lastAccessed": "t"}
    )
    by_name = RepoEntry(type=RepoType.local, path="/code/x", current_branch="dev", last_accessed="t")

    assert by_alias == by_name
    assert by_alias.is_local and not by_alias.is_cached


@pytest.mark.short
def test_entry_defaults():
    entry = RepoEntry.model_validate(
        {"type": "cached", "path": "/cache/a/b", "currentBranch": "", "lastAccessed": None}
    )

    assert entry.current_branch == "main"
    assert parse_iso(entry.last_accessed) is not None
    assert entry.cloned_at is None


@pytest.mark.short
@pytest.mark.parametrize(
    "raw",
    [
        {"type": "cached"},
        {"type": "cached", "path": "   "},
        {"type": "remote", "path": "/x"},
    ],
)
def test_entry_rejects_invalid(raw):
    with pytest.raises(ValidationError):
        RepoEntry.model_validate(raw)


@pytest.mark.short
def test_acquisition_error_lists_attempts():
    error = RepoAcquisitionError(
        "acme/widgets",
        "develop",
        [
            CloneAttempt("https://github.com/acme/widgets.git", "develop", "not found"),
            CloneAttempt("git@github.com:acme/widgets.git", None, "permission denied"),
        ],
    )

    assert str(error) == (
        "Unable to clone acme/widgets@develop. "
        "https://github.com/acme/widgets.git @ develop: not found | "
        "git@github.com:acme/widgets.git @ <remote default>: permission denied"
    )
