import pytest
from git import Repo

from repocache.exceptions import CloneError, GitOperationError
from repocache.git import GitEngine


@pytest.fixture
def widgets(remotes) -> str:
    return remotes.create(
        "acme",
        "widgets",
        default_branch="trunk",
        branches={"feature/login": "login work\n", "develop": "develop\n"},
    )


def test_clone_uses_remote_default_branch(engine, widgets, tmp_path):
    destination = tmp_path / "checkout"

    branch = engine.clone(widgets, destination)

    assert branch == "trunk"
    assert engine.current_branch(destination) == "trunk"
    assert (destination / "BRANCH").read_text() == "trunk\n"


def test_clone_is_shallow_and_hooks_disabled(engine, widgets, tmp_path):
    destination = tmp_path / "checkout"
    engine.clone(widgets, destination)

    repo = Repo(destination)
    try:
        assert repo.git.rev_list("--count", "HEAD") == "1"
        assert (destination / ".git" / "shallow").exists()
        assert repo.config_reader().get_value("core", "hooksPath") == "/dev/null"
    finally:
        repo.close()


def test_clone_explicit_branch(engine, widgets, tmp_path):
    destination = tmp_path / "checkout"

    branch = engine.clone(widgets, destination, "feature/login")

    assert branch == "feature/login"
    assert (destination / "BRANCH").read_text() == "login work\n"


def test_clone_falls_back_to_conventional_names(remotes, tmp_path, monkeypatch):
    url = remotes.create("acme", "legacy", default_branch="master")
    engine = GitEngine(default_branch="main")
    monkeypatch.setattr(engine, "remote_default_branch", lambda url: None)

    assert engine.candidate_branches(url) == ["main", "master"]

    branch = engine.clone(url, tmp_path / "checkout")

    assert branch == "master"


def test_clone_falls_back_to_plain_clone(remotes, tmp_path, monkeypatch):
    url = remotes.create("acme", "odd", default_branch="develop")
    engine = GitEngine(default_branch="main")
    monkeypatch.setattr(engine, "remote_default_branch", lambda url: None)

    branch = engine.clone(url, tmp_path / "checkout")

    assert branch == "develop"


def test_clone_missing_remote_leaves_nothing(engine, remotes, tmp_path):
    url = (tmp_path / "nowhere" / "missing.git").as_uri()
    destination = tmp_path / "checkout"

    with pytest.raises(CloneError) as excinfo:
        engine.clone(url, destination)

    attempts = excinfo.value.attempts
    # main, master, then a plain clone
    assert [attempt.branch for attempt in attempts] == ["main", "master", None]
    assert all(attempt.url == url for attempt in attempts)
    assert all(attempt.reason for attempt in attempts)
    assert url in str(excinfo.value)
    assert not destination.exists()


def test_clone_missing_branch(engine, widgets, tmp_path):
    destination = tmp_path / "checkout"

    with pytest.raises(CloneError) as excinfo:
        engine.clone(widgets, destination, "no-such-branch")

    assert [attempt.branch for attempt in excinfo.value.attempts] == ["no-such-branch"]
    assert not destination.exists()


def test_clone_refuses_non_empty_destination(engine, widgets, tmp_path):
    destination = tmp_path / "checkout"
    destination.mkdir()
    (destination / "keep.txt").write_text("mine")

    with pytest.raises(CloneError, match="not empty"):
        engine.clone(widgets, destination)

    assert (destination / "keep.txt").read_text() == "mine"


def test_switch_branch_creates_tracking_branch(engine, widgets, tmp_path):
    destination = tmp_path / "checkout"
    engine.clone(widgets, destination)

    engine.switch_branch(destination, "feature/login")

    assert engine.current_branch(destination) == "feature/login"
    assert (destination / "BRANCH").read_text() == "login work\n"
    repo = Repo(destination)
    try:
        reader = repo.config_reader()
        assert reader.get_value('branch "feature/login"', "remote") == "origin"
        assert reader.get_value('branch "feature/login"', "merge") == "refs/heads/feature/login"
    finally:
        repo.close()

    # and back to a branch that already exists locally
    engine.switch_branch(destination, "trunk")
    assert engine.current_branch(destination) == "trunk"
    assert (destination / "BRANCH").read_text() == "trunk\n"


def test_switch_branch_discards_local_changes(engine, widgets, tmp_path):
    destination = tmp_path / "checkout"
    engine.clone(widgets, destination)
    (destination / "BRANCH").write_text("scribbles\n")

    engine.switch_branch(destination, "trunk")

    assert (destination / "BRANCH").read_text() == "trunk\n"
    assert engine.status(destination) == ""


def test_switch_to_missing_branch(engine, widgets, tmp_path):
    destination = tmp_path / "checkout"
    engine.clone(widgets, destination)

    with pytest.raises(GitOperationError) as excinfo:
        engine.switch_branch(destination, "no-such-branch")

    assert excinfo.value.branch == "no-such-branch"
    assert excinfo.value.operation == "switch"
    assert engine.current_branch(destination) == "trunk"


def test_switch_branch_outside_repository(engine, tmp_path):
    with pytest.raises(GitOperationError, match="not a git repository"):
        engine.switch_branch(tmp_path, "main")


def test_update_picks_up_new_commits(engine, remotes, widgets, tmp_path):
    destination = tmp_path / "checkout"
    engine.clone(widgets, destination)
    new_head = remotes.push_commit("acme", "widgets", "trunk", "NEWS", "fresh\n")

    assert engine.update(destination) == "trunk"

    assert (destination / "NEWS").read_text() == "fresh\n"
    assert engine.get_info(destination).commit == new_head


def test_get_info(engine, remotes, widgets, tmp_path):
    destination = tmp_path / "checkout"
    engine.clone(widgets, destination)

    info = engine.get_info(destination)

    assert info.remote == widgets
    assert info.branch == "trunk"
    assert info.commit == remotes.head("acme", "widgets", "trunk")
    assert len(info.commit) == 40


def test_status_reports_changes(engine, widgets, tmp_path):
    destination = tmp_path / "checkout"
    engine.clone(widgets, destination)
    (destination / "untracked.txt").write_text("x")

    assert "untracked.txt" in engine.status(destination)


def test_is_repo(engine, widgets, tmp_path):
    destination = tmp_path / "checkout"
    engine.clone(widgets, destination)
    plain = tmp_path / "plain"
    plain.mkdir()
    broken = tmp_path / "broken"
    (broken / ".git").mkdir(parents=True)

    assert engine.is_repo(destination)
    assert not engine.is_repo(plain)
    assert not engine.is_repo(broken)
    assert not engine.is_repo(tmp_path / "missing")
    # a subdirectory of a checkout is not a checkout of its own
    (destination / "sub").mkdir()
    assert not engine.is_repo(destination / "sub")


def test_get_remote(engine, widgets, tmp_path):
    destination = tmp_path / "checkout"
    engine.clone(widgets, destination)

    assert engine.get_remote(destination) == widgets
    assert engine.get_remote(tmp_path / "missing") is None


def test_remote_default_branch(engine, widgets, tmp_path):
    assert engine.remote_default_branch(widgets) == "trunk"
    assert engine.remote_default_branch((tmp_path / "missing.git").as_uri()) is None
