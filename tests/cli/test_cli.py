"""CLI tests; no network access, remotes are local bare repositories."""

import json
import logging

import pytest
from click.testing import CliRunner

from repocache import __version__
from repocache.cli.main import cli
from repocache.cli.utils.logging import HANDLER_NAME
from repocache.git import GitEngine
from repocache.manifest import Manifest, ManifestStore, RepoEntry, RepoType

from ..remotes import make_checkout, run_git


@pytest.fixture(autouse=True)
def reset_cli_logging():
    yield
    logger = logging.getLogger("repocache")
    for handler in [h for h in logger.handlers if h.get_name() == HANDLER_NAME]:
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def cache_dir(tmp_path):
    return tmp_path / "cache"


@pytest.fixture
def config_file(tmp_path, cache_dir):
    path = tmp_path / "repocache.cfg"
    path.write_text(
        f"""
[dirs]
cache = {cache_dir}

[scan]
paths = {tmp_path / "code"}
include_project_parent = false
"""
    )
    return path


@pytest.fixture
def invoke(config_file):
    runner = CliRunner()

    def run(*args):
        return runner.invoke(cli, ["--config", str(config_file), *args], obj={})

    return run


class TestBasics:
    @pytest.mark.short
    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    @pytest.mark.short
    def test_list_empty(self, invoke):
        result = invoke("list")

        assert result.exit_code == 0
        assert "No repositories registered" in result.output

    @pytest.mark.short
    def test_malformed_spec(self, invoke):
        result = invoke("clone", "widgets")

        assert result.exit_code == 1
        assert 'must be in format "owner/repo"' in result.output

    @pytest.mark.short
    def test_relative_spec_leaves_cache_alone(self, invoke, cache_dir):
        (cache_dir / "acme").mkdir(parents=True)
        (cache_dir / "acme" / "keep.txt").write_text("keep me")

        result = invoke("clone", "acme/..", "--force")

        assert result.exit_code == 1
        assert 'cannot be "." or ".."' in result.output
        assert (cache_dir / "acme" / "keep.txt").exists()

    @pytest.mark.short
    def test_remove_unknown(self, invoke):
        result = invoke("remove", "acme/widgets")

        assert result.exit_code == 1
        assert "acme/widgets is not registered" in result.output

    @pytest.mark.short
    def test_update_unknown(self, invoke):
        result = invoke("update", "acme/widgets")

        assert result.exit_code == 1
        assert "not registered" in result.output

    @pytest.mark.short
    def test_debug_flag_on_subcommand(self, invoke):
        result = invoke("clone", "widgets", "--debug")

        assert result.exit_code == 1
        assert "ERROR repocache: Failed to prepare widgets" in result.output


class TestLocalRepositories:
    @pytest.fixture
    def checkout(self, tmp_path, remotes):
        return make_checkout(
            tmp_path / "code" / "notes", "git@github.com:me/notes.git", branch="draft"
        )

    def test_scan_list_find_remove(self, invoke, checkout, cache_dir):
        result = invoke("scan")
        assert result.exit_code == 0
        assert "Repositories found:  1" in result.output
        assert "Added/updated:       1" in result.output

        result = invoke("list", "--type", "local")
        assert result.exit_code == 0
        assert "me/notes\tlocal\tdraft" in result.output
        assert str(checkout) in result.output

        result = invoke("find", "notes")
        assert result.exit_code == 0
        assert "registered\tme/notes\tlocal" in result.output
        assert "\nlocal\t" not in result.output

        result = invoke("remove", "me/notes")
        assert result.exit_code == 0
        assert "Unregistered me/notes" in result.output
        assert checkout.exists()

        document = json.loads((cache_dir / "manifest.json").read_text())
        assert document["repos"] == {}
        assert document["localIndex"] == {}

    def test_scan_explicit_path(self, invoke, checkout, tmp_path):
        result = invoke("scan", str(tmp_path / "code"))

        assert result.exit_code == 0
        assert "Search paths:        1" in result.output
        assert "Added/updated:       1" in result.output

    def test_find_unregistered(self, invoke, checkout):
        result = invoke("find", "notes")

        assert result.exit_code == 0
        assert f"local\tme/notes\tdraft\t{checkout}" in result.output

    def test_find_nothing(self, invoke, checkout):
        result = invoke("find", "zzz")

        assert result.exit_code == 0
        assert "No matches found." in result.output


class TestCachedRepositories:
    @pytest.fixture
    def cached(self, remotes, cache_dir):
        """
        An existing checkout at the cache path, not yet in the manifest.

        Its origin reads as github.com; git rewrites that to the local remote.
        """
        url = remotes.create(
            "acme", "widgets", default_branch="trunk", branches={"feature/login": "login work\n"}
        )
        destination = cache_dir / "acme" / "widgets"
        GitEngine().clone(url, destination)
        run_git("remote", "set-url", "origin", "https://github.com/acme/widgets.git", cwd=destination)
        run_git(
            "config",
            f"url.{remotes.root.as_uri()}/remotes/.insteadOf",
            "https://github.com/",
            cwd=destination,
        )
        return destination

    def test_clone_adopts_existing_checkout(self, invoke, cached):
        result = invoke("clone", "acme/widgets")

        assert result.exit_code == 0
        assert "Repository cache repaired" in result.output
        assert "branch: trunk" in result.output
        assert f"path:   {cached}" in result.output

        result = invoke("clone", "acme/widgets")

        assert result.exit_code == 0
        assert "Repository already available" in result.output

    def test_update(self, invoke, cached, remotes):
        invoke("clone", "acme/widgets")
        new_head = remotes.push_commit("acme", "widgets", "trunk", "NEWS", "fresh\n")

        result = invoke("update", "acme/widgets")

        assert result.exit_code == 0
        assert "Repository updated" in result.output
        assert f"commit: {new_head[:7]}" in result.output

    def test_read(self, invoke, cached, remotes):
        invoke("clone", "acme/widgets")
        remotes.push_commit("acme", "widgets", "trunk", "LONG.txt", "a\nb\nc\nd\n")
        invoke("update", "acme/widgets")

        result = invoke("read", "acme/widgets", "*", "--max-lines", "2")

        assert result.exit_code == 0
        assert "Files from acme/widgets @ trunk" in result.output
        assert "==> README.md <==\n# acme/widgets\n" in result.output
        assert "==> LONG.txt <==\na\nb\n[truncated at 2 lines, 4 total]" in result.output

    def test_read_branch(self, invoke, cached):
        invoke("clone", "acme/widgets")

        result = invoke("read", "acme/widgets@feature/login", "BRANCH")

        assert result.exit_code == 0
        assert "Files from acme/widgets @ feature/login" in result.output
        assert "login work" in result.output

    def test_read_outside_checkout(self, invoke, cached):
        invoke("clone", "acme/widgets")

        result = invoke("read", "acme/widgets", "../../manifest.json")

        assert result.exit_code == 1
        assert "resolves outside the repository root" in result.output

    def test_read_no_match(self, invoke, cached):
        invoke("clone", "acme/widgets")

        result = invoke("read", "acme/widgets", "*.rst")

        assert result.exit_code == 0
        assert "No files matched *.rst in acme/widgets" in result.output

    def test_remove_requires_confirm(self, invoke, cached, cache_dir):
        invoke("clone", "acme/widgets")

        result = invoke("remove", "acme/widgets")

        assert result.exit_code == 2
        assert "--confirm" in result.output
        assert cached.exists()

        result = invoke("remove", "acme/widgets", "--confirm")

        assert result.exit_code == 0
        assert "Removed acme/widgets" in result.output
        assert not cached.exists()
        assert ManifestStore(cache_dir).load().repos == {}

    def test_list_shows_cached(self, invoke, cache_dir):
        store = ManifestStore(cache_dir)

        def mutate(manifest: Manifest) -> None:
            manifest.repos["acme/widgets"] = RepoEntry(
                type=RepoType.cached,
                path=str(cache_dir / "acme" / "widgets"),
                current_branch="trunk",
            )

        store.update(mutate)

        result = invoke("list", "--type", "cached")

        assert result.exit_code == 0
        assert "acme/widgets\tcached\ttrunk" in result.output

        result = invoke("list", "--type", "local")
        assert "No repositories registered" in result.output
