import io
import shutil

import pytest
import logging

from pathlib import Path

from repocache.config import RepoCacheConfig
from repocache.git import GitEngine, remote_to_repo_key
from repocache.manifest import ManifestStore
from repocache.repos import RepoManager

from .remotes import RemoteFactory


@pytest.fixture
def capture_logs():
    """Fixture to capture repocache log output during tests."""
    log_stream = io.StringIO()
    handler = logging.StreamHandler(log_stream)
    logger = logging.getLogger("repocache")
    logger.addHandler(handler)
    previous_level = logger.level
    logger.setLevel(logging.DEBUG)

    yield log_stream

    logger.removeHandler(handler)
    logger.setLevel(previous_level)
    log_stream.close()


# git fixtures


@pytest.fixture
def remotes(tmp_path) -> RemoteFactory:
    """Factory for throwaway bare remotes reachable over file://."""
    if shutil.which("git") is None:
        pytest.skip("git binary not available")
    return RemoteFactory(tmp_path / "git")


@pytest.fixture
def cache_config(tmp_path) -> RepoCacheConfig:
    return RepoCacheConfig(
        cache_dir=tmp_path / "cache",
        default_branch="main",
        claim_timeout=30,
    )


@pytest.fixture
def store(cache_config) -> ManifestStore:
    return ManifestStore(cache_config.cache_dir)


@pytest.fixture
def engine() -> GitEngine:
    return GitEngine(default_branch="main")


@pytest.fixture
def manager(cache_config, store, engine, remotes) -> RepoManager:
    """Clones from local file:// remotes, so adoption matches origins on any host."""
    return RepoManager(
        cache_config,
        store=store,
        engine=engine,
        scan=lambda paths: [],
        url_builder=remotes.url_builder,
        remote_key=remote_to_repo_key,
    )


@pytest.fixture
def cache_root(cache_config) -> Path:
    return cache_config.cache_dir
