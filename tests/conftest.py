"""Pytest configuration and fixtures for vaultreplay tests."""

import sys
import tempfile
from pathlib import Path

import pytest
import yaml
from support import FakeVaultClient, git

from vaultreplay.core.config import GitConfig
from vaultreplay.core.log import ConsoleSink, setup_logger
from vaultreplay.core.yaml_settings import DEFAULTS_FILE
from vaultreplay.git.repository import GitRepository


@pytest.fixture(autouse=True, scope="session")
def configure_logging():
    """Configure logging for console-only mode during tests.

    This enables debug output during test runs without sending
    anything to logfire.dev.
    """
    test_log_root = Path(tempfile.gettempdir()) / "vaultreplay-tests"
    setup_logger(
        log_root=test_log_root,
        run_name="test",
        console=ConsoleSink(level="debug"),
    )


@pytest.fixture(scope="session")
def default_commands():
    """Command templates from the packaged defaults."""
    with open(DEFAULTS_FILE, encoding="utf-8") as f:
        return yaml.safe_load(f)["config"]["commands"]


@pytest.fixture
def repo_dir(tmp_path):
    """Fresh git repository whose HEAD is an unborn 'main'."""
    workdir = tmp_path / "repo"
    workdir.mkdir()
    git(workdir, "init", "-q")
    git(workdir, "symbolic-ref", "HEAD", "refs/heads/main")
    git(workdir, "config", "user.name", "Test User")
    git(workdir, "config", "user.email", "test@example.com")
    git(workdir, "config", "commit.gpgsign", "false")
    git(workdir, "config", "tag.gpgsign", "false")
    git(workdir, "config", "core.autocrlf", "false")
    return workdir


@pytest.fixture
def git_repo(repo_dir, default_commands):
    """GitRepository over repo_dir using the default templates."""
    return GitRepository(GitConfig(workdir=repo_dir), default_commands["git"])


@pytest.fixture
def vault():
    return FakeVaultClient()


@pytest.fixture
def mock_argv():
    """Save and restore sys.argv."""
    original = sys.argv.copy()
    yield
    sys.argv = original
