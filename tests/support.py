"""Helpers shared by the test modules: a git wrapper and a fake Vault."""

import shutil
import subprocess
from datetime import date, datetime, timedelta
from pathlib import Path

import pytest

from vaultreplay.core.errors import VaultError
from vaultreplay.vault.models import (
    GetOptions,
    TransactionItem,
    VaultLabel,
    VaultRevision,
)

requires_git = pytest.mark.skipif(
    shutil.which("git") is None, reason="git is not installed"
)


def git(workdir: Path, *args: str) -> str:
    """Run git in workdir and return stripped stdout."""
    return subprocess.run(
        ["git", *args],
        cwd=workdir,
        check=True,
        capture_output=True,
        text=True,
    ).stdout.strip()


def commit_count(workdir: Path, branch: str = "main") -> int:
    return int(git(workdir, "rev-list", "--count", branch))


def seed_branches(workdir: Path, *branches: str) -> None:
    """Give main a first commit and create branches from it."""
    (workdir / ".gitignore").write_text("*.tmp\n")
    git(workdir, "add", ".gitignore")
    git(workdir, "commit", "-q", "-m", "initial")
    for branch in branches:
        git(workdir, "branch", branch)


class FakeVaultClient:
    """In-memory VaultClient.

    Each folder holds versions as (VaultRevision, {relative path: text}).
    get_version() writes the snapshot's files and, like the real
    client, leaves files removed by structural changes in place.
    """

    def __init__(self):
        self.folders: dict[str, list[tuple[VaultRevision, dict[str, str]]]] = {}
        self.details: dict[int, list[TransactionItem]] = {}
        self.label_list: list[VaultLabel] = []
        self.bindings: dict[str, Path] = {}
        self.calls: list[tuple] = []
        self.logged_in = False
        self.fail_bound_versions: set[int] = set()
        self.error_on_fetch: Exception | None = None

    def add_version(
        self,
        path: str,
        version: int,
        txid: int,
        files: dict[str, str],
        comment: str = "",
        user: str = "jdoe",
    ) -> VaultRevision:
        revision = VaultRevision(
            version=version,
            txid=txid,
            comment=comment,
            user=user,
            timestamp=datetime(2005, 3, 1, 10, 0, 0) + timedelta(minutes=txid),
        )
        self.folders.setdefault(path, []).append((revision, dict(files)))
        return revision

    def login(self):
        self.calls.append(("login",))
        self.logged_in = True

    def logout(self):
        self.calls.append(("logout",))
        self.logged_in = False

    def version_history(self, path: str, start: date, end: date):
        self.calls.append(("version_history", path))
        return [
            revision for revision, _ in self.folders.get(path, [])
            if start <= revision.timestamp.date() < end
        ]

    def get_version(
        self,
        path: str,
        version: int,
        options: GetOptions,
        local_dir: Path | None = None,
    ):
        self.calls.append(("get_version", path, version, local_dir))
        if self.error_on_fetch is not None:
            raise self.error_on_fetch
        if local_dir is None:
            target = next(
                (
                    local for bound, local in self.bindings.items()
                    if bound.lower() == path.lower()
                ),
                None,
            )
            if target is None or version in self.fail_bound_versions:
                raise VaultError(f"{path} has no working folder set")
        else:
            target = local_dir

        files = next(
            files for revision, files in self.folders[path]
            if revision.version == version
        )
        for name, text in files.items():
            destination = target / name
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_text(text)

    def set_working_folder(self, path: str, local_dir: Path):
        self.calls.append(("set_working_folder", path))
        self.bindings[path] = local_dir

    def unset_working_folder(self, path: str):
        self.calls.append(("unset_working_folder", path))
        del self.bindings[path]

    def working_folders(self):
        return dict(self.bindings)

    def transaction_detail(self, txid: int):
        return list(self.details.get(txid, []))

    def labels(self, root: str):
        self.calls.append(("labels", root))
        return list(self.label_list)

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)
