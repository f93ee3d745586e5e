"""Projection of Vault labels onto git tags."""

from __future__ import annotations

import re
import time
from collections.abc import Iterable, Mapping

from vaultreplay.core.errors import CommandError, CommandTimeoutError
from vaultreplay.core.log import logger
from vaultreplay.git.repository import GitRepository
from vaultreplay.replay import provenance
from vaultreplay.replay.progress import (
    Phase,
    ProgressCallback,
    ProgressEvent,
    never_cancel,
)
from vaultreplay.vault.client import VaultClient, vault_session

_NON_WORD = re.compile(r"\W")


def tag_name(txid: int, label: str) -> str:
    """Tag name for a label: '<txid>_<label>' with every non-word
    character replaced by '_'."""
    return f"{txid}_{_NON_WORD.sub('_', label)}"


def commit_map_from_history(
    git: GitRepository, branches: Iterable[str]
) -> dict[int, str]:
    """Rebuild the transaction id -> commit map from provenance
    markers on the given branches.

    Lets labels be projected in a run that replayed nothing.
    """
    commit_map: dict[int, str] = {}
    for branch in branches:
        for sha, lines in git.history(branch):
            marker = provenance.find(lines)
            if marker is not None and marker.txid:
                commit_map.setdefault(marker.txid, sha)
    logger.debug(f"Recovered {len(commit_map)} transactions from history")
    return commit_map


class LabelProjector:
    """Creates a git tag for every label whose transaction was
    replayed."""

    def __init__(
        self,
        vault: VaultClient,
        git: GitRepository,
        commit_map: Mapping[int, str],
        label_root: str = "$",
        progress: ProgressCallback | None = None,
    ):
        self.vault = vault
        self.git = git
        self.commit_map = commit_map
        self.label_root = label_root
        self.progress = progress or never_cancel
        self.created: list[str] = []

    def project(self) -> bool:
        """Tag every mapped label.

        Always logs out and updates server info, even on failure.

        Returns:
            True when the pass completed
        """
        started = time.monotonic()
        try:
            with vault_session(self.vault):
                labels = self.vault.labels(self.label_root)
                logger.info(
                    f"Found {len(labels)} labels under {self.label_root}"
                )
                for label in labels:
                    commit = self.commit_map.get(label.txid)
                    if not commit:
                        continue
                    name = tag_name(label.txid, label.name)
                    if self.git.tag(name, commit, label.comment):
                        logger.info(f"Tagged {commit} as {name}")
                        self.created.append(name)

                self.progress(
                    ProgressEvent(
                        phase=Phase.TAGS,
                        elapsed_ms=int((time.monotonic() - started) * 1000),
                    )
                )
        finally:
            try:
                self.git.update_server_info()
            except (CommandError, CommandTimeoutError) as e:
                logger.error("git update-server-info failed", error=str(e))
        return True
