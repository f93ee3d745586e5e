"""Helpers shared by the CLI commands."""

from __future__ import annotations

import signal
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path

from vaultreplay.core.config import Config
from vaultreplay.core.errors import ConfigError
from vaultreplay.core.log import logger
from vaultreplay.core.runner import Runner
from vaultreplay.git.repository import GitRepository
from vaultreplay.replay.engine import BranchMapping
from vaultreplay.replay.progress import ProgressEvent
from vaultreplay.vault.command_client import VaultCommandClient


def build_clients(config: Config) -> tuple[VaultCommandClient, GitRepository]:
    """Source and destination clients sharing one Runner."""
    runner = Runner()
    vault = VaultCommandClient(
        config.vault, config.commands.get("vault", {}), runner
    )
    git = GitRepository(config.git, config.commands.get("git", {}), runner)
    return vault, git


def select_branches(
    branches: Mapping[str, str], selected: Sequence[str]
) -> list[BranchMapping]:
    """Mappings for the selected branch names, or all of them.

    Raises:
        ConfigError: If a selected branch is not configured
    """
    unknown = [name for name in selected if name not in branches]
    if unknown:
        raise ConfigError(
            f"Unknown branch {', '.join(unknown)}. "
            f"Configured branches: {', '.join(branches)}"
        )
    names = selected or list(branches)
    return [BranchMapping(branch=name, path=branches[name]) for name in names]


class ConsoleProgress:
    """Logs progress events and answers stop requests.

    A stop is requested by SIGINT/SIGTERM or by creating stop_file;
    it takes effect at the next unit boundary. A second signal aborts
    immediately.
    """

    def __init__(self, stop_file: Path | None = None):
        self.stop_file = stop_file
        self.stop_requested = False

    def __call__(self, event: ProgressEvent) -> bool:
        logger.info(event.describe(), branch=event.branch)
        if self.stop_file is not None and self.stop_file.exists():
            if not self.stop_requested:
                logger.warn(f"Stop file {self.stop_file} found")
            self.stop_requested = True
        return self.stop_requested

    def _handle_signal(self, signum, frame):  # noqa: ARG002
        if self.stop_requested:
            raise KeyboardInterrupt
        self.stop_requested = True
        logger.warn(
            "Stop requested, finishing the current version "
            "(signal again to abort)",
            signal=signal.Signals(signum).name,
        )

    @contextmanager
    def handle_signals(self) -> Iterator[ConsoleProgress]:
        """Install the stop handlers for the duration of the block."""
        previous = {
            signum: signal.signal(signum, self._handle_signal)
            for signum in (signal.SIGINT, signal.SIGTERM)
        }
        try:
            yield self
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)
