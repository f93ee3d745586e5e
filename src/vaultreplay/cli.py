#!/usr/bin/env python3
"""Vaultreplay CLI - replay SourceGear Vault history into git."""

import asyncio
import sys

from pydantic_settings import CliApp, CliSubCommand, get_subcommand

from vaultreplay.command.pull import PullCommand
from vaultreplay.command.tags import TagsCommand
from vaultreplay.core.config import State
from vaultreplay.core.log import logger


class CliState(State):
    """Replay SourceGear Vault history into a git repository.

    Each Vault version of a mapped folder becomes one git commit
    carrying a provenance marker, so runs can be interrupted and
    resumed. Vault labels become annotated git tags.

    Configuration sources (in priority order):
    1. Command-line arguments (--config.vault.server value)
    2. Files given with --include
    3. vaultreplay.yaml in the current directory
    4. vaultreplay.yaml in the user config directory
    5. Environment variables
       (VAULTREPLAY_CONFIG__VAULT__PASSWORD=value)
    6. Built-in defaults
    """

    pull: CliSubCommand[PullCommand]
    tags: CliSubCommand[TagsCommand]

    def cli_cmd(self):
        """Dispatch to active subcommand, or show help if none
        provided."""
        subcommand = get_subcommand(self, is_required=False)

        if subcommand is None:
            CliApp.run(CliState, cli_args=['--help'])
            sys.exit(1)

        with logger:
            try:
                exit_code = asyncio.run(subcommand.run_workflow(self))
            except KeyboardInterrupt:
                logger.error("Aborted")
                exit_code = 1
            except Exception as e:
                logger.exception(f"{type(e).__name__}: {e}")
                exit_code = 1
        raise SystemExit(exit_code)


def main():
    """Main entry point for CLI."""
    CliApp.run(CliState)


if __name__ == "__main__":
    main()
