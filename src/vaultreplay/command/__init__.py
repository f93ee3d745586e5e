"""CLI command modules for vaultreplay."""

from vaultreplay.command.pull import PullCommand
from vaultreplay.command.tags import TagsCommand

__all__ = ["PullCommand", "TagsCommand"]
