"""Destination repository access."""

from vaultreplay.git.repository import GitRepository, parse_commit_summary

__all__ = ["GitRepository", "parse_commit_summary"]
