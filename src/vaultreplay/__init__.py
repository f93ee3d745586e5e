"""Replay SourceGear Vault history into git."""

__version__ = "0.1.0"
