"""Exception hierarchy for vaultreplay."""

from __future__ import annotations


class VaultReplayError(Exception):
    """Base class for all errors raised by vaultreplay."""


class ConfigError(VaultReplayError):
    """Configuration is missing or inconsistent."""


class CommandError(VaultReplayError):
    """A checked external command exited with a non-zero status."""

    def __init__(self, command: str, exited: int, output: str = ""):
        self.command = command
        self.exited = exited
        self.output = output
        message = f"Command failed with exit code {exited}: {command}"
        if output:
            message = f"{message}\n{output.rstrip()}"
        super().__init__(message)


class CommandTimeoutError(VaultReplayError):
    """An external command did not finish within its timeout."""

    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(
            f"Command timed out after {timeout}s: {command}"
        )


class CheckoutError(VaultReplayError):
    """The destination never switched to the requested branch."""

    def __init__(self, branch: str, attempts: int, current: str | None):
        self.branch = branch
        self.attempts = attempts
        self.current = current
        super().__init__(
            f"Cannot switch to branch '{branch}' after {attempts} "
            f"attempts (current branch: {current or 'unknown'})"
        )


class VaultError(VaultReplayError):
    """The source system failed or returned output we cannot read."""


__all__ = [
    "VaultReplayError",
    "ConfigError",
    "CommandError",
    "CommandTimeoutError",
    "CheckoutError",
    "VaultError",
]
