"""Destination git repository operations."""

from __future__ import annotations

import re
import shlex
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path

from vaultreplay.core.config import GitConfig
from vaultreplay.core.errors import CommandError
from vaultreplay.core.log import logger
from vaultreplay.core.result import CommandResult
from vaultreplay.core.runner import Runner

# First line of `git commit` output, e.g.
#   [main 1a2b3c4] message
#   [main (root-commit) 1a2b3c4] message
_COMMIT_SUMMARY = re.compile(
    r"^\[(?P<branch>.+?)(?: \((?P<note>[^)]*)\))? (?P<sha>[0-9a-f]{4,})\]"
)

# Record marker emitted by the history template (%x00%H)
_RECORD_START = "\x00"


def parse_commit_summary(line: str) -> tuple[str, str] | None:
    """Extract (branch, commit id) from `git commit` output.

    Returns:
        (branch, sha) or None if the line is not a commit summary
    """
    match = _COMMIT_SUMMARY.match(line.strip())
    if not match:
        return None
    return match.group("branch"), match.group("sha")


class GitRepository:
    """Runs git commands against the working folder.

    Commands come from config.commands["git"]; each placeholder value
    is shell-quoted before rendering.
    """

    def __init__(
        self,
        config: GitConfig,
        templates: Mapping[str, str],
        runner: Runner | None = None,
    ):
        self.config = config
        self.workdir: Path = config.workdir
        self.templates = dict(templates)
        self.runner = runner or Runner()

    def _render(self, name: str, **values) -> str:
        template = self.templates[name]
        quoted = {key: shlex.quote(str(value)) for key, value in values.items()}
        return template.format(git=self.config.command, **quoted)

    def run(
        self,
        name: str,
        stdin: str | None = None,
        check: bool = False,
        **values,
    ) -> CommandResult:
        """Render and execute the named command in the working folder."""
        command = self._render(name, **values)
        result = self.runner.execute(
            command,
            cwd=self.workdir,
            timeout=self.config.timeout,
            stdin=stdin,
            check=check,
        )
        logger.debug(
            f"git {name} exited {result.exited}",
            elapsed_ms=result.elapsed_ms,
        )
        return result

    def current_branch(self) -> str | None:
        """Name of the checked-out branch, None when HEAD is detached."""
        result = self.run("current_branch")
        if not result.ok or not result.lines:
            return None
        return result.lines[0].strip() or None

    def checkout(self, branch: str) -> CommandResult:
        result = self.run("checkout", branch=branch)
        if not result.ok:
            logger.warn(
                f"git checkout {branch} exited {result.exited}",
                stderr=result.stderr.strip(),
            )
        return result

    def last_commit_message(self, branch: str) -> list[str]:
        """Message lines of the branch tip, empty if the branch has
        no commits yet."""
        result = self.run("last_commit_message", branch=branch)
        if not result.ok:
            logger.debug(f"No history on {branch}", stderr=result.stderr.strip())
            return []
        return result.lines

    def history(self, branch: str) -> list[tuple[str, list[str]]]:
        """All commits reachable from branch as (sha, message lines),
        newest first."""
        result = self.run("history", branch=branch)
        if not result.ok:
            logger.debug(f"No history on {branch}", stderr=result.stderr.strip())
            return []

        commits: list[tuple[str, list[str]]] = []
        for line in result.lines:
            if line.startswith(_RECORD_START):
                commits.append((line[len(_RECORD_START):].strip(), []))
            elif commits:
                commits[-1][1].append(line)
        return commits

    def add_all(self) -> None:
        self.run("add_all", check=True)

    def status(self) -> list[str]:
        """Porcelain status lines; empty when nothing changed."""
        return [line for line in self.run("status", check=True).lines if line]

    def commit(
        self,
        login: str,
        timestamp: datetime,
        message: str,
    ) -> str:
        """Commit everything staged with the given author and date.

        The message goes through stdin so it needs no escaping.

        Returns:
            The new commit id (abbreviated, as git prints it)
        """
        author = f"{login} <{login}@{self.config.domain_name}>"
        result = self.run(
            "commit",
            stdin=message,
            check=True,
            author=author,
            date=timestamp.isoformat(timespec="seconds"),
        )

        summary = parse_commit_summary(result.lines[0]) if result.lines else None
        if summary is not None:
            return summary[1]

        logger.debug(
            "Unrecognized commit output, reading HEAD",
            output=result.stdout[:200],
        )
        return self.rev_parse("HEAD")

    def rev_parse(self, ref: str) -> str:
        return self.run("rev_parse", check=True, ref=ref).lines[0].strip()

    def tag(self, name: str, commit: str, message: str) -> bool:
        """Create an annotated tag; returns False if git refused."""
        try:
            self.run("tag", check=True, tag=name, commit=commit, message=message)
        except CommandError as e:
            logger.warn(f"Could not create tag {name}", error=str(e))
            return False
        return True

    def gc(self) -> None:
        self.run("gc", check=True)

    def update_server_info(self) -> None:
        self.run("update_server_info", check=True)
