"""Command execution using invoke with captured, timed output."""

import contextlib
import io
import os
import time
from pathlib import Path

from invoke import Context
from invoke.exceptions import CommandTimedOut

from vaultreplay.core.errors import CommandError, CommandTimeoutError
from vaultreplay.core.log import logger
from vaultreplay.core.result import CommandResult


class Runner(Context):
    """invoke.Context with a single blocking execute() operation.

    Every call drains stdout completely before returning, so callers
    never see interleaved output from two commands.
    """

    def kill(self) -> None:
        """Kill the running subprocess.

        invoke's kill() sends signal.SIGKILL, which does not exist on
        Windows. os.kill() there accepts a plain number and hands it
        to TerminateProcess(), so 9 is used directly. POSIX systems
        go through invoke's implementation.
        """
        import platform

        if platform.system() == "Windows":
            pid = self.pid if self.using_pty else self.process.pid
            with contextlib.suppress(ProcessLookupError):
                os.kill(pid, 9)
            return

        super().kill()

    def execute(
        self,
        command: str,
        cwd: Path | None = None,
        timeout: int | None = None,
        stdin: str | None = None,
        check: bool = False,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        """Run a command and capture its output.

        Args:
            command: Command string to execute through the shell
            cwd: Working directory for the command
            timeout: Maximum execution time in seconds, None waits
                forever
            stdin: Text written to the command's standard input,
                which is closed afterwards
            check: If True, raise CommandError on non-zero exit
            env: Extra environment variables (merged into
                os.environ)

        Returns:
            CommandResult with stdout split into lines and elapsed
            wall-clock milliseconds

        Raises:
            CommandTimeoutError: If the timeout elapses
            CommandError: If check=True and the command fails
        """
        kwargs = {
            "hide": True,
            "warn": True,
            "in_stream": io.StringIO(stdin) if stdin is not None else False,
            "echo_stdin": False,
        }
        if timeout:
            kwargs["timeout"] = timeout
        if env:
            kwargs["env"] = env

        logger.spew(
            "Executing command",
            command=command,
            cwd=str(cwd) if cwd else None,
            stdin_bytes=len(stdin) if stdin else 0,
        )

        started = time.monotonic()
        try:
            if cwd:
                with self.cd(str(cwd)):
                    result = self.run(command, **kwargs)
            else:
                result = self.run(command, **kwargs)
        except CommandTimedOut as e:
            logger.error(
                f"Command timed out after {timeout}s",
                command=command,
            )
            raise CommandTimeoutError(command, e.timeout) from e
        elapsed_ms = int((time.monotonic() - started) * 1000)

        captured = CommandResult(
            command=command,
            exited=result.exited,
            lines=result.stdout.splitlines(),
            stderr=result.stderr,
            elapsed_ms=elapsed_ms,
        )

        for line in captured.lines:
            logger.spew(line.rstrip(), stream="stdout")
        for line in result.stderr.splitlines():
            logger.spew(line.rstrip(), stream="stderr")

        if check and not captured.ok:
            raise CommandError(
                command, captured.exited, result.stderr or result.stdout
            )
        return captured
