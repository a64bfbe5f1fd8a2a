"""
Non-interactive remote command execution.

Provides:
- CommandRunner.run: capture stdout, pass stderr through to the operator
- CommandRunner.exec: stream stdout and stderr to the local streams
"""
from __future__ import annotations

import io
import logging
import sys
from typing import IO, Any

from sshx.errors import RemoteExitNonZero
from sshx.events import EventEmitter, EventType
from sshx.transport import Connection

logger = logging.getLogger(__name__)


class CommandRunner:
    """
    Runs single commands on a connection, one session per command.

    Args:
        stdin: Local stream fed to the remote command (None = empty input)
        stdout: Local stream for exec() output
        stderr: Local stream receiving remote stderr
        emitter: Event sink for EXEC events
    """

    def __init__(
        self,
        stdin: IO[Any] | None = None,
        stdout: IO[Any] | None = None,
        stderr: IO[Any] | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        self._stdin = stdin
        self._stdout = stdout if stdout is not None else sys.stdout
        self._stderr = stderr if stderr is not None else sys.stderr
        self._emitter = emitter or EventEmitter()

    async def run(self, connection: Connection, command: str) -> str:
        """
        Run command and return its stdout with trailing newlines removed.

        Raises:
            RemoteExitNonZero: The command exited with a non-zero status
            SessionOpenFailed: No session could be opened
            SessionEndedUnexpectedly: The session dropped
        """
        captured = io.BytesIO()
        await self._execute(connection, command, captured, capture=True)
        return captured.getvalue().decode("utf-8", errors="replace").rstrip("\n")

    async def exec(self, connection: Connection, command: str) -> None:
        """
        Run command, streaming its stdout and stderr to the local streams.

        Raises the same errors as run().
        """
        await self._execute(connection, command, self._stdout, capture=False)

    async def _execute(
        self,
        connection: Connection,
        command: str,
        stdout: IO[Any],
        capture: bool,
    ) -> None:
        logger.debug("Running %r (capture=%s)", command, capture)
        with self._emitter.timed_event(EventType.EXEC, command=command, capture=capture) as event_data:
            async with await connection.open_session() as session:
                status = await session.run(
                    command,
                    stdin=self._stdin,
                    stdout=stdout,
                    stderr=self._stderr,
                )

            event_data["exit_code"] = status
            if status != 0:
                raise RemoteExitNonZero(status)
