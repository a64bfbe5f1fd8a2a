"""
Interactive remote shells.

InteractiveShell attaches the local terminal to a remote login shell:
- Puts the local terminal in raw mode and restores it on every exit path
- Requests a pty sized to the local terminal
- Relays terminal resizes (SIGWINCH) to the remote pty
- Turns SIGTERM/SIGHUP into an orderly shutdown

With one-shot arguments no pty is requested and the terminal is left alone.
"""
from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
import termios
import threading
import tty
from contextlib import contextmanager
from enum import Enum
from typing import IO, Any, Iterator, Sequence

from sshx.environment import EnvironmentSnapshot
from sshx.errors import (
    InvalidDirectory,
    RemoteExitNonZero,
    SessionEndedUnexpectedly,
    TerminalRestoreFailed,
    TerminalUnavailable,
)
from sshx.events import EventEmitter, EventType
from sshx.transport import Connection, Session
from sshx.validation import is_valid_remote_dir

logger = logging.getLogger(__name__)

# Exit status of a shell whose last command was interrupted with Ctrl-C
INTERRUPTED_STATUS = 130

DEFAULT_SIZE = (80, 24)

# Raw mode is a property of the process's controlling terminal
_RAW_MODE_LOCK = threading.Lock()


class ShellState(str, Enum):
    """Lifecycle of an interactive shell, as reported in SHELL events."""
    INIT = "init"
    PTY_REQUESTED = "pty_requested"
    RUNNING = "running"
    RESTORING = "restoring"
    CLOSED = "closed"


def _quote(text: str) -> str:
    """Wrap text in double quotes, escaping backslashes and double quotes."""
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def format_command(directory: str, *args: str) -> str:
    """
    Build the remote command line for a shell in directory.

    The directory is inserted as-is; callers validate it first.

    Examples:
        >>> format_command("/srv")
        'cd /srv && exec $SHELL'
        >>> format_command(".", "ls", "-l")
        'cd . && exec $SHELL -c "ls -l"'
    """
    if not args:
        return f"cd {directory} && exec $SHELL"
    return f"cd {directory} && exec $SHELL -c {_quote(' '.join(args))}"


class LocalTerminal:
    """
    The local terminal the shell is attached to.

    Args:
        stdin: Input stream; must be a tty for raw mode
        stdout: Output stream for remote stdout
        stderr: Output stream for remote stderr
    """

    def __init__(
        self,
        stdin: IO[Any] | None = None,
        stdout: IO[Any] | None = None,
        stderr: IO[Any] | None = None,
    ) -> None:
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout
        self.stderr = stderr if stderr is not None else sys.stderr

    def is_tty(self) -> bool:
        try:
            return self.stdin.isatty()
        except (AttributeError, ValueError):
            return False

    def size(self) -> tuple[int, int]:
        """Current (columns, lines), or 80x24 if it cannot be read."""
        try:
            size = os.get_terminal_size(self.stdin.fileno())
        except (AttributeError, OSError, ValueError):
            return DEFAULT_SIZE
        # A pty nobody has sized yet reports 0x0
        if not size.columns or not size.lines:
            return DEFAULT_SIZE
        return size.columns, size.lines

    @contextmanager
    def raw(self) -> Iterator[None]:
        """
        Hold the terminal in raw mode for the duration of the block.

        The prior terminal attributes are recorded on entry and put back on
        exit. If putting them back fails while another exception is already
        propagating, the restore failure is logged and the original
        exception wins.

        Raises:
            TerminalUnavailable: stdin is not a tty, or raw mode is already
                                 held elsewhere in this process
            TerminalRestoreFailed: The saved attributes could not be restored
        """
        if not self.is_tty():
            raise TerminalUnavailable("Interactive shell requires a TTY (stdin is not a terminal)")

        if not _RAW_MODE_LOCK.acquire(blocking=False):
            raise TerminalUnavailable("The terminal is already in use by another shell")

        try:
            fd = self.stdin.fileno()
            try:
                saved = termios.tcgetattr(fd)
                tty.setraw(fd)
            except termios.error as e:
                raise TerminalUnavailable(f"Cannot enter raw mode: {e}") from e

            failed = False
            try:
                yield
            except BaseException:
                failed = True
                raise
            finally:
                self._restore(fd, saved, failed)
        finally:
            _RAW_MODE_LOCK.release()

    def _restore(self, fd: int, saved: list[Any], failed: bool) -> None:
        try:
            termios.tcsetattr(fd, termios.TCSADRAIN, saved)
        except termios.error as e:
            if failed:
                logger.error("Failed to restore terminal attributes: %s", e)
                return
            raise TerminalRestoreFailed(f"Failed to restore terminal attributes: {e}") from e


class InteractiveShell:
    """
    Runs a login shell, or a one-shot command through it, on a connection.

    Usage:
        shell = InteractiveShell(EnvironmentSnapshot.capture())
        await shell.run(conn, "/srv/app")               # interactive
        await shell.run(conn, ".", ["make", "test"])    # one-shot

    Args:
        env: Ambient values; env.term picks the pty terminal type
        terminal: Local terminal (the process's stdio if None)
        emitter: Event sink for SHELL events
    """

    def __init__(
        self,
        env: EnvironmentSnapshot | None = None,
        terminal: LocalTerminal | None = None,
        emitter: EventEmitter | None = None,
    ) -> None:
        self._env = env or EnvironmentSnapshot.capture()
        self._terminal = terminal or LocalTerminal()
        self._emitter = emitter or EventEmitter()
        self._state = ShellState.INIT

    @property
    def state(self) -> ShellState:
        return self._state

    def _enter(self, state: ShellState, **data: Any) -> None:
        self._state = state
        self._emitter.emit(EventType.SHELL, state=state.value, **data)

    async def run(
        self,
        connection: Connection,
        directory: str = ".",
        args: Sequence[str] = (),
    ) -> None:
        """
        Run a shell in directory on connection.

        Raises:
            InvalidDirectory: directory is not a well-formed path
            TerminalUnavailable: Interactive mode without a usable tty
            PtyAllocationFailed: The server refused the pty
            RemoteExitNonZero: The shell exited with a failing status
            SessionEndedUnexpectedly: The session dropped or was terminated
        """
        self._state = ShellState.INIT
        if not is_valid_remote_dir(directory):
            raise InvalidDirectory(directory)

        command = format_command(directory, *args)
        if args:
            await self._run_one_shot(connection, command)
        else:
            await self._run_interactive(connection, command)

    async def _run_one_shot(self, connection: Connection, command: str) -> None:
        self._enter(ShellState.RUNNING, command=command, pty=False)
        status: int | None = None
        try:
            async with await connection.open_session() as session:
                status = await session.run(
                    command,
                    stdin=self._terminal.stdin,
                    stdout=self._terminal.stdout,
                    stderr=self._terminal.stderr,
                )
        finally:
            self._enter(ShellState.CLOSED, exit_code=status)

        if status != 0:
            raise RemoteExitNonZero(status)

    async def _run_interactive(self, connection: Connection, command: str) -> None:
        status: int | None = None
        try:
            with self._terminal.raw():
                try:
                    status = await self._attach(connection, command)
                finally:
                    self._enter(ShellState.RESTORING)
        finally:
            self._enter(ShellState.CLOSED, exit_code=status)

        if status not in (0, INTERRUPTED_STATUS):
            raise RemoteExitNonZero(status)

    async def _attach(self, connection: Connection, command: str) -> int:
        width, height = self._terminal.size()
        term_type = self._env.term_type

        async with await connection.open_session() as session:
            await session.request_pty(term_type, width, height)
            self._enter(
                ShellState.PTY_REQUESTED,
                term=term_type,
                width=width,
                height=height,
            )

            with self._signals(session) as terminated:
                self._enter(ShellState.RUNNING, command=command, pty=True)
                try:
                    return await session.run(
                        command,
                        stdin=self._terminal.stdin,
                        stdout=self._terminal.stdout,
                        stderr=self._terminal.stderr,
                    )
                except asyncio.CancelledError:
                    if terminated:
                        name = signal.Signals(terminated[0]).name
                        raise SessionEndedUnexpectedly(
                            f"ssh: session ended unexpectedly: terminated by {name}"
                        ) from None
                    raise

    @contextmanager
    def _signals(self, session: Session) -> Iterator[list[int]]:
        """
        Route SIGWINCH to the pty and SIGTERM/SIGHUP to task cancellation.

        Yields a list that receives the number of the terminating signal.
        """
        loop = asyncio.get_running_loop()
        task = asyncio.current_task()
        terminated: list[int] = []
        installed: list[int] = []

        def on_resize() -> None:
            width, height = self._terminal.size()
            logger.debug("Terminal resized to %dx%d", width, height)
            session.resize(width, height)

        def on_terminate(signum: int) -> None:
            logger.info("Received %s, closing shell", signal.Signals(signum).name)
            terminated.append(signum)
            if task is not None:
                task.cancel()

        handlers = [(signal.SIGWINCH, on_resize, ())]
        for signum in (signal.SIGTERM, signal.SIGHUP):
            handlers.append((signum, on_terminate, (signum,)))

        for signum, callback, callback_args in handlers:
            try:
                loop.add_signal_handler(signum, callback, *callback_args)
            except (NotImplementedError, RuntimeError, ValueError):
                # Not the main thread, or no signal support on this platform
                continue
            installed.append(signum)

        try:
            yield terminated
        finally:
            for signum in installed:
                loop.remove_signal_handler(signum)
