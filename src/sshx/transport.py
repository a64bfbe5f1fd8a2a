"""
The seam between sshx and the SSH transport library.

Provides:
- ConnectionConfig: Everything one connection attempt needs
- Dialer / Connection / Session: The capability set sshx relies on
  (dial, open-session, request-pty, run, close)
- AsyncSSHDialer: asyncssh-backed implementation

Everything above this module talks to the abstract classes, so tests can
substitute an in-memory transport.
"""
from __future__ import annotations

import asyncio
import codecs
import io
import logging
import signal
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import IO, Any, Callable

import asyncssh

from sshx.address import Endpoint
from sshx.credentials import Credential
from sshx.errors import (
    AuthenticationError,
    AuthenticationRejected,
    ErrorContext,
    HostKeyMismatch,
    NoReachablePeer,
    PtyAllocationFailed,
    SessionEndedUnexpectedly,
    SessionOpenFailed,
    SSHError,
)
from sshx.trust import TrustDecision

logger = logging.getLogger(__name__)

# Called as verifier(host, port, remote_address, key); raises HostKeyMismatch
HostKeyVerifier = Callable[[str, int, "tuple[str, int] | None", asyncssh.SSHKey], TrustDecision]

# A redirect target for a remote stream: a file object, or None to discard
Stream = IO[Any] | None


@dataclass(frozen=True)
class ConnectionConfig:
    """
    Configuration for one connection attempt.

    Built fresh per attempt and never mutated after construction.

    Attributes:
        user: Remote login name
        host_key_verifier: Callback consulted during key exchange
        credentials: Credentials to offer, in order
        host_key_algorithms: Host key algorithms to ask for (empty = default)
        connect_timeout: Seconds allowed for dial and handshake (None = no limit)
    """
    user: str
    host_key_verifier: HostKeyVerifier
    credentials: tuple[Credential, ...] = field(default_factory=tuple)
    host_key_algorithms: tuple[str, ...] = field(default_factory=tuple)
    connect_timeout: float | None = 30.0


class Session(ABC):
    """
    A single channel on a Connection.

    Usage:
        async with await connection.open_session() as session:
            status = await session.run("uptime", stdout=sys.stdout)
    """

    @abstractmethod
    async def request_pty(self, term_type: str, width: int, height: int) -> None:
        """Ask for a pseudo-terminal for the next run()."""

    @abstractmethod
    async def run(
        self,
        command: str,
        *,
        stdin: Stream = None,
        stdout: Stream = None,
        stderr: Stream = None,
    ) -> int:
        """
        Run command to completion with the given stream redirects.

        Returns:
            The remote exit status; a remote exit signal N reports 128 + N

        Raises:
            SessionOpenFailed: The channel could not be opened
            PtyAllocationFailed: The requested pty was refused
            SessionEndedUnexpectedly: The channel closed without an exit status
        """

    def resize(self, width: int, height: int) -> None:
        """Relay new terminal geometry to the remote pty."""

    @abstractmethod
    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""

    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


class Connection(ABC):
    """An authenticated connection. Closing it ends every session on it."""

    @abstractmethod
    async def open_session(self) -> Session:
        """Open a new session."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection."""

    async def __aenter__(self) -> "Connection":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


class Dialer(ABC):
    """Opens authenticated connections."""

    @abstractmethod
    async def dial(self, endpoint: Endpoint, config: ConnectionConfig) -> Connection:
        """
        Connect to endpoint and authenticate.

        Raises:
            NoReachablePeer: Network-level failure
            AuthenticationRejected: Every credential was refused
            HostKeyMismatch: The host key verifier rejected the server
        """


# ---------------------------------------------------------------------------
# asyncssh implementation
# ---------------------------------------------------------------------------

def exit_status_of(completed: Any) -> int:
    """
    Translate an asyncssh completed process into a numeric exit status.

    Exit signals follow the shell convention of 128 + signal number, so a
    shell killed by SIGINT reports 130.

    Raises:
        SessionEndedUnexpectedly: No exit status and no exit signal
    """
    if completed.exit_signal:
        name = completed.exit_signal[0]
        try:
            signum = signal.Signals[f"SIG{name}"].value
        except KeyError:
            signum = 0
        return 128 + signum

    status = completed.exit_status
    if status is None or status < 0:
        raise SessionEndedUnexpectedly("ssh: session ended without an exit status")
    return status


def supported_host_key_algorithms(algorithms: tuple[str, ...]) -> list[str]:
    """The subset of algorithms this asyncssh build can verify."""
    from asyncssh.public_key import get_public_key_algs

    supported = {alg.decode("ascii") for alg in get_public_key_algs()}
    return [alg for alg in algorithms if alg in supported]


def map_dial_error(exc: BaseException, ctx: ErrorContext) -> SSHError:
    """Map asyncssh and socket exceptions to the sshx taxonomy."""
    ctx.original_error = str(exc)

    if isinstance(exc, SSHError):
        return exc

    if isinstance(exc, asyncssh.PermissionDenied):
        return AuthenticationRejected(f"Authentication failed: {exc}", context=ctx)

    if isinstance(exc, asyncssh.HostKeyNotVerifiable):
        return AuthenticationError(f"Host key verification failed: {exc}", context=ctx)

    if isinstance(exc, asyncssh.KeyExchangeFailed):
        return NoReachablePeer(f"Key exchange failed: {exc}", context=ctx)

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return NoReachablePeer(f"Connection timed out: {exc}", context=ctx)

    if isinstance(exc, asyncssh.ConnectionLost):
        return NoReachablePeer(f"Connection lost: {exc}", context=ctx)

    if isinstance(exc, OSError):
        error_str = str(exc).lower()
        if "connection refused" in error_str:
            return NoReachablePeer(f"Connection refused: {exc}", context=ctx)
        if "unreachable" in error_str or "no route" in error_str:
            return NoReachablePeer(f"Host unreachable: {exc}", context=ctx)
        return NoReachablePeer(f"Connection failed: {exc}", context=ctx)

    return NoReachablePeer(f"Connection failed: {exc}", context=ctx)


class _TextStreamBytes:
    """Bytes view of a text stream that has no binary buffer."""

    def __init__(self, stream: IO[str]) -> None:
        self._stream = stream
        self._decoder = codecs.getincrementaldecoder("utf-8")("replace")

    def fileno(self) -> int:
        # asyncssh treats objects without a descriptor as plain files
        raise io.UnsupportedOperation("fileno")

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(size).encode("utf-8")

    def write(self, data: bytes) -> int:
        self._stream.write(self._decoder.decode(data))
        return len(data)

    def flush(self) -> None:
        self._stream.flush()

    def close(self) -> None:
        # Flush a trailing partial character; the wrapped stream stays open
        self._stream.write(self._decoder.decode(b"", final=True))


def byte_stream(stream: Stream) -> Any:
    """
    The binary form of a redirect target.

    Text streams are unwrapped to their buffer, or adapted when they have
    none (io.StringIO). None becomes asyncssh.DEVNULL.
    """
    if stream is None:
        return asyncssh.DEVNULL
    if isinstance(stream, io.TextIOBase):
        buffer = getattr(stream, "buffer", None)
        if buffer is not None:
            stream.flush()
            return buffer
        return _TextStreamBytes(stream)
    return stream


class _VerifyingClient(asyncssh.SSHClient):
    """
    asyncssh client that defers host key checks to a HostKeyVerifier.

    asyncssh only lets the callback accept or reject, so a rejection is
    remembered here and re-raised by the dialer once asyncssh gives up.
    """

    def __init__(self, endpoint: Endpoint, verifier: HostKeyVerifier) -> None:
        super().__init__()
        self._endpoint = endpoint
        self._verifier = verifier
        self.rejection: HostKeyMismatch | None = None

    def validate_host_public_key(
        self,
        host: str,
        addr: tuple[str, int],
        port: int,
        key: asyncssh.SSHKey,
    ) -> bool:
        try:
            self._verifier(self._endpoint.host, self._endpoint.port, addr, key)
        except HostKeyMismatch as e:
            self.rejection = e
            return False
        return True


class AsyncSSHSession(Session):
    """Session backed by an asyncssh client process."""

    def __init__(self, conn: asyncssh.SSHClientConnection) -> None:
        self._conn = conn
        self._term_type: str | None = None
        self._term_size: tuple[int, int] | None = None
        self._process: asyncssh.SSHClientProcess | None = None

    async def request_pty(self, term_type: str, width: int, height: int) -> None:
        # asyncssh sends pty-req when the process is created
        assert self._process is None, "pty must be requested before run()"
        self._term_type = term_type
        self._term_size = (width, height)

    async def run(
        self,
        command: str,
        *,
        stdin: Stream = None,
        stdout: Stream = None,
        stderr: Stream = None,
    ) -> int:
        assert self._process is None, "A session runs a single command"

        options: dict[str, Any] = {
            "stdin": byte_stream(stdin),
            "stdout": byte_stream(stdout),
            "stderr": byte_stream(stderr),
            # Local streams belong to the caller and stay open
            "recv_eof": False,
            "encoding": None,
        }
        if self._term_type is not None:
            options["term_type"] = self._term_type
            options["term_size"] = self._term_size

        try:
            self._process = await self._conn.create_process(command, **options)
        except asyncssh.ChannelOpenError as e:
            if self._term_type is not None and "pty" in str(e.reason).lower():
                raise PtyAllocationFailed(f"ssh: could not request pty: {e.reason}") from e
            raise SessionOpenFailed(f"ssh: could not create session: {e.reason}") from e
        except (asyncssh.Error, OSError) as e:
            raise SessionEndedUnexpectedly(f"ssh: session ended unexpectedly: {e}") from e

        try:
            completed = await self._process.wait()
        except (asyncssh.Error, OSError) as e:
            raise SessionEndedUnexpectedly(f"ssh: session ended unexpectedly: {e}") from e

        return exit_status_of(completed)

    def resize(self, width: int, height: int) -> None:
        if self._process is not None and self._term_type is not None:
            self._process.change_terminal_size(width, height)

    async def close(self) -> None:
        if self._process is not None:
            self._process.close()
            await self._process.wait_closed()


class AsyncSSHConnection(Connection):
    """Connection backed by an asyncssh client connection."""

    def __init__(self, conn: asyncssh.SSHClientConnection) -> None:
        self._conn = conn

    @property
    def raw(self) -> asyncssh.SSHClientConnection:
        """The underlying asyncssh connection."""
        return self._conn

    async def open_session(self) -> Session:
        return AsyncSSHSession(self._conn)

    async def close(self) -> None:
        self._conn.close()
        await self._conn.wait_closed()


class AsyncSSHDialer(Dialer):
    """
    Dials with asyncssh, offering exactly the configured credentials.

    asyncssh's own defaults (ssh config files, agent lookup, default key
    files, password prompts, its own known_hosts check) are all switched
    off so that one ConnectionConfig fully describes an attempt.
    """

    async def dial(self, endpoint: Endpoint, config: ConnectionConfig) -> Connection:
        client: _VerifyingClient | None = None

        def client_factory() -> _VerifyingClient:
            nonlocal client
            client = _VerifyingClient(endpoint, config.host_key_verifier)
            return client

        options: dict[str, Any] = {
            "host": endpoint.host,
            "port": endpoint.port,
            "username": config.user,
            "client_factory": client_factory,
            # An empty (not None) known_hosts routes every key to the client callback
            "known_hosts": asyncssh.import_known_hosts(""),
            "client_keys": list(config.credentials),
            "agent_path": None,
            "password": None,
            "preferred_auth": "publickey",
            "config": None,
            "connect_timeout": config.connect_timeout,
        }
        algorithms = supported_host_key_algorithms(config.host_key_algorithms)
        if algorithms:
            options["server_host_key_algs"] = algorithms

        ctx = ErrorContext(host=endpoint.host, port=endpoint.port, username=config.user)
        try:
            conn = await asyncssh.connect(**options)
        except asyncssh.HostKeyNotVerifiable as e:
            if client is not None and client.rejection is not None:
                raise client.rejection from e
            raise map_dial_error(e, ctx) from e
        except (asyncssh.Error, OSError, asyncio.TimeoutError) as e:
            raise map_dial_error(e, ctx) from e

        return AsyncSSHConnection(conn)
