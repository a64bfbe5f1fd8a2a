"""
Pytest fixtures for sshx tests.

Provides:
- In-memory transport (FakeDialer / FakeConnection / FakeSession) that
  records dials, pty requests and commands
- Environment snapshot and known_hosts fixtures rooted in tmp_path
- Event capture fixture for asserting event sequences
- Host and client keys generated with asyncssh
- FakeTerminal: tty-like terminal that records raw mode entry and exit
- SSHTestServer: in-process asyncssh server for end-to-end tests
"""
from __future__ import annotations

import io
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncGenerator, Awaitable, Callable, Iterator

import asyncssh
import pytest

from sshx.address import Endpoint
from sshx.credentials import describe_credential
from sshx.environment import EnvironmentSnapshot
from sshx.errors import AuthenticationRejected, ErrorContext, TerminalUnavailable
from sshx.events import EventCollector, EventEmitter
from sshx.shell import LocalTerminal
from sshx.transport import Connection, ConnectionConfig, Dialer, Session, byte_stream


@dataclass
class Response:
    """Scripted outcome of one remote command."""
    status: int = 0
    stdout: bytes = b""
    stderr: bytes = b""
    error: BaseException | None = None
    on_run: Callable[["FakeSession"], Awaitable[None]] | None = None


def _write(stream: Any, data: bytes) -> None:
    # Same conversion the asyncssh session applies: bytes only
    target = byte_stream(stream)
    if target is asyncssh.DEVNULL or not data:
        return
    target.write(data)
    target.flush()


class FakeSession(Session):
    """Session that replays a Response and records what was asked of it."""

    def __init__(self, connection: "FakeConnection") -> None:
        self.connection = connection
        self.pty: tuple[str, int, int] | None = None
        self.command: str | None = None
        self.resizes: list[tuple[int, int]] = []
        self.closed = False

    async def request_pty(self, term_type: str, width: int, height: int) -> None:
        if self.connection.pty_error is not None:
            raise self.connection.pty_error
        self.pty = (term_type, width, height)

    async def run(self, command, *, stdin=None, stdout=None, stderr=None) -> int:
        self.command = command
        response = self.connection.responses.get(command, self.connection.default)
        _write(stdout, response.stdout)
        _write(stderr, response.stderr)
        if response.on_run is not None:
            await response.on_run(self)
        if response.error is not None:
            raise response.error
        return response.status

    def resize(self, width: int, height: int) -> None:
        self.resizes.append((width, height))

    async def close(self) -> None:
        self.closed = True


class FakeConnection(Connection):
    """Connection whose sessions answer from a command -> Response table."""

    def __init__(
        self,
        responses: dict[str, Response] | None = None,
        default: Response | None = None,
        open_error: BaseException | None = None,
        pty_error: BaseException | None = None,
    ) -> None:
        self.responses = responses or {}
        self.default = default or Response()
        self.open_error = open_error
        self.pty_error = pty_error
        self.sessions: list[FakeSession] = []
        self.closed = False

    async def open_session(self) -> FakeSession:
        if self.open_error is not None:
            raise self.open_error
        session = FakeSession(self)
        self.sessions.append(session)
        return session

    async def close(self) -> None:
        self.closed = True


@dataclass
class Dial:
    """One recorded dial."""
    endpoint: Endpoint
    config: ConnectionConfig
    credentials: list[str] = field(default_factory=list)


class FakeDialer(Dialer):
    """
    Dialer that runs the host key check and accepts chosen credentials.

    Args:
        host_key: Key the fake server presents (None skips the check)
        accepted: Fingerprints (describe_credential) the server accepts
        error: Raised from every dial instead of connecting
        default: Response for every command on accepted connections
    """

    def __init__(
        self,
        host_key: asyncssh.SSHKey | None = None,
        accepted: set[str] | None = None,
        error: BaseException | None = None,
        default: Response | None = None,
    ) -> None:
        self.host_key = host_key
        self.default = default
        self.accepted = accepted or set()
        self.error = error
        self.dials: list[Dial] = []
        self.connections: list[FakeConnection] = []

    async def dial(self, endpoint: Endpoint, config: ConnectionConfig) -> FakeConnection:
        offered = [describe_credential(c) for c in config.credentials]
        self.dials.append(Dial(endpoint, config, offered))

        if self.error is not None:
            raise self.error

        if self.host_key is not None:
            config.host_key_verifier(
                endpoint.host, endpoint.port, ("192.0.2.10", endpoint.port), self.host_key,
            )

        if not any(fp in self.accepted for fp in offered):
            raise AuthenticationRejected(
                "Authentication failed: Permission denied",
                context=ErrorContext(host=endpoint.host, port=endpoint.port),
            )

        connection = FakeConnection(default=self.default)
        self.connections.append(connection)
        return connection


class FakeTerminal(LocalTerminal):
    """A tty-like terminal that records raw mode entry and exit."""

    def __init__(self, tty: bool = True, size: tuple[int, int] = (120, 40)) -> None:
        super().__init__(io.BytesIO(), io.BytesIO(), io.BytesIO())
        self._tty = tty
        self._size = size
        self.raw_entered = 0
        self.restored = 0

    def is_tty(self) -> bool:
        return self._tty

    def size(self) -> tuple[int, int]:
        return self._size

    @contextmanager
    def raw(self) -> Iterator[None]:
        if not self._tty:
            raise TerminalUnavailable("not a tty")
        self.raw_entered += 1
        try:
            yield
        finally:
            self.restored += 1


class _TestServerProtocol(asyncssh.SSHServer):
    """Public key auth against SSHTestServer.authorized."""

    def __init__(self, server: "SSHTestServer") -> None:
        self._server = server

    def begin_auth(self, username: str) -> bool:
        return True

    def public_key_auth_supported(self) -> bool:
        return True

    def validate_public_key(self, username: str, key: asyncssh.SSHKey) -> bool:
        return key.public_data in self._server.authorized


class SSHTestServer:
    """
    In-process asyncssh server on 127.0.0.1.

    "echo <text>" prints its argument; other commands answer from replies as
    (stdout, stderr, status), where a string status is an exit signal name.
    Commands and pty requests are recorded.
    """

    def __init__(self, host_key: asyncssh.SSHKey) -> None:
        self.host_key = host_key
        self.authorized: set[bytes] = set()
        self.replies: dict[str, tuple[str, str, int | str]] = {}
        self.commands: list[str] = []
        self.ptys: list[tuple[str, int, int]] = []
        self.port = 0
        self._server: asyncssh.SSHAcceptor | None = None

    def authorize(self, *keys: asyncssh.SSHKey) -> None:
        self.authorized.update(key.public_data for key in keys)

    async def start(self) -> None:
        self._server = await asyncssh.create_server(
            lambda: _TestServerProtocol(self),
            "127.0.0.1",
            0,
            server_host_keys=[self.host_key],
            process_factory=self._handle,
        )
        self.port = self._server.get_port()

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def _handle(self, process: asyncssh.SSHServerProcess) -> None:
        command = process.command or ""
        self.commands.append(command)
        term_type = process.get_terminal_type()
        if term_type is not None:
            width, height, _, _ = process.get_terminal_size()
            self.ptys.append((term_type, width, height))

        if command.startswith("echo "):
            stdout, stderr, status = command[5:].strip("'") + "\n", "", 0
        else:
            stdout, stderr, status = self.replies.get(command, ("", "", 0))

        if stdout:
            process.stdout.write(stdout)
        if stderr:
            process.stderr.write(stderr)
        if isinstance(status, str):
            process.exit_with_signal(status)
        else:
            process.exit(status)


def make_key(algorithm: str = "ssh-ed25519") -> asyncssh.SSHKey:
    """Generate a throwaway private key."""
    return asyncssh.generate_private_key(algorithm)


@pytest.fixture
def env(tmp_path: Path) -> EnvironmentSnapshot:
    """Snapshot for user alice with a private home directory."""
    return EnvironmentSnapshot(user="alice", home=tmp_path, agent_socket=None, term=None)


@pytest.fixture
def known_hosts_path(tmp_path: Path) -> Path:
    """Empty known_hosts at the env fixture's default location."""
    ssh_dir = tmp_path / ".ssh"
    ssh_dir.mkdir(exist_ok=True)
    path = ssh_dir / "known_hosts"
    path.write_text("")
    return path


@pytest.fixture
def host_key() -> asyncssh.SSHKey:
    """Key presented by the fake server."""
    return make_key()


@pytest.fixture
def client_keys() -> list[asyncssh.SSHKey]:
    """Three distinct client keys, A, B and C."""
    return [make_key() for _ in range(3)]


@pytest.fixture
def event_collector() -> EventCollector:
    """Fresh event collector for capturing events."""
    return EventCollector()


@pytest.fixture
def emitter(event_collector: EventCollector) -> EventEmitter:
    """Emitter feeding the event_collector fixture."""
    return EventEmitter(collector=event_collector)


@pytest.fixture
async def ssh_server(host_key: asyncssh.SSHKey) -> AsyncGenerator[SSHTestServer, None]:
    """Running SSHTestServer presenting host_key; no keys authorized yet."""
    server = SSHTestServer(host_key)
    await server.start()
    try:
        yield server
    finally:
        await server.stop()
