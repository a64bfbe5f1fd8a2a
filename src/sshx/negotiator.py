"""
Connection negotiation: turning an endpoint and credentials into a
trusted, authenticated connection.

Two strategies:

- Cooperative (dial): one attempt offering every credential, caller's
  static credentials first and agent credentials after. The transport
  decides which one the server accepts.
- Exploratory (probe / test): one isolated attempt per credential, in
  order, stopping at the first that works. This is the only way to learn
  which credential works, since a rejected key and a failed handshake look
  alike from outside a single attempt.

Usage:
    negotiator = ConnectionNegotiator(env=EnvironmentSnapshot.capture())
    endpoint = parse("deploy@example.com")
    async with await negotiator.dial(endpoint, load_key("~/.ssh/id_ed25519")) as conn:
        print(await CommandRunner().run(conn, "uptime"))
"""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Awaitable, Callable, Sequence, TypeVar

from sshx.address import Endpoint, parse
from sshx.credentials import (
    AgentSource,
    Credential,
    CredentialSource,
    StaticSource,
    collect_credentials,
    describe_credential,
)
from sshx.environment import EnvironmentSnapshot
from sshx.errors import (
    AuthenticationRejected,
    ErrorContext,
    NoValidCredential,
    SSHError,
    TrustStoreUnavailable,
)
from sshx.events import EventEmitter, EventType
from sshx.transport import AsyncSSHDialer, Connection, ConnectionConfig, Dialer
from sshx.trust import HostTrustStore, TrustMode

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 30.0

T = TypeVar("T")
R = TypeVar("R")


async def first_success(
    candidates: Sequence[T],
    attempt: Callable[[T], Awaitable[R]],
) -> tuple[T, R] | None:
    """
    Try candidates strictly in order and return the first that works.

    A candidate fails by raising AuthenticationRejected; any other error
    ends the search and propagates.

    Returns:
        (candidate, result) of the first success, or None if all failed
    """
    for candidate in candidates:
        try:
            result = await attempt(candidate)
        except AuthenticationRejected:
            continue
        return candidate, result
    return None


class ConnectionNegotiator:
    """
    Builds connection configurations and runs the authentication strategies.

    Args:
        env: Ambient process values (agent socket, known_hosts location)
        trust_store: Host trust store; loaded from env's known_hosts if None
        dialer: Transport to connect with; asyncssh if None
        connect_timeout: Seconds allowed per dial (None = no limit)
        require_trust_store: Refuse to connect when known_hosts could not be
                             loaded instead of accepting every host key
        emitter: Event sink for CONNECT/AUTH/ERROR events
    """

    def __init__(
        self,
        env: EnvironmentSnapshot | None = None,
        trust_store: HostTrustStore | None = None,
        dialer: Dialer | None = None,
        connect_timeout: float | None = DEFAULT_CONNECT_TIMEOUT,
        require_trust_store: bool = False,
        emitter: EventEmitter | None = None,
    ) -> None:
        assert connect_timeout is None or connect_timeout > 0, \
            f"connect_timeout must be positive, got {connect_timeout}"
        self._env = env or EnvironmentSnapshot.capture()
        self._emitter = emitter or EventEmitter()
        self._trust_store = trust_store or HostTrustStore.load(
            self._env.known_hosts_path, emitter=self._emitter,
        )
        self._dialer = dialer or AsyncSSHDialer()
        self._connect_timeout = connect_timeout
        self._require_trust_store = require_trust_store

    @property
    def trust_store(self) -> HostTrustStore:
        return self._trust_store

    @property
    def agent_source(self) -> AgentSource:
        """The agent contributor for this negotiator's environment."""
        return AgentSource(self._env.agent_socket)

    def configure(
        self,
        endpoint: Endpoint,
        credentials: Sequence[Credential] = (),
    ) -> ConnectionConfig:
        """
        Build the configuration for one connection attempt.

        Raises:
            TrustStoreUnavailable: known_hosts is unavailable and
                                   require_trust_store was set
        """
        if self._trust_store.mode == TrustMode.INSECURE:
            if self._require_trust_store:
                raise TrustStoreUnavailable(
                    "known_hosts could not be loaded; refusing to connect without "
                    "host key verification",
                    context=ErrorContext(host=endpoint.host, port=endpoint.port),
                )
            logger.warning("Connecting to %s without host key verification", endpoint.host)

        return ConnectionConfig(
            user=endpoint.user,
            host_key_verifier=self._trust_store.verify,
            credentials=tuple(credentials),
            host_key_algorithms=tuple(
                self._trust_store.host_key_algorithms(endpoint.host, endpoint.port)
            ),
            connect_timeout=self._connect_timeout,
        )

    def sources(self, static: Sequence[Credential]) -> list[CredentialSource]:
        """Ordered sources: each static credential, then the agent."""
        sources: list[CredentialSource] = [StaticSource(c) for c in static]
        sources.append(self.agent_source)
        return sources

    async def candidates(self, static: Sequence[Credential]) -> list[Credential]:
        """Static credentials followed by whatever the agent offers."""
        return await collect_credentials(self.sources(static))

    async def dial(self, endpoint: Endpoint, *static: Credential) -> Connection:
        """
        Connect cooperatively: one attempt offering every credential.

        Raises:
            NoReachablePeer: The host could not be reached
            AuthenticationRejected: Every credential was refused
            HostKeyMismatch: The host's key changed
        """
        credentials = await self.candidates(static)
        config = self.configure(endpoint, credentials)
        return await self._attempt(endpoint, config, "cooperative")

    async def probe(
        self,
        endpoint: Endpoint,
        *static: Credential,
    ) -> tuple[Credential, Connection]:
        """
        Connect exploratively, one credential per attempt.

        Returns:
            (credential, connection) for the first credential that works

        Raises:
            NoValidCredential: Every candidate was refused (or none existed)
            NoReachablePeer: The host could not be reached
            HostKeyMismatch: The host's key changed
        """
        candidates = await self.candidates(static)
        attempts = 0

        async def attempt(credential: Credential) -> Connection:
            nonlocal attempts
            attempts += 1
            config = self.configure(endpoint, [credential])
            return await self._attempt(endpoint, config, describe_credential(credential))

        found = await first_success(candidates, attempt)
        if found is None:
            self._emitter.emit(
                EventType.ERROR,
                error_type="NoValidCredential",
                host=endpoint.host,
                port=endpoint.port,
                attempts=attempts,
            )
            raise NoValidCredential(
                "ssh: no valid signers",
                attempts=attempts,
                context=ErrorContext(
                    host=endpoint.host,
                    port=endpoint.port,
                    username=endpoint.user,
                ),
            )

        credential, connection = found
        logger.info("Credential %s accepted by %s", describe_credential(credential), endpoint)
        return credential, connection

    async def test(self, endpoint: Endpoint, *static: Credential) -> Credential:
        """
        Check connectivity and return the first credential that works.

        The connection used for the check is closed before returning.
        """
        credential, connection = await self.probe(endpoint, *static)
        await connection.close()
        return credential

    async def _attempt(
        self,
        endpoint: Endpoint,
        config: ConnectionConfig,
        label: str,
    ) -> Connection:
        connect_data = {
            "host": endpoint.host,
            "port": endpoint.port,
            "username": endpoint.user,
        }
        self._emitter.emit(EventType.CONNECT, status="initiating", **connect_data)
        start_ms = time.time() * 1000

        try:
            connection = await self._dialer.dial(endpoint, config)
        except AuthenticationRejected as e:
            logger.debug("%s rejected credentials (%s): %s", endpoint, label, e)
            self._emitter.emit(
                EventType.AUTH,
                status="failed",
                credential=label,
                credentials_offered=len(config.credentials),
                duration_ms=(time.time() * 1000) - start_ms,
                **connect_data,
            )
            raise
        except SSHError as e:
            self._emitter.emit(EventType.ERROR, **e.to_dict())
            raise

        self._emitter.emit(
            EventType.AUTH,
            status="success",
            credential=label,
            credentials_offered=len(config.credentials),
            duration_ms=(time.time() * 1000) - start_ms,
            **connect_data,
        )
        self._emitter.emit(EventType.CONNECT, status="connected", **connect_data)
        return connection


async def connect(
    address: str,
    *static: Credential,
    env: EnvironmentSnapshot | None = None,
    known_hosts: Path | str | None = None,
    connect_timeout: float | None = DEFAULT_CONNECT_TIMEOUT,
    emitter: EventEmitter | None = None,
) -> Connection:
    """
    Parse a [user@]host[:port] address and connect cooperatively.

    Usage:
        async with await connect("vagrant@127.0.0.1:2222") as conn:
            await CommandRunner().exec(conn, "ls -al")
    """
    env = env or EnvironmentSnapshot.capture()
    trust_store = None
    if known_hosts is not None:
        trust_store = HostTrustStore.load(Path(known_hosts).expanduser(), emitter=emitter)
    negotiator = ConnectionNegotiator(
        env=env,
        trust_store=trust_store,
        connect_timeout=connect_timeout,
        emitter=emitter,
    )
    return await negotiator.dial(parse(address, env), *static)

