"""
Tests for the asyncssh transport adapter.

These cover the translation layer only; live-server coverage is in
test_end_to_end.py.
"""
from __future__ import annotations

import asyncio
import io
from types import SimpleNamespace

import asyncssh
import pytest

from sshx.address import Endpoint
from sshx.errors import (
    AuthenticationError,
    AuthenticationRejected,
    ErrorContext,
    HostKeyMismatch,
    NoReachablePeer,
    SessionEndedUnexpectedly,
)
from sshx.transport import (
    AsyncSSHDialer,
    ConnectionConfig,
    _VerifyingClient,
    byte_stream,
    exit_status_of,
    map_dial_error,
    supported_host_key_algorithms,
)
from sshx.trust import HostTrustStore, TrustDecision

from conftest import make_key


def completed(exit_status: int | None = 0, exit_signal=None) -> SimpleNamespace:
    return SimpleNamespace(exit_status=exit_status, exit_signal=exit_signal)


class TestExitStatus:
    """Exit statuses and signals."""

    def test_plain_status(self) -> None:
        assert exit_status_of(completed(0)) == 0
        assert exit_status_of(completed(42)) == 42

    def test_sigint_is_130(self) -> None:
        assert exit_status_of(completed(-1, ("INT", False, "", ""))) == 130

    def test_sigkill_is_137(self) -> None:
        assert exit_status_of(completed(-1, ("KILL", False, "", ""))) == 137

    def test_unknown_signal(self) -> None:
        assert exit_status_of(completed(-1, ("NOPE", False, "", ""))) == 128

    @pytest.mark.parametrize("status", [None, -1])
    def test_no_status(self, status: int | None) -> None:
        with pytest.raises(SessionEndedUnexpectedly):
            exit_status_of(completed(status))


class TestMapDialError:
    """asyncssh and socket errors map onto the sshx taxonomy."""

    def ctx(self) -> ErrorContext:
        return ErrorContext(host="example.com", port=22, username="alice")

    def test_permission_denied(self) -> None:
        err = map_dial_error(asyncssh.PermissionDenied("Permission denied"), self.ctx())
        assert isinstance(err, AuthenticationRejected)
        assert err.context.original_error == "Permission denied"

    def test_host_key_not_verifiable(self) -> None:
        err = map_dial_error(asyncssh.HostKeyNotVerifiable("no"), self.ctx())
        assert isinstance(err, AuthenticationError)
        assert not isinstance(err, AuthenticationRejected)

    @pytest.mark.parametrize("exc", [
        ConnectionRefusedError(111, "Connection refused"),
        OSError(113, "No route to host"),
        asyncio.TimeoutError(),
        asyncssh.ConnectionLost("reset"),
    ])
    def test_network_failures(self, exc: BaseException) -> None:
        err = map_dial_error(exc, self.ctx())
        assert isinstance(err, NoReachablePeer)
        assert err.context.host == "example.com"

    def test_sshx_errors_pass_through(self) -> None:
        original = NoReachablePeer("down")
        assert map_dial_error(original, self.ctx()) is original


class TestVerifyingClient:
    """Host key callback bridging."""

    def test_accepts(self, tmp_path) -> None:
        store = HostTrustStore.insecure()
        client = _VerifyingClient(Endpoint("alice", "example.com", 22), store.verify)
        assert client.validate_host_public_key("192.0.2.1", ("192.0.2.1", 22), 22, make_key())
        assert client.rejection is None

    def test_checks_dialled_name(self, tmp_path) -> None:
        seen = []

        def verifier(host, port, addr, key):
            seen.append((host, port, addr))
            return TrustDecision.TRUSTED

        client = _VerifyingClient(Endpoint("alice", "example.com", 2222), verifier)
        client.validate_host_public_key("192.0.2.1", ("192.0.2.1", 2222), 2222, make_key())
        assert seen == [("example.com", 2222, ("192.0.2.1", 2222))]

    def test_remembers_rejection(self) -> None:
        mismatch = HostKeyMismatch("example.com", 22, "SHA256:new", [("ssh-ed25519", "SHA256:old")])

        def verifier(host, port, addr, key):
            raise mismatch

        client = _VerifyingClient(Endpoint("alice", "example.com", 22), verifier)
        assert client.validate_host_public_key("example.com", ("192.0.2.1", 22), 22, make_key()) is False
        assert client.rejection is mismatch


class TestHostKeyAlgorithms:
    """Filtering known_hosts hints to what asyncssh supports."""

    def test_filters_unknown(self) -> None:
        assert supported_host_key_algorithms(("ssh-ed25519", "not-an-alg")) == ["ssh-ed25519"]

    def test_empty(self) -> None:
        assert supported_host_key_algorithms(()) == []


class TestAsyncSSHDialer:
    """Dial failures without a server."""

    @pytest.mark.asyncio
    async def test_refused(self, unused_tcp_port: int) -> None:
        config = ConnectionConfig(
            user="alice",
            host_key_verifier=HostTrustStore.insecure().verify,
            credentials=(make_key(),),
            connect_timeout=5.0,
        )
        with pytest.raises(NoReachablePeer) as exc_info:
            await AsyncSSHDialer().dial(Endpoint("alice", "127.0.0.1", unused_tcp_port), config)
        assert exc_info.value.context.port == unused_tcp_port


class TestByteStream:
    """Redirect targets handed to asyncssh are binary."""

    def test_none_is_devnull(self) -> None:
        assert byte_stream(None) is asyncssh.DEVNULL

    def test_binary_unchanged(self) -> None:
        stream = io.BytesIO()
        assert byte_stream(stream) is stream

    def test_text_wrapper_unwrapped(self) -> None:
        raw = io.BytesIO()
        wrapper = io.TextIOWrapper(raw, encoding="utf-8")
        assert byte_stream(wrapper) is raw

    def test_string_io_adapted(self) -> None:
        stream = io.StringIO()
        target = byte_stream(stream)
        data = "héllo\n".encode("utf-8")

        # A multi-byte character split across writes
        target.write(data[:2])
        target.write(data[2:])

        assert stream.getvalue() == "héllo\n"
        with pytest.raises(io.UnsupportedOperation):
            target.fileno()

    def test_string_io_read(self) -> None:
        target = byte_stream(io.StringIO("héllo"))
        assert target.read() == "héllo".encode("utf-8")
