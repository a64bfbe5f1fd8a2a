"""
Tests for the error taxonomy and its structured context.
"""
from __future__ import annotations

import pytest

from sshx.errors import (
    AuthenticationError,
    AuthenticationRejected,
    ErrorContext,
    HostKeyMismatch,
    InputError,
    InvalidDirectory,
    KeyLoadError,
    MalformedAddress,
    NoReachablePeer,
    NoValidCredential,
    PtyAllocationFailed,
    RemoteExitNonZero,
    SessionError,
    SSHConnectionError,
    SSHError,
    TerminalError,
    TerminalRestoreFailed,
    TrustStoreUnavailable,
)


class TestHierarchy:
    """Each error sits under the base callers catch."""

    @pytest.mark.parametrize("error_class, base", [
        (MalformedAddress, InputError),
        (InvalidDirectory, InputError),
        (NoReachablePeer, SSHConnectionError),
        (AuthenticationRejected, AuthenticationError),
        (NoValidCredential, AuthenticationError),
        (HostKeyMismatch, AuthenticationError),
        (KeyLoadError, AuthenticationError),
        (TrustStoreUnavailable, SSHError),
        (PtyAllocationFailed, SessionError),
        (RemoteExitNonZero, SessionError),
        (TerminalRestoreFailed, TerminalError),
    ])
    def test_base(self, error_class: type, base: type) -> None:
        assert issubclass(error_class, base)
        assert issubclass(error_class, SSHError)


class TestContext:
    """ErrorContext and to_dict."""

    def test_none_values_omitted(self) -> None:
        ctx = ErrorContext(host="example.com", port=22)
        assert ctx.to_dict() == {"host": "example.com", "port": 22}

    def test_extra_is_flattened(self) -> None:
        err = RemoteExitNonZero(2, ErrorContext(host="example.com"))
        data = err.to_dict()
        assert data["error_type"] == "RemoteExitNonZero"
        assert data["message"] == "ssh: exit status 2"
        assert data["exit_status"] == 2
        assert data["host"] == "example.com"

    def test_extra_collision_rejected(self) -> None:
        ctx = ErrorContext(extra={"host": "x"})
        with pytest.raises(AssertionError):
            ctx.to_dict()

    def test_invalid_port_rejected(self) -> None:
        with pytest.raises(AssertionError):
            ErrorContext(port=70000)

    def test_empty_message_rejected(self) -> None:
        with pytest.raises(AssertionError):
            SSHError("  ")


class TestMessages:
    """User-facing messages."""

    def test_invalid_directory(self) -> None:
        assert str(InvalidDirectory("a//b")) == "ssh: invalid directory 'a//b'"

    def test_key_load_error_attributes(self) -> None:
        err = KeyLoadError("gone", key_path="/k", reason="file_not_found")
        assert err.reason == "file_not_found"
        assert err.key_path == "/k"
        assert err.to_dict()["reason"] == "file_not_found"

    def test_no_valid_credential_attempts(self) -> None:
        err = NoValidCredential("ssh: no valid signers", attempts=2)
        assert err.attempts == 2
        assert err.to_dict()["attempts"] == 2

    def test_revoked_host_key(self) -> None:
        err = HostKeyMismatch("example.com", 22, "SHA256:abc", [], revoked=True)
        assert "revoked" in str(err)
        assert err.to_dict()["server_fingerprint"] == "SHA256:abc"
