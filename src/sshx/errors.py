"""
Error taxonomy for sshx with structured context for logging.

Every failure carries an ErrorContext so it can be written to a JSONL
event or log line without string parsing.

Error hierarchy:
- SSHError (base)
  - InputError
    - MalformedAddress
    - IdentityResolutionFailed
    - InvalidDirectory
  - SSHConnectionError
    - NoReachablePeer
  - AuthenticationError
    - AuthenticationRejected (every offered credential refused)
    - NoValidCredential (exploratory auth found no working credential)
    - HostKeyMismatch (known host presented a different key)
    - KeyLoadError
  - TrustStoreUnavailable
  - SessionError
    - SessionOpenFailed
    - PtyAllocationFailed
    - RemoteExitNonZero
    - SessionEndedUnexpectedly
  - TerminalError
    - TerminalUnavailable
    - TerminalRestoreFailed
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

_BANNER = "@" * 59


@dataclass
class ErrorContext:
    """
    Where and with what a failure happened.

    Attributes:
        host, port, username: The endpoint being dialled
        credential: Description of the credential involved
        key_path: Private key file involved
        original_error: Text of the underlying library or OS error
        extra: Error-specific fields, flattened into to_dict()
    """
    host: str | None = None
    port: int | None = None
    username: str | None = None
    credential: str | None = None
    key_path: str | None = None
    original_error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        assert self.port is None or (isinstance(self.port, int) and 0 < self.port < 65536), \
            f"port must be in 1-65535, got {self.port!r}"

    def to_dict(self) -> dict[str, Any]:
        """Set fields plus extra, as one flat dictionary."""
        result = {
            name: value
            for name, value in (
                ("host", self.host),
                ("port", self.port),
                ("username", self.username),
                ("credential", self.credential),
                ("key_path", self.key_path),
                ("original_error", self.original_error),
            )
            if value is not None
        }
        clashes = set(self.extra) & {
            "host", "port", "username", "credential", "key_path", "original_error",
        }
        assert not clashes, f"extra keys shadow context fields: {sorted(clashes)}"
        result.update(self.extra)
        return result


class SSHError(Exception):
    """Base exception for all sshx errors."""

    def __init__(self, message: str, context: ErrorContext | None = None) -> None:
        assert isinstance(message, str) and message.strip(), \
            f"message must be a non-empty string, got {message!r}"
        super().__init__(message)
        self.context = context if context is not None else ErrorContext()

    @property
    def error_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        """Error type, message and context for a JSONL record."""
        return {"error_type": self.error_type, "message": str(self), **self.context.to_dict()}


def _with_extra(context: ErrorContext | None, **extra: Any) -> ErrorContext:
    context = context if context is not None else ErrorContext()
    context.extra.update(extra)
    return context


# Input

class InputError(SSHError):
    """Base class for rejected caller input. Never retried."""


class MalformedAddress(InputError):
    """The address is not of the form [user@]host[:port]."""

    def __init__(self, address: str, reason: str, context: ErrorContext | None = None) -> None:
        self.address = address
        self.reason = reason
        super().__init__(
            f"ssh: invalid user@host[:port] {address!r}: {reason}",
            _with_extra(context, reason=reason),
        )


class IdentityResolutionFailed(InputError):
    """No user in the address and the current user could not be determined."""


class InvalidDirectory(InputError):
    """The working directory for a shell is not a well-formed path."""

    def __init__(self, directory: str, context: ErrorContext | None = None) -> None:
        self.directory = directory
        super().__init__(f"ssh: invalid directory {directory!r}", context)


# Connection

class SSHConnectionError(SSHError):
    """Base class for failures before a connection exists."""


class NoReachablePeer(SSHConnectionError):
    """
    The remote host could not be reached.

    Covers refused connections, timeouts, DNS failures and connections
    dropped before authentication finished.
    """


# Authentication and host identity

class AuthenticationError(SSHError):
    """Base class for authentication and host identity errors."""


class AuthenticationRejected(AuthenticationError):
    """The server refused every credential offered in one attempt."""


class NoValidCredential(AuthenticationError):
    """
    Exploratory authentication tried every candidate and none worked.

    Distinct from NoReachablePeer: the host answered, the credentials
    did not.
    """

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        context: ErrorContext | None = None,
    ) -> None:
        self.attempts = attempts
        super().__init__(message, _with_extra(context, attempts=attempts))


class HostKeyMismatch(AuthenticationError):
    """
    A known host presented a key that known_hosts does not vouch for,
    or one that known_hosts marks as revoked.

    Fatal: never retried and never downgraded to a warning.
    """

    def __init__(
        self,
        host: str,
        port: int,
        server_fingerprint: str,
        stored_fingerprints: list[tuple[str, str]],
        revoked: bool = False,
        context: ErrorContext | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.server_fingerprint = server_fingerprint
        self.stored_fingerprints = stored_fingerprints
        self.revoked = revoked
        if context is None:
            context = ErrorContext(host=host, port=port)
        super().__init__(
            self._describe(),
            _with_extra(context, server_fingerprint=server_fingerprint, revoked=revoked),
        )

    def _describe(self) -> str:
        if self.revoked:
            return (
                f"ssh: the host key for {self.host} is marked as revoked in known_hosts\n"
                f"Server's key fingerprint: {self.server_fingerprint}"
            )
        expected = "\n".join(
            f"  {key_type}: {fingerprint}" for key_type, fingerprint in self.stored_fingerprints
        )
        return "\n".join([
            _BANNER,
            "@    WARNING: REMOTE HOST IDENTIFICATION HAS CHANGED!     @",
            _BANNER,
            f"The host key for {self.host} (port {self.port}) does not match known_hosts.",
            f"Server presented: {self.server_fingerprint}",
            "known_hosts expects:",
            expected or "  (no usable entries)",
            "Someone could be intercepting this connection. If the server's key",
            "really changed, delete its old known_hosts entry and reconnect.",
        ])


class KeyLoadError(AuthenticationError):
    """
    A private key file could not be used.

    reason is one of: file_not_found, permission_denied, passphrase_required,
    wrong_passphrase, invalid_format, unknown.
    """

    def __init__(
        self,
        message: str,
        key_path: str | None = None,
        reason: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        self.key_path = key_path
        self.reason = reason
        context = context if context is not None else ErrorContext()
        context.key_path = key_path
        if reason is not None:
            context.extra["reason"] = reason
        super().__init__(message, context)


class TrustStoreUnavailable(SSHError):
    """known_hosts could not be loaded and insecure mode was refused."""


# Sessions

class SessionError(SSHError):
    """Base class for failures on an open connection."""


class SessionOpenFailed(SessionError):
    """The server refused to open a session channel."""


class PtyAllocationFailed(SessionError):
    """The server refused the pseudo-terminal request."""


class RemoteExitNonZero(SessionError):
    """The remote command exited with a non-zero status."""

    def __init__(self, status: int, context: ErrorContext | None = None) -> None:
        self.status = status
        super().__init__(f"ssh: exit status {status}", _with_extra(context, exit_status=status))


class SessionEndedUnexpectedly(SessionError):
    """The session ended without an exit status (e.g. connection drop)."""


# Local terminal

class TerminalError(SSHError):
    """Base class for local terminal failures."""


class TerminalUnavailable(TerminalError):
    """Raw mode cannot be entered: no tty, or another shell holds it."""


class TerminalRestoreFailed(TerminalError):
    """The saved terminal state could not be put back."""
