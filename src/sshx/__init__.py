"""sshx: SSH connection negotiation, trust-on-first-use and remote sessions."""

__version__ = "0.1.0"

from sshx.address import DEFAULT_PORT, Endpoint, parse, split
from sshx.credentials import (
    AgentSource,
    Credential,
    CredentialSource,
    StaticSource,
    collect_credentials,
    describe_credential,
    load_key,
)
from sshx.environment import DEFAULT_TERM, EnvironmentSnapshot, get_known_hosts_path
from sshx.errors import (
    AuthenticationError,
    AuthenticationRejected,
    ErrorContext,
    HostKeyMismatch,
    IdentityResolutionFailed,
    InputError,
    InvalidDirectory,
    KeyLoadError,
    MalformedAddress,
    NoReachablePeer,
    NoValidCredential,
    PtyAllocationFailed,
    RemoteExitNonZero,
    SessionEndedUnexpectedly,
    SessionError,
    SessionOpenFailed,
    SSHConnectionError,
    SSHError,
    TerminalError,
    TerminalRestoreFailed,
    TerminalUnavailable,
    TrustStoreUnavailable,
)
from sshx.events import Event, EventCollector, EventEmitter, EventType
from sshx.negotiator import ConnectionNegotiator, connect, first_success
from sshx.runner import CommandRunner
from sshx.shell import InteractiveShell, LocalTerminal, ShellState, format_command
from sshx.transport import (
    AsyncSSHDialer,
    Connection,
    ConnectionConfig,
    Dialer,
    Session,
)
from sshx.trust import (
    HostTrustStore,
    TrustDecision,
    TrustMode,
    TrustRecord,
    get_key_fingerprint,
)

__all__ = [
    "__version__",
    # Address
    "DEFAULT_PORT",
    "Endpoint",
    "parse",
    "split",
    # Credentials
    "AgentSource",
    "Credential",
    "CredentialSource",
    "StaticSource",
    "collect_credentials",
    "describe_credential",
    "load_key",
    # Environment
    "DEFAULT_TERM",
    "EnvironmentSnapshot",
    "get_known_hosts_path",
    # Errors
    "AuthenticationError",
    "AuthenticationRejected",
    "ErrorContext",
    "HostKeyMismatch",
    "IdentityResolutionFailed",
    "InputError",
    "InvalidDirectory",
    "KeyLoadError",
    "MalformedAddress",
    "NoReachablePeer",
    "NoValidCredential",
    "PtyAllocationFailed",
    "RemoteExitNonZero",
    "SessionEndedUnexpectedly",
    "SessionError",
    "SessionOpenFailed",
    "SSHConnectionError",
    "SSHError",
    "TerminalError",
    "TerminalRestoreFailed",
    "TerminalUnavailable",
    "TrustStoreUnavailable",
    # Events
    "Event",
    "EventCollector",
    "EventEmitter",
    "EventType",
    # Negotiation
    "ConnectionNegotiator",
    "connect",
    "first_success",
    # Sessions
    "CommandRunner",
    "InteractiveShell",
    "LocalTerminal",
    "ShellState",
    "format_command",
    # Transport
    "AsyncSSHDialer",
    "Connection",
    "ConnectionConfig",
    "Dialer",
    "Session",
    # Trust
    "HostTrustStore",
    "TrustDecision",
    "TrustMode",
    "TrustRecord",
    "get_key_fingerprint",
]
