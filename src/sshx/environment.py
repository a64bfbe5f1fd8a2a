"""
Snapshot of the ambient process environment.

Provides:
- EnvironmentSnapshot: current user, home directory, agent socket and
  terminal type, captured once and passed explicitly to the components
  that need them.
- get_ssh_dir / get_known_hosts_path: OpenSSH's per-user file locations.
"""
from __future__ import annotations

import getpass
import os
import sys
from dataclasses import dataclass
from pathlib import Path

DEFAULT_TERM = "xterm-256color"


def is_windows() -> bool:
    """Check if running on Windows."""
    return sys.platform == "win32"


def get_ssh_dir(home: Path | None = None) -> Path:
    """
    Get the platform-appropriate SSH directory.

    Args:
        home: Home directory to use instead of the process's own

    Returns:
        ~/.ssh on Unix, %USERPROFILE%\\.ssh on Windows
    """
    if home is not None:
        return home / ".ssh"
    if is_windows():
        userprofile = os.environ.get("USERPROFILE")
        if userprofile:
            return Path(userprofile) / ".ssh"
    return Path.home() / ".ssh"


def get_known_hosts_path(home: Path | None = None) -> Path:
    """Get the per-user known_hosts file path."""
    return get_ssh_dir(home) / "known_hosts"


def _current_user() -> str | None:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        # No login name in the environment and no passwd entry for the uid
        return None


def _home_dir() -> Path | None:
    try:
        return Path.home()
    except RuntimeError:
        return None


@dataclass(frozen=True)
class EnvironmentSnapshot:
    """
    Ambient values read from the process, frozen at capture time.

    Attributes:
        user: Login name of the current user, None if it cannot be resolved
        home: Home directory, None if it cannot be resolved
        agent_socket: Value of SSH_AUTH_SOCK, None when unset or empty
        term: Value of TERM, None when unset or empty

    Tests build snapshots directly instead of mutating os.environ:

        env = EnvironmentSnapshot(user="alice", home=tmp_path)
    """
    user: str | None = None
    home: Path | None = None
    agent_socket: str | None = None
    term: str | None = None

    @classmethod
    def capture(cls) -> "EnvironmentSnapshot":
        """Read the current process's identity and environment."""
        return cls(
            user=_current_user(),
            home=_home_dir(),
            agent_socket=os.environ.get("SSH_AUTH_SOCK") or None,
            term=os.environ.get("TERM") or None,
        )

    @property
    def term_type(self) -> str:
        """Terminal type to request for a remote pty."""
        return self.term or DEFAULT_TERM

    @property
    def known_hosts_path(self) -> Path:
        """Default known_hosts location for this snapshot's home."""
        return get_known_hosts_path(self.home)
