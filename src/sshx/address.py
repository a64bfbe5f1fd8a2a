"""
Parsing of [user@]host[:port] addresses.

Two surface forms normalise to the same Endpoint:

    parse("deploy@example.com:2222", env)
    Endpoint.from_pair("deploy", "example.com:2222")

A missing user resolves to the snapshot's current user; a missing port
becomes 22.
"""
from __future__ import annotations

from dataclasses import dataclass

from sshx.environment import EnvironmentSnapshot
from sshx.errors import IdentityResolutionFailed, MalformedAddress
from sshx.validation import check_forbidden_chars, parse_port

DEFAULT_PORT = 22


@dataclass(frozen=True)
class Endpoint:
    """A remote login target."""
    user: str
    host: str
    port: int = DEFAULT_PORT

    @classmethod
    def from_pair(cls, user: str, host: str) -> "Endpoint":
        """
        Build an Endpoint from a pre-split (user, host[:port]) pair.

        Raises:
            MalformedAddress: If the user or host part is not well formed
        """
        address = f"{user}@{host}"
        if not user:
            raise MalformedAddress(address, "empty user")
        _check(address, user, "user")
        name, port = _split_host_port(address, host)
        return cls(user=user, host=name, port=port)

    @property
    def address(self) -> str:
        """host:port form, with brackets around IPv6 literals."""
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    def __str__(self) -> str:
        return f"{self.user}@{self.address}"


def parse(user_host: str, env: EnvironmentSnapshot | None = None) -> Endpoint:
    """
    Parse a [user@]host[:port] string.

    Args:
        user_host: Address to parse
        env: Snapshot supplying the default user (captured if omitted)

    Returns:
        Endpoint with port defaulted to 22

    Raises:
        MalformedAddress: More than one '@', or a malformed user, host or port
        IdentityResolutionFailed: No user given and none could be resolved
    """
    if not isinstance(user_host, str):
        raise MalformedAddress(repr(user_host), "address must be a string")

    at_count = user_host.count("@")
    if at_count > 1:
        raise MalformedAddress(user_host, "more than one '@'")

    if at_count == 1:
        user, host = user_host.split("@")
        return Endpoint.from_pair(user, host)

    if env is None:
        env = EnvironmentSnapshot.capture()
    if not env.user:
        raise IdentityResolutionFailed(
            f"ssh: no user in {user_host!r} and the current user could not be determined"
        )
    return Endpoint.from_pair(env.user, user_host)


def split(user_host: str, env: EnvironmentSnapshot | None = None) -> tuple[str, str]:
    """
    Split a [user@]host[:port] string into user and host:port.

        >>> split("user@host:1234")
        ('user', 'host:1234')
        >>> split("user@host")
        ('user', 'host:22')
    """
    endpoint = parse(user_host, env)
    return endpoint.user, endpoint.address


def _split_host_port(address: str, host: str) -> tuple[str, int]:
    if not host:
        raise MalformedAddress(address, "empty host")

    if host.startswith("["):
        close = host.find("]")
        if close == -1:
            raise MalformedAddress(address, "unterminated '['")
        name, rest = host[1:close], host[close + 1:]
        if not rest:
            port_text = None
        elif rest.startswith(":"):
            port_text = rest[1:]
        else:
            raise MalformedAddress(address, f"unexpected {rest!r} after ']'")
    elif host.count(":") == 1:
        name, port_text = host.split(":")
    else:
        # No colon, or a bare IPv6 literal
        name, port_text = host, None

    if not name:
        raise MalformedAddress(address, "empty host")
    if "[" in name or "]" in name:
        raise MalformedAddress(address, "misplaced bracket")
    _check(address, name.replace(":", ""), "host")

    if port_text is None:
        return name, DEFAULT_PORT
    try:
        return name, parse_port(port_text)
    except ValueError as e:
        raise MalformedAddress(address, str(e)) from e


def _check(address: str, value: str, field_name: str) -> None:
    try:
        check_forbidden_chars(value, field_name)
    except ValueError as e:
        raise MalformedAddress(address, str(e)) from e
