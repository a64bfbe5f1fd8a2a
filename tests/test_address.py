"""
Tests for [user@]host[:port] parsing.
"""
from __future__ import annotations

import pytest

from sshx.address import DEFAULT_PORT, Endpoint, parse, split
from sshx.environment import EnvironmentSnapshot
from sshx.errors import IdentityResolutionFailed, MalformedAddress


class TestParse:
    """parse() normalises every surface form to an Endpoint."""

    def test_user_host_port(self, env: EnvironmentSnapshot) -> None:
        assert parse("deploy@example.com:2222", env) == Endpoint("deploy", "example.com", 2222)

    def test_port_defaults_to_22(self, env: EnvironmentSnapshot) -> None:
        endpoint = parse("deploy@example.com", env)
        assert endpoint.port == DEFAULT_PORT == 22

    def test_missing_user_uses_snapshot_user(self, env: EnvironmentSnapshot) -> None:
        assert parse("example.com", env) == Endpoint("alice", "example.com", 22)

    def test_missing_user_unresolvable(self) -> None:
        """No user in the address and none in the environment."""
        with pytest.raises(IdentityResolutionFailed):
            parse("example.com", EnvironmentSnapshot(user=None))

    def test_more_than_one_at(self, env: EnvironmentSnapshot) -> None:
        with pytest.raises(MalformedAddress, match="more than one '@'"):
            parse("a@b@c", env)

    @pytest.mark.parametrize("address", [
        "alice@",
        "@example.com",
        "alice@example.com:",
        "alice@example.com:ssh",
        "alice@example.com:0",
        "alice@example.com:65536",
        "alice@exa mple.com",
        "alice@example.com;rm",
        "alice@[::1",
        "alice@[::1]x",
    ])
    def test_malformed(self, env: EnvironmentSnapshot, address: str) -> None:
        with pytest.raises(MalformedAddress):
            parse(address, env)

    def test_ipv6_literal_in_brackets(self, env: EnvironmentSnapshot) -> None:
        endpoint = parse("root@[2001:db8::1]:2200", env)
        assert endpoint.host == "2001:db8::1"
        assert endpoint.port == 2200
        assert endpoint.address == "[2001:db8::1]:2200"

    def test_bare_ipv6_literal(self, env: EnvironmentSnapshot) -> None:
        endpoint = parse("root@::1", env)
        assert endpoint.host == "::1"
        assert endpoint.port == 22

    def test_error_message_names_the_address(self, env: EnvironmentSnapshot) -> None:
        with pytest.raises(MalformedAddress) as exc_info:
            parse("a@b@c", env)
        assert "'a@b@c'" in str(exc_info.value)
        assert exc_info.value.to_dict()["reason"] == "more than one '@'"


class TestFromPair:
    """Pre-split (user, host) pairs normalise the same way."""

    def test_matches_parse(self, env: EnvironmentSnapshot) -> None:
        assert Endpoint.from_pair("deploy", "example.com:2222") == parse("deploy@example.com:2222", env)

    def test_empty_user(self) -> None:
        with pytest.raises(MalformedAddress):
            Endpoint.from_pair("", "example.com")


class TestSplit:
    """split() returns user and host:port."""

    def test_with_port(self, env: EnvironmentSnapshot) -> None:
        assert split("user@host:1234", env) == ("user", "host:1234")

    def test_without_port(self, env: EnvironmentSnapshot) -> None:
        assert split("user@host", env) == ("user", "host:22")

    def test_str(self) -> None:
        assert str(Endpoint("user", "host", 2022)) == "user@host:2022"
