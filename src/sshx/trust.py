"""
Trust-on-first-use host key verification backed by known_hosts.

Provides:
- TrustMode: Whether the store is enforcing (TOFU) or accepting everything
- TrustDecision: Outcome of a successful verification
- TrustRecord: One parsed known_hosts line
- HostTrustStore: Loads known_hosts once, verifies keys, appends new hosts

OpenSSH-compatible known_hosts format:
- hostname key_type key_data (for port 22)
- [hostname]:port key_type key_data (for non-standard ports)
- Hashed (|1|salt|hash), wildcard (*, ?) and negated (!) patterns are
  read; entries are always written in plain form.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import asyncssh

from sshx.errors import HostKeyMismatch
from sshx.events import EventEmitter, EventType

logger = logging.getLogger(__name__)

# Signature algorithms a server may use for each stored key type
_KEY_TYPE_ALGS: dict[str, tuple[str, ...]] = {
    "ssh-rsa": ("rsa-sha2-512", "rsa-sha2-256", "ssh-rsa"),
}


class TrustMode(str, Enum):
    """How the store treats host keys."""
    TOFU = "tofu"           # Learn unknown hosts, reject changed keys
    INSECURE = "insecure"   # known_hosts could not be loaded: accept everything


class TrustDecision(str, Enum):
    """Why a host key was accepted."""
    TRUSTED = "trusted"     # Key matches a known_hosts entry
    LEARNED = "learned"     # Host was unknown; key accepted and recorded
    INSECURE = "insecure"   # Accepted without checking (INSECURE mode)


@dataclass
class TrustRecord:
    """
    Parsed entry from a known_hosts file.

    Attributes:
        hostnames: Patterns this entry matches (plain, bracketed, hashed,
                   wildcard or negated)
        key_type: SSH key type (ssh-rsa, ssh-ed25519, etc.)
        key_data: Base64-encoded public key blob
        is_revoked: Whether the line carries the @revoked marker
        raw_line: Original line from file
    """
    hostnames: list[str]
    key_type: str
    key_data: str
    is_revoked: bool = False
    raw_line: str = ""

    def matches(self, lookup_name: str) -> bool:
        """Check the entry's patterns against a host lookup name."""
        matched = False
        for pattern in self.hostnames:
            negated = pattern.startswith("!")
            if negated:
                pattern = pattern[1:]
            if _pattern_matches(pattern, lookup_name):
                if negated:
                    return False
                matched = True
        return matched

    @property
    def fingerprint(self) -> str:
        """SHA256 fingerprint of the stored key, OpenSSH style."""
        try:
            key_bytes = base64.b64decode(self.key_data)
        except (ValueError, binascii.Error):
            return "SHA256:?"
        return _fingerprint(key_bytes)


def format_known_hosts_name(host: str, port: int) -> str:
    """
    Format host/port the way OpenSSH names them in known_hosts.

    - hostname for port 22
    - [hostname]:port for other ports
    """
    if port == 22:
        return host
    return f"[{host}]:{port}"


def hash_hostname(hostname: str, salt: bytes) -> str:
    """
    Hash a hostname using OpenSSH's known_hosts hashing scheme.

    OpenSSH uses HMAC-SHA1 with a random salt, stored as
    |1|<base64-salt>|<base64-hash>
    """
    digest = hmac.new(salt, hostname.encode("utf-8"), hashlib.sha1).digest()
    salt_b64 = base64.b64encode(salt).decode("ascii")
    hash_b64 = base64.b64encode(digest).decode("ascii")
    return f"|1|{salt_b64}|{hash_b64}"


def _check_hashed_hostname(pattern: str, hostname: str) -> bool:
    parts = pattern.split("|")
    if len(parts) != 4:
        return False
    try:
        salt = base64.b64decode(parts[2], validate=True)
    except (ValueError, binascii.Error):
        return False
    computed = hash_hostname(hostname, salt)
    return hmac.compare_digest(pattern.encode("utf-8"), computed.encode("ascii"))


def _pattern_matches(pattern: str, lookup_name: str) -> bool:
    if pattern.startswith("|1|"):
        return _check_hashed_hostname(pattern, lookup_name)
    if "*" not in pattern and "?" not in pattern:
        return lookup_name.lower() == pattern.lower()
    # Only * and ? are wildcards; brackets are literal in known_hosts
    regex = "".join(
        ".*" if c == "*" else "." if c == "?" else re.escape(c) for c in pattern
    )
    return re.fullmatch(regex, lookup_name, re.IGNORECASE) is not None


def _fingerprint(public_data: bytes) -> str:
    digest = hashlib.sha256(public_data).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


def key_type_of(key: asyncssh.SSHKey) -> str:
    """Key algorithm name as text (asyncssh reports bytes)."""
    algorithm = key.algorithm
    return algorithm.decode("ascii") if isinstance(algorithm, bytes) else algorithm


def get_key_fingerprint(key: asyncssh.SSHKey) -> str:
    """SHA256 fingerprint of a host or client public key."""
    return _fingerprint(key.public_data)


def parse_known_hosts_line(line: str) -> TrustRecord | None:
    """
    Parse a single known_hosts line.

    Returns:
        TrustRecord, or None for blank, comment, @cert-authority and
        malformed lines
    """
    line = line.strip()
    if not line or line.startswith("#"):
        return None

    is_revoked = False
    if line.startswith("@"):
        marker, _, line = line.partition(" ")
        if marker != "@revoked":
            # @cert-authority lines vouch for CAs, not host keys
            return None
        is_revoked = True

    parts = line.split()
    if len(parts) < 3:
        return None

    return TrustRecord(
        hostnames=[h for h in parts[0].split(",") if h],
        key_type=parts[1],
        key_data=parts[2],
        is_revoked=is_revoked,
        raw_line=line,
    )


class HostTrustStore:
    """
    Known host identities with trust-on-first-use semantics.

    Records are loaded once, when the store is created. Existing records
    are never rewritten or removed; a host presenting a key other than the
    recorded one fails with HostKeyMismatch.

    Usage:
        store = HostTrustStore.load(Path("~/.ssh/known_hosts").expanduser())
        decision = store.verify("example.com", 22, ("203.0.113.7", 22), key)
    """

    def __init__(
        self,
        path: Path | None,
        records: list[TrustRecord],
        mode: TrustMode,
        emitter: EventEmitter | None = None,
    ) -> None:
        assert mode == TrustMode.INSECURE or path is not None, \
            "A TOFU store needs a known_hosts path to append to"
        self._path = path
        self._records = records
        self._mode = mode
        self._emitter = emitter or EventEmitter()

    @classmethod
    def load(cls, path: Path | str, emitter: EventEmitter | None = None) -> "HostTrustStore":
        """
        Load known_hosts from path.

        An absent or unreadable file yields a store in INSECURE mode, which
        accepts every key and writes nothing. The mode is exposed on the
        store and logged at WARNING level.
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                lines = f.readlines()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(
                "known_hosts %s could not be loaded (%s); host keys will NOT be verified",
                path, e,
            )
            return cls.insecure(emitter)

        records = []
        for number, line in enumerate(lines, start=1):
            record = parse_known_hosts_line(line)
            if record is not None:
                records.append(record)
            elif line.strip() and not line.lstrip().startswith(("#", "@")):
                logger.debug("Skipping malformed known_hosts line %s:%d", path, number)

        logger.debug("Loaded %d known_hosts records from %s", len(records), path)
        return cls(path, records, TrustMode.TOFU, emitter)

    @classmethod
    def insecure(cls, emitter: EventEmitter | None = None) -> "HostTrustStore":
        """A store that accepts every host key."""
        return cls(None, [], TrustMode.INSECURE, emitter)

    @property
    def mode(self) -> TrustMode:
        return self._mode

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def records(self) -> list[TrustRecord]:
        """Loaded and learned records (copy)."""
        return list(self._records)

    def lookup(self, host: str, port: int) -> list[TrustRecord]:
        """All records whose patterns match host:port."""
        name = format_known_hosts_name(host, port)
        return [r for r in self._records if r.matches(name)]

    def host_key_algorithms(self, host: str, port: int) -> list[str]:
        """
        Host key algorithms to negotiate for host:port.

        Empty when the host is unknown, meaning the transport default.
        """
        algs: list[str] = []
        for record in self.lookup(host, port):
            if record.is_revoked:
                continue
            for alg in _KEY_TYPE_ALGS.get(record.key_type, (record.key_type,)):
                if alg not in algs:
                    algs.append(alg)
        return algs

    def verify(
        self,
        host: str,
        port: int,
        remote_address: tuple[str, int] | None,
        key: asyncssh.SSHKey,
    ) -> TrustDecision:
        """
        Verify a server's host key.

        Args:
            host: Hostname the caller dialled
            port: Port the caller dialled
            remote_address: (ip, port) actually connected to, for logging
            key: Server's public host key

        Returns:
            TrustDecision for an accepted key

        Raises:
            HostKeyMismatch: The host is known under a different key, or
                             the key is revoked
        """
        fingerprint = get_key_fingerprint(key)
        event_data = {
            "host": host,
            "port": port,
            "remote_address": remote_address[0] if remote_address else None,
            "fingerprint": fingerprint,
        }

        if self._mode == TrustMode.INSECURE:
            logger.debug("Accepting %s key for %s without verification", fingerprint, host)
            self._emitter.emit(EventType.HOST_KEY, result=TrustDecision.INSECURE.value, **event_data)
            return TrustDecision.INSECURE

        key_type = key_type_of(key)
        key_data = base64.b64encode(key.public_data).decode("ascii")
        matching = self.lookup(host, port)

        if not matching:
            self.append(host, port, key_type, key_data)
            logger.info("Learned new host key for %s: %s %s", host, key_type, fingerprint)
            self._emitter.emit(EventType.HOST_KEY, result=TrustDecision.LEARNED.value, **event_data)
            return TrustDecision.LEARNED

        same_key = [r for r in matching if r.key_type == key_type and r.key_data == key_data]

        if any(r.is_revoked for r in same_key):
            self._emitter.emit(EventType.HOST_KEY, result="revoked", **event_data)
            raise HostKeyMismatch(host, port, fingerprint, [], revoked=True)

        if same_key:
            self._emitter.emit(EventType.HOST_KEY, result=TrustDecision.TRUSTED.value, **event_data)
            return TrustDecision.TRUSTED

        stored = [(r.key_type, r.fingerprint) for r in matching if not r.is_revoked]
        logger.error("Host key for %s has changed (server presented %s)", host, fingerprint)
        self._emitter.emit(EventType.HOST_KEY, result="mismatch", **event_data)
        raise HostKeyMismatch(host, port, fingerprint, stored)

    def append(self, host: str, port: int, key_type: str, key_data: str) -> bool:
        """
        Record a newly trusted key, in memory and in known_hosts.

        The line is written with a single write() on an O_APPEND
        descriptor so concurrent readers see either nothing or the whole
        line. Failures are logged and not retried.

        Returns:
            True if the line reached the file
        """
        assert self._path is not None, "Cannot append to an insecure store"

        name = format_known_hosts_name(host, port)
        line = f"{name} {key_type} {key_data}"
        self._records.append(TrustRecord(
            hostnames=[name],
            key_type=key_type,
            key_data=key_data,
            raw_line=line,
        ))

        data = (line + "\n").encode("utf-8")
        try:
            fd = os.open(self._path, os.O_RDWR | os.O_APPEND | os.O_CREAT, 0o600)
            try:
                size = os.fstat(fd).st_size
                if size > 0:
                    os.lseek(fd, size - 1, os.SEEK_SET)
                    if os.read(fd, 1) != b"\n":
                        data = b"\n" + data
                written = os.write(fd, data)
            finally:
                os.close(fd)
        except OSError as e:
            logger.warning("Could not record host key for %s in %s: %s", name, self._path, e)
            return False

        if written != len(data):
            logger.warning("Short write recording host key for %s in %s", name, self._path)
            return False
        return True
