"""
Signing credential sources.

Provides:
- CredentialSource: Something that yields zero or more signing credentials
- AgentSource: Keys held by a running ssh-agent (SSH_AUTH_SOCK)
- StaticSource: One caller-supplied key
- load_key: Load a private key file with structured errors
- describe_credential: "<alg> SHA256:<fingerprint>" for logs and results

A credential is anything asyncssh accepts in client_keys: an SSHKey, or an
SSHKeyPair such as the ones an agent returns.
"""
from __future__ import annotations

import base64
import hashlib
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Sequence, Union

import asyncssh

from sshx.errors import KeyLoadError

logger = logging.getLogger(__name__)

Credential = Union[asyncssh.SSHKey, asyncssh.SSHKeyPair]


def describe_credential(credential: Credential) -> str:
    """Algorithm and SHA256 fingerprint of a credential's public key."""
    algorithm = credential.algorithm
    if isinstance(algorithm, bytes):
        algorithm = algorithm.decode("ascii")
    digest = hashlib.sha256(credential.public_data).digest()
    b64 = base64.b64encode(digest).decode("ascii").rstrip("=")
    return f"{algorithm} SHA256:{b64}"


class CredentialSource(ABC):
    """A provider of signing credentials."""

    @abstractmethod
    async def credentials(self) -> list[Credential]:
        """Return the credentials this source can offer, possibly none."""


class StaticSource(CredentialSource):
    """Wraps a single caller-supplied credential."""

    def __init__(self, credential: Credential) -> None:
        assert credential is not None, "StaticSource needs a credential"
        self._credential = credential

    @property
    def credential(self) -> Credential:
        return self._credential

    async def credentials(self) -> list[Credential]:
        return [self._credential]

    def __repr__(self) -> str:
        return f"StaticSource({describe_credential(self._credential)})"


class AgentSource(CredentialSource):
    """
    Keys held by an ssh-agent.

    An unset socket or an unreachable agent yields no credentials rather
    than an error; the agent is an optional contributor.
    """

    def __init__(self, socket_path: str | None) -> None:
        self._socket_path = socket_path

    @property
    def socket_path(self) -> str | None:
        return self._socket_path

    async def credentials(self) -> list[Credential]:
        if not self._socket_path:
            logger.debug("SSH agent disabled: SSH_AUTH_SOCK not set")
            return []

        if not Path(self._socket_path).exists():
            logger.debug("SSH agent socket not found: %s", self._socket_path)
            return []

        try:
            async with asyncssh.connect_agent(self._socket_path) as agent:
                keys = list(await agent.get_keys())
        except (OSError, asyncssh.Error) as e:
            logger.debug("SSH agent at %s unavailable: %s", self._socket_path, e)
            return []

        logger.debug("SSH agent offered %d key(s)", len(keys))
        return keys

    def __repr__(self) -> str:
        return f"AgentSource({self._socket_path!r})"


async def collect_credentials(sources: Sequence[CredentialSource]) -> list[Credential]:
    """Credentials of every source, in source order."""
    collected: list[Credential] = []
    for source in sources:
        collected.extend(await source.credentials())
    return collected


def load_key(key_path: Path | str, passphrase: str | None = None) -> asyncssh.SSHKey:
    """
    Load a private key from file.

    Args:
        key_path: Path to private key file
        passphrase: Optional passphrase for encrypted keys

    Returns:
        Loaded SSHKey object

    Raises:
        KeyLoadError: If key cannot be loaded
    """
    key_path = Path(key_path).expanduser()

    if not key_path.exists():
        raise KeyLoadError(
            f"Private key file not found: {key_path}",
            key_path=str(key_path),
            reason="file_not_found",
        )

    if not os.access(key_path, os.R_OK):
        raise KeyLoadError(
            f"Private key file not readable: {key_path}",
            key_path=str(key_path),
            reason="permission_denied",
        )

    try:
        return asyncssh.read_private_key(key_path, passphrase)
    except asyncssh.KeyEncryptionError as e:
        raise KeyLoadError(
            f"Failed to decrypt private key: {key_path}",
            key_path=str(key_path),
            reason="wrong_passphrase",
        ) from e
    except asyncssh.KeyImportError as e:
        error_msg = str(e).lower()
        # PKCS#8 decrypt failures mention "decrypt" rather than "passphrase"
        if "passphrase" in error_msg or (passphrase is not None and "decrypt" in error_msg):
            reason = "passphrase_required" if passphrase is None else "wrong_passphrase"
            raise KeyLoadError(
                f"Failed to decrypt private key: {key_path}",
                key_path=str(key_path),
                reason=reason,
            ) from e
        raise KeyLoadError(
            f"Invalid private key format: {key_path}",
            key_path=str(key_path),
            reason="invalid_format",
        ) from e
    except (OSError, ValueError) as e:
        raise KeyLoadError(
            f"Failed to load private key: {e}",
            key_path=str(key_path),
            reason="unknown",
        ) from e
