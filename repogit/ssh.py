"""Public key authentication for SSH with configurable key exchange."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

PUBLIC_KEYS_NAME = "ssh-public-keys"

SUPPORTED_SSH_KEY_EXCHANGE_ALGORITHMS: tuple[str, ...] = (
    "diffie-hellman-group1-sha1",
    "diffie-hellman-group14-sha1",
    "ecdh-sha2-nistp256",
    "ecdh-sha2-nistp384",
    "ecdh-sha2-nistp521",
    "curve25519-sha256",
    "diffie-hellman-group-exchange-sha1",
    "diffie-hellman-group-exchange-sha256",
)

DEFAULT_SSH_KEY_EXCHANGE_ALGORITHMS: tuple[str, ...] = SUPPORTED_SSH_KEY_EXCHANGE_ALGORITHMS


@dataclass(frozen=True)
class SSHClientConfig:
    """Settings for an SSH client connection."""

    user: str
    key_exchanges: tuple[str, ...]
    signer: Any
    host_key_callback: Optional[Callable[..., Any]] = None


@dataclass
class PublicKeysWithOptions:
    """Public key authentication whose key exchange algorithms may be overridden."""

    user: str = ""
    signer: Any = None
    host_key_callback: Optional[Callable[..., Any]] = None
    kex_algorithms: list[str] = field(default_factory=list)

    def name(self) -> str:
        """Name of the authentication method."""
        return PUBLIC_KEYS_NAME

    def __str__(self) -> str:
        return f"user: {self.user}, name: {self.name()}"

    def client_config(self) -> SSHClientConfig:
        """Build the client configuration for this authentication method."""
        kex = tuple(self.kex_algorithms) or DEFAULT_SSH_KEY_EXCHANGE_ALGORITHMS
        return SSHClientConfig(
            user=self.user,
            key_exchanges=kex,
            signer=self.signer,
            host_key_callback=self.host_key_callback,
        )