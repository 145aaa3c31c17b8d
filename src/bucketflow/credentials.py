# src/bucketflow/credentials.py
"""
Credential providers.

The engine treats credentials as opaque: a provider hands back a key pair
when a client is opened, and nothing is cached beyond that client.
"""

import logging
import os
from dataclasses import dataclass
from typing import Protocol

from bucketflow.config import S3Config
from bucketflow.exceptions import ConfigError

logger: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    access_key_id: str
    secret_access_key: str

    def __repr__(self) -> str:
        return f"Credentials(access_key_id='{self.access_key_id}', secret_access_key='***')"


class CredentialProvider(Protocol):
    """Anything able to supply a key pair on demand."""

    def retrieve(self) -> Credentials: ...

    def is_expired(self) -> bool: ...


class StaticCredentialProvider:
    """Returns a fixed key pair that never expires."""

    def __init__(self, access_key_id: str, secret_access_key: str) -> None:
        self._credentials: Credentials = Credentials(access_key_id, secret_access_key)

    @classmethod
    def from_config(cls, config: S3Config) -> "StaticCredentialProvider":
        return cls(config.access_key_id, config.secret_access_key)

    def retrieve(self) -> Credentials:
        return self._credentials

    def is_expired(self) -> bool:
        return False


class EnvCredentialProvider:
    """Reads `<prefix>_ACCESS_KEY_ID` and `<prefix>_SECRET_ACCESS_KEY` on each retrieval."""

    def __init__(self, prefix: str) -> None:
        self._prefix: str = prefix

    def retrieve(self) -> Credentials:
        return Credentials(
            access_key_id=os.environ.get(f"{self._prefix}_ACCESS_KEY_ID", ""),
            secret_access_key=os.environ.get(f"{self._prefix}_SECRET_ACCESS_KEY", ""),
        )

    def is_expired(self) -> bool:
        return False


def resolve_credentials(provider: CredentialProvider) -> Credentials:
    """
    Retrieve and validate credentials from a provider.

    Args:
        provider (CredentialProvider): The provider to ask.

    Returns:
        Credentials: A non-empty, unexpired key pair.

    Raises:
        ConfigError: If the provider returned empty or expired credentials.
    """
    try:
        credentials: Credentials = provider.retrieve()
    except ConfigError:
        raise
    except Exception as e:
        raise ConfigError(f"Failed to retrieve credentials: {e}") from e
    if not credentials.access_key_id or not credentials.secret_access_key:
        raise ConfigError("Credential provider returned an empty key pair.")
    if provider.is_expired():
        raise ConfigError("Credential provider returned expired credentials.")
    logger.debug(f"Resolved credentials for key id '{credentials.access_key_id}'.")
    return credentials
