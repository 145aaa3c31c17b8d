# src/bucketflow/config.py
"""
Configuration for the bucketflow transfer engine.

This module centralizes all configuration, loading endpoint and credential
values from environment variables and providing typed dataclasses that are
passed explicitly to the clients that need them.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from bucketflow.exceptions import ConfigError

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _get_env_var(name: str, default: Optional[str] = None) -> str:
    """
    Retrieves a required environment variable.

    Args:
        name (str): The name of the environment variable.
        default (str, optional): The default value if the variable is not set.

    Returns:
        str: The value of the environment variable.
    """
    value: Optional[str] = os.environ.get(name, default)
    if not value:
        raise ConfigError(f"Environment variable '{name}' must be set.")
    return value


@dataclass(frozen=True)
class S3Config:
    """
    Represents the configuration for an S3-compatible endpoint.

    Attributes:
        endpoint_url (str): The S3 endpoint URL.
        access_key_id (str): The access key ID.
        secret_access_key (str): The secret access key.
        bucket (str): The bucket name.
        region (str): The region name.
        use_ssl (bool): Whether to talk to the endpoint over TLS.
    """

    endpoint_url: str
    access_key_id: str
    secret_access_key: str
    bucket: str
    region: str = "us-east-1"
    use_ssl: bool = True

    def as_boto_dict(self) -> Dict[str, Any]:
        """
        Returns the configuration as a dictionary suitable for aiobotocore clients.

        Returns:
            Dict[str, Any]: A dictionary of client parameters.
        """
        return {
            "endpoint_url": self.endpoint_url,
            "aws_access_key_id": self.access_key_id,
            "aws_secret_access_key": self.secret_access_key,
            "region_name": self.region,
            "use_ssl": self.use_ssl,
        }

    @classmethod
    def from_env(cls, prefix: str) -> "S3Config":
        """
        Builds an endpoint configuration from `<prefix>_*` environment variables.

        Args:
            prefix (str): Variable prefix, e.g. `BUCKETFLOW_SOURCE`.

        Returns:
            S3Config: The loaded configuration.
        """
        return cls(
            endpoint_url=_get_env_var(f"{prefix}_ENDPOINT_URL"),
            access_key_id=_get_env_var(f"{prefix}_ACCESS_KEY_ID"),
            secret_access_key=_get_env_var(f"{prefix}_SECRET_ACCESS_KEY"),
            bucket=_get_env_var(f"{prefix}_BUCKET"),
            region=_get_env_var(f"{prefix}_REGION", "us-east-1"),
            use_ssl=_get_env_var(f"{prefix}_USE_SSL", "true").lower() in _TRUE_VALUES,
        )


@dataclass(frozen=True)
class TransferConfig:
    """
    Defines the transfer engine's operational parameters.

    Attributes:
        prefix (str): Only keys under this prefix are listed.
        keys_per_request (int): Page size of each listing request.
        retry_count (int): Retries allowed after the first attempt of a call.
        retry_interval_s (float): Constant delay between attempts, in seconds.
        bandwidth_limit (int): Aggregate bytes per second; 0 disables the cap.
        burst (int, optional): Token bucket capacity in bytes.
        chunk_size (int): Bytes read or paced per step when streaming bodies.
        queue_size (int): Capacity of the listing delivery queue.
        workers (int): Number of concurrent copy workers when mirroring.
        verify (bool): Whether mirrored objects are checked on the destination.
        copy_acl (bool): Whether mirrored objects carry their source ACL.
    """

    prefix: str = ""
    keys_per_request: int = 1000
    retry_count: int = 3
    retry_interval_s: float = 3.0
    bandwidth_limit: int = 0
    burst: Optional[int] = None
    chunk_size: int = 64 * 1024
    queue_size: int = 1000
    workers: int = 8
    verify: bool = True
    copy_acl: bool = False

    def __post_init__(self) -> None:
        if self.keys_per_request <= 0:
            raise ConfigError("keys_per_request must be positive.")
        if self.retry_count < 0:
            raise ConfigError("retry_count must not be negative.")
        if self.retry_interval_s < 0:
            raise ConfigError("retry_interval_s must not be negative.")
        if self.bandwidth_limit < 0:
            raise ConfigError("bandwidth_limit must not be negative.")
        if self.chunk_size <= 0:
            raise ConfigError("chunk_size must be positive.")
        if self.workers <= 0:
            raise ConfigError("workers must be positive.")


@dataclass(frozen=True)
class Config:
    """
    Top-level configuration container for the entire application.

    Attributes:
        source (S3Config): The store objects are listed and read from.
        destination (S3Config, optional): The store objects are written to.
        transfer (TransferConfig): Transfer engine settings.
    """

    source: S3Config = field(
        default_factory=lambda: S3Config.from_env("BUCKETFLOW_SOURCE")
    )
    destination: Optional[S3Config] = None
    transfer: TransferConfig = field(default_factory=TransferConfig)

    @classmethod
    def with_destination(cls, transfer: TransferConfig) -> "Config":
        """Loads both endpoints from the environment."""
        return cls(
            source=S3Config.from_env("BUCKETFLOW_SOURCE"),
            destination=S3Config.from_env("BUCKETFLOW_DESTINATION"),
            transfer=transfer,
        )
