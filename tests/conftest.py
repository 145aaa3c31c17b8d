# tests/conftest.py
"""
Pytest configuration and fixtures for the bucketflow unit tests.

The fixtures bind transfer clients to the in-memory store from `s3_fakes`,
so the unit tests never touch the network.
"""

from typing import Any, Callable

import pytest

from bucketflow.client import ObjectTransferClient
from s3_fakes import BUCKET, FakeS3Client


@pytest.fixture(scope="function")
def fake_s3() -> FakeS3Client:
    """
    Provide an empty in-memory S3 client.

    Returns:
        FakeS3Client: A fresh fake for each test.
    """
    return FakeS3Client()


@pytest.fixture(scope="function")
def make_client(
    fake_s3: FakeS3Client,
) -> Callable[..., ObjectTransferClient]:
    """
    Provide a factory for transfer clients bound to the fake store.

    Retries happen without delay unless the test asks for one.

    Returns:
        Callable[..., ObjectTransferClient]: Factory accepting client kwargs.
    """

    def _factory(**kwargs: Any) -> ObjectTransferClient:
        kwargs.setdefault("retry_interval_s", 0.0)
        kwargs.setdefault("bucket", BUCKET)
        return ObjectTransferClient(fake_s3, **kwargs)

    return _factory
