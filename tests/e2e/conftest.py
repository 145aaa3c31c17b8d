# tests/e2e/conftest.py
"""
Pytest fixtures for the bucketflow end-to-end tests.

This module sets up the testing environment, including:
- Spinning up Docker containers for source and destination S3 services (MinIO).
- Providing fixtures for S3 service endpoints and credentials.
- Creating and cleaning up isolated S3 buckets for each test function.
"""

import uuid
from pathlib import Path
from typing import Any, AsyncGenerator, Dict

import boto3
import pytest
import pytest_asyncio
import requests
from aiobotocore.session import AioSession, get_session
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError
from requests.exceptions import ConnectionError
from types_boto3_s3.service_resource import Bucket, S3ServiceResource

from bucketflow.config import S3Config, TransferConfig

# --- Constants ---
S3_ACCESS_KEY: str = "minio-key"
S3_SECRET_KEY: str = "minio-secret"
S3_REGION: str = "us-east-1"


# --- Docker Fixtures ---
@pytest.fixture(scope="session")
def docker_compose_file(pytestconfig: pytest.Config) -> str:
    """
    Locate the docker-compose.yml file for the end-to-end suite.

    Args:
        pytestconfig (pytest.Config): The pytest configuration object.

    Returns:
        str: The absolute path to the docker-compose.yml file.
    """
    return str(Path(pytestconfig.rootdir) / "tests" / "e2e" / "docker-compose.yml")


@pytest.fixture(scope="session")
def docker_compose_project_name() -> str:
    return "bucketflow-tests"


def _is_s3_responsive(url: str) -> bool:
    """
    Check if the MinIO health endpoint is responsive.

    Args:
        url (str): The base URL of the MinIO API.

    Returns:
        bool: True if the service is responsive, False otherwise.
    """
    try:
        response: requests.Response = requests.get(f"{url}/minio/health/live")
        return response.status_code == 200
    except ConnectionError:
        return False


def _service_details(docker_ip: str, docker_services: Any, name: str) -> Dict[str, Any]:
    port: int = docker_services.port_for(name, 9000)
    api_url: str = f"http://{docker_ip}:{port}"
    docker_services.wait_until_responsive(
        timeout=30.0, pause=0.1, check=lambda: _is_s3_responsive(api_url)
    )
    return {
        "endpoint_url": api_url,
        "aws_access_key_id": S3_ACCESS_KEY,
        "aws_secret_access_key": S3_SECRET_KEY,
        "region_name": S3_REGION,
    }


@pytest.fixture(scope="session")
def source_s3_service(docker_ip: str, docker_services: Any) -> Dict[str, Any]:
    """
    Ensure the source S3 service is running and return its connection details.

    Args:
        docker_ip (str): The IP address of the Docker host, provided by pytest-docker.
        docker_services (Any): The pytest-docker services fixture.

    Returns:
        Dict[str, Any]: Connection details for the source S3 service.
    """
    return _service_details(docker_ip, docker_services, "minio-source")


@pytest.fixture(scope="session")
def dest_s3_service(docker_ip: str, docker_services: Any) -> Dict[str, Any]:
    """
    Ensure the destination S3 service is running and return its connection details.

    Args:
        docker_ip (str): The IP address of the Docker host, provided by pytest-docker.
        docker_services (Any): The pytest-docker services fixture.

    Returns:
        Dict[str, Any]: Connection details for the destination S3 service.
    """
    return _service_details(docker_ip, docker_services, "minio-destination")


# --- Application Fixtures ---
@pytest_asyncio.fixture(scope="function")
async def s3_buckets(
    source_s3_service: Dict[str, Any],
    dest_s3_service: Dict[str, Any],
) -> AsyncGenerator[Dict[str, S3Config], None]:
    """
    Create unique, isolated buckets for a single test function.

    Args:
        source_s3_service (Dict[str, Any]): Connection details for the source S3.
        dest_s3_service (Dict[str, Any]): Connection details for the destination S3.

    Yields:
        Dict[str, S3Config]: Endpoint configurations of the created source and
            destination buckets.
    """
    session: AioSession = get_session()
    suffix: str = f"test-bucket-{uuid.uuid4()}"
    configs: Dict[str, S3Config] = {
        "source": S3Config(
            endpoint_url=source_s3_service["endpoint_url"],
            access_key_id=S3_ACCESS_KEY,
            secret_access_key=S3_SECRET_KEY,
            bucket=f"source-{suffix}",
            region=S3_REGION,
            use_ssl=False,
        ),
        "destination": S3Config(
            endpoint_url=dest_s3_service["endpoint_url"],
            access_key_id=S3_ACCESS_KEY,
            secret_access_key=S3_SECRET_KEY,
            bucket=f"dest-{suffix}",
            region=S3_REGION,
            use_ssl=False,
        ),
    }

    async with (
        session.create_client("s3", **source_s3_service) as s3_source,
        session.create_client("s3", **dest_s3_service) as s3_dest,
    ):
        await s3_source.create_bucket(Bucket=configs["source"].bucket)
        await s3_dest.create_bucket(Bucket=configs["destination"].bucket)

    yield configs

    # Cleanup: boto3 is simpler for synchronous, recursive delete
    boto_config: BotoConfig = BotoConfig(
        retries={"max_attempts": 0, "mode": "standard"}
    )
    for service, config in [
        (source_s3_service, configs["source"]),
        (dest_s3_service, configs["destination"]),
    ]:
        resource: S3ServiceResource = boto3.resource("s3", **service, config=boto_config)
        try:
            bucket_obj: Bucket = resource.Bucket(config.bucket)
            bucket_obj.objects.all().delete()
            bucket_obj.delete()
        except ClientError as e:
            if e.response["Error"]["Code"] != "NoSuchBucket":
                raise


@pytest.fixture(scope="function")
def transfer_config() -> TransferConfig:
    """
    Provide fast-failing transfer settings for the end-to-end tests.

    Returns:
        TransferConfig: Settings with short retry delays and small pages.
    """
    return TransferConfig(keys_per_request=7, retry_count=2, retry_interval_s=0.1, workers=4)
