# src/bucketflow/client.py
"""
The object transfer client.

`ObjectTransferClient` combines the paginator, the retry policy and the rate
limiter into the operations callers use: listing a bucket, hydrating objects
with metadata or content, and writing objects (and their ACLs) back. Every
remote call is wrapped by the same `RetryPolicy`; every body byte is paced
by the same `RateLimiter`.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
)

from aiobotocore.session import AioSession, get_session
from botocore.config import Config as BotoConfig

from bucketflow.config import S3Config, TransferConfig
from bucketflow.credentials import (
    CredentialProvider,
    Credentials,
    StaticCredentialProvider,
    resolve_credentials,
)
from bucketflow.exceptions import (
    AclUpdateError,
    PreconditionError,
    RetryExhaustedError,
    TransferCancelled,
    TransferError,
)
from bucketflow.models import AccessControlPolicy, TransferObject
from bucketflow.paginator import ListingPaginator
from bucketflow.ratelimit import (
    PacedReader,
    RateLimiter,
    UnlimitedRateLimiter,
    create_rate_limiter,
)
from bucketflow.retry import RetryPolicy
from bucketflow.signals import raise_if_cancelled

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client

logger: logging.Logger = logging.getLogger(__name__)

# Optional request parameters of PutObject, keyed by TransferObject attribute.
_PUT_OBJECT_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("content_type", "ContentType"),
    ("content_disposition", "ContentDisposition"),
    ("content_language", "ContentLanguage"),
    ("content_encoding", "ContentEncoding"),
    ("cache_control", "CacheControl"),
    ("storage_class", "StorageClass"),
    ("acl", "ACL"),
)


class ObjectTransferClient:
    """Lists, reads and writes objects of one bucket with retry and throttling."""

    def __init__(
        self,
        s3_client: "S3Client",
        bucket: str,
        prefix: str = "",
        keys_per_request: int = 1000,
        retry_count: int = 3,
        retry_interval_s: float = 3.0,
        rate_limiter: Optional[RateLimiter] = None,
        chunk_size: int = 64 * 1024,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Initializes the client.

        Args:
            s3_client (S3Client): An open aiobotocore S3 client.
            bucket (str): The bucket every operation targets.
            prefix (str): Key prefix filter for listings.
            keys_per_request (int): Listing page size.
            retry_count (int): Retries allowed after the first attempt.
            retry_interval_s (float): Constant delay between attempts.
            rate_limiter (RateLimiter, optional): Shared bandwidth limiter;
                unlimited when omitted.
            chunk_size (int): Bytes read or paced per streaming step.
            cancel_event (asyncio.Event, optional): Cancellation signal.
        """
        if not bucket:
            raise PreconditionError("A bucket name is required.")
        self._s3_client: "S3Client" = s3_client
        self._bucket: str = bucket
        self._prefix: str = prefix
        self._keys_per_request: int = keys_per_request
        self._retry_count: int = retry_count
        self._retry_interval_s: float = retry_interval_s
        self._rate_limiter: RateLimiter = rate_limiter or UnlimitedRateLimiter()
        self._chunk_size: int = chunk_size
        self._cancel_event: Optional[asyncio.Event] = cancel_event
        self._retry_policy: RetryPolicy = self._build_retry_policy()

    @classmethod
    def from_config(
        cls,
        s3_client: "S3Client",
        s3_config: S3Config,
        transfer: TransferConfig,
        cancel_event: Optional[asyncio.Event] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> "ObjectTransferClient":
        """
        Builds a client from endpoint and transfer configuration.

        Args:
            s3_client (S3Client): An open aiobotocore S3 client.
            s3_config (S3Config): Endpoint configuration holding the bucket.
            transfer (TransferConfig): Transfer engine settings.
            cancel_event (asyncio.Event, optional): Cancellation signal.
            rate_limiter (RateLimiter, optional): A limiter to share with other
                clients; one is created from `transfer` when omitted.

        Returns:
            ObjectTransferClient: The configured client.
        """
        return cls(
            s3_client,
            s3_config.bucket,
            prefix=transfer.prefix,
            keys_per_request=transfer.keys_per_request,
            retry_count=transfer.retry_count,
            retry_interval_s=transfer.retry_interval_s,
            rate_limiter=rate_limiter
            or create_rate_limiter(transfer.bandwidth_limit, transfer.burst),
            chunk_size=transfer.chunk_size,
            cancel_event=cancel_event,
        )

    def _build_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            retry_count=self._retry_count,
            retry_interval_s=self._retry_interval_s,
            cancel_event=self._cancel_event,
        )

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def with_rate_limit(
        self, bytes_per_second: Optional[int], burst: Optional[int] = None
    ) -> None:
        """
        Replace the bandwidth limiter.

        Args:
            bytes_per_second (int, optional): New cap; zero or None disables it.
            burst (int, optional): Token bucket capacity in bytes.
        """
        if bytes_per_second is not None and bytes_per_second < 0:
            raise PreconditionError("Bandwidth limit must not be negative.")
        self._rate_limiter = create_rate_limiter(bytes_per_second, burst)

    def with_cancel_event(self, cancel_event: Optional[asyncio.Event]) -> None:
        """Replace the cancellation signal used by subsequent operations."""
        self._cancel_event = cancel_event
        self._retry_policy = self._build_retry_policy()

    def _location(self, obj: TransferObject) -> str:
        location: str = f"s3://{self._bucket}/{obj.key}"
        return f"{location}?versionId={obj.version_id}" if obj.version_id else location

    def _object_params(
        self, obj: TransferObject, with_version: bool = True
    ) -> Dict[str, Any]:
        if not obj.key:
            raise PreconditionError("Object key must not be empty.")
        params: Dict[str, Any] = {"Bucket": self._bucket, "Key": obj.key}
        if with_version and obj.version_id:
            params["VersionId"] = obj.version_id
        return params

    # --- Listing ---

    def paginator(self, marker: str = "") -> ListingPaginator:
        """
        Create a paginator for a new enumeration of this client's bucket/prefix.

        Args:
            marker (str): Key after which the enumeration starts.

        Returns:
            ListingPaginator: A paginator owning its own continuation marker.
        """
        return ListingPaginator(
            self._s3_client,
            self._bucket,
            self._retry_policy,
            prefix=self._prefix,
            page_size=self._keys_per_request,
            marker=marker,
        )

    async def iter_pages(self, marker: str = "") -> AsyncIterator[List[TransferObject]]:
        """Yield listing batches in store order."""
        async for batch in self.paginator(marker).pages():
            yield batch

    async def iter_objects(self, marker: str = "") -> AsyncIterator[TransferObject]:
        """Yield listed objects one at a time, in store order."""
        async for batch in self.iter_pages(marker):
            for obj in batch:
                yield obj

    async def list(self) -> List[TransferObject]:
        """
        Enumerate the whole bucket/prefix into a list.

        Returns:
            List[TransferObject]: Every listed object, in store order.

        Raises:
            TransferCancelled: If cancelled; `partial` holds what was listed.
            RetryExhaustedError: If a page request kept failing; `partial`
                holds what was listed before it.
        """
        output: List[TransferObject] = []
        try:
            async for batch in self.iter_pages():
                output.extend(batch)
        except (RetryExhaustedError, TransferCancelled) as e:
            e.partial = output
            logger.error(
                f"Listing s3://{self._bucket}/{self._prefix} stopped after "
                f"{len(output)} object(s): {e}"
            )
            raise
        logger.info(
            f"Listing s3://{self._bucket}/{self._prefix} finished: "
            f"{len(output)} object(s)."
        )
        return output

    async def list_to(self, queue: "asyncio.Queue[TransferObject]") -> int:
        """
        Stream listed objects into a queue, waiting whenever it is full.

        Objects already delivered stay valid if the listing fails later.

        Args:
            queue (asyncio.Queue[TransferObject]): Destination queue.

        Returns:
            int: The number of objects delivered.
        """
        delivered: int = 0
        async for obj in self.iter_objects():
            raise_if_cancelled(self._cancel_event, "Listing")
            await queue.put(obj)
            delivered += 1
        logger.info(
            f"Listing s3://{self._bucket}/{self._prefix} finished: "
            f"{delivered} object(s) delivered."
        )
        return delivered

    # --- Reads ---

    async def get_object_meta(self, obj: TransferObject) -> None:
        """
        Refresh `obj`'s metadata with a HEAD request.

        Metadata is overwritten only when the request succeeds.

        Args:
            obj (TransferObject): The object to hydrate, identified by key and
                optional version id.
        """
        params: Dict[str, Any] = self._object_params(obj)

        async def _head() -> Mapping[str, Any]:
            return await self._s3_client.head_object(**params)

        response: Mapping[str, Any] = await self._retry_policy.run(
            _head, f"Fetching metadata of {self._location(obj)}"
        )
        obj.apply_metadata(response)
        logger.debug(f"Fetched metadata of {self._location(obj)}.")

    async def get_object_content(self, obj: TransferObject) -> None:
        """
        Download `obj`'s body through the rate limiter, with its metadata.

        A failure while reading the body retries the whole request; reads are
        never resumed from a partial offset.

        Args:
            obj (TransferObject): The object to hydrate.
        """
        params: Dict[str, Any] = self._object_params(obj)

        async def _download() -> Tuple[Mapping[str, Any], bytes]:
            response: Mapping[str, Any] = await self._s3_client.get_object(**params)
            expected: Optional[int] = response.get("ContentLength")
            buffer: bytearray = bytearray()
            async with response["Body"] as stream:
                while True:
                    raise_if_cancelled(self._cancel_event, "Download")
                    chunk: bytes = await stream.read(self._chunk_size)
                    if not chunk:
                        break
                    await self._rate_limiter.acquire(len(chunk), self._cancel_event)
                    buffer.extend(chunk)
            if expected is not None and len(buffer) != expected:
                raise TransferError(
                    f"Short read of {self._location(obj)}: "
                    f"got {len(buffer)} of {expected} bytes"
                )
            return response, bytes(buffer)

        response, body = await self._retry_policy.run(
            _download, f"Downloading {self._location(obj)}"
        )
        obj.body = body
        obj.apply_metadata(response)
        logger.debug(f"Downloaded {len(body)} bytes from {self._location(obj)}.")

    async def get_object_acl(self, obj: TransferObject) -> None:
        """
        Fetch `obj`'s access control policy into `access_control_policy`.

        Args:
            obj (TransferObject): The object whose grants are read.
        """
        params: Dict[str, Any] = self._object_params(obj)

        async def _get_acl() -> Mapping[str, Any]:
            return await self._s3_client.get_object_acl(**params)

        response: Mapping[str, Any] = await self._retry_policy.run(
            _get_acl, f"Fetching ACL of {self._location(obj)}"
        )
        obj.access_control_policy = AccessControlPolicy.from_boto(response)

    # --- Writes ---

    async def put_object_content(self, obj: TransferObject) -> None:
        """
        Upload `obj` as the latest version, then apply its access policy.

        The version id is never sent. When `access_control_policy` is set it is
        applied with a separate, independently retried request once the body
        is stored. There is no rollback if that second request fails.

        The body is paced through the rate limiter while the transport
        streams it, so bytes are throttled as they are sent.

        Args:
            obj (TransferObject): The object to write; `body` must be set.

        Raises:
            PreconditionError: If the object has no key or no body.
            AclUpdateError: If the body was stored but the ACL update failed.
        """
        if obj.body is None:
            raise PreconditionError(f"Object '{obj.key}' has no body to upload.")
        params: Dict[str, Any] = self._object_params(obj, with_version=False)
        body: bytes = obj.body
        params["ContentLength"] = len(body)
        if obj.metadata:
            params["Metadata"] = dict(obj.metadata)
        for attribute, name in _PUT_OBJECT_FIELDS:
            value: Optional[str] = getattr(obj, attribute)
            if value is not None:
                params[name] = value

        async def _upload() -> Mapping[str, Any]:
            # A fresh reader per attempt, so a retry resends from the start.
            reader: PacedReader = PacedReader(
                body, self._rate_limiter, self._chunk_size, self._cancel_event
            )
            return await self._s3_client.put_object(Body=reader, **params)

        location: str = f"s3://{self._bucket}/{obj.key}"
        await self._retry_policy.run(_upload, f"Uploading {location}")
        logger.debug(f"Uploaded {len(body)} bytes to {location}.")

        if obj.access_control_policy is None:
            return

        acl_params: Dict[str, Any] = {
            "Bucket": self._bucket,
            "Key": obj.key,
            "AccessControlPolicy": obj.access_control_policy.to_boto(),
        }

        async def _put_acl() -> Mapping[str, Any]:
            return await self._s3_client.put_object_acl(**acl_params)

        try:
            await self._retry_policy.run(_put_acl, f"Updating ACL of {location}")
        except RetryExhaustedError as e:
            logger.error(f"{location} was stored but its ACL could not be applied.")
            raise AclUpdateError(obj.key, e) from e

    async def delete_object(self, obj: TransferObject) -> None:
        """
        Delete `obj` (or the given version of it) from the bucket.

        Args:
            obj (TransferObject): The object to delete.
        """
        params: Dict[str, Any] = self._object_params(obj)

        async def _delete() -> Mapping[str, Any]:
            return await self._s3_client.delete_object(**params)

        await self._retry_policy.run(_delete, f"Deleting {self._location(obj)}")
        logger.debug(f"Deleted {self._location(obj)}.")


def _boto_config(transfer: TransferConfig) -> BotoConfig:
    # Retries are owned by RetryPolicy, so botocore makes a single attempt.
    return BotoConfig(
        signature_version="s3v4",
        max_pool_connections=transfer.workers + 10,
        retries={"total_max_attempts": 1, "mode": "standard"},
        s3={"payload_signing_enabled": False},
        # PutObject bodies are streamed from a paced reader; no checksum pass.
        request_checksum_calculation="when_required",
    )


@asynccontextmanager
async def open_transfer_client(
    s3_config: S3Config,
    transfer: TransferConfig,
    cancel_event: Optional[asyncio.Event] = None,
    credential_provider: Optional[CredentialProvider] = None,
    rate_limiter: Optional[RateLimiter] = None,
    session: Optional[AioSession] = None,
) -> AsyncIterator[ObjectTransferClient]:
    """
    Open an aiobotocore client for an endpoint and wrap it.

    Args:
        s3_config (S3Config): Endpoint and bucket configuration.
        transfer (TransferConfig): Transfer engine settings.
        cancel_event (asyncio.Event, optional): Cancellation signal.
        credential_provider (CredentialProvider, optional): Source of the key
            pair; defaults to the keys in `s3_config`.
        rate_limiter (RateLimiter, optional): Limiter shared with other clients.
        session (AioSession, optional): Session to create the client from.

    Yields:
        ObjectTransferClient: A ready client, closed when the context exits.
    """
    provider: CredentialProvider = (
        credential_provider or StaticCredentialProvider.from_config(s3_config)
    )
    credentials: Credentials = resolve_credentials(provider)
    client_params: Dict[str, Any] = s3_config.as_boto_dict()
    client_params["aws_access_key_id"] = credentials.access_key_id
    client_params["aws_secret_access_key"] = credentials.secret_access_key

    session = session or get_session()
    async with session.create_client(
        "s3", **client_params, config=_boto_config(transfer)
    ) as s3_client:
        logger.debug(
            f"Opened S3 client for '{s3_config.bucket}' at {s3_config.endpoint_url}."
        )
        yield ObjectTransferClient.from_config(
            s3_client, s3_config, transfer, cancel_event, rate_limiter
        )
