# src/bucketflow/paginator.py
"""
Marker-based enumeration of a bucket.

The store is asked for URL-encoded listings so that keys with control
characters survive the XML response; keys are decoded here before they
reach callers. Because `EncodingType` is passed explicitly, botocore leaves
the response untouched and decoding is our responsibility.
"""

import logging
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Mapping, Optional
from urllib.parse import unquote_plus

from bucketflow.models import TransferObject
from bucketflow.retry import RetryBudget, RetryPolicy

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client

logger: logging.Logger = logging.getLogger(__name__)


def decode_key(key: str) -> str:
    """
    Decode a key from a URL-encoded listing (`a%2Fb+c.txt` -> `a/b c.txt`).

    Args:
        key (str): The key as returned by the store.

    Returns:
        str: The literal key.
    """
    return unquote_plus(key)


class ListingPaginator:
    """
    Lazily enumerates every object under a bucket/prefix, one page at a time.

    Each instance owns its continuation marker, so one paginator corresponds
    to one enumeration. Every page request is retried by the policy, with a
    single retry budget shared by the whole enumeration.
    """

    def __init__(
        self,
        s3_client: "S3Client",
        bucket: str,
        retry_policy: RetryPolicy,
        prefix: str = "",
        page_size: int = 1000,
        marker: str = "",
    ) -> None:
        """
        Initializes the paginator.

        Args:
            s3_client (S3Client): An aiobotocore S3 client.
            bucket (str): The bucket to enumerate.
            retry_policy (RetryPolicy): Policy applied to each page request.
            prefix (str): Only keys starting with this prefix are listed.
            page_size (int): Maximum number of keys per request.
            marker (str): Key after which the enumeration starts.
        """
        if page_size <= 0:
            raise ValueError(f"Page size must be positive, got {page_size}")
        self._s3_client: "S3Client" = s3_client
        self._bucket: str = bucket
        self._retry_policy: RetryPolicy = retry_policy
        self._prefix: str = prefix
        self._page_size: int = page_size
        self._initial_marker: str = marker
        self._marker: str = marker
        self.pages_fetched: int = 0

    @property
    def marker(self) -> str:
        """The key after which the next page request resumes."""
        return self._marker

    def reset(self) -> None:
        """Rewind to the starting marker so the enumeration can run again."""
        self._marker = self._initial_marker
        self.pages_fetched = 0

    async def _fetch_page(self) -> Mapping[str, Any]:
        params: Dict[str, Any] = {
            "Bucket": self._bucket,
            "Prefix": self._prefix,
            "MaxKeys": self._page_size,
            "EncodingType": "url",
        }
        if self._marker:
            params["Marker"] = self._marker
        return await self._s3_client.list_objects(**params)

    @staticmethod
    def _to_object(entry: Mapping[str, Any]) -> TransferObject:
        return TransferObject(
            key=decode_key(entry["Key"]),
            e_tag=entry.get("ETag"),
            size=entry.get("Size"),
            last_modified=entry.get("LastModified"),
            storage_class=entry.get("StorageClass"),
            is_latest=True,
        )

    async def pages(self) -> AsyncIterator[List[TransferObject]]:
        """
        Yield batches of objects until the store reports the last page.

        Empty pages are yielded too; only `IsTruncated` ends the enumeration.

        Yields:
            List[TransferObject]: The objects of one listing page.

        Raises:
            TransferCancelled: If the cancellation signal fired.
            RetryExhaustedError: If a page request exhausted the retry budget.
        """
        budget: RetryBudget = self._retry_policy.new_budget()
        while True:
            description: str = (
                f"Listing s3://{self._bucket}/{self._prefix} "
                f"(page {self.pages_fetched + 1})"
            )
            page: Mapping[str, Any] = await self._retry_policy.run(
                self._fetch_page, description, budget=budget
            )
            self.pages_fetched += 1
            objects: List[TransferObject] = [
                self._to_object(entry) for entry in page.get("Contents", [])
            ]

            next_marker: Optional[str] = page.get("NextMarker")
            if next_marker:
                self._marker = decode_key(next_marker)
            elif objects:
                self._marker = objects[-1].key

            logger.debug(
                f"Listed {len(objects)} object(s) on page {self.pages_fetched}; "
                f"next marker: '{self._marker}'"
            )
            yield objects

            if not page.get("IsTruncated"):
                break
