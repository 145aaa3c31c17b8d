# src/bucketflow/mirror.py
"""
Bucket-to-bucket mirroring on top of `ObjectTransferClient`.

The source listing is streamed into a bounded queue by a single producer
while a pool of workers downloads each object from the source and uploads it
to the destination. The queue provides back-pressure in both directions.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from bucketflow.client import ObjectTransferClient
from bucketflow.exceptions import BucketflowError, TransferCancelled, TransferError
from bucketflow.models import TransferObject

logger: logging.Logger = logging.getLogger(__name__)


def _is_content_md5(e_tag: Optional[str], encryption: Optional[str]) -> bool:
    """
    Tells whether an ETag is the MD5 of the object body.

    Multipart uploads get an `<md5-of-part-md5s>-<parts>` ETag and SSE-KMS
    objects an opaque one, so neither can be compared across buckets.

    Args:
        e_tag (str, optional): The ETag reported by the store.
        encryption (str, optional): The object's server-side encryption.

    Returns:
        bool: True if the ETag can be compared with another object's.
    """
    if not e_tag or "-" in e_tag:
        return False
    return not (encryption or "").startswith("aws:kms")


@dataclass
class MirrorReport:
    """
    Outcome of a mirror run.

    Attributes:
        listed (int): Objects delivered by the source listing.
        copied (int): Objects written to the destination.
        failed (int): Objects whose copy failed for good.
        bytes_copied (int): Body bytes written to the destination.
        failed_keys (List[str]): Keys of the failed objects.
        cancelled (bool): Whether the run stopped on a shutdown signal.
    """

    listed: int = 0
    copied: int = 0
    failed: int = 0
    bytes_copied: int = 0
    failed_keys: List[str] = field(default_factory=list)
    cancelled: bool = False


class BucketMirror:
    """Copies every listed object from a source client to a destination client."""

    def __init__(
        self,
        source: ObjectTransferClient,
        destination: ObjectTransferClient,
        shutdown_event: asyncio.Event,
        workers: int = 8,
        queue_size: int = 1000,
        verify: bool = True,
        copy_acl: bool = False,
        show_progress: bool = True,
    ) -> None:
        """
        Initializes the mirror.

        Args:
            source (ObjectTransferClient): Client for the bucket read from.
            destination (ObjectTransferClient): Client for the bucket written to.
            shutdown_event (asyncio.Event): Event that stops the run early.
            workers (int): Number of concurrent copy workers.
            queue_size (int): Capacity of the listing queue.
            verify (bool): Check the destination size and, where comparable,
                ETag after each copy.
            copy_acl (bool): Read each source ACL and apply it on the destination.
            show_progress (bool): Render a rich progress bar.
        """
        self._source: ObjectTransferClient = source
        self._destination: ObjectTransferClient = destination
        self._shutdown_event: asyncio.Event = shutdown_event
        self._workers: int = workers
        self._queue_size: int = queue_size
        self._verify: bool = verify
        self._copy_acl: bool = copy_acl
        self._show_progress: bool = show_progress

    async def run(self) -> MirrorReport:
        """
        Mirror the source bucket/prefix into the destination bucket.

        Returns:
            MirrorReport: Counts of listed, copied and failed objects.

        Raises:
            RetryExhaustedError: If the source listing kept failing. Objects
                copied before that point stay in the destination.
        """
        logger.info(
            f"Mirroring s3://{self._source.bucket}/{self._source.prefix} -> "
            f"s3://{self._destination.bucket}"
        )
        report: MirrorReport = MirrorReport()
        queue: asyncio.Queue[TransferObject] = asyncio.Queue(maxsize=self._queue_size)
        progress: Progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            transient=True,
            disable=not self._show_progress,
        )

        with progress:
            task_id: TaskID = progress.add_task("Mirroring...", total=None)

            async def producer() -> None:
                """Feeds the queue from the source listing."""
                async for obj in self._source.iter_objects():
                    if self._shutdown_event.is_set():
                        break
                    await queue.put(obj)
                    report.listed += 1
                    progress.update(task_id, total=report.listed)

            producer_task: asyncio.Task[None] = asyncio.create_task(producer())
            worker_tasks: List[asyncio.Task[None]] = [
                asyncio.create_task(
                    self._worker(i, queue, report, progress, task_id)
                )
                for i in range(self._workers)
            ]

            # Race normal completion against a shutdown signal
            normal_completion_task: asyncio.Task[None] = asyncio.create_task(
                self._wait_for_queue_completion(producer_task, queue)
            )
            shutdown_task: asyncio.Task[bool] = asyncio.create_task(
                self._shutdown_event.wait()
            )
            done, pending = await asyncio.wait(
                {normal_completion_task, shutdown_task},
                return_when=asyncio.FIRST_COMPLETED,
            )

            if shutdown_task in done:
                logger.warning("Shutdown signal received. Stopping mirror.")
                report.cancelled = True

            for task in pending:
                task.cancel()
            producer_task.cancel()
            for task in worker_tasks:
                task.cancel()
            await asyncio.gather(
                normal_completion_task,
                shutdown_task,
                producer_task,
                *worker_tasks,
                return_exceptions=True,
            )
            listing_error: Optional[BaseException] = None
            if producer_task.done() and not producer_task.cancelled():
                listing_error = producer_task.exception()

        if listing_error is not None and not isinstance(
            listing_error, TransferCancelled
        ):
            logger.error(
                f"Source listing failed after {report.listed} object(s); "
                f"{report.copied} copied before the failure."
            )
            raise listing_error

        logger.info(
            f"Mirror finished: {report.copied} copied, {report.failed} failed, "
            f"{report.bytes_copied} bytes."
        )
        return report

    async def _wait_for_queue_completion(
        self,
        producer_task: "asyncio.Task[None]",
        queue: "asyncio.Queue[TransferObject]",
    ) -> None:
        """
        Waits for the producer to finish and then for the queue to drain.

        Objects listed before a listing failure are still copied.

        Args:
            producer_task (asyncio.Task[None]): The listing producer.
            queue (asyncio.Queue[TransferObject]): The listing queue.
        """
        await asyncio.wait({producer_task})
        await queue.join()

    async def _worker(
        self,
        worker_id: int,
        queue: "asyncio.Queue[TransferObject]",
        report: MirrorReport,
        progress: Progress,
        task_id: TaskID,
    ) -> None:
        """
        A long-lived worker that copies objects taken from the queue.

        It runs until cancelled. Per-object failures are recorded in the
        report and do not stop the worker.

        Args:
            worker_id (int): A unique identifier for this worker.
            queue (asyncio.Queue[TransferObject]): Objects to copy.
            report (MirrorReport): Shared report to update.
            progress (Progress): The rich Progress instance for UI updates.
            task_id (TaskID): The TaskID of the progress bar.
        """
        logger.debug(f"Worker {worker_id} started.")
        while True:
            obj: TransferObject = await queue.get()
            try:
                await self._copy_object(obj)
                report.copied += 1
                report.bytes_copied += obj.content_length or 0
            except TransferCancelled:
                logger.debug(f"Worker {worker_id} cancelled while copying '{obj.key}'.")
            except BucketflowError as e:
                report.failed += 1
                report.failed_keys.append(obj.key)
                logger.error(f"Failed to copy '{obj.key}': {type(e).__name__} - {e}")
            except Exception:
                report.failed += 1
                report.failed_keys.append(obj.key)
                logger.exception(f"An unexpected error occurred copying '{obj.key}'")
            finally:
                obj.body = None
                queue.task_done()
                progress.update(task_id, advance=1)

    async def _copy_object(self, obj: TransferObject) -> None:
        """
        Copies a single object and optionally verifies it on the destination.

        Args:
            obj (TransferObject): A listed source object.
        """
        await self._source.get_object_content(obj)
        if self._copy_acl:
            await self._source.get_object_acl(obj)
        source_etag: Optional[str] = obj.e_tag
        source_encryption: Optional[str] = obj.server_side_encryption
        await self._destination.put_object_content(obj)

        if not self._verify:
            return
        copied: TransferObject = TransferObject(key=obj.key)
        await self._destination.get_object_meta(copied)
        if copied.content_length != obj.content_length:
            raise TransferError(
                f"Integrity check failed for '{obj.key}': size mismatch "
                f"({obj.content_length} != {copied.content_length})"
            )
        if (
            _is_content_md5(source_etag, source_encryption)
            and _is_content_md5(copied.e_tag, copied.server_side_encryption)
            and copied.e_tag != source_etag
        ):
            raise TransferError(
                f"Integrity check failed for '{obj.key}': ETag mismatch "
                f"({source_etag} != {copied.e_tag})"
            )
        logger.debug(
            f"Copied 's3://{self._source.bucket}/{obj.key}' -> "
            f"'s3://{self._destination.bucket}/{obj.key}'"
        )
