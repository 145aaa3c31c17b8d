# src/bucketflow/__init__.py
"""
bucketflow: a throttled, retrying transfer client for S3-compatible stores.

This package lists buckets page by page, hydrates objects with metadata or
content, and writes objects (and their access policies) back, with every
request retried a bounded number of times and every body byte paced by a
shared bandwidth limiter.

The primary entry point for programmatic use is `ObjectTransferClient`,
usually obtained through `open_transfer_client`.
"""

from typing import List

from bucketflow.client import ObjectTransferClient, open_transfer_client
from bucketflow.models import TransferObject

__all__: List[str] = ["ObjectTransferClient", "TransferObject", "open_transfer_client"]
