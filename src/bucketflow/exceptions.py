# src/bucketflow/exceptions.py
"""Custom exceptions for the bucketflow transfer engine."""

from typing import Any, List, Optional


class BucketflowError(Exception):
    """Base exception for all application-specific errors."""

    pass


class ConfigError(BucketflowError):
    """Raised for configuration or credential issues."""

    pass


class PreconditionError(BucketflowError):
    """Raised when a call is rejected before any remote request is made."""

    pass


class TransferCancelled(BucketflowError):
    """
    Raised when the cancellation signal fires during an operation.

    Attributes:
        partial (List[Any]): Objects produced before cancellation, if any.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.partial: List[Any] = []


class TransferError(BucketflowError):
    """Raised when an object transfer fails permanently."""

    pass


class RetryExhaustedError(TransferError):
    """
    Raised when an operation keeps failing after its retry budget is spent.

    Attributes:
        operation (str): A short description of the failed operation.
        attempts (int): How many attempts were made.
        last_error (Exception, optional): The error raised by the final attempt.
        partial (List[Any]): Objects produced before the failure, if any.
    """

    def __init__(
        self, operation: str, attempts: int, last_error: Optional[Exception]
    ) -> None:
        super().__init__(
            f"{operation} failed after {attempts} attempt(s): {last_error}"
        )
        self.operation: str = operation
        self.attempts: int = attempts
        self.last_error: Optional[Exception] = last_error
        self.partial: List[Any] = []


class AclUpdateError(RetryExhaustedError):
    """
    Raised when an object body was written but its access policy was not.

    The object stays in the store with whatever ACL the upload gave it.
    """

    def __init__(self, key: str, cause: RetryExhaustedError) -> None:
        super().__init__(cause.operation, cause.attempts, cause.last_error)
        self.key: str = key
        self.args = (
            f"Object '{key}' was uploaded but its access control policy was "
            f"not applied: {cause}",
        )
