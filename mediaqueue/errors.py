"""
Error taxonomy for the upload pipeline.

Every condition a task can end on is classified here so the queue can decide
between retrying, failing, or falling back without inspecting messages.
"""
from typing import Optional


class UploadError(Exception):
    """Base class for classified upload conditions."""
    kind = "upload"
    retryable = False

    def __init__(self, message: str = "", *, cause: Optional[BaseException] = None):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.cause = cause


class ValidationFailure(UploadError):
    """Payload rejected before or by the backend. Fatal."""
    kind = "validation"


class AuthorizationFailure(UploadError):
    """Backend refused the credentials. Fatal."""
    kind = "authorization"


class TransientNetworkFailure(UploadError):
    """Network interruption, timeout or rate limiting. Retryable."""
    kind = "transient"
    retryable = True

    def __init__(self, message: str = "", *, cause: Optional[BaseException] = None, attempts: int = 0):
        super().__init__(message, cause=cause)
        self.attempts = attempts


class CompressionFailure(UploadError):
    """Compression could not produce a payload; the original is used instead."""
    kind = "compression"


class MetadataLinkFailure(UploadError):
    """Object stored but its metadata row could not be written."""
    kind = "metadata_link"


class TransferAborted(Exception):
    """Raised at a suspension point after pause or cancel was requested."""

    def __init__(self, reason=None):
        super().__init__(f"transfer aborted ({getattr(reason, 'value', reason)})")
        self.reason = reason


class TaskNotFoundError(KeyError):
    """No task with the given id is tracked by the queue."""
