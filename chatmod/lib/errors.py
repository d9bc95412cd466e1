"""
Error taxonomy for the moderation pipeline.
"""

from typing import Optional


class ChatModError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(ChatModError):
    """Malformed, empty or oversized input. User-visible, not retryable without edit."""


class RateLimitExceeded(ValidationError):
    """Sender exceeded the rolling send window."""

    def __init__(self, message: str, retry_after_seconds: int = 0):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class StoreError(ChatModError):
    """I/O failure against the record store. Safe to retry."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class StoreReadError(StoreError):
    pass


class StoreWriteError(StoreError):
    pass


class NotFoundError(ChatModError):
    """Operation references a record that does not exist."""


class InvalidArgument(ChatModError):
    """Caller supplied an argument combination that cannot be served."""


class ConflictError(ChatModError):
    """Operation conflicts with the current record state (e.g. already reviewed)."""


class DeadlineExceeded(ChatModError):
    """Aggregation did not finish within the caller's deadline."""
