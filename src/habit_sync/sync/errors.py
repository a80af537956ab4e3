"""Exceptions raised by the sync stack."""


class SyncError(Exception):
    """Base exception for sync operations."""

    kind = "error"
    recoverable = True


class UnauthenticatedError(SyncError):
    """No signed-in principal, or the remote rejected the credentials."""

    kind = "unauthenticated"


class TransientNetworkError(SyncError):
    """Timeout, connection failure or server-side 5xx."""

    kind = "network"


class RateLimitedError(SyncError):
    """The remote refused further writes for the current window.

    ``applied`` lists the results for items of the batch that were
    written before the limit was hit.
    """

    kind = "rate_limited"

    def __init__(self, message: str = "Rate limit exceeded",
                 retry_after: float | None = None, applied=None):
        super().__init__(message)
        self.retry_after = retry_after
        self.applied = list(applied or [])


class ConflictInvariantViolation(SyncError):
    """A merge hit a local uniqueness constraint. Indicates a defect."""

    kind = "conflict_invariant"
    recoverable = False


class RemoteProtocolError(SyncError):
    """The remote answered with a payload we cannot interpret."""

    kind = "protocol"
    recoverable = False
