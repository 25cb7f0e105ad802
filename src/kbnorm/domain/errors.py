"""Classified failures raised by transform clients.

Every error here is batch-scoped: the dispatcher absorbs them into its state
machine and turns them into statistics, so none of them reach callers of the
pipeline.
"""

from __future__ import annotations


class RemoteError(RuntimeError):
    """Base class for failures reported by a transform client."""

    retryable: bool = False


class RemoteRateLimited(RemoteError):
    """The remote side throttled the request; back off before retrying."""

    retryable = True

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class RemoteTransient(RemoteError):
    """A failure that may succeed when repeated (timeouts, 5xx, garbled output)."""

    retryable = True


class RemoteFatal(RemoteError):
    """A failure that repeating cannot fix (malformed request, bad credentials)."""
