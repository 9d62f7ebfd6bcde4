"""Error taxonomy of the synchronization client.

Every failure leaves the engine recoverable: a later ``connect()`` or
``load_history()`` can bring it back. Duplicates are not errors at all; the
merge path reports them as ``MergeResult.SKIPPED``.
"""
from typing import Optional


class SyncError(Exception):
    """Base class for synchronization failures."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class NegotiateFailed(SyncError):
    """Push credential acquisition failed; the room switch is aborted."""


class SubscribeFailed(SyncError):
    """Broker connection or group join failed."""


class SendFailed(SyncError):
    """An outgoing message could not be persisted."""


class HistoryLoadFailed(SyncError):
    """A history fetch failed."""


class PollCycleFailed(SyncError):
    """One poll cycle failed; logged and swallowed unless escalated."""


class ConnectionLost(SyncError):
    """The push connection dropped after it was established."""
