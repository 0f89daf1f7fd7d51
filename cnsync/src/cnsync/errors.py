"""
Exceptions raised by the synchronization core.

Transient daemon failures never surface as exceptions from the fetch path;
everything defined here signals a condition the caller must act on.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base exception for synchronization errors."""


class UnexpectedBlockHeightError(SyncError):
    """
    The daemon answered the very first sync request with a chain segment that
    does not start at the requested height.

    Fatal: the resume point and the daemon disagree about where sync begins.
    """

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Received unexpected block height from daemon. Expected {expected}, got {actual}"
        )


class CheckpointOrderError(SyncError):
    """A block hash was recorded at or below an already recorded height."""


class ForkTooDeepError(SyncError):
    """A fork reaches below every checkpoint the tracker still holds."""


class KeyManagerNotAttachedError(SyncError):
    """A key-management operation was needed before ``attach()`` was called."""


class DaemonNotConfiguredError(SyncError):
    """A daemon call was needed on a synchronizer built without a daemon."""
