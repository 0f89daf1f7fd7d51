"""
Fork-safe block fetching.

We give the daemon a start height or timestamp, plus hashes of the last
blocks we know about. If the daemon has one of those hashes on its active
chain, it returns the blocks after it: given a start height of 200,000 and
the hash of block 300,000, it returns block 300,001 and above.

If the chain forked at 300,000, the daemon does not have that hash and
answers from the next hash we gave it, for example 299,999. The caller sees
a block at or below its own height and rewinds before applying the batch.

A daemon that is behind the wallet would not find any of our recent hashes
and would start again from the start height, discarding our progress. So we
wait until the daemon has at least as many blocks as we have.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from loguru import logger
from pydantic import ValidationError

from cnsync.backends.base import Daemon, DaemonError
from cnsync.checkpoints import CheckpointTracker
from cnsync.errors import UnexpectedBlockHeightError
from cnsync.keys import SyncContext
from cnsync.models import Block

# Failures that only cost the current tick
TRANSIENT_ERRORS = (DaemonError, httpx.HTTPError, ValidationError, ValueError, OSError)


@dataclass
class ResumePoint:
    """Where the daemon should start when it recognizes none of our checkpoints.

    At most one of the two is active: once the first batch arrives, a
    timestamp is pinned to that batch's first height and zeroed for good.
    """

    start_height: int = 0
    start_timestamp: int = 0

    @property
    def is_timestamp_based(self) -> bool:
        return self.start_timestamp != 0


class BlockFetcher:
    """Fetches the next batch of blocks after the last known-good point."""

    def __init__(
        self,
        daemon: Daemon,
        tracker: CheckpointTracker,
        resume_point: ResumePoint,
        context: SyncContext,
    ):
        self.daemon = daemon
        self.tracker = tracker
        self.resume_point = resume_point
        self.context = context

    async def fetch_next(self) -> list[Block]:
        """
        Get the next batch of blocks from the daemon.

        Returns an empty list when the daemon is behind, unreachable, or has
        nothing new. The first block of a non-empty batch may be at or below
        ``tracker.current_height()``, which signals a fork.

        Raises:
            UnexpectedBlockHeightError: If the first ever batch does not start
                at the requested start height
        """
        wallet_height = self.tracker.current_height()

        try:
            daemon_height = await self.daemon.get_local_height()
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Failed to get daemon height, skipping sync tick: {e}")
            return []

        if daemon_height < wallet_height:
            logger.debug(
                f"Daemon height {daemon_height} is below wallet height {wallet_height}, "
                "waiting for daemon to catch up"
            )
            return []

        block_checkpoints = self.tracker.checkpoint_hashes()
        first_sync = not self.tracker.recent_hashes()
        timestamp_resume = self.resume_point.is_timestamp_based

        try:
            blocks = await self.daemon.get_wallet_sync_data(
                block_checkpoints,
                self.resume_point.start_height,
                self.resume_point.start_timestamp,
            )
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Failed to fetch blocks from daemon, skipping sync tick: {e}")
            return []

        if not blocks:
            return []

        first_height = blocks[0].block_height

        # Timestamp is transient and can change, block height is constant
        if timestamp_resume:
            self._pin_timestamp(first_height)

        if first_sync and not timestamp_resume:
            expected = self.resume_point.start_height
            if first_height != expected:
                logger.error(
                    f"First sync batch starts at height {first_height}, expected {expected}"
                )
                raise UnexpectedBlockHeightError(expected=expected, actual=first_height)

        return blocks

    def _pin_timestamp(self, height: int) -> None:
        # Resolve the key manager first so a missing attach leaves state untouched
        key_manager = self.context.require_key_manager()
        timestamp = self.resume_point.start_timestamp

        self.resume_point.start_timestamp = 0
        self.resume_point.start_height = height
        key_manager.pin_timestamp_to_height(timestamp, height)

        logger.info(f"Pinned sync start timestamp {timestamp} to block height {height}")
