"""
Wallet synchronizer: coordinates checkpoint tracking, block fetching and
transaction scanning, one tick at a time.

Construction is two-phase. ``WalletSynchronizer(...)`` or ``from_dict(...)``
builds the value from plain fields; ``attach(key_manager)`` connects the key
manager before first use. Scanning, or pinning a timestamp resume point,
without an attached key manager raises ``KeyManagerNotAttachedError``.

The daemon may be left out to inspect or create saved state offline; any
daemon call then raises ``DaemonNotConfiguredError``.

A tick either completes or changes nothing: every block of a batch is
scanned before the tracker is rewound or any hash is recorded.

Ticks must not overlap. The caller (or ``run_periodic_task``) awaits each
``sync()`` before starting the next one.
"""

from __future__ import annotations

import json
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import SecretStr

from cnsync.backends.base import Daemon
from cnsync.checkpoints import CheckpointTracker
from cnsync.constants import (
    LOCKED_TX_ALLOWED_DELTA_BLOCKS,
    LOCKED_TX_ALLOWED_DELTA_SECONDS,
    MAX_BLOCK_NUMBER,
)
from cnsync.errors import DaemonNotConfiguredError
from cnsync.fetcher import TRANSIENT_ERRORS, BlockFetcher, ResumePoint
from cnsync.keys import KeyManager, SyncContext
from cnsync.models import Block, TransactionData
from cnsync.scanner import TransactionScanner
from cnsync.settings import SyncConfig


def is_unlocked(unlock_time: int, height: int, timestamp: int) -> bool:
    """
    Check whether an unlock time has passed.

    Unlock times below ``MAX_BLOCK_NUMBER`` are block heights, others are
    Unix timestamps.
    """
    if unlock_time < MAX_BLOCK_NUMBER:
        return height + LOCKED_TX_ALLOWED_DELTA_BLOCKS >= unlock_time
    return timestamp + LOCKED_TX_ALLOWED_DELTA_SECONDS >= unlock_time


@dataclass
class LockedTransaction:
    hash: str
    unlock_time: int
    block_height: int


@dataclass
class SyncResult:
    """Outcome of one sync tick.

    Attributes:
        tx_data: Ledger changes found in the processed blocks.
        blocks_processed: Number of blocks scanned and recorded.
        fork_height: First height of the forked-off chain when the daemon
            answered below our synced height. The caller must drop ledger
            entries at or above it before applying ``tx_data``.
        height: Synced height after the tick.
    """

    tx_data: TransactionData = field(default_factory=TransactionData)
    blocks_processed: int = 0
    fork_height: int | None = None
    height: int = 0

    @property
    def fork_detected(self) -> bool:
        return self.fork_height is not None


class WalletSynchronizer:
    """Keeps a wallet in sync with a remote daemon."""

    def __init__(
        self,
        daemon: Daemon | None,
        start_timestamp: int,
        start_height: int,
        private_view_key: str | SecretStr,
        config: SyncConfig | None = None,
    ):
        if start_height < 0 or start_timestamp < 0:
            raise ValueError("start_height and start_timestamp must be non-negative")

        self.config = config or SyncConfig()
        self.daemon = daemon
        self.context = SyncContext(private_view_key)
        self.resume_point = ResumePoint(start_height=start_height, start_timestamp=start_timestamp)
        self.tracker = CheckpointTracker(
            window_size=self.config.window_size,
            checkpoint_interval=self.config.checkpoint_interval,
        )
        self._locked: dict[str, LockedTransaction] = {}

        self._build_components()

    def _build_components(self) -> None:
        self.fetcher: BlockFetcher | None = None
        if self.daemon is not None:
            self.fetcher = BlockFetcher(self.daemon, self.tracker, self.resume_point, self.context)
        self.scanner = TransactionScanner(
            self.context,
            scan_coinbase_transactions=self.config.scan_coinbase_transactions,
        )

    def attach(self, key_manager: KeyManager) -> None:
        """Connect the key manager. Required before the first sync."""
        self.context.attach(key_manager)

    @property
    def start_height(self) -> int:
        return self.resume_point.start_height

    @property
    def start_timestamp(self) -> int:
        return self.resume_point.start_timestamp

    @property
    def height(self) -> int:
        return self.tracker.current_height()

    def get_height(self) -> int:
        return self.tracker.current_height()

    def _require_daemon(self) -> Daemon:
        if self.daemon is None:
            raise DaemonNotConfiguredError(
                "Synchronizer was built without a daemon; pass one to sync"
            )
        return self.daemon

    async def get_blocks(self) -> list[Block]:
        if self.fetcher is None:
            raise DaemonNotConfiguredError(
                "Synchronizer was built without a daemon; pass one to fetch blocks"
            )
        return await self.fetcher.fetch_next()

    def store_block_hash(self, block_height: int, block_hash: str) -> None:
        self.tracker.record(block_height, block_hash)

    def process_block(self, block: Block) -> TransactionData:
        """Scan a block and record it as synced."""
        tx_data = self.scanner.scan_block(block)
        self.store_block_hash(block.block_height, block.block_hash)
        self._remember_locked(tx_data)
        return tx_data

    def _remember_locked(self, tx_data: TransactionData) -> None:
        for tx in tx_data.transactions_to_add:
            if tx.unlock_time != 0:
                self._locked[tx.hash] = LockedTransaction(tx.hash, tx.unlock_time, tx.block_height)

    async def sync(self) -> SyncResult:
        """
        Run one sync tick: fetch the next batch, handle a fork, scan every
        block in increasing height order and record its hash.

        Raises:
            UnexpectedBlockHeightError: If the first ever batch starts at the wrong height
            ForkTooDeepError: If a fork reaches below every recent checkpoint
            KeyManagerNotAttachedError: If ``attach`` was never called
            DaemonNotConfiguredError: If built without a daemon

        Any exception leaves the tracker and locked transactions as they were,
        so the same batch is fetched and reported again on the next tick.
        """
        self.context.require_key_manager()

        blocks = await self.get_blocks()
        result = SyncResult(height=self.height)
        if not blocks:
            return result

        heights = [block.block_height for block in blocks]
        if any(later <= earlier for earlier, later in zip(heights, heights[1:])):
            logger.warning("Daemon returned blocks out of height order, skipping sync tick")
            return result

        # Scan everything before touching the tracker
        tx_data = TransactionData()
        for block in blocks:
            self.scanner.scan_block(block, tx_data)

        first_height = heights[0]
        if not self.tracker.is_empty and first_height <= self.height:
            logger.warning(
                f"Fork detected: daemon returned block {first_height} "
                f"while wallet is synced to {self.height}"
            )
            self.tracker.rewind(first_height)
            self._forget_locked_from(first_height)
            result.fork_height = first_height

        for block in blocks:
            self.store_block_hash(block.block_height, block.block_hash)
        self._remember_locked(tx_data)

        result.tx_data = tx_data
        result.blocks_processed = len(blocks)
        result.height = self.height
        logger.info(
            f"Synced to height {result.height} ({result.blocks_processed} block(s), "
            f"{len(result.tx_data.transactions_to_add)} transaction(s))"
        )
        return result

    def _forget_locked_from(self, height: int) -> None:
        self._locked = {h: tx for h, tx in self._locked.items() if tx.block_height < height}

    async def check_locked_transactions(self, transaction_hashes: Sequence[str]) -> list[str]:
        """
        Find which of the given locked transactions have become spendable.

        Reported hashes are forgotten; hashes this synchronizer never saw
        with an unlock time are never reported. Returns an empty list if the
        daemon cannot be reached.
        """
        candidates = [h for h in transaction_hashes if h in self._locked]
        if not candidates:
            return []

        daemon = self._require_daemon()
        try:
            info = await daemon.get_info()
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Failed to get daemon info for locked transaction check: {e}")
            return []

        timestamp = info.timestamp if info.timestamp is not None else int(time.time())

        unlocked = [
            h
            for h in candidates
            if is_unlocked(self._locked[h].unlock_time, info.height, timestamp)
        ]
        for tx_hash in unlocked:
            del self._locked[tx_hash]

        if unlocked:
            logger.debug(f"{len(unlocked)} locked transaction(s) are now spendable")
        return unlocked

    @property
    def locked_transactions(self) -> list[LockedTransaction]:
        return list(self._locked.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "privateViewKey": self.context.view_key(),
            "startHeight": self.resume_point.start_height,
            "startTimestamp": self.resume_point.start_timestamp,
            "transactionSynchronizerStatus": self.tracker.to_dict(),
            "lockedTransactions": [
                [tx.hash, tx.unlock_time, tx.block_height] for tx in self._locked.values()
            ],
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        daemon: Daemon | None = None,
        config: SyncConfig | None = None,
    ) -> WalletSynchronizer:
        """
        Restore a synchronizer serialized with ``to_dict``.

        The result has no key manager; call ``attach`` before syncing.

        Raises:
            ValueError: If the data is malformed
        """
        try:
            synchronizer = cls(
                daemon,
                start_timestamp=int(data["startTimestamp"]),
                start_height=int(data["startHeight"]),
                private_view_key=str(data["privateViewKey"]),
                config=config,
            )
        except KeyError as e:
            raise ValueError(f"Missing synchronizer field {e}") from e

        synchronizer.tracker = CheckpointTracker.from_dict(
            data.get("transactionSynchronizerStatus", {}),
            window_size=synchronizer.config.window_size,
            checkpoint_interval=synchronizer.config.checkpoint_interval,
        )
        for locked in _parse_locked_transactions(data.get("lockedTransactions", [])):
            synchronizer._locked[locked.hash] = locked

        synchronizer._build_components()
        return synchronizer

    def save(self, path: Path) -> None:
        """
        Persist the synchronizer state.

        Writes atomically (write to temp, then rename) to prevent corruption on crash.

        Raises:
            OSError: If the file cannot be written
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        try:
            tmp_path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
            tmp_path.replace(path)
        except OSError as e:
            logger.error(f"Failed to save synchronizer state: {e}")
            tmp_path.unlink(missing_ok=True)
            raise

        logger.debug(f"Saved synchronizer state at height {self.height} to {path}")

    @classmethod
    def load(
        cls,
        path: Path,
        daemon: Daemon | None = None,
        config: SyncConfig | None = None,
    ) -> WalletSynchronizer:
        """Load a synchronizer saved with ``save``."""
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Synchronizer state in {path} is not a JSON object")

        synchronizer = cls.from_dict(data, daemon, config)
        logger.debug(f"Loaded synchronizer state at height {synchronizer.height} from {path}")
        return synchronizer

    def __repr__(self) -> str:
        return (
            f"WalletSynchronizer(height={self.height}, start_height={self.start_height}, "
            f"start_timestamp={self.start_timestamp})"
        )


def _parse_locked_transactions(raw: Any) -> list[LockedTransaction]:
    if not isinstance(raw, list):
        raise ValueError("lockedTransactions must be a list")

    locked: list[LockedTransaction] = []
    for entry in raw:
        if not isinstance(entry, (list, tuple)) or len(entry) != 3:
            raise ValueError(
                "lockedTransactions entries must be [hash, unlockTime, blockHeight], "
                f"got {entry!r}"
            )
        tx_hash, unlock_time, block_height = entry
        if (
            not isinstance(tx_hash, str)
            or not isinstance(unlock_time, int)
            or not isinstance(block_height, int)
        ):
            raise ValueError(f"lockedTransactions entries must be [str, int, int], got {entry!r}")
        locked.append(LockedTransaction(tx_hash, unlock_time, block_height))
    return locked
