"""
Checkpoint tracking for fork-safe synchronization.

The tracker remembers how far the wallet has synced and keeps block hashes
the daemon can use to find the most recent block both sides agree on:

- a bounded window of the most recent block hashes, most recent first
- sparse checkpoints every ``checkpoint_interval`` blocks, kept forever,
  so a common ancestor can still be found after the window has rolled over

Serialized form (JSON-compatible)::

    {
        "lastKnownBlockHeight": 1200,
        "lastKnownBlockHashes": [[1200, "ab.."], [1199, "cd.."]],
        "blockHashCheckpoints": [[1000, "ef.."], [0, "01.."]],
        "windowRolledOver": true
    }

``windowRolledOver`` is set once the recent window has evicted a hash. Until
then the window holds every block synced so far.
"""

from __future__ import annotations

from collections import deque
from typing import Any

from loguru import logger

from cnsync.constants import BLOCK_HASH_CHECKPOINTS_INTERVAL, LAST_KNOWN_BLOCK_HASHES_SIZE
from cnsync.errors import CheckpointOrderError, ForkTooDeepError


class CheckpointTracker:
    """In-memory synced height and fork detection evidence.

    Thread-safety: This class is NOT thread-safe. Only the sync tick in
    progress may mutate it.

    Invariant: both the recent window and the sparse checkpoints are sorted by
    strictly descending height.
    """

    def __init__(
        self,
        window_size: int = LAST_KNOWN_BLOCK_HASHES_SIZE,
        checkpoint_interval: int = BLOCK_HASH_CHECKPOINTS_INTERVAL,
    ):
        if window_size < 1:
            raise ValueError(f"window_size must be positive, got {window_size}")
        if checkpoint_interval < 1:
            raise ValueError(f"checkpoint_interval must be positive, got {checkpoint_interval}")

        self.window_size = window_size
        self.checkpoint_interval = checkpoint_interval

        self._height = 0
        self._recent: deque[tuple[int, str]] = deque(maxlen=window_size)
        self._sparse: list[tuple[int, str]] = []
        self._rolled_over = False

    def current_height(self) -> int:
        """Last confirmed synced height, 0 if nothing has been synced."""
        return self._height

    def recent_hashes(self) -> list[str]:
        """Recent block hashes, most recent first."""
        return [block_hash for _, block_hash in self._recent]

    def recent_checkpoints(self) -> list[tuple[int, str]]:
        """Recent ``(height, hash)`` pairs, most recent first."""
        return list(self._recent)

    def checkpoint_hashes(self) -> list[str]:
        """All hashes to offer the daemon: recent window, then sparse checkpoints."""
        recent = self.recent_hashes()
        seen = set(recent)
        return recent + [h for _, h in self._sparse if h not in seen]

    @property
    def is_empty(self) -> bool:
        return not self._recent

    def record(self, height: int, block_hash: str) -> None:
        """
        Record a confirmed block.

        Must be called once per block in increasing height order. The oldest
        recent hash is evicted once the window is full.

        Raises:
            CheckpointOrderError: If ``height`` is not above the last recorded height.
        """
        if height < 0:
            raise ValueError(f"Block height must be non-negative, got {height}")
        if self._recent and height <= self._height:
            raise CheckpointOrderError(
                f"Cannot record block {height}: already synced to {self._height}. "
                "Rewind the tracker before applying a forked chain."
            )

        if len(self._recent) == self.window_size:
            self._rolled_over = True
        self._recent.appendleft((height, block_hash))
        if height % self.checkpoint_interval == 0:
            self._sparse.insert(0, (height, block_hash))
        self._height = height

    def rewind(self, fork_height: int) -> int:
        """
        Discard every checkpoint at or above ``fork_height``.

        A window that never evicted a hash still holds every block synced so
        far, so emptying it just returns the tracker to its never-synced state.
        Emptying a window that has rolled over would lose the evidence of
        where the chains agree, which is refused.

        Args:
            fork_height: First height that is no longer on the active chain

        Returns:
            The new current height

        Raises:
            ForkTooDeepError: If the fork reaches below the whole recent window
        """
        if not self._recent or fork_height > self._height:
            return self._height

        retained = [(h, block_hash) for h, block_hash in self._recent if h < fork_height]
        if not retained and self._rolled_over:
            oldest = self._recent[-1][0]
            raise ForkTooDeepError(
                f"Fork at height {fork_height} is deeper than the checkpoint window "
                f"(oldest checkpoint {oldest}, window size {self.window_size})"
            )

        dropped = len(self._recent) - len(retained)
        self._recent = deque(retained, maxlen=self.window_size)
        self._sparse = [(h, block_hash) for h, block_hash in self._sparse if h < fork_height]
        self._height = retained[0][0] if retained else 0

        logger.info(
            f"Rewound checkpoints to height {self._height} (fork at {fork_height}, "
            f"dropped {dropped} block hash(es))"
        )
        return self._height

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "lastKnownBlockHeight": self._height,
            "lastKnownBlockHashes": [[h, block_hash] for h, block_hash in self._recent],
            "blockHashCheckpoints": [[h, block_hash] for h, block_hash in self._sparse],
            "windowRolledOver": self._rolled_over,
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        window_size: int = LAST_KNOWN_BLOCK_HASHES_SIZE,
        checkpoint_interval: int = BLOCK_HASH_CHECKPOINTS_INTERVAL,
    ) -> CheckpointTracker:
        """
        Restore a tracker serialized with ``to_dict``.

        Raises:
            ValueError: If the data is malformed or violates the ordering invariant
        """
        recent = _parse_checkpoints(data.get("lastKnownBlockHashes", []), "lastKnownBlockHashes")
        sparse = _parse_checkpoints(data.get("blockHashCheckpoints", []), "blockHashCheckpoints")
        height = int(data.get("lastKnownBlockHeight", 0))
        # Without the flag, a window as long as the default one may have rolled over
        rolled_over = data.get(
            "windowRolledOver", len(recent) >= min(window_size, LAST_KNOWN_BLOCK_HASHES_SIZE)
        )
        if not isinstance(rolled_over, bool):
            raise ValueError(f"windowRolledOver must be a boolean, got {rolled_over!r}")

        if recent and recent[0][0] != height:
            raise ValueError(
                f"lastKnownBlockHeight {height} does not match newest checkpoint {recent[0][0]}"
            )
        if not recent and height != 0:
            raise ValueError(f"lastKnownBlockHeight {height} given without any block hashes")

        tracker = cls(window_size=window_size, checkpoint_interval=checkpoint_interval)
        # A smaller configured window keeps only the newest hashes
        tracker._recent.extend(recent[:window_size])
        tracker._sparse = sparse
        tracker._height = height
        tracker._rolled_over = rolled_over or len(recent) > window_size
        return tracker

    def __repr__(self) -> str:
        return (
            f"CheckpointTracker(height={self._height}, recent={len(self._recent)}, "
            f"sparse={len(self._sparse)})"
        )


def _parse_checkpoints(raw: Any, name: str) -> list[tuple[int, str]]:
    if not isinstance(raw, list):
        raise ValueError(f"{name} must be a list")

    checkpoints: list[tuple[int, str]] = []
    for entry in raw:
        if not isinstance(entry, (list, tuple)) or len(entry) != 2:
            raise ValueError(f"{name} entries must be [height, hash] pairs, got {entry!r}")
        height, block_hash = entry
        if not isinstance(height, int) or not isinstance(block_hash, str):
            raise ValueError(f"{name} entries must be [int, str], got {entry!r}")
        if checkpoints and height >= checkpoints[-1][0]:
            raise ValueError(f"{name} must be sorted by strictly descending height")
        checkpoints.append((height, block_hash))
    return checkpoints
